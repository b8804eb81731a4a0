"""OpenF1 access-token cache.

Only authenticated requests need this (the real-time feed requires a paid
OpenF1 account). All historical REST data is public and never goes through
here.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from f1_mcp.errors import (
    ErrorCode,
    InvalidRequestError,
    auth_error,
    upstream_status_error,
    UpstreamTransportError,
)

logger = logging.getLogger(__name__)

# Refresh this many seconds before the token actually expires
TOKEN_BUFFER_SECONDS = 60


@dataclass
class CachedToken:
    access_token: str
    expires_at: float


class OpenF1TokenProvider:
    """Fetches and caches an OpenF1 bearer token."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        username: Optional[str],
        password: Optional[str],
        token_url: str = "https://api.openf1.org/token",
        clock: Callable[[], float] = time.time,
    ):
        self._client = client
        self._username = username
        self._password = password
        self._token_url = token_url
        self._clock = clock
        self._token: Optional[CachedToken] = None

    @property
    def is_enabled(self) -> bool:
        """Whether credentials are configured."""
        return bool(self._username and self._password)

    def _is_token_valid(self) -> bool:
        if self._token is None:
            return False
        return self._token.expires_at > self._clock() + TOKEN_BUFFER_SECONDS

    async def get_access_token(self) -> str:
        """
        Return a valid access token, fetching a new one if needed.

        Raises:
            InvalidRequestError: If credentials are not configured
            UpstreamStatusError: If OpenF1 rejects the credentials or rate limits
            UpstreamTransportError: If the token endpoint cannot be reached
        """
        if not self.is_enabled:
            raise InvalidRequestError(
                code=ErrorCode.E1003_INVALID_REQUEST,
                message="OpenF1 credentials not configured",
                suggestion="Set OPENF1_USERNAME and OPENF1_PASSWORD. Historical data does not need them.",
            )

        if self._is_token_valid():
            logger.debug("Using cached OpenF1 access token")
            return self._token.access_token

        logger.info("Fetching new OpenF1 access token")
        return await self._fetch_new_token()

    async def _fetch_new_token(self) -> str:
        label = "Failed to authenticate with OpenF1"
        try:
            response = await self._client.post(
                self._token_url,
                data={"username": self._username, "password": self._password},
            )
        except httpx.TransportError as e:
            raise UpstreamTransportError(label, reason=str(e)) from e

        if response.status_code == 401:
            raise auth_error("Invalid OpenF1 credentials")
        if response.is_error:
            raise upstream_status_error(label, response.status_code)

        payload = response.json()
        expires_in = int(payload.get("expires_in", 3600))
        self._token = CachedToken(
            access_token=payload["access_token"],
            expires_at=self._clock() + expires_in,
        )
        logger.info(f"Authenticated with OpenF1, token expires in {expires_in}s")
        return self._token.access_token

    def invalidate(self) -> None:
        """Drop the cached token (e.g. after a 401)."""
        logger.info("Invalidating cached OpenF1 token")
        self._token = None
