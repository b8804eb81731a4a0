"""Fetch gateway: one upstream GET wrapped with caching and error translation.

Every Data Service query goes through ``FetchGateway.fetch``, so the TTL
policy, retry count and error mapping live only here.
"""
import logging
from typing import Any, Iterable, Mapping, Optional, Tuple, Union
from urllib.parse import quote

import httpx

from f1_mcp.auth import OpenF1TokenProvider
from f1_mcp.cache import MISSING, Cache
from f1_mcp.errors import (
    ErrorCode,
    InvalidRequestError,
    UpstreamStatusError,
    UpstreamTransportError,
    parse_error,
    upstream_status_error,
)
from f1_mcp.metrics import MetricsCollector
from f1_mcp.retry import retry_async

logger = logging.getLogger(__name__)

QueryParams = Union[Mapping[str, Any], Iterable[Tuple[str, Any]]]


def build_url(
    base_url: str,
    path: str,
    params: Optional[QueryParams] = None,
    raw_filters: Optional[str] = None,
) -> str:
    """
    Resolve an upstream request to the single URL string used as its cache key.

    Args:
        base_url: Upstream API root (no trailing slash)
        path: Path below the root, e.g. "sessions" or "2023/1/results.json"
        params: Query parameters; None values are skipped, order is preserved
        raw_filters: Pre-formed OpenF1 filter expressions such as
            "speed>=300&n_gear<=7", appended verbatim

    Returns:
        The fully-qualified URL
    """
    url = f"{base_url}/{path.lstrip('/')}"

    items = params.items() if isinstance(params, Mapping) else (params or ())
    parts = [
        f"{quote(str(key), safe='')}={quote(str(value), safe='')}"
        for key, value in items
        if value is not None and value != ""
    ]
    if raw_filters:
        parts.append(raw_filters.strip("&"))

    if parts:
        url += "?" + "&".join(parts)
    return url


class FetchGateway:
    """Cached HTTP GET against the upstream F1 APIs."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        cache: Cache,
        metrics: MetricsCollector,
        max_retries: int = 2,
        cache_enabled: bool = True,
        token_provider: Optional[OpenF1TokenProvider] = None,
    ):
        self._client = client
        self._cache = cache
        self._metrics = metrics
        self._max_retries = max_retries
        self._cache_enabled = cache_enabled
        self._token_provider = token_provider

    @property
    def cache(self) -> Cache:
        return self._cache

    async def fetch(
        self,
        url: str,
        error_label: str,
        use_cache: bool = True,
        ttl: Optional[float] = None,
    ) -> Any:
        """
        Fetch and decode one upstream JSON document.

        A cache hit returns immediately without any network call. On a miss
        the body is fetched, cached under the URL for ``ttl`` seconds and
        returned.

        Args:
            url: Fully-qualified upstream URL (also the cache key)
            error_label: Operation label carried by any raised error
            use_cache: Read and write the cache
            ttl: Entry lifetime in seconds (cache default if None)

        Raises:
            UpstreamStatusError: Upstream answered with a non-2xx status
            UpstreamTransportError: Upstream could not be reached
            UpstreamPayloadError: Body is not valid JSON
        """
        caching = use_cache and self._cache_enabled

        if caching:
            cached = self._cache.get(url)
            if cached is not MISSING:
                logger.debug(f"Cache hit: {url}")
                self._metrics.record_cache_hit()
                return cached
            self._metrics.record_cache_miss()

        data = await retry_async(
            self._get_json, url, error_label, max_retries=self._max_retries
        )

        if caching:
            self._cache.set(url, data, ttl)
        return data

    async def fetch_authenticated(self, url: str, error_label: str) -> Any:
        """
        Fetch with an OpenF1 bearer token, refreshing the token once on 401.

        Responses are never cached.

        Raises:
            InvalidRequestError: No token provider is configured
            UpstreamStatusError: Including a 401 that persists after one refresh
        """
        if self._token_provider is None:
            raise InvalidRequestError(
                code=ErrorCode.E1003_INVALID_REQUEST,
                message="Authenticated OpenF1 access is not configured",
                suggestion="Set OPENF1_USERNAME and OPENF1_PASSWORD.",
            )

        for attempt in range(2):
            token = await self._token_provider.get_access_token()
            try:
                return await self._get_json(
                    url, error_label, headers={"Authorization": f"Bearer {token}"}
                )
            except UpstreamStatusError as e:
                if e.status != 401 or attempt == 1:
                    raise
                logger.warning(f"{error_label}: token rejected, refreshing and retrying once")
                self._token_provider.invalidate()

    async def _get_json(
        self, url: str, error_label: str, headers: Optional[Mapping[str, str]] = None
    ) -> Any:
        logger.debug(f"GET {url}")
        try:
            response = await self._client.get(url, headers=headers)
        except httpx.TransportError as e:
            self._metrics.record_api_call(success=False)
            logger.error(f"{error_label}: {type(e).__name__}: {e}")
            raise UpstreamTransportError(error_label, reason=str(e) or type(e).__name__) from e

        self._metrics.record_api_call(success=not response.is_error)
        if response.is_error:
            logger.warning(f"{error_label}: HTTP {response.status_code} for {url}")
            raise upstream_status_error(error_label, response.status_code)

        try:
            return response.json()
        except ValueError as e:
            logger.error(f"{error_label}: response is not JSON: {e}")
            raise parse_error(error_label, str(e)) from e

    def clear_cache(self) -> None:
        """Drop every cached response and any cached OpenF1 token."""
        self._cache.clear()
        if self._token_provider is not None:
            self._token_provider.invalidate()

    async def aclose(self) -> None:
        await self._client.aclose()
