"""Configuration management for the F1 MCP server.

Settings are read from the process environment (after loading a ``.env``
file, if present) with defaults suitable for a local stdio server.
"""
import os
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

from dotenv import load_dotenv

from f1_mcp.cache import TTLClass


class TransportMode(Enum):
    """How the MCP server is exposed."""

    STDIO = "stdio"
    SSE = "sse"
    HTTP = "http"


def parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("true", "1")


def parse_number(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    try:
        return type(default)(value)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """Immutable server settings."""

    transport: TransportMode = TransportMode.STDIO
    host: str = "0.0.0.0"
    port: int = 3000

    log_level: str = "INFO"
    log_format: str = "text"

    cache_enabled: bool = True
    cache_ttl: float = 300.0
    live_cache_ttl: float = 10.0

    openf1_base_url: str = "https://api.openf1.org/v1"
    ergast_base_url: str = "https://api.jolpi.ca/ergast/f1"
    openf1_token_url: str = "https://api.openf1.org/token"
    http_timeout: float = 15.0
    max_retries: int = 2

    metrics_enabled: bool = True

    openf1_username: Optional[str] = None
    openf1_password: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read from. Defaults to os.environ after
                loading a .env file.

        Returns:
            Settings instance

        Raises:
            ValueError: If F1_MCP_TRANSPORT names an unknown transport
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        # Setting PORT alone selects the HTTP transport
        default_transport = "http" if environ.get("PORT") else "stdio"
        transport_name = environ.get("F1_MCP_TRANSPORT", default_transport).strip().lower()
        try:
            transport = TransportMode(transport_name)
        except ValueError:
            valid = ", ".join(mode.value for mode in TransportMode)
            raise ValueError(
                f"Unknown F1_MCP_TRANSPORT: {transport_name}. Valid transports are: {valid}"
            ) from None

        return cls(
            transport=transport,
            host=environ.get("HOST", cls.host),
            port=parse_number(environ.get("PORT"), cls.port),
            log_level=environ.get("F1_MCP_LOG_LEVEL", cls.log_level).upper(),
            log_format=environ.get("F1_MCP_LOG_FORMAT", cls.log_format).lower(),
            cache_enabled=parse_bool(environ.get("CACHE_ENABLED"), cls.cache_enabled),
            cache_ttl=parse_number(environ.get("CACHE_TTL"), cls.cache_ttl),
            live_cache_ttl=parse_number(environ.get("LIVE_CACHE_TTL"), cls.live_cache_ttl),
            openf1_base_url=environ.get("OPENF1_BASE_URL", cls.openf1_base_url).rstrip("/"),
            ergast_base_url=environ.get(
                "ERGAST_BASE_URL", environ.get("FASTF1_BASE_URL", cls.ergast_base_url)
            ).rstrip("/"),
            openf1_token_url=environ.get("OPENF1_TOKEN_URL", cls.openf1_token_url),
            http_timeout=parse_number(environ.get("F1_MCP_HTTP_TIMEOUT"), cls.http_timeout),
            max_retries=parse_number(environ.get("F1_MCP_MAX_RETRIES"), cls.max_retries),
            metrics_enabled=parse_bool(environ.get("F1_MCP_METRICS_ENABLED"), cls.metrics_enabled),
            openf1_username=environ.get("OPENF1_USERNAME") or None,
            openf1_password=environ.get("OPENF1_PASSWORD") or None,
        )

    def ttl_seconds(self, ttl_class: TTLClass) -> float:
        """Resolve a TTLClass to seconds."""
        return self.live_cache_ttl if ttl_class is TTLClass.LIVE else self.cache_ttl
