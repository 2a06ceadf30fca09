import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional
from urllib.parse import urlparse

from chat_proxy.vars import (
    DEBUG_ENV_KEYS,
    DEFAULT_API_PREFIX,
    DEFAULT_API_URL,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_PROXY_TIMEOUT,
    DEFAULT_STATIC_FILES_PATH,
    SERVICE_NAME,
)


class ConfigError(ValueError):
    """Raised when the process configuration is unusable; aborts startup."""


def _parse_bool(raw: Optional[str]) -> bool:
    return (raw or "").strip().lower() in ("1", "true", "yes", "on")


def _parse_port(raw: str) -> int:
    try:
        port = int(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"PORT must be an integer, got {raw!r}")
    if not 0 < port < 65536:
        raise ConfigError(f"PORT must be between 1 and 65535, got {port}")
    return port


def _parse_timeout(raw: str) -> float:
    try:
        timeout = float(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"PROXY_TIMEOUT must be a number, got {raw!r}")
    if timeout <= 0:
        raise ConfigError(f"PROXY_TIMEOUT must be positive, got {timeout}")
    return timeout


def _parse_api_url(raw: str) -> str:
    api_url = (raw or "").strip().rstrip("/")
    if not api_url:
        raise ConfigError("API_URL must not be empty")
    parsed = urlparse(api_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigError(f"API_URL must be an absolute http(s) URL, got {raw!r}")
    return api_url


def _normalize_prefix(raw: str) -> str:
    prefix = "/" + (raw or "").strip().strip("/")
    if prefix == "/":
        raise ConfigError("API_PREFIX must not be empty or '/'")
    return prefix


@dataclass(frozen=True)
class ProxyConfig:
    """
    Process-wide settings, built once at startup and passed explicitly to the
    router, the API proxy and the static file server.
    """

    api_url: str = DEFAULT_API_URL
    static_root: Path = Path(DEFAULT_STATIC_FILES_PATH)
    host: str = DEFAULT_HOST
    port: int = int(DEFAULT_PORT)
    api_prefix: str = DEFAULT_API_PREFIX
    health_path: str = "/health"
    debug_path: str = "/debug"
    index_file: str = "index.html"
    proxy_timeout: float = float(DEFAULT_PROXY_TIMEOUT)
    enable_debug_endpoint: bool = False
    service_name: str = SERVICE_NAME
    environment: Mapping[str, Optional[str]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ProxyConfig":
        """Build the configuration from environment variables.

        Raises ConfigError for values that would only fail later at runtime.
        """
        env = os.environ if environ is None else environ
        return cls(
            api_url=_parse_api_url(env.get("API_URL", DEFAULT_API_URL)),
            static_root=Path(env.get("STATIC_FILES_PATH", DEFAULT_STATIC_FILES_PATH)),
            host=env.get("HOST", DEFAULT_HOST),
            port=_parse_port(env.get("PORT", DEFAULT_PORT)),
            api_prefix=_normalize_prefix(env.get("API_PREFIX", DEFAULT_API_PREFIX)),
            proxy_timeout=_parse_timeout(
                env.get("PROXY_TIMEOUT", DEFAULT_PROXY_TIMEOUT)
            ),
            enable_debug_endpoint=_parse_bool(env.get("ENABLE_DEBUG_ENDPOINT")),
            service_name=env.get("SERVICE_NAME", SERVICE_NAME),
            environment=MappingProxyType({k: env.get(k) for k in DEBUG_ENV_KEYS}),
        )

    def debug_snapshot(self) -> dict:
        """Effective upstream plus the raw overrides it was derived from."""
        return {
            "API_SERVER_URL": self.api_url,
            "env_API_URL": self.environment.get("API_URL"),
            "APP_ENV": self.environment.get("APP_ENV"),
            "PORT": self.environment.get("PORT"),
        }
