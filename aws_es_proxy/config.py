"""
Proxy configuration.

Values come from CLI flags with environment-variable fallbacks and are frozen
once the proxy starts.
"""

import re
from dataclasses import dataclass
from urllib.parse import urlsplit

from aws_es_proxy.errors import ConfigurationError

# ─── CONSTANTS ───────────────────────────────────────────────────────────────

SERVICE = "es"
DEFAULT_BIND_ADDRESS = "127.0.0.1"
DEFAULT_PORT = 9200
DEFAULT_LIMIT = "10000kb"
DEFAULT_TIMEOUT = 60.0

REGION_PATTERN = re.compile(r"\.([^.]+)\.es\.amazonaws\.com\.?")
LIMIT_PATTERN = re.compile(r"^\s*((?:-|\+)?(?:\d+(?:\.\d*)?|\.\d+))\s*(b|kb|mb|gb|tb|pb)?\s*$", re.IGNORECASE)
LIMIT_UNITS = {"b": 1, "kb": 1 << 10, "mb": 1 << 20, "gb": 1 << 30, "tb": 1 << 40, "pb": 1 << 50}

REGION_ERROR = "region cannot be parsed from endpoint address, either the endpoint must end in .<region>.es.amazonaws.com or --region should be provided as an argument"


# ─── HELPERS ─────────────────────────────────────────────────────────────────


def infer_region(endpoint: str) -> str | None:
    """Pull the region out of an `*.<region>.es.amazonaws.com` endpoint"""
    match = REGION_PATTERN.search(endpoint)
    return match.group(1) if match else None


def normalize_target(endpoint: str) -> str:
    """Prefix the endpoint with https:// unless it already names a scheme"""
    endpoint = endpoint.strip()
    if not re.match(r"^https?://", endpoint):
        endpoint = "https://" + endpoint
    return endpoint.rstrip("/")


def parse_limit(value: str | int) -> int:
    """
    Parse a human readable byte size such as "10000kb" or "1.5mb" into bytes.
    Bare numbers are bytes. Units are base 1024.
    """
    if isinstance(value, int):
        if value < 0:
            raise ConfigurationError(f"invalid request limit: {value}")
        return value

    match = LIMIT_PATTERN.match(str(value))
    if not match:
        raise ConfigurationError(f"invalid request limit: {value!r}")

    amount = float(match.group(1))
    unit = (match.group(2) or "b").lower()
    size = int(amount * LIMIT_UNITS[unit])
    if size < 0:
        raise ConfigurationError(f"invalid request limit: {value!r}")
    return size


DEFAULT_LIMIT_BYTES = parse_limit(DEFAULT_LIMIT)


# ─── CONFIG ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ProxyConfig:
    """Configuration for one proxy process"""

    target: str
    region: str
    bind_address: str = DEFAULT_BIND_ADDRESS
    port: int = DEFAULT_PORT
    service: str = SERVICE
    limit: int = DEFAULT_LIMIT_BYTES
    health_path: str | None = None
    auth_user: str | None = None
    auth_password: str | None = None
    profile: str | None = None
    timeout: float = DEFAULT_TIMEOUT

    @property
    def host(self) -> str:
        """Upstream host as sent in the Host header (port kept only when non-default)"""
        parts = urlsplit(self.target)
        if not parts.hostname:
            raise ConfigurationError(f"cannot parse host from endpoint: {self.target}")
        default_port = 443 if parts.scheme == "https" else 80
        if parts.port and parts.port != default_port:
            return f"{parts.hostname}:{parts.port}"
        return parts.hostname

    @property
    def basic_auth_enabled(self) -> bool:
        return bool(self.auth_user and self.auth_password)

    @classmethod
    def from_options(
        cls,
        endpoint: str | None,
        region: str | None = None,
        bind_address: str = DEFAULT_BIND_ADDRESS,
        port: int = DEFAULT_PORT,
        limit: str | int = DEFAULT_LIMIT,
        health_path: str | None = None,
        auth_user: str | None = None,
        auth_password: str | None = None,
        profile: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> "ProxyConfig":
        """Validate raw option values and build the config"""
        if not endpoint:
            raise ConfigurationError("an Elasticsearch cluster endpoint is required")

        region = region or infer_region(endpoint)
        if not region:
            raise ConfigurationError(REGION_ERROR)

        try:
            port = int(port)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"invalid port: {port!r}") from exc

        try:
            timeout = float(timeout)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"invalid timeout: {timeout!r}") from exc

        config = cls(
            target=normalize_target(endpoint),
            region=region,
            bind_address=bind_address,
            port=port,
            limit=parse_limit(limit),
            health_path=health_path or None,
            auth_user=auth_user or None,
            auth_password=auth_password or None,
            profile=profile or None,
            timeout=timeout,
        )
        config.host  # raises ConfigurationError on an unparseable endpoint
        return config
