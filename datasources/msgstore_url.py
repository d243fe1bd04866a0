from __future__ import annotations

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 7754

API_STATUS = "api/status/"
API_TIME = "api/time/"
API_HEADERS_SINCE = "api/header/list/since/"


def base_for(host: str | None, port: int | None = None) -> str:
    """Return ``http://host:port/`` for a message store node."""
    return f"http://{host or DEFAULT_HOST}:{int(port or DEFAULT_PORT)}/"


def normalize_base(base_url: str) -> str:
    # every API path is relative, so the base must end with a slash
    return base_url if base_url.endswith("/") else base_url + "/"


def status_url(base: str) -> str:
    return normalize_base(base) + API_STATUS


def time_url(base: str) -> str:
    return normalize_base(base) + API_TIME


def headers_since_url(base: str, since: int) -> str:
    """Timestamps travel as decimal Unix seconds."""
    return f"{normalize_base(base)}{API_HEADERS_SINCE}{int(since)}"
