"""Pooled HTTP sessions for talking to a message store node.

The node only serves small JSON documents over GET, so retries are limited to
idempotent reads and the pool is sized for a handful of concurrent callers.
"""

import threading
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

USER_AGENT = "MsgHeaderCache/1.0"
RETRY_STATUSES = (429, 500, 502, 503, 504)

_session_local = threading.local()


def _new_session(retries: int = 2) -> requests.Session:
    s = requests.Session()
    retry = Retry(
        total=retries,
        connect=retries,
        read=retries,
        backoff_factor=0.3,
        status_forcelist=list(RETRY_STATUSES),
        allowed_methods=["GET"],
        # let the client turn the final 5xx into MessageStoreAPIError
        raise_on_status=False,
    )
    adapter = HTTPAdapter(pool_connections=4, pool_maxsize=16, max_retries=retry)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    s.headers.update({
        "User-Agent": USER_AGENT,
        "Accept": "application/json",
        "Accept-Encoding": "gzip, deflate",
    })
    return s


def get_shared_session() -> requests.Session:
    """One pooled session per thread; requests.Session is not thread-safe."""
    s = getattr(_session_local, "session", None)
    if s is None:
        s = _new_session()
        _session_local.session = s
    return s


def close_shared_session():
    """Close this thread's session, if any; the next call builds a fresh one."""
    s = getattr(_session_local, "session", None)
    if s is not None:
        s.close()
        _session_local.session = None
