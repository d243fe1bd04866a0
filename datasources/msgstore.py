"""
Message store API client.

Fetches node status, the node clock and header listings from a message store
over HTTP/JSON. Every failure (transport, HTTP status, JSON or schema) is
reported as ``MessageStoreAPIError``.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from core.errors import RemoteError
from core.header import HeaderParseError, RawMessageHeader
from datasources.http import get_shared_session
from datasources.msgstore_url import headers_since_url, status_url, time_url


class MessageStoreAPIError(RemoteError):
    """Custom exception for message store API errors."""
    pass


@dataclass
class StorageStatus:
    messages: int = 0
    max_file_size: int = 0
    capacity: int = 0
    used: int = 0


@dataclass
class StatusResponse:
    """Decoded ``api/status/`` payload."""
    pubkey: str
    storage: StorageStatus


def _require_int(payload: Dict[str, Any], key: str, default: Optional[int] = None) -> int:
    value = payload.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise MessageStoreAPIError(f"field {key!r} is not an integer: {value!r}")
    return value


class MessageStoreClient:
    """Client for a single message store node."""

    def __init__(self, base_url: str, session=None, timeout: float = 30):
        """Initialize the client; ``session`` defaults to the shared pooled session."""
        self.logger = logging.getLogger(__name__)
        self.base_url = base_url
        self.timeout = timeout
        self.session = session

    def _session(self):
        return self.session if self.session is not None else get_shared_session()

    def _make_request(self, url: str) -> Dict[str, Any]:
        """GET ``url`` and return the decoded JSON object."""
        try:
            self.logger.debug(f"Making request to {url}")
            response = self._session().get(url, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            self.logger.error(f"Request failed: {e}")
            raise MessageStoreAPIError(f"API request failed: {e}") from e
        except ValueError as e:
            self.logger.error(f"Failed to parse JSON response: {e}")
            raise MessageStoreAPIError(f"Invalid JSON response: {e}") from e

        if not isinstance(data, dict):
            raise MessageStoreAPIError(f"Expected a JSON object from {url}, got {type(data).__name__}")
        return data

    def get_status(self) -> StatusResponse:
        """Return the node public key and storage figures."""
        data = self._make_request(status_url(self.base_url))
        pubkey = data.get("pubkey")
        storage = data.get("storage")
        if not isinstance(pubkey, str) or not isinstance(storage, dict):
            raise MessageStoreAPIError("status response is missing 'pubkey' or 'storage'")
        return StatusResponse(
            pubkey=pubkey,
            storage=StorageStatus(
                messages=_require_int(storage, "messages", 0),
                max_file_size=_require_int(storage, "max_file_size", 0),
                capacity=_require_int(storage, "capacity", 0),
                used=_require_int(storage, "used", 0),
            ),
        )

    def get_time(self) -> int:
        """Return the node clock in Unix seconds."""
        data = self._make_request(time_url(self.base_url))
        return _require_int(data, "time")

    def get_headers_since(self, since: int) -> List[RawMessageHeader]:
        """
        Return every header the node received at or after ``since``.

        A single unparseable entry fails the whole listing.
        """
        data = self._make_request(headers_since_url(self.base_url, since))
        raw_list = data.get("header_list")
        if raw_list is None:
            raw_list = []
        if not isinstance(raw_list, list):
            raise MessageStoreAPIError("'header_list' is not a list")

        headers = []
        for raw in raw_list:
            try:
                headers.append(RawMessageHeader.deserialize(raw))
            except HeaderParseError as e:
                self.logger.error(f"Rejecting header listing since {since}: {e}")
                raise MessageStoreAPIError(f"error parsing message header: {e}") from e

        self.logger.debug(f"Received {len(headers)} headers since {since}")
        return headers
