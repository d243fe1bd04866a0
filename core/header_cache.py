"""
Local replica of a message store's header index.

Headers are kept in an ordered key-value store under three keys each, so that
they can be scanned by arrival time, scanned by expiry time, or fetched by
identifier. The replica is refreshed lazily: every lookup first runs a
(throttled, single-flight) synchronization pass that prunes expired headers
and pulls new ones from the remote node.
"""

import logging
import string
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.errors import (
    CorruptRecord,
    InvalidConfiguration,
    KeyDerivationError,
    RemoteError,
    StorageError,
    UnreachableRemote,
)
from core.header import MAX_TIMESTAMP, HeaderParseError, RawMessageHeader
from datasources.msgstore import MessageStoreClient, StatusResponse
from datasources.msgstore_url import base_for
from store.db import KeyValueStore, WriteBatch

# Minimum number of seconds between two synchronization passes.
REFRESH_MIN_DELAY = 10

ARRIVAL_TAG = "D"
EXPIRE_TAG = "E"

IDENTIFIER_HEX_LEN = 66
# tag nibble + 8 timestamp nibbles + identifier + pad nibble
INDEX_KEY_LEN = (1 + 8 + IDENTIFIER_HEX_LEN + 1) // 2

_LOWEST_I = "0" * IDENTIFIER_HEX_LEN
_HIGHEST_I = "F" * IDENTIFIER_HEX_LEN
_HEX = set(string.hexdigits)


@dataclass(frozen=True)
class DBKeys:
    """The derived key triplet of one header."""
    date: bytes
    expire: bytes
    I: bytes


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a synchronization pass that actually ran."""
    server_time: int
    pruned: int
    inserted: int
    # pulled headers that had already expired and were not stored
    skipped: int = 0


def _check_timestamp(tstamp) -> int:
    if isinstance(tstamp, bool) or not isinstance(tstamp, int):
        raise KeyDerivationError(f"timestamp must be an integer, got {tstamp!r}")
    if not 0 <= tstamp <= MAX_TIMESTAMP:
        raise KeyDerivationError(f"timestamp {tstamp} does not fit in 32 bits")
    return tstamp


def identifier_key(I: str) -> bytes:
    """Primary key for identifier ``I`` (the identifier's raw bytes)."""
    if not isinstance(I, str) or len(I) != IDENTIFIER_HEX_LEN or any(c not in _HEX for c in I):
        raise KeyDerivationError(f"identifier is not {IDENTIFIER_HEX_LEN} hex digits: {I!r}")
    return bytes.fromhex(I)


def index_key(tag: str, tstamp: int, I: str, pad: str = "0") -> bytes:
    """Hex-decode ``tag + %08X + I + pad``; fixed width keeps numeric order."""
    _check_timestamp(tstamp)
    if not isinstance(I, str) or len(I) != IDENTIFIER_HEX_LEN or any(c not in _HEX for c in I):
        raise KeyDerivationError(f"identifier is not {IDENTIFIER_HEX_LEN} hex digits: {I!r}")
    return bytes.fromhex(f"{tag}{tstamp:08X}{I}{pad}")


def db_keys(header: RawMessageHeader) -> DBKeys:
    return DBKeys(
        date=index_key(ARRIVAL_TAG, header.time, header.I),
        expire=index_key(EXPIRE_TAG, header.expire, header.I),
        I=identifier_key(header.I),
    )


def scan_range(tag: str, since: int) -> Tuple[bytes, bytes]:
    """Key range covering every ``tag`` index entry with timestamp >= ``since``."""
    return (
        index_key(tag, since, _LOWEST_I),
        index_key(tag, MAX_TIMESTAMP, _HIGHEST_I, pad="F"),
    )


class HeaderCache:
    """Durable, lazily synchronized cache of message headers."""

    def __init__(self, client: MessageStoreClient, store: KeyValueStore,
                 refresh_min_delay: float = REFRESH_MIN_DELAY,
                 clock: Callable[[], float] = time.time):
        """Wrap an already opened store; use ``open`` to build a cache."""
        self.logger = logging.getLogger(__name__)
        self.client = client
        self.store = store
        self.refresh_min_delay = refresh_min_delay
        self._clock = clock

        self._sync_lock = threading.Lock()
        # guards check-then-write sequences and ``count``
        self._write_lock = threading.RLock()

        self.status: Optional[StatusResponse] = None
        self.server_time = 0
        self.last_refresh = 0
        self.count = 0

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    @classmethod
    def open(cls, base_url: str, storage_path: str,
             client: Optional[MessageStoreClient] = None,
             clock: Callable[[], float] = time.time,
             refresh_min_delay: float = REFRESH_MIN_DELAY,
             timeout: float = 30) -> "HeaderCache":
        """
        Open a cache replicating the node at ``base_url`` into ``storage_path``.

        An empty ``storage_path`` is refused: this cache only runs on durable
        storage. The node must answer ``api/status/`` before anything is
        opened on disk.
        """
        log = logging.getLogger(__name__)
        if not storage_path:
            raise InvalidConfiguration("refusing to open empty storage path")
        if refresh_min_delay < 0:
            raise InvalidConfiguration(f"refresh_min_delay must be >= 0, got {refresh_min_delay}")

        if client is None:
            client = MessageStoreClient(base_url, timeout=timeout)
        try:
            status = client.get_status()
        except RemoteError as e:
            log.error(f"Message store at {base_url} is unreachable: {e}")
            raise UnreachableRemote(f"cannot fetch status from {base_url}: {e}") from e

        store = KeyValueStore(str(storage_path))
        store.initialize_database()

        cache = cls(client, store, refresh_min_delay=refresh_min_delay, clock=clock)
        cache.status = status
        try:
            start, limit = scan_range(EXPIRE_TAG, 0)
            cache.count = store.count(start, limit, key_length=INDEX_KEY_LEN)
        except StorageError:
            store.close()
            raise

        log.info(f"Opened header cache at {storage_path}, found {cache.count} message headers")
        return cache

    @classmethod
    def from_config(cls, config: Dict[str, Any],
                    client: Optional[MessageStoreClient] = None,
                    clock: Callable[[], float] = time.time) -> "HeaderCache":
        """Open a cache from the ``msgstore`` and ``cache`` configuration sections."""
        remote_cfg = config.get('msgstore', {})
        cache_cfg = config.get('cache', {})

        base_url = remote_cfg.get('base_url') or base_for(remote_cfg.get('host'), remote_cfg.get('port'))
        return cls.open(
            base_url,
            cache_cfg.get('path', ''),
            client=client,
            clock=clock,
            refresh_min_delay=cache_cfg.get('refresh_min_delay_seconds', REFRESH_MIN_DELAY),
            timeout=remote_cfg.get('timeout_seconds', 30),
        )

    def close(self):
        """Release the store handle; calling it again is a no-op."""
        if self.store is not None:
            self.store.close()
            self.store = None

    @property
    def closed(self) -> bool:
        return self.store is None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _open_store(self) -> KeyValueStore:
        if self.store is None:
            raise StorageError("header cache is closed")
        return self.store

    # ------------------------------------------------------------------
    # insert / remove
    # ------------------------------------------------------------------

    def insert(self, header: RawMessageHeader) -> bool:
        """
        Store ``header`` under its three keys.

        Returns False without writing when the identifier is already present,
        even if the timestamps differ.
        """
        store = self._open_store()
        keys = db_keys(header)
        with self._write_lock:
            if store.get(keys.I) is not None:
                return False

            value = header.serialize().encode("ascii")
            batch = WriteBatch()
            batch.put(keys.date, value)
            batch.put(keys.expire, value)
            batch.put(keys.I, value)
            store.write(batch)
            self.count += 1
        return True

    def remove(self, header: RawMessageHeader):
        """Delete the triplet of ``header``; absent keys are not an error."""
        store = self._open_store()
        keys = db_keys(header)
        with self._write_lock:
            existed = store.get(keys.I) is not None
            batch = WriteBatch()
            batch.delete(keys.date)
            batch.delete(keys.expire)
            batch.delete(keys.I)
            store.write(batch)
            if existed:
                self.count -= 1

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------

    def find_by_identifier(self, I: str) -> Optional[RawMessageHeader]:
        """Return the header with identifier ``I``, or None if it is not cached."""
        self._open_store()
        key = identifier_key(I)
        self.synchronize()

        value = self._open_store().get(key)
        if value is None:
            return None
        return self._decode(key, value)

    def find_since(self, tstamp: int) -> List[RawMessageHeader]:
        """Headers that arrived at or after ``tstamp``, oldest first."""
        return self._find_range(ARRIVAL_TAG, tstamp)

    def find_expiring_after(self, tstamp: int) -> List[RawMessageHeader]:
        """Headers expiring at or after ``tstamp``, soonest first."""
        return self._find_range(EXPIRE_TAG, tstamp)

    def _find_range(self, tag: str, tstamp: int) -> List[RawMessageHeader]:
        self._open_store()
        start, limit = scan_range(tag, _check_timestamp(tstamp))
        self.synchronize()
        return [self._decode(key, value) for key, value in self._scan(start, limit)]

    def _scan(self, start: bytes, limit: bytes) -> List[Tuple[bytes, bytes]]:
        # primary keys are raw identifiers and may fall inside an index range
        return [
            (key, value)
            for key, value in self._open_store().iterate(start, limit)
            if len(key) == INDEX_KEY_LEN
        ]

    def _decode(self, key: bytes, value: bytes) -> RawMessageHeader:
        try:
            return RawMessageHeader.deserialize(value)
        except HeaderParseError as e:
            self.logger.error(f"Corrupt header stored under key {key.hex()}: {e}")
            raise CorruptRecord(f"retrieved invalid header from database: {e}") from e

    # ------------------------------------------------------------------
    # synchronization
    # ------------------------------------------------------------------

    def _now(self) -> int:
        return int(self._clock())

    def _is_fresh(self, now: int) -> bool:
        # a node clock ahead of ours counts as stale rather than fresh
        return 0 <= now - self.last_refresh < self.refresh_min_delay

    def synchronize(self) -> Optional[SyncResult]:
        """
        Prune expired headers, then pull new ones from the node.

        Returns None when the last pass is recent enough. The freshness check
        runs once without the lock (hot path) and again under it, so callers
        that queued behind a running pass do not repeat it. ``last_refresh``
        only advances when the whole pass succeeds.
        """
        if self._is_fresh(self._now()):
            return None

        with self._sync_lock:
            now = self._now()
            if self._is_fresh(now):
                self.logger.debug("Header cache refreshed by a concurrent caller")
                return None

            server_time = self.client.get_time()
            self.server_time = server_time

            pruned = self._prune_expired(now)

            headers = self.client.get_headers_since(self.last_refresh)
            inserted = 0
            skipped = 0
            for header in headers:
                # same cutoff as the prune step, so nothing it would drop comes back
                if header.expire < now:
                    skipped += 1
                    continue
                if self.insert(header):
                    inserted += 1

            self.last_refresh = server_time
            self.logger.info(
                f"Synchronized header cache: server_time={server_time} "
                f"pruned={pruned} inserted={inserted} skipped_expired={skipped} "
                f"count={self.count}"
            )
            return SyncResult(server_time=server_time, pruned=pruned,
                              inserted=inserted, skipped=skipped)

    def _prune_expired(self, now: int) -> int:
        """Delete every header whose expiry lies before ``now`` in one batch."""
        store = self._open_store()
        start = index_key(EXPIRE_TAG, 0, _LOWEST_I)
        limit = index_key(EXPIRE_TAG, min(max(now, 0), MAX_TIMESTAMP), _LOWEST_I)

        with self._write_lock:
            batch = WriteBatch()
            removed = 0
            for key, value in self._scan(start, limit):
                keys = db_keys(self._decode(key, value))
                batch.delete(keys.date)
                batch.delete(keys.expire)
                batch.delete(keys.I)
                removed += 1

            if removed:
                store.write(batch)
                self.count -= removed
                self.logger.info(f"Dropped {removed} expired message headers")
        return removed

    # ------------------------------------------------------------------
    # statistics
    # ------------------------------------------------------------------

    def stats(self) -> Dict[str, Any]:
        """Cache bookkeeping plus the node status seen at open time."""
        status = self.status
        return {
            'count': self.count,
            'last_refresh': self.last_refresh,
            'server_time': self.server_time,
            'pubkey': status.pubkey if status else None,
            'storage': {
                'messages': status.storage.messages,
                'max_file_size': status.storage.max_file_size,
                'capacity': status.storage.capacity,
                'used': status.storage.used,
            } if status else {},
            'database_size_mb': self.store.get_database_size_mb() if self.store else 0.0,
        }


__all__ = [
    "HeaderCache",
    "SyncResult",
    "DBKeys",
    "db_keys",
    "identifier_key",
    "index_key",
    "scan_range",
    "REFRESH_MIN_DELAY",
    "INDEX_KEY_LEN",
]
