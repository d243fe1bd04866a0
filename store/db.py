"""
Ordered key-value store for the message header cache.

Handles database initialization and the three primitives the cache is built
on: point reads, atomic write batches and ordered range scans.
"""

import logging
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from sqlalchemy import and_, create_engine, func
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from core.errors import StorageError, StorageOpenError, StorageWriteError
from .models import Base, KVEntry

DB_FILENAME = "headers.db"

PUT = "put"
DELETE = "delete"


class WriteBatch:
    """Ordered list of puts and deletes applied in a single transaction."""

    def __init__(self):
        self._ops: List[Tuple[str, bytes, Optional[bytes]]] = []

    def put(self, key: bytes, value: bytes):
        self._ops.append((PUT, bytes(key), bytes(value)))

    def delete(self, key: bytes):
        self._ops.append((DELETE, bytes(key), None))

    def __len__(self) -> int:
        return len(self._ops)

    def __iter__(self) -> Iterator[Tuple[str, bytes, Optional[bytes]]]:
        return iter(self._ops)


class KeyValueStore:
    """Byte-keyed store with lexicographic range iteration, backed by SQLite."""

    def __init__(self, path: str):
        """Initialize the store for the directory at ``path``."""
        self.logger = logging.getLogger(__name__)
        self.path = Path(path)
        self.db_path = self.path / DB_FILENAME
        self.db_url = f"sqlite:///{self.db_path}"

        self.engine = None
        self.SessionLocal = None

    def initialize_database(self):
        """Create the store directory, the engine and the table."""
        try:
            self.logger.info(f"Opening key-value store at {self.db_path}")
            self.path.mkdir(parents=True, exist_ok=True)

            self.engine = create_engine(
                self.db_url,
                echo=False,
                pool_pre_ping=True,
                connect_args={"check_same_thread": False, "timeout": 30},
            )
            self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
            Base.metadata.create_all(bind=self.engine)

            self.logger.info("Key-value store opened successfully")

        except (SQLAlchemyError, OSError) as e:
            self.logger.error(f"Key-value store initialization failed: {e}")
            self.engine = None
            self.SessionLocal = None
            raise StorageOpenError(f"cannot open store at {self.path}: {e}") from e

    @property
    def is_open(self) -> bool:
        return self.SessionLocal is not None

    def get_session(self) -> Session:
        """Get a new database session."""
        if not self.SessionLocal:
            raise StorageError("Key-value store is not open")
        return self.SessionLocal()

    def get(self, key: bytes) -> Optional[bytes]:
        """Return the value stored under ``key`` or None."""
        session = self.get_session()
        try:
            entry = session.query(KVEntry).filter(KVEntry.key == bytes(key)).first()
            return bytes(entry.value) if entry is not None else None

        except SQLAlchemyError as e:
            self.logger.error(f"Failed to read key {bytes(key).hex()}: {e}")
            raise StorageError(f"read failed: {e}") from e
        finally:
            session.close()

    def has(self, key: bytes) -> bool:
        return self.get(key) is not None

    def write(self, batch: WriteBatch):
        """Apply every operation of ``batch`` or none of them."""
        if not len(batch):
            return

        session = self.get_session()
        try:
            for op, key, value in batch:
                self._apply(session, op, key, value)
            session.commit()

        except SQLAlchemyError as e:
            session.rollback()
            self.logger.error(f"Failed to write batch of {len(batch)} operations: {e}")
            raise StorageWriteError(f"batch write failed: {e}") from e
        finally:
            session.close()

    def _apply(self, session: Session, op: str, key: bytes, value: Optional[bytes]):
        if op == PUT:
            stmt = sqlite_insert(KVEntry).values(key=key, value=value)
            stmt = stmt.on_conflict_do_update(
                index_elements=[KVEntry.key],
                set_={"value": stmt.excluded.value},
            )
            session.execute(stmt)
        elif op == DELETE:
            session.query(KVEntry).filter(KVEntry.key == key).delete(synchronize_session=False)
        else:
            raise ValueError(f"unknown batch operation {op!r}")

    def iterate(self, start: bytes, limit: bytes) -> List[Tuple[bytes, bytes]]:
        """Return ``(key, value)`` pairs with ``start <= key < limit`` in key order."""
        session = self.get_session()
        try:
            rows = (
                session.query(KVEntry.key, KVEntry.value)
                .filter(and_(KVEntry.key >= bytes(start), KVEntry.key < bytes(limit)))
                .order_by(KVEntry.key)
                .all()
            )
            return [(bytes(k), bytes(v)) for k, v in rows]

        except SQLAlchemyError as e:
            self.logger.error(f"Failed to scan range {bytes(start).hex()}..{bytes(limit).hex()}: {e}")
            raise StorageError(f"range scan failed: {e}") from e
        finally:
            session.close()

    def count(self, start: bytes, limit: bytes, key_length: Optional[int] = None) -> int:
        """Count keys in ``[start, limit)``, optionally only those of ``key_length`` bytes."""
        session = self.get_session()
        try:
            query = session.query(func.count(KVEntry.key)).filter(
                and_(KVEntry.key >= bytes(start), KVEntry.key < bytes(limit))
            )
            if key_length is not None:
                query = query.filter(func.length(KVEntry.key) == key_length)
            return int(query.scalar() or 0)

        except SQLAlchemyError as e:
            self.logger.error(f"Failed to count range: {e}")
            raise StorageError(f"count failed: {e}") from e
        finally:
            session.close()

    def get_database_size_mb(self) -> float:
        """Get database file size in MB."""
        if self.db_path.exists():
            return self.db_path.stat().st_size / (1024 * 1024)
        return 0.0

    def close(self):
        """Dispose the engine; safe to call more than once."""
        if getattr(self, "engine", None):
            self.engine.dispose()
            self.logger.info(f"Key-value store at {self.db_path} closed")
        self.engine = None
        self.SessionLocal = None
