"""
Database models for the message header cache.

The cache needs nothing more than an ordered byte-keyed table: SQLite compares
BLOB keys with ``memcmp`` so the primary key index gives lexicographic range
scans for free.
"""

from sqlalchemy import Column, LargeBinary
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class KVEntry(Base):
    """One key/value pair of the ordered store."""

    __tablename__ = 'kv_entries'

    key = Column(LargeBinary, primary_key=True)
    value = Column(LargeBinary, nullable=False)

    def __repr__(self):
        return f"<KVEntry(key={self.key.hex()}, size={len(self.value)})>"
