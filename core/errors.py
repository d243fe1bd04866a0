"""
Error taxonomy for the message header cache.

Every failure the cache can surface derives from ``HeaderCacheError`` so that
callers can catch the whole family in one place.
"""


class HeaderCacheError(Exception):
    """Base class for all header cache errors."""


class RemoteError(HeaderCacheError):
    """Network, HTTP or decode failure while talking to the message store."""


class UnreachableRemote(RemoteError):
    """The message store could not be reached (or understood) at open time."""


class InvalidConfiguration(HeaderCacheError):
    """Deployment/programmer error detected before any I/O."""


class StorageError(HeaderCacheError):
    """Failure of the local key-value store."""


class StorageOpenError(StorageError):
    """The store could not be opened or created."""


class StorageWriteError(StorageError):
    """A batched write was rejected; nothing from the batch was applied."""


class CorruptRecord(HeaderCacheError):
    """A stored value failed to deserialize into a header."""


class KeyDerivationError(HeaderCacheError, ValueError):
    """A header cannot be mapped to its index keys."""


__all__ = [
    "HeaderCacheError",
    "RemoteError",
    "UnreachableRemote",
    "InvalidConfiguration",
    "StorageError",
    "StorageOpenError",
    "StorageWriteError",
    "CorruptRecord",
    "KeyDerivationError",
]
