"""
Message header record.

A header is the fixed-size metadata block that precedes every message held by
the message store. The cache only interprets the identifier ``I`` and the two
timestamps; the remaining fields are carried through untouched.

Canonical wire form (ASCII)::

    M 0100 <time:8> <expire:8> <I:66> <J:66> <K:66> <r:64> <s:64> <nonce:6>
"""

import string
from dataclasses import dataclass

MAGIC = "M"
VERSION = "0100"

POINT_HEX_LEN = 66
SCALAR_HEX_LEN = 64
NONCE_HEX_LEN = 6
TIMESTAMP_HEX_LEN = 8
MAX_TIMESTAMP = 0xFFFFFFFF

SERIALIZED_LEN = (
    len(MAGIC) + len(VERSION) + 2 * TIMESTAMP_HEX_LEN
    + 3 * POINT_HEX_LEN + 2 * SCALAR_HEX_LEN + NONCE_HEX_LEN
)

_HEX = set(string.hexdigits)


class HeaderParseError(ValueError):
    """Raised when a string is not a canonical serialized header."""


def _is_hex(value: str, length: int) -> bool:
    return len(value) == length and all(c in _HEX for c in value)


@dataclass(frozen=True)
class RawMessageHeader:
    """Immutable message header value."""
    I: str
    time: int
    expire: int
    J: str = "0" * POINT_HEX_LEN
    K: str = "0" * POINT_HEX_LEN
    r: str = "0" * SCALAR_HEX_LEN
    s: str = "0" * SCALAR_HEX_LEN
    nonce: str = "0" * NONCE_HEX_LEN

    def __post_init__(self):
        for name, length in (("I", POINT_HEX_LEN), ("J", POINT_HEX_LEN), ("K", POINT_HEX_LEN),
                             ("r", SCALAR_HEX_LEN), ("s", SCALAR_HEX_LEN),
                             ("nonce", NONCE_HEX_LEN)):
            value = getattr(self, name)
            if not isinstance(value, str) or not _is_hex(value, length):
                raise HeaderParseError(f"{name} must be {length} hex digits")
            # frozen dataclass: normalise case through object.__setattr__
            object.__setattr__(self, name, value.lower())
        for name in ("time", "expire"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise HeaderParseError(f"{name} must be an integer timestamp")
            if not 0 <= value <= MAX_TIMESTAMP:
                raise HeaderParseError(f"{name} {value} is outside the 32-bit range")

    def serialize(self) -> str:
        """Return the canonical string form of this header."""
        return (
            f"{MAGIC}{VERSION}{self.time:08X}{self.expire:08X}"
            f"{self.I}{self.J}{self.K}{self.r}{self.s}{self.nonce}"
        )

    @classmethod
    def deserialize(cls, data) -> "RawMessageHeader":
        """
        Parse a canonical header.

        Accepts ``str`` or ``bytes``. Raises ``HeaderParseError`` on any
        deviation from the canonical form.
        """
        if isinstance(data, (bytes, bytearray)):
            try:
                data = bytes(data).decode("ascii")
            except UnicodeDecodeError as e:
                raise HeaderParseError(f"header is not ASCII: {e}") from e
        if not isinstance(data, str):
            raise HeaderParseError(f"cannot parse header from {type(data).__name__}")
        if len(data) != SERIALIZED_LEN:
            raise HeaderParseError(f"header length {len(data)} != {SERIALIZED_LEN}")
        if not data.startswith(MAGIC + VERSION):
            raise HeaderParseError(f"unsupported header prefix {data[:5]!r}")

        pos = len(MAGIC) + len(VERSION)
        fields = []
        for length in (TIMESTAMP_HEX_LEN, TIMESTAMP_HEX_LEN, POINT_HEX_LEN, POINT_HEX_LEN,
                       POINT_HEX_LEN, SCALAR_HEX_LEN, SCALAR_HEX_LEN, NONCE_HEX_LEN):
            chunk = data[pos:pos + length]
            if not _is_hex(chunk, length):
                raise HeaderParseError(f"non-hex field at offset {pos}")
            fields.append(chunk)
            pos += length

        time_hex, expire_hex, I, J, K, r, s, nonce = fields
        return cls(I=I, time=int(time_hex, 16), expire=int(expire_hex, 16),
                   J=J, K=K, r=r, s=s, nonce=nonce)


__all__ = ["RawMessageHeader", "HeaderParseError", "MAX_TIMESTAMP", "SERIALIZED_LEN"]
