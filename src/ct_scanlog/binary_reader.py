"""Sequential reader for TLS-style binary structures (RFC 6962 leaves)."""

from enum import Enum
from typing import Union


class Endianness(Enum):
    BIG = "big"
    LITTLE = "little"


class DataType(Enum):
    UINT = "uint"
    BYTES = "bytes"


class BinaryReader:
    """Reads unsigned integers and byte strings from a buffer, front to back."""

    def __init__(self, data: bytes, endianness: Endianness = Endianness.BIG):
        self._data = data
        self._offset = 0
        self._endianness = endianness

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    @property
    def offset(self) -> int:
        return self._offset

    def has_bytes(self, count: int) -> bool:
        return self.remaining >= count

    def read(self, data_type: DataType, length: int) -> Union[int, bytes]:
        """
        Read `length` bytes as the given type.

        Raises:
            ValueError: if fewer than `length` bytes remain
        """
        if length < 0:
            raise ValueError(f"Negative read length: {length}")
        if not self.has_bytes(length):
            raise ValueError(
                f"Truncated data: need {length} bytes at offset {self._offset}, "
                f"have {self.remaining}"
            )

        chunk = self._data[self._offset:self._offset + length]
        self._offset += length

        if data_type == DataType.UINT:
            return int.from_bytes(chunk, self._endianness.value)
        return bytes(chunk)

    def read_uint(self, length: int) -> int:
        return int(self.read(DataType.UINT, length))

    def read_bytes(self, length: int) -> bytes:
        return bytes(self.read(DataType.BYTES, length))

    def read_vector(self, length_bytes: int) -> bytes:
        """Read a variable-length opaque vector with a `length_bytes` prefix."""
        return self.read_bytes(self.read_uint(length_bytes))

    def skip(self, count: int) -> None:
        if not self.has_bytes(count):
            raise ValueError(
                f"Cannot skip {count} bytes at offset {self._offset}, "
                f"have {self.remaining}"
            )
        self._offset += count
