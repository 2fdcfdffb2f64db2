"""Little-endian cursor over an in-memory D3D file.

Every decoder in this package reads through a single ByteReader so that
section end offsets recorded early in a file can be seeked back to later.
Reads never go past the buffer: any short read raises TruncatedDataError.
"""
import struct
from typing import Iterator, Tuple

from d3d_errors import MalformedFieldError, TruncatedDataError

_U8 = struct.Struct("<B")
_I8 = struct.Struct("<b")
_U16 = struct.Struct("<H")
_I16 = struct.Struct("<h")
_U32 = struct.Struct("<I")
_U64 = struct.Struct("<Q")
_F32 = struct.Struct("<f")
_VEC3 = struct.Struct("<3f")
_VEC4 = struct.Struct("<4f")


class ByteReader:
    """Sequential, seekable reader over a bytes buffer."""

    def __init__(self, data: bytes):
        self._data = bytes(data)
        self._pos = 0

    def __len__(self) -> int:
        return len(self._data)

    def tell(self) -> int:
        return self._pos

    def remaining(self) -> int:
        return len(self._data) - self._pos

    def seek(self, offset: int) -> None:
        """Move to an absolute offset (the end of the buffer is allowed)."""
        if offset < 0 or offset > len(self._data):
            raise TruncatedDataError(
                f"seek to {offset:#X} outside of {len(self._data)} byte buffer",
                offset=self._pos,
            )
        self._pos = offset

    def skip(self, count: int) -> None:
        """Move relative to the current position. Negative counts go back."""
        self.seek(self._pos + count)

    def _take(self, size: int) -> int:
        start = self._pos
        if size < 0 or start + size > len(self._data):
            raise TruncatedDataError(
                f"read of {size} bytes past end of {len(self._data)} byte buffer",
                offset=start,
            )
        self._pos = start + size
        return start

    def read(self, size: int) -> bytes:
        start = self._take(size)
        return self._data[start:start + size]

    def unpack(self, fmt: str) -> Tuple:
        """Unpack one struct group, e.g. ``reader.unpack("<IIf")``."""
        size = struct.calcsize(fmt)
        start = self._take(size)
        return struct.unpack_from(fmt, self._data, start)

    def iter_unpack(self, fmt: str, count: int) -> Iterator[Tuple]:
        """Unpack ``count`` consecutive records of the same layout.

        The whole range is bounds-checked and consumed up front.
        """
        size = struct.calcsize(fmt)
        start = self._take(size * count)
        return struct.iter_unpack(fmt, self._data[start:start + size * count])

    def _read_struct(self, packer: struct.Struct):
        start = self._take(packer.size)
        return packer.unpack_from(self._data, start)

    def read_u8(self) -> int:
        return self._read_struct(_U8)[0]

    def read_i8(self) -> int:
        return self._read_struct(_I8)[0]

    def read_u16(self) -> int:
        return self._read_struct(_U16)[0]

    def read_i16(self) -> int:
        return self._read_struct(_I16)[0]

    def read_u32(self) -> int:
        return self._read_struct(_U32)[0]

    def read_u64(self) -> int:
        return self._read_struct(_U64)[0]

    def read_f32(self) -> float:
        return self._read_struct(_F32)[0]

    def read_vec3(self) -> Tuple[float, float, float]:
        return self._read_struct(_VEC3)

    def read_vec4(self) -> Tuple[float, float, float, float]:
        return self._read_struct(_VEC4)

    def read_magic(self) -> bytes:
        """Read a raw 4-byte tag."""
        return self.read(4)

    def read_fixed_string(self, size: int) -> str:
        """Read ``size`` bytes (not characters) as UTF-8 text."""
        start = self._pos
        raw = self.read(size)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedFieldError(f"invalid UTF-8 string: {e}", offset=start) from e

    def read_section_end(self) -> int:
        """Read a u32 length prefix and return the absolute end it points to.

        The length counts from the start of the prefix itself.
        """
        start = self._pos
        return start + self.read_u32()
