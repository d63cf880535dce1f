from __future__ import annotations

import struct
from typing import Optional, Tuple

from petriage.errors import DataOutOfBoundsError

# Every helper accepts any buffer supporting len(), slicing and struct.unpack_from:
# bytes, bytearray, memoryview or a read-only mmap.


def u16(data, off: int) -> Optional[int]:
    if off < 0 or off + 2 > len(data):
        return None
    return struct.unpack_from("<H", data, off)[0]


def u32(data, off: int) -> Optional[int]:
    if off < 0 or off + 4 > len(data):
        return None
    return struct.unpack_from("<I", data, off)[0]


def u64(data, off: int) -> Optional[int]:
    if off < 0 or off + 8 > len(data):
        return None
    return struct.unpack_from("<Q", data, off)[0]


def read_bytes(data, off: int, size: int) -> Optional[bytes]:
    if off < 0 or size < 0 or off + size > len(data):
        return None
    return bytes(data[off : off + size])


def unpack_at(data, st: struct.Struct, off: int) -> Tuple:
    """Unpack ``st`` at ``off`` or raise DataOutOfBoundsError."""
    if off < 0 or off + st.size > len(data):
        raise DataOutOfBoundsError(
            "Structure extends beyond the end of the data.",
            offset=off,
            size=st.size,
            data_size=len(data),
        )
    return st.unpack_from(data, off)


def safe_ascii(b: bytes) -> str:
    return b.split(b"\x00", 1)[0].decode("ascii", errors="replace")


def read_c_string(data, off: int, *, max_len: int = 512) -> Optional[str]:
    if off < 0 or off >= len(data):
        return None
    end = min(len(data), off + max_len)
    chunk = bytes(data[off:end])
    nul = chunk.find(b"\x00")
    if nul == -1:
        return None
    return chunk[:nul].decode("ascii", errors="replace")


def read_utf16le_zstring(data, off: int, *, max_chars: int = 512) -> Tuple[Optional[str], int]:
    """
    Read UTF-16LE null-terminated string starting at off.
    Returns (string_without_null, bytes_consumed_including_null).
    """
    if off < 0 or off >= len(data):
        return None, 0
    end = min(len(data), off + max_chars * 2)
    i = off
    while i + 1 < end:
        if data[i] == 0 and data[i + 1] == 0:
            raw = bytes(data[off:i])
            return raw.decode("utf-16le", errors="replace"), (i + 2) - off
        i += 2
    return None, 0


def align4(x: int) -> int:
    return (x + 3) & ~3


def align8(x: int) -> int:
    return (x + 7) & ~7


def align_up(x: int, alignment: int) -> int:
    if alignment <= 0:
        return x
    return ((x + alignment - 1) // alignment) * alignment
