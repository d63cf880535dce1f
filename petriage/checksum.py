from __future__ import annotations

import struct
from typing import Optional


def compute_checksum(data, checksum_offset: Optional[int] = None) -> int:
    """
    PE image checksum, bit-exact with CheckSumMappedFile.

    Sums little-endian 16-bit words (one zero byte pads an odd length), folds
    carries back into the low 16 bits and adds the unpadded length. The four
    bytes at ``checksum_offset`` count as zero when they lie inside ``data``.
    """
    length = len(data)
    buf = bytearray(data)
    if checksum_offset is not None and 0 <= checksum_offset and checksum_offset + 4 <= length:
        buf[checksum_offset : checksum_offset + 4] = b"\x00\x00\x00\x00"
    if length % 2:
        buf.append(0)

    total = sum(struct.unpack_from(f"<{len(buf) // 2}H", buf))
    while total >> 16:
        total = (total & 0xFFFF) + (total >> 16)
    return (total + length) & 0xFFFFFFFF
