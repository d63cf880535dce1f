from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List

from petriage.anomaly import AnomalyKind
from petriage.config import Severity
from petriage.constants import reloc_type_name
from petriage.reader import u16, unpack_at

if TYPE_CHECKING:
    from petriage.file import File

_BASE_RELOCATION = struct.Struct("<II")


@dataclass
class RelocationEntry:
    data: int = 0
    offset: int = 0
    type: int = 0

    @property
    def type_name(self) -> str:
        return reloc_type_name(self.type)


@dataclass
class Relocation:
    virtual_address: int = 0
    size_of_block: int = 0
    entries: List[RelocationEntry] = field(default_factory=list)


def parse_reloc_directory(pe: "File", rva: int, size: int) -> None:
    """Blocks of 16-bit entries: high 4 bits type, low 12 bits page offset."""
    cap = pe.options.max_reloc_entries
    off = pe.rva_to_offset(rva)
    end = min(off + size, pe.size)
    data = pe.data

    relocs: List[Relocation] = []
    total = 0
    capped = False
    while off + _BASE_RELOCATION.size <= end:
        va, block_size = unpack_at(data, _BASE_RELOCATION, off)
        if block_size < _BASE_RELOCATION.size:
            if va or block_size:
                pe.add_anomaly(
                    "Invalid base relocation block size",
                    kind=AnomalyKind.DATA_DIRECTORY,
                    severity=Severity.MEDIUM,
                    virtual_address=va,
                    size_of_block=block_size,
                )
            break

        block = Relocation(virtual_address=va, size_of_block=block_size)
        count = (block_size - _BASE_RELOCATION.size) // 2
        for i in range(count):
            if total >= cap:
                capped = True
                break
            word = u16(data, off + _BASE_RELOCATION.size + i * 2)
            if word is None:
                break
            block.entries.append(RelocationEntry(data=word, offset=word & 0x0FFF, type=word >> 12))
            total += 1
        relocs.append(block)

        if capped:
            pe.add_anomaly(
                f"Relocation entries exceed {cap}, parsing capped",
                kind=AnomalyKind.LIMIT,
                severity=Severity.MEDIUM,
                cap=cap,
            )
            break
        off += block_size

    pe.relocations = relocs
    pe.info.has_reloc = True
