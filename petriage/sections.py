from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from petriage.constants import SECTION_HEADER_SIZE, SectionCharacteristics
from petriage.errors import DataOutOfBoundsError, RVAOutOfRangeError
from petriage.reader import align_up, safe_ascii

_SECTION_HEADER = struct.Struct("<8sIIIIIIHHI")

# Loaders round PointerToRawData down to 512 bytes whenever FileAlignment >= 512.
FILE_ALIGNMENT_HARDCODED_VALUE = 0x200
PAGE_SIZE = 0x1000


@dataclass
class Section:
    name: str = ""
    virtual_size: int = 0
    virtual_address: int = 0
    size_of_raw_data: int = 0
    pointer_to_raw_data: int = 0
    pointer_to_relocations: int = 0
    pointer_to_line_numbers: int = 0
    number_of_relocations: int = 0
    number_of_line_numbers: int = 0
    characteristics: int = 0
    entropy: Optional[float] = None

    @property
    def flags(self) -> SectionCharacteristics:
        return SectionCharacteristics(self.characteristics)

    @property
    def is_executable(self) -> bool:
        return bool(self.characteristics & SectionCharacteristics.MEM_EXECUTE)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "virtual_size": self.virtual_size,
            "virtual_address": self.virtual_address,
            "raw_size": self.size_of_raw_data,
            "raw_ptr": self.pointer_to_raw_data,
            "characteristics": self.characteristics,
            "executable": self.is_executable,
            "entropy": self.entropy,
        }


def parse_section_table(data, sect_off: int, number_of_sections: int) -> List[Section]:
    """
    Decode up to ``number_of_sections`` headers at ``sect_off``.
    Stops quietly at the end of the data; callers compare the count.
    """
    sections: List[Section] = []
    for i in range(number_of_sections):
        sh_off = sect_off + i * SECTION_HEADER_SIZE
        if sh_off < 0 or sh_off + SECTION_HEADER_SIZE > len(data):
            break
        raw_name, *rest = _SECTION_HEADER.unpack_from(data, sh_off)
        sections.append(Section(safe_ascii(raw_name), *rest))
    return sections


class AddressTranslator:
    """
    Maps RVAs to file offsets. Ownership is decided by containment, so the
    section list may be in any order and may overlap; the first match in
    on-disk order wins.
    """

    def __init__(
        self,
        sections: List[Section],
        *,
        section_alignment: int = 0,
        file_alignment: int = 0,
        size_of_headers: int = 0,
        data_size: int = 0,
    ) -> None:
        self.sections = sections
        self.section_alignment = section_alignment
        self.file_alignment = file_alignment
        self.size_of_headers = size_of_headers
        self.data_size = data_size

    def adjust_file_alignment(self, ptr: int) -> int:
        if self.file_alignment < FILE_ALIGNMENT_HARDCODED_VALUE:
            return ptr
        return (ptr // FILE_ALIGNMENT_HARDCODED_VALUE) * FILE_ALIGNMENT_HARDCODED_VALUE

    def adjust_section_alignment(self, va: int) -> int:
        alignment = self.section_alignment
        if alignment < PAGE_SIZE:
            alignment = self.file_alignment
        if alignment and va % alignment:
            return alignment * (va // alignment)
        return va

    def section_span(self, section: Section) -> int:
        size = section.virtual_size or section.size_of_raw_data
        return align_up(size, self.section_alignment)

    def section_for_rva(self, rva: int) -> Optional[Section]:
        for s in self.sections:
            start = self.adjust_section_alignment(s.virtual_address)
            span = self.section_span(s)
            if span <= 0:
                continue
            if start <= rva < start + span:
                return s
        return None

    def rva_to_offset(self, rva: int) -> int:
        section = self.section_for_rva(rva)
        if section is not None:
            delta = rva - self.adjust_section_alignment(section.virtual_address)
            off = self.adjust_file_alignment(section.pointer_to_raw_data) + delta
        elif not self.sections or rva < self.size_of_headers:
            off = rva
        else:
            raise RVAOutOfRangeError("RVA is not inside any section or the headers.", rva=rva)

        if off < 0 or off >= self.data_size:
            raise DataOutOfBoundsError(
                "RVA maps outside the file.", rva=rva, offset=off, data_size=self.data_size
            )
        return off
