"""
DOS, NT (file + optional) header decoding.

Layouts follow the Microsoft PE/COFF format documentation. All readers check bounds
against the byte source and raise a PEError subclass for unrecoverable
problems; everything else is left to the anomaly pass.
"""

from __future__ import annotations

import struct
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Union

from petriage.constants import (
    ARM64_HYBRID_MACHINES,
    DOS_HEADER_SIZE,
    FILE_HEADER_SIZE,
    IMAGE_DOS_SIGNATURE,
    IMAGE_DOS_ZM_SIGNATURE,
    IMAGE_NT_SIGNATURE,
    LEGACY_SIGNATURES,
    NUMBER_OF_DIRECTORY_ENTRIES,
    PE32_MAGIC,
    PE32P_MAGIC,
    ROM_MAGIC,
    FileCharacteristics,
    dll_characteristics_names,
    file_characteristics_names,
    machine_name,
    subsystem_name,
)
from petriage.errors import (
    HeaderOffsetOutOfRangeError,
    InvalidLegacySignatureError,
    InvalidModernSignatureError,
    InvalidOptionalHeaderMagicError,
    LegacyExecutableSignatureError,
    TruncatedHeaderError,
)
from petriage.reader import read_bytes, u16

_DOS_HEADER = struct.Struct("<14H8x2H20xI")
_FILE_HEADER = struct.Struct("<HHIIIHH")
_OPTIONAL_HEADER32 = struct.Struct("<HBB9I6H4I2H6I")
_OPTIONAL_HEADER64 = struct.Struct("<HBB5IQ2I6H4I2H4Q2I")
_ROM_OPTIONAL_HEADER = struct.Struct("<HBB8I4II")
_DATA_DIRECTORY = struct.Struct("<II")


@dataclass
class DOSHeader:
    magic: int = 0
    bytes_on_last_page: int = 0
    pages_in_file: int = 0
    relocations: int = 0
    size_of_header: int = 0
    min_extra_paragraphs: int = 0
    max_extra_paragraphs: int = 0
    initial_ss: int = 0
    initial_sp: int = 0
    checksum: int = 0
    initial_ip: int = 0
    initial_cs: int = 0
    address_of_relocation_table: int = 0
    overlay_number: int = 0
    oem_identifier: int = 0
    oem_information: int = 0
    address_of_new_exe_header: int = 0


@dataclass
class FileHeader:
    machine: int = 0
    number_of_sections: int = 0
    time_date_stamp: int = 0
    pointer_to_symbol_table: int = 0
    number_of_symbols: int = 0
    size_of_optional_header: int = 0
    characteristics: int = 0

    @property
    def machine_name(self) -> str:
        return machine_name(self.machine)

    @property
    def flags(self) -> FileCharacteristics:
        return FileCharacteristics(self.characteristics)

    @property
    def characteristics_names(self) -> List[str]:
        return file_characteristics_names(self.characteristics)

    @property
    def is_dll(self) -> bool:
        return bool(self.characteristics & FileCharacteristics.DLL)

    @property
    def is_arm64_hybrid(self) -> bool:
        return self.machine in ARM64_HYBRID_MACHINES


@dataclass
class DataDirectory:
    virtual_address: int = 0
    size: int = 0

    @property
    def present(self) -> bool:
        return self.virtual_address != 0 and self.size != 0


@dataclass
class OptionalHeader32:
    magic: int = PE32_MAGIC
    major_linker_version: int = 0
    minor_linker_version: int = 0
    size_of_code: int = 0
    size_of_initialized_data: int = 0
    size_of_uninitialized_data: int = 0
    address_of_entry_point: int = 0
    base_of_code: int = 0
    base_of_data: int = 0
    image_base: int = 0
    section_alignment: int = 0
    file_alignment: int = 0
    major_operating_system_version: int = 0
    minor_operating_system_version: int = 0
    major_image_version: int = 0
    minor_image_version: int = 0
    major_subsystem_version: int = 0
    minor_subsystem_version: int = 0
    win32_version_value: int = 0
    size_of_image: int = 0
    size_of_headers: int = 0
    checksum: int = 0
    subsystem: int = 0
    dll_characteristics: int = 0
    size_of_stack_reserve: int = 0
    size_of_stack_commit: int = 0
    size_of_heap_reserve: int = 0
    size_of_heap_commit: int = 0
    loader_flags: int = 0
    number_of_rva_and_sizes: int = 0
    data_directories: List[DataDirectory] = field(default_factory=list)

    @property
    def subsystem_name(self) -> str:
        return subsystem_name(self.subsystem)

    @property
    def dll_characteristics_names(self) -> List[str]:
        return dll_characteristics_names(self.dll_characteristics)


@dataclass
class OptionalHeader64:
    magic: int = PE32P_MAGIC
    major_linker_version: int = 0
    minor_linker_version: int = 0
    size_of_code: int = 0
    size_of_initialized_data: int = 0
    size_of_uninitialized_data: int = 0
    address_of_entry_point: int = 0
    base_of_code: int = 0
    image_base: int = 0
    section_alignment: int = 0
    file_alignment: int = 0
    major_operating_system_version: int = 0
    minor_operating_system_version: int = 0
    major_image_version: int = 0
    minor_image_version: int = 0
    major_subsystem_version: int = 0
    minor_subsystem_version: int = 0
    win32_version_value: int = 0
    size_of_image: int = 0
    size_of_headers: int = 0
    checksum: int = 0
    subsystem: int = 0
    dll_characteristics: int = 0
    size_of_stack_reserve: int = 0
    size_of_stack_commit: int = 0
    size_of_heap_reserve: int = 0
    size_of_heap_commit: int = 0
    loader_flags: int = 0
    number_of_rva_and_sizes: int = 0
    data_directories: List[DataDirectory] = field(default_factory=list)

    @property
    def subsystem_name(self) -> str:
        return subsystem_name(self.subsystem)

    @property
    def dll_characteristics_names(self) -> List[str]:
        return dll_characteristics_names(self.dll_characteristics)


@dataclass
class RomOptionalHeader:
    magic: int = ROM_MAGIC
    major_linker_version: int = 0
    minor_linker_version: int = 0
    size_of_code: int = 0
    size_of_initialized_data: int = 0
    size_of_uninitialized_data: int = 0
    address_of_entry_point: int = 0
    base_of_code: int = 0
    base_of_data: int = 0
    base_of_bss: int = 0
    gpr_mask: int = 0
    cpr_mask: List[int] = field(default_factory=lambda: [0, 0, 0, 0])
    gp_value: int = 0


OptionalHeader = Union[OptionalHeader32, OptionalHeader64, RomOptionalHeader]


@dataclass
class NtHeader:
    signature: int = 0
    file_header: FileHeader = field(default_factory=FileHeader)
    optional_header: Optional[OptionalHeader] = None


def parse_dos_header(data) -> DOSHeader:
    if len(data) < DOS_HEADER_SIZE:
        raise TruncatedHeaderError(
            "Data is smaller than a DOS header.", data_size=len(data), required=DOS_HEADER_SIZE
        )
    magic = read_bytes(data, 0, 2)
    if magic not in (IMAGE_DOS_SIGNATURE, IMAGE_DOS_ZM_SIGNATURE):
        raise InvalidLegacySignatureError("DOS header magic not found.", magic=magic.hex() if magic else None)

    hdr = DOSHeader(*_DOS_HEADER.unpack_from(data, 0))
    e_lfanew = hdr.address_of_new_exe_header
    if e_lfanew < 4 or e_lfanew + 4 > len(data):
        raise HeaderOffsetOutOfRangeError(
            "e_lfanew points outside file.", e_lfanew=e_lfanew, data_size=len(data)
        )
    return hdr


def _check_nt_signature(data, e_lfanew: int) -> int:
    sig = read_bytes(data, e_lfanew, 4) or b""
    if sig == IMAGE_NT_SIGNATURE:
        return struct.unpack("<I", sig)[0]
    legacy = LEGACY_SIGNATURES.get(sig[:2])
    if legacy is not None:
        raise LegacyExecutableSignatureError(
            f"Not a PE image: {legacy} signature found.", e_lfanew=e_lfanew, signature=sig[:2].decode("ascii")
        )
    raise InvalidModernSignatureError("Missing PE\\0\\0 signature.", e_lfanew=e_lfanew, signature=sig.hex())


def _parse_data_directories(data, off: int, declared: int) -> List[DataDirectory]:
    count = min(declared, NUMBER_OF_DIRECTORY_ENTRIES)
    dirs: List[DataDirectory] = []
    for i in range(count):
        ent_off = off + i * _DATA_DIRECTORY.size
        if ent_off + _DATA_DIRECTORY.size > len(data):
            break
        dirs.append(DataDirectory(*_DATA_DIRECTORY.unpack_from(data, ent_off)))
    return dirs


def parse_optional_header(data, opt_off: int) -> OptionalHeader:
    magic = u16(data, opt_off)
    if magic is None:
        raise TruncatedHeaderError("Optional header magic truncated.", opt_off=opt_off)

    if magic == PE32_MAGIC:
        st, cls = _OPTIONAL_HEADER32, OptionalHeader32
    elif magic == PE32P_MAGIC:
        st, cls = _OPTIONAL_HEADER64, OptionalHeader64
    elif magic == ROM_MAGIC:
        st, cls = _ROM_OPTIONAL_HEADER, RomOptionalHeader
    else:
        raise InvalidOptionalHeaderMagicError(
            "Optional header magic not PE32/PE32+/ROM.", opt_magic=magic, opt_off=opt_off
        )

    if opt_off + st.size > len(data):
        raise TruncatedHeaderError(
            "Optional header truncated.", opt_off=opt_off, required=st.size, data_size=len(data)
        )
    values = st.unpack_from(data, opt_off)

    if cls is RomOptionalHeader:
        head, cpr, gp = values[:11], list(values[11:15]), values[15]
        return RomOptionalHeader(*head, cpr_mask=cpr, gp_value=gp)

    hdr = cls(*values)
    hdr.data_directories = _parse_data_directories(data, opt_off + st.size, hdr.number_of_rva_and_sizes)
    return hdr


def parse_nt_header(data, e_lfanew: int) -> NtHeader:
    signature = _check_nt_signature(data, e_lfanew)

    coff_off = e_lfanew + 4
    if coff_off + FILE_HEADER_SIZE > len(data):
        raise TruncatedHeaderError("COFF header truncated.", coff_off=coff_off)
    file_header = FileHeader(*_FILE_HEADER.unpack_from(data, coff_off))

    optional_header = parse_optional_header(data, coff_off + FILE_HEADER_SIZE)
    return NtHeader(signature=signature, file_header=file_header, optional_header=optional_header)


def header_to_dict(hdr: Any) -> Dict[str, Any]:
    d = asdict(hdr)
    if isinstance(hdr, FileHeader):
        d["machine_name"] = hdr.machine_name
        d["characteristics_names"] = hdr.characteristics_names
        d["is_arm64_hybrid"] = hdr.is_arm64_hybrid
    elif isinstance(hdr, (OptionalHeader32, OptionalHeader64)):
        d["subsystem_name"] = hdr.subsystem_name
        d["dll_characteristics_names"] = hdr.dll_characteristics_names
    return d
