from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from petriage.errors import PEError
from petriage.reader import safe_ascii, unpack_at

if TYPE_CHECKING:
    from petriage.file import File

_COR20_HEADER = struct.Struct("<IHHIIII12I")
_METADATA_ROOT = struct.Struct("<4sHHII")

METADATA_SIGNATURE = b"BSJB"
MAX_VERSION_LENGTH = 255


@dataclass
class COR20Header:
    cb: int = 0
    major_runtime_version: int = 0
    minor_runtime_version: int = 0
    metadata_rva: int = 0
    metadata_size: int = 0
    flags: int = 0
    entry_point_token: int = 0
    resources_rva: int = 0
    resources_size: int = 0
    strong_name_signature_rva: int = 0
    strong_name_signature_size: int = 0
    code_manager_table_rva: int = 0
    code_manager_table_size: int = 0
    vtable_fixups_rva: int = 0
    vtable_fixups_size: int = 0
    export_address_table_jumps_rva: int = 0
    export_address_table_jumps_size: int = 0
    managed_native_header_rva: int = 0
    managed_native_header_size: int = 0


@dataclass
class MetadataHeader:
    signature: int = 0
    major_version: int = 0
    minor_version: int = 0
    reserved: int = 0
    version_length: int = 0
    version: str = ""


@dataclass
class CLRData:
    header: COR20Header = field(default_factory=COR20Header)
    metadata: Optional[MetadataHeader] = None


def _parse_metadata_root(pe: "File", rva: int) -> Optional[MetadataHeader]:
    off = pe.rva_to_offset(rva)
    sig, major, minor, reserved, length = unpack_at(pe.data, _METADATA_ROOT, off)
    if sig != METADATA_SIGNATURE:
        return None
    raw = pe.data[off + _METADATA_ROOT.size : off + _METADATA_ROOT.size + min(length, MAX_VERSION_LENGTH)]
    return MetadataHeader(
        signature=struct.unpack("<I", sig)[0],
        major_version=major,
        minor_version=minor,
        reserved=reserved,
        version_length=length,
        version=safe_ascii(bytes(raw)),
    )


def parse_clr_header_directory(pe: "File", rva: int, size: int) -> None:
    """COR20 runtime header of a .NET image and the version string of its metadata root."""
    header = COR20Header(*unpack_at(pe.data, _COR20_HEADER, pe.rva_to_offset(rva)))
    clr = CLRData(header=header)

    if header.metadata_rva and header.metadata_size:
        try:
            clr.metadata = _parse_metadata_root(pe, header.metadata_rva)
        except PEError as e:
            pe.log("warn", "CLR metadata root unreadable", metadata_rva=header.metadata_rva, error=e.code)

    pe.clr = clr
    pe.info.has_clr = True
