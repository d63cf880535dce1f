from __future__ import annotations

import struct
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

from petriage.anomaly import AnomalyKind
from petriage.config import Severity
from petriage.constants import IMAGE_DEBUG_TYPE_CODEVIEW, debug_type_name
from petriage.errors import PEError
from petriage.reader import read_bytes, read_c_string, unpack_at

if TYPE_CHECKING:
    from petriage.file import File

_DEBUG_DIRECTORY = struct.Struct("<IIHHIIII")
_CV_RSDS = struct.Struct("<4s16sI")
_CV_NB10 = struct.Struct("<4sIII")

CV_SIGNATURE_RSDS = b"RSDS"
CV_SIGNATURE_NB10 = b"NB10"
MAX_DEBUG_ENTRIES = 64
MAX_PDB_PATH = 1024


@dataclass
class DebugDirectory:
    characteristics: int = 0
    time_date_stamp: int = 0
    major_version: int = 0
    minor_version: int = 0
    type: int = 0
    size_of_data: int = 0
    address_of_raw_data: int = 0
    pointer_to_raw_data: int = 0


@dataclass
class CodeViewInfo:
    signature: str = ""
    guid: str = ""
    pdb_signature: int = 0
    age: int = 0
    pdb_file_name: str = ""


@dataclass
class DebugEntry:
    struct: DebugDirectory = field(default_factory=DebugDirectory)
    type_name: str = ""
    codeview: Optional[CodeViewInfo] = None


def parse_codeview(data, off: int, size: int) -> Optional[CodeViewInfo]:
    """RSDS (PDB 7.0) or NB10 (PDB 2.0) record at file offset ``off``."""
    sig = read_bytes(data, off, 4)
    limit = min(size, MAX_PDB_PATH)
    if sig == CV_SIGNATURE_RSDS:
        _, raw_guid, age = unpack_at(data, _CV_RSDS, off)
        path = read_c_string(data, off + _CV_RSDS.size, max_len=limit) or ""
        guid = str(uuid.UUID(bytes_le=raw_guid)).upper()
        return CodeViewInfo(signature="RSDS", guid=guid, age=age, pdb_file_name=path)
    if sig == CV_SIGNATURE_NB10:
        _, _offset, signature, age = unpack_at(data, _CV_NB10, off)
        path = read_c_string(data, off + _CV_NB10.size, max_len=limit) or ""
        return CodeViewInfo(signature="NB10", pdb_signature=signature, age=age, pdb_file_name=path)
    return None


def parse_debug_directory(pe: "File", rva: int, size: int) -> None:
    off = pe.rva_to_offset(rva)
    count = size // _DEBUG_DIRECTORY.size
    if count > MAX_DEBUG_ENTRIES:
        pe.add_anomaly(
            f"Debug directory has more than {MAX_DEBUG_ENTRIES} entries, parsing capped",
            kind=AnomalyKind.LIMIT,
            severity=Severity.LOW,
            count=count,
        )
        count = MAX_DEBUG_ENTRIES

    entries: List[DebugEntry] = []
    for i in range(count):
        d = DebugDirectory(*unpack_at(pe.data, _DEBUG_DIRECTORY, off + i * _DEBUG_DIRECTORY.size))
        entry = DebugEntry(struct=d, type_name=debug_type_name(d.type))

        if (
            pe.options.parse_debug_info
            and d.type == IMAGE_DEBUG_TYPE_CODEVIEW
            and d.pointer_to_raw_data
            and d.size_of_data
        ):
            try:
                entry.codeview = parse_codeview(pe.data, d.pointer_to_raw_data, d.size_of_data)
            except PEError as e:
                pe.add_anomaly(
                    "CodeView debug record truncated",
                    kind=AnomalyKind.DATA_DIRECTORY,
                    severity=Severity.LOW,
                    offset=d.pointer_to_raw_data,
                    error=e.code,
                )
            if entry.codeview is None:
                pe.log("debug", "Unrecognized CodeView signature", offset=d.pointer_to_raw_data)
        entries.append(entry)

    pe.debugs = entries
    pe.info.has_debug = True
