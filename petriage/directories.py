"""
Data directory dispatch.

Every DirectoryEntry maps to exactly one handler. A handler receives the raw
(rva, size) pair from the optional header and stores what it decodes on the
File. A PEError from one handler is recorded and the next directory still
runs.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, List

from petriage.anomaly import AnomalyKind
from petriage.clr import parse_clr_header_directory
from petriage.config import Severity
from petriage.constants import DirectoryEntry, MachineType
from petriage.debug import parse_debug_directory
from petriage.errors import PEError
from petriage.exports import parse_export_directory
from petriage.imports import (
    parse_bound_import_directory,
    parse_delay_import_directory,
    parse_import_directory,
)
from petriage.loadconfig import parse_load_config_directory
from petriage.reader import u32, u64
from petriage.relocations import parse_reloc_directory
from petriage.resources import parse_resource_directory
from petriage.security import parse_security_directory
from petriage.tls import parse_tls_directory

if TYPE_CHECKING:
    from petriage.file import File

DirectoryHandler = Callable[["File", int, int], None]

_RUNTIME_FUNCTION_X64 = struct.Struct("<III")
_RUNTIME_FUNCTION_ARM = struct.Struct("<II")

_ARM_MACHINES = frozenset(
    {
        MachineType.ARM,
        MachineType.ARMNT,
        MachineType.THUMB,
        MachineType.ARM64,
        MachineType.ARM64EC,
        MachineType.ARM64X,
    }
)


@dataclass
class RuntimeFunction:
    begin_address: int = 0
    end_address: int = 0
    unwind_info_address: int = 0


@dataclass
class IATEntry:
    index: int = 0
    rva: int = 0
    value: int = 0


def parse_exception_directory(pe: "File", rva: int, size: int) -> None:
    """
    RUNTIME_FUNCTION table. x64 entries carry begin, end and unwind info (12
    bytes); ARM and ARM64 entries carry begin and packed unwind data (8 bytes).
    """
    machine = pe.nt_header.file_header.machine
    if machine == MachineType.AMD64:
        st = _RUNTIME_FUNCTION_X64
    elif machine in _ARM_MACHINES:
        st = _RUNTIME_FUNCTION_ARM
    else:
        pe.log("debug", "Exception directory ignored for machine", machine=hex(machine))
        return

    off = pe.rva_to_offset(rva)
    count = min(size, pe.size - off) // st.size
    entries: List[RuntimeFunction] = []
    for i in range(count):
        values = st.unpack_from(pe.data, off + i * st.size)
        if st is _RUNTIME_FUNCTION_X64:
            entries.append(RuntimeFunction(*values))
        else:
            entries.append(RuntimeFunction(begin_address=values[0], unwind_info_address=values[1]))

    pe.exceptions = entries
    pe.info.has_exception = True


def parse_architecture_directory(pe: "File", rva: int, size: int) -> None:
    """Architecture data has no documented layout: presence is recorded, nothing is decoded."""
    if rva == 0 or size == 0:
        return
    fh = pe.nt_header.file_header
    pe.log(
        "info",
        "Architecture directory present but not parsed",
        rva=hex(rva),
        size=size,
        machine=fh.machine_name,
    )
    pe.add_anomaly(
        f"Architecture directory present at RVA 0x{rva:x} (size: {size} bytes) - not fully parsed",
        kind=AnomalyKind.DATA_DIRECTORY,
        severity=Severity.LOW,
        rva=rva,
        size=size,
        machine=fh.machine_name,
    )
    pe.has_architecture = True
    pe.info.has_architecture = True


def parse_global_pointer_directory(pe: "File", rva: int, size: int) -> None:
    """The directory RVA is the value to be stored in the global pointer register."""
    pe.global_ptr = rva
    pe.info.has_global_ptr = True


def parse_iat_directory(pe: "File", rva: int, size: int) -> None:
    step = 8 if pe.is_64 else 4
    read = u64 if pe.is_64 else u32
    off = pe.rva_to_offset(rva)

    cap = pe.options.max_import_entries
    count = size // step
    if count > cap:
        pe.add_anomaly(
            f"IAT has more than {cap} entries, parsing capped",
            kind=AnomalyKind.LIMIT,
            severity=Severity.MEDIUM,
            cap=cap,
        )
        count = cap

    entries: List[IATEntry] = []
    for i in range(count):
        value = read(pe.data, off + i * step)
        if value is None:
            break
        entries.append(IATEntry(index=i, rva=rva + i * step, value=value))

    pe.iat = entries
    pe.info.has_iat = True


def parse_reserved_directory(pe: "File", rva: int, size: int) -> None:
    # Checked by the anomaly pass; nothing to decode.
    pe.log("debug", "Reserved data directory is populated", rva=hex(rva), size=size)


DIRECTORY_HANDLERS: Dict[DirectoryEntry, DirectoryHandler] = {
    DirectoryEntry.EXPORT: parse_export_directory,
    DirectoryEntry.IMPORT: parse_import_directory,
    DirectoryEntry.RESOURCE: parse_resource_directory,
    DirectoryEntry.EXCEPTION: parse_exception_directory,
    DirectoryEntry.SECURITY: parse_security_directory,
    DirectoryEntry.BASERELOC: parse_reloc_directory,
    DirectoryEntry.DEBUG: parse_debug_directory,
    DirectoryEntry.ARCHITECTURE: parse_architecture_directory,
    DirectoryEntry.GLOBALPTR: parse_global_pointer_directory,
    DirectoryEntry.TLS: parse_tls_directory,
    DirectoryEntry.LOAD_CONFIG: parse_load_config_directory,
    DirectoryEntry.BOUND_IMPORT: parse_bound_import_directory,
    DirectoryEntry.IAT: parse_iat_directory,
    DirectoryEntry.DELAY_IMPORT: parse_delay_import_directory,
    DirectoryEntry.CLR: parse_clr_header_directory,
    DirectoryEntry.RESERVED: parse_reserved_directory,
}


def _omitted(pe: "File", entry: DirectoryEntry) -> bool:
    opts = pe.options
    return (
        (entry == DirectoryEntry.SECURITY and opts.omit_security_directory)
        or (entry == DirectoryEntry.RESOURCE and opts.omit_resource_directory)
        or (entry == DirectoryEntry.DEBUG and opts.omit_debug_directory)
    )


def dispatch_data_directories(pe: "File") -> None:
    opt = pe.nt_header.optional_header
    directories = getattr(opt, "data_directories", None) or []

    for index, directory in enumerate(directories):
        entry = DirectoryEntry(index)
        if not directory.present:
            continue
        if _omitted(pe, entry):
            pe.log("debug", "Data directory skipped by options", directory=entry.name)
            continue

        handler = DIRECTORY_HANDLERS[entry]
        try:
            handler(pe, directory.virtual_address, directory.size)
        except PEError as e:
            pe.log(
                "warn",
                "Failed to parse data directory",
                directory=entry.name,
                rva=hex(directory.virtual_address),
                size=directory.size,
                error=e.code,
            )
            pe.add_anomaly(
                f"Failed to parse {entry.name} data directory: {e.message}",
                kind=AnomalyKind.PARSE_ERROR,
                severity=Severity.MEDIUM,
                directory=entry.name,
                error=e.code,
            )
