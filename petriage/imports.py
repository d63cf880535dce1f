"""
Import, delay-load import and bound import directories.

The thunk walk is shared: a table of pointer-sized entries terminated by zero,
each either an ordinal (top bit set) or the RVA of an IMAGE_IMPORT_BY_NAME.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional, Tuple

from petriage.anomaly import AnomalyKind
from petriage.config import Severity
from petriage.errors import PEError
from petriage.reader import read_c_string, u16, u32, u64, unpack_at

if TYPE_CHECKING:
    from petriage.file import File

_IMPORT_DESCRIPTOR = struct.Struct("<IIIII")
_DELAY_IMPORT_DESCRIPTOR = struct.Struct("<IIIIIIII")
_BOUND_IMPORT_DESCRIPTOR = struct.Struct("<IHH")
_BOUND_FORWARDER_REF = struct.Struct("<IHH")

ORDINAL_FLAG32 = 0x80000000
ORDINAL_FLAG64 = 0x8000000000000000
MAX_NAME_LEN = 512


@dataclass
class ImportFunction:
    name: str = ""
    hint: int = 0
    by_ordinal: bool = False
    ordinal: int = 0
    original_thunk_value: int = 0
    thunk_value: int = 0
    thunk_rva: int = 0


@dataclass
class ImportDescriptor:
    original_first_thunk: int = 0
    time_date_stamp: int = 0
    forwarder_chain: int = 0
    name_rva: int = 0
    first_thunk: int = 0


@dataclass
class Import:
    offset: int = 0
    name: str = ""
    functions: List[ImportFunction] = field(default_factory=list)
    descriptor: ImportDescriptor = field(default_factory=ImportDescriptor)


@dataclass
class DelayImportDescriptor:
    attributes: int = 0
    name_rva: int = 0
    module_handle_rva: int = 0
    import_address_table_rva: int = 0
    import_name_table_rva: int = 0
    bound_import_address_table_rva: int = 0
    unload_information_table_rva: int = 0
    time_date_stamp: int = 0


@dataclass
class DelayImport:
    offset: int = 0
    name: str = ""
    functions: List[ImportFunction] = field(default_factory=list)
    descriptor: DelayImportDescriptor = field(default_factory=DelayImportDescriptor)


@dataclass
class BoundForwarderRef:
    time_date_stamp: int = 0
    offset_module_name: int = 0
    reserved: int = 0
    name: str = ""


@dataclass
class BoundImportDescriptor:
    time_date_stamp: int = 0
    offset_module_name: int = 0
    number_of_module_forwarder_refs: int = 0
    name: str = ""
    forwarder_refs: List[BoundForwarderRef] = field(default_factory=list)


def _read_thunk(pe: "File", off: int) -> Optional[int]:
    return u64(pe.data, off) if pe.is_64 else u32(pe.data, off)


def _table_truncated(pe: "File", what: str, off: int) -> None:
    pe.add_anomaly(
        f"{what} descriptor table truncated",
        kind=AnomalyKind.DATA_DIRECTORY,
        severity=Severity.MEDIUM,
        offset=off,
    )


def parse_thunks(
    pe: "File", lookup_rva: int, iat_rva: int, *, budget: int, dll: str
) -> Tuple[List[ImportFunction], int]:
    """
    Walk an import lookup table (falling back to the IAT when the lookup table
    is absent). At most ``budget`` entries are visited, decoded or not.

    Returns the decoded functions and the number of entries visited.
    """
    table_rva = lookup_rva or iat_rva
    if not table_rva:
        return [], 0

    entry_size = 8 if pe.is_64 else 4
    ordinal_flag = ORDINAL_FLAG64 if pe.is_64 else ORDINAL_FLAG32
    table_off = pe.rva_to_offset(table_rva)
    iat_off: Optional[int] = None
    if iat_rva:
        try:
            iat_off = pe.rva_to_offset(iat_rva)
        except PEError:
            iat_off = None

    funcs: List[ImportFunction] = []
    idx = 0
    while True:
        val = _read_thunk(pe, table_off + idx * entry_size)
        if val is None:
            pe.add_anomaly(
                f"Import thunk table of {dll} truncated",
                kind=AnomalyKind.DATA_DIRECTORY,
                severity=Severity.MEDIUM,
                dll=dll,
            )
            break
        if val == 0:
            break
        if idx >= budget:
            pe.add_anomaly(
                f"Import thunk table of {dll} exceeds {budget} entries, parsing capped",
                kind=AnomalyKind.LIMIT,
                severity=Severity.MEDIUM,
                dll=dll,
                cap=budget,
            )
            break

        fn = ImportFunction(original_thunk_value=val, thunk_rva=(iat_rva or table_rva) + idx * entry_size)
        if iat_off is not None:
            fn.thunk_value = _read_thunk(pe, iat_off + idx * entry_size) or 0

        if val & ordinal_flag:
            fn.by_ordinal = True
            fn.ordinal = val & 0xFFFF
            fn.name = f"#{fn.ordinal}"
        else:
            hint_rva = val & 0x7FFFFFFF
            try:
                hint_off = pe.rva_to_offset(hint_rva)
            except PEError:
                pe.add_anomaly(
                    f"Import by name RVA of {dll} could not be mapped",
                    kind=AnomalyKind.DATA_DIRECTORY,
                    severity=Severity.LOW,
                    dll=dll,
                    rva=hint_rva,
                )
                idx += 1
                continue
            fn.hint = u16(pe.data, hint_off) or 0
            fn.name = read_c_string(pe.data, hint_off + 2, max_len=MAX_NAME_LEN) or ""

        funcs.append(fn)
        idx += 1
    return funcs, idx


def parse_import_directory(pe: "File", rva: int, size: int) -> None:
    cap = pe.options.max_import_entries
    desc_off = pe.rva_to_offset(rva)
    remaining = cap
    imports: List[Import] = []

    while True:
        try:
            desc = ImportDescriptor(*unpack_at(pe.data, _IMPORT_DESCRIPTOR, desc_off))
        except PEError:
            _table_truncated(pe, "Import", desc_off)
            break
        if desc == ImportDescriptor():
            break
        if len(imports) >= cap:
            pe.add_anomaly(
                f"Import directory has more than {cap} descriptors, parsing capped",
                kind=AnomalyKind.LIMIT,
                severity=Severity.MEDIUM,
                cap=cap,
            )
            break

        imp = Import(offset=desc_off, descriptor=desc)
        try:
            imp.name = pe.read_string_at_rva(desc.name_rva, max_len=MAX_NAME_LEN)
        except PEError as e:
            pe.log("warn", "Import DLL name unreadable", name_rva=desc.name_rva, error=e.code)
            imp.name = f"__unreadable_dll_{len(imports)}__"

        if remaining > 0:
            visited = 0
            try:
                imp.functions, visited = parse_thunks(
                    pe, desc.original_first_thunk, desc.first_thunk, budget=remaining, dll=imp.name
                )
            except PEError as e:
                pe.add_anomaly(
                    f"Import thunks of {imp.name} could not be read",
                    kind=AnomalyKind.DATA_DIRECTORY,
                    severity=Severity.MEDIUM,
                    dll=imp.name,
                    error=e.code,
                )
            remaining -= visited

        imports.append(imp)
        desc_off += _IMPORT_DESCRIPTOR.size

    pe.imports = imports
    pe.info.has_import = True


def parse_delay_import_directory(pe: "File", rva: int, size: int) -> None:
    cap = pe.options.max_import_entries
    desc_off = pe.rva_to_offset(rva)
    remaining = cap
    delay_imports: List[DelayImport] = []

    while len(delay_imports) < cap:
        try:
            desc = DelayImportDescriptor(*unpack_at(pe.data, _DELAY_IMPORT_DESCRIPTOR, desc_off))
        except PEError:
            _table_truncated(pe, "Delay import", desc_off)
            break
        if desc == DelayImportDescriptor():
            break

        # Attribute bit 0 clear: the table fields are VAs, not RVAs.
        if not desc.attributes & 1:
            base = pe.image_base
            for name in (
                "name_rva",
                "module_handle_rva",
                "import_address_table_rva",
                "import_name_table_rva",
                "bound_import_address_table_rva",
                "unload_information_table_rva",
            ):
                value = getattr(desc, name)
                if value >= base:
                    setattr(desc, name, (value - base) & 0xFFFFFFFF)

        imp = DelayImport(offset=desc_off, descriptor=desc)
        try:
            imp.name = pe.read_string_at_rva(desc.name_rva, max_len=MAX_NAME_LEN)
        except PEError as e:
            pe.log("warn", "Delay import DLL name unreadable", name_rva=desc.name_rva, error=e.code)

        if remaining > 0:
            visited = 0
            try:
                imp.functions, visited = parse_thunks(
                    pe,
                    desc.import_name_table_rva,
                    desc.import_address_table_rva,
                    budget=remaining,
                    dll=imp.name,
                )
            except PEError as e:
                pe.add_anomaly(
                    f"Delay import thunks of {imp.name} could not be read",
                    kind=AnomalyKind.DATA_DIRECTORY,
                    severity=Severity.MEDIUM,
                    dll=imp.name,
                    error=e.code,
                )
            remaining -= visited

        delay_imports.append(imp)
        desc_off += _DELAY_IMPORT_DESCRIPTOR.size

    pe.delay_imports = delay_imports
    pe.info.has_delay_import = True


def parse_bound_import_directory(pe: "File", rva: int, size: int) -> None:
    """Module names are offsets relative to the start of the directory."""
    start = pe.rva_to_offset(rva)
    data = pe.data
    cap = pe.options.max_import_entries
    bound: List[BoundImportDescriptor] = []

    off = start
    while len(bound) < cap:
        try:
            values = unpack_at(data, _BOUND_IMPORT_DESCRIPTOR, off)
        except PEError:
            _table_truncated(pe, "Bound import", off)
            break
        if not any(values):
            break
        desc = BoundImportDescriptor(*values)
        desc.name = read_c_string(data, start + desc.offset_module_name, max_len=MAX_NAME_LEN) or ""
        off += _BOUND_IMPORT_DESCRIPTOR.size

        for _ in range(desc.number_of_module_forwarder_refs):
            try:
                ref = BoundForwarderRef(*unpack_at(data, _BOUND_FORWARDER_REF, off))
            except PEError:
                _table_truncated(pe, "Bound import", off)
                break
            ref.name = read_c_string(data, start + ref.offset_module_name, max_len=MAX_NAME_LEN) or ""
            desc.forwarder_refs.append(ref)
            off += _BOUND_FORWARDER_REF.size

        bound.append(desc)

    pe.bound_imports = bound
    pe.info.has_bound_import = True
