from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional

from petriage.anomaly import AnomalyKind
from petriage.config import Severity
from petriage.errors import PEError
from petriage.reader import u16, u32, unpack_at

if TYPE_CHECKING:
    from petriage.file import File

_EXPORT_DIRECTORY = struct.Struct("<IIHHIIIIIII")

MAX_NAME_LEN = 512


@dataclass
class ExportDirectory:
    characteristics: int = 0
    time_date_stamp: int = 0
    major_version: int = 0
    minor_version: int = 0
    name_rva: int = 0
    base: int = 0
    number_of_functions: int = 0
    number_of_names: int = 0
    address_of_functions: int = 0
    address_of_names: int = 0
    address_of_name_ordinals: int = 0


@dataclass
class ExportFunction:
    ordinal: int = 0
    function_rva: int = 0
    name_ordinal: Optional[int] = None
    name_rva: int = 0
    name: str = ""
    forwarder: str = ""
    forwarder_rva: int = 0


@dataclass
class Export:
    struct: ExportDirectory = field(default_factory=ExportDirectory)
    name: str = ""
    functions: List[ExportFunction] = field(default_factory=list)


def _read_name_table(pe: "File", d: ExportDirectory, count: int) -> Dict[int, ExportFunction]:
    """Index into the address table -> named entry, from the parallel names and ordinals arrays."""
    named: Dict[int, ExportFunction] = {}
    if not count or not d.address_of_names or not d.address_of_name_ordinals:
        return named

    names_off = pe.rva_to_offset(d.address_of_names)
    ords_off = pe.rva_to_offset(d.address_of_name_ordinals)
    data = pe.data

    for i in range(count):
        name_rva = u32(data, names_off + i * 4)
        idx = u16(data, ords_off + i * 2)
        if name_rva is None or idx is None:
            break
        if idx in named:
            continue
        try:
            name = pe.read_string_at_rva(name_rva, max_len=MAX_NAME_LEN)
        except PEError:
            pe.add_anomaly(
                "Export name RVA could not be read",
                kind=AnomalyKind.DATA_DIRECTORY,
                severity=Severity.LOW,
                name_rva=name_rva,
            )
            continue
        named[idx] = ExportFunction(name_ordinal=idx, name_rva=name_rva, name=name)
    return named


def parse_export_directory(pe: "File", rva: int, size: int) -> None:
    """IMAGE_EXPORT_DIRECTORY plus every exported function, by name and by ordinal."""
    off = pe.rva_to_offset(rva)
    d = ExportDirectory(*unpack_at(pe.data, _EXPORT_DIRECTORY, off))

    exp = Export(struct=d)
    if d.name_rva:
        try:
            exp.name = pe.read_string_at_rva(d.name_rva, max_len=MAX_NAME_LEN)
        except PEError as e:
            pe.log("warn", "Export DLL name unreadable", name_rva=d.name_rva, error=e.code)

    cap = pe.options.max_export_entries
    num_funcs = d.number_of_functions
    num_names = d.number_of_names
    if num_funcs > cap or num_names > cap:
        pe.add_anomaly(
            f"Export directory has more than {cap} entries, parsing capped",
            kind=AnomalyKind.LIMIT,
            severity=Severity.MEDIUM,
            number_of_functions=num_funcs,
            number_of_names=num_names,
            cap=cap,
        )
        num_funcs = min(num_funcs, cap)
        num_names = min(num_names, cap)

    named = _read_name_table(pe, d, num_names)

    if num_funcs and d.address_of_functions:
        funcs_off = pe.rva_to_offset(d.address_of_functions)
        for i in range(num_funcs):
            func_rva = u32(pe.data, funcs_off + i * 4)
            if func_rva is None:
                pe.add_anomaly(
                    "Export address table truncated",
                    kind=AnomalyKind.DATA_DIRECTORY,
                    severity=Severity.MEDIUM,
                    index=i,
                )
                break
            if func_rva == 0:
                continue

            fn = named.get(i) or ExportFunction()
            fn.ordinal = d.base + i
            fn.function_rva = func_rva

            # Forwarded exports point back into the export directory itself.
            if rva <= func_rva < rva + size:
                try:
                    fn.forwarder = pe.read_string_at_rva(func_rva, max_len=MAX_NAME_LEN)
                    fn.forwarder_rva = func_rva
                except PEError as e:
                    pe.log("debug", "Export forwarder unreadable", forwarder_rva=func_rva, error=e.code)
            exp.functions.append(fn)

    pe.export = exp
    pe.info.has_export = True
