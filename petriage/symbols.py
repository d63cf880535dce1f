from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import TYPE_CHECKING, List

from petriage.anomaly import AnomalyKind
from petriage.config import Severity
from petriage.constants import COFF_SYMBOL_SIZE
from petriage.errors import DataOutOfBoundsError
from petriage.reader import read_c_string, safe_ascii, u32

if TYPE_CHECKING:
    from petriage.file import File

_COFF_SYMBOL = struct.Struct("<8sIhHBB")

MAX_SYMBOL_NAME_LEN = 1024


@dataclass
class COFFSymbol:
    name: str = ""
    value: int = 0
    section_number: int = 0
    type: int = 0
    storage_class: int = 0
    number_of_aux_symbols: int = 0


def _symbol_name(data, raw_name: bytes, strtab_off: int, strtab_size: int) -> str:
    # First four bytes zero: the last four are an offset into the string table.
    if raw_name[:4] != b"\x00\x00\x00\x00":
        return safe_ascii(raw_name)
    str_off = struct.unpack("<I", raw_name[4:])[0]
    if str_off < 4 or str_off >= strtab_size:
        return ""
    return read_c_string(data, strtab_off + str_off, max_len=MAX_SYMBOL_NAME_LEN) or ""


def parse_coff_symbol_table(pe: "File") -> None:
    """
    COFF symbol table at PointerToSymbolTable (a file offset), followed by the
    string table. Auxiliary records are skipped, not decoded.
    """
    fh = pe.nt_header.file_header
    off = fh.pointer_to_symbol_table
    count = fh.number_of_symbols
    if not off or not count:
        return

    data = pe.data
    if off + COFF_SYMBOL_SIZE > len(data):
        raise DataOutOfBoundsError("COFF symbol table outside the file.", offset=off, data_size=len(data))

    cap = pe.options.max_coff_symbols
    if count > cap:
        pe.add_anomaly(
            f"COFF symbol table has more than {cap} symbols, parsing capped",
            kind=AnomalyKind.LIMIT,
            severity=Severity.MEDIUM,
            number_of_symbols=count,
            cap=cap,
        )
        count = cap

    strtab_off = fh.pointer_to_symbol_table + fh.number_of_symbols * COFF_SYMBOL_SIZE
    strtab_size = u32(data, strtab_off) or 0

    symbols: List[COFFSymbol] = []
    i = 0
    while i < count:
        sym_off = off + i * COFF_SYMBOL_SIZE
        if sym_off + COFF_SYMBOL_SIZE > len(data):
            pe.add_anomaly(
                "COFF symbol table truncated",
                kind=AnomalyKind.DATA_DIRECTORY,
                severity=Severity.LOW,
                parsed=len(symbols),
            )
            break
        raw_name, value, section_number, sym_type, storage_class, aux = _COFF_SYMBOL.unpack_from(data, sym_off)
        symbols.append(
            COFFSymbol(
                name=_symbol_name(data, raw_name, strtab_off, strtab_size),
                value=value,
                section_number=section_number,
                type=sym_type,
                storage_class=storage_class,
                number_of_aux_symbols=aux,
            )
        )
        i += 1 + aux

    pe.coff_symbols = symbols
    pe.info.has_coff_symbols = True
