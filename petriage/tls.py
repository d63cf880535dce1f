from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List

from petriage.anomaly import AnomalyKind
from petriage.config import Severity
from petriage.errors import PEError
from petriage.reader import u32, u64, unpack_at

if TYPE_CHECKING:
    from petriage.file import File

_TLS_DIRECTORY32 = struct.Struct("<IIIIII")
_TLS_DIRECTORY64 = struct.Struct("<QQQQII")

MAX_TLS_CALLBACKS = 256


@dataclass
class TLSDirectoryFields:
    start_address_of_raw_data: int = 0
    end_address_of_raw_data: int = 0
    address_of_index: int = 0
    address_of_callbacks: int = 0
    size_of_zero_fill: int = 0
    characteristics: int = 0


@dataclass
class TLSDirectory:
    struct: TLSDirectoryFields = field(default_factory=TLSDirectoryFields)
    callbacks: List[int] = field(default_factory=list)


def _read_callbacks(pe: "File", callbacks_va: int) -> List[int]:
    """Zero-terminated array of callback VAs."""
    base = pe.image_base
    if callbacks_va < base:
        return []
    off = pe.rva_to_offset(callbacks_va - base)
    step = 8 if pe.is_64 else 4
    read = u64 if pe.is_64 else u32

    callbacks: List[int] = []
    for i in range(MAX_TLS_CALLBACKS):
        va = read(pe.data, off + i * step)
        if not va:
            return callbacks
        callbacks.append(va)
    pe.add_anomaly(
        f"TLS callback array exceeds {MAX_TLS_CALLBACKS} entries",
        kind=AnomalyKind.LIMIT,
        severity=Severity.MEDIUM,
    )
    return callbacks


def parse_tls_directory(pe: "File", rva: int, size: int) -> None:
    st = _TLS_DIRECTORY64 if pe.is_64 else _TLS_DIRECTORY32
    fields = TLSDirectoryFields(*unpack_at(pe.data, st, pe.rva_to_offset(rva)))
    tls = TLSDirectory(struct=fields)

    if fields.address_of_callbacks:
        try:
            tls.callbacks = _read_callbacks(pe, fields.address_of_callbacks)
        except PEError as e:
            pe.add_anomaly(
                "TLS callback array could not be mapped",
                kind=AnomalyKind.DATA_DIRECTORY,
                severity=Severity.MEDIUM,
                address_of_callbacks=fields.address_of_callbacks,
                error=e.code,
            )
        if tls.callbacks:
            pe.log("info", "TLS callbacks present", count=len(tls.callbacks))

    pe.tls = tls
    pe.info.has_tls = True
