"""
The File aggregate: one parsed PE image and everything decoded from it.

Construction only binds a byte source; nothing is validated until ``parse``.
Every decoded part lives on the File so that the anomaly pass, the reporters
and callers see one consistent picture, however far parsing got.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields, is_dataclass
from enum import Enum
from typing import Any, BinaryIO, Dict, List, Optional, Union

from petriage.anomaly import Anomaly, AnomalyKind, AnomalyList, get_anomalies
from petriage.checksum import compute_checksum
from petriage.clr import CLRData
from petriage.config import Options, Severity, options_snapshot
from petriage.constants import FILE_HEADER_SIZE, OPTIONAL_HEADER_CHECKSUM_OFFSET
from petriage.debug import DebugEntry
from petriage.directories import IATEntry, RuntimeFunction, dispatch_data_directories
from petriage.entropy import shannon_entropy
from petriage.errors import DataOutOfBoundsError, PEError, StrictValidationError
from petriage.exports import Export
from petriage.headers import (
    DOSHeader,
    NtHeader,
    OptionalHeader32,
    OptionalHeader64,
    RomOptionalHeader,
    header_to_dict,
    parse_dos_header,
    parse_nt_header,
)
from petriage.heuristics import entrypoint_section_name
from petriage.imports import BoundImportDescriptor, DelayImport, Import
from petriage.loadconfig import LoadConfig
from petriage.log import Logger
from petriage.reader import read_c_string
from petriage.relocations import Relocation
from petriage.resources import Resources
from petriage.sections import AddressTranslator, Section, parse_section_table
from petriage.security import Certificate
from petriage.source import ByteSource, BytesSource, HandleSource, PathSource
from petriage.symbols import COFFSymbol, parse_coff_symbol_table
from petriage.tls import TLSDirectory


@dataclass
class FileInfo:
    has_dos_header: bool = False
    has_nt_header: bool = False
    is_32: bool = False
    is_64: bool = False
    is_rom: bool = False
    is_dll: bool = False
    has_sections: bool = False
    has_export: bool = False
    has_import: bool = False
    has_resource: bool = False
    has_exception: bool = False
    has_security: bool = False
    has_reloc: bool = False
    has_debug: bool = False
    has_architecture: bool = False
    has_global_ptr: bool = False
    has_tls: bool = False
    has_load_config: bool = False
    has_bound_import: bool = False
    has_iat: bool = False
    has_delay_import: bool = False
    has_clr: bool = False
    has_coff_symbols: bool = False


def _plain(obj: Any) -> Any:
    """Recursively turn parse results into JSON-ready values."""
    if hasattr(obj, "to_dict") and not isinstance(obj, type):
        return obj.to_dict()
    if is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: _plain(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (bytes, bytearray)):
        return obj.hex()
    if isinstance(obj, dict):
        return {str(k): _plain(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_plain(v) for v in obj]
    return obj


class File:
    def __init__(
        self,
        source: Optional[ByteSource] = None,
        options: Optional[Options] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        self._source: ByteSource = source if source is not None else BytesSource(b"")
        self.options: Options = options or Options()
        self.logger = logger

        self.dos_header = DOSHeader()
        self.nt_header = NtHeader()
        self.sections: List[Section] = []
        self.export: Optional[Export] = None
        self.imports: List[Import] = []
        self.resources: Optional[Resources] = None
        self.exceptions: List[RuntimeFunction] = []
        self.certificates: List[Certificate] = []
        self.relocations: List[Relocation] = []
        self.debugs: List[DebugEntry] = []
        self.global_ptr: int = 0
        self.tls: Optional[TLSDirectory] = None
        self.load_config: Optional[LoadConfig] = None
        self.bound_imports: List[BoundImportDescriptor] = []
        self.iat: List[IATEntry] = []
        self.delay_imports: List[DelayImport] = []
        self.clr: Optional[CLRData] = None
        self.has_architecture: bool = False
        self.coff_symbols: List[COFFSymbol] = []
        self.anomalies = AnomalyList()
        self.info = FileInfo()

        self._translator: Optional[AddressTranslator] = None

    @classmethod
    def from_path(cls, path: str, options: Optional[Options] = None, logger: Optional[Logger] = None) -> "File":
        return cls(PathSource(path), options=options, logger=logger)

    @classmethod
    def from_handle(cls, handle: BinaryIO, options: Optional[Options] = None, logger: Optional[Logger] = None) -> "File":
        return cls(HandleSource(handle), options=options, logger=logger)

    @classmethod
    def from_bytes(
        cls, data: Union[bytes, bytearray, memoryview], options: Optional[Options] = None, logger: Optional[Logger] = None
    ) -> "File":
        return cls(BytesSource(data), options=options, logger=logger)

    # --- byte access -----------------------------------------------------

    @property
    def data(self):
        return self._source.data

    @property
    def size(self) -> int:
        return self._source.size

    @property
    def is_64(self) -> bool:
        return isinstance(self.nt_header.optional_header, OptionalHeader64)

    @property
    def image_base(self) -> int:
        return getattr(self.nt_header.optional_header, "image_base", 0)

    @property
    def checksum_offset(self) -> int:
        return self.dos_header.address_of_new_exe_header + 4 + FILE_HEADER_SIZE + OPTIONAL_HEADER_CHECKSUM_OFFSET

    @property
    def translator(self) -> AddressTranslator:
        if self._translator is None:
            self._translator = self._build_translator()
        return self._translator

    def _build_translator(self) -> AddressTranslator:
        opt = self.nt_header.optional_header
        return AddressTranslator(
            self.sections,
            section_alignment=getattr(opt, "section_alignment", 0),
            file_alignment=getattr(opt, "file_alignment", 0),
            size_of_headers=getattr(opt, "size_of_headers", 0),
            data_size=self.size,
        )

    def rva_to_offset(self, rva: int) -> int:
        return self.translator.rva_to_offset(rva)

    def get_data(self, rva: int, size: int) -> bytes:
        """``size`` bytes at ``rva``; never short."""
        off = self.rva_to_offset(rva)
        if size < 0 or off + size > self.size:
            raise DataOutOfBoundsError(
                "Requested data extends past the end of the file.", rva=rva, offset=off, size=size, data_size=self.size
            )
        return bytes(self.data[off : off + size])

    def read_string_at_rva(self, rva: int, *, max_len: int = 512) -> str:
        off = self.rva_to_offset(rva)
        s = read_c_string(self.data, off, max_len=max_len)
        if s is None:
            raise DataOutOfBoundsError("Unterminated string.", rva=rva, offset=off)
        return s

    # --- diagnostics -----------------------------------------------------

    def log(self, level: str, msg: str, **context: Any) -> None:
        if self.logger is None:
            return
        getattr(self.logger, level)(msg, **context)

    def add_anomaly(
        self,
        anomaly: Union[str, Anomaly],
        *,
        kind: AnomalyKind = AnomalyKind.OTHER,
        severity: Severity = Severity.LOW,
        **context: Any,
    ) -> bool:
        if not isinstance(anomaly, Anomaly):
            anomaly = Anomaly(kind=kind, severity=severity, message=str(anomaly), context=context)
        return self.anomalies.append(anomaly)

    # --- parsing ---------------------------------------------------------

    def parse(self) -> "File":
        """
        Decode headers, sections, data directories and the COFF symbol table,
        then run the anomaly pass. Structural failures in the headers raise a
        PEError; problems further in are recorded as anomalies.
        """
        data = self.data
        self.dos_header = parse_dos_header(data)
        self.info.has_dos_header = True

        e_lfanew = self.dos_header.address_of_new_exe_header
        self.nt_header = parse_nt_header(data, e_lfanew)
        self.info.has_nt_header = True

        opt = self.nt_header.optional_header
        fh = self.nt_header.file_header
        self.info.is_32 = isinstance(opt, OptionalHeader32)
        self.info.is_64 = isinstance(opt, OptionalHeader64)
        self.info.is_rom = isinstance(opt, RomOptionalHeader)
        self.info.is_dll = fh.is_dll
        self.log(
            "info",
            "Parsed PE headers",
            machine=fh.machine_name,
            magic=hex(opt.magic),
            number_of_sections=fh.number_of_sections,
        )

        self._parse_sections()

        if self.options.fast:
            self.log("debug", "Fast mode: data directories and COFF symbols skipped")
        else:
            self.parse_data_directories()
            self._parse_coff_symbols()

        self.get_anomalies()

        if self.options.strict_validation:
            self._enforce_strict()
        return self

    def _parse_sections(self) -> None:
        fh = self.nt_header.file_header
        sect_off = self.dos_header.address_of_new_exe_header + 4 + FILE_HEADER_SIZE + fh.size_of_optional_header
        self.sections = parse_section_table(self.data, sect_off, fh.number_of_sections)
        self.info.has_sections = bool(self.sections)
        self._translator = None

        if len(self.sections) < fh.number_of_sections:
            self.add_anomaly(
                "Section table truncated",
                kind=AnomalyKind.SECTION,
                severity=Severity.MEDIUM,
                declared=fh.number_of_sections,
                parsed=len(self.sections),
            )

        if self.options.section_entropy:
            for s in self.sections:
                start = s.pointer_to_raw_data
                end = min(start + s.size_of_raw_data, self.size)
                if s.size_of_raw_data and start < end:
                    s.entropy = shannon_entropy(bytes(self.data[start:end]))

    def parse_data_directories(self) -> None:
        dispatch_data_directories(self)

    def _parse_coff_symbols(self) -> None:
        try:
            parse_coff_symbol_table(self)
        except PEError as e:
            self.log("warn", "Failed to parse COFF symbol table", error=e.code)
            self.add_anomaly(
                f"Failed to parse COFF symbol table: {e.message}",
                kind=AnomalyKind.PARSE_ERROR,
                severity=Severity.LOW,
                error=e.code,
            )

    def _enforce_strict(self) -> None:
        threshold = self.options.strict_severity.rank
        offending = [a for a in self.anomalies if a.severity.rank >= threshold]
        if offending:
            raise StrictValidationError(
                f"{len(offending)} anomalies at or above {self.options.strict_severity.value} severity.",
                anomalies=offending,
                threshold=self.options.strict_severity.value,
            )

    def get_anomalies(self) -> AnomalyList:
        return get_anomalies(self)

    def checksum(self) -> int:
        return compute_checksum(self.data, self.checksum_offset)

    # --- lifecycle -------------------------------------------------------

    def close(self) -> None:
        self._source.close()

    @property
    def closed(self) -> bool:
        return self._source.closed

    def __enter__(self) -> "File":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --- rendering -------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        opt = self.nt_header.optional_header
        return {
            "info": asdict(self.info),
            "options": options_snapshot(self.options),
            "dos_header": header_to_dict(self.dos_header),
            "nt_header": {
                "signature": self.nt_header.signature,
                "file_header": header_to_dict(self.nt_header.file_header),
                "optional_header": header_to_dict(opt) if opt is not None else None,
            },
            "sections": [s.to_dict() for s in self.sections],
            "entrypoint_section": entrypoint_section_name(
                getattr(opt, "address_of_entry_point", None), self.sections
            ),
            "export": _plain(self.export),
            "imports": _plain(self.imports),
            "resources": _plain(self.resources),
            "exceptions": _plain(self.exceptions),
            "certificates": _plain(self.certificates),
            "relocations": _plain(self.relocations),
            "debugs": _plain(self.debugs),
            "global_ptr": self.global_ptr,
            "tls": _plain(self.tls),
            "load_config": _plain(self.load_config),
            "bound_imports": _plain(self.bound_imports),
            "iat": _plain(self.iat),
            "delay_imports": _plain(self.delay_imports),
            "clr": _plain(self.clr),
            "has_architecture": self.has_architecture,
            "coff_symbols": _plain(self.coff_symbols),
            "anomalies": [a.to_dict() for a in self.anomalies],
        }
