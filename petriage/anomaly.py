"""
Structural anomaly records and the header/directory checks that produce them.

An anomaly is never fatal. Checks read whatever the File has been populated
with so far and tolerate missing pieces, so ``get_anomalies`` can run on a
hand-built File as well as on a fully parsed one.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Union

from petriage.config import Severity
from petriage.constants import (
    NUMBER_OF_DIRECTORY_ENTRIES,
    SIZEOF_OPTIONAL_HEADER32,
    SIZEOF_OPTIONAL_HEADER64,
    DirectoryEntry,
)
from petriage.headers import OptionalHeader32, OptionalHeader64

if TYPE_CHECKING:
    from petriage.file import File

ANO_NUMBER_OF_SECTIONS_NULL = "Number of sections is 0"
ANO_NUMBER_OF_SECTIONS_10_PLUS = "Number of sections is 10+"
ANO_TIMESTAMP_NULL = "File Header timestamp set to 0"
ANO_TIMESTAMP_FUTURE = "File Header timestamp set to a date in the future"
ANO_SIZE_OF_OPTIONAL_HEADER_NULL = "Size of optional header is 0"
ANO_UNCOMMON_SIZE_OF_OPTIONAL_HEADER32 = "Size of optional header is not 224 bytes"
ANO_UNCOMMON_SIZE_OF_OPTIONAL_HEADER64 = "Size of optional header is not 240 bytes"
ANO_ENTRY_POINT_NULL = "Address of entry point is 0."
ANO_ENTRY_POINT_IN_HEADERS = "Address of entry point is smaller than size of headers, the file cannot run under Windows 8"
ANO_IMAGE_BASE_NULL = "Image base is 0"
ANO_MAJOR_SUBSYSTEM_VERSION = "MajorSubsystemVersion is outside 3<-->6 boundary"
ANO_WIN32_VERSION_VALUE = "Win32VersionValue is a reserved field, must be set to zero"
ANO_NUMBER_OF_RVA_AND_SIZES = "Optional header NumberOfRvaAndSizes != 16"
ANO_SIZE_OF_IMAGE = "Invalid SizeOfImage value, should be multiple of SectionAlignment"
ANO_INVALID_CHECKSUM = "Optional header checksum is invalid"
ANO_RESERVED_DATA_DIRECTORY = "Last data directory entry is a reserved field, must be set to zero"


class AnomalyKind(str, Enum):
    FILE_HEADER = "file_header"
    OPTIONAL_HEADER = "optional_header"
    DATA_DIRECTORY = "data_directory"
    SECTION = "section"
    PACKER = "packer"
    LIMIT = "limit"
    PARSE_ERROR = "parse_error"
    OTHER = "other"


@dataclass(frozen=True)
class Anomaly:
    kind: AnomalyKind
    severity: Severity
    message: str
    context: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "severity": self.severity.value,
            "message": self.message,
            "context": dict(self.context),
        }


class AnomalyList:
    """Append-only, insertion-ordered, unique by message text."""

    def __init__(self) -> None:
        self._items: List[Anomaly] = []
        self._seen: set = set()

    def append(self, anomaly: Anomaly) -> bool:
        if anomaly.message in self._seen:
            return False
        self._seen.add(anomaly.message)
        self._items.append(anomaly)
        return True

    def messages(self) -> List[str]:
        return [a.message for a in self._items]

    def __contains__(self, item: Union[str, Anomaly]) -> bool:
        return str(item) in self._seen

    def __iter__(self) -> Iterator[Anomaly]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, idx: int) -> Anomaly:
        return self._items[idx]

    def __repr__(self) -> str:
        return f"AnomalyList({self.messages()!r})"


def _file_header_anomalies(pe: "File") -> None:
    fh = pe.nt_header.file_header

    if fh.number_of_sections == 0:
        pe.add_anomaly(ANO_NUMBER_OF_SECTIONS_NULL, kind=AnomalyKind.FILE_HEADER, severity=Severity.HIGH)
    elif fh.number_of_sections >= 10:
        pe.add_anomaly(
            ANO_NUMBER_OF_SECTIONS_10_PLUS,
            kind=AnomalyKind.FILE_HEADER,
            severity=Severity.LOW,
            number_of_sections=fh.number_of_sections,
        )

    if fh.time_date_stamp == 0:
        pe.add_anomaly(ANO_TIMESTAMP_NULL, kind=AnomalyKind.FILE_HEADER, severity=Severity.LOW)
    elif fh.time_date_stamp > int(time.time()):
        pe.add_anomaly(
            ANO_TIMESTAMP_FUTURE,
            kind=AnomalyKind.FILE_HEADER,
            severity=Severity.MEDIUM,
            time_date_stamp=fh.time_date_stamp,
        )

    opt = pe.nt_header.optional_header
    if fh.size_of_optional_header == 0:
        pe.add_anomaly(ANO_SIZE_OF_OPTIONAL_HEADER_NULL, kind=AnomalyKind.FILE_HEADER, severity=Severity.HIGH)
    elif isinstance(opt, OptionalHeader32) and fh.size_of_optional_header != SIZEOF_OPTIONAL_HEADER32:
        pe.add_anomaly(
            ANO_UNCOMMON_SIZE_OF_OPTIONAL_HEADER32,
            kind=AnomalyKind.FILE_HEADER,
            severity=Severity.MEDIUM,
            size_of_optional_header=fh.size_of_optional_header,
        )
    elif isinstance(opt, OptionalHeader64) and fh.size_of_optional_header != SIZEOF_OPTIONAL_HEADER64:
        pe.add_anomaly(
            ANO_UNCOMMON_SIZE_OF_OPTIONAL_HEADER64,
            kind=AnomalyKind.FILE_HEADER,
            severity=Severity.MEDIUM,
            size_of_optional_header=fh.size_of_optional_header,
        )


def _optional_header_anomalies(pe: "File") -> None:
    opt = pe.nt_header.optional_header
    if not isinstance(opt, (OptionalHeader32, OptionalHeader64)):
        return

    if opt.address_of_entry_point == 0:
        pe.add_anomaly(ANO_ENTRY_POINT_NULL, kind=AnomalyKind.OPTIONAL_HEADER, severity=Severity.MEDIUM)
    elif opt.address_of_entry_point < opt.size_of_headers:
        pe.add_anomaly(
            ANO_ENTRY_POINT_IN_HEADERS,
            kind=AnomalyKind.OPTIONAL_HEADER,
            severity=Severity.MEDIUM,
            address_of_entry_point=opt.address_of_entry_point,
            size_of_headers=opt.size_of_headers,
        )

    if opt.image_base == 0:
        pe.add_anomaly(ANO_IMAGE_BASE_NULL, kind=AnomalyKind.OPTIONAL_HEADER, severity=Severity.MEDIUM)

    if not 3 <= opt.major_subsystem_version <= 6:
        pe.add_anomaly(
            ANO_MAJOR_SUBSYSTEM_VERSION,
            kind=AnomalyKind.OPTIONAL_HEADER,
            severity=Severity.LOW,
            major_subsystem_version=opt.major_subsystem_version,
        )

    if opt.win32_version_value != 0:
        pe.add_anomaly(
            ANO_WIN32_VERSION_VALUE,
            kind=AnomalyKind.OPTIONAL_HEADER,
            severity=Severity.MEDIUM,
            win32_version_value=opt.win32_version_value,
        )

    if opt.number_of_rva_and_sizes != NUMBER_OF_DIRECTORY_ENTRIES:
        pe.add_anomaly(
            ANO_NUMBER_OF_RVA_AND_SIZES,
            kind=AnomalyKind.OPTIONAL_HEADER,
            severity=Severity.LOW,
            number_of_rva_and_sizes=opt.number_of_rva_and_sizes,
        )

    if opt.section_alignment and opt.size_of_image % opt.section_alignment:
        pe.add_anomaly(
            ANO_SIZE_OF_IMAGE,
            kind=AnomalyKind.OPTIONAL_HEADER,
            severity=Severity.MEDIUM,
            size_of_image=opt.size_of_image,
            section_alignment=opt.section_alignment,
        )

    if pe.options.validate_checksum and opt.checksum != 0 and pe.size:
        computed = pe.checksum()
        if computed != opt.checksum:
            pe.add_anomaly(
                ANO_INVALID_CHECKSUM,
                kind=AnomalyKind.OPTIONAL_HEADER,
                severity=Severity.MEDIUM,
                stored=opt.checksum,
                computed=computed,
            )

    dirs = opt.data_directories
    if len(dirs) > DirectoryEntry.RESERVED:
        reserved = dirs[DirectoryEntry.RESERVED]
        if reserved.virtual_address != 0 or reserved.size != 0:
            pe.add_anomaly(
                ANO_RESERVED_DATA_DIRECTORY,
                kind=AnomalyKind.DATA_DIRECTORY,
                severity=Severity.MEDIUM,
                rva=reserved.virtual_address,
                size=reserved.size,
            )


def get_anomalies(pe: "File") -> AnomalyList:
    """Run every structural check against ``pe`` and return its anomaly list."""
    # Imported here: heuristics needs the anomaly types defined above.
    from petriage.heuristics import detect_packed_binary

    _file_header_anomalies(pe)
    _optional_header_anomalies(pe)
    if pe.options.section_entropy:
        detect_packed_binary(pe)
    return pe.anomalies
