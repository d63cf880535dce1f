from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Set

from petriage.anomaly import AnomalyKind
from petriage.config import Severity
from petriage.constants import RT_VERSION, resource_type_name
from petriage.errors import DataOutOfBoundsError, PEError
from petriage.reader import align4, read_utf16le_zstring, u16, unpack_at

if TYPE_CHECKING:
    from petriage.file import File

_RESOURCE_DIRECTORY = struct.Struct("<IIHHHH")
_RESOURCE_DIRECTORY_ENTRY = struct.Struct("<II")
_RESOURCE_DATA_ENTRY = struct.Struct("<IIII")

MAX_RESOURCE_NODES = 4096
MAX_RESOURCE_DEPTH = 8
MAX_VERSIONINFO_SIZE = 2_000_000


@dataclass
class ResourceDirectoryTable:
    characteristics: int = 0
    time_date_stamp: int = 0
    major_version: int = 0
    minor_version: int = 0
    number_of_named_entries: int = 0
    number_of_id_entries: int = 0


@dataclass
class ResourceDataEntry:
    offset_to_data: int = 0
    size: int = 0
    code_page: int = 0
    reserved: int = 0


@dataclass
class ResourceDirectoryEntry:
    name: str = ""
    id: int = 0
    is_named: bool = False
    is_directory: bool = False
    offset: int = 0
    directory: Optional["ResourceDirectory"] = None
    data: Optional[ResourceDataEntry] = None


@dataclass
class ResourceDirectory:
    struct: ResourceDirectoryTable = field(default_factory=ResourceDirectoryTable)
    entries: List[ResourceDirectoryEntry] = field(default_factory=list)


@dataclass
class Resources:
    root: ResourceDirectory = field(default_factory=ResourceDirectory)
    version_info: Dict[str, str] = field(default_factory=dict)

    def type_names(self) -> List[str]:
        return [e.name if e.is_named else resource_type_name(e.id) for e in self.root.entries]


_VERSION_BLOCK_HEADER = struct.Struct("<HHH")
_VERSION_CONTAINERS = ("VS_VERSION_INFO", "StringFileInfo", "VarFileInfo")


@dataclass
class _VersionBlock:
    value_length: int
    is_text: bool
    key: str
    value_off: int
    end: int

    @property
    def children_off(self) -> int:
        # wValueLength counts WCHARs for text values, bytes otherwise.
        size = self.value_length * 2 if self.is_text else self.value_length
        return align4(self.value_off + size)


class _VersionInfoReader:
    """
    Collects String key/value pairs from a VS_VERSIONINFO blob
    (VS_VERSIONINFO / StringFileInfo / StringTable / String). The first value
    seen for a key wins; malformed blocks end the walk of their parent and are
    reported as LOW anomalies.
    """

    def __init__(
        self, pe: "File", blob: bytes, *, max_pairs: int = 200, max_key_chars: int = 200, max_val_chars: int = 2000
    ) -> None:
        self.pe = pe
        self.blob = blob
        self.max_pairs = max_pairs
        self.max_key_chars = max_key_chars
        self.max_val_chars = max_val_chars
        self.pairs: Dict[str, str] = {}

    def problem(self, message: str, **context: object) -> None:
        self.pe.add_anomaly(message, kind=AnomalyKind.DATA_DIRECTORY, severity=Severity.LOW, **context)

    def block(self, off: int, limit: int) -> Optional[_VersionBlock]:
        if off + _VERSION_BLOCK_HEADER.size > limit:
            return None
        length, value_length, value_type = _VERSION_BLOCK_HEADER.unpack_from(self.blob, off)
        if length < _VERSION_BLOCK_HEADER.size or off + length > limit:
            return None
        key, consumed = read_utf16le_zstring(self.blob, off + 6, max_chars=self.max_key_chars)
        if key is None or consumed <= 0:
            return None
        return _VersionBlock(value_length, value_type == 1, key, align4(off + 6 + consumed), off + length)

    def read(self) -> Dict[str, str]:
        root = self.block(0, len(self.blob))
        if root is None:
            self.problem("VersionInfo root block is malformed")
            return {}
        if root.key != "VS_VERSION_INFO":
            self.problem(f"VersionInfo root key is {root.key!r}")
            return {}
        self.children(root, 0)
        return {k: self.pairs[k] for k in sorted(self.pairs)}

    def children(self, parent: _VersionBlock, depth: int) -> None:
        if depth > MAX_RESOURCE_DEPTH:
            self.problem("VersionInfo nesting too deep", key=parent.key)
            return
        cur = parent.children_off
        while cur + _VERSION_BLOCK_HEADER.size <= parent.end:
            blk = self.block(cur, parent.end)
            if blk is None:
                break
            if blk.key not in _VERSION_CONTAINERS and blk.is_text and blk.value_length:
                self.add_string(blk)
            if blk.children_off < blk.end:
                self.children(blk, depth + 1)
            cur = align4(blk.end)

    def add_string(self, blk: _VersionBlock) -> None:
        if len(self.pairs) >= self.max_pairs:
            return
        raw_len = min(blk.value_length, self.max_val_chars) * 2
        if blk.value_off + raw_len > blk.end:
            return
        raw = bytes(self.blob[blk.value_off : blk.value_off + raw_len])
        self.pairs.setdefault(blk.key, raw.decode("utf-16le", errors="replace").rstrip("\x00"))


class _TreeWalker:
    def __init__(self, pe: "File", base_off: int, base_end: int) -> None:
        self.pe = pe
        self.base_off = base_off
        self.base_end = base_end
        self.nodes = 0
        self.visited: Set[int] = set()
        self.capped = False

    def read_name(self, rel: int) -> str:
        off = self.base_off + rel
        length = u16(self.pe.data, off)
        if length is None or off + 2 + length * 2 > self.base_end:
            return ""
        return bytes(self.pe.data[off + 2 : off + 2 + length * 2]).decode("utf-16le", errors="replace")

    def walk(self, rel: int, depth: int) -> Optional[ResourceDirectory]:
        if depth > MAX_RESOURCE_DEPTH or rel in self.visited:
            self.pe.add_anomaly(
                "Resource directory tree is recursive or too deep",
                kind=AnomalyKind.DATA_DIRECTORY,
                severity=Severity.HIGH,
                offset=rel,
            )
            return None
        self.visited.add(rel)

        off = self.base_off + rel
        if off + _RESOURCE_DIRECTORY.size > self.base_end:
            self.pe.log("warn", "Resource directory out of bounds", offset=rel)
            return None
        table = ResourceDirectoryTable(*unpack_at(self.pe.data, _RESOURCE_DIRECTORY, off))
        directory = ResourceDirectory(struct=table)

        total = table.number_of_named_entries + table.number_of_id_entries
        for i in range(total):
            if self.nodes >= MAX_RESOURCE_NODES:
                if not self.capped:
                    self.capped = True
                    self.pe.add_anomaly(
                        f"Resource tree exceeds {MAX_RESOURCE_NODES} nodes, parsing capped",
                        kind=AnomalyKind.LIMIT,
                        severity=Severity.MEDIUM,
                    )
                break
            self.nodes += 1

            ent_off = off + _RESOURCE_DIRECTORY.size + i * _RESOURCE_DIRECTORY_ENTRY.size
            if ent_off + _RESOURCE_DIRECTORY_ENTRY.size > self.base_end:
                break
            name_or_id, offset_to_data = _RESOURCE_DIRECTORY_ENTRY.unpack_from(self.pe.data, ent_off)

            entry = ResourceDirectoryEntry(offset=offset_to_data & 0x7FFFFFFF)
            if name_or_id & 0x80000000:
                entry.is_named = True
                entry.name = self.read_name(name_or_id & 0x7FFFFFFF)
            else:
                entry.id = name_or_id & 0xFFFF

            if offset_to_data & 0x80000000:
                entry.is_directory = True
                entry.directory = self.walk(entry.offset, depth + 1)
            else:
                data_off = self.base_off + entry.offset
                if data_off + _RESOURCE_DATA_ENTRY.size <= self.base_end:
                    entry.data = ResourceDataEntry(*_RESOURCE_DATA_ENTRY.unpack_from(self.pe.data, data_off))
            directory.entries.append(entry)
        return directory


def _first_leaf(directory: Optional[ResourceDirectory]) -> Optional[ResourceDataEntry]:
    if directory is None:
        return None
    for entry in directory.entries:
        if entry.data is not None:
            return entry.data
        leaf = _first_leaf(entry.directory)
        if leaf is not None:
            return leaf
    return None


def _version_info(pe: "File", root: ResourceDirectory) -> Dict[str, str]:
    version_dir = next(
        (e.directory for e in root.entries if not e.is_named and e.id == RT_VERSION and e.directory),
        None,
    )
    leaf = _first_leaf(version_dir)
    if leaf is None or leaf.size == 0:
        return {}

    size = leaf.size
    if size > MAX_VERSIONINFO_SIZE:
        pe.add_anomaly(
            "VersionInfo resource is unusually large",
            kind=AnomalyKind.DATA_DIRECTORY,
            severity=Severity.LOW,
            size=size,
        )
        size = MAX_VERSIONINFO_SIZE

    try:
        blob = pe.get_data(leaf.offset_to_data, size)
    except PEError as e:
        pe.log("warn", "VersionInfo data unreadable", rva=leaf.offset_to_data, error=e.code)
        return {}

    return _VersionInfoReader(pe, blob).read()


def parse_resource_directory(pe: "File", rva: int, size: int) -> None:
    """Full type/name/language tree plus VS_VERSIONINFO strings from the first RT_VERSION leaf."""
    base_off = pe.rva_to_offset(rva)
    base_end = min(pe.size, base_off + size)
    if base_end - base_off < _RESOURCE_DIRECTORY.size:
        raise DataOutOfBoundsError("Resource directory truncated.", offset=base_off, size=size)

    walker = _TreeWalker(pe, base_off, base_end)
    root = walker.walk(0, 0)
    if root is None:
        return

    pe.resources = Resources(root=root, version_info=_version_info(pe, root))
    pe.info.has_resource = True
