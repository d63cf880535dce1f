"""
IMAGE_LOAD_CONFIG_DIRECTORY, the fields common to every version up to
GuardFlags. The structure grew over Windows releases; the leading ``Size``
field says how much of it a given image carries, and fields past that point
stay zero.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Tuple

from petriage.errors import DataOutOfBoundsError
from petriage.reader import u16, u32, u64

if TYPE_CHECKING:
    from petriage.file import File

_READERS = {"H": (2, u16), "I": (4, u32), "Q": (8, u64)}

# (field, width) where width "P" is pointer sized.
_LAYOUT: List[Tuple[str, str]] = [
    ("size", "I"),
    ("time_date_stamp", "I"),
    ("major_version", "H"),
    ("minor_version", "H"),
    ("global_flags_clear", "I"),
    ("global_flags_set", "I"),
    ("critical_section_default_timeout", "I"),
    ("de_commit_free_block_threshold", "P"),
    ("de_commit_total_free_threshold", "P"),
    ("lock_prefix_table", "P"),
    ("maximum_allocation_size", "P"),
    ("virtual_memory_threshold", "P"),
    ("process_affinity_mask", "P"),
    ("process_heap_flags", "I"),
    ("csd_version", "H"),
    ("dependent_load_flags", "H"),
    ("edit_list", "P"),
    ("security_cookie", "P"),
    ("se_handler_table", "P"),
    ("se_handler_count", "P"),
    ("guard_cf_check_function_pointer", "P"),
    ("guard_cf_dispatch_function_pointer", "P"),
    ("guard_cf_function_table", "P"),
    ("guard_cf_function_count", "P"),
    ("guard_flags", "I"),
]


@dataclass
class LoadConfig:
    size: int = 0
    time_date_stamp: int = 0
    major_version: int = 0
    minor_version: int = 0
    global_flags_clear: int = 0
    global_flags_set: int = 0
    critical_section_default_timeout: int = 0
    de_commit_free_block_threshold: int = 0
    de_commit_total_free_threshold: int = 0
    lock_prefix_table: int = 0
    maximum_allocation_size: int = 0
    virtual_memory_threshold: int = 0
    process_affinity_mask: int = 0
    process_heap_flags: int = 0
    csd_version: int = 0
    dependent_load_flags: int = 0
    edit_list: int = 0
    security_cookie: int = 0
    se_handler_table: int = 0
    se_handler_count: int = 0
    guard_cf_check_function_pointer: int = 0
    guard_cf_dispatch_function_pointer: int = 0
    guard_cf_function_table: int = 0
    guard_cf_function_count: int = 0
    guard_flags: int = 0


def parse_load_config_directory(pe: "File", rva: int, size: int) -> None:
    off = pe.rva_to_offset(rva)
    data = pe.data
    declared = u32(data, off)
    if declared is None:
        raise DataOutOfBoundsError("Load config directory truncated.", offset=off)

    limit = off + (declared or size)
    limit = min(limit, len(data))

    cfg = LoadConfig()
    cur = off
    for name, width in _LAYOUT:
        if width == "P":
            width = "Q" if pe.is_64 else "I"
        nbytes, reader = _READERS[width]
        if cur + nbytes > limit:
            break
        setattr(cfg, name, reader(data, cur))
        cur += nbytes

    pe.load_config = cfg
    pe.info.has_load_config = True
