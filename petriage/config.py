from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

# Default parse caps. Public contract: a zero in Options resolves to these.
MAX_DEFAULT_EXPORT_ENTRIES_COUNT = 0x2000
MAX_DEFAULT_IMPORT_ENTRIES_COUNT = 0x1000
MAX_DEFAULT_RELOC_ENTRIES_COUNT = 0x1000
MAX_DEFAULT_COFF_SYMBOLS_COUNT = 0x10000

_CAP_DEFAULTS: Dict[str, int] = {
    "max_export_entries": MAX_DEFAULT_EXPORT_ENTRIES_COUNT,
    "max_import_entries": MAX_DEFAULT_IMPORT_ENTRIES_COUNT,
    "max_reloc_entries": MAX_DEFAULT_RELOC_ENTRIES_COUNT,
    "max_coff_symbols": MAX_DEFAULT_COFF_SYMBOLS_COUNT,
}


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2}


class Options(BaseModel):
    """Resolved, immutable parser configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    fast: bool = False
    section_entropy: bool = False
    validate_checksum: bool = False
    strict_validation: bool = False
    strict_severity: Severity = Severity.HIGH
    parse_debug_info: bool = False

    omit_security_directory: bool = False
    omit_resource_directory: bool = False
    omit_debug_directory: bool = False

    max_export_entries: int = Field(default=0, ge=0)
    max_import_entries: int = Field(default=0, ge=0)
    max_reloc_entries: int = Field(default=0, ge=0)
    max_coff_symbols: int = Field(default=0, ge=0)

    @field_validator("max_export_entries", "max_import_entries", "max_reloc_entries", "max_coff_symbols")
    @classmethod
    def _zero_means_default(cls, v: int, info: ValidationInfo) -> int:
        return v or _CAP_DEFAULTS[info.field_name]


def load_options(path: Optional[str]) -> Options:
    """
    Load Options from YAML. Accepts either a flat mapping of option fields or
    one nested under a top-level ``parser:`` key.
    """
    if not path:
        return Options()
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if isinstance(data, dict) and isinstance(data.get("parser"), dict):
        data = data["parser"]
    return Options.model_validate(data)


def options_snapshot(opts: Options) -> Dict[str, Any]:
    return opts.model_dump(mode="json")
