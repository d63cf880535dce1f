from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from petriage.config import (
    MAX_DEFAULT_COFF_SYMBOLS_COUNT,
    MAX_DEFAULT_EXPORT_ENTRIES_COUNT,
    MAX_DEFAULT_IMPORT_ENTRIES_COUNT,
    MAX_DEFAULT_RELOC_ENTRIES_COUNT,
    Options,
    Severity,
    load_options,
    options_snapshot,
)


def test_defaults():
    opts = Options()
    assert opts.fast is False
    assert opts.section_entropy is False
    assert opts.strict_validation is False
    assert opts.strict_severity is Severity.HIGH
    assert opts.max_export_entries == MAX_DEFAULT_EXPORT_ENTRIES_COUNT == 0x2000
    assert opts.max_import_entries == MAX_DEFAULT_IMPORT_ENTRIES_COUNT == 0x1000
    assert opts.max_reloc_entries == MAX_DEFAULT_RELOC_ENTRIES_COUNT == 0x1000
    assert opts.max_coff_symbols == MAX_DEFAULT_COFF_SYMBOLS_COUNT == 0x10000


def test_zero_caps_resolve_to_defaults():
    opts = Options(max_export_entries=0, max_import_entries=0, max_reloc_entries=0, max_coff_symbols=0)
    assert opts == Options()


def test_explicit_caps_are_kept():
    opts = Options(max_export_entries=5, max_reloc_entries=7)
    assert opts.max_export_entries == 5
    assert opts.max_reloc_entries == 7
    assert opts.max_import_entries == MAX_DEFAULT_IMPORT_ENTRIES_COUNT


def test_negative_cap_rejected():
    with pytest.raises(ValidationError):
        Options(max_import_entries=-1)


def test_unknown_option_rejected():
    with pytest.raises(ValidationError):
        Options(max_imports=3)


def test_options_are_frozen():
    opts = Options()
    with pytest.raises(ValidationError):
        opts.fast = True


def test_load_options_none_gives_defaults():
    assert load_options(None) == Options()


def test_load_options_flat_yaml(tmp_path: Path):
    p = tmp_path / "opts.yaml"
    p.write_text("fast: true\nmax_reloc_entries: 12\nstrict_severity: medium\n", encoding="utf-8")
    opts = load_options(str(p))
    assert opts.fast is True
    assert opts.max_reloc_entries == 12
    assert opts.strict_severity is Severity.MEDIUM


def test_load_options_nested_under_parser(tmp_path: Path):
    p = tmp_path / "opts.yaml"
    p.write_text("parser:\n  section_entropy: true\n  max_export_entries: 0\n", encoding="utf-8")
    opts = load_options(str(p))
    assert opts.section_entropy is True
    assert opts.max_export_entries == MAX_DEFAULT_EXPORT_ENTRIES_COUNT


def test_load_options_empty_file(tmp_path: Path):
    p = tmp_path / "empty.yaml"
    p.write_text("", encoding="utf-8")
    assert load_options(str(p)) == Options()


def test_snapshot_is_json_ready():
    snap = options_snapshot(Options(strict_severity=Severity.LOW))
    assert snap["strict_severity"] == "low"
    assert snap["max_coff_symbols"] == 0x10000
