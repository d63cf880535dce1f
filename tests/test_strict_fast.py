from __future__ import annotations

import pytest

from petriage.config import Options, Severity
from petriage.errors import ErrorKind, StrictValidationError
from petriage.file import File

from pe_factory import build_pe, simple_pe


def test_strict_validation_raises_on_high_severity():
    data = build_pe([])  # NumberOfSections == 0
    with pytest.raises(StrictValidationError) as ei:
        File.from_bytes(data, options=Options(strict_validation=True)).parse()
    assert ei.value.kind is ErrorKind.STRICT_VALIDATION
    assert [a.message for a in ei.value.anomalies] == ["Number of sections is 0"]


def test_strict_validation_ignores_lower_severities_by_default():
    data = simple_pe(image_base=0)  # medium severity
    pe = File.from_bytes(data, options=Options(strict_validation=True)).parse()
    assert "Image base is 0" in pe.anomalies


def test_strict_severity_threshold_is_configurable():
    data = simple_pe(image_base=0)
    opts = Options(strict_validation=True, strict_severity=Severity.MEDIUM)
    with pytest.raises(StrictValidationError):
        File.from_bytes(data, options=opts).parse()


def test_anomalies_are_kept_when_strict_raises():
    pe = File.from_bytes(build_pe([]), options=Options(strict_validation=True))
    with pytest.raises(StrictValidationError):
        pe.parse()
    assert "Number of sections is 0" in pe.anomalies
    assert pe.info.has_nt_header is True


def test_lenient_mode_never_raises_for_anomalies():
    pe = File.from_bytes(build_pe([], time_stamp=0, image_base=0)).parse()
    assert len(pe.anomalies) >= 3


def test_fast_mode_skips_directories_and_symbols():
    data = simple_pe(directories={7: (0x1000, 0x10)}, symbol_table=(0x10000, 2))
    pe = File.from_bytes(data, options=Options(fast=True)).parse()
    assert pe.has_architecture is False
    assert pe.coff_symbols == []
    assert len(pe.anomalies) == 0
    assert len(pe.sections) == 1


def test_full_mode_parses_same_input_directories():
    data = simple_pe(directories={7: (0x1000, 0x10)})
    pe = File.from_bytes(data).parse()
    assert pe.has_architecture is True
