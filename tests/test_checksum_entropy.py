from __future__ import annotations

import math
import os
import struct

import pytest

from petriage.checksum import compute_checksum
from petriage.config import Options
from petriage.entropy import shannon_entropy
from petriage.file import File

from pe_factory import simple_pe

CHECKSUM_FIELD = 0x80 + 24 + 64


def test_checksum_odd_length_pads_with_zero():
    # 0x0001 + 0x0002 + 0x0003 (padded) + length 5
    assert compute_checksum(b"\x01\x00\x02\x00\x03") == 11


def test_checksum_folds_carry():
    # 0xFFFF + 0x0002 = 0x10001 -> 0x0002, + length 4
    assert compute_checksum(b"\xff\xff\x02\x00") == 6


def test_checksum_empty():
    assert compute_checksum(b"") == 0


def test_checksum_ignores_stored_field():
    data = simple_pe()
    before = compute_checksum(data, CHECKSUM_FIELD)
    struct.pack_into("<I", data, CHECKSUM_FIELD, 0xDEADBEEF)
    assert compute_checksum(data, CHECKSUM_FIELD) == before


def test_checksum_offset_outside_data_is_ignored():
    assert compute_checksum(b"\x01\x00", 100) == compute_checksum(b"\x01\x00")


def test_file_checksum_matches_stored_value():
    data = simple_pe()
    value = compute_checksum(data, CHECKSUM_FIELD)
    struct.pack_into("<I", data, CHECKSUM_FIELD, value)

    pe = File.from_bytes(data, options=Options(validate_checksum=True)).parse()
    assert pe.checksum_offset == CHECKSUM_FIELD
    assert pe.checksum() == value
    assert "Optional header checksum is invalid" not in pe.anomalies


def test_invalid_checksum_is_an_anomaly_only_when_validated():
    data = simple_pe(checksum=0x1234)
    pe = File.from_bytes(data, options=Options(validate_checksum=True)).parse()
    assert "Optional header checksum is invalid" in pe.anomalies

    pe = File.from_bytes(data).parse()
    assert "Optional header checksum is invalid" not in pe.anomalies


def test_zero_stored_checksum_is_not_validated():
    pe = File.from_bytes(simple_pe(checksum=0), options=Options(validate_checksum=True)).parse()
    assert "Optional header checksum is invalid" not in pe.anomalies


def test_entropy_empty_is_zero():
    assert shannon_entropy(b"") == 0.0


def test_entropy_constant_is_zero():
    assert shannon_entropy(b"\x00" * 4096) == 0.0


def test_entropy_two_symbols():
    assert shannon_entropy(b"ab") == pytest.approx(1.0)


def test_entropy_all_bytes_is_eight():
    assert shannon_entropy(bytes(range(256)) * 16) == pytest.approx(8.0)


def test_entropy_is_bounded():
    e = shannon_entropy(os.urandom(4096))
    assert 0.0 <= e <= 8.0
    assert not math.isnan(e)


def test_section_entropy_only_when_enabled():
    pe = File.from_bytes(simple_pe()).parse()
    assert pe.sections[0].entropy is None

    pe = File.from_bytes(simple_pe(), options=Options(section_entropy=True)).parse()
    # A section of NOPs.
    assert pe.sections[0].entropy == 0.0
