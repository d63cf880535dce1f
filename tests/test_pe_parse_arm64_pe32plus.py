from __future__ import annotations

from petriage.file import File
from petriage.headers import OptionalHeader64

from pe_factory import TEXT, build_pe, section


def _build_arm64_pe32plus(**kwargs) -> bytes:
    return bytes(
        build_pe(
            [section(b".text", 0x1000, 0x200, 0x200, vsize=0x100, chars=TEXT, data=b"\x1f\x20\x03\xd5" * 0x80)],
            machine=0xAA64,
            pe32_plus=True,
            characteristics=0x0022,
            **kwargs,
        )
    )


def test_arm64_pe32plus_detected():
    pe = File.from_bytes(_build_arm64_pe32plus()).parse()
    assert pe.is_64 is True
    assert pe.info.is_64 is True
    assert pe.info.is_32 is False
    assert isinstance(pe.nt_header.optional_header, OptionalHeader64)
    assert pe.nt_header.file_header.machine == 0xAA64
    assert pe.nt_header.file_header.machine_name == "ARM64 little endian"
    assert pe.nt_header.optional_header.magic == 0x20B
    assert pe.image_base == 0x140000000
    assert len(pe.sections) == 1


def test_pe32plus_clean_headers_have_no_anomalies():
    pe = File.from_bytes(_build_arm64_pe32plus()).parse()
    assert len(pe.anomalies) == 0, pe.anomalies.messages()


def test_pe32plus_uncommon_optional_header_size():
    data = bytearray(_build_arm64_pe32plus())
    # SizeOfOptionalHeader lives at offset 16 of the COFF header.
    data[0x80 + 4 + 16 : 0x80 + 4 + 18] = (0xF8).to_bytes(2, "little")
    pe = File.from_bytes(data).parse()
    assert "Size of optional header is not 240 bytes" in pe.anomalies


def test_to_dict_reports_entrypoint_section():
    pe = File.from_bytes(_build_arm64_pe32plus()).parse()
    d = pe.to_dict()
    assert d["info"]["is_64"] is True
    assert d["nt_header"]["file_header"]["machine_name"] == "ARM64 little endian"
    assert d["nt_header"]["optional_header"]["subsystem_name"]
    assert d["entrypoint_section"] == ".text"
    assert d["sections"][0]["executable"] is True


def test_arm64x_is_flagged_as_hybrid():
    data = bytearray(_build_arm64_pe32plus())
    data[0x84:0x86] = (0xA64E).to_bytes(2, "little")
    pe = File.from_bytes(data).parse()
    assert pe.nt_header.file_header.machine_name == "ARM64X (dual-architecture)"
    assert pe.nt_header.file_header.is_arm64_hybrid is True
    assert pe.to_dict()["nt_header"]["file_header"]["is_arm64_hybrid"] is True


def test_plain_arm64_is_not_hybrid():
    pe = File.from_bytes(_build_arm64_pe32plus()).parse()
    assert pe.nt_header.file_header.is_arm64_hybrid is False
