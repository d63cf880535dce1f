from __future__ import annotations

from typing import List, Optional

from petriage.anomaly import AnomalyKind
from petriage.config import Options
from petriage.file import File
from petriage.heuristics import detect_packed_binary, entrypoint_section_name
from petriage.imports import Import
from petriage.sections import Section

EXEC = 0x60000020
DATA = 0x40000040


def _sec(name: str, *, entropy: Optional[float] = 5.0, chars: int = DATA, va: int = 0x1000) -> Section:
    return Section(
        name=name,
        virtual_size=0x1000,
        virtual_address=va,
        size_of_raw_data=0x1000,
        pointer_to_raw_data=0x400,
        characteristics=chars,
        entropy=entropy,
    )


def _pe(sections: List[Section], *, imports: int = 10) -> File:
    pe = File(options=Options(section_entropy=True))
    pe.sections = sections
    pe.imports = [Import(name=f"dll{i}.dll") for i in range(imports)]
    return pe


def _messages(pe: File) -> List[str]:
    detect_packed_binary(pe)
    return pe.anomalies.messages()


def test_normal_binary_has_no_indicators():
    pe = _pe([_sec(".text", chars=EXEC, entropy=6.2), _sec(".data", entropy=4.0), _sec(".rsrc", entropy=3.1)])
    assert _messages(pe) == []


def test_high_entropy_section():
    pe = _pe([_sec(".text", chars=EXEC, entropy=6.0), _sec(".data", entropy=7.9)])
    msgs = _messages(pe)
    assert "Section .data has very high entropy (7.90)" in msgs
    assert "High proportion of sections with elevated entropy" not in msgs


def test_high_proportion_of_elevated_entropy():
    pe = _pe([_sec(".text", chars=EXEC, entropy=7.2), _sec(".data", entropy=7.1), _sec(".rsrc", entropy=2.0)])
    msgs = _messages(pe)
    assert "High proportion of sections with elevated entropy" in msgs
    assert not any("very high entropy" in m for m in msgs)


def test_upx_sections():
    pe = _pe([_sec("UPX0", chars=EXEC), _sec("UPX1", chars=EXEC)])
    msgs = _messages(pe)
    assert "UPX packer signature detected in section UPX0" in msgs
    assert "UPX packer signature detected in section UPX1" in msgs
    assert all(a.kind is AnomalyKind.PACKER for a in pe.anomalies)


def test_section_names_are_case_insensitive():
    pe = _pe([_sec(".aspack", chars=EXEC)])
    assert "ASPack packer signature detected in section .aspack" in _messages(pe)


def test_commercial_protector():
    pe = _pe([_sec(".text", chars=EXEC), _sec(".vmp0"), _sec(".themida")])
    msgs = _messages(pe)
    assert "Commercial protector signature detected in section .vmp0 (VMProtect)" in msgs
    assert "Commercial protector signature detected in section .themida (Themida)" in msgs


def test_generic_pack_name():
    pe = _pe([_sec(".text", chars=EXEC), _sec(".mypack")])
    assert "Suspicious packed section name: .mypack" in _messages(pe)


def test_no_executable_sections():
    pe = _pe([_sec(".data"), _sec(".rdata")])
    assert "No executable sections found" in _messages(pe)


def test_too_many_executable_sections():
    pe = _pe([_sec(f".t{i}", chars=EXEC) for i in range(4)])
    assert "Unusually high number of executable sections" in _messages(pe)


def test_few_imports_and_no_exports():
    pe = _pe([_sec(".text", chars=EXEC)], imports=2)
    assert "Very few imports and no exports" in _messages(pe)


def test_no_sections_skips_layout_checks():
    pe = _pe([])
    msgs = _messages(pe)
    assert "No executable sections found" not in msgs
    assert "Unusually high number of executable sections" not in msgs


def test_unmeasured_sections_are_not_counted():
    pe = _pe([_sec(".text", chars=EXEC, entropy=None), _sec(".data", entropy=None)])
    assert _messages(pe) == []


def test_entrypoint_section_name():
    sections = [_sec(".text", va=0x1000), _sec(".data", va=0x2000)]
    assert entrypoint_section_name(0x1010, sections) == ".text"
    assert entrypoint_section_name(0x2FFF, sections) == ".data"
    assert entrypoint_section_name(0x9000, sections) is None
    assert entrypoint_section_name(0, sections) is None

