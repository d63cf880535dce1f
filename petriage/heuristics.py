from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

from petriage.anomaly import AnomalyKind
from petriage.config import Severity
from petriage.sections import Section

if TYPE_CHECKING:
    from petriage.file import File

VERY_HIGH_ENTROPY = 7.5
ELEVATED_ENTROPY = 7.0
MIN_IMPORTS = 5
MAX_EXECUTABLE_SECTIONS = 3

# Keyed by the upper-cased section name.
_PACKER_SECTION_NAMES = {
    "UPX0": "UPX",
    "UPX1": "UPX",
    "UPX2": "UPX",
    ".UPX": "UPX",
    ".ASPACK": "ASPack",
    ".MPRESS1": "MPRESS",
    ".MPRESS2": "MPRESS",
    "FSG!": "FSG",
    "MEW": "MEW",
    ".PETITE": "Petite",
    ".NSP0": "NsPack",
    ".NSP1": "NsPack",
    ".NSP2": "NsPack",
    ".BOOM": "Boomerang",
}

_PROTECTOR_SECTION_NAMES = {
    ".THEMIDA": "Themida",
    ".WINLICE": "WinLicense",
    ".VMP": "VMProtect",
    ".VMP0": "VMProtect",
    ".VMP1": "VMProtect",
    ".VMP2": "VMProtect",
    ".ENIGMA1": "Enigma",
    ".ENIGMA2": "Enigma",
}


def _normalize_section_name(name: str) -> str:
    return (name or "").strip()


def entrypoint_section_name(address_of_entry_point: Optional[int], sections: List[Section]) -> Optional[str]:
    """
    Return the section name that contains AddressOfEntryPoint RVA.
    Deterministic: first match in section order.
    """
    if not address_of_entry_point or address_of_entry_point <= 0:
        return None
    for s in sections:
        span = max(s.virtual_size, s.size_of_raw_data)
        if span <= 0:
            continue
        if s.virtual_address <= address_of_entry_point < s.virtual_address + span:
            return _normalize_section_name(s.name)
    return None


def _section_name_anomalies(pe: "File", section: Section) -> None:
    name = _normalize_section_name(section.name)
    if not name:
        return
    key = name.upper()

    packer = _PACKER_SECTION_NAMES.get(key)
    if packer:
        pe.add_anomaly(
            f"{packer} packer signature detected in section {name}",
            kind=AnomalyKind.PACKER,
            severity=Severity.MEDIUM,
            section=name,
        )
        return

    protector = _PROTECTOR_SECTION_NAMES.get(key)
    if protector:
        pe.add_anomaly(
            f"Commercial protector signature detected in section {name} ({protector})",
            kind=AnomalyKind.PACKER,
            severity=Severity.MEDIUM,
            section=name,
        )
        return

    if "PACK" in key:
        pe.add_anomaly(
            f"Suspicious packed section name: {name}",
            kind=AnomalyKind.PACKER,
            severity=Severity.LOW,
            section=name,
        )


def detect_packed_binary(pe: "File") -> None:
    """
    Packing indicators from section entropy, executable layout, the size of the
    import/export surface and well-known packer section names. Indicators only,
    not a verdict.
    """
    measured = 0
    elevated = 0
    executable = 0

    for s in pe.sections:
        if s.entropy is not None:
            measured += 1
            if s.entropy > ELEVATED_ENTROPY:
                elevated += 1
            if s.entropy > VERY_HIGH_ENTROPY:
                pe.add_anomaly(
                    f"Section {_normalize_section_name(s.name)} has very high entropy ({s.entropy:.2f})",
                    kind=AnomalyKind.SECTION,
                    severity=Severity.MEDIUM,
                    section=s.name,
                    entropy=s.entropy,
                )
        if s.is_executable:
            executable += 1
        _section_name_anomalies(pe, s)

    if measured and elevated * 2 > measured:
        pe.add_anomaly(
            "High proportion of sections with elevated entropy",
            kind=AnomalyKind.SECTION,
            severity=Severity.MEDIUM,
            elevated=elevated,
            measured=measured,
        )

    exported = len(pe.export.functions) if pe.export is not None else 0
    if len(pe.imports) < MIN_IMPORTS and exported == 0:
        pe.add_anomaly(
            "Very few imports and no exports",
            kind=AnomalyKind.PACKER,
            severity=Severity.LOW,
            imports=len(pe.imports),
        )

    if pe.sections:
        if executable == 0:
            pe.add_anomaly("No executable sections found", kind=AnomalyKind.SECTION, severity=Severity.MEDIUM)
        elif executable > MAX_EXECUTABLE_SECTIONS:
            pe.add_anomaly(
                "Unusually high number of executable sections",
                kind=AnomalyKind.SECTION,
                severity=Severity.LOW,
                executable_sections=executable,
            )
