from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List

from petriage.anomaly import AnomalyKind
from petriage.config import Severity
from petriage.constants import certificate_type_name
from petriage.errors import DataOutOfBoundsError
from petriage.reader import align8

if TYPE_CHECKING:
    from petriage.file import File

_WIN_CERTIFICATE = struct.Struct("<IHH")


@dataclass
class Certificate:
    offset: int = 0
    length: int = 0
    revision: int = 0
    certificate_type: int = 0
    raw: bytes = b""

    @property
    def type_name(self) -> str:
        return certificate_type_name(self.certificate_type)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "offset": self.offset,
            "length": self.length,
            "revision": self.revision,
            "certificate_type": self.certificate_type,
            "type_name": self.type_name,
        }


def parse_security_directory(pe: "File", rva: int, size: int) -> None:
    """
    WIN_CERTIFICATE records. The directory "RVA" is a plain file offset, so the
    address translator is bypassed. Records are 8-byte aligned.
    """
    data = pe.data
    if rva + size > len(data):
        raise DataOutOfBoundsError(
            "Security directory extends past the end of the file.", offset=rva, size=size, data_size=len(data)
        )

    end = rva + size
    off = rva
    certs: List[Certificate] = []
    while off + _WIN_CERTIFICATE.size <= end:
        length, revision, cert_type = _WIN_CERTIFICATE.unpack_from(data, off)
        if length < _WIN_CERTIFICATE.size or off + length > end:
            pe.add_anomaly(
                "Implausible WIN_CERTIFICATE length, certificate parsing stopped",
                kind=AnomalyKind.DATA_DIRECTORY,
                severity=Severity.MEDIUM,
                offset=off,
                length=length,
            )
            break
        certs.append(
            Certificate(
                offset=off,
                length=length,
                revision=revision,
                certificate_type=cert_type,
                raw=bytes(data[off + _WIN_CERTIFICATE.size : off + length]),
            )
        )
        off = align8(off + length)

    pe.certificates = certs
    pe.info.has_security = True
