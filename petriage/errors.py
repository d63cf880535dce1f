from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    TRUNCATED_HEADER = "truncated_header"
    INVALID_LEGACY_SIGNATURE = "invalid_legacy_signature"
    HEADER_OFFSET_OUT_OF_RANGE = "header_offset_out_of_range"
    LEGACY_EXECUTABLE_SIGNATURE = "legacy_executable_signature"
    INVALID_MODERN_SIGNATURE = "invalid_modern_signature"
    INVALID_OPTIONAL_HEADER_MAGIC = "invalid_optional_header_magic"
    RVA_OUT_OF_RANGE = "rva_out_of_range"
    DATA_OUT_OF_BOUNDS = "data_out_of_bounds"
    STRICT_VALIDATION = "strict_validation"


class PEError(Exception):
    """Structural parse failure. Branch on ``kind`` (or the subclass), not the text."""

    kind: ErrorKind = ErrorKind.DATA_OUT_OF_BOUNDS
    code: str = "E_PE_ERROR"

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"kind": self.kind.value, "code": self.code, "message": self.message}
        d.update(self.extra)
        return d


class TruncatedHeaderError(PEError):
    kind = ErrorKind.TRUNCATED_HEADER
    code = "E_PE_HEADER_TRUNCATED"


class InvalidLegacySignatureError(PEError):
    kind = ErrorKind.INVALID_LEGACY_SIGNATURE
    code = "E_PE_BAD_DOS_SIGNATURE"


class HeaderOffsetOutOfRangeError(PEError):
    kind = ErrorKind.HEADER_OFFSET_OUT_OF_RANGE
    code = "E_PE_E_LFANEW_OOB"


class LegacyExecutableSignatureError(PEError):
    kind = ErrorKind.LEGACY_EXECUTABLE_SIGNATURE
    code = "E_PE_LEGACY_EXECUTABLE"


class InvalidModernSignatureError(PEError):
    kind = ErrorKind.INVALID_MODERN_SIGNATURE
    code = "E_PE_BAD_NT_SIGNATURE"


class InvalidOptionalHeaderMagicError(PEError):
    kind = ErrorKind.INVALID_OPTIONAL_HEADER_MAGIC
    code = "E_PE_OPT_BAD_MAGIC"


class RVAOutOfRangeError(PEError):
    kind = ErrorKind.RVA_OUT_OF_RANGE
    code = "E_PE_RVA_UNMAPPABLE"


class DataOutOfBoundsError(PEError):
    kind = ErrorKind.DATA_OUT_OF_BOUNDS
    code = "E_PE_DATA_OOB"


class StrictValidationError(PEError):
    kind = ErrorKind.STRICT_VALIDATION
    code = "E_PE_STRICT_VALIDATION"

    def __init__(self, message: str, anomalies: Optional[List[Any]] = None, **extra: Any) -> None:
        super().__init__(message, **extra)
        self.anomalies = list(anomalies or [])
