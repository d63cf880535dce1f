from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from petriage.errors import PEError


def utc_now_iso() -> str:
    """
    UTC timestamp in ISO-8601 with 'Z' suffix, seconds precision.
    Example: 2026-01-08T17:12:34Z
    """
    return (
        datetime.now(timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )


def file_hashes(path: Path) -> tuple[str, str]:
    sha256 = hashlib.sha256()
    md5 = hashlib.md5()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            sha256.update(chunk)
            md5.update(chunk)
    return sha256.hexdigest(), md5.hexdigest()


class InputEvidence(BaseModel):
    input_path: str
    file_size: int
    sha256: str
    md5: str

    @classmethod
    def from_path(cls, path: Path) -> "InputEvidence":
        sha256, md5 = file_hashes(path)
        return cls(input_path=str(path), file_size=path.stat().st_size, sha256=sha256, md5=md5)


class ErrorInfo(BaseModel):
    kind: str
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_error(cls, err: PEError) -> "ErrorInfo":
        details = {k: v for k, v in err.extra.items() if isinstance(v, (str, int, float, bool)) or v is None}
        return cls(kind=err.kind.value, code=err.code, message=err.message, details=details)


class Report(BaseModel):
    schema_version: str = "1.0"
    timestamp_utc: str = Field(default_factory=utc_now_iso)

    input: InputEvidence
    options: Dict[str, Any] = Field(default_factory=dict)
    pe: Optional[Dict[str, Any]] = None
    anomalies: List[Dict[str, Any]] = Field(default_factory=list)
    error: Optional[ErrorInfo] = None
