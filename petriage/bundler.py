from __future__ import annotations
from pathlib import Path
import json
from typing import Dict, Any

from petriage.model import Report


def write_json(path: Path, obj: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(obj, indent=2, ensure_ascii=False), encoding="utf-8")


def write_report(path: Path, report: Report) -> Path:
    """Write ``report`` as JSON. A directory target gets ``<sha256>.json`` inside it."""
    if path.is_dir():
        path = path / f"{report.input.sha256}.json"
    write_json(path, report.model_dump(mode="json"))
    return path
