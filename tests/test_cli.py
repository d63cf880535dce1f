from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from petriage.checksum import compute_checksum
from petriage.cli import EXIT_IO_ERROR, EXIT_OK, EXIT_PARSE_ERROR, app

from pe_factory import build_pe, simple_pe


def _write(tmp_path: Path, name: str, data: bytes) -> Path:
    p = tmp_path / name
    p.write_bytes(bytes(data))
    return p


def test_cli_version():
    result = CliRunner().invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "petriage version:" in result.stdout


def test_cli_scan_writes_json_report(tmp_path: Path):
    sample = _write(tmp_path, "sample.exe", simple_pe(directories={7: (0x1000, 0x10)}))
    out = tmp_path / "report.json"

    result = CliRunner().invoke(app, ["scan", str(sample), "--json-out", str(out), "--quiet"])
    assert result.exit_code == EXIT_OK, result.stdout

    report = json.loads(out.read_text(encoding="utf-8"))
    assert report["timestamp_utc"].endswith("Z")
    assert report["input"]["file_size"] == sample.stat().st_size
    assert len(report["input"]["sha256"]) == 64
    assert report["pe"]["info"]["is_32"] is True
    assert report["pe"]["sections"][0]["name"] == ".text"
    assert report["error"] is None
    messages = [a["message"] for a in report["anomalies"]]
    assert any(m.startswith("Architecture directory present") for m in messages)


def test_cli_scan_directory_target_uses_sha256_name(tmp_path: Path):
    sample = _write(tmp_path, "sample.exe", simple_pe())
    outdir = tmp_path / "out"
    outdir.mkdir()

    result = CliRunner().invoke(app, ["scan", str(sample), "--json-out", str(outdir), "-q"])
    assert result.exit_code == EXIT_OK
    reports = list(outdir.glob("*.json"))
    assert len(reports) == 1
    assert len(reports[0].stem) == 64


def test_cli_scan_flags_reach_options(tmp_path: Path):
    sample = _write(tmp_path, "sample.exe", simple_pe())
    out = tmp_path / "report.json"

    result = CliRunner().invoke(app, ["scan", str(sample), "--entropy", "--fast", "--json-out", str(out), "-q"])
    assert result.exit_code == EXIT_OK
    report = json.loads(out.read_text(encoding="utf-8"))
    assert report["options"]["section_entropy"] is True
    assert report["options"]["fast"] is True
    assert report["pe"]["sections"][0]["entropy"] == 0.0


def test_cli_scan_config_file(tmp_path: Path):
    sample = _write(tmp_path, "sample.exe", simple_pe())
    cfg = tmp_path / "petriage.yaml"
    cfg.write_text("parser:\n  max_reloc_entries: 9\n", encoding="utf-8")
    out = tmp_path / "report.json"

    result = CliRunner().invoke(app, ["scan", str(sample), "--config", str(cfg), "--json-out", str(out), "-q"])
    assert result.exit_code == EXIT_OK
    assert json.loads(out.read_text(encoding="utf-8"))["options"]["max_reloc_entries"] == 9


def test_cli_scan_non_pe_exits_with_parse_error(tmp_path: Path):
    sample = _write(tmp_path, "notes.txt", b"just some text, not an executable\n" * 4)
    out = tmp_path / "report.json"

    result = CliRunner().invoke(app, ["scan", str(sample), "--json-out", str(out), "-q"])
    assert result.exit_code == EXIT_PARSE_ERROR
    report = json.loads(out.read_text(encoding="utf-8"))
    assert report["pe"] is None
    assert report["error"]["kind"] == "invalid_legacy_signature"


def test_cli_scan_strict_failure_keeps_anomalies(tmp_path: Path):
    sample = _write(tmp_path, "nosections.exe", build_pe([]))
    out = tmp_path / "report.json"

    result = CliRunner().invoke(app, ["scan", str(sample), "--strict", "--json-out", str(out), "-q"])
    assert result.exit_code == EXIT_PARSE_ERROR
    report = json.loads(out.read_text(encoding="utf-8"))
    assert report["error"]["kind"] == "strict_validation"
    assert report["pe"] is not None
    assert "Number of sections is 0" in [a["message"] for a in report["anomalies"]]


def test_cli_scan_missing_file(tmp_path: Path):
    result = CliRunner().invoke(app, ["scan", str(tmp_path / "missing.exe"), "-q"])
    assert result.exit_code == EXIT_IO_ERROR


def test_cli_scan_console_output(tmp_path: Path):
    sample = _write(tmp_path, "sample.exe", simple_pe())
    result = CliRunner().invoke(app, ["scan", str(sample)])
    assert result.exit_code == EXIT_OK
    assert "Sections" in result.stdout
    assert "No anomalies recorded." in result.stdout


def test_cli_checksum(tmp_path: Path):
    data = simple_pe()
    expected = compute_checksum(data, 0x80 + 24 + 64)
    sample = _write(tmp_path, "sample.exe", data)

    result = CliRunner().invoke(app, ["checksum", str(sample)])
    assert result.exit_code == EXIT_OK
    assert f"stored=0x00000000 computed=0x{expected:08x} mismatch" in result.stdout
