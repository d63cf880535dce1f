from __future__ import annotations

import io
from pathlib import Path
from typing import Any, List, Tuple

import pytest

from petriage.file import File
from petriage.log import StdLogger
from petriage.source import BytesSource, PathSource

from pe_factory import simple_pe


class RecordingLogger:
    def __init__(self) -> None:
        self.records: List[Tuple[str, str, dict]] = []

    def info(self, msg: str, **context: Any) -> None:
        self.records.append(("info", msg, context))

    def warn(self, msg: str, **context: Any) -> None:
        self.records.append(("warn", msg, context))

    def error(self, msg: str, **context: Any) -> None:
        self.records.append(("error", msg, context))

    def debug(self, msg: str, **context: Any) -> None:
        self.records.append(("debug", msg, context))


def test_close_is_idempotent(tmp_path: Path):
    p = tmp_path / "a.exe"
    p.write_bytes(simple_pe())
    pe = File.from_path(str(p))
    pe.close()
    pe.close()
    assert pe.closed is True


def test_context_manager_closes(tmp_path: Path):
    p = tmp_path / "a.exe"
    p.write_bytes(simple_pe())
    with File.from_path(str(p)) as pe:
        pe.parse()
        assert pe.closed is False
    assert pe.closed is True


def test_path_and_bytes_agree(tmp_path: Path):
    data = bytes(simple_pe())
    p = tmp_path / "a.exe"
    p.write_bytes(data)

    with File.from_path(str(p)) as from_path:
        d1 = from_path.parse().to_dict()
    d2 = File.from_bytes(data).parse().to_dict()
    assert d1 == d2


def test_handle_source_matches_bytes():
    data = bytes(simple_pe())
    pe = File.from_handle(io.BytesIO(data)).parse()
    assert pe.size == len(data)
    assert [s.name for s in pe.sections] == [".text"]


def test_directory_path_rejected(tmp_path: Path):
    with pytest.raises(IsADirectoryError):
        PathSource(tmp_path)


def test_missing_path_rejected(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        File.from_path(str(tmp_path / "nope.exe"))


def test_empty_file_has_no_mapping(tmp_path: Path):
    p = tmp_path / "empty.bin"
    p.write_bytes(b"")
    src = PathSource(p)
    assert src.size == 0
    src.close()


def test_failed_mapping_releases_handle(tmp_path: Path, monkeypatch):
    import petriage.source as source_mod

    p = tmp_path / "x.exe"
    p.write_bytes(simple_pe())

    opened = []
    real_open = Path.open

    def tracking_open(self, *args, **kwargs):
        fh = real_open(self, *args, **kwargs)
        opened.append(fh)
        return fh

    def failing_mmap(*args, **kwargs):
        raise OSError("mmap unavailable")

    monkeypatch.setattr(Path, "open", tracking_open)
    monkeypatch.setattr(source_mod.mmap, "mmap", failing_mmap)

    with pytest.raises(OSError, match="mmap unavailable"):
        PathSource(p)
    assert len(opened) == 1
    assert opened[0].closed is True


def test_bytes_source_close_does_not_touch_caller_buffer():
    buf = bytearray(simple_pe())
    src = BytesSource(buf)
    src.close()
    assert src.closed is True
    assert buf[:2] == b"MZ"


def test_logger_receives_structured_context():
    log = RecordingLogger()
    File.from_bytes(simple_pe(), logger=log).parse()
    info = [r for r in log.records if r[0] == "info"]
    assert info
    assert info[0][1] == "Parsed PE headers"
    assert info[0][2]["number_of_sections"] == 1


def test_no_logger_is_silent():
    pe = File.from_bytes(simple_pe(), logger=None)
    pe.log("warn", "nothing happens")
    pe.parse()


def test_std_logger_forwards_to_logging(caplog):
    import logging

    logger = logging.getLogger("tests.petriage")
    logger.propagate = True
    with caplog.at_level(logging.WARNING, logger="tests.petriage"):
        StdLogger(logger=logger).warn("Failed to parse data directory", directory="IMPORT")
    assert "Failed to parse data directory directory=IMPORT" in caplog.text
