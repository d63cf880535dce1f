from __future__ import annotations

import struct

from petriage.config import Options
from petriage.file import File

from pe_factory import TEXT, build_pe, section

IDATA_VA = 0x2000


def _idata(*, ordinal_import: bool = False, pe32_plus: bool = False) -> bytes:
    """
    One descriptor for KERNEL32.dll importing ExitProcess (plus ordinal 17 when
    asked), followed by the null descriptor.
    """
    step = 8 if pe32_plus else 4
    fmt = "<Q" if pe32_plus else "<I"
    flag = 0x8000000000000000 if pe32_plus else 0x80000000

    blob = bytearray(0x400)
    # IMAGE_IMPORT_DESCRIPTOR: OFT, TimeDateStamp, ForwarderChain, Name, FirstThunk
    struct.pack_into("<IIIII", blob, 0x00, IDATA_VA + 0x100, 0, 0, IDATA_VA + 0x200, IDATA_VA + 0x180)

    thunks = [IDATA_VA + 0x140]
    if ordinal_import:
        thunks.append(flag | 17)
    for i, value in enumerate(thunks + [0]):
        struct.pack_into(fmt, blob, 0x100 + i * step, value)
        struct.pack_into(fmt, blob, 0x180 + i * step, value)

    # IMAGE_IMPORT_BY_NAME: hint + name
    struct.pack_into("<H", blob, 0x140, 0x15A)
    blob[0x142 : 0x142 + 12] = b"ExitProcess\x00"
    blob[0x200 : 0x200 + 13] = b"KERNEL32.dll\x00"
    return bytes(blob)


def _build_pe_with_imports(**kwargs) -> bytes:
    pe32_plus = kwargs.pop("pe32_plus", False)
    ordinal_import = kwargs.pop("ordinal_import", False)
    return bytes(
        build_pe(
            [
                section(b".text", 0x1000, 0x200, 0x200, chars=TEXT, data=b"\x90" * 0x200),
                section(b".idata", IDATA_VA, 0x400, 0x400, data=_idata(ordinal_import=ordinal_import, pe32_plus=pe32_plus)),
            ],
            pe32_plus=pe32_plus,
            directories={1: (IDATA_VA, 0x28)},
            **kwargs,
        )
    )


def test_pe_imports_kernel32_exitprocess():
    pe = File.from_bytes(_build_pe_with_imports()).parse()
    assert pe.info.has_import is True
    assert len(pe.imports) == 1

    imp = pe.imports[0]
    assert imp.name.lower() == "kernel32.dll"
    names = [f.name for f in imp.functions]
    assert "ExitProcess" in names
    assert imp.functions[0].hint == 0x15A
    assert imp.functions[0].thunk_rva == IDATA_VA + 0x180


def test_pe_imports_by_ordinal():
    pe = File.from_bytes(_build_pe_with_imports(ordinal_import=True)).parse()
    funcs = pe.imports[0].functions
    assert [f.name for f in funcs] == ["ExitProcess", "#17"]
    assert funcs[1].by_ordinal is True
    assert funcs[1].ordinal == 17


def test_pe_imports_pe32plus_thunks():
    pe = File.from_bytes(_build_pe_with_imports(pe32_plus=True, ordinal_import=True)).parse()
    funcs = pe.imports[0].functions
    assert [f.name for f in funcs] == ["ExitProcess", "#17"]


def test_import_cap_limits_thunks():
    data = _build_pe_with_imports(ordinal_import=True)
    pe = File.from_bytes(data, options=Options(max_import_entries=1)).parse()
    assert len(pe.imports) == 1
    assert len(pe.imports[0].functions) == 1
    assert "Import thunk table of KERNEL32.dll exceeds 1 entries, parsing capped" in pe.anomalies


def test_unmappable_import_directory_is_recorded_not_raised():
    data = build_pe(
        [section(b".text", 0x1000, 0x200, 0x200, chars=TEXT, data=b"\x90" * 0x200)],
        directories={1: (0x90000, 0x28)},
    )
    pe = File.from_bytes(data).parse()
    assert pe.imports == []
    assert pe.info.has_import is False
    assert any(a.kind.value == "parse_error" and "IMPORT" in a.message for a in pe.anomalies)


def _shared_thunk_table_pe(count: int) -> bytes:
    """
    ``count`` descriptors that all share one lookup table of ``count``
    by-name thunks pointing outside every section.
    """
    blob = bytearray(0x800)
    table, name = 0x600, 0x780
    for i in range(count):
        struct.pack_into("<IIIII", blob, i * 20, IDATA_VA + table, 0, 0, IDATA_VA + name, 0)
    for i in range(count):
        struct.pack_into("<I", blob, table + i * 4, 0x7FFF0000)
    blob[name : name + 13] = b"KERNEL32.dll\x00"
    return bytes(
        build_pe(
            [
                section(b".text", 0x1000, 0x200, 0x200, chars=TEXT, data=b"\x90" * 0x200),
                section(b".idata", IDATA_VA, 0x400, 0x800, data=bytes(blob)),
            ],
            directories={1: (IDATA_VA, (count + 1) * 20)},
        )
    )


def test_import_cap_bounds_thunks_visited_across_descriptors(monkeypatch):
    import petriage.imports as imports_mod

    reads = []
    real_read = imports_mod._read_thunk

    def counting_read(pe, off):
        reads.append(off)
        return real_read(pe, off)

    monkeypatch.setattr(imports_mod, "_read_thunk", counting_read)

    pe = File.from_bytes(_shared_thunk_table_pe(64), options=Options(max_import_entries=64)).parse()

    assert len(pe.imports) == 64
    assert all(imp.functions == [] for imp in pe.imports)
    assert "Import by name RVA of KERNEL32.dll could not be mapped" in pe.anomalies
    # One pass over the shared table, not one per descriptor.
    assert len(reads) <= 2 * 64


def test_truncated_descriptor_table_keeps_parsed_imports():
    blob = bytearray(0x200)
    struct.pack_into("<I", blob, 0x20, IDATA_VA + 0x40)
    struct.pack_into("<H", blob, 0x40, 0x15A)
    blob[0x42 : 0x42 + 12] = b"ExitProcess\x00"
    blob[0x60 : 0x60 + 13] = b"KERNEL32.dll\x00"
    # Last 20 bytes of the file, no null descriptor after it.
    struct.pack_into("<IIIII", blob, 0x1EC, IDATA_VA + 0x20, 0, 0, IDATA_VA + 0x60, IDATA_VA + 0x20)
    data = build_pe(
        [
            section(b".text", 0x1000, 0x200, 0x200, chars=TEXT, data=b"\x90" * 0x200),
            section(b".idata", IDATA_VA, 0x400, 0x200, data=bytes(blob)),
        ],
        directories={1: (IDATA_VA + 0x1EC, 0x28)},
    )
    assert len(data) == 0x600

    pe = File.from_bytes(data).parse()

    assert [imp.name for imp in pe.imports] == ["KERNEL32.dll"]
    assert [f.name for f in pe.imports[0].functions] == ["ExitProcess"]
    assert "Import descriptor table truncated" in pe.anomalies
    assert not any(a.kind.value == "parse_error" for a in pe.anomalies)
