from __future__ import annotations
from rich.console import Console
from rich.table import Table
from typing import Dict, Any, Optional

console = Console()


def _summary_table(report: Dict[str, Any]) -> Table:
    inp = report.get("input", {})
    pe = report.get("pe") or {}
    fh = (pe.get("nt_header") or {}).get("file_header") or {}
    opt = (pe.get("nt_header") or {}).get("optional_header") or {}

    t = Table(title="petriage: PE triage report (static, no execution)")
    t.add_column("Field")
    t.add_column("Value", overflow="fold")
    t.add_row("timestamp_utc", str(report.get("timestamp_utc", "")))
    t.add_row("input", str(inp.get("input_path", "")))
    t.add_row("size", str(inp.get("file_size", "")))
    t.add_row("sha256", str(inp.get("sha256", "")))
    t.add_row("md5", str(inp.get("md5", "")))
    if fh:
        t.add_row("machine", str(fh.get("machine_name", "")))
        t.add_row("characteristics", ", ".join(fh.get("characteristics_names", [])))
    if opt:
        t.add_row("magic", hex(int(opt.get("magic", 0))))
        t.add_row("entry_point", hex(int(opt.get("address_of_entry_point", 0))))
        t.add_row("subsystem", str(opt.get("subsystem_name", "")))
        t.add_row("entrypoint_section", str(pe.get("entrypoint_section") or ""))
    return t


def _sections_table(sections) -> Table:
    t = Table(title="Sections")
    for col in ("name", "virtual_address", "virtual_size", "raw_ptr", "raw_size", "exec", "entropy"):
        t.add_column(col)
    for s in sections:
        ent = s.get("entropy")
        t.add_row(
            str(s.get("name", "")),
            hex(int(s.get("virtual_address", 0))),
            hex(int(s.get("virtual_size", 0))),
            hex(int(s.get("raw_ptr", 0))),
            hex(int(s.get("raw_size", 0))),
            "yes" if s.get("executable") else "",
            f"{ent:.3f}" if ent is not None else "-",
        )
    return t


def _anomalies_table(anomalies) -> Table:
    t = Table(title="Anomalies")
    t.add_column("severity")
    t.add_column("kind")
    t.add_column("message", overflow="fold")
    for a in anomalies:
        t.add_row(str(a.get("severity", "")), str(a.get("kind", "")), str(a.get("message", "")))
    return t


def render_console(report: Dict[str, Any], out: Optional[Console] = None) -> None:
    out = out or console
    out.print(_summary_table(report))

    pe = report.get("pe") or {}
    if pe.get("sections"):
        out.print(_sections_table(pe["sections"]))

    anomalies = report.get("anomalies") or []
    if anomalies:
        out.print(_anomalies_table(anomalies))
    else:
        out.print("[green]No anomalies recorded.[/green]")

    err = report.get("error")
    if err:
        out.print(f"[red]Parse failed:[/red] {err.get('code')}: {err.get('message')}")
