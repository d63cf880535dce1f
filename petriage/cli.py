from __future__ import annotations

from importlib import metadata
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from petriage.bundler import write_report
from petriage.config import Options, load_options
from petriage.errors import PEError
from petriage.file import File
from petriage.log import StdLogger, setup_logging
from petriage.model import ErrorInfo, InputEvidence, Report
from petriage.reporters.console import render_console

EXIT_OK = 0
EXIT_IO_ERROR = 1
EXIT_PARSE_ERROR = 2

app = typer.Typer(add_completion=False)


def version_callback(value: bool):
    if value:
        try:
            v = metadata.version("petriage")
        except metadata.PackageNotFoundError:
            v = "0.1.0-dev"
        typer.echo(f"petriage version: {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None, "--version", callback=version_callback, is_eager=True, help="Show version and exit."
    ),
):
    """
    Static PE parser for malware triage. Never executes the input.
    """
    pass


def _resolve_options(config: Optional[str], overrides: Dict[str, bool]) -> Options:
    opts = load_options(config)
    enabled = {k: True for k, v in overrides.items() if v}
    if not enabled:
        return opts
    return Options.model_validate({**opts.model_dump(), **enabled})


def _open(path: str, opts: Options, logger) -> tuple[Path, File]:
    p = Path(path).expanduser().resolve()
    try:
        return p, File.from_path(p, options=opts, logger=logger)
    except OSError as e:
        typer.secho(f"Cannot open {p}: {type(e).__name__}: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(EXIT_IO_ERROR)


@app.command()
def scan(
    path: str = typer.Argument(..., help="PE file to parse."),
    config: str = typer.Option(None, "--config", help="Path to YAML parser options."),
    entropy: bool = typer.Option(False, "--entropy", help="Compute section entropy and packing heuristics."),
    checksum: bool = typer.Option(False, "--checksum", help="Validate the optional header checksum."),
    fast: bool = typer.Option(False, "--fast", help="Headers and sections only."),
    strict: bool = typer.Option(False, "--strict", help="Fail on anomalies at or above the strict severity."),
    debug_info: bool = typer.Option(False, "--debug-info", help="Decode CodeView debug records."),
    omit_security: bool = typer.Option(False, "--omit-security", help="Skip the certificate table."),
    omit_resources: bool = typer.Option(False, "--omit-resources", help="Skip the resource tree."),
    omit_debug: bool = typer.Option(False, "--omit-debug", help="Skip the debug directory."),
    json_out: str = typer.Option(None, "--json-out", help="Write the JSON report to this file or directory."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="No console report."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging to stderr."),
):
    setup_logging("DEBUG" if verbose else "WARNING")
    opts = _resolve_options(
        config,
        {
            "section_entropy": entropy,
            "validate_checksum": checksum,
            "fast": fast,
            "strict_validation": strict,
            "parse_debug_info": debug_info,
            "omit_security_directory": omit_security,
            "omit_resource_directory": omit_resources,
            "omit_debug_directory": omit_debug,
        },
    )

    p, pe = _open(path, opts, StdLogger())
    inp = InputEvidence.from_path(p)

    exit_code = EXIT_OK
    error: Optional[ErrorInfo] = None
    pe_dict: Optional[Dict[str, Any]] = None
    with pe:
        try:
            pe.parse()
        except PEError as e:
            error = ErrorInfo.from_error(e)
            exit_code = EXIT_PARSE_ERROR
        if pe.info.has_nt_header:
            pe_dict = pe.to_dict()
        anomalies = [a.to_dict() for a in pe.anomalies]

    report = Report(input=inp, options=opts.model_dump(mode="json"), pe=pe_dict, anomalies=anomalies, error=error)
    report_dict = report.model_dump(mode="json")

    if json_out:
        written = write_report(Path(json_out).expanduser(), report)
        if quiet:
            typer.echo(f"Report written: {written}")

    if not quiet:
        render_console(report_dict)
    elif error is not None:
        typer.secho(f"{error.code}: {error.message}", fg=typer.colors.RED, err=True)

    raise typer.Exit(exit_code)


@app.command()
def checksum(
    path: str = typer.Argument(..., help="PE file to checksum."),
):
    """Print the stored and the computed optional header checksum."""
    p, pe = _open(path, Options(fast=True), None)
    with pe:
        try:
            pe.parse()
        except PEError as e:
            typer.secho(f"{e.code}: {e.message}", fg=typer.colors.RED, err=True)
            raise typer.Exit(EXIT_PARSE_ERROR)
        stored = getattr(pe.nt_header.optional_header, "checksum", 0)
        computed = pe.checksum()

    status = "match" if stored == computed else "mismatch"
    typer.echo(f"stored=0x{stored:08x} computed=0x{computed:08x} {status}")


if __name__ == "__main__":
    app()
