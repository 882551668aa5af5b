"""Main CLI entry point for zip-aligner."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, List, Optional

import click
from pydantic import ValidationError

from .config import AlignConfig
from .errors import ConfigurationError, VerificationError, ZipAlignerError
from .exporters.zip import AlignedZipExporter
from .manifest import AlignmentReport
from .verifier import EntryCheck, ensure_aligned, verify, verify_records


def print_usage_and_fail(ctx: click.Context, param: click.Parameter, value: bool) -> None:
    """Handles -h: shows the usage and exits with a non-zero status."""
    if not value or ctx.resilient_parsing:
        return
    click.echo(ctx.get_help())
    ctx.exit(1)


def describe_error(error: Exception) -> str:
    if isinstance(error, ValidationError):
        return "; ".join(describe_validation_error(err) for err in error.errors())
    return str(error)


def describe_validation_error(err: dict) -> str:
    cause = err.get("ctx", {}).get("error")
    if isinstance(cause, ConfigurationError):
        return str(cause)
    location = ".".join(str(part) for part in err["loc"]) or "config"
    return f"{location}: {err['msg']}"


def fail(ctx: click.Context, error: Exception) -> None:
    click.secho(describe_error(error), fg="red")
    ctx.exit(1)


def echo_checks(checks: List[EntryCheck], verbose: bool) -> None:
    for check in checks:
        if not check.is_stored and not verbose:
            continue
        status = "OK" if check.ok else f"FAIL: {check.problem}"
        kind = "stored" if check.is_stored else "compressed"
        click.secho(
            f"{check.name}: {kind}, extra {check.output_extra_length} bytes, "
            f"padding {check.padlen}, data offset {check.data_offset} ... {status}",
            fg=None if check.ok else "red",
        )


@click.group()
def cli():
    """Zip Aligner: aligns stored ZIP entries by padding their extra fields."""
    pass


@cli.command()
@click.option(
    "-c",
    "--config",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="YAML file with default settings.",
)
@click.option("-i", "--input", "input_path", type=click.Path(path_type=Path), help="Input ZIP file to be aligned.")
@click.option("-o", "--output", "output_path", type=click.Path(path_type=Path), help="Output aligned ZIP file.")
@click.option("-a", "--alignment", type=int, help="Alignment in bytes, e.g. '4' provides 32-bit alignment.")
@click.option("-f", "--force", "overwrite", is_flag=True, help="Allow overwriting the input file.")
@click.option("-v", "--verbose", is_flag=True, help="Verbose output.")
@click.option("--chunk-size", type=int, help="Buffer size used to copy entry data.")
@click.option("--verify", "verify_output", is_flag=True, help="Check the output after writing it.")
@click.option("--report", type=click.Path(path_type=Path), help="Write a JSON report of the padding decisions.")
@click.option(
    "-h",
    is_flag=True,
    expose_value=False,
    is_eager=True,
    callback=print_usage_and_fail,
    help="Print this help.",
)
@click.pass_context
def align(
    ctx,
    config: Optional[Path],
    input_path: Optional[Path],
    output_path: Optional[Path],
    alignment: Optional[int],
    overwrite: bool,
    verbose: bool,
    chunk_size: Optional[int],
    verify_output: bool,
    report: Optional[Path],
):
    """Rewrites a ZIP archive so that stored entries start on aligned offsets."""
    try:
        cfg = AlignConfig.load(
            config,
            input=input_path,
            output=output_path,
            alignment=alignment,
            overwrite=overwrite or None,
            verbose=verbose or None,
            chunk_size=chunk_size,
            verify=verify_output or None,
            report=report,
        )
    except ValueError as e:
        fail(ctx, e)
        return

    if cfg.verbose:
        click.echo(f"Aligning '{cfg.input}' on {cfg.alignment} bytes and writing out to '{cfg.output}'")

    exporter = AlignedZipExporter(
        alignment=cfg.alignment, chunk_size=cfg.chunk_size, verbose=cfg.verbose
    )
    alignment_report = (
        AlignmentReport(cfg.report, cfg.alignment) if cfg.report is not None else None
    )

    try:
        result = exporter.export(cfg.input, cfg.output, report=alignment_report)
    except ZipAlignerError as e:
        fail(ctx, e)
        return

    click.secho(
        f"Aligned {result.stored_entries} of {result.entries} entries "
        f"with {result.total_padding} bytes of padding: {result.output}",
        fg="green",
    )
    if alignment_report is not None:
        click.echo(f"Report saved to: {alignment_report.report_path}")

    if cfg.verify:
        # The input may already be replaced by the output, so check against
        # the entry metadata captured while reading it.
        run_verification(
            ctx, lambda: verify_records(result.sources, cfg.output, cfg.alignment), cfg.verbose
        )


@cli.command(name="verify")
@click.option("-i", "--input", "input_path", type=click.Path(exists=True, path_type=Path), required=True, help="Source ZIP file.")
@click.option("-o", "--output", "output_path", type=click.Path(exists=True, path_type=Path), required=True, help="Aligned ZIP file.")
@click.option("-a", "--alignment", type=click.IntRange(min=1), default=4, show_default=True, help="Alignment in bytes.")
@click.option("-v", "--verbose", is_flag=True, help="Also list compressed entries.")
@click.pass_context
def verify_command(ctx, input_path: Path, output_path: Path, alignment: int, verbose: bool):
    """Checks that an aligned archive matches its source and is aligned."""
    run_verification(ctx, lambda: verify(input_path, output_path, alignment), verbose)


def run_verification(
    ctx, check_output: Callable[[], List[EntryCheck]], verbose: bool
) -> None:
    try:
        checks = check_output()
        echo_checks(checks, verbose)
        ensure_aligned(checks)
    except VerificationError as e:
        click.secho(f"Verification failed: {e}", fg="red")
        ctx.exit(1)
        return
    except ZipAlignerError as e:
        fail(ctx, e)
        return

    click.secho(f"Verification successful: {len(checks)} entries checked.", fg="green")


def main():
    cli()


if __name__ == "__main__":
    main()
