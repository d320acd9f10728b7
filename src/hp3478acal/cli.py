"""Command line interface for reading, writing and verifying HP 3478A calibration data."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import serial
import typer

from .calram import CalibrationImage
from .config import DEFAULT_CONFIG_FILE, load_config
from .errors import CalibrationToolError
from .reporting import export_entries_csv, format_entries_table
from .workflow import (
    load_calibration_file,
    read_calibration,
    save_calibration_file,
    verify_image,
    write_calibration,
)

logger = logging.getLogger(__name__)

app = typer.Typer(
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
    help=(
        "Read, write and verify HP 3478A calibration data through a "
        "Prologix GPIB-USB compatible adapter."
    ),
)


def _fail(stage: str, exc: Exception) -> None:
    typer.echo(f"ERROR: {stage}.\n\nExtended Error Information:\n{exc or '<none>'}", err=True)
    raise typer.Exit(code=1) from exc


def _print_table(image: CalibrationImage, report: Optional[Path]) -> None:
    typer.echo(format_entries_table(image))
    typer.echo()
    if report is not None:
        try:
            export_entries_csv(image, report)
        except OSError as exc:
            _fail("Failed while writing entry report", exc)
        typer.echo(f"Entry table written to {report}")


@app.command()
def main(
    ctx: typer.Context,
    file: Path = typer.Option(
        ...,
        "--file",
        "-f",
        help="Calibration file. Verified for correctness when neither --read nor --write is given.",
    ),
    allow_oversize: bool = typer.Option(
        False,
        "--allow-oversize",
        "-o",
        help="Allow calibration files larger than 256 bytes (only the first 256 bytes are used).",
    ),
    read: Optional[int] = typer.Option(
        None, "--read", "-r", min=1, max=30, help="Read calibration data from the instrument at GPIB address ADDR."
    ),
    write: Optional[int] = typer.Option(
        None, "--write", "-w", min=1, max=30, help="Write calibration data to the instrument at GPIB address ADDR."
    ),
    config_path: Path = typer.Option(
        DEFAULT_CONFIG_FILE, "--config", "-c", help="Serial port / GPIB adapter settings (JSON)."
    ),
    override: Optional[List[str]] = typer.Option(
        None,
        "--set",
        help="Override config keys, e.g. --set serial.port=/dev/ttyUSB1 --set adapter.timeout_ms=2000",
    ),
    skip_unused: bool = typer.Option(
        False, "--skip-unused", help="Do not validate the three reserved calibration entries."
    ),
    report: Optional[Path] = typer.Option(None, "--report", help="Also write the entry table to this CSV file."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation before writing."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log adapter traffic."),
) -> None:
    """Read, write or verify an HP 3478A calibration file."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if read is not None and write is not None:
        typer.echo(ctx.get_help())
        raise typer.Exit(code=1)

    try:
        cfg = load_config(config_path, override or None)
    except (OSError, ValueError) as exc:
        _fail("Failed while loading configuration file", exc)

    image: Optional[CalibrationImage] = None
    if read is None:
        try:
            image = load_calibration_file(file, allow_oversize=allow_oversize)
            verify_image(image, skip_unused_entries=skip_unused)
        except (OSError, CalibrationToolError) as exc:
            _fail("Failed to validate calibration file", exc)
        _print_table(image, report)
        typer.echo("Calibration file data is valid.")
        typer.echo()

    if read is not None:
        try:
            if file.exists():
                raise FileExistsError(f"Destination file {file} already exists")
            typer.echo("Reading calibration data from instrument...")
            image = read_calibration(cfg, read)
            if image.is_valid(skip_unused_entries=skip_unused):
                typer.echo("Instrument contains valid calibration data.")
            else:
                logger.warning("Calibration data read from GPIB address %d failed checksum validation", read)
                typer.echo("Warning: Instrument contains invalid calibration data.")
            typer.echo("Writing calibration data to file...")
            save_calibration_file(file, image)
            typer.echo("Operation complete.")
            typer.echo()
        except (OSError, serial.SerialException, CalibrationToolError) as exc:
            _fail("Failed while reading calibration data from instrument", exc)
        _print_table(image, report)
    elif write is not None:
        typer.echo("Warning: This will overwrite all calibration data in the instrument!")
        if not yes and not typer.confirm("Do you want to continue?"):
            typer.echo("Operation cancelled.")
            return
        try:
            typer.echo("Writing calibration data to instrument...")
            write_calibration(cfg, write, image)
            typer.echo("Operation completed successfully.")
        except (OSError, serial.SerialException, CalibrationToolError) as exc:
            _fail("Failed while writing calibration data to instrument", exc)


def run() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    run()
