"""Read and write workflows that sequence the adapter session and the codec."""
from __future__ import annotations

import logging
from pathlib import Path

from .calram import SRAM_SIZE, CalibrationImage
from .config import ToolConfig
from .errors import CalibrationFileError, InvalidCalibrationData
from .gpib import AdapterSession
from .instrument import HP3478A

logger = logging.getLogger(__name__)

READ_BANNER = "READING CAL"
WRITE_BANNER = "WRITING CAL"


def load_calibration_file(path: Path | str, *, allow_oversize: bool = False) -> CalibrationImage:
    """Load the 256-byte calibration file at *path*.

    Files larger than 256 bytes are rejected unless *allow_oversize* is set, in
    which case only the first 256 bytes are used.
    """
    path = Path(path)
    size = path.stat().st_size
    if size < SRAM_SIZE:
        raise CalibrationFileError(f"File size is less than {SRAM_SIZE} bytes")
    if not allow_oversize and size != SRAM_SIZE:
        raise CalibrationFileError(f"File size is not {SRAM_SIZE} bytes")
    with path.open("rb") as fh:
        blob = fh.read(SRAM_SIZE)
    return CalibrationImage.from_bytes(blob)


def save_calibration_file(path: Path | str, image: CalibrationImage) -> None:
    path = Path(path)
    try:
        with path.open("xb") as fh:
            fh.write(image.data)
    except FileExistsError as exc:
        raise CalibrationFileError(f"Destination file {path} already exists") from exc
    logger.info("Wrote %d bytes to %s", len(image.data), path)


def verify_image(image: CalibrationImage, *, skip_unused_entries: bool = False) -> None:
    """Raise InvalidCalibrationData unless every checked entry has a valid checksum."""
    if image.is_valid(skip_unused_entries=skip_unused_entries):
        return
    bad = [
        entry.index + 1
        for entry in image.entries()
        if not entry.is_valid and not (skip_unused_entries and entry.is_unused)
    ]
    raise InvalidCalibrationData(f"Invalid checksum in calibration entries {bad}")


def read_calibration(config: ToolConfig, address: int) -> CalibrationImage:
    """Read the full SRAM image from the meter at GPIB *address*."""
    session = AdapterSession.from_config(config, address)
    session.connect()
    try:
        meter = HP3478A(session)
        meter.check_communication()
        meter.display_text(READ_BANNER)
        sram = meter.read_sram()
        meter.restore_display()
    finally:
        session.disconnect()
    logger.info("Read calibration SRAM from GPIB address %d", address)
    return CalibrationImage(sram)


def write_calibration(config: ToolConfig, address: int, image: CalibrationImage) -> None:
    """Write and verify every SRAM nibble of *image* on the meter at GPIB *address*."""
    session = AdapterSession.from_config(config, address)
    session.connect()
    try:
        meter = HP3478A(session)
        meter.check_communication()
        meter.display_text(WRITE_BANNER)
        meter.write_sram(image.data)
        meter.restore_display()
    finally:
        session.disconnect()
    logger.info("Wrote calibration SRAM to GPIB address %d", address)
