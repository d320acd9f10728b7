"""Exception types raised by the calibration tool."""
from __future__ import annotations


class CalibrationToolError(Exception):
    """Base class for all tool failures."""


class AdapterConfigurationError(CalibrationToolError):
    """The GPIB adapter did not acknowledge an initialization directive."""


class InstrumentCommunicationError(CalibrationToolError):
    """The instrument did not answer the status probe."""


class TransferError(CalibrationToolError):
    """A single SRAM nibble could not be read or verified."""


class InvalidCalibrationData(CalibrationToolError, ValueError):
    """Calibration entries failed checksum validation."""


class CalibrationFileError(CalibrationToolError, ValueError):
    """Calibration file has the wrong size or the destination already exists."""
