"""Decoder and checksum validation for the HP 3478A calibration SRAM.

The meter holds calibration constants in a 256 x 4 bit SRAM::

    +----------+----------------------------------+-----------+
    | Sentinel |   19 entries x 13 nibbles        |  Unused   |
    | nibble 0 |   nibbles 1..247                 |  248..255 |
    +----------+----------------------------------+-----------+

- Sentinel: CPU check value for the calibration enable switch. It alternates
  between 0x0 and 0xF while the switch is engaged and carries no calibration data.
- Entry: 6 BCD offset nibbles, 5 signed gain nibbles, 2 checksum nibbles.

When read over GPIB each nibble arrives as an ASCII byte with 0x40 added, so
every function here masks with 0x0F and accepts bytes with or without that offset.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

SRAM_SIZE = 256
ENTRY_COUNT = 19
ENTRY_LENGTH = 13
CALIBRATION_LENGTH = ENTRY_COUNT * ENTRY_LENGTH
NIBBLE_OFFSET = 0x40
NIBBLE_MASK = 0x0F

OFFSET_DIGITS = slice(0, 6)
GAIN_DIGITS = slice(6, 11)
CHECKSUM_HIGH = 11
CHECKSUM_LOW = 12
CHECKSUM_TARGET = 0xFF

ENTRY_LABELS: Tuple[str, ...] = (
    "30 mV DC",
    "300 mV DC",
    "3 V DC",
    "30 V DC",
    "300 V DC",
    "<not used>",
    "AC V",
    "30 Ohm 2W/4W",
    "300 Ohm 2W/4W",
    "3 kOhm 2W/4W",
    "30 kOhm 2W/4W",
    "300 kOhm 2W/4W",
    "3 MOhm 2W/4W",
    "30 MOhm 2W/4W",
    "300 mA DC",
    "3A DC",
    "<not used>",
    "300 mA/3A AC",
    "<not used>",
)
UNUSED_ENTRIES: Tuple[int, ...] = (5, 16, 18)

_OFFSET_WEIGHTS = 10 ** np.arange(5, -1, -1, dtype=np.int64)

EntryLike = Union[bytes, bytearray, memoryview, Sequence[int], np.ndarray]


def _nibbles(entry: EntryLike) -> np.ndarray:
    raw = bytes(entry)
    if len(raw) != ENTRY_LENGTH:
        raise ValueError(
            f"Calibration entry must be {ENTRY_LENGTH} bytes, got {len(raw)}"
        )
    return np.frombuffer(raw, dtype=np.uint8) & NIBBLE_MASK


def _to_hex(nibbles: np.ndarray) -> str:
    return "".join(f"{int(value):X}" for value in nibbles)


def validate_entry(entry: EntryLike) -> bool:
    """Return True when the entry's checksum nibbles balance its 11 data nibbles.

    The low nibbles of bytes 0..10 are summed individually, then the two checksum
    nibbles are added back as one byte (byte 11 high, byte 12 low). The entry is
    valid when that sum modulo 256 is exactly 0xFF.
    """
    raw = bytes(entry)
    if len(raw) != ENTRY_LENGTH:
        return False
    nibbles = np.frombuffer(raw, dtype=np.uint8) & NIBBLE_MASK
    total = int(nibbles[:CHECKSUM_HIGH].sum())
    total += int(nibbles[CHECKSUM_HIGH]) << 4
    total += int(nibbles[CHECKSUM_LOW])
    return (total & 0xFF) == CHECKSUM_TARGET


def _entry_matrix(data: Union[EntryLike, Sequence[EntryLike]]) -> Optional[np.ndarray]:
    if isinstance(data, (bytes, bytearray, memoryview)):
        flat = np.frombuffer(bytes(data), dtype=np.uint8)
        if flat.size == SRAM_SIZE:
            flat = flat[1 : 1 + CALIBRATION_LENGTH]
        if flat.size != CALIBRATION_LENGTH:
            return None
        return flat.reshape(ENTRY_COUNT, ENTRY_LENGTH)
    try:
        if all(isinstance(row, (bytes, bytearray, memoryview)) for row in data):
            matrix = np.array([np.frombuffer(bytes(row), dtype=np.uint8) for row in data])
        else:
            matrix = np.asarray(data, dtype=np.uint8)
    except (TypeError, ValueError, OverflowError):
        return None
    if matrix.ndim == 1 and matrix.size == SRAM_SIZE:
        matrix = matrix[1 : 1 + CALIBRATION_LENGTH]
    if matrix.ndim == 1 and matrix.size == CALIBRATION_LENGTH:
        matrix = matrix.reshape(ENTRY_COUNT, ENTRY_LENGTH)
    if matrix.shape != (ENTRY_COUNT, ENTRY_LENGTH):
        return None
    return matrix


def validate_data(data: Union[EntryLike, Sequence[EntryLike]], skip_unused_entries: bool = True) -> bool:
    """Check every calibration entry.

    *data* is the full 256-byte SRAM image, the 247 calibration bytes (image
    bytes 1..247) or a 19 x 13 array-like. Any other shape is reported as
    invalid. The reserved entries are ignored unless *skip_unused_entries* is
    False.
    """
    matrix = _entry_matrix(data)
    if matrix is None:
        return False
    for index in range(ENTRY_COUNT):
        if skip_unused_entries and index in UNUSED_ENTRIES:
            continue
        if not validate_entry(matrix[index]):
            return False
    return True


def decode_offset(entry: EntryLike) -> int:
    """Six-digit BCD offset; values from 900000 upwards wrap to negative numbers."""
    digits = _nibbles(entry)[OFFSET_DIGITS].astype(np.int64)
    value = int(np.dot(digits, _OFFSET_WEIGHTS))
    if value >= 900000:
        value -= 1000000
    return value


def decode_offset_raw(entry: EntryLike) -> str:
    return _to_hex(_nibbles(entry)[OFFSET_DIGITS])


def decode_gain(entry: EntryLike) -> float:
    """Gain as a signed correction around unity.

    Each of the five gain nibbles is a signed 4-bit digit (8..15 map to -8..-1).
    The first contributes hundredths, the last millionths.
    """
    gain = 1.0
    divisor = 100
    for nibble in _nibbles(entry)[GAIN_DIGITS]:
        digit = int(nibble)
        if digit >= 8:
            digit -= 16
        gain += digit / divisor
        divisor *= 10
    return gain


def decode_gain_raw(entry: EntryLike) -> str:
    return _to_hex(_nibbles(entry)[GAIN_DIGITS])


def checksum_nibbles(entry: EntryLike) -> str:
    nibbles = _nibbles(entry)
    return _to_hex(nibbles[CHECKSUM_HIGH:])


def compute_checksum(data_nibbles: Sequence[int]) -> Tuple[int, int]:
    """Return the (high, low) checksum nibbles for 11 data nibbles."""
    if len(data_nibbles) != CHECKSUM_HIGH:
        raise ValueError(f"Checksum needs {CHECKSUM_HIGH} data nibbles, got {len(data_nibbles)}")
    total = sum(int(value) & NIBBLE_MASK for value in data_nibbles)
    checksum = (CHECKSUM_TARGET - total) & 0xFF
    return checksum >> 4, checksum & NIBBLE_MASK


def encode_entry(offset_raw: str, gain_raw: str) -> bytes:
    """Build a checksummed 13-byte entry from raw hex digit strings.

    *offset_raw* holds 6 digits and *gain_raw* 5, in the same form produced by
    :func:`decode_offset_raw` and :func:`decode_gain_raw`. Bytes carry the 0x40
    offset used by the instrument and the calibration file.
    """
    if len(offset_raw) != 6 or len(gain_raw) != 5:
        raise ValueError("Offset needs 6 hex digits and gain needs 5")
    digits = [int(char, 16) for char in offset_raw + gain_raw]
    high, low = compute_checksum(digits)
    return bytes(NIBBLE_OFFSET | value for value in digits + [high, low])


@dataclass(frozen=True)
class CalibrationEntry:
    """One 13-nibble calibration record for a measurement range."""

    index: int
    raw: bytes

    @property
    def label(self) -> str:
        return ENTRY_LABELS[self.index]

    @property
    def is_unused(self) -> bool:
        return self.index in UNUSED_ENTRIES

    @property
    def is_valid(self) -> bool:
        return validate_entry(self.raw)

    @property
    def offset(self) -> int:
        return decode_offset(self.raw)

    @property
    def offset_raw(self) -> str:
        return decode_offset_raw(self.raw)

    @property
    def gain(self) -> float:
        return decode_gain(self.raw)

    @property
    def gain_raw(self) -> str:
        return decode_gain_raw(self.raw)

    @property
    def checksum(self) -> str:
        return checksum_nibbles(self.raw)


@dataclass(frozen=True)
class CalibrationImage:
    """The full 256-byte SRAM image as read from the meter or a calibration file."""

    data: bytes

    def __post_init__(self) -> None:
        if len(self.data) != SRAM_SIZE:
            raise ValueError(f"Calibration image must be {SRAM_SIZE} bytes, got {len(self.data)}")
        object.__setattr__(self, "data", bytes(self.data))

    @classmethod
    def from_bytes(cls, blob: bytes, *, allow_oversize: bool = False) -> "CalibrationImage":
        if len(blob) < SRAM_SIZE:
            raise ValueError(f"Calibration image needs {SRAM_SIZE} bytes, got {len(blob)}")
        if len(blob) != SRAM_SIZE and not allow_oversize:
            raise ValueError(f"Calibration image must be exactly {SRAM_SIZE} bytes, got {len(blob)}")
        return cls(bytes(blob[:SRAM_SIZE]))

    @property
    def sentinel(self) -> int:
        return self.data[0]

    @property
    def calibration_data(self) -> bytes:
        return self.data[1 : 1 + CALIBRATION_LENGTH]

    def entry(self, index: int) -> CalibrationEntry:
        if not 0 <= index < ENTRY_COUNT:
            raise IndexError(f"Entry index must be 0-{ENTRY_COUNT - 1}, got {index}")
        start = 1 + index * ENTRY_LENGTH
        return CalibrationEntry(index=index, raw=self.data[start : start + ENTRY_LENGTH])

    def entries(self) -> Iterator[CalibrationEntry]:
        for index in range(ENTRY_COUNT):
            yield self.entry(index)

    def is_valid(self, skip_unused_entries: bool = True) -> bool:
        return validate_data(self.calibration_data, skip_unused_entries=skip_unused_entries)


def describe_entries(data: Union[CalibrationImage, EntryLike, Sequence[EntryLike]]) -> pd.DataFrame:
    """Tabulate all 19 entries with their range labels and decoded values."""
    if isinstance(data, CalibrationImage):
        data = data.calibration_data
    matrix = _entry_matrix(data)
    if matrix is None:
        raise ValueError(
            f"Calibration data must contain {ENTRY_COUNT} entries of {ENTRY_LENGTH} bytes"
        )
    rows: List[dict[str, object]] = []
    for index in range(ENTRY_COUNT):
        entry = CalibrationEntry(index=index, raw=bytes(matrix[index]))
        rows.append(
            {
                "entry": index + 1,
                "label": entry.label,
                "offset_raw": entry.offset_raw,
                "offset": entry.offset,
                "gain_raw": entry.gain_raw,
                "gain": entry.gain,
                "checksum": entry.checksum,
                "valid": entry.is_valid,
            }
        )
    return pd.DataFrame(rows)
