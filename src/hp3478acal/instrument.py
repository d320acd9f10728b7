"""HP 3478A commands used to transfer calibration SRAM over GPIB."""
from __future__ import annotations

import logging
from typing import Optional, Protocol

from .calram import NIBBLE_MASK, SRAM_SIZE
from .errors import InstrumentCommunicationError, TransferError

logger = logging.getLogger(__name__)

ESC = 0x1B
CR = 0x0D
READ_SRAM = b"W"
WRITE_SRAM = b"X"
STATUS = "S"
DISPLAY_TEXT = "D2"
DISPLAY_NORMAL = "D1"


class InstrumentSession(Protocol):
    def query_instrument(self, command: str, read_result: bool = True) -> str:
        ...

    def query_instrument_binary(self, command: bytes, expected_bytes: int) -> Optional[bytes]:
        ...


def escape(data: bytes) -> bytes:
    """Prefix every byte with ESC so the adapter forwards it untouched.

    Only CR, LF, ESC and '+' strictly need escaping.
    """
    escaped = bytearray()
    for value in data:
        escaped.append(ESC)
        escaped.append(value)
    return bytes(escaped)


def _check_address(address: int) -> None:
    if not 0 <= address < SRAM_SIZE:
        raise ValueError(f"SRAM address must be 0-{SRAM_SIZE - 1}, got {address}")


def build_read_command(address: int) -> bytes:
    _check_address(address)
    return READ_SRAM + escape(bytes([address]))


def build_write_command(address: int, value: int) -> bytes:
    """The meter ignores the upper four bits, so 0x05 and 0x45 write the same nibble."""
    _check_address(address)
    if not 0 <= value <= 0xFF:
        raise ValueError(f"SRAM value must fit in one byte, got {value}")
    return WRITE_SRAM + escape(bytes([address, value]))


class HP3478A:
    """Calibration SRAM access on an HP 3478A behind an adapter session."""

    def __init__(self, session: InstrumentSession) -> None:
        self.session = session

    def check_communication(self) -> str:
        status = self.session.query_instrument(STATUS)
        if status not in ("0", "1"):
            raise InstrumentCommunicationError(
                f"Could not communicate with instrument (status reply {status!r})"
            )
        return status

    def display_text(self, text: str) -> None:
        self.session.query_instrument(f"{DISPLAY_TEXT}{text}", read_result=False)
        # D2 text ends at an escaped CR
        self.session.query_instrument_binary(bytes([ESC, CR]), 0)

    def restore_display(self) -> None:
        self.session.query_instrument(DISPLAY_NORMAL, read_result=False)

    def read_nibble(self, address: int) -> int:
        """Return the SRAM byte at *address* as sent by the meter (nibble + 0x40)."""
        data = self.session.query_instrument_binary(build_read_command(address), 1)
        if data is None or len(data) != 1:
            raise TransferError(f"Failed while reading SRAM address {address}")
        return data[0]

    def write_nibble(self, address: int, value: int) -> None:
        self.session.query_instrument_binary(build_write_command(address, value), 0)
        data = self.session.query_instrument_binary(build_read_command(address), 1)
        # TODO: compare the full byte once it is confirmed the meter always echoes the 0x40 offset
        if data is None or len(data) != 1 or (data[0] & NIBBLE_MASK) != (value & NIBBLE_MASK):
            raise TransferError(f"Failed while verifying SRAM address {address}")

    def read_sram(self) -> bytes:
        logger.info("Reading %d SRAM nibbles", SRAM_SIZE)
        sram = bytearray(SRAM_SIZE)
        for address in range(SRAM_SIZE):
            sram[address] = self.read_nibble(address)
            logger.debug("SRAM[%d] -> 0x%02X", address, sram[address])
        return bytes(sram)

    def write_sram(self, data: bytes) -> None:
        if len(data) != SRAM_SIZE:
            raise ValueError(f"SRAM data buffer must contain {SRAM_SIZE} bytes, got {len(data)}")
        logger.info("Writing %d SRAM nibbles", SRAM_SIZE)
        for address, value in enumerate(data):
            self.write_nibble(address, value)
            logger.debug("SRAM[%d] <- 0x%02X", address, value)
