"""Prologix-compatible GPIB-USB adapter session.

The adapter is driven over a serial port with CR terminated lines. Lines that
start with ``++`` configure the adapter itself, everything else is forwarded to
the instrument at the current GPIB address. Bytes that must reach the
instrument verbatim (CR, LF, ESC, ``+``) have to be preceded by ESC in the
command buffer; this session never escapes on the caller's behalf.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import serial

from ..config import AdapterSettings, SerialSettings, ToolConfig
from ..errors import AdapterConfigurationError

logger = logging.getLogger(__name__)

LINE_TERMINATOR = b"\r"
POLL_INTERVAL_SEC = 0.001
READ_EOI = "++read eoi"

# (setting, value) pairs applied in order after the version check; the
# read timeout is appended with the session timeout at connect time.
_ADAPTER_SETTINGS = (
    ("mode", "1"),
    ("auto", "0"),
    ("eoi", "1"),
    ("eos", "0"),
    ("eot_enable", "0"),
)


class AdapterSession:
    """Owns the serial transport and the adapter's GPIB addressing state.

    Usage::

        session = AdapterSession(SerialSettings(port="/dev/ttyUSB0"), address=23)
        session.connect()
        status = session.query_instrument("S")
        session.disconnect()
    """

    def __init__(
        self,
        settings: SerialSettings,
        adapter: Optional[AdapterSettings] = None,
        *,
        address: int = 1,
    ) -> None:
        adapter = adapter or AdapterSettings()
        self.settings = settings
        self._serial = None
        self._timeout_ms = 1000
        self._address = 1
        self._version_string = "GPIB"
        self.timeout_ms = adapter.timeout_ms
        self.version_string = adapter.version_string
        self.address = address

    @classmethod
    def from_config(cls, config: ToolConfig, address: int) -> "AdapterSession":
        return cls(config.serial, config.adapter, address=address)

    @property
    def is_open(self) -> bool:
        return bool(self._serial is not None and self._serial.is_open)

    @property
    def timeout_ms(self) -> int:
        return self._timeout_ms

    @timeout_ms.setter
    def timeout_ms(self, value: int) -> None:
        if value < 0:
            raise ValueError("Timeout cannot be less than zero")
        self._timeout_ms = int(value)
        if self._serial is not None:
            self._serial.timeout = self._timeout_ms / 1000.0
            self._serial.write_timeout = self._timeout_ms / 1000.0

    @property
    def address(self) -> int:
        return self._address

    @address.setter
    def address(self, value: int) -> None:
        if not 1 <= value <= 30:
            raise ValueError("GPIB address must be in the range of 1-30")
        self._address = int(value)
        if self.is_open:
            self._configure("addr", str(self._address))

    @property
    def version_string(self) -> str:
        return self._version_string

    @version_string.setter
    def version_string(self, value: str) -> None:
        if not value or not value.strip():
            raise ValueError("Adapter version string cannot be empty")
        self._version_string = value

    def connect(self) -> None:
        """Open the serial port and bring the adapter into a known state.

        Raises:
            AdapterConfigurationError: If the adapter does not acknowledge a
                setting. The port is closed again before any error propagates.
        """
        self._close_serial()
        self._serial = self._open_serial()
        logger.info("Opened %s at %d baud", self.settings.port, self.settings.baudrate)
        try:
            self._initialize_adapter()
        except Exception:
            self._close_serial()
            raise
        logger.info("GPIB adapter ready (address=%d)", self._address)

    def disconnect(self) -> None:
        if self._serial is None:
            return
        self._close_serial()
        logger.info("Disconnected from %s", self.settings.port)

    def check_response(self, command: str, expected_response: str, anywhere: bool = False) -> bool:
        """Send *command* and wait for *expected_response* within the timeout.

        Received bytes are accumulated until the response starts with the
        expected text, or contains it anywhere when *anywhere* is set.
        """
        if not self.is_open:
            return False
        self._flush_input()
        self._write_line(command)

        expected = expected_response.encode("ascii")
        received = bytearray()

        def matched() -> bool:
            waiting = self._serial.in_waiting
            if waiting:
                received.extend(self._serial.read(waiting))
            if anywhere and expected in received:
                return True
            return received.startswith(expected)

        result = self._spin_until(matched)
        logger.debug("%s -> %r (expected %r, matched=%s)", command, bytes(received), expected_response, result)
        return result

    def query_instrument(self, command: str, read_result: bool = True) -> str:
        """Send a text command to the instrument and optionally read one line back.

        Returns an empty string when the session is closed, when no result was
        requested, or when the read timed out.
        """
        if not self.is_open:
            return ""
        self._flush_input()
        try:
            self._write_line(command)
            if not read_result:
                return ""
            self._write_line(READ_EOI)
            raw = self._serial.read_until(LINE_TERMINATOR)
        except serial.SerialTimeoutException:
            logger.debug("Timeout while querying %r", command)
            return ""
        if not raw.endswith(LINE_TERMINATOR):
            logger.debug("Timeout waiting for response to %r (got %r)", command, raw)
            return ""
        return raw.decode("ascii", errors="replace").strip("\r\n")

    def query_instrument_binary(self, command: bytes, expected_bytes: int) -> Optional[bytes]:
        """Send a raw (pre-escaped) command and read exactly *expected_bytes* back.

        Returns None when nothing is expected, when the session is closed, or
        when fewer than *expected_bytes* arrived before the timeout.
        """
        if not self.is_open:
            return None
        self._flush_input()
        try:
            self._serial.write(bytes(command) + LINE_TERMINATOR)
            if expected_bytes <= 0:
                return None
            self._write_line(READ_EOI)
            if not self._spin_until(lambda: self._serial.in_waiting >= expected_bytes):
                logger.debug("Timeout waiting for %d byte(s) after %r", expected_bytes, bytes(command))
                return None
            data = self._serial.read(expected_bytes)
        except serial.SerialTimeoutException:
            logger.debug("Timeout during binary query %r", bytes(command))
            return None
        if len(data) != expected_bytes:
            return None
        return bytes(data)

    def _initialize_adapter(self) -> None:
        if not self.check_response("++ver", self._version_string, anywhere=True):
            raise AdapterConfigurationError("Invalid GPIB adapter version string")
        for name, value in _ADAPTER_SETTINGS:
            self._configure(name, value)
        self._configure("read_tmo_ms", str(self._timeout_ms))
        self._write_line("++ifc")
        self._configure("addr", str(self._address))

    def _configure(self, name: str, value: str) -> None:
        self._write_line(f"++{name} {value}")
        if not self.check_response(f"++{name}", value):
            raise AdapterConfigurationError(f"Could not set GPIB adapter '{name}' setting")

    def _spin_until(self, condition: Callable[[], bool]) -> bool:
        deadline = time.monotonic() + self._timeout_ms / 1000.0
        while True:
            if condition():
                return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(POLL_INTERVAL_SEC)

    def _write_line(self, text: str) -> None:
        self._serial.write(text.encode("ascii") + LINE_TERMINATOR)

    def _flush_input(self) -> None:
        try:
            self._serial.reset_input_buffer()
        except (serial.SerialException, OSError) as exc:
            logger.debug("Failed to flush input buffer: %s", exc)

    def _open_serial(self):
        timeout = self._timeout_ms / 1000.0
        return serial.Serial(
            **self.settings.serial_kwargs(),
            timeout=timeout,
            write_timeout=timeout,
        )

    def _close_serial(self) -> None:
        if self._serial is None:
            return
        try:
            self._serial.close()
        except (serial.SerialException, OSError) as exc:
            logger.debug("Error closing serial port: %s", exc)
        finally:
            self._serial = None
