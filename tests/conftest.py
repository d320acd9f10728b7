from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Set

import pytest

from hp3478acal.calram import ENTRY_COUNT, SRAM_SIZE, encode_entry

ZERO_ENTRY = encode_entry("000000", "00000")


def build_image(entries: Optional[Sequence[bytes]] = None, sentinel: int = 0x40) -> bytes:
    """256-byte SRAM image: sentinel, 19 entries, 8 unused bytes."""
    entries = list(entries) if entries is not None else [ZERO_ENTRY] * ENTRY_COUNT
    data = bytes([sentinel]) + b"".join(entries)
    return data + b"\x40" * (SRAM_SIZE - len(data))


def sample_entries() -> List[bytes]:
    entries = [ZERO_ENTRY] * ENTRY_COUNT
    entries[0] = encode_entry("000123", "12F00")
    entries[2] = encode_entry("999990", "0701F")
    entries[7] = encode_entry("000045", "00009")
    return entries


class FakePrologix:
    """Serial port double emulating a Prologix adapter with an HP 3478A attached."""

    def __init__(self, *, version: bytes = b"Prologix GPIB-USB Controller version 6.101") -> None:
        self.is_open = True
        self.timeout: Optional[float] = None
        self.write_timeout: Optional[float] = None
        self.version = version
        self.settings: Dict[str, str] = {
            "mode": "0",
            "auto": "1",
            "eoi": "0",
            "eos": "3",
            "eot_enable": "1",
            "read_tmo_ms": "500",
            "addr": "5",
        }
        self.ignored_settings: Set[str] = set()
        self.sram = bytearray(build_image(sample_entries()))
        self.status: Optional[bytes] = b"0"
        self.stuck_addresses: Set[int] = set()
        self.short_reads = False
        self.adapter_commands: List[str] = []
        self.instrument_commands: List[bytes] = []
        self.close_calls = 0
        self._rx = bytearray()
        self._pending = bytearray()
        self._escaped = False
        self._reply = b""

    @property
    def in_waiting(self) -> int:
        return len(self._rx)

    def reset_input_buffer(self) -> None:
        self._rx.clear()

    def write(self, data: bytes) -> int:
        for byte in bytes(data):
            if self._escaped:
                self._pending.append(byte)
                self._escaped = False
            elif byte == 0x1B:
                self._escaped = True
            elif byte in (0x0D, 0x0A):
                line = bytes(self._pending)
                self._pending.clear()
                if line:
                    self._handle_line(line)
            else:
                self._pending.append(byte)
        return len(data)

    def read(self, size: int = 1) -> bytes:
        out = bytes(self._rx[:size])
        del self._rx[:size]
        return out

    def read_until(self, expected: bytes = b"\n") -> bytes:
        idx = self._rx.find(expected)
        if idx < 0:
            out = bytes(self._rx)
            self._rx.clear()
            return out
        end = idx + len(expected)
        out = bytes(self._rx[:end])
        del self._rx[:end]
        return out

    def close(self) -> None:
        self.close_calls += 1
        self.is_open = False

    def _handle_line(self, line: bytes) -> None:
        if line.startswith(b"++"):
            self._handle_adapter(line[2:].decode("ascii"))
        else:
            self.instrument_commands.append(line)
            self._handle_instrument(line)

    def _handle_adapter(self, text: str) -> None:
        self.adapter_commands.append(text)
        name, _, value = text.partition(" ")
        if name == "ver":
            self._rx.extend(self.version + b"\r\n")
        elif name == "ifc":
            pass
        elif name == "read":
            self._rx.extend(self._reply)
            self._reply = b""
        elif value:
            if name not in self.ignored_settings:
                self.settings[name] = value
        else:
            self._rx.extend(self.settings.get(name, "").encode("ascii") + b"\r\n")

    def _handle_instrument(self, line: bytes) -> None:
        if line == b"S":
            self._reply = b"" if self.status is None else self.status + b"\r\n"
        elif line[:1] == b"W" and len(line) == 2:
            self._reply = b"" if self.short_reads else bytes([self.sram[line[1]]])
        elif line[:1] == b"X" and len(line) == 3:
            address, value = line[1], line[2]
            if address not in self.stuck_addresses:
                self.sram[address] = 0x40 | (value & 0x0F)


class FakeSerialModule:
    class SerialException(IOError):
        pass

    class SerialTimeoutException(SerialException):
        pass

    def __init__(self, device: FakePrologix) -> None:
        self.device = device
        self.opened: List[dict] = []

    def Serial(self, **kwargs):
        self.opened.append(kwargs)
        self.device.is_open = True
        self.device.timeout = kwargs.get("timeout")
        self.device.write_timeout = kwargs.get("write_timeout")
        return self.device


@pytest.fixture
def adapter() -> FakePrologix:
    return FakePrologix()


@pytest.fixture
def fake_serial(monkeypatch, adapter: FakePrologix) -> FakeSerialModule:
    module = FakeSerialModule(adapter)
    monkeypatch.setattr("hp3478acal.gpib.session.serial", module)
    return module
