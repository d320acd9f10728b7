from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Sequence

import serial

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path("hp3478acal.json")

_PARITIES: Dict[str, str] = {
    "none": serial.PARITY_NONE,
    "even": serial.PARITY_EVEN,
    "odd": serial.PARITY_ODD,
    "mark": serial.PARITY_MARK,
    "space": serial.PARITY_SPACE,
}

_STOP_BITS: Dict[str, float] = {
    "1": serial.STOPBITS_ONE,
    "1.5": serial.STOPBITS_ONE_POINT_FIVE,
    "2": serial.STOPBITS_TWO,
}

_FLOW_CONTROL = {"none", "xonxoff", "rtscts", "dsrdtr"}


@dataclass
class SerialSettings:
    port: str = "/dev/ttyUSB0"
    baudrate: int = 9600
    data_bits: int = 8
    parity: str = "none"
    stop_bits: str = "1"
    flow_control: str = "none"

    def validate(self) -> None:
        if self.data_bits not in (5, 6, 7, 8):
            raise ValueError(f"serial.data_bits must be 5-8, got {self.data_bits}")
        if self.parity.lower() not in _PARITIES:
            raise ValueError(f"Unsupported serial.parity '{self.parity}'. Expected one of {sorted(_PARITIES)}")
        if self.stop_bits not in _STOP_BITS:
            raise ValueError(f"Unsupported serial.stop_bits '{self.stop_bits}'. Expected one of {list(_STOP_BITS)}")
        if self.flow_control.lower() not in _FLOW_CONTROL:
            raise ValueError(
                f"Unsupported serial.flow_control '{self.flow_control}'. Expected one of {sorted(_FLOW_CONTROL)}"
            )

    def serial_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ``serial.Serial`` (without timeouts)."""
        self.validate()
        flow = self.flow_control.lower()
        return {
            "port": self.port,
            "baudrate": self.baudrate,
            "bytesize": self.data_bits,
            "parity": _PARITIES[self.parity.lower()],
            "stopbits": _STOP_BITS[self.stop_bits],
            "xonxoff": flow == "xonxoff",
            "rtscts": flow == "rtscts",
            "dsrdtr": flow == "dsrdtr",
        }


@dataclass
class AdapterSettings:
    timeout_ms: int = 1000
    version_string: str = "GPIB"

    def validate(self) -> None:
        if self.timeout_ms < 0:
            raise ValueError("adapter.timeout_ms cannot be negative")
        if not self.version_string.strip():
            raise ValueError("adapter.version_string cannot be empty")


@dataclass
class ToolConfig:
    serial: SerialSettings = field(default_factory=SerialSettings)
    adapter: AdapterSettings = field(default_factory=AdapterSettings)


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} did not contain an object")
    return data


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _merge(base[key], value)  # type: ignore[index]
        else:
            merged[key] = value
    return merged


def load_config(path: Path | str = DEFAULT_CONFIG_FILE, overrides: Sequence[str] | None = None) -> ToolConfig:
    """
    Load serial port and GPIB adapter settings from JSON and apply CLI-style overrides.

    A missing file is not an error: the defaults are used instead. Overrides
    are expressed as dotted `key=value` pairs, e.g.:
        ["serial.port=/dev/ttyUSB1", "adapter.timeout_ms=2000"]
    """
    config_path = Path(path)
    if config_path.exists():
        try:
            data = _load_json(config_path)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Config file {config_path} contains invalid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError(f"Config file {config_path} must contain a JSON object")
        logger.debug("Loaded configuration from %s", config_path)
    else:
        logger.info("Config file %s not found, using defaults", config_path)
        data = {}
    override_data: Dict[str, Any] = {}
    for override in overrides or []:
        key, raw_value = _parse_override(override)
        _assign_nested(override_data, key, raw_value)
    merged = _merge(data, override_data)

    serial_data = merged.get("serial") or {}
    adapter_data = merged.get("adapter") or {}
    for section, values in (("serial", serial_data), ("adapter", adapter_data)):
        if not isinstance(values, dict):
            raise ValueError(f"{section} section must be an object")
    defaults = ToolConfig()
    try:
        settings = SerialSettings(
            port=str(serial_data.get("port", defaults.serial.port)),
            baudrate=int(serial_data.get("baudrate", defaults.serial.baudrate)),
            data_bits=int(serial_data.get("data_bits", defaults.serial.data_bits)),
            parity=str(serial_data.get("parity", defaults.serial.parity)),
            stop_bits=_normalize_stop_bits(serial_data.get("stop_bits", defaults.serial.stop_bits)),
            flow_control=str(serial_data.get("flow_control", defaults.serial.flow_control)),
        )
        adapter = AdapterSettings(
            timeout_ms=int(adapter_data.get("timeout_ms", defaults.adapter.timeout_ms)),
            version_string=str(adapter_data.get("version_string", defaults.adapter.version_string)),
        )
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid configuration value: {exc}") from exc
    settings.validate()
    adapter.validate()
    return ToolConfig(serial=settings, adapter=adapter)


def _normalize_stop_bits(value: Any) -> str:
    if isinstance(value, (int, float)):
        return f"{value:g}"
    text = str(value).strip().lower()
    return {"one": "1", "onepointfive": "1.5", "two": "2"}.get(text, text)


def _parse_override(item: str) -> tuple[str, Any]:
    if "=" not in item:
        raise ValueError(f"Override '{item}' must use key=value syntax")
    key, raw_value = item.split("=", 1)
    key = key.strip()
    if not key:
        raise ValueError("Override key may not be empty")
    value = _coerce_value(raw_value.strip())
    return key, value


def _coerce_value(raw: str) -> Any:
    if raw.lower() in {"true", "false"}:
        return raw.lower() == "true"
    try:
        if "." in raw or "e" in raw.lower():
            return float(raw)
        return int(raw)
    except ValueError:
        pass
    return raw


def _assign_nested(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    cursor = target
    parts = dotted_key.split(".")
    for part in parts[:-1]:
        cursor = cursor.setdefault(part, {})
    cursor[parts[-1]] = value
