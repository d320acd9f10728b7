from __future__ import annotations

import json
from pathlib import Path

import pytest
import serial

from hp3478acal.config import ToolConfig, load_config


def test_missing_file_uses_defaults(tmp_path: Path) -> None:
    cfg = load_config(tmp_path / "missing.json")
    assert isinstance(cfg, ToolConfig)
    assert cfg.serial.baudrate == 9600
    assert cfg.serial.data_bits == 8
    assert cfg.adapter.timeout_ms == 1000
    assert cfg.adapter.version_string == "GPIB"


def test_load_config_overrides(tmp_path: Path) -> None:
    cfg_path = tmp_path / "hp3478acal.json"
    cfg_path.write_text(
        json.dumps(
            {
                "serial": {"port": "/dev/ttyUSB3", "baudrate": 115200, "parity": "even", "stop_bits": 2},
                "adapter": {"timeout_ms": 1500, "version_string": "Prologix"},
            }
        ),
        encoding="utf-8",
    )
    cfg = load_config(cfg_path, overrides=["adapter.timeout_ms=2500", "serial.flow_control=rtscts"])
    assert cfg.serial.port == "/dev/ttyUSB3"
    assert cfg.serial.baudrate == 115200
    assert cfg.serial.stop_bits == "2"
    assert cfg.adapter.timeout_ms == 2500
    assert cfg.adapter.version_string == "Prologix"

    kwargs = cfg.serial.serial_kwargs()
    assert kwargs["parity"] == serial.PARITY_EVEN
    assert kwargs["stopbits"] == serial.STOPBITS_TWO
    assert kwargs["bytesize"] == 8
    assert kwargs["rtscts"] is True
    assert kwargs["xonxoff"] is False


def test_string_overrides_stay_strings(tmp_path: Path) -> None:
    cfg = load_config(
        tmp_path / "missing.json",
        overrides=["serial.port=/dev/ttyUSB1", "serial.stop_bits=1.5", "adapter.version_string=GPIB-USB"],
    )
    assert cfg.serial.port == "/dev/ttyUSB1"
    assert cfg.serial.stop_bits == "1.5"
    assert cfg.adapter.version_string == "GPIB-USB"


@pytest.mark.parametrize(
    "override",
    [
        "serial.parity=sometimes",
        "serial.data_bits=9",
        "serial.flow_control=carrier-pigeon",
        "adapter.timeout_ms=-1",
        "adapter.version_string= ",
        "adapter.timeout_ms=soon",
    ],
)
def test_invalid_values_raise(tmp_path: Path, override: str) -> None:
    with pytest.raises(ValueError):
        load_config(tmp_path / "missing.json", overrides=[override])


def test_override_requires_key_value(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        load_config(tmp_path / "missing.json", overrides=["serial.port"])


def test_invalid_json_raises(tmp_path: Path) -> None:
    cfg_path = tmp_path / "broken.json"
    cfg_path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(cfg_path)


@pytest.mark.parametrize("content", ['{"serial": "COM3"}', '{"adapter": [1000]}', '["serial"]'])
def test_non_object_sections_raise(tmp_path: Path, content: str) -> None:
    path = tmp_path / "cfg.json"
    path.write_text(content)
    with pytest.raises(ValueError):
        load_config(path)
