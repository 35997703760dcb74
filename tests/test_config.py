"""Tests for BridgeConfig defaults, normalization and validation."""

from pathlib import Path

import pytest

from plantbridge.config import BridgeConfig
from plantbridge.types import Protocol


def test_default_ports() -> None:
    assert BridgeConfig(plc_host="10.0.0.5").port == 102
    assert BridgeConfig(plc_host="10.0.0.5", protocol=Protocol.MODBUS).port == 502
    assert BridgeConfig(plc_host="10.0.0.5", protocol="modbus", port=1502).port == 1502


def test_protocol_from_string() -> None:
    config = BridgeConfig(plc_host="plc", protocol="S7")  # type: ignore[arg-type]
    assert config.protocol is Protocol.S7


def test_normalizes_map_file_and_origins() -> None:
    config = BridgeConfig(plc_host="plc", map_file="map.json", cors_origins=["http://a", "http://b"])  # type: ignore[arg-type]
    assert config.map_file == Path("map.json")
    assert config.cors_origins == ("http://a", "http://b")


def test_defaults() -> None:
    config = BridgeConfig(plc_host="plc")
    assert config.rack == 0
    assert config.slot == 1
    assert config.unit_id == 1
    assert config.setpoint_max == 100
    assert config.listen_port == 4000
    assert config.cors_origins == ("*",)


@pytest.mark.parametrize(
    "kwargs,match",
    [
        ({"plc_host": ""}, "plc_host"),
        ({"plc_host": "  "}, "plc_host"),
        ({"plc_host": "plc", "protocol": "profibus"}, "protocol"),
        ({"plc_host": "plc", "port": 0}, "port"),
        ({"plc_host": "plc", "listen_port": 70000}, "listen_port"),
        ({"plc_host": "plc", "unit_id": 248}, "unit_id"),
        ({"plc_host": "plc", "rack": -1}, "rack"),
        ({"plc_host": "plc", "timeout": 0}, "timeout"),
        ({"plc_host": "plc", "poll_interval": -1}, "poll_interval"),
        ({"plc_host": "plc", "setpoint_max": 0}, "setpoint_max"),
        ({"plc_host": "plc", "hold_timeout": 0}, "hold_timeout"),
    ],
)
def test_invalid(kwargs: dict, match: str) -> None:
    with pytest.raises(ValueError, match=match):
        BridgeConfig(**kwargs)


def test_frozen() -> None:
    config = BridgeConfig(plc_host="plc")
    with pytest.raises(AttributeError):
        config.plc_host = "other"  # type: ignore[misc]
