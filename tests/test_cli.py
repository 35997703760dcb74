"""Tests for CLI module - formatting helpers and command behavior against a fake driver."""

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

from typer.testing import CliRunner

from conftest import FakeDriver, memory_for
from plantbridge import __version__
from plantbridge.cli import app, format_snapshot, format_value
from plantbridge.errors import ProtocolIOError
from plantbridge.tagmap import get_default_map
from plantbridge.types import PlantSnapshot, Protocol

runner = CliRunner()

HOST = ["--host", "10.0.0.5"]


def fake_driver(protocol: Protocol = Protocol.S7, **values: object) -> FakeDriver:
    return FakeDriver(memory_for(get_default_map(protocol), **values))


def json_lines(text: str) -> list[dict]:
    return [json.loads(line) for line in text.splitlines() if line.startswith("{")]


# ============================================================================
# Formatting Tests
# ============================================================================


class TestFormatValue:
    """Test value formatting."""

    def test_bool_formatting(self) -> None:
        """Booleans print lowercase."""
        assert format_value(True) == "true"
        assert format_value(False) == "false"

    def test_number_formatting(self) -> None:
        """Ints as-is, floats with 2 decimals."""
        assert format_value(1200) == "1200"
        assert format_value(3.14159) == "3.14"
        assert format_value("ERROR") == "ERROR"


class TestFormatSnapshot:
    """Test one-line snapshot rendering for poll."""

    def test_healthy(self) -> None:
        snap = PlantSnapshot.build({"PESO": 1200, "COMP1": True}, ["COMP1"])
        line = format_snapshot(snap, ["PESO", "COMP1", "ARIDO1"])
        assert "PESO=1200 COMP1=true ARIDO1=- running=true" in line
        assert "error=" not in line

    def test_degraded(self) -> None:
        snap = PlantSnapshot.degraded(["PESO"], "PLC not connected")
        line = format_snapshot(snap, ["PESO"])
        assert "PESO=ERROR" in line
        assert line.endswith("error='PLC not connected'")


# ============================================================================
# Local commands
# ============================================================================


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"plantbridge {__version__}" in result.output


def test_command_help() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("serve", "info", "read", "write", "explain", "poll"):
        assert command in result.output


def test_info_command_local() -> None:
    result = runner.invoke(app, ["info"])
    assert result.exit_code == 0
    assert f"plantbridge version: {__version__}" in result.output
    assert "Protocol: s7" in result.output
    assert "Address map: builtin:s7_map.json (13 tags)" in result.output


def test_info_command_json_modbus() -> None:
    result = runner.invoke(app, ["info", "--protocol", "modbus", "--json"])
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["protocol"] == "modbus"
    assert data["tags"] == 13
    assert "connectivity" not in data


@patch("plantbridge.cli.create_driver")
def test_info_command_connectivity(mock_create: MagicMock) -> None:
    mock_create.return_value = fake_driver()
    result = runner.invoke(app, ["info", *HOST])
    assert result.exit_code == 0
    assert "Connectivity: OK (10.0.0.5:102)" in result.output


@patch("plantbridge.cli.create_driver")
def test_info_command_connectivity_failed(mock_create: MagicMock) -> None:
    driver = fake_driver()
    driver.connect_error = ProtocolIOError("Connection refused")
    mock_create.return_value = driver
    result = runner.invoke(app, ["info", *HOST, "--json"])
    assert result.exit_code == 0
    conn = json.loads(result.stdout)["connectivity"]
    assert conn["status"] == "failed"
    assert "Connection refused" in conn["error"]


def test_explain_command() -> None:
    result = runner.invoke(app, ["explain", "ARIDO1"])
    assert result.exit_code == 0
    assert "Address:   VW0" in result.output
    assert "Kind:      word" in result.output
    assert "Writable:  true" in result.output


def test_explain_bit_json() -> None:
    result = runner.invoke(app, ["explain", "COMP1", "--json"])
    assert result.exit_code == 0
    row = json.loads(result.stdout)
    assert row["address"] == "V8.1"
    assert row["offset"] == 8
    assert row["bit"] == 1


def test_explain_modbus_table() -> None:
    result = runner.invoke(app, ["explain", "--protocol", "modbus"])
    assert result.exit_code == 0
    assert "INICIO" in result.output
    assert "HR6" in result.output


def test_explain_unknown_tag() -> None:
    result = runner.invoke(app, ["explain", "NOPE"])
    assert result.exit_code == 2
    assert "Unknown tag" in result.output


def test_explain_invalid_protocol() -> None:
    result = runner.invoke(app, ["explain", "--protocol", "profibus"])
    assert result.exit_code == 2


def test_explain_map_file(tmp_path: Path) -> None:
    path = tmp_path / "map.json"
    path.write_text(json.dumps({"PESO": "DB2,W10"}))
    result = runner.invoke(app, ["explain", "PESO", "--map-file", str(path), "--json"])
    assert result.exit_code == 0
    row = json.loads(result.stdout)
    assert row["area"] == "db"
    assert row["db_number"] == 2
    assert row["offset"] == 10


# ============================================================================
# PLC commands (fake driver)
# ============================================================================


def test_read_requires_host() -> None:
    result = runner.invoke(app, ["read", "PESO"])
    assert result.exit_code == 2
    assert "--host is required" in result.output


@patch("plantbridge.cli.create_driver")
def test_read_command(mock_create: MagicMock) -> None:
    mock_create.return_value = fake_driver(ARIDO1=25, PESO=1200, COMP1=True)
    result = runner.invoke(app, ["read", "ARIDO1", "PESO", "COMP1", *HOST])
    assert result.exit_code == 0
    assert json.loads(result.stdout) == {"ARIDO1": 25, "PESO": 1200, "COMP1": True}
    assert len(mock_create.return_value.reads) == 1


@patch("plantbridge.cli.create_driver")
def test_read_unknown_tag_before_io(mock_create: MagicMock) -> None:
    mock_create.return_value = fake_driver()
    result = runner.invoke(app, ["read", "PESO", "NOPE", *HOST])
    assert result.exit_code == 2
    assert mock_create.return_value.calls == []


@patch("plantbridge.cli.create_driver")
def test_read_missing_value_fails(mock_create: MagicMock) -> None:
    mock_create.return_value = fake_driver(PESO=1200)
    result = runner.invoke(app, ["read", "PESO", "ARIDO1", *HOST])
    assert result.exit_code == 3
    assert "ARIDO1" in result.output


@patch("plantbridge.cli.create_driver")
def test_read_partial(mock_create: MagicMock) -> None:
    mock_create.return_value = fake_driver(PESO=1200)
    result = runner.invoke(app, ["read", "PESO", "ARIDO1", "NOPE", *HOST, "--partial"])
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["values"] == {"PESO": 1200}
    assert set(data["errors"]) == {"ARIDO1", "NOPE"}


@patch("plantbridge.cli.create_driver")
def test_read_connect_failure(mock_create: MagicMock) -> None:
    driver = fake_driver()
    driver.connect_error = ProtocolIOError("Connection refused")
    mock_create.return_value = driver
    result = runner.invoke(app, ["read", "PESO", *HOST])
    assert result.exit_code == 3
    assert "Connection/PLC error" in result.output


def test_read_invalid_port() -> None:
    result = runner.invoke(app, ["read", "PESO", *HOST, "--port", "70000"])
    assert result.exit_code == 2
    assert "Invalid configuration" in result.output


@patch("plantbridge.cli.create_driver")
def test_write_set_point(mock_create: MagicMock) -> None:
    mock_create.return_value = fake_driver()
    result = runner.invoke(app, ["write", "ARIDO1", "20", *HOST])
    assert result.exit_code == 0
    assert "OK: Wrote ARIDO1 = 20 (set_point)" in result.output
    (call,) = mock_create.return_value.writes
    assert call[2] == 20


@patch("plantbridge.cli.create_driver")
def test_write_set_point_out_of_range(mock_create: MagicMock) -> None:
    mock_create.return_value = fake_driver()
    result = runner.invoke(app, ["write", "ARIDO1", "150", *HOST])
    assert result.exit_code == 2
    assert "Invalid value" in result.output
    assert mock_create.return_value.writes == []


@patch("plantbridge.cli.create_driver")
def test_write_setpoint_max_option(mock_create: MagicMock) -> None:
    mock_create.return_value = fake_driver()
    result = runner.invoke(app, ["write", "ARIDO2", "150", *HOST, "--setpoint-max", "200"])
    assert result.exit_code == 0


@patch("plantbridge.cli.create_driver")
def test_write_start_requires_set_point(mock_create: MagicMock) -> None:
    mock_create.return_value = fake_driver(ARIDO1=0, ARIDO2=0, ARIDO3=0)
    result = runner.invoke(app, ["write", "INICIO", "true", *HOST])
    assert result.exit_code == 2
    assert "no arido value set" in result.output
    assert mock_create.return_value.writes == []


@patch("plantbridge.cli.create_driver")
def test_write_start_pulses(mock_create: MagicMock) -> None:
    mock_create.return_value = fake_driver(ARIDO1=10, ARIDO2=0, ARIDO3=0)
    result = runner.invoke(app, ["write", "INICIO", "true", *HOST, "--pulse-duration", "0.01"])
    assert result.exit_code == 0
    assert "(pulse)" in result.output
    assert [w[2] for w in mock_create.return_value.writes] == [True, False]


@patch("plantbridge.cli.create_driver")
def test_write_manual_presses_and_releases(mock_create: MagicMock) -> None:
    mock_create.return_value = fake_driver()
    result = runner.invoke(app, ["write", "MANUAL", "on", *HOST])
    assert result.exit_code == 0
    assert [w[2] for w in mock_create.return_value.writes] == [True, False]


@patch("plantbridge.cli.create_driver")
def test_write_invalid_bool(mock_create: MagicMock) -> None:
    mock_create.return_value = fake_driver()
    result = runner.invoke(app, ["write", "COMP1", "maybe", *HOST])
    assert result.exit_code == 2
    assert mock_create.return_value.writes == []


@patch("plantbridge.cli.create_driver")
def test_poll_command_once(mock_create: MagicMock) -> None:
    mock_create.return_value = fake_driver(PESO=1200, COMP1=True)
    result = runner.invoke(app, ["poll", "PESO", "COMP1", *HOST, "--once"])
    assert result.exit_code == 0
    assert "PESO=1200 COMP1=true running=true" in result.output


@patch("plantbridge.cli.create_driver")
def test_poll_command_json_once(mock_create: MagicMock) -> None:
    mock_create.return_value = fake_driver(Protocol.MODBUS, ARIDO1=5, PESO=900)
    result = runner.invoke(app, ["poll", *HOST, "--protocol", "modbus", "--once", "--format", "json"])
    assert result.exit_code == 0
    (snap,) = json_lines(result.stdout)
    assert snap["ARIDO1"] == 5
    assert snap["PESO"] == 900
    assert snap["running"] is False
    assert "timestamp" in snap


@patch("plantbridge.cli.create_driver")
def test_poll_once_unreachable(mock_create: MagicMock) -> None:
    driver = fake_driver()
    driver.connect_error = ProtocolIOError("Connection refused")
    mock_create.return_value = driver
    result = runner.invoke(app, ["poll", "PESO", *HOST, "--once", "--format", "json"])
    assert result.exit_code == 3
    (snap,) = json_lines(result.stdout)
    assert snap["PESO"] == "ERROR"
    assert "Connection refused" in snap["error"]


def test_poll_invalid_interval() -> None:
    result = runner.invoke(app, ["poll", "PESO", *HOST, "--interval", "0"])
    assert result.exit_code == 2


def test_poll_invalid_format() -> None:
    result = runner.invoke(app, ["poll", "PESO", *HOST, "--format", "xml"])
    assert result.exit_code == 2


def test_poll_unknown_tag() -> None:
    result = runner.invoke(app, ["poll", "NOPE", *HOST, "--once"])
    assert result.exit_code == 2


def test_serve_requires_host() -> None:
    result = runner.invoke(app, ["serve"])
    assert result.exit_code == 2
    assert "--host is required" in result.output


@patch("uvicorn.run")
def test_serve_builds_app(mock_run: MagicMock) -> None:
    result = runner.invoke(app, ["serve", *HOST, "--listen-port", "8080", "--cors-origin", "http://plant.local"])
    assert result.exit_code == 0
    mock_run.assert_called_once()
    assert mock_run.call_args.kwargs["port"] == 8080
    assert mock_run.call_args.kwargs["host"] == "0.0.0.0"
