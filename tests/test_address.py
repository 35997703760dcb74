"""Tests for address parsing and canonical formatting (S7 and Modbus notations)."""

import pytest

from plantbridge.address import format_address, parse_address
from plantbridge.errors import InvalidAddressError
from plantbridge.types import DataKind, MemoryArea, PhysicalAddress, Protocol


class TestParseS7:
    """LOGO!-style and explicit DB addresses."""

    def test_v_bit(self) -> None:
        addr = parse_address("V8.1")
        assert addr == PhysicalAddress(MemoryArea.DB, 8, DataKind.BIT, bit=1, db_number=1)

    def test_v_word_and_byte(self) -> None:
        assert parse_address("VW0") == PhysicalAddress(MemoryArea.DB, 0, DataKind.WORD, db_number=1)
        assert parse_address("VB3") == PhysicalAddress(MemoryArea.DB, 3, DataKind.BYTE, db_number=1)
        assert parse_address("VD4").kind is DataKind.DWORD

    def test_type_suffix(self) -> None:
        assert parse_address("VW6:INT").kind is DataKind.INT
        assert parse_address("VD4:REAL").kind is DataKind.REAL

    def test_merker_input_output(self) -> None:
        assert parse_address("M1.0").area is MemoryArea.MERKER
        assert parse_address("MW2").db_number == 0
        assert parse_address("I0.1").area is MemoryArea.INPUT
        assert parse_address("QB0").area is MemoryArea.OUTPUT

    def test_case_and_whitespace(self) -> None:
        assert parse_address("  vw0 ") == parse_address("VW0")

    def test_explicit_db(self) -> None:
        assert parse_address("DB1,X8.0") == parse_address("V8.0")
        assert parse_address("DB1,W0") == parse_address("VW0")
        assert parse_address("DB2,INT4") == PhysicalAddress(MemoryArea.DB, 4, DataKind.INT, db_number=2)
        assert parse_address("DB1,REAL4").kind is DataKind.REAL
        assert parse_address("DB3,D8:REAL") == PhysicalAddress(MemoryArea.DB, 8, DataKind.REAL, db_number=3)

    @pytest.mark.parametrize(
        "raw",
        ["", "V8", "V8.9", "VW0.1", "X8.0", "V8.1:INT", "VB0:REAL", "DB0,W0", "DB1,X8", "DB1,INT0:INT", "HR0"],
    )
    def test_invalid(self, raw: str) -> None:
        with pytest.raises(InvalidAddressError):
            parse_address(raw)


class TestParseModbus:
    """Table-prefixed offsets and classic 1-based references."""

    def test_tables(self) -> None:
        assert parse_address("C8", Protocol.MODBUS) == PhysicalAddress(MemoryArea.COIL, 8, DataKind.BIT)
        assert parse_address("DI0", "modbus").area is MemoryArea.DISCRETE_INPUT
        assert parse_address("IR3", "modbus") == PhysicalAddress(MemoryArea.INPUT_REGISTER, 3, DataKind.WORD)
        assert parse_address("HR6", "modbus") == PhysicalAddress(MemoryArea.HOLDING_REGISTER, 6, DataKind.WORD)

    def test_signed_register(self) -> None:
        assert parse_address("HR6:INT", "modbus").kind is DataKind.INT

    def test_reference_numbers(self) -> None:
        assert parse_address("9", "modbus") == PhysicalAddress(MemoryArea.COIL, 8, DataKind.BIT)
        assert parse_address("100001", "modbus").area is MemoryArea.DISCRETE_INPUT
        assert parse_address("300002", "modbus") == PhysicalAddress(MemoryArea.INPUT_REGISTER, 1, DataKind.WORD)
        assert parse_address("400007", "modbus") == PhysicalAddress(MemoryArea.HOLDING_REGISTER, 6, DataKind.WORD)

    @pytest.mark.parametrize("raw", ["0", "200001", "V8.1", "C8:INT", "HR", "HR-1"])
    def test_invalid(self, raw: str) -> None:
        with pytest.raises(InvalidAddressError):
            parse_address(raw, Protocol.MODBUS)


class TestFormat:
    """Canonical strings parse back to the same address."""

    @pytest.mark.parametrize(
        "raw,canonical",
        [
            ("DB1,X8.1", "V8.1"),
            ("db1,w0", "VW0"),
            ("DB1,INT6", "VW6:INT"),
            ("DB2,REAL4", "DB2,D4:REAL"),
            ("DB2,X0.3", "DB2,X0.3"),
            ("mb2", "MB2"),
        ],
    )
    def test_s7_canonical(self, raw: str, canonical: str) -> None:
        addr = parse_address(raw)
        assert format_address(addr) == canonical
        assert parse_address(canonical) == addr

    def test_modbus_canonical(self) -> None:
        assert format_address(parse_address("400007", "modbus")) == "HR6"
        assert format_address(parse_address("hr6:int", "modbus")) == "HR6:INT"
        assert str(parse_address("C16", "modbus")) == "C16"
