"""Parse and format physical PLC addresses (LOGO!/S7 and Modbus notations)."""

import re

from .errors import InvalidAddressError
from .types import DataKind, MemoryArea, PhysicalAddress, Protocol

# LOGO!/S7 short form: V8.1, VW0, MB2, QD4:REAL ... V memory is DB1 on a LOGO!
_S7_SHORT = re.compile(r"^([VMIQ])([BWD])?(\d{1,5})(?:\.(\d))?(?::(INT|REAL))?$", re.IGNORECASE)

# Explicit data block: DB1,X8.0  DB1,W0  DB1,INT0  DB2,D4:REAL
_S7_DB = re.compile(
    r"^DB(\d{1,5}),(X|B|W|D|INT|REAL)(\d{1,5})(?:\.(\d))?(?::(INT|REAL))?$",
    re.IGNORECASE,
)

# Modbus table + 0-based offset: C8, DI0, IR3, HR6, HR6:INT
_MODBUS = re.compile(r"^(C|DI|IR|HR)(\d{1,5})(?::(INT|WORD))?$", re.IGNORECASE)

_S7_AREA = {"V": MemoryArea.DB, "M": MemoryArea.MERKER, "I": MemoryArea.INPUT, "Q": MemoryArea.OUTPUT}
_S7_PREFIX = {MemoryArea.DB: "V", MemoryArea.MERKER: "M", MemoryArea.INPUT: "I", MemoryArea.OUTPUT: "Q"}
_SIZE_KIND = {"B": DataKind.BYTE, "W": DataKind.WORD, "D": DataKind.DWORD}
_KIND_SIZE = {DataKind.BYTE: "B", DataKind.WORD: "W", DataKind.INT: "W", DataKind.DWORD: "D", DataKind.REAL: "D"}
_MODBUS_AREA = {
    "C": MemoryArea.COIL,
    "DI": MemoryArea.DISCRETE_INPUT,
    "IR": MemoryArea.INPUT_REGISTER,
    "HR": MemoryArea.HOLDING_REGISTER,
}
_MODBUS_PREFIX = {area: prefix for prefix, area in _MODBUS_AREA.items()}


def _ref_to_area_offset(ref: int) -> tuple[MemoryArea, int]:
    """Convert a classic 1-based Modbus reference number to (area, 0-based offset)."""
    if 1 <= ref <= 99_999:
        return MemoryArea.COIL, ref - 1
    if 100_001 <= ref <= 199_999:
        return MemoryArea.DISCRETE_INPUT, ref - 100_001
    if 300_001 <= ref <= 399_999:
        return MemoryArea.INPUT_REGISTER, ref - 300_001
    if 400_001 <= ref <= 499_999:
        return MemoryArea.HOLDING_REGISTER, ref - 400_001
    raise ValueError(f"Invalid Modbus reference: {ref}")


def _apply_suffix(raw: str, kind: DataKind, suffix: str | None) -> DataKind:
    if suffix is None:
        return kind
    suffix = suffix.upper()
    if suffix == "INT" and kind is DataKind.WORD:
        return DataKind.INT
    if suffix == "REAL" and kind is DataKind.DWORD:
        return DataKind.REAL
    raise InvalidAddressError(raw, f"Suffix :{suffix} does not fit a {kind.value} address: {raw!r}")


def _build(raw: str, **kwargs: object) -> PhysicalAddress:
    try:
        return PhysicalAddress(**kwargs)  # type: ignore[arg-type]
    except ValueError as e:
        raise InvalidAddressError(raw, f"{raw!r}: {e}") from None


def _parse_s7(raw: str, s: str) -> PhysicalAddress:
    m = _S7_SHORT.match(s)
    if m:
        letter, size, num, bit, suffix = m.groups()
        area = _S7_AREA[letter.upper()]
        db_number = 1 if area is MemoryArea.DB else 0
        if size is None:
            if bit is None:
                raise InvalidAddressError(raw, f"Bit address needs a bit number, e.g. {letter}{num}.0")
            if suffix is not None:
                raise InvalidAddressError(raw, f"Bit addresses take no type suffix: {raw!r}")
            return _build(raw, area=area, offset=int(num), kind=DataKind.BIT, bit=int(bit), db_number=db_number)
        if bit is not None:
            raise InvalidAddressError(raw, f"Only bit addresses carry a bit number: {raw!r}")
        kind = _apply_suffix(raw, _SIZE_KIND[size.upper()], suffix)
        return _build(raw, area=area, offset=int(num), kind=kind, db_number=db_number)

    m = _S7_DB.match(s)
    if m:
        db, token, num, bit, suffix = m.groups()
        token = token.upper()
        if token == "X":
            if bit is None or suffix is not None:
                raise InvalidAddressError(raw, f"DB bit address must look like DB1,X8.0: {raw!r}")
            return _build(raw, area=MemoryArea.DB, offset=int(num), kind=DataKind.BIT, bit=int(bit), db_number=int(db))
        if bit is not None:
            raise InvalidAddressError(raw, f"Only X addresses carry a bit number: {raw!r}")
        if token in ("INT", "REAL"):
            if suffix is not None:
                raise InvalidAddressError(raw, f"Redundant type suffix: {raw!r}")
            kind = DataKind.INT if token == "INT" else DataKind.REAL
        else:
            kind = _apply_suffix(raw, _SIZE_KIND[token], suffix)
        return _build(raw, area=MemoryArea.DB, offset=int(num), kind=kind, db_number=int(db))

    raise InvalidAddressError(raw, f"Malformed S7 address: {raw!r}")


def _parse_modbus(raw: str, s: str) -> PhysicalAddress:
    if s.isdigit():
        try:
            area, offset = _ref_to_area_offset(int(s))
        except ValueError:
            raise InvalidAddressError(raw, f"Invalid Modbus reference: {raw!r}") from None
    else:
        m = _MODBUS.match(s)
        if not m:
            raise InvalidAddressError(raw, f"Malformed Modbus address: {raw!r}")
        prefix, num, suffix = m.groups()
        area = _MODBUS_AREA[prefix.upper()]
        offset = int(num)
        if suffix is not None:
            if area in (MemoryArea.COIL, MemoryArea.DISCRETE_INPUT):
                raise InvalidAddressError(raw, f"Bit tables take no type suffix: {raw!r}")
            kind = DataKind.INT if suffix.upper() == "INT" else DataKind.WORD
            return _build(raw, area=area, offset=offset, kind=kind)
    kind = DataKind.BIT if area in (MemoryArea.COIL, MemoryArea.DISCRETE_INPUT) else DataKind.WORD
    return _build(raw, area=area, offset=offset, kind=kind)


def parse_address(raw: str, protocol: Protocol | str = Protocol.S7) -> PhysicalAddress:
    """
    Parse an address string for the given protocol.

    S7: V8.1, VB3, VW0, VD4, MW0, I0.1, QB0, VW0:INT, VD4:REAL, DB1,X8.0, DB1,W0, DB1,INT0.
    Modbus: C8, DI0, IR0, HR6, HR6:INT, or 1-based references (400007).

    Raises InvalidAddressError for malformed addresses.
    """
    s = str(raw).strip()
    if not s:
        raise InvalidAddressError(str(raw), "Address cannot be empty")
    if Protocol(protocol) is Protocol.MODBUS:
        return _parse_modbus(str(raw), s)
    return _parse_s7(str(raw), s)


def format_address(addr: PhysicalAddress) -> str:
    """Render the canonical string for an address; parse_address() of it gives it back."""
    if addr.protocol is Protocol.MODBUS:
        text = f"{_MODBUS_PREFIX[addr.area]}{addr.offset}"
        return f"{text}:INT" if addr.kind is DataKind.INT else text

    suffix = {DataKind.INT: ":INT", DataKind.REAL: ":REAL"}.get(addr.kind, "")
    if addr.area is MemoryArea.DB and addr.db_number != 1:
        if addr.kind is DataKind.BIT:
            return f"DB{addr.db_number},X{addr.offset}.{addr.bit}"
        return f"DB{addr.db_number},{_KIND_SIZE[addr.kind]}{addr.offset}{suffix}"
    prefix = _S7_PREFIX[addr.area]
    if addr.kind is DataKind.BIT:
        return f"{prefix}{addr.offset}.{addr.bit}"
    return f"{prefix}{_KIND_SIZE[addr.kind]}{addr.offset}{suffix}"
