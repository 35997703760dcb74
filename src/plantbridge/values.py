"""Value parsing and range checks for commands, per address data kind."""

import math
from typing import Any

from .errors import ValidationError
from .types import DataKind, PhysicalAddress, Value

_INT_RANGES: dict[DataKind, tuple[int, int]] = {
    DataKind.BYTE: (0, 0xFF),
    DataKind.WORD: (0, 0xFFFF),
    DataKind.INT: (-32768, 32767),
    DataKind.DWORD: (0, 0xFFFFFFFF),
}


def parse_bool(value: Any) -> bool:
    """Parse a boolean from bool, 0/1 or text (true/false, 1/0, on/off, yes/no)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        v = value.lower().strip()
        if v in ("true", "1", "on", "yes"):
            return True
        if v in ("false", "0", "off", "no"):
            return False
    raise ValueError(f"Invalid boolean value: {value!r}")


def parse_number(value: Any) -> float | int:
    """Parse a finite number from int/float or numeric text; bools are not numbers here."""
    if isinstance(value, bool):
        raise ValueError(f"Expected a number, got {value!r}")
    if isinstance(value, (int, float)):
        num: float | int = value
    elif isinstance(value, str):
        v = value.strip()
        try:
            num = int(v, 16) if v.lower().startswith("0x") else int(v)
        except ValueError:
            num = float(v)
    else:
        raise ValueError(f"Expected a number, got {value!r}")
    if isinstance(num, float) and not math.isfinite(num):
        raise ValueError(f"Expected a finite number, got {value!r}")
    return num


def to_signed(value: int) -> int:
    """Convert unsigned 16-bit to signed."""
    if value > 32767:
        return value - 65536
    return value


def from_signed(value: int) -> int:
    """Convert signed 16-bit to unsigned."""
    if value < 0:
        return value + 65536
    return value


def coerce_for_address(addr: PhysicalAddress, value: Any, *, tag: str | None = None) -> Value:
    """
    Validate `value` against the address kind and return it in the form the driver writes.
    Raises ValidationError; nothing here touches the PLC.
    """
    if addr.kind is DataKind.BIT:
        try:
            return parse_bool(value)
        except ValueError as e:
            raise ValidationError(str(e), tag=tag) from None
    try:
        num = parse_number(value)
    except ValueError as e:
        raise ValidationError(str(e), tag=tag) from None
    if addr.kind is DataKind.REAL:
        return float(num)
    if isinstance(num, float):
        if not num.is_integer():
            raise ValidationError(f"{tag or addr} needs an integer, got {value!r}", tag=tag)
        num = int(num)
    lo, hi = _INT_RANGES[addr.kind]
    if not lo <= num <= hi:
        raise ValidationError(f"{tag or addr} value {num} out of range {lo}..{hi}", tag=tag)
    return num
