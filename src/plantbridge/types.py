"""Core data model: memory areas, physical addresses, plant snapshots and write commands."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping

ERROR_MARKER = "ERROR"

Value = bool | int | float


class Protocol(str, Enum):
    """Wire protocols supported for talking to the PLC."""

    S7 = "s7"
    MODBUS = "modbus"


class MemoryArea(str, Enum):
    """PLC memory areas. The first four are S7 areas, the rest Modbus tables."""

    DB = "db"
    MERKER = "merker"
    INPUT = "input"
    OUTPUT = "output"
    COIL = "coil"
    DISCRETE_INPUT = "discrete_input"
    INPUT_REGISTER = "input_register"
    HOLDING_REGISTER = "holding_register"

    @property
    def protocol(self) -> Protocol:
        if self in (MemoryArea.DB, MemoryArea.MERKER, MemoryArea.INPUT, MemoryArea.OUTPUT):
            return Protocol.S7
        return Protocol.MODBUS

    @property
    def writable(self) -> bool:
        return self not in (MemoryArea.INPUT, MemoryArea.DISCRETE_INPUT, MemoryArea.INPUT_REGISTER)


class DataKind(str, Enum):
    """How the bytes at an address are interpreted."""

    BIT = "bit"
    BYTE = "byte"
    WORD = "word"
    INT = "int"
    DWORD = "dword"
    REAL = "real"

    @property
    def size(self) -> int:
        """Width in bytes (a bit still occupies its containing byte)."""
        return {"bit": 1, "byte": 1, "word": 2, "int": 2, "dword": 4, "real": 4}[self.value]


@dataclass(frozen=True)
class PhysicalAddress:
    """Protocol-level location of a tag: area + byte/register offset + optional bit."""

    area: MemoryArea
    offset: int
    kind: DataKind = DataKind.WORD
    bit: int | None = None
    db_number: int = 0

    def __post_init__(self) -> None:
        if self.offset < 0:
            raise ValueError(f"offset must be >= 0, got {self.offset}")
        if self.area.protocol is Protocol.MODBUS:
            if self.bit is not None:
                raise ValueError("Modbus addresses do not carry a bit component")
            bit_table = self.area in (MemoryArea.COIL, MemoryArea.DISCRETE_INPUT)
            if bit_table and self.kind is not DataKind.BIT:
                raise ValueError(f"{self.area.value} addresses must be bits")
            if not bit_table and self.kind not in (DataKind.WORD, DataKind.INT):
                raise ValueError(f"{self.area.value} addresses must be WORD or INT, got {self.kind.value}")
            return
        if self.kind is DataKind.BIT:
            if self.bit is None or not 0 <= self.bit <= 7:
                raise ValueError(f"bit addresses need a bit in 0..7, got {self.bit}")
        elif self.bit is not None:
            raise ValueError(f"{self.kind.value} addresses must not carry a bit")
        if self.area is MemoryArea.DB and self.db_number < 1:
            raise ValueError(f"db_number must be >= 1 for DB addresses, got {self.db_number}")

    @property
    def protocol(self) -> Protocol:
        return self.area.protocol

    @property
    def is_digital(self) -> bool:
        return self.kind is DataKind.BIT

    def __str__(self) -> str:
        from .address import format_address

        return format_address(self)


class SessionState(str, Enum):
    """Lifecycle of the single PLC session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    FAULTED = "faulted"


class CommandKind(str, Enum):
    """Write semantics accepted by the command gateway."""

    SET_POINT = "set_point"
    PULSE = "pulse"
    HOLD = "hold"


@dataclass(frozen=True)
class WriteCommand:
    """A request to mutate one logical tag."""

    tag: str
    value: Any
    kind: CommandKind = CommandKind.SET_POINT


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PlantSnapshot:
    """Result of one poll cycle. Immutable once built; safe to share between subscribers."""

    values: Mapping[str, Any]
    running: bool = False
    timestamp: datetime = field(default_factory=_utcnow)
    error: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    @classmethod
    def build(cls, values: Mapping[str, Any], actuator_tags: Iterable[str]) -> "PlantSnapshot":
        """Snapshot from a (possibly partial) read; running if any actuator reads exactly True."""
        running = any(values.get(tag) is True for tag in actuator_tags)
        return cls(values=values, running=running)

    @classmethod
    def degraded(cls, tags: Iterable[str], error: str) -> "PlantSnapshot":
        """Snapshot for a disconnected or failed PLC: every tag carries the ERROR marker."""
        return cls(values={tag: ERROR_MARKER for tag in tags}, running=False, error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.values)
        out["running"] = self.running
        out["timestamp"] = self.timestamp.isoformat()
        if self.error is not None:
            out["error"] = self.error
        return out
