"""BridgeConfig: validated runtime settings for the bridge service."""

from dataclasses import dataclass, field
from pathlib import Path

from .types import Protocol

DEFAULT_PORTS = {Protocol.S7: 102, Protocol.MODBUS: 502}


@dataclass(frozen=True)
class BridgeConfig:
    """
    Everything needed to build a Bridge. `port=None` picks the protocol's default.
    Invalid combinations raise ValueError on construction.
    """

    plc_host: str
    protocol: Protocol = Protocol.S7
    rack: int = 0
    slot: int = 1
    port: int | None = None
    unit_id: int = 1
    timeout: float = 2.0
    poll_interval: float = 1.0
    setpoint_max: float = 100
    pulse_duration: float = 0.1
    hold_timeout: float = 30.0
    map_file: Path | None = None
    listen_host: str = "0.0.0.0"
    listen_port: int = 4000
    cors_origins: tuple[str, ...] = field(default_factory=lambda: ("*",))

    def __post_init__(self) -> None:
        # frozen: normalize through object.__setattr__
        if not isinstance(self.protocol, Protocol):
            try:
                object.__setattr__(self, "protocol", Protocol(str(self.protocol).lower()))
            except ValueError:
                raise ValueError(f"protocol must be one of s7, modbus; got {self.protocol!r}") from None
        if not self.plc_host or not self.plc_host.strip():
            raise ValueError("plc_host is required")
        if self.port is None:
            object.__setattr__(self, "port", DEFAULT_PORTS[self.protocol])
        if not 0 < self.port < 65536:  # type: ignore[operator]
            raise ValueError(f"port must be within 1-65535, got {self.port}")
        if not 0 < self.listen_port < 65536:
            raise ValueError(f"listen_port must be within 1-65535, got {self.listen_port}")
        if not 0 <= self.unit_id <= 247:
            raise ValueError(f"unit_id must be within 0-247, got {self.unit_id}")
        if self.rack < 0 or self.slot < 0:
            raise ValueError("rack and slot must not be negative")
        for name in ("timeout", "poll_interval", "setpoint_max", "pulse_duration", "hold_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.map_file is not None and not isinstance(self.map_file, Path):
            object.__setattr__(self, "map_file", Path(self.map_file))
        object.__setattr__(self, "cors_origins", tuple(self.cors_origins))
