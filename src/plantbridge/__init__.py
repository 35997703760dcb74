"""plantbridge: S7 / Modbus TCP bridge between a batching-plant PLC and its dashboard."""

__version__ = "0.1.0"

from .address import format_address, parse_address
from .bridge import Bridge
from .config import BridgeConfig
from .errors import (
    ConnectError,
    InvalidAddressError,
    PlantBridgeError,
    ProtocolIOError,
    ReadError,
    SessionError,
    UnknownTagError,
    ValidationError,
    WriteError,
)
from .gateway import CommandGateway
from .session import PlcSession
from .tagmap import AddressMap, get_default_map, load_address_map
from .types import DataKind, MemoryArea, PhysicalAddress, PlantSnapshot, Protocol, SessionState

__all__ = [
    "__version__",
    "format_address",
    "parse_address",
    "Bridge",
    "BridgeConfig",
    "ConnectError",
    "InvalidAddressError",
    "PlantBridgeError",
    "ProtocolIOError",
    "ReadError",
    "SessionError",
    "UnknownTagError",
    "ValidationError",
    "WriteError",
    "CommandGateway",
    "PlcSession",
    "AddressMap",
    "get_default_map",
    "load_address_map",
    "DataKind",
    "MemoryArea",
    "PhysicalAddress",
    "PlantSnapshot",
    "Protocol",
    "SessionState",
]
