"""Synchronous protocol drivers: S7 (python-snap7) and Modbus TCP (pymodbus), with batch coalescing."""

import logging
import struct
from collections import defaultdict
from typing import Any, Callable

from pymodbus.client import ModbusTcpClient
from pymodbus.exceptions import ModbusException as PymodbusException
from snap7.client import Client as S7Client
from snap7.type import Area

from .errors import ProtocolIOError
from .types import DataKind, MemoryArea, PhysicalAddress, Value
from .values import from_signed, to_signed

logger = logging.getLogger(__name__)

# Bytes of slack allowed between two S7 reads before they stop being merged into one request.
S7_MAX_GAP = 8
# Same for Modbus, counted in registers or coils.
MODBUS_MAX_GAP = 2

_S7_AREA = {
    MemoryArea.DB: Area.DB,
    MemoryArea.MERKER: Area.MK,
    MemoryArea.INPUT: Area.PE,
    MemoryArea.OUTPUT: Area.PA,
}

_MODBUS_READ = {
    MemoryArea.COIL: "read_coils",
    MemoryArea.DISCRETE_INPUT: "read_discrete_inputs",
    MemoryArea.INPUT_REGISTER: "read_input_registers",
    MemoryArea.HOLDING_REGISTER: "read_holding_registers",
}

Span = tuple[int, int, list[tuple[str, PhysicalAddress]]]


def _coalesce(
    items: list[tuple[str, PhysicalAddress]], width: Callable[[PhysicalAddress], int], max_gap: int = 0
) -> list[Span]:
    """
    Group (tag, address) pairs of one area into spans. Returns [(start, count, members), ...].
    Items merge when they overlap or sit at most `max_gap` units apart; `width` maps an
    address to its length in units (bytes for S7, registers/coils for Modbus).
    """
    if not items:
        return []
    ordered = sorted(items, key=lambda item: item[1].offset)
    spans: list[Span] = []
    start = ordered[0][1].offset
    end = start + width(ordered[0][1])
    members = [ordered[0]]
    for tag, addr in ordered[1:]:
        if addr.offset <= end + max_gap:
            end = max(end, addr.offset + width(addr))
            members.append((tag, addr))
        else:
            spans.append((start, end - start, members))
            start, end, members = addr.offset, addr.offset + width(addr), [(tag, addr)]
    spans.append((start, end - start, members))
    return spans


def decode_s7(buf: bytes | bytearray, index: int, addr: PhysicalAddress) -> Value:
    """Decode one value at `index` of a big-endian S7 buffer."""
    if addr.kind is DataKind.BIT:
        return bool((buf[index] >> addr.bit) & 1)  # type: ignore[operator]
    if addr.kind is DataKind.BYTE:
        return int(buf[index])
    if addr.kind is DataKind.REAL:
        return round(struct.unpack(">f", bytes(buf[index : index + 4]))[0], 3)
    signed = addr.kind is DataKind.INT
    return int.from_bytes(bytes(buf[index : index + addr.kind.size]), "big", signed=signed)


def encode_s7(addr: PhysicalAddress, value: Value) -> bytearray:
    """Encode a non-bit value for an S7 write."""
    if addr.kind is DataKind.REAL:
        return bytearray(struct.pack(">f", float(value)))
    signed = addr.kind is DataKind.INT
    return bytearray(int(value).to_bytes(addr.kind.size, "big", signed=signed))


class S7Driver:
    """
    S7 access to a LOGO!/S7 PLC over python-snap7. V memory is DB1.
    Not thread-safe: the owning session serializes every call.
    """

    def __init__(self, host: str, rack: int = 0, slot: int = 1, port: int = 102) -> None:
        self._host = host
        self._rack = rack
        self._slot = slot
        self._port = port
        self._client: S7Client | None = None

    def __repr__(self) -> str:
        return f"S7Driver({self._host}:{self._port}, rack={self._rack}, slot={self._slot})"

    def _get_client(self) -> S7Client:
        if self._client is None:
            client = S7Client()
            try:
                client.connect(self._host, self._rack, self._slot, self._port)
            except Exception as e:
                raise ProtocolIOError(f"Failed to connect to {self._host}:{self._port}", cause=e) from e
            self._client = client
        return self._client

    @property
    def connected(self) -> bool:
        return self._client is not None and bool(self._client.get_connected())

    def connect(self) -> None:
        self._get_client()

    def close(self) -> None:
        if self._client is not None:
            try:
                self._client.disconnect()
            except Exception as e:
                logger.warning("Error closing S7 client: %s", e)
            self._client = None

    def _read_area(self, area: MemoryArea, db_number: int, start: int, size: int) -> bytearray:
        client = self._get_client()
        try:
            return client.read_area(_S7_AREA[area], db_number, start, size)
        except Exception as e:
            raise ProtocolIOError(
                f"S7 read of {size} bytes at {area.value}:{start} failed: {e}",
                address=f"{area.value}:{start}",
                cause=e,
            ) from e

    def read_many(self, addresses: dict[str, PhysicalAddress]) -> dict[str, Value]:
        """
        Read all addresses, one request per coalesced byte span. A failed span is logged and
        its tags left out of the result; ProtocolIOError only if no span could be read.
        """
        groups: dict[tuple[MemoryArea, int], list[tuple[str, PhysicalAddress]]] = defaultdict(list)
        for tag, addr in addresses.items():
            groups[(addr.area, addr.db_number)].append((tag, addr))

        out: dict[str, Value] = {}
        failures: list[ProtocolIOError] = []
        for (area, db_number), items in groups.items():
            for start, size, members in _coalesce(items, lambda a: a.kind.size, S7_MAX_GAP):
                try:
                    buf = self._read_area(area, db_number, start, size)
                except ProtocolIOError as e:
                    logger.debug("Span %s:%d+%d unreadable: %s", area.value, start, size, e)
                    failures.append(e)
                    continue
                for tag, addr in members:
                    index = addr.offset - start
                    if index + addr.kind.size > len(buf):
                        logger.debug("Short S7 response for %s (%s)", tag, addr)
                        continue
                    out[tag] = decode_s7(buf, index, addr)
        if failures and not out:
            raise failures[0]
        return out

    def write(self, addr: PhysicalAddress, value: Value) -> None:
        if not addr.area.writable:
            raise ProtocolIOError(f"Write not supported for area {addr.area.value}", address=str(addr))
        client = self._get_client()
        if addr.kind is DataKind.BIT:
            # S7 has no single-bit write here: read-modify-write the containing byte
            data = self._read_area(addr.area, addr.db_number, addr.offset, 1)
            if value:
                data[0] |= 1 << addr.bit  # type: ignore[operator]
            else:
                data[0] &= ~(1 << addr.bit) & 0xFF  # type: ignore[operator]
        else:
            data = encode_s7(addr, value)
        try:
            client.write_area(_S7_AREA[addr.area], addr.db_number, addr.offset, data)
        except Exception as e:
            raise ProtocolIOError(f"S7 write to {addr} failed: {e}", address=str(addr), cause=e) from e


class ModbusDriver:
    """
    Modbus TCP access over pymodbus. Coils/discrete inputs read as bool, registers as int.
    Not thread-safe: the owning session serializes every call.
    """

    def __init__(
        self,
        host: str,
        port: int = 502,
        unit_id: int = 1,
        timeout: float = 2.0,
        retries: int = 1,
    ) -> None:
        self._host = host
        self._port = port
        self._unit_id = unit_id
        self._timeout = timeout
        self._retries = retries
        self._client: ModbusTcpClient | None = None

    def __repr__(self) -> str:
        return f"ModbusDriver({self._host}:{self._port}, unit={self._unit_id})"

    def _get_client(self) -> ModbusTcpClient:
        if self._client is None:
            client = ModbusTcpClient(
                host=self._host,
                port=self._port,
                timeout=self._timeout,
                retries=self._retries,
            )
            if not client.connect():
                raise ProtocolIOError(f"Failed to connect to {self._host}:{self._port}")
            self._client = client
        return self._client

    @property
    def connected(self) -> bool:
        return self._client is not None and bool(self._client.connected)

    def connect(self) -> None:
        self._get_client()

    def close(self) -> None:
        if self._client is not None:
            try:
                self._client.close()
            except Exception as e:
                logger.warning("Error closing Modbus client: %s", e)
            self._client = None

    def _read_span(self, area: MemoryArea, start: int, count: int) -> list[Any]:
        client = self._get_client()
        try:
            rr = getattr(client, _MODBUS_READ[area])(start, count=count, device_id=self._unit_id)
        except PymodbusException as e:
            raise ProtocolIOError(str(e), address=f"{area.value}:{start}", cause=e) from e
        if rr.isError():
            raise ProtocolIOError(str(rr), address=f"{area.value}:{start}", cause=getattr(rr, "exception", None))
        if area in (MemoryArea.COIL, MemoryArea.DISCRETE_INPUT):
            data = getattr(rr, "bits", None)
        else:
            data = getattr(rr, "registers", None)
        if not data or len(data) < count:
            raise ProtocolIOError("Short response", address=f"{area.value}:{start}")
        return list(data)

    def read_many(self, addresses: dict[str, PhysicalAddress]) -> dict[str, Value]:
        """
        Read all addresses, grouped by table and coalesced into ranges (small gaps allowed). A failed
        range is logged and its tags left out; ProtocolIOError only if nothing could be read.
        """
        by_area: dict[MemoryArea, list[tuple[str, PhysicalAddress]]] = defaultdict(list)
        for tag, addr in addresses.items():
            by_area[addr.area].append((tag, addr))

        out: dict[str, Value] = {}
        failures: list[ProtocolIOError] = []
        for area, items in by_area.items():
            for start, count, members in _coalesce(items, lambda a: 1, MODBUS_MAX_GAP):
                try:
                    data = self._read_span(area, start, count)
                except ProtocolIOError as e:
                    logger.debug("Range %s:%d+%d unreadable: %s", area.value, start, count, e)
                    failures.append(e)
                    continue
                for tag, addr in members:
                    raw = data[addr.offset - start]
                    if addr.kind is DataKind.BIT:
                        out[tag] = bool(raw)
                    elif addr.kind is DataKind.INT:
                        out[tag] = to_signed(int(raw))
                    else:
                        out[tag] = int(raw)
        if failures and not out:
            raise failures[0]
        return out

    def write(self, addr: PhysicalAddress, value: Value) -> None:
        client = self._get_client()
        try:
            if addr.area is MemoryArea.COIL:
                rr = client.write_coil(addr.offset, bool(value), device_id=self._unit_id)
            elif addr.area is MemoryArea.HOLDING_REGISTER:
                rr = client.write_register(addr.offset, from_signed(int(value)), device_id=self._unit_id)
            else:
                raise ProtocolIOError(f"Write not supported for table {addr.area.value}", address=str(addr))
        except PymodbusException as e:
            raise ProtocolIOError(str(e), address=str(addr), cause=e) from e
        if rr.isError():
            raise ProtocolIOError(str(rr), address=str(addr), cause=getattr(rr, "exception", None))
