"""Shared fakes: a recording synchronous driver and a recording async session."""

import asyncio
import time
from typing import Any, Iterable

import pytest

from plantbridge.errors import ConnectError
from plantbridge.tagmap import AddressMap, get_default_map
from plantbridge.types import PhysicalAddress, Protocol, SessionState


class FakeDriver:
    """In-memory driver keyed by PhysicalAddress; records every call."""

    def __init__(self, memory: dict[PhysicalAddress, Any] | None = None) -> None:
        self.memory: dict[PhysicalAddress, Any] = dict(memory or {})
        self.connected = False
        self.calls: list[Any] = []
        self.connect_error: Exception | None = None
        self.read_error: Exception | None = None
        self.write_error: Exception | None = None
        self.read_delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    def connect(self) -> None:
        self.calls.append("connect")
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    def close(self) -> None:
        self.calls.append("close")
        self.connected = False

    def read_many(self, addresses: dict[str, PhysicalAddress]) -> dict[str, Any]:
        self.calls.append(("read", tuple(addresses)))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.read_delay:
                time.sleep(self.read_delay)
            if self.read_error is not None:
                raise self.read_error
            return {tag: self.memory[addr] for tag, addr in addresses.items() if addr in self.memory}
        finally:
            self.in_flight -= 1

    def write(self, addr: PhysicalAddress, value: Any) -> None:
        self.calls.append(("write", addr, value))
        if self.write_error is not None:
            raise self.write_error
        self.memory[addr] = value

    @property
    def reads(self) -> list[Any]:
        return [c for c in self.calls if isinstance(c, tuple) and c[0] == "read"]

    @property
    def writes(self) -> list[Any]:
        return [c for c in self.calls if isinstance(c, tuple) and c[0] == "write"]


class FakeSession:
    """Async stand-in for PlcSession, keyed by tag; records reads and writes."""

    def __init__(self, address_map: AddressMap, values: dict[str, Any] | None = None, ready: bool = True) -> None:
        self.address_map = address_map
        self.values: dict[str, Any] = dict(values or {})
        self.state = SessionState.READY if ready else SessionState.DISCONNECTED
        self.last_error: str | None = None
        self.timeout = 0.5
        self.reads: list[list[str]] = []
        self.writes: list[tuple[str, Any]] = []
        self.connects = 0
        self.connect_error: Exception | None = None
        self.read_error: Exception | None = None
        self.write_error: Exception | None = None
        self.read_delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def ready(self) -> bool:
        return self.state is SessionState.READY

    async def connect(self) -> None:
        self.connects += 1
        if self.connect_error is not None:
            self.state = SessionState.FAULTED
            self.last_error = str(self.connect_error)
            raise self.connect_error
        self.state = SessionState.READY

    async def read_all(self, tags: Iterable[str]) -> dict[str, Any]:
        tags = list(tags)
        for tag in tags:
            self.address_map.resolve(tag)
        if not self.ready:
            raise ConnectError("PLC not connected")
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            self.reads.append(tags)
            if self.read_delay:
                await asyncio.sleep(self.read_delay)
            if self.read_error is not None:
                raise self.read_error
            return {tag: self.values[tag] for tag in tags if tag in self.values}
        finally:
            self.in_flight -= 1

    async def write(self, tag: str, value: Any) -> None:
        self.address_map.resolve(tag)
        if not self.ready:
            raise ConnectError(f"PLC not connected, cannot write {tag}")
        self.writes.append((tag, value))
        if self.write_error is not None:
            raise self.write_error
        self.values[tag] = value

    async def close(self) -> None:
        self.state = SessionState.DISCONNECTED


class FakeSocket:
    """WebSocket stand-in: records sent frames, can fail or stall."""

    def __init__(self, fail: bool = False, stall: bool = False) -> None:
        self.sent: list[str] = []
        self.fail = fail
        self.stall = stall
        self.closed = False

    async def send_text(self, text: str) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        if self.stall:
            await asyncio.sleep(10)
        self.sent.append(text)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def s7_map() -> AddressMap:
    return get_default_map(Protocol.S7)


@pytest.fixture
def modbus_map() -> AddressMap:
    return get_default_map(Protocol.MODBUS)


@pytest.fixture
def fake_session(s7_map: AddressMap) -> FakeSession:
    return FakeSession(s7_map)


def memory_for(address_map: AddressMap, **values: Any) -> dict[PhysicalAddress, Any]:
    """Build FakeDriver memory from tag=value pairs."""
    return {address_map.resolve(tag): value for tag, value in values.items()}
