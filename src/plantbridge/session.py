"""PlcSession: the single owned PLC connection, with serialized, time-bounded async I/O."""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterable, Protocol as TypingProtocol

from .errors import ConnectError, ReadError, WriteError
from .tagmap import AddressMap
from .types import PhysicalAddress, SessionState, Value

logger = logging.getLogger(__name__)


class Driver(TypingProtocol):
    """What the session needs from a protocol driver (see drivers.S7Driver / ModbusDriver)."""

    @property
    def connected(self) -> bool: ...

    def connect(self) -> None: ...

    def close(self) -> None: ...

    def read_many(self, addresses: dict[str, PhysicalAddress]) -> dict[str, Value]: ...

    def write(self, addr: PhysicalAddress, value: Value) -> None: ...


class PlcSession:
    """
    Owns exactly one driver. Every driver call goes through one asyncio.Lock and a
    single-worker thread, so at most one request is ever in flight on the socket.
    Calls are bounded by `timeout`; a call that overruns faults the session and the
    worker is replaced so the next connect() is not stuck behind the hung call.
    """

    def __init__(self, driver: Driver, address_map: AddressMap, *, timeout: float = 2.0) -> None:
        self._driver = driver
        self._map = address_map
        self._timeout = timeout
        self._state = SessionState.DISCONNECTED
        self._last_error: str | None = None
        self._lock = asyncio.Lock()
        self._executor = self._new_executor()

    @staticmethod
    def _new_executor() -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=1, thread_name_prefix="plc-io")

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._state is SessionState.READY

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def address_map(self) -> AddressMap:
        return self._map

    def _fault(self, reason: str) -> None:
        if self._state is not SessionState.FAULTED:
            logger.warning("PLC session faulted: %s", reason)
        self._state = SessionState.FAULTED
        self._last_error = reason

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._executor, fn, *args)
        try:
            return await asyncio.wait_for(future, self._timeout)
        except asyncio.TimeoutError:
            # the worker may stay blocked inside the driver; stop queueing behind it
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = self._new_executor()
            raise

    def _ensure_ready(self) -> None:
        if self._state is not SessionState.READY:
            raise ConnectError(f"PLC not connected (session {self._state.value})")

    async def connect(self) -> None:
        """Open the connection. On failure the session is FAULTED and ConnectError is raised."""
        async with self._lock:
            if self._state is SessionState.READY:
                return
            self._state = SessionState.CONNECTING
            try:
                await self._call(self._driver.close)
                await self._call(self._driver.connect)
            except asyncio.TimeoutError:
                reason = f"connect to {self._driver!r} timed out after {self._timeout}s"
                self._fault(reason)
                raise ConnectError(reason) from None
            except Exception as e:
                self._fault(str(e))
                raise ConnectError(f"Could not connect to {self._driver!r}: {e}", cause=e) from e
            self._state = SessionState.READY
            self._last_error = None
            logger.info("PLC session ready (%s)", self._driver)

    async def read_all(self, tags: Iterable[str]) -> dict[str, Value]:
        """
        One batched read of `tags`. Tags the device did not return are absent from the
        result rather than failing the batch. Unknown tags fail before any I/O.
        """
        tags = list(tags)
        addresses = {tag: self._map.resolve(tag) for tag in tags}
        async with self._lock:
            self._ensure_ready()
            try:
                values = await self._call(self._driver.read_many, addresses)
            except asyncio.TimeoutError:
                reason = f"read timed out after {self._timeout}s"
                self._fault(reason)
                raise ReadError(reason) from None
            except Exception as e:
                self._fault(str(e))
                raise ReadError(f"Read failed: {e}", cause=e) from e
        missing = [tag for tag in tags if tag not in values]
        if missing:
            logger.debug("Partial read, missing %s", ", ".join(missing))
        return {tag: values[tag] for tag in tags if tag in values}

    async def write(self, tag: str, value: Value) -> None:
        """Write one tag. Fails fast with ConnectError when the session is not ready."""
        addr = self._map.resolve(tag)
        async with self._lock:
            self._ensure_ready()
            try:
                await self._call(self._driver.write, addr, value)
            except asyncio.TimeoutError:
                reason = f"write {tag}={value!r} timed out after {self._timeout}s"
                self._fault(reason)
                raise WriteError(reason, tag=tag) from None
            except Exception as e:
                if not self._driver.connected:
                    self._fault(str(e))
                raise WriteError(f"Write {tag}={value!r} failed: {e}", tag=tag, cause=e) from e
        logger.debug("Wrote %s (%s) = %r", tag, addr, value)

    async def close(self) -> None:
        async with self._lock:
            try:
                await self._call(self._driver.close)
            except Exception as e:
                logger.warning("Error closing PLC session: %s", e)
            self._state = SessionState.DISCONNECTED
            self._executor.shutdown(wait=False)
            self._executor = self._new_executor()
