"""Bridge: wires address map, session, poller, gateway and hub together and runs them."""

import asyncio
import logging
from typing import Any, Iterable

from .config import BridgeConfig
from .drivers import ModbusDriver, S7Driver
from .errors import ConnectError
from .fanout import Hub
from .gateway import CommandGateway
from .poller import DEFAULT_ACTUATOR_TAGS, Poller
from .session import Driver, PlcSession
from .tagmap import load_address_map
from .types import CommandKind, PlantSnapshot, Protocol, WriteCommand

logger = logging.getLogger(__name__)


def create_driver(config: BridgeConfig) -> Driver:
    if config.protocol is Protocol.MODBUS:
        return ModbusDriver(config.plc_host, port=config.port, unit_id=config.unit_id, timeout=config.timeout)  # type: ignore[arg-type]
    return S7Driver(config.plc_host, rack=config.rack, slot=config.slot, port=config.port)  # type: ignore[arg-type]


class Bridge:
    """Owns the one session and everything that uses it. start() then stop(), once."""

    def __init__(
        self,
        session: PlcSession,
        *,
        poll_tags: Iterable[str] | None = None,
        poll_interval: float = 1.0,
        actuator_tags: Iterable[str] = DEFAULT_ACTUATOR_TAGS,
        **gateway_options: Any,
    ) -> None:
        self.session = session
        self.actuator_tags = tuple(actuator_tags)
        self.gateway = CommandGateway(session, **gateway_options)
        self.hub = Hub(self.gateway, gate_tags=self.actuator_tags)
        tags = session.address_map.tags if poll_tags is None else tuple(poll_tags)
        self.poller = Poller(session, tags, self.hub.publish, interval=poll_interval, actuator_tags=self.actuator_tags)
        self._task: asyncio.Task | None = None

    @classmethod
    def from_config(cls, config: BridgeConfig) -> "Bridge":
        address_map = load_address_map(config.protocol, config.map_file)
        session = PlcSession(create_driver(config), address_map, timeout=config.timeout)
        return cls(
            session,
            poll_interval=config.poll_interval,
            setpoint_max=config.setpoint_max,
            pulse_duration=config.pulse_duration,
            hold_timeout=config.hold_timeout,
        )

    @property
    def latest(self) -> PlantSnapshot:
        return self.poller.latest

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Check every tag resolves (fatal otherwise), try a first connect, start polling."""
        self.session.address_map.require([*self.poller.tags, *self.gateway.command_tags, *self.actuator_tags])
        try:
            await self.session.connect()
        except ConnectError as e:
            logger.warning("Initial PLC connect failed, poller will keep retrying: %s", e)
        self._task = asyncio.create_task(self.poller.run())
        logger.info("Bridge started (%s, %d tags)", self.session.address_map.protocol.value, len(self.poller.tags))

    async def stop(self) -> None:
        self.poller.stop()
        if self._task is not None:
            try:
                await asyncio.wait_for(self._task, self.poller.interval + self.session.timeout)
            except asyncio.TimeoutError:
                logger.warning("Poll task did not stop in time, cancelling")
            self._task = None
        await self.gateway.aclose()
        await self.session.close()
        await self.hub.close()
        logger.info("Bridge stopped")

    async def start_cycle(self) -> None:
        await self.gateway.start()
        await self.hub.echo("start")

    async def reset_cycle(self) -> None:
        await self.gateway.reset()
        await self.hub.echo("reset")

    async def write(self, tag: str, value: Any, owner: str = "http") -> WriteCommand:
        """Routed write; a start/reset pulse is echoed to every open tab."""
        command = await self.gateway.write(tag, value, owner)
        if command.kind is CommandKind.PULSE:
            await self.hub.echo("start" if tag == self.gateway.start_tag else "reset")
        return command

    def status(self) -> dict[str, Any]:
        latest = self.poller.latest
        return {
            "state": self.session.state.value,
            "connected": self.session.ready,
            "last_error": self.session.last_error,
            "protocol": self.session.address_map.protocol.value,
            "subscribers": len(self.hub),
            "ticks": self.poller.ticks,
            "skipped_ticks": self.poller.skipped,
            "last_snapshot": latest.timestamp.isoformat() if self.poller.ticks else None,
            "held": self.gateway.held_tags,
        }
