"""CommandGateway: validates write commands and issues them through the shared PLC session."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Iterable

from .errors import ConnectError, PlantBridgeError, ValidationError
from .session import PlcSession
from .types import CommandKind, Value, WriteCommand
from .values import coerce_for_address, parse_bool, parse_number

logger = logging.getLogger(__name__)

DEFAULT_SETPOINT_TAGS = ("ARIDO1", "ARIDO2", "ARIDO3")


@dataclass
class _Hold:
    owner: str
    watchdog: asyncio.Task


def _positive(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


class CommandGateway:
    """
    Three write semantics over one session:

    - set point: range-checked numeric write, done once.
    - pulse: True now, False after `pulse_duration` (fire-and-forget, failures logged).
    - hold: True on press, False on release; a watchdog and abandon() make sure a
      pressed control always ends up False even if the release never arrives.
    """

    def __init__(
        self,
        session: PlcSession,
        *,
        setpoint_tags: Iterable[str] = DEFAULT_SETPOINT_TAGS,
        setpoint_max: float = 100,
        start_tag: str = "INICIO",
        reset_tag: str = "RESET",
        hold_tag: str = "MANUAL",
        pulse_duration: float = 0.1,
        hold_timeout: float = 30.0,
        release_retry: float = 1.0,
    ) -> None:
        self._session = session
        self._map = session.address_map
        self._setpoint_tags = tuple(setpoint_tags)
        self._setpoint_max = setpoint_max
        self._start_tag = start_tag
        self._reset_tag = reset_tag
        self._hold_tag = hold_tag
        self._pulse_duration = pulse_duration
        self._hold_timeout = hold_timeout
        self._release_retry = release_retry
        self._pulses: set[asyncio.Task] = set()
        self._holds: dict[str, _Hold] = {}

    @property
    def command_tags(self) -> tuple[str, ...]:
        """Every tag this gateway may write; all must resolve when the bridge starts."""
        return (*self._setpoint_tags, self._start_tag, self._reset_tag, self._hold_tag)

    @property
    def setpoint_tags(self) -> tuple[str, ...]:
        return self._setpoint_tags

    @property
    def start_tag(self) -> str:
        return self._start_tag

    @property
    def reset_tag(self) -> str:
        return self._reset_tag

    @property
    def held_tags(self) -> dict[str, str]:
        return {tag: hold.owner for tag, hold in self._holds.items()}

    # ------------------------------------------------------------------
    # Set points
    # ------------------------------------------------------------------

    def validate_set_point(self, tag: str, value: Any) -> Value:
        """Return the value to write, or raise ValidationError / UnknownTagError."""
        addr = self._map.resolve(tag)
        if tag not in self._setpoint_tags:
            raise ValidationError(f"{tag} is not a set-point tag", tag=tag)
        try:
            num = parse_number(value)
        except ValueError as e:
            raise ValidationError(f"{tag}: {e}", tag=tag) from None
        if not 0 <= num <= self._setpoint_max:
            raise ValidationError(f"{tag} value must be within 0-{self._setpoint_max:g}, got {num:g}", tag=tag)
        return coerce_for_address(addr, num, tag=tag)

    async def set_point(self, tag: str, value: Any) -> None:
        checked = self.validate_set_point(tag, value)
        await self._session.write(tag, checked)
        logger.info("Set point %s = %s", tag, checked)

    # ------------------------------------------------------------------
    # Pulses
    # ------------------------------------------------------------------

    async def pulse(self, tag: str, duration: float | None = None) -> None:
        """Write True, schedule False. Returns once the True write has landed."""
        self._map.resolve(tag)
        if not self._session.ready:
            raise ConnectError(f"PLC not connected, cannot pulse {tag}", tag=tag)
        await self._session.write(tag, True)
        task = asyncio.create_task(self._pulse_off(tag, self._pulse_duration if duration is None else duration))
        self._pulses.add(task)
        task.add_done_callback(self._pulses.discard)
        logger.info("Pulse sent to %s", tag)

    async def _pulse_off(self, tag: str, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self._session.write(tag, False)
        except PlantBridgeError as e:
            logger.error("Pulse on %s: writing False failed: %s", tag, e)

    async def check_start_allowed(self) -> None:
        """Fresh read of the set points; start needs at least one of them above zero."""
        values = await self._session.read_all(self._setpoint_tags)
        if not any(_positive(values.get(tag)) for tag in self._setpoint_tags):
            raise ValidationError("Cannot start: no arido value set", tag=self._start_tag)

    async def start(self) -> None:
        await self.check_start_allowed()
        await self.pulse(self._start_tag)

    async def reset(self) -> None:
        await self.pulse(self._reset_tag)

    # ------------------------------------------------------------------
    # Hold-to-write
    # ------------------------------------------------------------------

    async def hold(self, owner: str, pressed: bool, tag: str | None = None) -> None:
        tag = tag or self._hold_tag
        self._map.resolve(tag)
        if not pressed:
            await self._release(tag)
            return
        if not self._session.ready:
            raise ConnectError(f"PLC not connected, cannot hold {tag}", tag=tag)
        self._disarm(tag)
        try:
            await self._session.write(tag, True)
        except PlantBridgeError:
            # the True may still have landed; make sure a False follows
            self._arm(tag, owner, self._release_retry)
            raise
        self._arm(tag, owner, self._hold_timeout)
        logger.info("Hold %s pressed by %s", tag, owner)

    async def _release(self, tag: str) -> None:
        hold = self._holds.get(tag)
        try:
            await self._session.write(tag, False)
        except PlantBridgeError:
            self._arm(tag, hold.owner if hold else "?", self._release_retry)
            raise
        self._disarm(tag)
        logger.info("Hold %s released", tag)

    def _arm(self, tag: str, owner: str, delay: float) -> None:
        self._disarm(tag)
        self._holds[tag] = _Hold(owner, asyncio.create_task(self._watchdog(tag, owner, delay)))

    def _disarm(self, tag: str) -> None:
        hold = self._holds.pop(tag, None)
        if hold is not None and hold.watchdog is not asyncio.current_task():
            hold.watchdog.cancel()

    async def _watchdog(self, tag: str, owner: str, delay: float) -> None:
        await asyncio.sleep(delay)
        logger.warning("Hold on %s by %s not released, forcing False", tag, owner)
        while True:
            try:
                await self._session.write(tag, False)
                break
            except PlantBridgeError as e:
                logger.error("Forcing %s to False failed, retrying in %.1fs: %s", tag, self._release_retry, e)
                await asyncio.sleep(self._release_retry)
        hold = self._holds.get(tag)
        if hold is not None and hold.watchdog is asyncio.current_task():
            del self._holds[tag]

    async def abandon(self, owner: str) -> None:
        """Release everything `owner` holds (client gone, pointer left the control)."""
        for tag, hold in list(self._holds.items()):
            if hold.owner != owner:
                continue
            logger.warning("Releasing %s held by departed client %s", tag, owner)
            try:
                await self._release(tag)
            except PlantBridgeError as e:
                logger.error("Release of %s failed, watchdog will retry: %s", tag, e)

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def command_for(self, tag: str, value: Any) -> WriteCommand:
        """Classify a raw {tag, value} write by the tag's role."""
        self._map.resolve(tag)
        if tag in (self._start_tag, self._reset_tag):
            try:
                on = parse_bool(value)
            except ValueError as e:
                raise ValidationError(f"{tag}: {e}", tag=tag) from None
            return WriteCommand(tag, on, CommandKind.PULSE if on else CommandKind.SET_POINT)
        if tag == self._hold_tag:
            return WriteCommand(tag, value, CommandKind.HOLD)
        return WriteCommand(tag, value, CommandKind.SET_POINT)

    async def execute(self, command: WriteCommand, owner: str = "http") -> None:
        tag = command.tag
        addr = self._map.resolve(tag)
        if command.kind is CommandKind.PULSE:
            if tag == self._start_tag:
                await self.start()
            else:
                await self.pulse(tag)
        elif command.kind is CommandKind.HOLD:
            try:
                pressed = parse_bool(command.value)
            except ValueError as e:
                raise ValidationError(f"{tag}: {e}", tag=tag) from None
            await self.hold(owner, pressed, tag)
        elif tag in self._setpoint_tags:
            await self.set_point(tag, command.value)
        else:
            await self._session.write(tag, coerce_for_address(addr, command.value, tag=tag))

    async def write(self, tag: str, value: Any, owner: str = "http") -> WriteCommand:
        """Route a {tag, value} request; returns the command that was executed."""
        command = self.command_for(tag, value)
        await self.execute(command, owner)
        return command

    async def aclose(self) -> None:
        """Release every hold and let scheduled pulse-offs finish."""
        for tag in list(self._holds):
            try:
                await self._release(tag)
            except PlantBridgeError as e:
                logger.error("Could not release %s on shutdown: %s", tag, e)
        for hold in self._holds.values():
            hold.watchdog.cancel()
        self._holds.clear()
        if self._pulses:
            await asyncio.wait(set(self._pulses), timeout=max(1.0, self._pulse_duration * 2))
