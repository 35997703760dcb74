"""Hub: WebSocket fan-out of plant snapshots, inbound command routing and cross-tab intent echo."""

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable

from .errors import PlantBridgeError, ValidationError
from .gateway import CommandGateway
from .types import CommandKind, PlantSnapshot
from .values import parse_bool

logger = logging.getLogger(__name__)

INTENTS = ("start", "reset")


@dataclass(eq=False)
class Subscriber:
    """One connected client. `socket` needs an async send_text(str)."""

    id: str
    socket: Any
    origin: str | None = None


def _index(data: Any, names: tuple[str, ...], what: str) -> str:
    try:
        i = int(data["index"])
    except (KeyError, TypeError, ValueError, OverflowError):
        raise ValidationError(f"{what} command needs an integer 'index'") from None
    if not 0 <= i < len(names):
        raise ValidationError(f"{what} index must be within 0-{len(names) - 1}, got {i}")
    return names[i]


def _value(data: Any, what: str) -> Any:
    if not isinstance(data, dict) or "value" not in data:
        raise ValidationError(f"{what} command needs a 'value'")
    return data["value"]


def _flag(data: Any, what: str) -> bool:
    if isinstance(data, dict):
        data = data.get("value", data.get("action"))
    try:
        return parse_bool(data)
    except ValueError:
        raise ValidationError(f"{what} command needs true/false or on/off, got {data!r}") from None


class Hub:
    """
    Every subscriber gets every snapshot. Sends that fail or stall past `send_timeout`
    drop the subscriber; dropping one releases whatever it was holding.
    """

    def __init__(
        self,
        gateway: CommandGateway,
        *,
        gate_tags: Iterable[str] = ("COMP1", "COMP2", "COMP3", "COMP4", "COMP5"),
        send_timeout: float = 2.0,
    ) -> None:
        self._gateway = gateway
        self._gate_tags = tuple(gate_tags)
        self._send_timeout = send_timeout
        self._subs: dict[str, Subscriber] = {}
        self._ids = itertools.count(1)
        self.latest: PlantSnapshot | None = None
        self._handlers: dict[str, Callable[[Subscriber, Any], Awaitable[str | None]]] = {
            "set-arido": self._on_set_arido,
            "set-iniciar": self._on_set_iniciar,
            "set-compuerta": self._on_set_compuerta,
            "set-reset": self._on_set_reset,
            "set-manual": self._on_set_manual,
            "echo": self._on_echo,
        }

    def __len__(self) -> int:
        return len(self._subs)

    @property
    def subscribers(self) -> list[Subscriber]:
        return list(self._subs.values())

    async def register(self, socket: Any, origin: str | None = None) -> Subscriber:
        sub = Subscriber(f"ws-{next(self._ids)}", socket, origin)
        self._subs[sub.id] = sub
        logger.info("Subscriber %s connected (origin %s), %d total", sub.id, origin, len(self._subs))
        if self.latest is not None:
            if not await self._send(sub, json.dumps({"type": "plc-update", "data": self.latest.to_dict()})):
                await self.unregister(sub)
        return sub

    async def unregister(self, sub: Subscriber) -> None:
        if self._subs.pop(sub.id, None) is None:
            return
        logger.info("Subscriber %s disconnected, %d left", sub.id, len(self._subs))
        await self._gateway.abandon(sub.id)

    async def close(self) -> None:
        """Close every subscriber socket on shutdown."""
        subs, self._subs = list(self._subs.values()), {}
        for sub in subs:
            try:
                await sub.socket.close()
            except Exception as e:
                logger.debug("Closing %s: %s", sub.id, e)

    async def _send(self, sub: Subscriber, text: str) -> bool:
        try:
            await asyncio.wait_for(sub.socket.send_text(text), self._send_timeout)
        except Exception as e:
            logger.info("Dropping subscriber %s: %s", sub.id, e or type(e).__name__)
            return False
        return True

    async def broadcast(self, message: dict[str, Any], *, exclude: Subscriber | None = None, origin: str | None = None) -> int:
        """Send to every live subscriber (optionally one origin only); returns deliveries."""
        text = json.dumps(message)
        targets = [s for s in self._subs.values() if s is not exclude and (origin is None or s.origin == origin)]
        results = await asyncio.gather(*(self._send(s, text) for s in targets))
        for sub, ok in zip(targets, results):
            if not ok:
                await self.unregister(sub)
        return sum(results)

    async def publish(self, snapshot: PlantSnapshot) -> None:
        self.latest = snapshot
        await self.broadcast({"type": "plc-update", "data": snapshot.to_dict()})

    async def echo(self, intent: str, *, sender: Subscriber | None = None, origin: str | None = None) -> int:
        """Non-authoritative start/reset hint for other open tabs; the next snapshot wins."""
        if intent not in INTENTS:
            raise ValidationError(f"echo type must be one of {', '.join(INTENTS)}, got {intent!r}")
        return await self.broadcast({"type": "echo", "data": {"type": intent}}, exclude=sender, origin=origin)

    async def handle_message(self, sub: Subscriber, raw: str | bytes) -> None:
        """Parse one inbound frame and run it. Garbage is logged and dropped."""
        try:
            msg = json.loads(raw)
        except ValueError:
            logger.warning("Dropping malformed message from %s: %r", sub.id, raw[:200])
            return
        if not isinstance(msg, dict) or not isinstance(msg.get("type"), str):
            logger.warning("Dropping message without a type from %s: %r", sub.id, msg)
            return
        kind = msg["type"]
        handler = self._handlers.get(kind)
        if handler is None:
            logger.warning("Dropping unknown message type %r from %s", kind, sub.id)
            return
        reply: dict[str, Any] = {"type": "command-result", "command": kind}
        try:
            intent = await handler(sub, msg.get("data"))
        except PlantBridgeError as e:
            logger.warning("Command %s from %s rejected: %s", kind, sub.id, e)
            reply.update(error=type(e).__name__, message=str(e))
        except Exception as e:
            logger.warning("Command %s from %s failed: %s", kind, sub.id, e, exc_info=True)
            reply.update(error=type(e).__name__, message=str(e))
        else:
            reply["ok"] = True
            if intent is not None:
                await self.echo(intent, sender=sub)
        if sub.id in self._subs and not await self._send(sub, json.dumps(reply)):
            await self.unregister(sub)

    async def _on_set_arido(self, sub: Subscriber, data: Any) -> None:
        if isinstance(data, dict) and "tag" in data:
            tag = str(data["tag"])
        else:
            tag = _index(data, self._gateway.setpoint_tags, "set-arido")
        await self._gateway.set_point(tag, _value(data, "set-arido"))

    async def _on_set_iniciar(self, sub: Subscriber, data: Any) -> str | None:
        command = await self._gateway.write(self._gateway.start_tag, _flag(data, "set-iniciar"), owner=sub.id)
        return "start" if command.kind is CommandKind.PULSE else None

    async def _on_set_compuerta(self, sub: Subscriber, data: Any) -> None:
        tag = _index(data, self._gate_tags, "set-compuerta")
        await self._gateway.write(tag, _value(data, "set-compuerta"), owner=sub.id)

    async def _on_set_reset(self, sub: Subscriber, data: Any) -> str:
        await self._gateway.reset()
        return "reset"

    async def _on_set_manual(self, sub: Subscriber, data: Any) -> None:
        await self._gateway.hold(sub.id, _flag(data, "set-manual"))

    async def _on_echo(self, sub: Subscriber, data: Any) -> None:
        intent = data.get("type") if isinstance(data, dict) else data
        await self.echo(str(intent), sender=sub, origin=sub.origin)
