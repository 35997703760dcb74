"""FastAPI surface: status/snapshot/command routes and the /ws fan-out endpoint."""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import __version__
from .bridge import Bridge
from .errors import (
    ConnectError,
    InvalidAddressError,
    PlantBridgeError,
    ProtocolIOError,
    ReadError,
    UnknownTagError,
    ValidationError,
    WriteError,
)
from .values import parse_bool

logger = logging.getLogger(__name__)

# first match wins; subclasses before their bases
ERROR_STATUS: tuple[tuple[type[PlantBridgeError], int], ...] = (
    (ValidationError, 400),
    (InvalidAddressError, 400),
    (UnknownTagError, 404),
    (ConnectError, 503),
    (ReadError, 503),
    (WriteError, 502),
    (ProtocolIOError, 502),
)


def status_for(exc: PlantBridgeError) -> int:
    for kind, status in ERROR_STATUS:
        if isinstance(exc, kind):
            return status
    return 500


class WriteRequest(BaseModel):
    tag: str
    value: Any


class ManualRequest(BaseModel):
    action: str


def _ok(data: Any = None) -> dict[str, Any]:
    return {"ok": True, "data": data}


def create_app(bridge: Bridge, *, cors_origins: Iterable[str] = ("*",)) -> FastAPI:
    """Build the app around an existing bridge; the bridge runs for the app's lifespan."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await bridge.start()
        try:
            yield
        finally:
            await bridge.stop()

    app = FastAPI(title="plantbridge", version=__version__, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.bridge = bridge

    @app.exception_handler(PlantBridgeError)
    async def bridge_error(request: Request, exc: PlantBridgeError) -> JSONResponse:
        status = status_for(exc)
        if status >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse({"error": type(exc).__name__, "message": str(exc)}, status_code=status)

    @app.exception_handler(RequestValidationError)
    async def bad_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        problems = "; ".join(f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors())
        return JSONResponse({"error": "ValidationError", "message": problems}, status_code=400)

    @app.get("/api/status")
    async def api_status() -> dict[str, Any]:
        return {"status": "ok", "plc": bridge.status()}

    @app.get("/api/snapshot")
    async def api_snapshot() -> dict[str, Any]:
        return _ok(bridge.latest.to_dict())

    @app.post("/api/start")
    async def api_start() -> dict[str, Any]:
        await bridge.start_cycle()
        return _ok({"command": "start"})

    @app.post("/api/reset")
    async def api_reset() -> dict[str, Any]:
        await bridge.reset_cycle()
        return _ok({"command": "reset"})

    @app.post("/api/manual")
    async def api_manual(body: ManualRequest) -> dict[str, Any]:
        try:
            pressed = parse_bool(body.action)
        except ValueError:
            raise ValidationError(f"action must be 'on' or 'off', got {body.action!r}") from None
        await bridge.gateway.hold("http", pressed)
        return _ok({"command": "manual", "pressed": pressed})

    @app.post("/write")
    async def api_write(body: WriteRequest) -> dict[str, Any]:
        command = await bridge.write(body.tag, body.value)
        return _ok({"tag": command.tag, "value": command.value, "kind": command.kind.value})

    @app.websocket("/ws")
    async def ws_endpoint(ws: WebSocket) -> None:
        await ws.accept()
        sub = await bridge.hub.register(ws, ws.headers.get("origin"))
        try:
            while True:
                message = await ws.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text") or message.get("bytes")
                if raw:
                    await bridge.hub.handle_message(sub, raw)
        except WebSocketDisconnect:
            pass
        finally:
            await bridge.hub.unregister(sub)

    return app
