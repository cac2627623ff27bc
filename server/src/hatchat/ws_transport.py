from __future__ import annotations

import asyncio
import logging
import secrets

from aiohttp import WSMsgType, web

from .colors import ColorDirectory
from .config import Settings
from .hub import ConnectionHub, Frame, make_frame
from .log import MessageLog
from .presence import ConnectionRegistry, HandshakeError
from .router import ConnectionState, EventRouter, InvalidTransition
from .storage import DocumentStore, JsonFileStore

logger = logging.getLogger(__name__)

OUTBOUND_QUEUE_SIZE = 1000


class Runtime:
    def __init__(
        self,
        *,
        settings: Settings,
        log: MessageLog,
        colors: ColorDirectory,
        registry: ConnectionRegistry,
        hub: ConnectionHub,
        router: EventRouter,
    ) -> None:
        self.settings = settings
        self.log = log
        self.colors = colors
        self.registry = registry
        self.hub = hub
        self.router = router


RUNTIME_KEY = web.AppKey("runtime", Runtime)


def build_runtime(
    settings: Settings,
    *,
    message_store: DocumentStore | None = None,
    color_store: DocumentStore | None = None,
) -> Runtime:
    """Load persisted state and wire the room components together."""

    log = MessageLog(message_store or JsonFileStore(settings.messages_path))
    colors = ColorDirectory(color_store or JsonFileStore(settings.colors_path))
    log.load()
    colors.load()
    registry = ConnectionRegistry(colors)
    hub = ConnectionHub()
    router = EventRouter(registry=registry, log=log, colors=colors, hub=hub, page_size=settings.page_size)
    return Runtime(settings=settings, log=log, colors=colors, registry=registry, hub=hub, router=router)


async def handle_health(_: web.Request) -> web.Response:
    return web.Response(text="ok")


def _handshake_failed(message: str) -> web.Response:
    return web.json_response({"code": "handshake_failed", "message": message}, status=400)


def _error_frame(code: str, message: str) -> Frame:
    return make_frame("error", {"code": code, "message": message})


def create_app(
    settings: Settings | None = None,
    *,
    message_store: DocumentStore | None = None,
    color_store: DocumentStore | None = None,
) -> web.Application:
    settings = settings or Settings()
    runtime = build_runtime(settings, message_store=message_store, color_store=color_store)
    app = web.Application()
    app[RUNTIME_KEY] = runtime
    app.router.add_get("/healthz", handle_health)
    app.router.add_get("/ws", websocket_handler)
    return app


async def websocket_handler(request: web.Request) -> web.StreamResponse:
    runtime = request.app[RUNTIME_KEY]
    settings = runtime.settings

    username = request.query.get("username", "")
    color = request.query.get("color") or None
    if not username.strip():
        return _handshake_failed("username required")

    ws = web.WebSocketResponse(max_msg_size=settings.max_msg_size)
    await ws.prepare(request)

    connection_id = f"c_{secrets.token_urlsafe(12)}"
    loop = asyncio.get_running_loop()
    last_activity = loop.time()
    missed_heartbeats = 0
    outbound: asyncio.Queue[Frame | None] = asyncio.Queue(maxsize=OUTBOUND_QUEUE_SIZE)
    closed = False

    async def close_with_error(message: str) -> None:
        nonlocal closed
        if closed:
            return
        closed = True
        await ws.close(code=1011, message=message.encode("utf-8"))

    def mark_activity() -> None:
        nonlocal last_activity, missed_heartbeats
        last_activity = loop.time()
        missed_heartbeats = 0

    def enqueue_frame(frame: Frame) -> None:
        try:
            outbound.put_nowait(frame)
        except asyncio.QueueFull:
            logger.warning("Outbound queue full for %s, closing", connection_id)
            asyncio.create_task(close_with_error("backpressure"))

    async def writer() -> None:
        try:
            while True:
                frame = await outbound.get()
                if frame is None:
                    break
                if ws.closed:
                    continue
                await ws.send_json(frame)
        except (asyncio.CancelledError, ConnectionResetError):
            return

    async def heartbeat() -> None:
        nonlocal missed_heartbeats
        try:
            while True:
                await asyncio.sleep(settings.ping_interval_s)
                if ws.closed:
                    return
                if loop.time() - last_activity >= settings.ping_interval_s:
                    enqueue_frame(make_frame("ping"))
                    missed_heartbeats += 1
                    if missed_heartbeats > settings.ping_miss_limit:
                        await ws.close(code=1001, message=b"heartbeat timeout")
                        return
        except asyncio.CancelledError:
            return

    writer_task = asyncio.create_task(writer())
    heartbeat_task = asyncio.create_task(heartbeat())

    try:
        try:
            runtime.router.connect(connection_id, username, color, enqueue_frame)
        except HandshakeError as exc:
            await ws.close(code=1008, message=str(exc).encode("utf-8"))
            return ws

        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                try:
                    frame = msg.json()
                except ValueError:
                    enqueue_frame(_error_frame("invalid_request", "malformed json"))
                    continue

                mark_activity()
                if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
                    enqueue_frame(_error_frame("invalid_request", "event name required"))
                    continue

                event = frame["event"]
                if event == "ping":
                    enqueue_frame(make_frame("pong"))
                elif event == "pong":
                    continue
                else:
                    runtime.router.handle(connection_id, event, frame.get("data"))
            elif msg.type in {WSMsgType.CLOSE, WSMsgType.CLOSED, WSMsgType.ERROR}:
                break
            else:
                await ws.close(code=1003, message=b"unsupported frame type")
                break
    except InvalidTransition:
        logger.warning("Event received for inactive connection %s", connection_id)
    finally:
        heartbeat_task.cancel()
        if runtime.router.state(connection_id) is ConnectionState.ACTIVE:
            runtime.router.disconnect(connection_id)
        try:
            outbound.put_nowait(None)
        except asyncio.QueueFull:
            writer_task.cancel()
        await asyncio.gather(heartbeat_task, writer_task, return_exceptions=True)

    return ws


def run(settings: Settings) -> None:
    app = create_app(settings)
    logger.info("Server running on %s:%s", settings.host, settings.port)
    web.run_app(app, host=settings.host, port=settings.port, print=None)


