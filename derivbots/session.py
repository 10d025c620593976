"""One websocket connection paired with one engine for the length of a run."""
import asyncio
import json
import logging

import websockets
from websockets.exceptions import ConnectionClosed

from . import messages, registry
from .config import BotConfiguration, Settings
from .demux import Demultiplexer
from .errors import AuthorizationError, InsufficientBalanceError, TransportError
from .scheduler import AsyncioScheduler

log = logging.getLogger("derivbots.session")

_CLOSE = object()


class WebSocketTransport:
    """Outbound side of the connection.

    ``send`` only enqueues; a single writer task drains the queue so commands
    leave in the order the engine issued them.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def is_ready(self) -> bool:
        return not self._closed

    def send(self, payload: dict):
        if self._closed:
            raise TransportError("connection closed")
        self._queue.put_nowait(json.dumps(payload))

    def close(self):
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSE)

    async def pump(self, ws, on_error=None):
        while True:
            item = await self._queue.get()
            if item is _CLOSE:
                return
            try:
                await ws.send(item)
            except ConnectionClosed as e:
                self._closed = True
                if on_error is not None:
                    on_error(e)
                return


async def request(ws, payload, expected, timeout=10):
    """Send one command and wait for its reply, answering pings meanwhile."""
    await ws.send(json.dumps(payload))
    while True:
        try:
            raw = await asyncio.wait_for(ws.recv(), timeout=timeout)
        except asyncio.TimeoutError:
            raise TransportError(f"no {expected} reply within {timeout}s") from None
        data = json.loads(raw)
        if data.get("msg_type") == "ping":
            await ws.send(json.dumps(messages.pong()))
            continue
        if data.get("error"):
            err = data["error"]
            code = err.get("code", "UnknownError")
            if expected == "authorize" or messages.is_authorization_error(code):
                raise AuthorizationError(f"{code}: {err.get('message', '')}")
            raise TransportError(f"{expected} failed: {code}: {err.get('message', '')}")
        if data.get("msg_type") == expected:
            return data


class BotSession:
    def __init__(self, settings: Settings, bot_id: str, config: BotConfiguration,
                 on_update=None, connect=websockets.connect, seed=None):
        self.settings = settings
        self.bot_id = bot_id
        self.config = config
        self.on_update = on_update
        self.connect = connect
        self.seed = seed
        self.engine = None
        self.balance = None
        self._stop_requested = False
        self._stopped = None

    def stop(self):
        """Must run on the session's event loop."""
        self._stop_requested = True
        if self.engine is not None:
            self.engine.stop("user")

    async def run(self) -> str:
        registry.get_profile(self.bot_id)
        log.info("connecting to %s", self.settings.endpoint)
        async with self.connect(self.settings.endpoint) as ws:
            auth = await request(ws, messages.authorize(self.settings.api_token), "authorize")
            log.info("authorized as %s", auth.get("authorize", {}).get("loginid", "unknown"))

            reply = await request(ws, messages.balance(), "balance")
            self.balance = float(reply.get("balance", {}).get("balance", 0) or 0)
            if self.balance < self.config.initial_stake:
                raise InsufficientBalanceError(self.balance, self.config.initial_stake)
            if self._stop_requested:
                return "user"

            return await self._trade(ws)

    async def _trade(self, ws) -> str:
        loop = asyncio.get_running_loop()
        transport = WebSocketTransport()
        engine = registry.create_bot(
            self.bot_id, transport, self.config, AsyncioScheduler(loop),
            currency=self.settings.currency, seed=self.seed,
        )
        self._stopped = asyncio.Event()
        engine.set_update_callback(self.on_update)
        engine.set_stop_callback(lambda reason: self._stopped.set())
        self.engine = engine

        writer = asyncio.create_task(transport.pump(ws, on_error=engine.on_transport_closed))
        if not engine.start():
            transport.close()
            await writer
            raise TransportError("engine refused to start")

        demux = Demultiplexer(transport, engine, on_other=self._on_other)
        reader = asyncio.create_task(self._read(ws, demux, engine))
        waiter = asyncio.create_task(self._stopped.wait())
        try:
            await asyncio.wait({reader, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            transport.close()
            try:
                await asyncio.wait_for(writer, timeout=2)
            except (asyncio.TimeoutError, ConnectionClosed):
                writer.cancel()
            for task in (reader, waiter):
                task.cancel()
            await asyncio.gather(reader, waiter, return_exceptions=True)
        return engine.stop_reason or "user"

    async def _read(self, ws, demux, engine):
        try:
            async for message in ws:
                demux.dispatch(message)
                if not engine.is_running:
                    break
        except ConnectionClosed as e:
            engine.on_transport_closed(e)
            return
        engine.on_transport_closed()

    def _on_other(self, event):
        if event.msg_type == "balance":
            body = event.data.get("balance") or {}
            try:
                self.balance = float(body.get("balance", self.balance))
            except (TypeError, ValueError):
                log.warning("unreadable balance update: %r", body)
