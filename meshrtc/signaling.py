import asyncio
import logging
from typing import AsyncIterator, Literal

import aiohttp

from . import protocol
from .common import ErrorEvent, EventDispatcher, MeshError, MeshEvent, MessageEvent, SignalingError
from .constants import CLEAN_CLOSE_CODES, HEARTBEAT_INTERVAL
from .log import configLogger
from .protocol import ClientMessage, ServerMessage

logger = configLogger(logger=logging.getLogger("meshrtc-signaling"))

TransportState = Literal['idle', 'connecting', 'open', 'closed', 'error']

CLOSE_DRAIN_TIMEOUT = 0.5


class WebSocketSignaling(EventDispatcher):
    """
    One JSON-over-WebSocket channel to the room signaling endpoint.

    Inbound frames are decoded and dispatched as ``data`` events strictly in
    arrival order. The channel never reconnects on its own: a clean close
    (1000/1001) dispatches ``closed``, anything else dispatches ``error``.
    Closing the channel locally dispatches neither.
    """

    state: TransportState
    heartbeat_interval: float
    _session: aiohttp.ClientSession | None
    _ws: aiohttp.ClientWebSocketResponse | None
    _outbox: asyncio.Queue[str] | None
    _receiver: asyncio.Task | None
    _writer: asyncio.Task | None
    _heartbeat: asyncio.Task | None
    _closing: bool

    def __init__(self, heartbeat_interval: float = HEARTBEAT_INTERVAL) -> None:
        super().__init__()
        self.state = 'idle'
        self.heartbeat_interval = heartbeat_interval
        self._session = None
        self._ws = None
        self._outbox = None
        self._receiver = None
        self._writer = None
        self._heartbeat = None
        self._closing = False

    @property
    def is_open(self) -> bool:
        return self.state == 'open' and self._ws is not None and not self._ws.closed

    async def connect(self, endpoint: str) -> None:
        if self._ws is not None or self.state == 'connecting':
            raise MeshError('Signaling has been connected.')
        self.state = 'connecting'
        self._closing = False
        session = aiohttp.ClientSession()
        try:
            ws = await session.ws_connect(endpoint, autoclose=True, autoping=True)
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            await session.close()
            self.state = 'error'
            logger.warning(f'Unable to open signaling channel: {e}')
            raise SignalingError(f'Signaling connection failed: {e}') from e
        self._session = session
        self._ws = ws
        self._outbox = asyncio.Queue()
        self.state = 'open'
        logger.debug('signaling connected')
        self._receiver = asyncio.ensure_future(self._receive_loop(ws))
        self._writer = asyncio.ensure_future(self._write_loop(ws, self._outbox))
        self._heartbeat = asyncio.ensure_future(self._heartbeat_loop())
        await self.dispatchEventAwaitable(MeshEvent('connected'))

    def send(self, message: ClientMessage) -> None:
        """
        Queue a message for delivery. Messages sent while the channel is not
        open are dropped.
        """
        if not self.is_open or self._outbox is None:
            logger.debug(f'signaling not open, drop {message["type"]} message')
            return
        self._outbox.put_nowait(protocol.encode(message))

    async def messages(self) -> AsyncIterator[ServerMessage]:
        """
        Iterate over inbound messages until the channel ends.
        """
        queue: asyncio.Queue[ServerMessage | None] = asyncio.Queue()
        def on_data(evt: MessageEvent):
            queue.put_nowait(evt.message)
        def on_end(_):
            queue.put_nowait(None)
        self.addEventListener('data', on_data)
        self.addEventListener('closed', on_end)
        self.addEventListener('error', on_end)
        try:
            while True:
                message = await queue.get()
                if message is None:
                    return
                yield message
        finally:
            self.removeEventListener('data', on_data)
            self.removeEventListener('closed', on_end)
            self.removeEventListener('error', on_end)

    async def _receive_loop(self, ws: aiohttp.ClientWebSocketResponse):
        error: SignalingError | None = None
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT or msg.type == aiohttp.WSMsgType.BINARY:
                    try:
                        message = protocol.decode(msg.data)
                    except MeshError as e:
                        logger.warning(f'Ignore signaling frame: {e.message}')
                        continue
                    await self.dispatchEventAwaitable(MessageEvent('data', message=message))
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    error = SignalingError(f'Signaling connection failed: {ws.exception()}')
                    break
        except (aiohttp.ClientError, OSError) as e:
            error = SignalingError(f'Signaling connection failed: {e}')
        if self._closing:
            return
        code = ws.close_code
        if error is None and code not in CLEAN_CLOSE_CODES:
            error = SignalingError(f'Signaling connection closed unexpectedly (code {code}).', code)
        await self._shutdown()
        if error is None:
            logger.debug(f'signaling closed with code {code}')
            self.state = 'closed'
            await self.dispatchEventAwaitable(MeshEvent('closed'))
        else:
            logger.warning(error.message)
            await self._fail(error)

    async def _write_loop(self, ws: aiohttp.ClientWebSocketResponse, outbox: asyncio.Queue[str]):
        while True:
            data = await outbox.get()
            try:
                await ws.send_str(data)
            except (aiohttp.ClientError, OSError, RuntimeError) as e:
                outbox.task_done()
                if self._closing:
                    return
                await self._shutdown()
                await self._fail(SignalingError(f'Failed to send signaling message: {e}'))
                return
            outbox.task_done()

    async def _heartbeat_loop(self):
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            self.send(protocol.ping())

    async def _fail(self, error: SignalingError):
        self.state = 'error'
        await self.dispatchEventAwaitable(ErrorEvent('error', error))

    async def _shutdown(self):
        """
        Stop the background tasks (except the calling one) and release the
        socket and the HTTP session.
        """
        current = asyncio.current_task()
        for task in (self._receiver, self._writer, self._heartbeat):
            if task is not None and task is not current:
                task.cancel()
        self._receiver = self._writer = self._heartbeat = None
        ws, session = self._ws, self._session
        self._ws = None
        self._session = None
        self._outbox = None
        if ws is not None and not ws.closed:
            try:
                await ws.close()
            except (aiohttp.ClientError, OSError) as e:
                logger.warning(f'Signaling socket close failed: {e}')
        if session is not None:
            await session.close()

    async def close(self) -> None:
        """
        Close the channel locally. Messages queued before the call get a short
        chance to be written; delivery is not awaited.
        """
        if self._ws is None:
            self.state = 'idle'
            return
        outbox = self._outbox
        if outbox is not None and not outbox.empty():
            try:
                await asyncio.wait_for(outbox.join(), timeout=CLOSE_DRAIN_TIMEOUT)
            except asyncio.TimeoutError:
                logger.debug('signaling outbox not drained before close')
        self._closing = True
        await self._shutdown()
        self.state = 'idle'
