"""Schwab Streamer Session.

Owns one persistent WebSocket: performs the ADMIN/LOGIN handshake, runs a
single receive loop, and exposes send. Frames that fail to decode or
process are dropped and reported; only a transport failure ends the loop.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional
import asyncio
import json
import logging
import threading
import uuid

import websockets

from src.schwab_gateway.credentials import CredentialStore
from src.schwab_gateway.errors import ConnectError, DecodeError
from src.schwab_gateway.events import EventSink

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Stream session lifecycle."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    LOGGING_IN = "logging_in"
    OPEN = "open"
    CLOSED = "closed"


@dataclass
class StreamerInfo:
    """Streamer connection identifiers from user preferences."""
    socket_url: str = ""
    customer_id: str = ""
    correlation_id: str = ""
    channel: str = ""
    function_id: str = ""

    @classmethod
    def from_preferences(cls, data: dict) -> "StreamerInfo":
        streamers = data.get("streamerInfo") or [{}]
        info = streamers[0]
        return cls(
            socket_url=info.get("streamerSocketUrl", ""),
            customer_id=info.get("schwabClientCustomerId", ""),
            correlation_id=info.get("schwabClientCorrelId", ""),
            channel=info.get("schwabClientChannel", ""),
            function_id=info.get("schwabClientFunctionId", ""),
        )


@dataclass
class StreamCommand:
    """One outbound streamer command."""
    request_id: int
    service: str
    command: str
    customer_id: str = ""
    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    parameters: dict = field(default_factory=dict)

    def to_wire(self) -> dict:
        return {
            "requestid": str(self.request_id),
            "service": self.service,
            "command": self.command,
            "SchwabClientCustomerId": self.customer_id,
            "SchwabClientCorrelId": self.correlation_id,
            "parameters": self.parameters,
        }


DataHandler = Callable[[dict], Any]
CloseHandler = Callable[[], Any]


def decode_frame(raw: Any) -> Optional[dict]:
    """Decode one inbound frame. Empty frames decode to None."""
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    text = (raw or "").strip().strip("\0")
    if not text:
        return None
    try:
        message = json.loads(text)
    except ValueError as e:
        raise DecodeError(f"Invalid JSON frame: {text[:100]}") from e
    if isinstance(message, list) and len(message) == 1:
        message = message[0]
    if not isinstance(message, dict):
        raise DecodeError(f"Unexpected frame shape: {type(message).__name__}")
    return message


_SENDABLE = (SessionState.LOGGING_IN, SessionState.OPEN)


class StreamSession:
    """Manages the Schwab streamer WebSocket.

    Example:
        session = StreamSession(store, events)
        session.on_data(aggregator.process)
        await session.connect(streamer_info, config.stream_url)
        await session.send("LEVELONE_EQUITIES", "ADD", {"keys": "AAPL", "fields": "0,1,2,3"})
        await session.close()
    """

    def __init__(
        self,
        store: CredentialStore,
        events: Optional[EventSink] = None,
        connect: Optional[Callable[[str], Any]] = None,
        login_timeout: float = 10.0,
    ):
        self._store = store
        self._events = events or EventSink()
        self._connect = connect or websockets.connect
        self._login_timeout = login_timeout
        self._state = SessionState.DISCONNECTED
        self._ws: Any = None
        self._task: Optional[asyncio.Task] = None
        self._streamer = StreamerInfo()
        self._handlers: list[DataHandler] = []
        self._close_handlers: list[CloseHandler] = []
        self._counter = 0
        self._counter_lock = threading.Lock()
        self._send_lock = asyncio.Lock()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == SessionState.OPEN

    @property
    def streamer(self) -> StreamerInfo:
        return self._streamer

    @property
    def last_request_id(self) -> int:
        return self._counter

    def on_data(self, handler: DataHandler) -> None:
        """Register handler called once per data item of a data frame."""
        self._handlers.append(handler)

    def on_close(self, handler: CloseHandler) -> None:
        """Register handler called whenever the session leaves OPEN."""
        self._close_handlers.append(handler)

    def _next_request_id(self) -> int:
        with self._counter_lock:
            self._counter += 1
            return self._counter

    # -- Lifecycle ---------------------------------------------------------

    async def connect(self, streamer: StreamerInfo, url: str = "") -> None:
        """Open the socket, log in, and start the receive loop."""
        if self._state == SessionState.OPEN:
            return

        self._streamer = streamer
        self._state = SessionState.CONNECTING
        target = streamer.socket_url or url
        try:
            self._ws = await self._connect(target)
        except (OSError, websockets.WebSocketException) as e:
            self._state = SessionState.CLOSED
            raise ConnectError(f"Stream connect to {target} failed: {e}") from e

        self._state = SessionState.LOGGING_IN
        try:
            await self.send(
                "ADMIN",
                "LOGIN",
                {
                    "Authorization": self._store.access_token,
                    "SchwabClientChannel": streamer.channel,
                    "SchwabClientFunctionId": streamer.function_id,
                },
            )
            await asyncio.wait_for(self._await_login(), self._login_timeout)
        except (ConnectError, DecodeError, asyncio.TimeoutError,
                OSError, websockets.WebSocketException) as e:
            await self.close()
            if isinstance(e, ConnectError):
                raise
            raise ConnectError(f"Stream login failed: {e!r}") from e

        self._state = SessionState.OPEN
        self._task = asyncio.create_task(self._receive_loop())
        logger.info(f"Stream session open ({target})")

    async def _await_login(self) -> None:
        while True:
            message = decode_frame(await self._ws.recv())
            if not message:
                continue
            for response in message.get("response", []):
                if response.get("command") != "LOGIN":
                    continue
                content = response.get("content", {})
                code = content.get("code")
                if code != 0:
                    raise ConnectError(f"Stream login rejected: code={code} {content.get('msg', '')}")
                return

    async def close(self) -> None:
        """Release the socket and receive loop. Safe to call repeatedly."""
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except (OSError, websockets.WebSocketException) as e:
                logger.debug(f"Stream close error: {e}")

        if self._state != SessionState.DISCONNECTED:
            self._state = SessionState.CLOSED
            self._notify_closed()
            logger.info("Stream session closed")

    def _notify_closed(self) -> None:
        for handler in self._close_handlers:
            try:
                handler()
            except Exception as e:
                logger.error(f"Stream close handler error: {e}")

    # -- Send / Receive ----------------------------------------------------

    async def send(self, service: str, command: str, parameters: dict) -> StreamCommand:
        """Write one command frame. Request ids follow send order."""
        async with self._send_lock:
            if self._ws is None or self._state not in _SENDABLE:
                raise ConnectError(f"Stream is not connected ({self._state.value})")
            cmd = StreamCommand(
                request_id=self._next_request_id(),
                service=service,
                command=command,
                customer_id=self._streamer.customer_id,
                parameters=parameters,
            )
            try:
                await self._ws.send(json.dumps(cmd.to_wire()))
            except (websockets.ConnectionClosed, OSError) as e:
                raise ConnectError(f"Stream send failed: {e}") from e
        logger.debug(f"Stream command {cmd.request_id}: {service} {command}")
        return cmd

    async def _receive_loop(self) -> None:
        ws = self._ws
        try:
            while self._state == SessionState.OPEN:
                raw = await ws.recv()
                await self._process(raw)
        except (websockets.ConnectionClosed, OSError) as e:
            await self._lost(ConnectError(f"Stream transport closed: {e}"))
        except Exception as e:
            await self._lost(ConnectError(f"Stream receive failed: {e!r}"))

    async def _lost(self, error: ConnectError) -> None:
        """Transport is gone: stop sending and drop subscriptions. No reconnect."""
        self._state = SessionState.CLOSED
        self._notify_closed()
        await self._events.report_error(error, "stream")

    async def _process(self, raw: Any) -> None:
        try:
            message = decode_frame(raw)
        except DecodeError as e:
            logger.debug(f"Dropped frame: {e.message}")
            return
        if not message:
            return

        try:
            for item in message.get("data", []):
                for handler in self._handlers:
                    result = handler(item)
                    if asyncio.iscoroutine(result):
                        await result
            for response in message.get("response", []):
                content = response.get("content", {})
                logger.debug(
                    f"Stream ack {response.get('service')} {response.get('command')}: "
                    f"code={content.get('code')}"
                )
        except Exception as e:
            await self._events.report_error(e, "stream")
