"""Socket.IO transport: one authenticated connection per session."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import socketio
from socketio import exceptions as socketio_exceptions

from .config import ClientConfig

logger = logging.getLogger(__name__)

EVENT_CONNECT = "connect"
EVENT_DISCONNECT = "disconnect"
EVENT_CONNECT_ERROR = "connect_error"
LIFECYCLE_EVENTS = (EVENT_CONNECT, EVENT_DISCONNECT, EVENT_CONNECT_ERROR)

Handler = Callable[[Any], Any]
ClientFactory = Callable[[], Any]
Sleep = Callable[[float], Awaitable[None]]


def _default_client() -> socketio.AsyncClient:
    # Reconnection is driven by RealtimeTransport, not by the library.
    return socketio.AsyncClient(reconnection=False, logger=False, engineio_logger=False)


class RealtimeTransport:
    """Owns the socket, its auth token and the reconnect loop.

    Reconnect delays are ``0`` for the first retry and then a fixed
    ``reconnect_delay_max_s``; attempts are unbounded and stop only on
    :meth:`disconnect` or success. Subscribers register per event name and
    receive the raw payload; nothing is merged here.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        client_factory: Optional[ClientFactory] = None,
        sleep: Optional[Sleep] = None,
    ) -> None:
        self.config = config
        self._client_factory = client_factory or _default_client
        self._sleep = sleep or asyncio.sleep
        self._client: Any = None
        self._token: Optional[str] = None
        self._handlers: Dict[str, List[Handler]] = {}
        self._bound: set[str] = set()
        self._reconnect_task: asyncio.Task | None = None
        self._connected = False
        self._closing = False
        self.attempts = 0

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def is_reconnecting(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def reconnect_delay(self, retry: int) -> float:
        if retry <= 1:
            return 0.0
        return self.config.reconnect_delay_max_s

    def on(self, event: str, handler: Handler) -> None:
        self._handlers.setdefault(event, []).append(handler)
        if self._client is not None:
            self._bind(event)

    def off(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            return
        if not handlers:
            self._handlers.pop(event, None)

    async def connect(self, token: str) -> bool:
        """Connect with ``token``, or re-authenticate an existing transport.

        An existing client is reused: only the auth value changes, and a
        connection attempt is made when not already connected. Returns whether
        the socket is connected when the first attempt finishes; failures hand
        over to the background reconnect loop.
        """

        self._token = token
        self._closing = False
        if self._client is None:
            self._client = self._client_factory()
            self._bound = set()
            for event in set(LIFECYCLE_EVENTS) | set(self._handlers):
                self._bind(event)
        if self._connected:
            return True
        if self.is_reconnecting:
            return False
        if await self._attempt():
            return True
        self._schedule_reconnect()
        return False

    async def disconnect(self) -> None:
        """Tear down: stop reconnecting and close the socket."""

        self._closing = True
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        client = self._client
        self._client = None
        self._token = None
        if client is not None:
            await client.disconnect()
        self._connected = False

    async def emit(self, event: str, data: Any = None) -> bool:
        if not self._connected or self._client is None:
            logger.debug("not connected, dropping emit of %s", event)
            return False
        await self._client.emit(event, data)
        return True

    def _bind(self, event: str) -> None:
        if event in self._bound:
            return
        self._bound.add(event)

        async def dispatcher(*args: Any) -> None:
            await self._on_client_event(event, args[0] if args else None)

        self._client.on(event, dispatcher)

    async def _on_client_event(self, event: str, data: Any) -> None:
        if event == EVENT_CONNECT:
            self._connected = True
            logger.info("realtime connected")
        elif event == EVENT_DISCONNECT:
            self._connected = False
            logger.info("realtime disconnected: %s", data)
            if not self._closing:
                self._schedule_reconnect()
        elif event == EVENT_CONNECT_ERROR:
            self._connected = False
            logger.debug("realtime connect error: %s", data)
        await self._dispatch(event, data)

    async def _dispatch(self, event: str, data: Any) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("handler for %s failed", event)

    async def _attempt(self) -> bool:
        if self._client is None or self._token is None:
            return False
        self.attempts += 1
        try:
            await self._client.connect(
                self.config.socket_url,
                auth={"token": self._token},
                transports=["websocket"],
            )
        except (socketio_exceptions.ConnectionError, OSError, asyncio.TimeoutError) as exc:
            logger.debug("realtime connect attempt %d failed: %s", self.attempts, exc)
            return False
        self._connected = bool(getattr(self._client, "connected", True))
        return self._connected

    def _schedule_reconnect(self) -> None:
        if self._closing or self.is_reconnecting:
            return
        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        retry = 0
        try:
            while not self._closing and not self._connected:
                retry += 1
                await self._sleep(self.reconnect_delay(retry))
                if self._closing or self._connected:
                    return
                if await self._attempt():
                    return
        except asyncio.CancelledError:
            return
