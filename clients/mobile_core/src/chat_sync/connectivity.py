from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, List, Optional

import aiohttp

from .config import ClientConfig
from .events import CONNECTIVITY_CHANGED, EventEmitter

logger = logging.getLogger(__name__)

HEALTH_CHECK_PATH = "/auth/check-email"
HEALTH_CHECK_EMAIL = "healthcheck@test.com"

Probe = Callable[[], Awaitable[bool]]


class ConnectivityStatus(str, Enum):
    ONLINE = "online"
    SUSPECT = "suspect"
    OFFLINE = "offline"


class ConnectivityState:
    """The shared "server reachable" flag read by the UI shell.

    ``connectivity.changed`` is emitted only on transitions; observers added
    with :meth:`add_observer` see every report, including repeated successes.
    """

    def __init__(self, events: EventEmitter | None = None) -> None:
        self.events = events or EventEmitter()
        self._online = True
        self._observers: List[Callable[[bool], None]] = []

    @property
    def is_server_online(self) -> bool:
        return self._online

    def add_observer(self, observer: Callable[[bool], None]) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: Callable[[bool], None]) -> None:
        try:
            self._observers.remove(observer)
        except ValueError:
            return

    def set_server_online(self, online: bool) -> None:
        changed = online != self._online
        self._online = online
        for observer in list(self._observers):
            observer(online)
        if changed:
            logger.info("server reachable=%s", online)
            self.events.emit(CONNECTIVITY_CHANGED, online)


class ConnectivityMonitor:
    """Health probe that only polls while the server is suspect or offline."""

    def __init__(
        self,
        config: ClientConfig,
        state: ConnectivityState,
        *,
        probe: Optional[Probe] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.config = config
        self.state = state
        self.status = ConnectivityStatus.ONLINE if state.is_server_online else ConnectivityStatus.OFFLINE
        self.failed_checks = 0
        self._probe = probe or self._http_probe
        self._session = session
        self._owns_session = session is None
        self._checking = False
        self._poll_task: asyncio.Task | None = None
        self._stopped = False
        state.add_observer(self._on_report)

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def check(self) -> None:
        """Run one probe; a call while another probe is pending is a no-op."""

        if self._checking:
            return
        self._checking = True
        try:
            healthy = await self._probe()
        finally:
            self._checking = False

        if healthy:
            self.state.set_server_online(True)
            return

        self.failed_checks += 1
        reached_limit = self.failed_checks >= self.config.max_failed_checks
        self.status = ConnectivityStatus.OFFLINE if reached_limit else ConnectivityStatus.SUSPECT
        self._ensure_polling(immediate=False)
        if reached_limit:
            self.state.set_server_online(False)

    async def stop(self) -> None:
        self._stopped = True
        self.state.remove_observer(self._on_report)
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _on_report(self, online: bool) -> None:
        if online:
            self.status = ConnectivityStatus.ONLINE
            self.failed_checks = 0
            return
        self.status = ConnectivityStatus.OFFLINE
        self._ensure_polling(immediate=True)

    def _ensure_polling(self, *, immediate: bool) -> None:
        if self._stopped or self.is_polling:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._poll_task = loop.create_task(self._poll(immediate))

    async def _poll(self, immediate: bool) -> None:
        try:
            if immediate:
                await self.check()
            while self.status is not ConnectivityStatus.ONLINE:
                await asyncio.sleep(self.config.health_check_interval_s)
                if self.status is ConnectivityStatus.ONLINE:
                    break
                await self.check()
        except asyncio.CancelledError:
            return

    async def _http_probe(self) -> bool:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        timeout = aiohttp.ClientTimeout(total=self.config.health_check_timeout_s)
        try:
            async with self._session.get(
                self.config.url_for(HEALTH_CHECK_PATH),
                params={"email": HEALTH_CHECK_EMAIL},
                timeout=timeout,
            ) as response:
                # 400 still proves the server is answering.
                return 200 <= response.status < 300 or response.status == 400
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.debug("health probe failed: %r", exc)
            return False
