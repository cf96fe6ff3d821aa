"""Wires the sync components together for one signed-in user."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from . import auth_api
from .api_client import ApiClient
from .badges import BadgeCounters
from .config import ClientConfig
from .connectivity import ConnectivityMonitor, ConnectivityState
from .conversation_sync import ConversationSync
from .credential_store import CredentialStore, FileCredentialStore
from .errors import ApiError, AuthError, AuthReason
from .events import SESSION_ENDED, TOKENS_CHANGED
from .models import TokenPair
from .presence import PresenceTracker
from .realtime import RealtimeTransport

logger = logging.getLogger(__name__)

END_LOGOUT = "logout"
END_EXPIRED = "expired"


class ChatSession:
    """Owns every component for the lifetime of a login.

    ``start`` connects the socket and loads the first conversation page and
    badges. Teardown happens on :meth:`logout` or when the API client reports
    an expired session; in both cases ``session.ended`` is published once.
    """

    def __init__(
        self,
        config: ClientConfig,
        credentials: Optional[CredentialStore] = None,
        *,
        transport: Optional[RealtimeTransport] = None,
        monitor_factory: Optional[Callable[[ClientConfig, ConnectivityState], ConnectivityMonitor]] = None,
    ) -> None:
        self.config = config
        self.credentials = credentials or FileCredentialStore(config.credentials_path)
        self.events = self.credentials.events
        self.connectivity = ConnectivityState(self.events)
        self._monitor_factory = monitor_factory or ConnectivityMonitor
        self.monitor = self._monitor_factory(config, self.connectivity)
        self.api = ApiClient(config, self.credentials, self.connectivity, on_logout=self._on_forced_logout)
        self.transport = transport or RealtimeTransport(config)
        self.presence = PresenceTracker(self.events)
        self.conversations = ConversationSync(self.api, config, self.events)
        self.badges = BadgeCounters(self.api, self.events)
        self._started = False
        self._reauth_task: asyncio.Task | None = None
        self.events.subscribe(TOKENS_CHANGED, self._on_tokens_changed)

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def user(self) -> Optional[Dict[str, Any]]:
        return self.credentials.user

    async def login(self, email: str, otp: str) -> Optional[Dict[str, Any]]:
        data = await auth_api.verify_login_otp(self.api, email, otp)
        tokens = auth_api.tokens_from_auth_response(data)
        user = data.get("user") if isinstance(data, dict) else None
        self.credentials.login(tokens, user if isinstance(user, dict) else None)
        await self.start()
        return self.credentials.user

    async def restore(self) -> bool:
        if not self.credentials.has_session():
            return False
        await self.start()
        return True

    async def start(self) -> None:
        if self._started:
            return
        token = self.credentials.access_token
        if token is None:
            raise AuthError(AuthReason.MISSING_TOKEN, "Not signed in")
        self._started = True
        self.presence.attach(self.transport)
        self.conversations.attach(self.transport)
        self.badges.attach(self.transport)
        await self.transport.connect(token)
        try:
            await self.conversations.refresh()
            await self.badges.refresh()
        except AuthError:
            raise
        except ApiError as exc:
            logger.warning("initial sync incomplete: %s", exc)

    async def logout(self) -> None:
        if self.credentials.has_session():
            try:
                await auth_api.logout(self.api)
            except ApiError as exc:
                logger.info("server logout failed, clearing locally: %s", exc)
        was_started = await self._teardown()
        self.credentials.clear()
        if was_started:
            self.events.emit(SESSION_ENDED, END_LOGOUT)

    async def close(self) -> None:
        await self._teardown()
        await self.monitor.stop()
        await self.api.close()

    async def _on_forced_logout(self) -> None:
        if await self._teardown():
            self.events.emit(SESSION_ENDED, END_EXPIRED)

    async def _teardown(self) -> bool:
        if not self._started:
            return False
        self._started = False
        self.presence.detach()
        self.conversations.detach()
        self.badges.detach()
        task = self._reauth_task
        self._reauth_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        await self.transport.disconnect()
        await self.monitor.stop()
        self.monitor = self._monitor_factory(self.config, self.connectivity)
        self.presence.clear()
        self.conversations.reset()
        self.badges.reset()
        return True

    def _on_tokens_changed(self, tokens: Optional[TokenPair]) -> None:
        if not self._started or tokens is None:
            return
        if tokens.access_token == self.transport.token:
            return
        logger.debug("access token rotated, re-authenticating realtime transport")
        self._reauth_task = asyncio.get_running_loop().create_task(self.transport.connect(tokens.access_token))
