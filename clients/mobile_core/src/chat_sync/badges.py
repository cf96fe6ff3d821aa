from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from . import friends_api, notifications_api
from .api_client import ApiClient
from .errors import ApiError, AuthError, MalformedPayload
from .events import BADGES_CHANGED, EventEmitter

logger = logging.getLogger(__name__)

EVENT_NEW_NOTIFICATION = "new_notification"
EVENT_FRIEND_REQUEST_RECEIVED = "friend:request:received"
EVENT_FRIEND_REQUEST_UPDATED = "friend:request:updated"


@dataclass(frozen=True)
class BadgeSnapshot:
    unread_notifications: int
    pending_friend_requests: int


class BadgeCounters:
    """Unread-notification and pending-friend-request counts for tab badges."""

    def __init__(self, api: ApiClient, events: EventEmitter | None = None) -> None:
        self.api = api
        self.events = events or EventEmitter()
        self.unread_notifications = 0
        self.pending_friend_requests = 0
        self._transport = None

    def snapshot(self) -> BadgeSnapshot:
        return BadgeSnapshot(self.unread_notifications, self.pending_friend_requests)

    async def refresh(self) -> BadgeSnapshot:
        await self.refresh_notifications()
        await self.refresh_friend_requests()
        return self.snapshot()

    async def refresh_notifications(self) -> int:
        try:
            count = await notifications_api.unread_count(self.api)
        except AuthError:
            raise
        except (ApiError, MalformedPayload) as exc:
            logger.warning("unread notification count unavailable: %s", exc)
            count = 0
        self._set(unread_notifications=count)
        return count

    async def refresh_friend_requests(self) -> int:
        try:
            requests = await friends_api.list_requests(self.api, "received")
            count = friends_api.count_pending(requests)
        except AuthError:
            raise
        except ApiError as exc:
            logger.warning("pending friend requests unavailable: %s", exc)
            count = 0
        self._set(pending_friend_requests=count)
        return count

    def reset(self) -> None:
        self._set(unread_notifications=0, pending_friend_requests=0)

    def attach(self, transport) -> None:
        self.detach()
        self._transport = transport
        transport.on(EVENT_NEW_NOTIFICATION, self._handle_new_notification)
        transport.on(EVENT_FRIEND_REQUEST_RECEIVED, self._handle_request_received)
        transport.on(EVENT_FRIEND_REQUEST_UPDATED, self._handle_request_updated)

    def detach(self) -> None:
        transport = self._transport
        if transport is None:
            return
        transport.off(EVENT_NEW_NOTIFICATION, self._handle_new_notification)
        transport.off(EVENT_FRIEND_REQUEST_RECEIVED, self._handle_request_received)
        transport.off(EVENT_FRIEND_REQUEST_UPDATED, self._handle_request_updated)
        self._transport = None

    def _set(self, **counts: int) -> None:
        before = self.snapshot()
        for name, value in counts.items():
            setattr(self, name, max(0, int(value)))
        if self.snapshot() != before:
            self.events.emit(BADGES_CHANGED, self.snapshot())

    def _handle_new_notification(self, payload: Any) -> None:
        self._set(unread_notifications=self.unread_notifications + 1)

    def _handle_request_received(self, payload: Any) -> None:
        request = payload.get("request", payload) if isinstance(payload, dict) else None
        if not isinstance(request, dict):
            logger.warning("dropping %s without request body", EVENT_FRIEND_REQUEST_RECEIVED)
            return
        if request.get("status", "pending") == "pending":
            self._set(pending_friend_requests=self.pending_friend_requests + 1)

    async def _handle_request_updated(self, payload: Any) -> None:
        try:
            await self.refresh_friend_requests()
        except AuthError as exc:
            logger.info("friend request refresh stopped: %s", exc)
