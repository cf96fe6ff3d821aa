from __future__ import annotations

import logging
from typing import Any, FrozenSet, Iterable, Optional, Set

from .errors import MalformedPayload
from .events import PRESENCE_CHANGED, EventEmitter

logger = logging.getLogger(__name__)

EVENT_ONLINE_LIST = "users:online:list"
EVENT_USER_ONLINE = "user:online"
EVENT_USER_OFFLINE = "user:offline"


def _user_id_from(payload: Any) -> str:
    if not isinstance(payload, dict) or payload.get("userId") in (None, ""):
        raise MalformedPayload("presence event without userId")
    return str(payload["userId"])


class PresenceTracker:
    """Online user ids from a snapshot plus join/leave deltas.

    A snapshot replaces the whole set; deltas are idempotent. Only the
    current set is kept, no history.
    """

    def __init__(self, events: EventEmitter | None = None) -> None:
        self.events = events or EventEmitter()
        self._online: Set[str] = set()
        self._transport = None

    def is_online(self, user_id: Any) -> bool:
        return str(user_id) in self._online

    def online_ids(self) -> FrozenSet[str]:
        return frozenset(self._online)

    def on_snapshot(self, user_ids: Iterable[Any]) -> None:
        snapshot = {str(user_id) for user_id in user_ids if user_id not in (None, "")}
        changed = snapshot != self._online
        self._online = snapshot
        if changed:
            self._publish()

    def on_join(self, user_id: Any) -> None:
        key = str(user_id)
        if key in self._online:
            return
        self._online.add(key)
        self._publish()

    def on_leave(self, user_id: Any) -> None:
        key = str(user_id)
        if key not in self._online:
            return
        self._online.discard(key)
        self._publish()

    def clear(self) -> None:
        if self._online:
            self._online = set()
            self._publish()

    def attach(self, transport) -> None:
        self.detach()
        self._transport = transport
        transport.on(EVENT_ONLINE_LIST, self._handle_online_list)
        transport.on(EVENT_USER_ONLINE, self._handle_user_online)
        transport.on(EVENT_USER_OFFLINE, self._handle_user_offline)

    def detach(self) -> None:
        transport = self._transport
        if transport is None:
            return
        transport.off(EVENT_ONLINE_LIST, self._handle_online_list)
        transport.off(EVENT_USER_ONLINE, self._handle_user_online)
        transport.off(EVENT_USER_OFFLINE, self._handle_user_offline)
        self._transport = None

    def _publish(self) -> None:
        self.events.emit(PRESENCE_CHANGED, self.online_ids())

    def _handle_online_list(self, payload: Any) -> None:
        user_ids: Optional[Any] = payload.get("userIds") if isinstance(payload, dict) else None
        if not isinstance(user_ids, list):
            logger.warning("dropping %s without userIds list", EVENT_ONLINE_LIST)
            return
        self.on_snapshot(user_ids)

    def _handle_user_online(self, payload: Any) -> None:
        try:
            self.on_join(_user_id_from(payload))
        except MalformedPayload as exc:
            logger.warning("dropping %s: %s", EVENT_USER_ONLINE, exc)

    def _handle_user_offline(self, payload: Any) -> None:
        try:
            self.on_leave(_user_id_from(payload))
        except MalformedPayload as exc:
            logger.warning("dropping %s: %s", EVENT_USER_OFFLINE, exc)
