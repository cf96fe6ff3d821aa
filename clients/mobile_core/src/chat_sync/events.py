from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]

CONNECTIVITY_CHANGED = "connectivity.changed"
TOKENS_CHANGED = "tokens.changed"
PRESENCE_CHANGED = "presence.changed"
TIMELINE_CHANGED = "timeline.changed"
CONVERSATIONS_CHANGED = "conversations.changed"
BADGES_CHANGED = "badges.changed"
SESSION_ENDED = "session.ended"


@dataclass
class Subscription:
    topic: str
    listener: Listener

    def deliver(self, payload: Any) -> None:
        self.listener(payload)


class EventEmitter:
    """Registers listeners per topic and delivers typed change notifications.

    Delivery is synchronous and in subscription order. A listener that raises
    is logged and does not prevent delivery to the remaining listeners.
    """

    def __init__(self) -> None:
        self._subscriptions: Dict[str, List[Subscription]] = {}

    def subscribe(self, topic: str, listener: Listener) -> Subscription:
        subscription = Subscription(topic=topic, listener=listener)
        self._subscriptions.setdefault(topic, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subs = self._subscriptions.get(subscription.topic)
        if not subs:
            return
        try:
            subs.remove(subscription)
        except ValueError:
            return
        if not subs:
            self._subscriptions.pop(subscription.topic, None)

    def emit(self, topic: str, payload: Any = None) -> None:
        for subscription in list(self._subscriptions.get(topic, [])):
            try:
                subscription.deliver(payload)
            except Exception:
                logger.exception("listener for %s failed", topic)
