"""Per-conversation timelines and the conversation list, fed by REST and the socket."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Union

from . import conversations_api
from .api_client import ApiClient
from .config import ClientConfig
from .errors import ApiError, MalformedPayload
from .events import CONVERSATIONS_CHANGED, TIMELINE_CHANGED, EventEmitter
from .models import ConversationSummary, Message, MessageType, PageCursor
from .timeline import MergeMode, merge_messages

logger = logging.getLogger(__name__)

EVENT_MESSAGE_NEW = "message:new"
EVENT_CONVERSATIONS_UPDATED = "conversations:updated"
EVENT_FRIEND_ADDED = "friend:added"
EVENT_FRIEND_REQUEST_UPDATED = "friend:request:updated"
EVENT_CONVERSATION_JOIN = "conversation:join"
EVENT_CONVERSATION_LEAVE = "conversation:leave"
EVENT_CONNECT = "connect"


@dataclass(frozen=True)
class TimelineChange:
    conversation_id: str
    messages: List[Message]


def conversation_id_from_push(payload: Any) -> Optional[str]:
    """Find the conversation id in the shapes ``message:new`` arrives in."""

    if not isinstance(payload, dict):
        return None
    candidates = [payload.get("conversationId")]
    conversation = payload.get("conversation")
    if isinstance(conversation, dict):
        candidates.extend([conversation.get("conversationId"), conversation.get("_id")])
    message = payload.get("message")
    if isinstance(message, dict):
        candidates.append(message.get("conversationId"))
    for candidate in candidates:
        if candidate not in (None, ""):
            return str(candidate)
    return None


def order_by_recency(conversations: Iterable[ConversationSummary]) -> List[ConversationSummary]:
    return sorted(
        conversations,
        key=lambda summary: (summary.member_settings.is_pinned, summary.activity_at),
        reverse=True,
    )


class ConversationTimeline:
    """Loaded messages for one open conversation, newest first."""

    def __init__(
        self,
        conversation_id: str,
        api: ApiClient,
        events: EventEmitter,
        page_size: int,
    ) -> None:
        self.conversation_id = conversation_id
        self.api = api
        self.events = events
        self.page_size = page_size
        self.messages: List[Message] = []
        self.cursor = PageCursor()
        self._loading_older = False

    @property
    def has_more(self) -> bool:
        return self.cursor.has_more

    async def load_latest(self) -> List[Message]:
        page = await conversations_api.list_messages(self.api, self.conversation_id, 1, self.page_size)
        self.cursor.reset(page.total_pages)
        self._apply(page.messages, MergeMode.REPLACE)
        return self.messages

    async def load_older(self) -> List[Message]:
        if self.cursor.page == 0:
            return await self.load_latest()
        if not self.cursor.has_more or self._loading_older:
            return self.messages
        self._loading_older = True
        try:
            next_page = self.cursor.next_page
            page = await conversations_api.list_messages(self.api, self.conversation_id, next_page, self.page_size)
        finally:
            self._loading_older = False
        self.cursor.advance(next_page, page.total_pages)
        self._apply(page.messages, MergeMode.PREPEND_OLDER)
        return self.messages

    async def refresh_head(self) -> List[Message]:
        """Re-read page 1 without dropping older pages already loaded."""

        page = await conversations_api.list_messages(self.api, self.conversation_id, 1, self.page_size)
        self._apply(page.messages, MergeMode.APPEND_LIVE)
        return self.messages

    def apply_live(self, message: Union[Message, Dict[str, Any]]) -> List[Message]:
        """Merge one pushed message; raw ``message:new`` payloads are parsed first."""

        if not isinstance(message, Message):
            raw = message.get("message") if isinstance(message.get("message"), dict) else message
            message = Message.from_payload(raw, self.conversation_id)
        self._apply([message], MergeMode.APPEND_LIVE)
        return self.messages

    async def send_text(self, text: str) -> Message:
        text = text.strip()
        if not text:
            raise ValueError("cannot send an empty message")
        message = await conversations_api.send_message(self.api, self.conversation_id, MessageType.TEXT, text=text)
        self.apply_live(message)
        return message

    async def send_image(self, media_url: str) -> Message:
        message = await conversations_api.send_message(
            self.api, self.conversation_id, MessageType.IMAGE, media_url=media_url
        )
        self.apply_live(message)
        return message

    def _apply(self, incoming: List[Message], mode: MergeMode) -> None:
        self.messages = merge_messages(self.messages, incoming, mode)
        self.events.emit(TIMELINE_CHANGED, TimelineChange(self.conversation_id, list(self.messages)))


class ConversationSync:
    """Reconciles REST pages and socket pushes.

    Timelines exist only while their conversation view is open. The
    conversation list head is re-fetched whole on any event that can change
    it.
    """

    def __init__(self, api: ApiClient, config: ClientConfig, events: EventEmitter | None = None) -> None:
        self.api = api
        self.config = config
        self.events = events or EventEmitter()
        self.timelines: Dict[str, ConversationTimeline] = {}
        self.conversations: List[ConversationSummary] = []
        self.list_cursor = PageCursor()
        self._list_generation = 0
        self._transport = None

    def attach(self, transport) -> None:
        self.detach()
        self._transport = transport
        transport.on(EVENT_MESSAGE_NEW, self._handle_message_new)
        transport.on(EVENT_CONVERSATIONS_UPDATED, self._handle_conversations_updated)
        transport.on(EVENT_FRIEND_ADDED, self._handle_friend_added)
        transport.on(EVENT_FRIEND_REQUEST_UPDATED, self._handle_friend_request_updated)
        transport.on(EVENT_CONNECT, self._handle_connect)

    def detach(self) -> None:
        transport = self._transport
        if transport is None:
            return
        transport.off(EVENT_MESSAGE_NEW, self._handle_message_new)
        transport.off(EVENT_CONVERSATIONS_UPDATED, self._handle_conversations_updated)
        transport.off(EVENT_FRIEND_ADDED, self._handle_friend_added)
        transport.off(EVENT_FRIEND_REQUEST_UPDATED, self._handle_friend_request_updated)
        transport.off(EVENT_CONNECT, self._handle_connect)
        self._transport = None

    def timeline(self, conversation_id: str) -> Optional[ConversationTimeline]:
        return self.timelines.get(conversation_id)

    async def open_conversation(self, conversation_id: str) -> ConversationTimeline:
        timeline = self.timelines.get(conversation_id)
        if timeline is None:
            timeline = ConversationTimeline(conversation_id, self.api, self.events, self.config.message_page_size)
            self.timelines[conversation_id] = timeline
        if self._transport is not None:
            await self._transport.emit(EVENT_CONVERSATION_JOIN, {"conversationId": conversation_id})
        await timeline.load_latest()
        return timeline

    async def close_conversation(self, conversation_id: str) -> None:
        timeline = self.timelines.pop(conversation_id, None)
        if timeline is None:
            return
        if self._transport is not None:
            await self._transport.emit(EVENT_CONVERSATION_LEAVE, {"conversationId": conversation_id})
        await self.mark_conversation_read(conversation_id)

    async def close_all(self) -> None:
        for conversation_id in list(self.timelines):
            await self.close_conversation(conversation_id)

    def reset(self) -> None:
        self.timelines.clear()
        self.conversations = []
        self.list_cursor = PageCursor()

    async def mark_conversation_read(self, conversation_id: str) -> bool:
        try:
            await conversations_api.mark_read(self.api, conversation_id)
        except ApiError as exc:
            logger.warning("could not mark %s read: %s", conversation_id, exc)
            return False
        return True

    async def refresh(self, page: int = 1, append: bool = False) -> List[ConversationSummary]:
        generation = self._list_generation
        if not append:
            self._list_generation += 1
            generation = self._list_generation
        result = await conversations_api.list_conversations(self.api, page, self.config.conversation_page_size)

        if append:
            merged = {summary.id: summary for summary in self.conversations}
            for summary in result.conversations:
                merged[summary.id] = summary
            self.conversations = order_by_recency(merged.values())
            self.list_cursor.advance(page, result.total_pages)
        else:
            if generation != self._list_generation:
                # A newer head refresh was issued while this one was in flight.
                return self.conversations
            self.conversations = order_by_recency(result.conversations)
            self.list_cursor.page = page
            self.list_cursor.has_more = page < result.total_pages
        self.events.emit(CONVERSATIONS_CHANGED, list(self.conversations))
        return self.conversations

    async def load_more(self) -> List[ConversationSummary]:
        if not self.list_cursor.has_more:
            return self.conversations
        return await self.refresh(self.list_cursor.next_page, append=True)

    def apply_message_push(self, payload: Any) -> Optional[Message]:
        """Merge a ``message:new`` payload into its open timeline, if any."""

        conversation_id = conversation_id_from_push(payload)
        if conversation_id is None:
            logger.warning("dropping %s without conversationId", EVENT_MESSAGE_NEW)
            return None
        timeline = self.timelines.get(conversation_id)
        if timeline is None:
            return None
        raw_message = payload.get("message") if isinstance(payload.get("message"), dict) else payload
        try:
            message = Message.from_payload(raw_message, conversation_id)
        except MalformedPayload as exc:
            logger.warning("dropping malformed %s for %s: %s", EVENT_MESSAGE_NEW, conversation_id, exc)
            return None
        if message.conversation_id != conversation_id:
            logger.warning("dropping %s whose message belongs to %s", EVENT_MESSAGE_NEW, message.conversation_id)
            return None
        timeline.apply_live(message)
        return message

    async def _refresh_list_quietly(self, reason: str) -> None:
        try:
            await self.refresh(1, append=False)
        except (ApiError, MalformedPayload) as exc:
            logger.warning("conversation list refresh after %s failed: %s", reason, exc)

    async def _handle_message_new(self, payload: Any) -> None:
        self.apply_message_push(payload)
        if conversation_id_from_push(payload) is not None:
            await self._refresh_list_quietly(EVENT_MESSAGE_NEW)

    async def _handle_conversations_updated(self, payload: Any) -> None:
        for conversation_id, timeline in list(self.timelines.items()):
            try:
                await timeline.refresh_head()
            except (ApiError, MalformedPayload) as exc:
                logger.warning("timeline refresh for %s failed: %s", conversation_id, exc)
        await self._refresh_list_quietly(EVENT_CONVERSATIONS_UPDATED)

    async def _handle_friend_added(self, payload: Any) -> None:
        await self._refresh_list_quietly(EVENT_FRIEND_ADDED)

    async def _handle_friend_request_updated(self, payload: Any) -> None:
        if isinstance(payload, dict) and payload.get("action") == "accepted":
            await self._refresh_list_quietly(EVENT_FRIEND_REQUEST_UPDATED)

    async def _handle_connect(self, payload: Any) -> None:
        # Rejoin rooms and catch up on pushes missed while disconnected.
        for conversation_id, timeline in list(self.timelines.items()):
            if self._transport is not None:
                await self._transport.emit(EVENT_CONVERSATION_JOIN, {"conversationId": conversation_id})
            try:
                await timeline.refresh_head()
            except (ApiError, MalformedPayload) as exc:
                logger.warning("timeline catch-up for %s failed: %s", conversation_id, exc)
