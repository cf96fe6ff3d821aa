"""Conversation and message endpoints under ``/conversations``."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .api_client import ApiClient
from .errors import MalformedPayload
from .models import ConversationSummary, Message, MessageType, parse_count, parse_total_pages

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MessagePage:
    messages: List[Message]
    page: int
    total_pages: int
    total: int


@dataclass(frozen=True)
class ConversationPage:
    conversations: List[ConversationSummary]
    page: int
    total_pages: int
    total: int


def parse_message_page(data: Any, conversation_id: str, page: int) -> MessagePage:
    total_pages = parse_total_pages(data)
    messages: List[Message] = []
    for raw in data.get("messages") or []:
        try:
            messages.append(Message.from_payload(raw, conversation_id))
        except MalformedPayload as exc:
            logger.warning("dropping malformed message in %s: %s", conversation_id, exc)
    return MessagePage(
        messages=messages,
        page=parse_count(data.get("page"), "page", default=page),
        total_pages=total_pages,
        total=parse_count(data.get("total"), "total", default=len(messages)),
    )


def parse_conversation_page(data: Any, page: int) -> ConversationPage:
    total_pages = parse_total_pages(data)
    conversations: List[ConversationSummary] = []
    for raw in data.get("conversations") or []:
        try:
            conversations.append(ConversationSummary.from_payload(raw))
        except MalformedPayload as exc:
            logger.warning("dropping malformed conversation: %s", exc)
    return ConversationPage(
        conversations=conversations,
        page=parse_count(data.get("page"), "page", default=page),
        total_pages=total_pages,
        total=parse_count(data.get("total"), "total", default=len(conversations)),
    )


async def list_conversations(api: ApiClient, page: int = 1, limit: int = 20) -> ConversationPage:
    data = await api.get("/conversations", params={"page": page, "limit": limit})
    return parse_conversation_page(data, page)


async def create_private(api: ApiClient, user_id: str) -> ConversationSummary:
    data = await api.post("/conversations/private", {"userId": user_id})
    return ConversationSummary.from_payload(data)


async def create_group(api: ApiClient, name: str, member_ids: List[str]) -> ConversationSummary:
    data = await api.post("/conversations/group", {"name": name, "memberIds": list(member_ids)})
    return ConversationSummary.from_payload(data)


async def list_messages(api: ApiClient, conversation_id: str, page: int = 1, limit: int = 50) -> MessagePage:
    data = await api.get(f"/conversations/{conversation_id}/messages", params={"page": page, "limit": limit})
    return parse_message_page(data, conversation_id, page)


async def list_messages_by_sender(
    api: ApiClient,
    conversation_id: str,
    sender_id: str,
    page: int = 1,
    limit: int = 50,
) -> MessagePage:
    data = await api.get(
        f"/conversations/{conversation_id}/messages/filter",
        params={"senderId": sender_id, "page": page, "limit": limit},
    )
    return parse_message_page(data, conversation_id, page)


async def send_message(
    api: ApiClient,
    conversation_id: str,
    message_type: MessageType,
    text: Optional[str] = None,
    media_url: Optional[str] = None,
) -> Message:
    body: Dict[str, object] = {"type": message_type.value}
    if message_type is MessageType.TEXT and text:
        body["text"] = text
    elif message_type is MessageType.IMAGE and media_url:
        body["mediaUrl"] = media_url
    else:
        raise ValueError("TEXT needs text and IMAGE needs media_url")
    data = await api.post(f"/conversations/{conversation_id}/messages", body)
    return Message.from_payload(data, conversation_id)


async def upload_image(
    api: ApiClient,
    conversation_id: str,
    content: bytes,
    filename: str,
    content_type: str = "image/jpeg",
) -> Dict[str, Any]:
    return await api.upload(f"/conversations/{conversation_id}/upload/image", "file", filename, content, content_type)


async def update_settings(api: ApiClient, conversation_id: str, **settings: Any) -> Dict[str, Any]:
    """PATCH per-member settings: ``nickname``, ``customBackground``, ``isMuted``, ``isPinned``, ``isBlocked``."""

    payload = {key: value for key, value in settings.items() if value is not None}
    return await api.patch(f"/conversations/{conversation_id}/settings", payload)


async def mark_read(api: ApiClient, conversation_id: str) -> None:
    """Reset this member's unread counter.

    The backend clears ``unreadCount`` whenever the member reads page 1, so the
    receipt is a one-message page fetch.
    """

    await api.get(f"/conversations/{conversation_id}/messages", params={"page": 1, "limit": 1})
