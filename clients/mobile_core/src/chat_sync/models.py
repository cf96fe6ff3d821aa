from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .errors import MalformedPayload


class MessageType(str, Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    SYSTEM = "SYSTEM"


class ConversationType(str, Enum):
    PRIVATE = "PRIVATE"
    GROUP = "GROUP"


EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string (``Z`` suffix allowed) or epoch milliseconds."""

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if not isinstance(value, str) or not value:
        raise MalformedPayload(f"invalid timestamp: {value!r}")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise MalformedPayload(f"invalid timestamp: {value!r}") from exc
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _optional_id(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        value = value.get("_id") or value.get("id")
        if value is None:
            return None
    return str(value)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class MessageContent:
    text: Optional[str] = None
    media_url: Optional[str] = None


@dataclass(frozen=True)
class Message:
    id: str
    conversation_id: str
    sender_id: str
    type: MessageType
    content: MessageContent
    created_at: datetime
    updated_at: Optional[datetime] = None
    is_deleted: bool = False

    @classmethod
    def from_payload(cls, payload: Any, conversation_id: Optional[str] = None) -> "Message":
        if not isinstance(payload, dict):
            raise MalformedPayload("message payload must be an object")
        message_id = _optional_id(payload.get("_id") or payload.get("id"))
        if message_id is None:
            raise MalformedPayload("message without id")
        conv_id = _optional_id(payload.get("conversationId")) or conversation_id
        if conv_id is None:
            raise MalformedPayload(f"message {message_id} without conversationId")
        sender_id = _optional_id(payload.get("senderId"))
        if sender_id is None:
            raise MalformedPayload(f"message {message_id} without senderId")
        raw_type = payload.get("type", MessageType.TEXT.value)
        try:
            message_type = MessageType(raw_type)
        except ValueError as exc:
            raise MalformedPayload(f"unknown message type {raw_type!r}") from exc
        raw_content = payload.get("content") or {}
        if isinstance(raw_content, str):
            content = MessageContent(text=raw_content)
        elif isinstance(raw_content, dict):
            content = MessageContent(text=raw_content.get("text"), media_url=raw_content.get("mediaUrl"))
        else:
            raise MalformedPayload(f"message {message_id} has invalid content")
        updated_raw = payload.get("updatedAt")
        return cls(
            id=message_id,
            conversation_id=conv_id,
            sender_id=sender_id,
            type=message_type,
            content=content,
            created_at=parse_timestamp(payload.get("createdAt")),
            updated_at=parse_timestamp(updated_raw) if updated_raw else None,
            is_deleted=bool(payload.get("isDeleted", False)),
        )

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "_id": self.id,
            "conversationId": self.conversation_id,
            "senderId": self.sender_id,
            "type": self.type.value,
            "content": {"text": self.content.text, "mediaUrl": self.content.media_url},
            "createdAt": _format_timestamp(self.created_at),
            "isDeleted": self.is_deleted,
        }
        if self.updated_at is not None:
            payload["updatedAt"] = _format_timestamp(self.updated_at)
        return payload


@dataclass(frozen=True)
class LastMessage:
    message_id: Optional[str]
    sender_id: Optional[str]
    text: Optional[str]
    created_at: Optional[datetime]


@dataclass(frozen=True)
class MemberSettings:
    unread_count: int = 0
    is_pinned: bool = False
    is_muted: bool = False


@dataclass(frozen=True)
class ConversationSummary:
    id: str
    type: ConversationType
    name: Optional[str] = None
    avatar: Optional[str] = None
    other_user_id: Optional[str] = None
    last_message: Optional[LastMessage] = None
    updated_at: Optional[datetime] = None
    member_settings: MemberSettings = field(default_factory=MemberSettings)

    @property
    def activity_at(self) -> datetime:
        if self.last_message is not None and self.last_message.created_at is not None:
            return self.last_message.created_at
        return self.updated_at or EPOCH

    @classmethod
    def from_payload(cls, payload: Any) -> "ConversationSummary":
        """Accept either ``{conversation, memberSettings}`` or a bare conversation."""

        if not isinstance(payload, dict):
            raise MalformedPayload("conversation payload must be an object")
        conversation = payload.get("conversation", payload)
        settings = payload.get("memberSettings") or {}
        if not isinstance(conversation, dict) or not isinstance(settings, dict):
            raise MalformedPayload("conversation payload has invalid members")
        conv_id = _optional_id(conversation.get("_id") or conversation.get("id"))
        if conv_id is None:
            raise MalformedPayload("conversation without id")
        try:
            conv_type = ConversationType(conversation.get("type", ConversationType.PRIVATE.value))
        except ValueError as exc:
            raise MalformedPayload(f"unknown conversation type {conversation.get('type')!r}") from exc

        last_message = None
        raw_last = conversation.get("lastMessage")
        if isinstance(raw_last, dict):
            created_raw = raw_last.get("createdAt")
            last_message = LastMessage(
                message_id=_optional_id(raw_last.get("messageId")),
                sender_id=_optional_id(raw_last.get("senderId")),
                text=raw_last.get("text"),
                created_at=parse_timestamp(created_raw) if created_raw else None,
            )
        updated_raw = conversation.get("updatedAt")
        return cls(
            id=conv_id,
            type=conv_type,
            name=conversation.get("name") or conversation.get("otherUserName"),
            avatar=conversation.get("avatar") or conversation.get("otherUserAvatar"),
            other_user_id=_optional_id(conversation.get("otherUserId")),
            last_message=last_message,
            updated_at=parse_timestamp(updated_raw) if updated_raw else None,
            member_settings=MemberSettings(
                unread_count=parse_count(settings.get("unreadCount"), "unreadCount"),
                is_pinned=bool(settings.get("isPinned", False)),
                is_muted=bool(settings.get("isMuted", False)),
            ),
        )


@dataclass
class PageCursor:
    """Pagination state for one list; ``page`` only moves forward until reset."""

    page: int = 0
    has_more: bool = True

    def reset(self, total_pages: int) -> None:
        self.page = 1
        self.has_more = 1 < total_pages

    def advance(self, page: int, total_pages: int) -> None:
        self.page = max(self.page, page)
        self.has_more = self.page < total_pages

    @property
    def next_page(self) -> int:
        return self.page + 1


@dataclass(frozen=True)
class GroupHint:
    is_first_in_group: bool
    is_last_in_group: bool
    is_group_tail: bool
    show_divider: bool
    show_avatar: bool
    group_start: int
    group_end: int


def parse_count(value: Any, name: str, default: int = 0) -> int:
    """Read a non-negative integer field; missing or null falls back to ``default``."""

    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise MalformedPayload(f"invalid {name} {value!r}")
    try:
        return max(int(value), 0)
    except (TypeError, ValueError) as exc:
        raise MalformedPayload(f"invalid {name} {value!r}") from exc


def parse_total_pages(data: Any) -> int:
    if not isinstance(data, dict):
        raise MalformedPayload("page payload must be an object")
    return parse_count(data.get("totalPages", 1), "totalPages", default=1)
