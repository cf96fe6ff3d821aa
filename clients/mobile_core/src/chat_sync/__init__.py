"""Synchronization core for the mobile chat client."""

from .api_client import ApiClient
from .badges import BadgeCounters
from .config import ClientConfig
from .connectivity import ConnectivityMonitor, ConnectivityState, ConnectivityStatus
from .conversation_sync import ConversationSync, ConversationTimeline
from .credential_store import CredentialStore, FileCredentialStore
from .errors import (
    USER_FACING_NETWORK_MESSAGE,
    ApiError,
    AuthError,
    ChatSyncError,
    MalformedPayload,
    NetworkError,
    ServerError,
)
from .events import EventEmitter
from .grouping import compute_group_hints
from .models import ConversationSummary, GroupHint, Message, TokenPair
from .presence import PresenceTracker
from .realtime import RealtimeTransport
from .session import ChatSession
from .timeline import MergeMode, merge_messages

__all__ = [
    "ApiClient",
    "BadgeCounters",
    "ClientConfig",
    "ConnectivityMonitor",
    "ConnectivityState",
    "ConnectivityStatus",
    "ConversationSync",
    "ConversationTimeline",
    "CredentialStore",
    "FileCredentialStore",
    "USER_FACING_NETWORK_MESSAGE",
    "ApiError",
    "AuthError",
    "ChatSyncError",
    "MalformedPayload",
    "NetworkError",
    "ServerError",
    "EventEmitter",
    "compute_group_hints",
    "ConversationSummary",
    "GroupHint",
    "Message",
    "TokenPair",
    "PresenceTracker",
    "RealtimeTransport",
    "ChatSession",
    "MergeMode",
    "merge_messages",
]
