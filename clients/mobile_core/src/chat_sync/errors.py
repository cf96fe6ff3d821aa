"""Error taxonomy shared by the API client, the realtime layer and the UI shell."""

from __future__ import annotations

from enum import Enum

USER_FACING_NETWORK_MESSAGE = "Could not reach the server. Please check your network connection."


class AuthReason(str, Enum):
    MISSING_TOKEN = "missing_token"
    SESSION_EXPIRED = "session_expired"


class NetworkReason(str, Enum):
    TIMEOUT = "timeout"
    UNREACHABLE = "unreachable"


class ChatSyncError(Exception):
    pass


class ApiError(ChatSyncError):
    pass


class AuthError(ApiError):
    """Raised when a call cannot be authenticated.

    ``SESSION_EXPIRED`` is fatal for the session: credentials are already
    cleared and the logout hook has run by the time it is raised.
    """

    def __init__(self, reason: AuthReason, message: str | None = None) -> None:
        self.reason = reason
        super().__init__(message or reason.value)

    @property
    def session_expired(self) -> bool:
        return self.reason is AuthReason.SESSION_EXPIRED


class NetworkError(ApiError):
    def __init__(self, reason: NetworkReason, detail: str | None = None) -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(USER_FACING_NETWORK_MESSAGE)


class ServerError(ApiError):
    def __init__(self, status: int, message: str | None = None, code: str | None = None) -> None:
        self.status = status
        self.message = message or f"request failed with status {status}"
        self.code = code
        super().__init__(self.message)


class MalformedPayload(ChatSyncError):
    """A realtime or REST payload did not have the expected shape."""
