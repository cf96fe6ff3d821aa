"""Persist the token pair and the signed-in user blob."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from .events import TOKENS_CHANGED, EventEmitter
from .models import TokenPair

logger = logging.getLogger(__name__)


def _atomic_write_json(path: Path, payload: Dict[str, object]) -> None:
    path = path.expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    content = json.dumps(payload, indent=2, sort_keys=True)

    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(content)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp_path, path)


class CredentialStore:
    """In-memory credential holder; the only writer of the token pair.

    Subclasses decide where the blob lives. Every mutation publishes
    ``tokens.changed`` with the new :class:`TokenPair` (or ``None``).
    """

    def __init__(self, events: EventEmitter | None = None) -> None:
        self.events = events or EventEmitter()
        self._tokens: Optional[TokenPair] = None
        self._user: Optional[Dict[str, Any]] = None

    @property
    def tokens(self) -> Optional[TokenPair]:
        return self._tokens

    @property
    def access_token(self) -> Optional[str]:
        return self._tokens.access_token if self._tokens else None

    @property
    def refresh_token(self) -> Optional[str]:
        return self._tokens.refresh_token if self._tokens else None

    @property
    def user(self) -> Optional[Dict[str, Any]]:
        return self._user

    def has_session(self) -> bool:
        return self._tokens is not None

    def login(self, tokens: TokenPair, user: Optional[Dict[str, Any]] = None) -> None:
        self._tokens = tokens
        if user is not None:
            self._user = dict(user)
        self._persist()
        self.events.emit(TOKENS_CHANGED, tokens)

    def save_tokens(self, tokens: TokenPair) -> None:
        self._tokens = tokens
        self._persist()
        self.events.emit(TOKENS_CHANGED, tokens)

    def save_user(self, user: Dict[str, Any]) -> None:
        self._user = dict(user)
        self._persist()

    def clear(self) -> None:
        had_tokens = self._tokens is not None
        self._tokens = None
        self._user = None
        self._erase()
        if had_tokens:
            self.events.emit(TOKENS_CHANGED, None)

    def _persist(self) -> None:
        return None

    def _erase(self) -> None:
        return None


class FileCredentialStore(CredentialStore):
    """JSON file with 0600 permissions, written atomically via fsync + rename."""

    def __init__(self, path: Path | str, events: EventEmitter | None = None) -> None:
        super().__init__(events)
        self.path = Path(path).expanduser()
        self._load()

    def _load(self) -> None:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return
        except (json.JSONDecodeError, ValueError):
            logger.warning("ignoring unreadable credential file %s", self.path)
            return

        if not isinstance(data, dict):
            return
        access_token = data.get("access_token")
        refresh_token = data.get("refresh_token")
        if isinstance(access_token, str) and isinstance(refresh_token, str) and access_token:
            self._tokens = TokenPair(access_token=access_token, refresh_token=refresh_token)
        user = data.get("user")
        if isinstance(user, dict):
            self._user = user

    def _persist(self) -> None:
        payload: Dict[str, object] = {}
        if self._tokens is not None:
            payload["access_token"] = self._tokens.access_token
            payload["refresh_token"] = self._tokens.refresh_token
        if self._user is not None:
            payload["user"] = self._user
        _atomic_write_json(self.path, payload)

    def _erase(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
