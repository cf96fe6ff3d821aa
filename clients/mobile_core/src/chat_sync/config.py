from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path

DEFAULT_BASE_URL = "http://127.0.0.1:3000/api/v1"
API_PREFIX = "/api/v1"
ENV_PREFIX = "CHAT_SYNC_"


@dataclass
class ClientConfig:
    base_url: str = DEFAULT_BASE_URL
    request_timeout_s: float = 30.0
    health_check_timeout_s: float = 5.0
    health_check_interval_s: float = 10.0
    max_failed_checks: int = 2
    reconnect_delay_max_s: float = 2.0
    message_page_size: int = 30
    conversation_page_size: int = 20
    group_threshold_s: int = 15 * 60
    credentials_path: Path = field(default_factory=lambda: Path.home() / ".chat_sync" / "credentials.json")
    device_name: str = "chat_sync client"
    device_type: str = "mobile"

    @property
    def socket_url(self) -> str:
        """Socket.IO lives at the server root, not under the versioned API path."""

        base = self.base_url.rstrip("/")
        if base.endswith(API_PREFIX):
            return base[: -len(API_PREFIX)]
        return base

    def url_for(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url.rstrip('/')}{path}"

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "ClientConfig":
        """Build a config from ``CHAT_SYNC_*`` variables, falling back to defaults.

        Each dataclass field maps to the upper-cased variable name, e.g.
        ``CHAT_SYNC_BASE_URL`` or ``CHAT_SYNC_REQUEST_TIMEOUT_S``.
        """

        env = os.environ if environ is None else environ
        config = cls()
        for spec in fields(cls):
            raw = env.get(ENV_PREFIX + spec.name.upper())
            if raw is None or raw == "":
                continue
            current = getattr(config, spec.name)
            if isinstance(current, bool):
                value: object = raw.strip().lower() in {"1", "true", "yes", "on"}
            elif isinstance(current, int):
                value = int(raw)
            elif isinstance(current, float):
                value = float(raw)
            elif isinstance(current, Path):
                value = Path(raw).expanduser()
            else:
                value = raw
            setattr(config, spec.name, value)
        if config.max_failed_checks < 1:
            raise ValueError("max_failed_checks must be at least 1")
        return config
