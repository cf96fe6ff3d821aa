"""Profile endpoints under ``/users``."""

from __future__ import annotations

import time
from typing import Any, Dict, List

from .api_client import ApiClient


async def get_me(api: ApiClient) -> Dict[str, Any]:
    return await api.get("/users/me")


async def get_by_id(api: ApiClient, user_id: str) -> Dict[str, Any]:
    return await api.get(f"/users/{user_id}")


async def upload_avatar(
    api: ApiClient,
    content: bytes,
    filename: str | None = None,
    content_type: str = "image/jpeg",
) -> Any:
    name = filename or f"avatar_{int(time.time() * 1000)}.jpg"
    return await api.upload("/users/avatar", "avatar", name, content, content_type)


async def delete_avatar(api: ApiClient) -> Any:
    return await api.delete("/users/avatar")


async def upload_cover(
    api: ApiClient,
    content: bytes,
    filename: str | None = None,
    content_type: str = "image/jpeg",
) -> Any:
    name = filename or f"cover_{int(time.time() * 1000)}.jpg"
    return await api.upload("/users/cover", "cover", name, content, content_type)


async def delete_cover(api: ApiClient) -> Any:
    return await api.delete("/users/cover")


async def update_profile(api: ApiClient, **fields: Any) -> Dict[str, Any]:
    """PUT ``/users/profile`` with camelCase fields such as ``displayName`` or ``bio``."""

    payload = {key: value for key, value in fields.items() if value is not None}
    return await api.put("/users/profile", payload)


async def search(api: ApiClient, query: str) -> List[Dict[str, Any]]:
    query = query.strip()
    if not query:
        return []
    data = await api.get("/users/search", params={"q": query})
    return [entry for entry in data or [] if isinstance(entry, dict)]
