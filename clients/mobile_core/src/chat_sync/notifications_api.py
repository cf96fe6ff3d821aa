from __future__ import annotations

from typing import Any, Dict, List, Optional

from .api_client import ApiClient
from .errors import ServerError
from .models import parse_count


async def list_notifications(
    api: ApiClient,
    page: int = 1,
    limit: int = 20,
    read: Optional[bool] = None,
    notification_type: Optional[str] = None,
) -> Dict[str, Any]:
    params: Dict[str, object] = {"limit": limit, "page": page, "read": read, "type": notification_type}
    return await api.get("/notifications", params=params)


async def unread_count(api: ApiClient) -> int:
    data = await api.get("/notifications/unread-count")
    if isinstance(data, dict):
        return parse_count(data.get("count"), "count")
    return 0


async def mark_read(api: ApiClient, notification_id: str) -> Dict[str, Any]:
    return await api.patch(f"/notifications/{notification_id}/read")


async def mark_all_read(api: ApiClient) -> int:
    data = await api.patch("/notifications/read-all")
    return parse_count(data.get("count"), "count") if isinstance(data, dict) else 0


async def delete(api: ApiClient, notification_id: str) -> Any:
    return await api.delete(f"/notifications/{notification_id}")


async def delete_read(api: ApiClient) -> int:
    data = await api.delete("/notifications/read")
    return parse_count(data.get("count"), "count") if isinstance(data, dict) else 0


async def register_push_token(
    api: ApiClient,
    token: str,
    platform: str,
    device_id: Optional[str] = None,
    device_name: Optional[str] = None,
) -> Any:
    """Register with ``/notifications/push-token``, falling back to ``/users/push-token`` on 404."""

    payload: Dict[str, object] = {"token": token, "platform": platform}
    if device_id:
        payload["deviceId"] = device_id
    if device_name:
        payload["deviceName"] = device_name
    try:
        return await api.post("/notifications/push-token", payload)
    except ServerError as exc:
        if exc.status != 404:
            raise
    return await api.post("/users/push-token", payload)


async def unregister_push_token(api: ApiClient, token: str) -> Any:
    return await api.delete("/users/push-token", {"token": token})


async def list_push_tokens(api: ApiClient) -> List[Dict[str, Any]]:
    data = await api.get("/users/push-tokens")
    if isinstance(data, dict):
        data = data.get("tokens")
    return [entry for entry in data or [] if isinstance(entry, dict)]
