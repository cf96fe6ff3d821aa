from __future__ import annotations

from typing import Any, Dict, List

from .api_client import ApiClient

REQUEST_TYPES = {"received", "sent", "all"}


def _as_list(data: Any) -> List[Dict[str, Any]]:
    if not isinstance(data, list):
        return []
    return [entry for entry in data if isinstance(entry, dict)]


async def send_request(api: ApiClient, receiver_id: str) -> Dict[str, Any]:
    return await api.post("/friends/requests", {"receiverId": receiver_id})


async def list_requests(api: ApiClient, request_type: str = "all") -> List[Dict[str, Any]]:
    if request_type not in REQUEST_TYPES:
        raise ValueError(f"request_type must be one of {sorted(REQUEST_TYPES)}")
    return _as_list(await api.get("/friends/requests", params={"type": request_type}))


async def cancel_request(api: ApiClient, request_id: str) -> Any:
    return await api.delete(f"/friends/requests/{request_id}")


async def accept_request(api: ApiClient, request_id: str) -> Any:
    return await api.post(f"/friends/requests/{request_id}/accept")


async def reject_request(api: ApiClient, request_id: str) -> Any:
    return await api.post(f"/friends/requests/{request_id}/reject")


async def list_friends(api: ApiClient) -> List[Dict[str, Any]]:
    return _as_list(await api.get("/friends"))


async def remove_friend(api: ApiClient, friend_id: str) -> Any:
    return await api.delete(f"/friends/{friend_id}")


async def list_user_friends(api: ApiClient, user_id: str) -> List[Dict[str, Any]]:
    return _as_list(await api.get(f"/users/{user_id}/friends"))


def count_pending(requests: List[Dict[str, Any]]) -> int:
    return sum(1 for entry in requests if entry.get("status") == "pending")
