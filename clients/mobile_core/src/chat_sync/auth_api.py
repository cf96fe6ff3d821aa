"""Auth endpoints under ``/auth``."""

from __future__ import annotations

import secrets
from typing import Any, Dict, List, Optional

from .api_client import ApiClient
from .errors import MalformedPayload
from .models import TokenPair


def _device_info(api: ApiClient) -> Dict[str, str]:
    return {
        "deviceId": f"{api.config.device_type}_{secrets.token_hex(8)}",
        "deviceName": api.config.device_name,
        "deviceType": api.config.device_type,
    }


def tokens_from_auth_response(data: Any) -> TokenPair:
    if not isinstance(data, dict):
        raise MalformedPayload("auth response must be an object")
    token = data.get("token")
    refresh_token = data.get("refreshToken")
    if not isinstance(token, str) or not isinstance(refresh_token, str):
        raise MalformedPayload("auth response is missing tokens")
    return TokenPair(access_token=token, refresh_token=refresh_token)


async def check_email(api: ApiClient, email: str) -> Dict[str, Any]:
    return await api.get("/auth/check-email", params={"email": email}, require_auth=False)


async def register(api: ApiClient, email: str, password: str, confirm_password: str, display_name: str) -> Any:
    payload = {
        "email": email,
        "password": password,
        "confirmPassword": confirm_password,
        "displayName": display_name,
    }
    return await api.post("/auth/register", payload, require_auth=False)


async def verify_email(api: ApiClient, token: str) -> Any:
    return await api.get("/auth/verify-email", params={"token": token}, require_auth=False)


async def resend_verification_email(api: ApiClient, email: str) -> Any:
    return await api.post("/auth/resend-verification-email", {"email": email}, require_auth=False)


async def send_login_otp(api: ApiClient, email: str, password: str) -> Any:
    return await api.post("/auth/send-login-otp", {"email": email, "password": password}, require_auth=False)


async def verify_login_otp(
    api: ApiClient,
    email: str,
    otp: str,
    device_id: Optional[str] = None,
    device_name: Optional[str] = None,
    device_type: Optional[str] = None,
) -> Dict[str, Any]:
    """Complete the OTP login; the response carries ``user``, ``token`` and ``refreshToken``."""

    device = _device_info(api)
    payload = {
        "email": email,
        "otp": otp,
        "deviceId": device_id or device["deviceId"],
        "deviceName": device_name or device["deviceName"],
        "deviceType": device_type or device["deviceType"],
    }
    return await api.post("/auth/verify-login-otp", payload, require_auth=False)


async def refresh_token(api: ApiClient, token: str) -> TokenPair:
    data = await api.post("/auth/refresh", {"refreshToken": token}, require_auth=False)
    return tokens_from_auth_response(data)


async def logout(api: ApiClient) -> Any:
    return await api.post("/auth/logout")


async def list_sessions(api: ApiClient) -> List[Dict[str, Any]]:
    data = await api.get("/auth/sessions")
    return [entry for entry in data or [] if isinstance(entry, dict)]


async def delete_session(api: ApiClient, session_id: str) -> Any:
    return await api.delete(f"/auth/sessions/{session_id}")


async def logout_other_devices(api: ApiClient, current_session_id: str) -> Any:
    return await api.delete("/auth/sessions", headers={"X-Session-Id": current_session_id})


async def update_user(
    api: ApiClient,
    username: Optional[str] = None,
    email: Optional[str] = None,
    display_name: Optional[str] = None,
) -> Any:
    payload: Dict[str, object] = {}
    if username is not None:
        payload["username"] = username
    if email is not None:
        payload["email"] = email
    if display_name is not None:
        payload["displayName"] = display_name
    return await api.put("/auth/update", payload)


async def get_current_user(api: ApiClient) -> Dict[str, Any]:
    return await api.get("/auth/me")


async def send_reset_password_otp(api: ApiClient, email: str) -> Any:
    return await api.post("/auth/send-reset-password-otp", {"email": email}, require_auth=False)


async def verify_reset_password_otp(api: ApiClient, email: str, otp: str, new_password: str) -> Any:
    payload = {"email": email, "otp": otp, "newPassword": new_password}
    return await api.post("/auth/verify-reset-password-otp", payload, require_auth=False)


async def send_change_password_otp(api: ApiClient, old_password: str) -> Any:
    return await api.post("/auth/send-change-password-otp", {"oldPassword": old_password})


async def verify_change_password_otp(api: ApiClient, otp: str, new_password: str) -> Any:
    return await api.post("/auth/verify-change-password-otp", {"otp": otp, "newPassword": new_password})
