"""Authenticated HTTP client with transparent token refresh."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

import aiohttp

from .config import ClientConfig
from .connectivity import ConnectivityState
from .credential_store import CredentialStore
from .errors import AuthError, AuthReason, NetworkError, NetworkReason, ServerError
from .models import TokenPair

logger = logging.getLogger(__name__)

REFRESH_PATH = "/auth/refresh"

LogoutHook = Callable[[], Union[None, Awaitable[None]]]
FormFactory = Callable[[], aiohttp.FormData]


def _unwrap_envelope(status: int, payload: Any) -> Any:
    """Return ``data`` from ``{success, message, data, code}`` envelopes."""

    if not isinstance(payload, dict) or not ({"success", "data"} & payload.keys()):
        return payload
    if payload.get("success") is False:
        raise ServerError(status, payload.get("message"), payload.get("code"))
    return payload.get("data")


def _query_params(params: Mapping[str, Any]) -> Dict[str, str]:
    query: Dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            query[key] = "true" if value else "false"
        else:
            query[key] = str(value)
    return query


class ApiClient:
    """Issues REST calls on behalf of the signed-in user.

    Per call: ``Sending -> Done`` on 2xx; on 401 the token is refreshed once and
    the call is retried once; a second 401, or a refresh the server rejects,
    clears the credentials, runs ``on_logout`` and raises
    ``AuthError(SESSION_EXPIRED)``. Concurrent callers that hit 401 with the
    same stale token share one refresh.
    """

    def __init__(
        self,
        config: ClientConfig,
        credentials: CredentialStore,
        connectivity: ConnectivityState,
        *,
        on_logout: Optional[LogoutHook] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.config = config
        self.credentials = credentials
        self.connectivity = connectivity
        self.on_logout = on_logout
        self._session = session
        self._owns_session = session is None
        self._refresh_task: asyncio.Future | None = None
        self.refresh_count = 0

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def get(self, path: str, *, params: Optional[Mapping[str, Any]] = None, require_auth: bool = True) -> Any:
        return await self.request("GET", path, params=params, require_auth=require_auth)

    async def post(self, path: str, body: Any = None, *, require_auth: bool = True) -> Any:
        return await self.request("POST", path, body, require_auth=require_auth)

    async def put(self, path: str, body: Any = None, *, require_auth: bool = True) -> Any:
        return await self.request("PUT", path, body, require_auth=require_auth)

    async def patch(self, path: str, body: Any = None, *, require_auth: bool = True) -> Any:
        return await self.request("PATCH", path, body, require_auth=require_auth)

    async def delete(
        self,
        path: str,
        body: Any = None,
        *,
        require_auth: bool = True,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        return await self.request("DELETE", path, body, require_auth=require_auth, headers=headers)

    async def upload(
        self,
        path: str,
        field_name: str,
        filename: str,
        content: bytes,
        content_type: str = "image/jpeg",
    ) -> Any:
        def build_form() -> aiohttp.FormData:
            form = aiohttp.FormData()
            form.add_field(field_name, content, filename=filename, content_type=content_type)
            return form

        return await self.request("POST", path, require_auth=True, form_factory=build_form)

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        require_auth: bool = True,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        form_factory: Optional[FormFactory] = None,
    ) -> Any:
        retried = False
        while True:
            request_headers: Dict[str, str] = dict(headers or {})
            token: Optional[str] = None
            if require_auth:
                token = self.credentials.access_token
                if not token:
                    raise AuthError(AuthReason.MISSING_TOKEN)
                request_headers["Authorization"] = f"Bearer {token}"

            response = await self._send(method, path, body, params, request_headers, form_factory)
            try:
                if response.status == 401 and require_auth:
                    # The 401 body stays unread until the refresh outcome is known.
                    if retried:
                        await self._expire_session("retried request was still unauthorized")
                    refreshed = await self._refresh(token)
                    if not refreshed:
                        await self._expire_session("token refresh was rejected")
                    retried = True
                    continue
                payload = await self._read_json(response, strict=200 <= response.status < 300)
            finally:
                response.release()

            if 200 <= response.status < 300:
                self.connectivity.set_server_online(True)
                return _unwrap_envelope(response.status, payload)

            message = payload.get("message") if isinstance(payload, dict) else None
            code = payload.get("code") if isinstance(payload, dict) else None
            raise ServerError(response.status, message, code)

    async def _send(
        self,
        method: str,
        path: str,
        body: Any,
        params: Optional[Mapping[str, Any]],
        headers: Dict[str, str],
        form_factory: Optional[FormFactory],
    ) -> aiohttp.ClientResponse:
        kwargs: Dict[str, Any] = {
            "headers": headers,
            "timeout": aiohttp.ClientTimeout(total=self.config.request_timeout_s),
        }
        if params:
            kwargs["params"] = _query_params(params)
        if form_factory is not None:
            kwargs["data"] = form_factory()
        elif body is not None:
            kwargs["json"] = body
        try:
            return await self.session.request(method, self.config.url_for(path), **kwargs)
        except asyncio.TimeoutError as exc:
            self.connectivity.set_server_online(False)
            raise NetworkError(NetworkReason.TIMEOUT, f"{method} {path} timed out") from exc
        except aiohttp.ClientError as exc:
            self.connectivity.set_server_online(False)
            raise NetworkError(NetworkReason.UNREACHABLE, f"{method} {path}: {exc}") from exc

    async def _read_json(self, response: aiohttp.ClientResponse, strict: bool = True) -> Any:
        try:
            raw = await response.text()
        except asyncio.TimeoutError as exc:
            self.connectivity.set_server_online(False)
            raise NetworkError(NetworkReason.TIMEOUT, "response body timed out") from exc
        except aiohttp.ClientError as exc:
            self.connectivity.set_server_online(False)
            raise NetworkError(NetworkReason.UNREACHABLE, str(exc)) from exc
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            if not strict:
                return None
            raise ServerError(response.status, "malformed response body") from exc

    async def _refresh(self, stale_token: Optional[str]) -> bool:
        current = self.credentials.access_token
        if current is not None and current != stale_token:
            # Another caller already exchanged the token while this one was in flight.
            return True
        task = self._refresh_task
        if task is None:
            task = asyncio.ensure_future(self._exchange_refresh_token())
            self._refresh_task = task
            try:
                return await asyncio.shield(task)
            finally:
                self._refresh_task = None
        return await asyncio.shield(task)

    async def _exchange_refresh_token(self) -> bool:
        refresh_token = self.credentials.refresh_token
        if not refresh_token:
            return False
        self.refresh_count += 1
        logger.info("access token expired, refreshing")
        response = await self._send(
            "POST",
            REFRESH_PATH,
            {"refreshToken": refresh_token},
            None,
            {"Content-Type": "application/json"},
            None,
        )
        try:
            payload = await self._read_json(response)
        except ServerError:
            return False
        finally:
            response.release()
        if not 200 <= response.status < 300 or not isinstance(payload, dict):
            logger.warning("token refresh rejected with status %s", response.status)
            return False
        data = payload.get("data") if "data" in payload else payload
        if payload.get("success") is False or not isinstance(data, dict):
            return False
        access_token = data.get("token") or data.get("accessToken")
        new_refresh = data.get("refreshToken") or refresh_token
        if not isinstance(access_token, str) or not access_token:
            return False
        self.credentials.save_tokens(TokenPair(access_token=access_token, refresh_token=str(new_refresh)))
        self.connectivity.set_server_online(True)
        return True

    async def _expire_session(self, reason: str) -> None:
        had_session = self.credentials.has_session()
        self.credentials.clear()
        if had_session:
            logger.warning("session expired: %s", reason)
            await self._run_logout_hook()
        raise AuthError(AuthReason.SESSION_EXPIRED, "Session expired, please log in again")

    async def _run_logout_hook(self) -> None:
        if self.on_logout is None:
            return
        try:
            result = self.on_logout()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("logout hook failed")
