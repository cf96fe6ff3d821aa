import asyncio

from fakes import BackendTestCase

from chat_sync import auth_api, notifications_api
from chat_sync.api_client import ApiClient, _query_params, _unwrap_envelope
from chat_sync.config import ClientConfig
from chat_sync.connectivity import ConnectivityState
from chat_sync.credential_store import CredentialStore
from chat_sync.errors import (
    USER_FACING_NETWORK_MESSAGE,
    AuthError,
    AuthReason,
    NetworkError,
    NetworkReason,
    ServerError,
)
from chat_sync.events import TOKENS_CHANGED
from chat_sync.models import TokenPair


def test_envelope_returns_data():
    assert _unwrap_envelope(200, {"success": True, "message": "ok", "data": {"id": 1}}) == {"id": 1}


def test_envelope_failure_raises_server_error():
    try:
        _unwrap_envelope(200, {"success": False, "message": "nope", "code": "NOPE"})
    except ServerError as exc:
        assert exc.status == 200
        assert exc.code == "NOPE"
        assert str(exc) == "nope"
    else:
        raise AssertionError("expected ServerError")


def test_non_envelope_payload_passes_through():
    assert _unwrap_envelope(200, [1, 2]) == [1, 2]


def test_query_params_format_booleans_and_drop_none():
    assert _query_params({"read": False, "type": None, "page": 2}) == {"read": "false", "page": "2"}


class ApiClientTests(BackendTestCase):
    async def test_authorized_get_unwraps_envelope(self):
        data = await self.api.get("/users/me")
        self.assertEqual(data, {"_id": "me", "displayName": "Me"})
        self.assertTrue(self.connectivity.is_server_online)
        self.assertEqual(self.api.refresh_count, 0)

    async def test_missing_token_fails_without_a_request(self):
        self.credentials.clear()
        with self.assertRaises(AuthError) as ctx:
            await self.api.get("/users/me")
        self.assertEqual(ctx.exception.reason, AuthReason.MISSING_TOKEN)
        self.assertEqual(self.backend.requests, [])
        self.assertEqual(self.logouts, 0)

    async def test_expired_token_is_refreshed_and_request_retried_once(self):
        self.backend.valid_tokens = set()
        rotated = []
        self.events.subscribe(TOKENS_CHANGED, rotated.append)

        data = await self.api.get("/users/me")

        self.assertEqual(data["_id"], "me")
        self.assertEqual(self.backend.refresh_calls, 1)
        self.assertEqual(len(self.backend.hits("GET", "/users/me")), 2)
        self.assertEqual(self.credentials.tokens, TokenPair("access-2", "refresh-2"))
        self.assertEqual(rotated, [TokenPair("access-2", "refresh-2")])

    async def test_second_unauthorized_expires_session_without_second_refresh(self):
        self.backend.always_unauthorized = True

        with self.assertRaises(AuthError) as ctx:
            await self.api.get("/users/me")

        self.assertTrue(ctx.exception.session_expired)
        self.assertEqual(self.backend.refresh_calls, 1)
        self.assertEqual(len(self.backend.hits("GET", "/users/me")), 2)
        self.assertFalse(self.credentials.has_session())
        self.assertEqual(self.logouts, 1)

    async def test_rejected_refresh_expires_session(self):
        self.backend.valid_tokens = set()
        self.backend.refresh_tokens = {}

        with self.assertRaises(AuthError) as ctx:
            await self.api.get("/users/me")

        self.assertEqual(ctx.exception.reason, AuthReason.SESSION_EXPIRED)
        self.assertEqual(len(self.backend.hits("GET", "/users/me")), 1)
        self.assertIsNone(self.credentials.access_token)
        self.assertEqual(self.logouts, 1)

    async def test_concurrent_unauthorized_calls_share_one_refresh(self):
        self.backend.valid_tokens = set()
        self.backend.refresh_delay = 0.05

        results = await asyncio.gather(
            self.api.get("/users/me"),
            self.api.get("/notifications/unread-count"),
            self.api.get("/users/me"),
        )

        self.assertEqual(results[0]["_id"], "me")
        self.assertEqual(results[1], {"count": 0})
        self.assertEqual(self.backend.refresh_calls, 1)
        self.assertEqual(self.api.refresh_count, 1)
        self.assertEqual(self.credentials.access_token, "access-2")

    async def test_success_false_in_ok_response_raises(self):
        with self.assertRaises(ServerError) as ctx:
            await self.api.get("/rejected")
        self.assertEqual(ctx.exception.code, "FORBIDDEN_MEMBER")
        self.assertEqual(ctx.exception.message, "Not a member")

    async def test_error_status_raises_server_error_with_message(self):
        self.backend.failing_paths.add("/users/me")
        with self.assertRaises(ServerError) as ctx:
            await self.api.get("/users/me")
        self.assertEqual(ctx.exception.status, 500)
        self.assertEqual(ctx.exception.message, "internal error")
        self.assertTrue(self.connectivity.is_server_online)

    async def test_unknown_route_raises_not_found(self):
        with self.assertRaises(ServerError) as ctx:
            await self.api.get("/does-not-exist")
        self.assertEqual(ctx.exception.status, 404)

    async def test_unauthorized_public_call_is_not_refreshed(self):
        self.backend.refresh_tokens = {}
        with self.assertRaises(ServerError) as ctx:
            await auth_api.refresh_token(self.api, "bogus")
        self.assertEqual(ctx.exception.status, 401)
        self.assertEqual(self.backend.refresh_calls, 1)
        self.assertEqual(self.logouts, 0)
        self.assertTrue(self.credentials.has_session())

    async def test_timeout_raises_network_error_and_flips_flag(self):
        self.config.request_timeout_s = 0.05
        self.backend.slow_delay = 0.5

        with self.assertRaises(NetworkError) as ctx:
            await self.api.get("/slow")

        self.assertEqual(ctx.exception.reason, NetworkReason.TIMEOUT)
        self.assertEqual(str(ctx.exception), USER_FACING_NETWORK_MESSAGE)
        self.assertFalse(self.connectivity.is_server_online)

        self.backend.slow_delay = 0
        self.config.request_timeout_s = 5
        await self.api.get("/slow")
        self.assertTrue(self.connectivity.is_server_online)

    async def test_push_token_falls_back_to_users_endpoint(self):
        data = await notifications_api.register_push_token(self.api, "ExponentPushToken[x]", "ios")
        self.assertEqual(data, {"registered": "ExponentPushToken[x]"})
        self.assertEqual(len(self.backend.hits("POST", "/notifications/push-token")), 1)
        self.assertEqual(len(self.backend.hits("POST", "/users/push-token")), 1)


class UnreachableServerTests(BackendTestCase):
    async def test_connection_refused_raises_unreachable(self):
        await self.server.close()
        with self.assertRaises(NetworkError) as ctx:
            await self.api.get("/users/me")
        self.assertEqual(ctx.exception.reason, NetworkReason.UNREACHABLE)
        self.assertFalse(self.connectivity.is_server_online)
        self.assertTrue(self.credentials.has_session())

    async def test_refresh_network_failure_keeps_session(self):
        config = ClientConfig(base_url=self.config.base_url)
        credentials = CredentialStore()
        credentials.login(TokenPair("stale", "refresh-1"))
        api = ApiClient(config, credentials, ConnectivityState())
        self.backend.valid_tokens = set()

        original = api._send
        calls = []

        async def failing_refresh(method, path, *args):
            calls.append(path)
            if path == "/auth/refresh":
                raise NetworkError(NetworkReason.UNREACHABLE, "refused")
            return await original(method, path, *args)

        api._send = failing_refresh
        try:
            with self.assertRaises(NetworkError):
                await api.get("/users/me")
        finally:
            await api.close()

        self.assertEqual(calls, ["/users/me", "/auth/refresh"])
        self.assertEqual(credentials.access_token, "stale")
