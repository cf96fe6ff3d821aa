from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import timedelta
from typing import Any, Dict

from . import auth_api, conversations_api
from .config import ClientConfig
from .connectivity import ConnectivityMonitor, ConnectivityState, ConnectivityStatus
from .errors import AuthError, AuthReason, ChatSyncError
from .events import BADGES_CHANGED, CONVERSATIONS_CHANGED, PRESENCE_CHANGED, TIMELINE_CHANGED
from .grouping import compute_group_hints
from .models import ConversationSummary
from .session import ChatSession

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_AUTH = 2


def _write(record: Dict[str, Any]) -> None:
    sys.stdout.write(f"{json.dumps(record, sort_keys=True, default=str)}\n")


def _summary_record(summary: ConversationSummary) -> Dict[str, Any]:
    return {
        "id": summary.id,
        "type": summary.type.value,
        "name": summary.name,
        "unread": summary.member_settings.unread_count,
        "pinned": summary.member_settings.is_pinned,
        "last_text": summary.last_message.text if summary.last_message else None,
        "activity_at": summary.activity_at.isoformat(),
    }


def _require_session(session: ChatSession) -> None:
    if not session.credentials.has_session():
        raise AuthError(AuthReason.MISSING_TOKEN, "Not signed in; run `login` first")


async def handle_health(config: ClientConfig, args: argparse.Namespace) -> int:
    monitor = ConnectivityMonitor(config, ConnectivityState())
    try:
        await monitor.check()
    finally:
        await monitor.stop()
    _write({"status": monitor.status.value, "url": config.base_url})
    return EXIT_OK if monitor.status is ConnectivityStatus.ONLINE else EXIT_FAILURE


async def handle_send_otp(session: ChatSession, args: argparse.Namespace) -> int:
    await auth_api.send_login_otp(session.api, args.email, args.password)
    _write({"otp_sent": True, "email": args.email})
    return EXIT_OK


async def handle_login(session: ChatSession, args: argparse.Namespace) -> int:
    user = await session.login(args.email, args.otp)
    _write({"logged_in": True, "user": (user or {}).get("email")})
    return EXIT_OK


async def handle_logout(session: ChatSession, args: argparse.Namespace) -> int:
    await session.logout()
    _write({"logged_in": False})
    return EXIT_OK


async def handle_conversations(session: ChatSession, args: argparse.Namespace) -> int:
    _require_session(session)
    for summary in await session.conversations.refresh(args.page):
        _write(_summary_record(summary))
    return EXIT_OK


async def handle_messages(session: ChatSession, args: argparse.Namespace) -> int:
    _require_session(session)
    page = await conversations_api.list_messages(
        session.api, args.conv_id, args.page, session.config.message_page_size
    )
    viewer = (session.user or {}).get("_id") or (session.user or {}).get("id")
    threshold = timedelta(seconds=session.config.group_threshold_s)
    hints = compute_group_hints(page.messages, viewer_id=viewer, threshold=threshold)
    for message, hint in zip(page.messages, hints):
        record = message.to_payload()
        record["divider"] = hint.show_divider
        record["group"] = [hint.group_start, hint.group_end]
        _write(record)
    return EXIT_OK


async def handle_tail(session: ChatSession, args: argparse.Namespace) -> int:
    _require_session(session)
    session.events.subscribe(
        CONVERSATIONS_CHANGED,
        lambda summaries: _write({"event": CONVERSATIONS_CHANGED, "count": len(summaries)}),
    )
    session.events.subscribe(
        PRESENCE_CHANGED,
        lambda online: _write({"event": PRESENCE_CHANGED, "online": sorted(online)}),
    )
    session.events.subscribe(
        BADGES_CHANGED,
        lambda badges: _write(
            {
                "event": BADGES_CHANGED,
                "notifications": badges.unread_notifications,
                "friend_requests": badges.pending_friend_requests,
            }
        ),
    )
    session.events.subscribe(
        TIMELINE_CHANGED,
        lambda change: _write(
            {"event": TIMELINE_CHANGED, "conversation": change.conversation_id, "count": len(change.messages)}
        ),
    )
    await session.restore()
    await asyncio.sleep(args.seconds)
    return EXIT_OK


async def run(args: argparse.Namespace) -> int:
    config = ClientConfig.from_env()
    if args.base_url:
        config.base_url = args.base_url
    if args.command == "health":
        return await handle_health(config, args)

    session = ChatSession(config)
    handlers = {
        "send-otp": handle_send_otp,
        "login": handle_login,
        "logout": handle_logout,
        "conversations": handle_conversations,
        "messages": handle_messages,
        "tail": handle_tail,
    }
    try:
        return await handlers[args.command](session, args)
    finally:
        await session.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chat_sync", description="Chat sync client")
    parser.add_argument("--base-url", help="API base URL (default: CHAT_SYNC_BASE_URL or local server)")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("health", help="Probe whether the server is reachable")

    send_otp = subparsers.add_parser("send-otp", help="Ask the server to email a login OTP")
    send_otp.add_argument("email")
    send_otp.add_argument("password")

    login = subparsers.add_parser("login", help="Complete an OTP login and store the tokens")
    login.add_argument("email")
    login.add_argument("otp")

    subparsers.add_parser("logout", help="End the session and forget stored tokens")

    conversations = subparsers.add_parser("conversations", help="List conversations, most recent first")
    conversations.add_argument("--page", type=int, default=1)

    messages = subparsers.add_parser("messages", help="Show one page of a conversation, newest first")
    messages.add_argument("conv_id")
    messages.add_argument("--page", type=int, default=1)

    tail = subparsers.add_parser("tail", help="Connect and print live changes")
    tail.add_argument("--seconds", type=float, default=60.0)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return asyncio.run(run(args))
    except AuthError as exc:
        sys.stderr.write(f"Error: {exc}\n")
        return EXIT_AUTH
    except ChatSyncError as exc:
        sys.stderr.write(f"Error: {exc}\n")
        return EXIT_FAILURE
    except KeyboardInterrupt:
        return EXIT_FAILURE


if __name__ == "__main__":
    raise SystemExit(main())
