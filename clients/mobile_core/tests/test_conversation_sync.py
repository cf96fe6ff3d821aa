from unittest import mock

from fakes import BackendTestCase, FakeTransport, conversation_payload, message_payload

from chat_sync import conversations_api
from chat_sync.conversation_sync import (
    ConversationSync,
    TimelineChange,
    conversation_id_from_push,
    order_by_recency,
)
from chat_sync.errors import MalformedPayload
from chat_sync.events import CONVERSATIONS_CHANGED, TIMELINE_CHANGED
from chat_sync.models import ConversationSummary


def _stored_messages(count, conversation_id="c1"):
    """Backend storage is newest first, like the real API."""

    return [message_payload(f"m{i}", i * 10, conversation_id=conversation_id) for i in reversed(range(count))]


def test_conversation_id_is_found_in_every_push_shape():
    assert conversation_id_from_push({"conversationId": "c1"}) == "c1"
    assert conversation_id_from_push({"conversation": {"conversationId": "c2"}}) == "c2"
    assert conversation_id_from_push({"conversation": {"_id": "c3"}}) == "c3"
    assert conversation_id_from_push({"message": {"conversationId": "c4"}}) == "c4"
    assert conversation_id_from_push({"message": {"text": "hi"}}) is None
    assert conversation_id_from_push("c1") is None


def test_pinned_conversations_sort_first_then_by_activity():
    summaries = [
        ConversationSummary.from_payload(conversation_payload("old", 10)),
        ConversationSummary.from_payload(conversation_payload("pinned", 0, pinned=True)),
        ConversationSummary.from_payload(conversation_payload("new", 50)),
    ]
    assert [summary.id for summary in order_by_recency(summaries)] == ["pinned", "new", "old"]


class ConversationSyncTests(BackendTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.transport = FakeTransport()
        self.sync = ConversationSync(self.api, self.config, self.events)
        self.sync.attach(self.transport)
        self.timeline_changes = []
        self.list_changes = []
        self.events.subscribe(TIMELINE_CHANGED, self.timeline_changes.append)
        self.events.subscribe(CONVERSATIONS_CHANGED, self.list_changes.append)

    async def test_live_copy_of_loaded_message_replaces_it(self):
        self.backend.messages["c1"] = _stored_messages(20)
        timeline = await self.sync.open_conversation("c1")
        self.assertEqual(len(timeline.messages), 20)
        self.assertIn(("conversation:join", {"conversationId": "c1"}), self.transport.emitted)

        edited = message_payload("m7", 70, text="edited on another device")
        await self.transport.deliver("message:new", {"conversationId": "c1", "message": edited})

        self.assertEqual(len(timeline.messages), 20)
        by_id = {message.id: message for message in timeline.messages}
        self.assertEqual(by_id["m7"].content.text, "edited on another device")
        self.assertEqual(len({message.id for message in timeline.messages}), 20)

    async def test_new_push_lands_at_head_and_refreshes_list(self):
        self.backend.messages["c1"] = _stored_messages(3)
        self.backend.conversations = [conversation_payload("c1", 500)]
        timeline = await self.sync.open_conversation("c1")

        await self.transport.deliver("message:new", {"message": message_payload("live", 1000)})

        self.assertEqual(timeline.messages[0].id, "live")
        self.assertEqual([summary.id for summary in self.sync.conversations], ["c1"])
        self.assertIsInstance(self.timeline_changes[-1], TimelineChange)
        self.assertEqual(self.timeline_changes[-1].conversation_id, "c1")

    async def test_apply_live_accepts_raw_payload(self):
        self.backend.messages["c1"] = _stored_messages(2)
        timeline = await self.sync.open_conversation("c1")

        timeline.apply_live({"message": message_payload("raw", 500)})
        timeline.apply_live(message_payload("raw", 500, text="again"))

        self.assertEqual([message.id for message in timeline.messages], ["raw", "m1", "m0"])
        self.assertEqual(timeline.messages[0].content.text, "again")

    async def test_push_for_closed_conversation_only_refreshes_list(self):
        self.backend.conversations = [conversation_payload("c9", 10)]
        await self.transport.deliver("message:new", {"conversationId": "c9", "message": message_payload("x", 5)})

        self.assertIsNone(self.sync.timeline("c9"))
        self.assertEqual(len(self.backend.hits("GET", "/conversations")), 1)

    async def test_push_without_conversation_id_is_dropped(self):
        self.backend.messages["c1"] = _stored_messages(2)
        timeline = await self.sync.open_conversation("c1")

        with self.assertLogs("chat_sync.conversation_sync", level="WARNING"):
            await self.transport.deliver("message:new", {"message": {"_id": "x", "text": "hi"}})

        self.assertEqual(len(timeline.messages), 2)
        self.assertEqual(self.backend.hits("GET", "/conversations"), [])

    async def test_malformed_message_in_push_is_dropped(self):
        self.backend.messages["c1"] = _stored_messages(2)
        timeline = await self.sync.open_conversation("c1")

        with self.assertLogs("chat_sync.conversation_sync", level="WARNING"):
            await self.transport.deliver("message:new", {"conversationId": "c1", "message": {"_id": "bad"}})

        self.assertEqual(len(timeline.messages), 2)

    async def test_older_pages_until_exhausted(self):
        self.config.message_page_size = 20
        self.backend.messages["c1"] = _stored_messages(45)
        timeline = await self.sync.open_conversation("c1")
        self.assertEqual(len(timeline.messages), 20)
        self.assertTrue(timeline.has_more)

        await timeline.load_older()
        await timeline.load_older()
        self.assertEqual(len(timeline.messages), 45)
        self.assertFalse(timeline.has_more)
        self.assertEqual(timeline.messages[0].id, "m44")
        self.assertEqual(timeline.messages[-1].id, "m0")

        fetches = len(self.backend.hits("GET", "/conversations/c1/messages"))
        await timeline.load_older()
        self.assertEqual(len(self.backend.hits("GET", "/conversations/c1/messages")), fetches)

    async def test_shifted_pages_do_not_duplicate(self):
        self.config.message_page_size = 10
        self.backend.messages["c1"] = _stored_messages(30)
        timeline = await self.sync.open_conversation("c1")

        # Five new messages arrive server-side; page 2 now overlaps page 1.
        newer = [message_payload(f"n{i}", 1000 + i) for i in reversed(range(5))]
        self.backend.messages["c1"] = newer + self.backend.messages["c1"]
        await timeline.load_older()

        ids = [message.id for message in timeline.messages]
        self.assertEqual(len(ids), len(set(ids)))
        self.assertEqual(len(ids), 15)

    async def test_close_sends_leave_and_read_receipt(self):
        self.backend.messages["c1"] = _stored_messages(3)
        await self.sync.open_conversation("c1")

        await self.sync.close_conversation("c1")

        self.assertIn(("conversation:leave", {"conversationId": "c1"}), self.transport.emitted)
        self.assertIn({"page": "1", "limit": "1"}, self.backend.hits("GET", "/conversations/c1/messages"))
        self.assertIsNone(self.sync.timeline("c1"))

    async def test_failed_read_receipt_is_logged(self):
        self.backend.messages["c1"] = _stored_messages(3)
        await self.sync.open_conversation("c1")
        self.backend.failing_paths.add("/conversations/c1/messages")

        with self.assertLogs("chat_sync.conversation_sync", level="WARNING"):
            await self.sync.close_conversation("c1")
        self.assertIsNone(self.sync.timeline("c1"))

    async def test_send_text_merges_server_copy(self):
        self.backend.messages["c1"] = _stored_messages(2)
        timeline = await self.sync.open_conversation("c1")

        sent = await timeline.send_text("  hello  ")

        self.assertEqual(sent.content.text, "hello")
        self.assertEqual(timeline.messages[0].id, sent.id)
        with self.assertRaises(ValueError):
            await timeline.send_text("   ")

    async def test_conversations_updated_reloads_open_timelines_and_list(self):
        self.backend.messages["c1"] = _stored_messages(5)
        self.backend.conversations = [conversation_payload("c1", 10)]
        timeline = await self.sync.open_conversation("c1")

        self.backend.messages["c1"].insert(0, message_payload("late", 999))
        await self.transport.deliver("conversations:updated", {})

        self.assertEqual(timeline.messages[0].id, "late")
        self.assertEqual(len(timeline.messages), 6)
        self.assertEqual(len(self.list_changes), 1)

    async def test_conversation_list_pages_and_ordering(self):
        self.config.conversation_page_size = 2
        self.backend.conversations = [
            conversation_payload("a", 300),
            conversation_payload("b", 200),
            conversation_payload("c", 100, pinned=True),
        ]

        first = await self.sync.refresh()
        self.assertEqual([summary.id for summary in first], ["a", "b"])
        self.assertTrue(self.sync.list_cursor.has_more)

        merged = await self.sync.load_more()
        self.assertEqual([summary.id for summary in merged], ["c", "a", "b"])
        self.assertFalse(self.sync.list_cursor.has_more)

        await self.sync.load_more()
        self.assertEqual(len(self.backend.hits("GET", "/conversations")), 2)

    async def test_friend_events_refresh_list(self):
        self.backend.conversations = [conversation_payload("a", 300)]

        await self.transport.deliver("friend:request:updated", {"action": "rejected"})
        self.assertEqual(self.backend.hits("GET", "/conversations"), [])

        await self.transport.deliver("friend:request:updated", {"action": "accepted"})
        await self.transport.deliver("friend:added", {"friendId": "f1"})
        self.assertEqual(len(self.backend.hits("GET", "/conversations")), 2)

    async def test_list_refresh_failure_from_push_is_logged(self):
        self.backend.failing_paths.add("/conversations")
        with self.assertLogs("chat_sync.conversation_sync", level="WARNING"):
            await self.transport.deliver("friend:added", {"friendId": "f1"})
        self.assertEqual(self.sync.conversations, [])

    async def test_reconnect_rejoins_open_conversations(self):
        self.backend.messages["c1"] = _stored_messages(2)
        await self.sync.open_conversation("c1")
        self.transport.emitted.clear()

        await self.transport.deliver("connect")

        self.assertEqual(self.transport.emitted, [("conversation:join", {"conversationId": "c1"})])

    async def test_detach_ignores_further_pushes(self):
        self.sync.detach()
        await self.transport.deliver("friend:added", {"friendId": "f1"})
        self.assertEqual(self.backend.hits("GET", "/conversations"), [])

    async def test_push_refresh_drops_conversation_with_bad_counter(self):
        bad = conversation_payload("c2", 20)
        bad["memberSettings"]["unreadCount"] = "n/a"
        self.backend.conversations = [conversation_payload("c1", 10), bad]

        with self.assertLogs("chat_sync.conversations_api", level="WARNING"):
            await self.transport.deliver("message:new", {"conversationId": "c1", "message": message_payload("x", 5)})

        self.assertEqual([summary.id for summary in self.sync.conversations], ["c1"])

    async def test_malformed_list_page_from_push_is_logged(self):
        broken = mock.AsyncMock(side_effect=MalformedPayload("invalid total 'many'"))
        with mock.patch.object(conversations_api, "list_conversations", broken):
            with self.assertLogs("chat_sync.conversation_sync", level="WARNING"):
                await self.transport.deliver("conversations:updated", {})
        self.assertEqual(self.sync.conversations, [])
