import json
import stat
import tempfile
import unittest
from pathlib import Path

from chat_sync.credential_store import CredentialStore, FileCredentialStore
from chat_sync.events import TOKENS_CHANGED, EventEmitter
from chat_sync.models import TokenPair


class CredentialStoreTests(unittest.TestCase):
    def setUp(self):
        self.events = EventEmitter()
        self.changes = []
        self.events.subscribe(TOKENS_CHANGED, self.changes.append)

    def test_every_mutation_publishes_tokens(self):
        store = CredentialStore(self.events)
        store.login(TokenPair("a1", "r1"), {"_id": "me"})
        store.save_tokens(TokenPair("a2", "r2"))
        store.clear()
        store.clear()

        self.assertEqual(self.changes, [TokenPair("a1", "r1"), TokenPair("a2", "r2"), None])
        self.assertFalse(store.has_session())
        self.assertIsNone(store.user)

    def test_save_user_keeps_tokens(self):
        store = CredentialStore(self.events)
        store.login(TokenPair("a1", "r1"))
        store.save_user({"_id": "me", "displayName": "Me"})
        self.assertEqual(store.access_token, "a1")
        self.assertEqual(store.user["displayName"], "Me")
        self.assertEqual(len(self.changes), 1)


class FileCredentialStoreTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "nested" / "credentials.json"

    def tearDown(self):
        self._tmp.cleanup()

    def test_tokens_survive_a_restart(self):
        store = FileCredentialStore(self.path)
        store.login(TokenPair("a1", "r1"), {"_id": "me"})

        reloaded = FileCredentialStore(self.path)
        self.assertEqual(reloaded.tokens, TokenPair("a1", "r1"))
        self.assertEqual(reloaded.user, {"_id": "me"})

    def test_file_is_private(self):
        FileCredentialStore(self.path).login(TokenPair("a1", "r1"))
        mode = stat.S_IMODE(self.path.stat().st_mode)
        self.assertEqual(mode, 0o600)
        self.assertFalse(self.path.with_suffix(".json.tmp").exists())

    def test_clear_removes_the_file(self):
        store = FileCredentialStore(self.path)
        store.login(TokenPair("a1", "r1"))
        store.clear()
        self.assertFalse(self.path.exists())
        self.assertFalse(FileCredentialStore(self.path).has_session())

    def test_refresh_rotation_is_persisted(self):
        store = FileCredentialStore(self.path)
        store.login(TokenPair("a1", "r1"))
        store.save_tokens(TokenPair("a2", "r2"))
        data = json.loads(self.path.read_text(encoding="utf-8"))
        self.assertEqual(data["access_token"], "a2")
        self.assertEqual(data["refresh_token"], "r2")

    def test_unreadable_file_is_ignored(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text("{not json", encoding="utf-8")
        with self.assertLogs("chat_sync.credential_store", level="WARNING"):
            store = FileCredentialStore(self.path)
        self.assertFalse(store.has_session())
