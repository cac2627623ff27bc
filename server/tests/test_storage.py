import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from hatchat.colors import ColorDirectory
from hatchat.log import ChatMessage, MessageLog
from hatchat.storage import JsonFileStore, PersistenceLoadError, PersistenceWriteError


class TestJsonFileStore(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.root = Path(self._tmp.name)

    def test_missing_file_is_created_with_default(self):
        path = self.root / "nested" / "messages.json"
        store = JsonFileStore(path)

        self.assertEqual(store.load([]), [])
        self.assertTrue(path.exists())
        self.assertEqual(json.loads(path.read_text(encoding="utf-8")), [])

    def test_save_replaces_whole_document(self):
        path = self.root / "colors.json"
        store = JsonFileStore(path)
        store.save({"alice": "#111", "bob": "#222"})
        store.save({"alice": "#333"})

        self.assertEqual(store.load({}), {"alice": "#333"})
        self.assertFalse(path.with_suffix(".json.tmp").exists())

    def test_invalid_json_raises_load_error(self):
        path = self.root / "messages.json"
        path.write_text("{not json", encoding="utf-8")

        with self.assertRaises(PersistenceLoadError):
            JsonFileStore(path).load([])

    def test_write_failure_raises_write_error(self):
        store = JsonFileStore(self.root / "messages.json")
        with mock.patch("hatchat.storage.os.replace", side_effect=OSError("disk full")):
            with self.assertRaises(PersistenceWriteError):
                store.save([])

    def test_failed_creation_raises_load_error(self):
        store = JsonFileStore(self.root / "saved_chats.json")
        with mock.patch("hatchat.storage._atomic_write_json", side_effect=OSError("read-only")):
            with self.assertRaises(PersistenceLoadError):
                store.load([])

    def test_message_log_survives_restart(self):
        path = self.root / "messages.json"
        log = MessageLog(JsonFileStore(path))
        log.load()
        appended = [ChatMessage.chat("alice", f"m{i}", color="#111") for i in range(5)]
        for message in appended:
            log.append(message)

        restarted = MessageLog(JsonFileStore(path))

        self.assertEqual(restarted.load(), appended)

    def test_corrupt_log_starts_empty_and_is_rewritten(self):
        path = self.root / "messages.json"
        path.write_text("[{broken", encoding="utf-8")
        log = MessageLog(JsonFileStore(path))

        with self.assertLogs("hatchat.log", level="ERROR"):
            self.assertEqual(log.load(), [])

        log.append(ChatMessage.system("alice joined the chat", "t0"))
        self.assertEqual(json.loads(path.read_text(encoding="utf-8"))[0]["message"], "alice joined the chat")

    def test_failed_write_is_logged_not_raised(self):
        path = self.root / "messages.json"
        log = MessageLog(JsonFileStore(path))
        log.load()
        log.append(ChatMessage.system("first", "t0"))

        with mock.patch("hatchat.storage.os.replace", side_effect=OSError("disk full")):
            with self.assertLogs("hatchat.log", level="ERROR"):
                log.append(ChatMessage.system("second", "t1"))

        self.assertEqual(len(log), 2)
        self.assertFalse(log.synced)
        on_disk = json.loads(path.read_text(encoding="utf-8"))
        self.assertEqual([record["message"] for record in on_disk], ["first"])

    def test_color_directory_round_trip(self):
        path = self.root / "user_colors.json"
        colors = ColorDirectory(JsonFileStore(path))
        colors.load()
        colors.set("alice", "#abc")

        self.assertEqual(ColorDirectory(JsonFileStore(path)).load(), {"alice": "#abc"})


if __name__ == "__main__":
    unittest.main()
