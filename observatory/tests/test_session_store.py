import json
import tempfile
import unittest
from pathlib import Path

from observatory.parsers.session_store import build_store_index, split_session_file_name


class SessionStoreTests(unittest.TestCase):
    def _sessions_dir(self, store: object | None = None, raw: str | None = None) -> Path:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        sessions_dir = Path(tmpdir.name)
        if raw is not None:
            (sessions_dir / "sessions.json").write_text(raw, encoding="utf-8")
        elif store is not None:
            (sessions_dir / "sessions.json").write_text(json.dumps(store), encoding="utf-8")
        return sessions_dir

    def test_split_strips_topic_suffix(self) -> None:
        self.assertEqual(split_session_file_name("abc123-topic-42.jsonl"), ("abc123-topic-42", "abc123"))
        self.assertEqual(split_session_file_name("plain.jsonl"), ("plain", "plain"))

    def test_resolve_prefers_file_name_then_session_id(self) -> None:
        index = build_store_index(
            self._sessions_dir(
                {
                    "agent:main:by-id": {"sessionId": "abc123", "label": "by id"},
                    "agent:main:by-file": {"sessionFile": "/elsewhere/abc123-topic-7.jsonl", "label": "by file"},
                }
            )
        )
        self.assertEqual(index.resolve("abc123-topic-7.jsonl", "abc123").key, "agent:main:by-file")
        self.assertEqual(index.resolve("abc123.jsonl", "abc123").key, "agent:main:by-id")
        missing = index.resolve("zzz.jsonl", "zzz")
        self.assertIsNone(missing.key)
        self.assertIsNone(missing.entry)

    def test_duplicate_session_ids_keep_first_entry(self) -> None:
        index = build_store_index(
            self._sessions_dir(
                {
                    "first": {"sessionId": "dup"},
                    "second": {"sessionId": "dup"},
                }
            )
        )
        self.assertEqual(index.resolve("dup.jsonl", "dup").key, "first")

    def test_missing_or_malformed_store_is_empty(self) -> None:
        self.assertEqual(build_store_index(self._sessions_dir()).by_session_id, {})
        broken = build_store_index(self._sessions_dir(raw="{not json"))
        self.assertEqual(broken.by_file_name, {})
        self.assertEqual(broken.by_session_id, {})
        listed = build_store_index(self._sessions_dir([{"sessionId": "x"}]))
        self.assertEqual(listed.by_session_id, {})


if __name__ == "__main__":
    unittest.main()
