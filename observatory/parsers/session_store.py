"""Index the per-agent ``sessions.json`` metadata store for transcript joins."""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePath
from typing import Any

logger = logging.getLogger("observatory.parsers")

STORE_FILE_NAME = "sessions.json"
TRANSCRIPT_SUFFIX = ".jsonl"
_TOPIC_SUFFIX_PATTERN = re.compile(r"-topic-.+$")


@dataclass
class StoreMatch:
    key: str | None = None
    entry: dict[str, Any] | None = None


@dataclass
class StoreIndex:
    store_path: Path
    by_file_name: dict[str, StoreMatch] = field(default_factory=dict)
    by_session_id: dict[str, StoreMatch] = field(default_factory=dict)

    def resolve(self, file_name: str, session_id: str) -> StoreMatch:
        """Match by transcript file name first, then by derived session id."""
        direct = self.by_file_name.get(file_name)
        if direct is not None:
            return direct
        by_id = self.by_session_id.get(session_id)
        if by_id is not None:
            return by_id
        return StoreMatch()


def split_session_file_name(file_name: str) -> tuple[str, str]:
    """Return ``(stem, session_id)`` for a transcript file name.

    Example:
      "abc123-topic-42.jsonl" -> ("abc123-topic-42", "abc123")
    """
    stem = file_name[: -len(TRANSCRIPT_SUFFIX)] if file_name.endswith(TRANSCRIPT_SUFFIX) else file_name
    return stem, _TOPIC_SUFFIX_PATTERN.sub("", stem)


def _load_store(store_path: Path) -> dict[str, Any]:
    try:
        data = json.loads(store_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, ValueError) as exc:
        logger.warning("Unreadable session store %s: %s", store_path, exc)
        return {}
    return data if isinstance(data, dict) else {}


def build_store_index(sessions_dir: Path) -> StoreIndex:
    store_path = sessions_dir / STORE_FILE_NAME
    index = StoreIndex(store_path=store_path)

    for key, raw_entry in _load_store(store_path).items():
        if not isinstance(raw_entry, dict):
            continue
        match = StoreMatch(key=key, entry=raw_entry)
        session_file = raw_entry.get("sessionFile")
        if isinstance(session_file, str) and session_file.strip():
            index.by_file_name.setdefault(PurePath(session_file).name, match)
        session_id = raw_entry.get("sessionId")
        if isinstance(session_id, str) and session_id.strip():
            index.by_session_id.setdefault(session_id, match)
    return index
