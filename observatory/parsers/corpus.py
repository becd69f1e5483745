"""Scan the workspace memory corpus for size, recency and keyword statistics."""
from __future__ import annotations

import logging
import os
import re
from collections import Counter
from pathlib import Path

from observatory.date_utils import day_key_from_ms
from observatory.models import CorpusStats, KeywordCount, MemoryDayBucket, MemoryFileEntry
from observatory.parsers.records import trim_snippet

logger = logging.getLogger("observatory.corpus")

MEMORY_DIR_NAME = "memory"
MAX_WALK_DEPTH = 6
MIN_FILE_ROWS = 10
KEYWORD_LIMIT = 24
SNIPPET_CHARS = 220
CORPUS_SUFFIXES = {".md", ".mdx", ".txt"}
STOP_WORDS = frozenset(
    {
        "this",
        "that",
        "with",
        "from",
        "have",
        "your",
        "about",
        "session",
        "memory",
        "agent",
        "openclaw",
        "file",
        "note",
        "notes",
    }
)

_HEADING_PREFIX = re.compile(r"^#+\s*")
_HEADING_MARKS = re.compile(r"#+\s*")
_WHITESPACE = re.compile(r"\s+")
_NON_WORD = re.compile(r"[^a-z0-9\s]")


def tokenize_words(text: str) -> list[str]:
    """Lowercased keyword candidates: 4+ chars, stop words removed."""
    cleaned = _NON_WORD.sub(" ", text.lower())
    return [word for word in cleaned.split() if len(word) >= 4 and word not in STOP_WORDS]


def extract_title(content: str, fallback: str) -> str:
    for line in content.splitlines():
        stripped = line.strip()
        if stripped.startswith("#"):
            title = _HEADING_PREFIX.sub("", stripped).strip()
            return title or fallback
    return fallback


def extract_snippet(content: str) -> str:
    flattened = _HEADING_MARKS.sub("", _WHITESPACE.sub(" ", content)).strip()
    return trim_snippet(flattened, SNIPPET_CHARS)


def _walk_corpus_files(memory_dir: Path) -> list[Path]:
    found: list[Path] = []

    def _on_error(exc: OSError) -> None:
        logger.debug("Skipping unreadable corpus directory: %s", exc)

    for root, dirs, files in os.walk(memory_dir, onerror=_on_error):
        root_path = Path(root)
        depth = len(root_path.relative_to(memory_dir).parts)
        if depth >= MAX_WALK_DEPTH:
            dirs[:] = []
        dirs.sort()
        for filename in sorted(files):
            full_path = root_path / filename
            if full_path.is_symlink() or full_path.suffix.lower() not in CORPUS_SUFFIXES:
                continue
            found.append(full_path)
    return found


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        logger.debug("Unreadable corpus file %s: %s", path, exc)
        return ""


def _empty_stats(workspace_dir: Path, memory_dir: Path) -> CorpusStats:
    return CorpusStats(workspaceDir=str(workspace_dir), memoryDir=str(memory_dir), exists=False)


def scan_corpus(workspace_dir: Path, file_limit: int) -> CorpusStats:
    """Walk ``<workspace>/memory`` and summarize every text/markdown file.

    A missing or unreadable memory directory yields ``exists=False`` rather
    than an error.
    """
    memory_dir = workspace_dir / MEMORY_DIR_NAME
    try:
        if not memory_dir.is_dir():
            return _empty_stats(workspace_dir, memory_dir)
        os.listdir(memory_dir)
    except OSError as exc:
        logger.warning("Memory corpus at %s is unreadable: %s", memory_dir, exc)
        return _empty_stats(workspace_dir, memory_dir)

    by_day: dict[str, MemoryDayBucket] = {}
    keywords: Counter[str] = Counter()
    rows: list[MemoryFileEntry] = []
    total_bytes = 0
    newest_ms: float | None = None
    oldest_ms: float | None = None

    for file_path in _walk_corpus_files(memory_dir):
        try:
            stat = file_path.stat()
        except OSError:
            continue

        mtime_ms = stat.st_mtime * 1000
        total_bytes += stat.st_size
        newest_ms = mtime_ms if newest_ms is None else max(newest_ms, mtime_ms)
        oldest_ms = mtime_ms if oldest_ms is None else min(oldest_ms, mtime_ms)

        day_key = day_key_from_ms(mtime_ms)
        bucket = by_day.setdefault(day_key, MemoryDayBucket(date=day_key))
        bucket.files += 1
        bucket.bytes += stat.st_size

        content = _read_text(file_path)
        title = extract_title(content, file_path.name)
        snippet = extract_snippet(content)
        keywords.update(tokenize_words(f"{title} {snippet}"))

        rows.append(
            MemoryFileEntry(
                path=str(file_path),
                relativePath=os.path.relpath(file_path, workspace_dir),
                title=title,
                snippet=snippet,
                size=stat.st_size,
                mtimeMs=mtime_ms,
            )
        )

    rows.sort(key=lambda row: row.mtimeMs, reverse=True)

    return CorpusStats(
        workspaceDir=str(workspace_dir),
        memoryDir=str(memory_dir),
        exists=True,
        fileCount=len(rows),
        totalBytes=total_bytes,
        newestMs=newest_ms,
        oldestMs=oldest_ms,
        byDay=[by_day[key] for key in sorted(by_day)],
        files=rows[: max(MIN_FILE_ROWS, file_limit)],
        keywords=[KeywordCount(word=word, count=count) for word, count in keywords.most_common(KEYWORD_LIMIT)],
    )
