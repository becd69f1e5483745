"""Parse per-agent JSONL transcripts into SessionSummary models."""
from __future__ import annotations

import json
import logging
from collections import Counter, defaultdict, deque
from pathlib import Path
from typing import Any

from observatory.date_utils import day_key_from_ms
from observatory.model_identity import is_known_model_key, model_display_name, model_key
from observatory.models import (
    ContextWeight,
    DailyBucket,
    MessageCounts,
    ModelUsage,
    PreviewEntry,
    SessionSummary,
    TimelineEvent,
    TimeRange,
    ToolCount,
    ToolUsage,
    UsageTotals,
    WaterfallSpan,
)
from observatory.parsers.buffers import RecentBuffer
from observatory.parsers.records import (
    PREVIEW_SNIPPET_CHARS,
    TIMELINE_SNIPPET_CHARS,
    NormalizedRecord,
    as_record,
    normalize_record,
    to_finite,
    trim_snippet,
)
from observatory.parsers.session_store import StoreIndex, StoreMatch, split_session_file_name
from observatory.stats import compute_latency_stats, sort_by_cost_then_tokens

logger = logging.getLogger("observatory.parsers")

DEFAULT_TIMELINE_LIMIT = 240
PREVIEW_LIMIT = 8


class SessionFold:
    """Running folds over the normalized records of one transcript."""

    def __init__(self, timeline_limit: int = DEFAULT_TIMELINE_LIMIT):
        self.totals = UsageTotals()
        self.messages = MessageCounts()
        self.tool_counts: Counter[str] = Counter()
        self.models: dict[str, ModelUsage] = {}
        self.daily: dict[str, DailyBucket] = {}
        self.daily_latencies: dict[str, list[float]] = defaultdict(list)
        self.latencies: list[float] = []
        self.preview: deque[PreviewEntry] = deque(maxlen=PREVIEW_LIMIT)
        self.timeline: RecentBuffer[TimelineEvent] = RecentBuffer(timeline_limit)
        self.waterfall: RecentBuffer[WaterfallSpan] = RecentBuffer(timeline_limit)
        self.activity_dates: set[str] = set()
        self.first_activity: int | None = None
        self.last_activity: int | None = None
        self.last_user_ts: int | None = None
        self.previous_assistant_key: str | None = None
        self.model_switches = 0

    def _day_bucket(self, timestamp_ms: int | None) -> DailyBucket | None:
        if timestamp_ms is None:
            return None
        day_key = day_key_from_ms(timestamp_ms)
        bucket = self.daily.get(day_key)
        if bucket is None:
            bucket = DailyBucket(date=day_key)
            self.daily[day_key] = bucket
        return bucket

    def _track_activity(self, timestamp_ms: int | None) -> None:
        if timestamp_ms is None:
            return
        if self.first_activity is None or timestamp_ms < self.first_activity:
            self.first_activity = timestamp_ms
        if self.last_activity is None or timestamp_ms > self.last_activity:
            self.last_activity = timestamp_ms
        self.activity_dates.add(day_key_from_ms(timestamp_ms))

    def _apply_usage(self, record: NormalizedRecord, day: DailyBucket | None) -> float | None:
        usage = record.usage
        if usage is None:
            return None

        self.totals.apply_usage(usage)
        if day is not None:
            day.tokens += usage.total

        key = model_key(record.provider, record.model)
        bucket = self.models.get(key)
        if bucket is None:
            bucket = ModelUsage(provider=record.provider, model=record.model)
            self.models[key] = bucket
        bucket.count += 1
        bucket.totals.apply_usage(usage)

        if record.cost_breakdown is not None:
            self.totals.apply_breakdown(record.cost_breakdown)
            bucket.totals.apply_breakdown(record.cost_breakdown)
        else:
            self.totals.apply_cost_total(record.flat_cost)
            bucket.totals.apply_cost_total(record.flat_cost)

        cost = record.cost_total
        if day is not None and cost is not None:
            day.cost += cost
        return cost

    def _resolve_latency(self, record: NormalizedRecord) -> float | None:
        if record.duration_ms is not None:
            return max(0.0, record.duration_ms)
        if (
            record.role == "assistant"
            and record.timestamp_ms is not None
            and self.last_user_ts is not None
        ):
            return max(0, record.timestamp_ms - self.last_user_ts)
        return None

    def _track_model_switch(self, record: NormalizedRecord) -> None:
        if record.role != "assistant":
            return
        key = model_key(record.provider, record.model)
        if not is_known_model_key(key):
            return
        if self.previous_assistant_key is not None and key != self.previous_assistant_key:
            self.model_switches += 1
        self.previous_assistant_key = key

    def apply(self, record: NormalizedRecord) -> None:
        ts = record.timestamp_ms
        role = record.role
        self._track_activity(ts)
        day = self._day_bucket(ts)

        if role in ("user", "assistant"):
            self.messages.total += 1
            if role == "user":
                self.messages.user += 1
            else:
                self.messages.assistant += 1
            if day is not None:
                day.messages += 1

        if role == "user" and ts is not None:
            self.last_user_ts = ts

        tools = record.tools
        if tools.names:
            self.messages.toolCalls += len(tools.names)
            if day is not None:
                day.toolCalls += len(tools.names)
            self.tool_counts.update(tools.names)
        if tools.results:
            self.messages.toolResults += tools.results
            self.messages.errors += tools.errors
            if day is not None:
                day.errors += tools.errors

        if record.stop_reason_is_error:
            self.messages.errors += 1
            if day is not None:
                day.errors += 1

        cost = self._apply_usage(record, day)

        latency = self._resolve_latency(record)
        if role == "assistant" and latency is not None:
            self.latencies.append(latency)
            if day is not None:
                self.daily_latencies[day.date].append(latency)

        self._track_model_switch(record)

        tokens = record.usage.total if record.usage else 0
        if ts is not None and role:
            self.timeline.push(
                ts,
                TimelineEvent(
                    timestamp=ts,
                    role=role,
                    provider=record.provider,
                    model=record.model,
                    tokens=tokens,
                    inputTokens=record.usage.input if record.usage else 0,
                    outputTokens=record.usage.output if record.usage else 0,
                    cost=cost,
                    durationMs=latency,
                    toolCalls=len(tools.names),
                    toolResults=tools.results,
                    isError=record.is_error,
                    stopReason=record.stop_reason,
                    text=trim_snippet(record.text, TIMELINE_SNIPPET_CHARS),
                ),
            )

        if role == "assistant" and ts is not None and self.last_user_ts is not None:
            start_ts = min(self.last_user_ts, ts)
            self.waterfall.push(
                start_ts,
                WaterfallSpan(
                    startTs=start_ts,
                    endTs=ts,
                    latencyMs=max(0, ts - self.last_user_ts),
                    provider=record.provider,
                    model=record.model,
                    tokens=tokens,
                    cost=cost,
                    error=record.is_error,
                ),
            )

        if role:
            text = trim_snippet(record.text, PREVIEW_SNIPPET_CHARS)
            if text:
                self.preview.append(PreviewEntry(timestamp=ts, role=role, text=text))

    def daily_buckets(self) -> list[DailyBucket]:
        buckets = []
        for day_key in sorted(self.daily):
            bucket = self.daily[day_key]
            bucket.latency = compute_latency_stats(self.daily_latencies.get(day_key, []))
            buckets.append(bucket)
        return buckets

    def tool_usage(self) -> ToolUsage:
        return ToolUsage(
            totalCalls=sum(self.tool_counts.values()),
            uniqueTools=len(self.tool_counts),
            tools=[ToolCount(name=name, count=count) for name, count in self.tool_counts.most_common()],
        )

    def model_usage(self) -> list[ModelUsage]:
        for usage in self.models.values():
            usage.displayName = model_display_name(usage.provider, usage.model)
        return sort_by_cost_then_tokens(self.models.values())


def _text_field(entry: dict[str, Any], key: str) -> str | None:
    value = entry.get(key)
    return value if isinstance(value, str) else None


def _context_weight(report: Any) -> ContextWeight | None:
    report = as_record(report)
    if report is None:
        return None
    return ContextWeight(
        source=report.get("source"),
        generatedAt=report.get("generatedAt"),
        systemPrompt=as_record(report.get("systemPrompt")),
        skills=as_record(report.get("skills")),
        tools=as_record(report.get("tools")),
    )


def _summarize(
    fold: SessionFold,
    *,
    path: Path,
    agent_id: str,
    match: StoreMatch,
    mtime_ms: float,
) -> SessionSummary:
    stem, session_id = split_session_file_name(path.name)
    entry = match.entry or {}
    origin = as_record(entry.get("origin")) or {}
    updated_at = to_finite(entry.get("updatedAt"))
    duration_ms = None
    if fold.first_activity is not None and fold.last_activity is not None:
        duration_ms = max(0, fold.last_activity - fold.first_activity)

    return SessionSummary(
        id=f"{agent_id}:{stem}",
        key=match.key or f"agent:{agent_id}:{stem}",
        agentId=agent_id,
        sessionId=session_id,
        fileName=path.name,
        filePath=str(path),
        label=_text_field(entry, "label"),
        channel=_text_field(entry, "channel") or _text_field(origin, "provider"),
        chatType=_text_field(entry, "chatType") or _text_field(origin, "chatType"),
        updatedAt=updated_at if updated_at is not None else mtime_ms,
        firstActivity=fold.first_activity,
        lastActivity=fold.last_activity,
        durationMs=duration_ms,
        totals=fold.totals,
        messageCounts=fold.messages,
        toolUsage=fold.tool_usage(),
        modelUsage=fold.model_usage(),
        latency=compute_latency_stats(fold.latencies),
        daily=fold.daily_buckets(),
        contextWeight=_context_weight(entry.get("systemPromptReport")),
        systemPromptReport=as_record(entry.get("systemPromptReport")),
        memoryFlushAt=to_finite(entry.get("memoryFlushAt")),
        memoryFlushCompactionCount=to_finite(entry.get("memoryFlushCompactionCount")),
        modelOverride=_text_field(entry, "modelOverride"),
        providerOverride=_text_field(entry, "providerOverride"),
        preview=list(fold.preview),
        timeline=fold.timeline.items(),
        waterfall=fold.waterfall.items(),
        modelSwitches=fold.model_switches,
        uniqueModels=len(fold.models),
        activityDates=sorted(fold.activity_dates),
    )


def parse_session_file(
    path: Path,
    *,
    agent_id: str,
    store_index: StoreIndex | None = None,
    time_range: TimeRange | None = None,
    timeline_limit: int = DEFAULT_TIMELINE_LIMIT,
) -> SessionSummary:
    """Stream one transcript and fold it into a SessionSummary.

    Undecodable lines are skipped. I/O failures propagate so the caller can
    skip the whole file.
    """
    mtime_ms = path.stat().st_mtime * 1000
    _, session_id = split_session_file_name(path.name)
    match = store_index.resolve(path.name, session_id) if store_index else StoreMatch()

    fold = SessionFold(timeline_limit)
    skipped_lines = 0
    with path.open("r", encoding="utf-8", errors="replace") as handle:
        for raw_line in handle:
            line = raw_line.strip()
            if not line:
                continue
            try:
                parsed = json.loads(line)
            except (ValueError, RecursionError):
                skipped_lines += 1
                continue
            record = normalize_record(parsed)
            if record is None:
                skipped_lines += 1
                continue
            if time_range is not None and not time_range.contains(record.timestamp_ms):
                continue
            fold.apply(record)

    if skipped_lines:
        logger.debug("Skipped %d undecodable lines in %s", skipped_lines, path)
    return _summarize(fold, path=path, agent_id=agent_id, match=match, mtime_ms=mtime_ms)
