"""Collection orchestrator: scan agents, parse transcripts, aggregate, detect."""
from __future__ import annotations

import asyncio
import logging
import math
import time
from pathlib import Path
from typing import Any

from observatory import config
from observatory.date_utils import DAY_MS, MIN_TIMESTAMP_MS, ms_to_iso, now_ms as current_ms
from observatory.models import (
    CollectOptions,
    FilterOptions,
    Filters,
    MetricsPayload,
    SelectedFilters,
    SessionSummary,
    SkippedFile,
    SummaryKpis,
    TimeRange,
)
from observatory.observability import (
    record_collection,
    record_parser_failure,
    record_usage_snapshot,
    start_span,
)
from observatory.parsers.corpus import scan_corpus
from observatory.parsers.session_store import TRANSCRIPT_SUFFIX, build_store_index
from observatory.parsers.sessions import parse_session_file
from observatory.services.alerts import build_alerts
from observatory.services.anomalies import build_anomalies
from observatory.services.fleet import aggregate_sessions
from observatory.stats import percent, sort_by_cost_then_tokens

logger = logging.getLogger("observatory.collector")

ALL_DAYS = "all"


def resolve_state_dir(state_dir: str | None) -> Path:
    if state_dir:
        return Path(state_dir).expanduser().resolve()
    return config.STATE_DIR


def resolve_workspace_dir(workspace_dir: str | None, state_dir: Path) -> Path:
    if workspace_dir:
        return Path(workspace_dir).expanduser().resolve()
    if config.WORKSPACE_DIR is not None:
        return config.WORKSPACE_DIR
    return state_dir / "workspace"


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def coerce_limit(value: Any, default: int) -> int:
    """Positive finite limits pass through (truncated); anything else is the default."""
    number = _as_number(value)
    if number is None or number <= 0:
        return default
    return max(1, int(number))


def coerce_days(value: Any) -> float | None:
    """Return the window length in days, or None for the unbounded ``"all"`` window."""
    if isinstance(value, str) and value.strip().lower() == ALL_DAYS:
        return None
    number = _as_number(value)
    if number is None or number <= 0:
        return float(config.DEFAULT_DAYS)
    return number


def build_time_range(days: float | None, end_ms: int) -> TimeRange:
    if days is None:
        return TimeRange(days=ALL_DAYS, startMs=None, endMs=end_ms, startIso=None, endIso=ms_to_iso(end_ms))
    # windows reaching past year 1 start at the earliest representable instant
    start_ms = max(MIN_TIMESTAMP_MS, int(end_ms - days * DAY_MS))
    echoed_days: int | float = int(days) if days.is_integer() else days
    return TimeRange(
        days=echoed_days,
        startMs=start_ms,
        endMs=end_ms,
        startIso=ms_to_iso(start_ms),
        endIso=ms_to_iso(end_ms),
    )


def _clean_filter(value: str | None) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def list_agents(state_dir: Path) -> list[str]:
    agents_dir = state_dir / "agents"
    try:
        return sorted(entry.name for entry in agents_dir.iterdir() if entry.is_dir())
    except OSError:
        return []


def list_session_files(sessions_dir: Path) -> list[Path]:
    try:
        return sorted(
            (entry for entry in sessions_dir.iterdir() if entry.is_file() and entry.name.endswith(TRANSCRIPT_SUFFIX)),
            key=lambda entry: entry.name,
        )
    except OSError:
        return []


async def collect_sessions(
    state_dir: Path,
    *,
    time_range: TimeRange,
    timeline_limit: int,
) -> tuple[list[str], list[SessionSummary], list[SkippedFile]]:
    """Parse every transcript, one file at a time, agent by agent.

    A file that fails to parse is logged, counted and skipped.
    """
    agents = list_agents(state_dir)
    sessions: list[SessionSummary] = []
    skipped: list[SkippedFile] = []

    for agent_id in agents:
        sessions_dir = state_dir / "agents" / agent_id / "sessions"
        files = list_session_files(sessions_dir)
        if not files:
            continue
        store_index = build_store_index(sessions_dir)

        for file_path in files:
            try:
                summary = await asyncio.to_thread(
                    parse_session_file,
                    file_path,
                    agent_id=agent_id,
                    store_index=store_index,
                    time_range=time_range,
                    timeline_limit=timeline_limit,
                )
            except Exception as exc:  # noqa: BLE001
                logger.warning("Skipping transcript %s/%s: %s", agent_id, file_path.name, exc)
                record_parser_failure("session", agent_id=agent_id)
                skipped.append(SkippedFile(agentId=agent_id, fileName=file_path.name, error=str(exc)))
                continue
            sessions.append(summary)

    sessions.sort(key=lambda session: session.updatedAt or 0, reverse=True)
    return agents, sessions, skipped


def _record_usage_metrics(sessions: list[SessionSummary]) -> None:
    """Publish per agent/model totals of this snapshot as gauges."""
    snapshot: dict[tuple[str, str], list[float]] = {}
    for session in sessions:
        for usage in session.modelUsage:
            row = snapshot.setdefault((session.agentId, usage.model or "unknown"), [0, 0, 0.0])
            row[0] += usage.totals.input
            row[1] += usage.totals.output
            row[2] += usage.totals.totalCost
    for (agent_id, model), (token_input, token_output, cost_usd) in sorted(snapshot.items()):
        record_usage_snapshot(
            agent_id=agent_id,
            model=model,
            token_input=int(token_input),
            token_output=int(token_output),
            cost_usd=cost_usd,
        )


async def collect_metrics(options: CollectOptions | None = None, *, now_ms: int | None = None) -> MetricsPayload:
    """Run one full collection and return the dashboard payload.

    ``now_ms`` pins the end of the time window; it defaults to the wall clock.
    """
    options = options or CollectOptions()
    started = time.monotonic()
    end_ms = now_ms if now_ms is not None else current_ms()

    state_dir = resolve_state_dir(options.stateDir)
    workspace_dir = resolve_workspace_dir(options.workspaceDir, state_dir)
    time_range = build_time_range(coerce_days(options.days), end_ms)
    session_limit = coerce_limit(options.sessionLimit, config.DEFAULT_SESSION_LIMIT)
    memory_limit = coerce_limit(options.memoryLimit, config.DEFAULT_CORPUS_FILE_LIMIT)
    timeline_limit = coerce_limit(options.timelineLimit, config.DEFAULT_EVENT_LIMIT)
    selected = SelectedFilters(agent=_clean_filter(options.agent), channel=_clean_filter(options.channel))

    try:
        with start_span(
            "observatory.collect",
            {
                "observatory.days": str(time_range.days),
                "observatory.agent": selected.agent,
                "observatory.channel": selected.channel,
            },
        ):
            agents, sessions, skipped = await collect_sessions(
                state_dir,
                time_range=time_range,
                timeline_limit=timeline_limit,
            )
            fleet = aggregate_sessions(sessions, agent=selected.agent, channel=selected.channel)
            memory = await asyncio.to_thread(scan_corpus, workspace_dir, memory_limit)
            anomalies = build_anomalies(fleet.aggregates.daily, fleet.filtered, fleet.latency)
            alerts = build_alerts(
                totals=fleet.totals,
                messages=fleet.messages,
                sessions=fleet.filtered,
                memory=memory,
                anomalies=anomalies,
                now_ms=end_ms,
            )
    except Exception:
        record_collection("error", (time.monotonic() - started) * 1000)
        raise

    channels = sorted({session.channel for session in sessions if session.channel})
    payload = MetricsPayload(
        generatedAt=current_ms() if now_ms is None else now_ms,
        stateDir=str(state_dir),
        workspaceDir=str(workspace_dir),
        range=time_range,
        filters=Filters(selected=selected, options=FilterOptions(agents=agents, channels=channels)),
        summary=SummaryKpis(
            sessionsScanned=len(sessions),
            sessionsInScope=len(fleet.filtered),
            totalTokens=fleet.totals.totalTokens,
            totalCost=fleet.totals.totalCost,
            cacheReadSharePct=percent(fleet.totals.cacheRead, fleet.totals.totalTokens),
            errorRatePct=percent(fleet.messages.errors, fleet.messages.total),
            avgLatencyMs=fleet.latency.avgMs if fleet.latency else None,
            p95LatencyMs=fleet.latency.p95Ms if fleet.latency else None,
        ),
        totals=fleet.totals,
        messages=fleet.messages,
        latency=fleet.latency,
        aggregates=fleet.aggregates,
        sessions=sort_by_cost_then_tokens(fleet.filtered)[:session_limit],
        memory=memory,
        anomalies=anomalies,
        alerts=alerts,
        skippedFiles=skipped,
    )

    elapsed_ms = (time.monotonic() - started) * 1000
    _record_usage_metrics(fleet.filtered)
    record_collection("success", elapsed_ms, sessions=len(sessions))
    logger.info(
        "Collected metrics: %d sessions scanned, %d in scope, %d skipped in %.0f ms",
        len(sessions),
        len(fleet.filtered),
        len(skipped),
        elapsed_ms,
    )
    return payload
