"""Fleet-level aggregation over parsed session summaries."""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from observatory.model_identity import UNKNOWN, model_display_name, model_key
from observatory.models import (
    AgentRow,
    ChannelRow,
    ContextRow,
    DailyBucket,
    FleetAggregates,
    LatencyStats,
    MessageCounts,
    ModelRow,
    ProviderRow,
    SessionSummary,
    ToolCount,
    UsageTotals,
)
from observatory.parsers.records import to_finite
from observatory.stats import WeightedLatency, sort_by_cost_then_tokens


@dataclass
class FleetResult:
    filtered: list[SessionSummary]
    totals: UsageTotals
    messages: MessageCounts
    latency: Optional[LatencyStats]
    aggregates: FleetAggregates


@dataclass
class _DailyAccumulator:
    bucket: DailyBucket
    latency: WeightedLatency = field(default_factory=WeightedLatency)

    def add(self, day: DailyBucket) -> None:
        self.bucket.tokens += day.tokens
        self.bucket.cost += day.cost
        self.bucket.messages += day.messages
        self.bucket.toolCalls += day.toolCalls
        self.bucket.errors += day.errors
        self.latency.add(day.latency)

    def finish(self) -> DailyBucket:
        self.bucket.latency = self.latency.stats()
        return self.bucket


def session_matches(session: SessionSummary, agent: str | None, channel: str | None) -> bool:
    if agent and session.agentId != agent:
        return False
    if channel and (session.channel or "") != channel:
        return False
    return True


def _context_row(session: SessionSummary) -> ContextRow | None:
    weight = session.contextWeight
    system_prompt = weight.systemPrompt if weight else None
    chars = to_finite(system_prompt.get("chars")) if system_prompt else None
    if not chars:
        return None
    skills = weight.skills or {}
    tools = weight.tools or {}
    return ContextRow(
        id=session.id,
        key=session.key,
        label=session.label,
        agentId=session.agentId,
        updatedAt=session.updatedAt,
        chars=chars,
        projectChars=to_finite(system_prompt.get("projectContextChars")),
        nonProjectChars=to_finite(system_prompt.get("nonProjectContextChars")),
        skillsChars=to_finite(skills.get("promptChars")) or 0,
        toolsListChars=to_finite(tools.get("listChars")) or 0,
        toolsSchemaChars=to_finite(tools.get("schemaChars")) or 0,
    )


def aggregate_sessions(
    sessions: list[SessionSummary],
    *,
    agent: str | None = None,
    channel: str | None = None,
) -> FleetResult:
    """Filter sessions by agent/channel and fold them into fleet aggregates.

    Rankings are ordered by cost, then tokens; ties keep the incoming
    session order. Fleet and per-day latency are count-weighted merges of
    the per-session stats.
    """
    filtered = [session for session in sessions if session_matches(session, agent, channel)]

    totals = UsageTotals()
    messages = MessageCounts()
    latency = WeightedLatency()
    tools: Counter[str] = Counter()
    by_model: dict[str, ModelRow] = {}
    by_provider: dict[str, ProviderRow] = {}
    by_agent: dict[str, AgentRow] = {}
    by_channel: dict[str, ChannelRow] = {}
    daily: dict[str, _DailyAccumulator] = {}
    context_rows: list[ContextRow] = []

    for session in filtered:
        totals.merge(session.totals)
        messages.merge(session.messageCounts)
        latency.add(session.latency)

        for tool in session.toolUsage.tools:
            tools[tool.name] += tool.count

        for usage in session.modelUsage:
            key = model_key(usage.provider, usage.model)
            row = by_model.get(key)
            if row is None:
                row = ModelRow(
                    provider=usage.provider,
                    model=usage.model,
                    displayName=model_display_name(usage.provider, usage.model),
                )
                by_model[key] = row
            row.count += usage.count
            row.sessions += 1
            row.totals.merge(usage.totals)

            provider_row = by_provider.setdefault(
                usage.provider or UNKNOWN, ProviderRow(provider=usage.provider)
            )
            provider_row.count += usage.count
            provider_row.sessions += 1
            provider_row.totals.merge(usage.totals)

        agent_row = by_agent.setdefault(session.agentId, AgentRow(agentId=session.agentId))
        agent_row.sessions += 1
        agent_row.totals.merge(session.totals)

        channel_key = session.channel or UNKNOWN
        channel_row = by_channel.setdefault(channel_key, ChannelRow(channel=channel_key))
        channel_row.sessions += 1
        channel_row.totals.merge(session.totals)

        for day in session.daily:
            accumulator = daily.get(day.date)
            if accumulator is None:
                accumulator = _DailyAccumulator(bucket=DailyBucket(date=day.date))
                daily[day.date] = accumulator
            accumulator.add(day)

        row = _context_row(session)
        if row is not None:
            context_rows.append(row)

    aggregates = FleetAggregates(
        daily=[daily[key].finish() for key in sorted(daily)],
        tools=[ToolCount(name=name, count=count) for name, count in tools.most_common()],
        byModel=sort_by_cost_then_tokens(by_model.values()),
        byProvider=sort_by_cost_then_tokens(by_provider.values()),
        byAgent=sort_by_cost_then_tokens(by_agent.values()),
        byChannel=sort_by_cost_then_tokens(by_channel.values()),
        context=sorted(context_rows, key=lambda row: row.chars, reverse=True),
    )
    return FleetResult(
        filtered=filtered,
        totals=totals,
        messages=messages,
        latency=latency.stats(),
        aggregates=aggregates,
    )
