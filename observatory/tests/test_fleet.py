import unittest

from observatory.models import (
    ContextWeight,
    DailyBucket,
    LatencyStats,
    MessageCounts,
    ModelUsage,
    SessionSummary,
    ToolCount,
    ToolUsage,
    UsageTotals,
)
from observatory.services.fleet import aggregate_sessions


def _session(
    name: str,
    *,
    agent: str = "main",
    channel: str | None = None,
    tokens: int = 0,
    cost: float = 0.0,
    latency: LatencyStats | None = None,
    daily: list[DailyBucket] | None = None,
    models: list[ModelUsage] | None = None,
    tools: list[ToolCount] | None = None,
    context: ContextWeight | None = None,
) -> SessionSummary:
    return SessionSummary(
        id=f"{agent}:{name}",
        key=f"agent:{agent}:{name}",
        agentId=agent,
        sessionId=name,
        fileName=f"{name}.jsonl",
        filePath=f"/state/agents/{agent}/sessions/{name}.jsonl",
        channel=channel,
        totals=UsageTotals(totalTokens=tokens, totalCost=cost, input=tokens),
        messageCounts=MessageCounts(total=2, user=1, assistant=1, errors=0),
        latency=latency,
        daily=daily or [],
        modelUsage=models or [],
        toolUsage=ToolUsage(tools=tools or []),
        contextWeight=context,
    )


def _model(provider: str, model: str, *, tokens: int, cost: float, count: int = 1) -> ModelUsage:
    return ModelUsage(provider=provider, model=model, count=count, totals=UsageTotals(totalTokens=tokens, totalCost=cost))


class FleetAggregatorTests(unittest.TestCase):
    def test_filters_by_agent_and_channel(self) -> None:
        sessions = [
            _session("a", agent="main", channel="telegram", tokens=10),
            _session("b", agent="main", channel=None, tokens=20),
            _session("c", agent="ops", channel="telegram", tokens=40),
        ]

        by_agent = aggregate_sessions(sessions, agent="main")
        by_channel = aggregate_sessions(sessions, channel="telegram")
        both = aggregate_sessions(sessions, agent="ops", channel="telegram")

        self.assertEqual([s.sessionId for s in by_agent.filtered], ["a", "b"])
        self.assertEqual([s.sessionId for s in by_channel.filtered], ["a", "c"])
        self.assertEqual(both.totals.totalTokens, 40)
        self.assertEqual(aggregate_sessions(sessions).messages.total, 6)

    def test_rankings_sort_by_cost_then_tokens(self) -> None:
        sessions = [
            _session("a", agent="cheap", tokens=900, cost=0.1),
            _session("b", agent="pricey", tokens=10, cost=2.0),
            _session("c", agent="tied", tokens=950, cost=0.1),
        ]

        result = aggregate_sessions(sessions)

        self.assertEqual([row.agentId for row in result.aggregates.byAgent], ["pricey", "tied", "cheap"])
        self.assertEqual(result.aggregates.byChannel[0].channel, "unknown")
        self.assertEqual(result.aggregates.byChannel[0].sessions, 3)

    def test_model_and_provider_rows_merge_across_sessions(self) -> None:
        sessions = [
            _session(
                "a",
                models=[
                    _model("anthropic", "claude-opus-4-5", tokens=100, cost=1.0, count=2),
                    _model("openai", "gpt-5", tokens=50, cost=0.2),
                ],
            ),
            _session("b", models=[_model("anthropic", "claude-opus-4-5", tokens=30, cost=0.5)]),
            _session("c", models=[_model("anthropic", "claude-sonnet-4", tokens=5, cost=0.01)]),
        ]

        aggregates = aggregate_sessions(sessions).aggregates

        top = aggregates.byModel[0]
        self.assertEqual(top.model, "claude-opus-4-5")
        self.assertEqual(top.count, 3)
        self.assertEqual(top.sessions, 2)
        self.assertEqual(top.totals.totalTokens, 130)
        self.assertEqual(top.displayName, "Anthropic claude-opus-4.5")
        self.assertEqual([row.provider for row in aggregates.byProvider], ["anthropic", "openai"])
        self.assertEqual(aggregates.byProvider[0].sessions, 3)

    def test_tools_sum_and_rank_by_count(self) -> None:
        sessions = [
            _session("a", tools=[ToolCount(name="Read", count=2), ToolCount(name="Bash", count=1)]),
            _session("b", tools=[ToolCount(name="Bash", count=4)]),
        ]

        tools = aggregate_sessions(sessions).aggregates.tools

        self.assertEqual([(tool.name, tool.count) for tool in tools], [("Bash", 5), ("Read", 2)])

    def test_latency_is_count_weighted(self) -> None:
        sessions = [
            _session("a", latency=LatencyStats(count=1, avgMs=100, p95Ms=100, minMs=100, maxMs=100)),
            _session("b", latency=LatencyStats(count=3, avgMs=300, p95Ms=500, minMs=50, maxMs=600)),
            _session("c"),
        ]

        latency = aggregate_sessions(sessions).latency

        assert latency is not None
        self.assertEqual(latency.count, 4)
        self.assertEqual(latency.avgMs, 250)
        self.assertEqual(latency.minMs, 50)
        self.assertEqual(latency.maxMs, 600)
        self.assertEqual(latency.p95Ms, 500)
        self.assertIsNone(aggregate_sessions([_session("x")]).latency)

    def test_daily_series_merges_and_sorts(self) -> None:
        day_latency = LatencyStats(count=2, avgMs=10, p95Ms=12, minMs=8, maxMs=12)
        sessions = [
            _session("a", daily=[DailyBucket(date="2026-02-16", tokens=5, cost=0.5, messages=1, latency=day_latency)]),
            _session(
                "b",
                daily=[
                    DailyBucket(date="2026-02-15", tokens=7, messages=2),
                    DailyBucket(date="2026-02-16", tokens=3, errors=1),
                ],
            ),
        ]

        daily = aggregate_sessions(sessions).aggregates.daily

        self.assertEqual([day.date for day in daily], ["2026-02-15", "2026-02-16"])
        self.assertEqual(daily[1].tokens, 8)
        self.assertEqual(daily[1].errors, 1)
        self.assertIsNone(daily[0].latency)
        assert daily[1].latency is not None
        self.assertEqual(daily[1].latency.count, 2)

    def test_context_rows_require_system_prompt_chars(self) -> None:
        sessions = [
            _session("small", context=ContextWeight(systemPrompt={"chars": 100}, skills={"promptChars": 7})),
            _session("large", context=ContextWeight(systemPrompt={"chars": 900, "projectContextChars": 400}, tools={"schemaChars": 50})),
            _session("empty", context=ContextWeight(systemPrompt={"chars": 0})),
            _session("none"),
        ]

        context = aggregate_sessions(sessions).aggregates.context

        self.assertEqual([row.id for row in context], ["main:large", "main:small"])
        self.assertEqual(context[0].projectChars, 400)
        self.assertEqual(context[0].toolsSchemaChars, 50)
        self.assertEqual(context[1].skillsChars, 7)


if __name__ == "__main__":
    unittest.main()
