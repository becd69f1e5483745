import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from observatory import config
from observatory.date_utils import DAY_MS, MIN_TIMESTAMP_MS, ms_to_iso
from observatory.models import CollectOptions
from observatory.services import collector

T0 = 1771236000000  # 2026-02-16T10:00:00Z
NOW = T0 + 60 * 60 * 1000
OLD = T0 - 10 * DAY_MS


def _line(ts: int, role: str, **message) -> str:
    return json.dumps({"timestamp": ms_to_iso(ts), "message": {"role": role, "content": f"{role} text", **message}})


class CoercionTests(unittest.TestCase):
    def test_coerce_days(self) -> None:
        self.assertIsNone(collector.coerce_days("all"))
        self.assertEqual(collector.coerce_days("7"), 7.0)
        self.assertEqual(collector.coerce_days(1.5), 1.5)
        with patch.object(config, "DEFAULT_DAYS", 30):
            self.assertEqual(collector.coerce_days(None), 30.0)
            self.assertEqual(collector.coerce_days("soon"), 30.0)
            self.assertEqual(collector.coerce_days(-3), 30.0)
            self.assertEqual(collector.coerce_days(float("nan")), 30.0)

    def test_coerce_limit(self) -> None:
        self.assertEqual(collector.coerce_limit(12.7, 250), 12)
        self.assertEqual(collector.coerce_limit(None, 250), 250)
        self.assertEqual(collector.coerce_limit(0, 250), 250)
        self.assertEqual(collector.coerce_limit(float("inf"), 250), 250)
        self.assertEqual(collector.coerce_limit(True, 250), 250)

    def test_time_range(self) -> None:
        bounded = collector.build_time_range(7.0, T0)
        self.assertEqual(bounded.days, 7)
        self.assertEqual(bounded.startMs, T0 - 7 * DAY_MS)
        self.assertEqual(bounded.endIso, "2026-02-16T10:00:00.000Z")

        unbounded = collector.build_time_range(None, T0)
        self.assertEqual(unbounded.days, "all")
        self.assertIsNone(unbounded.startMs)
        self.assertIsNone(unbounded.startIso)

        huge = collector.build_time_range(1_000_000.0, T0)
        self.assertEqual(huge.days, 1_000_000)
        self.assertEqual(huge.startMs, MIN_TIMESTAMP_MS)
        self.assertEqual(huge.startIso, "0001-01-01T00:00:00.000Z")

    def test_directory_resolution_prefers_explicit_options(self) -> None:
        with patch.object(config, "STATE_DIR", Path("/configured/state")), patch.object(config, "WORKSPACE_DIR", None):
            state_dir = collector.resolve_state_dir(None)
            self.assertEqual(state_dir, Path("/configured/state"))
            self.assertEqual(collector.resolve_workspace_dir(None, state_dir), Path("/configured/state/workspace"))
            self.assertEqual(collector.resolve_state_dir("/explicit"), Path("/explicit").resolve())


class CollectorTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.state_dir = Path(tmpdir.name) / "state"

        main_dir = self._sessions_dir("main")
        (main_dir / "sessions.json").write_text(
            json.dumps({"agent:main:s1": {"sessionId": "s1", "channel": "telegram", "updatedAt": T0}}),
            encoding="utf-8",
        )
        self._write(
            main_dir / "s1.jsonl",
            [
                _line(OLD, "user"),
                _line(OLD + 1000, "assistant", model="claude-opus-4", provider="anthropic", usage={"input": 1000}, costTotal=0.5),
                _line(T0, "user"),
                _line(T0 + 2000, "assistant", model="claude-opus-4", provider="anthropic", usage={"input": 100, "output": 20}, costTotal=0.1),
            ],
        )
        self._write(
            main_dir / "s2.jsonl",
            [_line(T0, "user"), _line(T0 + 500, "assistant", model="gpt-5", provider="openai", usage={"input": 50})],
        )
        self._write(
            self._sessions_dir("ops") / "o1.jsonl",
            [_line(T0, "user"), _line(T0 + 800, "assistant", model="gpt-5", provider="openai", usage={"input": 10})],
        )
        (self.state_dir / "agents" / "ops" / "sessions" / "notes.txt").write_text("ignored", encoding="utf-8")

        memory_dir = self.state_dir / "workspace" / "memory"
        memory_dir.mkdir(parents=True)
        (memory_dir / "today.md").write_text("# Daily log\nshipped the release", encoding="utf-8")

    def _sessions_dir(self, agent_id: str) -> Path:
        path = self.state_dir / "agents" / agent_id / "sessions"
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _write(self, path: Path, lines: list[str]) -> None:
        path.write_text("\n".join(lines), encoding="utf-8")

    def _options(self, **overrides) -> CollectOptions:
        return CollectOptions(stateDir=str(self.state_dir), **overrides)

    async def test_collects_full_payload(self) -> None:
        payload = await collector.collect_metrics(self._options(days="all"), now_ms=NOW)

        self.assertEqual(payload.generatedAt, NOW)
        self.assertEqual(payload.stateDir, str(self.state_dir.resolve()))
        self.assertEqual(payload.workspaceDir, str(self.state_dir.resolve() / "workspace"))
        self.assertEqual(payload.range.days, "all")
        self.assertEqual(payload.filters.options.agents, ["main", "ops"])
        self.assertEqual(payload.filters.options.channels, ["telegram"])
        self.assertEqual(payload.summary.sessionsScanned, 3)
        self.assertEqual(payload.summary.sessionsInScope, 3)
        self.assertEqual(payload.summary.totalTokens, 1180)
        self.assertAlmostEqual(payload.summary.totalCost, 0.6)
        self.assertEqual(payload.totals.missingCostEntries, 2)
        self.assertEqual(payload.messages.total, 8)
        self.assertEqual(payload.sessions[0].sessionId, "s1")
        self.assertEqual(payload.aggregates.byAgent[0].agentId, "main")
        self.assertTrue(payload.memory.exists)
        self.assertEqual(payload.memory.files[0].title, "Daily log")
        self.assertEqual(payload.skippedFiles, [])

    async def test_collection_is_repeatable(self) -> None:
        first = await collector.collect_metrics(self._options(days="30"), now_ms=NOW)
        second = await collector.collect_metrics(self._options(days="30"), now_ms=NOW)
        self.assertEqual(first.model_dump_json(), second.model_dump_json())

    async def test_narrower_window_never_grows_scope(self) -> None:
        everything = await collector.collect_metrics(self._options(days="all"), now_ms=NOW)
        recent = await collector.collect_metrics(self._options(days=1), now_ms=NOW)

        self.assertEqual(recent.range.startMs, NOW - DAY_MS)
        self.assertLessEqual(recent.summary.sessionsInScope, everything.summary.sessionsInScope)
        self.assertEqual(recent.summary.totalTokens, 180)
        self.assertLessEqual(recent.summary.totalTokens, everything.summary.totalTokens)

    async def test_very_long_window_covers_everything(self) -> None:
        everything = await collector.collect_metrics(self._options(days="all"), now_ms=NOW)
        long_window = await collector.collect_metrics(self._options(days=1_000_000), now_ms=NOW)

        self.assertEqual(long_window.range.startMs, MIN_TIMESTAMP_MS)
        self.assertEqual(long_window.summary.sessionsInScope, everything.summary.sessionsInScope)
        self.assertEqual(long_window.summary.totalTokens, everything.summary.totalTokens)

    async def test_filters_limit_scope_but_not_scan(self) -> None:
        payload = await collector.collect_metrics(
            self._options(days="all", channel="telegram", sessionLimit=5), now_ms=NOW
        )

        self.assertEqual(payload.filters.selected.channel, "telegram")
        self.assertEqual(payload.summary.sessionsScanned, 3)
        self.assertEqual([session.sessionId for session in payload.sessions], ["s1"])

        ops_only = await collector.collect_metrics(self._options(days="all", agent="ops"), now_ms=NOW)
        self.assertEqual(ops_only.summary.sessionsInScope, 1)
        self.assertEqual(ops_only.summary.totalTokens, 10)

    async def test_session_limit_truncates_ranked_sessions(self) -> None:
        payload = await collector.collect_metrics(self._options(days="all", sessionLimit=2), now_ms=NOW)
        self.assertEqual([session.sessionId for session in payload.sessions], ["s1", "s2"])

    async def test_failing_file_is_skipped_and_reported(self) -> None:
        broken = self.state_dir / "agents" / "main" / "sessions" / "broken.jsonl"
        self._write(broken, [_line(T0, "assistant", usage={"input": 999})])
        real_parse = collector.parse_session_file

        def flaky_parse(path, **kwargs):
            if path.name == "broken.jsonl":
                raise OSError("disk read failed")
            return real_parse(path, **kwargs)

        with patch.object(collector, "parse_session_file", side_effect=flaky_parse):
            with self.assertLogs("observatory.collector", level="WARNING"):
                degraded = await collector.collect_metrics(self._options(days="all"), now_ms=NOW)

        broken.unlink()
        baseline = await collector.collect_metrics(self._options(days="all"), now_ms=NOW)

        self.assertEqual(len(degraded.skippedFiles), 1)
        self.assertEqual(degraded.skippedFiles[0].fileName, "broken.jsonl")
        self.assertEqual(degraded.skippedFiles[0].agentId, "main")
        self.assertEqual(degraded.aggregates.model_dump(), baseline.aggregates.model_dump())
        self.assertEqual(degraded.totals, baseline.totals)

    async def test_usage_gauges_are_set_per_agent_and_model(self) -> None:
        with patch.object(collector, "record_usage_snapshot") as record_snapshot:
            await collector.collect_metrics(self._options(days="all"), now_ms=NOW)
            first_calls = list(record_snapshot.call_args_list)
            record_snapshot.reset_mock()
            await collector.collect_metrics(self._options(days="all"), now_ms=NOW)

        self.assertEqual(record_snapshot.call_args_list, first_calls)
        by_pair = {(call.kwargs["agent_id"], call.kwargs["model"]): call.kwargs for call in first_calls}
        self.assertEqual(sorted(by_pair), [("main", "claude-opus-4"), ("main", "gpt-5"), ("ops", "gpt-5")])
        self.assertEqual(by_pair[("main", "claude-opus-4")]["token_input"], 1100)
        self.assertEqual(by_pair[("main", "claude-opus-4")]["token_output"], 20)
        self.assertAlmostEqual(by_pair[("main", "claude-opus-4")]["cost_usd"], 0.6)

    async def test_failed_collection_is_recorded_as_error(self) -> None:
        with patch.object(collector, "collect_sessions", side_effect=RuntimeError("state dir vanished")), patch.object(
            collector, "record_collection"
        ) as record_collection:
            with self.assertRaises(RuntimeError):
                await collector.collect_metrics(self._options(days="all"), now_ms=NOW)

        record_collection.assert_called_once()
        self.assertEqual(record_collection.call_args.args[0], "error")

    async def test_successful_collection_is_recorded(self) -> None:
        with patch.object(collector, "record_collection") as record_collection:
            await collector.collect_metrics(self._options(days="all"), now_ms=NOW)

        record_collection.assert_called_once()
        self.assertEqual(record_collection.call_args.args[0], "success")
        self.assertEqual(record_collection.call_args.kwargs["sessions"], 3)

    async def test_missing_state_dir_yields_empty_payload(self) -> None:
        payload = await collector.collect_metrics(
            CollectOptions(stateDir=str(self.state_dir / "missing")), now_ms=NOW
        )

        self.assertEqual(payload.summary.sessionsScanned, 0)
        self.assertEqual(payload.filters.options.agents, [])
        self.assertFalse(payload.memory.exists)
        self.assertEqual(payload.range.days, config.DEFAULT_DAYS)


if __name__ == "__main__":
    unittest.main()
