"""Build leveled operator alerts from fleet totals, corpus stats and anomalies."""
from __future__ import annotations

from observatory.date_utils import DAY_MS
from observatory.models import Alert, Anomalies, CorpusStats, MessageCounts, SessionSummary, UsageTotals
from observatory.stats import percent

ERROR_RATE_WARN_PCT = 5.0
CACHE_SHARE_INFO_PCT = 5.0
CACHE_SHARE_MIN_TOKENS = 5000
STALE_SESSION_DAYS = 14
LARGE_CORPUS_FILES = 1000


def count_stale_sessions(sessions: list[SessionSummary], now_ms: int) -> int:
    cutoff = STALE_SESSION_DAYS * DAY_MS
    stale = 0
    for session in sessions:
        ts = session.updatedAt if session.updatedAt is not None else session.lastActivity
        if ts and now_ms - ts >= cutoff:
            stale += 1
    return stale


def build_alerts(
    *,
    totals: UsageTotals,
    messages: MessageCounts,
    sessions: list[SessionSummary],
    memory: CorpusStats,
    anomalies: Anomalies,
    now_ms: int,
) -> list[Alert]:
    """Every rule is evaluated independently; output order is fixed."""
    alerts: list[Alert] = []

    error_rate = percent(messages.errors, messages.total)
    if error_rate >= ERROR_RATE_WARN_PCT:
        alerts.append(
            Alert(
                level="warn",
                title="Error Rate Elevated",
                message=f"Current error rate is {error_rate:.1f}%, above 5%.",
            )
        )

    cache_share = percent(totals.cacheRead, totals.totalTokens)
    if cache_share < CACHE_SHARE_INFO_PCT and totals.totalTokens > CACHE_SHARE_MIN_TOKENS:
        alerts.append(
            Alert(
                level="info",
                title="Low Cache Read Share",
                message=f"Cache read share is {cache_share:.1f}%; prompt reuse opportunities may exist.",
            )
        )

    stale = count_stale_sessions(sessions, now_ms)
    if stale > 0:
        alerts.append(
            Alert(
                level="info",
                title="Stale Sessions Present",
                message=f"{stale} sessions have not been updated in {STALE_SESSION_DAYS}+ days.",
            )
        )

    if memory.exists and memory.fileCount > LARGE_CORPUS_FILES:
        alerts.append(
            Alert(
                level="warn",
                title="Large Memory Corpus",
                message=f"Memory directory has {memory.fileCount} files; indexing/search may slow down.",
            )
        )

    for spike in anomalies.tokenSpikes:
        alerts.append(
            Alert(
                level="warn",
                title="Token Spike Detected",
                message=f"{spike.date}: {round(spike.tokens):,} tokens ({spike.ratio:.2f}x baseline).",
            )
        )

    jitter = anomalies.latencyJitter
    if jitter is not None:
        alerts.append(
            Alert(
                level="warn",
                title="Latency Jitter Detected",
                message=(
                    f"Latency variability high (CV {jitter.coefficientOfVariation * 100:.1f}%, "
                    f"p95/avg {jitter.globalP95ToAvgRatio:.2f}x)."
                ),
            )
        )

    if anomalies.modelSwitching:
        count = len(anomalies.modelSwitching)
        plural = "" if count == 1 else "s"
        alerts.append(
            Alert(
                level="info",
                title="Model Switching Sessions",
                message=f"{count} session{plural} switched model/provider in the current window.",
            )
        )

    return alerts
