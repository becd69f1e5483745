"""Heuristic anomaly detection over the fleet daily series and sessions."""
from __future__ import annotations

from observatory.model_identity import UNKNOWN
from observatory.models import (
    Anomalies,
    DailyBucket,
    LatencyDay,
    LatencyJitter,
    LatencyStats,
    ModelSwitchSession,
    SessionSummary,
    SwitchedModel,
    TokenSpike,
)
from observatory.stats import mean, sample_stddev

MIN_SERIES_DAYS = 4
MIN_BASELINE_DAYS = 3
SPIKE_TOKEN_FLOOR = 5000
SPIKE_RATIO = 2.3
JITTER_CV = 0.45
JITTER_TAIL_RATIO = 2.2
SWITCHED_MODELS_SHOWN = 8


def detect_token_spikes(daily: list[DailyBucket]) -> list[TokenSpike]:
    """Compare the most recent day against the mean of earlier non-zero days."""
    if len(daily) < MIN_SERIES_DAYS:
        return []
    ordered = sorted(daily, key=lambda day: day.date)
    last = ordered[-1]
    previous = [day.tokens for day in ordered[:-1] if day.tokens > 0]
    if len(previous) < MIN_BASELINE_DAYS:
        return []

    baseline = mean(previous)
    ratio = last.tokens / baseline if baseline > 0 else 0.0
    if last.tokens > SPIKE_TOKEN_FLOOR and ratio >= SPIKE_RATIO:
        return [TokenSpike(date=last.date, tokens=last.tokens, baselineTokens=baseline, ratio=ratio)]
    return []


def detect_latency_jitter(daily: list[DailyBucket], latency: LatencyStats | None) -> LatencyJitter | None:
    days = [
        LatencyDay(date=day.date, avgMs=day.latency.avgMs, p95Ms=day.latency.p95Ms)
        for day in daily
        if day.latency is not None
    ]
    if len(days) < MIN_SERIES_DAYS:
        return None

    averages = [day.avgMs for day in days]
    average = mean(averages)
    cv = sample_stddev(averages) / average if average > 0 else 0.0
    tail_ratio = 0.0
    if latency is not None and latency.avgMs > 0 and latency.p95Ms > 0:
        tail_ratio = latency.p95Ms / latency.avgMs

    if cv >= JITTER_CV or tail_ratio >= JITTER_TAIL_RATIO:
        return LatencyJitter(coefficientOfVariation=cv, globalP95ToAvgRatio=tail_ratio, days=days)
    return None


def detect_model_switching(sessions: list[SessionSummary]) -> list[ModelSwitchSession]:
    rows = [
        ModelSwitchSession(
            sessionId=session.sessionId,
            key=session.key,
            agentId=session.agentId,
            label=session.label,
            switches=session.modelSwitches,
            uniqueModels=session.uniqueModels,
            models=[
                SwitchedModel(
                    provider=usage.provider or UNKNOWN,
                    model=usage.model or UNKNOWN,
                    tokens=usage.totals.totalTokens,
                    cost=usage.totals.totalCost,
                )
                for usage in session.modelUsage[:SWITCHED_MODELS_SHOWN]
            ],
            updatedAt=session.updatedAt,
        )
        for session in sessions
        if session.uniqueModels > 1 or session.modelSwitches > 0
    ]
    rows.sort(key=lambda row: (-row.switches, -row.uniqueModels))
    return rows


def build_anomalies(
    daily: list[DailyBucket],
    sessions: list[SessionSummary],
    latency: LatencyStats | None,
) -> Anomalies:
    return Anomalies(
        tokenSpikes=detect_token_spikes(daily),
        latencyJitter=detect_latency_jitter(daily, latency),
        modelSwitching=detect_model_switching(sessions),
    )
