"""Latency statistics, weighted latency merging, and ranking helpers."""
from __future__ import annotations

import math
from statistics import fmean, stdev
from typing import Iterable, TypeVar

from observatory.models import LatencyStats

R = TypeVar("R")


def compute_latency_stats(values: Iterable[float]) -> LatencyStats | None:
    """Nearest-rank stats; p95 is the sorted value at index floor(0.95 * n)."""
    ordered = sorted(values)
    if not ordered:
        return None
    count = len(ordered)
    p95_index = min(count - 1, math.floor(count * 0.95))
    return LatencyStats(
        count=count,
        avgMs=sum(ordered) / count,
        p95Ms=ordered[p95_index],
        minMs=ordered[0],
        maxMs=ordered[-1],
    )


class WeightedLatency:
    """Merges LatencyStats without raw samples.

    The average is the count-weighted mean; min/max are the extrema and p95 is
    the largest p95 seen. This approximates, not recomputes, the percentile.
    """

    def __init__(self) -> None:
        self.count = 0
        self.sum = 0.0
        self.min = math.inf
        self.max = 0.0
        self.p95_max = 0.0

    def add(self, stats: LatencyStats | None) -> None:
        if stats is None or not stats.count:
            return
        self.count += stats.count
        self.sum += stats.avgMs * stats.count
        self.min = min(self.min, stats.minMs)
        self.max = max(self.max, stats.maxMs)
        self.p95_max = max(self.p95_max, stats.p95Ms)

    def stats(self) -> LatencyStats | None:
        if self.count <= 0:
            return None
        return LatencyStats(
            count=self.count,
            avgMs=self.sum / self.count,
            p95Ms=self.p95_max,
            minMs=self.min,
            maxMs=self.max,
        )


def sort_by_cost_then_tokens(rows: Iterable[R]) -> list[R]:
    """Rank rows carrying ``totals`` by cost desc, then tokens desc (stable)."""
    return sorted(rows, key=lambda row: (-row.totals.totalCost, -row.totals.totalTokens))


def mean(values: list[float]) -> float:
    return fmean(values) if values else 0.0


def sample_stddev(values: list[float]) -> float:
    """Standard deviation with an n-1 denominator; 0 for fewer than two values."""
    if len(values) < 2:
        return 0.0
    return stdev(values)


def percent(part: float, whole: float) -> float:
    return (part / whole) * 100 if whole > 0 else 0.0
