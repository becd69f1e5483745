"""Short-lived in-memory cache in front of the collection pipeline."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from observatory import config
from observatory.models import CollectOptions, MetricsPayload
from observatory.services.collector import collect_metrics

logger = logging.getLogger("observatory.cache")

CollectFn = Callable[[CollectOptions], Awaitable[MetricsPayload]]


@dataclass
class _CacheEntry:
    expires_at: float
    payload: MetricsPayload


class CollectorCache:
    """Memoizes payloads per effective option set for ``ttl_seconds``."""

    def __init__(
        self,
        ttl_seconds: float | None = None,
        *,
        collect: CollectFn = collect_metrics,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = config.CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._collect = collect
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}

    @staticmethod
    def cache_key(options: CollectOptions) -> str:
        return options.model_dump_json()

    def clear(self) -> None:
        self._entries.clear()

    async def get(self, options: CollectOptions) -> MetricsPayload:
        key = self.cache_key(options)
        now = self._clock()
        cached = self._entries.get(key)
        if cached and cached.expires_at > now:
            return cached.payload

        payload = await self._collect(options)
        self._entries = {k: v for k, v in self._entries.items() if v.expires_at > now}
        self._entries[key] = _CacheEntry(expires_at=now + self.ttl_seconds, payload=payload)
        logger.debug("Cached metrics payload for %s", key)
        return payload
