import types
import unittest

from observatory.models import CollectOptions
from observatory.services.cache import CollectorCache


class _FakeCollector:
    def __init__(self) -> None:
        self.calls: list[CollectOptions] = []

    async def __call__(self, options: CollectOptions):
        self.calls.append(options)
        return types.SimpleNamespace(call=len(self.calls), days=options.days)


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class CollectorCacheTests(unittest.IsolatedAsyncioTestCase):
    async def test_reuses_payload_within_ttl(self) -> None:
        collect = _FakeCollector()
        clock = _Clock()
        cache = CollectorCache(15, collect=collect, clock=clock)

        first = await cache.get(CollectOptions(days="7"))
        clock.now += 14.9
        second = await cache.get(CollectOptions(days="7"))

        self.assertIs(first, second)
        self.assertEqual(len(collect.calls), 1)

    async def test_expired_entries_are_recollected(self) -> None:
        collect = _FakeCollector()
        clock = _Clock()
        cache = CollectorCache(15, collect=collect, clock=clock)

        await cache.get(CollectOptions(days="7"))
        clock.now += 15
        refreshed = await cache.get(CollectOptions(days="7"))

        self.assertEqual(refreshed.call, 2)

    async def test_distinct_options_have_distinct_entries(self) -> None:
        collect = _FakeCollector()
        cache = CollectorCache(15, collect=collect, clock=_Clock())

        await cache.get(CollectOptions(days="7"))
        await cache.get(CollectOptions(days="7", agent="ops"))
        await cache.get(CollectOptions(days="7"))

        self.assertEqual(len(collect.calls), 2)
        self.assertNotEqual(
            CollectorCache.cache_key(CollectOptions(days="7")),
            CollectorCache.cache_key(CollectOptions(days="7", agent="ops")),
        )

    async def test_clear_drops_entries(self) -> None:
        collect = _FakeCollector()
        cache = CollectorCache(15, collect=collect, clock=_Clock())

        await cache.get(CollectOptions())
        cache.clear()
        await cache.get(CollectOptions())

        self.assertEqual(len(collect.calls), 2)


if __name__ == "__main__":
    unittest.main()
