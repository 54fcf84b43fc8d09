"""
Tests for the fitness cache and its record export.
"""

import math
import unittest

from shade_ga.fitness_cache import FitnessCache, CacheEntry, make_cache_key


class TestCacheKey(unittest.TestCase):
    """Test canonical key construction."""

    def test_key_is_order_independent(self):
        self.assertEqual(
            make_cache_key({"depth": 0.5, "tilt": 10.0}),
            make_cache_key({"tilt": 10.0, "depth": 0.5}),
        )

    def test_float_noise_collapses(self):
        self.assertEqual(make_cache_key({"d": 0.1 + 0.2}), make_cache_key({"d": 0.3}))

    def test_int_and_float_share_key(self):
        self.assertEqual(make_cache_key({"tilt": 10}), make_cache_key({"tilt": 10.0}))

    def test_negative_zero(self):
        self.assertEqual(make_cache_key({"tilt": -0.0}), make_cache_key({"tilt": 0.0}))

    def test_distinct_values_differ(self):
        self.assertNotEqual(make_cache_key({"d": 0.3}), make_cache_key({"d": 0.4}))
        self.assertNotEqual(make_cache_key({"p": "ext"}), make_cache_key({"p": "int"}))

    def test_bool_is_not_number(self):
        self.assertNotEqual(make_cache_key({"flag": True}), make_cache_key({"flag": 1.0}))


class TestFitnessCache(unittest.TestCase):
    """Test lookups, statistics and persistence records."""

    def setUp(self):
        self.cache = FitnessCache()
        self.entry = CacheEntry(
            params={"depth": 0.5}, fitness=62.0, metric_value=62.0, unit="%",
            raw_metrics={"sDA": 62.0, "ASE": 4.0}
        )

    def test_miss_then_hit(self):
        self.assertIsNone(self.cache.get({"depth": 0.5}))
        self.cache.put({"depth": 0.5}, self.entry)
        self.assertIs(self.cache.get({"depth": 0.5000000000001}), self.entry)
        self.assertEqual(self.cache.stats.hits, 1)
        self.assertEqual(self.cache.stats.misses, 1)

    def test_contains_does_not_count(self):
        self.cache.put({"depth": 0.5}, self.entry)
        self.assertIn({"depth": 0.5}, self.cache)
        self.assertNotIn({"depth": 0.6}, self.cache)
        self.assertEqual(self.cache.stats.hits + self.cache.stats.misses, 0)

    def test_put_overwrites(self):
        self.cache.put({"depth": 0.5}, self.entry)
        replacement = CacheEntry(params={"depth": 0.5}, fitness=70.0)
        self.cache.put({"depth": 0.5}, replacement)
        self.assertEqual(len(self.cache), 1)
        self.assertEqual(self.cache.get({"depth": 0.5}).fitness, 70.0)

    def test_iteration_and_clear(self):
        self.cache.put({"depth": 0.5}, self.entry)
        self.cache.put({"depth": 0.6}, CacheEntry(params={"depth": 0.6}, fitness=-math.inf, failed=True))
        self.assertEqual(len(list(self.cache)), 2)
        self.assertEqual(len(self.cache.items()), 2)
        self.cache.clear()
        self.assertEqual(len(self.cache), 0)

    def test_records_round_trip(self):
        failed = CacheEntry(params={"depth": 0.6}, fitness=-math.inf, failed=True)
        self.cache.put({"depth": 0.5}, self.entry)
        self.cache.put({"depth": 0.6}, failed)

        rebuilt = FitnessCache.from_records(self.cache.to_records())

        self.assertEqual(len(rebuilt), 2)
        self.assertEqual(rebuilt.get({"depth": 0.5}), self.entry)
        restored = rebuilt.get({"depth": 0.6})
        self.assertTrue(restored.failed)
        self.assertIsNone(restored.raw_metrics)
        self.assertEqual(restored.fitness, -math.inf)

    def test_corrupt_records_are_skipped(self):
        records = [
            self.entry.to_dict(),
            {"fitness": 1.0},                       # no params
            {"params": {"depth": 0.7}, "fitness": "high"},
            "not a record",
        ]
        with self.assertLogs("shade_ga.fitness_cache", level="WARNING"):
            rebuilt = FitnessCache.from_records(records)
        self.assertEqual(len(rebuilt), 1)


if __name__ == '__main__':
    unittest.main()
