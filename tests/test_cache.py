from __future__ import annotations

import unittest

from lexpro.cache import CASES, DASHBOARD, LAWYERS, SERVICES, CollectionCache


class CollectionCacheTests(unittest.TestCase):
    def test_loads_once_until_invalidated(self) -> None:
        cache = CollectionCache()
        calls = []

        def loader() -> int:
            calls.append(1)
            return len(calls)

        self.assertEqual(cache.get_or_load(CASES, loader), 1)
        self.assertEqual(cache.get_or_load(CASES, loader), 1)
        cache.invalidate(CASES)
        self.assertEqual(cache.get_or_load(CASES, loader), 2)

    def test_case_mutation_drops_every_key(self) -> None:
        cache = CollectionCache()
        for key in (CASES, LAWYERS, SERVICES, DASHBOARD):
            cache.get_or_load(key, lambda: [])
        cache.invalidate_cases()
        for key in (CASES, LAWYERS, SERVICES, DASHBOARD):
            self.assertNotIn(key, cache)

    def test_catalog_mutation_drops_own_and_case_keys(self) -> None:
        cache = CollectionCache()
        for key in (CASES, LAWYERS, SERVICES, DASHBOARD):
            cache.get_or_load(key, lambda: [])
        cache.invalidate_catalog(LAWYERS)
        self.assertNotIn(LAWYERS, cache)
        self.assertNotIn(CASES, cache)
        self.assertNotIn(DASHBOARD, cache)
        self.assertIn(SERVICES, cache)

    def test_load_racing_an_invalidation_is_not_stored(self) -> None:
        cache = CollectionCache()

        def loader():
            cache.invalidate(CASES)
            return "stale"

        self.assertEqual(cache.get_or_load(CASES, loader), "stale")
        self.assertNotIn(CASES, cache)


if __name__ == "__main__":
    unittest.main()
