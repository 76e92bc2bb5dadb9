from __future__ import annotations

import threading
from typing import Any, Callable

CASES = "cases"
LAWYERS = "lawyers"
SERVICES = "legal_services"
CLIENTS = "clients"
ALLOCATIONS = "case_lawyers"
DASHBOARD = "dashboard"

ALL_KEYS = (CASES, LAWYERS, SERVICES, CLIENTS, ALLOCATIONS, DASHBOARD)
# Keys whose contents are derived from case or allocation rows.
CASE_DERIVED = (CASES, ALLOCATIONS, DASHBOARD)


class CollectionCache:
    """Per-collection read cache, refetched after any invalidating mutation."""

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}
        self._generation: dict[str, int] = {}
        self._lock = threading.Lock()

    def get_or_load(self, key: str, loader: Callable[[], Any]) -> Any:
        with self._lock:
            if key in self._values:
                return self._values[key]
            generation = self._generation.get(key, 0)
        value = loader()
        with self._lock:
            # A mutation that landed while loading makes this value stale.
            if self._generation.get(key, 0) == generation:
                self._values[key] = value
        return value

    def invalidate(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._values.pop(key, None)
                self._generation[key] = self._generation.get(key, 0) + 1

    def invalidate_cases(self) -> None:
        """A case or allocation row changed: every collection key is dropped together."""
        self.invalidate(*ALL_KEYS)

    def invalidate_catalog(self, key: str) -> None:
        # Lawyer and service names are joined into case reads.
        self.invalidate(key, *CASE_DERIVED)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._values
