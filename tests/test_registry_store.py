"""Tests for the territory store and registry."""
import logging

import pytest

from earthwalk_events import create_logger
from earthwalk_session import (
    InMemorySessionStore,
    InMemoryTerritoryStore,
    TerritoryRegistry,
    TerritoryStoreError,
)

from helpers import SQUARE_LOOP, T0, path_of, square_territory


class FlakyStore:
    """Fails load_active_territories() a fixed number of times."""

    def __init__(self, territories, failures):
        self.inner = InMemoryTerritoryStore(territories)
        self.failures = failures
        self.calls = 0

    def load_active_territories(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise TerritoryStoreError("store unavailable")
        return self.inner.load_active_territories()


def make_registry(store, sleeps):
    return TerritoryRegistry(
        store,
        retries=2,
        backoff_s=0.5,
        sleep=sleeps.append,
        logger=create_logger("test.registry", level=logging.CRITICAL),
    )


# ----------------------------------------------------------------
# Store
# ----------------------------------------------------------------

class TestInMemoryTerritoryStore:
    def test_upload_is_idempotent(self):
        store = InMemoryTerritoryStore()
        path = path_of(SQUARE_LOOP[:11])
        first = store.upload_territory("me", path, 2025.0, T0)
        second = store.upload_territory("me", path, 2025.0, T0)
        assert first.territory_id == second.territory_id
        assert len(store) == 1

    def test_new_attempt_new_territory(self):
        store = InMemoryTerritoryStore()
        path = path_of(SQUARE_LOOP[:11])
        store.upload_territory("me", path, 2025.0, T0)
        store.upload_territory("me", path, 2025.0, T0 + 600)
        assert len(store) == 2

    def test_upload_builds_closed_ring(self):
        territory = InMemoryTerritoryStore().upload_territory(
            "me", path_of(SQUARE_LOOP[:11]), 2025.0, T0
        )
        assert territory.owner_id == "me"
        assert territory.ring[0] == territory.ring[-1]
        assert territory.vertex_count == 11

    def test_upload_rejects_degenerate_path(self):
        with pytest.raises(TerritoryStoreError):
            InMemoryTerritoryStore().upload_territory("me", path_of([(0, 0), (10, 0)]), 0.0, T0)

    def test_delete(self):
        store = InMemoryTerritoryStore([square_territory(0, 0, 10, 10)])
        store.delete_territory("rival-1")
        assert store.load_active_territories() == []
        with pytest.raises(TerritoryStoreError):
            store.delete_territory("rival-1")


class TestInMemorySessionStore:
    def test_keeps_records(self):
        store = InMemorySessionStore()
        store.save_session("record")
        assert store.records == ["record"]


# ----------------------------------------------------------------
# Registry
# ----------------------------------------------------------------

class TestTerritoryRegistry:
    def test_refresh_loads_snapshot(self):
        sleeps = []
        registry = make_registry(InMemoryTerritoryStore([square_territory(0, 0, 10, 10)]), sleeps)
        assert registry.refresh()
        assert len(registry) == 1
        assert registry.generation == 1
        assert sleeps == []

    def test_retries_with_linear_backoff(self):
        sleeps = []
        store = FlakyStore([square_territory(0, 0, 10, 10)], failures=2)
        registry = make_registry(store, sleeps)
        assert registry.refresh()
        assert store.calls == 3
        assert sleeps == [0.5, 1.0]
        assert registry.last_error is None

    def test_keeps_previous_snapshot_when_all_attempts_fail(self):
        sleeps = []
        store = FlakyStore([square_territory(0, 0, 10, 10)], failures=0)
        registry = make_registry(store, sleeps)
        registry.refresh()
        before = registry.snapshot()

        store.failures = 10
        assert not registry.refresh()
        assert registry.snapshot() is before
        assert isinstance(registry.last_error, TerritoryStoreError)

    def test_snapshot_is_stable_across_replace(self):
        registry = make_registry(InMemoryTerritoryStore(), [])
        registry.replace([square_territory(0, 0, 10, 10)])
        held = registry.snapshot()
        registry.replace([])
        assert len(held) == 1
        assert registry.snapshot() == ()
