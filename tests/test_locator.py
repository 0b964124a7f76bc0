"""Tests for the Snapshot Locator."""

from __future__ import annotations

from datetime import timedelta

import pytest

from tests.helpers import FIXED_NOW
from volcache.cloud.base import SnapshotState
from volcache.cloud.memory import InMemoryBlockStorage
from volcache.snapshot.keys import CacheKey
from volcache.snapshot.locator import SnapshotLocator, latest_snapshot

FEATURE = CacheKey.build("v1", "refs/heads/feature/x", "acme/app")
MAIN = CacheKey.build("v1", "refs/heads/main", "acme/app")


def _at(minutes: int):
    return FIXED_NOW + timedelta(minutes=minutes)


@pytest.fixture
def locator(client: InMemoryBlockStorage) -> SnapshotLocator:
    return SnapshotLocator(client, min_volume_size_gib=40)


class TestLatestSnapshot:
    """Selection among matching snapshots."""

    def test_latest_start_time_wins(self, client: InMemoryBlockStorage):
        old = client.add_snapshot(MAIN.tags(), start_time=_at(0))
        new = client.add_snapshot(MAIN.tags(), start_time=_at(5))

        assert latest_snapshot([new, old]) is new
        assert latest_snapshot([old, new]) is new

    def test_ties_break_by_id(self, client: InMemoryBlockStorage):
        a = client.add_snapshot(MAIN.tags(), start_time=_at(0), snapshot_id="snap-a")
        b = client.add_snapshot(MAIN.tags(), start_time=_at(0), snapshot_id="snap-b")

        assert latest_snapshot([a, b]) is b
        assert latest_snapshot([b, a]) is b

    def test_empty(self):
        assert latest_snapshot([]) is None


class TestLocate:
    """Tests for SnapshotLocator.locate()."""

    async def test_exact_match(self, client, locator):
        client.add_snapshot(MAIN.tags(), start_time=_at(0))
        newest = client.add_snapshot(FEATURE.tags(), start_time=_at(1))
        client.add_snapshot(FEATURE.tags(), start_time=_at(-10))

        assert await locator.locate(FEATURE, MAIN) is newest

    async def test_falls_back_to_default_branch(self, client, locator):
        client.add_snapshot(MAIN.tags(), start_time=_at(0))
        latest_main = client.add_snapshot(MAIN.tags(), start_time=_at(3))

        assert await locator.locate(FEATURE, MAIN) is latest_main

    async def test_nothing_found_is_not_an_error(self, locator):
        assert await locator.locate(FEATURE, MAIN) is None

    async def test_no_default_key(self, client, locator):
        client.add_snapshot(MAIN.tags())

        assert await locator.locate(FEATURE, None) is None

    async def test_default_equal_to_key_is_queried_once(self, client, locator):
        await locator.locate(MAIN, MAIN)

        assert [op for op, _ in client.calls] == ["find_snapshots"]

    async def test_pending_snapshots_are_ignored(self, client, locator):
        client.add_snapshot(FEATURE.tags(), state=SnapshotState.PENDING)

        assert await locator.locate(FEATURE, None) is None

    async def test_undersized_snapshot_never_selected(self, client, locator):
        usable = client.add_snapshot(FEATURE.tags(), volume_size_gib=40, start_time=_at(0))
        client.add_snapshot(FEATURE.tags(), volume_size_gib=20, start_time=_at(10))

        assert await locator.locate(FEATURE, None) is usable

    async def test_only_undersized_falls_back(self, client, locator):
        client.add_snapshot(FEATURE.tags(), volume_size_gib=8, start_time=_at(10))
        main = client.add_snapshot(MAIN.tags(), volume_size_gib=100, start_time=_at(0))

        assert await locator.locate(FEATURE, MAIN) is main

    async def test_custom_tags_must_match(self, client, locator):
        tagged = CacheKey.build("v1", "refs/heads/main", "acme/app", [("team", "infra")])
        client.add_snapshot(MAIN.tags())

        assert await locator.locate(tagged, None) is None

        match = client.add_snapshot(tagged.tags())
        assert await locator.locate(tagged, None) is match

    async def test_other_repository_is_ignored(self, client, locator):
        other = CacheKey.build("v1", "refs/heads/main", "acme/other")
        client.add_snapshot(other.tags())

        assert await locator.locate(MAIN, None) is None
