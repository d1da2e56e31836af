"""Tests for the in-memory inventory."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

from conftest import NOW, make_entry

from repokeeper.inventory import Inventory
from repokeeper.models import EntryStatus, InventoryEntry, RepoType


class TestFind:
    def test_find_exact_key(self):
        inventory = Inventory([make_entry(Path("/a")), make_entry(Path("/b"))])
        assert inventory.find("github.com/org/repo", Path("/b")).path == Path("/b")
        assert inventory.find("github.com/org/other", Path("/b")) is None

    def test_find_by_repo_id_returns_all(self):
        inventory = Inventory(
            [
                make_entry(Path("/a")),
                make_entry(Path("/b.git"), type=RepoType.MIRROR),
                make_entry(Path("/c"), repo_id="github.com/org/other"),
            ]
        )
        assert [e.path for e in inventory.find_by_repo_id("github.com/org/repo")] == [
            Path("/a"),
            Path("/b.git"),
        ]

    def test_find_for_falls_back_to_repo_id(self):
        inventory = Inventory([make_entry(Path("/a"))])
        assert inventory.find_for("github.com/org/repo", Path("/elsewhere")).path == Path("/a")
        assert inventory.find_for("github.com/x/y", Path("/a")) is None


class TestUpsert:
    def test_appends_new(self):
        inventory = Inventory()
        inventory.upsert(make_entry(Path("/a")))
        assert len(inventory) == 1

    def test_replaces_same_key_and_keeps_hand_edits(self):
        inventory = Inventory(
            [
                make_entry(
                    Path("/a"),
                    branch="develop",
                    labels={"team": "infra"},
                    annotations={"note": "keep"},
                    status=EntryStatus.MISSING,
                )
            ]
        )
        later = NOW + timedelta(days=1)
        inventory.upsert(
            InventoryEntry(
                repo_id="github.com/org/repo",
                path=Path("/a"),
                status=EntryStatus.PRESENT,
                last_seen=later,
            )
        )
        assert len(inventory) == 1
        entry = inventory.entries[0]
        assert entry.status == EntryStatus.PRESENT
        assert entry.last_seen == later
        assert entry.branch == "develop"
        assert entry.labels == {"team": "infra"}
        assert entry.annotations == {"note": "keep"}

    def test_same_repo_id_different_path_is_new_entry(self):
        inventory = Inventory([make_entry(Path("/a"))])
        inventory.upsert(make_entry(Path("/b")))
        assert len(inventory) == 2


class TestLifecycle:
    def test_mark_missing_keeps_last_seen(self):
        inventory = Inventory([make_entry(Path("/a"))])
        entry = inventory.mark_missing(Path("/a"))
        assert entry.status == EntryStatus.MISSING
        assert entry.last_seen == NOW

    def test_mark_missing_unknown_path(self):
        assert Inventory().mark_missing(Path("/nope")) is None

    def test_mark_moved_prefers_missing_entry(self):
        inventory = Inventory(
            [
                make_entry(Path("/a")),
                make_entry(Path("/b"), status=EntryStatus.MISSING),
            ]
        )
        later = NOW + timedelta(hours=1)
        moved = inventory.mark_moved("github.com/org/repo", Path("/c"), now=later)
        assert moved.path == Path("/c")
        assert moved.status == EntryStatus.MOVED
        assert moved.last_seen == later
        assert inventory.find("github.com/org/repo", Path("/a")).status == EntryStatus.PRESENT

    def test_mark_moved_noop_when_target_exists(self):
        inventory = Inventory([make_entry(Path("/a")), make_entry(Path("/b"))])
        assert inventory.mark_moved("github.com/org/repo", Path("/b")) is None

    def test_mark_moved_unknown_repo(self):
        assert Inventory().mark_moved("github.com/x/y", Path("/c")) is None


class TestPruneStale:
    def test_prunes_only_old_missing_entries(self):
        old = NOW - timedelta(days=40)
        inventory = Inventory(
            [
                make_entry(Path("/old-missing"), status=EntryStatus.MISSING, last_seen=old),
                make_entry(Path("/recent-missing"), status=EntryStatus.MISSING),
                make_entry(Path("/old-present"), last_seen=old),
            ]
        )
        pruned = inventory.prune_stale(timedelta(days=30), now=NOW)
        assert pruned == 1
        assert [e.path for e in inventory] == [Path("/recent-missing"), Path("/old-present")]

    def test_missing_without_last_seen_is_stale(self):
        entry = InventoryEntry(repo_id="r", path=Path("/x"), status=EntryStatus.MISSING)
        inventory = Inventory([entry])
        assert inventory.prune_stale(timedelta(days=1), now=NOW) == 1

    def test_non_positive_threshold_prunes_nothing(self):
        inventory = Inventory(
            [make_entry(Path("/x"), status=EntryStatus.MISSING, last_seen=NOW - timedelta(days=99))]
        )
        assert inventory.prune_stale(timedelta(0), now=NOW) == 0
        assert len(inventory) == 1

    def test_timezone_aware_timestamps(self):
        aware = datetime(2024, 1, 1, tzinfo=timezone.utc)
        inventory = Inventory(
            [make_entry(Path("/x"), status=EntryStatus.MISSING, last_seen=aware)]
        )
        assert inventory.prune_stale(timedelta(days=30), now=NOW) == 1


class TestOrdering:
    def test_sorted_entries(self):
        inventory = Inventory(
            [
                make_entry(Path("/b"), repo_id="b"),
                make_entry(Path("/z"), repo_id="a"),
                make_entry(Path("/a"), repo_id="b"),
            ]
        )
        assert [(e.repo_id, str(e.path)) for e in inventory.sorted_entries()] == [
            ("a", "/z"),
            ("b", "/a"),
            ("b", "/b"),
        ]

    def test_snapshot_is_independent(self):
        inventory = Inventory([make_entry(Path("/a"), labels={"k": "v"})])
        copy = inventory.snapshot()
        copy[0].labels["k"] = "changed"
        copy[0].status = EntryStatus.MISSING
        assert inventory.entries[0].labels == {"k": "v"}
        assert inventory.entries[0].status == EntryStatus.PRESENT
