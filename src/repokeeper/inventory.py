"""In-memory inventory of known repositories.

No disk or network I/O lives here; loading and saving is done by
``repokeeper.store``.
"""

from datetime import datetime, timedelta
from pathlib import Path

from repokeeper.models import EntryStatus, InventoryEntry

INHERITED_FIELDS = ("type", "branch", "labels", "annotations")


def sort_key(repo_id: str, path: Path) -> tuple[str, str]:
    """Deterministic ordering: repo_id first, then path."""
    return repo_id, str(path)


class Inventory:
    """Ordered list of inventory entries keyed by (repo_id, path)."""

    def __init__(
        self,
        entries: list[InventoryEntry] | None = None,
        updated_at: datetime | None = None,
    ) -> None:
        self.entries: list[InventoryEntry] = list(entries or [])
        self.updated_at = updated_at

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def find(self, repo_id: str, path: Path) -> InventoryEntry | None:
        """Entry with exactly this (repo_id, path), or None."""
        for entry in self.entries:
            if entry.repo_id == repo_id and entry.path == path:
                return entry
        return None

    def find_by_repo_id(self, repo_id: str) -> list[InventoryEntry]:
        """All entries sharing ``repo_id``, in inventory order.

        Several entries per repo_id are valid (e.g. a checkout and a mirror).
        """
        return [entry for entry in self.entries if entry.repo_id == repo_id]

    def find_by_path(self, path: Path) -> InventoryEntry | None:
        for entry in self.entries:
            if entry.path == path:
                return entry
        return None

    def lookup(self, target: str) -> list[InventoryEntry]:
        """Entries addressed by ``target``: an entry path first, else a repo_id."""
        by_path = self.find_by_path(Path(target).expanduser().resolve())
        if by_path is not None:
            return [by_path]
        return self.find_by_repo_id(target)

    def find_for(self, repo_id: str, path: Path) -> InventoryEntry | None:
        """Best match for a live repository: exact key, else first by repo_id."""
        exact = self.find(repo_id, path)
        if exact is not None:
            return exact
        matches = self.find_by_repo_id(repo_id)
        return matches[0] if matches else None

    def upsert(self, entry: InventoryEntry) -> InventoryEntry:
        """Replace the entry with the same (repo_id, path), else append.

        Fields not explicitly set on ``entry`` (type, branch, labels,
        annotations) are inherited from the entry it replaces.

        Args:
            entry: Entry to store.

        Returns:
            The stored entry.
        """
        for index, existing in enumerate(self.entries):
            if existing.repo_id != entry.repo_id or existing.path != entry.path:
                continue
            updates = {
                name: getattr(existing, name)
                for name in INHERITED_FIELDS
                if name not in entry.model_fields_set
            }
            merged = entry.model_copy(update=updates, deep=True)
            self.entries[index] = merged
            return merged

        self.entries.append(entry)
        return entry

    def mark_missing(self, path: Path) -> InventoryEntry | None:
        """Mark the entry at ``path`` as missing; ``last_seen`` is kept.

        Returns:
            The updated entry, or None if no entry has that path.
        """
        entry = self.find_by_path(path)
        if entry is not None:
            entry.status = EntryStatus.MISSING
        return entry

    def mark_moved(
        self, repo_id: str, new_path: Path, now: datetime | None = None
    ) -> InventoryEntry | None:
        """Re-point an entry with ``repo_id`` to ``new_path``.

        A missing entry is preferred over a present one. Nothing changes when
        an entry already exists at (repo_id, new_path).

        Returns:
            The moved entry, or None if there was nothing to move.
        """
        if self.find(repo_id, new_path) is not None:
            return None
        candidates = self.find_by_repo_id(repo_id)
        if not candidates:
            return None
        missing = [c for c in candidates if c.status == EntryStatus.MISSING]
        entry = missing[0] if missing else candidates[0]
        entry.path = new_path
        entry.status = EntryStatus.MOVED
        if now is not None:
            entry.last_seen = now
        return entry

    def prune_stale(self, threshold: timedelta, now: datetime | None = None) -> int:
        """Drop missing entries not seen within ``threshold``.

        Args:
            threshold: Age after which a missing entry is dropped.
            now: Reference time, defaults to the current time.

        Returns:
            Number of entries removed.
        """
        if threshold <= timedelta(0):
            return 0
        now = now or datetime.now()
        cutoff = now - threshold

        kept: list[InventoryEntry] = []
        for entry in self.entries:
            stale = entry.last_seen is None or _naive(entry.last_seen) < _naive(cutoff)
            if entry.status == EntryStatus.MISSING and stale:
                continue
            kept.append(entry)

        pruned = len(self.entries) - len(kept)
        self.entries = kept
        return pruned

    def snapshot(self) -> list[InventoryEntry]:
        """Deep copies of all entries, safe to hand to workers."""
        return [entry.model_copy(deep=True) for entry in self.entries]

    def sorted_entries(self) -> list[InventoryEntry]:
        return sorted(self.entries, key=lambda e: sort_key(e.repo_id, e.path))


def _naive(value: datetime) -> datetime:
    """Compare timestamps regardless of whether they carry a timezone."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)
