"""Snapshot vs fetch diff.

Items are matched by ``(provider_id, id)``.  A matched item is an update only
when ``last_modified`` differs; title or url changes under an unchanged
``last_modified`` are ignored, so re-syncing unchanged remote data touches no
bookmark.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from marksync.models.items import BookmarkItem, SnapshotEntry


@dataclass
class SyncDiff:
    """Reconciliation outcome for one provider.

    Attributes:
        added:     Fetched items with no snapshot entry.
        updated:   (previous entry, fetched item) pairs whose ``last_modified`` changed.
        removed:   Snapshot entries absent from the fetch.
        unchanged: Snapshot entries whose item is still current.
    """

    added: list[BookmarkItem] = field(default_factory=list)
    updated: list[tuple[SnapshotEntry, BookmarkItem]] = field(default_factory=list)
    removed: list[SnapshotEntry] = field(default_factory=list)
    unchanged: list[SnapshotEntry] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.updated or self.removed)


def compute_diff(snapshot: list[SnapshotEntry], fetched: list[BookmarkItem]) -> SyncDiff:
    """Diff a fresh fetch against the stored snapshot.

    ``fetched`` must already be unique by key.
    """
    previous = {entry.item.key: entry for entry in snapshot}
    fetched_keys = {item.key for item in fetched}
    diff = SyncDiff()

    for item in fetched:
        entry = previous.get(item.key)
        if entry is None:
            diff.added.append(item)
        elif entry.item.last_modified != item.last_modified:
            diff.updated.append((entry, item))
        else:
            diff.unchanged.append(entry)

    diff.removed = [entry for entry in snapshot if entry.item.key not in fetched_keys]
    return diff
