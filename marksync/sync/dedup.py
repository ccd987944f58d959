"""Deduplication of fetched items.

Providers that issue overlapping remote queries (authored PRs vs PRs awaiting
review, reporter vs assignee) merge results here by the remote's stable id.
The engine then re-checks the ``(provider_id, id)`` contract on whatever a
provider returns, since a reused id would make reconciliation ambiguous.

Dedup keys:
    - remote payloads: a provider-chosen stable id (GitHub ``node_id``, Jira issue ``id``)
    - bookmark items:  ``(provider_id, id)``
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, TypeVar

from marksync.errors import ProviderContractError
from marksync.models.items import BookmarkItem

logger = logging.getLogger("marksync.sync.dedup")

T = TypeVar("T")


def item_key(item: BookmarkItem) -> str:
    """Colon-separated reconciliation key for an item."""
    return f"{item.provider_id}:{item.id}"


class InMemoryDedupCache:
    """Seen-set for one fetch.

    Usage::

        cache = InMemoryDedupCache()
        for pr in results:
            if cache.is_seen(pr["node_id"]):
                continue
            cache.mark_seen(pr["node_id"])
    """

    def __init__(self) -> None:
        self._seen: set[str] = set()

    def is_seen(self, key: str) -> bool:
        return key in self._seen

    def mark_seen(self, key: str) -> None:
        self._seen.add(key)


def dedupe_by(records: Iterable[T], key: Callable[[T], str]) -> list[T]:
    """Keep the first record for every key, preserving order.

    Args:
        records: Remote payloads, possibly from several queries.
        key:     Extracts the remote's stable id.

    Returns:
        Records with duplicates removed.
    """
    cache = InMemoryDedupCache()
    unique: list[T] = []
    dropped = 0
    for record in records:
        record_key = key(record)
        if cache.is_seen(record_key):
            dropped += 1
            continue
        cache.mark_seen(record_key)
        unique.append(record)
    if dropped:
        logger.debug("Dropped %d duplicate records across queries", dropped)
    return unique


def validate_items(provider_id: str, items: Iterable[BookmarkItem]) -> list[BookmarkItem]:
    """Check that every item belongs to ``provider_id`` and no id repeats.

    Raises:
        ProviderContractError: On a foreign provider id or a repeated id.
    """
    validated: list[BookmarkItem] = []
    cache = InMemoryDedupCache()
    for item in items:
        if item.provider_id != provider_id:
            raise ProviderContractError(
                f"Provider '{provider_id}' returned an item owned by '{item.provider_id}'"
            )
        key = item_key(item)
        if cache.is_seen(key):
            raise ProviderContractError(
                f"Provider '{provider_id}' returned item id '{item.id}' more than once"
            )
        cache.mark_seen(key)
        validated.append(item)
    return validated
