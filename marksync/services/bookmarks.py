"""Bookmark folder collaborator.

The sync engine only needs create / update / remove / get scoped to one
folder.  ``InMemoryBookmarkStore`` is the process-local implementation used by
the service and the tests.
"""

from __future__ import annotations

import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime

from marksync.models.base import utc_now

logger = logging.getLogger("marksync.bookmarks")


class BookmarkStoreError(Exception):
    """Raised when a bookmark operation cannot be applied."""


@dataclass(frozen=True)
class BookmarkNode:
    """A folder (``url is None``) or a bookmark.

    Attributes:
        id:         Store-assigned identifier.
        parent_id:  Containing folder, None for a root folder.
        title:      Display title.
        url:        Target URL; None for folders.
        date_added: UTC creation timestamp.
    """

    id: str
    parent_id: str | None
    title: str
    url: str | None = None
    date_added: datetime = field(default_factory=utc_now)

    @property
    def is_folder(self) -> bool:
        return self.url is None


class BookmarkStore(ABC):
    """Folder-scoped bookmark operations."""

    @abstractmethod
    async def create_folder(self, title: str, parent_id: str | None = None) -> BookmarkNode:
        """Create a folder and return it."""

    @abstractmethod
    async def create(self, folder_id: str, title: str, url: str) -> BookmarkNode:
        """Create a bookmark inside ``folder_id``."""

    @abstractmethod
    async def update(
        self, node_id: str, title: str | None = None, url: str | None = None
    ) -> BookmarkNode:
        """Change the title and/or url of an existing node."""

    @abstractmethod
    async def remove(self, node_id: str) -> None:
        """Delete a bookmark."""

    @abstractmethod
    async def get(self, node_id: str) -> BookmarkNode | None:
        """Return a node or None."""

    @abstractmethod
    async def children(self, folder_id: str) -> list[BookmarkNode]:
        """Return the direct children of a folder in insertion order."""


class InMemoryBookmarkStore(BookmarkStore):
    def __init__(self) -> None:
        self._nodes: dict[str, BookmarkNode] = {}
        self._ids = itertools.count(1)

    def _next_id(self) -> str:
        return str(next(self._ids))

    def _require_folder(self, folder_id: str) -> BookmarkNode:
        folder = self._nodes.get(folder_id)
        if folder is None or not folder.is_folder:
            raise BookmarkStoreError(f"Folder {folder_id} not found")
        return folder

    async def create_folder(self, title: str, parent_id: str | None = None) -> BookmarkNode:
        if parent_id is not None:
            self._require_folder(parent_id)
        node = BookmarkNode(id=self._next_id(), parent_id=parent_id, title=title)
        self._nodes[node.id] = node
        return node

    async def create(self, folder_id: str, title: str, url: str) -> BookmarkNode:
        self._require_folder(folder_id)
        node = BookmarkNode(id=self._next_id(), parent_id=folder_id, title=title, url=url)
        self._nodes[node.id] = node
        logger.debug("Created bookmark %s in folder %s", node.id, folder_id)
        return node

    async def update(
        self, node_id: str, title: str | None = None, url: str | None = None
    ) -> BookmarkNode:
        node = self._nodes.get(node_id)
        if node is None:
            raise BookmarkStoreError(f"Bookmark {node_id} not found")
        changes = {k: v for k, v in (("title", title), ("url", url)) if v is not None}
        updated = replace(node, **changes)
        self._nodes[node_id] = updated
        return updated

    async def remove(self, node_id: str) -> None:
        node = self._nodes.get(node_id)
        if node is None:
            raise BookmarkStoreError(f"Bookmark {node_id} not found")
        if node.is_folder and any(n.parent_id == node_id for n in self._nodes.values()):
            raise BookmarkStoreError(f"Folder {node_id} is not empty")
        del self._nodes[node_id]

    async def get(self, node_id: str) -> BookmarkNode | None:
        return self._nodes.get(node_id)

    async def children(self, folder_id: str) -> list[BookmarkNode]:
        self._require_folder(folder_id)
        return [n for n in self._nodes.values() if n.parent_id == folder_id]
