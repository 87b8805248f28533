from __future__ import annotations

from receipt_filer.core.storage import LIST_PAGE_SIZE, FolderEntry, FolderStore


class DirectoryIndex:
    """Read-only view of the folders directly under a parent. Nothing is cached."""

    def __init__(self, store: FolderStore, *, page_size: int = LIST_PAGE_SIZE):
        self._store = store
        self._page_size = page_size

    def list_children(self, parent_id: str) -> list[FolderEntry]:
        return self._store.list_folders(parent_id=parent_id, limit=self._page_size)

    def find_by_name(self, name: str, parent_id: str) -> str | None:
        matches = self._store.list_folders(parent_id=parent_id, name=name, limit=1)
        # Names are not unique in Drive; the first match wins.
        return matches[0].id if matches else None
