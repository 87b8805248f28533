from __future__ import annotations

import os
from itertools import count

import pytest

# Set env before any receipt_filer imports (settings are created at import time).
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("LOCAL_STORAGE_PATH", ".tmp_drive_test")
os.environ.setdefault("DRIVE_ROOT_FOLDER_ID", ".")
os.environ.setdefault("GOOGLE_PROJECT_ID", "test-project")


class InMemoryFolderStore:
    """Folder tree kept in dicts; records every call for assertions."""

    def __init__(self, root_id: str = "root"):
        self.root_id = root_id
        self._ids = count(1)
        self.children: dict[str, list] = {root_id: []}
        self.files: list[dict] = []
        self.list_calls: list[tuple[str, str | None]] = []
        self.fail_uploads: set[str] = set()

    def add_folder(self, name: str, parent_id: str | None = None) -> str:
        from receipt_filer.core.storage import FolderEntry

        parent_id = parent_id or self.root_id
        folder_id = f"f{next(self._ids)}"
        self.children.setdefault(parent_id, []).append(FolderEntry(name=name, id=folder_id))
        self.children[folder_id] = []
        return folder_id

    def list_folders(self, *, parent_id: str, name: str | None = None, limit: int = 100):
        self.list_calls.append((parent_id, name))
        entries = [e for e in self.children.get(parent_id, []) if name is None or e.name == name]
        return entries[:limit]

    def put(self, *, name: str, parent_id: str, body: bytes, mime_type: str):
        from receipt_filer.core.storage import StoredFile, StoreFailure

        if name in self.fail_uploads:
            raise StoreFailure(f"Drive upload failed (500): boom for {name}", status_code=500)
        self.files.append(
            {"name": name, "parent_id": parent_id, "body": body, "mime_type": mime_type}
        )
        return StoredFile(
            id=f"file{len(self.files)}", name=name, parent_id=parent_id, byte_size=len(body)
        )


class ScriptedExtractor:
    """Returns (or raises) one scripted result per call, keyed by call order."""

    def __init__(self, results: list):
        self._results = list(results)
        self.calls: list[tuple[bytes, str]] = []

    def extract(self, image: bytes, mime_type: str):
        self.calls.append((image, mime_type))
        result = self._results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture()
def folder_store() -> InMemoryFolderStore:
    return InMemoryFolderStore()


@pytest.fixture()
def scripted_extractor():
    return ScriptedExtractor


@pytest.fixture()
def make_pdf():
    def _make(page_count: int) -> bytes:
        import fitz

        doc = fitz.open()
        for i in range(page_count):
            page = doc.new_page(width=200, height=200)
            page.insert_text((20, 40), f"Receipt page {i + 1}")
        data = doc.tobytes()
        doc.close()
        return data

    return _make

