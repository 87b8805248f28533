from __future__ import annotations

import json
from urllib.parse import parse_qs, urlparse

import pytest
from googleapiclient.discovery import build
from googleapiclient.http import HttpMockSequence

from receipt_filer.core.storage import (
    DriveFolderStore,
    LocalFolderStore,
    StorageError,
    StoreFailure,
    folder_query,
)


def _drive(*responses: tuple[int, str]) -> tuple[DriveFolderStore, HttpMockSequence]:
    http = HttpMockSequence([({"status": str(status)}, body) for status, body in responses])
    service = build("drive", "v3", http=http, cache_discovery=False)
    return DriveFolderStore(service_factory=lambda: service), http


def _query(uri: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(uri).query).items()}


def test_folder_query_escapes_quotes_and_backslashes():
    q = folder_query("root-id", "Bob's \\ receipts")
    assert q == (
        "mimeType='application/vnd.google-apps.folder' and 'root-id' in parents"
        " and trashed=false and name='Bob\\'s \\\\ receipts'"
    )


def test_drive_list_folders_queries_all_drives():
    store, http = _drive(
        (200, json.dumps({"files": [{"id": "a1", "name": "2601"}, {"id": "a2", "name": "2602"}]}))
    )

    entries = store.list_folders(parent_id="root-id", name="2601", limit=1)

    assert [(e.name, e.id) for e in entries] == [("2601", "a1"), ("2602", "a2")]
    uri, method, _, _ = http.request_sequence[0]
    params = _query(uri)
    assert method == "GET"
    assert urlparse(uri).path == "/drive/v3/files"
    assert params["pageSize"] == "1"
    assert params["supportsAllDrives"] == "true"
    assert params["includeItemsFromAllDrives"] == "true"
    assert params["corpora"] == "allDrives"
    assert params["q"] == folder_query("root-id", "2601")


def test_drive_list_failure_raises_storage_error():
    store, _ = _drive((403, "forbidden"))
    with pytest.raises(StorageError) as exc:
        store.list_folders(parent_id="root-id")
    assert exc.value.status_code == 403
    assert "forbidden" in str(exc.value)


def test_drive_list_non_json_body_raises_storage_error():
    store, _ = _drive((200, "<html>proxy error</html>"))
    with pytest.raises(StorageError, match="unreadable response"):
        store.list_folders(parent_id="root-id")


def test_drive_list_non_object_body_raises_storage_error():
    store, _ = _drive((200, "[1, 2]"))
    with pytest.raises(StorageError, match="unreadable response"):
        store.list_folders(parent_id="root-id")


def test_drive_put_sends_multipart_upload():
    store, http = _drive((200, json.dumps({"id": "file-9", "name": "x"})))

    stored = store.put(
        name="2026-01-15_supplies_Shop.jpg",
        parent_id="folder-7",
        body=b"\xff\xd8\xffjpeg",
        mime_type="image/jpeg",
    )

    assert stored.id == "file-9"
    assert stored.byte_size == 7
    uri, method, body, headers = http.request_sequence[0]
    params = _query(uri)
    assert method == "POST"
    assert urlparse(uri).path == "/upload/drive/v3/files"
    assert params["uploadType"] == "multipart"
    assert params["supportsAllDrives"] == "true"
    content_type = {k.lower(): v for k, v in headers.items()}["content-type"]
    assert content_type.startswith("multipart/related")
    assert b'"parents": ["folder-7"]' in body
    assert b'"name": "2026-01-15_supplies_Shop.jpg"' in body
    assert b"\xff\xd8\xffjpeg" in body


def test_drive_put_failure_keeps_status_and_body():
    store, _ = _drive((507, "storageQuotaExceeded"))
    with pytest.raises(StoreFailure) as exc:
        store.put(name="a.jpg", parent_id="p", body=b"x", mime_type="image/jpeg")
    assert exc.value.status_code == 507
    assert exc.value.body == "storageQuotaExceeded"


def test_drive_put_non_json_body_is_a_store_failure():
    store, _ = _drive((200, "<html>proxy error</html>"))
    with pytest.raises(StoreFailure, match="unreadable response"):
        store.put(name="a.jpg", parent_id="p", body=b"x", mime_type="image/jpeg")


def test_local_store_lists_and_writes(tmp_path):
    (tmp_path / "2601" / "supplies").mkdir(parents=True)
    (tmp_path / "2601" / "7-generic").mkdir()
    (tmp_path / "2601" / "readme.txt").write_text("not a folder")
    store = LocalFolderStore(tmp_path)

    [period] = store.list_folders(parent_id=".", name="2601", limit=1)
    assert period.id == "2601"
    assert [e.name for e in store.list_folders(parent_id=period.id)] == ["7-generic", "supplies"]

    stored = store.put(
        name="a/b.jpg", parent_id="2601/supplies", body=b"img", mime_type="image/jpeg"
    )
    assert stored.id == "2601/supplies/a-b.jpg"
    assert (tmp_path / "2601" / "supplies" / "a-b.jpg").read_bytes() == b"img"


def test_local_store_rejects_missing_or_escaping_folders(tmp_path):
    store = LocalFolderStore(tmp_path)
    with pytest.raises(StoreFailure):
        store.put(name="x.jpg", parent_id="nope", body=b"x", mime_type="image/jpeg")
    with pytest.raises(StorageError):
        store.list_folders(parent_id="../")
