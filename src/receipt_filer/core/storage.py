from __future__ import annotations

import io
import os
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import google.auth.exceptions
import google_auth_httplib2
import httplib2
from googleapiclient.discovery import Resource, build
from googleapiclient.errors import HttpError
from googleapiclient.http import HttpRequest, MediaIoBaseUpload

from receipt_filer.core.config import Settings
from receipt_filer.core.credentials import CredentialError, TokenProvider
from receipt_filer.core.logging import get_logger, log_event, log_exception, monotonic_ms

logger = get_logger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
LIST_PAGE_SIZE = 100

DriveServiceFactory = Callable[[], Resource]


class StorageError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class StoreFailure(StorageError):
    """The bytes could not be written."""


@dataclass(frozen=True)
class FolderEntry:
    name: str
    id: str


@dataclass(frozen=True)
class StoredFile:
    id: str
    name: str
    parent_id: str
    byte_size: int


class FolderStore:
    def list_folders(
        self, *, parent_id: str, name: str | None = None, limit: int = LIST_PAGE_SIZE
    ) -> list[FolderEntry]:  # pragma: no cover
        raise NotImplementedError

    def put(
        self, *, name: str, parent_id: str, body: bytes, mime_type: str
    ) -> StoredFile:  # pragma: no cover
        raise NotImplementedError


def _escape_query_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def folder_query(parent_id: str, name: str | None = None) -> str:
    q = (
        f"mimeType='{FOLDER_MIME_TYPE}' and '{_escape_query_value(parent_id)}' in parents"
        " and trashed=false"
    )
    if name is not None:
        q += f" and name='{_escape_query_value(name)}'"
    return q


def drive_service_factory(
    token_provider: TokenProvider, *, timeout_seconds: float = 30.0
) -> DriveServiceFactory:
    def _build() -> Resource:
        try:
            credentials = token_provider.credentials()
        except CredentialError as e:
            raise StoreFailure(str(e)) from e
        http = google_auth_httplib2.AuthorizedHttp(
            credentials, http=httplib2.Http(timeout=timeout_seconds)
        )
        return build("drive", "v3", http=http, cache_discovery=False)

    return _build


def _error_body(e: HttpError) -> str:
    content = e.content
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    return str(content or "")[:2000]


class DriveFolderStore(FolderStore):
    """Drive v3 through the API client. Each thread builds its own service: httplib2
    connections cannot be shared between threads."""

    def __init__(self, *, service_factory: DriveServiceFactory):
        self._service_factory = service_factory
        self._local = threading.local()

    def _files(self) -> Any:
        service = getattr(self._local, "service", None)
        if service is None:
            service = self._local.service = self._service_factory()
        return service.files()

    def _execute(
        self, request: HttpRequest, *, action: str, failure: type[StorageError]
    ) -> dict[str, Any]:
        try:
            result = request.execute()
        except HttpError as e:
            status = e.resp.status
            body = _error_body(e)
            raise failure(
                f"Drive {action} failed ({status}): {body}", status_code=status, body=body
            ) from e
        except ValueError as e:
            raise failure(f"Drive {action} returned an unreadable response: {e}") from e
        except (google.auth.exceptions.GoogleAuthError, CredentialError) as e:
            raise failure(f"Drive {action} failed: {e}") from e
        except (httplib2.HttpLib2Error, OSError) as e:
            raise failure(f"Drive {action} failed: {e}") from e
        if not isinstance(result, dict):
            body = str(result)[:2000]
            raise failure(f"Drive {action} returned an unreadable response: {body}", body=body)
        return result

    def list_folders(
        self, *, parent_id: str, name: str | None = None, limit: int = LIST_PAGE_SIZE
    ) -> list[FolderEntry]:
        start = time.monotonic()
        request = self._files().list(
            q=folder_query(parent_id, name),
            fields="files(id,name)",
            pageSize=limit,
            supportsAllDrives=True,
            includeItemsFromAllDrives=True,
            corpora="allDrives",
        )
        try:
            result = self._execute(request, action="folder listing", failure=StorageError)
        except StorageError as e:
            log_event(
                logger,
                "drive.list.failure",
                parent_id=parent_id,
                name=name,
                status_code=e.status_code,
                error=str(e),
                duration_ms=monotonic_ms(start),
            )
            raise

        out = [
            FolderEntry(name=str(f["name"]), id=str(f["id"]))
            for f in result.get("files") or []
            if isinstance(f, dict) and f.get("id") and f.get("name")
        ]
        log_event(
            logger,
            "drive.list.success",
            parent_id=parent_id,
            name=name,
            folder_count=len(out),
            duration_ms=monotonic_ms(start),
        )
        return out

    def put(self, *, name: str, parent_id: str, body: bytes, mime_type: str) -> StoredFile:
        start = time.monotonic()
        media = MediaIoBaseUpload(io.BytesIO(body), mimetype=mime_type, resumable=False)
        request = self._files().create(
            body={"name": name, "parents": [parent_id]},
            media_body=media,
            fields="id,name",
            supportsAllDrives=True,
        )
        try:
            result = self._execute(request, action="upload", failure=StoreFailure)
        except StoreFailure as e:
            log_event(
                logger,
                "storage.put.failure",
                backend="drive",
                file_name=name,
                parent_id=parent_id,
                status_code=e.status_code,
                error=str(e),
                duration_ms=monotonic_ms(start),
            )
            raise

        log_event(
            logger,
            "storage.put.success",
            backend="drive",
            file_name=name,
            parent_id=parent_id,
            byte_size=len(body),
            duration_ms=monotonic_ms(start),
        )
        return StoredFile(
            id=str(result.get("id") or ""), name=name, parent_id=parent_id, byte_size=len(body)
        )


class LocalFolderStore(FolderStore):
    """Directory tree on disk. Folder ids are paths relative to the root, "." is the root."""

    def __init__(self, root: Path):
        root.mkdir(parents=True, exist_ok=True)
        self._root = root.resolve()

    def _path(self, folder_id: str) -> Path:
        path = (self._root / folder_id).resolve()
        if path != self._root and self._root not in path.parents:
            raise StorageError(f"Folder outside storage root: {folder_id}")
        return path

    def list_folders(
        self, *, parent_id: str, name: str | None = None, limit: int = LIST_PAGE_SIZE
    ) -> list[FolderEntry]:
        parent = self._path(parent_id)
        if not parent.is_dir():
            return []
        out: list[FolderEntry] = []
        for child in sorted(parent.iterdir()):
            if not child.is_dir():
                continue
            if name is not None and child.name != name:
                continue
            out.append(FolderEntry(name=child.name, id=child.relative_to(self._root).as_posix()))
            if len(out) >= limit:
                break
        return out

    def put(self, *, name: str, parent_id: str, body: bytes, mime_type: str) -> StoredFile:
        start = time.monotonic()
        safe_name = name.replace("/", "-").replace(os.sep, "-")
        parent = self._path(parent_id)
        if not parent.is_dir():
            raise StoreFailure(f"Folder not found: {parent_id}")
        path = parent / safe_name
        try:
            path.write_bytes(body)
        except OSError as e:
            log_exception(
                logger,
                "storage.put.failure",
                backend="local",
                file_name=safe_name,
                parent_id=parent_id,
                byte_size=len(body),
            )
            raise StoreFailure(f"Local write failed: {e}") from e
        log_event(
            logger,
            "storage.put.success",
            backend="local",
            file_name=safe_name,
            parent_id=parent_id,
            byte_size=len(body),
            duration_ms=monotonic_ms(start),
        )
        file_id = path.relative_to(self._root).as_posix()
        return StoredFile(id=file_id, name=safe_name, parent_id=parent_id, byte_size=len(body))


def build_storage(settings: Settings, *, token_provider: TokenProvider | None) -> FolderStore:
    if settings.storage_backend == "local":
        root = settings.local_storage_path
        if not root.is_absolute():
            root = Path(os.getcwd()) / root
        return LocalFolderStore(root)
    if token_provider is None:
        raise StorageError("Drive backend requires a token provider")
    return DriveFolderStore(
        service_factory=drive_service_factory(
            token_provider, timeout_seconds=settings.drive_timeout_seconds
        )
    )
