from __future__ import annotations

import enum
from collections.abc import Iterator
from dataclasses import dataclass

import fitz  # PyMuPDF

from receipt_filer.core.errors import FailureKind, FilingError

DEFAULT_IMAGE_MIME_TYPE = "image/jpeg"
PAGE_IMAGE_MIME_TYPE = "image/png"
DEFAULT_RENDER_SCALE = 2.0


class SourceKind(str, enum.Enum):
    IMAGE = "image"
    PDF = "pdf"


class UnsupportedDocument(FilingError):
    kind = FailureKind.UNSUPPORTED_DOCUMENT


@dataclass(frozen=True)
class Page:
    index: int
    body: bytes
    mime_type: str


def detect_kind(*, filename: str, content_type: str | None, body: bytes) -> SourceKind:
    if not body:
        raise UnsupportedDocument(f"Empty upload: {filename}")
    if _looks_like_pdf_bytes(body):
        return SourceKind.PDF
    if _looks_like_image_bytes(body):
        return SourceKind.IMAGE

    # Never hand non-PDF bytes to the rasterizer just because of the name.
    if filename.lower().endswith(".pdf") or (content_type or "").lower().endswith("/pdf"):
        raise UnsupportedDocument(f"Not a readable PDF: {filename}")
    if _is_supported_image(filename, content_type):
        return SourceKind.IMAGE
    raise UnsupportedDocument(f"Unsupported upload: {filename}")


def image_mime_type(*, filename: str, content_type: str | None, body: bytes) -> str:
    ctype = (content_type or "").lower()
    if ctype.startswith("image/"):
        return ctype
    b = body.lstrip()
    if b.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if b.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    if len(b) >= 12 and b.startswith(b"RIFF") and b[8:12] == b"WEBP":
        return "image/webp"
    if filename.lower().endswith(".png"):
        return "image/png"
    return DEFAULT_IMAGE_MIME_TYPE


class PageSplitter:
    def __init__(self, *, scale: float = DEFAULT_RENDER_SCALE):
        self._scale = scale

    def count(self, body: bytes, kind: SourceKind) -> int:
        if kind != SourceKind.PDF:
            return 1
        with _open_pdf(body) as doc:
            return doc.page_count

    def split(
        self, body: bytes, kind: SourceKind, *, mime_type: str = DEFAULT_IMAGE_MIME_TYPE
    ) -> Iterator[Page]:
        """Pages in source order, numbered from 1. Rendered lazily, one pass only."""
        if kind != SourceKind.PDF:
            yield Page(index=1, body=body, mime_type=mime_type)
            return

        matrix = fitz.Matrix(self._scale, self._scale)
        with _open_pdf(body) as doc:
            for page_number in range(doc.page_count):
                pixmap = doc.load_page(page_number).get_pixmap(matrix=matrix, alpha=False)
                yield Page(
                    index=page_number + 1,
                    body=pixmap.tobytes("png"),
                    mime_type=PAGE_IMAGE_MIME_TYPE,
                )


def _open_pdf(body: bytes) -> fitz.Document:
    try:
        doc = fitz.open(stream=body, filetype="pdf")
    except Exception as e:  # noqa: BLE001
        raise UnsupportedDocument(f"Could not open PDF: {e}") from e
    if doc.page_count < 1:
        doc.close()
        raise UnsupportedDocument("PDF has no pages")
    return doc


def _looks_like_pdf_bytes(body: bytes) -> bool:
    if not body:
        return False
    b = body.lstrip()
    if b.startswith(b"\xef\xbb\xbf"):
        b = b[3:].lstrip()
    return b.startswith(b"%PDF")


def _looks_like_image_bytes(body: bytes) -> bool:
    if not body:
        return False
    b = body.lstrip()
    return (
        b.startswith(b"\x89PNG\r\n\x1a\n")
        or b.startswith(b"\xff\xd8\xff")
        or b.startswith(b"II*\x00")
        or b.startswith(b"MM\x00*")
        or b.startswith(b"BM")
        or b.startswith((b"GIF87a", b"GIF89a"))
        or (len(b) >= 12 and b.startswith(b"RIFF") and b[8:12] == b"WEBP")
    )


def _is_supported_image(filename: str, content_type: str | None) -> bool:
    if (content_type or "").lower().startswith("image/"):
        return True
    return filename.lower().endswith(
        (".png", ".jpg", ".jpeg", ".tif", ".tiff", ".bmp", ".gif", ".webp", ".heic")
    )
