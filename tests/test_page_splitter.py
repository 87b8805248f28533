from __future__ import annotations

import pytest

from receipt_filer.core.errors import FailureKind
from receipt_filer.modules.documents.pages import (
    PageSplitter,
    SourceKind,
    UnsupportedDocument,
    detect_kind,
    image_mime_type,
)


def test_detect_kind_rejects_non_pdf_bytes_for_pdf_extension():
    with pytest.raises(UnsupportedDocument) as exc:
        detect_kind(
            filename="receipt.pdf",
            content_type="application/pdf",
            body=b"\x00\x01\x02\x03",
        )
    assert exc.value.kind == FailureKind.UNSUPPORTED_DOCUMENT


def test_detect_kind_trusts_pdf_magic_over_filename():
    kind = detect_kind(filename="scan.jpg", content_type="image/jpeg", body=b"%PDF-1.7\n...")
    assert kind == SourceKind.PDF


def test_detect_kind_accepts_images_by_bytes_or_type():
    assert detect_kind(filename="x", content_type=None, body=b"\xff\xd8\xff\xe0data") == (
        SourceKind.IMAGE
    )
    assert detect_kind(filename="photo.heic", content_type=None, body=b"ftypheic") == (
        SourceKind.IMAGE
    )


def test_detect_kind_rejects_empty_and_unknown_uploads():
    with pytest.raises(UnsupportedDocument):
        detect_kind(filename="receipt.jpg", content_type="image/jpeg", body=b"")
    with pytest.raises(UnsupportedDocument):
        detect_kind(filename="notes.txt", content_type="text/plain", body=b"hello")


def test_image_mime_type_prefers_declared_type_then_magic():
    assert image_mime_type(filename="a", content_type="image/webp", body=b"") == "image/webp"
    assert image_mime_type(filename="a", content_type=None, body=b"\x89PNG\r\n\x1a\nxx") == (
        "image/png"
    )
    assert image_mime_type(filename="a.bin", content_type=None, body=b"\xff\xd8\xff") == (
        "image/jpeg"
    )


def test_image_is_one_page_with_original_bytes():
    body = b"\xff\xd8\xff\xe0jpeg-bytes"
    splitter = PageSplitter()

    pages = list(splitter.split(body, SourceKind.IMAGE, mime_type="image/jpeg"))

    assert splitter.count(body, SourceKind.IMAGE) == 1
    assert len(pages) == 1
    assert pages[0].index == 1
    assert pages[0].body == body
    assert pages[0].mime_type == "image/jpeg"


def test_pdf_pages_render_to_png_in_order(make_pdf):
    body = make_pdf(3)
    splitter = PageSplitter(scale=1.0)

    pages = list(splitter.split(body, SourceKind.PDF))

    assert splitter.count(body, SourceKind.PDF) == 3
    assert [p.index for p in pages] == [1, 2, 3]
    for page in pages:
        assert page.mime_type == "image/png"
        assert page.body.startswith(b"\x89PNG\r\n\x1a\n")


def test_render_scale_changes_image_size(make_pdf):
    import fitz

    body = make_pdf(1)
    small = next(PageSplitter(scale=1.0).split(body, SourceKind.PDF))
    large = next(PageSplitter(scale=2.0).split(body, SourceKind.PDF))

    assert fitz.Pixmap(small.body).width == 200
    assert fitz.Pixmap(large.body).width == 400


def test_split_is_lazy(make_pdf):
    pages = PageSplitter().split(make_pdf(2), SourceKind.PDF)
    first = next(pages)
    assert first.index == 1
    pages.close()


def test_corrupt_pdf_is_unsupported():
    with pytest.raises(UnsupportedDocument):
        PageSplitter().count(b"%PDF-1.4 garbage", SourceKind.PDF)
