from __future__ import annotations

import contextvars
import time
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import date

from receipt_filer.core.errors import FailureKind, FilingError
from receipt_filer.core.logging import (
    batch_context,
    get_logger,
    log_event,
    log_exception,
    monotonic_ms,
)
from receipt_filer.core.storage import FolderStore, StorageError
from receipt_filer.modules.documents.pages import (
    Page,
    PageSplitter,
    SourceKind,
    UnsupportedDocument,
    detect_kind,
    image_mime_type,
)
from receipt_filer.modules.extraction.ai import ExtractionClient
from receipt_filer.modules.extraction.schemas import FiledMetadata, apply_defaults
from receipt_filer.modules.filing.schemas import (
    BatchOutcome,
    FiledRecord,
    PageFailure,
    SourceDocument,
)
from receipt_filer.modules.routing.service import PathResolver

logger = get_logger(__name__)

DEADLINE_REASON = "Deadline exceeded before the page was processed"


class Deadline:
    def __init__(self, seconds: float | None, *, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._expires_at = None if seconds is None else clock() + seconds

    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())


def derive_file_name(metadata: FiledMetadata, *, page_number: int | None = None) -> str:
    base = f"{metadata.date.isoformat()}_{metadata.category}_{metadata.vendor}"
    if page_number is None:
        return f"{base}.jpg"
    return f"{base}_p{page_number}.png"


class FilingService:
    def __init__(
        self,
        *,
        extractor: ExtractionClient,
        resolver: PathResolver,
        store: FolderStore,
        splitter: PageSplitter,
        root_id: str,
        max_workers: int = 1,
        deadline_seconds: float | None = None,
        today: Callable[[], date] = date.today,
    ):
        self._extractor = extractor
        self._resolver = resolver
        self._store = store
        self._splitter = splitter
        self._root_id = root_id
        self._max_workers = max(1, int(max_workers))
        self._deadline_seconds = deadline_seconds
        self._today = today

    def new_deadline(self) -> Deadline:
        return Deadline(self._deadline_seconds)

    def file_batch(self, sources: Iterable[SourceDocument]) -> list[BatchOutcome]:
        """Files each source in order under one shared deadline."""
        deadline = self.new_deadline()
        start = time.monotonic()
        with batch_context():
            outcomes = [self.file_document(source, deadline=deadline) for source in sources]
            log_event(
                logger,
                "filing.batch.finish",
                source_count=len(outcomes),
                pages_total=sum(o.total_pages for o in outcomes),
                pages_succeeded=sum(len(o.succeeded) for o in outcomes),
                deadline_exceeded=any(o.deadline_exceeded for o in outcomes),
                duration_ms=monotonic_ms(start),
            )
            return outcomes

    def file_document(
        self, source: SourceDocument, *, deadline: Deadline | None = None
    ) -> BatchOutcome:
        deadline = deadline or self.new_deadline()
        start = time.monotonic()
        try:
            kind = detect_kind(
                filename=source.filename, content_type=source.content_type, body=source.body
            )
            total_pages = self._splitter.count(source.body, kind)
        except UnsupportedDocument as e:
            log_event(logger, "filing.document.unsupported", source_name=source.filename)
            return BatchOutcome(
                source_name=source.filename,
                total_pages=1,
                failed=(PageFailure(page_index=1, kind=e.kind, reason=e.detail),),
            )

        mime_type = image_mime_type(
            filename=source.filename, content_type=source.content_type, body=source.body
        )
        pages = self._splitter.split(source.body, kind, mime_type=mime_type)
        results = self._run_pages(
            pages, multi_page=kind == SourceKind.PDF, total_pages=total_pages, deadline=deadline
        )

        succeeded: list[FiledRecord] = []
        failed: list[PageFailure] = []
        for index in range(1, total_pages + 1):
            result = results.get(index)
            if result is None:
                result = PageFailure(
                    page_index=index, kind=FailureKind.DEADLINE_EXCEEDED, reason=DEADLINE_REASON
                )
            if isinstance(result, FiledRecord):
                succeeded.append(result)
            else:
                failed.append(result)

        outcome = BatchOutcome(
            source_name=source.filename,
            total_pages=total_pages,
            succeeded=tuple(succeeded),
            failed=tuple(failed),
            deadline_exceeded=any(f.kind == FailureKind.DEADLINE_EXCEEDED for f in failed),
        )
        log_event(
            logger,
            "filing.document.finish",
            source_name=source.filename,
            source_kind=kind.value,
            total_pages=total_pages,
            pages_succeeded=len(succeeded),
            pages_failed=len(failed),
            status=outcome.status.value,
            duration_ms=monotonic_ms(start),
        )
        return outcome

    def _run_pages(
        self,
        pages: Iterable[Page],
        *,
        multi_page: bool,
        total_pages: int,
        deadline: Deadline,
    ) -> dict[int, FiledRecord | PageFailure]:
        results: dict[int, FiledRecord | PageFailure] = {}
        in_flight: dict[Future, int] = {}

        def _collect(done: Iterable[Future]) -> None:
            for future in done:
                index = in_flight.pop(future)
                results[index] = future.result()

        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            iterator = iter(pages)
            while True:
                if len(in_flight) >= self._max_workers:
                    done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                    _collect(done)
                if deadline.expired():
                    break
                try:
                    page = next(iterator)
                except StopIteration:
                    break
                except RuntimeError as e:
                    # Rendering broke mid-document; the remaining pages cannot be produced.
                    next_index = len(results) + len(in_flight) + 1
                    for index in range(next_index, total_pages + 1):
                        results[index] = PageFailure(
                            page_index=index,
                            kind=FailureKind.UNSUPPORTED_DOCUMENT,
                            reason=f"Page could not be rendered: {e}",
                        )
                    break
                future = pool.submit(
                    contextvars.copy_context().run,
                    self._file_page,
                    page,
                    multi_page=multi_page,
                    deadline=deadline,
                )
                in_flight[future] = page.index
            _collect(wait(list(in_flight)).done)
        return results

    def _file_page(
        self, page: Page, *, multi_page: bool, deadline: Deadline
    ) -> FiledRecord | PageFailure:
        if deadline.expired():
            return PageFailure(
                page_index=page.index, kind=FailureKind.DEADLINE_EXCEEDED, reason=DEADLINE_REASON
            )

        start = time.monotonic()
        try:
            extracted = self._extractor.extract(page.body, page.mime_type)
            metadata = apply_defaults(extracted, today=self._today())
            decision = self._resolver.resolve(metadata.category, metadata.date, self._root_id)
            file_name = derive_file_name(
                metadata, page_number=page.index if multi_page else None
            )
            self._store.put(
                name=file_name,
                parent_id=decision.folder_id,
                body=page.body,
                mime_type=page.mime_type,
            )
        except FilingError as e:
            return self._page_failure(page, kind=e.kind, reason=e.detail, start=start)
        except StorageError as e:
            return self._page_failure(
                page, kind=FailureKind.STORE_FAILURE, reason=str(e), start=start
            )
        except Exception:
            log_exception(logger, "filing.page.error", page_index=page.index)
            raise

        log_event(
            logger,
            "filing.page.success",
            page_index=page.index,
            file_name=file_name,
            folder=f"{decision.parent_name}/{decision.folder_name}",
            duration_ms=monotonic_ms(start),
        )
        return FiledRecord(
            date=metadata.date,
            amount=metadata.amount,
            vendor=metadata.vendor,
            category=metadata.category,
            file_name=file_name,
        )

    def _page_failure(
        self, page: Page, *, kind: FailureKind, reason: str, start: float
    ) -> PageFailure:
        log_event(
            logger,
            "filing.page.failure",
            page_index=page.index,
            failure_kind=kind.value,
            reason=reason,
            duration_ms=monotonic_ms(start),
        )
        return PageFailure(page_index=page.index, kind=kind, reason=reason)
