from __future__ import annotations

from dataclasses import dataclass

from receipt_filer.core.config import Settings, settings
from receipt_filer.core.credentials import TokenProvider, build_token_provider
from receipt_filer.core.storage import FolderStore, build_storage
from receipt_filer.modules.documents.pages import PageSplitter
from receipt_filer.modules.extraction.ai import (
    ExtractionClient,
    RetryPlan,
    build_extraction_client,
)
from receipt_filer.modules.filing.service import FilingService
from receipt_filer.modules.routing.index import DirectoryIndex
from receipt_filer.modules.routing.service import (
    CategoryFallbackTable,
    PathResolver,
    default_fallback_table,
)


@dataclass(frozen=True)
class FilingContext:
    """Everything a filing run needs, built once at startup and shared read-only."""

    settings: Settings
    token_provider: TokenProvider
    store: FolderStore
    retry_plan: RetryPlan
    fallback_table: CategoryFallbackTable
    extractor: ExtractionClient
    resolver: PathResolver
    splitter: PageSplitter

    def filing_service(self) -> FilingService:
        return FilingService(
            extractor=self.extractor,
            resolver=self.resolver,
            store=self.store,
            splitter=self.splitter,
            root_id=self.settings.drive_root_folder_id,
            max_workers=self.settings.filing_max_workers,
            deadline_seconds=self.settings.batch_deadline_seconds,
        )


def build_fallback_table(settings: Settings) -> CategoryFallbackTable:
    if settings.category_fallbacks:
        return CategoryFallbackTable(settings.category_fallbacks)
    return default_fallback_table()


def build_context(
    settings: Settings,
    *,
    token_provider: TokenProvider | None = None,
    store: FolderStore | None = None,
    extractor: ExtractionClient | None = None,
) -> FilingContext:
    token_provider = token_provider or build_token_provider(settings)
    store = store or build_storage(settings, token_provider=token_provider)
    retry_plan = RetryPlan.from_settings(settings)
    table = build_fallback_table(settings)
    extractor = extractor or build_extraction_client(
        settings, token_provider=token_provider, retry_plan=retry_plan
    )
    resolver = PathResolver(
        DirectoryIndex(store),
        table,
        legacy_cutoff_year=settings.legacy_cutoff_year,
        legacy_folder_name=settings.legacy_folder_name,
    )
    return FilingContext(
        settings=settings,
        token_provider=token_provider,
        store=store,
        retry_plan=retry_plan,
        fallback_table=table,
        extractor=extractor,
        resolver=resolver,
        splitter=PageSplitter(scale=settings.pdf_render_scale),
    )


def bootstrap() -> FilingContext:
    return build_context(settings)
