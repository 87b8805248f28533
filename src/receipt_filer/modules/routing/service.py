from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from types import MappingProxyType

from receipt_filer.core.errors import FailureKind, FilingError
from receipt_filer.core.logging import get_logger, log_event
from receipt_filer.modules.extraction.schemas import Category
from receipt_filer.modules.routing.index import DirectoryIndex

logger = get_logger(__name__)

RECEIPTS_FOLDER = "3-receipts"
GENERIC_FOLDER = "generic"
CATCH_ALL_FOLDER = "7-generic"


class PathResolutionFailure(FilingError):
    kind = FailureKind.PATH_RESOLUTION

    def __init__(self, detail: str, *, expected: str, available: Sequence[str] = ()):
        super().__init__(detail)
        self.expected = expected
        self.available = tuple(available)


class CategoryFallbackTable:
    """Category label -> ordered folder names to try, always ending in the catch-all folder."""

    def __init__(
        self,
        entries: Mapping[str, Sequence[str]],
        *,
        catch_all: str = CATCH_ALL_FOLDER,
        generic: Sequence[str] = (RECEIPTS_FOLDER, GENERIC_FOLDER, CATCH_ALL_FOLDER),
    ):
        table: dict[str, tuple[str, ...]] = {}
        for category, names in entries.items():
            candidates = tuple(n for n in names if n)
            if not candidates:
                raise ValueError(f"Empty fallback list for category {category!r}")
            if candidates[-1] != catch_all:
                raise ValueError(
                    f"Fallback list for {category!r} must end with {catch_all!r}: {candidates}"
                )
            table[category] = candidates
        generic = tuple(generic)
        if not generic or generic[-1] != catch_all:
            raise ValueError(f"Generic fallback list must end with {catch_all!r}")
        self._table = MappingProxyType(table)
        self._generic = generic
        self.catch_all = catch_all

    def candidates(self, category: str) -> tuple[str, ...]:
        found = self._table.get(category)
        if found is not None:
            return found
        return (category, *(n for n in self._generic if n != category))

    def categories(self) -> tuple[str, ...]:
        return tuple(self._table)


def default_fallback_table() -> CategoryFallbackTable:
    specific = (RECEIPTS_FOLDER, GENERIC_FOLDER, CATCH_ALL_FOLDER)
    entries: dict[str, tuple[str, ...]] = {
        c.value: (c.value, *specific) for c in Category if c != Category.OTHER
    }
    # The catch-all category skips the receipts folder.
    entries[Category.OTHER.value] = (Category.OTHER.value, GENERIC_FOLDER, CATCH_ALL_FOLDER)
    return CategoryFallbackTable(entries)


def year_month_folder_name(d: date) -> str:
    return f"{d.year % 100:02d}{d.month:02d}"


@dataclass(frozen=True)
class RoutingDecision:
    parent_id: str
    parent_name: str
    folder_id: str
    folder_name: str


class PathResolver:
    def __init__(
        self,
        index: DirectoryIndex,
        table: CategoryFallbackTable,
        *,
        legacy_cutoff_year: int = 2025,
        legacy_folder_name: str = "expenses-through-2025",
    ):
        self._index = index
        self._table = table
        self._legacy_cutoff_year = legacy_cutoff_year
        self._legacy_folder_name = legacy_folder_name

    def period_folder_name(self, routing_date: date) -> str:
        if routing_date.year <= self._legacy_cutoff_year:
            return self._legacy_folder_name
        return year_month_folder_name(routing_date)

    def resolve(self, category: str, routing_date: date, root_id: str) -> RoutingDecision:
        period_name = self.period_folder_name(routing_date)
        parent_id = self._index.find_by_name(period_name, root_id)
        if not parent_id:
            raise PathResolutionFailure(
                f"Folder not found: {period_name}", expected=period_name
            )

        children = self._index.list_children(parent_id)
        by_name: dict[str, str] = {}
        for entry in children:
            by_name.setdefault(entry.name, entry.id)

        candidates = self._table.candidates(category)
        for name in candidates:
            folder_id = by_name.get(name)
            if folder_id:
                log_event(
                    logger,
                    "routing.resolve.success",
                    category=category,
                    period_folder=period_name,
                    folder_name=name,
                    fallback_used=name != category,
                )
                return RoutingDecision(
                    parent_id=parent_id,
                    parent_name=period_name,
                    folder_id=folder_id,
                    folder_name=name,
                )

        available = [entry.name for entry in children]
        log_event(
            logger,
            "routing.resolve.failure",
            category=category,
            period_folder=period_name,
            candidates=list(candidates),
            available=available,
        )
        raise PathResolutionFailure(
            f"Category folder not found: {category}. Available: {', '.join(available)}",
            expected=category,
            available=available,
        )
