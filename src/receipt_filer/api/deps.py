from __future__ import annotations

from functools import lru_cache

from receipt_filer.bootstrap import FilingContext, bootstrap
from receipt_filer.modules.filing.service import FilingService


@lru_cache(maxsize=1)
def get_context() -> FilingContext:
    return bootstrap()


def get_filing_service() -> FilingService:
    return get_context().filing_service()
