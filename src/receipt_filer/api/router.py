from __future__ import annotations

from fastapi import APIRouter

from receipt_filer.modules.exports.api import router as exports_router
from receipt_filer.modules.filing.api import router as filing_router

router = APIRouter()

router.include_router(filing_router, prefix="/api")
router.include_router(exports_router, prefix="/api")


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}
