from __future__ import annotations

from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from receipt_filer.api.deps import get_filing_service
from receipt_filer.core.logging import get_logger, log_event
from receipt_filer.modules.filing.schemas import BatchOutcome, FiledRecord, SourceDocument
from receipt_filer.modules.filing.service import FilingService

router = APIRouter(tags=["receipts"])
logger = get_logger(__name__)


class FilingResponse(BaseModel):
    success: bool
    message: str
    results: list[FiledRecord]
    outcomes: list[BatchOutcome]


@router.post("/receipts", response_model=FilingResponse, response_model_by_alias=True)
async def file_receipts(
    uploads: list[UploadFile] = File(...),
    service: FilingService = Depends(get_filing_service),
) -> FilingResponse:
    sources: list[SourceDocument] = []
    for upload in uploads:
        body = await upload.read()
        filename = upload.filename or "upload.bin"
        log_event(
            logger,
            "upload.received",
            filename=filename,
            content_type=upload.content_type,
            byte_size=len(body),
        )
        sources.append(
            SourceDocument(filename=filename, content_type=upload.content_type, body=body)
        )

    outcomes = await run_in_threadpool(service.file_batch, sources)
    results = [record for outcome in outcomes for record in outcome.succeeded]
    return FilingResponse(
        success=bool(results),
        message="; ".join(outcome.message for outcome in outcomes),
        results=results,
        outcomes=outcomes,
    )
