from __future__ import annotations

from datetime import date

from fastapi import APIRouter
from fastapi.responses import Response

from receipt_filer.core.logging import get_logger, log_event
from receipt_filer.modules.exports.service import (
    export_filename,
    records_to_csv,
    records_to_xlsx,
)
from receipt_filer.modules.filing.schemas import FiledRecord

router = APIRouter(tags=["exports"])
logger = get_logger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _attachment(filename: str) -> dict[str, str]:
    return {"Content-Disposition": f'attachment; filename="{filename}"'}


@router.post("/exports/csv")
def export_csv(records: list[FiledRecord]) -> Response:
    body = records_to_csv(records)
    log_event(logger, "export.csv.generated", record_count=len(records), byte_size=len(body))
    return Response(
        content=body,
        media_type="text/csv; charset=utf-8",
        headers=_attachment(export_filename(today=date.today(), suffix="csv")),
    )


@router.post("/exports/xlsx")
def export_xlsx(records: list[FiledRecord]) -> Response:
    body = records_to_xlsx(records)
    log_event(logger, "export.xlsx.generated", record_count=len(records), byte_size=len(body))
    return Response(
        content=body,
        media_type=XLSX_MEDIA_TYPE,
        headers=_attachment(export_filename(today=date.today(), suffix="xlsx")),
    )
