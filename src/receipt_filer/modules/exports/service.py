from __future__ import annotations

import csv
import io
from collections.abc import Iterable
from datetime import date

from openpyxl import Workbook
from openpyxl.styles import Font

from receipt_filer.modules.filing.schemas import FiledRecord

EXPORT_COLUMNS = ("date", "amount", "vendor", "category", "fileName")

# Excel only detects UTF-8 in a CSV when the file starts with a BOM.
UTF8_BOM = "\ufeff"


def export_filename(*, today: date, suffix: str) -> str:
    return f"receipts_{today.isoformat()}.{suffix}"


def _row(record: FiledRecord) -> list[object]:
    return [
        record.date.isoformat(),
        record.amount,
        record.vendor,
        record.category,
        record.file_name,
    ]


def records_to_csv(records: Iterable[FiledRecord]) -> bytes:
    buf = io.StringIO()
    buf.write(UTF8_BOM)
    writer = csv.writer(buf, quoting=csv.QUOTE_NONNUMERIC, lineterminator="\r\n")
    writer.writerow(EXPORT_COLUMNS)
    for record in records:
        writer.writerow(_row(record))
    return buf.getvalue().encode("utf-8")


def records_to_xlsx(records: Iterable[FiledRecord]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Receipts"
    ws.append(list(EXPORT_COLUMNS))
    for cell in ws[1]:
        cell.font = Font(bold=True)
    for record in records:
        ws.append(_row(record))
        ws.cell(row=ws.max_row, column=2).number_format = "#,##0.##"
    widths = {"A": 12, "B": 12, "C": 28, "D": 22, "E": 48}
    for col, width in widths.items():
        ws.column_dimensions[col].width = width
    ws.freeze_panes = "A2"

    out = io.BytesIO()
    wb.save(out)
    return out.getvalue()
