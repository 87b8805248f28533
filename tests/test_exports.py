from __future__ import annotations

import io
from datetime import date
from decimal import Decimal

from receipt_filer.modules.exports.service import (
    export_filename,
    records_to_csv,
    records_to_xlsx,
)
from receipt_filer.modules.filing.schemas import FiledRecord

RECORDS = [
    FiledRecord(
        date=date(2024, 3, 5),
        amount=Decimal("1280"),
        vendor='Example "Taxi"',
        category="transportation",
        fileName="2024-03-05_transportation_Example Taxi.jpg",
    ),
    FiledRecord(
        date=date(2026, 1, 15),
        amount=Decimal("450.5"),
        vendor="喫茶店",
        category="meeting expense",
        file_name="2026-01-15_meeting expense_喫茶店_p1.png",
    ),
]


def test_csv_has_bom_header_and_quoted_text():
    body = records_to_csv(RECORDS)

    assert body.startswith(b"\xef\xbb\xbf")
    lines = body.decode("utf-8").lstrip("\ufeff").split("\r\n")
    assert lines[0] == '"date","amount","vendor","category","fileName"'
    assert lines[1] == (
        '"2024-03-05",1280,"Example ""Taxi""","transportation",'
        '"2024-03-05_transportation_Example Taxi.jpg"'
    )
    assert lines[2].startswith('"2026-01-15",450.5,"喫茶店",')
    assert lines[3] == ""


def test_csv_of_no_records_is_header_only():
    body = records_to_csv([]).decode("utf-8")
    assert body == '\ufeff"date","amount","vendor","category","fileName"\r\n'


def test_xlsx_has_header_and_rows():
    from openpyxl import load_workbook

    wb = load_workbook(io.BytesIO(records_to_xlsx(RECORDS)))
    ws = wb.active

    assert ws.title == "Receipts"
    assert [c.value for c in ws[1]] == ["date", "amount", "vendor", "category", "fileName"]
    assert ws[1][0].font.bold
    assert ws.freeze_panes == "A2"
    assert ws.max_row == 3
    assert ws["C3"].value == "喫茶店"
    assert float(ws["B3"].value) == 450.5


def test_export_filename():
    assert export_filename(today=date(2026, 10, 18), suffix="csv") == "receipts_2026-10-18.csv"


def test_record_amount_is_a_json_number():
    payload = [r.model_dump(mode="json", by_alias=True) for r in RECORDS]
    assert [p["amount"] for p in payload] == [1280, 450.5]
    assert RECORDS[1].amount == Decimal("450.5")
