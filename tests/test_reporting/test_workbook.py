"""Tests for report_kit.reporting.workbook."""

from __future__ import annotations

import io
import zipfile
from datetime import date, datetime, timezone

from openpyxl import load_workbook

from fakes import read_sheet_names
from report_kit.models.execution import ColumnDef, ColumnType
from report_kit.reporting.workbook import (
    MAX_CELL_CHARS,
    REPORT_SHEET,
    SheetData,
    excel_value,
    render_workbook,
    sanitize_sheet_name,
)

GENERATED_AT = datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc)


def _sheet(name: str = "prices") -> SheetData:
    return SheetData(
        name=name,
        columns=(
            ColumnDef(name="coin_id", type=ColumnType.TEXT),
            ColumnDef(name="price_usd", type=ColumnType.CURRENCY),
            ColumnDef(name="as_of", type=ColumnType.TIMESTAMP),
        ),
        rows=(
            {"coin_id": "bitcoin", "price_usd": 65000.12, "as_of": GENERATED_AT},
            {"coin_id": "ethereum", "price_usd": 3200.5, "as_of": None},
        ),
    )


# ── sanitize_sheet_name ───────────────────────────────────────────────────────


def test_sanitize_strips_invalid_characters() -> None:
    assert sanitize_sheet_name("btc/usd [daily]*?", set()) == "btcusd daily"


def test_sanitize_truncates_to_31() -> None:
    name = sanitize_sheet_name("x" * 40, set())
    assert len(name) == 31


def test_sanitize_dedupes_case_insensitively() -> None:
    taken: set[str] = set()
    assert sanitize_sheet_name("Prices", taken) == "Prices"
    assert sanitize_sheet_name("prices", taken) == "prices~2"
    assert sanitize_sheet_name("PRICES", taken) == "PRICES~3"
    assert taken == {"prices", "prices~2", "prices~3"}


def test_sanitize_dedupe_keeps_length_limit() -> None:
    taken: set[str] = set()
    first = sanitize_sheet_name("a" * 31, taken)
    second = sanitize_sheet_name("a" * 35, taken)
    assert second == "a" * 29 + "~2"
    assert first != second


def test_sanitize_empty_falls_back() -> None:
    assert sanitize_sheet_name("[]", set()) == "dataset"


def test_sanitize_avoids_report_sheet() -> None:
    assert sanitize_sheet_name("_REPORT", {REPORT_SHEET}) == "_REPORT~2"


# ── excel_value ───────────────────────────────────────────────────────────────


def test_excel_value_converts_aware_datetimes_to_naive_utc() -> None:
    value = excel_value(GENERATED_AT, ColumnType.TIMESTAMP)
    assert value == datetime(2024, 3, 1, 12, 30)
    assert value.tzinfo is None


def test_excel_value_date_column() -> None:
    assert excel_value(GENERATED_AT, ColumnType.DATE) == date(2024, 3, 1)


def test_excel_value_structures_become_json() -> None:
    assert excel_value({"b": 1, "a": 2}, ColumnType.TEXT) == '{"a": 2, "b": 1}'
    assert excel_value(None, ColumnType.NUMBER) is None
    assert excel_value(True, ColumnType.BOOLEAN) is True


def test_excel_value_strips_illegal_control_characters() -> None:
    assert excel_value("Chain\x0bX", ColumnType.TEXT) == "ChainX"


def test_excel_value_caps_cell_length() -> None:
    assert len(excel_value("x" * 40000, ColumnType.TEXT)) == MAX_CELL_CHARS


# ── render_workbook ───────────────────────────────────────────────────────────


def test_render_is_byte_identical_for_same_inputs() -> None:
    summary = [["Report", "Test"], ["Generated at (UTC)", GENERATED_AT]]
    first = render_workbook(summary, [_sheet()], GENERATED_AT, title="Test")
    second = render_workbook(summary, [_sheet()], GENERATED_AT, title="Test")
    assert first == second


def test_render_pins_zip_timestamps_and_core_properties() -> None:
    content = render_workbook([["Report", "Test"]], [_sheet()], GENERATED_AT, title="Test")
    with zipfile.ZipFile(io.BytesIO(content)) as archive:
        assert {info.date_time for info in archive.infolist()} == {(1980, 1, 1, 0, 0, 0)}
        core = archive.read("docProps/core.xml").decode("utf-8")
    assert "2024-03-01T12:30:00Z" in core
    assert "report-kit" in core


def test_render_sheet_order_and_contents() -> None:
    content = render_workbook([["Report", "Test"]], [_sheet("prices"), _sheet("more")], GENERATED_AT)
    assert read_sheet_names(content) == [REPORT_SHEET, "prices", "more"]

    wb = load_workbook(io.BytesIO(content))
    ws = wb["prices"]
    assert [c.value for c in ws[1]] == ["coin_id", "price_usd", "as_of"]
    assert ws["A2"].value == "bitcoin"
    assert ws["B2"].value == 65000.12
    assert ws["B2"].number_format == "#,##0.00"
    assert ws["C2"].value == datetime(2024, 3, 1, 12, 30)
    assert ws["C3"].value is None
    assert ws.freeze_panes == "A2"
    assert wb[REPORT_SHEET]["B1"].value == "Test"


def test_render_accepts_control_characters_in_rows_and_summary() -> None:
    sheet = SheetData(
        name="chains",
        columns=(ColumnDef(name="name", type=ColumnType.TEXT), ColumnDef(name="tvl", type=ColumnType.CURRENCY)),
        rows=({"name": "Chain\x0bX", "tvl": 1.0},),
    )
    content = render_workbook([["Report", "Bad\x07name"]], [sheet], GENERATED_AT)

    wb = load_workbook(io.BytesIO(content))
    assert wb["chains"]["A2"].value == "ChainX"
    assert wb[REPORT_SHEET]["B1"].value == "Badname"
