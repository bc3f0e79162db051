"""
Workbook rendering for the ``download`` artifact.

One worksheet per dataset plus a leading ``_report`` sheet.  Cell values
are written with number formats chosen by semantic ``ColumnType``; aware
datetimes are converted to naive UTC because Excel has no time zones.
Text is stripped of the control characters openpyxl rejects and capped at
Excel's 32,767-character cell limit.

Reproducible bytes
------------------
openpyxl stamps the save time into ``docProps/core.xml`` and every zip entry
header.  ``render_workbook()`` saves to memory and then rewrites the archive:

  * each entry keeps its name and order, with ``date_time`` pinned to
    1980-01-01 00:00:00;
  * ``docProps/core.xml`` is regenerated with ``created`` and ``modified``
    set to ``generated_at``.

Identical tables and ``generated_at`` therefore give byte-identical files.
"""

from __future__ import annotations

import io
import json
import re
import zipfile
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Sequence

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.packaging.core import DocumentProperties
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.xml.functions import tostring

from report_kit.models.execution import ColumnDef, ColumnType

REPORT_SHEET = "_report"
MAX_SHEET_NAME = 31
MAX_CELL_CHARS = 32767

_FIXED_ZIP_TIME = (1980, 1, 1, 0, 0, 0)
_CORE_PROPS_ENTRY = "docProps/core.xml"
_INVALID_SHEET_CHARS = re.compile(r"[\[\]:*?/\\]")
_CREATOR = "report-kit"

NUMBER_FORMATS: dict[ColumnType, str] = {
    ColumnType.INTEGER:   "#,##0",
    ColumnType.NUMBER:    "#,##0.########",
    ColumnType.CURRENCY:  "#,##0.00",
    ColumnType.PERCENT:   "0.00%",
    ColumnType.TIMESTAMP: "yyyy-mm-dd hh:mm:ss",
    ColumnType.DATE:      "yyyy-mm-dd",
}

_HEADER_FONT = Font(bold=True)


@dataclass(frozen=True)
class SheetData:
    """A worksheet to render: name, typed header and records."""

    name: str
    columns: tuple[ColumnDef, ...]
    rows: tuple[dict[str, Any], ...]


# ── Sheet names ───────────────────────────────────────────────────────────────


def sanitize_sheet_name(raw: str, taken: set[str]) -> str:
    """Return an Excel-legal sheet name for ``raw`` that is not in ``taken``.

    Strips control characters and ``[]:*?/\\``, trims surrounding
    apostrophes and whitespace, truncates to 31 characters and appends
    ``~2``, ``~3`` ... on a case-insensitive clash.  ``taken`` holds
    lower-cased names and is updated in place.
    """
    base = _INVALID_SHEET_CHARS.sub("", ILLEGAL_CHARACTERS_RE.sub("", raw))
    base = base.strip().strip("'").strip()
    if not base:
        base = "dataset"
    base = base[:MAX_SHEET_NAME]

    name = base
    counter = 2
    while name.lower() in taken:
        suffix = f"~{counter}"
        name = base[: MAX_SHEET_NAME - len(suffix)] + suffix
        counter += 1
    taken.add(name.lower())
    return name


# ── Cell values ───────────────────────────────────────────────────────────────


def clean_text(text: str) -> str:
    """Drop control characters Excel rejects and cap at the cell length limit."""
    return ILLEGAL_CHARACTERS_RE.sub("", text)[:MAX_CELL_CHARS]


def excel_value(value: Any, column_type: ColumnType) -> Any:
    """Convert a normalized row value into something openpyxl can store."""
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        if column_type == ColumnType.DATE:
            return value.date()
        return value
    if isinstance(value, date):
        return value
    if isinstance(value, (dict, list, tuple)):
        return clean_text(json.dumps(value, sort_keys=True, default=str))
    if isinstance(value, str):
        return clean_text(value)
    if isinstance(value, (bool, int, float)):
        return value
    return clean_text(str(value))


def _write_table(ws, columns: Sequence[ColumnDef], rows: Sequence[dict[str, Any]]) -> None:
    ws.append([c.name for c in columns])
    for cell in ws[1]:
        cell.font = _HEADER_FONT

    for record in rows:
        ws.append([excel_value(record.get(c.name), c.type) for c in columns])

    for idx, column in enumerate(columns, start=1):
        letter = get_column_letter(idx)
        fmt = NUMBER_FORMATS.get(column.type)
        if fmt is not None:
            for (cell,) in ws.iter_rows(min_row=2, min_col=idx, max_col=idx):
                cell.number_format = fmt
        ws.column_dimensions[letter].width = max(10, min(len(column.name) + 2, 40))

    ws.freeze_panes = "A2"


# ── Rendering ─────────────────────────────────────────────────────────────────


def render_workbook(
    summary_rows: Sequence[Sequence[Any]],
    sheets: Sequence[SheetData],
    generated_at: datetime,
    title: str = "",
) -> bytes:
    """Render the ``_report`` sheet and one sheet per ``SheetData`` to xlsx bytes.

    Args:
        summary_rows: Rows for the ``_report`` sheet, written as-is.
        sheets:       Dataset sheets in output order (names already sanitized).
        generated_at: Timestamp stored in the document properties.
        title:        Document title property.
    """
    wb = Workbook()
    report_ws = wb.active
    report_ws.title = REPORT_SHEET
    for row in summary_rows:
        report_ws.append([excel_value(v, ColumnType.TEXT) for v in row])
    report_ws.column_dimensions["A"].width = 22
    report_ws.column_dimensions["B"].width = 40

    for sheet in sheets:
        ws = wb.create_sheet(title=sheet.name)
        _write_table(ws, sheet.columns, sheet.rows)

    buffer = io.BytesIO()
    wb.save(buffer)
    return _pin_archive(buffer.getvalue(), generated_at, title)


def _core_properties_xml(generated_at: datetime, title: str) -> bytes:
    stamp = generated_at
    if stamp.tzinfo is not None:
        stamp = stamp.astimezone(timezone.utc).replace(tzinfo=None)
    props = DocumentProperties(
        creator=_CREATOR,
        title=clean_text(title) or None,
        created=stamp,
        modified=stamp,
        lastModifiedBy=_CREATOR,
    )
    return tostring(props.to_tree())


def _pin_archive(data: bytes, generated_at: datetime, title: str) -> bytes:
    source = zipfile.ZipFile(io.BytesIO(data))
    out = io.BytesIO()
    with source, zipfile.ZipFile(out, "w", compression=zipfile.ZIP_DEFLATED) as target:
        for entry in source.infolist():
            payload = source.read(entry.filename)
            if entry.filename == _CORE_PROPS_ENTRY:
                payload = _core_properties_xml(generated_at, title)
            info = zipfile.ZipInfo(entry.filename, date_time=_FIXED_ZIP_TIME)
            info.compress_type = zipfile.ZIP_DEFLATED
            info.create_system = 0
            info.external_attr = 0
            target.writestr(info, payload)
    return out.getvalue()
