"""Spreadsheet conversion for business data and user exports.

Rows are plain dictionaries keyed by column header. Exports are written as
``.xlsx`` workbooks; imports accept ``.xlsx`` and ``.csv`` files and match
column headers loosely (case, spacing and punctuation are ignored).
"""

import json
import re
from io import BytesIO
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd
from openpyxl.utils import get_column_letter

from .database import BusinessData
from .exceptions import ValidationError
from .models.user import User

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
MAX_COLUMN_WIDTH = 50
KNOWN_METADATA_KEYS = ("location", "priority", "tags")

DATA_COLUMNS = [
    "ID",
    "Title",
    "Category",
    "Description",
    "Value",
    "Status",
    "Created By",
    "Created At",
    "Updated At",
    "Location",
    "Priority",
    "Tags",
    "Metadata",
]
USER_COLUMNS = ["ID", "Name", "Email", "Role", "Is Active", "Created At", "Updated At"]


def _date(value) -> str:
    return value.date().isoformat() if value else ""


def record_to_row(record: BusinessData, owner_name: Optional[str] = None) -> Dict[str, Any]:
    meta = record.meta or {}
    tags = meta.get("tags")
    extra = {k: v for k, v in meta.items() if k not in KNOWN_METADATA_KEYS}
    # tags containing commas cannot survive the comma separated Tags column
    if isinstance(tags, list) and any("," in str(t) for t in tags):
        extra["tags"] = tags
    return {
        "ID": record.id,
        "Title": record.title,
        "Category": record.category,
        "Description": record.description,
        "Value": record.value,
        "Status": record.status,
        "Created By": owner_name or "Unknown",
        "Created At": _date(record.created_at),
        "Updated At": _date(record.updated_at),
        "Location": meta.get("location", ""),
        "Priority": meta.get("priority", ""),
        "Tags": ", ".join(str(t) for t in tags) if isinstance(tags, list) else "",
        "Metadata": json.dumps(extra, sort_keys=True) if extra else "",
    }


def user_to_row(user: User) -> Dict[str, Any]:
    return {
        "ID": user.id,
        "Name": user.name,
        "Email": user.email,
        "Role": user.role,
        "Is Active": "Yes" if user.is_active else "No",
        "Created At": _date(user.created_at),
        "Updated At": _date(user.updated_at),
    }


def write_workbook(rows: List[Dict[str, Any]], columns: List[str], sheet_name: str) -> bytes:
    """Render rows as an ``.xlsx`` workbook with auto-sized columns."""
    frame = pd.DataFrame(rows, columns=columns)
    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        frame.to_excel(writer, sheet_name=sheet_name, index=False)
        worksheet = writer.sheets[sheet_name]
        # openpyxl stores text starting with "=" as a formula; keep it literal
        for row in worksheet.iter_rows():
            for cell in row:
                if isinstance(cell.value, str) and cell.value.startswith("="):
                    cell.data_type = "s"
        for index, column in enumerate(columns, start=1):
            longest = max([len(column)] + [len(str(v)) for v in frame[column]])
            worksheet.column_dimensions[get_column_letter(index)].width = min(
                longest + 2, MAX_COLUMN_WIDTH
            )
    return buffer.getvalue()


def read_rows(content: bytes, filename: str) -> List[Dict[str, Any]]:
    """Parse an uploaded ``.xlsx`` or ``.csv`` file into row dictionaries.

    Empty cells come back as ``None``.
    """
    name = (filename or "").lower()
    if not name.endswith((".xlsx", ".csv")):
        raise ValidationError("Only Excel (.xlsx) and CSV (.csv) files are supported")
    try:
        if name.endswith(".xlsx"):
            frame = pd.read_excel(BytesIO(content), engine="openpyxl", dtype=object)
        else:
            frame = pd.read_csv(BytesIO(content), dtype=object)
    except Exception as exc:
        raise ValidationError("Could not read the uploaded file") from exc

    frame = frame.astype(object).where(pd.notna(frame), None)
    return frame.to_dict(orient="records")


def _normalize_header(header: Any) -> str:
    return re.sub(r"[^a-z0-9]", "", str(header).lower())


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _number(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return 0.0 if number != number else number


def split_tags(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        items: Iterable[Any] = value
    else:
        items = _text(value).split(",")
    return [tag for tag in (_text(item) for item in items) if tag]


def row_to_record_fields(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Map one spreadsheet row to business data fields.

    Raises ``ValidationError`` when the row lacks a title or description.
    """
    cells = {_normalize_header(key): value for key, value in row.items()}

    title = _text(cells.get("title"))
    description = _text(cells.get("description"))
    if not title or not description:
        raise ValidationError("Title and Description are required")

    meta: Dict[str, Any] = {}
    raw_extra = _text(cells.get("metadata"))
    if raw_extra:
        try:
            extra = json.loads(raw_extra)
        except ValueError as exc:
            raise ValidationError("Metadata must be a JSON object") from exc
        if not isinstance(extra, dict):
            raise ValidationError("Metadata must be a JSON object")
        meta.update(extra)

    location = cells.get("location")
    if _text(location):
        meta["location"] = location.strip() if isinstance(location, str) else location
    priority = cells.get("priority")
    if _text(priority):
        meta["priority"] = priority.strip() if isinstance(priority, str) else priority
    tags = split_tags(meta.pop("tags", None) or cells.get("tags"))
    if tags:
        meta["tags"] = tags

    return {
        "title": title,
        "category": _text(cells.get("category")) or "Imported",
        "description": description,
        "value": _number(cells.get("value")),
        "status": _text(cells.get("status")) or "active",
        "meta": meta,
    }
