"""
inventory_services.export -- Plain-data and CSV renderings of a Report.

Decimal is rendered via ``str`` so no precision is lost; dates and
datetimes use ISO format; enums render their value.
"""

from __future__ import annotations

import csv
import dataclasses
import io
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from inventory_services.report_service import Report


def render_value(obj: object) -> object:
    """Convert report values (and nested dataclasses) to JSON-safe data."""
    if obj is None:
        return None
    if isinstance(obj, (Decimal, UUID)):
        return str(obj)
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (list, tuple)):
        return [render_value(item) for item in obj]
    if isinstance(obj, dict):
        return {str(k): render_value(v) for k, v in obj.items()}
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: render_value(getattr(obj, f.name)) for f in dataclasses.fields(obj)}
    if isinstance(obj, (str, int, float, bool)):
        return obj
    return str(obj)


def to_dict(report: Report) -> dict:
    return render_value(report)


def to_csv(report: Report, delimiter: str = ",") -> str:
    """
    One header row (the row dataclass's field names), one line per row.

    An empty report yields an empty string.
    """
    if not report.rows:
        return ""
    fields = [f.name for f in dataclasses.fields(report.rows[0])]
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=delimiter, lineterminator="\n")
    writer.writerow(fields)
    for row in report.rows:
        values = [render_value(getattr(row, name)) for name in fields]
        writer.writerow("" if v is None else v for v in values)
    return buffer.getvalue()
