"""JSON and CSV renderings of usage records for download."""
from __future__ import annotations

import csv
import io
import json
from datetime import date
from typing import Iterable, Union

from pydantic import BaseModel

from tokenviz.date_utils import normalize_iso_date
from tokenviz.models import CachedUsage, UsageRecord

BOM = "\ufeff"

CSV_COLUMNS = (
    "timestamp",
    "sessionId",
    "model",
    "inputTokens",
    "outputTokens",
    "cacheCreatedTokens",
    "cacheReadTokens",
    "totalTokens",
    "workingDirectory",
)

Exportable = Union[UsageRecord, CachedUsage]


def export_filename(extension: str, today: date | None = None) -> str:
    day = (today or date.today()).isoformat()
    return f"claude-usage-{day}.{extension}"


def records_to_json(records: Iterable[BaseModel]) -> str:
    return json.dumps([r.model_dump() for r in records], indent=2, ensure_ascii=False)


def records_to_csv(records: Iterable[Exportable]) -> str:
    """CSV with a header row, prefixed with a UTF-8 BOM for spreadsheet apps.

    Timestamps are written as UTC ``...Z`` strings; unparsable ones are left blank.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for record in records:
        row = record.model_dump()
        row["timestamp"] = normalize_iso_date(row.get("timestamp"))
        writer.writerow(["" if row.get(col) is None else row.get(col) for col in CSV_COLUMNS])
    return BOM + buffer.getvalue()
