"""Analytics router: display groups, range summaries, charts, and exports."""
from __future__ import annotations

import asyncio
from typing import Any, Literal, Optional

from fastapi import APIRouter, HTTPException, Query, Request, Response

from tokenviz.aliases import alias_store
from tokenviz.consolidation import (
    build_display_groups,
    calculate_usage_stats,
    find_group,
    group_usage_stats,
    records_for_group,
)
from tokenviz.errors import StoreError
from tokenviz.exports import export_filename, records_to_csv, records_to_json
from tokenviz.models import DisplayGroup, TimeRange, UsageRecord
from tokenviz.routers.usage import get_ingest_engine
from tokenviz.time_buckets import bucket_usage, date_range, filter_by_range

analytics_router = APIRouter(prefix="/api/analytics", tags=["analytics"])


async def _load_records(request: Request, order: str = "timestamp") -> list[UsageRecord]:
    engine = get_ingest_engine(request)
    try:
        return await engine.get_records(order)
    except StoreError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


async def _load_groups(records: list[UsageRecord]) -> list[DisplayGroup]:
    # Groups need scan order: first-seen sessions and paths decide ties.
    aliases = await asyncio.to_thread(alias_store.load)
    return build_display_groups(records, aliases)


async def _scoped_records(request: Request, group_key: Optional[str]) -> tuple[list[UsageRecord], Optional[DisplayGroup]]:
    records = await _load_records(request, "scan")
    if not group_key:
        return records, None
    group = find_group(await _load_groups(records), group_key)
    if group is None:
        raise HTTPException(status_code=404, detail=f"Group {group_key} not found")
    return records_for_group(records, group), group


@analytics_router.get("/groups")
async def list_groups(request: Request, range: Optional[TimeRange] = None):
    """Display groups, heaviest first, with usage stats for the optional range."""
    records = await _load_records(request, "scan")
    groups = await _load_groups(records)
    scoped = filter_by_range(records, range) if range else records
    items: list[dict[str, Any]] = []
    for group, stats in group_usage_stats(scoped, groups):
        payload = group.model_dump()
        payload["stats"] = stats.model_dump()
        items.append(payload)
    return {"range": range, "total": len(items), "items": items}


@analytics_router.get("/summary")
async def get_summary(request: Request, range: TimeRange = "week", group: Optional[str] = None):
    records, selected = await _scoped_records(request, group)
    start, end = date_range(range)
    stats = calculate_usage_stats(filter_by_range(records, range))
    return {
        "range": range,
        "start": start.isoformat(),
        "end": end.isoformat(),
        "group": selected.model_dump() if selected else None,
        "stats": stats.model_dump(),
    }


@analytics_router.get("/chart")
async def get_chart(request: Request, range: TimeRange = "week", group: Optional[str] = None):
    records, selected = await _scoped_records(request, group)
    buckets = bucket_usage(filter_by_range(records, range), range)
    return {
        "range": range,
        "group": selected.name if selected else None,
        "items": [b.model_dump() for b in buckets],
    }


@analytics_router.get("/export")
async def export_usage(request: Request, format: Literal["json", "csv"] = Query("json")):
    """Download every stored record as JSON or CSV."""
    records = await _load_records(request)
    if format == "csv":
        body = records_to_csv(records)
        media_type = "text/csv; charset=utf-8"
    else:
        body = records_to_json(records)
        media_type = "application/json"
    filename = export_filename(format)
    return Response(
        body,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
