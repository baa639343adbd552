"""Usage records, stats, and rescan endpoints."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, Request
from pydantic import BaseModel

from tokenviz import config
from tokenviz.errors import StoreError

logger = logging.getLogger("tokenviz.api")

usage_router = APIRouter(prefix="/api", tags=["usage"])


class RescanRequest(BaseModel):
    background: bool = False
    trigger: str = "api"


def get_ingest_engine(request: Request):
    engine = getattr(request.app.state, "ingest_engine", None)
    if not engine:
        raise HTTPException(status_code=503, detail="Ingest engine not initialized")
    return engine


@usage_router.get("/messages")
async def list_messages(request: Request):
    """Every stored usage record, oldest first."""
    engine = get_ingest_engine(request)
    try:
        records = await engine.get_records()
    except StoreError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"data": [r.model_dump() for r in records]}


@usage_router.get("/stats")
async def get_stats(request: Request, top: int = Query(config.STATS_TOP_SESSIONS, ge=1, le=500)):
    """Grand totals, heaviest sessions, and per-model totals."""
    engine = get_ingest_engine(request)
    try:
        return await engine.get_stats(top)
    except StoreError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@usage_router.post("/rescan")
async def rescan(request: Request, background_tasks: BackgroundTasks, body: Optional[RescanRequest] = None):
    """Re-read every transcript and rebuild the store."""
    engine = get_ingest_engine(request)
    body = body or RescanRequest()

    if body.background:
        operation_id = engine.queue_rescan(trigger=body.trigger)
        background_tasks.add_task(engine.rescan, body.trigger, operation_id)
        return {
            "success": True,
            "mode": "background",
            "message": "Rescan triggered in background",
            "operationId": operation_id,
        }

    try:
        result = await engine.rescan(trigger=body.trigger)
        stats = await engine.get_stats()
    except StoreError as exc:
        logger.error(f"Rescan failed: {exc}")
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    return {
        "success": True,
        "message": f"Processed {result['count']} messages",
        "count": result["count"],
        "operationId": result.get("operationId", ""),
        "scan": result,
        "stats": stats,
    }
