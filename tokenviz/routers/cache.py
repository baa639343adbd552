"""Ingest observability API."""
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, Request

from tokenviz.db.file_watcher import file_watcher
from tokenviz.routers.usage import get_ingest_engine

cache_router = APIRouter(prefix="/api/cache", tags=["cache"])


@cache_router.get("/status")
async def get_cache_status(request: Request):
    """Return ingest engine + watcher status, including pending rescans."""
    engine = get_ingest_engine(request)
    report = engine.last_report
    return {
        "status": "active",
        "ingest_engine": "rescanning" if engine.is_rescanning else "ready",
        "watcher": "running" if file_watcher.is_running else "stopped",
        "logsRoot": str(engine.logs_root),
        "pattern": engine.pattern,
        "lastScan": report.model_dump() if report else None,
        "ingestState": await engine.get_ingest_state(),
        "operations": engine.operations_summary(),
    }


@cache_router.get("/operations")
async def list_cache_operations(request: Request, limit: int = Query(20, ge=1, le=200)):
    """List recent rescan operations."""
    engine = get_ingest_engine(request)
    operations = engine.list_operations(limit=limit)
    return {"status": "ok", "count": len(operations), "items": operations}


@cache_router.get("/operations/{operation_id}")
async def get_cache_operation(request: Request, operation_id: str):
    engine = get_ingest_engine(request)
    operation = engine.get_operation(operation_id)
    if not operation:
        raise HTTPException(status_code=404, detail=f"Operation {operation_id} not found")
    return operation
