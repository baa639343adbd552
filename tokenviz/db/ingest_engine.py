"""Full-rescan ingestion: transcripts on disk → usage store.

Every rescan re-reads the whole logs tree in a worker thread and then swaps
the store contents in one transaction. Rescans are serialized; reads are
served from the last committed snapshot while a rescan is in flight.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import OrderedDict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

from tokenviz import config
from tokenviz.aggregation import aggregate_models
from tokenviz.db.repositories import SqliteUsageRepository
from tokenviz.models import RescanOperation, RescanPhase, ScanReport, UsageRecord
from tokenviz.observability import (
    record_ingestion,
    record_parse_failures,
    record_token_totals,
    start_span,
)
from tokenviz.parsers.scanner import scan_usage_logs

logger = logging.getLogger("tokenviz.ingest")

MAX_OPERATION_HISTORY = 40


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class IngestEngine:
    """Owns the usage repository and runs tracked rescans against it."""

    def __init__(
        self,
        db: aiosqlite.Connection,
        logs_root: Path | str | None = None,
        pattern: str | None = None,
        workers: int | None = None,
    ):
        self.db = db
        self.usage_repo = SqliteUsageRepository(db)
        self.logs_root = Path(logs_root) if logs_root is not None else config.LOGS_ROOT
        self.pattern = pattern or config.LOG_PATTERN
        self.workers = workers or config.SCAN_WORKERS
        self._rescan_lock = asyncio.Lock()
        # Oldest first; trimmed to MAX_OPERATION_HISTORY.
        self._operations: OrderedDict[str, RescanOperation] = OrderedDict()
        self._last_report: ScanReport | None = None

    @property
    def is_rescanning(self) -> bool:
        return self._rescan_lock.locked()

    @property
    def last_report(self) -> ScanReport | None:
        return self._last_report

    # ── Reads ───────────────────────────────────────────────────────

    async def get_records(self, order: str = "timestamp") -> list[UsageRecord]:
        return await self.usage_repo.list_records(order)

    async def get_stats(self, top_sessions: int | None = None) -> dict[str, Any]:
        return await self.usage_repo.get_stats(top_sessions or config.STATS_TOP_SESSIONS)

    async def get_ingest_state(self) -> dict[str, Any] | None:
        return await self.usage_repo.get_ingest_state()

    # ── Rescan operations ───────────────────────────────────────────

    def queue_rescan(self, trigger: str = "api") -> str:
        """Register a rescan that has not started yet and return its ID."""
        operation = RescanOperation(id=f"RESCAN-{uuid.uuid4().hex[:12]}", trigger=trigger, queuedAt=_utc_now())
        self._operations[operation.id] = operation
        while len(self._operations) > MAX_OPERATION_HISTORY:
            self._operations.popitem(last=False)
        logger.info("Rescan queued [%s] (trigger=%s)", operation.id, trigger)
        return operation.id

    def list_operations(self, limit: int = 20) -> list[dict[str, Any]]:
        """Newest first."""
        newest = list(reversed(self._operations.values()))[: max(1, limit)]
        return [op.model_dump() for op in newest]

    def get_operation(self, operation_id: str) -> dict[str, Any] | None:
        operation = self._operations.get(operation_id)
        return operation.model_dump() if operation else None

    def operations_summary(self) -> dict[str, Any]:
        pending = [op.model_dump() for op in self._operations.values() if not op.is_finished]
        return {
            "tracked": len(self._operations),
            "pending": pending,
            "latest": self.list_operations(limit=5),
        }

    def _advance(
        self,
        operation_id: str,
        phase: RescanPhase,
        *,
        stats: dict[str, Any] | None = None,
        error: str = "",
    ) -> None:
        operation = self._operations.get(operation_id)
        if operation is None:
            return
        operation.phase = phase
        if stats:
            operation.stats.update(stats)
        if error:
            operation.error = error
        if operation.is_finished:
            operation.finishedAt = _utc_now()
            operation.durationMs = int(stats.get("durationMs", 0)) if stats else 0
            if phase == "failed":
                logger.error("Rescan failed [%s]: %s", operation_id, error)
            else:
                logger.info("Rescan %s [%s]", phase, operation_id)

    # ── Rescan ──────────────────────────────────────────────────────

    async def rescan(self, trigger: str = "api", operation_id: str | None = None) -> dict[str, Any]:
        """Rebuild the store from every transcript under ``logs_root``.

        Returns stats for the run. StoreError propagates after the
        operation is marked failed; the previous snapshot stays in place.
        """
        stats: dict[str, Any] = {
            "count": 0,
            "filesScanned": 0,
            "filesFailed": 0,
            "malformedLines": 0,
            "skippedLines": 0,
            "sourceMissing": False,
            "durationMs": 0,
            "operationId": "",
        }
        if not operation_id:
            operation_id = self.queue_rescan(trigger)
        stats["operationId"] = operation_id

        t0 = time.monotonic()
        try:
            async with self._rescan_lock:
                self._advance(operation_id, "scanning")
                with start_span("tokenviz.rescan", {"trigger": trigger, "logs_root": str(self.logs_root)}):
                    result = await asyncio.to_thread(
                        scan_usage_logs, self.logs_root, self.pattern, self.workers
                    )
                    report = result.report
                    self._last_report = report
                    stats.update(
                        {
                            "filesScanned": report.filesScanned,
                            "filesFailed": len(report.filesFailed),
                            "malformedLines": report.malformedLines,
                            "skippedLines": report.skippedLines,
                            "sourceMissing": report.sourceMissing,
                        }
                    )
                    self._advance(operation_id, "storing", stats={"recordsParsed": report.recordsParsed})
                    stats["count"] = await self.usage_repo.replace_all(
                        result.records, source=str(self.logs_root)
                    )
        except asyncio.CancelledError:
            stats["durationMs"] = int((time.monotonic() - t0) * 1000)
            self._advance(operation_id, "cancelled", stats=stats)
            raise
        except Exception as exc:
            stats["durationMs"] = int((time.monotonic() - t0) * 1000)
            record_ingestion("failed", stats["durationMs"])
            self._advance(operation_id, "failed", stats=stats, error=str(exc))
            raise

        stats["durationMs"] = int((time.monotonic() - t0) * 1000)
        record_ingestion("completed", stats["durationMs"], stats["count"])
        record_parse_failures(stats["malformedLines"])
        for aggregate in aggregate_models(result.records):
            record_token_totals(aggregate.model, aggregate.inputTokens, aggregate.outputTokens)
        self._advance(operation_id, "completed", stats=stats)
        logger.info(
            "Rescan complete: %d records from %d files (%d failed, %d malformed lines) in %dms",
            stats["count"],
            stats["filesScanned"],
            stats["filesFailed"],
            stats["malformedLines"],
            stats["durationMs"],
        )
        return stats
