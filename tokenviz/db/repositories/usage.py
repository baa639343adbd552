"""SQLite implementation of the usage aggregate store."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Literal, Sequence

import aiosqlite

from tokenviz.errors import StoreError
from tokenviz.models import ModelAggregate, SessionAggregate, UsageRecord

logger = logging.getLogger("tokenviz.db.usage")

RecordOrder = Literal["timestamp", "scan"]

_TOTAL_SQL = "(input_tokens + output_tokens + cache_created_tokens + cache_read_tokens)"

_INSERT_RECORD = """
    INSERT INTO usage_records (
        record_id, scan_order, session_id, timestamp, model,
        input_tokens, output_tokens, cache_created_tokens, cache_read_tokens,
        request_id, message_id, role, working_directory
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

_REBUILD_SESSIONS = """
    INSERT INTO session_aggregates (
        session_id, representative_path, first_timestamp, last_timestamp,
        message_count, input_tokens, output_tokens,
        cache_created_tokens, cache_read_tokens
    )
    SELECT
        r.session_id,
        COALESCE((
            SELECT p.working_directory FROM usage_records p
            WHERE p.session_id = r.session_id AND COALESCE(p.working_directory, '') != ''
            ORDER BY p.scan_order LIMIT 1
        ), ''),
        COALESCE(MIN(NULLIF(r.timestamp, '')), ''),
        COALESCE(MAX(r.timestamp), ''),
        COUNT(*),
        SUM(r.input_tokens),
        SUM(r.output_tokens),
        SUM(r.cache_created_tokens),
        SUM(r.cache_read_tokens)
    FROM usage_records r
    GROUP BY r.session_id
"""

_REBUILD_MODELS = """
    INSERT INTO model_aggregates (
        model, message_count, input_tokens, output_tokens,
        cache_created_tokens, cache_read_tokens
    )
    SELECT
        model,
        COUNT(*),
        SUM(input_tokens),
        SUM(output_tokens),
        SUM(cache_created_tokens),
        SUM(cache_read_tokens)
    FROM usage_records
    GROUP BY model
"""


def _record_row(order: int, record: UsageRecord) -> tuple:
    return (
        record.recordId,
        order,
        record.sessionId,
        record.timestamp or "",
        record.model or "unknown",
        record.inputTokens,
        record.outputTokens,
        record.cacheCreatedTokens,
        record.cacheReadTokens,
        record.requestId,
        record.messageId,
        record.role,
        record.workingDirectory,
    )


def _row_to_record(row: Any) -> UsageRecord:
    return UsageRecord(
        recordId=row["record_id"],
        sessionId=row["session_id"],
        timestamp=row["timestamp"] or "",
        model=row["model"] or "unknown",
        inputTokens=row["input_tokens"] or 0,
        outputTokens=row["output_tokens"] or 0,
        cacheCreatedTokens=row["cache_created_tokens"] or 0,
        cacheReadTokens=row["cache_read_tokens"] or 0,
        requestId=row["request_id"],
        messageId=row["message_id"],
        role=row["role"],
        workingDirectory=row["working_directory"],
    )


def _row_to_session(row: Any) -> SessionAggregate:
    return SessionAggregate(
        sessionId=row["session_id"],
        representativePath=row["representative_path"] or "",
        firstTimestamp=row["first_timestamp"] or "",
        lastTimestamp=row["last_timestamp"] or "",
        messageCount=row["message_count"] or 0,
        inputTokens=row["input_tokens"] or 0,
        outputTokens=row["output_tokens"] or 0,
        cacheCreatedTokens=row["cache_created_tokens"] or 0,
        cacheReadTokens=row["cache_read_tokens"] or 0,
    )


def _row_to_model(row: Any) -> ModelAggregate:
    return ModelAggregate(
        model=row["model"],
        messageCount=row["message_count"] or 0,
        inputTokens=row["input_tokens"] or 0,
        outputTokens=row["output_tokens"] or 0,
        cacheCreatedTokens=row["cache_created_tokens"] or 0,
        cacheReadTokens=row["cache_read_tokens"] or 0,
    )


class SqliteUsageRepository:
    """Usage records plus session/model rollups, rebuilt wholesale.

    The rebuild and every read share one lock, so callers observe either
    the previous snapshot or the new one, never a partially written store.
    """

    def __init__(self, db: aiosqlite.Connection):
        self.db = db
        self._lock = asyncio.Lock()

    # ── Rebuild ─────────────────────────────────────────────────────

    async def replace_all(self, records: Sequence[UsageRecord], *, source: str = "") -> int:
        """Replace every stored record and recompute all aggregates.

        Runs in a single transaction. Any failure rolls it back: errors are
        raised as StoreError, cancellation is re-raised unchanged.
        """
        now = datetime.now(timezone.utc).isoformat()
        async with self._lock:
            try:
                await self.db.execute("DELETE FROM usage_records")
                await self.db.execute("DELETE FROM session_aggregates")
                await self.db.execute("DELETE FROM model_aggregates")
                await self.db.executemany(
                    _INSERT_RECORD,
                    [_record_row(order, record) for order, record in enumerate(records)],
                )
                await self.db.execute(_REBUILD_SESSIONS)
                await self.db.execute(_REBUILD_MODELS)
                await self.db.execute(
                    """INSERT INTO ingest_state (id, ingested_at, record_count, source)
                       VALUES (1, ?, ?, ?)
                       ON CONFLICT(id) DO UPDATE SET
                         ingested_at=excluded.ingested_at,
                         record_count=excluded.record_count,
                         source=excluded.source""",
                    (now, len(records), source),
                )
                await self.db.commit()
            except Exception as exc:
                await self.db.rollback()
                logger.error("Usage store rebuild failed, keeping previous snapshot: %s", exc)
                raise StoreError(f"Usage store rebuild failed: {exc}") from exc
            except BaseException:
                await self.db.rollback()
                logger.warning("Usage store rebuild interrupted, keeping previous snapshot")
                raise
        logger.info("Usage store rebuilt with %d records", len(records))
        return len(records)

    # ── Queries ─────────────────────────────────────────────────────

    async def _fetch_all(self, query: str, params: tuple = ()) -> list[Any]:
        try:
            async with self.db.execute(query, params) as cur:
                return list(await cur.fetchall())
        except aiosqlite.Error as exc:
            raise StoreError(f"Usage store query failed: {exc}") from exc

    async def _records(self, order: RecordOrder) -> list[UsageRecord]:
        order_by = "scan_order ASC" if order == "scan" else "timestamp ASC, scan_order ASC"
        rows = await self._fetch_all(f"SELECT * FROM usage_records ORDER BY {order_by}")
        return [_row_to_record(r) for r in rows]

    async def _sessions(self, limit: int | None) -> list[SessionAggregate]:
        query = f"SELECT * FROM session_aggregates ORDER BY {_TOTAL_SQL} DESC, session_id ASC"
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (max(0, int(limit)),)
        return [_row_to_session(r) for r in await self._fetch_all(query, params)]

    async def _models(self) -> list[ModelAggregate]:
        rows = await self._fetch_all(
            "SELECT * FROM model_aggregates ORDER BY (input_tokens + output_tokens) DESC, model ASC"
        )
        return [_row_to_model(r) for r in rows]

    async def _totals(self) -> dict[str, int]:
        rows = await self._fetch_all(
            """SELECT
                 COALESCE(SUM(input_tokens), 0) AS total_input,
                 COALESCE(SUM(output_tokens), 0) AS total_output,
                 COALESCE(SUM(cache_created_tokens), 0) AS total_cache_created,
                 COALESCE(SUM(cache_read_tokens), 0) AS total_cache_read,
                 COALESCE(SUM(message_count), 0) AS total_messages,
                 COUNT(*) AS total_sessions
               FROM session_aggregates"""
        )
        row = rows[0]
        totals = {
            "totalInput": row["total_input"],
            "totalOutput": row["total_output"],
            "totalCacheCreated": row["total_cache_created"],
            "totalCacheRead": row["total_cache_read"],
            "messageCount": row["total_messages"],
            "sessionCount": row["total_sessions"],
        }
        totals["totalTokens"] = (
            totals["totalInput"] + totals["totalOutput"] + totals["totalCacheCreated"] + totals["totalCacheRead"]
        )
        return totals

    async def list_records(self, order: RecordOrder = "timestamp") -> list[UsageRecord]:
        """All records, timestamp ascending with ties in scan order, or in pure scan order."""
        async with self._lock:
            return await self._records(order)

    async def list_session_aggregates(self, limit: int | None = None) -> list[SessionAggregate]:
        async with self._lock:
            return await self._sessions(limit)

    async def list_model_aggregates(self) -> list[ModelAggregate]:
        async with self._lock:
            return await self._models()

    async def get_totals(self) -> dict[str, int]:
        async with self._lock:
            return await self._totals()

    async def get_stats(self, top_sessions: int = 20) -> dict[str, Any]:
        """Totals, top sessions and models read from one snapshot."""
        async with self._lock:
            totals = await self._totals()
            sessions = await self._sessions(top_sessions)
            models = await self._models()
        return {
            "totals": totals,
            "sessions": [s.to_stats_entry() for s in sessions],
            "models": [m.model_dump() for m in models],
        }

    async def count(self) -> int:
        async with self._lock:
            rows = await self._fetch_all("SELECT COUNT(*) FROM usage_records")
        return rows[0][0] if rows else 0

    async def get_ingest_state(self) -> dict[str, Any] | None:
        async with self._lock:
            rows = await self._fetch_all("SELECT ingested_at, record_count, source FROM ingest_state WHERE id = 1")
        if not rows:
            return None
        row = rows[0]
        return {"ingestedAt": row["ingested_at"], "recordCount": row["record_count"], "source": row["source"]}
