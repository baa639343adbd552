import asyncio
import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import aiosqlite

from tokenviz.db.ingest_engine import IngestEngine
from tokenviz.db.sqlite_migrations import run_migrations
from tokenviz.errors import StoreError


def _usage(input_tokens: int, output_tokens: int, ts: str) -> str:
    return json.dumps(
        {
            "timestamp": ts,
            "cwd": "/work/proj-x",
            "message": {"model": "claude-sonnet-4", "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens}},
        }
    )


class IngestEngineTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.root = Path(tmpdir.name) / "projects"
        session_file = self.root / "-work-proj-x" / "aaa.jsonl"
        session_file.parent.mkdir(parents=True)
        session_file.write_text(
            "\n".join(
                [
                    _usage(100, 50, "2026-02-16T10:00:00Z"),
                    "{bad line",
                    _usage(10, 5, "2026-02-16T11:00:00Z"),
                ]
            ),
            encoding="utf-8",
        )
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.engine = IngestEngine(self.db, self.root, "**/*.jsonl", 2)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_rescan_populates_store(self) -> None:
        result = await self.engine.rescan(trigger="test")

        self.assertEqual(result["count"], 2)
        self.assertEqual(result["filesScanned"], 1)
        self.assertEqual(result["malformedLines"], 1)
        self.assertFalse(result["sourceMissing"])

        stats = await self.engine.get_stats()
        self.assertEqual(stats["totals"]["totalTokens"], 165)
        self.assertEqual(stats["sessions"][0]["path"], "/work/proj-x")
        records = await self.engine.get_records()
        self.assertEqual([r.recordId for r in records], ["aaa:0", "aaa:1"])

    async def test_repeated_rescans_do_not_double_count(self) -> None:
        await self.engine.rescan()
        first = await self.engine.get_stats()
        await self.engine.rescan()

        self.assertEqual(await self.engine.get_stats(), first)

    async def test_operation_is_tracked(self) -> None:
        result = await self.engine.rescan(trigger="test")

        operation = self.engine.get_operation(result["operationId"])
        self.assertEqual(operation["phase"], "completed")
        self.assertEqual(operation["trigger"], "test")
        self.assertEqual(operation["stats"]["count"], 2)
        self.assertEqual(operation["stats"]["recordsParsed"], 2)
        self.assertTrue(operation["finishedAt"])

        summary = self.engine.operations_summary()
        self.assertEqual(summary["pending"], [])
        self.assertEqual(summary["tracked"], 1)
        self.assertIsNotNone(self.engine.last_report)

    async def test_queued_operation_id_is_used(self) -> None:
        op_id = self.engine.queue_rescan(trigger="api")
        self.assertEqual(self.engine.operations_summary()["pending"][0]["phase"], "queued")

        result = await self.engine.rescan(trigger="api", operation_id=op_id)

        self.assertEqual(result["operationId"], op_id)
        operations = self.engine.list_operations()
        self.assertEqual(len(operations), 1)
        self.assertEqual(operations[0]["phase"], "completed")

    async def test_operation_history_is_bounded_and_newest_first(self) -> None:
        ids = [self.engine.queue_rescan() for _ in range(45)]

        operations = self.engine.list_operations(limit=100)

        self.assertEqual(len(operations), 40)
        self.assertEqual(operations[0]["id"], ids[-1])
        self.assertIsNone(self.engine.get_operation(ids[0]))

    async def test_missing_root_clears_store(self) -> None:
        await self.engine.rescan()
        self.engine.logs_root = self.root / "gone"

        result = await self.engine.rescan()

        self.assertTrue(result["sourceMissing"])
        self.assertEqual(result["count"], 0)
        stats = await self.engine.get_stats()
        self.assertEqual(stats["totals"]["totalTokens"], 0)
        self.assertEqual(stats["sessions"], [])

    async def test_cancelled_rescan_is_recorded_and_leaves_store_untouched(self) -> None:
        await self.engine.rescan()
        before = await self.engine.get_stats()

        with patch.object(self.engine.usage_repo, "replace_all", side_effect=asyncio.CancelledError()):
            with self.assertRaises(asyncio.CancelledError):
                await self.engine.rescan(trigger="shutdown")

        self.assertEqual(self.engine.list_operations()[0]["phase"], "cancelled")
        self.assertEqual(await self.engine.get_stats(), before)
        self.assertFalse(self.engine.is_rescanning)

    async def test_store_failure_marks_operation_failed(self) -> None:
        await self.engine.rescan()
        before = await self.engine.get_stats()

        with patch.object(self.engine.usage_repo, "replace_all", side_effect=StoreError("boom")):
            with self.assertRaises(StoreError):
                await self.engine.rescan(trigger="test")

        operations = self.engine.list_operations()
        self.assertEqual(operations[0]["phase"], "failed")
        self.assertEqual(operations[0]["error"], "boom")
        self.assertEqual(await self.engine.get_stats(), before)
        self.assertFalse(self.engine.is_rescanning)


if __name__ == "__main__":
    unittest.main()
