import types
import unittest

from fastapi import HTTPException

from tokenviz.models import ScanReport
from tokenviz.routers import cache as cache_router


class _FakeIngestEngine:
    logs_root = "/home/dev/.claude/projects"
    pattern = "**/*.jsonl"
    is_rescanning = False
    last_report = ScanReport(root="/home/dev/.claude/projects", filesScanned=3, recordsParsed=12)

    def operations_summary(self):
        return {"tracked": 1, "pending": [], "latest": [{"id": "RESCAN-1", "phase": "completed"}]}

    async def get_ingest_state(self):
        return {"ingestedAt": "2026-02-16T10:00:00+00:00", "recordCount": 12, "source": self.logs_root}

    def list_operations(self, limit=20):
        return [{"id": "RESCAN-1", "phase": "completed"}][:limit]

    def get_operation(self, operation_id):
        if operation_id == "RESCAN-404":
            return None
        return {"id": operation_id, "phase": "completed"}


class CacheRouterTests(unittest.IsolatedAsyncioTestCase):
    def _request(self, engine):
        return types.SimpleNamespace(app=types.SimpleNamespace(state=types.SimpleNamespace(ingest_engine=engine)))

    async def test_status_reports_engine_and_last_scan(self) -> None:
        payload = await cache_router.get_cache_status(self._request(_FakeIngestEngine()))

        self.assertEqual(payload["ingest_engine"], "ready")
        self.assertEqual(payload["watcher"], "stopped")
        self.assertEqual(payload["lastScan"]["filesScanned"], 3)
        self.assertEqual(payload["ingestState"]["recordCount"], 12)
        self.assertEqual(payload["operations"]["tracked"], 1)

    async def test_list_and_get_operations(self) -> None:
        request = self._request(_FakeIngestEngine())

        listing = await cache_router.list_cache_operations(request, limit=5)
        single = await cache_router.get_cache_operation(request, "RESCAN-1")

        self.assertEqual(listing["count"], 1)
        self.assertEqual(single["id"], "RESCAN-1")

    async def test_unknown_operation_is_404(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await cache_router.get_cache_operation(self._request(_FakeIngestEngine()), "RESCAN-404")

        self.assertEqual(ctx.exception.status_code, 404)


if __name__ == "__main__":
    unittest.main()
