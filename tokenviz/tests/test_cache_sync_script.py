import json
import tempfile
import unittest
from contextlib import redirect_stdout
from io import StringIO
from pathlib import Path
from unittest.mock import MagicMock, patch

import requests

from tokenviz.reconcile import LocalUsageCache
from tokenviz.scripts import cache_sync

REMOTE = [
    {"recordId": "aaa:0", "sessionId": "aaa", "inputTokens": 10, "outputTokens": 5},
    {"recordId": "aaa:1", "sessionId": "aaa", "inputTokens": 1, "outputTokens": 1},
]


def _response(payload: dict) -> MagicMock:
    res = MagicMock()
    res.json.return_value = payload
    res.raise_for_status.return_value = None
    return res


class CacheSyncScriptTests(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.dir = Path(tmpdir.name)
        self.cache_path = self.dir / "usages.json"

    def _run(self, *args: str) -> str:
        out = StringIO()
        with redirect_stdout(out):
            code = cache_sync.main(["--url", "http://server", "--cache", str(self.cache_path), *args])
        self.assertEqual(code, 0)
        return out.getvalue()

    def test_fetch_merges_into_cache(self) -> None:
        with patch.object(cache_sync.requests, "get", return_value=_response({"data": REMOTE})) as get:
            self._run()
            output = self._run()

        get.assert_called_with("http://server/api/messages", timeout=cache_sync.TIMEOUT_SECONDS)
        self.assertIn("Added 0 new records", output)
        entries = LocalUsageCache(self.cache_path).load()
        self.assertEqual([e.id for e in entries], ["remote-aaa-0", "remote-aaa-1"])

    def test_rescan_then_replace(self) -> None:
        LocalUsageCache(self.cache_path).refresh([{"recordId": "zzz:0", "sessionId": "zzz"}])

        with patch.object(cache_sync.requests, "post", return_value=_response({"count": 2})) as post, \
                patch.object(cache_sync.requests, "get", return_value=_response({"data": REMOTE})):
            output = self._run("--rescan", "--replace")

        post.assert_called_once_with("http://server/api/rescan", timeout=cache_sync.TIMEOUT_SECONDS)
        self.assertIn("Server processed 2 messages", output)
        self.assertEqual([e.sessionId for e in LocalUsageCache(self.cache_path).load()], ["aaa", "aaa"])

    def test_server_unavailable_uses_local_data(self) -> None:
        LocalUsageCache(self.cache_path).refresh(REMOTE[:1])
        export_path = self.dir / "out.json"

        with patch.object(cache_sync.requests, "get", side_effect=requests.ConnectionError("refused")):
            output = self._run("--export-json", str(export_path))

        self.assertIn("Server not available", output)
        exported = json.loads(export_path.read_text(encoding="utf-8"))
        self.assertEqual([item["id"] for item in exported], ["remote-aaa-0"])

    def test_export_csv(self) -> None:
        export_path = self.dir / "out.csv"

        with patch.object(cache_sync.requests, "get", return_value=_response({"data": REMOTE})):
            self._run("--export-csv", str(export_path))

        text = export_path.read_text(encoding="utf-8")
        self.assertTrue(text.startswith("\ufefftimestamp"))
        self.assertEqual(len(text.strip().splitlines()), 3)


if __name__ == "__main__":
    unittest.main()
