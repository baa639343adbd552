import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from fastapi import HTTPException

from tokenviz.aliases import AliasStore
from tokenviz.routers import aliases as aliases_router


class AliasesRouterTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.path = Path(tmpdir.name) / "project-aliases.json"
        self.path.write_text(json.dumps({"_comment": "notes", "aliases": {"aaa": "Old"}}), encoding="utf-8")
        patcher = patch.object(aliases_router, "alias_store", AliasStore(self.path))
        patcher.start()
        self.addCleanup(patcher.stop)

    async def test_get_aliases(self) -> None:
        payload = await aliases_router.get_aliases()

        self.assertEqual(payload, {"aliases": {"aaa": "Old"}})

    async def test_save_aliases_keeps_comment(self) -> None:
        payload = await aliases_router.save_aliases(aliases_router.AliasesPayload(aliases={"bbb": "Proj X"}))

        self.assertTrue(payload["success"])
        self.assertEqual(payload["aliases"], {"bbb": "Proj X"})
        document = json.loads(self.path.read_text(encoding="utf-8"))
        self.assertEqual(document["_comment"], "notes")
        self.assertEqual(document["aliases"], {"bbb": "Proj X"})

    async def test_write_failure_is_500(self) -> None:
        with patch("tokenviz.aliases.os.replace", side_effect=OSError("read-only")):
            with self.assertRaises(HTTPException) as ctx:
                await aliases_router.save_aliases(aliases_router.AliasesPayload(aliases={"bbb": "X"}))

        self.assertEqual(ctx.exception.status_code, 500)


if __name__ == "__main__":
    unittest.main()
