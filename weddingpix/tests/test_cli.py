import contextlib
import importlib.util
import io
import json
import unittest
from pathlib import Path

from weddingpix.dependencies import get_document_store, get_storage_client

SCRIPT_PATH = Path(__file__).resolve().parents[2] / "scripts" / "migrate_user_isolation.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("migrate_user_isolation", SCRIPT_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class MigrationCommandTests(unittest.TestCase):
    def setUp(self):
        self.script = _load_script()
        self.documents = get_document_store()
        self.documents.reset()
        get_storage_client().reset()
        self.documents.set("media/m1", {"deviceId": "dev1", "name": "a.jpg"})
        self.documents.set("likes/l1", {"deviceId": "dev1", "mediaId": "m1"})

    def _run(self, *argv):
        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            code = self.script.main(list(argv))
        return code, json.loads(out.getvalue())

    def test_analyze_reports_global_documents(self):
        code, payload = self._run("analyze")
        self.assertEqual(code, 0)
        self.assertEqual(payload["unsecured_data"], 2)

    def test_validate_fails_until_migrated(self):
        code, payload = self._run("validate")
        self.assertEqual(code, 1)
        self.assertFalse(payload["success"])

        code, payload = self._run("migrate")
        self.assertEqual(code, 0)
        self.assertEqual(payload["migrated_items"], 2)

        code, payload = self._run("validate")
        self.assertEqual(code, 0)
        self.assertTrue(payload["success"])
        self.assertIsNotNone(self.documents.get("users/dev1/media/m1"))

    def test_user_command_copies_one_user(self):
        code, payload = self._run("user", "dev1")
        self.assertEqual(code, 0)
        self.assertEqual(payload["media_items_migrated"], 1)
        self.assertIsNotNone(self.documents.get("media/m1"))

        code, payload = self._run("status", "dev1")
        self.assertEqual(code, 0)
        self.assertFalse(payload["migration_needed"])


if __name__ == "__main__":
    unittest.main()
