import os
import tempfile
import unittest
from unittest.mock import Mock, patch

from weddingpix.documents import InMemoryDocumentStore
from weddingpix.migration import DataMigrationService, MigrationResult
from weddingpix.runner import MigrationRunner, StepStatus, succeeded
from weddingpix.storage import InMemoryStorageClient

RULES = "match /users/{userId} {\n  allow read, write: if request.auth.uid == userId;\n}\n"


class MigrationRunnerTests(unittest.TestCase):
    def setUp(self):
        handle = tempfile.NamedTemporaryFile("w", suffix=".rules", delete=False)
        handle.write(RULES)
        handle.close()
        self.addCleanup(os.remove, handle.name)

        self.store = InMemoryDocumentStore()
        self.store.set("media/m1", {"deviceId": "dev1"})
        self.store.set("comments/c1", {"userName": "Jane Doe", "mediaId": "m1"})
        self.storage = InMemoryStorageClient()
        self.service = DataMigrationService(self.store, self.storage, rules_path=handle.name)
        self.sleep = Mock()
        self.runner = MigrationRunner(self.service, retry_delay_seconds=0.5, sleep=self.sleep)

    def test_full_run_completes_every_step(self):
        steps = self.runner.run()

        self.assertEqual(
            [step.id for step in steps],
            [
                "security-analysis",
                "backup-creation",
                "user-isolation",
                "security-rules",
                "cleanup",
                "validation",
            ],
        )
        self.assertTrue(succeeded(steps))
        self.assertEqual(steps[0].migrated_items, 2)
        self.assertEqual(steps[2].migrated_items, 2)
        self.assertEqual(steps[5].migrated_items, 2)
        self.assertEqual(self.store.stream("media"), [])
        self.assertTrue(self.storage.list_paths("backups/"))
        self.sleep.assert_not_called()

    def test_critical_failure_stops_the_sequence(self):
        self.service.rules_path = "/nonexistent/firestore.rules"

        steps = self.runner.run()

        statuses = {step.id: step.status for step in steps}
        self.assertEqual(statuses["user-isolation"], StepStatus.COMPLETED)
        self.assertEqual(statuses["security-rules"], StepStatus.ERROR)
        self.assertEqual(statuses["cleanup"], StepStatus.PENDING)
        self.assertEqual(statuses["validation"], StepStatus.PENDING)
        self.assertFalse(succeeded(steps))
        # Earlier steps are not rolled back.
        self.assertEqual(self.store.stream("media"), [])

    def test_raising_optional_step_is_recorded_and_run_continues(self):
        with patch.object(
            self.service, "backup_global_collections", side_effect=RuntimeError("disk full")
        ):
            steps = self.runner.run()

        backup = steps[1]
        self.assertEqual(backup.status, StepStatus.ERROR)
        self.assertEqual(backup.errors, ["disk full"])
        self.assertEqual(steps[-1].status, StepStatus.COMPLETED)
        self.assertFalse(succeeded(steps))

    def test_validation_is_retried_once_after_delay(self):
        failed = MigrationResult(success=False, errors=["Found 1 items in global media collection"])
        passed = MigrationResult(success=True, migrated_items=2, details="ok")
        with patch.object(
            self.service, "validate_data_isolation", side_effect=[failed, passed]
        ) as validate:
            steps = self.runner.run()

        self.assertEqual(validate.call_count, 2)
        self.sleep.assert_called_once_with(0.5)
        self.assertEqual(steps[-1].status, StepStatus.COMPLETED)
        self.assertEqual(steps[-1].migrated_items, 2)

    def test_progress_callback_sees_each_transition(self):
        snapshots = []
        self.runner.run(on_step=lambda steps: snapshots.append([s.status for s in steps]))

        self.assertEqual(len(snapshots), 12)
        self.assertEqual(snapshots[0][0], StepStatus.RUNNING)
        self.assertEqual(snapshots[1][0], StepStatus.COMPLETED)

    def test_step_as_dict_is_serialisable(self):
        steps = self.runner.run()
        payload = steps[0].as_dict()
        self.assertEqual(payload["status"], "completed")
        self.assertTrue(payload["critical"])


if __name__ == "__main__":
    unittest.main()
