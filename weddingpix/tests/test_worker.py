import os
import tempfile
import unittest
from unittest.mock import Mock, patch

from weddingpix import worker
from weddingpix.db import InMemoryGalleryStore, JobStatus
from weddingpix.documents import InMemoryDocumentStore
from weddingpix.migration import DataMigrationService
from weddingpix.queue import InMemoryJobQueue
from weddingpix.runner import MigrationRunner
from weddingpix.storage import InMemoryStorageClient


class WorkerTests(unittest.TestCase):
    def setUp(self):
        handle = tempfile.NamedTemporaryFile("w", suffix=".rules", delete=False)
        handle.write("match /users/{userId} { allow read: if true; }\n")
        handle.close()
        self.addCleanup(os.remove, handle.name)

        self.documents = InMemoryDocumentStore()
        self.documents.set("media/m1", {"deviceId": "dev1", "name": "a.jpg"})
        self.documents.set("likes/l1", {"deviceId": "dev2", "mediaId": "m1"})
        self.service = DataMigrationService(
            self.documents, InMemoryStorageClient(), rules_path=handle.name
        )
        self.runner = MigrationRunner(self.service, retry_delay_seconds=0, sleep=Mock())
        self.store = InMemoryGalleryStore()
        self.queue = InMemoryJobQueue()

    def _process(self):
        return worker.process_next(
            store=self.store, queue=self.queue, runner=self.runner, block=False
        )

    def test_process_next_runs_job_to_success(self):
        job = self.store.create_migration_job()
        self.queue.enqueue(job.job_id)

        processed = self._process()

        self.assertTrue(processed)
        stored = self.store.get_migration_job(job.job_id)
        self.assertEqual(stored.status, JobStatus.SUCCESS)
        self.assertEqual(len(stored.steps), 6)
        self.assertTrue(all(step["status"] == "completed" for step in stored.steps))
        self.assertIsNotNone(self.documents.get("users/dev2/likes/l1"))

    def test_process_next_returns_false_when_queue_empty(self):
        self.assertFalse(self._process())

    def test_missing_rules_marks_job_failed(self):
        self.service.rules_path = "/nonexistent/firestore.rules"
        job = self.store.create_migration_job()
        self.queue.enqueue(job.job_id)

        self.assertTrue(self._process())

        stored = self.store.get_migration_job(job.job_id)
        self.assertEqual(stored.status, JobStatus.FAILED)
        statuses = [step["status"] for step in stored.steps]
        self.assertEqual(statuses[3], "error")
        self.assertEqual(statuses[4:], ["pending", "pending"])

    def test_unknown_job_is_skipped(self):
        self.queue.enqueue("missing")
        self.assertFalse(self._process())

    def test_job_not_waiting_is_skipped(self):
        job = self.store.create_migration_job()
        self.store.update_migration_job(job.job_id, status=JobStatus.SUCCESS)
        self.queue.enqueue(job.job_id)

        self.assertFalse(self._process())
        self.assertEqual(self.documents.get("media/m1").data["deviceId"], "dev1")

    def test_runner_exception_marks_job_failed(self):
        job = self.store.create_migration_job()
        broken = Mock()
        broken.run.side_effect = RuntimeError("boom")

        ok = worker.process_job(job, self.store, broken)

        self.assertFalse(ok)
        self.assertEqual(self.store.get_migration_job(job.job_id).status, JobStatus.FAILED)

    def test_build_runner_uses_configured_retry_delay(self):
        settings = Mock(validation_retry_delay_seconds=3.5)
        with patch("weddingpix.worker.get_settings", return_value=settings), patch(
            "weddingpix.worker.get_migration_service", return_value=self.service
        ):
            runner = worker.build_runner()

        self.assertIs(runner.service, self.service)
        self.assertEqual(runner.retry_delay_seconds, 3.5)


class InMemoryJobQueueTests(unittest.TestCase):
    def test_fifo_order_and_pending_count(self):
        queue = InMemoryJobQueue()
        queue.enqueue("a")
        queue.enqueue("b")

        self.assertEqual(queue.pending(), 2)
        self.assertEqual(queue.dequeue(block=False), "a")
        self.assertEqual(queue.dequeue(), "b")
        self.assertIsNone(queue.dequeue())


if __name__ == "__main__":
    unittest.main()
