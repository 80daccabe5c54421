"""
Worker loop that executes queued migration runs.

Run with ``python -m weddingpix.worker``.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from weddingpix.config import get_settings
from weddingpix.db import GalleryStore, JobStatus, MigrationJobRecord
from weddingpix.dependencies import (
    get_gallery_store,
    get_migration_service,
    get_queue_client,
)
from weddingpix.queue import JobQueue
from weddingpix.runner import MigrationRunner, MigrationStep, succeeded

logger = logging.getLogger(__name__)


def build_runner() -> MigrationRunner:
    settings = get_settings()
    return MigrationRunner(
        get_migration_service(),
        retry_delay_seconds=settings.validation_retry_delay_seconds,
    )


def process_job(job: MigrationJobRecord, store: GalleryStore, runner: MigrationRunner) -> bool:
    """Run the full migration sequence for ``job``; returns True on success."""
    logger.info("Processing migration job %s", job.job_id)
    store.update_migration_job(job.job_id, status=JobStatus.RUNNING)

    def record_progress(steps: list[MigrationStep]) -> None:
        store.update_migration_job(job.job_id, steps=[step.as_dict() for step in steps])

    try:
        steps = runner.run(on_step=record_progress)
    except Exception:
        logger.exception("Migration job %s failed", job.job_id)
        store.update_migration_job(job.job_id, status=JobStatus.FAILED)
        return False

    ok = succeeded(steps)
    store.update_migration_job(
        job.job_id,
        status=JobStatus.SUCCESS if ok else JobStatus.FAILED,
        steps=[step.as_dict() for step in steps],
    )
    logger.info("Migration job %s finished: %s", job.job_id, "SUCCESS" if ok else "FAILED")
    return ok


def process_next(
    *,
    store: Optional[GalleryStore] = None,
    queue: Optional[JobQueue] = None,
    runner: Optional[MigrationRunner] = None,
    block: bool = True,
    timeout: Optional[int] = None,
) -> bool:
    """
    Fetch and process one job from the queue. Returns True if a job was processed.
    """
    store = store or get_gallery_store()
    queue = queue or get_queue_client()

    job_id = queue.dequeue(block=block, timeout=timeout)
    if not job_id:
        return False
    job = store.get_migration_job(job_id)
    if not job:
        logger.warning("Received job_id %s from queue but no record found", job_id)
        return False
    if job.status != JobStatus.WAITING:
        logger.warning("Skipping migration job %s in status %s", job_id, job.status.value)
        return False

    process_job(job, store, runner or build_runner())
    return True


def run_loop(poll_interval_seconds: float = 2.0) -> None:
    """
    Blocking loop over the queue. Intended to be run under systemd/supervisor.
    """
    store = get_gallery_store()
    queue = get_queue_client()
    runner = build_runner()
    while True:
        processed = process_next(
            store=store,
            queue=queue,
            runner=runner,
            block=True,
            timeout=int(poll_interval_seconds),
        )
        if not processed:
            time.sleep(poll_interval_seconds)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_loop()
