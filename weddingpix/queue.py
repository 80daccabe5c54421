"""
Hand-off of migration run ids from the admin API to the worker.

Runs are long and must not execute inside a request, so the API only pushes
the job id; ``weddingpix.worker`` pops it. Redis in production, a deque for
tests and local mode.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Optional, Protocol

import redis
from redis import exceptions as redis_exceptions

logger = logging.getLogger(__name__)


class JobQueue(Protocol):
    def enqueue(self, job_id: str) -> None:
        ...

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[str]:
        ...

    def pending(self) -> int:
        ...


class InMemoryJobQueue:
    """FIFO of run ids held in process; ``block`` is ignored."""

    def __init__(self):
        self._job_ids: deque[str] = deque()

    def enqueue(self, job_id: str) -> None:
        self._job_ids.append(job_id)

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[str]:
        return self._job_ids.popleft() if self._job_ids else None

    def pending(self) -> int:
        return len(self._job_ids)

    def clear(self) -> None:
        self._job_ids.clear()


class RedisJobQueue:
    """Run ids in a Redis list: RPUSH on enqueue, (B)LPOP on dequeue."""

    def __init__(self, url: str, queue_key: str = "weddingpix:migrations"):
        self.url = url
        self.queue_key = queue_key
        self.client = self._connect()

    def _connect(self) -> redis.Redis:
        return redis.Redis.from_url(self.url, decode_responses=True)

    def enqueue(self, job_id: str) -> None:
        self.client.rpush(self.queue_key, job_id)
        logger.info("Queued migration run %s on %s", job_id, self.queue_key)

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[str]:
        try:
            if not block:
                return self.client.lpop(self.queue_key)
            popped = self.client.blpop([self.queue_key], timeout=timeout or 0)
        except redis_exceptions.ConnectionError:
            # Managed Redis drops idle connections; the worker loop polls again.
            logger.warning("Redis connection lost; reconnecting to %s", self.queue_key)
            self.client = self._connect()
            return None
        return popped[1] if popped else None

    def pending(self) -> int:
        return self.client.llen(self.queue_key)
