"""
Document database abstraction shaped like Firestore, with an in-memory
implementation for development and tests.

Paths follow Firestore conventions: a collection path has an odd number of
segments (``media``, ``users/u1/media``) and a document path an even number
(``media/abc``, ``users/u1/media/abc``).
"""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1 import SERVER_TIMESTAMP, FieldFilter, Query

from weddingpix.errors import NotFoundError

# Firestore rejects batches and transactions above this many writes.
MAX_BATCH_OPERATIONS = 500


class BatchLimitExceededError(RuntimeError):
    """Raised when a write batch holds more operations than Firestore allows."""


@dataclass
class Document:
    id: str
    path: str
    data: dict = field(default_factory=dict)

    @property
    def collection_path(self) -> str:
        return self.path.rsplit("/", 1)[0]

    @property
    def collection_id(self) -> str:
        return self.collection_path.rsplit("/", 1)[-1]


class WriteBatch(Protocol):
    """Atomic group of writes; nothing is applied until ``commit``."""

    def set(self, path: str, data: dict) -> None:
        ...

    def delete(self, path: str) -> None:
        ...

    def commit(self) -> None:
        ...

    def __len__(self) -> int:
        ...


class DocumentStore(Protocol):
    """Operations the gallery and migration code need from a document DB."""

    def get(self, path: str) -> Optional[Document]:
        ...

    def stream(
        self,
        collection_path: str,
        *,
        where: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[Document]:
        ...

    def collection_group(
        self, collection_id: str, *, where: Optional[dict[str, Any]] = None
    ) -> list[Document]:
        ...

    def add(self, collection_path: str, data: dict) -> Document:
        ...

    def set(self, path: str, data: dict, *, merge: bool = False) -> None:
        ...

    def update(self, path: str, updates: dict) -> None:
        ...

    def delete(self, path: str) -> None:
        ...

    def batch(self) -> WriteBatch:
        ...


def _segments(path: str) -> list[str]:
    return [segment for segment in path.strip("/").split("/") if segment]


def _check_collection_path(path: str) -> str:
    segments = _segments(path)
    if not segments or len(segments) % 2 == 0:
        raise ValueError(f"Not a collection path: {path!r}")
    return "/".join(segments)


def _check_document_path(path: str) -> str:
    segments = _segments(path)
    if not segments or len(segments) % 2 == 1:
        raise ValueError(f"Not a document path: {path!r}")
    return "/".join(segments)


def _matches(data: dict, where: Optional[dict[str, Any]]) -> bool:
    if not where:
        return True
    return all(data.get(key) == value for key, value in where.items())


def _sort_key(value: Any) -> tuple:
    # Firestore drops documents missing the order-by field; None sorts first here.
    return (value is not None, value)


class InMemoryDocumentStore:
    """Simple in-memory document database for development and tests."""

    def __init__(self):
        self.documents: dict[str, dict] = {}
        self.committed_batch_sizes: list[int] = []

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.documents.clear()
        self.committed_batch_sizes.clear()

    def _resolve(self, data: dict) -> dict:
        now = datetime.now(timezone.utc)
        return {
            key: now if value is SERVER_TIMESTAMP else copy.deepcopy(value)
            for key, value in data.items()
        }

    def _to_document(self, path: str) -> Document:
        return Document(
            id=path.rsplit("/", 1)[-1],
            path=path,
            data=copy.deepcopy(self.documents[path]),
        )

    def get(self, path: str) -> Optional[Document]:
        path = _check_document_path(path)
        if path not in self.documents:
            return None
        return self._to_document(path)

    def stream(
        self,
        collection_path: str,
        *,
        where: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[Document]:
        collection_path = _check_collection_path(collection_path)
        docs = [
            self._to_document(path)
            for path, data in self.documents.items()
            if path.rsplit("/", 1)[0] == collection_path and _matches(data, where)
        ]
        if order_by:
            docs.sort(key=lambda doc: _sort_key(doc.data.get(order_by)), reverse=descending)
        return docs

    def collection_group(
        self, collection_id: str, *, where: Optional[dict[str, Any]] = None
    ) -> list[Document]:
        # Like Firestore, this includes the root collection with the same id.
        docs = []
        for path, data in self.documents.items():
            segments = path.split("/")
            if segments[-2] == collection_id and _matches(data, where):
                docs.append(self._to_document(path))
        return docs

    def add(self, collection_path: str, data: dict) -> Document:
        collection_path = _check_collection_path(collection_path)
        path = f"{collection_path}/{uuid.uuid4().hex}"
        self.documents[path] = self._resolve(data)
        return self._to_document(path)

    def set(self, path: str, data: dict, *, merge: bool = False) -> None:
        path = _check_document_path(path)
        resolved = self._resolve(data)
        if merge and path in self.documents:
            self.documents[path].update(resolved)
        else:
            self.documents[path] = resolved

    def update(self, path: str, updates: dict) -> None:
        path = _check_document_path(path)
        if path not in self.documents:
            raise NotFoundError(path)
        self.documents[path].update(self._resolve(updates))

    def delete(self, path: str) -> None:
        self.documents.pop(_check_document_path(path), None)

    def batch(self) -> "InMemoryWriteBatch":
        return InMemoryWriteBatch(self)


@dataclass
class InMemoryWriteBatch:
    store: InMemoryDocumentStore
    operations: list[tuple[str, str, Optional[dict]]] = field(default_factory=list)
    committed: bool = False

    def __len__(self) -> int:
        return len(self.operations)

    def set(self, path: str, data: dict) -> None:
        self.operations.append(("set", _check_document_path(path), data))

    def delete(self, path: str) -> None:
        self.operations.append(("delete", _check_document_path(path), None))

    def commit(self) -> None:
        if self.committed:
            raise RuntimeError("Write batch was already committed")
        if len(self.operations) > MAX_BATCH_OPERATIONS:
            raise BatchLimitExceededError(
                f"{len(self.operations)} writes exceed the limit of {MAX_BATCH_OPERATIONS}"
            )
        for op, path, data in self.operations:
            if op == "set":
                self.store.set(path, data)
            else:
                self.store.delete(path)
        self.committed = True
        self.store.committed_batch_sizes.append(len(self.operations))


class FirestoreDocumentStore:
    """
    Firestore-backed implementation using the ``firebase_admin`` client.
    """

    def __init__(self, client):
        self.client = client

    @staticmethod
    def _from_snapshot(snapshot) -> Document:
        return Document(
            id=snapshot.id,
            path=snapshot.reference.path,
            data=snapshot.to_dict() or {},
        )

    def _query(self, query, where: Optional[dict[str, Any]]):
        for key, value in (where or {}).items():
            query = query.where(filter=FieldFilter(key, "==", value))
        return query

    def get(self, path: str) -> Optional[Document]:
        snapshot = self.client.document(_check_document_path(path)).get()
        if not snapshot.exists:
            return None
        return self._from_snapshot(snapshot)

    def stream(
        self,
        collection_path: str,
        *,
        where: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[Document]:
        query = self._query(
            self.client.collection(_check_collection_path(collection_path)), where
        )
        if order_by:
            direction = Query.DESCENDING if descending else Query.ASCENDING
            query = query.order_by(order_by, direction=direction)
        return [self._from_snapshot(snapshot) for snapshot in query.stream()]

    def collection_group(
        self, collection_id: str, *, where: Optional[dict[str, Any]] = None
    ) -> list[Document]:
        query = self._query(self.client.collection_group(collection_id), where)
        return [self._from_snapshot(snapshot) for snapshot in query.stream()]

    def add(self, collection_path: str, data: dict) -> Document:
        _, ref = self.client.collection(_check_collection_path(collection_path)).add(data)
        return self._from_snapshot(ref.get())

    def set(self, path: str, data: dict, *, merge: bool = False) -> None:
        self.client.document(_check_document_path(path)).set(data, merge=merge)

    def update(self, path: str, updates: dict) -> None:
        try:
            self.client.document(_check_document_path(path)).update(updates)
        except google_exceptions.NotFound as exc:
            raise NotFoundError(path) from exc

    def delete(self, path: str) -> None:
        self.client.document(_check_document_path(path)).delete()

    def batch(self) -> "FirestoreWriteBatch":
        return FirestoreWriteBatch(self.client)


class FirestoreWriteBatch:
    """Counts operations so callers can stay under the Firestore limit."""

    def __init__(self, client):
        self.client = client
        self._batch = client.batch()
        self._count = 0

    def __len__(self) -> int:
        return self._count

    def set(self, path: str, data: dict) -> None:
        self._batch.set(self.client.document(_check_document_path(path)), data)
        self._count += 1

    def delete(self, path: str) -> None:
        self._batch.delete(self.client.document(_check_document_path(path)))
        self._count += 1

    def commit(self) -> None:
        if self._count > MAX_BATCH_OPERATIONS:
            raise BatchLimitExceededError(
                f"{self._count} writes exceed the limit of {MAX_BATCH_OPERATIONS}"
            )
        self._batch.commit()
