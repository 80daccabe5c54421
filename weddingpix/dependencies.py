"""
Dependency wiring for the FastAPI app and the migration worker.
"""

from __future__ import annotations

import json

import firebase_admin
from firebase_admin import credentials, firestore
from firebase_admin import storage as firebase_storage

from weddingpix.config import get_settings
from weddingpix.db import GalleryStore, InMemoryGalleryStore, SqlGalleryStore
from weddingpix.document_store import DocumentGalleryStore
from weddingpix.documents import DocumentStore, FirestoreDocumentStore, InMemoryDocumentStore
from weddingpix.migration import DataMigrationService
from weddingpix.queue import InMemoryJobQueue, JobQueue, RedisJobQueue
from weddingpix.storage import (
    FirebaseStorageClient,
    InMemoryStorageClient,
    S3StorageClient,
    StorageClient,
)
from weddingpix.user_migration import UserDataMigrationService

_gallery_store: GalleryStore | None = None
_document_store: DocumentStore | None = None
_storage_client: StorageClient | None = None
_queue_client: JobQueue | None = None


def get_firebase_app() -> firebase_admin.App:
    """Initialise the default Firebase app once."""
    if firebase_admin._apps:
        return firebase_admin.get_app()

    settings = get_settings()
    options = {}
    if settings.firebase_project_id:
        options["projectId"] = settings.firebase_project_id
    if settings.firebase_storage_bucket:
        options["storageBucket"] = settings.firebase_storage_bucket

    if settings.firebase_credentials:
        # Either inline service-account JSON or a path to the key file.
        try:
            cred = credentials.Certificate(json.loads(settings.firebase_credentials, strict=False))
        except json.JSONDecodeError:
            cred = credentials.Certificate(settings.firebase_credentials)
    else:
        cred = credentials.ApplicationDefault()
    return firebase_admin.initialize_app(cred, options or None)


def get_document_store() -> DocumentStore:
    """
    Return the Firestore-shaped document store the migration works on.
    """
    global _document_store
    if _document_store:
        return _document_store

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.firebase_configured:
        _document_store = InMemoryDocumentStore()
    else:
        _document_store = FirestoreDocumentStore(firestore.client(get_firebase_app()))
    return _document_store


def get_gallery_store() -> GalleryStore:
    """
    Return a singleton gallery store so state persists across requests.
    """
    global _gallery_store
    if _gallery_store:
        return _gallery_store

    settings = get_settings()
    if settings.use_in_memory_backends or settings.gallery_backend == "memory":
        _gallery_store = InMemoryGalleryStore()
    elif settings.gallery_backend == "postgres":
        _gallery_store = SqlGalleryStore(settings.database_url or "")
    else:
        _gallery_store = DocumentGalleryStore(get_document_store())
    return _gallery_store


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or settings.storage_backend == "memory":
        _storage_client = InMemoryStorageClient()
    elif settings.storage_backend == "s3":
        if not settings.s3_bucket:
            raise ValueError("S3_BUCKET is required for the s3 storage backend")
        _storage_client = S3StorageClient(
            bucket=settings.s3_bucket,
            region=settings.s3_region or "",
            endpoint=settings.s3_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
        )
    else:
        _storage_client = FirebaseStorageClient(
            firebase_storage.bucket(app=get_firebase_app())
        )
    return _storage_client


def get_queue_client() -> JobQueue:
    """
    Return a singleton queue client for dispatching migration runs to workers.
    """
    global _queue_client
    if _queue_client:
        return _queue_client

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _queue_client = RedisJobQueue(
            url=settings.redis_url,
            queue_key=settings.redis_queue_key,
        )
    else:
        _queue_client = InMemoryJobQueue()
    return _queue_client


def get_migration_service() -> DataMigrationService:
    settings = get_settings()
    return DataMigrationService(
        get_document_store(),
        get_storage_client(),
        batch_limit=settings.migration_batch_limit,
        rules_path=settings.security_rules_path,
    )


def get_user_migration_service() -> UserDataMigrationService:
    return UserDataMigrationService(
        get_document_store(), batch_limit=get_settings().migration_batch_limit
    )
