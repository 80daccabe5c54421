"""
Per-user migration: copy one known user's legacy documents into their
isolated collections.

Unlike ``DataMigrationService`` this flow matches on an id the caller already
knows, and leaves the global documents in place unless asked to delete them.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

from google.cloud.firestore_v1 import SERVER_TIMESTAMP

from weddingpix.document_store import user_collection
from weddingpix.documents import DocumentStore
from weddingpix.migration import (
    ANONYMOUS_NAME,
    DEFAULT_BATCH_LIMIT,
    GLOBAL_COLLECTIONS,
    WEB_CLIENT_DEVICE_ID,
    BatchWriter,
)

logger = logging.getLogger(__name__)

# Fields that may carry the owner id, per global collection.
OWNER_FIELDS = {
    "media": ("deviceId", "uploadedBy", "userId"),
    "stories": ("deviceId", "uploadedBy", "userId"),
    "comments": ("deviceId", "userName"),
    "likes": ("deviceId", "userName"),
}
CANDIDATE_FIELDS = {
    "media": ("deviceId", "userId", "uploadedBy"),
    "comments": ("deviceId", "userName"),
    "likes": ("deviceId", "userName"),
}
NON_USER_IDS = {WEB_CLIENT_DEVICE_ID, ANONYMOUS_NAME}


@dataclass
class MigrationStats:
    user_id: str
    media_items_migrated: int = 0
    comments_migrated: int = 0
    likes_migrated: int = 0
    stories_migrated: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return (
            self.media_items_migrated
            + self.comments_migrated
            + self.likes_migrated
            + self.stories_migrated
        )

    def as_dict(self) -> dict:
        data = asdict(self)
        data["total"] = self.total
        return data


@dataclass
class MigrationStatus:
    user_id: str
    has_secure_data: bool
    has_legacy_data: bool
    migration_needed: bool

    def as_dict(self) -> dict:
        return asdict(self)


_STAT_FIELDS = {
    "media": "media_items_migrated",
    "comments": "comments_migrated",
    "likes": "likes_migrated",
    "stories": "stories_migrated",
}


def _owned_by(data: dict, user_id: str, owner_fields: tuple[str, ...]) -> bool:
    return any(data.get(name) == user_id for name in owner_fields)


class UserDataMigrationService:
    def __init__(self, documents: DocumentStore, *, batch_limit: int = DEFAULT_BATCH_LIMIT):
        self.documents = documents
        self.batch_limit = batch_limit

    def migrate_user_data(self, user_id: str, *, delete_source: bool = False) -> MigrationStats:
        """
        Copy every global document matched to ``user_id`` into
        ``users/{user_id}/<collection>/{originalId}``.

        Raises ``InvalidUserError`` for a blank id; everything else is
        collected into ``MigrationStats.errors``.
        """
        # Validate up front so a bad id never reaches the batch.
        user_collection(user_id, "media")
        stats = MigrationStats(user_id=user_id)
        logger.info("Starting data migration for user %s", user_id)
        for collection in GLOBAL_COLLECTIONS:
            try:
                migrated = self._migrate_user_collection(user_id, collection, delete_source, stats)
            except Exception as exc:
                logger.exception("%s migration failed for user %s", collection, user_id)
                stats.errors.append(f"{collection.capitalize()} migration failed: {exc}")
                continue
            setattr(stats, _STAT_FIELDS[collection], migrated)
        logger.info(
            "Migration completed for user %s: %d items, %d errors",
            user_id,
            stats.total,
            len(stats.errors),
        )
        return stats

    def _migrate_user_collection(
        self, user_id: str, collection: str, delete_source: bool, stats: MigrationStats
    ) -> int:
        writer = BatchWriter(self.documents, self.batch_limit)
        target = user_collection(user_id, collection)
        for doc in self.documents.stream(collection):
            if not _owned_by(doc.data, user_id, OWNER_FIELDS[collection]):
                continue
            payload = {
                **doc.data,
                "userId": user_id,
                "migratedAt": SERVER_TIMESTAMP,
                "originalId": doc.id,
            }
            dest = f"{target}/{doc.id}"
            if delete_source:
                writer.move(doc.path, dest, payload, doc.id)
            else:
                writer.copy(dest, payload, doc.id)
        writer.flush()
        stats.errors.extend(writer.errors)
        return len(writer.committed)

    def collect_candidate_user_ids(self) -> list[str]:
        candidates: set[str] = set()
        for collection, names in CANDIDATE_FIELDS.items():
            for doc in self.documents.stream(collection):
                for name in names:
                    value = doc.data.get(name)
                    if isinstance(value, str) and value.strip() and value not in NON_USER_IDS:
                        candidates.add(value)
        return sorted(candidates)

    def migrate_all_users(self, *, delete_source: bool = False) -> list[MigrationStats]:
        candidates = self.collect_candidate_user_ids()
        logger.info("Found %d unique users to migrate", len(candidates))
        results = []
        for user_id in candidates:
            try:
                results.append(self.migrate_user_data(user_id, delete_source=delete_source))
            except Exception as exc:
                logger.warning("Migration failed for user %s: %s", user_id, exc)
                results.append(MigrationStats(user_id=user_id, errors=[str(exc)]))
        return results

    def check_migration_status(self, user_id: str) -> MigrationStatus:
        secure_media = user_collection(user_id, "media")
        try:
            has_secure = bool(self.documents.stream(secure_media))
            has_legacy = any(
                _owned_by(doc.data, user_id, ("deviceId", "uploadedBy"))
                for doc in self.documents.stream("media")
            )
        except Exception:
            logger.exception("Migration status check failed for %s", user_id)
            return MigrationStatus(user_id, False, False, True)
        return MigrationStatus(
            user_id=user_id,
            has_secure_data=has_secure,
            has_legacy_data=has_legacy,
            migration_needed=has_legacy and not has_secure,
        )
