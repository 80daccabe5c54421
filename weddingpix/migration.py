"""
Migration of legacy global collections into per-user collections.

Legacy deployments wrote every media item, comment, like and story into the
global ``media``/``comments``/``likes``/``stories`` collections, keyed only by
loosely matched ``deviceId``/``uploadedBy`` strings. This module moves each
document to ``users/{uid}/<collection>/{id}``, deleting the source in the
same atomic batch, and validates that nothing is left behind.

Ownership is resolved heuristically: ``userId``, else ``deviceId`` (unless
it is the shared ``web-client`` sentinel), else a slug of the display name.
Two people who share a display name end up in the same bucket; that case is
reported as a warning and is not resolved.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from urllib.parse import unquote

from google.cloud.firestore_v1 import SERVER_TIMESTAMP

from weddingpix.document_store import USERS_COLLECTION, is_user_isolated
from weddingpix.documents import Document, DocumentStore
from weddingpix.storage import StorageClient

logger = logging.getLogger(__name__)

GLOBAL_COLLECTIONS = ("media", "comments", "likes", "stories")
WEB_CLIENT_DEVICE_ID = "web-client"
ANONYMOUS_NAME = "Anonymous"
# Also the upper bound: batches stay below the 500-write Firestore ceiling.
DEFAULT_BATCH_LIMIT = 450
# Each migrated document is one set plus one delete.
OPERATIONS_PER_ITEM = 2
LEGACY_STORAGE_PREFIX = "galleries/"
ISOLATED_STORAGE_PREFIX = "users/"

_SLUG_INVALID = re.compile(r"[^a-z0-9]")


def slugify_name(name: str) -> str:
    return _SLUG_INVALID.sub("-", name.lower())


def resolve_owner(data: dict, name_field: str) -> tuple[Optional[str], Optional[str]]:
    """
    Return ``(owner_id, slugged_name)``. ``slugged_name`` is the raw name when
    the owner came from the name fallback, else None.
    """
    user_id = data.get("userId")
    if user_id is not None and str(user_id) != "":
        return str(user_id), None
    device_id = data.get("deviceId")
    if device_id and device_id != WEB_CLIENT_DEVICE_ID:
        return str(device_id), None
    name = data.get(name_field)
    if isinstance(name, str) and name.strip() and name != ANONYMOUS_NAME:
        return slugify_name(name), name
    return None, None


def extract_user_id_from_media(data: dict) -> Optional[str]:
    return resolve_owner(data, "uploadedBy")[0]


def extract_user_id_from_comment(data: dict) -> Optional[str]:
    return resolve_owner(data, "userName")[0]


# Which display-name field each global collection falls back to.
NAME_FIELDS = {
    "media": "uploadedBy",
    "stories": "uploadedBy",
    "comments": "userName",
    "likes": "userName",
}

ITEM_KINDS = {"media": "media", "comments": "comment", "likes": "like", "stories": "story"}


def legacy_reference(data: dict, legacy_paths) -> Optional[str]:
    """
    Return the legacy object a media/story document points at, if any.

    Older clients stored only a download ``url`` (often with the object path
    percent-encoded and a token query), so the url is checked as well.
    """
    path = data.get("storagePath")
    if isinstance(path, str) and path in legacy_paths:
        return path
    url = data.get("url")
    if not isinstance(url, str):
        return None
    decoded = unquote(url.split("?", 1)[0])
    start = decoded.find(LEGACY_STORAGE_PREFIX)
    if start != -1 and decoded[start:] in legacy_paths:
        return decoded[start:]
    return None


def _is_safe_segment(value: str) -> bool:
    return bool(value.strip()) and "/" not in value and value not in (".", "..")


@dataclass
class MigrationResult:
    success: bool = False
    migrated_items: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    details: str = ""

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class SecurityAnalysis:
    global_collections: list[str] = field(default_factory=list)
    unsecured_data: int = 0
    risky_operations: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


class BatchWriter:
    """
    Groups copy-then-delete moves into atomic batches of at most ``limit``
    operations. A fresh batch is started after every commit.
    """

    def __init__(self, documents: DocumentStore, limit: int = DEFAULT_BATCH_LIMIT):
        if not OPERATIONS_PER_ITEM <= limit <= DEFAULT_BATCH_LIMIT:
            raise ValueError(
                f"Batch limit must be between {OPERATIONS_PER_ITEM} and {DEFAULT_BATCH_LIMIT}"
            )
        self.documents = documents
        self.limit = limit
        self.committed: list[str] = []
        self.failed: list[str] = []
        self.errors: list[str] = []
        self.batch_sizes: list[int] = []
        self._batch = documents.batch()
        self._pending: list[str] = []

    def _reserve(self, operations: int) -> None:
        if len(self._batch) + operations > self.limit:
            self.flush()

    def move(self, source_path: str, dest_path: str, data: dict, label: str) -> None:
        self._reserve(OPERATIONS_PER_ITEM)
        self._batch.set(dest_path, data)
        self._batch.delete(source_path)
        self._pending.append(label)

    def copy(self, dest_path: str, data: dict, label: str) -> None:
        self._reserve(1)
        self._batch.set(dest_path, data)
        self._pending.append(label)

    def flush(self) -> None:
        if not self._pending:
            return
        batch, pending = self._batch, self._pending
        self._batch = self.documents.batch()
        self._pending = []
        size = len(batch)
        try:
            batch.commit()
        except Exception as exc:
            logger.exception("Batch commit of %d operations failed", size)
            self.errors.append(f"Batch commit failed for {len(pending)} items: {exc}")
            self.failed.extend(pending)
            return
        self.committed.extend(pending)
        self.batch_sizes.append(size)
        logger.info("Committed batch of %d operations", size)


class DataMigrationService:
    """Moves global collections into ``users/{uid}/...`` and reports on it."""

    def __init__(
        self,
        documents: DocumentStore,
        storage: Optional[StorageClient] = None,
        *,
        batch_limit: int = DEFAULT_BATCH_LIMIT,
        rules_path: str = "firestore.rules",
    ):
        self.documents = documents
        self.storage = storage
        self.batch_limit = batch_limit
        self.rules_path = rules_path

    def analyze_security_issues(self) -> SecurityAnalysis:
        analysis = SecurityAnalysis()
        for collection in GLOBAL_COLLECTIONS:
            try:
                count = len(self.documents.stream(collection))
            except Exception as exc:
                logger.exception("Security analysis of %s failed", collection)
                analysis.errors.append(f"Could not read {collection}: {exc}")
                continue
            if count:
                analysis.global_collections.append(collection)
                analysis.unsecured_data += count
                analysis.risky_operations.append(
                    f"Cross-user {collection} access possible"
                )
        return analysis

    def _migrate_collection(self, collection: str) -> MigrationResult:
        result = MigrationResult()
        kind = ITEM_KINDS[collection]
        logger.info("Starting %s migration to user-isolated collections", collection)
        try:
            docs = self.documents.stream(collection)
        except Exception as exc:
            logger.exception("Reading global %s failed", collection)
            result.errors.append(f"{collection.capitalize()} migration error: {exc}")
            return result

        writer = BatchWriter(self.documents, self.batch_limit)
        slug_sources: dict[str, set[str]] = {}
        for doc in docs:
            try:
                owner, raw_name = resolve_owner(doc.data, NAME_FIELDS[collection])
                if owner is None:
                    result.errors.append(f"Could not determine user for {kind}: {doc.id}")
                    continue
                if not _is_safe_segment(owner):
                    result.errors.append(f"Invalid user id {owner!r} for {kind}: {doc.id}")
                    continue
                if raw_name is not None:
                    slug_sources.setdefault(owner, set()).add(raw_name)
                payload = {**doc.data, "migratedAt": SERVER_TIMESTAMP, "originalId": doc.id}
                if not payload.get("userId"):
                    payload["userId"] = owner
                dest = f"{USERS_COLLECTION}/{owner}/{collection}/{doc.id}"
                writer.move(doc.path, dest, payload, doc.id)
            except Exception as exc:
                logger.warning("Failed to migrate %s %s: %s", kind, doc.id, exc)
                result.errors.append(f"Failed to migrate {kind} {doc.id}: {exc}")
        writer.flush()

        for slug, names in sorted(slug_sources.items()):
            if len(names) > 1:
                result.warnings.append(
                    f"Names {sorted(names)} all map to user id '{slug}' in {collection}; their data was merged"
                )
        result.migrated_items = len(writer.committed)
        result.errors.extend(writer.errors)
        result.success = not writer.failed
        result.details = (
            f"Successfully migrated {result.migrated_items} {collection} items to user-isolated collections"
            if result.success
            else f"Migrated {result.migrated_items} {collection} items; {len(writer.failed)} failed to commit"
        )
        logger.info(result.details)
        return result

    def migrate_media_to_user_isolated(self) -> MigrationResult:
        return self._migrate_collection("media")

    def migrate_comments_to_user_isolated(self) -> MigrationResult:
        return self._migrate_collection("comments")

    def migrate_likes_to_user_isolated(self) -> MigrationResult:
        return self._migrate_collection("likes")

    def migrate_stories_to_user_isolated(self) -> MigrationResult:
        return self._migrate_collection("stories")

    def migrate_all_collections(self) -> MigrationResult:
        combined = MigrationResult(success=True)
        for migrate in (
            self.migrate_media_to_user_isolated,
            self.migrate_comments_to_user_isolated,
            self.migrate_likes_to_user_isolated,
            self.migrate_stories_to_user_isolated,
        ):
            result = migrate()
            combined.success = combined.success and result.success
            combined.migrated_items += result.migrated_items
            combined.errors.extend(result.errors)
            combined.warnings.extend(result.warnings)
        combined.details = (
            f"Migrated {combined.migrated_items} items to user-isolated collections"
            f" ({len(combined.errors)} errors)"
        )
        return combined

    def per_user_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for collection in GLOBAL_COLLECTIONS:
            for doc in self.documents.collection_group(collection):
                if is_user_isolated(doc):
                    owner = doc.path.split("/")[1]
                    counts[owner] = counts.get(owner, 0) + 1
        return counts

    def validate_data_isolation(self) -> MigrationResult:
        result = MigrationResult()
        logger.info("Validating data isolation")
        try:
            issues = []
            for collection in GLOBAL_COLLECTIONS:
                remaining = len(self.documents.stream(collection))
                if remaining:
                    issues.append(f"Found {remaining} items in global {collection} collection")
            isolated = sum(self.per_user_counts().values())
        except Exception as exc:
            logger.exception("Data isolation validation failed")
            result.errors.append(f"Validation error: {exc}")
            return result

        if issues:
            result.errors = issues
            result.details = (
                f"Data isolation validation failed. {isolated} items properly isolated,"
                " but global collections still contain data."
            )
        else:
            result.success = True
            result.migrated_items = isolated
            result.details = (
                f"Data isolation validation successful. {isolated} items properly"
                " isolated in user-specific collections."
            )
        return result

    def backup_global_collections(self, now: Optional[datetime] = None) -> MigrationResult:
        result = MigrationResult()
        if self.storage is None:
            result.errors.append("No object storage configured for backups")
            result.details = "Backup skipped"
            return result
        stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d_%H%M%S")
        prefix = f"backups/migration-{stamp}"
        for collection in GLOBAL_COLLECTIONS:
            try:
                docs = self.documents.stream(collection)
                payload = [{"id": doc.id, **doc.data} for doc in docs]
                self.storage.upload_json(f"{prefix}/{collection}.json", payload)
                result.migrated_items += len(payload)
            except Exception as exc:
                logger.exception("Backup of %s failed", collection)
                result.errors.append(f"Backup of {collection} failed: {exc}")
        result.success = not result.errors
        result.details = f"Backed up {result.migrated_items} documents to {prefix}/"
        return result

    def _storage_references(self, legacy_paths: dict[str, str]) -> dict[str, list[Document]]:
        """Media and story documents, global or isolated, keyed by the legacy object they use."""
        references: dict[str, list[Document]] = {}
        for collection in ("media", "stories"):
            for doc in self.documents.collection_group(collection):
                path = legacy_reference(doc.data, legacy_paths)
                if path is not None:
                    references.setdefault(path, []).append(doc)
        return references

    def migrate_storage_to_user_isolated(self) -> MigrationResult:
        """
        Move ``galleries/{uid}/...`` objects to ``users/{uid}/...``.

        Every document that points at a moved object, by ``storagePath`` or
        by its download ``url``, is rewritten to the copy. A source object is
        only deleted once all of its references were updated; otherwise it
        stays next to the copy and a warning is reported.
        """
        result = MigrationResult()
        if self.storage is None:
            result.errors.append("No object storage configured")
            result.details = "Storage migration skipped"
            return result

        destinations: dict[str, str] = {}
        for path in self.storage.list_paths(LEGACY_STORAGE_PREFIX):
            parts = path.split("/", 2)
            if len(parts) < 3 or not parts[1] or not parts[2]:
                result.errors.append(f"Unexpected legacy storage path: {path}")
                continue
            destinations[path] = f"{ISOLATED_STORAGE_PREFIX}{parts[1]}/{parts[2]}"

        references = self._storage_references(destinations)
        moved = rewritten = 0
        for path, dest in destinations.items():
            try:
                self.storage.copy(path, dest)
            except Exception as exc:
                logger.warning("Failed to copy %s: %s", path, exc)
                result.errors.append(f"Failed to copy {path}: {exc}")
                continue
            moved += 1
            new_url = self.storage.public_url(dest)
            kept = False
            for doc in references.get(path, []):
                try:
                    self.documents.update(doc.path, {"storagePath": dest, "url": new_url})
                except Exception as exc:
                    logger.warning("Failed to rewrite %s: %s", doc.path, exc)
                    result.warnings.append(f"Kept {path}: could not update {doc.path}: {exc}")
                    kept = True
                    continue
                rewritten += 1
            if kept:
                continue
            try:
                self.storage.delete(path)
            except Exception as exc:
                logger.warning("Failed to delete %s: %s", path, exc)
                result.warnings.append(f"Copied {path} but could not delete it: {exc}")

        result.migrated_items = moved
        result.success = not result.errors
        result.details = (
            f"Moved {moved} files to user-isolated paths and updated {rewritten} references"
            if destinations or result.errors
            else "No legacy gallery files found; new uploads already use user-isolated paths"
        )
        return result

    def check_security_rules(self) -> MigrationResult:
        result = MigrationResult()
        path = Path(self.rules_path)
        if not path.is_file():
            result.errors.append(f"Security rules file not found: {path}")
            result.details = "Security rules are missing"
            return result
        if "match /users/{" not in path.read_text(encoding="utf-8"):
            result.errors.append(f"{path} does not scope users/{{userId}} documents")
            result.details = "Security rules do not isolate user data"
            return result
        result.success = True
        result.details = (
            f"Security rules in {path} isolate users/{{userId}}. Manual deployment"
            " required: firebase deploy --only firestore:rules"
        )
        return result
