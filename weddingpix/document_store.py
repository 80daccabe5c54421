"""
User-isolated gallery store on top of a Firestore-shaped document database.

Every user-owned record lives under ``users/{uid}/<collection>/{id}`` with
camelCase field names, the layout the migration produces. Account documents
live at ``users/{uid}``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import MISSING, asdict, fields
from datetime import datetime
from typing import Optional, Type, TypeVar

from weddingpix.db import (
    CommentRecord,
    JobStatus,
    LikeRecord,
    MediaRecord,
    MigrationJobRecord,
    SpotifyCredentialsRecord,
    StoryRecord,
    TimelineEventRecord,
    UserRecord,
    WishlistItemRecord,
    apply_updates,
    as_utc,
    new_id,
)
from weddingpix.documents import Document, DocumentStore
from weddingpix.errors import ConflictError, InvalidUserError
from weddingpix.json_utils import convert_keys

logger = logging.getLogger(__name__)

R = TypeVar("R")

USERS_COLLECTION = "users"
JOBS_COLLECTION = "migration_jobs"


def user_collection(user_id: str, collection: str) -> str:
    if not user_id or not str(user_id).strip():
        raise InvalidUserError("A user id is required for user-isolated data")
    return f"{USERS_COLLECTION}/{user_id}/{collection}"


def is_user_isolated(doc: Document) -> bool:
    return doc.path.startswith(f"{USERS_COLLECTION}/") and doc.path.count("/") == 3


def _parse_datetime(value):
    if isinstance(value, str):
        try:
            return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return value
    if isinstance(value, datetime):
        return as_utc(value)
    return value


def record_to_document(record) -> dict:
    data = asdict(record)
    data.pop("id", None)
    return convert_keys(data, "snake_to_camel")


def document_to_record(record_cls: Type[R], doc: Document) -> R:
    """Build a record from a (possibly legacy) document, tolerating gaps."""
    data = convert_keys(doc.data, "camel_to_snake")
    values = {"id": doc.id}
    for f in fields(record_cls):
        if f.name == "id":
            continue
        if f.name in data and data[f.name] is not None:
            value = data[f.name]
            values[f.name] = _parse_datetime(value) if f.name.endswith("_at") else value
        elif f.default is MISSING and f.default_factory is MISSING:
            values[f.name] = ""
    return record_cls(**values)


class DocumentGalleryStore:
    """GalleryStore over user-isolated documents (Firestore in production)."""

    def __init__(self, documents: DocumentStore):
        self.documents = documents

    def _find(self, collection: str, record_id: str) -> Optional[Document]:
        for doc in self.documents.collection_group(collection):
            if doc.id == record_id and is_user_isolated(doc):
                return doc
        return None

    def _list(self, record_cls: Type[R], collection: str, user_id: Optional[str], **where) -> list[R]:
        if user_id is not None:
            docs = self.documents.stream(user_collection(user_id, collection), where=where or None)
        else:
            docs = [
                doc
                for doc in self.documents.collection_group(collection, where=where or None)
                if is_user_isolated(doc)
            ]
        return [document_to_record(record_cls, doc) for doc in docs]

    def _create(self, collection: str, record: R) -> R:
        path = f"{user_collection(record.user_id, collection)}/{record.id}"
        self.documents.set(path, record_to_document(record))
        return record

    def _get(self, record_cls: Type[R], collection: str, record_id: str) -> Optional[R]:
        doc = self._find(collection, record_id)
        return document_to_record(record_cls, doc) if doc else None

    def _update(self, record_cls: Type[R], collection: str, record_id: str, updates: dict) -> Optional[R]:
        doc = self._find(collection, record_id)
        if not doc:
            return None
        record = apply_updates(document_to_record(record_cls, doc), updates)
        self.documents.set(doc.path, record_to_document(record), merge=True)
        return record

    def _delete(self, collection: str, record_id: str) -> bool:
        doc = self._find(collection, record_id)
        if not doc:
            return False
        self.documents.delete(doc.path)
        return True

    # Users
    def create_user(self, user: UserRecord) -> UserRecord:
        if self.get_user_by_username(user.username):
            raise ConflictError(f"User {user.username!r} already exists")
        self.documents.set(f"{USERS_COLLECTION}/{user.id}", record_to_document(user))
        return user

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        doc = self.documents.get(f"{USERS_COLLECTION}/{user_id}")
        if not doc or "username" not in doc.data:
            return None
        return document_to_record(UserRecord, doc)

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        docs = self.documents.stream(USERS_COLLECTION, where={"username": username})
        return document_to_record(UserRecord, docs[0]) if docs else None

    def update_user(self, user_id: str, updates: dict) -> Optional[UserRecord]:
        user = self.get_user(user_id)
        if user is None:
            return None
        user = apply_updates(user, updates)
        self.documents.set(f"{USERS_COLLECTION}/{user_id}", record_to_document(user), merge=True)
        return user

    def list_users(self) -> list[UserRecord]:
        users = [
            document_to_record(UserRecord, doc)
            for doc in self.documents.stream(USERS_COLLECTION)
            if "username" in doc.data
        ]
        return sorted(users, key=lambda u: u.created_at)

    # Media
    def list_media(self, user_id: Optional[str] = None) -> list[MediaRecord]:
        items = self._list(MediaRecord, "media", user_id)
        return sorted(items, key=lambda m: m.uploaded_at, reverse=True)

    def get_media(self, media_id: str) -> Optional[MediaRecord]:
        return self._get(MediaRecord, "media", media_id)

    def create_media(self, media: MediaRecord) -> MediaRecord:
        return self._create("media", media)

    def update_media(self, media_id: str, updates: dict) -> Optional[MediaRecord]:
        return self._update(MediaRecord, "media", media_id, updates)

    def delete_media(self, media_id: str) -> bool:
        if not self._delete("media", media_id):
            return False
        for collection in ("comments", "likes"):
            for doc in self.documents.collection_group(collection, where={"mediaId": media_id}):
                if is_user_isolated(doc):
                    self.documents.delete(doc.path)
        return True

    # Comments
    def list_comments(self, media_id: Optional[str] = None) -> list[CommentRecord]:
        where = {"mediaId": media_id} if media_id else {}
        items = self._list(CommentRecord, "comments", None, **where)
        return sorted(items, key=lambda c: c.created_at)

    def get_comment(self, comment_id: str) -> Optional[CommentRecord]:
        return self._get(CommentRecord, "comments", comment_id)

    def create_comment(self, comment: CommentRecord) -> CommentRecord:
        return self._create("comments", comment)

    def delete_comment(self, comment_id: str) -> bool:
        return self._delete("comments", comment_id)

    # Likes
    def list_likes(self, media_id: Optional[str] = None) -> list[LikeRecord]:
        where = {"mediaId": media_id} if media_id else {}
        items = self._list(LikeRecord, "likes", None, **where)
        return sorted(items, key=lambda like: like.created_at, reverse=True)

    def get_like(self, like_id: str) -> Optional[LikeRecord]:
        return self._get(LikeRecord, "likes", like_id)

    def create_like(self, like: LikeRecord) -> LikeRecord:
        return self._create("likes", like)

    def delete_like(self, like_id: str) -> bool:
        return self._delete("likes", like_id)

    # Stories
    def list_stories(self, user_id: Optional[str] = None) -> list[StoryRecord]:
        items = self._list(StoryRecord, "stories", user_id)
        return sorted(items, key=lambda s: s.uploaded_at, reverse=True)

    def get_story(self, story_id: str) -> Optional[StoryRecord]:
        return self._get(StoryRecord, "stories", story_id)

    def create_story(self, story: StoryRecord) -> StoryRecord:
        return self._create("stories", story)

    def delete_story(self, story_id: str) -> bool:
        return self._delete("stories", story_id)

    # Timeline
    def list_timeline_events(
        self, user_id: Optional[str] = None
    ) -> list[TimelineEventRecord]:
        items = self._list(TimelineEventRecord, "timeline", user_id)
        return sorted(items, key=lambda e: e.date)

    def get_timeline_event(self, event_id: str) -> Optional[TimelineEventRecord]:
        return self._get(TimelineEventRecord, "timeline", event_id)

    def create_timeline_event(self, event: TimelineEventRecord) -> TimelineEventRecord:
        return self._create("timeline", event)

    def update_timeline_event(
        self, event_id: str, updates: dict
    ) -> Optional[TimelineEventRecord]:
        return self._update(TimelineEventRecord, "timeline", event_id, updates)

    def delete_timeline_event(self, event_id: str) -> bool:
        return self._delete("timeline", event_id)

    # Spotify
    def get_spotify_credentials(
        self, user_id: str
    ) -> Optional[SpotifyCredentialsRecord]:
        items = self._list(SpotifyCredentialsRecord, "spotify", user_id)
        items.sort(key=lambda c: c.created_at, reverse=True)
        return items[0] if items else None

    def create_spotify_credentials(
        self, credentials: SpotifyCredentialsRecord
    ) -> SpotifyCredentialsRecord:
        return self._create("spotify", credentials)

    def update_spotify_credentials(
        self, user_id: str, updates: dict
    ) -> Optional[SpotifyCredentialsRecord]:
        existing = self.get_spotify_credentials(user_id)
        if existing is None:
            return None
        return self._update(SpotifyCredentialsRecord, "spotify", existing.id, updates)

    # Music wishlist
    def list_wishlist(self, user_id: Optional[str] = None) -> list[WishlistItemRecord]:
        items = self._list(WishlistItemRecord, "wishlist", user_id)
        return sorted(items, key=lambda w: w.added_at, reverse=True)

    def get_wishlist_item(self, item_id: str) -> Optional[WishlistItemRecord]:
        return self._get(WishlistItemRecord, "wishlist", item_id)

    def create_wishlist_item(self, item: WishlistItemRecord) -> WishlistItemRecord:
        return self._create("wishlist", item)

    def delete_wishlist_item(self, item_id: str) -> bool:
        return self._delete("wishlist", item_id)

    # Migration jobs
    def create_migration_job(self) -> MigrationJobRecord:
        record = MigrationJobRecord(job_id=new_id())
        self.documents.set(
            f"{JOBS_COLLECTION}/{record.job_id}",
            {
                "status": record.status.value,
                "steps": [],
                "createdAt": record.created_at,
                "updatedAt": record.updated_at,
            },
        )
        return record

    def get_migration_job(self, job_id: str) -> Optional[MigrationJobRecord]:
        doc = self.documents.get(f"{JOBS_COLLECTION}/{job_id}")
        if not doc:
            return None
        return MigrationJobRecord(
            job_id=doc.id,
            status=JobStatus(doc.data["status"]),
            steps=list(doc.data.get("steps") or []),
            created_at=doc.data.get("createdAt", 0.0),
            updated_at=doc.data.get("updatedAt", 0.0),
        )

    def update_migration_job(
        self,
        job_id: str,
        *,
        status: Optional[JobStatus] = None,
        steps: Optional[list[dict]] = None,
    ) -> None:
        updates: dict = {"updatedAt": time.time()}
        if status:
            updates["status"] = status.value
        if steps is not None:
            updates["steps"] = steps
        path = f"{JOBS_COLLECTION}/{job_id}"
        if self.documents.get(path) is None:
            logger.warning("Migration job %s not found", job_id)
            return
        self.documents.update(path, updates)
