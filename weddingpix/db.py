"""
Gallery persistence port with in-memory and SQLAlchemy implementations.

The user-isolated Firestore implementation lives in
``weddingpix.document_store``.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Protocol, Type, TypeVar

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    String,
    Text,
    create_engine,
    delete,
    select,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from weddingpix.errors import ConflictError


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class JobStatus(str, Enum):
    WAITING = "WAITING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass
class UserRecord:
    id: str
    username: str
    password_hash: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    bio: Optional[str] = None
    profile_image: Optional[str] = None
    dark_mode: bool = False
    audio_enabled: bool = True
    is_admin: bool = False
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        data = asdict(self)
        data.pop("password_hash")
        return data


@dataclass
class MediaRecord:
    id: str
    name: str
    url: str
    uploaded_by: str
    device_id: str
    type: str
    user_id: Optional[str] = None
    note_text: Optional[str] = None
    is_unavailable: bool = False
    storage_path: Optional[str] = None
    uploaded_at: datetime = field(default_factory=utcnow)


@dataclass
class CommentRecord:
    id: str
    media_id: str
    text: str
    user_name: str
    device_id: str
    user_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class LikeRecord:
    id: str
    media_id: str
    user_name: str
    device_id: str
    user_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class StoryRecord:
    id: str
    url: str
    uploaded_by: str
    device_id: str
    type: str
    expires_at: Optional[datetime] = None
    user_id: Optional[str] = None
    is_visible: bool = True
    storage_path: Optional[str] = None
    uploaded_at: datetime = field(default_factory=utcnow)


@dataclass
class TimelineEventRecord:
    id: str
    title: str
    date: str
    description: str
    type: str
    created_by: str
    location: Optional[str] = None
    custom_event_name: Optional[str] = None
    media_urls: list[str] = field(default_factory=list)
    media_types: list[str] = field(default_factory=list)
    media_file_names: list[str] = field(default_factory=list)
    user_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class SpotifyCredentialsRecord:
    id: str
    access_token: str
    refresh_token: str
    expires_at: datetime
    user_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class WishlistItemRecord:
    id: str
    track_id: str
    name: str
    artists: str
    album: str
    uri: str
    added_by: str
    album_image: Optional[str] = None
    user_id: Optional[str] = None
    added_at: datetime = field(default_factory=utcnow)


@dataclass
class MigrationJobRecord:
    job_id: str
    status: JobStatus = JobStatus.WAITING
    steps: list[dict] = field(default_factory=list)
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "steps": self.steps,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


R = TypeVar("R")


def apply_updates(record: R, updates: dict[str, Any]) -> R:
    """Return a copy of ``record`` with known, non-id fields replaced."""
    allowed = {f.name for f in fields(record)} - {"id", "job_id"}
    return replace(record, **{k: v for k, v in updates.items() if k in allowed})


class GalleryStore(Protocol):
    """The single persistence port every route and service talks to."""

    # Users
    def create_user(self, user: UserRecord) -> UserRecord:
        ...

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        ...

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        ...

    def update_user(self, user_id: str, updates: dict) -> Optional[UserRecord]:
        ...

    def list_users(self) -> list[UserRecord]:
        ...

    # Media
    def list_media(self, user_id: Optional[str] = None) -> list[MediaRecord]:
        ...

    def get_media(self, media_id: str) -> Optional[MediaRecord]:
        ...

    def create_media(self, media: MediaRecord) -> MediaRecord:
        ...

    def update_media(self, media_id: str, updates: dict) -> Optional[MediaRecord]:
        ...

    def delete_media(self, media_id: str) -> bool:
        ...

    # Comments
    def list_comments(self, media_id: Optional[str] = None) -> list[CommentRecord]:
        ...

    def get_comment(self, comment_id: str) -> Optional[CommentRecord]:
        ...

    def create_comment(self, comment: CommentRecord) -> CommentRecord:
        ...

    def delete_comment(self, comment_id: str) -> bool:
        ...

    # Likes
    def list_likes(self, media_id: Optional[str] = None) -> list[LikeRecord]:
        ...

    def get_like(self, like_id: str) -> Optional[LikeRecord]:
        ...

    def create_like(self, like: LikeRecord) -> LikeRecord:
        ...

    def delete_like(self, like_id: str) -> bool:
        ...

    # Stories
    def list_stories(self, user_id: Optional[str] = None) -> list[StoryRecord]:
        ...

    def get_story(self, story_id: str) -> Optional[StoryRecord]:
        ...

    def create_story(self, story: StoryRecord) -> StoryRecord:
        ...

    def delete_story(self, story_id: str) -> bool:
        ...

    # Timeline
    def list_timeline_events(
        self, user_id: Optional[str] = None
    ) -> list[TimelineEventRecord]:
        ...

    def get_timeline_event(self, event_id: str) -> Optional[TimelineEventRecord]:
        ...

    def create_timeline_event(self, event: TimelineEventRecord) -> TimelineEventRecord:
        ...

    def update_timeline_event(
        self, event_id: str, updates: dict
    ) -> Optional[TimelineEventRecord]:
        ...

    def delete_timeline_event(self, event_id: str) -> bool:
        ...

    # Spotify
    def get_spotify_credentials(
        self, user_id: str
    ) -> Optional[SpotifyCredentialsRecord]:
        ...

    def create_spotify_credentials(
        self, credentials: SpotifyCredentialsRecord
    ) -> SpotifyCredentialsRecord:
        ...

    def update_spotify_credentials(
        self, user_id: str, updates: dict
    ) -> Optional[SpotifyCredentialsRecord]:
        ...

    # Music wishlist
    def list_wishlist(self, user_id: Optional[str] = None) -> list[WishlistItemRecord]:
        ...

    def get_wishlist_item(self, item_id: str) -> Optional[WishlistItemRecord]:
        ...

    def create_wishlist_item(self, item: WishlistItemRecord) -> WishlistItemRecord:
        ...

    def delete_wishlist_item(self, item_id: str) -> bool:
        ...

    # Migration jobs
    def create_migration_job(self) -> MigrationJobRecord:
        ...

    def get_migration_job(self, job_id: str) -> Optional[MigrationJobRecord]:
        ...

    def update_migration_job(
        self,
        job_id: str,
        *,
        status: Optional[JobStatus] = None,
        steps: Optional[list[dict]] = None,
    ) -> None:
        ...


class InMemoryGalleryStore:
    """Demo/local-mode store backed by dicts; also used by the tests."""

    def __init__(self):
        self.users: dict[str, UserRecord] = {}
        self.media: dict[str, MediaRecord] = {}
        self.comments: dict[str, CommentRecord] = {}
        self.likes: dict[str, LikeRecord] = {}
        self.stories: dict[str, StoryRecord] = {}
        self.timeline: dict[str, TimelineEventRecord] = {}
        self.spotify: dict[str, SpotifyCredentialsRecord] = {}
        self.wishlist: dict[str, WishlistItemRecord] = {}
        self.jobs: dict[str, MigrationJobRecord] = {}

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        for table in (
            self.users,
            self.media,
            self.comments,
            self.likes,
            self.stories,
            self.timeline,
            self.spotify,
            self.wishlist,
            self.jobs,
        ):
            table.clear()

    @staticmethod
    def _update(table: dict, key: str, updates: dict):
        record = table.get(key)
        if record is None:
            return None
        table[key] = apply_updates(record, updates)
        return table[key]

    def create_user(self, user: UserRecord) -> UserRecord:
        if self.get_user_by_username(user.username):
            raise ConflictError(f"User {user.username!r} already exists")
        self.users[user.id] = user
        return user

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self.users.get(user_id)

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        for user in self.users.values():
            if user.username == username:
                return user
        return None

    def update_user(self, user_id: str, updates: dict) -> Optional[UserRecord]:
        return self._update(self.users, user_id, updates)

    def list_users(self) -> list[UserRecord]:
        return sorted(self.users.values(), key=lambda u: u.created_at)

    def list_media(self, user_id: Optional[str] = None) -> list[MediaRecord]:
        items = [m for m in self.media.values() if user_id is None or m.user_id == user_id]
        return sorted(items, key=lambda m: m.uploaded_at, reverse=True)

    def get_media(self, media_id: str) -> Optional[MediaRecord]:
        return self.media.get(media_id)

    def create_media(self, media: MediaRecord) -> MediaRecord:
        self.media[media.id] = media
        return media

    def update_media(self, media_id: str, updates: dict) -> Optional[MediaRecord]:
        return self._update(self.media, media_id, updates)

    def delete_media(self, media_id: str) -> bool:
        if self.media.pop(media_id, None) is None:
            return False
        for table in (self.comments, self.likes):
            for key in [k for k, v in table.items() if v.media_id == media_id]:
                del table[key]
        return True

    def list_comments(self, media_id: Optional[str] = None) -> list[CommentRecord]:
        items = [c for c in self.comments.values() if media_id is None or c.media_id == media_id]
        return sorted(items, key=lambda c: c.created_at)

    def get_comment(self, comment_id: str) -> Optional[CommentRecord]:
        return self.comments.get(comment_id)

    def create_comment(self, comment: CommentRecord) -> CommentRecord:
        self.comments[comment.id] = comment
        return comment

    def delete_comment(self, comment_id: str) -> bool:
        return self.comments.pop(comment_id, None) is not None

    def list_likes(self, media_id: Optional[str] = None) -> list[LikeRecord]:
        items = [like for like in self.likes.values() if media_id is None or like.media_id == media_id]
        return sorted(items, key=lambda like: like.created_at, reverse=True)

    def get_like(self, like_id: str) -> Optional[LikeRecord]:
        return self.likes.get(like_id)

    def create_like(self, like: LikeRecord) -> LikeRecord:
        self.likes[like.id] = like
        return like

    def delete_like(self, like_id: str) -> bool:
        return self.likes.pop(like_id, None) is not None

    def list_stories(self, user_id: Optional[str] = None) -> list[StoryRecord]:
        items = [s for s in self.stories.values() if user_id is None or s.user_id == user_id]
        return sorted(items, key=lambda s: s.uploaded_at, reverse=True)

    def get_story(self, story_id: str) -> Optional[StoryRecord]:
        return self.stories.get(story_id)

    def create_story(self, story: StoryRecord) -> StoryRecord:
        self.stories[story.id] = story
        return story

    def delete_story(self, story_id: str) -> bool:
        return self.stories.pop(story_id, None) is not None

    def list_timeline_events(
        self, user_id: Optional[str] = None
    ) -> list[TimelineEventRecord]:
        items = [e for e in self.timeline.values() if user_id is None or e.user_id == user_id]
        return sorted(items, key=lambda e: e.date)

    def get_timeline_event(self, event_id: str) -> Optional[TimelineEventRecord]:
        return self.timeline.get(event_id)

    def create_timeline_event(self, event: TimelineEventRecord) -> TimelineEventRecord:
        self.timeline[event.id] = event
        return event

    def update_timeline_event(
        self, event_id: str, updates: dict
    ) -> Optional[TimelineEventRecord]:
        return self._update(self.timeline, event_id, updates)

    def delete_timeline_event(self, event_id: str) -> bool:
        return self.timeline.pop(event_id, None) is not None

    def get_spotify_credentials(
        self, user_id: str
    ) -> Optional[SpotifyCredentialsRecord]:
        for credentials in self.spotify.values():
            if credentials.user_id == user_id:
                return credentials
        return None

    def create_spotify_credentials(
        self, credentials: SpotifyCredentialsRecord
    ) -> SpotifyCredentialsRecord:
        self.spotify[credentials.id] = credentials
        return credentials

    def update_spotify_credentials(
        self, user_id: str, updates: dict
    ) -> Optional[SpotifyCredentialsRecord]:
        existing = self.get_spotify_credentials(user_id)
        if existing is None:
            return None
        return self._update(self.spotify, existing.id, updates)

    def list_wishlist(self, user_id: Optional[str] = None) -> list[WishlistItemRecord]:
        items = [w for w in self.wishlist.values() if user_id is None or w.user_id == user_id]
        return sorted(items, key=lambda w: w.added_at, reverse=True)

    def get_wishlist_item(self, item_id: str) -> Optional[WishlistItemRecord]:
        return self.wishlist.get(item_id)

    def create_wishlist_item(self, item: WishlistItemRecord) -> WishlistItemRecord:
        self.wishlist[item.id] = item
        return item

    def delete_wishlist_item(self, item_id: str) -> bool:
        return self.wishlist.pop(item_id, None) is not None

    def create_migration_job(self) -> MigrationJobRecord:
        record = MigrationJobRecord(job_id=new_id())
        self.jobs[record.job_id] = record
        return record

    def get_migration_job(self, job_id: str) -> Optional[MigrationJobRecord]:
        return self.jobs.get(job_id)

    def update_migration_job(
        self,
        job_id: str,
        *,
        status: Optional[JobStatus] = None,
        steps: Optional[list[dict]] = None,
    ) -> None:
        job = self.jobs.get(job_id)
        if not job:
            return
        if status:
            job.status = status
        if steps is not None:
            job.steps = steps
        job.updated_at = time.time()


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    username = Column(String, nullable=False, unique=True)
    password_hash = Column(String, nullable=False)
    email = Column(String, nullable=True)
    display_name = Column(String, nullable=True)
    bio = Column(Text, nullable=True)
    profile_image = Column(String, nullable=True)
    dark_mode = Column(Boolean, nullable=False, default=False)
    audio_enabled = Column(Boolean, nullable=False, default=True)
    is_admin = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class MediaRow(Base):
    __tablename__ = "media_items"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    url = Column(String, nullable=False)
    uploaded_by = Column(String, nullable=False)
    uploaded_at = Column(DateTime(timezone=True), nullable=False, index=True)
    device_id = Column(String, nullable=False)
    type = Column(String, nullable=False)
    note_text = Column(Text, nullable=True)
    is_unavailable = Column(Boolean, nullable=False, default=False)
    storage_path = Column(String, nullable=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)


class CommentRow(Base):
    __tablename__ = "comments"

    id = Column(String, primary_key=True)
    media_id = Column(
        String, ForeignKey("media_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    text = Column(Text, nullable=False)
    user_name = Column(String, nullable=False)
    device_id = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    user_id = Column(String, ForeignKey("users.id"), nullable=True)


class LikeRow(Base):
    __tablename__ = "likes"

    id = Column(String, primary_key=True)
    media_id = Column(
        String, ForeignKey("media_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_name = Column(String, nullable=False)
    device_id = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    user_id = Column(String, ForeignKey("users.id"), nullable=True)


class StoryRow(Base):
    __tablename__ = "stories"

    id = Column(String, primary_key=True)
    url = Column(String, nullable=False)
    uploaded_by = Column(String, nullable=False)
    uploaded_at = Column(DateTime(timezone=True), nullable=False, index=True)
    device_id = Column(String, nullable=False)
    type = Column(String, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    is_visible = Column(Boolean, nullable=False, default=True)
    storage_path = Column(String, nullable=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)


class TimelineEventRow(Base):
    __tablename__ = "timeline_events"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    custom_event_name = Column(String, nullable=True)
    date = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    location = Column(String, nullable=True)
    type = Column(String, nullable=False)
    created_by = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    media_urls = Column(JSON, nullable=False, default=list)
    media_types = Column(JSON, nullable=False, default=list)
    media_file_names = Column(JSON, nullable=False, default=list)
    user_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)


class SpotifyCredentialsRow(Base):
    __tablename__ = "spotify_credentials"

    id = Column(String, primary_key=True)
    access_token = Column(String, nullable=False)
    refresh_token = Column(String, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    user_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)


class WishlistItemRow(Base):
    __tablename__ = "music_wishlist"

    id = Column(String, primary_key=True)
    track_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    artists = Column(String, nullable=False)
    album = Column(String, nullable=False)
    album_image = Column(String, nullable=True)
    uri = Column(String, nullable=False)
    added_by = Column(String, nullable=False)
    added_at = Column(DateTime(timezone=True), nullable=False)
    user_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)


class MigrationJobRow(Base):
    __tablename__ = "migration_jobs"

    job_id = Column(String, primary_key=True)
    status = Column(String, nullable=False, index=True)
    steps = Column(JSON, nullable=False, default=list)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class SqlGalleryStore:
    """
    Relational adapter over SQLAlchemy; Postgres in production, SQLite in the tests.
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlGalleryStore")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    @staticmethod
    def _to_record(record_cls: Type[R], row) -> R:
        values = {}
        for f in fields(record_cls):
            value = getattr(row, f.name)
            values[f.name] = as_utc(value) if isinstance(value, datetime) else value
        return record_cls(**values)

    def _insert(self, row_cls, record: R) -> R:
        with self.Session() as session:
            session.add(row_cls(**asdict(record)))
            session.commit()
        return record

    def _get(self, row_cls, record_cls: Type[R], key: str) -> Optional[R]:
        with self.Session() as session:
            row = session.get(row_cls, key)
            return self._to_record(record_cls, row) if row else None

    def _list(self, row_cls, record_cls: Type[R], order_by, **filters) -> list[R]:
        with self.Session() as session:
            stmt = select(row_cls)
            for column, value in filters.items():
                if value is not None:
                    stmt = stmt.where(getattr(row_cls, column) == value)
            rows = session.execute(stmt.order_by(order_by)).scalars().all()
            return [self._to_record(record_cls, row) for row in rows]

    def _update(self, row_cls, record_cls: Type[R], key: str, updates: dict) -> Optional[R]:
        with self.Session() as session:
            row = session.get(row_cls, key)
            if not row:
                return None
            record = apply_updates(self._to_record(record_cls, row), updates)
            for name, value in asdict(record).items():
                setattr(row, name, value)
            session.commit()
            return record

    def _delete(self, row_cls, key: str) -> bool:
        with self.Session() as session:
            row = session.get(row_cls, key)
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    def create_user(self, user: UserRecord) -> UserRecord:
        try:
            return self._insert(UserRow, user)
        except IntegrityError as exc:
            raise ConflictError(f"User {user.username!r} already exists") from exc

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self._get(UserRow, UserRecord, user_id)

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        users = self._list(UserRow, UserRecord, UserRow.created_at, username=username)
        return users[0] if users else None

    def update_user(self, user_id: str, updates: dict) -> Optional[UserRecord]:
        return self._update(UserRow, UserRecord, user_id, updates)

    def list_users(self) -> list[UserRecord]:
        return self._list(UserRow, UserRecord, UserRow.created_at)

    def list_media(self, user_id: Optional[str] = None) -> list[MediaRecord]:
        return self._list(MediaRow, MediaRecord, MediaRow.uploaded_at.desc(), user_id=user_id)

    def get_media(self, media_id: str) -> Optional[MediaRecord]:
        return self._get(MediaRow, MediaRecord, media_id)

    def create_media(self, media: MediaRecord) -> MediaRecord:
        return self._insert(MediaRow, media)

    def update_media(self, media_id: str, updates: dict) -> Optional[MediaRecord]:
        return self._update(MediaRow, MediaRecord, media_id, updates)

    def delete_media(self, media_id: str) -> bool:
        with self.Session() as session:
            row = session.get(MediaRow, media_id)
            if not row:
                return False
            # SQLite ignores ON DELETE CASCADE unless foreign keys are enabled.
            session.execute(delete(CommentRow).where(CommentRow.media_id == media_id))
            session.execute(delete(LikeRow).where(LikeRow.media_id == media_id))
            session.delete(row)
            session.commit()
            return True

    def list_comments(self, media_id: Optional[str] = None) -> list[CommentRecord]:
        return self._list(CommentRow, CommentRecord, CommentRow.created_at, media_id=media_id)

    def get_comment(self, comment_id: str) -> Optional[CommentRecord]:
        return self._get(CommentRow, CommentRecord, comment_id)

    def create_comment(self, comment: CommentRecord) -> CommentRecord:
        return self._insert(CommentRow, comment)

    def delete_comment(self, comment_id: str) -> bool:
        return self._delete(CommentRow, comment_id)

    def list_likes(self, media_id: Optional[str] = None) -> list[LikeRecord]:
        return self._list(LikeRow, LikeRecord, LikeRow.created_at.desc(), media_id=media_id)

    def get_like(self, like_id: str) -> Optional[LikeRecord]:
        return self._get(LikeRow, LikeRecord, like_id)

    def create_like(self, like: LikeRecord) -> LikeRecord:
        return self._insert(LikeRow, like)

    def delete_like(self, like_id: str) -> bool:
        return self._delete(LikeRow, like_id)

    def list_stories(self, user_id: Optional[str] = None) -> list[StoryRecord]:
        return self._list(StoryRow, StoryRecord, StoryRow.uploaded_at.desc(), user_id=user_id)

    def get_story(self, story_id: str) -> Optional[StoryRecord]:
        return self._get(StoryRow, StoryRecord, story_id)

    def create_story(self, story: StoryRecord) -> StoryRecord:
        return self._insert(StoryRow, story)

    def delete_story(self, story_id: str) -> bool:
        return self._delete(StoryRow, story_id)

    def list_timeline_events(
        self, user_id: Optional[str] = None
    ) -> list[TimelineEventRecord]:
        return self._list(
            TimelineEventRow, TimelineEventRecord, TimelineEventRow.date, user_id=user_id
        )

    def get_timeline_event(self, event_id: str) -> Optional[TimelineEventRecord]:
        return self._get(TimelineEventRow, TimelineEventRecord, event_id)

    def create_timeline_event(self, event: TimelineEventRecord) -> TimelineEventRecord:
        return self._insert(TimelineEventRow, event)

    def update_timeline_event(
        self, event_id: str, updates: dict
    ) -> Optional[TimelineEventRecord]:
        return self._update(TimelineEventRow, TimelineEventRecord, event_id, updates)

    def delete_timeline_event(self, event_id: str) -> bool:
        return self._delete(TimelineEventRow, event_id)

    def get_spotify_credentials(
        self, user_id: str
    ) -> Optional[SpotifyCredentialsRecord]:
        rows = self._list(
            SpotifyCredentialsRow,
            SpotifyCredentialsRecord,
            SpotifyCredentialsRow.created_at.desc(),
            user_id=user_id,
        )
        return rows[0] if rows else None

    def create_spotify_credentials(
        self, credentials: SpotifyCredentialsRecord
    ) -> SpotifyCredentialsRecord:
        return self._insert(SpotifyCredentialsRow, credentials)

    def update_spotify_credentials(
        self, user_id: str, updates: dict
    ) -> Optional[SpotifyCredentialsRecord]:
        existing = self.get_spotify_credentials(user_id)
        if existing is None:
            return None
        return self._update(
            SpotifyCredentialsRow, SpotifyCredentialsRecord, existing.id, updates
        )

    def list_wishlist(self, user_id: Optional[str] = None) -> list[WishlistItemRecord]:
        return self._list(
            WishlistItemRow, WishlistItemRecord, WishlistItemRow.added_at.desc(), user_id=user_id
        )

    def get_wishlist_item(self, item_id: str) -> Optional[WishlistItemRecord]:
        return self._get(WishlistItemRow, WishlistItemRecord, item_id)

    def create_wishlist_item(self, item: WishlistItemRecord) -> WishlistItemRecord:
        return self._insert(WishlistItemRow, item)

    def delete_wishlist_item(self, item_id: str) -> bool:
        return self._delete(WishlistItemRow, item_id)

    def _to_job_record(self, row: MigrationJobRow) -> MigrationJobRecord:
        return MigrationJobRecord(
            job_id=row.job_id,
            status=JobStatus(row.status),
            steps=list(row.steps or []),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def create_migration_job(self) -> MigrationJobRecord:
        now = time.time()
        with self.Session() as session:
            row = MigrationJobRow(
                job_id=new_id(),
                status=JobStatus.WAITING.value,
                steps=[],
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_job_record(row)

    def get_migration_job(self, job_id: str) -> Optional[MigrationJobRecord]:
        with self.Session() as session:
            row = session.get(MigrationJobRow, job_id)
            return self._to_job_record(row) if row else None

    def update_migration_job(
        self,
        job_id: str,
        *,
        status: Optional[JobStatus] = None,
        steps: Optional[list[dict]] = None,
    ) -> None:
        with self.Session() as session:
            row = session.get(MigrationJobRow, job_id)
            if not row:
                return
            if status:
                row.status = status.value
            if steps is not None:
                row.steps = steps
            row.updated_at = time.time()
            session.commit()
