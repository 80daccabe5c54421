"""
User-isolated gallery operations shared by every persistence adapter.

Files are stored under ``users/{uid}/...`` and every write is stamped with
the caller's user id.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from weddingpix.db import (
    CommentRecord,
    GalleryStore,
    LikeRecord,
    MediaRecord,
    StoryRecord,
    UserRecord,
    new_id,
    utcnow,
)
from weddingpix.errors import InvalidUserError, NotFoundError, PermissionDeniedError
from weddingpix.storage import StorageClient

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("display_name", "bio", "profile_image", "dark_mode", "audio_enabled")
_UNSAFE_FILENAME = re.compile(r"[^a-zA-Z0-9.-]")


def validate_user_id(user_id: Optional[str]) -> str:
    if not user_id or not str(user_id).strip():
        raise InvalidUserError("Invalid user id: a user id is required")
    return user_id


def safe_filename(filename: str) -> str:
    return _UNSAFE_FILENAME.sub("_", filename)


def storage_path(user_id: str, folder: str, filename: str) -> str:
    return f"users/{user_id}/{folder}/{filename}"


def _millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


@dataclass
class UserStoryGroup:
    user_name: str
    stories: list[StoryRecord] = field(default_factory=list)

    @property
    def latest_story(self) -> StoryRecord:
        return self.stories[0]


def group_stories_by_user(stories: list[StoryRecord]) -> list[UserStoryGroup]:
    groups: dict[str, UserStoryGroup] = {}
    for story in stories:
        groups.setdefault(story.uploaded_by, UserStoryGroup(story.uploaded_by)).stories.append(story)
    for group in groups.values():
        group.stories.sort(key=lambda s: s.uploaded_at, reverse=True)
    return list(groups.values())


class GalleryService:
    def __init__(self, store: GalleryStore, storage: StorageClient, *, story_ttl_hours: int = 24):
        self.store = store
        self.storage = storage
        self.story_ttl = timedelta(hours=story_ttl_hours)

    def _upload(self, path: str, data: bytes, content_type: str) -> str:
        return self.storage.upload_bytes(path, data, content_type)

    def _cleanup(self, path: str) -> None:
        try:
            self.storage.delete(path)
        except Exception as exc:
            logger.warning("Could not clean up failed upload %s: %s", path, exc)

    # Media
    def upload_media(
        self,
        user_id: str,
        filename: str,
        data: bytes,
        content_type: str,
        media_type: str,
        uploaded_by: str,
    ) -> MediaRecord:
        validate_user_id(user_id)
        uploaded_at = utcnow()
        path = storage_path(user_id, "media", f"{_millis(uploaded_at)}_{safe_filename(filename)}")
        url = self._upload(path, data, content_type)
        try:
            media = self.store.create_media(
                MediaRecord(
                    id=new_id(),
                    name=filename,
                    url=url,
                    uploaded_by=uploaded_by,
                    device_id=user_id,
                    type=media_type,
                    user_id=user_id,
                    storage_path=path,
                    uploaded_at=uploaded_at,
                )
            )
        except Exception:
            logger.exception("Recording media upload for user %s failed", user_id)
            self._cleanup(path)
            raise
        logger.info("Media %s uploaded for user %s", media.id, user_id)
        return media

    def add_note(self, user_id: str, note_text: str, uploaded_by: str) -> MediaRecord:
        validate_user_id(user_id)
        return self.store.create_media(
            MediaRecord(
                id=new_id(),
                name="Note",
                url="",
                uploaded_by=uploaded_by,
                device_id=user_id,
                type="note",
                user_id=user_id,
                note_text=note_text,
            )
        )

    def _owned_media(self, user_id: str, media_id: str, is_admin: bool) -> MediaRecord:
        validate_user_id(user_id)
        media = self.store.get_media(media_id)
        if media is None:
            raise NotFoundError(f"Media {media_id} not found")
        if media.user_id != user_id and not is_admin:
            raise PermissionDeniedError("You can only modify your own media")
        return media

    def edit_note(self, user_id: str, media_id: str, note_text: str, *, is_admin: bool = False) -> MediaRecord:
        media = self._owned_media(user_id, media_id, is_admin)
        if media.type != "note":
            raise NotFoundError(f"Media {media_id} is not a note")
        return self.store.update_media(media_id, {"note_text": note_text})

    def update_media(
        self, user_id: str, media_id: str, updates: dict, *, is_admin: bool = False
    ) -> MediaRecord:
        self._owned_media(user_id, media_id, is_admin)
        allowed = {key: value for key, value in updates.items() if key in ("name", "is_unavailable")}
        return self.store.update_media(media_id, allowed)

    def delete_media(self, user_id: str, media_id: str, *, is_admin: bool = False) -> None:
        media = self._owned_media(user_id, media_id, is_admin)
        if media.storage_path:
            try:
                self.storage.delete(media.storage_path)
            except FileNotFoundError:
                logger.warning("Storage object %s already gone", media.storage_path)
        self.store.delete_media(media_id)
        logger.info("Media %s deleted by user %s", media_id, user_id)

    # Comments and likes
    def add_comment(
        self, user_id: str, media_id: str, text: str, user_name: str, device_id: str
    ) -> CommentRecord:
        validate_user_id(user_id)
        if self.store.get_media(media_id) is None:
            raise NotFoundError(f"Media {media_id} not found")
        return self.store.create_comment(
            CommentRecord(
                id=new_id(),
                media_id=media_id,
                text=text,
                user_name=user_name,
                device_id=device_id,
                user_id=user_id,
            )
        )

    def delete_comment(self, user_id: str, comment_id: str, *, is_admin: bool = False) -> None:
        validate_user_id(user_id)
        comment = self.store.get_comment(comment_id)
        if comment is None:
            raise NotFoundError(f"Comment {comment_id} not found")
        if comment.user_id != user_id and not is_admin:
            raise PermissionDeniedError("You can only delete your own comments")
        self.store.delete_comment(comment_id)

    def toggle_like(
        self, user_id: str, media_id: str, user_name: str, device_id: str
    ) -> Optional[LikeRecord]:
        """Remove the caller's like on ``media_id`` or add one; returns the new like."""
        validate_user_id(user_id)
        if self.store.get_media(media_id) is None:
            raise NotFoundError(f"Media {media_id} not found")
        # Display names are not unique; only the caller's own like is removed.
        for like in self.store.list_likes(media_id):
            if like.user_id == user_id:
                self.store.delete_like(like.id)
                return None
        return self.store.create_like(
            LikeRecord(
                id=new_id(),
                media_id=media_id,
                user_name=user_name,
                device_id=device_id,
                user_id=user_id,
            )
        )

    # Stories
    def upload_story(
        self, user_id: str, filename: str, data: bytes, content_type: str, uploaded_by: str
    ) -> StoryRecord:
        validate_user_id(user_id)
        uploaded_at = utcnow()
        path = storage_path(
            user_id, "stories", f"story_{_millis(uploaded_at)}_{safe_filename(filename)}"
        )
        url = self._upload(path, data, content_type)
        try:
            return self.store.create_story(
                StoryRecord(
                    id=new_id(),
                    url=url,
                    uploaded_by=uploaded_by,
                    device_id=user_id,
                    type="video" if content_type.startswith("video/") else "image",
                    expires_at=uploaded_at + self.story_ttl,
                    user_id=user_id,
                    storage_path=path,
                    uploaded_at=uploaded_at,
                )
            )
        except Exception:
            logger.exception("Recording story upload for user %s failed", user_id)
            self._cleanup(path)
            raise

    def list_active_stories(self, now: Optional[datetime] = None) -> list[StoryRecord]:
        now = now or utcnow()
        return [
            story
            for story in self.store.list_stories()
            if story.is_visible and (story.expires_at is None or story.expires_at > now)
        ]

    def delete_story(self, user_id: str, story_id: str, *, is_admin: bool = False) -> None:
        validate_user_id(user_id)
        story = self.store.get_story(story_id)
        if story is None:
            raise NotFoundError(f"Story {story_id} not found")
        if story.user_id != user_id and not is_admin:
            raise PermissionDeniedError("You can only delete your own stories")
        if story.storage_path:
            try:
                self.storage.delete(story.storage_path)
            except FileNotFoundError:
                logger.warning("Storage object %s already gone", story.storage_path)
        self.store.delete_story(story_id)

    # Profile
    def get_profile(self, user_id: str) -> UserRecord:
        validate_user_id(user_id)
        user = self.store.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    def update_profile(self, user_id: str, updates: dict) -> UserRecord:
        validate_user_id(user_id)
        allowed = {key: value for key, value in updates.items() if key in PROFILE_FIELDS}
        user = self.store.update_user(user_id, allowed)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user
