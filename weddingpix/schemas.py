"""
Pydantic schemas for the gallery API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)
    password: str = Field(..., min_length=1)
    display_name: str = Field(..., min_length=1, max_length=128)
    email: Optional[str] = None


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserResponse(BaseModel):
    id: str
    username: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    bio: Optional[str] = None
    profile_image: Optional[str] = None
    dark_mode: bool = False
    audio_enabled: bool = True
    is_admin: bool = False
    created_at: datetime


class SessionResponse(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
    expires_in: int
    user: Optional[UserResponse] = None
    message: str


class ProfileUpdate(BaseModel):
    display_name: Optional[str] = Field(None, max_length=128)
    bio: Optional[str] = Field(None, max_length=1024)
    profile_image: Optional[str] = None
    dark_mode: Optional[bool] = None
    audio_enabled: Optional[bool] = None


class MediaResponse(BaseModel):
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
    uploaded_at: datetime


class MediaUpdate(BaseModel):
    name: Optional[str] = None
    is_unavailable: Optional[bool] = None


class NoteRequest(BaseModel):
    note_text: str = Field(..., min_length=1, max_length=4096)
    uploaded_by: str = Field(..., min_length=1)


class NoteUpdate(BaseModel):
    note_text: str = Field(..., min_length=1, max_length=4096)


class CommentCreate(BaseModel):
    media_id: str
    text: str = Field(..., min_length=1, max_length=2048)
    user_name: str = Field(..., min_length=1)
    device_id: str = Field(..., min_length=1)


class CommentResponse(BaseModel):
    id: str
    media_id: str
    text: str
    user_name: str
    device_id: str
    user_id: Optional[str] = None
    created_at: datetime


class LikeRequest(BaseModel):
    media_id: str
    user_name: str = Field(..., min_length=1)
    device_id: str = Field(..., min_length=1)


class LikeResponse(BaseModel):
    id: str
    media_id: str
    user_name: str
    device_id: str
    user_id: Optional[str] = None
    created_at: datetime


class LikeToggleResponse(BaseModel):
    liked: bool
    like: Optional[LikeResponse] = None


class StoryResponse(BaseModel):
    id: str
    url: str
    uploaded_by: str
    device_id: str
    type: str
    expires_at: Optional[datetime] = None
    user_id: Optional[str] = None
    is_visible: bool = True
    storage_path: Optional[str] = None
    uploaded_at: datetime


class StoryGroupResponse(BaseModel):
    user_name: str
    stories: list[StoryResponse]
    latest_story: StoryResponse


class TimelineEventCreate(BaseModel):
    title: str = Field(..., min_length=1)
    date: str
    description: str
    type: str
    location: Optional[str] = None
    custom_event_name: Optional[str] = None
    media_urls: list[str] = Field(default_factory=list)
    media_types: list[str] = Field(default_factory=list)
    media_file_names: list[str] = Field(default_factory=list)


class TimelineEventUpdate(BaseModel):
    title: Optional[str] = None
    date: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    location: Optional[str] = None
    custom_event_name: Optional[str] = None
    media_urls: Optional[list[str]] = None
    media_types: Optional[list[str]] = None
    media_file_names: Optional[list[str]] = None


class TimelineEventResponse(TimelineEventCreate):
    id: str
    created_by: str
    user_id: Optional[str] = None
    created_at: datetime


class SpotifyCredentialsCreate(BaseModel):
    access_token: str
    refresh_token: str
    expires_at: datetime


class SpotifyCredentialsUpdate(BaseModel):
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None


class SpotifyCredentialsResponse(SpotifyCredentialsCreate):
    id: str
    user_id: Optional[str] = None
    created_at: datetime


class WishlistItemCreate(BaseModel):
    track_id: str
    name: str
    artists: str
    album: str
    uri: str
    album_image: Optional[str] = None


class WishlistItemResponse(WishlistItemCreate):
    id: str
    added_by: str
    user_id: Optional[str] = None
    added_at: datetime


class AdminLoginRequest(BaseModel):
    username: str
    password: str


class SecurityAnalysisResponse(BaseModel):
    global_collections: list[str]
    unsecured_data: int
    risky_operations: list[str]
    errors: list[str] = Field(default_factory=list)


class MigrationResultResponse(BaseModel):
    success: bool
    migrated_items: int
    errors: list[str]
    warnings: list[str] = Field(default_factory=list)
    details: str


class ValidationResponse(MigrationResultResponse):
    per_user_counts: dict[str, int] = Field(default_factory=dict)


class UserMigrationRequest(BaseModel):
    delete_source: bool = False


class MigrationStatsResponse(BaseModel):
    user_id: str
    media_items_migrated: int
    comments_migrated: int
    likes_migrated: int
    stories_migrated: int
    total: int
    errors: list[str]


class MigrationStatusResponse(BaseModel):
    user_id: str
    has_secure_data: bool
    has_legacy_data: bool
    migration_needed: bool


class MigrationStepResponse(BaseModel):
    id: str
    title: str
    critical: bool
    status: str
    migrated_items: int = 0
    details: str = ""
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class MigrationRunResponse(BaseModel):
    job_id: str
    status: str
    steps: list[MigrationStepResponse] = Field(default_factory=list)
    created_at: float
    updated_at: float
