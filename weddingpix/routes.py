"""
HTTP routes for the gallery API.

Every write takes the owning user id from the bearer token, never from the
request body.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile

from weddingpix.auth import (
    SessionUser,
    create_session_token,
    get_current_user,
    hash_password,
    verify_password,
)
from weddingpix.config import get_settings
from weddingpix.db import (
    GalleryStore,
    SpotifyCredentialsRecord,
    TimelineEventRecord,
    UserRecord,
    WishlistItemRecord,
    new_id,
)
from weddingpix.dependencies import get_gallery_store, get_storage_client
from weddingpix.errors import (
    AuthenticationError,
    ConflictError,
    GalleryError,
    NotFoundError,
    PermissionDeniedError,
)
from weddingpix.gallery import GalleryService, group_stories_by_user
from weddingpix.schemas import (
    CommentCreate,
    CommentResponse,
    LikeRequest,
    LikeResponse,
    LikeToggleResponse,
    LoginRequest,
    MediaResponse,
    MediaUpdate,
    NoteRequest,
    NoteUpdate,
    ProfileUpdate,
    RegisterRequest,
    SessionResponse,
    SpotifyCredentialsCreate,
    SpotifyCredentialsResponse,
    SpotifyCredentialsUpdate,
    StoryGroupResponse,
    StoryResponse,
    TimelineEventCreate,
    TimelineEventResponse,
    TimelineEventUpdate,
    UserResponse,
    WishlistItemCreate,
    WishlistItemResponse,
)
from weddingpix.storage import StorageClient

logger = logging.getLogger(__name__)

router = APIRouter()


def get_gallery_service(
    store: GalleryStore = Depends(get_gallery_store),
    storage: StorageClient = Depends(get_storage_client),
) -> GalleryService:
    return GalleryService(store, storage, story_ttl_hours=get_settings().story_ttl_hours)


def status_for(exc: GalleryError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, PermissionDeniedError):
        return 403
    if isinstance(exc, AuthenticationError):
        return 401
    return 400


@contextmanager
def domain_errors():
    try:
        yield
    except GalleryError as exc:
        raise HTTPException(status_code=status_for(exc), detail=str(exc)) from exc


def user_response(user: UserRecord) -> UserResponse:
    return UserResponse(**user.as_dict())


def _require_self_or_admin(session: SessionUser, user_id: str) -> None:
    if session.user_id != user_id and not session.is_admin:
        raise HTTPException(status_code=403, detail="You can only access your own data")


def _session_response(user: UserRecord, message: str) -> SessionResponse:
    settings = get_settings()
    token = create_session_token(user.id, user.username, is_admin=user.is_admin)
    return SessionResponse(
        access_token=token,
        expires_in=settings.session_ttl_hours * 3600,
        user=user_response(user),
        message=message,
    )


# Auth
@router.post("/auth/register", response_model=SessionResponse, status_code=201)
def register(payload: RegisterRequest, store: GalleryStore = Depends(get_gallery_store)):
    user = UserRecord(
        id=new_id(),
        username=payload.username,
        password_hash=hash_password(payload.password),
        email=payload.email or payload.username,
        display_name=payload.display_name,
    )
    try:
        store.create_user(user)
    except ConflictError as exc:
        raise HTTPException(status_code=400, detail="User already exists") from exc
    logger.info("Registered user %s", user.id)
    return _session_response(user, "User registered successfully")


@router.post("/auth/login", response_model=SessionResponse)
def login(payload: LoginRequest, store: GalleryStore = Depends(get_gallery_store)):
    user = store.get_user_by_username(payload.username)
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _session_response(user, "Login successful")


@router.get("/auth/me", response_model=UserResponse)
def me(
    session: SessionUser = Depends(get_current_user),
    service: GalleryService = Depends(get_gallery_service),
):
    with domain_errors():
        return user_response(service.get_profile(session.user_id))


# Users
@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    user_id: str,
    session: SessionUser = Depends(get_current_user),
    service: GalleryService = Depends(get_gallery_service),
):
    with domain_errors():
        return user_response(service.get_profile(user_id))


@router.get("/users/username/{username}", response_model=UserResponse)
def get_user_by_username(
    username: str,
    session: SessionUser = Depends(get_current_user),
    store: GalleryStore = Depends(get_gallery_store),
):
    user = store.get_user_by_username(username)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user_response(user)


@router.put("/users/{user_id}", response_model=UserResponse)
def update_user(
    user_id: str,
    payload: ProfileUpdate,
    session: SessionUser = Depends(get_current_user),
    service: GalleryService = Depends(get_gallery_service),
):
    _require_self_or_admin(session, user_id)
    with domain_errors():
        user = service.update_profile(user_id, payload.model_dump(exclude_unset=True))
    return user_response(user)


# Media
@router.get("/media", response_model=list[MediaResponse])
def list_media(
    user_id: Optional[str] = Query(None),
    session: SessionUser = Depends(get_current_user),
    store: GalleryStore = Depends(get_gallery_store),
):
    """The caller's own media; admins may list any user's, or everyone's."""
    if session.is_admin:
        items = store.list_media(user_id)
    else:
        _require_self_or_admin(session, user_id or session.user_id)
        items = store.list_media(session.user_id)
    return [MediaResponse(**asdict(item)) for item in items]


@router.get("/media/{media_id}", response_model=MediaResponse)
def get_media(
    media_id: str,
    session: SessionUser = Depends(get_current_user),
    store: GalleryStore = Depends(get_gallery_store),
):
    media = store.get_media(media_id)
    if not media:
        raise HTTPException(status_code=404, detail="Media not found")
    _require_self_or_admin(session, media.user_id or "")
    return MediaResponse(**asdict(media))


@router.post("/media/upload", response_model=MediaResponse, status_code=201)
async def upload_media(
    file: UploadFile = File(...),
    media_type: Optional[str] = Form(None),
    uploaded_by: Optional[str] = Form(None),
    session: SessionUser = Depends(get_current_user),
    service: GalleryService = Depends(get_gallery_service),
):
    if not file.filename:
        raise HTTPException(status_code=400, detail="File required")
    content_type = file.content_type or "application/octet-stream"
    if media_type is None:
        media_type = content_type.split("/", 1)[0]
    if media_type not in ("image", "video", "audio"):
        raise HTTPException(status_code=400, detail="Unsupported media type")
    data = await file.read()
    with domain_errors():
        media = service.upload_media(
            session.user_id,
            file.filename,
            data,
            content_type,
            media_type,
            uploaded_by or session.username,
        )
    return MediaResponse(**asdict(media))


@router.post("/media/notes", response_model=MediaResponse, status_code=201)
def add_note(
    payload: NoteRequest,
    session: SessionUser = Depends(get_current_user),
    service: GalleryService = Depends(get_gallery_service),
):
    with domain_errors():
        media = service.add_note(session.user_id, payload.note_text, payload.uploaded_by)
    return MediaResponse(**asdict(media))


@router.put("/media/{media_id}/note", response_model=MediaResponse)
def edit_note(
    media_id: str,
    payload: NoteUpdate,
    session: SessionUser = Depends(get_current_user),
    service: GalleryService = Depends(get_gallery_service),
):
    with domain_errors():
        media = service.edit_note(
            session.user_id, media_id, payload.note_text, is_admin=session.is_admin
        )
    return MediaResponse(**asdict(media))


@router.put("/media/{media_id}", response_model=MediaResponse)
def update_media(
    media_id: str,
    payload: MediaUpdate,
    session: SessionUser = Depends(get_current_user),
    service: GalleryService = Depends(get_gallery_service),
):
    with domain_errors():
        media = service.update_media(
            session.user_id,
            media_id,
            payload.model_dump(exclude_unset=True),
            is_admin=session.is_admin,
        )
    return MediaResponse(**asdict(media))


@router.delete("/media/{media_id}", status_code=204)
def delete_media(
    media_id: str,
    session: SessionUser = Depends(get_current_user),
    service: GalleryService = Depends(get_gallery_service),
):
    with domain_errors():
        service.delete_media(session.user_id, media_id, is_admin=session.is_admin)


# Comments
@router.get("/comments", response_model=list[CommentResponse])
def list_comments(
    media_id: Optional[str] = Query(None),
    session: SessionUser = Depends(get_current_user),
    store: GalleryStore = Depends(get_gallery_store),
):
    return [CommentResponse(**asdict(item)) for item in store.list_comments(media_id)]


@router.post("/comments", response_model=CommentResponse, status_code=201)
def add_comment(
    payload: CommentCreate,
    session: SessionUser = Depends(get_current_user),
    service: GalleryService = Depends(get_gallery_service),
):
    with domain_errors():
        comment = service.add_comment(
            session.user_id, payload.media_id, payload.text, payload.user_name, payload.device_id
        )
    return CommentResponse(**asdict(comment))


@router.delete("/comments/{comment_id}", status_code=204)
def delete_comment(
    comment_id: str,
    session: SessionUser = Depends(get_current_user),
    service: GalleryService = Depends(get_gallery_service),
):
    with domain_errors():
        service.delete_comment(session.user_id, comment_id, is_admin=session.is_admin)


# Likes
@router.get("/likes", response_model=list[LikeResponse])
def list_likes(
    media_id: Optional[str] = Query(None),
    session: SessionUser = Depends(get_current_user),
    store: GalleryStore = Depends(get_gallery_store),
):
    return [LikeResponse(**asdict(item)) for item in store.list_likes(media_id)]


@router.post("/likes/toggle", response_model=LikeToggleResponse)
def toggle_like(
    payload: LikeRequest,
    session: SessionUser = Depends(get_current_user),
    service: GalleryService = Depends(get_gallery_service),
):
    with domain_errors():
        like = service.toggle_like(
            session.user_id, payload.media_id, payload.user_name, payload.device_id
        )
    if like is None:
        return LikeToggleResponse(liked=False)
    return LikeToggleResponse(liked=True, like=LikeResponse(**asdict(like)))


@router.delete("/likes/{like_id}", status_code=204)
def delete_like(
    like_id: str,
    session: SessionUser = Depends(get_current_user),
    store: GalleryStore = Depends(get_gallery_store),
):
    like = store.get_like(like_id)
    if not like:
        raise HTTPException(status_code=404, detail="Like not found")
    _require_self_or_admin(session, like.user_id or "")
    store.delete_like(like_id)


# Stories
@router.get("/stories", response_model=list[StoryResponse])
def list_stories(
    session: SessionUser = Depends(get_current_user),
    service: GalleryService = Depends(get_gallery_service),
):
    return [StoryResponse(**asdict(story)) for story in service.list_active_stories()]


@router.get("/stories/grouped", response_model=list[StoryGroupResponse])
def list_story_groups(
    session: SessionUser = Depends(get_current_user),
    service: GalleryService = Depends(get_gallery_service),
):
    groups = group_stories_by_user(service.list_active_stories())
    return [
        StoryGroupResponse(
            user_name=group.user_name,
            stories=[StoryResponse(**asdict(story)) for story in group.stories],
            latest_story=StoryResponse(**asdict(group.latest_story)),
        )
        for group in groups
    ]


@router.post("/stories", response_model=StoryResponse, status_code=201)
async def upload_story(
    file: UploadFile = File(...),
    uploaded_by: Optional[str] = Form(None),
    session: SessionUser = Depends(get_current_user),
    service: GalleryService = Depends(get_gallery_service),
):
    if not file.filename:
        raise HTTPException(status_code=400, detail="File required")
    content_type = file.content_type or "application/octet-stream"
    if not content_type.startswith(("image/", "video/")):
        raise HTTPException(status_code=400, detail="Stories must be images or videos")
    data = await file.read()
    with domain_errors():
        story = service.upload_story(
            session.user_id, file.filename, data, content_type, uploaded_by or session.username
        )
    return StoryResponse(**asdict(story))


@router.delete("/stories/{story_id}", status_code=204)
def delete_story(
    story_id: str,
    session: SessionUser = Depends(get_current_user),
    service: GalleryService = Depends(get_gallery_service),
):
    with domain_errors():
        service.delete_story(session.user_id, story_id, is_admin=session.is_admin)


# Timeline
@router.get("/timeline", response_model=list[TimelineEventResponse])
def list_timeline(
    session: SessionUser = Depends(get_current_user),
    store: GalleryStore = Depends(get_gallery_store),
):
    return [
        TimelineEventResponse(**asdict(event))
        for event in store.list_timeline_events(session.user_id)
    ]


@router.post("/timeline", response_model=TimelineEventResponse, status_code=201)
def create_timeline_event(
    payload: TimelineEventCreate,
    session: SessionUser = Depends(get_current_user),
    store: GalleryStore = Depends(get_gallery_store),
):
    event = store.create_timeline_event(
        TimelineEventRecord(
            id=new_id(),
            created_by=session.username,
            user_id=session.user_id,
            **payload.model_dump(),
        )
    )
    return TimelineEventResponse(**asdict(event))


def _owned_timeline_event(store: GalleryStore, session: SessionUser, event_id: str) -> TimelineEventRecord:
    event = store.get_timeline_event(event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Timeline event not found")
    _require_self_or_admin(session, event.user_id or "")
    return event


@router.put("/timeline/{event_id}", response_model=TimelineEventResponse)
def update_timeline_event(
    event_id: str,
    payload: TimelineEventUpdate,
    session: SessionUser = Depends(get_current_user),
    store: GalleryStore = Depends(get_gallery_store),
):
    _owned_timeline_event(store, session, event_id)
    event = store.update_timeline_event(event_id, payload.model_dump(exclude_unset=True))
    return TimelineEventResponse(**asdict(event))


@router.delete("/timeline/{event_id}", status_code=204)
def delete_timeline_event(
    event_id: str,
    session: SessionUser = Depends(get_current_user),
    store: GalleryStore = Depends(get_gallery_store),
):
    _owned_timeline_event(store, session, event_id)
    store.delete_timeline_event(event_id)


# Spotify
@router.get("/spotify/credentials/{user_id}", response_model=SpotifyCredentialsResponse)
def get_spotify_credentials(
    user_id: str,
    session: SessionUser = Depends(get_current_user),
    store: GalleryStore = Depends(get_gallery_store),
):
    _require_self_or_admin(session, user_id)
    credentials = store.get_spotify_credentials(user_id)
    if not credentials:
        raise HTTPException(status_code=404, detail="Spotify credentials not found")
    return SpotifyCredentialsResponse(**asdict(credentials))


@router.post("/spotify/credentials", response_model=SpotifyCredentialsResponse, status_code=201)
def create_spotify_credentials(
    payload: SpotifyCredentialsCreate,
    session: SessionUser = Depends(get_current_user),
    store: GalleryStore = Depends(get_gallery_store),
):
    credentials = store.create_spotify_credentials(
        SpotifyCredentialsRecord(id=new_id(), user_id=session.user_id, **payload.model_dump())
    )
    return SpotifyCredentialsResponse(**asdict(credentials))


@router.put("/spotify/credentials/{user_id}", response_model=SpotifyCredentialsResponse)
def update_spotify_credentials(
    user_id: str,
    payload: SpotifyCredentialsUpdate,
    session: SessionUser = Depends(get_current_user),
    store: GalleryStore = Depends(get_gallery_store),
):
    _require_self_or_admin(session, user_id)
    credentials = store.update_spotify_credentials(user_id, payload.model_dump(exclude_unset=True))
    if not credentials:
        raise HTTPException(status_code=404, detail="Spotify credentials not found")
    return SpotifyCredentialsResponse(**asdict(credentials))


# Music wishlist
@router.get("/music/wishlist", response_model=list[WishlistItemResponse])
def list_wishlist(
    session: SessionUser = Depends(get_current_user),
    store: GalleryStore = Depends(get_gallery_store),
):
    return [WishlistItemResponse(**asdict(item)) for item in store.list_wishlist(session.user_id)]


@router.post("/music/wishlist", response_model=WishlistItemResponse, status_code=201)
def add_wishlist_item(
    payload: WishlistItemCreate,
    session: SessionUser = Depends(get_current_user),
    store: GalleryStore = Depends(get_gallery_store),
):
    item = store.create_wishlist_item(
        WishlistItemRecord(
            id=new_id(),
            added_by=session.username,
            user_id=session.user_id,
            **payload.model_dump(),
        )
    )
    return WishlistItemResponse(**asdict(item))


@router.delete("/music/wishlist/{item_id}", status_code=204)
def delete_wishlist_item(
    item_id: str,
    session: SessionUser = Depends(get_current_user),
    store: GalleryStore = Depends(get_gallery_store),
):
    item = store.get_wishlist_item(item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Wishlist item not found")
    _require_self_or_admin(session, item.user_id or "")
    store.delete_wishlist_item(item_id)
