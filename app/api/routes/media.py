# app/api/routes/media.py
from typing import List, Optional
from urllib.parse import quote
from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from fastapi.responses import StreamingResponse
from app.core.schemas.media import (
    MediaOut,
    MediaRecord,
    MediaKind,
    Likes,
    Favorites,
    Comment,
    ToggleRequest,
    CommentCreate,
    MessageResponse,
    SyncResponse,
)
from app.core.utils import get_media_service, verify_csrf
from app.services.media_service import MediaService, UploadedFile
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/media", tags=["media"], dependencies=[Depends(verify_csrf)])


@router.get("", response_model=List[MediaOut])
async def list_media(
    type: Optional[MediaKind] = Query(None, description="photo или video"),
    service: MediaService = Depends(get_media_service),
):
    """Все медиа (новые сверху) с лайками, избранным и комментариями"""
    return await service.list_media(type)


@router.post("/upload", response_model=List[MediaRecord], status_code=status.HTTP_201_CREATED)
async def upload_media(
    files: List[UploadFile] = File(...),
    service: MediaService = Depends(get_media_service),
):
    batch = []
    for f in files:
        data = await f.read()
        batch.append(UploadedFile(
            filename=f.filename or "",
            content_type=f.content_type or "",
            data=data,
        ))
    return await service.upload(batch)


@router.get("/file/{file_id}")
async def get_file(file_id: str, service: MediaService = Depends(get_media_service)):
    """Отдаёт байты файла потоком"""
    info, chunks = await service.open_file(file_id)
    headers = {
        "Content-Length": str(info.length),
        "Content-Disposition": f"inline; filename*=UTF-8''{quote(info.filename)}",
    }
    return StreamingResponse(chunks, media_type=info.content_type, headers=headers)


@router.post("/sync", response_model=SyncResponse)
async def sync_cache(service: MediaService = Depends(get_media_service)):
    """Полная пересборка локального кэша из основного хранилища"""
    count = await service.sync()
    return SyncResponse(message="Cache synchronized successfully", count=count)


@router.get("/user/{user}/favorites", response_model=List[MediaOut])
async def get_user_favorites(user: str, service: MediaService = Depends(get_media_service)):
    return await service.user_favorites(user)


@router.get("/{media_id}", response_model=MediaOut)
async def get_media(media_id: str, service: MediaService = Depends(get_media_service)):
    return await service.get_media(media_id)


@router.delete("/{media_id}", response_model=MessageResponse)
async def delete_media(media_id: str, service: MediaService = Depends(get_media_service)):
    await service.delete_media(media_id)
    return MessageResponse(message="Media deleted successfully")


@router.post("/{media_id}/like", response_model=Likes)
async def toggle_like(
    media_id: str,
    body: ToggleRequest,
    service: MediaService = Depends(get_media_service),
):
    return await service.toggle_like(media_id, body.user)


@router.get("/{media_id}/likes", response_model=Likes)
async def get_likes(media_id: str, service: MediaService = Depends(get_media_service)):
    return await service.get_likes(media_id)


@router.post("/{media_id}/favorite", response_model=Favorites)
async def toggle_favorite(
    media_id: str,
    body: ToggleRequest,
    service: MediaService = Depends(get_media_service),
):
    return await service.toggle_favorite(media_id, body.user)


@router.get("/{media_id}/favorites", response_model=Favorites)
async def get_favorites(media_id: str, service: MediaService = Depends(get_media_service)):
    return await service.get_favorites(media_id)


@router.post("/{media_id}/comments", response_model=Comment, status_code=status.HTTP_201_CREATED)
async def add_comment(
    media_id: str,
    body: CommentCreate,
    service: MediaService = Depends(get_media_service),
):
    return await service.add_comment(media_id, body.content, body.author, body.reply_to)


@router.get("/{media_id}/comments", response_model=List[Comment])
async def get_comments(media_id: str, service: MediaService = Depends(get_media_service)):
    return await service.get_comments(media_id)


@router.delete("/{media_id}/comments/{comment_id}", response_model=MessageResponse)
async def delete_comment(
    media_id: str,
    comment_id: str,
    parent_id: Optional[str] = Query(None, alias="parentId"),
    service: MediaService = Depends(get_media_service),
):
    await service.delete_comment(media_id, comment_id, parent_id)
    return MessageResponse(message="Comment deleted successfully")
