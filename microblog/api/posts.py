import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from microblog.database import get_db
from microblog.schemas.post import ActionResponse, LikeRequest, LikeResponse, PostResponse
from microblog.services.like_service import LikeService
from microblog.services.post_service import PostNotFoundError, PostPermissionError, PostService
from microblog.utils.auth import CurrentUser, CurrentUserOptional

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/posts", tags=["Posts"])


async def _require_post(db: AsyncSession, post_id: int) -> None:
    if await PostService(db).get_by_id(post_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")


@router.get("/{post_id}", response_model=PostResponse)
async def get_post(
    post_id: int,
    db: Annotated[AsyncSession, Depends(get_db)],
    viewer: CurrentUserOptional,
) -> PostResponse:
    post = await PostService(db).get_by_id(post_id)
    if post is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")

    like_service = LikeService(db)
    return PostResponse(
        id=post.id,
        user_id=post.user_id,
        body=post.body,
        likes_count=await like_service.count(post.id),
        is_liked=await like_service.is_liked(viewer.id, post.id) if viewer else False,
    )


@router.post("/{post_id}/like", response_model=LikeResponse)
async def set_like(
    post_id: int,
    data: LikeRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: CurrentUser,
) -> LikeResponse:
    await _require_post(db, post_id)
    is_liked, likes_count = await LikeService(db).set_liked(
        current_user.id, post_id, data.is_liked
    )
    await db.commit()
    return LikeResponse(success=True, is_liked=is_liked, likes_count=likes_count)


@router.delete("/{post_id}/like", response_model=LikeResponse)
async def remove_like(
    post_id: int,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: CurrentUser,
) -> LikeResponse:
    await _require_post(db, post_id)
    is_liked, likes_count = await LikeService(db).set_liked(current_user.id, post_id, False)
    await db.commit()
    return LikeResponse(success=True, is_liked=is_liked, likes_count=likes_count)


@router.delete("/{post_id}", response_model=ActionResponse, response_model_exclude_none=True)
async def delete_post(
    post_id: int,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: CurrentUser,
) -> ActionResponse:
    try:
        await PostService(db).soft_delete(post_id, current_user)
    except PostNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from None
    except PostPermissionError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e)) from None
    await db.commit()
    return ActionResponse(success=True, message="Post deleted")


@router.post(
    "/{post_id}/restore", response_model=ActionResponse, response_model_exclude_none=True
)
async def restore_post(
    post_id: int,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: CurrentUser,
) -> ActionResponse:
    try:
        await PostService(db).restore(post_id, current_user)
    except PostNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from None
    except PostPermissionError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e)) from None
    await db.commit()
    return ActionResponse(success=True, message="Post restored")
