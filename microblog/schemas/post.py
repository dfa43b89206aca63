from uuid import UUID

from pydantic import BaseModel, Field


class LikeRequest(BaseModel):
    # Final intended state, not a toggle
    is_liked: bool = Field(..., alias="isLiked")


class LikeResponse(BaseModel):
    success: bool
    is_liked: bool
    likes_count: int


class PostResponse(BaseModel):
    id: int
    user_id: UUID
    body: str
    likes_count: int
    is_liked: bool


class ActionResponse(BaseModel):
    success: bool
    message: str | None = None
    error: str | None = None
