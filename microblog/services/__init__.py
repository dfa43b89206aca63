"""Service layer for business logic."""

from microblog.services.like_service import LikeService
from microblog.services.post_service import PostService
from microblog.services.user_service import UserService

__all__ = [
    "LikeService",
    "PostService",
    "UserService",
]
