"""Database models."""

from microblog.models.post import Like, Post
from microblog.models.user import User

__all__ = [
    "User",
    "Post",
    "Like",
]
