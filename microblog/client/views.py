from collections.abc import Iterable
from dataclasses import dataclass


@dataclass
class PostState:
    """Client-side copy of a post as one view holds it."""

    id: int
    is_liked: bool = False
    likes_count: int = 0
    body: str = ""


def sync_like_state(
    post_id: int,
    is_liked: bool,
    likes_count: int,
    *views: PostState | Iterable[PostState],
) -> int:
    """
    Copy a like state onto every entry with ``post_id`` across views.

    A view is either a single post (detail page) or a list of posts (feed).
    Views hold independent copies, so each must be updated explicitly.
    Returns the number of entries updated.
    """
    updated = 0
    for view in views:
        entries = [view] if isinstance(view, PostState) else view
        for entry in entries:
            if entry.id == post_id:
                entry.is_liked = is_liked
                entry.likes_count = likes_count
                updated += 1
    return updated
