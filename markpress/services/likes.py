from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func
from sqlmodel import Session, select

from markpress.core.exceptions import NotFoundError
from markpress.models import Like, Post

logger = logging.getLogger("markpress.likes")


def count_likes(session: Session, post_id: int) -> int:
    count = session.exec(select(func.count(Like.id)).where(Like.post_id == post_id)).one()
    return int(count or 0)


def _find_like(session: Session, post_id: int, user_id: str) -> Optional[Like]:
    return session.exec(select(Like).where(Like.post_id == post_id, Like.user_id == user_id)).first()


def like_status(session: Session, post_id: int, user_id: Optional[str] = None) -> dict:
    if session.get(Post, post_id) is None:
        raise NotFoundError("Post", post_id)
    return {
        "post_id": post_id,
        "is_liked": bool(user_id) and _find_like(session, post_id, user_id) is not None,
        "likes_count": count_likes(session, post_id),
    }


def toggle_like(session: Session, post_id: int, user_id: str) -> dict:
    post = session.get(Post, post_id)
    if post is None:
        raise NotFoundError("Post", post_id)

    existing = _find_like(session, post_id, user_id)
    if existing is not None:
        session.delete(existing)
        is_liked = False
    else:
        session.add(Like(post_id=post_id, user_id=user_id))
        is_liked = True
    session.flush()

    post.likes_count = count_likes(session, post_id)
    session.add(post)
    session.commit()
    logger.info("event=like_toggled post_id=%s user_id=%s liked=%s", post_id, user_id, is_liked)
    return {"post_id": post_id, "is_liked": is_liked, "likes_count": post.likes_count}


def user_likes(session: Session, user_id: str, page: int = 1, limit: int = 10) -> tuple[list[Like], int]:
    total = session.exec(select(func.count(Like.id)).where(Like.user_id == user_id)).one()
    likes = session.exec(
        select(Like)
        .where(Like.user_id == user_id)
        .order_by(Like.created_at.desc(), Like.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    return list(likes), int(total or 0)
