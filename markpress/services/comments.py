from __future__ import annotations

import logging

from sqlalchemy import func
from sqlmodel import Session, select

from markpress.core.exceptions import NotFoundError, PermissionDeniedError
from markpress.models import Comment, Post, utcnow
from markpress.schemas import CommentCreate, CommentUpdate

logger = logging.getLogger("markpress.comments")


def _refresh_comments_count(session: Session, post_id: int) -> None:
    post = session.get(Post, post_id)
    if post is None:
        return
    count = session.exec(select(func.count(Comment.id)).where(Comment.post_id == post_id)).one()
    post.comments_count = int(count or 0)
    session.add(post)


def list_comments(session: Session, post_id: int) -> list[Comment]:
    """Comments in thread order: each top-level comment followed by its replies."""
    if session.get(Post, post_id) is None:
        raise NotFoundError("Post", post_id)
    rows = session.exec(
        select(Comment).where(Comment.post_id == post_id).order_by(Comment.created_at, Comment.id)
    ).all()

    replies: dict[int, list[Comment]] = {}
    for row in rows:
        if row.parent_id is not None:
            replies.setdefault(row.parent_id, []).append(row)

    ordered = []
    for row in rows:
        if row.parent_id is None:
            ordered.append(row)
            ordered.extend(replies.get(row.id, []))
    return ordered


def create_comment(session: Session, post_id: int, data: CommentCreate, author_id: str) -> Comment:
    if session.get(Post, post_id) is None:
        raise NotFoundError("Post", post_id)

    parent_id = data.parent_id
    if parent_id is not None:
        parent = session.get(Comment, parent_id)
        if parent is None or parent.post_id != post_id:
            raise NotFoundError("Comment", parent_id)
        # Replies stay one level deep
        if parent.parent_id is not None:
            parent_id = parent.parent_id

    comment = Comment(post_id=post_id, author_id=author_id, parent_id=parent_id, content=data.content)
    session.add(comment)
    session.flush()
    _refresh_comments_count(session, post_id)
    session.commit()
    session.refresh(comment)
    logger.info("event=comment_created comment_id=%s post_id=%s parent_id=%s", comment.id, post_id, parent_id)
    return comment


def _owned_comment(session: Session, comment_id: int, author_id: str) -> Comment:
    comment = session.get(Comment, comment_id)
    if comment is None:
        raise NotFoundError("Comment", comment_id)
    if comment.author_id != author_id:
        raise PermissionDeniedError("Only the author can change this comment")
    return comment


def update_comment(session: Session, comment_id: int, data: CommentUpdate, author_id: str) -> Comment:
    comment = _owned_comment(session, comment_id, author_id)
    comment.content = data.content
    comment.updated_at = utcnow()
    session.add(comment)
    session.commit()
    session.refresh(comment)
    return comment


def delete_comment(session: Session, comment_id: int, author_id: str) -> None:
    comment = _owned_comment(session, comment_id, author_id)
    post_id = comment.post_id
    for reply in session.exec(select(Comment).where(Comment.parent_id == comment.id)).all():
        session.delete(reply)
    session.flush()
    session.delete(comment)
    session.flush()
    _refresh_comments_count(session, post_id)
    session.commit()
    logger.info("event=comment_deleted comment_id=%s post_id=%s", comment_id, post_id)
