from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from markpress.api.deps import get_blob_store, optional_user, require_admin, require_user
from markpress.db import get_session
from markpress.models import Comment, Post
from markpress.schemas import (
    CommentCreate,
    CommentRead,
    CommentUpdate,
    HashtagRead,
    PostCreate,
    PostRead,
    PostSort,
    PostUpdate,
)
from markpress.services import comments as comment_service
from markpress.services import likes as like_service
from markpress.services import posts as post_service
from markpress.services.hashtags import list_hashtags_with_counts, search_hashtags
from markpress.services.posts import PublishResult
from markpress.storage import LocalBlobStore

router = APIRouter(prefix="/api")


def post_payload(post: Post) -> dict:
    return PostRead(
        id=post.id,
        title=post.title,
        content_markdown=post.content_markdown,
        thumbnail_url=post.thumbnail_url,
        view_count=post.view_count,
        likes_count=post.likes_count,
        comments_count=post.comments_count,
        hashtags=[HashtagRead(id=h.id, name=h.name) for h in sorted(post.hashtags, key=lambda h: h.name)],
        created_at=post.created_at,
        updated_at=post.updated_at,
    ).model_dump()


def comment_payload(comment: Comment) -> dict:
    return CommentRead.model_validate(comment, from_attributes=True).model_dump()


def publish_payload(result: PublishResult) -> dict:
    return {
        "post": post_payload(result.post),
        "promoted": result.report.succeeded_paths,
        "retained_temp_paths": result.retained_temp_paths,
        "warnings": result.warnings,
    }


@router.get("/posts")
def list_posts(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    hashtag: Optional[str] = None,
    q: Optional[str] = Query(None, max_length=100),
    sort: PostSort = "latest",
    session: Session = Depends(get_session),
):
    posts, total = post_service.list_posts(session, page, limit, hashtag, q, sort)
    return {"posts": [post_payload(p) for p in posts], "total": total, "page": page, "limit": limit}


@router.get("/posts/{post_id}")
def read_post(post_id: int, session: Session = Depends(get_session)):
    post = post_service.get_post(session, post_id, count_view=True)
    return post_payload(post)


@router.post("/posts", status_code=201, dependencies=[Depends(require_admin)])
def create_post(
    data: PostCreate,
    session: Session = Depends(get_session),
    store: LocalBlobStore = Depends(get_blob_store),
):
    return publish_payload(post_service.publish_post(session, store, data))


@router.put("/posts/{post_id}", dependencies=[Depends(require_admin)])
def edit_post(
    post_id: int,
    data: PostUpdate,
    session: Session = Depends(get_session),
    store: LocalBlobStore = Depends(get_blob_store),
):
    return publish_payload(post_service.update_post(session, store, post_id, data))


@router.delete("/posts/{post_id}", dependencies=[Depends(require_admin)])
def remove_post(
    post_id: int,
    session: Session = Depends(get_session),
    store: LocalBlobStore = Depends(get_blob_store),
):
    warnings = post_service.delete_post(session, store, post_id)
    return {"status": "deleted", "post_id": post_id, "warnings": warnings}


@router.get("/hashtags")
def hashtags(limit: int = Query(50, ge=1, le=200), session: Session = Depends(get_session)):
    return {"hashtags": list_hashtags_with_counts(session, limit)}


@router.get("/hashtags/search")
def hashtag_search(query: str = Query(..., min_length=2, max_length=50), session: Session = Depends(get_session)):
    return {"hashtags": [{"id": h.id, "name": h.name} for h in search_hashtags(session, query)]}


@router.get("/posts/{post_id}/comments")
def list_comments(post_id: int, session: Session = Depends(get_session)):
    return {"comments": [comment_payload(c) for c in comment_service.list_comments(session, post_id)]}


@router.post("/posts/{post_id}/comments", status_code=201)
def add_comment(
    post_id: int,
    data: CommentCreate,
    user_id: str = Depends(require_user),
    session: Session = Depends(get_session),
):
    return comment_payload(comment_service.create_comment(session, post_id, data, user_id))


@router.put("/comments/{comment_id}")
def edit_comment(
    comment_id: int,
    data: CommentUpdate,
    user_id: str = Depends(require_user),
    session: Session = Depends(get_session),
):
    return comment_payload(comment_service.update_comment(session, comment_id, data, user_id))


@router.delete("/comments/{comment_id}")
def remove_comment(comment_id: int, user_id: str = Depends(require_user), session: Session = Depends(get_session)):
    comment_service.delete_comment(session, comment_id, user_id)
    return {"status": "deleted", "comment_id": comment_id}


@router.get("/posts/{post_id}/like")
def like_status(
    post_id: int,
    user_id: Optional[str] = Depends(optional_user),
    session: Session = Depends(get_session),
):
    return like_service.like_status(session, post_id, user_id)


@router.post("/posts/{post_id}/like")
def toggle_like(post_id: int, user_id: str = Depends(require_user), session: Session = Depends(get_session)):
    return like_service.toggle_like(session, post_id, user_id)


@router.get("/users/me/likes")
def my_likes(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: str = Depends(require_user),
    session: Session = Depends(get_session),
):
    likes, total = like_service.user_likes(session, user_id, page, limit)
    return {
        "likes": [{"id": like.id, "post_id": like.post_id, "created_at": like.created_at} for like in likes],
        "total": total,
    }
