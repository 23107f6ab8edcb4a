"""Post persistence and the publication flow.

Publishing a post moves every temp image it references into the permanent
namespace before anything is written to the database:

    Draft -> PathsExtracted -> Promoted -> ContentRewritten -> Persisted -> TempSwept

Only a fatal promotion (temp original left behind after its copy) or, in
strict mode, a failed copy aborts the publish. Everything after the commit
is best effort and reported back as warnings.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import quote

from sqlalchemy import delete, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from markpress.cleaner import SweepError, sweep_draft
from markpress.config import STRICT_PROMOTION
from markpress.core.exceptions import NotFoundError, PublishError
from markpress.core.metrics import metrics
from markpress.markdown import extract_image_paths, first_permanent_image, rewrite_urls
from markpress.models import (
    Comment,
    DraftSession,
    Hashtag,
    Like,
    Post,
    PostHashtag,
    UploadedFile,
    utcnow,
)
from markpress.promotion import PromotionError, PromotionReport, promote, restore
from markpress.schemas import PostCreate, PostUpdate
from markpress.services.hashtags import get_or_create_hashtags
from markpress.storage import PERMANENT_PREFIX, BlobStoreError

logger = logging.getLogger("markpress.posts")

SORT_ORDERS = {
    "latest": (Post.created_at.desc(), Post.id.desc()),
    "oldest": (Post.created_at.asc(), Post.id.asc()),
    "popular": (Post.view_count.desc(), Post.created_at.desc()),
    "likes": (Post.likes_count.desc(), Post.created_at.desc()),
}


@dataclass
class PublishResult:
    post: Post
    report: PromotionReport = field(default_factory=PromotionReport)
    warnings: list[str] = field(default_factory=list)

    @property
    def retained_temp_paths(self) -> list[str]:
        return self.report.failed_paths


def _record_aborted_promotions(session: Session, promoted: dict[str, str]) -> None:
    """Point upload records at the objects that moved before a publish was aborted."""
    if not promoted:
        return
    _record_promotions(session, promoted)
    _commit(session)
    logger.info("event=aborted_publish_moves_recorded count=%s", len(promoted))


def _promote_content(session: Session, store, content: str, strict: bool) -> tuple[str, PromotionReport]:
    paths = extract_image_paths(content, store.bucket)
    if not paths:
        return content, PromotionReport()

    try:
        report = promote(store, paths)
    except PromotionError as exc:
        _record_aborted_promotions(session, exc.report.promoted)
        raise
    metrics.record_promotion(len(report.succeeded_paths), len(report.failed_paths))

    if report.failed_paths:
        if strict:
            # Put the promoted images back so the draft can be published again as is
            kept = restore(store, report.promoted)
            _record_aborted_promotions(session, kept)
            raise PublishError("some images could not be promoted", report.failed_paths, kept)
        logger.warning(
            "event=temp_urls_retained count=%s paths=%s",
            len(report.failed_paths),
            ",".join(report.failed_paths),
        )

    return rewrite_urls(content, report.promoted, store.base_url, store.bucket), report


def thumbnail_for(store, content: str) -> Optional[str]:
    path = first_permanent_image(content, store.bucket)
    return store.public_url(path) if path else None


def _record_promotions(session: Session, promoted: dict[str, str]) -> None:
    if not promoted:
        return
    uploads = session.exec(select(UploadedFile).where(UploadedFile.path.in_(list(promoted)))).all()
    for upload in uploads:
        upload.path = promoted[upload.path]
        upload.is_temporary = False
        upload.draft_id = None
        session.add(upload)


def _commit(session: Session) -> None:
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise


def _sweep_draft_scope(session: Session, store, draft_id: Optional[str], warnings: list[str]) -> None:
    if not draft_id:
        return
    try:
        swept = sweep_draft(store, draft_id, session.get_bind())
        metrics.record_sweep(swept)
    except SweepError as exc:
        logger.warning("event=post_publish_sweep_failed draft_id=%s error=%s cause=%s", draft_id, exc, exc.__cause__)
        warnings.append(f"Temporary uploads for draft {draft_id} could not be cleaned up")


def _embedded_elsewhere(session: Session, path: str, post_id: int) -> bool:
    stmt = (
        select(Post.id)
        .where(Post.id != post_id, Post.content_markdown.contains(quote(path), autoescape=True))
        .limit(1)
    )
    return session.exec(stmt).first() is not None


def _remove_permanent_images(session: Session, store, post_id: int, paths: list[str], warnings: list[str]) -> None:
    candidates = [p for p in dict.fromkeys(paths) if p.startswith(PERMANENT_PREFIX)]
    paths = [p for p in candidates if not _embedded_elsewhere(session, p, post_id)]
    if len(paths) < len(candidates):
        logger.info("event=shared_images_kept post_id=%s count=%s", post_id, len(candidates) - len(paths))
    if not paths:
        return
    try:
        store.delete(paths)
    except BlobStoreError as exc:
        logger.warning("event=image_removal_failed paths=%s error=%s", ",".join(paths), exc)
        warnings.append("Some images removed from the post could not be deleted from storage")
        return
    session.execute(delete(UploadedFile).where(UploadedFile.path.in_(paths)))
    _commit(session)
    logger.info("event=images_removed count=%s", len(paths))


def publish_post(session: Session, store, data: PostCreate, strict: bool | None = None) -> PublishResult:
    strict = STRICT_PROMOTION if strict is None else strict

    content, report = _promote_content(session, store, data.content, strict)

    post = Post(
        title=data.title,
        content_markdown=content,
        thumbnail_url=thumbnail_for(store, content),
    )
    post.hashtags = get_or_create_hashtags(session, data.hashtags)
    session.add(post)
    _record_promotions(session, report.promoted)
    if data.draft_id:
        draft = session.get(DraftSession, data.draft_id)
        if draft is not None:
            session.delete(draft)
    _commit(session)
    session.refresh(post)

    metrics.record_publish()
    logger.info(
        "event=post_published post_id=%s promoted=%s retained=%s",
        post.id,
        len(report.succeeded_paths),
        len(report.failed_paths),
    )

    result = PublishResult(post=post, report=report)
    _sweep_draft_scope(session, store, data.draft_id, result.warnings)
    return result


def update_post(
    session: Session, store, post_id: int, data: PostUpdate, strict: bool | None = None
) -> PublishResult:
    strict = STRICT_PROMOTION if strict is None else strict
    post = session.get(Post, post_id)
    if post is None:
        raise NotFoundError("Post", post_id)

    old_paths = extract_image_paths(post.content_markdown, store.bucket)
    report = PromotionReport()
    removed: list[str] = []

    if data.content is not None:
        content, report = _promote_content(session, store, data.content, strict)
        new_paths = set(extract_image_paths(content, store.bucket))
        removed = [p for p in old_paths if p not in new_paths]
        post.content_markdown = content
        post.thumbnail_url = thumbnail_for(store, content)
    if data.title is not None:
        post.title = data.title
    if data.hashtags is not None:
        post.hashtags = get_or_create_hashtags(session, data.hashtags)
    post.updated_at = utcnow()

    session.add(post)
    _record_promotions(session, report.promoted)
    _commit(session)
    session.refresh(post)
    logger.info("event=post_updated post_id=%s promoted=%s removed=%s", post.id, len(report.succeeded_paths), len(removed))

    result = PublishResult(post=post, report=report)
    _remove_permanent_images(session, store, post.id, removed, result.warnings)
    _sweep_draft_scope(session, store, data.draft_id, result.warnings)
    return result


def delete_post(session: Session, store, post_id: int) -> list[str]:
    post = session.get(Post, post_id)
    if post is None:
        raise NotFoundError("Post", post_id)
    paths = extract_image_paths(post.content_markdown, store.bucket)

    session.execute(delete(Comment).where(Comment.post_id == post_id, Comment.parent_id.is_not(None)))
    session.execute(delete(Comment).where(Comment.post_id == post_id))
    session.execute(delete(Like).where(Like.post_id == post_id))
    session.delete(post)
    _commit(session)
    logger.info("event=post_deleted post_id=%s", post_id)

    warnings: list[str] = []
    _remove_permanent_images(session, store, post_id, paths, warnings)
    return warnings


def get_post(session: Session, post_id: int, count_view: bool = False) -> Post:
    post = session.get(Post, post_id)
    if post is None:
        raise NotFoundError("Post", post_id)
    if count_view:
        post.view_count += 1
        session.add(post)
        _commit(session)
        session.refresh(post)
    return post


def list_posts(
    session: Session,
    page: int = 1,
    limit: int = 10,
    hashtag: Optional[str] = None,
    query: Optional[str] = None,
    sort: str = "latest",
) -> tuple[list[Post], int]:
    stmt = select(Post)
    if hashtag:
        stmt = (
            stmt.join(PostHashtag, PostHashtag.post_id == Post.id)
            .join(Hashtag, Hashtag.id == PostHashtag.hashtag_id)
            .where(Hashtag.name == hashtag.strip().lower())
        )
    if query:
        pattern = f"%{query.strip()}%"
        stmt = stmt.where(or_(Post.title.ilike(pattern), Post.content_markdown.ilike(pattern)))

    total = session.exec(select(func.count()).select_from(stmt.subquery())).one()
    order = SORT_ORDERS.get(sort, SORT_ORDERS["latest"])
    posts = session.exec(stmt.order_by(*order).offset((page - 1) * limit).limit(limit)).all()
    return list(posts), int(total or 0)
