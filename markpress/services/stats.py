from sqlalchemy import func
from sqlmodel import Session, select

from markpress.models import Comment, Like, Post, UploadedFile


def fetch_storage_totals(session: Session) -> dict[str, int]:
    total_files = session.exec(select(func.count(UploadedFile.id))).one()
    total_bytes = session.exec(select(func.coalesce(func.sum(UploadedFile.size), 0))).one()
    temp_files = session.exec(
        select(func.count(UploadedFile.id)).where(UploadedFile.is_temporary == True)  # noqa: E712
    ).one()

    return {
        "total_files": int(total_files or 0),
        "temp_files": int(temp_files or 0),
        "total_bytes": int(total_bytes or 0),
    }


def fetch_content_totals(session: Session) -> dict[str, int]:
    return {
        "posts": int(session.exec(select(func.count(Post.id))).one() or 0),
        "comments": int(session.exec(select(func.count(Comment.id))).one() or 0),
        "likes": int(session.exec(select(func.count(Like.id))).one() or 0),
    }
