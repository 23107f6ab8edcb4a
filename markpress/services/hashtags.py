from __future__ import annotations

from sqlalchemy import func
from sqlmodel import Session, select

from markpress.models import Hashtag, PostHashtag


def get_or_create_hashtags(session: Session, names: list[str]) -> list[Hashtag]:
    """Resolve hashtag names to rows, adding missing ones to the session.

    Nothing is committed here; callers commit together with the post that
    references the hashtags.
    """
    normalized = []
    for name in names:
        name = name.strip().lower()
        if name and name not in normalized:
            normalized.append(name)
    if not normalized:
        return []

    existing = {
        h.name: h for h in session.exec(select(Hashtag).where(Hashtag.name.in_(normalized))).all()
    }
    hashtags = []
    for name in normalized:
        hashtag = existing.get(name)
        if hashtag is None:
            hashtag = Hashtag(name=name)
            session.add(hashtag)
        hashtags.append(hashtag)
    return hashtags


def search_hashtags(session: Session, query: str, limit: int = 10) -> list[Hashtag]:
    pattern = f"%{query.strip().lower()}%"
    stmt = select(Hashtag).where(Hashtag.name.ilike(pattern)).order_by(Hashtag.name).limit(limit)
    return list(session.exec(stmt).all())


def list_hashtags_with_counts(session: Session, limit: int = 50) -> list[dict]:
    post_count = func.count(PostHashtag.post_id)
    stmt = (
        select(Hashtag.id, Hashtag.name, post_count)
        .join(PostHashtag, PostHashtag.hashtag_id == Hashtag.id)
        .group_by(Hashtag.id, Hashtag.name)
        .order_by(post_count.desc(), Hashtag.name)
        .limit(limit)
    )
    return [
        {"id": hashtag_id, "name": name, "post_count": int(count)}
        for hashtag_id, name, count in session.exec(stmt).all()
    ]
