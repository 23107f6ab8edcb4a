from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import Column, Text, UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PostHashtag(SQLModel, table=True):
    post_id: Optional[int] = Field(default=None, foreign_key="post.id", primary_key=True)
    hashtag_id: Optional[int] = Field(default=None, foreign_key="hashtag.id", primary_key=True)


class Hashtag(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)  # lowercase, trimmed
    created_at: datetime = Field(default_factory=utcnow)

    posts: List["Post"] = Relationship(back_populates="hashtags", link_model=PostHashtag)


class Post(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    content_markdown: str = Field(sa_column=Column(Text, nullable=False))
    thumbnail_url: Optional[str] = Field(default=None, nullable=True)  # First permanent image in content
    view_count: int = Field(default=0)
    likes_count: int = Field(default=0)
    comments_count: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)

    hashtags: List[Hashtag] = Relationship(back_populates="posts", link_model=PostHashtag)


class DraftSession(SQLModel, table=True):
    id: str = Field(primary_key=True)
    created_at: datetime = Field(default_factory=utcnow)


class UploadedFile(SQLModel, table=True):
    id: str = Field(primary_key=True)
    name: str
    path: str = Field(index=True, unique=True)  # temp/[<draft>/]image/<id>.<ext> or permanent/image/<id>.<ext>
    content_type: str
    size: int
    is_temporary: bool = Field(default=True)
    draft_id: Optional[str] = Field(default=None, nullable=True, index=True)
    uploaded_at: datetime = Field(default_factory=utcnow)


class Comment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    post_id: int = Field(foreign_key="post.id", index=True)
    author_id: str = Field(index=True)
    parent_id: Optional[int] = Field(default=None, foreign_key="comment.id", nullable=True)
    content: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Like(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("post_id", "user_id", name="uq_like_post_user"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    post_id: int = Field(foreign_key="post.id", index=True)
    user_id: str = Field(index=True)
    created_at: datetime = Field(default_factory=utcnow)
