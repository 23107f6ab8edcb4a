from __future__ import annotations

import re
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

HASHTAG_RE = re.compile(r"^[^#\s]+$")

PostSort = Literal["latest", "oldest", "popular", "likes"]


def _normalize_hashtags(tags: List[str]) -> List[str]:
    normalized = []
    for tag in tags:
        name = tag.strip().lower()
        if not 2 <= len(name) <= 20:
            raise ValueError("hashtags must be between 2 and 20 characters")
        if not HASHTAG_RE.match(name):
            raise ValueError("hashtags cannot contain '#' or whitespace")
        if name not in normalized:
            normalized.append(name)
    return normalized


class PostCreate(BaseModel):
    title: str = Field(min_length=1, max_length=100)
    content: str = Field(min_length=1, max_length=50000)
    hashtags: List[str] = Field(min_length=1, max_length=10)
    draft_id: Optional[str] = None

    @field_validator("title", "content")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("hashtags")
    @classmethod
    def _hashtags(cls, value: List[str]) -> List[str]:
        return _normalize_hashtags(value)


class PostUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    content: Optional[str] = Field(default=None, min_length=1, max_length=50000)
    hashtags: Optional[List[str]] = Field(default=None, min_length=1, max_length=10)
    draft_id: Optional[str] = None

    @field_validator("title", "content")
    @classmethod
    def _strip(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("hashtags")
    @classmethod
    def _hashtags(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return value
        return _normalize_hashtags(value)


class CommentCreate(BaseModel):
    content: str = Field(min_length=1, max_length=1000)
    parent_id: Optional[int] = Field(default=None, gt=0)

    @field_validator("content")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class CommentUpdate(BaseModel):
    content: str = Field(min_length=1, max_length=1000)

    @field_validator("content")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class HashtagRead(BaseModel):
    id: int
    name: str


class PostRead(BaseModel):
    id: int
    title: str
    content_markdown: str
    thumbnail_url: Optional[str]
    view_count: int
    likes_count: int
    comments_count: int
    hashtags: List[HashtagRead]
    created_at: datetime
    updated_at: datetime


class CommentRead(BaseModel):
    id: int
    post_id: int
    author_id: str
    parent_id: Optional[int]
    content: str
    created_at: datetime
    updated_at: datetime
