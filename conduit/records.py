"""
Immutable value types returned by the services.

Every read builds fresh records from ORM rows; nothing here is ever
mutated in place.  The HTTP layer turns them into response envelopes.
"""
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)


class UserRecord(_Record):
    id: int
    email: str
    username: str
    bio: str | None = None
    image: str | None = None


class Profile(_Record):
    username: str
    bio: str | None = None
    image: str | None = None
    following: bool = False


class ArticleRecord(_Record):
    id: int
    author_id: int
    slug: str
    title: str
    description: str
    body: str
    tags: tuple[str, ...] = ()
    favorites_count: int = 0
    created_at: datetime
    updated_at: datetime


class CommentRecord(_Record):
    id: int
    article_id: int
    author_id: int
    body: str
    created_at: datetime
    updated_at: datetime


class ArticleView(_Record):
    """An article as seen by one viewer."""

    article: ArticleRecord
    author: Profile
    favorited: bool = False


class CommentView(_Record):
    comment: CommentRecord
    author: Profile
