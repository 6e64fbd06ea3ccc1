from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_serializer
from pydantic.alias_generators import to_camel

from conduit.records import ArticleView, CommentView, Profile, UserRecord


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _iso(value: datetime) -> str:
    # Stored timestamps are naive UTC.
    return value.isoformat(timespec="milliseconds") + "Z"


# --- Users ---

class UserRegistration(CamelModel):
    email: EmailStr
    username: str = Field(min_length=1, max_length=100)
    password: str


class RegisterRequest(BaseModel):
    user: UserRegistration


class LoginCredentials(CamelModel):
    email: EmailStr
    password: str


class LoginRequest(BaseModel):
    user: LoginCredentials


class UserUpdate(CamelModel):
    email: EmailStr | None = None
    username: str | None = Field(None, min_length=1, max_length=100)
    password: str | None = None
    bio: str | None = None
    image: str | None = Field(None, max_length=2048)

    def changes(self) -> dict[str, Any]:
        """Only the keys the client actually sent."""
        return {name: getattr(self, name) for name in self.model_fields_set}


class UpdateUserRequest(BaseModel):
    user: UserUpdate


class UserBody(CamelModel):
    email: str
    username: str
    token: str
    bio: str | None = None
    image: str | None = None


class UserResponse(BaseModel):
    user: UserBody

    @classmethod
    def build(cls, user: UserRecord, token: str) -> "UserResponse":
        return cls(
            user=UserBody(
                email=user.email,
                username=user.username,
                token=token,
                bio=user.bio,
                image=user.image,
            )
        )


# --- Profiles ---

class ProfileBody(CamelModel):
    username: str
    bio: str | None = None
    image: str | None = None
    following: bool = False


class ProfileResponse(BaseModel):
    profile: ProfileBody

    @classmethod
    def build(cls, profile: Profile) -> "ProfileResponse":
        return cls(profile=ProfileBody(**profile.model_dump()))


# --- Articles ---

class ArticleCreate(CamelModel):
    title: str = Field(max_length=300)
    description: str
    body: str
    tag_list: list[str] | None = None


class CreateArticleRequest(BaseModel):
    article: ArticleCreate


class ArticleUpdate(CamelModel):
    title: str | None = Field(None, max_length=300)
    description: str | None = None
    body: str | None = None
    tag_list: list[str] | None = None

    def changes(self) -> dict[str, Any]:
        """Only the keys the client actually sent, named as the service expects."""
        renamed = {"tag_list": "tags"}
        return {renamed.get(name, name): getattr(self, name) for name in self.model_fields_set}


class UpdateArticleRequest(BaseModel):
    article: ArticleUpdate


class ArticleBody(CamelModel):
    slug: str
    title: str
    description: str
    body: str
    tag_list: list[str]
    created_at: datetime
    updated_at: datetime
    favorited: bool
    favorites_count: int
    author: ProfileBody

    @field_serializer("created_at", "updated_at")
    def _serialize_timestamp(self, value: datetime) -> str:
        return _iso(value)

    @classmethod
    def from_view(cls, view: ArticleView) -> "ArticleBody":
        article = view.article
        return cls(
            slug=article.slug,
            title=article.title,
            description=article.description,
            body=article.body,
            tag_list=list(article.tags),
            created_at=article.created_at,
            updated_at=article.updated_at,
            favorited=view.favorited,
            favorites_count=article.favorites_count,
            author=ProfileBody(**view.author.model_dump()),
        )


class ArticleResponse(BaseModel):
    article: ArticleBody

    @classmethod
    def build(cls, view: ArticleView) -> "ArticleResponse":
        return cls(article=ArticleBody.from_view(view))


class MultipleArticlesResponse(CamelModel):
    articles: list[ArticleBody]
    articles_count: int

    @classmethod
    def build(cls, views: list[ArticleView]) -> "MultipleArticlesResponse":
        return cls(
            articles=[ArticleBody.from_view(v) for v in views],
            articles_count=len(views),
        )


# --- Comments ---

class CommentCreate(CamelModel):
    body: str = Field(min_length=1)


class AddCommentRequest(BaseModel):
    comment: CommentCreate


class CommentBody(CamelModel):
    id: int
    created_at: datetime
    updated_at: datetime
    body: str
    author: ProfileBody

    @field_serializer("created_at", "updated_at")
    def _serialize_timestamp(self, value: datetime) -> str:
        return _iso(value)

    @classmethod
    def from_view(cls, view: CommentView) -> "CommentBody":
        return cls(
            id=view.comment.id,
            created_at=view.comment.created_at,
            updated_at=view.comment.updated_at,
            body=view.comment.body,
            author=ProfileBody(**view.author.model_dump()),
        )


class CommentResponse(BaseModel):
    comment: CommentBody


class MultipleCommentsResponse(BaseModel):
    comments: list[CommentBody]


# --- Tags ---

class TagsResponse(BaseModel):
    tags: list[str]


# --- Errors ---

class ErrorBody(BaseModel):
    body: list[str]


class ErrorResponse(BaseModel):
    errors: ErrorBody
