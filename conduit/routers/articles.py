from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from conduit.cache import CacheManager
from conduit.config import Settings
from conduit.database import get_db
from conduit.dependencies import (
    PaginationParams,
    get_cache,
    get_current_user,
    get_optional_user,
    get_settings,
)
from conduit.errors import NotFoundError, UnauthorizedError
from conduit.records import UserRecord
from conduit.schemas import (
    AddCommentRequest,
    ArticleResponse,
    CommentBody,
    CommentResponse,
    CreateArticleRequest,
    MultipleArticlesResponse,
    MultipleCommentsResponse,
    TagsResponse,
    UpdateArticleRequest,
)
from conduit.services import article_service, comment_service, feed_service

router = APIRouter(tags=["articles"])


def _viewer_id(user: UserRecord | None) -> int | None:
    return user.id if user is not None else None


async def _require_own_article(db: AsyncSession, slug: str, user: UserRecord):
    article = await article_service.require_article_by_slug(db, slug)
    if article.author_id != user.id:
        raise UnauthorizedError()
    return article


# --- Articles ---

@router.get("/articles", response_model=MultipleArticlesResponse)
async def list_articles(
    tag: str | None = Query(None),
    author: str | None = Query(None),
    favorited: str | None = Query(None),
    pagination: PaginationParams = Depends(),
    viewer: UserRecord | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    articles = await article_service.list_articles(
        db,
        tag=tag,
        author=author,
        favorited=favorited,
        limit=pagination.limit,
        offset=pagination.offset,
    )
    views = await feed_service.assemble_articles(db, articles, _viewer_id(viewer))
    return MultipleArticlesResponse.build(views)


# Registered before /articles/{slug} so "feed" is not taken for a slug.
@router.get("/articles/feed", response_model=MultipleArticlesResponse)
async def feed(
    pagination: PaginationParams = Depends(),
    user: UserRecord = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    views = await feed_service.personal_feed(db, user.id, limit=pagination.limit, offset=pagination.offset)
    return MultipleArticlesResponse.build(views)


@router.post("/articles", status_code=201, response_model=ArticleResponse)
async def create_article(
    data: CreateArticleRequest,
    user: UserRecord = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    article = await article_service.create_article(
        db,
        user.id,
        data.article.title,
        data.article.description,
        data.article.body,
        data.article.tag_list,
        cache=cache,
    )
    return ArticleResponse.build(await feed_service.assemble_article(db, article, user.id))


@router.get("/articles/{slug}", response_model=ArticleResponse)
async def get_article(
    slug: str,
    viewer: UserRecord | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    article = await article_service.require_article_by_slug(db, slug)
    return ArticleResponse.build(await feed_service.assemble_article(db, article, _viewer_id(viewer)))


@router.put("/articles/{slug}", response_model=ArticleResponse)
async def update_article(
    slug: str,
    data: UpdateArticleRequest,
    user: UserRecord = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    article = await _require_own_article(db, slug, user)
    updated = await article_service.update_article(db, article.id, data.article.changes(), cache=cache)
    return ArticleResponse.build(await feed_service.assemble_article(db, updated, user.id))


@router.delete("/articles/{slug}", status_code=204)
async def delete_article(
    slug: str,
    user: UserRecord = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    await _require_own_article(db, slug, user)
    await article_service.delete_article_by_slug(db, slug, cache=cache)
    return Response(status_code=204)


# --- Favorites ---

@router.post("/articles/{slug}/favorite", response_model=ArticleResponse)
async def favorite_article(
    slug: str,
    user: UserRecord = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    article = await article_service.favorite_article_by_slug(db, slug, user.id)
    return ArticleResponse.build(await feed_service.assemble_article(db, article, user.id))


@router.delete("/articles/{slug}/favorite", response_model=ArticleResponse)
async def unfavorite_article(
    slug: str,
    user: UserRecord = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    article = await article_service.unfavorite_article_by_slug(db, slug, user.id)
    return ArticleResponse.build(await feed_service.assemble_article(db, article, user.id))


# --- Comments ---

@router.get("/articles/{slug}/comments", response_model=MultipleCommentsResponse)
async def list_comments(
    slug: str,
    viewer: UserRecord | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    comments = await comment_service.list_comments(db, slug)
    views = await feed_service.assemble_comments(db, comments, _viewer_id(viewer))
    return MultipleCommentsResponse(comments=[CommentBody.from_view(v) for v in views])


@router.post("/articles/{slug}/comments", status_code=201, response_model=CommentResponse)
async def add_comment(
    slug: str,
    data: AddCommentRequest,
    user: UserRecord = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    comment = await comment_service.add_comment_by_slug(db, slug, user.id, data.comment.body)
    views = await feed_service.assemble_comments(db, [comment], user.id)
    return CommentResponse(comment=CommentBody.from_view(views[0]))


@router.delete("/articles/{slug}/comments/{comment_id}", status_code=204)
async def delete_comment(
    slug: str,
    comment_id: int,
    user: UserRecord = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    article = await article_service.require_article_by_slug(db, slug)
    comment = await comment_service.get_comment(db, comment_id)
    if comment is None or comment.article_id != article.id:
        raise NotFoundError(f'comment "{comment_id}" not found')
    if comment.author_id != user.id:
        raise UnauthorizedError()
    await comment_service.delete_comment(db, comment_id)
    return Response(status_code=204)


# --- Tags ---

@router.get("/tags", response_model=TagsResponse)
async def list_tags(
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
    settings: Settings = Depends(get_settings),
):
    tags = await article_service.list_tags(db, cache=cache, ttl=settings.CACHE_TTL_TAGS)
    return TagsResponse(tags=tags)
