"""
Article service: the Article aggregate and its favorite memberships.

Design notes
------------
- Slug uniqueness is a check-then-write inside ``run_transaction``: the
  slug is looked up by equality and the insert / update only happens when
  no other article holds it.  The unique index on ``articles.slug`` turns
  a lost race into an ``IntegrityError``, which makes the transaction
  re-run and fail the check cleanly with AlreadyExistsError.
- Tags are canonicalised on every write path and stored as rows of
  ``tags`` linked through ``article_tags``; records always expose them
  sorted ascending.
- Favorites live in their own relation.  Counts and per-viewer flags are
  computed with one grouped query per page, never per article.
- Article queries use ``populate_existing`` so a row already sitting in
  the identity map (possibly without its tags loaded) is re-read.
"""
import logging
from typing import Any, Iterable, Mapping, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from conduit.cache import TAGS_GENERATION_KEY, TAGS_KEY, CacheManager
from conduit.database import run_transaction, utcnow
from conduit.errors import AlreadyExistsError, InvalidInputError, NotFoundError
from conduit.models import Article, Comment, Favorite, Tag, User, article_tags
from conduit.records import ArticleRecord
from conduit.services import profile_service, user_service
from conduit.services.slugs import canonicalize_tags, derive_slug

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20

_UPDATABLE_FIELDS = frozenset({"title", "description", "body", "tags"})


# ---------------------------------------------------------------------------
# Query helpers
# ---------------------------------------------------------------------------

def _article_query():
    return (
        select(Article)
        .options(selectinload(Article.tags))
        .execution_options(populate_existing=True)
    )


async def _find_article(db: AsyncSession, criterion) -> Article | None:
    result = await db.execute(_article_query().where(criterion))
    return result.scalars().first()


async def _slug_taken(db: AsyncSession, slug: str, exclude_id: int | None = None) -> bool:
    q = select(Article.id).where(Article.slug == slug)
    if exclude_id is not None:
        q = q.where(Article.id != exclude_id)
    return (await db.execute(q)).first() is not None


async def _resolve_tags(db: AsyncSession, names: list[str]) -> list[Tag]:
    """
    Return Tag rows for *names*, inserting the ones that do not exist yet.
    Inserts are flushed within the caller's transaction.
    """
    if not names:
        return []
    result = await db.execute(select(Tag).where(Tag.name.in_(names)))
    existing = {tag.name: tag for tag in result.scalars().all()}
    tags: list[Tag] = []
    for name in names:
        tag = existing.get(name)
        if tag is None:
            tag = Tag(name=name)
            db.add(tag)
        tags.append(tag)
    await db.flush()
    return tags


def _to_record(article: Article, favorites_count: int) -> ArticleRecord:
    return ArticleRecord(
        id=article.id,
        author_id=article.author_id,
        slug=article.slug,
        title=article.title,
        description=article.description,
        body=article.body,
        tags=tuple(sorted(tag.name for tag in article.tags)),
        favorites_count=favorites_count,
        created_at=article.created_at,
        updated_at=article.updated_at,
    )


async def _to_records(db: AsyncSession, articles: Sequence[Article]) -> list[ArticleRecord]:
    counts = await favorites_counts(db, [a.id for a in articles])
    return [_to_record(a, counts.get(a.id, 0)) for a in articles]


async def _fetch_page(db: AsyncSession, q, limit: int, offset: int) -> list[ArticleRecord]:
    if limit < 0 or offset < 0:
        raise InvalidInputError('"limit" and "offset" must not be negative')
    q = q.order_by(Article.created_at.desc(), Article.id.desc()).offset(offset).limit(limit)
    result = await db.execute(q)
    return await _to_records(db, result.scalars().all())


# ---------------------------------------------------------------------------
# Favorites relation
# ---------------------------------------------------------------------------

async def favorites_counts(db: AsyncSession, article_ids: Iterable[int]) -> dict[int, int]:
    ids = set(article_ids)
    if not ids:
        return {}
    result = await db.execute(
        select(Favorite.article_id, func.count())
        .where(Favorite.article_id.in_(ids))
        .group_by(Favorite.article_id)
    )
    return {article_id: count for article_id, count in result.all()}


async def favorited_article_ids(
    db: AsyncSession, article_ids: Iterable[int], user_id: int | None
) -> set[int]:
    """The subset of *article_ids* that *user_id* has favorited."""
    ids = set(article_ids)
    if user_id is None or not ids:
        return set()
    result = await db.execute(
        select(Favorite.article_id).where(
            Favorite.user_id == user_id,
            Favorite.article_id.in_(ids),
        )
    )
    return set(result.scalars().all())


async def is_favorited(db: AsyncSession, article_id: int, user_id: int | None) -> bool:
    return article_id in await favorited_article_ids(db, [article_id], user_id)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def get_article_by_id(db: AsyncSession, article_id: int) -> ArticleRecord | None:
    article = await _find_article(db, Article.id == article_id)
    if article is None:
        return None
    return (await _to_records(db, [article]))[0]


async def get_article_by_slug(db: AsyncSession, slug: str) -> ArticleRecord | None:
    article = await _find_article(db, Article.slug == slug)
    if article is None:
        return None
    return (await _to_records(db, [article]))[0]


async def require_article_by_slug(db: AsyncSession, slug: str) -> ArticleRecord:
    article = await get_article_by_slug(db, slug)
    if article is None:
        raise NotFoundError(f'slug "{slug}" not found')
    return article


async def list_articles(
    db: AsyncSession,
    *,
    tag: str | None = None,
    author: str | None = None,
    favorited: str | None = None,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
) -> list[ArticleRecord]:
    """
    Return a page of articles, newest first.

    *author* and *favorited* are usernames; each must resolve or
    NotFoundError is raised.  Filters combine with AND.
    """
    q = _article_query()
    if tag is not None:
        q = q.where(Article.tags.any(Tag.name == tag))
    if author is not None:
        author_user = await user_service.require_user_by_username(db, author)
        q = q.where(Article.author_id == author_user.id)
    if favorited is not None:
        fan = await user_service.require_user_by_username(db, favorited)
        q = q.where(
            Article.id.in_(select(Favorite.article_id).where(Favorite.user_id == fan.id))
        )
    return await _fetch_page(db, q, limit, offset)


async def list_user_feed(
    db: AsyncSession, user_id: int, limit: int = DEFAULT_LIMIT, offset: int = 0
) -> list[ArticleRecord]:
    """Articles written by the users *user_id* follows, newest first."""
    followees = await profile_service.followee_ids(db, user_id)
    if not followees:
        return []
    q = _article_query().where(Article.author_id.in_(followees))
    return await _fetch_page(db, q, limit, offset)


async def list_tags(db: AsyncSession, cache: CacheManager | None = None, ttl: int | None = None) -> list[str]:
    """Sorted union of the tags of every existing article (cache-aside)."""
    generation = None
    if cache is not None:
        cached = await cache.get(TAGS_KEY)
        if cached is not None:
            return cached
        # Read before the query so a concurrent invalidation is detectable.
        generation = await cache.generation(TAGS_GENERATION_KEY)

    result = await db.execute(
        select(Tag.name)
        .join(article_tags, article_tags.c.tag_id == Tag.id)
        .distinct()
        .order_by(Tag.name)
    )
    tags = list(result.scalars().all())

    if cache is not None:
        await cache.set_if_generation(TAGS_KEY, tags, TAGS_GENERATION_KEY, generation, ttl=ttl)
    return tags


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

async def create_article(
    db: AsyncSession,
    author_id: int,
    title: str,
    description: str,
    body: str,
    tags: Iterable[str] | None = None,
    *,
    cache: CacheManager | None = None,
) -> ArticleRecord:
    """
    Create an article and return its record.

    Raises NotFoundError for an unknown author and AlreadyExistsError when
    the slug derived from *title* is already in use.
    """
    slug = derive_slug(title)
    tag_names = canonicalize_tags(tags or [])

    async def work(session: AsyncSession) -> ArticleRecord:
        if await session.get(User, author_id) is None:
            raise NotFoundError(f'user "{author_id}" not found')
        if await _slug_taken(session, slug):
            raise AlreadyExistsError('"slug" is taken')

        now = utcnow()
        article = Article(
            author_id=author_id,
            slug=slug,
            title=title.strip(),
            description=description,
            body=body,
            created_at=now,
            updated_at=now,
        )
        article.tags = await _resolve_tags(session, tag_names)
        session.add(article)
        await session.flush()
        return _to_record(article, 0)

    record = await run_transaction(db, work)
    if cache is not None and record.tags:
        await cache.invalidate_tags()
    logger.info("Created article id=%s slug=%r author=%s", record.id, record.slug, author_id)
    return record


async def update_article(
    db: AsyncSession,
    article_id: int,
    changes: Mapping[str, Any],
    *,
    cache: CacheManager | None = None,
) -> ArticleRecord:
    """
    Apply a partial update to *article_id*.

    Only keys present in *changes* are considered.  A new title re-derives
    the slug, which must not belong to another article.  ``updated_at`` is
    stamped only when a stored value actually changes, so resubmitting the
    current title is a complete no-op.
    """
    unknown = set(changes) - _UPDATABLE_FIELDS
    if unknown:
        raise InvalidInputError(f'"{sorted(unknown)[0]}" is not allowed')
    for field in ("title", "description", "body"):
        if field in changes and not isinstance(changes[field], str):
            raise InvalidInputError(f'"{field}" must be a string')

    new_tags = None
    if changes.get("tags") is not None:
        new_tags = canonicalize_tags(changes["tags"])

    async def work(session: AsyncSession) -> tuple[ArticleRecord, bool]:
        article = await _find_article(session, Article.id == article_id)
        if article is None:
            raise NotFoundError(f'article "{article_id}" not found')

        changed = False
        tags_changed = False

        if "title" in changes:
            title = changes["title"].strip()
            if title != article.title:
                slug = derive_slug(title)
                if slug != article.slug and await _slug_taken(session, slug, exclude_id=article.id):
                    raise AlreadyExistsError('"slug" is taken')
                article.slug = slug
                article.title = title
                changed = True

        for field in ("description", "body"):
            if field in changes and changes[field] != getattr(article, field):
                setattr(article, field, changes[field])
                changed = True

        if new_tags is not None and new_tags != sorted(tag.name for tag in article.tags):
            article.tags = await _resolve_tags(session, new_tags)
            changed = tags_changed = True

        if changed:
            article.updated_at = utcnow()
            await session.flush()
        return (await _to_records(session, [article]))[0], tags_changed

    record, tags_changed = await run_transaction(db, work)
    if cache is not None and tags_changed:
        await cache.invalidate_tags()
    logger.info("Updated article id=%s slug=%r", record.id, record.slug)
    return record


async def delete_article_by_slug(
    db: AsyncSession, slug: str, *, cache: CacheManager | None = None
) -> None:
    """
    Delete the article identified by *slug* together with its comments,
    favorite memberships and tag links.
    """

    async def work(session: AsyncSession) -> int:
        article = await _find_article(session, Article.slug == slug)
        if article is None:
            raise NotFoundError(f'slug "{slug}" not found')
        article_id = article.id
        await session.execute(delete(Comment).where(Comment.article_id == article_id))
        await session.execute(delete(Favorite).where(Favorite.article_id == article_id))
        await session.execute(delete(article_tags).where(article_tags.c.article_id == article_id))
        await session.execute(delete(Article).where(Article.id == article_id))
        return article_id

    article_id = await run_transaction(db, work)
    if cache is not None:
        await cache.invalidate_tags()
    logger.info("Deleted article id=%s slug=%r", article_id, slug)


async def _toggle_favorite(db: AsyncSession, slug: str, user_id: int, favorite: bool) -> ArticleRecord:
    async def work(session: AsyncSession) -> tuple[ArticleRecord, bool]:
        article = await _find_article(session, Article.slug == slug)
        if article is None:
            raise NotFoundError(f'slug "{slug}" not found')
        if await session.get(User, user_id) is None:
            raise NotFoundError(f'user "{user_id}" not found')

        member = await is_favorited(session, article.id, user_id)
        changed = False
        if favorite and not member:
            session.add(Favorite(article_id=article.id, user_id=user_id))
            changed = True
        elif not favorite and member:
            await session.execute(
                delete(Favorite).where(
                    Favorite.article_id == article.id,
                    Favorite.user_id == user_id,
                )
            )
            changed = True

        if changed:
            article.updated_at = utcnow()
            await session.flush()
        return (await _to_records(session, [article]))[0], changed

    record, changed = await run_transaction(db, work)
    if changed:
        logger.info(
            "User %s %s article id=%s",
            user_id,
            "favorited" if favorite else "unfavorited",
            record.id,
        )
    return record


async def favorite_article_by_slug(db: AsyncSession, slug: str, user_id: int) -> ArticleRecord:
    """Add *user_id* to the article's favorites; a repeat call is a no-op."""
    return await _toggle_favorite(db, slug, user_id, favorite=True)


async def unfavorite_article_by_slug(db: AsyncSession, slug: str, user_id: int) -> ArticleRecord:
    """Remove *user_id* from the article's favorites; a no-op if absent."""
    return await _toggle_favorite(db, slug, user_id, favorite=False)
