"""
Feed service: per-viewer assembly of articles and comments.

Records coming out of the stores are viewer-independent.  This module
attaches what depends on the viewer (``favorited``, the author's
``following`` flag) with a fixed number of batched queries per page.
"""
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from conduit.models import User
from conduit.records import ArticleRecord, ArticleView, CommentRecord, CommentView, Profile, UserRecord
from conduit.services import article_service, profile_service


async def _profiles(db: AsyncSession, user_ids: set[int], viewer_id: int | None) -> dict[int, Profile]:
    if not user_ids:
        return {}
    result = await db.execute(select(User).where(User.id.in_(user_ids)))
    users = [UserRecord.model_validate(u) for u in result.scalars().all()]
    following = await profile_service.following_among(db, viewer_id, user_ids)
    return {u.id: profile_service.build_profile(u, u.id in following) for u in users}


async def assemble_articles(
    db: AsyncSession, articles: Sequence[ArticleRecord], viewer_id: int | None = None
) -> list[ArticleView]:
    profiles = await _profiles(db, {a.author_id for a in articles}, viewer_id)
    favorited = await article_service.favorited_article_ids(db, [a.id for a in articles], viewer_id)
    return [
        ArticleView(article=a, author=profiles[a.author_id], favorited=a.id in favorited)
        for a in articles
    ]


async def assemble_article(
    db: AsyncSession, article: ArticleRecord, viewer_id: int | None = None
) -> ArticleView:
    return (await assemble_articles(db, [article], viewer_id))[0]


async def assemble_comments(
    db: AsyncSession, comments: Sequence[CommentRecord], viewer_id: int | None = None
) -> list[CommentView]:
    profiles = await _profiles(db, {c.author_id for c in comments}, viewer_id)
    return [CommentView(comment=c, author=profiles[c.author_id]) for c in comments]


async def personal_feed(
    db: AsyncSession, viewer_id: int, limit: int = article_service.DEFAULT_LIMIT, offset: int = 0
) -> list[ArticleView]:
    articles = await article_service.list_user_feed(db, viewer_id, limit=limit, offset=offset)
    return await assemble_articles(db, articles, viewer_id)
