"""
Comment service: comments scoped to one article.

Comments are immutable once written.  Deletion is exposed without an
ownership check: the HTTP layer compares ``CommentRecord.author_id`` with
the caller before calling ``delete_comment``.
"""
import logging

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from conduit.database import run_transaction, utcnow
from conduit.errors import NotFoundError
from conduit.models import Article, Comment, User
from conduit.records import CommentRecord
from conduit.services import article_service

logger = logging.getLogger(__name__)


async def add_comment(db: AsyncSession, article_id: int, author_id: int, body: str) -> CommentRecord:
    """
    Append a comment to *article_id*.

    Raises NotFoundError when the article or the author does not exist.
    """

    async def work(session: AsyncSession) -> CommentRecord:
        if await session.get(Article, article_id) is None:
            raise NotFoundError(f'article "{article_id}" not found')
        if await session.get(User, author_id) is None:
            raise NotFoundError(f'user "{author_id}" not found')

        now = utcnow()
        comment = Comment(
            article_id=article_id,
            author_id=author_id,
            body=body,
            created_at=now,
            updated_at=now,
        )
        session.add(comment)
        await session.flush()
        return CommentRecord.model_validate(comment)

    record = await run_transaction(db, work)
    logger.info("Added comment id=%s to article id=%s", record.id, article_id)
    return record


async def add_comment_by_slug(db: AsyncSession, slug: str, author_id: int, body: str) -> CommentRecord:
    article = await article_service.require_article_by_slug(db, slug)
    return await add_comment(db, article.id, author_id, body)


async def get_comment(db: AsyncSession, comment_id: int) -> CommentRecord | None:
    comment = await db.get(Comment, comment_id)
    return CommentRecord.model_validate(comment) if comment is not None else None


async def list_comments(db: AsyncSession, article_slug: str, descending: bool = True) -> list[CommentRecord]:
    """Comments of the article behind *article_slug*, newest first by default."""
    article = await article_service.require_article_by_slug(db, article_slug)
    if descending:
        order = (Comment.created_at.desc(), Comment.id.desc())
    else:
        order = (Comment.created_at.asc(), Comment.id.asc())
    result = await db.execute(
        select(Comment).where(Comment.article_id == article.id).order_by(*order)
    )
    return [CommentRecord.model_validate(c) for c in result.scalars().all()]


async def delete_comment(db: AsyncSession, comment_id: int) -> None:
    async def work(session: AsyncSession) -> None:
        result = await session.execute(delete(Comment).where(Comment.id == comment_id))
        if result.rowcount == 0:
            raise NotFoundError(f'comment "{comment_id}" not found')

    await run_transaction(db, work)
    logger.info("Deleted comment id=%s", comment_id)
