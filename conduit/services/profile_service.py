"""
Profile service: the social graph.

Follow edges live in ``follows`` keyed by (follower_id, followee_id), so
there is at most one edge per ordered pair.  Follow and unfollow are
idempotent; following or unfollowing yourself is always an input error.
"""
import logging
from typing import Iterable

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from conduit.database import run_transaction
from conduit.errors import InvalidInputError, NotFoundError
from conduit.models import Follow, User
from conduit.records import Profile, UserRecord
from conduit.services import user_service

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Membership queries
# ---------------------------------------------------------------------------

async def is_following(db: AsyncSession, follower_id: int | None, followee_id: int) -> bool:
    if follower_id is None:
        return False
    result = await db.execute(
        select(Follow.follower_id).where(
            Follow.follower_id == follower_id,
            Follow.followee_id == followee_id,
        )
    )
    return result.first() is not None


async def followee_ids(db: AsyncSession, follower_id: int) -> set[int]:
    """Ids of every user *follower_id* follows."""
    result = await db.execute(select(Follow.followee_id).where(Follow.follower_id == follower_id))
    return set(result.scalars().all())


async def following_among(
    db: AsyncSession, follower_id: int | None, candidate_ids: Iterable[int]
) -> set[int]:
    """The subset of *candidate_ids* that *follower_id* follows (one query)."""
    candidates = set(candidate_ids)
    if follower_id is None or not candidates:
        return set()
    result = await db.execute(
        select(Follow.followee_id).where(
            Follow.follower_id == follower_id,
            Follow.followee_id.in_(candidates),
        )
    )
    return set(result.scalars().all())


# ---------------------------------------------------------------------------
# Edge mutations
# ---------------------------------------------------------------------------

async def _require_user_row(db: AsyncSession, user_id: int, role: str) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError(f'{role} "{user_id}" not found')
    return user


async def follow_user(db: AsyncSession, follower_id: int, followee_id: int) -> None:
    """Create the edge follower -> followee unless it already exists."""
    if follower_id == followee_id:
        raise InvalidInputError("cannot follow ownself")

    async def work(session: AsyncSession) -> bool:
        await _require_user_row(session, follower_id, "follower")
        await _require_user_row(session, followee_id, "followee")
        if await is_following(session, follower_id, followee_id):
            return False
        session.add(Follow(follower_id=follower_id, followee_id=followee_id))
        await session.flush()
        return True

    if await run_transaction(db, work):
        logger.info("User %s now follows %s", follower_id, followee_id)


async def unfollow_user(db: AsyncSession, follower_id: int, followee_id: int) -> None:
    """Remove the edge follower -> followee if present."""
    if follower_id == followee_id:
        raise InvalidInputError("cannot unfollow ownself")

    async def work(session: AsyncSession) -> bool:
        await _require_user_row(session, follower_id, "follower")
        await _require_user_row(session, followee_id, "followee")
        result = await session.execute(
            delete(Follow).where(
                Follow.follower_id == follower_id,
                Follow.followee_id == followee_id,
            )
        )
        return result.rowcount > 0

    if await run_transaction(db, work):
        logger.info("User %s unfollowed %s", follower_id, followee_id)


# ---------------------------------------------------------------------------
# Profile views
# ---------------------------------------------------------------------------

def build_profile(user: UserRecord, following: bool) -> Profile:
    return Profile(username=user.username, bio=user.bio, image=user.image, following=following)


async def get_profile(db: AsyncSession, username: str, viewer_id: int | None = None) -> Profile:
    user = await user_service.require_user_by_username(db, username)
    return build_profile(user, await is_following(db, viewer_id, user.id))


async def follow_by_username(db: AsyncSession, follower_id: int, username: str) -> Profile:
    followee = await user_service.require_user_by_username(db, username)
    await follow_user(db, follower_id, followee.id)
    return build_profile(followee, await is_following(db, follower_id, followee.id))


async def unfollow_by_username(db: AsyncSession, follower_id: int, username: str) -> Profile:
    followee = await user_service.require_user_by_username(db, username)
    await unfollow_user(db, follower_id, followee.id)
    return build_profile(followee, await is_following(db, follower_id, followee.id))
