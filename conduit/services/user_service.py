"""
User service: the identity store.

Email and username uniqueness is checked inside the write transaction
before anything is written; the unique indexes on ``users`` only back the
check up when two registrations race (see ``database.run_transaction``).
"""
import logging
from typing import Any, Mapping

from pydantic import AnyUrl, EmailStr, TypeAdapter, ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from conduit import security
from conduit.database import run_transaction, utcnow
from conduit.errors import AlreadyExistsError, InvalidInputError, NotFoundError
from conduit.models import User
from conduit.records import UserRecord

logger = logging.getLogger(__name__)

PASSWORD_MIN_LENGTH = 8

_email_adapter = TypeAdapter(EmailStr)
_url_adapter = TypeAdapter(AnyUrl)

_UPDATABLE_FIELDS = frozenset({"email", "username", "password", "bio", "image"})


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

async def _validate_email_or_raise(db: AsyncSession, email: str) -> None:
    try:
        _email_adapter.validate_python(email)
    except ValidationError:
        raise InvalidInputError('"email" must be a valid email')
    if await _find_user(db, User.email == email) is not None:
        raise AlreadyExistsError('"email" is taken')


async def _validate_username_or_raise(db: AsyncSession, username: str) -> None:
    if not username.strip():
        raise InvalidInputError('"username" is not allowed to be empty')
    if await _find_user(db, User.username == username) is not None:
        raise AlreadyExistsError('"username" is taken')


def _validate_password_or_raise(password: str, min_length: int) -> None:
    if len(password) < min_length:
        raise InvalidInputError(f'"password" must contain at least {min_length} characters')


def _validate_image_or_raise(image: str) -> None:
    try:
        _url_adapter.validate_python(image)
    except ValidationError:
        raise InvalidInputError('"image" must be a valid uri')


async def _find_user(db: AsyncSession, criterion) -> User | None:
    result = await db.execute(select(User).where(criterion))
    return result.scalars().first()


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def register_user(
    db: AsyncSession,
    email: str,
    username: str,
    password: str,
    *,
    min_password_length: int = PASSWORD_MIN_LENGTH,
) -> UserRecord:
    """
    Create an account and return its record.

    Raises InvalidInputError for a malformed email or a short password and
    AlreadyExistsError when the email or username is already in use.
    """
    _validate_password_or_raise(password, min_password_length)
    password_hash = security.hash_password(password)

    async def work(session: AsyncSession) -> UserRecord:
        await _validate_email_or_raise(session, email)
        await _validate_username_or_raise(session, username)
        now = utcnow()
        user = User(
            email=email,
            username=username,
            password_hash=password_hash,
            created_at=now,
            updated_at=now,
        )
        session.add(user)
        await session.flush()
        return UserRecord.model_validate(user)

    record = await run_transaction(db, work)
    logger.info("Registered user id=%s username=%r", record.id, record.username)
    return record


async def get_user_by_id(db: AsyncSession, user_id: int) -> UserRecord | None:
    user = await db.get(User, user_id)
    return UserRecord.model_validate(user) if user is not None else None


async def get_user_by_email(db: AsyncSession, email: str) -> UserRecord | None:
    user = await _find_user(db, User.email == email)
    return UserRecord.model_validate(user) if user is not None else None


async def get_user_by_username(db: AsyncSession, username: str) -> UserRecord | None:
    user = await _find_user(db, User.username == username)
    return UserRecord.model_validate(user) if user is not None else None


async def require_user_by_username(db: AsyncSession, username: str) -> UserRecord:
    user = await get_user_by_username(db, username)
    if user is None:
        raise NotFoundError(f'username "{username}" not found')
    return user


async def update_user(
    db: AsyncSession,
    user_id: int,
    changes: Mapping[str, Any],
    *,
    min_password_length: int = PASSWORD_MIN_LENGTH,
) -> UserRecord:
    """
    Apply a partial update to *user_id*.

    Only keys present in *changes* are considered; a key mapped to the
    value already stored is a no-op.  ``updated_at`` moves only when at
    least one field actually changes.
    """
    unknown = set(changes) - _UPDATABLE_FIELDS
    if unknown:
        raise InvalidInputError(f'"{sorted(unknown)[0]}" is not allowed')

    password_hash = None
    if changes.get("password") is not None:
        _validate_password_or_raise(changes["password"], min_password_length)
        password_hash = security.hash_password(changes["password"])

    async def work(session: AsyncSession) -> UserRecord:
        user = await session.get(User, user_id, populate_existing=True)
        if user is None:
            raise NotFoundError(f'user "{user_id}" not found')

        changed = False

        email = changes.get("email")
        if "email" in changes and email is not None and email != user.email:
            await _validate_email_or_raise(session, email)
            user.email = email
            changed = True

        username = changes.get("username")
        if "username" in changes and username is not None and username != user.username:
            await _validate_username_or_raise(session, username)
            user.username = username
            changed = True

        if password_hash is not None:
            user.password_hash = password_hash
            changed = True

        if "bio" in changes and changes["bio"] != user.bio:
            user.bio = changes["bio"]
            changed = True

        if "image" in changes and changes["image"] != user.image:
            if changes["image"] is not None:
                _validate_image_or_raise(changes["image"])
            user.image = changes["image"]
            changed = True

        if changed:
            user.updated_at = utcnow()
            await session.flush()
        return UserRecord.model_validate(user)

    record = await run_transaction(db, work)
    logger.info("Updated user id=%s", user_id)
    return record


async def verify_password(db: AsyncSession, email: str, password: str) -> bool:
    """
    Check *password* against the stored hash for *email*.

    Raises NotFoundError when no account uses *email*.
    """
    user = await _find_user(db, User.email == email)
    if user is None:
        raise NotFoundError('"email" not found')
    return security.verify_password(password, user.password_hash)


async def authenticate(db: AsyncSession, email: str, password: str) -> UserRecord | None:
    """Return the user for a valid email/password pair, otherwise None."""
    try:
        valid = await verify_password(db, email, password)
    except NotFoundError:
        return None
    if not valid:
        return None
    return await get_user_by_email(db, email)
