import logging

from fastapi import Depends, Header, Query, Request
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from conduit.cache import CacheManager
from conduit.config import Settings
from conduit.database import get_db
from conduit.errors import UnauthorizedError
from conduit.records import UserRecord
from conduit.security import decode_access_token
from conduit.services import user_service

logger = logging.getLogger(__name__)

_TOKEN_SCHEMES = frozenset({"token", "bearer"})


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_cache(request: Request) -> CacheManager:
    return request.app.state.cache


class PaginationParams:
    """
    Reusable dependency parsing ``limit`` / ``offset`` query parameters.

    Attributes
    ----------
    limit:
        Page size.  Defaults to ``settings.DEFAULT_PAGE_SIZE`` and is
        clamped to ``settings.MAX_PAGE_SIZE``.
    offset:
        Number of articles to skip in the ordered sequence.
    """

    def __init__(
        self,
        limit: int | None = Query(None, ge=0, description="Maximum number of articles returned."),
        offset: int = Query(0, ge=0, description="Number of articles to skip."),
        settings: Settings = Depends(get_settings),
    ) -> None:
        if limit is None:
            limit = settings.DEFAULT_PAGE_SIZE
        self.limit = min(limit, settings.MAX_PAGE_SIZE)
        self.offset = offset


def _extract_token(authorization: str | None) -> str | None:
    """Accept both ``Token <jwt>`` and ``Bearer <jwt>``."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() not in _TOKEN_SCHEMES or not token.strip():
        return None
    return token.strip()


async def _resolve_user(db: AsyncSession, settings: Settings, token: str) -> UserRecord:
    try:
        payload = decode_access_token(token, settings)
        user_id = int(payload["sub"])
    except (JWTError, KeyError, TypeError, ValueError) as exc:
        logger.info("Rejected access token: %s", exc)
        raise UnauthorizedError()

    user = await user_service.get_user_by_id(db, user_id)
    if user is None:
        logger.info("Access token subject %s no longer exists", user_id)
        raise UnauthorizedError()
    return user


async def get_current_user(
    authorization: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> UserRecord:
    token = _extract_token(authorization)
    if token is None:
        raise UnauthorizedError()
    return await _resolve_user(db, settings, token)


async def get_optional_user(
    authorization: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> UserRecord | None:
    """Anonymous when no header is sent; a bad token is still rejected."""
    if not authorization:
        return None
    token = _extract_token(authorization)
    if token is None:
        raise UnauthorizedError()
    return await _resolve_user(db, settings, token)
