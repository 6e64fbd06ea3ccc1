from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from conduit.database import get_db
from conduit.dependencies import get_current_user, get_optional_user
from conduit.records import UserRecord
from conduit.schemas import ProfileResponse
from conduit.services import profile_service

router = APIRouter(prefix="/profiles", tags=["profiles"])


@router.get("/{username}", response_model=ProfileResponse)
async def get_profile(
    username: str,
    viewer: UserRecord | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    profile = await profile_service.get_profile(db, username, viewer.id if viewer else None)
    return ProfileResponse.build(profile)


@router.post("/{username}/follow", response_model=ProfileResponse)
async def follow(
    username: str,
    user: UserRecord = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return ProfileResponse.build(await profile_service.follow_by_username(db, user.id, username))


@router.delete("/{username}/follow", response_model=ProfileResponse)
async def unfollow(
    username: str,
    user: UserRecord = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return ProfileResponse.build(await profile_service.unfollow_by_username(db, user.id, username))
