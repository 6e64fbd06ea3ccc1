from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from conduit.config import Settings
from conduit.database import get_db
from conduit.dependencies import get_current_user, get_settings
from conduit.errors import UnauthorizedError
from conduit.records import UserRecord
from conduit.schemas import LoginRequest, RegisterRequest, UpdateUserRequest, UserResponse
from conduit.security import create_access_token
from conduit.services import user_service

router = APIRouter(tags=["users"])


@router.post("/users", status_code=201, response_model=UserResponse)
async def register(
    data: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = await user_service.register_user(
        db,
        data.user.email,
        data.user.username,
        data.user.password,
        min_password_length=settings.PASSWORD_MIN_LENGTH,
    )
    return UserResponse.build(user, create_access_token(user.id, settings))


@router.post("/users/login", response_model=UserResponse)
async def login(
    data: LoginRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = await user_service.authenticate(db, data.user.email, data.user.password)
    if user is None:
        raise UnauthorizedError()
    return UserResponse.build(user, create_access_token(user.id, settings))


@router.get("/user", response_model=UserResponse)
async def current_user(
    user: UserRecord = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    return UserResponse.build(user, create_access_token(user.id, settings))


@router.put("/user", response_model=UserResponse)
async def update_current_user(
    data: UpdateUserRequest,
    user: UserRecord = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    updated = await user_service.update_user(
        db,
        user.id,
        data.user.changes(),
        min_password_length=settings.PASSWORD_MIN_LENGTH,
    )
    return UserResponse.build(updated, create_access_token(updated.id, settings))
