import uuid
import logging
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, status, Request, Response
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from credisphere.core import (
    get_db, verify_password, get_password_hash, create_access_token, create_refresh_token, decode_token,
    get_settings, AuthEvent, AuthEventChannel, Session,
)
from credisphere.models import User
from credisphere.schemas import UserCreate, UserResponse

logger = logging.getLogger(__name__)

router = APIRouter()
settings = get_settings()


# Use fixed paths for cookies to ensure consistency between set and delete
_ACCESS_TOKEN_PATH = "/"
_REFRESH_TOKEN_PATH = f"{settings.api_v1_prefix}/auth"


def set_auth_cookies(response: Response, access_token: str, refresh_token: str) -> None:
    """Set httpOnly cookies for authentication tokens."""
    response.set_cookie(
        key="access_token",
        value=access_token,
        httponly=True,
        secure=not settings.debug,
        samesite="lax",
        max_age=settings.access_token_expire_minutes * 60,
        path=_ACCESS_TOKEN_PATH
    )
    response.set_cookie(
        key="refresh_token",
        value=refresh_token,
        httponly=True,
        secure=not settings.debug,
        samesite="lax",
        max_age=settings.refresh_token_expire_days * 24 * 60 * 60,
        path=_REFRESH_TOKEN_PATH
    )


def clear_auth_cookies(response: Response) -> None:
    response.delete_cookie(key="access_token", path=_ACCESS_TOKEN_PATH)
    response.delete_cookie(key="refresh_token", path=_REFRESH_TOKEN_PATH)


def issue_tokens(response: Response, user: User) -> None:
    access_token = create_access_token({"sub": str(user.id)})
    refresh_token = create_refresh_token({"sub": str(user.id)})
    set_auth_cookies(response, access_token, refresh_token)


def get_auth_events(request: Request) -> AuthEventChannel:
    return request.app.state.auth_events


async def _user_from_token(db: AsyncSession, token: str | None, token_type: str) -> User:
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    payload = decode_token(token)
    if not payload or payload.get("type") != token_type:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    try:
        user_uuid = uuid.UUID(payload.get("sub") or "")
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    result = await db.execute(select(User).where(User.id == user_uuid))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found or inactive")
    return user


async def get_current_user(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)]
) -> User:
    return await _user_from_token(db, request.cookies.get("access_token"), "access")


async def get_current_session(
    current_user: Annotated[User, Depends(get_current_user)]
) -> Session:
    return Session.from_user(current_user)


@router.post("/signup", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    response: Response,
    user_data: UserCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    auth_events: Annotated[AuthEventChannel, Depends(get_auth_events)]
):
    result = await db.execute(select(User).where(User.email == user_data.email.lower()))
    if result.scalar_one_or_none():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")

    user = User(
        email=user_data.email.lower(),
        organization_name=user_data.organization_name,
        hashed_password=get_password_hash(user_data.password),
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)

    issue_tokens(response, user)
    auth_events.publish(AuthEvent.SIGNED_UP, Session.from_user(user))
    return user


@router.post("/login", response_model=UserResponse)
async def login(
    response: Response,
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    db: Annotated[AsyncSession, Depends(get_db)],
    auth_events: Annotated[AuthEventChannel, Depends(get_auth_events)]
):
    result = await db.execute(select(User).where(User.email == form_data.username.strip().lower()))
    user = result.scalar_one_or_none()

    if not user or not verify_password(form_data.password, user.hashed_password):
        logger.info("Failed login for %s", form_data.username)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect email or password")

    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User is inactive")

    issue_tokens(response, user)
    auth_events.publish(AuthEvent.SIGNED_IN, Session.from_user(user))
    return user


@router.post("/refresh")
async def refresh(
    request: Request,
    response: Response,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    user = await _user_from_token(db, request.cookies.get("refresh_token"), "refresh")
    issue_tokens(response, user)
    return {"message": "Token refreshed"}


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    db: Annotated[AsyncSession, Depends(get_db)],
    auth_events: Annotated[AuthEventChannel, Depends(get_auth_events)]
):
    session = None
    payload = decode_token(request.cookies.get("access_token") or "")
    if payload and payload.get("type") == "access":
        try:
            user = await db.get(User, uuid.UUID(payload.get("sub") or ""))
        except ValueError:
            user = None
        if user:
            session = Session.from_user(user)

    clear_auth_cookies(response)
    auth_events.publish(AuthEvent.SIGNED_OUT, session)
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: Annotated[User, Depends(get_current_user)]):
    return current_user
