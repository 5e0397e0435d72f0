"""Authentication endpoints for registration and login."""

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import (
    authenticate_user,
    create_access_token,
    get_current_user_required,
    get_user_by_email,
    hash_password,
)
from ..core.config import settings
from ..db.models import Organization, User
from ..db.session import get_session
from ..models_api import LoginRequest, RegisterRequest, Token, UserResponse


router = APIRouter(prefix="/auth", tags=["authentication"])


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: RegisterRequest,
    session: AsyncSession = Depends(get_session),
):
    """Register a user together with the organization they own.

    Raises:
        HTTPException: 400 if username or email already exists
    """
    existing = await session.execute(select(User).where(User.username == user_data.username))
    if existing.scalars().first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username already registered")
    if await get_user_by_email(session, user_data.email):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")

    organization = Organization(name=user_data.organization_name, industry=user_data.industry)
    session.add(organization)
    await session.flush()

    user = User(
        username=user_data.username,
        email=user_data.email,
        password_hash=hash_password(user_data.password),
        role="user",
        active=True,
        organization_id=organization.id,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@router.post("/login", response_model=Token)
async def login(
    credentials: LoginRequest,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    """Authenticate and return a bearer token, also set as an httpOnly cookie."""
    user = await authenticate_user(session, credentials.email, credentials.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = create_access_token(data={"sub": user.email, "user_id": user.id})
    response.set_cookie(
        key="access_token",
        value=access_token,
        httponly=True,
        secure=settings.ORCHESTRA_ENV == "production",
        samesite="lax",
        max_age=settings.JWT_EXPIRE_MINUTES * 60,
    )
    return Token(access_token=access_token)


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(current_user: User = Depends(get_current_user_required)):
    return current_user
