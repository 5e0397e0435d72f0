"""Authentication and organization scoping.

JWT bearer tokens (HS256 by default) identify a user; every owned resource is
then scoped to that user's organization through ``get_caller``.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .audit import audit_access_denied
from .core.config import settings
from .db.models import User
from .db.session import get_session
from .errors import ForbiddenError
from .models import TokenData


pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CallerContext:
    """Authenticated user plus the organization every query is scoped to."""

    user_id: str
    organization_id: str
    role: str = "user"


def get_jwt_settings() -> tuple[str, str, int]:
    """Get JWT configuration from settings.

    Raises:
        ValueError: If JWT_SECRET_KEY is not set or too short
    """
    secret_key = settings.JWT_SECRET_KEY
    if not secret_key or len(secret_key) < 32:
        raise ValueError(
            "JWT_SECRET_KEY must be set in environment and at least 32 characters. "
            "Generate one with: openssl rand -hex 32"
        )
    return secret_key, settings.JWT_ALGORITHM, settings.JWT_EXPIRE_MINUTES


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


async def get_user_by_email(session: AsyncSession, email: str) -> Optional[User]:
    result = await session.execute(select(User).where(User.email == email))
    return result.scalars().first()


async def authenticate_user(session: AsyncSession, email: str, password: str) -> Optional[User]:
    """Return the active user matching the credentials, else None."""
    user = await get_user_by_email(session, email)
    if not user or not user.active:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a signed access token.

    Args:
        data: Claims to embed, at least ``{"sub": email}``
        expires_delta: Optional custom lifetime

    Returns:
        Encoded JWT string
    """
    secret_key, algorithm, default_expire = get_jwt_settings()
    now = datetime.now(timezone.utc)
    to_encode = data.copy()
    to_encode.update({
        "exp": now + (expires_delta or timedelta(minutes=default_expire)),
        "iat": now,
        "iss": "orchestra-api",
        "type": "access",
    })
    return jwt.encode(to_encode, secret_key, algorithm=algorithm)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    session: AsyncSession = Depends(get_session),
) -> Optional[User]:
    """Resolve the bearer token (or ``access_token`` cookie) to a user.

    Returns None when no token was sent; an invalid token is a 401.
    """
    token = credentials.credentials if credentials else request.cookies.get("access_token")
    if not token:
        return None

    secret_key, algorithm, _ = get_jwt_settings()
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(token, secret_key, algorithms=[algorithm])
        email: str = payload.get("sub")
        if email is None:
            raise credentials_exception
        if payload.get("type", "access") != "access":
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token type for this endpoint",
                headers={"WWW-Authenticate": "Bearer"},
            )
        token_data = TokenData(email=email)
    except JWTError:
        raise credentials_exception

    user = await get_user_by_email(session, email=token_data.email)
    if user is None:
        raise credentials_exception
    if not user.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive")
    return user


async def get_current_user_required(
    user: Optional[User] = Depends(get_current_user),
) -> User:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_caller(
    request: Request,
    user: User = Depends(get_current_user_required),
) -> CallerContext:
    """Require a user that belongs to an organization."""
    if not user.organization_id:
        audit_access_denied(user.id, request.url.path, "user has no organization")
        raise ForbiddenError("User does not belong to an organization")
    return CallerContext(user_id=user.id, organization_id=user.organization_id, role=user.role)


async def get_current_active_admin(
    current_user: User = Depends(get_current_user_required),
) -> User:
    if current_user.role != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user
