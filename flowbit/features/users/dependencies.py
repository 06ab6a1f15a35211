"""
FastAPI dependencies for authentication.
"""
from typing import Annotated
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from flowbit.core.database.engine import get_db
from flowbit.features.users.auth import PrincipalSession, decode_token
from flowbit.features.users.models import User


security = HTTPBearer(auto_error=False)


async def get_current_session(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> PrincipalSession:
    """
    Decode the bearer token into the caller's PrincipalSession.

    The session is the snapshot taken at login; it is not re-read from the
    database here.

    Usage:
        @router.get("/things")
        async def list_things(session: Annotated[PrincipalSession, Depends(get_current_session)]):
            ...
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return decode_token(credentials.credentials)


async def get_current_user(
    session: Annotated[PrincipalSession, Depends(get_current_session)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> User:
    """
    Load the user behind the current session.

    Raises:
        HTTPException: 401 if the user no longer exists, 403 if deactivated
    """
    result = await db.execute(select(User).where(User.id == session.user_id))
    user = result.scalar_one_or_none()

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )
    return user

