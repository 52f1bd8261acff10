from fastapi import APIRouter, HTTPException, Request, Response, Depends
from pydantic import BaseModel
from datetime import datetime, timezone
import logging

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from db import get_db
from db.models import User, UserSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class UserResponse(BaseModel):
    user_id: str
    email: str
    name: str


def get_session_token(request: Request) -> str | None:
    """Session token from the cookie or a Bearer header"""
    session_token = request.cookies.get("session_token")
    if not session_token:
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            session_token = auth_header[7:]
    return session_token


# Helper function to get current user (for use in other routes)
async def get_current_user_id(request: Request, session: AsyncSession) -> str:
    """Extract and validate current user ID from request"""
    session_token = get_session_token(request)

    if not session_token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    result = await session.execute(
        select(UserSession).where(UserSession.session_token == session_token)
    )
    user_session = result.scalar_one_or_none()

    if not user_session:
        raise HTTPException(status_code=401, detail="Invalid session")

    if user_session.expires_at.replace(tzinfo=timezone.utc) < datetime.now(timezone.utc):
        raise HTTPException(status_code=401, detail="Session expired")

    request.state.user_id = user_session.user_id
    return user_session.user_id


async def current_user_id(
    request: Request,
    session: AsyncSession = Depends(get_db)
) -> str:
    """
    Dependency form of get_current_user_id. FastAPI resolves it before the
    slowapi wrapper computes the rate-limit key, so rate-limited routes take
    the user from here to be limited per user rather than per IP.
    """
    return await get_current_user_id(request, session)


@router.get("/me", response_model=UserResponse)
async def get_current_user(
    request: Request,
    session: AsyncSession = Depends(get_db)
):
    """Get current user from session token"""
    user_id = await get_current_user_id(request, session)

    result = await session.execute(select(User).where(User.user_id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    return UserResponse(user_id=user.user_id, email=user.email, name=user.name)


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_db)
):
    """Logout and clear session"""
    session_token = get_session_token(request)
    if session_token:
        await session.execute(
            delete(UserSession).where(UserSession.session_token == session_token)
        )
        await session.commit()

    response.delete_cookie(
        key="session_token",
        path="/",
        secure=True,
        samesite="none"
    )

    return {"message": "Logged out successfully"}
