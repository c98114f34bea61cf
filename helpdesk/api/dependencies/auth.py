from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from helpdesk.security.session import SessionData, session_manager


async def get_current_session(request: Request) -> SessionData:
    session = await session_manager.load_session(request)
    if not session:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return session


async def get_current_user_id(session: SessionData = Depends(get_current_session)) -> int:
    try:
        user_id = int(session.user_id)
    except (TypeError, ValueError):
        user_id = 0
    if user_id <= 0:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing user id",
        )
    return user_id
