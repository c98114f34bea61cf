from __future__ import annotations

from datetime import datetime
from typing import Any

from helpdesk.core.database import db


async def get_session_by_token(session_token: str) -> dict[str, Any] | None:
    return await db.fetch_one(
        """
        SELECT id, user_id, session_token, created_at, expires_at, last_seen_at,
               ip_address, user_agent, is_active
        FROM user_sessions
        WHERE session_token = %s
        """,
        (session_token,),
    )


async def touch_session(session_id: int, *, last_seen_at: datetime, expires_at: datetime) -> None:
    await db.execute(
        "UPDATE user_sessions SET last_seen_at = %s, expires_at = %s WHERE id = %s",
        (last_seen_at, expires_at, session_id),
    )


async def deactivate_session(session_id: int) -> None:
    await db.execute(
        "UPDATE user_sessions SET is_active = 0 WHERE id = %s",
        (session_id,),
    )
