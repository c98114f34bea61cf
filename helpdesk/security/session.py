from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from starlette.requests import HTTPConnection

from helpdesk.core.config import get_settings
from helpdesk.repositories import auth as auth_repo


@dataclass
class SessionData:
    id: int
    user_id: int
    session_token: str
    created_at: datetime
    expires_at: datetime
    last_seen_at: datetime
    ip_address: str | None = None
    user_agent: str | None = None


class SessionManager:
    """Resolve the signed-in user for HTTP requests and websockets alike."""

    token_query_param = "token"

    def __init__(self) -> None:
        self._settings = get_settings()
        self.session_cookie_name = self._settings.session_cookie_name
        self.session_ttl = timedelta(hours=12)

    def _extract_token(self, connection: HTTPConnection) -> str | None:
        token = connection.cookies.get(self.session_cookie_name)
        if not token and connection.scope.get("type") == "websocket":
            # Browsers cannot attach custom headers to websocket handshakes.
            token = connection.query_params.get(self.token_query_param)
        return token or None

    async def load_session(self, connection: HTTPConnection) -> Optional[SessionData]:
        cached: SessionData | None = getattr(connection.state, "session", None)
        if cached:
            return cached
        token = self._extract_token(connection)
        if not token:
            return None
        record = await auth_repo.get_session_by_token(token)
        if not record or int(record.get("is_active", 0)) != 1:
            return None
        now = _utcnow()
        expires_at = ensure_datetime(record.get("expires_at"))
        if expires_at < now:
            await auth_repo.deactivate_session(int(record["id"]))
            return None
        session = _map_session(record)
        session.last_seen_at = now
        session.expires_at = now + self.session_ttl
        await auth_repo.touch_session(
            session.id,
            last_seen_at=session.last_seen_at,
            expires_at=session.expires_at,
        )
        connection.state.session = session
        return session


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def ensure_datetime(value: Any) -> datetime:
    """Coerce database values to naive UTC datetimes."""

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, str) and value:
        return ensure_datetime(datetime.fromisoformat(value))
    return datetime.min


def _map_session(record: dict[str, Any]) -> SessionData:
    return SessionData(
        id=int(record["id"]),
        user_id=int(record["user_id"]),
        session_token=str(record["session_token"]),
        created_at=ensure_datetime(record.get("created_at")),
        expires_at=ensure_datetime(record.get("expires_at")),
        last_seen_at=ensure_datetime(record.get("last_seen_at")),
        ip_address=record.get("ip_address"),
        user_agent=record.get("user_agent"),
    )


session_manager = SessionManager()
