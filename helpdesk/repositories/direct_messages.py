from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from helpdesk.core.database import db

_MESSAGE_COLUMNS = """
    dm.id, dm.sender_id, dm.receiver_id, dm.direct_message, dm.message_type,
    dm.created_at, dm.message_read_at, dm.message_updated_at, dm.is_deleted,
    att.file_path, att.original_file_name
"""

_ATTACHMENT_JOIN = """
    LEFT JOIN direct_message_attachments AS att
        ON att.direct_message_id = dm.id AND att.is_deleted = 0
"""

_ATTACHMENT_COLUMNS = """
    id, direct_message_id, original_file_name, file_name, file_path,
    mime_type, file_size_bytes, is_deleted
"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _contains_pattern(keyword: str) -> str:
    """Build a case-folded LIKE pattern matching ``keyword`` literally (escape char ``!``)."""

    escaped = keyword.lower().replace("!", "!!").replace("%", "!%").replace("_", "!_")
    return f"%{escaped}%"


def _normalise_message(row: dict[str, Any] | None) -> dict[str, Any] | None:
    if not row:
        return None
    record = dict(row)
    record["is_deleted"] = bool(record.get("is_deleted"))
    record["message_type"] = int(record.get("message_type") or 0)
    return record


async def create_message(
    *,
    sender_id: int,
    receiver_id: int,
    direct_message: str | None,
    message_type: int,
) -> dict[str, Any]:
    message_id = await db.execute_returning_lastrowid(
        """
        INSERT INTO direct_messages (sender_id, receiver_id, direct_message, message_type, created_at)
        VALUES (%s, %s, %s, %s, %s)
        """,
        (sender_id, receiver_id, direct_message, message_type, _utcnow()),
    )
    record = await get_message(message_id)
    if record is None:
        raise RuntimeError(f"Direct message {message_id} was not persisted")
    return record


async def get_message(message_id: int) -> dict[str, Any] | None:
    row = await db.fetch_one(
        f"SELECT {_MESSAGE_COLUMNS} FROM direct_messages AS dm {_ATTACHMENT_JOIN} WHERE dm.id = %s",
        (message_id,),
    )
    return _normalise_message(row)


async def list_messages_between(
    *,
    user_id: int,
    other_user_id: int,
    page_size: int,
    keyword: str | None = None,
    last_message_id: int | None = None,
    ascending: bool = False,
) -> list[dict[str, Any]]:
    """Return one page of the conversation between two users.

    ``last_message_id`` is the cursor from the previous page: descending pages
    continue with older messages, ascending pages with newer ones.
    """

    clauses = [
        "((dm.sender_id = %s AND dm.receiver_id = %s) OR (dm.sender_id = %s AND dm.receiver_id = %s))"
    ]
    params: list[Any] = [user_id, other_user_id, other_user_id, user_id]

    if keyword:
        clauses.append("LOWER(dm.direct_message) LIKE %s ESCAPE '!'")
        params.append(_contains_pattern(keyword))

    if last_message_id:
        clauses.append("dm.id > %s" if ascending else "dm.id < %s")
        params.append(last_message_id)

    direction = "ASC" if ascending else "DESC"
    params.append(page_size)
    rows = await db.fetch_all(
        f"""
        SELECT {_MESSAGE_COLUMNS}
        FROM direct_messages AS dm
        {_ATTACHMENT_JOIN}
        WHERE {' AND '.join(clauses)}
        ORDER BY dm.id {direction}
        LIMIT %s
        """,
        tuple(params),
    )
    return [_normalise_message(row) for row in rows or []]


async def list_recent_conversations(user_id: int) -> list[dict[str, Any]]:
    """Return the latest message per counterpart together with unread counts."""

    rows = await db.fetch_all(
        """
        SELECT dm.id, dm.sender_id, dm.receiver_id, dm.direct_message, dm.message_type,
               dm.is_deleted, dm.created_at, dm.message_read_at, dm.message_updated_at,
               convo.other_user_id,
               u.first_name AS other_first_name,
               u.last_name AS other_last_name,
               u.avatar_url,
               (
                   SELECT COUNT(*)
                   FROM direct_messages AS unread
                   WHERE unread.sender_id = convo.other_user_id
                     AND unread.receiver_id = %s
                     AND unread.message_read_at IS NULL
                     AND unread.is_deleted = 0
               ) AS unread_count
        FROM (
            SELECT
                CASE WHEN sender_id = %s THEN receiver_id ELSE sender_id END AS other_user_id,
                MAX(id) AS last_message_id
            FROM direct_messages
            WHERE sender_id = %s OR receiver_id = %s
            GROUP BY other_user_id
        ) AS convo
        INNER JOIN direct_messages AS dm ON dm.id = convo.last_message_id
        INNER JOIN users AS u ON u.id = convo.other_user_id
        ORDER BY dm.id DESC
        """,
        (user_id, user_id, user_id, user_id),
    )
    records: list[dict[str, Any]] = []
    for row in rows or []:
        record = _normalise_message(row)
        record["unread_count"] = int(record.get("unread_count") or 0)
        records.append(record)
    return records


async def mark_read(message_id: int) -> dict[str, Any] | None:
    await db.execute(
        """
        UPDATE direct_messages
        SET message_read_at = %s
        WHERE id = %s AND message_read_at IS NULL
        """,
        (_utcnow(), message_id),
    )
    return await get_message(message_id)


async def mark_all_read(*, receiver_id: int, sender_id: int | None = None) -> list[dict[str, Any]]:
    """Mark unread messages sent to ``receiver_id`` as read.

    Only the rows changed by this call are returned. When ``sender_id`` is
    omitted every conversation of the receiver is marked.
    """

    clauses = ["receiver_id = %s", "message_read_at IS NULL", "is_deleted = 0"]
    params: list[Any] = [receiver_id]
    if sender_id:
        clauses.append("sender_id = %s")
        params.append(sender_id)
    where = " AND ".join(clauses)

    pending = await db.fetch_all(
        f"SELECT id FROM direct_messages WHERE {where} ORDER BY id",
        tuple(params),
    )
    ids = [int(row["id"]) for row in pending or []]
    if not ids:
        return []

    placeholders = ", ".join(["%s"] * len(ids))
    await db.execute(
        f"""
        UPDATE direct_messages
        SET message_read_at = %s
        WHERE id IN ({placeholders}) AND message_read_at IS NULL
        """,
        (_utcnow(), *ids),
    )
    rows = await db.fetch_all(
        f"""
        SELECT {_MESSAGE_COLUMNS}
        FROM direct_messages AS dm
        {_ATTACHMENT_JOIN}
        WHERE dm.id IN ({placeholders})
        ORDER BY dm.id
        """,
        tuple(ids),
    )
    return [_normalise_message(row) for row in rows or []]


async def update_message_text(message_id: int, direct_message: str) -> dict[str, Any] | None:
    await db.execute(
        """
        UPDATE direct_messages
        SET direct_message = %s, message_updated_at = %s
        WHERE id = %s AND is_deleted = 0
        """,
        (direct_message, _utcnow(), message_id),
    )
    return await get_message(message_id)


async def soft_delete_message(message_id: int) -> dict[str, Any] | None:
    await db.execute(
        "UPDATE direct_messages SET is_deleted = 1, message_updated_at = %s WHERE id = %s",
        (_utcnow(), message_id),
    )
    await db.execute(
        "UPDATE direct_message_attachments SET is_deleted = 1 WHERE direct_message_id = %s",
        (message_id,),
    )
    return await get_message(message_id)


async def get_attachment(direct_message_id: int) -> dict[str, Any] | None:
    row = await db.fetch_one(
        f"""
        SELECT {_ATTACHMENT_COLUMNS}
        FROM direct_message_attachments
        WHERE direct_message_id = %s AND is_deleted = 0
        ORDER BY id DESC
        LIMIT 1
        """,
        (direct_message_id,),
    )
    if not row:
        return None
    record = dict(row)
    record["is_deleted"] = bool(record.get("is_deleted"))
    return record


async def create_attachment(
    *,
    direct_message_id: int,
    original_file_name: str,
    file_name: str,
    file_path: str,
    mime_type: str | None,
    file_size_bytes: int,
) -> dict[str, Any]:
    await db.execute_returning_lastrowid(
        """
        INSERT INTO direct_message_attachments
            (direct_message_id, original_file_name, file_name, file_path, mime_type, file_size_bytes)
        VALUES (%s, %s, %s, %s, %s, %s)
        """,
        (direct_message_id, original_file_name, file_name, file_path, mime_type, file_size_bytes),
    )
    record = await get_attachment(direct_message_id)
    if record is None:
        raise RuntimeError(f"Attachment for direct message {direct_message_id} was not persisted")
    return record


async def replace_attachment(
    attachment_id: int,
    *,
    original_file_name: str,
    file_name: str,
    file_path: str,
    mime_type: str | None,
    file_size_bytes: int,
) -> None:
    await db.execute(
        """
        UPDATE direct_message_attachments
        SET original_file_name = %s, file_name = %s, file_path = %s,
            mime_type = %s, file_size_bytes = %s
        WHERE id = %s
        """,
        (original_file_name, file_name, file_path, mime_type, file_size_bytes, attachment_id),
    )


async def soft_delete_attachment(attachment_id: int) -> None:
    await db.execute(
        "UPDATE direct_message_attachments SET is_deleted = 1 WHERE id = %s",
        (attachment_id,),
    )


async def touch_message(message_id: int) -> dict[str, Any] | None:
    await db.execute(
        "UPDATE direct_messages SET message_updated_at = %s WHERE id = %s",
        (_utcnow(), message_id),
    )
    return await get_message(message_id)


async def get_user(user_id: int) -> dict[str, Any] | None:
    return await db.fetch_one(
        """
        SELECT id, first_name, last_name, email, avatar_url
        FROM users
        WHERE id = %s AND is_active = 1
        """,
        (user_id,),
    )


async def search_users(*, exclude_user_id: int, keyword: str | None, limit: int = 20) -> list[dict[str, Any]]:
    clauses = ["id <> %s", "is_active = 1"]
    params: list[Any] = [exclude_user_id]
    if keyword:
        like = _contains_pattern(keyword)
        clauses.append(
            "(LOWER(first_name) LIKE %s ESCAPE '!' OR LOWER(last_name) LIKE %s ESCAPE '!' "
            "OR LOWER(CONCAT(first_name, ' ', last_name)) LIKE %s ESCAPE '!' "
            "OR LOWER(email) LIKE %s ESCAPE '!')"
        )
        params.extend([like, like, like, like])
    params.append(limit)
    rows = await db.fetch_all(
        f"""
        SELECT id, first_name, last_name, email, avatar_url
        FROM users
        WHERE {' AND '.join(clauses)}
        ORDER BY first_name, last_name, id
        LIMIT %s
        """,
        tuple(params),
    )
    return list(rows or [])
