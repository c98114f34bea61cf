"""Direct messaging between staff users with realtime fan-out."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Awaitable

from fastapi import UploadFile

from helpdesk.core.config import get_settings
from helpdesk.core.logging import log_error, log_info
from helpdesk.repositories import direct_messages as dm_repo
from helpdesk.schemas.direct_messages import (
    DirectMessageAttachmentDeleteResponse,
    DirectMessageAttachmentResponse,
    DirectMessageResponse,
    RecentConversationResponse,
    UserSummaryResponse,
)
from helpdesk.services import file_storage
from helpdesk.services.message_fanout import MessageEvent, MessageEventKind, MessageFanout


class DirectMessageError(Exception):
    """Base class for direct message failures surfaced to API callers."""


class DirectMessageNotFoundError(DirectMessageError):
    pass


class DirectMessageValidationError(DirectMessageError):
    pass


class DirectMessagePermissionError(DirectMessageError):
    pass


def _uploads_root() -> Path:
    return get_settings().uploads_path


def _message_payload(message: DirectMessageResponse) -> dict[str, Any]:
    return message.model_dump(mode="json")


async def _fan_out(action: str, delivery: Awaitable[Any]) -> None:
    # The mutation has already been committed; delivery problems are logged only.
    try:
        await delivery
    except Exception as exc:
        log_error("Direct message fan-out failed", action=action, error=str(exc))


async def _require_message(message_id: int) -> dict[str, Any]:
    record = await dm_repo.get_message(message_id)
    if not record:
        raise DirectMessageNotFoundError("Direct message not found")
    return record


def _require_sender(record: dict[str, Any], user_id: int) -> None:
    if int(record["sender_id"]) != user_id:
        raise DirectMessagePermissionError("Only the sender can change this message")


async def recent_conversations_payload(user_id: int) -> list[dict[str, Any]]:
    """Recent conversation summaries for ``user_id`` in JSON-ready form."""

    return [item.model_dump(mode="json") for item in await list_recent(user_id)]


async def send_message(
    *,
    sender_id: int,
    receiver_id: int,
    direct_message: str | None,
    message_type: int = 0,
    upload: UploadFile | None = None,
    fanout: MessageFanout,
) -> DirectMessageResponse:
    text = (direct_message or "").strip() or None
    if receiver_id <= 0:
        raise DirectMessageValidationError("A valid receiver is required")
    if receiver_id == sender_id:
        raise DirectMessageValidationError("You cannot send a direct message to yourself")
    if text is None and upload is None:
        raise DirectMessageValidationError("A message or an attachment is required")
    if not await dm_repo.get_user(receiver_id):
        raise DirectMessageNotFoundError("Receiver not found")

    record = await dm_repo.create_message(
        sender_id=sender_id,
        receiver_id=receiver_id,
        direct_message=text,
        message_type=message_type,
    )
    if upload is not None:
        settings = get_settings()
        stored: file_storage.StoredFile | None = None
        try:
            stored = await file_storage.store_direct_message_attachment(
                direct_message_id=int(record["id"]),
                upload=upload,
                uploads_root=settings.uploads_path,
                max_size=settings.max_attachment_size,
            )
            await dm_repo.create_attachment(
                direct_message_id=int(record["id"]),
                original_file_name=stored.original_file_name,
                file_name=stored.file_name,
                file_path=stored.relative_path,
                mime_type=stored.content_type,
                file_size_bytes=stored.size,
            )
        except Exception:
            if stored is not None:
                file_storage.delete_stored_file(stored.relative_path, settings.uploads_path)
            await dm_repo.soft_delete_message(int(record["id"]))
            raise
        record = await _require_message(int(record["id"]))

    message = DirectMessageResponse.model_validate(record)
    log_info(
        "Direct message sent",
        message_id=message.id,
        sender_id=sender_id,
        receiver_id=receiver_id,
    )
    await _fan_out(
        "send",
        fanout.notify(
            MessageEvent(
                kind=MessageEventKind.CREATED,
                sender_id=sender_id,
                receiver_id=receiver_id,
                payload=_message_payload(message),
            )
        ),
    )
    return message


async def list_messages(
    *,
    user_id: int,
    receiver_id: int,
    page_size: int | None = None,
    keyword: str | None = None,
    last_message_id: int | None = None,
    ascending: bool = False,
) -> list[DirectMessageResponse]:
    rows = await dm_repo.list_messages_between(
        user_id=user_id,
        other_user_id=receiver_id,
        page_size=page_size or get_settings().direct_message_page_size,
        keyword=(keyword or "").strip() or None,
        last_message_id=last_message_id,
        ascending=ascending,
    )
    return [DirectMessageResponse.model_validate(row) for row in rows]


async def list_recent(user_id: int) -> list[RecentConversationResponse]:
    rows = await dm_repo.list_recent_conversations(user_id)
    return [RecentConversationResponse.model_validate(row) for row in rows]


async def mark_read(*, message_id: int, user_id: int, fanout: MessageFanout) -> DirectMessageResponse:
    record = await _require_message(message_id)
    if int(record["receiver_id"]) != user_id:
        raise DirectMessagePermissionError("Only the receiver can mark this message as read")

    updated = await dm_repo.mark_read(message_id)
    if not updated:
        raise DirectMessageNotFoundError("Direct message not found")
    message = DirectMessageResponse.model_validate(updated)
    await _fan_out(
        "read",
        fanout.notify(
            MessageEvent(
                kind=MessageEventKind.READ,
                sender_id=message.sender_id,
                receiver_id=message.receiver_id,
                payload=_message_payload(message),
            )
        ),
    )
    return message


async def mark_all_read(
    *,
    receiver_id: int,
    sender_id: int | None = None,
    fanout: MessageFanout,
) -> list[DirectMessageResponse]:
    rows = await dm_repo.mark_all_read(receiver_id=receiver_id, sender_id=sender_id)
    messages = [DirectMessageResponse.model_validate(row) for row in rows]
    log_info("Direct messages marked as read", receiver_id=receiver_id, count=len(messages))
    if messages:
        events = [
            MessageEvent(
                kind=MessageEventKind.READ,
                sender_id=message.sender_id,
                receiver_id=receiver_id,
                payload=_message_payload(message),
            )
            for message in messages
        ]
        await _fan_out("read_all", fanout.notify_all_read(receiver_id, events))
    return messages


async def update_message(
    *,
    message_id: int,
    user_id: int,
    direct_message: str,
    fanout: MessageFanout,
) -> DirectMessageResponse:
    text = (direct_message or "").strip()
    if not text:
        raise DirectMessageValidationError("Message text cannot be empty")
    record = await _require_message(message_id)
    _require_sender(record, user_id)
    if record.get("is_deleted"):
        raise DirectMessageValidationError("Deleted messages cannot be edited")

    updated = await dm_repo.update_message_text(message_id, text)
    if not updated:
        raise DirectMessageNotFoundError("Direct message not found")
    message = DirectMessageResponse.model_validate(updated)
    await _fan_out(
        "update",
        fanout.notify(
            MessageEvent(
                kind=MessageEventKind.UPDATED,
                sender_id=message.sender_id,
                receiver_id=message.receiver_id,
                payload=_message_payload(message),
            )
        ),
    )
    return message


async def delete_message(*, message_id: int, user_id: int, fanout: MessageFanout) -> DirectMessageResponse:
    record = await _require_message(message_id)
    _require_sender(record, user_id)

    attachment = await dm_repo.get_attachment(message_id)
    deleted = await dm_repo.soft_delete_message(message_id)
    if not deleted:
        raise DirectMessageNotFoundError("Direct message not found")
    if attachment:
        file_storage.delete_stored_file(attachment.get("file_path"), _uploads_root())

    message = DirectMessageResponse.model_validate(deleted)
    log_info("Direct message deleted", message_id=message_id, sender_id=user_id)
    await _fan_out(
        "delete",
        fanout.notify(
            MessageEvent(
                kind=MessageEventKind.DELETED,
                sender_id=message.sender_id,
                receiver_id=message.receiver_id,
                payload=_message_payload(message),
            )
        ),
    )
    return message


async def update_attachment(
    *,
    direct_message_id: int,
    user_id: int,
    upload: UploadFile,
    fanout: MessageFanout,
) -> DirectMessageAttachmentResponse:
    record = await _require_message(direct_message_id)
    _require_sender(record, user_id)
    if record.get("is_deleted"):
        raise DirectMessageValidationError("Deleted messages cannot be edited")

    settings = get_settings()
    existing = await dm_repo.get_attachment(direct_message_id)
    stored = await file_storage.store_direct_message_attachment(
        direct_message_id=direct_message_id,
        upload=upload,
        uploads_root=settings.uploads_path,
        max_size=settings.max_attachment_size,
    )
    try:
        if existing:
            await dm_repo.replace_attachment(
                int(existing["id"]),
                original_file_name=stored.original_file_name,
                file_name=stored.file_name,
                file_path=stored.relative_path,
                mime_type=stored.content_type,
                file_size_bytes=stored.size,
            )
        else:
            await dm_repo.create_attachment(
                direct_message_id=direct_message_id,
                original_file_name=stored.original_file_name,
                file_name=stored.file_name,
                file_path=stored.relative_path,
                mime_type=stored.content_type,
                file_size_bytes=stored.size,
            )
    except Exception:
        file_storage.delete_stored_file(stored.relative_path, settings.uploads_path)
        raise
    if existing:
        file_storage.delete_stored_file(existing.get("file_path"), settings.uploads_path)
    attachment = await dm_repo.get_attachment(direct_message_id)
    if not attachment:
        raise DirectMessageNotFoundError("Attachment not found")

    message = DirectMessageResponse.model_validate(await dm_repo.touch_message(direct_message_id))
    await _fan_out(
        "attachment_update",
        fanout.notify(
            MessageEvent(
                kind=MessageEventKind.ATTACHMENT_UPDATED,
                sender_id=message.sender_id,
                receiver_id=message.receiver_id,
                payload=_message_payload(message),
            )
        ),
    )
    return DirectMessageAttachmentResponse.model_validate(attachment)


async def delete_attachment(
    *,
    direct_message_id: int,
    user_id: int,
    fanout: MessageFanout,
) -> DirectMessageAttachmentDeleteResponse:
    record = await _require_message(direct_message_id)
    _require_sender(record, user_id)
    attachment = await dm_repo.get_attachment(direct_message_id)
    if not attachment:
        raise DirectMessageNotFoundError("Attachment not found")

    await dm_repo.soft_delete_attachment(int(attachment["id"]))
    file_storage.delete_stored_file(attachment.get("file_path"), _uploads_root())

    message = DirectMessageResponse.model_validate(await dm_repo.touch_message(direct_message_id))
    await _fan_out(
        "attachment_delete",
        fanout.notify(
            MessageEvent(
                kind=MessageEventKind.ATTACHMENT_DELETED,
                sender_id=message.sender_id,
                receiver_id=message.receiver_id,
                payload=_message_payload(message),
            )
        ),
    )
    return DirectMessageAttachmentDeleteResponse(
        direct_message_id=direct_message_id,
        attachment_id=int(attachment["id"]),
    )


async def get_user(user_id: int) -> UserSummaryResponse:
    record = await dm_repo.get_user(user_id)
    if not record:
        raise DirectMessageNotFoundError("User not found")
    return UserSummaryResponse.model_validate(record)


async def search_users(*, user_id: int, keyword: str | None) -> list[UserSummaryResponse]:
    rows = await dm_repo.search_users(
        exclude_user_id=user_id,
        keyword=(keyword or "").strip() or None,
    )
    return [UserSummaryResponse.model_validate(row) for row in rows]
