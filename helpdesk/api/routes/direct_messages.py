from __future__ import annotations

from typing import NoReturn

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status

from helpdesk.api.dependencies.auth import get_current_user_id
from helpdesk.api.dependencies.database import require_database
from helpdesk.api.dependencies.realtime import get_message_fanout
from helpdesk.schemas.direct_messages import (
    DirectMessageAttachmentDeleteResponse,
    DirectMessageAttachmentResponse,
    DirectMessageMarkAllReadRequest,
    DirectMessageResponse,
    DirectMessageUpdateRequest,
    RecentConversationResponse,
    UserSummaryResponse,
)
from helpdesk.services import direct_messages as dm_service
from helpdesk.services.message_fanout import MessageFanout

router = APIRouter(prefix="/api/direct-messages", tags=["Direct Messages"])

_ERROR_STATUS = {
    dm_service.DirectMessageNotFoundError: status.HTTP_404_NOT_FOUND,
    dm_service.DirectMessagePermissionError: status.HTTP_403_FORBIDDEN,
    dm_service.DirectMessageValidationError: status.HTTP_400_BAD_REQUEST,
}


def _raise_http(exc: dm_service.DirectMessageError) -> NoReturn:
    status_code = _ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    raise HTTPException(status_code=status_code, detail=str(exc)) from exc


@router.post(
    "",
    response_model=DirectMessageResponse,
    summary="Send a direct message",
    response_description="The stored message, as pushed to both parties.",
)
async def send_direct_message(
    receiver_id: int = Form(..., gt=0),
    direct_message: str | None = Form(default=None, max_length=10000),
    message_type: int = Form(default=0, ge=0),
    file: UploadFile | None = File(default=None),
    _: None = Depends(require_database),
    user_id: int = Depends(get_current_user_id),
    fanout: MessageFanout = Depends(get_message_fanout),
):
    try:
        return await dm_service.send_message(
            sender_id=user_id,
            receiver_id=receiver_id,
            direct_message=direct_message,
            message_type=message_type,
            upload=file,
            fanout=fanout,
        )
    except dm_service.DirectMessageError as exc:
        _raise_http(exc)


@router.get(
    "",
    response_model=list[DirectMessageResponse],
    summary="List messages exchanged with another user",
)
async def list_direct_messages(
    receiver_id: int = Query(..., gt=0, description="The other participant of the conversation."),
    page_size: int | None = Query(default=None, ge=1, le=200),
    keyword: str | None = Query(default=None, max_length=200),
    last_message_id: int | None = Query(
        default=None,
        gt=0,
        description="Cursor returned by the previous page.",
    ),
    ascending: bool = Query(default=False),
    _: None = Depends(require_database),
    user_id: int = Depends(get_current_user_id),
):
    return await dm_service.list_messages(
        user_id=user_id,
        receiver_id=receiver_id,
        page_size=page_size,
        keyword=keyword,
        last_message_id=last_message_id,
        ascending=ascending,
    )


@router.get(
    "/recent",
    response_model=list[RecentConversationResponse],
    summary="List the latest message of every conversation",
)
async def list_recent_direct_messages(
    _: None = Depends(require_database),
    user_id: int = Depends(get_current_user_id),
):
    return await dm_service.list_recent(user_id)


@router.patch(
    "/read/{message_id}",
    response_model=DirectMessageResponse,
    summary="Mark a direct message as read",
)
async def mark_direct_message_read(
    message_id: int,
    _: None = Depends(require_database),
    user_id: int = Depends(get_current_user_id),
    fanout: MessageFanout = Depends(get_message_fanout),
):
    try:
        return await dm_service.mark_read(message_id=message_id, user_id=user_id, fanout=fanout)
    except dm_service.DirectMessageError as exc:
        _raise_http(exc)


@router.patch(
    "/read",
    response_model=list[DirectMessageResponse],
    summary="Mark all received direct messages as read",
    response_description="Only the messages changed by this request.",
)
async def mark_all_direct_messages_read(
    payload: DirectMessageMarkAllReadRequest,
    _: None = Depends(require_database),
    user_id: int = Depends(get_current_user_id),
    fanout: MessageFanout = Depends(get_message_fanout),
):
    return await dm_service.mark_all_read(
        receiver_id=user_id,
        sender_id=payload.sender_id,
        fanout=fanout,
    )


@router.patch(
    "/update",
    response_model=DirectMessageResponse,
    summary="Edit the text of a direct message",
)
async def update_direct_message(
    payload: DirectMessageUpdateRequest,
    _: None = Depends(require_database),
    user_id: int = Depends(get_current_user_id),
    fanout: MessageFanout = Depends(get_message_fanout),
):
    try:
        return await dm_service.update_message(
            message_id=payload.message_id,
            user_id=user_id,
            direct_message=payload.direct_message,
            fanout=fanout,
        )
    except dm_service.DirectMessageError as exc:
        _raise_http(exc)


@router.delete(
    "/delete/{message_id}",
    response_model=DirectMessageResponse,
    summary="Delete a direct message",
)
async def delete_direct_message(
    message_id: int,
    _: None = Depends(require_database),
    user_id: int = Depends(get_current_user_id),
    fanout: MessageFanout = Depends(get_message_fanout),
):
    try:
        return await dm_service.delete_message(message_id=message_id, user_id=user_id, fanout=fanout)
    except dm_service.DirectMessageError as exc:
        _raise_http(exc)


@router.patch(
    "/attachment",
    response_model=DirectMessageAttachmentResponse,
    summary="Replace or add the attachment of a direct message",
)
async def update_direct_message_attachment(
    direct_message_id: int = Form(..., gt=0),
    file: UploadFile = File(...),
    _: None = Depends(require_database),
    user_id: int = Depends(get_current_user_id),
    fanout: MessageFanout = Depends(get_message_fanout),
):
    try:
        return await dm_service.update_attachment(
            direct_message_id=direct_message_id,
            user_id=user_id,
            upload=file,
            fanout=fanout,
        )
    except dm_service.DirectMessageError as exc:
        _raise_http(exc)


@router.delete(
    "/attachment/{direct_message_id}",
    response_model=DirectMessageAttachmentDeleteResponse,
    summary="Remove the attachment of a direct message",
)
async def delete_direct_message_attachment(
    direct_message_id: int,
    _: None = Depends(require_database),
    user_id: int = Depends(get_current_user_id),
    fanout: MessageFanout = Depends(get_message_fanout),
):
    try:
        return await dm_service.delete_attachment(
            direct_message_id=direct_message_id,
            user_id=user_id,
            fanout=fanout,
        )
    except dm_service.DirectMessageError as exc:
        _raise_http(exc)


@router.get(
    "/users/search",
    response_model=list[UserSummaryResponse],
    summary="Search users to start a conversation with",
)
async def search_direct_message_users(
    keyword: str | None = Query(default=None, max_length=200),
    _: None = Depends(require_database),
    user_id: int = Depends(get_current_user_id),
):
    return await dm_service.search_users(user_id=user_id, keyword=keyword)


@router.get(
    "/users/{target_user_id}",
    response_model=UserSummaryResponse,
    summary="Get a user profile summary",
)
async def get_direct_message_user(
    target_user_id: int,
    _: None = Depends(require_database),
    __: int = Depends(get_current_user_id),
):
    try:
        return await dm_service.get_user(target_user_id)
    except dm_service.DirectMessageError as exc:
        _raise_http(exc)
