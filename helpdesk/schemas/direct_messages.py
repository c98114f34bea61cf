from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class DirectMessageResponse(BaseModel):
    id: int
    sender_id: int
    receiver_id: int
    direct_message: Optional[str] = None
    message_type: int = 0
    is_deleted: bool = False
    created_at: datetime
    message_read_at: Optional[datetime] = None
    message_updated_at: Optional[datetime] = None
    file_path: Optional[str] = None
    original_file_name: Optional[str] = None

    class Config:
        from_attributes = True


class RecentConversationResponse(BaseModel):
    id: int
    sender_id: int
    receiver_id: int
    other_user_id: int
    other_first_name: str = ""
    other_last_name: str = ""
    avatar_url: Optional[str] = None
    direct_message: Optional[str] = None
    message_type: int = 0
    is_deleted: bool = False
    created_at: datetime
    message_read_at: Optional[datetime] = None
    message_updated_at: Optional[datetime] = None
    unread_count: int = Field(0, ge=0)

    class Config:
        from_attributes = True


class DirectMessageUpdateRequest(BaseModel):
    message_id: int = Field(..., gt=0)
    direct_message: str = Field(..., min_length=1, max_length=10000)


class DirectMessageMarkAllReadRequest(BaseModel):
    sender_id: Optional[int] = Field(
        default=None,
        gt=0,
        description="Only mark messages from this sender. Omit to mark every conversation.",
    )


class DirectMessageAttachmentResponse(BaseModel):
    id: int
    direct_message_id: int
    original_file_name: str
    file_name: str
    file_path: str
    mime_type: Optional[str] = None
    file_size_bytes: int = 0

    class Config:
        from_attributes = True


class DirectMessageAttachmentDeleteResponse(BaseModel):
    direct_message_id: int
    attachment_id: int
    deleted: bool = True


class UserSummaryResponse(BaseModel):
    id: int
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    avatar_url: Optional[str] = None

    class Config:
        from_attributes = True
