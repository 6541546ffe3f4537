from pydantic import BaseModel, ConfigDict
from typing import Optional
from uuid import UUID
from datetime import datetime

from app.models.message import MediaType


def to_camel(string: str) -> str:
    """Convert snake_case to camelCase."""
    components = string.split('_')
    return components[0] + ''.join(x.title() for x in components[1:])


class Message(BaseModel):
    """A stored message as seen by the sync layer and the feed."""
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID
    sender_id: str
    recipient_id: str
    product_id: Optional[str] = None
    subject: Optional[str] = None
    content: str
    media_url: Optional[str] = None
    media_type: Optional[MediaType] = None
    media_name: Optional[str] = None
    is_read: bool = False
    created_at: datetime


class NewMessage(BaseModel):
    """Insert payload; id and created_at are assigned by the store."""
    sender_id: str
    recipient_id: str
    product_id: Optional[str] = None
    subject: Optional[str] = None
    content: str
    media_url: Optional[str] = None
    media_type: Optional[MediaType] = None
    media_name: Optional[str] = None


class SendMessageRequest(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    counterpart_id: str
    product_id: Optional[str] = None
    content: str = ""
    media_url: Optional[str] = None
    media_type: Optional[MediaType] = None
    media_name: Optional[str] = None
    subject: Optional[str] = None


class SendMessageResponse(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        serialize_by_alias=True,
    )

    success: bool
    thread_id: str


class MessageDto(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        serialize_by_alias=True,
    )

    id: UUID
    thread_id: str
    sender_id: str
    recipient_id: str
    product_id: Optional[str] = None
    subject: Optional[str] = None
    content: str
    media_url: Optional[str] = None
    media_type: Optional[MediaType] = None
    media_name: Optional[str] = None
    created_at: datetime
    is_mine: bool
    is_read: bool


class ConversationSummary(BaseModel):
    """One inbox entry: the latest message of a conversation plus its unread count."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        serialize_by_alias=True,
    )

    thread_id: str
    counterpart_id: str
    product_id: Optional[str] = None
    last_message: str
    last_message_at: datetime
    unread_count: int = 0
