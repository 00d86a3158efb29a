from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from chatcore.core.settings import get_settings
from chatcore.schemas.types import UtcDatetime


class SendMessageRequest(BaseModel):
    # Blank content is classified by the service, not here.
    content: str = Field(max_length=get_settings().message_max_length)


class MessageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    conversation_id: str
    sender_id: str
    content: str
    created_at: UtcDatetime
    is_read: bool = False


class MarkReadRequest(BaseModel):
    at_time: UtcDatetime | None = None


class ReadState(BaseModel):
    conversation_id: str
    read_at: UtcDatetime
    unread_count: int = Field(ge=0)
