from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from chatcore.schemas.messages import MessageRead
from chatcore.schemas.types import UserId, UtcDatetime
from chatcore.schemas.users import UserPublic


class DirectConversationCreateRequest(BaseModel):
    friend_id: UserId


class ConversationSnapshot(BaseModel):
    """One conversation as seen by one viewer at fetch time."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    created_at: UtcDatetime
    last_message_at: UtcDatetime | None
    participant_ids: list[str]
    participants: list[UserPublic] = Field(default_factory=list)
    last_message: MessageRead | None = None
    read_at: UtcDatetime | None = None
    unread_count: int = Field(default=0, ge=0)

    @property
    def activity_at(self) -> datetime:
        return self.last_message_at or self.created_at
