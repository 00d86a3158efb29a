from __future__ import annotations

import uuid
from typing import Literal

from pydantic import BaseModel, Field

from chatcore.schemas.messages import MessageRead

MESSAGES_TABLE = "messages"


class MessageInserted(BaseModel):
    """A row-insert on the messages table, carrying the full new message."""

    type: Literal["message.inserted"] = "message.inserted"
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    table: Literal["messages"] = MESSAGES_TABLE
    message: MessageRead

    @property
    def conversation_id(self) -> str:
        return self.message.conversation_id
