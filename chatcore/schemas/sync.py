from __future__ import annotations

from pydantic import BaseModel

from chatcore.schemas.conversations import ConversationSnapshot
from chatcore.schemas.users import UserPublic


class BootstrapResponse(BaseModel):
    me: UserPublic | None
    conversations: list[ConversationSnapshot]
