from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from chatcore.schemas.types import UtcDatetime
from chatcore.schemas.users import UserPublic

FriendshipStatus = Literal["pending", "accepted"]


class FriendRequestCreate(BaseModel):
    email: str = Field(min_length=3, max_length=254)


class FriendshipRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    requester_id: str
    recipient_id: str
    status: FriendshipStatus
    created_at: UtcDatetime


class FriendEntry(BaseModel):
    """A friendship seen from one side, carrying the other party's profile."""

    friendship_id: str
    status: FriendshipStatus
    created_at: UtcDatetime
    friend: UserPublic
