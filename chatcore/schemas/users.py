from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from chatcore.schemas.types import UtcDatetime

PresenceStatus = Literal["online", "offline"]


class UserPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    display_name: str | None
    avatar_url: str | None
    status: PresenceStatus
    last_seen_at: UtcDatetime | None


class ProfileUpdateRequest(BaseModel):
    display_name: str | None = Field(default=None, min_length=1, max_length=64)
    avatar_url: str | None = Field(default=None, max_length=512)


class PresenceUpdateRequest(BaseModel):
    status: PresenceStatus
