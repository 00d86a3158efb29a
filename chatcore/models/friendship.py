from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from chatcore.db.session import Base

FRIENDSHIP_PENDING = "pending"
FRIENDSHIP_ACCEPTED = "accepted"


def pair_key(user_id: str, other_user_id: str) -> str:
    """Direction-free key for an unordered pair of users."""
    low, high = sorted((user_id, other_user_id))
    return f"{low}:{high}"


class Friendship(Base):
    __tablename__ = "friendships"
    __table_args__ = (
        UniqueConstraint("pair_key", name="uq_friendship_pair"),
        CheckConstraint("requester_id <> recipient_id", name="ck_friendship_not_self"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    requester_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    recipient_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    pair_key: Mapped[str] = mapped_column(String(160), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=FRIENDSHIP_PENDING)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
