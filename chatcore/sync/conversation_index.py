from __future__ import annotations

from bisect import bisect_left, insort
from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Iterable, Iterator

from chatcore.core.clock import ensure_utc
from chatcore.core.ordering import OrderKey, order_key
from chatcore.schemas.conversations import ConversationSnapshot
from chatcore.schemas.messages import MessageRead
from chatcore.schemas.users import UserPublic

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ConversationView:
    """Cached, mutable state of one conversation in a session's list."""

    id: str
    type: str
    created_at: datetime
    participant_ids: list[str]
    participants: list[UserPublic] = field(default_factory=list)
    last_message: MessageRead | None = None
    last_message_at: datetime | None = None
    read_at: datetime | None = None
    unread_count: int = 0
    snapshot_watermark: tuple[datetime, str] | None = None
    seen_message_ids: set[str] = field(default_factory=set)

    @property
    def activity_at(self) -> datetime:
        return self.last_message_at or self.created_at

    def covers(self, message: MessageRead) -> bool:
        """True when the message is already reflected in this view's counts."""
        if message.id in self.seen_message_ids:
            return True
        if self.snapshot_watermark is None:
            return False
        return (ensure_utc(message.created_at), message.id) <= self.snapshot_watermark

    @classmethod
    def from_snapshot(cls, snapshot: ConversationSnapshot) -> ConversationView:
        last_message_at = snapshot.last_message_at
        if snapshot.last_message is not None and (
            last_message_at is None or snapshot.last_message.created_at > last_message_at
        ):
            last_message_at = snapshot.last_message.created_at
        return cls(
            id=snapshot.id,
            type=snapshot.type,
            created_at=snapshot.created_at,
            participant_ids=list(snapshot.participant_ids),
            participants=list(snapshot.participants),
            last_message=snapshot.last_message,
            last_message_at=last_message_at,
            read_at=snapshot.read_at,
            unread_count=snapshot.unread_count,
            snapshot_watermark=(
                (ensure_utc(snapshot.last_message.created_at), snapshot.last_message.id)
                if snapshot.last_message is not None
                else None
            ),
        )


class ConversationIndex:
    """Conversations of one viewer, kept sorted by activity (newest first, id ascending on ties).

    Views live in an arena keyed by id; ordering is a separate sorted list of
    keys, so a single conversation can be moved without re-sorting the rest.
    """

    def __init__(self, *, viewer_id: str | None) -> None:
        self.viewer_id = viewer_id
        self._views: dict[str, ConversationView] = {}
        self._keys: dict[str, OrderKey] = {}
        self._order: list[OrderKey] = []

    def load(self, snapshots: Iterable[ConversationSnapshot]) -> None:
        views = [ConversationView.from_snapshot(snapshot) for snapshot in snapshots]
        self._views = {view.id: view for view in views}
        self._keys = {view.id: order_key(view.activity_at, view.id) for view in self._views.values()}
        self._order = sorted(self._keys.values())
        logger.debug("Conversation index loaded viewer_id=%s conversations=%s", self.viewer_id, len(self._views))

    def upsert(self, snapshot: ConversationSnapshot) -> ConversationView:
        view = ConversationView.from_snapshot(snapshot)
        if view.id in self._views:
            self._unplace(view.id)
        self._views[view.id] = view
        self._place(view)
        return view

    def remove(self, conversation_id: str) -> ConversationView | None:
        if conversation_id not in self._views:
            return None
        self._unplace(conversation_id)
        return self._views.pop(conversation_id)

    def get(self, conversation_id: str) -> ConversationView | None:
        return self._views.get(conversation_id)

    def contains_message(self, conversation_id: str, message_id: str) -> bool:
        view = self._views.get(conversation_id)
        if view is None:
            return False
        if message_id in view.seen_message_ids:
            return True
        return view.snapshot_watermark is not None and view.snapshot_watermark[1] == message_id

    def record_message(self, conversation_id: str, message: MessageRead, *, count_unread: bool) -> ConversationView:
        """Fold one new message into a known conversation and move it to its sorted position."""
        view = self._views[conversation_id]
        if not view.covers(message):
            view.seen_message_ids.add(message.id)
        if view.last_message_at is None or message.created_at >= view.last_message_at:
            view.last_message = message
            view.last_message_at = message.created_at
        if count_unread:
            view.unread_count += 1

        new_key = order_key(view.activity_at, view.id)
        if new_key != self._keys[view.id]:
            self._unplace(view.id)
            self._place(view)
        return view

    def mark_read(self, conversation_id: str, at_time: datetime, *, unread_count: int = 0) -> bool:
        """Advance the viewer's read marker; an older timestamp leaves the view untouched."""
        view = self._views.get(conversation_id)
        if view is None:
            return False
        at_time = ensure_utc(at_time)
        if view.read_at is not None and at_time <= view.read_at:
            return False
        view.read_at = at_time
        view.unread_count = unread_count
        return True

    def position(self, conversation_id: str) -> int:
        key = self._keys[conversation_id]
        return bisect_left(self._order, key)

    def ordered(self) -> list[ConversationView]:
        return [self._views[key.conversation_id] for key in self._order]

    def ids(self) -> list[str]:
        return [key.conversation_id for key in self._order]

    def __iter__(self) -> Iterator[ConversationView]:
        return iter(self.ordered())

    def __len__(self) -> int:
        return len(self._views)

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._views

    def _place(self, view: ConversationView) -> None:
        key = order_key(view.activity_at, view.id)
        self._keys[view.id] = key
        insort(self._order, key)

    def _unplace(self, conversation_id: str) -> None:
        key = self._keys.pop(conversation_id)
        position = bisect_left(self._order, key)
        del self._order[position]
