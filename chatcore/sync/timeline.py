from __future__ import annotations

from bisect import bisect_right
from datetime import datetime
from typing import Iterable, Iterator

from chatcore.schemas.events import MessageInserted
from chatcore.schemas.messages import MessageRead


class MessageTimeline:
    """Ordered history of one open conversation, growing by de-duplicated appends."""

    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        self._messages: list[MessageRead] = []
        self._keys: list[tuple[datetime, str]] = []
        self._ids: set[str] = set()

    def load(self, messages: Iterable[MessageRead]) -> None:
        self._messages = []
        self._keys = []
        self._ids = set()
        for message in messages:
            self.push(message)

    def push(self, message: MessageRead) -> bool:
        if message.conversation_id != self.conversation_id:
            raise ValueError(
                f"Message {message.id} belongs to conversation {message.conversation_id}, not {self.conversation_id}"
            )
        if message.id in self._ids:
            return False

        key = (message.created_at, message.id)
        # Usually the tail; an earlier timestamp can show up after an optimistic send.
        position = bisect_right(self._keys, key)
        self._keys.insert(position, key)
        self._messages.insert(position, message)
        self._ids.add(message.id)
        return True

    def apply(self, event: MessageInserted) -> bool:
        return self.push(event.message)

    @property
    def last(self) -> MessageRead | None:
        return self._messages[-1] if self._messages else None

    @property
    def message_ids(self) -> frozenset[str]:
        return frozenset(self._ids)

    def messages(self) -> list[MessageRead]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[MessageRead]:
        return iter(self._messages)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids
