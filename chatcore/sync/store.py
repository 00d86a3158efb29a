from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
import logging
from typing import Callable, Protocol

from sqlalchemy.exc import DisconnectionError, OperationalError
from sqlalchemy.orm import Session

from chatcore.core.errors import TransientError
from chatcore.core.security import Identity
from chatcore.db.session import open_session
from chatcore.schemas.conversations import ConversationSnapshot
from chatcore.schemas.friends import FriendEntry, FriendshipRead
from chatcore.schemas.messages import MessageRead, ReadState
from chatcore.services import conversation_service, friend_service, message_service

logger = logging.getLogger(__name__)


class ChatStore(Protocol):
    """The data-store capability a chat session depends on."""

    def bootstrap(self, identity: Identity | None) -> list[ConversationSnapshot]: ...

    def get_conversation(self, identity: Identity | None, conversation_id: str) -> ConversationSnapshot: ...

    def create_direct(self, identity: Identity | None, friend_id: str) -> ConversationSnapshot: ...

    def load_messages(self, identity: Identity | None, conversation_id: str) -> list[MessageRead]: ...

    def append_message(self, identity: Identity | None, conversation_id: str, content: str) -> MessageRead: ...

    def mark_read(self, identity: Identity | None, conversation_id: str, at_time: datetime | None) -> ReadState: ...

    def send_friend_request(self, identity: Identity | None, target_email: str) -> FriendshipRead: ...

    def accept_friend_request(self, identity: Identity | None, request_id: str) -> FriendshipRead: ...

    def reject_friend_request(self, identity: Identity | None, request_id: str) -> None: ...

    def list_friends(self, identity: Identity | None) -> list[FriendEntry]: ...

    def list_pending_requests(self, identity: Identity | None) -> list[FriendEntry]: ...


class LocalChatStore:
    """ChatStore backed by the SQLAlchemy services, one database session per call."""

    def __init__(self, session_factory: Callable[[], Session] = open_session) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self._session_factory() as db:
                yield db
        except (OperationalError, DisconnectionError) as exc:
            logger.warning("Store call failed with connectivity error error=%s", exc)
            raise TransientError() from exc

    def bootstrap(self, identity: Identity | None) -> list[ConversationSnapshot]:
        with self._session() as db:
            rows = conversation_service.bootstrap_conversations(db, identity=identity)
            return [ConversationSnapshot.model_validate(row) for row in rows]

    def get_conversation(self, identity: Identity | None, conversation_id: str) -> ConversationSnapshot:
        with self._session() as db:
            row = conversation_service.get_conversation(db, identity=identity, conversation_id=conversation_id)
            return ConversationSnapshot.model_validate(row)

    def create_direct(self, identity: Identity | None, friend_id: str) -> ConversationSnapshot:
        with self._session() as db:
            row = conversation_service.create_direct(db, identity=identity, friend_id=friend_id)
            return ConversationSnapshot.model_validate(row)

    def load_messages(self, identity: Identity | None, conversation_id: str) -> list[MessageRead]:
        with self._session() as db:
            rows = message_service.load_messages(db, identity=identity, conversation_id=conversation_id)
            return [MessageRead.model_validate(row) for row in rows]

    def append_message(self, identity: Identity | None, conversation_id: str, content: str) -> MessageRead:
        with self._session() as db:
            row = message_service.append_message(
                db,
                identity=identity,
                conversation_id=conversation_id,
                content=content,
            )
            return MessageRead.model_validate(row)

    def mark_read(self, identity: Identity | None, conversation_id: str, at_time: datetime | None) -> ReadState:
        with self._session() as db:
            state = conversation_service.mark_read(db, identity=identity, conversation_id=conversation_id, at_time=at_time)
            return ReadState.model_validate(state)

    def send_friend_request(self, identity: Identity | None, target_email: str) -> FriendshipRead:
        with self._session() as db:
            friendship = friend_service.send_request(db, identity=identity, target_email=target_email)
            return FriendshipRead.model_validate(friendship)

    def accept_friend_request(self, identity: Identity | None, request_id: str) -> FriendshipRead:
        with self._session() as db:
            friendship = friend_service.accept(db, identity=identity, request_id=request_id)
            return FriendshipRead.model_validate(friendship)

    def reject_friend_request(self, identity: Identity | None, request_id: str) -> None:
        with self._session() as db:
            friend_service.reject(db, identity=identity, request_id=request_id)

    def list_friends(self, identity: Identity | None) -> list[FriendEntry]:
        with self._session() as db:
            return [FriendEntry.model_validate(entry) for entry in friend_service.list_accepted(db, identity=identity)]

    def list_pending_requests(self, identity: Identity | None) -> list[FriendEntry]:
        with self._session() as db:
            return [FriendEntry.model_validate(entry) for entry in friend_service.list_pending(db, identity=identity)]
