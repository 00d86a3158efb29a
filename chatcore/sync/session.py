from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from dataclasses import dataclass
from datetime import datetime
import logging

from chatcore.core.errors import TransientError
from chatcore.core.security import Identity, require_identity
from chatcore.realtime.feed import FeedFilter, FeedHub, FeedSubscription
from chatcore.schemas.friends import FriendEntry, FriendshipRead
from chatcore.schemas.messages import MessageRead, ReadState
from chatcore.sync.conversation_index import ConversationIndex, ConversationView
from chatcore.sync.merge import MergeOutcome, RealtimeMergeEngine
from chatcore.sync.store import ChatStore
from chatcore.sync.timeline import MessageTimeline

logger = logging.getLogger(__name__)


@dataclass
class _Listener:
    subscription: FeedSubscription
    task: asyncio.Task[None]


@dataclass
class _OpenConversation:
    timeline: MessageTimeline
    listener: _Listener


class ChatSession:
    """One signed-in client's view model: conversation list, open timelines and their feeds.

    Runs on a single event loop. Store calls are the only blocking work; feed
    events are applied by listener tasks as they arrive. The session never
    retries: a ``TransientError`` from a feed is recorded in ``feed_errors`` and
    the caller decides whether to re-subscribe and bootstrap.
    """

    def __init__(self, *, identity: Identity | None, store: ChatStore, hub: FeedHub) -> None:
        self._identity = identity
        self._store = store
        self._hub = hub
        viewer_id = identity.user_id if identity is not None else None
        self.index = ConversationIndex(viewer_id=viewer_id)
        self.merge_engine = RealtimeMergeEngine(self.index, viewer_id=viewer_id)
        self.feed_errors: list[TransientError] = []
        self._inbox: _Listener | None = None
        self._open: dict[str, _OpenConversation] = {}

    @property
    def identity(self) -> Identity:
        return require_identity(self._identity)

    def bootstrap(self) -> list[ConversationView]:
        snapshots = self._store.bootstrap(self.identity)
        self.index.load(snapshots)
        logger.info("Session bootstrapped user_id=%s conversations=%s", self.identity.user_id, len(self.index))
        return self.index.ordered()

    def conversations(self) -> list[ConversationView]:
        return self.index.ordered()

    async def start(self) -> None:
        """Subscribe the conversation list to every message insert."""
        identity = self.identity
        if self._inbox is not None:
            if not self._inbox.task.done():
                return
            # the previous stream was lost; start over with a fresh one
            listener, self._inbox = self._inbox, None
            await self._release(listener)
        subscription = self._hub.subscribe(FeedFilter())
        task = asyncio.create_task(self._run_listener(subscription, self.merge_engine.consume(subscription)))
        self._inbox = _Listener(subscription=subscription, task=task)
        logger.info("Session inbox listener started user_id=%s", identity.user_id)

    async def stop(self) -> None:
        for conversation_id in list(self._open):
            await self.close_conversation(conversation_id)
        if self._inbox is not None:
            listener, self._inbox = self._inbox, None
            await self._release(listener)
            logger.info("Session inbox listener stopped")

    async def open_conversation(self, conversation_id: str) -> MessageTimeline:
        identity = self.identity
        existing = self._open.get(conversation_id)
        if existing is not None:
            if not existing.listener.task.done():
                return existing.timeline
            await self.close_conversation(conversation_id)

        # Subscribe before loading so nothing inserted in between is missed; the timeline de-duplicates.
        subscription = self._hub.subscribe(FeedFilter(conversation_id=conversation_id))
        try:
            messages = self._store.load_messages(identity, conversation_id)
        except Exception:
            subscription.unsubscribe()
            raise

        timeline = MessageTimeline(conversation_id)
        timeline.load(messages)
        task = asyncio.create_task(self._run_listener(subscription, self._feed_timeline(subscription, timeline)))
        self._open[conversation_id] = _OpenConversation(timeline=timeline, listener=_Listener(subscription, task))
        logger.info("Conversation opened conversation_id=%s messages=%s", conversation_id, len(timeline))
        return timeline

    async def close_conversation(self, conversation_id: str) -> None:
        opened = self._open.pop(conversation_id, None)
        if opened is None:
            return
        await self._release(opened.listener)
        logger.info("Conversation closed conversation_id=%s", conversation_id)

    def timeline(self, conversation_id: str) -> MessageTimeline | None:
        opened = self._open.get(conversation_id)
        return opened.timeline if opened is not None else None

    def send_message(self, conversation_id: str, content: str) -> MessageRead:
        message = self._store.append_message(self.identity, conversation_id, content)
        opened = self._open.get(conversation_id)
        if opened is not None:
            opened.timeline.push(message)
        outcome = self.merge_engine.apply_message(message)
        if outcome is MergeOutcome.DROPPED_UNKNOWN:
            logger.debug("Sent message to conversation outside the index conversation_id=%s", conversation_id)
        return message

    def mark_read(self, conversation_id: str, at_time: datetime | None = None) -> ReadState:
        state = self._store.mark_read(self.identity, conversation_id, at_time)
        self.index.mark_read(conversation_id, state.read_at, unread_count=state.unread_count)
        return state

    def create_direct(self, friend_id: str) -> ConversationView:
        snapshot = self._store.create_direct(self.identity, friend_id)
        return self.index.upsert(snapshot)

    def send_friend_request(self, target_email: str) -> FriendshipRead:
        return self._store.send_friend_request(self.identity, target_email)

    def accept_friend_request(self, request_id: str) -> FriendshipRead:
        return self._store.accept_friend_request(self.identity, request_id)

    def reject_friend_request(self, request_id: str) -> None:
        self._store.reject_friend_request(self.identity, request_id)

    def friends(self) -> list[FriendEntry]:
        return self._store.list_friends(self.identity)

    def pending_requests(self) -> list[FriendEntry]:
        return self._store.list_pending_requests(self.identity)

    async def _feed_timeline(self, subscription: FeedSubscription, timeline: MessageTimeline) -> None:
        async for event in subscription:
            if subscription.closed:
                break
            timeline.apply(event)

    async def _run_listener(self, subscription: FeedSubscription, consumer: Awaitable[object]) -> None:
        try:
            await consumer
        except TransientError as exc:
            logger.warning("Feed listener lost its stream subscription_id=%s error=%s", subscription.id, exc)
            self.feed_errors.append(exc)

    async def _release(self, listener: _Listener) -> None:
        # Unsubscribing ends the stream, so the listener task finishes on its own.
        listener.subscription.unsubscribe()
        await listener.task
