from __future__ import annotations

import asyncio

import pytest

from chatcore.core.errors import NotAuthenticatedError, NotFriendsError, TransientError
from chatcore.core.security import Identity
from chatcore.realtime import FeedHub, RealtimeDispatcher, RealtimePublisher
from chatcore.services import friend_service, user_service
from chatcore.sync.session import ChatSession
from chatcore.sync.store import LocalChatStore

ALICE = Identity(user_id="alice", email="alice@example.com")
BOB = Identity(user_id="bob", email="bob@example.com")


def _seed_friends(session_factory) -> None:
    with session_factory() as db:
        for identity in (ALICE, BOB):
            user_service.upsert_profile(db, identity=identity, display_name=identity.user_id)
        request = friend_service.send_request(db, identity=ALICE, target_email="bob@example.com")
        friend_service.accept(db, identity=BOB, request_id=request.id)


def _dispatcher(hub: FeedHub, session_factory) -> RealtimeDispatcher:
    return RealtimeDispatcher(
        publisher=RealtimePublisher(hub),
        session_factory=session_factory,
        poll_interval_sec=0.01,
        batch_size=50,
    )


async def _settle(condition) -> None:
    for _ in range(200):
        if condition():
            return
        await asyncio.sleep(0)


def test_operations_without_identity_fail(database):
    session = ChatSession(identity=None, store=LocalChatStore(database), hub=FeedHub())

    with pytest.raises(NotAuthenticatedError):
        session.bootstrap()
    with pytest.raises(NotAuthenticatedError):
        session.send_message("c1", "hello")
    with pytest.raises(NotAuthenticatedError):
        asyncio.run(session.start())


def test_incoming_message_reaches_conversation_list(database):
    _seed_friends(database)
    store = LocalChatStore(database)

    async def scenario():
        hub = FeedHub()
        dispatcher = _dispatcher(hub, database)
        alice = ChatSession(identity=ALICE, store=store, hub=hub)
        conversation = alice.create_direct("bob")
        assert [view.id for view in alice.bootstrap()] == [conversation.id]
        await alice.start()

        sent = store.append_message(BOB, conversation.id, "hi alice")
        assert await dispatcher.process_once() == 1

        view = alice.index.get(conversation.id)
        assert view is not None
        await _settle(lambda: view.unread_count == 1)
        assert view.unread_count == 1
        assert view.last_message is not None and view.last_message.id == sent.id

        state = alice.mark_read(conversation.id)
        assert state.unread_count == 0
        assert view.unread_count == 0
        await alice.stop()

    asyncio.run(scenario())


def test_events_delivered_after_bootstrap_do_not_recount_unread(database):
    _seed_friends(database)
    store = LocalChatStore(database)

    async def scenario():
        hub = FeedHub()
        dispatcher = _dispatcher(hub, database)
        alice = ChatSession(identity=ALICE, store=store, hub=hub)
        conversation_id = alice.create_direct("bob").id
        await alice.start()

        store.append_message(BOB, conversation_id, "one")
        store.append_message(BOB, conversation_id, "two")
        alice.bootstrap()
        view = alice.index.get(conversation_id)
        assert view is not None
        assert view.unread_count == 2

        assert await dispatcher.process_once() == 2
        for _ in range(20):
            await asyncio.sleep(0)

        view = alice.index.get(conversation_id)
        assert view is not None
        assert view.unread_count == 2
        await alice.stop()

    asyncio.run(scenario())


def test_own_send_echo_is_deduplicated(database):
    _seed_friends(database)
    store = LocalChatStore(database)

    async def scenario():
        hub = FeedHub()
        dispatcher = _dispatcher(hub, database)
        alice = ChatSession(identity=ALICE, store=store, hub=hub)
        conversation_id = alice.create_direct("bob").id
        alice.bootstrap()
        await alice.start()
        timeline = await alice.open_conversation(conversation_id)

        message = alice.send_message(conversation_id, "hello bob")
        assert [item.id for item in timeline] == [message.id]

        await dispatcher.process_once()
        for _ in range(20):
            await asyncio.sleep(0)

        assert [item.id for item in timeline] == [message.id]
        view = alice.index.get(conversation_id)
        assert view is not None
        assert view.unread_count == 0
        assert view.last_message is not None and view.last_message.id == message.id
        await alice.stop()

    asyncio.run(scenario())


def test_open_conversation_loads_history_then_follows_feed(database):
    _seed_friends(database)
    store = LocalChatStore(database)

    async def scenario():
        hub = FeedHub()
        dispatcher = _dispatcher(hub, database)
        alice = ChatSession(identity=ALICE, store=store, hub=hub)
        conversation_id = alice.create_direct("bob").id
        first = store.append_message(BOB, conversation_id, "first")
        await dispatcher.process_once()

        timeline = await alice.open_conversation(conversation_id)
        assert [item.id for item in timeline] == [first.id]
        assert await alice.open_conversation(conversation_id) is timeline

        second = store.append_message(BOB, conversation_id, "second")
        await dispatcher.process_once()
        await _settle(lambda: len(timeline) == 2)
        assert [item.id for item in timeline] == [first.id, second.id]
        assert alice.timeline(conversation_id) is timeline
        await alice.stop()

    asyncio.run(scenario())


def test_closed_conversation_receives_no_further_events(database):
    _seed_friends(database)
    store = LocalChatStore(database)

    async def scenario():
        hub = FeedHub()
        dispatcher = _dispatcher(hub, database)
        alice = ChatSession(identity=ALICE, store=store, hub=hub)
        conversation_id = alice.create_direct("bob").id

        timeline = await alice.open_conversation(conversation_id)
        await alice.close_conversation(conversation_id)
        assert alice.timeline(conversation_id) is None
        assert hub.subscription_count == 0

        store.append_message(BOB, conversation_id, "too late")
        await dispatcher.process_once()
        for _ in range(20):
            await asyncio.sleep(0)
        assert len(timeline) == 0

    asyncio.run(scenario())


def test_lost_feed_is_reported_and_restartable(database):
    _seed_friends(database)
    store = LocalChatStore(database)

    async def scenario():
        hub = FeedHub(max_pending=1)
        alice = ChatSession(identity=ALICE, store=store, hub=hub)
        conversation_id = alice.create_direct("bob").id
        alice.bootstrap()
        await alice.start()

        store.append_message(BOB, conversation_id, "one")
        store.append_message(BOB, conversation_id, "two")
        dispatcher = _dispatcher(hub, database)
        # Both inserts land before the listener runs, overflowing its queue.
        await dispatcher.process_once()
        await _settle(lambda: bool(alice.feed_errors))

        assert len(alice.feed_errors) == 1
        assert isinstance(alice.feed_errors[0], TransientError)

        await alice.start()
        assert hub.subscription_count == 1
        await alice.stop()
        assert hub.subscription_count == 0

    asyncio.run(scenario())


def test_direct_conversation_with_stranger_is_refused(database):
    _seed_friends(database)
    with database() as db:
        user_service.upsert_profile(db, identity=Identity(user_id="carol", email="carol@example.com"))

    alice = ChatSession(identity=ALICE, store=LocalChatStore(database), hub=FeedHub())
    with pytest.raises(NotFriendsError):
        alice.create_direct("carol")
    assert len(alice.conversations()) == 0


def test_friend_passthroughs(database):
    with database() as db:
        for identity in (ALICE, BOB):
            user_service.upsert_profile(db, identity=identity, display_name=identity.user_id)
    store = LocalChatStore(database)
    alice = ChatSession(identity=ALICE, store=store, hub=FeedHub())
    bob = ChatSession(identity=BOB, store=store, hub=FeedHub())

    request = alice.send_friend_request("bob@example.com")
    assert [entry.friendship_id for entry in bob.pending_requests()] == [request.id]

    bob.accept_friend_request(request.id)
    assert [entry.friend.id for entry in alice.friends()] == ["bob"]
    assert bob.pending_requests() == []
