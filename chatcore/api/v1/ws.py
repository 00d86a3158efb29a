from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
import logging
from time import monotonic
from typing import Any
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from chatcore.core.errors import NotAuthenticatedError, TransientError
from chatcore.core.security import identity_from_token
from chatcore.core.settings import Settings, get_settings
from chatcore.db.session import open_session
from chatcore.models import User
from chatcore.realtime.feed import FeedHub, FeedSubscription
from chatcore.realtime.protocol import (
    ErrorFrame,
    Ping,
    PongFrame,
    ProtocolError,
    Subscribe,
    SubscribedFrame,
    Unsubscribe,
    UnsubscribedFrame,
    WelcomeFrame,
    event_frame,
    parse_command,
)
from chatcore.services import membership_service

logger = logging.getLogger(__name__)
router = APIRouter(tags=["ws"])


@dataclass
class _Forwarder:
    subscription: FeedSubscription
    task: asyncio.Task[None]


@dataclass
class _Connection:
    websocket: WebSocket
    user_id: str
    hub: FeedHub
    connection_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    forwarders: dict[str, _Forwarder] = field(default_factory=dict)
    command_times: deque[float] = field(default_factory=deque)

    async def send(self, payload: dict[str, Any]) -> None:
        async with self.send_lock:
            await self.websocket.send_json(payload)

    def within_rate_limit(self, settings: Settings) -> bool:
        now = monotonic()
        while self.command_times and now - self.command_times[0] >= settings.ws_rate_limit_window_sec:
            self.command_times.popleft()
        if len(self.command_times) >= settings.ws_rate_limit_max_commands:
            return False
        self.command_times.append(now)
        return True


def _bearer_token(websocket: WebSocket) -> str | None:
    scheme, _, credentials = websocket.headers.get("authorization", "").partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return websocket.query_params.get("access_token") or None


def _authenticate(websocket: WebSocket) -> str | None:
    token = _bearer_token(websocket)
    if token is None:
        return None
    try:
        user_id = identity_from_token(token).user_id
    except NotAuthenticatedError:
        return None
    with open_session() as db:
        if db.get(User, user_id) is None:
            return None
    return user_id


def _is_participant(user_id: str, conversation_id: str) -> bool:
    with open_session() as db:
        allowed = membership_service.participant_conversation_ids(
            db, user_id=user_id, conversation_ids=[conversation_id]
        )
    return conversation_id in allowed


async def _pump(connection: _Connection, sub: str, subscription: FeedSubscription) -> None:
    try:
        try:
            async for event in subscription:
                if subscription.closed:
                    break
                await connection.send(event_frame(sub, event))
        except TransientError as exc:
            logger.warning("Feed lost connection_id=%s sub=%s error=%s", connection.connection_id, sub, exc)
            forwarder = connection.forwarders.get(sub)
            if forwarder is not None and forwarder.subscription is subscription:
                del connection.forwarders[sub]
            frame = ErrorFrame(code="FEED_LOST", message="Feed dropped; resubscribe and bootstrap", sub=sub)
            await connection.send(frame.dump())
    except (WebSocketDisconnect, RuntimeError):
        logger.debug("Pump stopped on closed socket connection_id=%s sub=%s", connection.connection_id, sub)


async def _release(connection: _Connection, sub: str) -> None:
    forwarder = connection.forwarders.pop(sub, None)
    if forwarder is None:
        return
    forwarder.subscription.unsubscribe()
    await forwarder.task


async def _handle_subscribe(connection: _Connection, command: Subscribe, settings: Settings) -> dict[str, Any]:
    if command.sub in connection.forwarders:
        raise ProtocolError("DUPLICATE_SUBSCRIPTION", "Subscription name already in use", sub=command.sub)
    if len(connection.forwarders) >= settings.ws_max_subscriptions_per_connection:
        raise ProtocolError("SUBSCRIPTION_LIMIT", "Too many open subscriptions", sub=command.sub)

    conversation_id = command.filter.conversation_id
    if not _is_participant(connection.user_id, conversation_id):
        raise ProtocolError("FORBIDDEN_CONVERSATION", "Not a participant of this conversation", sub=command.sub)

    try:
        subscription = connection.hub.subscribe(command.filter.to_feed_filter())
    except TransientError as exc:
        raise ProtocolError("FEED_UNAVAILABLE", exc.message, sub=command.sub) from exc
    task = asyncio.create_task(_pump(connection, command.sub, subscription))
    connection.forwarders[command.sub] = _Forwarder(subscription=subscription, task=task)
    logger.debug(
        "WebSocket subscribed connection_id=%s sub=%s conversation_id=%s",
        connection.connection_id,
        command.sub,
        conversation_id,
    )
    return SubscribedFrame(sub=command.sub, filter=command.filter).dump()


async def _dispatch(connection: _Connection, raw_text: str, settings: Settings) -> dict[str, Any]:
    if not connection.within_rate_limit(settings):
        raise ProtocolError("RATE_LIMITED", "Command rate limit exceeded")
    command = parse_command(raw_text, max_bytes=settings.ws_max_command_bytes)
    if isinstance(command, Ping):
        return PongFrame(ts=command.ts).dump()
    if isinstance(command, Subscribe):
        return await _handle_subscribe(connection, command, settings)
    if isinstance(command, Unsubscribe):
        # unknown names are acknowledged too; unsubscribing is idempotent
        await _release(connection, command.sub)
        return UnsubscribedFrame(sub=command.sub).dump()
    raise ProtocolError("INVALID_COMMAND", "Unsupported command")


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    settings = get_settings()
    user_id = _authenticate(websocket)
    if user_id is None:
        await websocket.close(code=1008)
        return

    hub: FeedHub | None = getattr(websocket.app.state, "feed_hub", None)
    if hub is None:
        await websocket.close(code=1011)
        return

    await websocket.accept()
    connection = _Connection(websocket=websocket, user_id=user_id, hub=hub)
    logger.info("WebSocket opened connection_id=%s user_id=%s", connection.connection_id, user_id)
    welcome = WelcomeFrame(
        connection_id=connection.connection_id,
        user_id=user_id,
        heartbeat_sec=settings.ws_heartbeat_sec,
        max_subscriptions=settings.ws_max_subscriptions_per_connection,
    )
    await connection.send(welcome.dump())

    try:
        while True:
            try:
                raw_text = await asyncio.wait_for(websocket.receive_text(), timeout=settings.ws_idle_timeout_sec)
            except (asyncio.TimeoutError, WebSocketDisconnect):
                break
            try:
                reply = await _dispatch(connection, raw_text, settings)
            except ProtocolError as exc:
                reply = ErrorFrame.from_exception(exc).dump()
            await connection.send(reply)
    finally:
        for sub in list(connection.forwarders):
            await _release(connection, sub)
        try:
            await websocket.close()
        except (WebSocketDisconnect, RuntimeError):
            logger.debug("WebSocket already closed connection_id=%s", connection.connection_id)
        logger.info("WebSocket closed connection_id=%s user_id=%s", connection.connection_id, user_id)
