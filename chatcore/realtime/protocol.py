"""Wire format of the websocket feed.

A client opens any number of named subscriptions, each one a table plus a
conversation filter; every event frame names the subscription it belongs to.

    -> {"op": "subscribe", "sub": "inbox-1", "filter": {"table": "messages", "conversation_id": "..."}}
    <- {"type": "subscribed", "sub": "inbox-1", "filter": {...}}
    <- {"type": "message.inserted", "sub": "inbox-1", "event_id": "...", "table": "messages", "message": {...}}
    -> {"op": "unsubscribe", "sub": "inbox-1"}
    <- {"type": "unsubscribed", "sub": "inbox-1"}
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from chatcore.core.clock import utcnow
from chatcore.realtime.feed import FeedFilter
from chatcore.schemas.events import MESSAGES_TABLE, MessageInserted

SubscriptionName = Annotated[str, Field(min_length=1, max_length=64)]


class ProtocolError(ValueError):
    def __init__(self, code: str, message: str, *, sub: str | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.sub = sub


class _Command(BaseModel):
    model_config = ConfigDict(extra="forbid")


class FilterSpec(_Command):
    table: Literal["messages"] = MESSAGES_TABLE
    conversation_id: str = Field(min_length=1)

    def to_feed_filter(self) -> FeedFilter:
        return FeedFilter(table=self.table, conversation_id=self.conversation_id)


class Subscribe(_Command):
    op: Literal["subscribe"]
    sub: SubscriptionName
    filter: FilterSpec


class Unsubscribe(_Command):
    op: Literal["unsubscribe"]
    sub: SubscriptionName


class Ping(_Command):
    op: Literal["ping"]
    ts: int | None = None


Command = Annotated[Union[Subscribe, Unsubscribe, Ping], Field(discriminator="op")]
_command_adapter: TypeAdapter[Subscribe | Unsubscribe | Ping] = TypeAdapter(Command)


def parse_command(raw_text: str, *, max_bytes: int) -> Subscribe | Unsubscribe | Ping:
    if len(raw_text.encode("utf-8")) > max_bytes:
        raise ProtocolError("INVALID_COMMAND", f"Command exceeds {max_bytes} bytes")
    try:
        return _command_adapter.validate_json(raw_text)
    except ValidationError as exc:
        first = exc.errors(include_url=False)[0]
        location = ".".join(str(part) for part in first["loc"])
        message = f"{location}: {first['msg']}" if location else first["msg"]
        raise ProtocolError("INVALID_COMMAND", message) from exc


class _Frame(BaseModel):
    def dump(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class WelcomeFrame(_Frame):
    type: Literal["connection.welcome"] = "connection.welcome"
    connection_id: str
    user_id: str
    heartbeat_sec: int
    max_subscriptions: int
    server_time: datetime = Field(default_factory=utcnow)


class SubscribedFrame(_Frame):
    type: Literal["subscribed"] = "subscribed"
    sub: str
    filter: FilterSpec


class UnsubscribedFrame(_Frame):
    type: Literal["unsubscribed"] = "unsubscribed"
    sub: str


class PongFrame(_Frame):
    type: Literal["pong"] = "pong"
    ts: int | None = None


class ErrorFrame(_Frame):
    type: Literal["error"] = "error"
    code: str
    message: str
    sub: str | None = None

    @classmethod
    def from_exception(cls, exc: ProtocolError) -> ErrorFrame:
        return cls(code=exc.code, message=exc.message, sub=exc.sub)


def event_frame(sub: str, event: MessageInserted) -> dict[str, Any]:
    return {"sub": sub, **event.model_dump(mode="json")}
