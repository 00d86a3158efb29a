from __future__ import annotations

import json
import logging

from chatcore.models import RealtimeOutboxEvent
from chatcore.realtime.feed import FeedHub
from chatcore.schemas.events import MESSAGES_TABLE, MessageInserted
from chatcore.schemas.messages import MessageRead

logger = logging.getLogger(__name__)


class RealtimePublisher:
    def __init__(self, hub: FeedHub) -> None:
        self._hub = hub

    async def publish(self, event: RealtimeOutboxEvent) -> int:
        if event.table_name != MESSAGES_TABLE:
            raise ValueError(f"Unsupported realtime table: {event.table_name}")

        decoded_row = json.loads(event.row_json)
        if not isinstance(decoded_row, dict):
            raise ValueError("Realtime event row_json must decode to an object")

        inserted = MessageInserted(event_id=event.event_id, message=MessageRead.model_validate(decoded_row))
        if inserted.conversation_id != event.conversation_id:
            raise ValueError("Realtime event row does not belong to its conversation")

        delivered = await self._hub.publish(inserted)
        logger.debug(
            "Realtime event published event_id=%s type=%s conversation_id=%s delivered=%s",
            event.event_id,
            event.event_type,
            event.conversation_id,
            delivered,
        )
        return delivered
