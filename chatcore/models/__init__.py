from chatcore.models.conversation import Conversation, ConversationParticipant, ReadMarker
from chatcore.models.friendship import Friendship
from chatcore.models.message import Message
from chatcore.models.realtime_outbox_event import RealtimeOutboxEvent
from chatcore.models.user import User

__all__ = [
    "Conversation",
    "ConversationParticipant",
    "Friendship",
    "Message",
    "ReadMarker",
    "RealtimeOutboxEvent",
    "User",
]
