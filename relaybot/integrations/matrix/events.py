"""
Matrix Event Translation

Turns nio room events into the transport-neutral InboundMessage the
orchestrator consumes.
"""

from dataclasses import dataclass
from typing import Optional

from nio import MatrixRoom, RoomMessage, RoomMessageText


@dataclass(frozen=True)
class InboundMessage:
    """A message received in a chat, consumed once by the orchestrator."""

    chat_id: str
    sender: str
    event_id: str
    text: Optional[str]
    timestamp: float


def inbound_from_event(room: MatrixRoom, event: RoomMessage) -> InboundMessage:
    """Build an InboundMessage; `text` is None for anything but m.text."""
    text = event.body if isinstance(event, RoomMessageText) else None
    return InboundMessage(
        chat_id=room.room_id,
        sender=event.sender,
        event_id=event.event_id,
        text=text,
        timestamp=event.server_timestamp / 1000.0,
    )
