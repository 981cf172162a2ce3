"""
Matrix integration package.

- client: connection, event delivery and sending (MatrixChatClient)
- pairing: first-time device pairing by password or SSO code
- events: translation of nio room events into InboundMessage
- messages: text message sending with markdown formatting
"""

from .client import MatrixChatClient
from .events import InboundMessage
from .pairing import PairingEvent

__all__ = ["MatrixChatClient", "InboundMessage", "PairingEvent"]
