"""
Global test configuration and fixtures.
"""

import asyncio
import time
from typing import Iterable, List, Optional
from unittest.mock import AsyncMock

import pytest

from relaybot.config import RelayConfig
from relaybot.core import BotOrchestrator
from relaybot.integrations.gemini_client import Candidate, GeminiClient, GenerativeReply
from relaybot.integrations.matrix import InboundMessage, PairingEvent
from relaybot.integrations.matrix.pairing import SUCCESS

BOT_USER_ID = "@relaybot:example.org"
ROOM_ID = "!room:example.org"


class FakeChatClient:
    """In-memory stand-in for MatrixChatClient."""

    def __init__(self, paired: bool = True, pairing: Iterable[PairingEvent] = ()):
        self.is_paired = paired
        self.user_id = BOT_USER_ID if paired else None
        self.pairing = list(pairing)
        self.handler = None
        self.connected = False
        self.disconnected = False
        self.sent: List[tuple] = []
        self.fail_sends_for: set = set()

    def pairing_events(self):
        async def stream():
            for event in self.pairing:
                if event.event == SUCCESS:
                    self.is_paired = True
                    self.user_id = BOT_USER_ID
                yield event
        return stream()

    async def connect(self):
        self.connected = True

    def add_event_handler(self, handler):
        self.handler = handler

    async def send_text(self, chat_id: str, text: str):
        self.sent.append((chat_id, text))
        if text in self.fail_sends_for:
            return {"success": False, "error": "M_FORBIDDEN"}
        return {"success": True, "event_id": f"$sent{len(self.sent)}", "room_id": chat_id}

    async def run_sync(self):
        await asyncio.Event().wait()

    async def disconnect(self):
        self.disconnected = True


def make_reply(*candidates: List[str]) -> GenerativeReply:
    """Build a reply whose candidates hold the given text parts."""
    return GenerativeReply(candidates=[Candidate(parts=list(parts)) for parts in candidates])


def make_message(text: Optional[str] = "Hello", event_id: str = "$event1", chat_id: str = ROOM_ID) -> InboundMessage:
    return InboundMessage(
        chat_id=chat_id,
        sender="@alice:example.org",
        event_id=event_id,
        text=text,
        timestamp=time.time(),
    )


async def wait_for_handlers(orchestrator: BotOrchestrator) -> None:
    """Wait until every task spawned by the orchestrator has finished."""
    await asyncio.gather(*list(orchestrator.supervisor._tasks), return_exceptions=True)


@pytest.fixture
def relay_config() -> RelayConfig:
    return RelayConfig(failure_policy="drop", max_concurrent_requests=0)


@pytest.fixture
def chat_client() -> FakeChatClient:
    return FakeChatClient()


@pytest.fixture
def text_client() -> AsyncMock:
    client = AsyncMock(spec=GeminiClient)
    client.generate.return_value = make_reply(["Hi there"])
    return client


@pytest.fixture
def orchestrator(chat_client, text_client, relay_config) -> BotOrchestrator:
    return BotOrchestrator(chat_client, text_client, relay_config, render_code=lambda code: None)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests - fast, isolated tests"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests - test component interactions"
    )
