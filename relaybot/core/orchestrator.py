"""
Bot Orchestrator

Wires the Matrix chat client to the Gemini text client: pairs and connects the
session, registers the event callback, and answers every inbound text message
with the model's reply parts.
"""

import logging
import time
from contextlib import aclosing
from typing import Callable, Optional

from ..config import RelayConfig
from ..exceptions import PairingError
from ..integrations.gemini_client import GeminiClient
from ..integrations.matrix import InboundMessage, MatrixChatClient
from ..integrations.matrix.pairing import CODE
from ..utils.logging_config import get_logger
from ..utils.qr_terminal import render_qr
from .dispatch import TaskSupervisor
from .failure_policy import create_failure_policy

logger = logging.getLogger(__name__)


class BotOrchestrator:
    """Relays chat messages to the generative-text API and sends back the reply."""

    def __init__(
        self,
        chat_client: MatrixChatClient,
        text_client: GeminiClient,
        relay_config: RelayConfig,
        render_code: Callable[[str], None] = render_qr,
    ):
        self.chat = chat_client
        self.text_client = text_client
        self.render_code = render_code
        self.failure_policy = create_failure_policy(relay_config)
        self.supervisor = TaskSupervisor(relay_config.max_concurrent_requests)

    async def start(self) -> None:
        """Pair if needed, connect and start receiving events."""
        if not self.chat.is_paired:
            await self.pair()

        await self.chat.connect()
        self.chat.add_event_handler(self.handle_event)
        logger.info("BotOrchestrator: Listening for messages")

    async def pair(self) -> None:
        """
        Render pairing codes until the chat client reports a terminal event.

        Raises:
            PairingError: If the stream ends without a paired device.
        """
        logger.info("BotOrchestrator: No paired device, starting pairing")
        last_event: Optional[str] = None
        async with aclosing(self.chat.pairing_events()) as events:
            async for event in events:
                last_event = event.event
                if event.event == CODE:
                    self.render_code(event.code)
                elif event.error:
                    logger.info(f"Login event: {event.event} ({event.error})")
                else:
                    logger.info(f"Login event: {event.event}")
                if event.is_terminal:
                    break

        if not self.chat.is_paired:
            raise PairingError(last_event)
        logger.info(f"BotOrchestrator: Paired as {self.chat.user_id}")

    async def run(self) -> None:
        """Block on the chat event stream."""
        await self.chat.run_sync()

    def handle_event(self, event) -> None:
        """Single event callback; schedules message handling and returns at once."""
        if isinstance(event, InboundMessage):
            self.supervisor.spawn(self.handle_message(event), name=f"relay-{event.event_id}")

    async def handle_message(self, message: InboundMessage) -> None:
        log = get_logger(__name__).bind(room_id=message.chat_id, event_id=message.event_id)

        if not message.text or not message.text.strip():
            log.debug("ignoring_message_without_text")
            return

        started = time.monotonic()
        reply = await self.failure_policy.run(
            lambda: self.text_client.generate(message.text),
            context=f"{message.event_id} in {message.chat_id}",
        )
        if reply is None:
            return

        log.info(
            "generation_complete",
            candidates=len(reply.candidates),
            parts=reply.part_count,
            duration_ms=round((time.monotonic() - started) * 1000, 1),
        )

        # Sequential sends keep candidate/part order
        for text in reply.texts():
            result = await self.chat.send_text(message.chat_id, text)
            if not result.get("success"):
                log.warning("send_failed", error=result.get("error"))

    async def stop(self) -> None:
        """Abandon in-flight handlers and disconnect. Safe to call more than once."""
        await self.supervisor.shutdown()
        await self.chat.disconnect()
        try:
            await self.text_client.close()
        except Exception as e:
            logger.warning(f"BotOrchestrator: Error closing Gemini client: {e}")
        logger.info("BotOrchestrator: Stopped")
