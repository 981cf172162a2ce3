"""
Matrix Message Operations

Handles sending text replies to Matrix rooms.
"""

import logging
from typing import Any, Dict

from nio import AsyncClient, RoomSendResponse

from ...utils.markdown_utils import format_for_matrix

logger = logging.getLogger(__name__)


class MatrixMessageOperations:
    """Sends reply parts to Matrix rooms."""

    def __init__(self, client: AsyncClient):
        self.client = client

    async def send_text(self, room_id: str, content: str) -> Dict[str, Any]:
        """Send `content` (markdown) as an m.text message with an HTML body."""
        formatted_parts = format_for_matrix(content)

        message_content = {
            "msgtype": "m.text",
            "body": formatted_parts["plain"] or content,
            "format": "org.matrix.custom.html",
            "formatted_body": formatted_parts["html"],
        }

        try:
            response = await self.client.room_send(
                room_id=room_id,
                message_type="m.room.message",
                content=message_content,
                ignore_unverified_devices=True,
            )
        except Exception as e:
            error_msg = f"Error sending message to {room_id}: {e}"
            logger.error(f"MatrixMessageOps: {error_msg}")
            return {"success": False, "error": error_msg}

        if isinstance(response, RoomSendResponse):
            logger.debug(f"MatrixMessageOps: Message sent to {room_id}: {formatted_parts['plain'][:100]}")
            return {
                "success": True,
                "event_id": response.event_id,
                "room_id": room_id,
            }

        error_msg = f"Failed to send message: {response}"
        logger.error(f"MatrixMessageOps: {error_msg}")
        return {"success": False, "error": error_msg}
