"""
Matrix Chat Client

Wraps nio.AsyncClient for the relay: pairing a new device, reconnecting with
stored credentials, delivering inbound room messages to a single handler,
sending replies and keeping the sync token in the session store.
"""

import logging
from pathlib import Path
from typing import AsyncIterator, Callable, Optional

from nio import (
    AsyncClient,
    AsyncClientConfig,
    InviteMemberEvent,
    JoinResponse,
    LoginResponse,
    MatrixRoom,
    MegolmEvent,
    RoomMessage,
    SyncResponse,
    WhoamiResponse,
)
from nio.crypto import ENCRYPTION_ENABLED
from nio.exceptions import LocalProtocolError

from ...config import MatrixConfig, PairingConfig
from ...exceptions import ChatConnectionError, ConfigurationError, SessionStoreError
from ...store import Device, SessionStore
from .events import InboundMessage, inbound_from_event
from .messages import MatrixMessageOperations
from .pairing import PairingEvent, PasswordPairing, SsoPairing

logger = logging.getLogger(__name__)

EventHandler = Callable[[InboundMessage], None]


class MatrixChatClient:
    """Matrix connection used by the orchestrator."""

    def __init__(
        self,
        config: MatrixConfig,
        pairing_config: PairingConfig,
        device: Device,
        store: SessionStore,
        client: Optional[AsyncClient] = None,
        store_path: Optional[str] = None,
    ):
        """
        Args:
            store_path: Directory for nio's encryption key store. Encrypted
                rooms can only be read when it is set and python-olm is
                installed.
        """
        self.config = config
        self.pairing_config = pairing_config
        self.device = device
        self.store = store
        if client is None:
            encryption = use_encryption(config, store_path)
            if store_path:
                Path(store_path).mkdir(parents=True, exist_ok=True)
            client = AsyncClient(
                device.homeserver,
                user=device.user_id or config.user_id or "",
                device_id=device.device_id or "",
                store_path=store_path or "",
                # The session store owns the sync token
                config=AsyncClientConfig(encryption_enabled=encryption, store_sync_tokens=False),
            )
        self.client = client
        self.message_ops = MatrixMessageOperations(self.client)

        self._handler: Optional[EventHandler] = None

    @property
    def is_paired(self) -> bool:
        return self.device.is_paired

    @property
    def user_id(self) -> Optional[str]:
        return self.device.user_id

    def pairing_events(self) -> AsyncIterator[PairingEvent]:
        """Stream of pairing events; password login if one is configured, SSO otherwise."""
        if self.config.password:
            if not self.config.user_id:
                raise ConfigurationError("MATRIX_USER_ID is required for password pairing")
            strategy = PasswordPairing(
                self.client, self.config.password, self.config.device_name, self._on_login
            )
        else:
            strategy = SsoPairing(
                self.client, self.pairing_config, self.config.device_name, self._on_login
            )
        return strategy.events()

    async def _on_login(self, response: LoginResponse) -> None:
        device = Device(
            homeserver=self.device.homeserver,
            user_id=response.user_id,
            device_id=response.device_id,
            access_token=response.access_token,
        )
        await self.store.save_device(device)
        self.device = device

    async def connect(self) -> None:
        """
        Restore the stored login, verify it and run the initial sync.

        Raises:
            ChatConnectionError: If the credentials are rejected or the
                homeserver cannot be reached.
        """
        if not self.device.is_paired:
            raise ChatConnectionError("Cannot connect: no paired device")

        # Already logged in when pairing ran in this process
        if self.client.access_token != self.device.access_token:
            # Also opens the key store for this device when encryption is on
            self.client.restore_login(
                self.device.user_id, self.device.device_id, self.device.access_token
            )

        try:
            whoami = await self.client.whoami()
        except Exception as e:
            raise ChatConnectionError(f"Cannot reach {self.device.homeserver}: {e}") from e

        if not isinstance(whoami, WhoamiResponse):
            if getattr(whoami, "status_code", None) == "M_UNKNOWN_TOKEN":
                # Next start pairs again instead of failing forever
                logger.warning("MatrixChatClient: Stored access token was rejected, forgetting device")
                await self.store.delete_device(self.device.user_id)
            raise ChatConnectionError(f"Credential check failed: {whoami}")

        if whoami.user_id != self.device.user_id:
            raise ChatConnectionError(
                f"Access token belongs to {whoami.user_id}, expected {self.device.user_id}"
            )

        self.client.add_response_callback(self._on_sync, SyncResponse)

        try:
            response = await self.client.sync(
                timeout=0, since=self.device.sync_token, full_state=True
            )
        except Exception as e:
            raise ChatConnectionError(f"Initial sync failed: {e}") from e
        if not isinstance(response, SyncResponse):
            raise ChatConnectionError(f"Initial sync failed: {response}")

        # Invites from the initial sync are joined here, later ones by the callback
        if self.config.auto_join_invites:
            for room_id in list(self.client.invited_rooms):
                await self._join(room_id)
        self.client.add_event_callback(self._on_invite, InviteMemberEvent)

        logger.info(
            f"MatrixChatClient: Connected as {self.device.user_id} "
            f"(device {self.device.device_id}), {len(self.client.rooms)} joined room(s)"
        )

    def add_event_handler(self, handler: EventHandler) -> None:
        """
        Register the single callback that receives inbound messages.

        Call after connect(): only events from syncs that follow the initial
        one are delivered, so timeline backlog never reaches the handler.
        """
        if self._handler is not None:
            raise RuntimeError("An event handler is already registered")
        self._handler = handler
        self.client.add_event_callback(self._on_room_message, RoomMessage)
        self.client.add_event_callback(self._on_undecryptable, MegolmEvent)

    async def _on_room_message(self, room: MatrixRoom, event: RoomMessage) -> None:
        if event.sender == self.client.user_id:
            return
        if self._handler:
            self._handler(inbound_from_event(room, event))

    async def _on_undecryptable(self, room: MatrixRoom, event: MegolmEvent) -> None:
        if event.sender == self.client.user_id:
            return
        if not getattr(self.client, "olm", None):
            logger.warning(
                f"MatrixChatClient: Ignoring encrypted message {event.event_id} in {room.room_id}; "
                "encryption support is not enabled"
            )
            return

        logger.warning(
            f"MatrixChatClient: Cannot decrypt {event.event_id} from {event.sender} "
            f"in {room.room_id}, requesting the room key"
        )
        try:
            await self.client.request_room_key(event)
        except LocalProtocolError as e:
            # Key for this session was already requested
            logger.debug(f"MatrixChatClient: {e}")

    async def _on_invite(self, room: MatrixRoom, event: InviteMemberEvent) -> None:
        if not self.config.auto_join_invites:
            return
        if event.state_key != self.client.user_id or event.membership != "invite":
            return
        logger.info(f"MatrixChatClient: Received invite to {room.room_id} from {event.sender}")
        await self._join(room.room_id)

    async def _join(self, room_id: str) -> None:
        response = await self.client.join(room_id)
        if isinstance(response, JoinResponse):
            logger.info(f"MatrixChatClient: Joined {room_id}")
        else:
            logger.warning(f"MatrixChatClient: Could not join {room_id}: {response}")

    async def _on_sync(self, response: SyncResponse) -> None:
        try:
            await self.store.update_sync_token(self.device.user_id, response.next_batch)
        except SessionStoreError as e:
            logger.warning(f"MatrixChatClient: {e}")
            return
        self.device.sync_token = response.next_batch

    async def send_text(self, chat_id: str, text: str):
        return await self.message_ops.send_text(chat_id, text)

    async def run_sync(self) -> None:
        """Sync until cancelled; returns or raises only if the loop dies."""
        await self.client.sync_forever(timeout=self.config.sync_timeout_ms)

    async def disconnect(self) -> None:
        """Close the HTTP session. Credentials stay valid for the next start."""
        try:
            await self.client.close()
        except Exception as e:
            logger.warning(f"MatrixChatClient: Error closing client: {e}")
        logger.info("MatrixChatClient: Disconnected")


def use_encryption(config: MatrixConfig, store_path: Optional[str]) -> bool:
    """Whether the nio client should be built with end-to-end encryption."""
    if not config.encryption_enabled:
        return False
    if not ENCRYPTION_ENABLED:
        logger.warning(
            "MatrixChatClient: python-olm is not installed, encrypted rooms cannot be read "
            "(install matrix-nio[e2e] or set MATRIX_ENCRYPTION_ENABLED=false)"
        )
        return False
    if not store_path:
        logger.warning("MatrixChatClient: No key store path set, encryption disabled")
        return False
    return True
