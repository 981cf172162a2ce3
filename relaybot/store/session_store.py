"""
Session Store

Persists the paired Matrix device (user id, device id, access token) and the
last sync token in a local SQLite database so a restart reconnects without
pairing again.
"""

import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import aiosqlite

from ..exceptions import SessionStoreError

logger = logging.getLogger(__name__)


@dataclass
class Device:
    """Credentials of one paired Matrix device."""

    homeserver: str
    user_id: Optional[str] = None
    device_id: Optional[str] = None
    access_token: Optional[str] = None
    sync_token: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    @property
    def is_paired(self) -> bool:
        return bool(self.user_id and self.device_id and self.access_token)


class SessionStore:
    """SQLite-backed store holding at most one device record."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    async def initialize(self) -> None:
        """Create the database file and schema if they do not exist."""
        try:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    CREATE TABLE IF NOT EXISTS devices (
                        user_id TEXT PRIMARY KEY,
                        device_id TEXT NOT NULL,
                        access_token TEXT NOT NULL,
                        homeserver TEXT NOT NULL,
                        sync_token TEXT,
                        created_at REAL NOT NULL,
                        updated_at REAL NOT NULL
                    )
                    """
                )
                await db.commit()
            # Access tokens live here
            os.chmod(self.db_path, 0o600)
            logger.debug(f"SessionStore: Initialized session database at {self.db_path}")
        except (aiosqlite.Error, OSError) as e:
            raise SessionStoreError(f"Failed to open session database {self.db_path}: {e}") from e

    async def get_first_device(self, homeserver: str) -> Device:
        """
        Return the stored device, or a fresh unpaired one if none is stored.

        Raises:
            SessionStoreError: If the database cannot be read or holds more
                than one device record.
        """
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                async with db.execute(
                    "SELECT user_id, device_id, access_token, homeserver, sync_token, created_at "
                    "FROM devices ORDER BY created_at"
                ) as cursor:
                    rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise SessionStoreError(f"Failed to read devices from {self.db_path}: {e}") from e

        if not rows:
            logger.info("SessionStore: No stored device, a new one must be paired")
            return Device(homeserver=homeserver)

        if len(rows) > 1:
            user_ids = ", ".join(row["user_id"] for row in rows)
            raise SessionStoreError(
                f"Session database {self.db_path} holds {len(rows)} devices ({user_ids}); "
                "expected exactly one"
            )

        row = rows[0]
        if row["homeserver"] != homeserver:
            logger.warning(
                f"SessionStore: Stored device belongs to {row['homeserver']}, "
                f"configured homeserver is {homeserver}; using the stored one"
            )
        logger.debug(f"SessionStore: Loaded device {row['device_id']} for {row['user_id']}")
        return Device(
            homeserver=row["homeserver"],
            user_id=row["user_id"],
            device_id=row["device_id"],
            access_token=row["access_token"],
            sync_token=row["sync_token"],
            created_at=row["created_at"],
        )

    async def save_device(self, device: Device) -> None:
        """Insert or replace the record for `device.user_id`."""
        if not device.is_paired:
            raise SessionStoreError("Refusing to save a device without credentials")

        now = time.time()
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT OR REPLACE INTO devices
                        (user_id, device_id, access_token, homeserver, sync_token, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        device.user_id,
                        device.device_id,
                        device.access_token,
                        device.homeserver,
                        device.sync_token,
                        device.created_at,
                        now,
                    ),
                )
                await db.commit()
            logger.info(f"SessionStore: Saved device {device.device_id} for {device.user_id}")
        except aiosqlite.Error as e:
            raise SessionStoreError(f"Failed to save device {device.device_id}: {e}") from e

    async def update_sync_token(self, user_id: str, sync_token: str) -> None:
        """Remember where the next sync should resume."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    "UPDATE devices SET sync_token = ?, updated_at = ? WHERE user_id = ?",
                    (sync_token, time.time(), user_id),
                )
                await db.commit()
        except aiosqlite.Error as e:
            raise SessionStoreError(f"Failed to store sync token for {user_id}: {e}") from e

    async def delete_device(self, user_id: str) -> None:
        """Forget a device whose credentials the homeserver no longer accepts."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("DELETE FROM devices WHERE user_id = ?", (user_id,))
                await db.commit()
            logger.info(f"SessionStore: Deleted stored device for {user_id}")
        except aiosqlite.Error as e:
            raise SessionStoreError(f"Failed to delete device for {user_id}: {e}") from e
