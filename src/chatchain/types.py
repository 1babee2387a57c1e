"""
Core types for chatchain.

This module defines the small shared vocabulary used throughout the system:
- User-facing reply strings
- Enums for Telegram chat kinds and member statuses
- Helper functions for ID generation and timestamps
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from uuid6 import uuid7

ChatId = int

NOTHING_LEARNT = "[no phrases learnt]"
COMMAND_FAILED = "Command failed, please try again later."
DATABASE_CLEARED = "Database cleared."
LEARNING_ENABLED = "Learning enabled."
LEARNING_DISABLED = "Learning disabled."
INSUFFICIENT_PERMISSIONS = (
    "Insufficient permissions! Did you remember to add me as an admin?"
)


def generate_id(prefix: str = "") -> str:
    """Generate a time-ordered unique ID using UUID7.

    Args:
        prefix: Optional prefix for the ID (e.g., "upd")

    Returns:
        A unique ID string, optionally prefixed.
    """
    uid = str(uuid7())
    return f"{prefix}_{uid}" if prefix else uid


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


class ChatKind(str, Enum):
    """Telegram chat types."""

    PRIVATE = "private"
    GROUP = "group"
    SUPERGROUP = "supergroup"
    CHANNEL = "channel"


class MemberStatus(str, Enum):
    """Telegram chat member statuses."""

    CREATOR = "creator"
    ADMINISTRATOR = "administrator"
    MEMBER = "member"
    RESTRICTED = "restricted"
    LEFT = "left"
    KICKED = "kicked"

    @property
    def is_admin(self) -> bool:
        return self in (MemberStatus.CREATOR, MemberStatus.ADMINISTRATOR)
