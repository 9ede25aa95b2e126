"""Models module exporting all database models."""

from .group import WaitlistGroup
from .waitlist import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    ActorRole,
    GroupKey,
    WaitlistEntry,
    WaitlistStatus,
)

__all__ = [
    "WaitlistEntry",
    "WaitlistStatus",
    "WaitlistGroup",
    "GroupKey",
    "ActorRole",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
]
