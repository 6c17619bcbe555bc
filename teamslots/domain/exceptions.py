"""
Domain-specific exception hierarchy for the teamslots booking engine.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from .models import Reservation


class TeamslotsError(Exception):
    """Base class for all application-level errors."""


class InvalidInterval(TeamslotsError, ValueError):
    """Raised when a time range is empty, inverted or not timezone-aware."""


class InvalidRule(TeamslotsError, ValueError):
    """Raised when an availability rule or override is malformed."""


class InvalidGuestInfo(TeamslotsError, ValueError):
    """Raised when guest details are missing or malformed."""


class UnknownMember(TeamslotsError, LookupError):
    """Raised when a member does not exist or is disabled."""


class AdapterUnavailable(TeamslotsError):
    """Raised when busy-calendar data cannot be fetched or parsed."""


class InvalidSlot(TeamslotsError):
    """Raised when a requested interval is not a currently offered slot."""


class ReservationConflict(TeamslotsError):
    """Raised when the requested interval overlaps an existing reservation."""

    def __init__(self, message: str, conflicting: Sequence["Reservation"] = ()):
        super().__init__(message)
        self.conflicting = list(conflicting)


class IdempotencyKeyReused(TeamslotsError):
    """Raised when an idempotency key is replayed with different booking details."""


class LedgerTimeout(TeamslotsError, TimeoutError):
    """Raised when a reservation attempt gave up waiting; nothing was committed for the caller."""


class ReservationNotFound(TeamslotsError, LookupError):
    """Raised when a reservation id is unknown for the member."""
