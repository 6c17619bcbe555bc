"""
Service layer helpers that orchestrate adapters and domain logic.
"""

from .ledger import ReservationLedger, ReservationStoreProtocol, ReserveOutcome
from .member_directory import MemberDirectory
from .reservation_service import BookingState, InviteSettings, ReservationService
from .slot_resolver import BusyCalendarProtocol, SlotCheck, SlotResolver

__all__ = [
    "BookingState",
    "BusyCalendarProtocol",
    "InviteSettings",
    "MemberDirectory",
    "ReservationLedger",
    "ReservationService",
    "ReservationStoreProtocol",
    "ReserveOutcome",
    "SlotCheck",
    "SlotResolver",
]
