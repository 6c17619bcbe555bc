"""
Domain layer - Pure business logic without external dependencies.
"""

from .availability import AvailabilityRuleSet, candidate_intervals
from .invite import Confirmation, InvitePayload, build_confirmation
from .models import (
    AvailabilityOverride,
    AvailabilityRule,
    GuestInfo,
    Member,
    OverrideKind,
    Reservation,
    Slot,
    SlotListing,
    TimeRange,
)
from .slot_calculator import SlotCalculator

__all__ = [
    "AvailabilityOverride",
    "AvailabilityRule",
    "AvailabilityRuleSet",
    "Confirmation",
    "GuestInfo",
    "InvitePayload",
    "Member",
    "OverrideKind",
    "Reservation",
    "Slot",
    "SlotCalculator",
    "SlotListing",
    "TimeRange",
    "build_confirmation",
    "candidate_intervals",
]
