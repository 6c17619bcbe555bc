"""
Application service for listing slots and booking them.

A booking attempt moves Requested -> Validating -> {Reserved, Conflict,
Invalid}. Validation runs before the ledger is touched; the ledger's
per-member section is the only point where attempts are ordered.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional

from ..adapters.outbox import ConfirmationOutbox
from ..domain.exceptions import IdempotencyKeyReused, InvalidSlot, ReservationConflict
from ..domain.invite import Confirmation, build_confirmation
from ..domain.models import GuestInfo, Member, Reservation, SlotListing, TimeRange
from .ledger import ReservationLedger
from .member_directory import MemberDirectory
from .slot_resolver import SlotCheck, SlotResolver

logger = logging.getLogger(__name__)


class BookingState(str, Enum):
    REQUESTED = "requested"
    VALIDATING = "validating"
    RESERVED = "reserved"
    CONFLICT = "conflict"
    INVALID = "invalid"


@dataclass(frozen=True)
class InviteSettings:
    uid_domain: str = "teamslots.local"
    summary_template: str = "Meeting with {member_name}"
    organizer_email: Optional[str] = None


class ReservationService:
    """
    Orchestrates slot resolution and reservation commits.

    Keeps the CLI (or any API layer) thin: callers hand in plain values and
    get slot listings or confirmations back.
    """

    def __init__(
        self,
        directory: MemberDirectory,
        resolver: SlotResolver,
        ledger: ReservationLedger,
        *,
        default_slot_duration: timedelta = timedelta(minutes=30),
        outbox: Optional[ConfirmationOutbox] = None,
        invite_settings: Optional[InviteSettings] = None,
        lock_timeout_seconds: Optional[float] = None,
    ) -> None:
        self._directory = directory
        self._resolver = resolver
        self._ledger = ledger
        self._default_slot_duration = default_slot_duration
        self._outbox = outbox
        self._invite_settings = invite_settings or InviteSettings()
        self._lock_timeout = lock_timeout_seconds

    def slot_duration_for(self, member_id: str) -> timedelta:
        """The member's own slot length, or the service default."""
        member = self._directory.get(member_id)
        if member.slot_duration_minutes:
            return timedelta(minutes=member.slot_duration_minutes)
        return self._default_slot_duration

    async def list_slots(
        self,
        member_id: str,
        range_start: datetime,
        range_end: datetime,
        *,
        slot_duration: Optional[timedelta] = None,
        timezone: Optional[str] = None,
    ) -> SlotListing:
        """Slots currently offered for one member."""
        member = self._directory.get_active(member_id)
        return await self._resolver.list_slots(
            member.id,
            range_start,
            range_end,
            slot_duration or self.slot_duration_for(member.id),
            timezone,
        )

    async def list_team_slots(
        self,
        team: str,
        range_start: datetime,
        range_end: datetime,
        *,
        timezone: Optional[str] = None,
    ) -> Dict[str, SlotListing]:
        """One listing per active member of ``team``, keyed by member id."""
        listings: Dict[str, SlotListing] = {}
        for member in self._directory.members_of_team(team):
            listings[member.id] = await self.list_slots(
                member.id, range_start, range_end, timezone=timezone
            )
        return listings

    async def book_slot(
        self,
        member_id: str,
        interval: TimeRange,
        guest: GuestInfo,
        idempotency_key: str,
        *,
        slot_duration: Optional[timedelta] = None,
    ) -> Confirmation:
        """
        Book a slot previously offered by ``list_slots``.

        Raises:
            InvalidSlot: The interval is not a currently offered slot
            ReservationConflict: Someone else holds an overlapping reservation
            LedgerTimeout: Not committed for this caller; retry with the same key
        """
        member = self._directory.get_active(member_id)
        logger.debug("Booking %s for %s: %s", interval, member.id, BookingState.REQUESTED.value)

        # Fast path for a retry whose booking has already committed
        previous = await self._ledger.find_by_key(member.id, idempotency_key)
        if previous is not None:
            if previous.interval != interval or previous.guest_email != guest.email:
                raise IdempotencyKeyReused(
                    f"Idempotency key {idempotency_key!r} was already used for a different booking"
                )
            logger.info("Idempotent replay of %s for %s", previous.id, member.id)
            return self._confirm(previous, member)

        logger.debug("Booking %s for %s: %s", interval, member.id, BookingState.VALIDATING.value)
        duration = slot_duration or self.slot_duration_for(member.id)
        check, degraded = await self._resolver.check_slot(member.id, interval, duration)

        if check is SlotCheck.NOT_OFFERED:
            self._log_outcome(member, interval, BookingState.INVALID)
            raise InvalidSlot(f"{interval} is not an offered slot for {member.id}; fetch slots again")

        # A TAKEN slot may hold this key's own commit; the ledger decides
        try:
            outcome = await self._ledger.reserve_if_free(
                member.id,
                interval,
                guest,
                idempotency_key,
                calendar_verified=not degraded,
                timeout=self._lock_timeout,
            )
        except ReservationConflict:
            self._log_outcome(member, interval, BookingState.CONFLICT)
            raise

        self._log_outcome(member, interval, BookingState.RESERVED)
        confirmation = self._confirm(outcome.reservation, member)
        if self._outbox is not None and not outcome.replayed:
            self._outbox.publish(confirmation)
        return confirmation

    async def cancel(self, member_id: str, reservation_id: str) -> Confirmation:
        """Cancel a reservation and return its (cancelled) confirmation content."""
        member = self._directory.get(member_id)
        reservation = await self._ledger.cancel(member.id, reservation_id, timeout=self._lock_timeout)
        confirmation = self._confirm(reservation, member)
        if self._outbox is not None:
            self._outbox.publish(confirmation)
        return confirmation

    async def reservations(self, member_id: str, *, include_cancelled: bool = False) -> List[Reservation]:
        member = self._directory.get(member_id)
        return await self._ledger.reservations(member.id, include_cancelled=include_cancelled)

    def confirmation_for(self, reservation: Reservation) -> Confirmation:
        return self._confirm(reservation, self._directory.get(reservation.member_id))

    def _confirm(self, reservation: Reservation, member: Member) -> Confirmation:
        settings = self._invite_settings
        return build_confirmation(
            reservation,
            member,
            uid_domain=settings.uid_domain,
            summary_template=settings.summary_template,
            organizer_email=settings.organizer_email,
        )

    @staticmethod
    def _log_outcome(member: Member, interval: TimeRange, state: BookingState) -> None:
        logger.info("Booking %s for %s: %s", interval, member.id, state.value)
