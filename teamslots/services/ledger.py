"""
The reservation ledger: per-member serialized, conflict-checked commits.

Every mutation of a member's reservations happens inside that member's
exclusive section (an ``asyncio.Lock`` keyed by member id). Unrelated
members never wait on each other.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, TypeVar

import pendulum
from pendulum import DateTime

from ..domain.exceptions import (
    IdempotencyKeyReused,
    LedgerTimeout,
    ReservationConflict,
    ReservationNotFound,
)
from ..domain.models import GuestInfo, Reservation, TimeRange, to_utc

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReservationStoreProtocol(Protocol):
    """Storage needed by the ledger. Implementations need no locking of their own."""

    async def load(self, member_id: str) -> List[Reservation]:
        ...

    async def save(self, member_id: str, reservations: List[Reservation]) -> None:
        ...


@dataclass(frozen=True)
class ReserveOutcome:
    """The committed reservation and whether this call replayed an earlier one."""
    reservation: Reservation
    replayed: bool = False


def _utc_now() -> DateTime:
    return pendulum.now("UTC")


def _new_reservation_id() -> str:
    return uuid.uuid4().hex


class ReservationLedger:
    """
    Durable store of confirmed reservations with atomic reserve-if-free.

    Guarantees, per member:
    - no two successful reserves overlap (half-open overlap test)
    - a replayed idempotency key returns the original reservation
    - a caller that times out leaves either a full commit or nothing
    """

    def __init__(
        self,
        store: ReservationStoreProtocol,
        *,
        clock: Callable[[], DateTime] = _utc_now,
        id_factory: Callable[[], str] = _new_reservation_id,
    ) -> None:
        self._store = store
        self._clock = clock
        self._id_factory = id_factory
        self._sections: Dict[str, asyncio.Lock] = {}

    def _section(self, member_id: str) -> asyncio.Lock:
        # Lazily created; no await between lookup and insert, so no race
        section = self._sections.get(member_id)
        if section is None:
            section = self._sections[member_id] = asyncio.Lock()
        return section

    async def reserve_if_free(
        self,
        member_id: str,
        interval: TimeRange,
        guest: GuestInfo,
        idempotency_key: str,
        *,
        calendar_verified: bool = True,
        timeout: Optional[float] = None,
    ) -> ReserveOutcome:
        """
        Commit a reservation unless it overlaps an active one.

        Raises:
            ReservationConflict: The interval overlaps an active reservation
            IdempotencyKeyReused: The key was used for a different booking
            LedgerTimeout: The caller stopped waiting; retry with the same key
        """
        if not idempotency_key:
            raise ValueError("idempotency_key is required")

        async def commit() -> ReserveOutcome:
            existing = await self._store.load(member_id)

            # Idempotency first, so a retry never races into a conflict
            for reservation in existing:
                if reservation.idempotency_key == idempotency_key:
                    if reservation.interval != interval or reservation.guest_email != guest.email:
                        raise IdempotencyKeyReused(
                            f"Idempotency key {idempotency_key!r} was already used for a different booking"
                        )
                    logger.info(
                        "Replaying reservation %s for key %s", reservation.id, idempotency_key
                    )
                    return ReserveOutcome(reservation=reservation, replayed=True)

            conflicts = [
                reservation
                for reservation in existing
                if reservation.is_active and reservation.interval.overlaps(interval)
            ]
            if conflicts:
                raise ReservationConflict(
                    f"{interval} overlaps an existing reservation for {member_id}",
                    conflicting=conflicts,
                )

            reservation = Reservation(
                id=self._id_factory(),
                member_id=member_id,
                interval=interval,
                guest_name=guest.name,
                guest_email=guest.email,
                created_at=to_utc(self._clock()),
                idempotency_key=idempotency_key,
                notes=guest.notes,
                guest_timezone=guest.timezone,
                calendar_verified=calendar_verified,
            )
            updated = sorted(existing + [reservation], key=lambda r: (r.interval.start, r.created_at))
            await self._store.save(member_id, updated)
            logger.info("Reserved %s for %s (reservation %s)", interval, member_id, reservation.id)
            return ReserveOutcome(reservation=reservation)

        return await self._run_exclusive(member_id, commit, timeout)

    async def cancel(
        self,
        member_id: str,
        reservation_id: str,
        *,
        timeout: Optional[float] = None,
    ) -> Reservation:
        """Mark a reservation cancelled, freeing its interval. Cancelling twice is a no-op."""

        async def commit() -> Reservation:
            existing = await self._store.load(member_id)
            for index, reservation in enumerate(existing):
                if reservation.id != reservation_id:
                    continue
                if not reservation.is_active:
                    return reservation
                cancelled = reservation.cancel(self._clock())
                existing[index] = cancelled
                await self._store.save(member_id, existing)
                logger.info("Cancelled reservation %s for %s", reservation_id, member_id)
                return cancelled
            raise ReservationNotFound(f"No reservation {reservation_id!r} for member {member_id!r}")

        return await self._run_exclusive(member_id, commit, timeout)

    async def find_by_key(self, member_id: str, idempotency_key: str) -> Optional[Reservation]:
        """Unlocked lookup; the authoritative check is repeated inside the section."""
        for reservation in await self._store.load(member_id):
            if reservation.idempotency_key == idempotency_key:
                return reservation
        return None

    async def reservations(
        self,
        member_id: str,
        *,
        include_cancelled: bool = False,
    ) -> List[Reservation]:
        """Reservations for a member, ordered by start time."""
        records = await self._store.load(member_id)
        return sorted(
            (r for r in records if include_cancelled or r.is_active),
            key=lambda r: r.interval.start,
        )

    async def active_between(self, member_id: str, window: TimeRange) -> List[TimeRange]:
        """Intervals of active reservations overlapping ``window``."""
        return [
            r.interval
            for r in await self.reservations(member_id)
            if r.interval.overlaps(window)
        ]

    async def _run_exclusive(
        self,
        member_id: str,
        operation: Callable[[], Awaitable[T]],
        timeout: Optional[float],
    ) -> T:
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        section = self._section(member_id)

        try:
            await asyncio.wait_for(section.acquire(), timeout)
        except asyncio.TimeoutError:
            raise LedgerTimeout(
                f"Timed out waiting for the reservation section of {member_id}; nothing was committed"
            ) from None

        # The commit runs as its own task: a caller giving up cannot interrupt
        # it half way, and the section is released only once it finishes.
        task = asyncio.ensure_future(self._locked(section, operation))
        task.add_done_callback(_consume_orphaned_result)

        remaining = None if deadline is None else max(deadline - loop.time(), 0.0)
        try:
            return await asyncio.wait_for(asyncio.shield(task), remaining)
        except asyncio.TimeoutError:
            raise LedgerTimeout(
                f"Timed out waiting for storage for {member_id}; retry with the same idempotency key"
            ) from None

    @staticmethod
    async def _locked(section: asyncio.Lock, operation: Callable[[], Awaitable[T]]) -> T:
        try:
            return await operation()
        finally:
            section.release()


def _consume_orphaned_result(task: "asyncio.Future[object]") -> None:
    # Marks the exception as retrieved when the waiting caller already left
    if not task.cancelled() and task.exception() is not None:
        logger.debug("Reservation commit finished with %r", task.exception())
