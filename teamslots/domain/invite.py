"""
Confirmation content and calendar-invite payloads.

The content built here is authoritative; delivering it (email, file
export) is up to the notification adapters. Everything is derived from
the Reservation alone, so the same reservation always renders the same
bytes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pendulum import DateTime

from .models import Member, Reservation, WEEKDAY_NAMES

PRODUCT_ID = "-//teamslots//booking engine//EN"
ICS_DATETIME_FORMAT = "YYYYMMDD[T]HHmmss[Z]"
ICS_LINE_LIMIT = 75


@dataclass(frozen=True)
class InvitePayload:
    """Everything a calendar file needs to describe the meeting."""
    uid: str
    summary: str
    start: DateTime
    end: DateTime
    created_at: DateTime
    description: Optional[str] = None
    organizer_email: Optional[str] = None
    attendee_name: Optional[str] = None
    attendee_email: Optional[str] = None
    cancelled: bool = False

    def to_ics(self) -> str:
        """Render the payload as an iCalendar (RFC 5545) document."""
        lines = [
            "BEGIN:VCALENDAR",
            "VERSION:2.0",
            f"PRODID:{PRODUCT_ID}",
            f"METHOD:{'CANCEL' if self.cancelled else 'REQUEST'}",
            "BEGIN:VEVENT",
            f"UID:{self.uid}",
            f"DTSTAMP:{_ics_datetime(self.created_at)}",
            f"DTSTART:{_ics_datetime(self.start)}",
            f"DTEND:{_ics_datetime(self.end)}",
            f"SUMMARY:{escape_text(self.summary)}",
        ]
        if self.description:
            lines.append(f"DESCRIPTION:{escape_text(self.description)}")
        if self.organizer_email:
            lines.append(f"ORGANIZER:mailto:{self.organizer_email}")
        if self.attendee_email:
            cn = f";CN={_quote_param(self.attendee_name)}" if self.attendee_name else ""
            lines.append(f"ATTENDEE{cn};RSVP=TRUE:mailto:{self.attendee_email}")
        lines.append(f"STATUS:{'CANCELLED' if self.cancelled else 'CONFIRMED'}")
        lines.extend(["END:VEVENT", "END:VCALENDAR"])

        return "\r\n".join(fold_line(line) for line in lines) + "\r\n"


@dataclass(frozen=True)
class Confirmation:
    """Result of a successful booking."""
    reservation: Reservation
    member_name: str
    display_timezone: str
    invite: InvitePayload

    @property
    def verified_against_calendar(self) -> bool:
        return self.reservation.calendar_verified

    @property
    def local_start(self) -> DateTime:
        return self.reservation.interval.start.in_timezone(self.display_timezone)

    @property
    def local_end(self) -> DateTime:
        return self.reservation.interval.end.in_timezone(self.display_timezone)

    def display_fields(self) -> Dict[str, str]:
        """Guest-facing strings for the success page or email body."""
        start, end = self.local_start, self.local_end
        return {
            "member": self.member_name,
            "guest": self.reservation.guest_name,
            "date": f"{WEEKDAY_NAMES[start.weekday()]}, {start.format('YYYY-MM-DD')}",
            "time": f"{start.format('HH:mm')} - {end.format('HH:mm')}",
            "timezone": self.display_timezone,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reservation_id": self.reservation.id,
            "member_id": self.reservation.member_id,
            "interval": self.reservation.interval.to_dict(),
            "display": self.display_fields(),
            "uid": self.invite.uid,
            "verified_against_calendar": self.verified_against_calendar,
        }


def build_confirmation(
    reservation: Reservation,
    member: Member,
    *,
    uid_domain: str = "teamslots.local",
    summary_template: str = "Meeting with {member_name}",
    organizer_email: Optional[str] = None,
) -> Confirmation:
    """Build the deterministic confirmation for a reservation."""
    display_timezone = reservation.guest_timezone or member.timezone

    description_parts: List[str] = [
        f"Booked by {reservation.guest_name} <{reservation.guest_email}>.",
    ]
    if reservation.notes:
        description_parts.append(f"Notes: {reservation.notes}")
    if not reservation.calendar_verified:
        description_parts.append("This time was not verified against the external calendar.")

    invite = InvitePayload(
        uid=f"{reservation.id}@{uid_domain}",
        summary=summary_template.format(
            member_name=member.name,
            guest_name=reservation.guest_name,
        ),
        start=reservation.interval.start,
        end=reservation.interval.end,
        created_at=reservation.created_at,
        description="\n".join(description_parts),
        organizer_email=organizer_email or member.email,
        attendee_name=reservation.guest_name,
        attendee_email=reservation.guest_email,
        cancelled=not reservation.is_active,
    )

    return Confirmation(
        reservation=reservation,
        member_name=member.name,
        display_timezone=display_timezone,
        invite=invite,
    )


def escape_text(value: str) -> str:
    """Escape a TEXT value per RFC 5545 section 3.3.11."""
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def fold_line(line: str) -> str:
    """Fold a content line at 75 octets, continuation lines start with a space."""
    encoded = line.encode("utf-8")
    if len(encoded) <= ICS_LINE_LIMIT:
        return line

    parts: List[str] = []
    current = ""
    limit = ICS_LINE_LIMIT
    for char in line:
        if len((current + char).encode("utf-8")) > limit:
            parts.append(current)
            current = char
            limit = ICS_LINE_LIMIT - 1  # room for the leading space
        else:
            current += char
    parts.append(current)
    return "\r\n ".join(parts)


def _ics_datetime(value: DateTime) -> str:
    return value.in_timezone("UTC").format(ICS_DATETIME_FORMAT)


def _quote_param(value: str) -> str:
    if any(ch in value for ch in ",;:"):
        return '"' + value.replace('"', "'") + '"'
    return value
