"""
Main CLI application using Typer.
"""

import asyncio
import logging
import uuid
from datetime import timedelta
from pathlib import Path
from typing import Annotated, Callable, Optional, Tuple

import pendulum
import typer
from pendulum import DateTime
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ..adapters.file_busy_calendar import FileBusyCalendar
from ..adapters.graph_client import GraphBusyCalendar
from ..adapters.outbox import ConfirmationOutbox, IcsDirectorySink, LoggingSink
from ..adapters.reservation_store import InMemoryReservationStore, JsonReservationStore
from ..config import AppConfig, get_default_config_path
from ..domain.exceptions import TeamslotsError
from ..domain.models import END_OF_DAY, GuestInfo, SlotListing, TimeRange
from ..services.ledger import ReservationLedger
from ..services.reservation_service import InviteSettings, ReservationService
from ..services.slot_resolver import SlotResolver

app = typer.Typer(
    name="teamslots",
    help="Publish team availability and book conflict-free meeting slots",
    add_completion=False,
)

console = Console()

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file. Defaults to ./teamslots.yaml"),
]


def build_service(
    config: AppConfig,
    *,
    clock: Optional[Callable[[], DateTime]] = None,
) -> Tuple[ReservationService, ConfirmationOutbox]:
    """Wire directory, busy calendar, ledger and outbox from configuration."""
    directory = config.build_directory()

    store = (
        JsonReservationStore(config.ledger.path)
        if config.ledger.path is not None
        else InMemoryReservationStore()
    )
    clock_kwargs = {"clock": clock} if clock is not None else {}
    ledger = ReservationLedger(store, **clock_kwargs)

    busy_config = config.busy_calendar
    if busy_config.provider == "file":
        busy_calendar = FileBusyCalendar(busy_config.data_file, default_timezone=config.timezone)
    elif busy_config.provider == "graph":
        busy_calendar = GraphBusyCalendar(
            busy_config.access_token, timeout_seconds=busy_config.timeout_seconds
        )
    else:
        busy_calendar = None

    resolver = SlotResolver(
        directory,
        ledger,
        busy_calendar,
        busy_timeout_seconds=busy_config.timeout_seconds,
        **clock_kwargs,
    )
    outbox = ConfirmationOutbox()
    service = ReservationService(
        directory,
        resolver,
        ledger,
        default_slot_duration=timedelta(minutes=config.slot_duration_minutes),
        outbox=outbox,
        invite_settings=InviteSettings(
            uid_domain=config.invite.uid_domain,
            summary_template=config.invite.summary_template,
            organizer_email=config.invite.organizer_email,
        ),
        lock_timeout_seconds=config.ledger.lock_timeout_seconds,
    )
    return service, outbox


def _load_config(config_file: Optional[Path]) -> AppConfig:
    config = AppConfig.load_from_yaml(config_file or get_default_config_path())
    _configure_logging(config.log_level)
    return config


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _parse_date(value: str, tz: str) -> DateTime:
    try:
        return pendulum.from_format(value, "YYYY-MM-DD", tz=tz)
    except ValueError as e:
        raise typer.BadParameter(f"Expected YYYY-MM-DD, got {value!r} ({e})") from e


def _determine_time_range(
    *,
    tz: str,
    window_days: int,
    start_option: Optional[str],
    end_option: Optional[str],
) -> Tuple[DateTime, DateTime]:
    """
    Resolve the search window. The end date is inclusive on the command line.
    """
    if start_option:
        start_date = _parse_date(start_option, tz).start_of("day")
    else:
        start_date = pendulum.now(tz).start_of("day")

    if end_option:
        end_date = _parse_date(end_option, tz).add(days=1).start_of("day")
    else:
        end_date = start_date.add(days=window_days)

    if end_date <= start_date:
        raise typer.BadParameter("--end must not be before --start")
    return start_date, end_date


def _print_listing(listing: SlotListing, title: str) -> None:
    if listing.degraded:
        console.print(
            "[yellow]⚠ External calendar unavailable - slots are unverified.[/yellow]"
        )

    if not listing.slots:
        console.print(f"[yellow]No free slots found for {title}.[/yellow]")
        return

    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Slot", style="bold")
    table.add_column("Start (ISO)", style="dim")
    for slot in listing.slots:
        table.add_row(slot.format_display(), slot.to_dict()["start"])
    console.print(table)


async def _deliver(outbox: ConfirmationOutbox, config: AppConfig) -> None:
    sink = IcsDirectorySink(config.invite_dir) if config.invite_dir else LoggingSink()
    await outbox.drain(sink)


def _clock(value) -> str:
    return "24:00" if value == END_OF_DAY else value.strftime("%H:%M")


def _fail(error: Exception) -> None:
    console.print(f"[bold red]Error:[/bold red] {error}")
    raise typer.Exit(1)


@app.command()
def members(config_file: ConfigOption = None):
    """
    List all configured members.
    """
    try:
        config = _load_config(config_file)
    except (FileNotFoundError, ValueError) as e:
        _fail(e)

    if not config.members:
        console.print("[yellow]No members defined in the config file.[/yellow]")
        return

    table = Table(title="Members", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="bold yellow")
    table.add_column("Name")
    table.add_column("Team", style="dim")
    table.add_column("Timezone", style="dim")
    table.add_column("Rules")
    table.add_column("Active")

    for member in config.members:
        rules = ", ".join(
            f"{rule.to_rule(member.timezone).weekday_name[:3]} "
            f"{_clock(rule.start)}-{_clock(rule.end)}"
            for rule in member.rules
        )
        table.add_row(
            member.id,
            member.name,
            member.team or "",
            member.timezone,
            rules or "-",
            "yes" if member.active else "no",
        )

    console.print(table)


@app.command()
def slots(
    member: Annotated[str, typer.Argument(help="Member id")],
    config_file: ConfigOption = None,
    start: Annotated[Optional[str], typer.Option("--start", help="Start date (YYYY-MM-DD)")] = None,
    end: Annotated[Optional[str], typer.Option("--end", help="Last date, inclusive (YYYY-MM-DD)")] = None,
    duration: Annotated[Optional[int], typer.Option("--duration", "-d", help="Slot length in minutes")] = None,
    tz: Annotated[Optional[str], typer.Option("--tz", help="Display timezone")] = None,
):
    """
    Show bookable slots for a member.

    Examples:

        teamslots slots alice
        teamslots slots alice --start 2024-11-25 --end 2024-11-29 --tz America/New_York
    """
    try:
        config = _load_config(config_file)
        service, _ = build_service(config)
        display_tz = tz or config.timezone
        range_start, range_end = _determine_time_range(
            tz=display_tz,
            window_days=config.booking_window_days,
            start_option=start,
            end_option=end,
        )
        listing = asyncio.run(
            service.list_slots(
                member,
                range_start,
                range_end,
                slot_duration=timedelta(minutes=duration) if duration else None,
                timezone=tz,
            )
        )
    except (TeamslotsError, FileNotFoundError, ValueError) as e:
        _fail(e)

    _print_listing(listing, f"Slots for {member}")


@app.command("team-slots")
def team_slots(
    team: Annotated[str, typer.Argument(help="Team name")],
    config_file: ConfigOption = None,
    start: Annotated[Optional[str], typer.Option("--start", help="Start date (YYYY-MM-DD)")] = None,
    end: Annotated[Optional[str], typer.Option("--end", help="Last date, inclusive (YYYY-MM-DD)")] = None,
    tz: Annotated[Optional[str], typer.Option("--tz", help="Display timezone")] = None,
):
    """
    Show bookable slots for every active member of a team.
    """
    try:
        config = _load_config(config_file)
        service, _ = build_service(config)
        display_tz = tz or config.timezone
        range_start, range_end = _determine_time_range(
            tz=display_tz,
            window_days=config.booking_window_days,
            start_option=start,
            end_option=end,
        )
        listings = asyncio.run(service.list_team_slots(team, range_start, range_end, timezone=tz))
    except (TeamslotsError, FileNotFoundError, ValueError) as e:
        _fail(e)

    if not listings:
        console.print(f"[yellow]No active members in team {team}.[/yellow]")
        return
    for member_id, listing in listings.items():
        _print_listing(listing, f"Slots for {member_id}")


@app.command()
def book(
    member: Annotated[str, typer.Argument(help="Member id")],
    start: Annotated[str, typer.Argument(help="Slot start, ISO 8601 (e.g. 2024-11-25T10:00)")],
    name: Annotated[str, typer.Option("--name", help="Guest name")],
    email: Annotated[str, typer.Option("--email", help="Guest email")],
    config_file: ConfigOption = None,
    notes: Annotated[Optional[str], typer.Option("--notes", help="Message for the member")] = None,
    duration: Annotated[Optional[int], typer.Option("--duration", "-d", help="Slot length in minutes")] = None,
    tz: Annotated[Optional[str], typer.Option("--tz", help="Timezone of START and of the confirmation")] = None,
    key: Annotated[Optional[str], typer.Option("--key", help="Idempotency key; reuse it when retrying")] = None,
):
    """
    Book a slot for a guest.
    """
    try:
        config = _load_config(config_file)
        service, outbox = build_service(config)
        input_tz = tz or config.timezone

        slot_start = pendulum.parse(start, tz=input_tz)
        if not isinstance(slot_start, DateTime):
            raise ValueError(f"Expected a date and time, got {start!r}")

        slot_duration = timedelta(minutes=duration) if duration else None
        length = slot_duration or service.slot_duration_for(member)
        interval = TimeRange(start=slot_start, end=slot_start + length)
        guest = GuestInfo(name=name, email=email, notes=notes, timezone=tz)

        # Same member, start and guest produce the same key, so re-running is safe
        idempotency_key = key or uuid.uuid5(
            uuid.NAMESPACE_URL, f"teamslots:{member}:{interval.start.isoformat()}:{guest.email}"
        ).hex

        async def run():
            confirmation = await service.book_slot(
                member, interval, guest, idempotency_key, slot_duration=slot_duration
            )
            await _deliver(outbox, config)
            return confirmation

        confirmation = asyncio.run(run())
    except (TeamslotsError, FileNotFoundError, ValueError) as e:
        _fail(e)

    display = confirmation.display_fields()
    console.print(Panel.fit(
        f"[bold green]✓ Booking confirmed[/bold green]\n\n"
        f"[bold]With:[/bold] {display['member']}\n"
        f"[bold]When:[/bold] {display['date']} {display['time']} ({display['timezone']})\n"
        f"[bold]Reservation:[/bold] {confirmation.reservation.id}\n"
        f"[bold]Invite UID:[/bold] {confirmation.invite.uid}",
        title="Confirmation",
    ))
    if not confirmation.verified_against_calendar:
        console.print("[yellow]⚠ Booked without checking the external calendar.[/yellow]")


@app.command()
def reservations(
    member: Annotated[str, typer.Argument(help="Member id")],
    config_file: ConfigOption = None,
    show_all: Annotated[bool, typer.Option("--all", help="Include cancelled reservations")] = False,
):
    """
    List reservations for a member.
    """
    try:
        config = _load_config(config_file)
        service, _ = build_service(config)
        records = asyncio.run(service.reservations(member, include_cancelled=show_all))
    except (TeamslotsError, FileNotFoundError, ValueError) as e:
        _fail(e)

    if not records:
        console.print(f"[yellow]No reservations for {member}.[/yellow]")
        return

    table = Table(title=f"Reservations for {member}", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim")
    table.add_column("Interval", style="bold")
    table.add_column("Guest")
    table.add_column("Status")
    for reservation in records:
        table.add_row(
            reservation.id,
            str(reservation.interval),
            f"{reservation.guest_name} <{reservation.guest_email}>",
            "active" if reservation.is_active else "cancelled",
        )
    console.print(table)


@app.command()
def cancel(
    member: Annotated[str, typer.Argument(help="Member id")],
    reservation_id: Annotated[str, typer.Argument(help="Reservation id")],
    config_file: ConfigOption = None,
):
    """
    Cancel a reservation and free its slot.
    """
    try:
        config = _load_config(config_file)
        service, outbox = build_service(config)

        async def run():
            confirmation = await service.cancel(member, reservation_id)
            await _deliver(outbox, config)
            return confirmation

        confirmation = asyncio.run(run())
    except (TeamslotsError, FileNotFoundError, ValueError) as e:
        _fail(e)

    console.print(f"\n[green]✓ Reservation {confirmation.reservation.id} cancelled.[/green]\n")


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]teamslots[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
