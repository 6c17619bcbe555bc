"""
Configuration management using Pydantic models loaded from YAML.
"""

from __future__ import annotations

import logging
from datetime import date, time
from pathlib import Path
from typing import List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .domain.models import (
    END_OF_DAY,
    WEEKDAY_NAMES,
    AvailabilityOverride,
    AvailabilityRule,
    Member,
    OverrideKind,
    validate_timezone,
)
from .services.member_directory import MemberDirectory

DEFAULT_CONFIG_NAME = "teamslots.yaml"


def parse_clock_time(value: Union[str, int, time]) -> time:
    """Parse ``HH:MM``; ``24:00`` means the end of the local day."""
    if isinstance(value, time):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        # PyYAML reads unquoted 10:30 as the base-60 integer 630
        value = f"{value // 60:02d}:{value % 60:02d}"
    if not isinstance(value, str):
        raise ValueError(f"Expected a HH:MM string, got {value!r}")

    text = value.strip()
    if text == "24:00":
        return END_OF_DAY

    try:
        hour_text, minute_text = text.split(":")
        hour, minute = int(hour_text), int(minute_text)
    except ValueError:
        raise ValueError(f"Time must look like HH:MM, got {value!r}") from None

    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Time out of range: {value!r}")
    return time(hour=hour, minute=minute)


class RuleConfig(BaseModel):
    """A recurring weekly availability window."""
    day: int
    start: time
    end: time
    timezone: Optional[str] = None  # Defaults to the member's timezone
    effective_from: Optional[date] = None
    effective_until: Optional[date] = None

    @field_validator("day", mode="before")
    @classmethod
    def validate_day(cls, value: Union[int, str]) -> int:
        """Accept 0..6 (0=Monday) or an English weekday name."""
        if isinstance(value, str) and not value.strip().isdigit():
            names = [name.lower() for name in WEEKDAY_NAMES]
            key = value.strip().lower()
            if key not in names:
                raise ValueError(f"Unknown weekday: {value!r}")
            return names.index(key)
        day = int(value)
        if not 0 <= day <= 6:
            raise ValueError(f"day must be between 0 and 6, got {day}")
        return day

    @field_validator("start", "end", mode="before")
    @classmethod
    def validate_clock(cls, value: Union[str, time]) -> time:
        return parse_clock_time(value)

    def to_rule(self, default_timezone: str) -> AvailabilityRule:
        return AvailabilityRule(
            day_of_week=self.day,
            start_time=self.start,
            end_time=self.end,
            timezone=self.timezone or default_timezone,
            effective_from=self.effective_from,
            effective_until=self.effective_until,
        )


class OverrideConfig(BaseModel):
    """A one-off change of availability on one local date."""
    model_config = ConfigDict(populate_by_name=True)

    on: date = Field(alias="date")
    kind: Literal["add", "remove"]
    start: Optional[time] = None
    end: Optional[time] = None

    @field_validator("start", "end", mode="before")
    @classmethod
    def validate_clock(cls, value: Union[str, time, None]) -> Optional[time]:
        if value is None:
            return None
        return parse_clock_time(value)

    @model_validator(mode="after")
    def validate_add_has_times(self) -> "OverrideConfig":
        """Only removals may cover a whole day implicitly."""
        if self.kind == "add" and (self.start is None or self.end is None):
            raise ValueError("An 'add' override needs start and end times")
        return self

    def to_override(self, timezone: str) -> AvailabilityOverride:
        return AvailabilityOverride.for_date(
            OverrideKind(self.kind),
            self.on,
            timezone,
            start_time=self.start,
            end_time=self.end,
        )


class MemberConfig(BaseModel):
    """Team member configuration."""
    id: str
    name: str
    team: Optional[str] = None
    email: Optional[str] = None
    timezone: str = "UTC"
    external_calendar_ref: Optional[str] = None
    slot_duration_minutes: Optional[int] = None
    active: bool = True
    rules: List[RuleConfig] = Field(default_factory=list)
    overrides: List[OverrideConfig] = Field(default_factory=list)

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, value: str) -> str:
        return validate_timezone(value)

    @field_validator("slot_duration_minutes")
    @classmethod
    def validate_duration(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value <= 0:
            raise ValueError("slot_duration_minutes must be greater than zero")
        return value

    @model_validator(mode="after")
    def validate_rules(self) -> "MemberConfig":
        """Build every rule and override once so malformed ones are rejected at load time."""
        self.availability_rules()
        self.availability_overrides()
        return self

    def availability_rules(self) -> List[AvailabilityRule]:
        return [rule.to_rule(self.timezone) for rule in self.rules]

    def availability_overrides(self) -> List[AvailabilityOverride]:
        return [override.to_override(self.timezone) for override in self.overrides]

    def to_member(self) -> Member:
        return Member(
            id=self.id,
            name=self.name,
            timezone=self.timezone,
            team=self.team,
            email=self.email,
            external_calendar_ref=self.external_calendar_ref,
            slot_duration_minutes=self.slot_duration_minutes,
            active=self.active,
        )


class LedgerConfig(BaseModel):
    """Reservation storage settings."""
    path: Optional[Path] = None  # None keeps reservations in memory
    lock_timeout_seconds: float = 5.0

    @field_validator("lock_timeout_seconds")
    @classmethod
    def validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("lock_timeout_seconds must be greater than zero")
        return value


class BusyCalendarConfig(BaseModel):
    """External busy-calendar source."""
    provider: Literal["none", "file", "graph"] = "none"
    data_file: Optional[Path] = None
    access_token: Optional[str] = None
    timeout_seconds: float = 10.0

    @model_validator(mode="after")
    def validate_provider_settings(self) -> "BusyCalendarConfig":
        if self.provider == "file" and self.data_file is None:
            raise ValueError("busy_calendar.data_file is required for the 'file' provider")
        if self.provider == "graph" and not self.access_token:
            raise ValueError("busy_calendar.access_token is required for the 'graph' provider")
        return self


class InviteConfig(BaseModel):
    """Calendar invite content settings."""
    uid_domain: str = "teamslots.local"
    summary_template: str = "Meeting with {member_name}"
    organizer_email: Optional[str] = None

    @field_validator("summary_template")
    @classmethod
    def validate_template(cls, value: str) -> str:
        try:
            value.format(member_name="", guest_name="")
        except (KeyError, IndexError, ValueError) as exc:
            raise ValueError(f"Invalid summary_template: {exc}") from exc
        return value


class AppConfig(BaseModel):
    """Application configuration."""
    timezone: str = "UTC"
    slot_duration_minutes: int = 30
    booking_window_days: int = 14
    log_level: str = "INFO"
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    busy_calendar: BusyCalendarConfig = Field(default_factory=BusyCalendarConfig)
    invite: InviteConfig = Field(default_factory=InviteConfig)
    invite_dir: Optional[Path] = None
    members: List[MemberConfig] = Field(default_factory=list)

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, value: str) -> str:
        return validate_timezone(value)

    @field_validator("slot_duration_minutes", "booking_window_days")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("members")
    @classmethod
    def validate_members(cls, value: List[MemberConfig]) -> List[MemberConfig]:
        """Ensure member ids are unique."""
        seen: set[str] = set()
        for member in value:
            if member.id in seen:
                raise ValueError(f"Duplicate member id detected: {member.id}")
            seen.add(member.id)
        return value

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Relative paths inside the file are resolved against the file's directory.

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a {DEFAULT_CONFIG_NAME} file."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        config = cls(**data)
        config.resolve_paths(config_path.parent)
        return config

    def resolve_paths(self, base: Path) -> None:
        def resolve(path: Optional[Path]) -> Optional[Path]:
            if path is None or path.is_absolute():
                return path
            return base / path

        self.ledger.path = resolve(self.ledger.path)
        self.busy_calendar.data_file = resolve(self.busy_calendar.data_file)
        self.invite_dir = resolve(self.invite_dir)

    def build_directory(self) -> MemberDirectory:
        """Create a member directory populated with every configured member."""
        directory = MemberDirectory()
        for member_config in self.members:
            directory.add_member(member_config.to_member())
            for rule in member_config.availability_rules():
                directory.add_rule(member_config.id, rule)
            for override in member_config.availability_overrides():
                directory.add_override(member_config.id, override)
        return directory


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for teamslots.yaml in current directory
    config_path = Path.cwd() / DEFAULT_CONFIG_NAME

    if not config_path.exists():
        # Try in the project root (parent of the package)
        config_path = Path(__file__).parent.parent / DEFAULT_CONFIG_NAME

    return config_path
