"""
Read-mostly registry of members and their published availability.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from ..domain.availability import AvailabilityRuleSet
from ..domain.exceptions import InvalidRule, UnknownMember
from ..domain.models import AvailabilityOverride, AvailabilityRule, Member

logger = logging.getLogger(__name__)


class MemberDirectory:
    """
    Holds members plus their rules and overrides.

    Members are never removed, only disabled, so reservations can always
    be resolved back to a member.
    """

    def __init__(self) -> None:
        self._members: Dict[str, Member] = {}
        self._rule_sets: Dict[str, AvailabilityRuleSet] = {}

    def add_member(self, member: Member) -> Member:
        if member.id in self._members:
            raise ValueError(f"Member {member.id!r} already exists")
        self._members[member.id] = member
        self._rule_sets[member.id] = AvailabilityRuleSet(member_id=member.id)
        return member

    def get(self, member_id: str) -> Member:
        """Return a member, active or not."""
        try:
            return self._members[member_id]
        except KeyError:
            raise UnknownMember(f"Unknown member: {member_id!r}") from None

    def get_active(self, member_id: str) -> Member:
        """Return a member that currently accepts bookings."""
        member = self.get(member_id)
        if not member.active:
            raise UnknownMember(f"Member {member_id!r} is disabled")
        return member

    def members(self, include_inactive: bool = False) -> List[Member]:
        return [m for m in self._members.values() if include_inactive or m.active]

    def members_of_team(self, team: str) -> List[Member]:
        return [m for m in self.members() if m.team == team]

    def find(self, identifier: str) -> Optional[Member]:
        """Find a member by id or (case-insensitive) name."""
        if identifier in self._members:
            return self._members[identifier]
        for member in self._members.values():
            if member.name.lower() == identifier.lower():
                return member
        return None

    def disable_member(self, member_id: str) -> Member:
        member = self.get(member_id)
        member.active = False
        logger.info("Member %s disabled", member_id)
        return member

    def add_rule(self, member_id: str, rule: AvailabilityRule) -> None:
        if not isinstance(rule, AvailabilityRule):
            raise InvalidRule(f"Expected an AvailabilityRule, got {type(rule).__name__}")
        self.get(member_id)
        self._rule_sets[member_id].rules.append(rule)

    def add_override(self, member_id: str, override: AvailabilityOverride) -> None:
        if not isinstance(override, AvailabilityOverride):
            raise InvalidRule(f"Expected an AvailabilityOverride, got {type(override).__name__}")
        self.get(member_id)
        self._rule_sets[member_id].overrides.append(override)

    def rule_set(self, member_id: str) -> AvailabilityRuleSet:
        self.get(member_id)
        return self._rule_sets[member_id]
