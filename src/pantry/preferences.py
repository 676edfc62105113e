"""
Team preference sources.

A preference source yields the team's members with their dietary tags and
per-person budget. The CSV source reads an exported team sheet with columns
``name``, ``dietary`` (separated by ``;`` or ``|``) and ``budget``.
"""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Optional, Protocol, Union

from .errors import InvalidRequestError
from .money import json_number, to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TeamMember:
    name: str
    dietary: tuple[str, ...] = ()
    budget: Decimal = Decimal("0")

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "dietary": list(self.dietary), "budget": json_number(self.budget)}


def default_team() -> list[TeamMember]:
    return [
        TeamMember("Alice", ("vegan",), Decimal("25")),
        TeamMember("Bob", (), Decimal("30")),
        TeamMember("Charlie", ("gluten-free",), Decimal("20")),
        TeamMember("Diana", ("vegetarian",), Decimal("35")),
        TeamMember("Eve", ("nut-allergy",), Decimal("25")),
    ]


@dataclass
class TeamAnalysis:
    headcount: int
    total_budget: Decimal
    dietary_requirements: list[str] = field(default_factory=list)

    @property
    def average_budget(self) -> Decimal:
        return self.total_budget / self.headcount if self.headcount else Decimal("0")

    @classmethod
    def of(cls, members: Iterable[TeamMember]) -> TeamAnalysis:
        members = list(members)
        requirements: list[str] = []
        for member in members:
            for tag in member.dietary:
                if tag not in requirements:
                    requirements.append(tag)
        return cls(
            headcount=len(members),
            total_budget=sum((m.budget for m in members), Decimal("0")),
            dietary_requirements=requirements,
        )


class PreferenceSource(Protocol):
    def team_members(self) -> list[TeamMember]: ...


class StaticPreferenceSource:
    def __init__(self, members: Optional[Iterable[TeamMember]] = None):
        self._members = list(members) if members is not None else default_team()

    def team_members(self) -> list[TeamMember]:
        return list(self._members)


class CsvPreferenceSource:
    """Reads the team sheet export; falls back to the default team on any read error."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()

    def team_members(self) -> list[TeamMember]:
        try:
            members = self._read()
        except (OSError, csv.Error, KeyError, InvalidRequestError) as e:
            logger.warning("Could not read team preferences from %s, using default team: %s", self.path, e)
            return default_team()
        if not members:
            logger.warning("Team preferences at %s are empty, using default team", self.path)
            return default_team()
        return members

    def _read(self) -> list[TeamMember]:
        members: list[TeamMember] = []
        with open(self.path, newline="") as f:
            for row in csv.DictReader(f):
                name = (row.get("name") or "").strip()
                if not name:
                    continue
                raw_tags = (row.get("dietary") or "").replace("|", ";")
                members.append(TeamMember(
                    name=name,
                    dietary=tuple(t.strip() for t in raw_tags.split(";") if t.strip()),
                    budget=to_decimal((row["budget"] or "0").strip(), f"budget for {name}"),
                ))
        return members
