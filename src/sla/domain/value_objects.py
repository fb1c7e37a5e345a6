"""
SLA Value Objects
==================

Immutable value objects for SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.

Two families live here:
- Dataclass value objects used by the engine (BusinessCalendar, SLATarget,
  EscalationLevel, StatusThresholds, EscalationPolicy). They validate on
  construction and raise ConfigurationException, never fall back to defaults.
- Pydantic documents describing the per-scope configuration file, each with
  a converter to the matching value object.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field

from src.config import ResolutionType
from src.core.exceptions import ConfigurationException


WEEKDAY_NAMES = {
    "mon": 0, "monday": 0,
    "tue": 1, "tuesday": 1,
    "wed": 2, "wednesday": 2,
    "thu": 3, "thursday": 3,
    "fri": 4, "friday": 4,
    "sat": 5, "saturday": 5,
    "sun": 6, "sunday": 6,
}


def parse_weekdays(values: Iterable[Union[int, str]]) -> FrozenSet[int]:
    """
    Normalise working weekdays to Python weekday numbers (Monday=0).

    Accepts integers 0-6 or English day names ("mon", "Tuesday").
    """
    days = set()
    for value in values:
        if isinstance(value, int):
            if not 0 <= value <= 6:
                raise ConfigurationException(f"Invalid weekday number: {value}")
            days.add(value)
            continue
        key = str(value).strip().lower()
        if key not in WEEKDAY_NAMES:
            raise ConfigurationException(f"Invalid weekday name: {value!r}")
        days.add(WEEKDAY_NAMES[key])
    return frozenset(days)


def parse_time(value: Union[str, time]) -> time:
    """Parse "HH:MM" (or "HH:MM:SS") into a time."""
    if isinstance(value, time):
        return value
    try:
        return time.fromisoformat(str(value))
    except ValueError as e:
        raise ConfigurationException(f"Invalid time of day: {value!r}") from e


@dataclass(frozen=True)
class BusinessCalendar:
    """
    Working-hours calendar for one organizational scope.

    The daily window is expressed in local wall-clock time of `timezone`.
    """
    daily_start: time
    daily_end: time
    working_weekdays: FrozenSet[int]
    timezone: str = "UTC"

    def __post_init__(self):
        if self.daily_end <= self.daily_start:
            raise ConfigurationException(
                "Calendar daily_end must be after daily_start",
                {"daily_start": self.daily_start.isoformat(), "daily_end": self.daily_end.isoformat()}
            )
        if not self.working_weekdays:
            raise ConfigurationException("Calendar must have at least one working weekday")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationException(f"Unknown calendar timezone: {self.timezone!r}") from e

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def daily_window(self) -> timedelta:
        """Length of one working day's window."""
        today = date(2000, 1, 3)
        return datetime.combine(today, self.daily_end) - datetime.combine(today, self.daily_start)

    @property
    def weekly_capacity(self) -> timedelta:
        """Service time available in one full week."""
        return self.daily_window * len(self.working_weekdays)

    def is_working_day(self, day: date) -> bool:
        return day.weekday() in self.working_weekdays

    def to_dict(self) -> dict:
        return {
            "daily_start": self.daily_start.strftime("%H:%M:%S"),
            "daily_end": self.daily_end.strftime("%H:%M:%S"),
            "working_weekdays": sorted(self.working_weekdays),
            "timezone": self.timezone,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BusinessCalendar":
        return cls(
            daily_start=parse_time(data["daily_start"]),
            daily_end=parse_time(data["daily_end"]),
            working_weekdays=parse_weekdays(data.get("working_weekdays", [])),
            timezone=data.get("timezone", "UTC"),
        )


# Round-the-clock calendar used when a scope only has calendar-type targets.
ALWAYS_ON_CALENDAR = BusinessCalendar(
    daily_start=time(0, 0),
    daily_end=time(23, 59, 59, 999999),
    working_weekdays=frozenset(range(7)),
)


@dataclass(frozen=True)
class SLATarget:
    """
    SLA configuration row for one (scope, priority) pair.

    A copy is pinned onto each ticket at creation.
    """
    response_hours: float
    resolution_hours: float
    resolution_type: ResolutionType = ResolutionType.CALENDAR

    def __post_init__(self):
        if self.response_hours <= 0 or self.resolution_hours <= 0:
            raise ConfigurationException(
                "SLA response_hours and resolution_hours must be positive",
                {"response_hours": self.response_hours, "resolution_hours": self.resolution_hours}
            )
        # Accept plain strings coming from JSON/YAML.
        if not isinstance(self.resolution_type, ResolutionType):
            try:
                object.__setattr__(self, "resolution_type", ResolutionType(self.resolution_type))
            except ValueError as e:
                raise ConfigurationException(
                    f"Unknown resolution_type: {self.resolution_type!r}"
                ) from e

    def to_dict(self) -> dict:
        return {
            "response_hours": self.response_hours,
            "resolution_hours": self.resolution_hours,
            "resolution_type": self.resolution_type.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SLATarget":
        return cls(
            response_hours=float(data["response_hours"]),
            resolution_hours=float(data["resolution_hours"]),
            resolution_type=data.get("resolution_type", ResolutionType.CALENDAR),
        )


@dataclass(frozen=True)
class EscalationLevel:
    """One rung of an escalation ladder."""
    level: int
    threshold_percent: float
    notify_roles: Tuple[str, ...] = ()
    action_description: str = ""


@dataclass(frozen=True)
class StatusThresholds:
    """Inclusive lower bounds (in percent) for the warning/critical/breached labels."""
    warning: float = 75.0
    critical: float = 90.0
    breached: float = 100.0

    def __post_init__(self):
        if not 0 < self.warning < self.critical < self.breached:
            raise ConfigurationException(
                "Status thresholds must satisfy 0 < warning < critical < breached",
                {"warning": self.warning, "critical": self.critical, "breached": self.breached}
            )


@dataclass(frozen=True)
class EscalationPolicy:
    """
    Escalation configuration for a scope.

    Read live on every recomputation pass; never pinned.
    """
    levels: Tuple[EscalationLevel, ...]
    status_thresholds: StatusThresholds = field(default_factory=StatusThresholds)

    def __post_init__(self):
        if not self.levels:
            raise ConfigurationException("Escalation ladder must define at least one level")
        ordered = tuple(sorted(self.levels, key=lambda lvl: lvl.level))
        object.__setattr__(self, "levels", ordered)

        previous: Optional[EscalationLevel] = None
        for rung in ordered:
            if rung.level < 1:
                raise ConfigurationException(f"Escalation level must be >= 1, got {rung.level}")
            if rung.threshold_percent <= 0:
                raise ConfigurationException(
                    f"Escalation level {rung.level} threshold must be positive"
                )
            if previous is not None:
                if rung.level == previous.level:
                    raise ConfigurationException(f"Duplicate escalation level {rung.level}")
                if rung.threshold_percent <= previous.threshold_percent:
                    raise ConfigurationException(
                        "Escalation thresholds must increase strictly with level",
                        {"level": rung.level, "threshold_percent": rung.threshold_percent}
                    )
            previous = rung

    def level_for(self, pct: float) -> int:
        """Highest configured level whose threshold is at or below pct, else 0."""
        target = 0
        for rung in self.levels:
            if rung.threshold_percent <= pct:
                target = rung.level
        return target

    def get(self, level: int) -> Optional[EscalationLevel]:
        for rung in self.levels:
            if rung.level == level:
                return rung
        return None

    def levels_between(self, lower: int, upper: int) -> List[EscalationLevel]:
        """Configured rungs with lower < level <= upper, ascending."""
        return [rung for rung in self.levels if lower < rung.level <= upper]


# ========== Configuration documents (YAML / JSON) ==========

class CalendarDocument(BaseModel):
    """Calendar section of a scope."""
    daily_start: str = Field(default="08:00", description="Local start of the working window")
    daily_end: str = Field(default="20:00", description="Local end of the working window")
    working_weekdays: List[Union[int, str]] = Field(
        default_factory=lambda: ["mon", "tue", "wed", "thu", "fri"],
        description="Working weekdays (names or 0=Monday numbers)"
    )
    timezone: str = Field(default="UTC", description="IANA timezone name")

    def to_calendar(self) -> BusinessCalendar:
        return BusinessCalendar(
            daily_start=parse_time(self.daily_start),
            daily_end=parse_time(self.daily_end),
            working_weekdays=parse_weekdays(self.working_weekdays),
            timezone=self.timezone,
        )


class SLATargetDocument(BaseModel):
    """SLA row for a priority."""
    response_hours: float
    resolution_hours: float
    resolution_type: ResolutionType = ResolutionType.CALENDAR

    def to_target(self) -> SLATarget:
        return SLATarget(
            response_hours=self.response_hours,
            resolution_hours=self.resolution_hours,
            resolution_type=self.resolution_type,
        )


class EscalationLevelDocument(BaseModel):
    """Escalation rung."""
    level: int
    threshold_percent: float
    notify_roles: List[str] = Field(default_factory=list)
    action_description: str = ""


class StatusThresholdsDocument(BaseModel):
    warning: float = 75.0
    critical: float = 90.0
    breached: float = 100.0


class EscalationDocument(BaseModel):
    """Escalation section of a scope."""
    status_thresholds: StatusThresholdsDocument = Field(default_factory=StatusThresholdsDocument)
    levels: List[EscalationLevelDocument] = Field(default_factory=list)

    def to_policy(self) -> EscalationPolicy:
        return EscalationPolicy(
            levels=tuple(
                EscalationLevel(
                    level=lvl.level,
                    threshold_percent=lvl.threshold_percent,
                    notify_roles=tuple(lvl.notify_roles),
                    action_description=lvl.action_description,
                )
                for lvl in self.levels
            ),
            status_thresholds=StatusThresholds(
                warning=self.status_thresholds.warning,
                critical=self.status_thresholds.critical,
                breached=self.status_thresholds.breached,
            ),
        )


class ScopeDocument(BaseModel):
    """Everything configured for one organizational scope."""
    calendar: Optional[CalendarDocument] = None
    sla: Dict[str, SLATargetDocument] = Field(default_factory=dict)
    escalation: Optional[EscalationDocument] = None
    role_members: Dict[str, List[str]] = Field(default_factory=dict)


class SLAConfigDocument(BaseModel):
    """
    SLA Configuration loaded from YAML.

    Keyed by scope. Nothing here is defaulted on behalf of a missing scope,
    priority or ladder; lookups for those raise ConfigurationException.
    """
    scopes: Dict[str, ScopeDocument] = Field(default_factory=dict)
