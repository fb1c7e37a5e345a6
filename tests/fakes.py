"""
In-memory test doubles for the SLA engine's ports.

Every repository method yields to the event loop once so that concurrent
callers interleave the way they would against a real database.
"""

import asyncio
import copy
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from src.config import ResolutionType
from src.core.exceptions import ConfigurationException
from src.sla.application import (
    IAuditRepository,
    IEscalationAlertRepository,
    INotificationRepository,
    IRoleDirectory,
    ISLAConfigProvider,
    ITicketSLARepository,
    OpenTicketKey,
    SLAEngineService,
)
from src.sla.domain import (
    AuditEntry,
    BusinessCalendar,
    EscalationAlert,
    EscalationLevel,
    EscalationPolicy,
    Notification,
    SLATarget,
    StatusThresholds,
    TicketSLA,
)
from src.sla.domain.value_objects import parse_time, parse_weekdays


T0 = datetime(2024, 1, 15, 6, 0, tzinfo=timezone.utc)  # Monday 10:00 in Dubai

DUBAI_CALENDAR = BusinessCalendar(
    daily_start=parse_time("08:00"),
    daily_end=parse_time("20:00"),
    working_weekdays=parse_weekdays(["mon", "tue", "wed", "thu", "fri"]),
    timezone="Asia/Dubai",
)

DEFAULT_POLICY = EscalationPolicy(
    levels=(
        EscalationLevel(1, 75.0, ("agent",), "Notify assigned agent"),
        EscalationLevel(2, 90.0, ("agent", "team_lead"), "Notify team lead"),
        EscalationLevel(3, 100.0, ("admin",), "SLA breached"),
    ),
    status_thresholds=StatusThresholds(),
)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class InMemoryTicketRepository(ITicketSLARepository):

    def __init__(self):
        self.rows: Dict[str, TicketSLA] = {}
        self.write_attempts = 0

    async def get(self, ticket_id: str) -> Optional[TicketSLA]:
        await asyncio.sleep(0)
        row = self.rows.get(ticket_id)
        return copy.deepcopy(row) if row else None

    async def create(self, ticket: TicketSLA) -> Optional[TicketSLA]:
        await asyncio.sleep(0)
        if ticket.ticket_id in self.rows:
            return None
        self.rows[ticket.ticket_id] = copy.deepcopy(ticket)
        return ticket

    async def save_if_unchanged(self, ticket: TicketSLA, expected_version: int) -> bool:
        await asyncio.sleep(0)
        self.write_attempts += 1
        stored = self.rows.get(ticket.ticket_id)
        if stored is None or stored.version != expected_version:
            return False
        self.rows[ticket.ticket_id] = copy.deepcopy(ticket)
        return True

    async def list_open_keys(
        self,
        limit: int = 500,
        after: Optional[OpenTicketKey] = None
    ) -> List[OpenTicketKey]:
        keys = sorted(
            (t.created_at, t.ticket_id) for t in self.rows.values() if t.resolved_at is None
        )
        if after is not None:
            keys = [key for key in keys if key > after]
        return keys[:limit]

    async def list_at_risk(self, scope: Optional[str] = None, limit: int = 20) -> List[TicketSLA]:
        rows = [
            t for t in self.rows.values()
            if t.resolved_at is None
            and t.sla_status.value in ("warning", "critical", "breached")
            and (scope is None or t.scope == scope)
        ]
        rows.sort(key=lambda t: t.sla_consumption_pct, reverse=True)
        return [copy.deepcopy(t) for t in rows[:limit]]

    async def overview(self, scope: Optional[str] = None) -> dict:
        rows = [
            t for t in self.rows.values()
            if t.resolved_at is None and (scope is None or t.scope == scope)
        ]
        by_status: Dict[str, int] = {}
        for t in rows:
            by_status[t.sla_status.value] = by_status.get(t.sla_status.value, 0) + 1
        return {
            "total_open": len(rows),
            "by_status": by_status,
            "average_consumption_pct": (
                round(sum(t.sla_consumption_pct for t in rows) / len(rows), 2) if rows else None
            ),
            "breached_count": by_status.get("breached", 0),
            "high_escalations": sum(1 for t in rows if t.escalation_level >= 3),
        }


class RacingTicketRepository(InMemoryTicketRepository):
    """Another worker registers the ticket (as P1) between our read and our insert."""

    async def create(self, ticket: TicketSLA) -> Optional[TicketSLA]:
        if ticket.ticket_id not in self.rows:
            winner = copy.deepcopy(ticket)
            winner.priority = "P1"
            self.rows[ticket.ticket_id] = winner
        return await super().create(ticket)


class ConflictingTicketRepository(InMemoryTicketRepository):
    """Every conditional write loses to a phantom concurrent writer."""

    async def save_if_unchanged(self, ticket: TicketSLA, expected_version: int) -> bool:
        await asyncio.sleep(0)
        self.write_attempts += 1
        return False


class InMemoryAlertRepository(IEscalationAlertRepository):

    def __init__(self, tickets: Optional[InMemoryTicketRepository] = None):
        self.rows: Dict[str, EscalationAlert] = {}
        self._tickets = tickets

    async def add_unique(self, alert: EscalationAlert) -> Optional[EscalationAlert]:
        await asyncio.sleep(0)
        if any(
            a.ticket_id == alert.ticket_id and a.alert_level == alert.alert_level
            for a in self.rows.values()
        ):
            return None
        self.rows[alert.id] = copy.deepcopy(alert)
        return alert

    async def get(self, alert_id: str) -> Optional[EscalationAlert]:
        row = self.rows.get(alert_id)
        return copy.deepcopy(row) if row else None

    async def save(self, alert: EscalationAlert) -> EscalationAlert:
        self.rows[alert.id] = copy.deepcopy(alert)
        return alert

    async def list_for_ticket(self, ticket_id: str) -> List[EscalationAlert]:
        rows = [a for a in self.rows.values() if a.ticket_id == ticket_id]
        return sorted(rows, key=lambda a: a.alert_level)

    async def list_recent(
        self,
        scope: Optional[str] = None,
        ticket_id: Optional[str] = None,
        acknowledged: Optional[bool] = None,
        limit: int = 50
    ) -> List[EscalationAlert]:
        rows = list(self.rows.values())
        if scope is not None and self._tickets is not None:
            ids = {t.ticket_id for t in self._tickets.rows.values() if t.scope == scope}
            rows = [a for a in rows if a.ticket_id in ids]
        if ticket_id is not None:
            rows = [a for a in rows if a.ticket_id == ticket_id]
        if acknowledged is not None:
            rows = [a for a in rows if a.is_acknowledged == acknowledged]
        rows.sort(key=lambda a: a.created_at, reverse=True)
        return rows[:limit]


class FailingAlertRepository(InMemoryAlertRepository):
    """Alert store that is down."""

    async def add_unique(self, alert: EscalationAlert) -> Optional[EscalationAlert]:
        raise RuntimeError("alert store unavailable")


class InMemoryNotificationRepository(INotificationRepository):

    def __init__(self):
        self.rows: List[Notification] = []

    async def add_many(self, notifications: Sequence[Notification]) -> None:
        self.rows.extend(notifications)


class InMemoryAuditRepository(IAuditRepository):

    def __init__(self):
        self.rows: List[AuditEntry] = []

    async def add(self, entry: AuditEntry) -> AuditEntry:
        self.rows.append(entry)
        return entry

    async def list_for_ticket(self, ticket_id: str) -> List[AuditEntry]:
        return [e for e in self.rows if e.ticket_id == ticket_id]


class StaticConfigProvider(ISLAConfigProvider, IRoleDirectory):
    """Per-scope configuration held in plain dictionaries; tests mutate it freely."""

    def __init__(self):
        self.targets: Dict[Tuple[str, str], SLATarget] = {
            ("acme", "P1"): SLATarget(1, 10, ResolutionType.CALENDAR),
            ("acme", "P2"): SLATarget(2, 12, ResolutionType.BUSINESS_HOURS),
        }
        self.calendars: Dict[str, Optional[BusinessCalendar]] = {"acme": DUBAI_CALENDAR}
        self.policies: Dict[str, EscalationPolicy] = {"acme": DEFAULT_POLICY}
        self.members: Dict[str, Dict[str, List[str]]] = {
            "acme": {
                "agent": ["agent@acme.example"],
                "team_lead": ["lead@acme.example", "agent@acme.example"],
                "admin": ["admin@acme.example"],
            }
        }

    async def get_sla_target(self, scope: str, priority: str) -> SLATarget:
        try:
            return self.targets[(scope, priority)]
        except KeyError:
            raise ConfigurationException(f"No SLA target for {scope}/{priority}") from None

    async def get_calendar(self, scope: str) -> Optional[BusinessCalendar]:
        return self.calendars.get(scope)

    async def get_escalation_policy(self, scope: str) -> EscalationPolicy:
        try:
            return self.policies[scope]
        except KeyError:
            raise ConfigurationException(f"No escalation ladder for scope '{scope}'") from None

    async def get_members(self, scope: str, roles: Sequence[str]) -> List[str]:
        members = self.members.get(scope, {})
        return list(dict.fromkeys(email for role in roles for email in members.get(role, [])))


class EngineHarness:
    """Shared in-memory stores plus a clock; builds engines bound to them."""

    def __init__(self, ticket_repository: Optional[InMemoryTicketRepository] = None):
        self.clock = FrozenClock()
        self.tickets = ticket_repository or InMemoryTicketRepository()
        self.alerts = InMemoryAlertRepository(self.tickets)
        self.notifications = InMemoryNotificationRepository()
        self.audit = InMemoryAuditRepository()
        self.config = StaticConfigProvider()

    def engine(self, **overrides) -> SLAEngineService:
        kwargs = dict(
            ticket_repository=self.tickets,
            alert_repository=self.alerts,
            notification_repository=self.notifications,
            audit_repository=self.audit,
            config_provider=self.config,
            role_directory=self.config,
            max_write_retries=3,
            clock=self.clock,
        )
        kwargs.update(overrides)
        return SLAEngineService(**kwargs)
