"""
SLA Domain Entities
====================

Pure Python domain entities for SLA monitoring.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from src.config import AlertTrigger, ClockState, HistoryAction, SLAStatus
from src.core.exceptions import InvalidStateException
from src.sla.domain.value_objects import BusinessCalendar, SLATarget


@dataclass
class TicketSLA:
    """
    SLA sub-record of a support ticket.

    Due times, the SLA target and the calendar are pinned at creation and
    never recomputed. Everything else is mutated by the engine through a
    read-compute-conditional-write cycle guarded by `version`.
    """

    # Identity
    ticket_id: str
    scope: str
    priority: str

    # Pinned at creation
    created_at: datetime
    response_due: datetime
    resolution_due: datetime
    sla_target: SLATarget
    calendar: BusinessCalendar

    # Clock
    accumulated_pause: timedelta = timedelta(0)
    paused_at: Optional[datetime] = None
    last_resumed_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    # Derived state
    sla_consumption_pct: float = 0.0
    sla_status: SLAStatus = SLAStatus.HEALTHY
    escalation_level: int = 0
    last_escalation_at: Optional[datetime] = None

    # Concurrency
    version: int = 0
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate record on initialization."""
        if self.created_at.tzinfo is None:
            raise ValueError("created_at must be timezone-aware")

        if self.resolved_at and self.resolved_at < self.created_at:
            raise ValueError("resolved_at cannot be before created_at")

        if self.paused_at and self.paused_at < self.created_at:
            raise ValueError("paused_at cannot be before created_at")

        if self.escalation_level < 0:
            raise ValueError("escalation_level cannot be negative")

    @property
    def clock_state(self) -> ClockState:
        """Current state of the pause/resume machine."""
        if self.resolved_at is not None:
            return ClockState.RESOLVED
        if self.paused_at is not None:
            return ClockState.PAUSED
        return ClockState.RUNNING

    @property
    def is_open(self) -> bool:
        return self.resolved_at is None

    @property
    def is_paused(self) -> bool:
        return self.clock_state == ClockState.PAUSED

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "ticket_id": self.ticket_id,
            "scope": self.scope,
            "priority": self.priority,
            "created_at": self.created_at.isoformat(),
            "response_due": self.response_due.isoformat(),
            "resolution_due": self.resolution_due.isoformat(),
            "resolution_type": self.sla_target.resolution_type.value,
            "accumulated_pause_seconds": self.accumulated_pause.total_seconds(),
            "paused_at": self.paused_at.isoformat() if self.paused_at else None,
            "last_resumed_at": self.last_resumed_at.isoformat() if self.last_resumed_at else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "sla_consumption_pct": self.sla_consumption_pct,
            "sla_status": self.sla_status.value,
            "escalation_level": self.escalation_level,
            "clock_state": self.clock_state.value,
            "version": self.version,
        }


@dataclass
class EscalationAlert:
    """
    Escalation alert entity.

    At most one alert exists per (ticket_id, alert_level).
    """

    id: Optional[str]
    ticket_id: str
    alert_level: int
    consumption_pct: float
    notified_emails: List[str] = field(default_factory=list)
    notification_channel: str = "internal"
    trigger: AlertTrigger = AlertTrigger.AUTOMATIC
    reason: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    # Acknowledgement
    is_acknowledged: bool = False
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None

    def acknowledge(self, actor: str, timestamp: Optional[datetime] = None) -> None:
        """Mark alert as acknowledged."""
        if self.is_acknowledged:
            raise InvalidStateException("acknowledged", "acknowledge")
        self.is_acknowledged = True
        self.acknowledged_by = actor
        self.acknowledged_at = timestamp or datetime.now(timezone.utc)


@dataclass
class Notification:
    """Notification addressed to one resolved role member."""

    id: Optional[str]
    recipient_email: str
    type: str
    title: str
    body: str
    ticket_id: Optional[str] = None
    alert_level: Optional[int] = None
    link: Optional[str] = None
    is_read: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class AuditEntry:
    """Ticket history entry for pause, resume, resolve and escalation actions."""

    id: Optional[str]
    ticket_id: str
    action_type: HistoryAction
    notes: str
    created_by: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
