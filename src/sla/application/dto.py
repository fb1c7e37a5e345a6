"""
SLA Application DTOs
=====================

Data Transfer Objects for SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Following YAGNI - only what's needed.
"""

from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from src.sla.domain import AuditEntry, EscalationAlert, TicketSLA


# ========== Type Aliases for Literals ==========
SLAStatusStr = Literal["healthy", "warning", "critical", "breached", "paused", "resolved"]
ClockStateStr = Literal["running", "paused", "resolved"]
ResolutionTypeStr = Literal["calendar", "business_hours"]
AlertTriggerStr = Literal["automatic", "manual"]


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ========== Request DTOs ==========

class TicketCreatedEvent(BaseModel):
    """Ticket creation event published by the ticketing collaborator."""
    ticket_id: str = Field(..., min_length=1, description="Ticket identifier")
    scope: str = Field(..., min_length=1, description="Organizational scope owning the SLA configuration")
    priority: str = Field(..., min_length=1, description="Priority tier, e.g. P1..P5")
    created_at: datetime = Field(..., description="Ticket creation timestamp")

    @field_validator("created_at")
    @classmethod
    def validate_created_at(cls, v: datetime) -> datetime:
        """Normalise to an aware UTC timestamp."""
        return _as_utc(v)


class HoldActionRequest(BaseModel):
    """Pause or resume the SLA clock."""
    action: str = Field(default="pause", description="Either 'pause' or 'resume'")
    reason: Optional[str] = Field(None, max_length=2000, description="Why the clock is held/released")


class EscalateRequest(BaseModel):
    """Manual escalation."""
    reason: Optional[str] = Field(None, max_length=2000, description="Human-supplied escalation reason")


class ResolveRequest(BaseModel):
    """Resolution of a ticket."""
    resolved_at: Optional[datetime] = Field(None, description="Resolution time (defaults to now)")

    @field_validator("resolved_at")
    @classmethod
    def validate_resolved_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)


# ========== Response DTOs ==========

class AlertResponse(BaseModel):
    """Response model for an escalation alert."""
    id: str = Field(..., description="Alert ID")
    ticket_id: str = Field(..., description="Ticket ID")
    alert_level: int
    consumption_pct: float = Field(..., description="Consumption at the time the alert fired")
    notified_emails: List[str] = Field(default_factory=list)
    notification_channel: str
    trigger: AlertTriggerStr
    reason: Optional[str] = None
    created_at: datetime
    is_acknowledged: bool = False
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, alert: EscalationAlert) -> "AlertResponse":
        return cls(
            id=str(alert.id),
            ticket_id=alert.ticket_id,
            alert_level=alert.alert_level,
            consumption_pct=round(alert.consumption_pct, 2),
            notified_emails=list(alert.notified_emails),
            notification_channel=alert.notification_channel,
            trigger=alert.trigger.value,
            reason=alert.reason,
            created_at=alert.created_at,
            is_acknowledged=alert.is_acknowledged,
            acknowledged_by=alert.acknowledged_by,
            acknowledged_at=alert.acknowledged_at,
        )


class TicketSLAResponse(BaseModel):
    """Response model for a ticket's SLA record."""
    ticket_id: str
    scope: str
    priority: str
    created_at: datetime
    response_due: datetime
    resolution_due: datetime
    resolution_type: ResolutionTypeStr
    clock_state: ClockStateStr
    paused_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    accumulated_pause_seconds: float = Field(..., description="Service time spent paused")
    sla_consumption_pct: float = Field(..., description="Uncapped percentage of the resolution window consumed")
    display_consumption_pct: float = Field(..., description="Consumption clamped to 0-100 for display")
    sla_status: SLAStatusStr
    escalation_level: int
    last_escalation_at: Optional[datetime] = None
    alerts: List[AlertResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(
        cls,
        ticket: TicketSLA,
        alerts: Optional[List[EscalationAlert]] = None
    ) -> "TicketSLAResponse":
        pct = ticket.sla_consumption_pct
        return cls(
            ticket_id=ticket.ticket_id,
            scope=ticket.scope,
            priority=ticket.priority,
            created_at=ticket.created_at,
            response_due=ticket.response_due,
            resolution_due=ticket.resolution_due,
            resolution_type=ticket.sla_target.resolution_type.value,
            clock_state=ticket.clock_state.value,
            paused_at=ticket.paused_at,
            resolved_at=ticket.resolved_at,
            accumulated_pause_seconds=ticket.accumulated_pause.total_seconds(),
            sla_consumption_pct=round(pct, 2),
            display_consumption_pct=round(min(max(pct, 0.0), 100.0), 2),
            sla_status=ticket.sla_status.value,
            escalation_level=ticket.escalation_level,
            last_escalation_at=ticket.last_escalation_at,
            alerts=[AlertResponse.from_domain(a) for a in alerts or []],
        )


class RecomputeResponse(BaseModel):
    """Result of a recomputation pass."""
    ticket: TicketSLAResponse
    previous_level: int
    new_alerts: List[AlertResponse] = Field(default_factory=list)
    alert_failures: int = Field(default=0, description="Alerts that could not be persisted")


class AuditEntryResponse(BaseModel):
    """Ticket history entry."""
    id: str
    ticket_id: str
    action_type: str
    notes: str
    created_by: str
    created_at: datetime

    @classmethod
    def from_domain(cls, entry: AuditEntry) -> "AuditEntryResponse":
        return cls(
            id=str(entry.id),
            ticket_id=entry.ticket_id,
            action_type=entry.action_type.value,
            notes=entry.notes,
            created_by=entry.created_by,
            created_at=entry.created_at,
        )


class OverviewResponse(BaseModel):
    """SLA overview counters."""
    total_open: int
    by_status: Dict[str, int] = Field(default_factory=dict)
    average_consumption_pct: Optional[float] = Field(None, description="Average over open tickets")
    breached_count: int = 0
    high_escalations: int = Field(0, description="Open tickets at escalation level 3 or above")


class SweepResponse(BaseModel):
    """Summary of one sweep tick."""
    tickets_selected: int
    tickets_evaluated: int
    tickets_escalated: int
    alerts_emitted: int
    alert_failures: int
    errors: int
    timed_out: int
    duration_ms: int
