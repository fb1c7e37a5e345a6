"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for the SLA engine.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.config import AlertTrigger, SLAStatus
from src.infrastructure.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware DateTime that always round-trips as UTC.

    SQLite drops tzinfo on the way back; this restores it.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Naive datetime cannot be stored")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class TicketSLAModel(Base):
    """
    Database model for the TicketSLA entity.

    Maps to the 'ticket_sla' table. `version` backs the conditional write.
    """
    __tablename__ = "ticket_sla"

    ticket_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    scope: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    priority: Mapped[str] = mapped_column(String(50), nullable=False)

    # Pinned at creation
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    response_due: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    resolution_due: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    sla_target: Mapped[dict] = mapped_column(JSON, nullable=False)
    calendar: Mapped[dict] = mapped_column(JSON, nullable=False)

    # Clock
    accumulated_pause_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    paused_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    last_resumed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True, index=True)

    # Derived state
    sla_consumption_pct: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    sla_status: Mapped[SLAStatus] = mapped_column(String(50), nullable=False, default=SLAStatus.HEALTHY, index=True)
    escalation_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_escalation_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


class EscalationAlertModel(Base):
    """
    Database model for the EscalationAlert entity.

    Maps to the 'sla_alerts' table. One row per (ticket_id, alert_level).
    """
    __tablename__ = "sla_alerts"
    __table_args__ = (
        UniqueConstraint("ticket_id", "alert_level", name="uq_sla_alerts_ticket_level"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    alert_level: Mapped[int] = mapped_column(Integer, nullable=False)
    consumption_pct: Mapped[float] = mapped_column(Float, nullable=False)

    # Notification
    notified_emails: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    notification_channel: Mapped[str] = mapped_column(String(50), nullable=False, default="internal")
    trigger: Mapped[AlertTrigger] = mapped_column(String(20), nullable=False, default=AlertTrigger.AUTOMATIC)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow, index=True)

    # Acknowledgement
    is_acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    acknowledged_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)


class NotificationModel(Base):
    """Maps to the 'notifications' table (one row per recipient)."""
    __tablename__ = "notifications"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    recipient_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    ticket_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    alert_level: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    link: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


class AuditEntryModel(Base):
    """Maps to the 'ticket_history' table."""
    __tablename__ = "ticket_history"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_by: Mapped[str] = mapped_column(String(255), nullable=False, default="system")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


# ========== Configuration tables (sla_config_source=database) ==========

class BusinessCalendarModel(Base):
    """Maps to the 'business_calendars' table (one row per scope)."""
    __tablename__ = "business_calendars"

    scope: Mapped[str] = mapped_column(String(255), primary_key=True)
    daily_start: Mapped[str] = mapped_column(String(8), nullable=False, default="08:00")
    daily_end: Mapped[str] = mapped_column(String(8), nullable=False, default="20:00")
    working_weekdays: Mapped[list] = mapped_column(JSON, nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")


class SLAConfigModel(Base):
    """Maps to the 'sla_configs' table (one row per scope and priority)."""
    __tablename__ = "sla_configs"
    __table_args__ = (
        UniqueConstraint("scope", "priority", name="uq_sla_configs_scope_priority"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    scope: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    priority: Mapped[str] = mapped_column(String(50), nullable=False)
    response_hours: Mapped[float] = mapped_column(Float, nullable=False)
    resolution_hours: Mapped[float] = mapped_column(Float, nullable=False)
    resolution_type: Mapped[str] = mapped_column(String(20), nullable=False, default="calendar")


class EscalationConfigModel(Base):
    """Maps to the 'escalation_configs' table (one row per scope and level)."""
    __tablename__ = "escalation_configs"
    __table_args__ = (
        UniqueConstraint("scope", "level", name="uq_escalation_configs_scope_level"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    scope: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    threshold_percent: Mapped[float] = mapped_column(Float, nullable=False)
    notify_roles: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    action_description: Mapped[str] = mapped_column(Text, nullable=False, default="")


class RoleMemberModel(Base):
    """Maps to the 'role_members' table."""
    __tablename__ = "role_members"
    __table_args__ = (
        UniqueConstraint("scope", "role", "email", name="uq_role_members"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    scope: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)


class StatusThresholdsModel(Base):
    """Maps to the 'status_thresholds' table; scopes without a row use 75/90/100."""
    __tablename__ = "status_thresholds"

    scope: Mapped[str] = mapped_column(String(255), primary_key=True)
    warning: Mapped[float] = mapped_column(Float, nullable=False, default=75.0)
    critical: Mapped[float] = mapped_column(Float, nullable=False, default=90.0)
    breached: Mapped[float] = mapped_column(Float, nullable=False, default=100.0)
