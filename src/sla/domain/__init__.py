"""
SLA Domain Layer
================

Domain layer for the SLA consumption and escalation engine.

Contains:
- Entities: Core business objects with identity (TicketSLA, EscalationAlert,
  Notification, AuditEntry)
- Value Objects: Immutable objects defined by attributes (BusinessCalendar,
  SLATarget, EscalationPolicy, StatusThresholds)
- Domain Services: Stateless business logic (BusinessCalendarClock,
  DueTimeCalculator, ConsumptionTracker, StatusClassifier,
  PauseResumeController, EscalationLadder)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.sla.domain.entities import TicketSLA, EscalationAlert, Notification, AuditEntry
from src.sla.domain.value_objects import (
    BusinessCalendar,
    SLATarget,
    EscalationLevel,
    EscalationPolicy,
    StatusThresholds,
    SLAConfigDocument,
    ALWAYS_ON_CALENDAR,
)
from src.sla.domain.calendar import BusinessCalendarClock
from src.sla.domain.services import (
    DueTimeCalculator,
    Consumption,
    ConsumptionTracker,
    StatusClassifier,
    PauseResumeController,
    EscalationDecision,
    EscalationLadder,
)

__all__ = [
    # Entities
    "TicketSLA",
    "EscalationAlert",
    "Notification",
    "AuditEntry",
    # Value Objects
    "BusinessCalendar",
    "SLATarget",
    "EscalationLevel",
    "EscalationPolicy",
    "StatusThresholds",
    "SLAConfigDocument",
    "ALWAYS_ON_CALENDAR",
    # Domain Services
    "BusinessCalendarClock",
    "DueTimeCalculator",
    "Consumption",
    "ConsumptionTracker",
    "StatusClassifier",
    "PauseResumeController",
    "EscalationDecision",
    "EscalationLadder",
]
