"""
SLA Application Layer
======================

Application layer for the SLA engine.

Contains:
- Services: Orchestrate business logic and coordinate with repositories
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from src.sla.application.dto import (
    TicketCreatedEvent,
    HoldActionRequest,
    EscalateRequest,
    ResolveRequest,
    AlertResponse,
    TicketSLAResponse,
    RecomputeResponse,
    AuditEntryResponse,
    OverviewResponse,
    SweepResponse,
)
from src.sla.application.services import (
    SLAEngineService,
    SLASweepService,
    RecomputeResult,
    SweepResult,
    ITicketSLARepository,
    IEscalationAlertRepository,
    INotificationRepository,
    IAuditRepository,
    ISLAConfigProvider,
    IRoleDirectory,
    OpenTicketKey,
)

__all__ = [
    # DTOs
    "TicketCreatedEvent",
    "HoldActionRequest",
    "EscalateRequest",
    "ResolveRequest",
    "AlertResponse",
    "TicketSLAResponse",
    "RecomputeResponse",
    "AuditEntryResponse",
    "OverviewResponse",
    "SweepResponse",
    # Services
    "SLAEngineService",
    "SLASweepService",
    "RecomputeResult",
    "SweepResult",
    # Repository Interfaces
    "ITicketSLARepository",
    "IEscalationAlertRepository",
    "INotificationRepository",
    "IAuditRepository",
    "ISLAConfigProvider",
    "IRoleDirectory",
    "OpenTicketKey",
]
