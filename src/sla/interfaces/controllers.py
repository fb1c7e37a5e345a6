"""
SLA Controllers (API Routes)
=============================

FastAPI routes for the SLA engine.

Controllers are thin - they delegate to application services. Errors raised
by the services are rendered by the application exception handler.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from fastapi import APIRouter, Depends, Header, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.infrastructure.database import get_session, get_session_context
from src.shared.infrastructure.logging import get_logger
from src.sla.application import (
    AlertResponse,
    AuditEntryResponse,
    EscalateRequest,
    HoldActionRequest,
    ISLAConfigProvider,
    OverviewResponse,
    RecomputeResponse,
    RecomputeResult,
    ResolveRequest,
    SLAEngineService,
    SLASweepService,
    SweepResponse,
    TicketCreatedEvent,
    TicketSLAResponse,
)
from src.sla.infrastructure import (
    SQLAlchemyAuditRepository,
    SQLAlchemyEscalationAlertRepository,
    SQLAlchemyNotificationRepository,
    SQLAlchemyTicketSLARepository,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA Engine"])


# ========== Example payloads for Swagger ==========

TICKET_CREATED_EXAMPLE = {
    "ticket_id": "TICKET-001",
    "scope": "acme",
    "priority": "P2",
    "created_at": "2024-01-15T10:00:00Z"
}

TICKET_SLA_RESPONSE_EXAMPLE = {
    "ticket_id": "TICKET-001",
    "scope": "acme",
    "priority": "P2",
    "created_at": "2024-01-15T10:00:00Z",
    "response_due": "2024-01-15T12:00:00Z",
    "resolution_due": "2024-01-16T10:00:00Z",
    "resolution_type": "business_hours",
    "clock_state": "running",
    "paused_at": None,
    "resolved_at": None,
    "accumulated_pause_seconds": 0.0,
    "sla_consumption_pct": 78.5,
    "display_consumption_pct": 78.5,
    "sla_status": "warning",
    "escalation_level": 1,
    "last_escalation_at": "2024-01-15T19:00:00Z",
    "alerts": []
}


# ========== Dependencies ==========

def build_engine_service(
    session: AsyncSession,
    config_provider: ISLAConfigProvider
) -> SLAEngineService:
    """Wire an engine service to one database session."""
    return SLAEngineService(
        ticket_repository=SQLAlchemyTicketSLARepository(session),
        alert_repository=SQLAlchemyEscalationAlertRepository(session),
        notification_repository=SQLAlchemyNotificationRepository(session),
        audit_repository=SQLAlchemyAuditRepository(session),
        config_provider=config_provider,
        role_directory=config_provider,
        max_write_retries=settings.sla_max_write_retries,
        notification_channel=settings.notification_channel,
    )


def engine_session_factory(config_provider: ISLAConfigProvider):
    """
    Factory of engine services, each bound to its own committed session.

    Used by the sweep, which recomputes tickets concurrently.
    """

    @asynccontextmanager
    async def factory() -> AsyncIterator[SLAEngineService]:
        async with get_session_context() as session:
            yield build_engine_service(session, config_provider)

    return factory


def get_config_provider(request: Request) -> ISLAConfigProvider:
    """SLA config provider created during application startup."""
    return request.app.state.sla_config_provider


async def get_engine_service(
    session: AsyncSession = Depends(get_session),
    config_provider: ISLAConfigProvider = Depends(get_config_provider)
) -> SLAEngineService:
    """Get SLA engine service instance."""
    return build_engine_service(session, config_provider)


def get_sweep_service(request: Request) -> SLASweepService:
    """Sweep service created during application startup."""
    return request.app.state.sla_sweep_service


def get_actor(x_actor_email: Optional[str] = Header(None, alias="X-Actor-Email")) -> str:
    """Identity of the caller; authentication happens upstream."""
    return (x_actor_email or "").strip() or "system"


def _recompute_response(result: RecomputeResult, alerts=None) -> RecomputeResponse:
    return RecomputeResponse(
        ticket=TicketSLAResponse.from_domain(result.ticket, alerts),
        previous_level=result.previous_level,
        new_alerts=[AlertResponse.from_domain(a) for a in result.alerts],
        alert_failures=result.alert_failures,
    )


# ========== Route Handlers ==========

@router.post(
    "/tickets",
    response_model=TicketSLAResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a ticket for SLA tracking",
    description="""
    Attach an SLA record to a newly created ticket.

    The SLA target for (scope, priority) and the scope's business calendar
    are pinned onto the record; later configuration changes do not move its
    due times. Re-sending the same event returns the existing record.
    """,
    responses={
        201: {"content": {"application/json": {"example": TICKET_SLA_RESPONSE_EXAMPLE}}},
        422: {"description": "Scope or priority not configured"}
    }
)
async def register_ticket(
    event: TicketCreatedEvent,
    service: SLAEngineService = Depends(get_engine_service),
    actor: str = Depends(get_actor)
):
    ticket = await service.register_ticket(
        ticket_id=event.ticket_id,
        scope=event.scope,
        priority=event.priority,
        created_at=event.created_at,
        actor=actor,
    )
    return TicketSLAResponse.from_domain(ticket)


@router.get(
    "/tickets/{ticket_id}",
    response_model=TicketSLAResponse,
    summary="Get ticket SLA status",
    description="Recompute the ticket's SLA state and return it with its escalation alerts.",
    responses={
        200: {"content": {"application/json": {"example": TICKET_SLA_RESPONSE_EXAMPLE}}},
        404: {"description": "Ticket not found"}
    }
)
async def get_ticket_sla(
    ticket_id: str,
    service: SLAEngineService = Depends(get_engine_service)
):
    result = await service.recompute(ticket_id)
    alerts = await service.list_alerts(ticket_id)
    return TicketSLAResponse.from_domain(result.ticket, alerts)


@router.post(
    "/tickets/{ticket_id}/recompute",
    response_model=RecomputeResponse,
    summary="Recompute SLA consumption and escalation"
)
async def recompute_ticket(
    ticket_id: str,
    service: SLAEngineService = Depends(get_engine_service)
):
    result = await service.recompute(ticket_id)
    return _recompute_response(result)


@router.post(
    "/tickets/{ticket_id}/hold",
    response_model=TicketSLAResponse,
    summary="Pause or resume the SLA clock",
    description="""
    `action` must be `pause` or `resume`. Pausing a paused ticket, resuming
    a running one, or touching a resolved ticket is rejected with 409.
    """
)
async def hold_ticket(
    ticket_id: str,
    request: HoldActionRequest,
    service: SLAEngineService = Depends(get_engine_service),
    actor: str = Depends(get_actor)
):
    ticket = await service.apply_hold_action(
        ticket_id, request.action, actor=actor, reason=request.reason
    )
    return TicketSLAResponse.from_domain(ticket)


@router.post(
    "/tickets/{ticket_id}/escalate",
    response_model=RecomputeResponse,
    summary="Escalate a ticket manually"
)
async def escalate_ticket(
    ticket_id: str,
    request: Optional[EscalateRequest] = None,
    service: SLAEngineService = Depends(get_engine_service),
    actor: str = Depends(get_actor)
):
    reason = request.reason if request else None
    result = await service.escalate(ticket_id, reason=reason, actor=actor)
    return _recompute_response(result)


@router.post(
    "/tickets/{ticket_id}/resolve",
    response_model=TicketSLAResponse,
    summary="Resolve a ticket and freeze its SLA clock"
)
async def resolve_ticket(
    ticket_id: str,
    request: Optional[ResolveRequest] = None,
    service: SLAEngineService = Depends(get_engine_service),
    actor: str = Depends(get_actor)
):
    resolved_at = request.resolved_at if request else None
    ticket = await service.resolve(ticket_id, resolved_at=resolved_at, actor=actor)
    return TicketSLAResponse.from_domain(ticket)


@router.get(
    "/tickets/{ticket_id}/history",
    response_model=List[AuditEntryResponse],
    summary="Ticket SLA history"
)
async def get_ticket_history(
    ticket_id: str,
    service: SLAEngineService = Depends(get_engine_service)
):
    entries = await service.history(ticket_id)
    return [AuditEntryResponse.from_domain(e) for e in entries]


@router.get(
    "/at-risk",
    response_model=List[TicketSLAResponse],
    summary="Open tickets in warning, critical or breached status"
)
async def list_at_risk(
    scope: Optional[str] = Query(None, description="Filter by scope"),
    limit: int = Query(20, ge=1, le=500, description="Maximum tickets returned"),
    service: SLAEngineService = Depends(get_engine_service)
):
    tickets = await service.list_at_risk(scope=scope, limit=limit)
    return [TicketSLAResponse.from_domain(t) for t in tickets]


@router.get(
    "/overview",
    response_model=OverviewResponse,
    summary="SLA overview counters"
)
async def get_overview(
    scope: Optional[str] = Query(None, description="Filter by scope"),
    service: SLAEngineService = Depends(get_engine_service)
):
    return OverviewResponse(**await service.overview(scope=scope))


@router.get(
    "/escalations",
    response_model=List[AlertResponse],
    summary="Escalation feed, newest first"
)
async def list_escalations(
    scope: Optional[str] = Query(None, description="Filter by scope"),
    ticket_id: Optional[str] = Query(None, description="Filter by ticket"),
    acknowledged: Optional[bool] = Query(None, description="Filter by acknowledgement"),
    limit: int = Query(50, ge=1, le=500),
    service: SLAEngineService = Depends(get_engine_service)
):
    alerts = await service.list_recent_alerts(
        scope=scope, ticket_id=ticket_id, acknowledged=acknowledged, limit=limit
    )
    return [AlertResponse.from_domain(a) for a in alerts]


@router.post(
    "/escalations/{alert_id}/acknowledge",
    response_model=AlertResponse,
    summary="Acknowledge an escalation alert"
)
async def acknowledge_escalation(
    alert_id: str,
    service: SLAEngineService = Depends(get_engine_service),
    actor: str = Depends(get_actor)
):
    alert = await service.acknowledge_alert(alert_id, actor=actor)
    return AlertResponse.from_domain(alert)


@router.post(
    "/sweep",
    response_model=SweepResponse,
    summary="Run one sweep tick now",
    description="Recompute every open ticket once, bounded by the configured time budget."
)
async def run_sweep(sweep_service: SLASweepService = Depends(get_sweep_service)):
    result = await sweep_service.sweep()
    return SweepResponse(**result.to_dict())


# Export router for inclusion in main app
sla_router = router
