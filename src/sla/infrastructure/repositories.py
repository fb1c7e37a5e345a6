"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID, uuid4

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import AT_RISK_SLA_STATUSES, AlertTrigger, HistoryAction, SLAStatus
from src.core import RepositoryException
from src.shared.infrastructure.logging import get_logger
from src.sla.application import (
    IAuditRepository,
    IEscalationAlertRepository,
    INotificationRepository,
    ITicketSLARepository,
    OpenTicketKey,
)
from src.sla.domain import (
    AuditEntry,
    BusinessCalendar,
    EscalationAlert,
    Notification,
    SLATarget,
    TicketSLA,
)
from src.sla.infrastructure.models import (
    AuditEntryModel,
    EscalationAlertModel,
    NotificationModel,
    TicketSLAModel,
)

logger = get_logger(__name__)


def _parse_uuid(value: Optional[str]) -> Optional[UUID]:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


class SQLAlchemyTicketSLARepository(ITicketSLARepository):
    """
    SQLAlchemy implementation of the ticket SLA repository.

    Writes after creation go through a version-guarded UPDATE.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _to_entity(model: TicketSLAModel) -> TicketSLA:
        return TicketSLA(
            ticket_id=model.ticket_id,
            scope=model.scope,
            priority=model.priority,
            created_at=model.created_at,
            response_due=model.response_due,
            resolution_due=model.resolution_due,
            sla_target=SLATarget.from_dict(model.sla_target),
            calendar=BusinessCalendar.from_dict(model.calendar),
            accumulated_pause=timedelta(seconds=model.accumulated_pause_seconds or 0.0),
            paused_at=model.paused_at,
            last_resumed_at=model.last_resumed_at,
            resolved_at=model.resolved_at,
            sla_consumption_pct=model.sla_consumption_pct,
            sla_status=SLAStatus(model.sla_status),
            escalation_level=model.escalation_level,
            last_escalation_at=model.last_escalation_at,
            version=model.version,
            updated_at=model.updated_at,
        )

    @staticmethod
    def _mutable_fields(ticket: TicketSLA) -> Dict[str, Any]:
        return {
            "accumulated_pause_seconds": ticket.accumulated_pause.total_seconds(),
            "paused_at": ticket.paused_at,
            "last_resumed_at": ticket.last_resumed_at,
            "resolved_at": ticket.resolved_at,
            "sla_consumption_pct": ticket.sla_consumption_pct,
            "sla_status": ticket.sla_status.value,
            "escalation_level": ticket.escalation_level,
            "last_escalation_at": ticket.last_escalation_at,
            "version": ticket.version,
            "updated_at": ticket.updated_at,
        }

    async def get(self, ticket_id: str) -> Optional[TicketSLA]:
        """Get ticket SLA record, bypassing the session's identity map."""
        stmt = (
            select(TicketSLAModel)
            .where(TicketSLAModel.ticket_id == ticket_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def create(self, ticket: TicketSLA) -> Optional[TicketSLA]:
        """Insert a new SLA record unless one already exists for the ticket."""
        model = TicketSLAModel(
            ticket_id=ticket.ticket_id,
            scope=ticket.scope,
            priority=ticket.priority,
            created_at=ticket.created_at,
            response_due=ticket.response_due,
            resolution_due=ticket.resolution_due,
            sla_target=ticket.sla_target.to_dict(),
            calendar=ticket.calendar.to_dict(),
            **self._mutable_fields(ticket),
        )
        try:
            async with self._session.begin_nested():
                self._session.add(model)
        except IntegrityError:
            logger.debug(
                "Duplicate SLA record rejected",
                extra={"ticket_id": ticket.ticket_id}
            )
            return None
        return ticket

    async def save_if_unchanged(self, ticket: TicketSLA, expected_version: int) -> bool:
        """UPDATE ... WHERE ticket_id = :id AND version = :expected."""
        stmt = (
            update(TicketSLAModel)
            .where(
                TicketSLAModel.ticket_id == ticket.ticket_id,
                TicketSLAModel.version == expected_version,
            )
            .values(**self._mutable_fields(ticket))
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"Failed to update SLA record {ticket.ticket_id}",
                {"error": str(e)}
            ) from e
        return result.rowcount == 1

    async def list_open_keys(
        self,
        limit: int = 500,
        after: Optional[OpenTicketKey] = None
    ) -> List[OpenTicketKey]:
        """Keyset page of unresolved tickets, oldest first."""
        stmt = (
            select(TicketSLAModel.created_at, TicketSLAModel.ticket_id)
            .where(TicketSLAModel.resolved_at.is_(None))
            .order_by(TicketSLAModel.created_at.asc(), TicketSLAModel.ticket_id.asc())
            .limit(limit)
        )
        if after is not None:
            after_created, after_id = after
            stmt = stmt.where(or_(
                TicketSLAModel.created_at > after_created,
                and_(
                    TicketSLAModel.created_at == after_created,
                    TicketSLAModel.ticket_id > after_id,
                ),
            ))
        result = await self._session.execute(stmt)
        return [(created_at, ticket_id) for created_at, ticket_id in result.all()]

    async def list_at_risk(
        self,
        scope: Optional[str] = None,
        limit: int = 20
    ) -> List[TicketSLA]:
        """Open tickets in warning/critical/breached status, highest consumption first."""
        stmt = select(TicketSLAModel).where(
            TicketSLAModel.resolved_at.is_(None),
            TicketSLAModel.sla_status.in_([s.value for s in AT_RISK_SLA_STATUSES]),
        )
        if scope:
            stmt = stmt.where(TicketSLAModel.scope == scope)
        stmt = stmt.order_by(TicketSLAModel.sla_consumption_pct.desc()).limit(limit)

        result = await self._session.execute(stmt)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def overview(self, scope: Optional[str] = None) -> Dict[str, Any]:
        """Counts by status, average consumption and high escalations over open tickets."""
        open_filter = [TicketSLAModel.resolved_at.is_(None)]
        if scope:
            open_filter.append(TicketSLAModel.scope == scope)

        status_stmt = (
            select(TicketSLAModel.sla_status, func.count())
            .where(*open_filter)
            .group_by(TicketSLAModel.sla_status)
        )
        by_status = {
            str(status): count
            for status, count in (await self._session.execute(status_stmt)).all()
        }

        agg_stmt = select(
            func.avg(TicketSLAModel.sla_consumption_pct),
            func.sum(case((TicketSLAModel.escalation_level >= 3, 1), else_=0)),
        ).where(*open_filter)
        average_pct, high_escalations = (await self._session.execute(agg_stmt)).one()

        return {
            "total_open": sum(by_status.values()),
            "by_status": by_status,
            "average_consumption_pct": round(float(average_pct), 2) if average_pct is not None else None,
            "breached_count": by_status.get(SLAStatus.BREACHED.value, 0),
            "high_escalations": int(high_escalations or 0),
        }


class SQLAlchemyEscalationAlertRepository(IEscalationAlertRepository):
    """
    SQLAlchemy implementation of the escalation alert repository.

    Inserts run inside a SAVEPOINT so a rejected or failed insert leaves the
    surrounding unit of work (and the ticket update in it) intact.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _to_entity(model: EscalationAlertModel) -> EscalationAlert:
        return EscalationAlert(
            id=str(model.id),
            ticket_id=model.ticket_id,
            alert_level=model.alert_level,
            consumption_pct=model.consumption_pct,
            notified_emails=list(model.notified_emails or []),
            notification_channel=model.notification_channel,
            trigger=AlertTrigger(model.trigger),
            reason=model.reason,
            created_at=model.created_at,
            is_acknowledged=model.is_acknowledged,
            acknowledged_by=model.acknowledged_by,
            acknowledged_at=model.acknowledged_at,
        )

    async def add_unique(self, alert: EscalationAlert) -> Optional[EscalationAlert]:
        """Insert unless (ticket_id, alert_level) already exists."""
        model = EscalationAlertModel(
            id=_parse_uuid(alert.id) or uuid4(),
            ticket_id=alert.ticket_id,
            alert_level=alert.alert_level,
            consumption_pct=alert.consumption_pct,
            notified_emails=list(alert.notified_emails),
            notification_channel=alert.notification_channel,
            trigger=alert.trigger.value,
            reason=alert.reason,
            created_at=alert.created_at,
            is_acknowledged=alert.is_acknowledged,
            acknowledged_by=alert.acknowledged_by,
            acknowledged_at=alert.acknowledged_at,
        )
        try:
            async with self._session.begin_nested():
                self._session.add(model)
        except IntegrityError:
            logger.debug(
                "Duplicate escalation alert rejected",
                extra={"ticket_id": alert.ticket_id, "alert_level": alert.alert_level}
            )
            return None

        alert.id = str(model.id)
        return alert

    async def get(self, alert_id: str) -> Optional[EscalationAlert]:
        alert_uuid = _parse_uuid(alert_id)
        if alert_uuid is None:
            return None
        model = await self._session.get(EscalationAlertModel, alert_uuid, populate_existing=True)
        return self._to_entity(model) if model else None

    async def save(self, alert: EscalationAlert) -> EscalationAlert:
        """Persist acknowledgement fields."""
        alert_uuid = _parse_uuid(alert.id)
        model = await self._session.get(EscalationAlertModel, alert_uuid) if alert_uuid else None
        if model is None:
            raise RepositoryException(f"Alert {alert.id} not found")

        model.is_acknowledged = alert.is_acknowledged
        model.acknowledged_by = alert.acknowledged_by
        model.acknowledged_at = alert.acknowledged_at
        await self._session.flush()
        return alert

    async def list_for_ticket(self, ticket_id: str) -> List[EscalationAlert]:
        stmt = (
            select(EscalationAlertModel)
            .where(EscalationAlertModel.ticket_id == ticket_id)
            .order_by(EscalationAlertModel.alert_level.asc())
        )
        result = await self._session.execute(stmt)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_recent(
        self,
        scope: Optional[str] = None,
        ticket_id: Optional[str] = None,
        acknowledged: Optional[bool] = None,
        limit: int = 50
    ) -> List[EscalationAlert]:
        stmt = select(EscalationAlertModel)
        if scope:
            stmt = stmt.join(
                TicketSLAModel, TicketSLAModel.ticket_id == EscalationAlertModel.ticket_id
            ).where(TicketSLAModel.scope == scope)
        if ticket_id:
            stmt = stmt.where(EscalationAlertModel.ticket_id == ticket_id)
        if acknowledged is not None:
            stmt = stmt.where(EscalationAlertModel.is_acknowledged == acknowledged)
        stmt = stmt.order_by(EscalationAlertModel.created_at.desc()).limit(limit)

        result = await self._session.execute(stmt)
        return [self._to_entity(m) for m in result.scalars().all()]


class SQLAlchemyNotificationRepository(INotificationRepository):
    """Notification rows, one per recipient."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add_many(self, notifications: Sequence[Notification]) -> None:
        async with self._session.begin_nested():
            for n in notifications:
                self._session.add(NotificationModel(
                    id=_parse_uuid(n.id) or uuid4(),
                    recipient_email=n.recipient_email,
                    type=n.type,
                    title=n.title,
                    body=n.body,
                    ticket_id=n.ticket_id,
                    alert_level=n.alert_level,
                    link=n.link,
                    is_read=n.is_read,
                    created_at=n.created_at,
                ))


class SQLAlchemyAuditRepository(IAuditRepository):
    """Ticket history rows."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, entry: AuditEntry) -> AuditEntry:
        model = AuditEntryModel(
            id=_parse_uuid(entry.id) or uuid4(),
            ticket_id=entry.ticket_id,
            action_type=entry.action_type.value,
            notes=entry.notes,
            created_by=entry.created_by,
            created_at=entry.created_at,
        )
        async with self._session.begin_nested():
            self._session.add(model)
        entry.id = str(model.id)
        return entry

    async def list_for_ticket(self, ticket_id: str) -> List[AuditEntry]:
        stmt = (
            select(AuditEntryModel)
            .where(AuditEntryModel.ticket_id == ticket_id)
            .order_by(AuditEntryModel.created_at.asc())
        )
        result = await self._session.execute(stmt)
        return [
            AuditEntry(
                id=str(m.id),
                ticket_id=m.ticket_id,
                action_type=HistoryAction(m.action_type),
                notes=m.notes,
                created_by=m.created_by,
                created_at=m.created_at,
            )
            for m in result.scalars().all()
        ]
