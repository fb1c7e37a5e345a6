"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations

Every state change follows the same cycle: read the ticket, run the domain
services on it, then write it back only if nobody else wrote it in between.
Alerts, notifications and history entries are emitted after the write and
are best-effort.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from src.config import (
    AlertTrigger,
    ClockAction,
    HistoryAction,
    ResolutionType,
    VALID_HOLD_ACTIONS,
)
from src.core.exceptions import (
    ConcurrencyConflictException,
    ConfigurationException,
    ResourceNotFoundException,
    ValidationException,
)
from src.shared.infrastructure.logging import get_logger
from src.sla.domain import (
    ALWAYS_ON_CALENDAR,
    AuditEntry,
    BusinessCalendar,
    Consumption,
    ConsumptionTracker,
    DueTimeCalculator,
    EscalationAlert,
    EscalationDecision,
    EscalationLadder,
    EscalationLevel,
    EscalationPolicy,
    Notification,
    PauseResumeController,
    SLATarget,
    StatusClassifier,
    TicketSLA,
)

logger = get_logger(__name__)

# Sort key of an open ticket: (created_at, ticket_id).
OpenTicketKey = Tuple[datetime, str]


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITicketSLARepository(ABC):
    """Interface for ticket SLA record access."""

    @abstractmethod
    async def get(self, ticket_id: str) -> Optional[TicketSLA]:
        """Get the current SLA record of a ticket (fresh read, never cached)."""

    @abstractmethod
    async def create(self, ticket: TicketSLA) -> Optional[TicketSLA]:
        """
        Insert a new SLA record.

        Returns None, leaving the unit of work usable, if a record for the
        ticket already exists.
        """

    @abstractmethod
    async def save_if_unchanged(self, ticket: TicketSLA, expected_version: int) -> bool:
        """
        Conditionally write the record.

        Succeeds only if the stored version still equals expected_version;
        returns False otherwise and writes nothing.
        """

    @abstractmethod
    async def list_open_keys(
        self,
        limit: int = 500,
        after: Optional[OpenTicketKey] = None
    ) -> List[OpenTicketKey]:
        """
        Keys of unresolved tickets ordered by (created_at, ticket_id).

        Only keys strictly greater than `after` are returned, so callers can
        page through every open ticket.
        """

    @abstractmethod
    async def list_at_risk(
        self,
        scope: Optional[str] = None,
        limit: int = 20
    ) -> List[TicketSLA]:
        """Open tickets in warning, critical or breached status, highest consumption first."""

    @abstractmethod
    async def overview(self, scope: Optional[str] = None) -> Dict[str, Any]:
        """Aggregate counters over open tickets."""


class IEscalationAlertRepository(ABC):
    """Interface for escalation alert access."""

    @abstractmethod
    async def add_unique(self, alert: EscalationAlert) -> Optional[EscalationAlert]:
        """
        Insert an alert unless one already exists for (ticket_id, alert_level).

        Returns the stored alert, or None when the alert already existed.
        """

    @abstractmethod
    async def get(self, alert_id: str) -> Optional[EscalationAlert]:
        """Get alert by ID."""

    @abstractmethod
    async def save(self, alert: EscalationAlert) -> EscalationAlert:
        """Persist acknowledgement fields."""

    @abstractmethod
    async def list_for_ticket(self, ticket_id: str) -> List[EscalationAlert]:
        """Alerts of a ticket ordered by level."""

    @abstractmethod
    async def list_recent(
        self,
        scope: Optional[str] = None,
        ticket_id: Optional[str] = None,
        acknowledged: Optional[bool] = None,
        limit: int = 50
    ) -> List[EscalationAlert]:
        """Most recent alerts across tickets, newest first."""


class INotificationRepository(ABC):
    """Interface for notification storage."""

    @abstractmethod
    async def add_many(self, notifications: Sequence[Notification]) -> None:
        """Store notifications."""


class IAuditRepository(ABC):
    """Interface for ticket history storage."""

    @abstractmethod
    async def add(self, entry: AuditEntry) -> AuditEntry:
        """Append a history entry."""

    @abstractmethod
    async def list_for_ticket(self, ticket_id: str) -> List[AuditEntry]:
        """History of a ticket, oldest first."""


class ISLAConfigProvider(ABC):
    """
    Interface for per-scope SLA configuration.

    SLA targets and calendars are read once at ticket creation and pinned.
    Escalation policies are read on every recomputation.
    """

    @abstractmethod
    async def get_sla_target(self, scope: str, priority: str) -> SLATarget:
        """SLA target for (scope, priority); raises ConfigurationException when missing."""

    @abstractmethod
    async def get_calendar(self, scope: str) -> Optional[BusinessCalendar]:
        """Business calendar of a scope, or None if the scope has none."""

    @abstractmethod
    async def get_escalation_policy(self, scope: str) -> EscalationPolicy:
        """Escalation ladder of a scope; raises ConfigurationException when missing."""


class IRoleDirectory(ABC):
    """Interface for resolving notification roles to recipients."""

    @abstractmethod
    async def get_members(self, scope: str, roles: Sequence[str]) -> List[str]:
        """Email addresses of the members holding any of the roles."""


# ========== Results ==========

@dataclass
class RecomputeResult:
    """Outcome of one read-compute-write cycle."""
    ticket: TicketSLA
    consumption: Optional[Consumption] = None
    decision: Optional[EscalationDecision] = None
    alerts: List[EscalationAlert] = field(default_factory=list)
    alert_failures: int = 0
    written: bool = False

    @property
    def previous_level(self) -> int:
        if self.decision is None:
            return self.ticket.escalation_level
        return self.decision.previous_level


@dataclass
class SweepResult:
    """Summary of a sweep tick."""
    tickets_selected: int = 0
    tickets_evaluated: int = 0
    tickets_escalated: int = 0
    alerts_emitted: int = 0
    alert_failures: int = 0
    errors: int = 0
    timed_out: int = 0
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "tickets_selected": self.tickets_selected,
            "tickets_evaluated": self.tickets_evaluated,
            "tickets_escalated": self.tickets_escalated,
            "alerts_emitted": self.alerts_emitted,
            "alert_failures": self.alert_failures,
            "errors": self.errors,
            "timed_out": self.timed_out,
            "duration_ms": self.duration_ms,
        }


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# Mutation applied to a freshly read ticket; returns (decision, consumption).
Mutation = Callable[
    [TicketSLA, datetime],
    Awaitable[Tuple[Optional[EscalationDecision], Optional[Consumption]]]
]


# ========== Application Services ==========

class SLAEngineService:
    """
    Service for SLA tracking, clock control and escalation.

    Coordinates between domain logic and data access. One instance works
    against one unit of work (database session); callers handle commit.
    """

    def __init__(
        self,
        ticket_repository: ITicketSLARepository,
        alert_repository: IEscalationAlertRepository,
        notification_repository: INotificationRepository,
        audit_repository: IAuditRepository,
        config_provider: ISLAConfigProvider,
        role_directory: IRoleDirectory,
        max_write_retries: int = 3,
        notification_channel: str = "internal",
        clock: Callable[[], datetime] = utc_now
    ):
        self._tickets = ticket_repository
        self._alerts = alert_repository
        self._notifications = notification_repository
        self._audit = audit_repository
        self._config = config_provider
        self._roles = role_directory
        self._max_write_retries = max_write_retries
        self._channel = notification_channel
        self._clock = clock

    # ---------- Creation ----------

    async def register_ticket(
        self,
        ticket_id: str,
        scope: str,
        priority: str,
        created_at: datetime,
        actor: str = "system"
    ) -> TicketSLA:
        """
        Attach an SLA record to a newly created ticket.

        Looks up the SLA target and calendar for (scope, priority), pins them
        onto the record and derives both due times. Re-delivery of the same
        creation event returns the existing record unchanged.

        Raises:
            ConfigurationException: Scope/priority not configured, or a
                business-hours target without a calendar
        """
        if created_at.tzinfo is None:
            raise ValidationException("created_at must be timezone-aware")

        existing = await self._tickets.get(ticket_id)
        if existing is not None:
            logger.info(
                "SLA record already registered",
                extra={"ticket_id": ticket_id, "scope": existing.scope}
            )
            return existing

        target = await self._config.get_sla_target(scope, priority)
        calendar = await self._config.get_calendar(scope)
        if calendar is None:
            if target.resolution_type == ResolutionType.BUSINESS_HOURS:
                raise ConfigurationException(
                    "Business-hours SLA requires a calendar",
                    {"scope": scope, "priority": priority}
                )
            calendar = ALWAYS_ON_CALENDAR

        response_due, resolution_due = DueTimeCalculator.calculate(created_at, target, calendar)
        ticket = TicketSLA(
            ticket_id=ticket_id,
            scope=scope,
            priority=priority,
            created_at=created_at,
            response_due=response_due,
            resolution_due=resolution_due,
            sla_target=target,
            calendar=calendar,
            updated_at=self._clock(),
        )
        created = await self._tickets.create(ticket)
        if created is None:
            # Lost a race against a concurrent delivery of the same event.
            existing = await self.get_ticket(ticket_id)
            logger.info(
                "SLA record already registered",
                extra={"ticket_id": ticket_id, "scope": existing.scope}
            )
            return existing
        ticket = created

        logger.info(
            "SLA record registered",
            extra={
                "ticket_id": ticket_id,
                "scope": scope,
                "priority": priority,
                "resolution_type": target.resolution_type.value,
                "resolution_due": resolution_due.isoformat(),
            }
        )
        await self._record_history(
            ticket_id,
            HistoryAction.CREATED,
            f"SLA {priority}: respond by {response_due.isoformat()}, "
            f"resolve by {resolution_due.isoformat()}",
            actor,
        )
        return ticket

    # ---------- Reads ----------

    async def get_ticket(self, ticket_id: str) -> TicketSLA:
        ticket = await self._tickets.get(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        return ticket

    async def list_alerts(self, ticket_id: str) -> List[EscalationAlert]:
        await self.get_ticket(ticket_id)
        return await self._alerts.list_for_ticket(ticket_id)

    async def list_recent_alerts(
        self,
        scope: Optional[str] = None,
        ticket_id: Optional[str] = None,
        acknowledged: Optional[bool] = None,
        limit: int = 50
    ) -> List[EscalationAlert]:
        return await self._alerts.list_recent(
            scope=scope, ticket_id=ticket_id, acknowledged=acknowledged, limit=limit
        )

    async def history(self, ticket_id: str) -> List[AuditEntry]:
        await self.get_ticket(ticket_id)
        return await self._audit.list_for_ticket(ticket_id)

    async def list_at_risk(self, scope: Optional[str] = None, limit: int = 20) -> List[TicketSLA]:
        return await self._tickets.list_at_risk(scope=scope, limit=limit)

    async def overview(self, scope: Optional[str] = None) -> Dict[str, Any]:
        return await self._tickets.overview(scope=scope)

    async def list_open_keys(
        self,
        limit: int = 500,
        after: Optional[OpenTicketKey] = None
    ) -> List[OpenTicketKey]:
        return await self._tickets.list_open_keys(limit=limit, after=after)

    # ---------- Recomputation ----------

    async def recompute(self, ticket_id: str) -> RecomputeResult:
        """
        Recompute consumption, status and escalation level of a ticket.

        Emits one alert per escalation level crossed. Safe to call
        concurrently for the same ticket: only the caller whose conditional
        write lands emits alerts.
        """

        async def mutation(ticket: TicketSLA, now: datetime):
            policy = await self._config.get_escalation_policy(ticket.scope)
            consumption = ConsumptionTracker.recompute(ticket, now)
            ticket.sla_status = StatusClassifier.classify(ticket, policy.status_thresholds)
            decision = None
            if ticket.is_open:
                decision = EscalationLadder.evaluate(ticket, consumption.pct, policy, now)
            return decision, consumption

        result = await self._mutate(ticket_id, mutation, skip_if_unchanged=True)
        await self._emit_escalation(result, AlertTrigger.AUTOMATIC)
        return result

    # ---------- Clock control ----------

    async def pause(self, ticket_id: str, actor: str = "system", reason: Optional[str] = None) -> TicketSLA:
        """Suspend the SLA clock."""

        async def mutation(ticket: TicketSLA, now: datetime):
            PauseResumeController.pause(ticket, now)
            return None, None

        result = await self._mutate(ticket_id, mutation)
        logger.info("SLA clock paused", extra={"ticket_id": ticket_id, "actor": actor})
        await self._record_history(
            ticket_id, HistoryAction.PAUSE, reason or "SLA clock paused", actor
        )
        return result.ticket

    async def resume(self, ticket_id: str, actor: str = "system", reason: Optional[str] = None) -> RecomputeResult:
        """
        Restart the SLA clock.

        The paused interval is banked, then consumption, status and the
        escalation ladder are evaluated immediately.
        """

        async def mutation(ticket: TicketSLA, now: datetime):
            policy = await self._config.get_escalation_policy(ticket.scope)
            consumption = PauseResumeController.resume(ticket, now, policy.status_thresholds)
            decision = EscalationLadder.evaluate(ticket, consumption.pct, policy, now)
            return decision, consumption

        result = await self._mutate(ticket_id, mutation)
        logger.info(
            "SLA clock resumed",
            extra={
                "ticket_id": ticket_id,
                "actor": actor,
                "accumulated_pause_seconds": result.ticket.accumulated_pause.total_seconds(),
            }
        )
        await self._record_history(
            ticket_id, HistoryAction.RESUME, reason or "SLA clock resumed", actor
        )
        await self._emit_escalation(result, AlertTrigger.AUTOMATIC)
        return result

    async def apply_hold_action(
        self,
        ticket_id: str,
        action: str,
        actor: str = "system",
        reason: Optional[str] = None
    ) -> TicketSLA:
        """Dispatch a hold request to pause or resume."""
        if action not in VALID_HOLD_ACTIONS:
            raise ValidationException(
                f"Invalid action '{action}'",
                {"allowed": VALID_HOLD_ACTIONS}
            )
        if action == ClockAction.PAUSE.value:
            return await self.pause(ticket_id, actor=actor, reason=reason)
        result = await self.resume(ticket_id, actor=actor, reason=reason)
        return result.ticket

    async def resolve(
        self,
        ticket_id: str,
        resolved_at: Optional[datetime] = None,
        actor: str = "system"
    ) -> TicketSLA:
        """Stop the clock permanently and freeze consumption."""

        async def mutation(ticket: TicketSLA, now: datetime):
            consumption = PauseResumeController.resolve(ticket, resolved_at or now, now)
            return None, consumption

        result = await self._mutate(ticket_id, mutation)
        pct = result.ticket.sla_consumption_pct
        logger.info(
            "SLA clock resolved",
            extra={"ticket_id": ticket_id, "actor": actor, "sla_consumption_pct": round(pct, 2)}
        )
        await self._record_history(
            ticket_id,
            HistoryAction.RESOLVE,
            f"Resolved at {pct:.1f}% SLA consumption",
            actor,
        )
        return result.ticket

    # ---------- Escalation ----------

    async def escalate(
        self,
        ticket_id: str,
        reason: Optional[str] = None,
        actor: str = "system"
    ) -> RecomputeResult:
        """
        Escalate a ticket one level regardless of consumption.

        The alert for the new level is stored with the human-supplied
        reason; the automatic ladder will not re-alert that level later.
        """
        reason = (reason or "").strip() or "Manual escalation"

        async def mutation(ticket: TicketSLA, now: datetime):
            policy = await self._config.get_escalation_policy(ticket.scope)
            decision = EscalationLadder.escalate_manually(ticket, policy, now)
            return decision, None

        result = await self._mutate(ticket_id, mutation)
        new_level = result.ticket.escalation_level
        logger.info(
            "Ticket escalated manually",
            extra={"ticket_id": ticket_id, "actor": actor, "escalation_level": new_level}
        )
        await self._record_history(
            ticket_id,
            HistoryAction.ESCALATION,
            f"Escalated to Level {new_level}: {reason}",
            actor,
        )
        await self._emit_escalation(result, AlertTrigger.MANUAL, reason=reason)
        return result

    async def acknowledge_alert(self, alert_id: str, actor: str = "system") -> EscalationAlert:
        """Mark an alert as acknowledged; acknowledging twice is rejected."""
        alert = await self._alerts.get(alert_id)
        if alert is None:
            raise ResourceNotFoundException("Alert", alert_id)
        alert.acknowledge(actor, self._clock())
        alert = await self._alerts.save(alert)
        logger.info(
            "Escalation alert acknowledged",
            extra={"alert_id": alert_id, "ticket_id": alert.ticket_id, "actor": actor}
        )
        return alert

    # ---------- Internals ----------

    async def _mutate(
        self,
        ticket_id: str,
        mutation: Mutation,
        skip_if_unchanged: bool = False
    ) -> RecomputeResult:
        """
        Read-compute-conditional-write with bounded retries.

        Each attempt re-reads the ticket so the mutation always works on the
        latest committed state.
        """
        for attempt in range(1, self._max_write_retries + 1):
            ticket = await self.get_ticket(ticket_id)
            expected_version = ticket.version
            before = _snapshot(ticket)

            now = self._clock()
            decision, consumption = await mutation(ticket, now)

            if skip_if_unchanged and _snapshot(ticket) == before:
                return RecomputeResult(ticket=ticket, consumption=consumption, decision=decision)

            ticket.version = expected_version + 1
            ticket.updated_at = now
            if await self._tickets.save_if_unchanged(ticket, expected_version):
                return RecomputeResult(
                    ticket=ticket,
                    consumption=consumption,
                    decision=decision,
                    written=True,
                )

            logger.info(
                "Concurrent SLA update detected, retrying",
                extra={"ticket_id": ticket_id, "attempt": attempt, "expected_version": expected_version}
            )

        logger.warning(
            "SLA update abandoned after repeated conflicts",
            extra={"ticket_id": ticket_id, "attempts": self._max_write_retries}
        )
        raise ConcurrencyConflictException(
            f"Ticket '{ticket_id}' was modified concurrently, giving up after "
            f"{self._max_write_retries} attempts",
            {"ticket_id": ticket_id, "attempts": self._max_write_retries}
        )

    async def _emit_escalation(
        self,
        result: RecomputeResult,
        trigger: AlertTrigger,
        reason: Optional[str] = None
    ) -> None:
        """Store one alert per crossed level, then notify the rung's roles."""
        decision = result.decision
        if not result.written or decision is None or not decision.crossed:
            return

        ticket = result.ticket
        for rung in decision.crossed:
            try:
                alert = await self._emit_alert(ticket, rung, trigger, reason)
            except Exception as e:
                result.alert_failures += 1
                logger.error(
                    "Failed to emit escalation alert",
                    extra={
                        "event": "alert_emission_failed",
                        "ticket_id": ticket.ticket_id,
                        "alert_level": rung.level,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                )
                continue

            if alert is None:
                logger.info(
                    "Escalation alert already exists",
                    extra={"ticket_id": ticket.ticket_id, "alert_level": rung.level}
                )
                continue

            result.alerts.append(alert)
            if trigger == AlertTrigger.AUTOMATIC:
                await self._record_history(
                    ticket.ticket_id,
                    HistoryAction.AUTO_ESCALATION,
                    f"Auto-escalated to Level {rung.level} at {alert.consumption_pct:.1f}% "
                    f"SLA consumption"
                    + (f": {rung.action_description}" if rung.action_description else ""),
                    "system",
                )

        logger.info(
            "Escalation processed",
            extra={
                "ticket_id": ticket.ticket_id,
                "previous_level": decision.previous_level,
                "new_level": decision.new_level,
                "alerts_emitted": len(result.alerts),
                "alert_failures": result.alert_failures,
                "trigger": trigger.value,
            }
        )

    async def _emit_alert(
        self,
        ticket: TicketSLA,
        rung: EscalationLevel,
        trigger: AlertTrigger,
        reason: Optional[str]
    ) -> Optional[EscalationAlert]:
        recipients = await self._roles.get_members(ticket.scope, rung.notify_roles)
        alert = EscalationAlert(
            id=str(uuid4()),
            ticket_id=ticket.ticket_id,
            alert_level=rung.level,
            consumption_pct=ticket.sla_consumption_pct,
            notified_emails=list(recipients),
            notification_channel=self._channel,
            trigger=trigger,
            reason=reason or rung.action_description or None,
            created_at=self._clock(),
        )
        stored = await self._alerts.add_unique(alert)
        if stored is None or not recipients:
            return stored

        title = f"SLA escalation Level {rung.level}: ticket {ticket.ticket_id}"
        body = (
            f"Ticket {ticket.ticket_id} ({ticket.priority}) is at "
            f"{ticket.sla_consumption_pct:.1f}% of its resolution SLA."
        )
        if rung.action_description:
            body += f" Action: {rung.action_description}"
        await self._notifications.add_many([
            Notification(
                id=str(uuid4()),
                recipient_email=email,
                type="sla_escalation",
                title=title,
                body=body,
                ticket_id=ticket.ticket_id,
                alert_level=rung.level,
                link=f"/tickets/{ticket.ticket_id}",
                created_at=stored.created_at,
            )
            for email in recipients
        ])
        return stored

    async def _record_history(
        self,
        ticket_id: str,
        action: HistoryAction,
        notes: str,
        actor: str
    ) -> None:
        try:
            await self._audit.add(
                AuditEntry(
                    id=str(uuid4()),
                    ticket_id=ticket_id,
                    action_type=action,
                    notes=notes,
                    created_by=actor,
                    created_at=self._clock(),
                )
            )
        except Exception as e:
            logger.error(
                "Failed to record ticket history",
                extra={
                    "ticket_id": ticket_id,
                    "action_type": action.value,
                    "error": str(e),
                }
            )


def _snapshot(ticket: TicketSLA) -> tuple:
    return (
        round(ticket.sla_consumption_pct, 6),
        ticket.sla_status,
        ticket.escalation_level,
        ticket.paused_at,
        ticket.resolved_at,
        ticket.accumulated_pause,
    )


# Factory yielding an engine bound to its own unit of work.
EngineFactory = Callable[[], AbstractAsyncContextManager]


class SLASweepService:
    """
    Service for the periodic recomputation of all open tickets.

    Open tickets are paged through in (created_at, ticket_id) order,
    `batch_size` at a time, and recomputed concurrently up to a bound, each
    in its own unit of work. A tick that runs out of time budget cancels the
    outstanding tickets of its current page and remembers where it stopped;
    the next tick continues from there, and wraps around to the oldest open
    ticket once the end is reached.
    """

    def __init__(
        self,
        engine_factory: EngineFactory,
        budget_seconds: float = 30.0,
        concurrency: int = 8,
        batch_size: int = 500
    ):
        self._engine_factory = engine_factory
        self._budget_seconds = budget_seconds
        self._concurrency = concurrency
        self._batch_size = batch_size
        self._cursor: Optional[OpenTicketKey] = None

    async def sweep(self) -> SweepResult:
        """
        Recompute open tickets until every one was visited or the budget is spent.

        Returns:
            SweepResult with counters for the tick
        """
        started = time.perf_counter()
        deadline = started + self._budget_seconds
        result = SweepResult()
        semaphore = asyncio.Semaphore(self._concurrency)
        cursor = self._cursor

        while True:
            async with self._engine_factory() as engine:
                keys = await engine.list_open_keys(limit=self._batch_size, after=cursor)
            result.tickets_selected += len(keys)

            if keys:
                cursor = keys[-1]
                remaining = max(deadline - time.perf_counter(), 0.0)
                await self._recompute_page([key[1] for key in keys], semaphore, remaining, result)

            if len(keys) < self._batch_size:
                # Reached the newest open ticket; the next tick starts over.
                cursor = None
                break
            if result.timed_out or time.perf_counter() >= deadline:
                break

        self._cursor = cursor
        if result.timed_out:
            logger.warning(
                "SLA sweep exceeded its time budget",
                extra={
                    "budget_seconds": self._budget_seconds,
                    "cancelled": result.timed_out,
                    "resume_after": cursor[1] if cursor else None,
                }
            )

        result.duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info("SLA sweep completed", extra=result.to_dict())
        return result

    async def _recompute_page(
        self,
        ticket_ids: List[str],
        semaphore: asyncio.Semaphore,
        timeout: float,
        result: SweepResult
    ) -> None:
        tasks = [
            asyncio.create_task(self._recompute_one(ticket_id, semaphore))
            for ticket_id in ticket_ids
        ]
        done, pending = await asyncio.wait(tasks, timeout=timeout)

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            result.timed_out += len(pending)

        for task in done:
            if task.cancelled():
                result.timed_out += 1
                continue
            outcome = task.result()
            if outcome is None:
                result.errors += 1
                continue
            result.tickets_evaluated += 1
            result.alerts_emitted += len(outcome.alerts)
            result.alert_failures += outcome.alert_failures
            if outcome.decision is not None and outcome.decision.advanced:
                result.tickets_escalated += 1

    async def _recompute_one(
        self,
        ticket_id: str,
        semaphore: asyncio.Semaphore
    ) -> Optional[RecomputeResult]:
        async with semaphore:
            try:
                async with self._engine_factory() as engine:
                    return await engine.recompute(ticket_id)
            except Exception as e:
                logger.error(
                    "SLA recomputation failed",
                    extra={
                        "ticket_id": ticket_id,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                )
                return None
