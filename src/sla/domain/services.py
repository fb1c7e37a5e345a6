"""
SLA Domain Services
===================

Stateless business logic of the SLA engine, applied to one TicketSLA at a time:

- DueTimeCalculator: response/resolution deadlines at creation
- ConsumptionTracker: elapsed service time and percentage of window consumed
- StatusClassifier: status label from clock state and consumption
- PauseResumeController: explicit clock state machine
- EscalationLadder: threshold evaluation and level advancement

None of these touch storage. The application layer reads a record, runs
these in sequence, then writes the result conditionally.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from src.config import ClockAction, ClockState, SLAStatus
from src.core.exceptions import (
    ConfigurationException,
    InvalidStateException,
    ValidationException,
)
from src.sla.domain.calendar import BusinessCalendarClock
from src.sla.domain.entities import TicketSLA
from src.sla.domain.value_objects import (
    BusinessCalendar,
    EscalationLevel,
    EscalationPolicy,
    SLATarget,
    StatusThresholds,
)


class DueTimeCalculator:
    """Derives deadlines from a pinned SLA target."""

    @staticmethod
    def calculate(
        created_at: datetime,
        target: SLATarget,
        calendar: BusinessCalendar
    ) -> Tuple[datetime, datetime]:
        """
        Calculate (response_due, resolution_due) for a new ticket.

        Invoked once at creation; the result is pinned onto the ticket.
        """
        response_due = BusinessCalendarClock.add_service_time(
            created_at, target.response_hours, calendar, target.resolution_type
        )
        resolution_due = BusinessCalendarClock.add_service_time(
            created_at, target.resolution_hours, calendar, target.resolution_type
        )
        return response_due, resolution_due


@dataclass(frozen=True)
class Consumption:
    """Result of a consumption measurement."""
    elapsed: timedelta
    total_window: timedelta
    pct: float


class ConsumptionTracker:
    """
    Converts a ticket's timestamps into consumed service time.

    Always derived fresh from timestamps, never from the previously stored
    percentage.
    """

    @staticmethod
    def reference_end(ticket: TicketSLA, now: datetime) -> datetime:
        """
        Instant at which the clock is read.

        A ticket resolved while paused keeps its `paused_at`; its clock
        stopped when the pause began.
        """
        if ticket.paused_at is not None:
            return ticket.paused_at
        if ticket.resolved_at is not None:
            return ticket.resolved_at
        return now

    @staticmethod
    def service_time(ticket: TicketSLA, start: datetime, end: datetime) -> timedelta:
        """Service time between two instants under the ticket's pinned calendar."""
        return BusinessCalendarClock.elapsed_service_time(
            start, end, ticket.calendar, ticket.sla_target.resolution_type
        )

    @classmethod
    def measure(cls, ticket: TicketSLA, now: datetime) -> Consumption:
        """Compute consumption without mutating the ticket."""
        end = cls.reference_end(ticket, now)
        elapsed = cls.service_time(ticket, ticket.created_at, end) - ticket.accumulated_pause
        elapsed = max(elapsed, timedelta(0))

        total_window = cls.service_time(ticket, ticket.created_at, ticket.resolution_due)
        if total_window <= timedelta(0):
            raise ConfigurationException(
                "Resolution window is empty",
                {"ticket_id": ticket.ticket_id, "resolution_due": ticket.resolution_due.isoformat()}
            )

        pct = 100.0 * (elapsed / total_window)
        return Consumption(elapsed=elapsed, total_window=total_window, pct=pct)

    @classmethod
    def recompute(cls, ticket: TicketSLA, now: datetime) -> Consumption:
        """Measure and store the uncapped percentage on the ticket."""
        consumption = cls.measure(ticket, now)
        ticket.sla_consumption_pct = consumption.pct
        return consumption


class StatusClassifier:
    """Deterministic mapping from clock state and consumption to a status label."""

    @staticmethod
    def label_for(pct: float, thresholds: StatusThresholds) -> SLAStatus:
        # Inclusive lower bounds: exactly 75.00 is a warning.
        if pct >= thresholds.breached:
            return SLAStatus.BREACHED
        if pct >= thresholds.critical:
            return SLAStatus.CRITICAL
        if pct >= thresholds.warning:
            return SLAStatus.WARNING
        return SLAStatus.HEALTHY

    @classmethod
    def classify(
        cls,
        ticket: TicketSLA,
        thresholds: StatusThresholds,
        pct: Optional[float] = None
    ) -> SLAStatus:
        if ticket.resolved_at is not None:
            return SLAStatus.RESOLVED
        if ticket.paused_at is not None:
            return SLAStatus.PAUSED
        value = ticket.sla_consumption_pct if pct is None else pct
        return cls.label_for(value, thresholds)


# Every transition not listed here is rejected.
CLOCK_TRANSITIONS: Dict[Tuple[ClockState, ClockAction], ClockState] = {
    (ClockState.RUNNING, ClockAction.PAUSE): ClockState.PAUSED,
    (ClockState.PAUSED, ClockAction.RESUME): ClockState.RUNNING,
    (ClockState.RUNNING, ClockAction.RESOLVE): ClockState.RESOLVED,
    (ClockState.PAUSED, ClockAction.RESOLVE): ClockState.RESOLVED,
}


class PauseResumeController:
    """
    Clock state machine: running -> paused -> running -> ... -> resolved.

    Resolved is terminal.
    """

    @staticmethod
    def transition(state: ClockState, action: ClockAction) -> ClockState:
        try:
            return CLOCK_TRANSITIONS[(state, action)]
        except KeyError:
            raise InvalidStateException(state.value, action.value) from None

    @classmethod
    def pause(cls, ticket: TicketSLA, now: datetime) -> None:
        """
        Suspend the clock.

        The stored percentage is frozen as-is; the status is set to paused
        directly rather than reclassified.
        """
        cls.transition(ticket.clock_state, ClockAction.PAUSE)
        ticket.paused_at = max(now, ticket.created_at)
        ticket.sla_status = SLAStatus.PAUSED

    @classmethod
    def resume(
        cls,
        ticket: TicketSLA,
        now: datetime,
        thresholds: StatusThresholds
    ) -> Consumption:
        """Restart the clock, bank the paused service time, recompute and reclassify."""
        cls.transition(ticket.clock_state, ClockAction.RESUME)
        paused_for = ConsumptionTracker.service_time(ticket, ticket.paused_at, now)
        ticket.accumulated_pause += paused_for
        ticket.paused_at = None
        ticket.last_resumed_at = now

        consumption = ConsumptionTracker.recompute(ticket, now)
        ticket.sla_status = StatusClassifier.classify(ticket, thresholds)
        return consumption

    @classmethod
    def resolve(
        cls,
        ticket: TicketSLA,
        resolved_at: datetime,
        now: datetime
    ) -> Consumption:
        """
        Stop the clock for good.

        `resolved_at` may be backdated, but never before the last clock
        transition and never after `now`. Resolving while paused leaves
        accumulated_pause untouched.
        """
        cls.transition(ticket.clock_state, ClockAction.RESOLVE)
        if resolved_at > now:
            raise ValidationException(
                "resolved_at cannot be in the future",
                {"resolved_at": resolved_at.isoformat(), "now": now.isoformat()}
            )
        floor = ticket.paused_at or ticket.last_resumed_at or ticket.created_at
        if resolved_at < floor:
            raise ValidationException(
                "resolved_at cannot be before the last SLA clock change",
                {"resolved_at": resolved_at.isoformat(), "earliest": floor.isoformat()}
            )
        ticket.resolved_at = resolved_at
        consumption = ConsumptionTracker.recompute(ticket, now)
        ticket.sla_status = SLAStatus.RESOLVED
        return consumption


@dataclass(frozen=True)
class EscalationDecision:
    """Outcome of one ladder evaluation."""
    previous_level: int
    new_level: int
    crossed: Tuple[EscalationLevel, ...] = ()

    @property
    def advanced(self) -> bool:
        return self.new_level > self.previous_level


class EscalationLadder:
    """
    Ordered threshold evaluation.

    `escalation_level` only ever advances. Every level crossed in a single
    pass is reported, not just the last one.
    """

    @staticmethod
    def evaluate(
        ticket: TicketSLA,
        pct: float,
        policy: EscalationPolicy,
        now: datetime
    ) -> EscalationDecision:
        previous = ticket.escalation_level
        target = policy.level_for(pct)
        if target <= previous:
            return EscalationDecision(previous_level=previous, new_level=previous)

        crossed = tuple(policy.levels_between(previous, target))
        ticket.escalation_level = target
        ticket.last_escalation_at = now
        return EscalationDecision(previous_level=previous, new_level=target, crossed=crossed)

    @staticmethod
    def escalate_manually(
        ticket: TicketSLA,
        policy: EscalationPolicy,
        now: datetime
    ) -> EscalationDecision:
        """
        Force the ticket one level up regardless of consumption.

        Past the top of the configured ladder the highest rung's roles are
        notified.
        """
        if ticket.resolved_at is not None:
            raise InvalidStateException(ClockState.RESOLVED.value, "escalate")

        previous = ticket.escalation_level
        new_level = previous + 1
        rung = policy.get(new_level)
        if rung is None:
            top = policy.levels[-1]
            rung = EscalationLevel(
                level=new_level,
                threshold_percent=top.threshold_percent,
                notify_roles=top.notify_roles,
                action_description=top.action_description,
            )
        ticket.escalation_level = new_level
        ticket.last_escalation_at = now
        return EscalationDecision(previous_level=previous, new_level=new_level, crossed=(rung,))
