"""
SLA Engine Service Tests
=========================

Tests for SLAEngineService against in-memory repositories:
- Registration and pinning of SLA targets
- Recomputation, escalation and alert emission
- Pause / resume / resolve clock control
- Manual escalation and acknowledgement
- Conditional writes under concurrency
- Best-effort alert emission
"""

import asyncio
import logging
from datetime import datetime, timedelta

import pytest

from src.config import AlertTrigger, ClockState, HistoryAction, ResolutionType, SLAStatus
from src.core.exceptions import (
    ConcurrencyConflictException,
    ConfigurationException,
    InvalidStateException,
    ResourceNotFoundException,
    ValidationException,
)
from src.sla.domain import ALWAYS_ON_CALENDAR, EscalationLevel, EscalationPolicy, SLATarget
from tests.fakes import (
    T0,
    ConflictingTicketRepository,
    EngineHarness,
    FailingAlertRepository,
    RacingTicketRepository,
)

TICKET = "TICKET-001"


async def register(engine, ticket_id=TICKET, priority="P1"):
    return await engine.register_ticket(ticket_id, "acme", priority, T0, actor="agent@acme.example")


class TestRegistration:
    """Creating the SLA record of a ticket."""

    @pytest.mark.asyncio
    async def test_register_pins_target_and_due_times(self, harness, engine):
        ticket = await register(engine)

        assert ticket.response_due == T0 + timedelta(hours=1)
        assert ticket.resolution_due == T0 + timedelta(hours=10)
        assert ticket.sla_target == SLATarget(1, 10, ResolutionType.CALENDAR)
        assert ticket.clock_state == ClockState.RUNNING
        assert ticket.escalation_level == 0
        assert TICKET in harness.tickets.rows

    @pytest.mark.asyncio
    async def test_register_writes_history(self, harness, engine):
        await register(engine)
        history = await engine.history(TICKET)
        assert [e.action_type for e in history] == [HistoryAction.CREATED]
        assert history[0].created_by == "agent@acme.example"

    @pytest.mark.asyncio
    async def test_register_is_idempotent(self, harness, engine):
        first = await register(engine)
        again = await register(engine, priority="P2")
        assert again.priority == first.priority == "P1"
        assert len(harness.tickets.rows) == 1

    @pytest.mark.asyncio
    async def test_concurrent_registration_returns_stored_record(self):
        harness = EngineHarness(ticket_repository=RacingTicketRepository())
        engine = harness.engine()

        ticket = await register(engine, priority="P2")

        assert ticket.priority == "P1"
        assert harness.tickets.rows[TICKET].priority == "P1"
        assert await engine.history(TICKET) == []

    @pytest.mark.asyncio
    async def test_unknown_scope_is_a_configuration_error(self, engine):
        with pytest.raises(ConfigurationException):
            await engine.register_ticket("T-2", "initech", "P1", T0)

    @pytest.mark.asyncio
    async def test_unknown_priority_is_a_configuration_error(self, engine):
        with pytest.raises(ConfigurationException):
            await engine.register_ticket("T-2", "acme", "P9", T0)

    @pytest.mark.asyncio
    async def test_business_hours_without_calendar_rejected(self, harness, engine):
        harness.config.calendars["acme"] = None
        with pytest.raises(ConfigurationException):
            await register(engine, priority="P2")

    @pytest.mark.asyncio
    async def test_calendar_mode_without_calendar_uses_round_the_clock(self, harness, engine):
        harness.config.calendars["acme"] = None
        ticket = await register(engine)
        assert ticket.calendar == ALWAYS_ON_CALENDAR

    @pytest.mark.asyncio
    async def test_naive_created_at_rejected(self, engine):
        with pytest.raises(ValidationException):
            await engine.register_ticket(TICKET, "acme", "P1", datetime(2024, 1, 15, 6, 0))

    @pytest.mark.asyncio
    async def test_config_change_does_not_move_due_times(self, harness, engine):
        ticket = await register(engine)
        harness.config.targets[("acme", "P1")] = SLATarget(1, 100)

        harness.clock.advance(hours=7, minutes=30)
        result = await engine.recompute(TICKET)

        assert result.ticket.resolution_due == ticket.resolution_due
        assert result.ticket.sla_consumption_pct == pytest.approx(75.0)


class TestRecompute:
    """Consumption, status and automatic escalation."""

    @pytest.mark.asyncio
    async def test_unknown_ticket(self, engine):
        with pytest.raises(ResourceNotFoundException):
            await engine.recompute("missing")

    @pytest.mark.asyncio
    async def test_healthy_ticket(self, harness, engine):
        await register(engine)
        harness.clock.advance(hours=3)

        result = await engine.recompute(TICKET)

        assert result.written
        assert result.ticket.sla_status == SLAStatus.HEALTHY
        assert result.alerts == []
        assert harness.tickets.rows[TICKET].sla_consumption_pct == pytest.approx(30.0)

    @pytest.mark.asyncio
    async def test_crossing_first_threshold(self, harness, engine):
        await register(engine)
        harness.clock.advance(hours=7, minutes=30)

        result = await engine.recompute(TICKET)

        assert result.ticket.sla_status == SLAStatus.WARNING
        assert result.ticket.escalation_level == 1
        assert result.previous_level == 0
        assert len(result.alerts) == 1
        alert = result.alerts[0]
        assert alert.alert_level == 1
        assert alert.trigger == AlertTrigger.AUTOMATIC
        assert alert.notified_emails == ["agent@acme.example"]
        assert alert.consumption_pct == pytest.approx(75.0)

        assert [n.recipient_email for n in harness.notifications.rows] == ["agent@acme.example"]
        assert harness.notifications.rows[0].link == f"/tickets/{TICKET}"

        notes = [e.notes for e in harness.audit.rows if e.action_type == HistoryAction.AUTO_ESCALATION]
        assert notes == ["Auto-escalated to Level 1 at 75.0% SLA consumption: Notify assigned agent"]

    @pytest.mark.asyncio
    async def test_multi_level_jump_alerts_every_level(self, harness, engine):
        await register(engine)
        harness.clock.advance(hours=12)

        result = await engine.recompute(TICKET)

        assert result.ticket.sla_status == SLAStatus.BREACHED
        assert result.ticket.sla_consumption_pct == pytest.approx(120.0)
        assert [a.alert_level for a in result.alerts] == [1, 2, 3]
        # Level 2 notifies agent + team lead; the agent appears in both roles once.
        level_two = [n for n in harness.notifications.rows if n.alert_level == 2]
        assert sorted(n.recipient_email for n in level_two) == ["agent@acme.example", "lead@acme.example"]

    @pytest.mark.asyncio
    async def test_repeat_recompute_does_not_realert(self, harness, engine):
        await register(engine)
        harness.clock.advance(hours=8)
        await engine.recompute(TICKET)

        attempts = harness.tickets.write_attempts
        again = await engine.recompute(TICKET)

        assert again.written is False
        assert again.alerts == []
        assert harness.tickets.write_attempts == attempts
        assert len(harness.alerts.rows) == 1

    @pytest.mark.asyncio
    async def test_escalation_policy_is_read_live(self, harness, engine):
        await register(engine)
        harness.config.policies["acme"] = EscalationPolicy(
            levels=(EscalationLevel(1, 40.0, ("admin",)),)
        )
        harness.clock.advance(hours=5)

        result = await engine.recompute(TICKET)

        assert result.ticket.escalation_level == 1
        assert result.alerts[0].notified_emails == ["admin@acme.example"]

    @pytest.mark.asyncio
    async def test_escalation_level_is_monotonic(self, harness, engine):
        await register(engine)
        harness.clock.advance(hours=9, minutes=30)
        await engine.recompute(TICKET)

        harness.config.policies["acme"] = EscalationPolicy(
            levels=(
                EscalationLevel(1, 150.0),
                EscalationLevel(2, 200.0),
                EscalationLevel(3, 300.0),
            )
        )
        harness.clock.advance(minutes=5)
        result = await engine.recompute(TICKET)

        assert result.ticket.escalation_level == 2
        assert result.alerts == []

    @pytest.mark.asyncio
    async def test_missing_ladder_is_a_configuration_error(self, harness, engine):
        await register(engine)
        del harness.config.policies["acme"]
        with pytest.raises(ConfigurationException):
            await engine.recompute(TICKET)

    @pytest.mark.asyncio
    async def test_no_recipients_still_stores_alert(self, harness, engine):
        await register(engine)
        harness.config.members["acme"] = {}
        harness.clock.advance(hours=8)

        result = await engine.recompute(TICKET)

        assert len(result.alerts) == 1
        assert result.alerts[0].notified_emails == []
        assert harness.notifications.rows == []


class TestAlertFailures:
    """Alert emission never rolls back the ticket update."""

    @pytest.mark.asyncio
    async def test_failed_alerts_are_counted_and_logged(self, harness, caplog):
        engine = harness.engine(alert_repository=FailingAlertRepository())
        await register(engine)
        harness.clock.advance(hours=11)

        with caplog.at_level(logging.ERROR):
            result = await engine.recompute(TICKET)

        assert result.written
        assert result.alert_failures == 3
        assert result.alerts == []
        assert harness.tickets.rows[TICKET].escalation_level == 3
        failures = [r for r in caplog.records if getattr(r, "event", None) == "alert_emission_failed"]
        assert len(failures) == 3
        assert {r.alert_level for r in failures} == {1, 2, 3}


class TestConcurrency:
    """Conditional writes and alert uniqueness."""

    @pytest.mark.asyncio
    async def test_concurrent_recomputes_alert_once(self, harness):
        engine = harness.engine()
        await register(engine)
        harness.clock.advance(hours=11)

        results = await asyncio.gather(
            harness.engine().recompute(TICKET),
            harness.engine().recompute(TICKET),
            harness.engine().recompute(TICKET),
        )

        assert sum(len(r.alerts) for r in results) == 3
        assert sorted(a.alert_level for a in harness.alerts.rows.values()) == [1, 2, 3]
        assert harness.tickets.rows[TICKET].escalation_level == 3

    @pytest.mark.asyncio
    async def test_conflict_surfaces_after_retries(self):
        harness = EngineHarness(ticket_repository=ConflictingTicketRepository())
        engine = harness.engine(max_write_retries=3)
        await register(engine)
        harness.clock.advance(hours=5)

        with pytest.raises(ConcurrencyConflictException) as exc_info:
            await engine.recompute(TICKET)

        assert harness.tickets.write_attempts == 3
        assert exc_info.value.details["attempts"] == 3
        assert harness.alerts.rows == {}


class TestClockControl:
    """Pause, resume and resolve."""

    @pytest.mark.asyncio
    async def test_pause_then_resume_banks_time(self, harness, engine):
        await register(engine)
        harness.clock.advance(hours=2)
        paused = await engine.pause(TICKET, actor="agent@acme.example", reason="Waiting on customer")
        assert paused.sla_status == SLAStatus.PAUSED

        harness.clock.advance(hours=5)
        result = await engine.resume(TICKET)

        assert result.ticket.accumulated_pause == timedelta(hours=5)
        assert result.ticket.sla_consumption_pct == pytest.approx(20.0)
        assert result.ticket.sla_status == SLAStatus.HEALTHY
        actions = [e.action_type for e in harness.audit.rows]
        assert actions == [HistoryAction.CREATED, HistoryAction.PAUSE, HistoryAction.RESUME]
        assert harness.audit.rows[1].notes == "Waiting on customer"

    @pytest.mark.asyncio
    async def test_paused_ticket_does_not_consume(self, harness, engine):
        await register(engine)
        harness.clock.advance(hours=2)
        await engine.recompute(TICKET)
        await engine.pause(TICKET)

        harness.clock.advance(days=3)
        result = await engine.recompute(TICKET)

        assert result.ticket.sla_consumption_pct == pytest.approx(20.0)
        assert result.ticket.sla_status == SLAStatus.PAUSED
        assert result.ticket.escalation_level == 0

    @pytest.mark.asyncio
    async def test_resume_evaluates_ladder_immediately(self, harness, engine):
        await register(engine)
        harness.clock.advance(hours=8)
        await engine.pause(TICKET)
        harness.clock.advance(hours=1)

        result = await engine.resume(TICKET)

        assert result.ticket.sla_consumption_pct == pytest.approx(80.0)
        assert result.ticket.escalation_level == 1
        assert [a.alert_level for a in result.alerts] == [1]

    @pytest.mark.asyncio
    async def test_double_pause_rejected(self, harness, engine):
        await register(engine)
        await engine.pause(TICKET)
        with pytest.raises(InvalidStateException):
            await engine.pause(TICKET)

    @pytest.mark.asyncio
    async def test_resume_running_rejected(self, engine):
        await register(engine)
        with pytest.raises(InvalidStateException):
            await engine.resume(TICKET)

    @pytest.mark.asyncio
    async def test_hold_action_dispatch(self, engine):
        await register(engine)
        paused = await engine.apply_hold_action(TICKET, "pause")
        assert paused.clock_state == ClockState.PAUSED
        resumed = await engine.apply_hold_action(TICKET, "resume")
        assert resumed.clock_state == ClockState.RUNNING

    @pytest.mark.asyncio
    async def test_invalid_hold_action(self, engine):
        await register(engine)
        with pytest.raises(ValidationException):
            await engine.apply_hold_action(TICKET, "snooze")

    @pytest.mark.asyncio
    async def test_resolve_freezes_consumption(self, harness, engine):
        await register(engine)
        harness.clock.advance(hours=6)
        ticket = await engine.resolve(TICKET)

        assert ticket.sla_status == SLAStatus.RESOLVED
        assert ticket.sla_consumption_pct == pytest.approx(60.0)

        harness.clock.advance(hours=20)
        result = await engine.recompute(TICKET)
        assert result.ticket.sla_consumption_pct == pytest.approx(60.0)
        assert result.alerts == []
        assert TICKET not in [key[1] for key in await engine.list_open_keys()]
        assert harness.audit.rows[-1].notes == "Resolved at 60.0% SLA consumption"

    @pytest.mark.asyncio
    async def test_resolve_with_explicit_time(self, harness, engine):
        await register(engine)
        harness.clock.advance(hours=6)
        ticket = await engine.resolve(TICKET, resolved_at=T0 + timedelta(hours=4))
        assert ticket.sla_consumption_pct == pytest.approx(40.0)

    @pytest.mark.asyncio
    async def test_resolve_before_creation_rejected(self, engine):
        await register(engine)
        with pytest.raises(ValidationException):
            await engine.resolve(TICKET, resolved_at=T0 - timedelta(hours=1))

    @pytest.mark.asyncio
    async def test_resolve_before_last_resume_rejected(self, harness, engine):
        await register(engine)
        harness.clock.advance(hours=2)
        await engine.pause(TICKET)
        harness.clock.advance(hours=4)
        await engine.resume(TICKET)
        harness.clock.advance(hours=1)

        with pytest.raises(ValidationException):
            await engine.resolve(TICKET, resolved_at=T0 + timedelta(hours=3))

        ticket = await engine.get_ticket(TICKET)
        assert ticket.resolved_at is None
        resolved = await engine.resolve(TICKET, resolved_at=T0 + timedelta(hours=6, minutes=30))
        assert resolved.sla_consumption_pct == pytest.approx(25.0)

    @pytest.mark.asyncio
    async def test_resolve_in_future_rejected(self, harness, engine):
        await register(engine)
        harness.clock.advance(hours=1)
        with pytest.raises(ValidationException):
            await engine.resolve(TICKET, resolved_at=T0 + timedelta(hours=2))

    @pytest.mark.asyncio
    async def test_resolved_is_terminal(self, engine):
        await register(engine)
        await engine.resolve(TICKET)
        with pytest.raises(InvalidStateException):
            await engine.pause(TICKET)
        with pytest.raises(InvalidStateException):
            await engine.resolve(TICKET)

    @pytest.mark.asyncio
    async def test_resolve_while_paused(self, harness, engine):
        await register(engine)
        harness.clock.advance(hours=2)
        await engine.pause(TICKET)
        harness.clock.advance(hours=3)

        ticket = await engine.resolve(TICKET)

        assert ticket.sla_consumption_pct == pytest.approx(20.0)
        assert ticket.accumulated_pause == timedelta(0)


class TestManualEscalation:

    @pytest.mark.asyncio
    async def test_escalate_with_reason(self, harness, engine):
        await register(engine)
        result = await engine.escalate(TICKET, reason="VIP customer", actor="lead@acme.example")

        assert result.ticket.escalation_level == 1
        alert = result.alerts[0]
        assert alert.trigger == AlertTrigger.MANUAL
        assert alert.reason == "VIP customer"
        escalations = [e for e in harness.audit.rows if e.action_type == HistoryAction.ESCALATION]
        assert escalations[0].notes == "Escalated to Level 1: VIP customer"
        assert escalations[0].created_by == "lead@acme.example"

    @pytest.mark.asyncio
    async def test_default_reason(self, engine):
        await register(engine)
        result = await engine.escalate(TICKET, reason="   ")
        assert result.alerts[0].reason == "Manual escalation"

    @pytest.mark.asyncio
    async def test_automatic_ladder_skips_manually_reached_level(self, harness, engine):
        await register(engine)
        await engine.escalate(TICKET)
        harness.clock.advance(hours=8)

        result = await engine.recompute(TICKET)

        assert result.ticket.escalation_level == 1
        assert result.alerts == []
        assert len(harness.alerts.rows) == 1

    @pytest.mark.asyncio
    async def test_escalate_past_top_of_ladder(self, harness, engine):
        await register(engine)
        for _ in range(4):
            result = await engine.escalate(TICKET)
        assert result.ticket.escalation_level == 4
        assert result.alerts[0].notified_emails == ["admin@acme.example"]

    @pytest.mark.asyncio
    async def test_escalate_resolved_rejected(self, engine):
        await register(engine)
        await engine.resolve(TICKET)
        with pytest.raises(InvalidStateException):
            await engine.escalate(TICKET)


class TestAlertsAndReports:

    @pytest.mark.asyncio
    async def test_acknowledge_alert(self, harness, engine):
        await register(engine)
        harness.clock.advance(hours=8)
        alert = (await engine.recompute(TICKET)).alerts[0]

        acked = await engine.acknowledge_alert(alert.id, actor="agent@acme.example")

        assert acked.is_acknowledged
        assert acked.acknowledged_by == "agent@acme.example"
        assert acked.acknowledged_at == harness.clock.now
        with pytest.raises(InvalidStateException):
            await engine.acknowledge_alert(alert.id)

    @pytest.mark.asyncio
    async def test_acknowledge_unknown_alert(self, engine):
        with pytest.raises(ResourceNotFoundException):
            await engine.acknowledge_alert("nope")

    @pytest.mark.asyncio
    async def test_recent_alerts_filter(self, harness, engine):
        await register(engine)
        harness.clock.advance(hours=11)
        alerts = (await engine.recompute(TICKET)).alerts
        await engine.acknowledge_alert(alerts[0].id)

        unacked = await engine.list_recent_alerts(acknowledged=False)
        assert sorted(a.alert_level for a in unacked) == [2, 3]
        assert await engine.list_recent_alerts(scope="globex") == []

    @pytest.mark.asyncio
    async def test_at_risk_and_overview(self, harness, engine):
        for ticket_id in ("T-1", "T-2", "T-3"):
            await register(engine, ticket_id=ticket_id)
        harness.clock.advance(hours=9, minutes=30)
        await engine.recompute("T-1")
        await engine.recompute("T-2")
        await engine.resolve("T-3")

        at_risk = await engine.list_at_risk()
        assert [t.ticket_id for t in at_risk] == ["T-1", "T-2"]

        overview = await engine.overview()
        assert overview["total_open"] == 2
        assert overview["by_status"] == {"critical": 2}
        assert overview["average_consumption_pct"] == pytest.approx(95.0)


class TestConsumptionProperties:

    @pytest.mark.asyncio
    async def test_consumption_never_decreases_while_running(self, harness, engine):
        await register(engine, priority="P2")
        samples = []
        for _ in range(40):
            harness.clock.advance(hours=1, minutes=17)
            samples.append((await engine.recompute(TICKET)).ticket.sla_consumption_pct)
        assert samples == sorted(samples)
        assert samples[-1] > 100.0

    @pytest.mark.asyncio
    async def test_pause_and_immediate_resume_preserves_consumption(self, harness, engine):
        await register(engine)
        harness.clock.advance(hours=4)
        await engine.recompute(TICKET)
        await engine.pause(TICKET)

        result = await engine.resume(TICKET)

        assert result.ticket.sla_consumption_pct == pytest.approx(40.0)
        assert result.ticket.accumulated_pause == timedelta(0)

    @pytest.mark.asyncio
    async def test_multi_level_jump_after_resume(self, harness, engine):
        await register(engine)
        harness.clock.advance(hours=5)
        await engine.recompute(TICKET)
        await engine.pause(TICKET)
        harness.clock.advance(hours=6)
        resumed = await engine.resume(TICKET)
        assert resumed.ticket.sla_consumption_pct == pytest.approx(50.0)

        harness.clock.advance(hours=4, minutes=30)
        result = await engine.recompute(TICKET)

        assert result.ticket.sla_consumption_pct == pytest.approx(95.0)
        assert [a.alert_level for a in result.alerts] == [1, 2]
        assert result.ticket.escalation_level == 2
