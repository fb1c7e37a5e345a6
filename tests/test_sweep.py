"""
SLA Sweep Tests
================

Tests for SLASweepService and the scheduler wrapper:
- Every open ticket recomputed once per tick, paging past the batch size
- Failures isolated per ticket
- Time budget cancels outstanding work; the next tick resumes after it
- Bounded concurrency
"""

import asyncio
from contextlib import asynccontextmanager

import pytest

from src.sla.application import SLASweepService
from src.sla.infrastructure import SLAScheduler
from tests.fakes import T0, EngineHarness, InMemoryTicketRepository


class SlowTicketRepository(InMemoryTicketRepository):
    """Reads of selected tickets hang; tracks how many reads run at once."""

    def __init__(self):
        super().__init__()
        self.slow_ids = set()
        self.read_delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    async def get(self, ticket_id):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if ticket_id in self.slow_ids:
                await asyncio.sleep(5)
            elif self.read_delay:
                await asyncio.sleep(self.read_delay)
            return await super().get(ticket_id)
        finally:
            self.in_flight -= 1


def engine_factory(harness):
    @asynccontextmanager
    async def factory():
        yield harness.engine()

    return factory


async def register_many(harness, ticket_ids, scope="acme"):
    engine = harness.engine()
    for ticket_id in ticket_ids:
        await engine.register_ticket(ticket_id, scope, "P1", T0)


class TestSweep:

    @pytest.mark.asyncio
    async def test_sweep_recomputes_open_tickets(self, harness):
        await register_many(harness, ["T-1", "T-2", "T-3"])
        await harness.engine().resolve("T-3")
        harness.clock.advance(hours=8)

        result = await SLASweepService(engine_factory(harness)).sweep()

        assert result.tickets_selected == 2
        assert result.tickets_evaluated == 2
        assert result.tickets_escalated == 2
        assert result.alerts_emitted == 2
        assert result.errors == 0
        assert result.timed_out == 0
        assert harness.tickets.rows["T-1"].escalation_level == 1

    @pytest.mark.asyncio
    async def test_second_sweep_emits_nothing_new(self, harness):
        await register_many(harness, ["T-1"])
        harness.clock.advance(hours=8)
        sweep = SLASweepService(engine_factory(harness))

        await sweep.sweep()
        result = await sweep.sweep()

        assert result.tickets_evaluated == 1
        assert result.tickets_escalated == 0
        assert result.alerts_emitted == 0

    @pytest.mark.asyncio
    async def test_empty_sweep(self, harness):
        result = await SLASweepService(engine_factory(harness)).sweep()
        assert result.tickets_selected == 0
        assert result.to_dict()["tickets_evaluated"] == 0

    @pytest.mark.asyncio
    async def test_failing_ticket_does_not_stop_sweep(self, harness):
        await register_many(harness, ["T-1", "T-2"])
        harness.config.targets[("globex", "P1")] = harness.config.targets[("acme", "P1")]
        await register_many(harness, ["G-1"], scope="globex")
        harness.clock.advance(hours=8)

        result = await SLASweepService(engine_factory(harness)).sweep()

        # globex has no escalation ladder
        assert result.errors == 1
        assert result.tickets_evaluated == 2

    @pytest.mark.asyncio
    async def test_pages_through_more_tickets_than_batch_size(self, harness):
        await register_many(harness, ["T-0", "T-1", "T-2"])
        harness.clock.advance(hours=8)

        result = await SLASweepService(engine_factory(harness), batch_size=2).sweep()

        assert result.tickets_selected == 3
        assert result.tickets_evaluated == 3
        assert {
            ticket_id: row.escalation_level for ticket_id, row in harness.tickets.rows.items()
        } == {"T-0": 1, "T-1": 1, "T-2": 1}

    @pytest.mark.asyncio
    async def test_later_tickets_escalate_on_repeated_sweeps(self, harness):
        await register_many(harness, [f"T-{i}" for i in range(5)])
        sweep = SLASweepService(engine_factory(harness), batch_size=2)

        for _ in range(3):
            harness.clock.advance(hours=3)
            await sweep.sweep()

        assert all(row.escalation_level > 0 for row in harness.tickets.rows.values())

    @pytest.mark.asyncio
    async def test_budget_exhaustion_resumes_after_last_page(self):
        repository = SlowTicketRepository()
        harness = EngineHarness(ticket_repository=repository)
        await register_many(harness, ["T-0", "T-1", "T-2"])
        repository.slow_ids = {"T-0"}
        harness.clock.advance(hours=8)
        sweep = SLASweepService(engine_factory(harness), budget_seconds=0.2, batch_size=1)

        first = await sweep.sweep()
        second = await sweep.sweep()

        assert first.timed_out == 1
        assert first.tickets_evaluated == 0
        assert second.timed_out == 0
        assert second.tickets_evaluated == 2
        assert repository.rows["T-1"].escalation_level == 1
        assert repository.rows["T-2"].escalation_level == 1

    @pytest.mark.asyncio
    async def test_time_budget_cancels_outstanding_tickets(self):
        repository = SlowTicketRepository()
        harness = EngineHarness(ticket_repository=repository)
        await register_many(harness, ["T-1", "SLOW-1", "SLOW-2"])
        repository.slow_ids = {"SLOW-1", "SLOW-2"}
        harness.clock.advance(hours=8)

        result = await SLASweepService(engine_factory(harness), budget_seconds=0.2).sweep()

        assert result.timed_out == 2
        assert result.tickets_evaluated == 1
        assert result.duration_ms < 5000
        assert repository.rows["SLOW-1"].escalation_level == 0

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        repository = SlowTicketRepository()
        harness = EngineHarness(ticket_repository=repository)
        await register_many(harness, [f"T-{i}" for i in range(8)])
        repository.read_delay = 0.01
        repository.max_in_flight = 0

        result = await SLASweepService(engine_factory(harness), concurrency=2).sweep()

        assert result.tickets_evaluated == 8
        assert repository.max_in_flight <= 2


class TestScheduler:

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        calls = []

        async def job():
            calls.append(1)

        scheduler = SLAScheduler(interval_seconds=3600)
        await scheduler.start(job)
        assert scheduler.is_running

        await scheduler.stop()
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_stop_when_not_started(self):
        scheduler = SLAScheduler()
        await scheduler.stop()
        assert not scheduler.is_running
