"""Shared fixtures for the SLA engine test suite."""

from datetime import timedelta

import pytest

from src.config import ResolutionType
from src.sla.domain import ALWAYS_ON_CALENDAR, SLATarget, TicketSLA
from tests.fakes import DUBAI_CALENDAR, T0, EngineHarness


@pytest.fixture
def harness() -> EngineHarness:
    return EngineHarness()


@pytest.fixture
def engine(harness):
    return harness.engine()


@pytest.fixture
def make_ticket():
    """Build a calendar-mode ticket with a 10 hour resolution window starting at T0."""

    def _make(**overrides) -> TicketSLA:
        fields = dict(
            ticket_id="TICKET-001",
            scope="acme",
            priority="P1",
            created_at=T0,
            response_due=T0 + timedelta(hours=1),
            resolution_due=T0 + timedelta(hours=10),
            sla_target=SLATarget(1, 10, ResolutionType.CALENDAR),
            calendar=ALWAYS_ON_CALENDAR,
        )
        fields.update(overrides)
        return TicketSLA(**fields)

    return _make


@pytest.fixture
def dubai_calendar():
    return DUBAI_CALENDAR
