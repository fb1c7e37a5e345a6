"""
Business-Calendar Clock
=======================

Converts wall-clock intervals into service time and back.

Calendar mode counts raw elapsed time. Business-hours mode only counts time
that falls inside a working day's window, in the calendar's local timezone.
Full working days inside an interval are counted arithmetically, so the cost
does not grow with the length of the interval.
"""

from datetime import date, datetime, timedelta, timezone

from src.config import ResolutionType
from src.sla.domain.value_objects import BusinessCalendar

ZERO = timedelta(0)


def _require_aware(value: datetime, name: str) -> None:
    if value.tzinfo is None:
        raise ValueError(f"{name} must be timezone-aware")


def _to_local(instant: datetime, calendar: BusinessCalendar) -> datetime:
    """Instant -> naive local wall-clock time in the calendar's timezone."""
    return instant.astimezone(calendar.tzinfo).replace(tzinfo=None)


def _from_local(local: datetime, calendar: BusinessCalendar) -> datetime:
    """Naive local wall-clock time -> UTC instant."""
    return local.replace(tzinfo=calendar.tzinfo).astimezone(timezone.utc)


def _window(day: date, calendar: BusinessCalendar) -> tuple[datetime, datetime]:
    return (
        datetime.combine(day, calendar.daily_start),
        datetime.combine(day, calendar.daily_end),
    )


def _day_overlap(
    day: date,
    lower: datetime,
    upper: datetime,
    calendar: BusinessCalendar
) -> timedelta:
    """Working time on `day` that falls inside [lower, upper] (local, naive)."""
    if not calendar.is_working_day(day):
        return ZERO
    window_start, window_end = _window(day, calendar)
    start = max(lower, window_start)
    end = min(upper, window_end)
    return max(end - start, ZERO)


def count_working_days(first: date, last: date, calendar: BusinessCalendar) -> int:
    """Number of working days in the inclusive range [first, last]."""
    if first > last:
        return 0
    total_days = (last - first).days + 1
    full_weeks, remainder = divmod(total_days, 7)
    count = full_weeks * len(calendar.working_weekdays)
    start_weekday = first.weekday()
    for offset in range(remainder):
        if (start_weekday + offset) % 7 in calendar.working_weekdays:
            count += 1
    return count


class BusinessCalendarClock:
    """
    Pure functions for service-time arithmetic.

    Stateless utility class - every method takes the calendar explicitly.
    """

    @staticmethod
    def elapsed_service_time(
        start: datetime,
        end: datetime,
        calendar: BusinessCalendar,
        resolution_type: ResolutionType = ResolutionType.BUSINESS_HOURS
    ) -> timedelta:
        """
        Service time elapsed between two instants.

        Args:
            start: Interval start (timezone-aware)
            end: Interval end (timezone-aware)
            calendar: Working-hours calendar (ignored in calendar mode)
            resolution_type: calendar or business_hours

        Returns:
            Elapsed service time, never negative
        """
        _require_aware(start, "start")
        _require_aware(end, "end")

        if end <= start:
            return ZERO

        if resolution_type == ResolutionType.CALENDAR:
            return end - start

        local_start = _to_local(start, calendar)
        local_end = _to_local(end, calendar)
        first_day = local_start.date()
        last_day = local_end.date()

        if first_day == last_day:
            return _day_overlap(first_day, local_start, local_end, calendar)

        head = _day_overlap(
            first_day, local_start, datetime.combine(first_day + timedelta(days=1), datetime.min.time()), calendar
        )
        tail = _day_overlap(
            last_day, datetime.combine(last_day, datetime.min.time()), local_end, calendar
        )
        middle_days = count_working_days(
            first_day + timedelta(days=1), last_day - timedelta(days=1), calendar
        )
        return head + tail + calendar.daily_window * middle_days

    @staticmethod
    def add_service_time(
        start: datetime,
        hours: float,
        calendar: BusinessCalendar,
        resolution_type: ResolutionType = ResolutionType.BUSINESS_HOURS
    ) -> datetime:
        """
        Wall-clock instant at which `hours` of service time have accrued.

        Walks forward from `start`, skipping non-working time. A request that
        starts outside a working window begins accruing when the next window
        opens.

        Example:
            4 business hours from 18:00 with an 08:00-20:00 window
            -> 10:00 the next working day (2h + 2h)
        """
        _require_aware(start, "start")
        amount = timedelta(hours=hours)

        if resolution_type == ResolutionType.CALENDAR:
            return start + amount

        if amount <= ZERO:
            return start

        remaining = amount
        cursor = _to_local(start, calendar)
        day = cursor.date()
        skipped_weeks = False

        while True:
            if calendar.is_working_day(day):
                window_start, window_end = _window(day, calendar)
                begin = max(cursor, window_start)
                if begin < window_end:
                    available = window_end - begin
                    if remaining <= available:
                        return _from_local(begin + remaining, calendar)
                    remaining -= available

            day += timedelta(days=1)
            cursor = datetime.combine(day, datetime.min.time())

            # Jump over whole weeks once we are aligned on a day boundary.
            if not skipped_weeks:
                skipped_weeks = True
                weekly = calendar.weekly_capacity
                full_weeks = (remaining - timedelta(microseconds=1)) // weekly
                if full_weeks > 0:
                    day += timedelta(days=7 * full_weeks)
                    cursor = datetime.combine(day, datetime.min.time())
                    remaining -= weekly * full_weeks
