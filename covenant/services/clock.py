"""Clock abstraction for testable time-dependent logic.

Score decay, billing months, due dates and the overdue sweep all read "now"
from an injected Clock. Production code uses SystemClock; tests inject
MockClock to control time without sleeping.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    """Abstract wall clock."""

    def now(self) -> datetime:
        """Return the current time as a timezone-aware UTC datetime."""
        ...


class SystemClock:
    """Production clock backed by datetime.now(timezone.utc)."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class MockClock:
    """Controllable clock for deterministic testing.

    Example:
        clock = MockClock(datetime(2026, 10, 1, tzinfo=timezone.utc))
        service = BillingService(session, clock=clock)
        await service.ensure_current_bill(property_id)
        clock.advance(days=20)
        await service.overdue_sweep()
    """

    def __init__(self, start: datetime) -> None:
        self._current = as_utc(start)

    def now(self) -> datetime:
        return self._current

    def advance(self, **delta) -> None:
        """Advance by a timedelta expressed as keyword arguments (days=, hours=)."""
        step = timedelta(**delta)
        if step < timedelta(0):
            raise ValueError(f"Cannot advance time by negative amount: {step}")
        self._current += step

    def set(self, value: datetime) -> None:
        self._current = as_utc(value)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Default clock for production use
DEFAULT_CLOCK: Clock = SystemClock()

__all__ = ["Clock", "SystemClock", "MockClock", "DEFAULT_CLOCK", "as_utc"]
