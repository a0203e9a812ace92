from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from .models import Journey, utcnow
from .store import FleetStore


@dataclass(frozen=True)
class Elapsed:
    hours: int
    minutes: int
    seconds: int

    @classmethod
    def between(cls, start: datetime, end: datetime) -> "Elapsed":
        """Whole hours/minutes/seconds from ``start`` to ``end``.

        A ``start`` in the future (clock skew between hosts) gives zero,
        never a negative duration.
        """
        total = max(0, int((end - start).total_seconds()))
        hours, rest = divmod(total, 3600)
        minutes, seconds = divmod(rest, 60)
        return cls(hours, minutes, seconds)

    def as_tuple(self) -> tuple[int, int, int]:
        return (self.hours, self.minutes, self.seconds)

    def humanize(self) -> str:
        return f"{self.hours} hours, {self.minutes} minutes, {self.seconds} seconds"

    def __str__(self) -> str:
        return f"{self.hours}:{self.minutes:02d}:{self.seconds:02d}"


@dataclass
class JourneyReport:
    user_id: int
    day: date
    journeys: list[Journey] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.journeys


class JourneyQuery:
    """Read-only lookups over the journey ledger.

    Calendar days are taken in ``tz`` while the ledger stores UTC, so a
    day maps to a UTC window that may straddle two UTC dates.
    """

    def __init__(self, store: FleetStore, tz: str = "UTC", clock=utcnow):
        self.store = store
        self.tz = ZoneInfo(tz)
        self.clock = clock

    def today(self) -> date:
        return self.clock().astimezone(self.tz).date()

    def target_date(self, day_offset: int, today: date | None = None) -> date:
        if day_offset < 0:
            raise ValueError("day_offset must be 0 or greater")
        return (today or self.today()) - timedelta(days=day_offset)

    def day_window(self, day: date) -> tuple[datetime, datetime]:
        start = datetime.combine(day, time.min, tzinfo=self.tz).astimezone(timezone.utc)
        end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=self.tz).astimezone(timezone.utc)
        return start, end

    def for_user(self, user_id: int, day_offset: int, today: date | None = None) -> JourneyReport:
        day = self.target_date(day_offset, today)
        start, end = self.day_window(day)
        return JourneyReport(user_id, day, self.store.query_journeys(user_id, start, end))
