"""
Reporting Windows

Creation-timestamp bounds shared by collection fetches, event statistics and
cache keys.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Optional

from commerce_insights.schemas.base import ensure_utc


def _iso(value: datetime) -> str:
    return ensure_utc(value).isoformat().replace("+00:00", "Z")


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


@dataclass(frozen=True)
class TimeWindow:
    """Inclusive ``[start, end]`` bounds; either side may be open."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def __post_init__(self) -> None:
        # frozen dataclass: normalize through object.__setattr__
        if self.start is not None:
            object.__setattr__(self, "start", ensure_utc(self.start))
        if self.end is not None:
            object.__setattr__(self, "end", ensure_utc(self.end))
        if self.start and self.end and self.start > self.end:
            raise ValueError("Window start must not be after window end")

    @classmethod
    def from_dates(cls, start_date: date, end_date: date) -> "TimeWindow":
        """Whole-day window covering both dates."""
        return cls(
            start=datetime.combine(start_date, time.min, tzinfo=timezone.utc),
            end=datetime.combine(end_date, time.max, tzinfo=timezone.utc),
        )

    @classmethod
    def last_days(cls, days: int, now: Optional[datetime] = None) -> "TimeWindow":
        """The last ``days`` whole UTC days, today included."""
        today = ensure_utc(now).date() if now else utc_today()
        return cls.from_dates(today - timedelta(days=days - 1), today)

    @property
    def is_bounded(self) -> bool:
        return self.start is not None and self.end is not None

    def previous(self) -> "TimeWindow":
        """Window of equal length ending just before this one starts."""
        if not self.is_bounded:
            raise ValueError("Only bounded windows have a previous period")
        end = self.start - timedelta(microseconds=1)
        return TimeWindow(start=end - (self.end - self.start), end=end)

    def contains(self, moment: datetime) -> bool:
        moment = ensure_utc(moment)
        if self.start is not None and moment < self.start:
            return False
        if self.end is not None and moment > self.end:
            return False
        return True

    def to_query_params(self) -> Dict[str, str]:
        """``created_at`` range filter understood by the commerce backend."""
        params: Dict[str, str] = {}
        if self.start is not None:
            params["created_at[$gte]"] = _iso(self.start)
        if self.end is not None:
            params["created_at[$lte]"] = _iso(self.end)
        return params

    def to_date_params(self) -> Dict[str, str]:
        """
        Day-granular ``from``/``to`` parameters for the event collaborator.

        That service filters with ``timestamp < to``, so ``to`` is the day after
        the window end to keep the last day whole.
        """
        if not self.is_bounded:
            raise ValueError("Event statistics require a bounded window")
        return {
            "from": self.start.date().isoformat(),
            "to": (self.end.date() + timedelta(days=1)).isoformat(),
        }

    def cache_params(self) -> Dict[str, Optional[str]]:
        """Bounds truncated to the second, for cache keys."""
        return {
            "start": _iso(self.start.replace(microsecond=0)) if self.start else None,
            "end": _iso(self.end.replace(microsecond=0)) if self.end else None,
        }
