"""
Delivery windows: the daily HH:MM range (user-local) in which notifications may go out.

A window with start > end wraps midnight (22:00-06:00 allows 23:30 and 05:00). Membership is
evaluated at minute precision and both ends are inclusive.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


def parse_hhmm(value: str) -> time:
    """'07:30' -> time(7, 30). Accepts 'HH:MM' or 'HH:MM:SS'; raises ValueError otherwise."""
    if not isinstance(value, str):
        raise ValueError(f"Invalid time {value!r}; expected HH:MM")
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time {value!r}; expected HH:MM")
    try:
        hour, minute = int(parts[0]), int(parts[1])
    except ValueError:
        raise ValueError(f"Invalid time {value!r}; expected HH:MM") from None
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid time {value!r}; out of range")
    return time(hour, minute)


def _minute_of_day(t: time) -> int:
    return t.hour * 60 + t.minute


@dataclass(frozen=True)
class TimeWindow:
    start: time
    end: time

    @classmethod
    def parse(cls, start: str, end: str) -> "TimeWindow":
        return cls(parse_hhmm(start), parse_hhmm(end))

    @property
    def wraps_midnight(self) -> bool:
        return _minute_of_day(self.start) > _minute_of_day(self.end)

    def contains(self, moment: datetime | time) -> bool:
        t = moment.timetz() if isinstance(moment, datetime) else moment
        now_m = _minute_of_day(t)
        start_m = _minute_of_day(self.start)
        end_m = _minute_of_day(self.end)
        if start_m <= end_m:
            return start_m <= now_m <= end_m
        return now_m >= start_m or now_m <= end_m

    def __str__(self) -> str:
        return f"{self.start.strftime('%H:%M')}-{self.end.strftime('%H:%M')}"


def is_within_window(now: datetime | time, start: str, end: str) -> bool:
    return TimeWindow.parse(start, end).contains(now)


def next_window_start(base: datetime, window: TimeWindow, force_next_day: bool = False) -> datetime:
    """
    Next instant the window opens, in base's timezone.

    Before today's start -> today at start. Otherwise (past the end, inside the window, or
    force_next_day) -> start on the following day. Always strictly after base.
    """
    day: date = base.date()
    if force_next_day or _minute_of_day(base.timetz()) >= _minute_of_day(window.start):
        day = day + timedelta(days=1)
    return datetime.combine(day, window.start, tzinfo=base.tzinfo)


def resolve_zone(name: str | None) -> tzinfo:
    """ZoneInfo for name; UTC when the name is empty or unknown."""
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r; using UTC", name)
        return timezone.utc


def to_local(moment: datetime, tz_name: str | None) -> datetime:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(resolve_zone(tz_name))


def clamp_to_window(target: datetime, window: TimeWindow, tz_name: str | None) -> datetime:
    """target if it falls inside the window (user-local), else the next window start. Returns UTC."""
    local = to_local(target, tz_name)
    if window.contains(local):
        return local.astimezone(timezone.utc)
    return next_window_start(local, window).astimezone(timezone.utc)


def local_day_bounds(now: datetime, tz_name: str | None) -> tuple[datetime, datetime]:
    """[start, end) of the user's local calendar day containing now, as UTC instants."""
    local = to_local(now, tz_name)
    start = datetime.combine(local.date(), time(0, 0), tzinfo=local.tzinfo)
    end = datetime.combine(local.date() + timedelta(days=1), time(0, 0), tzinfo=local.tzinfo)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)
