"""Tests for delivery window arithmetic (membership, next start, clamping, local day)."""

from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from app.services.notifications.time_window import (
    TimeWindow,
    clamp_to_window,
    is_within_window,
    local_day_bounds,
    next_window_start,
    parse_hhmm,
    resolve_zone,
)


def _at(hour, minute=0, day=10):
    return datetime(2026, 3, day, hour, minute, tzinfo=timezone.utc)


class TestParse:
    def test_hhmm(self):
        assert parse_hhmm("07:30") == time(7, 30)
        assert parse_hhmm("23:59:00") == time(23, 59)

    @pytest.mark.parametrize("value", ["", "7", "24:00", "12:60", "ab:cd", None])
    def test_rejects_invalid(self, value):
        with pytest.raises(ValueError):
            parse_hhmm(value)


class TestMembership:
    @pytest.mark.parametrize(
        "t, expected",
        [
            (time(8, 59), False),
            (time(9, 0), True),
            (time(12, 0), True),
            (time(18, 0), True),
            (time(18, 1), False),
        ],
    )
    def test_non_wrapping(self, t, expected):
        assert is_within_window(t, "09:00", "18:00") is expected

    @pytest.mark.parametrize(
        "t, expected",
        [
            (time(21, 59), False),
            (time(22, 0), True),
            (time(23, 30), True),
            (time(0, 0), True),
            (time(5, 0), True),
            (time(6, 0), True),
            (time(6, 1), False),
            (time(12, 0), False),
        ],
    )
    def test_wrapping_midnight(self, t, expected):
        window = TimeWindow.parse("22:00", "06:00")
        assert window.wraps_midnight
        assert window.contains(t) is expected

    def test_seconds_inside_end_minute_are_inclusive(self):
        assert is_within_window(_at(18, 0).replace(second=45), "09:00", "18:00")

    def test_datetime_uses_its_own_wall_clock(self):
        local = datetime(2026, 3, 10, 10, 0, tzinfo=ZoneInfo("America/Sao_Paulo"))
        assert is_within_window(local, "09:00", "18:00")


class TestNextWindowStart:
    def test_before_start_is_today(self):
        window = TimeWindow.parse("09:00", "21:00")
        assert next_window_start(_at(6, 30), window) == _at(9, 0)

    def test_after_end_is_tomorrow(self):
        window = TimeWindow.parse("09:00", "21:00")
        assert next_window_start(_at(23, 0), window) == _at(9, 0, day=11)

    def test_force_next_day(self):
        window = TimeWindow.parse("09:00", "21:00")
        assert next_window_start(_at(6, 30), window, force_next_day=True) == _at(9, 0, day=11)

    def test_wrapping_window_afternoon_gap(self):
        window = TimeWindow.parse("22:00", "06:00")
        assert next_window_start(_at(12, 0), window) == _at(22, 0)

    def test_keeps_timezone(self):
        tz = ZoneInfo("America/Sao_Paulo")
        base = datetime(2026, 3, 10, 23, 0, tzinfo=tz)
        result = next_window_start(base, TimeWindow.parse("08:00", "20:00"))
        assert result == datetime(2026, 3, 11, 8, 0, tzinfo=tz)
        assert result.tzinfo is tz

    @pytest.mark.parametrize("start, end", [("09:00", "18:00"), ("22:00", "06:00"), ("07:30", "07:45")])
    def test_outside_instants_map_into_the_future_window(self, start, end):
        window = TimeWindow.parse(start, end)
        moment = _at(0, 0)
        for _ in range(24 * 4):
            moment += timedelta(minutes=15)
            if window.contains(moment):
                continue
            nxt = next_window_start(moment, window)
            assert nxt > moment
            assert window.contains(nxt)


class TestClamp:
    def test_inside_is_unchanged(self):
        window = TimeWindow.parse("09:00", "21:00")
        assert clamp_to_window(_at(15, 0), window, "UTC") == _at(15, 0)

    def test_outside_moves_to_next_start(self):
        window = TimeWindow.parse("09:00", "21:00")
        assert clamp_to_window(_at(23, 0), window, "UTC") == _at(9, 0, day=11)

    def test_evaluated_in_user_timezone(self):
        # 11:00 UTC is 08:00 in Sao Paulo (UTC-3): before a 09:00 start
        window = TimeWindow.parse("09:00", "21:00")
        result = clamp_to_window(_at(11, 0), window, "America/Sao_Paulo")
        assert result == _at(12, 0)
        assert result.tzinfo == timezone.utc


class TestZones:
    def test_unknown_zone_falls_back_to_utc(self):
        assert resolve_zone("Mars/Olympus") is timezone.utc
        assert resolve_zone(None) is timezone.utc

    def test_local_day_bounds(self):
        start, end = local_day_bounds(_at(2, 0), "America/Sao_Paulo")
        # 02:00 UTC on the 10th is still the 9th in Sao Paulo
        assert start == datetime(2026, 3, 9, 3, 0, tzinfo=timezone.utc)
        assert end == datetime(2026, 3, 10, 3, 0, tzinfo=timezone.utc)
