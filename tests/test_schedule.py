import datetime as dt

import pytest

from depletion.schedule import next_run

UTC = dt.timezone.utc


def test_later_today():
    now = dt.datetime(2024, 3, 10, 5, 0, tzinfo=UTC)
    assert next_run("06:30", "UTC", now) == dt.datetime(2024, 3, 10, 6, 30, tzinfo=UTC)


def test_already_passed_moves_to_tomorrow():
    now = dt.datetime(2024, 3, 10, 7, 0, tzinfo=UTC)
    assert next_run("06:30", "UTC", now) == dt.datetime(2024, 3, 11, 6, 30, tzinfo=UTC)


def test_exact_time_is_today():
    now = dt.datetime(2024, 3, 10, 6, 30, tzinfo=UTC)
    assert next_run("06:30", "UTC", now) == now


def test_month_rollover():
    now = dt.datetime(2024, 1, 31, 23, 0, tzinfo=UTC)
    assert next_run("06:00", "UTC", now) == dt.datetime(2024, 2, 1, 6, 0, tzinfo=UTC)


def test_invalid_timezone_falls_back_to_utc():
    now = dt.datetime(2024, 3, 10, 5, 0, tzinfo=UTC)
    result = next_run("06:30", "Not/AZone", now)
    assert result == dt.datetime(2024, 3, 10, 6, 30, tzinfo=UTC)
    assert result.utcoffset() == dt.timedelta(0)


def test_invalid_run_time_falls_back_to_midnight():
    now = dt.datetime(2024, 3, 10, 5, 0, tzinfo=UTC)
    assert next_run("late", "UTC", now) == dt.datetime(2024, 3, 11, 0, 0, tzinfo=UTC)


def test_other_offset_is_converted():
    plus_two = dt.timezone(dt.timedelta(hours=2))
    now = dt.datetime(2024, 3, 10, 7, 0, tzinfo=plus_two)
    result = next_run("06:30", "UTC", now)
    assert result == dt.datetime(2024, 3, 10, 6, 30, tzinfo=UTC)


@pytest.mark.parametrize("run_time", ["00:00", "06:30", "12:00", "23:59", "9:15"])
@pytest.mark.parametrize("hour", [0, 6, 12, 23])
def test_next_run_within_one_day(run_time, hour):
    now = dt.datetime(2024, 6, 15, hour, 17, 42, tzinfo=UTC)
    result = next_run(run_time, "UTC", now)
    expected_hour, expected_minute = (int(part) for part in run_time.split(":"))
    assert now <= result <= now + dt.timedelta(days=1)
    assert (result.hour, result.minute, result.second) == (expected_hour, expected_minute, 0)


def test_default_now_is_in_future():
    before = dt.datetime.now(UTC)
    result = next_run("12:00", "UTC")
    assert before - dt.timedelta(seconds=1) <= result <= before + dt.timedelta(days=1)