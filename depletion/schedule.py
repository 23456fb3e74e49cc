"""When the next daily step is due."""

from __future__ import annotations

import datetime as dt
import logging

from .config import _load_timezone, _parse_clock

log = logging.getLogger(__name__)


def _at(day: dt.date, hour: int, minute: int, zone: dt.tzinfo) -> dt.datetime:
    return dt.datetime(day.year, day.month, day.day, hour, minute, tzinfo=zone)


def next_run(
    run_time: str,
    timezone: str,
    now: dt.datetime | None = None,
) -> dt.datetime:
    """The next moment at ``run_time`` (``HH:MM``) in ``timezone``.

    Today's slot is used unless it has already passed. An invalid zone falls
    back to UTC and an invalid time to midnight. A naive ``now`` is read as
    host-local time.
    """
    try:
        zone = _load_timezone(timezone)
    except ValueError as exc:
        log.warning("Invalid timezone '%s', defaulting to UTC: %s", timezone, exc)
        zone = dt.timezone.utc
    try:
        hour, minute = _parse_clock(run_time)
    except ValueError as exc:
        log.warning("Invalid run_time '%s', defaulting to 00:00: %s", run_time, exc)
        hour, minute = 0, 0

    current = dt.datetime.now(zone) if now is None else now.astimezone(zone)
    candidate = _at(current.date(), hour, minute, zone)
    if current.timestamp() > candidate.timestamp():
        candidate = _at(current.date() + dt.timedelta(days=1), hour, minute, zone)
    return candidate