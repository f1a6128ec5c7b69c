"""
Projection of a tutor's weekly availability pattern onto concrete UTC slots.

Pure functions only: no database access and no reading of the wall clock,
so callers pass "now" explicitly.

Daylight-saving resolution is deterministic and always picks the later
valid interpretation of a local hour:

- an ambiguous hour (clocks fall back, the hour happens twice) maps to its
  second occurrence, in standard time;
- a non-existent hour (clocks spring forward) is shifted forward by the
  size of the gap, e.g. 02:00 in America/New_York on the spring-forward
  Sunday becomes 03:00 local (07:00 UTC).
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Iterable, List, Mapping, Optional

import pytz

from app.core.exceptions import ValidationError

WEEKDAY_KEYS = tuple(str(day) for day in range(7))


@dataclass(frozen=True)
class ProjectedSlot:
    """A concrete slot instant produced from the pattern"""
    starts_at: datetime
    ends_at: datetime


def resolve_timezone(tz_name: str) -> pytz.BaseTzInfo:
    try:
        return pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        raise ValidationError(f"Unknown timezone: {tz_name}", code="invalid_timezone")


def is_valid_timezone(tz_name: Optional[str]) -> bool:
    if not tz_name:
        return False
    try:
        pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        return False
    return True


def weekday_key(day: date) -> str:
    """Weekday index as used by patterns: "0" = Sunday .. "6" = Saturday"""
    return str(day.isoweekday() % 7)


def normalize_hours_by_dow(hours_by_dow: Optional[Mapping]) -> Dict[str, List[int]]:
    """
    Validate and normalize a raw ``hours_by_dow`` mapping.

    Every weekday key is present in the result; hours are deduplicated and
    sorted. Unknown keys or hours outside 0-23 raise ``ValidationError``.
    """
    normalized: Dict[str, List[int]] = {key: [] for key in WEEKDAY_KEYS}
    if not hours_by_dow:
        return normalized

    for raw_key, raw_hours in hours_by_dow.items():
        key = str(raw_key)
        if key not in normalized:
            raise ValidationError(f"Invalid weekday key: {raw_key!r}", code="invalid_pattern")
        if raw_hours is None:
            continue
        if not isinstance(raw_hours, (list, tuple, set)):
            raise ValidationError(f"Hours for weekday {key} must be a list", code="invalid_pattern")

        hours = set()
        for hour in raw_hours:
            # bool is an int subclass; reject it explicitly
            if isinstance(hour, bool) or not isinstance(hour, int) or not 0 <= hour <= 23:
                raise ValidationError(
                    f"Invalid hour {hour!r} for weekday {key}; hours must be integers 0-23",
                    code="invalid_pattern",
                )
            hours.add(hour)
        normalized[key] = sorted(hours)

    return normalized


def localize_wall_time(tz: pytz.BaseTzInfo, day: date, hour: int) -> datetime:
    """Local ``day @ hour:00`` as an aware UTC datetime, using the offset valid on that day"""
    naive = datetime.combine(day, time(hour=hour))
    # is_dst=False selects standard time for both DST edge cases, which is
    # the later instant for an ambiguous hour and the forward shift for a gap
    local = tz.localize(naive, is_dst=False)
    return local.astimezone(timezone.utc)


def _local_dates(tz: pytz.BaseTzInfo, window_start: datetime, window_end: datetime) -> Iterable[date]:
    first = window_start.astimezone(tz).date()
    last = window_end.astimezone(tz).date()
    current = first
    while current <= last:
        yield current
        current += timedelta(days=1)


def project_pattern(
    hours_by_dow: Mapping,
    tz_name: str,
    horizon_start: datetime,
    horizon_days: int,
    now: datetime,
    slot_minutes: int = 60,
) -> List[ProjectedSlot]:
    """
    Project a weekly pattern onto UTC slots inside the horizon.

    Args:
        hours_by_dow: weekday key ("0" = Sunday) -> hours of day, local time
        tz_name: IANA timezone the hours are expressed in
        horizon_start: aware start of the window (inclusive)
        horizon_days: window length in days
        now: instants strictly before this are dropped
        slot_minutes: length of every slot

    Returns:
        Slots ordered by start, one per distinct UTC start instant
    """
    if horizon_start.tzinfo is None or now.tzinfo is None:
        raise ValidationError("horizon_start and now must be timezone-aware")
    if horizon_days <= 0 or slot_minutes <= 0:
        return []

    tz = resolve_timezone(tz_name)
    pattern = normalize_hours_by_dow(hours_by_dow)
    duration = timedelta(minutes=slot_minutes)

    window_start = horizon_start.astimezone(timezone.utc)
    window_end = window_start + timedelta(days=horizon_days)

    projected: Dict[datetime, ProjectedSlot] = {}
    for local_day in _local_dates(tz, window_start, window_end):
        for hour in pattern[weekday_key(local_day)]:
            starts_at = localize_wall_time(tz, local_day, hour)
            if starts_at < now or not window_start <= starts_at < window_end:
                continue
            projected.setdefault(starts_at, ProjectedSlot(starts_at, starts_at + duration))

    return [projected[key] for key in sorted(projected)]


def horizon_start_for(now: datetime) -> datetime:
    """Rolling horizons start at UTC midnight of the current day"""
    utc_now = now.astimezone(timezone.utc)
    return datetime(utc_now.year, utc_now.month, utc_now.day, tzinfo=timezone.utc)
