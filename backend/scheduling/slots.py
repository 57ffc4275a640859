"""Time-of-day slot arithmetic for doctor schedules.

Slots are ``HH:mm`` strings on a 24-hour clock. Every comparison happens on
minutes since midnight, and intervals are half-open: ``[start, end)``.
"""

import re
from datetime import date, datetime, timezone
from typing import Any, Iterable

TIME_PATTERN = re.compile(r'^([01]\d|2[0-3]):([0-5]\d)$')

DEFAULT_DAY_START_HOUR = 9
DEFAULT_DAY_END_HOUR = 17


def parse_time_to_minutes(value: Any) -> int | None:
    if not isinstance(value, str):
        return None

    match = TIME_PATTERN.match(value.strip())
    if not match:
        return None

    return int(match.group(1)) * 60 + int(match.group(2))


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to already be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_naive_utc(value: datetime) -> datetime:
    return as_utc(value).replace(tzinfo=None)


def parse_iso_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return as_utc(value)
    if not isinstance(value, str) or not value.strip():
        return None

    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None

    return as_utc(parsed)


def to_utc_minutes(value: Any) -> int | None:
    moment = parse_iso_datetime(value)
    if moment is None:
        return None
    return moment.hour * 60 + moment.minute


def to_utc_end_minutes(value: Any) -> int | None:
    """Like ``to_utc_minutes`` but a partial minute counts as a whole one."""
    moment = parse_iso_datetime(value)
    if moment is None:
        return None
    minutes = moment.hour * 60 + moment.minute
    if moment.second or moment.microsecond:
        minutes += 1
    return minutes


def day_of_week(value: date | datetime) -> int:
    """Sunday is 0, Saturday is 6."""
    if isinstance(value, datetime):
        value = as_utc(value)
    return value.isoweekday() % 7


def build_default_half_hour_slots() -> list[dict]:
    slots = []
    for hour in range(DEFAULT_DAY_START_HOUR, DEFAULT_DAY_END_HOUR):
        slots.append({'startTime': f'{hour:02d}:00', 'endTime': f'{hour:02d}:30'})
        slots.append({'startTime': f'{hour:02d}:30', 'endTime': f'{hour + 1:02d}:00'})
    return slots


def _is_day_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return float(value).is_integer() and 0 <= value <= 6


def _slot_bounds(slot: Any) -> tuple[int | None, int | None]:
    if not isinstance(slot, dict):
        return None, None
    return parse_time_to_minutes(slot.get('startTime')), parse_time_to_minutes(slot.get('endTime'))


def are_day_slots_valid(slots: Any) -> bool:
    if not isinstance(slots, list) or not slots:
        return False

    bounds = [_slot_bounds(slot) for slot in slots]
    if any(start is None or end is None for start, end in bounds):
        return False

    previous_end = None
    for start, end in sorted(bounds):
        if start >= end:
            return False
        if previous_end is not None and previous_end > start:
            return False
        previous_end = end

    return True


def is_valid_weekly_availability(weekly_availability: Any) -> bool:
    if not isinstance(weekly_availability, list) or not weekly_availability:
        return False

    used_days: set[int] = set()

    for entry in weekly_availability:
        if not isinstance(entry, dict):
            return False

        day = entry.get('dayOfWeek')
        if not _is_day_number(day) or day in used_days:
            return False
        used_days.add(day)

        if not are_day_slots_valid(entry.get('slots')):
            return False

    return True


def normalize_weekly_availability(weekly_availability: list[dict]) -> list[dict]:
    """Canonical storage form of an already validated payload."""
    normalized = []
    for entry in sorted(weekly_availability, key=lambda item: item['dayOfWeek']):
        slots = sorted(
            (
                {'startTime': slot['startTime'].strip(), 'endTime': slot['endTime'].strip()}
                for slot in entry['slots']
            ),
            key=lambda slot: parse_time_to_minutes(slot['startTime']),
        )
        normalized.append({'dayOfWeek': int(entry['dayOfWeek']), 'slots': slots})
    return normalized


def slots_for_day(weekly_availability: list[dict] | None, day: int) -> list[dict]:
    for entry in weekly_availability or []:
        if entry.get('dayOfWeek') == day:
            if entry.get('slots'):
                return list(entry['slots'])
            break
    return build_default_half_hour_slots()


def intervals_overlap(first_start: int, first_end: int, second_start: int, second_end: int) -> bool:
    return first_start < second_end and first_end > second_start


def fits_within_slot(slots: Iterable[dict], start_minutes: int, end_minutes: int) -> bool:
    for slot in slots:
        slot_start, slot_end = _slot_bounds(slot)
        if slot_start is None or slot_end is None:
            continue
        if start_minutes >= slot_start and end_minutes <= slot_end:
            return True
    return False


def filter_free_slots(slots: Iterable[dict], booked_intervals: Iterable[tuple[int, int]]) -> list[dict]:
    booked = [interval for interval in booked_intervals if None not in interval]
    free_slots = []

    for slot in slots:
        slot_start, slot_end = _slot_bounds(slot)
        if slot_start is None or slot_end is None:
            continue
        if any(intervals_overlap(start, end, slot_start, slot_end) for start, end in booked):
            continue
        free_slots.append(slot)

    return free_slots
