from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import time
from typing import Any

from punchclock.errors import ValidationError
from punchclock.models import WEEKDAY_ORDER, Weekday

TIME_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]:[0-5][0-9]$")
VALID_DAY_NAMES: tuple[str, ...] = tuple(item.value for item in WEEKDAY_ORDER)


@dataclass(frozen=True, slots=True)
class ScheduleEntry:
    day: Weekday
    time_in: time
    time_out: time


def invalid_day_message(raw_day: Any) -> str:
    return f"Invalid day: {raw_day}. Must be one of: {', '.join(VALID_DAY_NAMES)}"


def normalize_day(raw_day: Any) -> Weekday | None:
    if not isinstance(raw_day, str):
        return None
    normalized = raw_day.strip().lower()
    if normalized not in VALID_DAY_NAMES:
        return None
    return Weekday(normalized)


def is_valid_time_string(value: Any) -> bool:
    return isinstance(value, str) and TIME_PATTERN.match(value) is not None


def parse_time_string(value: str) -> time:
    hour_str, minute_str, second_str = value.split(":")
    return time(hour=int(hour_str), minute=int(minute_str), second=int(second_str))


def _entry_field(raw_entry: Any, name: str) -> Any:
    if isinstance(raw_entry, dict):
        return raw_entry.get(name)
    return getattr(raw_entry, name, None)


def validate_schedule_entries(raw_schedules: Any, *, allow_empty: bool) -> list[ScheduleEntry]:
    """Validate a raw schedule list and return normalized entries.

    Day and time checks run per entry in a single pass; the duplicate-day
    check runs afterwards over the whole list. The first violation raises.
    """
    if raw_schedules is None or not isinstance(raw_schedules, list):
        raise ValidationError("Schedules array is required", code="SCHEDULES_REQUIRED")
    if not raw_schedules and not allow_empty:
        raise ValidationError("Schedules array must not be empty", code="SCHEDULES_EMPTY")

    entries: list[ScheduleEntry] = []
    for raw_entry in raw_schedules:
        raw_day = _entry_field(raw_entry, "day")
        day = normalize_day(raw_day)
        if day is None:
            raise ValidationError(invalid_day_message(raw_day), code="INVALID_DAY")

        raw_time_in = _entry_field(raw_entry, "time_in")
        raw_time_out = _entry_field(raw_entry, "time_out")
        if not raw_time_in or not raw_time_out:
            raise ValidationError("Each schedule must have time_in and time_out", code="MISSING_TIME")
        if not is_valid_time_string(raw_time_in) or not is_valid_time_string(raw_time_out):
            raise ValidationError("Time format must be HH:MM:SS", code="INVALID_TIME_FORMAT")

        entries.append(
            ScheduleEntry(
                day=day,
                time_in=parse_time_string(raw_time_in),
                time_out=parse_time_string(raw_time_out),
            )
        )

    seen_days: set[Weekday] = set()
    for entry in entries:
        if entry.day in seen_days:
            raise ValidationError("Duplicate days are not allowed", code="DUPLICATE_DAY")
        seen_days.add(entry.day)

    return entries
