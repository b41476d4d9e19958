"""Fixed clinic-day slot generation.

A doctor's operating window is not persisted: every day runs from
``CLINIC_OPEN_TIME`` up to (but not including) ``CLINIC_CLOSE_TIME`` in
``SLOT_INCREMENT_MINUTES`` steps, and slots are identified by zero-padded
``HH:MM`` strings.
"""

import re
from datetime import date, datetime, time, timedelta
from typing import Iterable

CLINIC_OPEN_TIME = time(9, 0)
CLINIC_CLOSE_TIME = time(17, 0)
SLOT_INCREMENT_MINUTES = 30

TIME_PATTERN = re.compile(r'^([0-1]?[0-9]|2[0-3]):([0-5][0-9])$')

INVALID_DATE_MESSAGE = 'Please provide a valid appointment date'


def normalize_slot_time(value: str) -> str:
    """Return ``value`` as a zero-padded ``HH:MM`` string.

    Raises ``ValueError`` for anything that is not a 24-hour ``H:MM``/``HH:MM`` time.
    """
    match = TIME_PATTERN.match(value.strip())
    if match is None:
        raise ValueError('Please provide a valid time format (HH:MM)')

    hour, minute = match.groups()
    return f'{int(hour):02d}:{minute}'


def to_calendar_date(value: date | datetime | str) -> date:
    """Reduce a date, datetime or ISO string to its calendar day.

    ``2024-06-01``, ``2024-06-01T00:00:00.000Z`` and ``datetime(2024, 6, 1, 15)``
    all name the same day.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        day_part = value.strip().split('T', 1)[0].split(' ', 1)[0]
        try:
            return date.fromisoformat(day_part)
        except ValueError as exc:
            raise ValueError(INVALID_DATE_MESSAGE) from exc
    raise ValueError(INVALID_DATE_MESSAGE)


def generate_day_slots() -> list[str]:
    slots: list[str] = []
    # The day is irrelevant, it only anchors the arithmetic.
    current = datetime.combine(date.min, CLINIC_OPEN_TIME)
    close = datetime.combine(date.min, CLINIC_CLOSE_TIME)

    while current < close:
        slots.append(current.strftime('%H:%M'))
        current += timedelta(minutes=SLOT_INCREMENT_MINUTES)

    return slots


def subtract_booked_slots(booked_times: Iterable[str]) -> list[str]:
    booked = set(booked_times)
    return [slot for slot in generate_day_slots() if slot not in booked]
