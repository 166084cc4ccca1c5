from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta

from group_birthday_bot.models import MAX_AGE_YEARS

ALLOWED_LEAP_DAY_RULES = {"feb28", "mar1"}
NOTIFY_WINDOW = timedelta(minutes=1)


class InvalidBirthdayError(ValueError):
    pass


def is_leap_year(year: int) -> bool:
    return year % 4 == 0 and (year % 100 != 0 or year % 400 == 0)


def birthday_date_for_year(birth_date: date, year: int, leap_day_rule: str) -> date:
    if birth_date.month == 2 and birth_date.day == 29 and not is_leap_year(year):
        if leap_day_rule == "feb28":
            return date(year, 2, 28)
        if leap_day_rule == "mar1":
            return date(year, 3, 1)
        raise InvalidBirthdayError(f"Unsupported leap day rule: {leap_day_rule}")
    return date(year, birth_date.month, birth_date.day)


def _as_day(reference: date | datetime) -> date:
    if isinstance(reference, datetime):
        return reference.date()
    return reference


def next_occurrence(birth_date: date, reference: date | datetime, leap_day_rule: str = "feb28") -> date:
    """Next anniversary of ``birth_date`` on or after the reference calendar day."""
    today = _as_day(reference)
    this_year = birthday_date_for_year(birth_date, today.year, leap_day_rule)
    if this_year >= today:
        return this_year
    return birthday_date_for_year(birth_date, today.year + 1, leap_day_rule)


def days_until(birth_date: date, reference: date | datetime, leap_day_rule: str = "feb28") -> int:
    today = _as_day(reference)
    return (next_occurrence(birth_date, today, leap_day_rule) - today).days


def is_notification_due(notify_time: time, now: datetime) -> bool:
    """True while ``now`` is within one minute of today's configured notify time."""
    target = datetime.combine(now.date(), notify_time, tzinfo=now.tzinfo)
    return abs(now - target) <= NOTIFY_WINDOW


def parse_birth_date(raw_text: str) -> date:
    value = raw_text.strip()
    match = re.fullmatch(r"(\d{1,2})\.(\d{1,2})\.(\d{4})", value)
    if not match:
        raise InvalidBirthdayError("Дата должна быть в формате ДД.ММ.ГГГГ")

    day = int(match.group(1))
    month = int(match.group(2))
    year = int(match.group(3))
    try:
        return date(year, month, day)
    except ValueError as exc:
        raise InvalidBirthdayError(f"Такой даты не существует: {value}") from exc


def validate_birth_date(birth_date: date, today: date) -> None:
    if birth_date > today:
        raise InvalidBirthdayError("Дата рождения не может быть в будущем")
    if today - birth_date > timedelta(days=MAX_AGE_YEARS * 365):
        raise InvalidBirthdayError("Дата рождения слишком старая")


def parse_time_of_day(value: str) -> time:
    pieces = value.strip().split(":")
    if len(pieces) != 2:
        raise ValueError("Время должно быть в формате ЧЧ:ММ")

    hour, minute = pieces
    if not hour.isdigit() or not minute.isdigit():
        raise ValueError("Часы и минуты должны быть числами")

    hour_i = int(hour)
    minute_i = int(minute)
    if hour_i < 0 or hour_i > 23 or minute_i < 0 or minute_i > 59:
        raise ValueError("Время должно быть в 24-часовом формате")

    return time(hour=hour_i, minute=minute_i)
