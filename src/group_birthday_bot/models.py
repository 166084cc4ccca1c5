from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time


DEFAULT_NOTIFY_TIME = time(hour=9, minute=0)
MAX_BIRTHDAYS_PER_GROUP = 100
UPCOMING_WINDOW_DAYS = 7
MAX_AGE_YEARS = 150


@dataclass(frozen=True)
class BirthdayRecord:
    id: int
    name: str
    birth_date: date
    group_id: int


@dataclass(frozen=True)
class Group:
    id: int
    title: str = ""


@dataclass(frozen=True)
class UpcomingBirthday:
    record: BirthdayRecord
    next_date: date
    days_until: int
