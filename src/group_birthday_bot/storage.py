"""SQLite-backed store for groups, their birthdays and notification settings."""

from __future__ import annotations

import asyncio
import logging
from datetime import date, time, timedelta
from pathlib import Path

import aiosqlite

from group_birthday_bot.date_logic import (
    InvalidBirthdayError,
    days_until,
    parse_time_of_day,
    validate_birth_date,
)
from group_birthday_bot.formatting import format_time
from group_birthday_bot.models import (
    DEFAULT_NOTIFY_TIME,
    MAX_BIRTHDAYS_PER_GROUP,
    BirthdayRecord,
    Group,
    UpcomingBirthday,
)

LOGGER = logging.getLogger(__name__)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS groups (
        id INTEGER PRIMARY KEY,
        title TEXT NOT NULL DEFAULT ''
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS birthdays (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        birthday TEXT NOT NULL,
        group_id INTEGER NOT NULL,
        FOREIGN KEY (group_id) REFERENCES groups(id) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_birthdays_group ON birthdays (group_id)",
    """
    CREATE TABLE IF NOT EXISTS settings (
        group_id INTEGER PRIMARY KEY,
        notify_time TEXT NOT NULL,
        last_notified TEXT,
        FOREIGN KEY (group_id) REFERENCES groups(id) ON DELETE CASCADE
    )
    """,
)


class StorageError(Exception):
    pass


class BirthdayNotFoundError(Exception):
    pass


class BirthdayLimitError(Exception):
    pass


def _month_day(value: date) -> str:
    return f"{value.month:02d}-{value.day:02d}"


def _row_to_record(row: aiosqlite.Row) -> BirthdayRecord:
    return BirthdayRecord(
        id=int(row["id"]),
        name=str(row["name"]),
        birth_date=date.fromisoformat(row["birthday"]),
        group_id=int(row["group_id"]),
    )


class BirthdayStore:
    def __init__(
        self,
        path: Path | str,
        *,
        leap_day_rule: str = "feb28",
        max_per_group: int = MAX_BIRTHDAYS_PER_GROUP,
    ) -> None:
        self._path = str(path)
        self._leap_day_rule = leap_day_rule
        self._max_per_group = max_per_group
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    @property
    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageError("Store is not open")
        return self._db

    async def open(self) -> None:
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._db = await aiosqlite.connect(self._path)
            self._db.row_factory = aiosqlite.Row
            await self._db.execute("PRAGMA foreign_keys=ON")
            for statement in SCHEMA:
                await self._db.execute(statement)
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(f"Could not open database {self._path}: {exc}") from exc
        LOGGER.info("Opened birthday store at %s", self._path)

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def _rollback(self) -> None:
        try:
            await self._conn.rollback()
        except aiosqlite.Error:
            LOGGER.exception("Rollback failed on %s", self._path)

    # ==================== Groups ====================

    async def ensure_group(self, group_id: int, title: str = "") -> None:
        """Create the group on first sight; refresh its title when one is given."""
        async with self._write_lock:
            try:
                await self._conn.execute(
                    """
                    INSERT INTO groups (id, title) VALUES (?, ?)
                    ON CONFLICT (id) DO UPDATE SET title = excluded.title
                    WHERE excluded.title != '' AND excluded.title != groups.title
                    """,
                    (group_id, title or ""),
                )
                await self._conn.commit()
            except aiosqlite.Error as exc:
                await self._rollback()
                raise StorageError(f"Could not save group {group_id}: {exc}") from exc

    async def list_all_groups(self) -> list[Group]:
        try:
            async with self._conn.execute("SELECT id, title FROM groups ORDER BY id") as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StorageError(f"Could not list groups: {exc}") from exc
        return [Group(id=int(row["id"]), title=str(row["title"])) for row in rows]

    # ==================== Birthdays ====================

    async def add_birthday(
        self,
        group_id: int,
        name: str,
        birth_date: date,
        today: date | None = None,
    ) -> BirthdayRecord:
        cleaned = name.strip()
        if not cleaned:
            raise InvalidBirthdayError("Имя не может быть пустым")
        validate_birth_date(birth_date, today or date.today())

        async with self._write_lock:
            try:
                await self._conn.execute(
                    "INSERT OR IGNORE INTO groups (id, title) VALUES (?, '')",
                    (group_id,),
                )
                async with self._conn.execute(
                    "SELECT COUNT(*) FROM birthdays WHERE group_id = ?",
                    (group_id,),
                ) as cursor:
                    row = await cursor.fetchone()
                if row[0] >= self._max_per_group:
                    await self._conn.commit()
                    raise BirthdayLimitError(
                        f"Превышен лимит дней рождения в группе ({self._max_per_group})"
                    )

                cursor = await self._conn.execute(
                    "INSERT INTO birthdays (name, birthday, group_id) VALUES (?, ?, ?)",
                    (cleaned, birth_date.isoformat(), group_id),
                )
                record_id = cursor.lastrowid
                await cursor.close()
                await self._conn.commit()
            except aiosqlite.Error as exc:
                await self._rollback()
                raise StorageError(f"Could not add birthday for group {group_id}: {exc}") from exc

        return BirthdayRecord(id=int(record_id), name=cleaned, birth_date=birth_date, group_id=group_id)

    async def list_birthdays(self, group_id: int, today: date | None = None) -> list[BirthdayRecord]:
        """All records of a group by month-day, starting from today's month-day."""
        try:
            async with self._conn.execute(
                """
                SELECT id, name, birthday, group_id
                FROM birthdays
                WHERE group_id = ?
                ORDER BY strftime('%m-%d', birthday), id
                """,
                (group_id,),
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StorageError(f"Could not list birthdays for group {group_id}: {exc}") from exc

        records = [_row_to_record(row) for row in rows]
        pivot = _month_day(today or date.today())
        ahead = [record for record in records if _month_day(record.birth_date) >= pivot]
        behind = [record for record in records if _month_day(record.birth_date) < pivot]
        return ahead + behind

    async def delete_birthday(self, group_id: int, record_id: int) -> None:
        async with self._write_lock:
            try:
                cursor = await self._conn.execute(
                    "DELETE FROM birthdays WHERE id = ? AND group_id = ?",
                    (record_id, group_id),
                )
                deleted = cursor.rowcount
                await cursor.close()
                await self._conn.commit()
            except aiosqlite.Error as exc:
                await self._rollback()
                raise StorageError(f"Could not delete birthday {record_id}: {exc}") from exc

        if deleted == 0:
            raise BirthdayNotFoundError("День рождения не найден")

    async def list_upcoming(
        self,
        group_id: int,
        within_days: int,
        today: date | None = None,
    ) -> list[UpcomingBirthday]:
        """Birthdays whose next occurrence is within ``within_days`` of today, inclusive."""
        if within_days <= 0:
            raise ValueError("within_days must be positive")

        today = today or date.today()
        params: list[object] = [group_id]
        if within_days >= 365:
            window_clause = "1 = 1"
        else:
            start = _month_day(today)
            end = _month_day(today + timedelta(days=within_days))
            if start <= end:
                window_clause = "strftime('%m-%d', birthday) BETWEEN ? AND ?"
            else:
                # the window crosses December -> January
                window_clause = "(strftime('%m-%d', birthday) >= ? OR strftime('%m-%d', birthday) <= ?)"
            params.extend([start, end])

        try:
            async with self._conn.execute(
                f"""
                SELECT id, name, birthday, group_id
                FROM birthdays
                WHERE group_id = ?
                AND ({window_clause} OR strftime('%m-%d', birthday) = '02-29')
                """,
                params,
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StorageError(f"Could not list upcoming birthdays for group {group_id}: {exc}") from exc

        upcoming: list[UpcomingBirthday] = []
        for row in rows:
            record = _row_to_record(row)
            remaining = days_until(record.birth_date, today, self._leap_day_rule)
            if remaining > within_days:
                continue
            upcoming.append(
                UpcomingBirthday(
                    record=record,
                    next_date=today + timedelta(days=remaining),
                    days_until=remaining,
                )
            )

        upcoming.sort(key=lambda item: (item.days_until, item.record.name.casefold()))
        return upcoming

    # ==================== Settings ====================

    async def get_notify_time(self, group_id: int) -> time:
        try:
            async with self._conn.execute(
                "SELECT notify_time FROM settings WHERE group_id = ?",
                (group_id,),
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StorageError(f"Could not read notify time for group {group_id}: {exc}") from exc

        if row is None:
            return DEFAULT_NOTIFY_TIME
        try:
            return parse_time_of_day(row["notify_time"])
        except ValueError as exc:
            raise StorageError(f"Stored notify time for group {group_id} is invalid: {row['notify_time']}") from exc

    async def set_notify_time(self, group_id: int, notify_time: time) -> None:
        async with self._write_lock:
            try:
                await self._conn.execute(
                    "INSERT OR IGNORE INTO groups (id, title) VALUES (?, '')",
                    (group_id,),
                )
                await self._conn.execute(
                    """
                    INSERT INTO settings (group_id, notify_time) VALUES (?, ?)
                    ON CONFLICT (group_id) DO UPDATE SET notify_time = excluded.notify_time
                    """,
                    (group_id, format_time(notify_time)),
                )
                await self._conn.commit()
            except aiosqlite.Error as exc:
                await self._rollback()
                raise StorageError(f"Could not save notify time for group {group_id}: {exc}") from exc

    async def mark_notified(self, group_id: int, day: date) -> bool:
        """Record that ``group_id`` was notified on ``day``; False if it already was."""
        async with self._write_lock:
            try:
                await self._conn.execute(
                    "INSERT OR IGNORE INTO settings (group_id, notify_time) VALUES (?, ?)",
                    (group_id, format_time(DEFAULT_NOTIFY_TIME)),
                )
                cursor = await self._conn.execute(
                    """
                    UPDATE settings SET last_notified = ?
                    WHERE group_id = ? AND (last_notified IS NULL OR last_notified != ?)
                    """,
                    (day.isoformat(), group_id, day.isoformat()),
                )
                changed = cursor.rowcount
                await cursor.close()
                await self._conn.commit()
            except aiosqlite.Error as exc:
                await self._rollback()
                raise StorageError(f"Could not mark group {group_id} as notified: {exc}") from exc
        return changed == 1
