from __future__ import annotations

import asyncio
from datetime import date, time
from pathlib import Path

import pytest

from group_birthday_bot.date_logic import InvalidBirthdayError
from group_birthday_bot.models import DEFAULT_NOTIFY_TIME
from group_birthday_bot.storage import (
    BirthdayLimitError,
    BirthdayNotFoundError,
    BirthdayStore,
    StorageError,
)

TODAY = date(2026, 10, 18)
GROUP_ID = -1001


async def _open_store(tmp_path: Path, **kwargs) -> BirthdayStore:
    store = BirthdayStore(tmp_path / "birthdays.db", **kwargs)
    await store.open()
    return store


def test_add_list_delete_roundtrip(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = await _open_store(tmp_path)
        try:
            added = await store.add_birthday(GROUP_ID, "Ann Lee", date(1990, 3, 15), TODAY)

            listed = await store.list_birthdays(GROUP_ID, TODAY)
            assert [(r.name, r.birth_date) for r in listed] == [("Ann Lee", date(1990, 3, 15))]
            assert listed[0].id == added.id

            await store.delete_birthday(GROUP_ID, added.id)
            assert await store.list_birthdays(GROUP_ID, TODAY) == []
        finally:
            await store.close()

    asyncio.run(scenario())


def test_add_creates_group_implicitly(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = await _open_store(tmp_path)
        try:
            await store.add_birthday(GROUP_ID, "Ann Lee", date(1990, 3, 15), TODAY)
            groups = await store.list_all_groups()
            assert [group.id for group in groups] == [GROUP_ID]
        finally:
            await store.close()

    asyncio.run(scenario())


def test_ensure_group_keeps_title_when_none_given(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = await _open_store(tmp_path)
        try:
            await store.ensure_group(GROUP_ID, "Family")
            await store.ensure_group(GROUP_ID)
            await store.ensure_group(-2002)

            groups = await store.list_all_groups()
            assert [(group.id, group.title) for group in groups] == [(-2002, ""), (GROUP_ID, "Family")]

            await store.ensure_group(GROUP_ID, "Family chat")
            groups = await store.list_all_groups()
            assert groups[1].title == "Family chat"
        finally:
            await store.close()

    asyncio.run(scenario())


def test_add_rejects_invalid_records(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = await _open_store(tmp_path)
        try:
            with pytest.raises(InvalidBirthdayError):
                await store.add_birthday(GROUP_ID, "   ", date(1990, 3, 15), TODAY)
            with pytest.raises(InvalidBirthdayError):
                await store.add_birthday(GROUP_ID, "Future Kid", date(2027, 1, 1), TODAY)
            with pytest.raises(InvalidBirthdayError):
                await store.add_birthday(GROUP_ID, "Old Timer", date(1800, 1, 1), TODAY)
            assert await store.list_birthdays(GROUP_ID, TODAY) == []
        finally:
            await store.close()

    asyncio.run(scenario())


def test_limit_of_100_records_per_group(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = await _open_store(tmp_path)
        try:
            for index in range(100):
                await store.add_birthday(GROUP_ID, f"Person {index}", date(1990, 1, 1 + index % 28), TODAY)

            with pytest.raises(BirthdayLimitError):
                await store.add_birthday(GROUP_ID, "One Too Many", date(1990, 5, 5), TODAY)

            assert len(await store.list_birthdays(GROUP_ID, TODAY)) == 100
            await store.add_birthday(-2002, "Other Group", date(1990, 5, 5), TODAY)
        finally:
            await store.close()

    asyncio.run(scenario())


def test_delete_missing_or_foreign_record(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = await _open_store(tmp_path)
        try:
            added = await store.add_birthday(GROUP_ID, "Ann Lee", date(1990, 3, 15), TODAY)
            with pytest.raises(BirthdayNotFoundError):
                await store.delete_birthday(GROUP_ID, added.id + 1)
            with pytest.raises(BirthdayNotFoundError):
                await store.delete_birthday(-2002, added.id)
            assert len(await store.list_birthdays(GROUP_ID, TODAY)) == 1
        finally:
            await store.close()

    asyncio.run(scenario())


def test_list_birthdays_starts_from_today(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = await _open_store(tmp_path)
        try:
            await store.add_birthday(GROUP_ID, "January", date(1990, 1, 5), TODAY)
            await store.add_birthday(GROUP_ID, "December", date(1990, 12, 1), TODAY)
            await store.add_birthday(GROUP_ID, "Today", date(1990, 10, 18), TODAY)
            await store.add_birthday(GROUP_ID, "September", date(1990, 9, 30), TODAY)

            names = [record.name for record in await store.list_birthdays(GROUP_ID, TODAY)]
            assert names == ["Today", "December", "January", "September"]
        finally:
            await store.close()

    asyncio.run(scenario())


def test_list_upcoming_within_window(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = await _open_store(tmp_path)
        try:
            await store.add_birthday(GROUP_ID, "Today", date(1990, 10, 18), TODAY)
            await store.add_birthday(GROUP_ID, "Week", date(1990, 10, 25), TODAY)
            await store.add_birthday(GROUP_ID, "Eight Days", date(1990, 10, 26), TODAY)
            await store.add_birthday(GROUP_ID, "Yesterday", date(1990, 10, 17), TODAY)

            upcoming = await store.list_upcoming(GROUP_ID, 7, TODAY)
            assert [(item.record.name, item.days_until) for item in upcoming] == [("Today", 0), ("Week", 7)]
            assert upcoming[1].next_date == date(2026, 10, 25)
        finally:
            await store.close()

    asyncio.run(scenario())


def test_list_upcoming_wraps_across_new_year(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = await _open_store(tmp_path)
        today = date(2026, 12, 29)
        try:
            await store.add_birthday(GROUP_ID, "New Year", date(1990, 1, 1), today)
            await store.add_birthday(GROUP_ID, "Old Year", date(1990, 12, 31), today)
            await store.add_birthday(GROUP_ID, "Too Far", date(1990, 1, 10), today)
            await store.add_birthday(GROUP_ID, "Summer", date(1990, 7, 1), today)

            upcoming = await store.list_upcoming(GROUP_ID, 7, today)
            assert [(item.record.name, item.days_until) for item in upcoming] == [("Old Year", 2), ("New Year", 3)]
            assert upcoming[1].next_date == date(2027, 1, 1)
        finally:
            await store.close()

    asyncio.run(scenario())


def test_list_upcoming_includes_leap_day_in_non_leap_year(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = await _open_store(tmp_path, leap_day_rule="feb28")
        today = date(2027, 2, 21)
        try:
            await store.add_birthday(GROUP_ID, "Leapling", date(2000, 2, 29), today)

            upcoming = await store.list_upcoming(GROUP_ID, 7, today)
            assert [(item.record.name, item.next_date) for item in upcoming] == [("Leapling", date(2027, 2, 28))]
            assert await store.list_upcoming(GROUP_ID, 6, today) == []
        finally:
            await store.close()

    asyncio.run(scenario())


def test_list_upcoming_rejects_non_positive_window(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = await _open_store(tmp_path)
        try:
            with pytest.raises(ValueError):
                await store.list_upcoming(GROUP_ID, 0, TODAY)
        finally:
            await store.close()

    asyncio.run(scenario())


def test_notify_time_defaults_and_updates(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = await _open_store(tmp_path)
        try:
            assert await store.get_notify_time(GROUP_ID) == DEFAULT_NOTIFY_TIME

            await store.set_notify_time(GROUP_ID, time(18, 30))
            assert await store.get_notify_time(GROUP_ID) == time(18, 30)

            await store.set_notify_time(GROUP_ID, time(7, 5))
            assert await store.get_notify_time(GROUP_ID) == time(7, 5)
        finally:
            await store.close()

    asyncio.run(scenario())


def test_mark_notified_once_per_day(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = await _open_store(tmp_path)
        try:
            await store.ensure_group(GROUP_ID)
            assert await store.mark_notified(GROUP_ID, TODAY) is True
            assert await store.mark_notified(GROUP_ID, TODAY) is False
            assert await store.mark_notified(GROUP_ID, date(2026, 10, 19)) is True
            assert await store.get_notify_time(GROUP_ID) == DEFAULT_NOTIFY_TIME
        finally:
            await store.close()

    asyncio.run(scenario())


def test_data_survives_reopen(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = await _open_store(tmp_path)
        await store.add_birthday(GROUP_ID, "Ann Lee", date(1990, 3, 15), TODAY)
        await store.set_notify_time(GROUP_ID, time(20, 0))
        await store.close()

        reopened = await _open_store(tmp_path)
        try:
            assert [r.name for r in await reopened.list_birthdays(GROUP_ID, TODAY)] == ["Ann Lee"]
            assert await reopened.get_notify_time(GROUP_ID) == time(20, 0)
        finally:
            await reopened.close()

    asyncio.run(scenario())


def test_store_must_be_opened(tmp_path: Path) -> None:
    store = BirthdayStore(tmp_path / "birthdays.db")

    with pytest.raises(StorageError):
        asyncio.run(store.list_all_groups())


def test_failed_write_is_rolled_back(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = await _open_store(tmp_path)
        try:
            await store._db.execute("DROP TABLE birthdays")

            # the group row is written before the birthdays table is touched
            with pytest.raises(StorageError):
                await store.add_birthday(GROUP_ID, "Ann Lee", date(1990, 3, 15), TODAY)

            await store.set_notify_time(-2002, time(18, 30))
            assert [group.id for group in await store.list_all_groups()] == [-2002]
        finally:
            await store.close()

    asyncio.run(scenario())
