from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from zoneinfo import ZoneInfo

from telegram import Bot
from telegram.error import TelegramError

from group_birthday_bot.date_logic import is_notification_due
from group_birthday_bot.formatting import render_upcoming_notification
from group_birthday_bot.models import UPCOMING_WINDOW_DAYS, Group
from group_birthday_bot.storage import BirthdayStore, StorageError

LOGGER = logging.getLogger(__name__)


class ReminderService:
    """One pass over all groups per scheduler tick."""

    def __init__(
        self,
        *,
        bot: Bot,
        store: BirthdayStore,
        lookahead_days: int = UPCOMING_WINDOW_DAYS,
        call_timeout: float = 10.0,
    ) -> None:
        self._bot = bot
        self._store = store
        self._lookahead_days = lookahead_days
        self._call_timeout = call_timeout

    async def run_tick(self, now: datetime) -> int:
        try:
            groups = await asyncio.wait_for(self._store.list_all_groups(), self._call_timeout)
        except (StorageError, asyncio.TimeoutError):
            LOGGER.exception("Could not list groups, skipping tick at %s", now.isoformat())
            return 0

        sent_count = 0
        for group in groups:
            try:
                sent = await asyncio.wait_for(self._notify_group(group, now), self._call_timeout)
            except asyncio.TimeoutError:
                LOGGER.warning("Notification for group %s timed out", group.id)
                continue
            except StorageError:
                LOGGER.exception("Storage failure while notifying group %s", group.id)
                continue
            except TelegramError as exc:
                LOGGER.warning("Could not send notification to group %s: %s", group.id, exc)
                continue
            if sent:
                sent_count += 1

        if sent_count:
            LOGGER.info("Sent %s birthday notifications at %s", sent_count, now.isoformat())
        return sent_count

    async def _notify_group(self, group: Group, now: datetime) -> bool:
        notify_time = await self._store.get_notify_time(group.id)
        if not is_notification_due(notify_time, now):
            return False

        today = now.date()
        upcoming = await self._store.list_upcoming(group.id, self._lookahead_days, today)
        if not upcoming:
            return False

        if not await self._store.mark_notified(group.id, today):
            LOGGER.debug("Group %s already notified on %s", group.id, today.isoformat())
            return False

        await self._bot.send_message(chat_id=group.id, text=render_upcoming_notification(upcoming))
        return True


def now_in_timezone(timezone_name: str | None) -> datetime:
    """Current wall-clock time; the host's local clock when no zone is configured."""
    if not timezone_name:
        return datetime.now()
    return datetime.now(ZoneInfo(timezone_name))


def seconds_until_next_minute(now: datetime) -> float:
    return 60 - now.second - now.microsecond / 1_000_000
