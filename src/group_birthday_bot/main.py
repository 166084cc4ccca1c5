from __future__ import annotations

import logging
from warnings import filterwarnings

from telegram.ext import Application, CallbackContext
from telegram.warnings import PTBUserWarning

from group_birthday_bot.bot_handlers import (
    HandlerDependencies,
    build_handlers,
    build_tracking_handler,
    error_handler,
)
from group_birthday_bot.reminder_service import (
    ReminderService,
    now_in_timezone,
    seconds_until_next_minute,
)
from group_birthday_bot.settings import Settings, load_settings
from group_birthday_bot.storage import BirthdayStore

LOGGER = logging.getLogger(__name__)

TICK_INTERVAL_SECONDS = 60


def configure_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # httpx logs every long-poll request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def configure_warnings() -> None:
    # sessions are keyed by (chat, user), never by message
    filterwarnings("ignore", message=r".*CallbackQueryHandler", category=PTBUserWarning)


async def scheduled_tick_callback(context: CallbackContext) -> None:
    service: ReminderService = context.application.bot_data["reminder_service"]
    settings: Settings = context.application.bot_data["settings"]
    await service.run_tick(now_in_timezone(settings.timezone))


async def open_store(application: Application) -> None:
    store: BirthdayStore = application.bot_data["store"]
    await store.open()


async def close_store(application: Application) -> None:
    store: BirthdayStore = application.bot_data["store"]
    await store.close()
    LOGGER.info("Birthday store closed")


def main() -> None:
    settings = load_settings()
    configure_logging(settings.debug)
    configure_warnings()

    store = BirthdayStore(settings.database_path, leap_day_rule=settings.leap_day_rule)

    application = (
        Application.builder()
        .token(settings.telegram_bot_token)
        .post_init(open_store)
        .post_shutdown(close_store)
        .build()
    )
    application.bot_data["settings"] = settings
    application.bot_data["store"] = store
    application.bot_data["handler_deps"] = HandlerDependencies(settings=settings, store=store)
    application.bot_data["reminder_service"] = ReminderService(
        bot=application.bot,
        store=store,
        call_timeout=settings.call_timeout_seconds,
    )

    application.add_handler(build_tracking_handler(), group=-1)
    for handler in build_handlers(settings):
        application.add_handler(handler)
    application.add_error_handler(error_handler)

    application.job_queue.run_repeating(
        scheduled_tick_callback,
        interval=TICK_INTERVAL_SECONDS,
        first=seconds_until_next_minute(now_in_timezone(settings.timezone)),
        name="birthday-notify-tick",
    )

    LOGGER.info("Starting birthday bot")
    application.run_polling()


if __name__ == "__main__":
    main()
