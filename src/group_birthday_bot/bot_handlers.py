from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from telegram import (
    ForceReply,
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    MessageEntity,
    Update,
)
from telegram.ext import (
    CallbackContext,
    CallbackQueryHandler,
    CommandHandler,
    ConversationHandler,
    MessageHandler,
    TypeHandler,
    filters,
)

from group_birthday_bot.date_logic import (
    InvalidBirthdayError,
    days_until,
    next_occurrence,
    parse_birth_date,
    parse_time_of_day,
)
from group_birthday_bot.formatting import (
    format_date,
    format_time,
    render_birthday_list,
    render_help,
)
from group_birthday_bot.models import BirthdayRecord, UpcomingBirthday
from group_birthday_bot.reminder_service import now_in_timezone
from group_birthday_bot.settings import Settings
from group_birthday_bot.storage import (
    BirthdayLimitError,
    BirthdayNotFoundError,
    BirthdayStore,
    StorageError,
)

LOGGER = logging.getLogger(__name__)

STATE_ADD_ENTRY, STATE_DELETE_NAME = range(2)

SHOW_BIRTHDAYS = "show_birthdays"
ADD_BIRTHDAY = "add_birthday"
DELETE_BIRTHDAY = "delete_birthday"
DELETE_NAME_PREFIX = "delete_name_"
DELETE_ID_PREFIX = "delete_id_"
# Telegram rejects callback data longer than 64 bytes.
MAX_CALLBACK_DATA_BYTES = 64

ADD_PROMPT = "Введите имя, фамилию и дату рождения в формате:\nИмя Фамилия ДД.ММ.ГГГГ"
DELETE_PROMPT = (
    "🗑 Выберите день рождения для удаления из списка\n"
    "или ответьте на это сообщение именем и фамилией:"
)
EMPTY_GROUP_TEXT = "📝 В этой группе пока нет дней рождения."
NOT_FOUND_TEXT = "❌ День рождения не найден"
GENERIC_FAILURE_TEXT = "❌ Не удалось выполнить операцию. Попробуйте позже."


@dataclass(frozen=True)
class HandlerDependencies:
    settings: Settings
    store: BirthdayStore


def _today(settings: Settings) -> date:
    return now_in_timezone(settings.timezone).date()


def parse_add_text(raw_text: str) -> tuple[str, date]:
    """Split "Имя Фамилия ДД.ММ.ГГГГ" into the name and the birth date."""
    parts = raw_text.split()
    if len(parts) < 2:
        raise InvalidBirthdayError("Неверный формат. Используйте: Имя Фамилия ДД.ММ.ГГГГ")

    birth_date = parse_birth_date(parts[-1])
    name = " ".join(parts[:-1])
    return name, birth_date


def choices_markup(choices: list[tuple[str, str]]) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton(label, callback_data=token)] for label, token in choices]
    )


def main_menu_markup() -> InlineKeyboardMarkup:
    return choices_markup(
        [
            ("📅 Показать дни рождения", SHOW_BIRTHDAYS),
            ("➕ Добавить день рождения", ADD_BIRTHDAY),
            ("❌ Удалить день рождения", DELETE_BIRTHDAY),
        ]
    )


def delete_token(record: BirthdayRecord) -> str:
    token = f"{DELETE_NAME_PREFIX}{record.name}"
    if len(token.encode("utf-8")) <= MAX_CALLBACK_DATA_BYTES:
        return token
    return f"{DELETE_ID_PREFIX}{record.id}"


def delete_choices(records: list[BirthdayRecord]) -> list[tuple[str, str]]:
    return [
        (f"❌ {record.name} ({format_date(record.birth_date)})", delete_token(record))
        for record in records
    ]


def build_list_rows(records: list[BirthdayRecord], today: date, leap_day_rule: str) -> list[UpcomingBirthday]:
    rows = [
        UpcomingBirthday(
            record=record,
            next_date=next_occurrence(record.birth_date, today, leap_day_rule),
            days_until=days_until(record.birth_date, today, leap_day_rule),
        )
        for record in records
    ]
    rows.sort(key=lambda row: (row.days_until, row.record.name.casefold()))
    return rows


async def _answer_callback(update: Update) -> None:
    if update.callback_query is not None:
        await update.callback_query.answer()


async def track_group(update: Update, context: CallbackContext) -> None:
    deps: HandlerDependencies = context.application.bot_data["handler_deps"]
    chat = update.effective_chat
    if chat is None:
        return
    try:
        await deps.store.ensure_group(chat.id, chat.title or "")
    except StorageError:
        LOGGER.exception("Could not record chat %s", chat.id)


async def start_command(update: Update, context: CallbackContext) -> None:
    await update.effective_message.reply_text("Выберите действие:", reply_markup=main_menu_markup())


async def help_command(update: Update, context: CallbackContext) -> None:
    await update.effective_message.reply_text(render_help())


async def mention_command(update: Update, context: CallbackContext) -> None:
    text = (update.effective_message.text or "").lower()
    username = context.bot.username
    if username and f"@{username.lower()}" in text:
        await start_command(update, context)


async def show_birthdays(update: Update, context: CallbackContext) -> None:
    deps: HandlerDependencies = context.application.bot_data["handler_deps"]
    await _answer_callback(update)
    chat_id = update.effective_chat.id
    today = _today(deps.settings)

    try:
        records = await deps.store.list_birthdays(chat_id, today)
    except StorageError:
        LOGGER.exception("Could not list birthdays for chat %s", chat_id)
        await update.effective_message.reply_text(GENERIC_FAILURE_TEXT)
        return

    if not records:
        await update.effective_message.reply_text(EMPTY_GROUP_TEXT)
        return

    rows = build_list_rows(records, today, deps.settings.leap_day_rule)
    await update.effective_message.reply_text(render_birthday_list(rows))


async def add_start(update: Update, context: CallbackContext) -> int:
    await _answer_callback(update)
    await update.effective_message.reply_text(
        ADD_PROMPT,
        reply_markup=ForceReply(selective=True, input_field_placeholder="Имя Фамилия ДД.ММ.ГГГГ"),
    )
    return STATE_ADD_ENTRY


async def add_entry(update: Update, context: CallbackContext) -> int:
    deps: HandlerDependencies = context.application.bot_data["handler_deps"]
    chat_id = update.effective_chat.id
    raw_text = update.effective_message.text or ""

    try:
        name, birth_date = parse_add_text(raw_text)
        record = await deps.store.add_birthday(chat_id, name, birth_date, _today(deps.settings))
    except InvalidBirthdayError as exc:
        await update.effective_message.reply_text(
            f"❌ {exc}\nПопробуйте ещё раз: Имя Фамилия ДД.ММ.ГГГГ или /cancel"
        )
        return STATE_ADD_ENTRY
    except BirthdayLimitError as exc:
        await update.effective_message.reply_text(f"❌ {exc}")
        return ConversationHandler.END
    except StorageError:
        LOGGER.exception("Could not add birthday in chat %s", chat_id)
        await update.effective_message.reply_text(GENERIC_FAILURE_TEXT)
        return ConversationHandler.END

    await update.effective_message.reply_text(f"✅ День рождения {record.name} успешно добавлен!")
    LOGGER.info("Added birthday %s in chat %s", record.id, chat_id)
    return ConversationHandler.END


async def delete_start(update: Update, context: CallbackContext) -> int:
    deps: HandlerDependencies = context.application.bot_data["handler_deps"]
    await _answer_callback(update)
    chat_id = update.effective_chat.id

    try:
        records = await deps.store.list_birthdays(chat_id, _today(deps.settings))
    except StorageError:
        LOGGER.exception("Could not list birthdays for chat %s", chat_id)
        await update.effective_message.reply_text(GENERIC_FAILURE_TEXT)
        return ConversationHandler.END

    if not records:
        await update.effective_message.reply_text(EMPTY_GROUP_TEXT)
        return ConversationHandler.END

    await update.effective_message.reply_text(
        DELETE_PROMPT,
        reply_markup=choices_markup(delete_choices(records)),
    )
    return STATE_DELETE_NAME


async def _delete_matching(
    deps: HandlerDependencies,
    chat_id: int,
    *,
    name: str | None = None,
    record_id: int | None = None,
    ignore_case: bool = False,
) -> str:
    """Delete the first record of the chat matching ``name`` or ``record_id``; return the reply text."""
    try:
        records = await deps.store.list_birthdays(chat_id, _today(deps.settings))
    except StorageError:
        LOGGER.exception("Could not list birthdays for chat %s", chat_id)
        return GENERIC_FAILURE_TEXT

    def _matches(record: BirthdayRecord) -> bool:
        if record_id is not None:
            return record.id == record_id
        if ignore_case:
            return record.name.casefold() == (name or "").casefold()
        return record.name == name

    found = next((record for record in records if _matches(record)), None)
    if found is None:
        return NOT_FOUND_TEXT

    try:
        await deps.store.delete_birthday(chat_id, found.id)
    except BirthdayNotFoundError:
        return NOT_FOUND_TEXT
    except StorageError:
        LOGGER.exception("Could not delete birthday %s in chat %s", found.id, chat_id)
        return GENERIC_FAILURE_TEXT

    LOGGER.info("Deleted birthday %s in chat %s", found.id, chat_id)
    return f"✅ День рождения {found.name} успешно удален!"


async def delete_chosen(update: Update, context: CallbackContext) -> int:
    deps: HandlerDependencies = context.application.bot_data["handler_deps"]
    query = update.callback_query
    await query.answer()
    data = query.data or ""

    if data.startswith(DELETE_ID_PREFIX) and data[len(DELETE_ID_PREFIX):].isdigit():
        text = await _delete_matching(
            deps, update.effective_chat.id, record_id=int(data[len(DELETE_ID_PREFIX):])
        )
    elif data.startswith(DELETE_NAME_PREFIX):
        text = await _delete_matching(deps, update.effective_chat.id, name=data[len(DELETE_NAME_PREFIX):])
    else:
        text = NOT_FOUND_TEXT

    await query.edit_message_text(text)
    return ConversationHandler.END


async def delete_typed(update: Update, context: CallbackContext) -> int:
    deps: HandlerDependencies = context.application.bot_data["handler_deps"]
    name = (update.effective_message.text or "").strip()
    text = await _delete_matching(deps, update.effective_chat.id, name=name, ignore_case=True)
    if text == NOT_FOUND_TEXT:
        text = f"{NOT_FOUND_TEXT}. Проверьте правильность имени и фамилии."
    await update.effective_message.reply_text(text)
    return ConversationHandler.END


async def cancel_command(update: Update, context: CallbackContext) -> int:
    await update.effective_message.reply_text("Действие отменено.")
    return ConversationHandler.END


async def time_command(update: Update, context: CallbackContext) -> None:
    deps: HandlerDependencies = context.application.bot_data["handler_deps"]
    chat_id = update.effective_chat.id
    try:
        notify_time = await deps.store.get_notify_time(chat_id)
    except StorageError:
        LOGGER.exception("Could not read notify time for chat %s", chat_id)
        await update.effective_message.reply_text(GENERIC_FAILURE_TEXT)
        return
    await update.effective_message.reply_text(
        f"⏰ Уведомления о днях рождения приходят в {format_time(notify_time)}"
    )


async def settime_command(update: Update, context: CallbackContext) -> None:
    deps: HandlerDependencies = context.application.bot_data["handler_deps"]
    chat_id = update.effective_chat.id
    args = context.args or []
    if len(args) != 1:
        await update.effective_message.reply_text("Использование: /settime ЧЧ:ММ, например /settime 09:00")
        return

    try:
        notify_time = parse_time_of_day(args[0])
    except ValueError as exc:
        await update.effective_message.reply_text(f"❌ {exc}")
        return

    try:
        await deps.store.set_notify_time(chat_id, notify_time)
    except StorageError:
        LOGGER.exception("Could not save notify time for chat %s", chat_id)
        await update.effective_message.reply_text(GENERIC_FAILURE_TEXT)
        return

    await update.effective_message.reply_text(
        f"✅ Время уведомлений изменено на {format_time(notify_time)}"
    )
    LOGGER.info("Notify time for chat %s set to %s", chat_id, format_time(notify_time))


async def error_handler(update: object, context: CallbackContext) -> None:
    LOGGER.error("Unhandled error while processing update %s", update, exc_info=context.error)


def build_tracking_handler() -> TypeHandler:
    return TypeHandler(Update, track_group)


def build_handlers(settings: Settings) -> list:
    text_only = filters.TEXT & ~filters.COMMAND
    delete_button = CallbackQueryHandler(delete_chosen, pattern=f"^({DELETE_NAME_PREFIX}|{DELETE_ID_PREFIX})")

    add_conversation = ConversationHandler(
        entry_points=[
            CommandHandler("add", add_start),
            CallbackQueryHandler(add_start, pattern=f"^{ADD_BIRTHDAY}$"),
        ],
        states={
            STATE_ADD_ENTRY: [MessageHandler(text_only, add_entry)],
        },
        fallbacks=[CommandHandler("cancel", cancel_command)],
        conversation_timeout=settings.session_timeout_seconds,
        name="add_birthday_conversation",
        per_message=False,
        persistent=False,
    )

    delete_conversation = ConversationHandler(
        entry_points=[
            CommandHandler("delete", delete_start),
            CallbackQueryHandler(delete_start, pattern=f"^{DELETE_BIRTHDAY}$"),
        ],
        states={
            STATE_DELETE_NAME: [
                MessageHandler(text_only, delete_typed),
                delete_button,
            ],
        },
        fallbacks=[CommandHandler("cancel", cancel_command)],
        conversation_timeout=settings.session_timeout_seconds,
        name="delete_birthday_conversation",
        per_message=False,
        persistent=False,
    )

    return [
        add_conversation,
        delete_conversation,
        CommandHandler("start", start_command),
        CommandHandler("help", help_command),
        CommandHandler(["remind", "list"], show_birthdays),
        CommandHandler("time", time_command),
        CommandHandler("settime", settime_command),
        CommandHandler("cancel", cancel_command),
        CallbackQueryHandler(show_birthdays, pattern=f"^{SHOW_BIRTHDAYS}$"),
        delete_button,
        MessageHandler(filters.TEXT & filters.Entity(MessageEntity.MENTION), mention_command),
    ]
