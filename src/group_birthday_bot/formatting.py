from __future__ import annotations

from datetime import date, time

from group_birthday_bot.models import UpcomingBirthday


def format_days_word(days: int) -> str:
    """Russian plural of "day" for a count: день / дня / дней."""
    if days % 10 == 1 and days % 100 != 11:
        return "день"
    if 2 <= days % 10 <= 4 and days % 100 not in range(12, 15):
        return "дня"
    return "дней"


def format_date(value: date) -> str:
    return f"{value.day:02d}.{value.month:02d}.{value.year:04d}"


def format_time(value: time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def render_birthday_list(rows: list[UpcomingBirthday]) -> str:
    lines = ["📅 Дни рождения в группе:", ""]
    for row in rows:
        name = row.record.name
        born = format_date(row.record.birth_date)
        if row.days_until == 0:
            lines.append(f"🎉 {name} - СЕГОДНЯ! ({born})")
        else:
            lines.append(f"🎂 {name} - {row.days_until} {format_days_word(row.days_until)} ({born})")
    return "\n".join(lines)


def render_upcoming_notification(rows: list[UpcomingBirthday]) -> str:
    lines = ["🎂 Предстоящие дни рождения:", ""]
    for row in rows:
        name = row.record.name
        if row.days_until == 0:
            lines.append(f"🎉 Сегодня день рождения у {name}!")
        else:
            lines.append(
                f"📅 Через {row.days_until} {format_days_word(row.days_until)} день рождения у {name}"
            )
    return "\n".join(lines)


def render_help() -> str:
    return (
        "Доступные команды:\n"
        "/start - Показать главное меню\n"
        "/remind - Напомнить о днях рождения\n"
        "/add - Добавить день рождения\n"
        "/delete - Удалить день рождения\n"
        "/time - Показать время уведомлений\n"
        "/settime ЧЧ:ММ - Изменить время уведомлений\n"
        "/cancel - Отменить добавление или удаление\n"
        "/help - Показать это сообщение\n\n"
        "Также вы можете упомянуть бота (@username) для вызова меню.\n"
        "Формат даты: ДД.ММ.ГГГГ, например 15.03.1990"
    )
