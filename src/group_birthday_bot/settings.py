from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from group_birthday_bot.date_logic import ALLOWED_LEAP_DAY_RULES


@dataclass(frozen=True)
class Settings:
    telegram_bot_token: str
    database_path: Path
    timezone: str | None = None
    leap_day_rule: str = "feb28"
    call_timeout_seconds: float = 10.0
    session_timeout_seconds: float = 300.0
    debug: bool = False


def _required_env(name: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        raise ValueError(f"Missing required environment variable: {name}")
    return value.strip()


def _positive_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    value = float(raw)
    if value <= 0:
        raise ValueError(f"{name} must be positive")
    return value


def load_settings() -> Settings:
    load_dotenv()
    root = Path.cwd()

    token = _required_env("TELEGRAM_BOT_TOKEN")

    database_path = Path(os.getenv("DATABASE_PATH", root / "data" / "birthdays.db"))

    timezone = (os.getenv("BOT_TIMEZONE") or "").strip() or None
    if timezone is not None:
        try:
            ZoneInfo(timezone)
        except ZoneInfoNotFoundError as exc:
            raise ValueError(f"Unknown BOT_TIMEZONE: {timezone}") from exc

    leap_day_rule = os.getenv("LEAP_DAY_RULE", "feb28").strip().lower()
    if leap_day_rule not in ALLOWED_LEAP_DAY_RULES:
        raise ValueError(f"LEAP_DAY_RULE must be one of {sorted(ALLOWED_LEAP_DAY_RULES)}")

    return Settings(
        telegram_bot_token=token,
        database_path=database_path,
        timezone=timezone,
        leap_day_rule=leap_day_rule,
        call_timeout_seconds=_positive_float_env("CALL_TIMEOUT_SECONDS", 10.0),
        session_timeout_seconds=_positive_float_env("SESSION_TIMEOUT_SECONDS", 300.0),
        debug=os.getenv("DEBUG", "").strip().lower() == "true",
    )
