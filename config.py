import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./bookworm.db"
    default_goal_target: int = 12
    streak_lookback_days: int = 365
    log_level: str = "INFO"


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def get_settings(env_path: Optional[Path] = None) -> Settings:
    """Build settings from the environment, after loading .env if present."""
    load_dotenv(dotenv_path=env_path)
    return Settings(
        database_url=os.getenv("DATABASE_URL", Settings.database_url),
        default_goal_target=_int_env("DEFAULT_GOAL_TARGET", Settings.default_goal_target),
        streak_lookback_days=_int_env("STREAK_LOOKBACK_DAYS", Settings.streak_lookback_days),
        log_level=os.getenv("LOG_LEVEL", Settings.log_level).upper(),
    )


def configure_logging(settings: Settings) -> None:
    # basicConfig is a no-op once the root logger has handlers
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
