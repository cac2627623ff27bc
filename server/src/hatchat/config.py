from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path

MESSAGES_FILE = "messages.json"
COLORS_FILE = "user_colors.json"
SAVED_CHATS_FILE = "saved_chats.json"


@dataclass(frozen=True)
class Settings:
    host: str = "127.0.0.1"
    port: int = 3000
    data_dir: Path = Path("data")
    page_size: int = 20
    ping_interval_s: int = 30
    ping_miss_limit: int = 2
    max_msg_size: int = 1_048_576
    log_level: str = "INFO"

    @property
    def messages_path(self) -> Path:
        return self.data_dir / MESSAGES_FILE

    @property
    def colors_path(self) -> Path:
        return self.data_dir / COLORS_FILE

    @property
    def saved_chats_path(self) -> Path:
        return self.data_dir / SAVED_CHATS_FILE

    def with_overrides(self, **overrides) -> "Settings":
        return replace(self, **{key: value for key, value in overrides.items() if value is not None})


def _parse_positive_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if parsed <= 0:
        raise ValueError(f"{name} must be positive")
    return parsed


def _parse_log_level(name: str, default: str) -> str:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    level = raw.strip().upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"{name} must be a logging level name")
    return level


def load_settings_from_env() -> Settings:
    defaults = Settings()
    data_dir = os.environ.get("HATCHAT_DATA_DIR") or str(defaults.data_dir)
    return Settings(
        host=os.environ.get("HATCHAT_HOST") or defaults.host,
        port=_parse_positive_int("PORT", defaults.port),
        data_dir=Path(data_dir).expanduser(),
        page_size=_parse_positive_int("HATCHAT_PAGE_SIZE", defaults.page_size),
        ping_interval_s=_parse_positive_int("HATCHAT_PING_INTERVAL_S", defaults.ping_interval_s),
        ping_miss_limit=defaults.ping_miss_limit,
        max_msg_size=_parse_positive_int("HATCHAT_MAX_MSG_SIZE", defaults.max_msg_size),
        log_level=_parse_log_level("HATCHAT_LOG_LEVEL", defaults.log_level),
    )
