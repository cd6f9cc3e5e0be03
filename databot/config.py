import os
from functools import lru_cache

from .errors import ConfigError


def _optional(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None


class Settings:
    def __init__(self) -> None:
        self.TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "").strip()
        self.TELEGRAM_WEBHOOK_SECRET: str | None = _optional("TELEGRAM_WEBHOOK_SECRET")
        self.TELEGRAM_WEBHOOK_URL: str | None = _optional("TELEGRAM_WEBHOOK_URL")
        self.DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./databot.db").strip()
        self.ADMIN_API_KEY: str | None = _optional("ADMIN_API_KEY")
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    def problems(self) -> list[str]:
        found: list[str] = []
        if not self.TELEGRAM_BOT_TOKEN:
            found.append("TELEGRAM_BOT_TOKEN not set")
        if not self.DATABASE_URL:
            found.append("DATABASE_URL is empty")
        return found

    def validate(self) -> None:
        """Raise ConfigError when the service cannot run with these settings."""
        found = self.problems()
        if found:
            raise ConfigError("; ".join(found))


@lru_cache()
def get_settings() -> Settings:
    return Settings()
