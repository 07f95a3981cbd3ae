"""Sync configuration loaded from environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings

# Published timetable of the school the bot was built for
DEFAULT_LINK = (
    "https://docs.google.com/spreadsheets/d/1L9UjNOZx4p4VER11SCyU97M07QnfWsZWwldAAOR0gtM"
)

# Class names present in the default timetable. Used only to pick the more
# helpful error notice when a configured class cannot be found.
KNOWN_CLASSES: frozenset[str] = frozenset(
    {
        "2А", "2Б", "2В", "2Г",
        "3А", "3Б", "3В", "3Г",
        "4А", "4Б", "4В", "4Г",
        "5А", "5Б", "5В", "5Г", "5И", "5П",
        "6А", "6Б", "6В", "6Г", "6П",
        "7А", "7Б", "7В", "7Г", "7О", "7П",
        "8А", "8Б", "8В", "8Г", "8Д", "8Е", "8М", "8У", "8Ф", "8Я",
        "9А", "9В", "9Г", "9Д", "9Е", "9М", "9П", "9У", "9Ф", "9Х", "9Я",
        "10Б", "10В", "10Г", "10Д", "10Е", "10И", "10М", "10С", "10У", "10Ф", "10Я",
        "11А", "11В", "11Г", "11Д", "11Е", "11И", "11М", "11У", "11Ф", "11Я",
    }
)


class SyncConfig(BaseSettings):
    """Sync configuration loaded from environment variables.

    Settings are loaded from environment variables with sensible defaults.
    For local development, create a .env file in the project root.
    """

    # Telegram
    telegram_bot_token: str = Field(
        default="",
        description="Bot token issued by @BotFather",
    )

    # Paths
    data_dir: str = Field(
        default="data",
        description="Directory holding one <chat_id>.json state file per conversation",
    )

    # Timetable source
    default_link: str = Field(
        default=DEFAULT_LINK,
        description="Spreadsheet link used when a conversation does not set its own",
    )
    fetch_timeout_seconds: int = Field(
        default=30,
        description="HTTP timeout for downloading the spreadsheet CSV export",
    )

    # Scheduling. Too short an interval can get the host IP rate-limited by Google.
    min_poll_minutes: int = Field(
        default=5,
        description="Lower bound applied to every conversation's poll interval",
    )
    store_retry_seconds: int = Field(
        default=60,
        description="Delay before retrying a cycle whose state could not be saved",
    )
    timezone: str = Field(
        default="Europe/Moscow",
        description="IANA timezone that decides which weekday is 'today' for pinning",
    )

    # Logging
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (for production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    model_config = {
        "env_prefix": "",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


# Singleton pattern
_config: SyncConfig | None = None


def get_config() -> SyncConfig:
    """Get the sync configuration singleton.

    Returns:
        SyncConfig: Sync configuration instance
    """
    global _config
    if _config is None:
        _config = SyncConfig()
    return _config
