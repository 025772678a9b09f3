"""Configuration management for the 340B importer."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from importer_340b.errors import ConfigError

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


@dataclass
class Settings:
    """Runtime settings for the importer.

    Attributes:
        log_level: Logging level name (DEBUG, INFO, ...).
        data_dir: Directory for uploaded files and the default SQLite database.
        database_url: SQLAlchemy URL of the reference/claims store.
        batch_size: Number of normalized records written per insert batch.
        max_logged_errors: Errors kept in the import audit log entry.
        scripts_progress_interval: Rows between parser progress updates (Excel).
        claims_progress_interval: Rows between parser progress updates (CSV).
    """

    log_level: str
    data_dir: Path
    database_url: str = "sqlite:///./data/importer_340b.db"
    batch_size: int = 500
    max_logged_errors: int = 100
    scripts_progress_interval: int = 100
    claims_progress_interval: int = 500

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables.

        Returns:
            Settings populated from the environment, with defaults for
            anything unset.

        Raises:
            ConfigError: If a numeric variable is not a positive integer.
        """
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            data_dir=Path(os.getenv("DATA_DIR", "./data/uploads")),
            database_url=os.getenv(
                "DATABASE_URL", "sqlite:///./data/importer_340b.db"
            ),
            batch_size=_int_from_env("BATCH_SIZE", 500),
            max_logged_errors=_int_from_env("MAX_LOGGED_ERRORS", 100),
            scripts_progress_interval=_int_from_env("SCRIPTS_PROGRESS_INTERVAL", 100),
            claims_progress_interval=_int_from_env("CLAIMS_PROGRESS_INTERVAL", 500),
        )

    def ensure_directories(self) -> None:
        """Create the data directory if it does not exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)


def configure_logging(settings: Settings) -> None:
    """Apply the configured log level and format to the root logger."""
    level = getattr(logging, settings.log_level, None)
    if not isinstance(level, int):
        raise ConfigError(f"Unknown LOG_LEVEL: {settings.log_level}")
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("importer_340b").setLevel(level)
