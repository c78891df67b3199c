"""Configuration management for bookledger.

Loads configuration from environment variables and provides defaults.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()


def default_database_url() -> str:
    """SQLite file under the user's home directory."""
    return f"sqlite:///{Path.home() / '.bookledger' / 'ledger.db'}"


@dataclass
class Config:
    """Application configuration."""

    # Database
    database_url: str
    echo_sql: bool

    # Logging
    log_level: str

    # Retry policy for serialization failures (applied by callers, not the ledger)
    retry_max: int
    retry_backoff: float  # seconds

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls(
            database_url=os.environ.get("BOOKLEDGER_DATABASE_URL", default_database_url()),
            echo_sql=os.environ.get("BOOKLEDGER_ECHO_SQL", "").lower() in ("1", "true", "yes"),
            log_level=os.environ.get("BOOKLEDGER_LOG_LEVEL", "WARNING").upper(),
            retry_max=int(os.environ.get("BOOKLEDGER_RETRY_MAX", "3")),
            retry_backoff=float(os.environ.get("BOOKLEDGER_RETRY_BACKOFF", "0.1")),
        )

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if "://" not in self.database_url:
            errors.append(f"Invalid database URL: {self.database_url}")
        if self.retry_max < 1:
            errors.append("BOOKLEDGER_RETRY_MAX must be at least 1")
        if self.retry_backoff < 0:
            errors.append("BOOKLEDGER_RETRY_BACKOFF must not be negative")

        return errors


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Reset the global config instance. Used for testing."""
    global _config
    _config = None
