"""
Configuration management for the roster pipeline.

Loads environment variables and validates required settings.
"""

import os
from dotenv import load_dotenv
from typing import FrozenSet, Tuple

# Load environment variables from .env file
load_dotenv()


def _split_env(name: str, default: str = "") -> Tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _database_url() -> str:
    url = os.getenv("DATABASE_URL", "sqlite:///roster_ledger.db")
    # Hosted Postgres hands out "postgres://" but SQLAlchemy needs "postgresql://"
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


class Config:
    """Configuration class for the roster pipeline."""

    # Supabase credentials (required for the commerce data source)
    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
    SUPABASE_SERVICE_ROLE_KEY: str = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")

    # Rows per Supabase request; must not exceed the project's API max_rows
    SUPABASE_PAGE_SIZE: int = int(os.getenv("SUPABASE_PAGE_SIZE", "1000"))

    # Roster ledger database
    DATABASE_URL: str = _database_url()

    # Order statuses that produce roster rows
    REPORTABLE_ORDER_STATUSES: Tuple[str, ...] = _split_env(
        "REPORTABLE_ORDER_STATUSES", "completed,processing,on-hold"
    )

    # Variation ids sold as girls-only events without a textual activity type
    GIRLS_ONLY_VARIATION_IDS: FrozenSet[int] = frozenset(
        int(value) for value in _split_env("GIRLS_ONLY_VARIATION_IDS") if value.isdigit()
    )

    # Discount migration
    MIGRATION_BATCH_SIZE: int = int(os.getenv("MIGRATION_BATCH_SIZE", "100"))
    MIGRATION_START_DATE: str = os.getenv("MIGRATION_START_DATE", "2024-01-01")

    # Batch progress logging interval (items)
    PROGRESS_LOG_EVERY: int = int(os.getenv("PROGRESS_LOG_EVERY", "100"))

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def validate(cls) -> None:
        """
        Validate that all required configuration is present.

        Raises:
            ValueError: If required configuration is missing.
        """
        missing = []

        if not cls.SUPABASE_URL:
            missing.append("SUPABASE_URL")
        if not cls.SUPABASE_SERVICE_ROLE_KEY:
            missing.append("SUPABASE_SERVICE_ROLE_KEY")

        if missing:
            raise ValueError(
                f"Missing required environment variables: {', '.join(missing)}. "
                f"Please create a .env file with these values (see .env.example)."
            )
