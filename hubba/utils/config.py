"""
Configuration Management

This module handles all application configuration using environment variables.
Game timing and idempotency-ledger sizes live here so that every instance of
the service applies the same rules.
"""

import os
from functools import lru_cache
from typing import List, Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _int_env(name: str, default: str) -> int:
    """
    Read an integer environment variable.

    Trailing comments (``60  # seconds``) are stripped before parsing.

    Raises:
        ValueError: If the value is not a whole number
    """
    raw = os.getenv(name, default)
    try:
        return int(raw.split('#')[0].strip())
    except ValueError as e:
        raise ValueError(f"Invalid {name} value: '{raw}'. Must be a number without comments.") from e


class Settings:
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for development.
    """

    def __init__(self):
        # Telegram Bot Configuration
        self.telegram_bot_token: str = os.getenv('TELEGRAM_BOT_TOKEN', '')

        # Database Configuration
        self.database_url: str = os.getenv('DATABASE_URL', 'sqlite:///skatehubba.db')

        # Application Settings
        self.debug: bool = os.getenv('DEBUG', 'false').lower() == 'true'
        self.log_level: str = os.getenv('LOG_LEVEL', 'INFO')
        self.environment: str = os.getenv('ENVIRONMENT', 'development')

        # Turn and reconnect timing (seconds)
        self.turn_timeout_seconds: int = _int_env('TURN_TIMEOUT_SECONDS', '60')
        self.reconnect_window_seconds: int = _int_env('RECONNECT_WINDOW_SECONDS', '120')

        # Battle voting window (seconds)
        self.vote_window_seconds: int = _int_env('VOTE_WINDOW_SECONDS', '60')

        # Idempotency ledger sizes
        self.max_processed_events: int = _int_env('MAX_PROCESSED_EVENTS', '100')
        self.battle_max_processed_events: int = _int_env('BATTLE_MAX_PROCESSED_EVENTS', '50')

        # Game limits
        self.max_players_cap: int = _int_env('MAX_PLAYERS_CAP', '8')

        # Background timeout sweep period (seconds)
        self.timeout_sweep_interval: int = _int_env('TIMEOUT_SWEEP_INTERVAL', '10')

        # Dispute reviewers (comma-separated Telegram user ids)
        admin_ids_str = os.getenv('ADMIN_USER_IDS', '')
        self.admin_user_ids: List[int] = []
        if admin_ids_str:
            try:
                self.admin_user_ids = [int(x.strip()) for x in admin_ids_str.split(',') if x.strip()]
            except ValueError:
                self.admin_user_ids = []


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings with caching.

    Uses LRU cache to avoid reloading settings on every call.
    Tests that change the environment call ``get_settings.cache_clear()``.

    Returns:
        Settings: Application configuration settings
    """
    return Settings()


def is_development() -> bool:
    """
    Check if running in development environment.

    Returns:
        bool: True if in development, False otherwise
    """
    settings = get_settings()
    return settings.environment.lower() in ["development", "dev", "local"]


def is_production() -> bool:
    """
    Check if running in production environment.

    Returns:
        bool: True if in production, False otherwise
    """
    settings = get_settings()
    return settings.environment.lower() in ["production", "prod"]


def is_admin_user(user_id: int) -> bool:
    """
    Check if a user ID is in the admin list.

    Args:
        user_id: Telegram user ID to check

    Returns:
        bool: True if user is admin, False otherwise
    """
    settings = get_settings()
    return user_id in settings.admin_user_ids
