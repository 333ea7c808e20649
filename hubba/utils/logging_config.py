"""
Logging Configuration

This module sets up logging for the application and provides the audit
helpers: player commands go to ``player_actions``, committed game and
round transitions to ``game_events`` and battle voting to ``battle_events``.
"""

import logging
import sys

from .config import get_settings


def setup_logging() -> None:
    """
    Set up basic logging configuration.

    This function configures standard logging for the application.
    """
    settings = get_settings()

    # Configure standard logging
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Set specific logger levels
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("telegram").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info("Logging configuration initialized")


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        logging.Logger: Configured logger instance
    """
    return logging.getLogger(name)


def _format_details(details: dict) -> str:
    return " ".join(f"{key}={value}" for key, value in details.items() if value is not None)


def log_player_action(odv: str, action: str, **details) -> None:
    """
    Record a command a player sent, before it reaches the game engine.

    Args:
        odv: Opaque player identifier
        action: Command name
        **details: Context such as ``game_id`` or ``chat_id``; None values are left out
    """
    message = f"Player action: odv={odv} action={action} {_format_details(details)}"
    get_logger("player_actions").debug(message.rstrip())


def log_game_event(game_id: str, event_type: str, **details) -> None:
    """
    Record a committed game or round transition.

    Args:
        game_id: Game session ID
        event_type: Transition name, e.g. ``trick_passed`` or ``game_completed``
        **details: Transition outcome; None values are left out
    """
    message = f"Game event: game_id={game_id} event_type={event_type} {_format_details(details)}"
    get_logger("game_events").info(message.rstrip())


def log_battle_event(battle_id: str, event_type: str, **details) -> None:
    """Record a committed battle voting transition."""
    message = f"Battle event: battle_id={battle_id} event_type={event_type} {_format_details(details)}"
    get_logger("battle_events").info(message.rstrip())
