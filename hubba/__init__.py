"""
SkateHubba Game Engine Package

This package contains the S.K.A.T.E. game engine and its bot front end:
- Turn state machine, judging and battle voting
- Database models and transactional operations
- Notification fan-out
- Telegram command handlers
"""

__version__ = "1.0.0"

from .utils.config import get_settings

__all__ = ["get_settings"]
