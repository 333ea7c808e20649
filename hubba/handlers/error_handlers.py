"""
Error Handlers

This module handles exceptions that escape the command handlers.

Rule violations never get here: the engine returns them as results. What
does get here is infrastructure trouble (database lock timeouts, dropped
connections) and Telegram API errors. A failed database call committed
nothing, so the player is told they can simply send the command again.
"""

import traceback
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from telegram import Update
from telegram.error import Forbidden, RetryAfter, TelegramError
from telegram.ext import ContextTypes

from ..utils.config import is_development
from ..utils.logging_config import get_logger

# Logger setup
logger = get_logger(__name__)


def error_reply_text(error: Optional[BaseException]) -> Optional[str]:
    """
    Choose the message shown to the player for an error.

    Returns:
        Optional[str]: Message text, or None when nothing should be sent
    """
    error_message = str(error) if error else "Unknown error"

    if isinstance(error, (Forbidden, RetryAfter)):
        # The chat can't take a message right now
        return None
    if isinstance(error, SQLAlchemyError):
        return ("⚠️ **The game server is busy**\n\n"
                "Your move was not recorded. Send the same command again in a moment.")
    if is_development():
        return (f"🐛 **Development Error**\n\nAn error occurred: `{error_message}`\n\n"
                "This detailed message is only shown in development mode.")
    return ("⚠️ **Something went wrong**\n\n"
            "I encountered an error while processing your request.\n"
            "Please try again in a few moments.")


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Handle errors that occur during bot operation.

    Logs the error with its context and sends the player a short message.

    Args:
        update: Telegram update object (may be None)
        context: Bot context containing error information
    """
    error = context.error
    error_message = str(error) if error else "Unknown error"

    user_id = None
    chat_id = None
    if isinstance(update, Update):
        if update.effective_user:
            user_id = update.effective_user.id
        if update.effective_chat:
            chat_id = update.effective_chat.id

    update_type = type(update).__name__ if update else None
    if isinstance(error, TelegramError):
        logger.warning(
            f"Telegram API error - error_type={type(error).__name__}, error_message={error_message}, "
            f"user_id={user_id}, chat_id={chat_id}"
        )
    else:
        tb = "".join(traceback.format_exception(type(error), error, error.__traceback__)) if error else None
        logger.error(
            f"Bot error occurred - error_message={error_message}, user_id={user_id}, "
            f"chat_id={chat_id}, update_type={update_type}, traceback={tb}"
        )

    text = error_reply_text(error)
    if not chat_id or text is None:
        return

    try:
        await context.bot.send_message(chat_id=chat_id, text=text, parse_mode='Markdown')
    except Exception as send_error:
        # If we can't even send an error message, log it
        logger.error(
            f"Failed to send error message to user - original_error={error_message}, "
            f"send_error={str(send_error)}, chat_id={chat_id}"
        )
