"""
SkateHubba Bot Main Application

This is the main entry point for the SkateHubba S.K.A.T.E. bot.
It initializes the database, sets up handlers, starts the timeout sweep
and runs the bot.
"""

import asyncio
import sys
from typing import Optional

from telegram import BotCommand, Update
from telegram.constants import ParseMode
from telegram.ext import Application, CommandHandler, Defaults

from .database.database import close_database, init_database
from .game.timeouts import run_timeout_sweeper
from .handlers.battle_handlers import battle_command, vote_command
from .handlers.error_handlers import error_handler
from .handlers.game_handlers import game_action_command, help_command, new_game_command, status_command
from .handlers.round_handlers import (
    claim_command,
    confirm_command,
    dispute_command,
    reply_clip_command,
    resolve_command,
    round_command,
    set_clip_command,
)
from .notifications.dispatcher import GameEventPublisher
from .notifications.telegram_channel import TelegramNotifier, TelegramRoomBroadcaster
from .utils.config import get_settings
from .utils.logging_config import get_logger, setup_logging

# Setup logging first
setup_logging()
logger = get_logger(__name__)

# Commands that map straight onto an engine action
GAME_ACTION_COMMANDS = ["join", "trick", "pass", "bail", "forfeit", "disconnect", "reconnect"]

BOT_COMMANDS = [
    BotCommand("help", "How to play"),
    BotCommand("newgame", "Start a game of S.K.A.T.E. in this chat"),
    BotCommand("join", "Join the game"),
    BotCommand("trick", "Set a trick or land the current one"),
    BotCommand("pass", "Miss the current trick"),
    BotCommand("bail", "Bail your own trick"),
    BotCommand("forfeit", "Concede the game"),
    BotCommand("status", "Show the scoreboard"),
    BotCommand("battle", "Start a battle vote"),
    BotCommand("vote", "Vote clean or sketch"),
]


class SkateHubbaBot:
    """
    Main SkateHubba bot application class.

    This handles the complete lifecycle of the bot including:
    - Database initialization
    - Handler registration and notification channels
    - The background timeout sweep
    - Application startup and shutdown
    """

    def __init__(self):
        """Initialize the bot application."""
        self.settings = get_settings()
        self.application: Optional[Application] = None
        self.publisher: Optional[GameEventPublisher] = None
        self.sweeper_task: Optional[asyncio.Task] = None

    async def setup_bot_commands(self) -> None:
        """Set up the command menu that appears when users type '/'."""
        if not self.application:
            raise RuntimeError("Application not initialized")

        try:
            await self.application.bot.set_my_commands(BOT_COMMANDS)
            logger.info(f"Bot commands menu configured with {len(BOT_COMMANDS)} commands")
        except Exception as e:
            logger.error(f"Failed to set bot commands: {e}")
            # Don't raise - this is not critical for bot operation

    def setup_handlers(self) -> None:
        """Register command handlers, notification channels and the error handler."""
        if not self.application:
            raise RuntimeError("Application not initialized")

        bot = self.application.bot
        broadcaster = TelegramRoomBroadcaster(bot)
        self.publisher = GameEventPublisher(channel=broadcaster, notifier=TelegramNotifier(bot))
        self.application.bot_data["broadcaster"] = broadcaster
        self.application.bot_data["publisher"] = self.publisher

        command_handlers = [
            CommandHandler(["start", "help"], help_command),
            CommandHandler("newgame", new_game_command),
            CommandHandler(GAME_ACTION_COMMANDS, game_action_command),
            CommandHandler("status", status_command),
            CommandHandler("round", round_command),
            CommandHandler("setclip", set_clip_command),
            CommandHandler("replyclip", reply_clip_command),
            CommandHandler("claim", claim_command),
            CommandHandler("confirm", confirm_command),
            CommandHandler("dispute", dispute_command),
            CommandHandler("resolve", resolve_command),
            CommandHandler("battle", battle_command),
            CommandHandler("vote", vote_command),
        ]
        for handler in command_handlers:
            self.application.add_handler(handler)

        self.application.add_error_handler(error_handler)
        logger.info("All handlers registered successfully")

    def start_timeout_sweeper(self) -> None:
        """Run the deadline sweep as a background task."""
        self.sweeper_task = asyncio.create_task(
            run_timeout_sweeper(self.settings.timeout_sweep_interval, publisher=self.publisher)
        )

    async def cleanup(self) -> None:
        """
        Cleanup resources when shutting down.

        Stops the sweep, closes database connections and stops the application.
        """
        try:
            logger.info("Shutting down SkateHubba Bot...")

            if self.sweeper_task:
                self.sweeper_task.cancel()
                try:
                    await self.sweeper_task
                except asyncio.CancelledError:
                    pass
                self.sweeper_task = None

            await close_database()

            if self.application:
                if self.application.updater and self.application.updater.running:
                    await self.application.updater.stop()
                if self.application.running:
                    await self.application.stop()

            logger.info("Bot shutdown complete")

        except Exception as e:
            logger.error(f"Error during cleanup: {e}")


async def main() -> None:
    """
    Main entry point for the SkateHubba bot.

    Creates and starts the bot application, handling startup errors.
    """
    bot = SkateHubbaBot()

    try:
        logger.info("Starting SkateHubba Bot")

        defaults = Defaults(parse_mode=ParseMode.MARKDOWN)
        bot.application = (
            Application.builder()
            .token(bot.settings.telegram_bot_token)
            .defaults(defaults)
            .build()
        )

        await init_database()
        bot.setup_handlers()

        logger.info("Bot initialization complete, starting polling...")
        async with bot.application:
            await bot.setup_bot_commands()
            await bot.application.start()
            await bot.application.updater.start_polling(
                allowed_updates=Update.ALL_TYPES,
                drop_pending_updates=True
            )
            bot.start_timeout_sweeper()

            # Keep running until interrupted
            try:
                await asyncio.Event().wait()
            except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
                logger.info("Received shutdown signal")
            finally:
                await bot.cleanup()

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    except Exception as e:
        logger.error(f"Unexpected error in main: {e}")
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nBot stopped by user")
    except Exception as e:
        print(f"Fatal error: {e}")
        sys.exit(1)
