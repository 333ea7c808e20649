"""
Bot Handlers Package

This package contains the bot handlers that route commands into the engine:
- Game command handlers (/newgame, /trick, /pass, ...)
- Round judging and dispute commands
- Battle voting commands
- Error handlers for exception management
"""
