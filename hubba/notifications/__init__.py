"""
Notifications Package

This package fans committed game results out to players:
- Dispatcher and broadcast channel interfaces
- Publisher mapping engine results to room events
- Telegram implementations of both channels
"""
