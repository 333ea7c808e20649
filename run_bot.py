#!/usr/bin/env python3
"""
Bot Runner Script

Starts the SkateHubba S.K.A.T.E. bot during development.

Usage:
    python run_bot.py
"""

import asyncio
import os
import sys

from hubba.main import main

if __name__ == "__main__":
    print("🛹 Starting SkateHubba S.K.A.T.E. bot...")

    if not os.path.exists(".env") and not os.getenv("TELEGRAM_BOT_TOKEN"):
        print("❌ No .env file found and TELEGRAM_BOT_TOKEN is not set!")
        print("📝 Copy env.example to .env and add your bot token:")
        print("   cp env.example .env")
        sys.exit(1)

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n👋 Bot stopped by user")
    except Exception as e:
        print(f"\n❌ Bot failed to start: {e}")
        sys.exit(1)
