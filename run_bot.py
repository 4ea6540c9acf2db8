#!/usr/bin/env python
"""
Run script for the token refill bot.

This script sets up the logs directory and runs the bot's CLI.
"""

from pathlib import Path

# Create logs directory if it doesn't exist
logs_dir = Path("logs")
logs_dir.mkdir(exist_ok=True)

from refillbot.main import run

if __name__ == "__main__":
    run()
