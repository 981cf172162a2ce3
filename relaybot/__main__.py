"""
Allow the relaybot package to be executed as a module.

This enables running the bot with:
    python -m relaybot
    python -m relaybot --log-level DEBUG
"""

import asyncio
import sys

from relaybot.main import main

if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
