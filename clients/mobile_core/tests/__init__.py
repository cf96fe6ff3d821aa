"""Test package for the chat_sync client core."""

import logging

logging.getLogger("asyncio").setLevel(logging.ERROR)
