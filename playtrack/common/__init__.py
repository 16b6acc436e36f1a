"""
Common utilities and shared modules.
"""

from playtrack.common.config import get_settings
from playtrack.common.exceptions import PlaytrackError
from playtrack.common.logger import get_logger, log_context, logger
from playtrack.common.storage import KeyValueStore, MemoryStore, StoreKeys, create_store

__all__ = [
    "get_settings",
    "logger",
    "get_logger",
    "log_context",
    "KeyValueStore",
    "MemoryStore",
    "StoreKeys",
    "create_store",
    "PlaytrackError",
]
