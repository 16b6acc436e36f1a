"""
Utility functions for PlayTrack.
"""

from __future__ import annotations

import random
import string
import time
from datetime import datetime, timezone
from typing import Any, TypeVar

import orjson

T = TypeVar("T")

_ALPHABET = string.ascii_lowercase + string.digits


def random_suffix(length: int, rng: random.Random | None = None) -> str:
    """Random lowercase base-36 string."""
    rng = rng or random
    return "".join(rng.choice(_ALPHABET) for _ in range(length))


def generate_session_id() -> str:
    """Generate a session ID (``<ms>-<9 random chars>``)."""
    return f"{current_timestamp_ms()}-{random_suffix(9)}"


def generate_fingerprint(platform: str) -> str:
    """Generate a time-seeded device fingerprint."""
    return f"fp_{platform}_{current_timestamp_ms()}_{random_suffix(7)}"


def current_timestamp_ms() -> int:
    """Get current Unix timestamp in milliseconds."""
    return int(time.time() * 1000)


def current_datetime() -> datetime:
    """Get current datetime in UTC."""
    return datetime.now(timezone.utc)


def current_iso_timestamp() -> str:
    """Current UTC time as ISO 8601 with millisecond precision."""
    return current_datetime().isoformat(timespec="milliseconds").replace("+00:00", "Z")


def json_dumps(obj: Any) -> str:
    """Fast JSON serialization using orjson."""
    return orjson.dumps(obj).decode("utf-8")


def json_loads(s: str | bytes) -> Any:
    """Fast JSON deserialization using orjson."""
    return orjson.loads(s)


def chunks(lst: list[T], n: int) -> list[list[T]]:
    """Split a list into chunks of size n."""
    return [lst[i : i + n] for i in range(0, len(lst), n)]
