"""
Utility functions for ScreenSync.
"""

from __future__ import annotations

import secrets
import time
import uuid
from datetime import datetime, timezone
from typing import Any, TypeVar

import orjson

T = TypeVar("T")


def generate_request_id() -> str:
    """Generate a unique request ID."""
    return str(uuid.uuid4())


def generate_correlation_id(prefix: str) -> str:
    """Short, log-friendly correlation ID (e.g. ``rec-18c3f2a9d1e-4f2a``)."""
    return f"{prefix}-{int(time.time() * 1000):x}-{secrets.token_hex(2)}"


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite returns them naive)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def json_dumps(obj: Any) -> str:
    """Fast JSON serialization using orjson."""
    return orjson.dumps(obj).decode("utf-8")


def json_loads(s: str | bytes) -> Any:
    """Fast JSON deserialization using orjson."""
    return orjson.loads(s)


def truncate(text: str | None, limit: int) -> str | None:
    """Truncate text for diagnostics, marking the cut."""
    if not text:
        return text
    if len(text) <= limit:
        return text
    return f"{text[:limit]}..."


def dedupe(lst: list[T]) -> list[T]:
    """Remove duplicates while preserving order."""
    seen: set[Any] = set()
    result: list[T] = []
    for item in lst:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def ordered_union(first: list[T], second: list[T]) -> list[T]:
    """Items of ``first`` in order, then unseen items of ``second`` in order."""
    return dedupe([*first, *second])


class Timer:
    """Context manager for timing code blocks."""

    def __init__(self, name: str = ""):
        self.name = name
        self.start_time: float = 0
        self.end_time: float = 0

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        self.end_time = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        """Get elapsed time in milliseconds."""
        return (self.end_time - self.start_time) * 1000

    @property
    def elapsed_s(self) -> float:
        """Get elapsed time in seconds."""
        return self.end_time - self.start_time
