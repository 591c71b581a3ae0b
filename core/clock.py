"""
core/clock.py -- Injectable time source.

Time-dependent components (session issuer, login throttle) take a clock
argument instead of calling datetime.now() directly, so tests can move time
forward without sleeping.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
