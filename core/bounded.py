"""
core/bounded.py -- Time-bounded calls into blocking collaborators.

The credential store, content store, hasher and media store are synchronous
(SQLAlchemy Core, bcrypt, filesystem). The async facades call them through
bounded_call(), which runs the function on a worker thread so the event loop
stays responsive during bcrypt work, and caps the wait with a timeout.

Domain errors (AppError subclasses) pass through untouched. Anything else --
a driver error, an OSError, a timeout -- is wrapped in UnexpectedError with
the original exception chained as __cause__.

Layer rule: no imports from api/, auth/, catalog/, or cache/.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from core.errors import AppError, UnexpectedError

logger = logging.getLogger("shelfguard.bounded")

T = TypeVar("T")


async def bounded_call(fn: Callable[..., T], *args: Any, timeout: float, **kwargs: Any) -> T:
    """Run fn(*args, **kwargs) on a worker thread, waiting at most timeout seconds."""
    name = getattr(fn, "__qualname__", repr(fn))
    try:
        return await asyncio.wait_for(asyncio.to_thread(fn, *args, **kwargs), timeout=timeout)
    except AppError:
        raise
    except asyncio.TimeoutError as exc:
        logger.error("%s timed out after %.1fs", name, timeout)
        raise UnexpectedError("The service took too long to respond.") from exc
    except Exception as exc:
        logger.exception("%s failed", name)
        raise UnexpectedError() from exc
