"""Scheduler adapters for driving test trees.

Implementations:
- AsyncioScheduler (asyncio event loop, contextvars isolation scopes)
"""

from .asyncio_loop import AsyncioScheduler, IsolationScope

__all__ = ["AsyncioScheduler", "IsolationScope"]
