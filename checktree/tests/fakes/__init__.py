"""Fake implementations of core ports for testing.

These in-memory implementations allow core domain logic to be tested
without an event loop:

- FakeScheduler: Manual clock, queued bodies, deterministic timers
"""

from .scheduler import FakeScheduler, FakeTimer

__all__ = [
    "FakeScheduler",
    "FakeTimer",
]
