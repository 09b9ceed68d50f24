"""External adapters for the checktree result aggregator.

This package contains the event loop integration and provides
implementations of the core port interfaces.

Adapter Organization:

- scheduler/: Adapters for timers and isolated body execution (asyncio)
"""
