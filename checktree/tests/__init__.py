"""Test suite for the checktree result aggregator.

Organized into three categories:

1. core/: Unit tests for core domain logic
   - No event loop, fast execution
   - Uses the in-memory FakeScheduler from tests/fakes/

2. adapters/: Integration tests for adapter implementations
   - Runs against a real asyncio event loop
   - Validates timers and exception isolation

3. fakes/: Port implementations for testing
   - In-memory implementation of SchedulerPort
"""
