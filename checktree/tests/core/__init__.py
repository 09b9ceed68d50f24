"""Unit tests for core domain logic.

These tests exercise core aggregation logic without an event loop.
The scheduler port is replaced with the in-memory fake from tests/fakes/.
"""
