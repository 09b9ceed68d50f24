"""Boolean check helpers for use with Test.check().

This is not an assertion library. Each helper wraps an assertion from
the standard library's unittest module and turns its failure into
False, so the result can be passed straight to Test.check():

    test.check(deep_equal(actual, expected), "payload round trip")

Only AssertionError is converted. Any other exception is a bug in the
code under test or in the check itself, and propagates.
"""

import unittest
from collections.abc import Callable
from typing import Any

_asserts = unittest.TestCase()
# Show full diffs if a caller ever inspects the assertion message.
_asserts.maxDiff = None


def deep_equal(actual: Any, expected: Any) -> bool:
    """Return True if the two values are deeply equal."""
    try:
        _asserts.assertEqual(actual, expected)
    except AssertionError:
        return False
    return True


def not_deep_equal(actual: Any, expected: Any) -> bool:
    """Return True if the two values are not deeply equal."""
    try:
        _asserts.assertNotEqual(actual, expected)
    except AssertionError:
        return False
    return True


def throws(
    fn: Callable[[], Any],
    error: type[BaseException] | tuple[type[BaseException], ...] = Exception,
) -> bool:
    """Return True if fn() raises error.

    An exception that does not match error is not swallowed.
    """
    try:
        with _asserts.assertRaises(error):
            fn()
    except AssertionError:
        return False
    return True


def does_not_throw(fn: Callable[[], Any]) -> bool:
    """Return True if fn() returns without raising."""
    try:
        fn()
    except Exception:
        return False
    return True
