"""checktree: hierarchical test result aggregation.

Tracks an arbitrarily nested tree of checkpoints and subtests, decides
pass/fail for each node from its children, and reports each node's
outcome exactly once.
"""

from checktree.core import (
    BAIL,
    TIMEOUT,
    Annotation,
    AnnotationKind,
    Checkpoint,
    Test,
    deep_equal,
    does_not_throw,
    not_deep_equal,
    throws,
)
from checktree.main import run_test

__all__ = [
    "BAIL",
    "TIMEOUT",
    "Annotation",
    "AnnotationKind",
    "Checkpoint",
    "Test",
    "deep_equal",
    "does_not_throw",
    "not_deep_equal",
    "run_test",
    "throws",
]
