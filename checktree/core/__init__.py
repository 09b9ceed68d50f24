"""Core domain logic for the checktree result aggregator.

This package contains zero external dependencies and represents
the pure aggregation logic of the application. The event loop
integration is handled by the adapters package.
"""

from .models import (
    BAIL,
    DEFAULT_TIMEOUT_MS,
    TIMEOUT,
    Annotation,
    AnnotationKind,
    Checkpoint,
)
from .node import Test
from .ports import SchedulerPort
from .predicates import deep_equal, does_not_throw, not_deep_equal, throws

__all__ = [
    "BAIL",
    "DEFAULT_TIMEOUT_MS",
    "TIMEOUT",
    "Annotation",
    "AnnotationKind",
    "Checkpoint",
    "SchedulerPort",
    "Test",
    "deep_equal",
    "does_not_throw",
    "not_deep_equal",
    "throws",
]
