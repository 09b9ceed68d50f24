"""Domain models for the checktree result aggregator.

All models in this module use only Python standard library types,
ensuring zero external dependencies in the core domain.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

# Default inactivity window before a test is finished with TIMEOUT.
DEFAULT_TIMEOUT_MS = 5000

# Finish reasons the system itself produces. Callers may pass any other
# string to Test.finish() to mark an abnormal end.
BAIL = "bail"
TIMEOUT = "timeout"


@dataclass(frozen=True)
class Checkpoint:
    """A single named pass/fail outcome recorded on a test."""

    name: str
    passed: bool

    def __post_init__(self) -> None:
        """Coerce truthy/falsy results to a real boolean."""
        object.__setattr__(self, "passed", bool(self.passed))


class AnnotationKind(Enum):
    """Kinds of side notes a test can carry.

    Only ERROR annotations count toward a test's error total; COMMENT
    annotations are informational.
    """

    COMMENT = "comment"
    ERROR = "error"


@dataclass(frozen=True)
class Annotation:
    """A comment or error note attached to a test's contents."""

    kind: AnnotationKind
    data: Any  # string or JSON-compatible value, or an exception
