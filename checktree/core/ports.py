"""Port interfaces for the checktree core.

These abstract base classes define the boundary between the result
aggregation logic and the event loop that drives it. Implementations
live in the adapters/ package.

Port Interface Categories:

1. **Driven Ports** (core calls out to adapters)
   - SchedulerPort: Single-shot timers and isolated deferred execution
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .node import Test


class Cancellable(Protocol):
    """Handle for a scheduled timer. asyncio.TimerHandle satisfies this."""

    def cancel(self) -> None: ...


# A test body receives the node it drives. It may return an awaitable,
# in which case the scheduler keeps driving it after the call returns.
Body = Callable[["Test"], Any]
ErrorHandler = Callable[[BaseException], None]


# ============================================================================
# DRIVEN PORTS (Core calls out to adapters)
# ============================================================================


class SchedulerPort(ABC):
    """Port for the timing and execution services a test tree needs.

    Adapters implementing this port wrap an event loop (or a fake clock
    in tests). The core only ever asks for two things: a cancellable
    single-shot timer, and deferred execution of a body inside an
    isolation boundary.

    Implementations must guarantee:
    - Bodies never run synchronously inside run_isolated()
    - Every exception escaping a body, or work the body defers, reaches
      the on_error handler registered for that body
    """

    @abstractmethod
    def call_later(
        self, delay_seconds: float, callback: Callable[[], None]
    ) -> Cancellable:
        """Schedule callback to run once after delay_seconds.

        Args:
            delay_seconds: Delay before the callback fires.
            callback: Zero-argument callable.

        Returns:
            A handle whose cancel() prevents the callback from firing.
        """

    @abstractmethod
    def run_isolated(
        self, body: Body, node: "Test", on_error: ErrorHandler
    ) -> None:
        """Run body(node) on a later scheduling tick inside an isolation boundary.

        Args:
            body: Callable taking the node. May return an awaitable.
            node: The test the body drives.
            on_error: Receives any exception that escapes the body or the
                deferred work it starts, at any depth.

        Returns immediately; the body has not run yet when this returns.
        """
