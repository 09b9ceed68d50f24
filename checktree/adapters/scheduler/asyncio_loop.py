"""Asyncio scheduler adapter.

Implements SchedulerPort on an asyncio event loop. Timers map onto
loop.call_later(); isolated bodies run from loop.call_soon() inside an
isolation scope carried by a contextvars context.

The scope follows the body's causal descendants:
- Tasks created while a scope is active inherit it through the loop's
  task factory. A task that fails counts as escaped only if nothing has
  collected its exception (awaiting it, gather(), task.exception()) by
  the end of a short grace period.
- Plain callbacks scheduled with call_soon()/call_later() copy the
  current context, so the loop exception handler can find the scope of a
  callback that raised.
A body started from inside another body gets its own scope, which
shadows the outer one.
"""

import asyncio
import contextvars
import functools
import inspect
import logging
from collections.abc import Callable
from typing import Any

from checktree.core.node import Test
from checktree.core.ports import Body, ErrorHandler, SchedulerPort

logger = logging.getLogger(__name__)

# Seconds a failed task is given for its exception to be collected.
DEFAULT_RETRIEVAL_GRACE = 0.01


class IsolationScope:
    """Routes exceptions from one body's execution tree to a single handler."""

    def __init__(self, on_error: ErrorHandler, label: str = ""):
        self.on_error = on_error
        self.label = label
        self.last_routed: BaseException | None = None

    def route(self, exc: BaseException) -> None:
        if exc is self.last_routed:
            return
        self.last_routed = exc
        logger.debug(f"Isolation scope '{self.label}' caught {exc!r}")
        self.on_error(exc)


_current_scope: contextvars.ContextVar[IsolationScope | None] = contextvars.ContextVar(
    "checktree_isolation_scope", default=None
)


class AsyncioScheduler(SchedulerPort):
    """Asyncio-based scheduler for test trees.

    Must be created while the loop it serves is running, or be handed the
    loop explicitly. Call close() when done to give the loop back its
    previous task factory and exception handler.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop | None = None,
        retrieval_grace: float = DEFAULT_RETRIEVAL_GRACE,
    ):
        """Initialize the scheduler.

        Args:
            loop: Event loop to schedule on. Defaults to the running loop.
            retrieval_grace: Seconds to wait after a task fails before
                treating its exception as uncollected.
        """
        self.loop = loop if loop is not None else asyncio.get_running_loop()
        self.retrieval_grace = retrieval_grace
        self._installed = False
        self._previous_factory: Any = None
        self._previous_handler: Any = None

    def call_later(
        self, delay_seconds: float, callback: Callable[[], None]
    ) -> asyncio.TimerHandle:
        return self.loop.call_later(delay_seconds, callback)

    def run_isolated(self, body: Body, node: Test, on_error: ErrorHandler) -> None:
        self._install()
        scope = IsolationScope(on_error, label=node.name)
        context = contextvars.copy_context()
        context.run(_current_scope.set, scope)
        self.loop.call_soon(self._enter, scope, body, node, context=context)

    def _enter(self, scope: IsolationScope, body: Body, node: Test) -> None:
        try:
            result = body(node)
        except Exception as e:
            scope.route(e)
            return
        if inspect.isawaitable(result):
            # Coroutines become tasks in the scope's context; plain futures
            # bypass the task factory and are watched here instead.
            future = asyncio.ensure_future(result, loop=self.loop)
            self._watch(scope, future)

    def close(self) -> None:
        """Restore the loop's previous task factory and exception handler."""
        if not self._installed:
            return
        self.loop.set_task_factory(self._previous_factory)
        self.loop.set_exception_handler(self._previous_handler)
        self._installed = False

    def _install(self) -> None:
        if self._installed:
            return
        self._previous_factory = self.loop.get_task_factory()
        self._previous_handler = self.loop.get_exception_handler()
        self.loop.set_task_factory(self._task_factory)
        self.loop.set_exception_handler(self._handle_exception)
        self._installed = True

    def _task_factory(
        self,
        loop: asyncio.AbstractEventLoop,
        coro: Any,
        **kwargs: Any,
    ) -> "asyncio.Future[Any]":
        context = kwargs.get("context")
        scope = (
            context.get(_current_scope) if context is not None else _current_scope.get()
        )

        if self._previous_factory is not None:
            task = self._previous_factory(loop, coro, **kwargs)
        else:
            task = asyncio.Task(coro, loop=loop, **kwargs)

        if scope is not None:
            self._watch(scope, task)
        return task

    def _watch(self, scope: IsolationScope, future: "asyncio.Future[Any]") -> None:
        future.add_done_callback(functools.partial(self._on_future_done, scope))

    def _on_future_done(self, scope: IsolationScope, future: "asyncio.Future[Any]") -> None:
        # Must not touch future.exception() here: that would mark it collected.
        if future.cancelled():
            return
        self.loop.call_later(
            self.retrieval_grace, _route_if_uncollected, scope, future
        )

    def _handle_exception(
        self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]
    ) -> None:
        exc = context.get("exception")
        scope = None
        handle_context = _handle_context(context.get("handle"))
        if exc is not None and handle_context is not None:
            scope = handle_context.get(_current_scope)

        if scope is None:
            if self._previous_handler is not None:
                self._previous_handler(loop, context)
            else:
                loop.default_exception_handler(context)
            return

        scope.route(exc)


def _handle_context(handle: Any) -> contextvars.Context | None:
    if handle is None:
        return None
    # Handle.get_context() is public from Python 3.12; 3.11 only has the slot.
    get_context = getattr(handle, "get_context", None)
    if get_context is not None:
        return get_context()
    return getattr(handle, "_context", None)


def _route_if_uncollected(scope: IsolationScope, future: "asyncio.Future[Any]") -> None:
    # asyncio clears _log_traceback once result() or exception() is called,
    # which is also what suppresses "exception was never retrieved".
    if not getattr(future, "_log_traceback", True):
        return
    exc = future.exception()
    if exc is not None:
        scope.route(exc)
