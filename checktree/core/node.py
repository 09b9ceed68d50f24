"""Test node: the aggregation unit of a checktree result tree.

A Test records checkpoints, annotations and subtests in arrival order,
keeps running counters, and reports its outcome upward exactly once,
after it is finished and every subtest it started has resolved.

State Transitions:
    - active -> finished (finish(), expected count reached, timeout, bail)
    - finished -> resolved (pending reaches zero; completion callback fires)

Once finished, checkpoints, subtests and expected-count changes are
rejected and logged as error annotations. Comments and errors are still
accepted so that trailing diagnostics are not lost.
"""

import logging
from collections.abc import Callable
from typing import Any, Union

from .models import (
    BAIL,
    DEFAULT_TIMEOUT_MS,
    TIMEOUT,
    Annotation,
    AnnotationKind,
    Checkpoint,
)
from .ports import Body, Cancellable, SchedulerPort

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[str | None, bool], None]
ContentEntry = Union[Checkpoint, Annotation, "Test"]


class Test:
    """A test and its results.

    Roots are created directly (or through main.run_test); subtests are
    created with Test.test(), which wires the child's completion callback
    to the parent's resolution handler.

    Args:
        name: Name of the test. Need not be unique.
        timeout: Milliseconds of inactivity tolerated before the test is
            finished with reason TIMEOUT. Zero or negative disables the
            timer. None uses default_timeout.
        callback: Called as callback(finish_reason, passed) once the test
            is finished and all of its subtests have resolved.
        scheduler: Provides timers and isolated execution of bodies.
            Subtests share their parent's scheduler.
        default_timeout: Timeout used when timeout is None, and handed
            down to subtests created without one.
    """

    # Keep pytest from collecting this class when it is imported into test modules.
    __test__ = False

    def __init__(
        self,
        name: str,
        timeout: int | None = None,
        callback: CompletionCallback | None = None,
        *,
        scheduler: SchedulerPort,
        default_timeout: int = DEFAULT_TIMEOUT_MS,
    ):
        self.name = name
        self.contents: list[ContentEntry] = []
        self.passed = 0
        self.failed = 0
        self.total = 0
        self.pending = 0
        self.expected: int | None = None
        self.finished = False
        self.finish_reason: str | None = None
        self.errors = 0
        self.default_timeout = default_timeout
        # Changing this after construction takes effect on the next ping().
        self.timeout = default_timeout if timeout is None else timeout

        self._scheduler = scheduler
        self._callback = callback
        self._timer: Cancellable | None = None

        self.ping()

    def __repr__(self) -> str:
        return (
            f"Test(name={self.name!r}, passed={self.passed}, failed={self.failed}, "
            f"total={self.total}, pending={self.pending}, finished={self.finished}, "
            f"finish_reason={self.finish_reason!r})"
        )

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    def ping(self) -> None:
        """Reset the inactivity timer.

        Called by every operation that shows activity. Cancels any armed
        timer, then arms a new one unless the test is finished or the
        timeout is disabled.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self.finished and self.timeout > 0:
            self._timer = self._scheduler.call_later(
                self.timeout / 1000, self._on_timeout
            )

    def _on_timeout(self) -> None:
        self._timer = None
        logger.info(f"Test '{self.name}' timed out after {self.timeout}ms of inactivity")
        self.finish(TIMEOUT)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def check(self, result: Any, name: str) -> bool | None:
        """Record a checkpoint.

        If result is callable it is invoked immediately: returning means
        pass, raising means fail and the exception is added as an error
        right after the checkpoint. Only synchronous work is covered; use
        a subtest for anything asynchronous. Any other value is used for
        its truthiness.

        Returns:
            The checkpoint outcome, or None if the test was already
            finished (in which case nothing is counted).
        """
        if self.finished:
            self._misuse(f"Checkpoint '{name}' triggered after test was completed")
            return None

        self.ping()

        error: Exception | None = None
        if callable(result):
            try:
                result()
                outcome = True
            except Exception as e:
                error = e
                outcome = False
        else:
            outcome = bool(result)

        self.contents.append(Checkpoint(name, outcome))
        if outcome:
            self.passed += 1
        else:
            self.failed += 1
        self.total += 1
        if error is not None:
            self.error(error)
        self._check_expected()
        return outcome

    def add_expected(self, count: int) -> None:
        """Adjust the number of checkpoints and subtests this test expects.

        Once total reaches expected, the test finishes normally on its
        own. count may be negative. Callers must raise the expectation
        before total reaches the previous value; an expectation that total
        has already jumped past never triggers.
        """
        if self.finished:
            self._misuse(f"Expected test count increased by {count} after completion.")
            return

        self.ping()

        if self.expected is None:
            self.expected = count
        else:
            self.expected += count
        self._check_expected()

    def comment(self, data: Any) -> None:
        """Add a comment annotation. Accepted after finishing."""
        self.ping()
        self.contents.append(Annotation(AnnotationKind.COMMENT, data))

    def error(self, data: Any) -> None:
        """Add an error annotation. Accepted after finishing.

        Any error makes the test fail, even when every checkpoint passed.
        """
        self.ping()
        self.contents.append(Annotation(AnnotationKind.ERROR, data))
        self.errors += 1

    def _misuse(self, message: str) -> None:
        logger.warning(f"Test '{self.name}': {message}")
        self.error(message)

    def _check_expected(self) -> None:
        if self.expected is not None and self.expected == self.total:
            self.finish()

    # ------------------------------------------------------------------
    # Subtests
    # ------------------------------------------------------------------

    def test(
        self,
        name: str,
        timeout: int | None = None,
        body: Body | None = None,
    ) -> "Test | None":
        """Start a subtest.

        With a body, the body is run later with the new subtest as its
        argument, and any exception it raises (directly or from work it
        defers) bails the subtest. Nothing useful is returned.

        Without a body, the subtest is returned for the caller to drive.
        Exceptions in the caller's code are then not caught by the
        subtest.

        Counts toward total immediately; the pass/fail count is updated
        when the subtest resolves.
        """
        if self.finished:
            self._misuse(f"Subtest '{name}' triggered after test was completed")
            return None

        self.ping()

        child = Test(
            name,
            timeout,
            self._subtest_finished,
            scheduler=self._scheduler,
            default_timeout=self.default_timeout,
        )
        self.contents.append(child)
        self.pending += 1
        self.total += 1
        self._check_expected()

        if body is not None:
            child.run(body)
            return None
        return child

    def _subtest_finished(self, reason: str | None, passed: bool) -> None:
        # total was already incremented when the subtest started.
        if not reason and passed:
            self.passed += 1
        else:
            self.failed += 1
        self.pending -= 1
        if self.pending == 0 and self.finished:
            self._notify_finish()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run(self, body: Body) -> None:
        """Run body(self) on a later tick, bailing the test if it raises.

        Test.test() calls this for you. Calling it more than once is
        allowed; the bodies race, and once any of them finishes the test
        the rest only add errors.
        """
        self._scheduler.run_isolated(body, self, self._on_error)

    def _on_error(self, exc: BaseException) -> None:
        logger.warning(f"Test '{self.name}' bailed: {exc!r}")
        # Record the error before finishing; finishing may notify upward.
        self.error(exc)
        self.finish(BAIL)

    # ------------------------------------------------------------------
    # Finishing
    # ------------------------------------------------------------------

    def finish(self, reason: str | None = None) -> None:
        """Mark the test as done.

        No reason means a normal end. Any reason marks an abnormal end and
        adds an error describing it. The system uses BAIL for uncaught
        exceptions and TIMEOUT for inactivity; any other string is allowed.

        The completion callback fires now if no subtests are pending,
        otherwise when the last one resolves. A second call only adds an
        error.
        """
        if self.finished:
            self._misuse(
                f"An extra attempt was made to finish the test, "
                f"the reason this time was: '{reason}'"
            )
            return

        self.finished = True
        # Disarms the timer now that the test is finished.
        self.ping()

        self.finish_reason = reason
        if reason:
            if reason == BAIL:
                self.error("Test bailed due to an uncaught exception.")
            elif reason == TIMEOUT:
                self.error(
                    f"Test timed out due to no activity in {self.timeout} milliseconds."
                )
            else:
                self.error(f"Test finished abnormally, reason given was '{reason}'")

        logger.debug(
            f"Test '{self.name}' finished (reason={reason!r}, pending={self.pending})"
        )
        if self.pending == 0:
            self._notify_finish()

    def _notify_finish(self) -> None:
        passed = self.is_passed()
        logger.debug(
            f"Test '{self.name}' resolved: reason={self.finish_reason!r}, passed={passed}"
        )
        if self._callback is not None:
            self._callback(self.finish_reason, passed)

    # ------------------------------------------------------------------
    # Outcome
    # ------------------------------------------------------------------

    def is_complete(self) -> bool:
        """Finished, nothing pending, and the expected count (if any) met."""
        return (
            self.finished
            and self.pending == 0
            and (self.expected is None or self.expected == self.total)
        )

    def is_passed(self) -> bool:
        """True if the test met every criterion for passing.

        - the test is complete
        - it ended normally (no finish reason)
        - no checkpoint or subtest failed
        - no error was recorded, even if every check passed
        """
        return (
            self.is_complete()
            and not self.finish_reason
            and self.failed == 0
            and self.errors == 0
        )
