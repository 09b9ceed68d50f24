"""Integration tests for AsyncioScheduler on a real event loop."""

import asyncio
import gc
import weakref
from typing import Any

import pytest

from checktree.adapters.scheduler.asyncio_loop import AsyncioScheduler, IsolationScope
from checktree.core.models import BAIL, TIMEOUT, AnnotationKind
from checktree.core.node import Test


def _root(
    scheduler: AsyncioScheduler, timeout: int = 0, name: str = "root"
) -> tuple[Test, "asyncio.Future[tuple[str | None, bool]]"]:
    """Create a root test whose outcome resolves the returned future."""
    resolved = asyncio.get_running_loop().create_future()

    def _on_complete(reason: str | None, passed: bool) -> None:
        resolved.set_result((reason, passed))

    return Test(name, timeout, _on_complete, scheduler=scheduler), resolved


async def _outcome(resolved: "asyncio.Future[Any]") -> Any:
    return await asyncio.wait_for(resolved, timeout=2)


async def _fail_later(message: str) -> None:
    await asyncio.sleep(0.01)
    raise RuntimeError(message)


# ============================================================================
# Deferral
# ============================================================================


@pytest.mark.asyncio
async def test_body_runs_on_a_later_tick() -> None:
    """run() schedules the body instead of calling it."""
    scheduler = AsyncioScheduler()
    try:
        root, resolved = _root(scheduler)
        calls: list[Test] = []

        def body(t: Test) -> None:
            calls.append(t)
            t.finish()

        root.run(body)
        assert calls == []

        assert await _outcome(resolved) == (None, True)
        assert calls == [root]
    finally:
        scheduler.close()


@pytest.mark.asyncio
async def test_coroutine_body_is_driven_to_completion() -> None:
    """A coroutine body keeps running across awaits."""
    scheduler = AsyncioScheduler()
    try:
        root, resolved = _root(scheduler)

        async def body(t: Test) -> None:
            t.check(True, "before await")
            await asyncio.sleep(0.01)
            t.check(True, "after await")
            t.finish()

        root.run(body)

        assert await _outcome(resolved) == (None, True)
        assert root.passed == 2
    finally:
        scheduler.close()


# ============================================================================
# Exception capture
# ============================================================================


@pytest.mark.asyncio
async def test_sync_body_exception_bails() -> None:
    """An exception raised directly by the body bails the test."""
    scheduler = AsyncioScheduler()
    try:
        root, resolved = _root(scheduler)

        def body(t: Test) -> None:
            raise ValueError("sync failure")

        root.run(body)

        assert await _outcome(resolved) == (BAIL, False)
        assert isinstance(root.contents[0].data, ValueError)
        assert root.errors == 2
    finally:
        scheduler.close()


@pytest.mark.asyncio
async def test_coroutine_body_exception_bails() -> None:
    """An exception raised after an await still reaches the test."""
    scheduler = AsyncioScheduler()
    try:
        root, resolved = _root(scheduler)

        async def body(t: Test) -> None:
            t.check(True, "first")
            await _fail_later("async failure")

        root.run(body)

        assert await _outcome(resolved) == (BAIL, False)
        assert root.passed == 1
        assert str(root.contents[1].data) == "async failure"
    finally:
        scheduler.close()


@pytest.mark.asyncio
async def test_spawned_task_exception_bails() -> None:
    """A fire-and-forget task started by the body is inside the boundary."""
    scheduler = AsyncioScheduler()
    try:
        root, resolved = _root(scheduler)
        spawned: list[asyncio.Task[None]] = []

        def body(t: Test) -> None:
            t.check(True, "spawned")
            spawned.append(asyncio.get_running_loop().create_task(_fail_later("from task")))

        root.run(body)

        assert await _outcome(resolved) == (BAIL, False)
        assert str(root.contents[1].data) == "from task"
    finally:
        scheduler.close()


@pytest.mark.asyncio
async def test_awaited_task_failure_is_recorded_once() -> None:
    """A failure seen by both the child task and its awaiter is recorded once."""
    scheduler = AsyncioScheduler()
    try:
        root, resolved = _root(scheduler)

        async def body(t: Test) -> None:
            await asyncio.get_running_loop().create_task(_fail_later("awaited"))

        root.run(body)

        assert await _outcome(resolved) == (BAIL, False)
        await asyncio.sleep(0.02)
        assert root.errors == 2
        exceptions = [
            entry.data
            for entry in root.contents
            if entry.kind is AnnotationKind.ERROR and isinstance(entry.data, BaseException)
        ]
        assert len(exceptions) == 1
    finally:
        scheduler.close()


@pytest.mark.asyncio
async def test_call_later_callback_exception_bails() -> None:
    """Plain loop callbacks scheduled by the body are inside the boundary."""
    scheduler = AsyncioScheduler()
    try:
        root, resolved = _root(scheduler)

        def explode() -> None:
            raise LookupError("from callback")

        def body(t: Test) -> None:
            asyncio.get_running_loop().call_later(0.01, explode)

        root.run(body)

        assert await _outcome(resolved) == (BAIL, False)
        assert isinstance(root.contents[0].data, LookupError)
    finally:
        scheduler.close()


@pytest.mark.asyncio
async def test_call_soon_callback_exception_bails() -> None:
    """A callback queued with call_soon is inside the boundary too."""
    scheduler = AsyncioScheduler()
    try:
        root, resolved = _root(scheduler, timeout=1000)

        def explode() -> None:
            raise LookupError("from call_soon")

        def body(t: Test) -> None:
            asyncio.get_running_loop().call_soon(explode)

        root.run(body)

        assert await _outcome(resolved) == (BAIL, False)
        assert isinstance(root.contents[0].data, LookupError)
    finally:
        scheduler.close()


@pytest.mark.asyncio
async def test_gathered_failure_with_return_exceptions_does_not_bail() -> None:
    """Errors collected by gather(return_exceptions=True) belong to the body."""
    scheduler = AsyncioScheduler()
    try:
        root, resolved = _root(scheduler)

        async def body(t: Test) -> None:
            results = await asyncio.gather(
                _fail_later("gathered"), return_exceptions=True
            )
            t.check(isinstance(results[0], RuntimeError), "gather returned the error")
            t.finish()

        root.run(body)

        assert await _outcome(resolved) == (None, True)
        await asyncio.sleep(0.03)
        assert root.finish_reason is None
        assert root.errors == 0
        assert root.passed == 1
    finally:
        scheduler.close()


@pytest.mark.asyncio
async def test_caught_task_failure_does_not_bail() -> None:
    """A task failure the body awaits and catches is not an escape."""
    scheduler = AsyncioScheduler()
    try:
        root, resolved = _root(scheduler)

        async def body(t: Test) -> None:
            try:
                await asyncio.get_running_loop().create_task(_fail_later("caught"))
            except RuntimeError:
                t.check(True, "caught the task error")
            t.finish()

        root.run(body)

        assert await _outcome(resolved) == (None, True)
        await asyncio.sleep(0.03)
        assert root.errors == 0
        assert root.passed == 1
    finally:
        scheduler.close()


@pytest.mark.asyncio
async def test_task_failure_inspected_by_body_does_not_bail() -> None:
    """Reading task.exception() counts as collecting the failure."""
    scheduler = AsyncioScheduler()
    try:
        root, resolved = _root(scheduler)

        async def body(t: Test) -> None:
            task = asyncio.get_running_loop().create_task(_fail_later("inspected"))
            await asyncio.wait([task])
            t.check(isinstance(task.exception(), RuntimeError), "saw the error")
            t.finish()

        root.run(body)

        assert await _outcome(resolved) == (None, True)
        await asyncio.sleep(0.03)
        assert root.errors == 0
    finally:
        scheduler.close()


@pytest.mark.asyncio
async def test_subtest_body_exception_bails_only_subtest() -> None:
    """Nested bodies get their own boundary; the parent keeps running."""
    scheduler = AsyncioScheduler()
    try:
        root, resolved = _root(scheduler)

        async def broken(t: Test) -> None:
            await _fail_later("child failure")

        async def body(t: Test) -> None:
            t.test("child", 0, broken)
            await asyncio.sleep(0.05)
            t.check(True, "parent still running")
            t.finish()

        root.run(body)

        assert await _outcome(resolved) == (None, False)
        child = root.contents[0]
        assert child.finish_reason == BAIL
        assert root.finish_reason is None
        assert root.passed == 1
        assert root.failed == 1
        assert root.errors == 0
    finally:
        scheduler.close()


@pytest.mark.asyncio
async def test_parent_waits_for_async_subtests() -> None:
    """A parent that finishes early reports once its async subtests resolve."""
    scheduler = AsyncioScheduler()
    try:
        root, resolved = _root(scheduler)

        async def slow(t: Test) -> None:
            await asyncio.sleep(0.02)
            t.check(True, "slow")
            t.finish()

        def body(t: Test) -> None:
            t.test("a", 0, slow)
            t.test("b", 0, slow)
            t.finish()

        root.run(body)

        assert await _outcome(resolved) == (None, True)
        assert root.passed == 2
        assert root.total == 2
        assert root.is_passed() is True
    finally:
        scheduler.close()


# ============================================================================
# Timers
# ============================================================================


@pytest.mark.asyncio
async def test_idle_test_times_out() -> None:
    """With a 50ms timeout and no activity, the test times out."""
    scheduler = AsyncioScheduler()
    try:
        root, resolved = _root(scheduler, timeout=50)
        await asyncio.sleep(0.06)

        assert root.finish_reason == TIMEOUT
        assert await _outcome(resolved) == (TIMEOUT, False)
        errors = [entry for entry in root.contents if entry.kind is AnnotationKind.ERROR]
        assert len(errors) == 1
        assert "50" in errors[0].data
    finally:
        scheduler.close()


@pytest.mark.asyncio
async def test_activity_keeps_slow_test_alive() -> None:
    """Regular checks keep a test alive past its timeout."""
    scheduler = AsyncioScheduler()
    try:
        root, resolved = _root(scheduler, timeout=50)

        async def body(t: Test) -> None:
            for i in range(4):
                await asyncio.sleep(0.02)
                t.check(True, f"tick {i}")
            t.finish()

        root.run(body)

        assert await _outcome(resolved) == (None, True)
        assert root.passed == 4
    finally:
        scheduler.close()


# ============================================================================
# Isolation scope
# ============================================================================


class _ScopedError(Exception):
    pass


def test_scope_routes_repeated_exception_once() -> None:
    """The same exception object arriving twice reaches the handler once."""
    seen: list[BaseException] = []
    scope = IsolationScope(seen.append, label="repeat")
    exc = _ScopedError("twice")

    scope.route(exc)
    scope.route(exc)

    assert seen == [exc]


def test_scope_does_not_retain_earlier_exceptions() -> None:
    """Only the latest routed exception is held by the scope."""
    scope = IsolationScope(lambda exc: None, label="long-running")
    first = _ScopedError("first")
    first_ref = weakref.ref(first)

    scope.route(first)
    scope.route(_ScopedError("second"))
    del first
    gc.collect()

    assert first_ref() is None
    assert str(scope.last_routed) == "second"


# ============================================================================
# Loop hygiene
# ============================================================================


@pytest.mark.asyncio
async def test_unscoped_exceptions_reach_previous_handler() -> None:
    """Errors outside any body go to whatever handler was installed before."""
    loop = asyncio.get_running_loop()
    seen: list[dict[str, Any]] = []

    def handler(_loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        seen.append(context)

    loop.set_exception_handler(handler)
    scheduler = AsyncioScheduler()
    try:
        root, _ = _root(scheduler)
        root.run(lambda t: None)
        await asyncio.sleep(0)

        def explode() -> None:
            raise RuntimeError("not in any test")

        loop.call_soon(explode)
        await asyncio.sleep(0.01)

        assert len(seen) == 1
        assert str(seen[0]["exception"]) == "not in any test"
        assert root.errors == 0
    finally:
        scheduler.close()
        assert loop.get_exception_handler() is handler
        loop.set_exception_handler(None)


@pytest.mark.asyncio
async def test_close_restores_task_factory() -> None:
    """close() gives the loop back its original task factory."""
    loop = asyncio.get_running_loop()
    original = loop.get_task_factory()
    scheduler = AsyncioScheduler()

    root, _ = _root(scheduler)
    root.run(lambda t: None)
    assert loop.get_task_factory() is not original

    scheduler.close()
    assert loop.get_task_factory() is original
    scheduler.close()
    assert loop.get_task_factory() is original
