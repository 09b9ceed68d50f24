"""Composition root for the checktree result aggregator.

This module is the ONLY location that imports both core domain logic
and concrete adapter implementations. All wiring of dependencies
happens here.

Module Structure:
- Logging configuration
- run_test(): build a root test on the running loop and wait for it
- Console entry point (checktree package.module:function)
"""

import argparse
import asyncio
import importlib
import logging
import sys

from checktree.adapters.scheduler.asyncio_loop import AsyncioScheduler
from checktree.config import load_settings
from checktree.core.models import DEFAULT_TIMEOUT_MS
from checktree.core.node import Test
from checktree.core.ports import Body

logger = logging.getLogger(__name__)


def configure_logging(log_level: str, log_format: str) -> None:
    """Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: Log format (json, text).
    """
    level = getattr(logging, log_level, logging.INFO)

    if log_format == "json":
        format_str = '{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s"}'
    else:
        format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
        force=True,
    )


async def run_test(
    name: str,
    body: Body,
    timeout: int | None = None,
    *,
    default_timeout: int = DEFAULT_TIMEOUT_MS,
) -> Test:
    """Run body as a root test and wait until the whole tree resolves.

    The body runs asynchronously on the current loop, as do any subtest
    bodies it starts. Exceptions escaping the body bail the root.

    Args:
        name: Name of the root test.
        body: Callable receiving the root test. May be a coroutine function.
        timeout: Root inactivity timeout in milliseconds (None for default).
        default_timeout: Timeout for tests that do not set their own.

    Returns:
        The resolved root test.

    Note:
        With timeouts disabled, a body that never finishes its test makes
        this wait forever.
    """
    loop = asyncio.get_running_loop()
    scheduler = AsyncioScheduler(loop)
    resolved: asyncio.Future[tuple[str | None, bool]] = loop.create_future()

    def _on_complete(reason: str | None, passed: bool) -> None:
        if not resolved.done():
            resolved.set_result((reason, passed))

    root = Test(
        name,
        timeout,
        _on_complete,
        scheduler=scheduler,
        default_timeout=default_timeout,
    )
    logger.info(f"Running test '{name}' (timeout={root.timeout}ms)")

    try:
        root.run(body)
        reason, passed = await resolved
    finally:
        scheduler.close()

    logger.info(
        f"Test '{name}' {'passed' if passed else 'failed'}: "
        f"{root.passed} passed, {root.failed} failed, {root.errors} errors"
        + (f", finish reason '{reason}'" if reason else "")
    )
    return root


def load_body(target: str) -> Body:
    """Resolve a "package.module:function" string to a test body.

    Raises:
        ValueError: If target is malformed or does not name a callable.
        ImportError: If the module cannot be imported.
    """
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Test target must look like 'package.module:function', got {target!r}")

    module = importlib.import_module(module_name)
    body = getattr(module, attr, None)
    if not callable(body):
        raise ValueError(f"{target!r} does not name a callable")
    return body


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="checktree",
        description="Run a test body and report whether the test tree passed.",
    )
    parser.add_argument("target", help="Test body as package.module:function")
    parser.add_argument("--name", help="Root test name (defaults to the target)")
    parser.add_argument(
        "--timeout",
        type=int,
        default=None,
        help="Root inactivity timeout in milliseconds (0 disables)",
    )
    return parser


async def bootstrap(argv: list[str] | None = None) -> int:
    """Load configuration, wire the scheduler, and run the requested test.

    Steps:
    1. Parse arguments
    2. Load configuration from environment
    3. Configure logging
    4. Resolve the test body and run it as the root test

    Returns:
        Exit code: 0 if the root test passed, 1 otherwise.
    """
    args = _build_parser().parse_args(argv)

    settings = load_settings()
    configure_logging(settings.effective_log_level, settings.log_format)

    body = load_body(args.target)
    root = await run_test(
        args.name or args.target,
        body,
        args.timeout,
        default_timeout=settings.default_timeout_ms,
    )
    return 0 if root.is_passed() else 1


def main() -> None:
    """Application entry point.

    Exit codes:
        0: Root test passed
        1: Root test failed, or a fatal error occurred
        130: Interrupted by user (SIGINT/KeyboardInterrupt)
    """
    try:
        code = asyncio.run(bootstrap())
    except KeyboardInterrupt:
        logger.warning("Interrupted by user (SIGINT)")
        sys.exit(130)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
