"""Deadline enforcement for connector calls.

Connector adapters are plain synchronous callables that may hang on a slow
target. The call runs on a helper thread while the caller waits with a
deadline; on expiry the caller gets :class:`TimeoutExpired` and moves on.

Guardrails:
    - The helper thread is not killed on timeout. The connector call may
      still complete later, which is why a timed-out attempt is treated as
      "effect unknown" and retried under a fresh idempotency key only after
      a conflict check.
    - Not suitable for CPU-bound work.

Tags:
    timeout, deadline, resilience, execution, reconspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

import concurrent.futures
import time
from collections.abc import Callable
from typing import Any, TypeVar

T = TypeVar("T")


class TimeoutExpired(TimeoutError):
    """Raised when a call exceeds its deadline.

    Attributes:
        timeout: The timeout value that was exceeded
        elapsed: How long the caller waited
        operation: Name/description of the call
    """

    def __init__(self, timeout: float, elapsed: float | None = None, operation: str = "operation"):
        self.timeout = timeout
        self.elapsed = elapsed
        self.operation = operation
        msg = f"Operation '{operation}' timed out after {timeout}s"
        if elapsed is not None:
            msg += f" (ran for {elapsed:.2f}s)"
        super().__init__(msg)


def run_with_timeout(
    func: Callable[..., T],
    timeout_seconds: float,
    operation: str | None = None,
    args: tuple[Any, ...] | None = None,
    kwargs: dict[str, Any] | None = None,
) -> T:
    """Run a callable with a timeout using a single-use thread pool.

    Args:
        func: Callable to execute
        timeout_seconds: Maximum time to wait
        operation: Name for error messages
        args: Positional arguments for func
        kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Raises:
        TimeoutExpired: If the call does not finish in time
        Exception: Any exception raised by func
    """
    if timeout_seconds <= 0:
        raise ValueError(f"Timeout must be positive, got {timeout_seconds}")

    start = time.monotonic()
    pool = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="recon-call")
    future = pool.submit(func, *(args or ()), **(kwargs or {}))
    try:
        return future.result(timeout=timeout_seconds)
    except concurrent.futures.TimeoutError:
        if future.done():
            # func itself raised TimeoutError
            raise
        raise TimeoutExpired(
            timeout=timeout_seconds,
            elapsed=time.monotonic() - start,
            operation=operation or getattr(func, "__name__", "operation"),
        ) from None
    finally:
        # Never join a hung call.
        pool.shutdown(wait=False)


__all__ = ["TimeoutExpired", "run_with_timeout"]
