"""Run blocking collaborator calls with a deadline."""

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, TypeVar

T = TypeVar("T")

# Shared pool for external calls; a timed-out call keeps its worker until it returns.
_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="teamspend-io")


def call_with_timeout(func: Callable[..., T], timeout: float, *args: Any, **kwargs: Any) -> T:
    """
    Call func(*args, **kwargs) and wait at most `timeout` seconds.

    Raises TimeoutError when the deadline passes; exceptions raised by
    func propagate unchanged.
    """
    future = _executor.submit(func, *args, **kwargs)
    return future.result(timeout=timeout)
