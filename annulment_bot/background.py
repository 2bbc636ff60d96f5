"""Shared worker pool for Slack event handlers and follow-up work."""

from __future__ import annotations

import threading
from contextvars import copy_context
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

from structlog.contextvars import bind_contextvars, get_contextvars

DEFAULT_WORKERS = 4

_executor_lock = threading.Lock()
_executor: ThreadPoolExecutor | None = None


def configure_executor(max_workers: int = DEFAULT_WORKERS) -> ThreadPoolExecutor:
    """Replace the shared pool with one sized to *max_workers*."""

    global _executor
    with _executor_lock:
        previous = _executor
        _executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="annul-handler")
    if previous is not None:
        previous.shutdown(wait=False)
    return _executor


def _get_executor() -> ThreadPoolExecutor:
    with _executor_lock:
        executor = _executor
    if executor is None:
        return configure_executor()
    return executor


def run_async(
    func: Callable[..., Any],
    /,
    *args: Any,
    trace_id: str | None = None,
    **kwargs: Any,
) -> Future:
    """Submit *func* to the shared pool, carrying the caller's log context."""

    context = copy_context()

    if trace_id is not None and context.run(lambda: get_contextvars().get("trace_id")) != trace_id:
        context.run(lambda: bind_contextvars(trace_id=trace_id))

    def runner() -> Any:
        return context.run(func, *args, **kwargs)

    return _get_executor().submit(runner)
