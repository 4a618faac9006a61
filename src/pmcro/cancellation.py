# cancellation.py
# Cancellable, time-bounded suspension points.
#
# A run's cancel token is a threading.Event. Blocking calls (oracle
# round-trips, tool dispatch) run on a worker thread while the caller polls
# the event, so cancellation is observed while the call is in flight.

import threading
import time
from concurrent import futures
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, TypeVar

from pmcro.errors import OperationCancelled

T = TypeVar("T")

POLL_INTERVAL = 0.05


def is_cancelled(cancel: threading.Event | None) -> bool:
    return cancel is not None and cancel.is_set()


def raise_if_cancelled(cancel: threading.Event | None, where: str = "") -> None:
    if is_cancelled(cancel):
        raise OperationCancelled(f"Cancelled{f' during {where}' if where else ''}.")


def run_cancellable(
    fn: Callable[..., T],
    *args: Any,
    timeout: float | None = None,
    cancel: threading.Event | None = None,
    where: str = "",
) -> T:
    """
    Run fn(*args) and wait for it, observing `cancel` and `timeout`.

    Raises OperationCancelled if the event is set before completion and
    TimeoutError once `timeout` seconds elapse. The abandoned call is left
    to finish on its worker thread; its result is discarded.
    """
    raise_if_cancelled(cancel, where)

    if cancel is None and timeout is None:
        return fn(*args)

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pmcro-call")
    try:
        future = executor.submit(fn, *args)
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            wait = POLL_INTERVAL
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    future.cancel()
                    raise TimeoutError(f"{where or 'call'} timed out after {timeout:g}s")
                wait = min(wait, remaining)
            done, _ = futures.wait([future], timeout=wait)
            if done:
                return future.result()
            if is_cancelled(cancel):
                future.cancel()
                raise OperationCancelled(f"Cancelled{f' during {where}' if where else ''}.")
    finally:
        executor.shutdown(wait=False)
