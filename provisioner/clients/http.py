import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from typing import Any, Callable, TypeVar

import httpx

from provisioner.errors import (
    ControlPlaneError,
    RemoteTimeoutError,
    RequestCancelledError,
)


T = TypeVar("T")


class RemoteCallGuard:
    """Runs remote-bound work under one uniform deadline.

    The work executes on a worker thread while the calling thread waits in
    short slices, so a set cancel event is observed within one poll interval.
    There are no retries.
    """

    def __init__(
        self,
        timeout_sec: float,
        poll_interval_sec: float = 0.1,
        max_workers: int = 16,
    ):
        self.timeout_sec = timeout_sec
        self.poll_interval_sec = poll_interval_sec
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="remote-call"
        )

    def run(
        self,
        operation: str,
        fn: Callable[[], T],
        cancel: threading.Event | None = None,
    ) -> T:
        if cancel is not None and cancel.is_set():
            raise RequestCancelledError(operation)
        future = self._executor.submit(fn)
        deadline = time.monotonic() + self.timeout_sec
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                future.cancel()
                raise RemoteTimeoutError(operation, self.timeout_sec)
            done, _ = wait(
                [future],
                timeout=min(self.poll_interval_sec, remaining),
                return_when=FIRST_COMPLETED,
            )
            if done:
                return future.result()
            if cancel is not None and cancel.is_set():
                future.cancel()
                raise RequestCancelledError(operation)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


def request_json(
    client: httpx.Client, method: str, path: str, **kwargs: Any
) -> httpx.Response:
    try:
        response = client.request(method, path, **kwargs)
        response.raise_for_status()
        return response
    except httpx.TimeoutException as exc:
        timeout = client.timeout.read or client.timeout.connect or 0.0
        raise RemoteTimeoutError(f"{method} {path}", timeout) from exc
    except httpx.HTTPStatusError as exc:
        body = (exc.response.text or "").strip()
        status_code = exc.response.status_code
        raise ControlPlaneError(
            method=method,
            path=path,
            error_type=exc.__class__.__name__,
            detail=f"HTTP {status_code}: {body[:240]}" if body else f"HTTP {status_code}",
            status_code=status_code,
        ) from exc
    except httpx.RequestError as exc:
        raise ControlPlaneError(
            method=method,
            path=path,
            error_type=exc.__class__.__name__,
            detail=str(exc),
        ) from exc
