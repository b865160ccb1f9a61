# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterstrap/utils/retry.py
import functools
import time
from typing import Callable, Optional


class RetryError(RuntimeError):
    def __init__(self, name: str, attempts: int, last: Optional[BaseException]):
        self.attempts = attempts
        self.last = last
        super().__init__(f"{name} gave up after {attempts} attempt(s): {last}")


def retry(
    *,
    retries: int,
    delay: float,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[[int, Exception], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Retry decorator for idempotent host operations (SSH connect, installers
    that are safe to re-run).

    retries: total attempts, at least one is always made
    delay: fixed pause between attempts, no backoff
    retry_on: exception types that count as a failed attempt; others propagate
    on_retry: callback(attempt, exception) after each failed attempt
    sleep: injectable for tests
    """
    attempts = max(retries, 1)

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            last_exc = None
            for attempt in range(1, attempts + 1):
                try:
                    return fn(*args, **kwargs)
                except retry_on as exc:
                    last_exc = exc
                    if on_retry:
                        on_retry(attempt, exc)
                    if attempt < attempts:
                        sleep(delay)
            raise RetryError(fn.__name__, attempts, last_exc) from last_exc
        return wrapper
    return decorator
