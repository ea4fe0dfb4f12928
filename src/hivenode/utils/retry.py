# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

import time
from typing import Callable, TypeVar

T = TypeVar("T")


def retry_call(
    fn: Callable[[], T],
    *,
    retries: int,
    delay: float,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[[int, Exception], None] | None = None,
) -> T:
    """
    Call ``fn`` up to ``retries`` times.

    retries: total number of attempts
    delay: seconds between attempts
    retry_on: exception types to retry; anything else propagates immediately
    on_retry: callback(attempt, exception), invoked before sleeping

    The last exception propagates unchanged once the attempts are used up.
    """
    attempts = max(1, retries)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except retry_on as exc:
            if attempt == attempts:
                raise
            if on_retry:
                on_retry(attempt, exc)
            time.sleep(delay)
    raise AssertionError("unreachable")
