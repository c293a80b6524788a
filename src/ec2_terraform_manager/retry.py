"""Retry/backoff for calls to external collaborators"""

from __future__ import annotations

import time
from typing import Callable, TypeVar

from ec2_terraform_manager.console import print_status, print_warning

T = TypeVar("T")


def retry_with_backoff(
    func: Callable[[], T],
    *,
    description: str,
    max_attempts: int = 1,
    base_delay: float = 2.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    retry_if: Callable[[BaseException], bool] = lambda e: True,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run *func*, retrying on *retry_on* with exponential backoff.

    ``max_attempts=1`` means fail fast: the first error propagates unchanged.
    """
    attempt = 1
    while True:
        try:
            return func()
        except retry_on as e:
            if attempt >= max_attempts or not retry_if(e):
                raise
            delay = base_delay * (2 ** (attempt - 1))
            print_warning(f"{description} failed (attempt {attempt}/{max_attempts}): {e}")
            print_status(f"Retrying in {delay:g}s...")
            sleep(delay)
            attempt += 1
