"""Test helpers"""

import time


def wait_until(predicate, timeout: float = 2.0, interval: float = 0.001) -> bool:
    """Poll predicate until it holds or timeout expires"""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
