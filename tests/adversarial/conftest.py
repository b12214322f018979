"""
Shared fixtures for adversarial tests.

Provides common test infrastructure for race condition and timing tests.
Database fixtures come from the top-level conftest.
"""

import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

import pytest

from portal_auth.domain.exceptions import AuthError


@pytest.fixture
def run_concurrently() -> Callable[[Callable[[], object], int], list[object]]:
    """
    Run the same call from several threads released at once.

    Returns each outcome: the call's result, or the AuthError it raised.
    Anything else propagates so unexpected failures stay visible.
    """

    def run(attack: Callable[[], object], attackers: int) -> list[object]:
        barrier = threading.Barrier(attackers)

        def attempt() -> object:
            barrier.wait()
            try:
                return attack()
            except AuthError as exc:
                return exc

        with ThreadPoolExecutor(max_workers=attackers) as executor:
            futures = [executor.submit(attempt) for _ in range(attackers)]
            return [future.result() for future in futures]

    return run
