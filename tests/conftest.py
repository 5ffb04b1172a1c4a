"""Shared fixtures for swarm_engine tests."""

import pytest
import numpy as np


class FakeClock:
    """Manually advanced clock, callable like time.time."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rng():
    return np.random.default_rng(42)
