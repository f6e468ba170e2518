import pytest

import config
from broadcast_hub import HUB
from device_link import DEVICE_LINK
from shared_store import STORE


class FakeClock:
    """Millisecond clock the tests move by hand."""

    def __init__(self, now: int = 1_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float):
        self.now += int(seconds * 1000)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def fresh_relay(monkeypatch):
    """Reset the process-wide store, hub and device link; keep the simulator off."""
    monkeypatch.setattr(config, "SIMULATION_MODE", False)
    STORE.reset()
    DEVICE_LINK.reset()
    HUB.reset()
    yield
    HUB.reset()
    DEVICE_LINK.reset()
