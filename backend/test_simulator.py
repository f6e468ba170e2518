import asyncio
import random

from simulator import generate_monitoring, run_simulator


class FakeLink:
    def __init__(self, connected=False):
        self.connected = connected


class RecordingHub:
    def __init__(self):
        self.published = []

    def publish_simulated(self, state):
        self.published.append(state)


def test_generated_values_stay_in_domain():
    rng = random.Random(7)
    for _ in range(500):
        state = generate_monitoring(rng)
        assert set(state["indicators"]) == {1, 2, 3, 4}
        assert all(isinstance(value, bool) for value in state["indicators"].values())
        assert set(state["gauges"]) == {1, 2}
        assert all(0 <= value <= 100 and isinstance(value, int) for value in state["gauges"].values())
        assert 0 <= state["variables"][1] <= 24
        assert 0 <= state["variables"][2] <= 5
        assert all(round(value, 2) == value for value in state["variables"].values())


def test_indicator_thresholds():
    rng = random.Random(11)
    draws = [generate_monitoring(rng)["indicators"] for _ in range(4000)]
    lit = {i: sum(d[i] for d in draws) / len(draws) for i in (1, 2, 3, 4)}
    assert abs(lit[1] - 0.5) < 0.05
    assert abs(lit[2] - 0.3) < 0.05
    assert abs(lit[3] - 0.7) < 0.05
    assert abs(lit[4] - 0.4) < 0.05


def _run_briefly(hub, link, seconds=0.1):
    async def scenario():
        task = asyncio.create_task(run_simulator(hub, link, interval=0.01, rng=random.Random(1)))
        await asyncio.sleep(seconds)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    asyncio.run(scenario())


def test_publishes_while_device_is_away():
    hub = RecordingHub()
    _run_briefly(hub, FakeLink(connected=False))
    assert len(hub.published) >= 2
    assert set(hub.published[0]) == {"indicators", "gauges", "variables"}


def test_paused_while_device_is_connected():
    hub = RecordingHub()
    _run_briefly(hub, FakeLink(connected=True))
    assert hub.published == []
