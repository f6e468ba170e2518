import threading

from shared_store import StateStore, default_controls, default_monitoring


def test_defaults():
    store = StateStore()
    controls = store.get_controls()
    monitoring = store.get_monitoring()

    assert controls["pushButtons"] == {1: False, 2: False}
    assert controls["toggles"] == {1: False, 2: False}
    assert controls["sliders"] == {1: 50, 2: 50, 3: 50, 4: 50}
    assert monitoring["indicators"] == {1: False, 2: False, 3: False, 4: False}
    assert monitoring["gauges"] == {1: 0, 2: 0}
    assert monitoring["variables"] == {1: 0.0, 2: 0.0}


def test_control_change_touches_only_that_field(clock):
    store = StateStore(clock=clock)
    before = store.last_update

    applied_at = store.apply_control_change("toggle", 2, True)

    expected = default_controls()
    expected["toggles"][2] = True
    assert store.get_controls() == expected
    assert applied_at == store.last_update
    assert store.last_update > before


def test_last_update_strictly_increases_within_one_millisecond(clock):
    store = StateStore(clock=clock)
    stamps = [store.apply_control_change("slider", 1, value) for value in (10, 20, 30)]
    assert stamps[0] < stamps[1] < stamps[2]


def test_same_slider_value_only_moves_timestamp(clock):
    store = StateStore(clock=clock)
    store.apply_control_change("slider", 3, 70)
    controls = store.get_controls()
    first = store.last_update

    clock.advance(1)
    store.apply_control_change("slider", 3, 70)

    assert store.get_controls() == controls
    assert store.last_update > first


def test_out_of_range_id_is_ignored():
    store = StateStore()
    before = store.last_update

    assert store.apply_control_change("pushButton", 3, True) is None
    assert store.apply_control_change("slider", 0, 10) is None

    assert store.get_controls() == default_controls()
    assert store.last_update == before


def test_control_value_must_match_kind():
    store = StateStore()
    assert store.apply_control_change("slider", 1, True) is None
    assert store.apply_control_change("slider", 1, 101) is None
    assert store.apply_control_change("slider", 1, -1) is None
    assert store.apply_control_change("toggle", 1, 1) is None
    assert store.apply_control_change("dial", 1, 5) is None
    assert store.get_controls() == default_controls()


def test_monitoring_patch_merges(clock):
    store = StateStore(clock=clock)
    store.apply_monitoring_patch(gauges={1: 10, 2: 20}, variables={2: 3.3})
    before = store.last_update

    clock.advance(1)
    result = store.apply_monitoring_patch(gauges={1: 75})

    assert result["gauges"] == {1: 75, 2: 20}
    assert result["variables"] == {1: 0.0, 2: 3.3}
    assert result["indicators"] == default_monitoring()["indicators"]
    assert store.last_update > before


def test_monitoring_patch_accepts_json_keys_and_drops_unknown_readings():
    store = StateStore()
    result = store.apply_monitoring_patch(
        indicators={"1": True, "9": True},
        gauges={"2": 250},
        variables={"1": 12},
    )

    assert result["indicators"] == {1: True, 2: False, 3: False, 4: False}
    assert result["gauges"] == {1: 0, 2: 0}
    assert result["variables"][1] == 12.0
    assert isinstance(result["variables"][1], float)


def test_non_finite_variables_are_ignored():
    store = StateStore()
    result = store.apply_monitoring_patch(variables={1: float("nan"), 2: float("inf")})
    assert result["variables"] == {1: 0.0, 2: 0.0}


def test_replace_monitoring_overwrites_everything():
    store = StateStore()
    store.apply_monitoring_patch(gauges={2: 42})
    state = {
        "indicators": {1: True, 2: True, 3: False, 4: True},
        "gauges": {1: 5, 2: 6},
        "variables": {1: 1.5, 2: 2.5},
    }

    assert store.replace_monitoring(state) == state
    assert store.get_monitoring() == state


def test_snapshots_are_copies():
    store = StateStore()
    controls, monitoring, _ = store.snapshot()
    controls["sliders"][1] = 0
    monitoring["gauges"][1] = 99

    assert store.get_controls()["sliders"][1] == 50
    assert store.get_monitoring()["gauges"][1] == 0


def test_reader_never_sees_half_merged_patch():
    store = StateStore()
    torn = []
    done = threading.Event()

    def writer():
        for value in range(1, 101):
            store.apply_monitoring_patch(gauges={1: value, 2: value}, variables={1: float(value), 2: float(value)})
        done.set()

    def reader():
        while not done.is_set():
            monitoring = store.get_monitoring()
            gauges = monitoring["gauges"]
            if gauges[1] != gauges[2] or monitoring["variables"][1] != float(gauges[1]):
                torn.append(monitoring)

    threads = [threading.Thread(target=writer)] + [threading.Thread(target=reader) for _ in range(3)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert torn == []
    assert store.get_monitoring()["gauges"] == {1: 100, 2: 100}
