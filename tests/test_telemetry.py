import numpy as np
import pytest

from mpc_path_tracker.telemetry import TelemetryStore, quaternion_to_yaw

SQUARE = [(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0)]


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_initial_snapshot_not_ready():
    snap = TelemetryStore().snapshot()
    assert not snap.is_ready
    assert snap.missing() == ["path", "pose", "speed", "heading"]


def test_all_updates_make_ready():
    store = TelemetryStore()
    store.update_path(SQUARE)
    store.update_pose(1.0, 2.0, heading=0.5)
    store.update_speed(3.0)

    snap = store.snapshot()
    assert snap.is_ready
    assert snap.missing() == []
    assert (snap.x, snap.y, snap.psi, snap.speed) == (1.0, 2.0, 0.5, 3.0)
    np.testing.assert_array_equal(snap.path, np.array(SQUARE))


def test_pose_without_heading_leaves_heading_missing():
    store = TelemetryStore()
    store.update_pose(1.0, 2.0)
    snap = store.snapshot()
    assert snap.pose_ok
    assert not snap.psi_ok

    store.update_heading(0.2)
    assert store.snapshot().psi_ok


def test_latest_value_wins():
    store = TelemetryStore()
    store.update_speed(1.0)
    store.update_speed(2.5)
    assert store.snapshot().speed == 2.5


def test_short_path_rejected(caplog):
    store = TelemetryStore(min_path_points=4)
    assert store.update_path(SQUARE)
    assert not store.update_path(SQUARE[:3])
    assert "Rejected path" in caplog.text

    snap = store.snapshot()
    assert snap.path_ok
    assert snap.path.shape == (4, 2)


def test_snapshot_path_is_read_only():
    store = TelemetryStore()
    store.update_path(SQUARE)
    snap = store.snapshot()
    with pytest.raises(ValueError):
        snap.path[0, 0] = 5.0


def test_snapshot_is_unaffected_by_later_updates():
    store = TelemetryStore()
    store.update_speed(1.0)
    snap = store.snapshot()
    store.update_speed(9.0)
    assert snap.speed == 1.0


def test_stale_inputs_not_ready():
    clock = FakeClock()
    store = TelemetryStore(max_age=0.5, clock=clock)
    store.update_path(SQUARE)
    store.update_pose(0.0, 0.0, heading=0.0)
    store.update_speed(1.0)
    assert store.snapshot().is_ready

    clock.now = 1.0
    snap = store.snapshot()
    assert snap.path_ok
    assert snap.missing() == ["pose", "speed", "heading"]

    store.update_speed(1.0)
    assert store.snapshot().speed_ok


@pytest.mark.parametrize("yaw", [0.0, 0.3, -1.2, np.pi / 2, 3.0])
def test_quaternion_to_yaw(yaw):
    q = (0.0, 0.0, np.sin(yaw / 2.0), np.cos(yaw / 2.0))
    assert quaternion_to_yaw(*q) == pytest.approx(yaw)
