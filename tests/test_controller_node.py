import logging

import numpy as np
import pytest

from mpc_path_tracker.actuation import RecordingPublisher
from mpc_path_tracker.controller_node import CycleStatus, MpcControllerNode, TrackingMetrics
from mpc_path_tracker.kinematic_model import OptimizerResponse, TrajectoryOptimizer
from mpc_path_tracker.latency import ControlCommand
from mpc_path_tracker.params import CostWeights, MpcParams, TrackerConfig
from mpc_path_tracker.simulation import circle_path


class FixedOptimizer(TrajectoryOptimizer):
    """Returns a constant answer and counts calls."""

    def __init__(self, steering=-0.2, acceleration=0.3, converged=True, horizon=10):
        self.steering = steering
        self.acceleration = acceleration
        self.converged = converged
        self.horizon = horizon
        self.requests = []

    def solve(self, request):
        self.requests.append(request)
        trajectory = np.column_stack((np.linspace(0.1, 0.9, self.horizon - 1),
                                      np.zeros(self.horizon - 1)))
        return OptimizerResponse(steering=self.steering, acceleration=self.acceleration,
                                 trajectory=trajectory, converged=self.converged,
                                 status='optimal' if self.converged else 'max_iter_reached')


def make_node(debug=False, latency=0.0, config=None, optimizer=None):
    params = MpcParams(steps_ahead=10, dt=0.1, latency=latency, weights=CostWeights(), debug=debug)
    publisher = RecordingPublisher()
    node = MpcControllerNode(params, publisher, config=config or TrackerConfig(),
                             optimizer=optimizer or FixedOptimizer())
    return node, publisher


def feed_circle(node, speed=True):
    node.store.update_path(circle_path(1.0, 36))
    node.store.update_pose(1.0, 0.0, heading=np.pi / 2.0)
    if speed:
        node.store.update_speed(1.0)


def test_missing_speed_skips_optimization(caplog):
    node, publisher = make_node()
    feed_circle(node, speed=False)

    with caplog.at_level(logging.WARNING):
        results = [node.run_cycle() for _ in range(5)]

    assert all(r.status == CycleStatus.MISSING_INPUT for r in results)
    assert results[0].missing == ["speed"]
    assert node.optimizer.requests == []
    assert publisher.steering == []
    assert "No optimization" in caplog.text
    assert "speed_ok: False" in caplog.text


def test_missing_input_self_heals():
    node, publisher = make_node()
    feed_circle(node, speed=False)
    assert node.run_cycle().status == CycleStatus.MISSING_INPUT

    node.store.update_speed(1.0)
    assert node.run_cycle().status == CycleStatus.SOLVED
    assert len(publisher.steering) == 1


def test_published_steering_is_mapped():
    node, publisher = make_node()
    feed_circle(node)
    result = node.run_cycle()

    assert result.status == CycleStatus.SOLVED
    assert result.steering_output == pytest.approx(0.5 - (-0.2))
    assert publisher.steering == [pytest.approx(0.7)]
    assert publisher.acceleration == []
    assert publisher.overlays == []


def test_command_keeps_optimizer_units():
    node, _ = make_node()
    feed_circle(node)
    node.run_cycle()
    assert node.command == ControlCommand(steering=-0.2, throttle=0.3)


def test_acceleration_channel_enabled():
    node, publisher = make_node(config=TrackerConfig(publish_acceleration=True))
    feed_circle(node)
    node.run_cycle()
    assert publisher.acceleration == [pytest.approx(0.3)]


def test_request_uses_predicted_speed():
    node, _ = make_node(latency=0.1)
    feed_circle(node)
    node.command = ControlCommand(steering=0.0, throttle=1.0)
    result = node.run_cycle()

    request = node.optimizer.requests[0]
    assert result.prediction.v == pytest.approx(1.1)
    assert request.state[3] == pytest.approx(1.1)
    assert request.state[4] == pytest.approx(result.cte)
    assert request.state[5] == pytest.approx(result.epsi)


def test_not_converged_still_publishes(caplog):
    node, publisher = make_node(optimizer=FixedOptimizer(converged=False))
    feed_circle(node)
    with caplog.at_level(logging.WARNING):
        result = node.run_cycle()
    assert result.status == CycleStatus.NOT_CONVERGED
    assert len(publisher.steering) == 1
    assert "did not converge" in caplog.text


def test_debug_overlays():
    node, publisher = make_node(debug=True)
    feed_circle(node)
    result = node.run_cycle()

    names = [o.name for o in publisher.overlays]
    assert names == ["closest", "next_pos", "poly"]
    closest, next_pos, poly = publisher.overlays

    assert closest.color == (1.0, 1.0, 1.0)
    assert next_pos.color == (0.0, 0.0, 1.0)
    assert poly.color == (0.7, 0.2, 0.1)
    assert all(o.alpha == 0.5 for o in publisher.overlays)

    # Accepted window points map back onto the path
    path = circle_path(1.0, 36)
    np.testing.assert_allclose(closest.points, path[result.curve.window[:len(closest.points)]],
                               atol=1e-9)
    assert poly.points.shape == (11, 2)
    assert next_pos.points.shape == (9, 2)
    # First trajectory point is 0.1 m ahead of the vehicle heading north
    np.testing.assert_allclose(next_pos.points[0], [1.0, 0.1], atol=1e-9)


def test_period_measured_between_cycles():
    times = iter([0.0, 0.010])
    node, _ = make_node()
    node._clock = lambda: next(times)
    feed_circle(node, speed=False)
    first = node.run_cycle()
    second = node.run_cycle()
    assert first.period_ms == 0.0
    assert second.period_ms == pytest.approx(10.0)


def test_spin_respects_max_cycles():
    node, _ = make_node()
    sleeps = []
    node._clock = lambda: 0.0
    node._sleep = sleeps.append
    assert node.spin(max_cycles=3) == 3
    assert sleeps == [pytest.approx(0.01), pytest.approx(0.01)]


def test_spin_stops_on_predicate():
    node, _ = make_node()
    node._sleep = lambda s: None
    remaining = iter([True, True, False])
    assert node.spin(should_continue=lambda: next(remaining)) == 2


def test_metrics_summary_logged(caplog):
    metrics = TrackingMetrics(window=4)
    with caplog.at_level(logging.INFO):
        for i in range(3):
            assert metrics.update(0.1 * i, 0.0, 0.0, 5.0) is None
        summary = metrics.update(-0.3, 0.0, 0.0, 5.0)

    assert summary["cte_max"] == pytest.approx(0.3)
    assert summary["cte_rmse"] == pytest.approx(np.sqrt((0.01 + 0.04 + 0.09) / 4))
    assert summary["avg_solve_time_ms"] == pytest.approx(5.0)
    assert "Tracking:" in caplog.text
    assert metrics.buffer["cross_track_errors"] == []


def test_full_pipeline_with_ipopt():
    params = MpcParams(steps_ahead=10, dt=0.1, latency=0.0, weights=CostWeights())
    publisher = RecordingPublisher()
    node = MpcControllerNode(params, publisher, config=TrackerConfig(solver_backend="ipopt"))
    feed_circle(node)
    result = node.run_cycle()

    assert result.status == CycleStatus.SOLVED
    assert result.response.steering < -0.01
    assert publisher.steering[0] > 0.5


def test_degenerate_fit_skips_cycle(caplog):
    node, publisher = make_node()
    node.store.update_path([(0.0, 0.0), (2.0, 0.0), (2.0, 2.0), (0.0, 2.0)])
    node.store.update_pose(1.0, -0.1, heading=0.0)
    node.store.update_speed(1.0)

    with caplog.at_level(logging.ERROR):
        result = node.run_cycle()

    assert result.status == CycleStatus.FIT_FAILED
    assert result.response is None
    assert node.optimizer.requests == []
    assert publisher.steering == []
    assert node.command == ControlCommand()
    assert "Path fit failed" in caplog.text
