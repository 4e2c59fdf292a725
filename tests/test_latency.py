import numpy as np
import pytest

from mpc_path_tracker.latency import ControlCommand, PredictedState, predict_state


def test_zero_latency_is_identity():
    command = ControlCommand(steering=0.3, throttle=-0.7)
    pred = predict_state(1.5, -2.0, 0.8, 3.2, command, latency=0.0, lf=0.325)
    assert pred == PredictedState(1.5, -2.0, 0.8, 3.2)


def test_straight_line_projection():
    pred = predict_state(0.0, 0.0, 0.0, 2.0, ControlCommand(), latency=0.1, lf=0.325)
    assert pred.x == pytest.approx(0.2)
    assert pred.y == pytest.approx(0.0)
    assert pred.psi == pytest.approx(0.0)
    assert pred.v == pytest.approx(2.0)


def test_speed_updated_before_heading_and_position():
    command = ControlCommand(steering=0.1, throttle=1.0)
    latency = 0.2
    lf = 0.5
    pred = predict_state(0.0, 0.0, 0.0, 1.0, command, latency, lf)

    v_lat = 1.0 + latency * 1.0
    psi_lat = -latency * v_lat * 0.1 / lf
    assert pred.v == pytest.approx(v_lat)
    assert pred.psi == pytest.approx(psi_lat)
    assert pred.x == pytest.approx(latency * v_lat * np.cos(psi_lat))
    assert pred.y == pytest.approx(latency * v_lat * np.sin(psi_lat))


def test_positive_steering_turns_right():
    pred = predict_state(0.0, 0.0, 0.0, 1.0, ControlCommand(steering=0.2), 0.1, 0.325)
    assert pred.psi < 0.0
    assert pred.y < 0.0
