#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Latency Compensation Module

Projects the vehicle pose forward by the actuation latency so the controls are
optimized for the state at the moment they take effect.
"""

from dataclasses import dataclass

import numpy as np


@dataclass
class ControlCommand:
    """Last applied actuator pair in the optimizer convention."""
    steering: float = 0.0  # [rad]
    throttle: float = 0.0  # [m/s^2]


@dataclass(frozen=True)
class PredictedState:
    """Vehicle state at t + latency."""
    x: float
    y: float
    psi: float
    v: float


def predict_state(x: float, y: float, psi: float, v: float,
                  command: ControlCommand, latency: float,
                  lf: float) -> PredictedState:
    """
    Forward-project the pose with one kinematic bicycle step.

    The controls are held constant over the latency window. Speed is
    updated first and the new speed drives the heading and position update.

    Args:
        x, y: Current position in the map frame [m]
        psi: Current heading [rad]
        v: Current longitudinal speed [m/s]
        command: Last applied steering/throttle
        latency: Actuation latency [s]
        lf: Distance from the center of mass to the front axle [m]

    Returns:
        Predicted state
    """
    v_lat = v + latency * command.throttle
    psi_lat = psi - latency * (v_lat * command.steering / lf)
    x_lat = x + latency * (v_lat * np.cos(psi_lat))
    y_lat = y + latency * (v_lat * np.sin(psi_lat))
    return PredictedState(float(x_lat), float(y_lat), float(psi_lat), float(v_lat))
