#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Closed-Loop Simulation

Kinematic bicycle plant with a pure command delay, used to exercise the
controller node without a vehicle or a middleware.
"""

import logging
from collections import deque
from typing import Deque, Optional, Tuple

import numpy as np
import pandas as pd

from .actuation import CommandPublisher, Overlay

logger = logging.getLogger(__name__)


def circle_path(radius: float = 1.0, num_points: int = 36,
                center: Tuple[float, float] = (0.0, 0.0)) -> np.ndarray:
    """Counter-clockwise closed circle starting at angle 0."""
    theta = np.linspace(0.0, 2.0 * np.pi, num_points, endpoint=False)
    return np.column_stack((center[0] + radius * np.cos(theta),
                            center[1] + radius * np.sin(theta)))


class KinematicVehicleSim:
    """Kinematic bicycle plant; commands take effect after `delay` seconds."""

    def __init__(self, x: float = 0.0, y: float = 0.0, psi: float = 0.0, v: float = 0.0,
                 lf: float = 0.325, delay: float = 0.0,
                 steer_limit: float = 0.436332, accel_limit: float = 1.0):
        self.x = x
        self.y = y
        self.psi = psi
        self.v = v
        self.lf = lf
        self.delay = delay
        self.steer_limit = steer_limit
        self.accel_limit = accel_limit
        self.t = 0.0

        self.steering = 0.0
        self.acceleration = 0.0
        self._pending: Deque[Tuple[float, str, float]] = deque()

    def command(self, steering: Optional[float] = None, acceleration: Optional[float] = None):
        """Queue new actuator values (optimizer units)."""
        apply_at = self.t + self.delay
        if steering is not None:
            self._pending.append((apply_at, 'steering', float(steering)))
        if acceleration is not None:
            self._pending.append((apply_at, 'acceleration', float(acceleration)))

    def _apply_due(self):
        while self._pending and self._pending[0][0] <= self.t + 1e-12:
            _, name, value = self._pending.popleft()
            if name == 'steering':
                self.steering = float(np.clip(value, -self.steer_limit, self.steer_limit))
            else:
                self.acceleration = float(np.clip(value, -self.accel_limit, self.accel_limit))

    def step(self, dt: float):
        self._apply_due()
        self.x += self.v * np.cos(self.psi) * dt
        self.y += self.v * np.sin(self.psi) * dt
        self.psi -= self.v * self.steering / self.lf * dt
        self.v += self.acceleration * dt
        self.t += dt

    def feed(self, store):
        """Write the current pose and speed into a TelemetryStore."""
        store.update_pose(self.x, self.y, heading=self.psi)
        store.update_speed(self.v)


class SimulationPublisher(CommandPublisher):
    """Routes published commands back into the plant."""

    def __init__(self, sim: KinematicVehicleSim, center_offset: float = 0.5):
        self.sim = sim
        self.center_offset = center_offset
        self.overlay_count = 0

    def publish_steering(self, value: float):
        # Undo the actuator mapping
        self.sim.command(steering=self.center_offset - value)

    def publish_acceleration(self, value: float):
        self.sim.command(acceleration=value)

    def publish_overlay(self, overlay: Overlay):
        self.overlay_count += 1


def path_distance(path: np.ndarray, x: float, y: float) -> float:
    """Distance to the closest polyline segment of a closed path."""
    start = path
    end = np.roll(path, -1, axis=0)
    seg = end - start
    seg_len2 = np.sum(seg * seg, axis=1)
    rel = np.array([x, y]) - start
    t = np.clip(np.sum(rel * seg, axis=1) / np.maximum(seg_len2, 1e-12), 0.0, 1.0)
    proj = start + seg * t[:, None]
    return float(np.min(np.hypot(proj[:, 0] - x, proj[:, 1] - y)))


def run_closed_loop(node, sim: KinematicVehicleSim, steps: int,
                    dt: Optional[float] = None) -> pd.DataFrame:
    """
    Alternate controller cycles and plant steps.

    Args:
        node: MpcControllerNode whose publisher drives `sim`
        sim: Plant
        steps: Number of control cycles
        dt: Plant time per cycle; defaults to 1 / loop_rate_hz

    Returns:
        One row per cycle
    """
    dt = dt if dt is not None else 1.0 / node.config.loop_rate_hz
    records = []

    for k in range(steps):
        sim.feed(node.store)
        result = node.run_cycle()
        path = node.store.snapshot().path
        records.append({
            'step': k,
            't': sim.t,
            'x': sim.x,
            'y': sim.y,
            'psi': sim.psi,
            'v': sim.v,
            'status': result.status.value,
            'cte': result.cte,
            'epsi': result.epsi,
            'steering': result.response.steering if result.response else np.nan,
            'acceleration': result.response.acceleration if result.response else np.nan,
            'solve_time_ms': result.response.solve_time_ms if result.response else np.nan,
            'path_distance': path_distance(path, sim.x, sim.y) if len(path) else np.nan,
        })
        sim.step(dt)

    df = pd.DataFrame.from_records(records)
    logger.info("Closed loop finished: %d steps, max path distance %.3f m",
                len(df), df['path_distance'].max())
    return df
