#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Telemetry State Module

Holds the latest reference path, pose, heading and speed received from the
transport. Every source writes into its own single slot (latest value wins)
and the control loop reads one immutable snapshot per cycle.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)


def quaternion_to_yaw(x: float, y: float, z: float, w: float) -> float:
    """Convert quaternion to yaw angle."""
    siny_cosp = 2.0 * (w * z + x * y)
    cosy_cosp = 1.0 - 2.0 * (y * y + z * z)
    return float(np.arctan2(siny_cosp, cosy_cosp))


@dataclass(frozen=True)
class TelemetrySnapshot:
    """Immutable view of the telemetry consumed by one control cycle."""
    path: np.ndarray = field(default_factory=lambda: np.zeros((0, 2)))
    x: float = 0.0
    y: float = 0.0
    psi: float = 0.0
    speed: float = 0.0
    path_ok: bool = False
    pose_ok: bool = False
    speed_ok: bool = False
    psi_ok: bool = False
    stamp: float = 0.0

    @property
    def is_ready(self) -> bool:
        return self.path_ok and self.pose_ok and self.speed_ok and self.psi_ok

    def missing(self) -> List[str]:
        """Names of the inputs that have not been received yet."""
        flags = (
            ('path', self.path_ok),
            ('pose', self.pose_ok),
            ('speed', self.speed_ok),
            ('heading', self.psi_ok),
        )
        return [name for name, ok in flags if not ok]


class TelemetryStore:
    """Latest-value store for path, pose, heading and speed."""

    def __init__(self, min_path_points: int = 4,
                 max_age: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize telemetry store.

        Args:
            min_path_points: Smallest path accepted by update_path
            max_age: Maximum age [s] of pose/heading/speed before they read as
                not ready. None disables the check.
            clock: Monotonic time source in seconds
        """
        self.min_path_points = int(min_path_points)
        self.max_age = max_age
        self._clock = clock
        self._lock = threading.Lock()

        self._path = np.zeros((0, 2))
        self._x = 0.0
        self._y = 0.0
        self._psi = 0.0
        self._speed = 0.0

        # Arrival time of each slot; None until the first message
        self._path_time: Optional[float] = None
        self._pose_time: Optional[float] = None
        self._psi_time: Optional[float] = None
        self._speed_time: Optional[float] = None

    def update_path(self, points: Sequence[Sequence[float]]) -> bool:
        """
        Replace the reference path.

        Args:
            points: Ordered (x, y) waypoints of a closed loop

        Returns:
            True if the path was accepted
        """
        path = np.array(points, dtype=float).reshape(-1, 2)
        if path.shape[0] < self.min_path_points:
            logger.warning("Rejected path with %d points (need at least %d)",
                           path.shape[0], self.min_path_points)
            return False

        path.setflags(write=False)
        with self._lock:
            self._path = path
            self._path_time = self._clock()
        logger.debug("Path updated: %d points", path.shape[0])
        return True

    def update_pose(self, x: float, y: float, heading: Optional[float] = None):
        """Overwrite the position and, when given, the heading."""
        now = self._clock()
        with self._lock:
            self._x = float(x)
            self._y = float(y)
            self._pose_time = now
            if heading is not None:
                self._psi = float(heading)
                self._psi_time = now

    def update_heading(self, psi: float):
        with self._lock:
            self._psi = float(psi)
            self._psi_time = self._clock()

    def update_speed(self, v: float):
        with self._lock:
            self._speed = float(v)
            self._speed_time = self._clock()

    def _is_fresh(self, stamp: Optional[float], now: float) -> bool:
        if stamp is None:
            return False
        if self.max_age is None:
            return True
        return (now - stamp) <= self.max_age

    def snapshot(self) -> TelemetrySnapshot:
        """Return all values and readiness flags taken under one lock."""
        with self._lock:
            now = self._clock()
            return TelemetrySnapshot(
                path=self._path,
                x=self._x,
                y=self._y,
                psi=self._psi,
                speed=self._speed,
                # The path is static between messages, so it never goes stale
                path_ok=self._path_time is not None,
                pose_ok=self._is_fresh(self._pose_time, now),
                speed_ok=self._is_fresh(self._speed_time, now),
                psi_ok=self._is_fresh(self._psi_time, now),
                stamp=now,
            )
