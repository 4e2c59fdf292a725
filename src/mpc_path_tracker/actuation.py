#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Actuation Mapping and Publishing

Converts the optimizer steering angle into the vehicle steering command and
forwards commands and debug overlays to a transport. The transport itself
(ROS topics, a simulator, a test recorder) is a CommandPublisher subclass.
"""

import logging
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

from .path_processor import polyeval

logger = logging.getLogger(__name__)

# Overlay colors (r, g, b)
CLOSEST_COLOR = (1.0, 1.0, 1.0)
NEXT_POS_COLOR = (0.0, 0.0, 1.0)
POLY_COLOR = (0.7, 0.2, 0.1)


@dataclass
class Overlay:
    """Line strip in the map frame."""
    name: str
    points: np.ndarray
    color: Tuple[float, float, float]
    alpha: float = 0.5
    scale: float = 0.1
    frame_id: str = 'map'


class ActuationMapper:
    """Map optimizer steering [rad] to the steering actuator value."""

    def __init__(self, center_offset: float = 0.5):
        self.center_offset = center_offset

    def steering_command(self, steering_rad: float) -> float:
        return self.center_offset - steering_rad


class CommandPublisher:
    """Output channel base class. Subclasses override what they transport."""

    def publish_steering(self, value: float):
        raise NotImplementedError

    def publish_acceleration(self, value: float):
        logger.debug("Acceleration channel not available, dropping %.3f", value)

    def publish_overlay(self, overlay: Overlay):
        logger.debug("Overlay channel not available, dropping %s", overlay.name)


class RecordingPublisher(CommandPublisher):
    """Keeps every published value in memory."""

    def __init__(self):
        self.steering: List[float] = []
        self.acceleration: List[float] = []
        self.overlays: List[Overlay] = []

    def publish_steering(self, value: float):
        self.steering.append(float(value))

    def publish_acceleration(self, value: float):
        self.acceleration.append(float(value))

    def publish_overlay(self, overlay: Overlay):
        self.overlays.append(overlay)


def local_to_map(points: np.ndarray, x: float, y: float, psi: float) -> np.ndarray:
    """
    Inverse of the vehicle-frame transform.

    Args:
        points: (N, 2) local points
        x, y, psi: Pose of the local frame in the map

    Returns:
        (N, 2) map-frame points
    """
    points = np.asarray(points, dtype=float).reshape(-1, 2)
    sin_psi = np.sin(psi)
    cos_psi = np.cos(psi)
    x_map = points[:, 0] * cos_psi - points[:, 1] * sin_psi + x
    y_map = points[:, 0] * sin_psi + points[:, 1] * cos_psi + y
    return np.column_stack((x_map, y_map))


def build_overlays(fit_points: np.ndarray, trajectory: np.ndarray, coeffs: np.ndarray,
                   x: float, y: float, psi: float,
                   sample_step: float = 0.2, sample_max: float = 2.0) -> List[Overlay]:
    """
    Debug line strips for one cycle.

    Args:
        fit_points: Accepted window points (local frame)
        trajectory: Predicted trajectory (local frame)
        coeffs: Fitted polynomial
        x, y, psi: Predicted pose anchoring the local frame
        sample_step: Spacing of the polynomial samples [m]
        sample_max: Last polynomial sample [m]

    Returns:
        closest, next_pos and poly overlays
    """
    xs = np.arange(0.0, sample_max + sample_step / 2.0, sample_step)
    poly_points = np.column_stack((xs, polyeval(coeffs, xs)))

    return [
        Overlay('closest', local_to_map(fit_points, x, y, psi), CLOSEST_COLOR),
        Overlay('next_pos', local_to_map(trajectory, x, y, psi), NEXT_POS_COLOR),
        Overlay('poly', local_to_map(poly_points, x, y, psi), POLY_COLOR),
    ]
