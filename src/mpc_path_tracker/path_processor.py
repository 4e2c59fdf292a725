#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Path Processing Module

Handles path-related calculations including:
- Closest point search on a closed-loop reference path
- Window selection around the closest point
- Transformation into the vehicle's predicted frame
- Polynomial fit with a degeneracy guard
- Cross-track and heading error computation
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from scipy.linalg import solve_triangular

from .latency import PredictedState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FittedCurve:
    """Local path polynomial y = f(x) in the vehicle's predicted frame."""
    coeffs: np.ndarray        # increasing order: c0 + c1*x + c2*x^2 + ...
    local_points: np.ndarray  # accepted (x, y) points used for the fit
    closest_idx: int
    window: np.ndarray        # path indices of the whole window
    truncated_at: Optional[int] = None  # window position where the guard stopped


def find_closest_point(path: np.ndarray, x: float, y: float) -> int:
    """
    Find closest point on path by squared distance.

    Args:
        path: (N, 2) array of waypoints
        x, y: Query position

    Returns:
        Index of the closest waypoint. Ties resolve to the lowest index.
    """
    path = np.asarray(path, dtype=float)
    if path.shape[0] == 0:
        raise ValueError("Cannot search an empty path")

    diff_x = path[:, 0] - x
    diff_y = path[:, 1] - y
    dist = diff_x * diff_x + diff_y * diff_y
    # argmin returns the first occurrence of the minimum
    return int(np.argmin(dist))


def window_indices(closest_idx: int, num_points: int, steps_back: int,
                   num_steps: int, step: int) -> np.ndarray:
    """Indices of the fit window; the path is a closed loop."""
    start = closest_idx - steps_back
    raw = start + step * np.arange(num_steps)
    return np.mod(raw, num_points)


def to_vehicle_frame(points: np.ndarray, x: float, y: float, psi: float) -> np.ndarray:
    """
    Express map-frame points in the frame of a vehicle at (x, y, psi).

    Args:
        points: (N, 2) map-frame points
        x, y: Vehicle position
        psi: Vehicle heading [rad]

    Returns:
        (N, 2) points in the vehicle frame (x forward, y left)
    """
    points = np.asarray(points, dtype=float).reshape(-1, 2)
    sin_psi = np.sin(psi)
    cos_psi = np.cos(psi)

    dx = points[:, 0] - x
    dy = points[:, 1] - y

    # Rotation around the origin by -psi
    x_rot = dx * cos_psi + dy * sin_psi
    y_rot = -dx * sin_psi + dy * cos_psi
    return np.column_stack((x_rot, y_rot))


def select_fit_points(local_points: np.ndarray, poly_degree: int,
                      x_delta_min: float) -> Tuple[np.ndarray, Optional[int]]:
    """
    Accumulate window points while their local x keeps increasing.

    The first poly_degree + 1 points are always kept. After that, a point
    whose x does not exceed the previous accepted x by at least x_delta_min
    ends the accumulation.

    Args:
        local_points: (N, 2) window points in window order
        poly_degree: Degree of the polynomial to be fitted
        x_delta_min: Minimum x step between consecutive accepted points

    Returns:
        Tuple of (accepted points, window position where accumulation
        stopped or None)
    """
    local_points = np.asarray(local_points, dtype=float).reshape(-1, 2)
    accepted = 0

    for i in range(local_points.shape[0]):
        if accepted > poly_degree:
            x_delta = local_points[i, 0] - local_points[accepted - 1, 0]
            if x_delta < x_delta_min:
                logger.warning("X delta too low, breaking at %d", i)
                return local_points[:accepted], i
        accepted += 1

    return local_points[:accepted], None


def polyfit(xs: np.ndarray, ys: np.ndarray, degree: int) -> np.ndarray:
    """
    Least-squares polynomial fit through a QR factorization.

    Returns:
        Coefficients in increasing order (length degree + 1)
    """
    xs = np.asarray(xs, dtype=float)
    ys = np.asarray(ys, dtype=float)
    if xs.shape != ys.shape:
        raise ValueError(f"x and y sizes differ: {xs.shape} vs {ys.shape}")
    if xs.size < degree + 1:
        raise ValueError(f"Need at least {degree + 1} points for a degree {degree} fit, "
                         f"got {xs.size}")

    vander = np.vander(xs, degree + 1, increasing=True)
    rank = np.linalg.matrix_rank(vander)
    if rank < degree + 1:
        # Repeated x values, e.g. a window wrapping around a very short loop
        raise np.linalg.LinAlgError(
            f"Rank-deficient fit: rank {rank} for a degree {degree} polynomial "
            f"({np.unique(xs).size} distinct x values)")

    q, r = np.linalg.qr(vander)
    return solve_triangular(r, q.T @ ys)


def polyeval(coeffs: np.ndarray, x):
    """Evaluate a polynomial given in increasing order."""
    result = 0.0
    for i, c in enumerate(coeffs):
        result = result + c * np.power(x, i)
    return result


def polyderiv(coeffs: np.ndarray) -> np.ndarray:
    coeffs = np.asarray(coeffs, dtype=float)
    return coeffs[1:] * np.arange(1, coeffs.size)


def calculate_errors(coeffs: np.ndarray) -> Tuple[float, float]:
    """
    Calculate cross-track and heading errors at the vehicle origin.

    Args:
        coeffs: Local path polynomial coefficients

    Returns:
        Tuple of (cte, epsi) in meters and radians
    """
    cte = float(polyeval(coeffs, 0.0))
    epsi = float(-np.arctan(coeffs[1]))
    return cte, epsi


class LocalPathFitter:
    """Fit a local polynomial to the reference path around the vehicle."""

    def __init__(self, num_steps_back: int = 2, num_steps_poly: int = 10,
                 step_poly: int = 2, poly_degree: int = 3,
                 x_delta_min: float = 0.05):
        """
        Initialize path fitter.

        Args:
            num_steps_back: Window start offset behind the closest point
            num_steps_poly: Number of window samples
            step_poly: Index stride between window samples
            poly_degree: Degree of the fitted polynomial
            x_delta_min: Minimum local x step accepted by the degeneracy guard
        """
        if num_steps_poly < poly_degree + 1:
            raise ValueError("num_steps_poly must be larger than poly_degree")
        self.num_steps_back = num_steps_back
        self.num_steps_poly = num_steps_poly
        self.step_poly = step_poly
        self.poly_degree = poly_degree
        self.x_delta_min = x_delta_min

    def fit(self, path: np.ndarray, prediction: PredictedState) -> FittedCurve:
        """Window, transform and fit the path around the predicted pose."""
        path = np.asarray(path, dtype=float)
        closest_idx = find_closest_point(path, prediction.x, prediction.y)

        # Starting a few points behind the closest one stabilizes the fit
        window = window_indices(closest_idx, path.shape[0], self.num_steps_back,
                                self.num_steps_poly, self.step_poly)

        local = to_vehicle_frame(path[window], prediction.x, prediction.y, prediction.psi)
        accepted, truncated_at = select_fit_points(local, self.poly_degree, self.x_delta_min)

        coeffs = polyfit(accepted[:, 0], accepted[:, 1], self.poly_degree)
        return FittedCurve(
            coeffs=coeffs,
            local_points=accepted,
            closest_idx=closest_idx,
            window=window,
            truncated_at=truncated_at,
        )
