#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Kinematic Bicycle Tracking Model

Shared pieces of the trajectory optimizers:
- Request/response types exchanged with the control loop
- Abstract optimizer interface
- Discrete kinematic bicycle step with cross-track and heading error states
- Tracking cost residuals

State vector: [x, y, psi, v, cte, epsi] in the local frame of the
predicted vehicle pose. Controls: [delta, a]. A positive delta decreases
the heading.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from .params import CostWeights
from .path_processor import polyderiv, polyeval

NX = 6  # [x, y, psi, v, cte, epsi]
NU = 2  # [delta, a]


@dataclass(frozen=True)
class OptimizerRequest:
    """Initial local state and reference polynomial."""
    state: np.ndarray
    coeffs: np.ndarray

    @classmethod
    def from_errors(cls, v: float, cte: float, epsi: float,
                    coeffs: np.ndarray) -> 'OptimizerRequest':
        """Vehicle at the local origin heading along +x."""
        state = np.array([0.0, 0.0, 0.0, v, cte, epsi])
        return cls(state=state, coeffs=np.asarray(coeffs, dtype=float))


@dataclass
class OptimizerResponse:
    """First control pair plus the predicted local trajectory."""
    steering: float
    acceleration: float
    trajectory: np.ndarray = field(default_factory=lambda: np.zeros((0, 2)))
    converged: bool = True
    status: str = 'not_solved'
    iterations: int = 0
    cost: float = 0.0
    solve_time_ms: float = 0.0

    def flatten(self) -> np.ndarray:
        """Interleaved [steer, acc, x1, y1, ...] vector."""
        head = np.array([self.steering, self.acceleration])
        return np.concatenate((head, np.asarray(self.trajectory, dtype=float).ravel()))


class TrajectoryOptimizer(ABC):
    """Interface of a finite-horizon tracking optimizer."""

    @abstractmethod
    def solve(self, request: OptimizerRequest) -> OptimizerResponse:
        """Compute the control sequence for one cycle."""

    def reset(self):
        """Drop any warm start state."""


def step(state: np.ndarray, delta: float, a: float, coeffs: np.ndarray,
         dt: float, lf: float) -> np.ndarray:
    """
    Propagate the tracking state one step.

    Args:
        state: [x, y, psi, v, cte, epsi]
        delta: Steering angle [rad]
        a: Acceleration [m/s^2]
        coeffs: Reference polynomial in the local frame
        dt: Step duration [s]
        lf: Distance from the center of mass to the front axle [m]

    Returns:
        Next state
    """
    x0, y0, psi0, v0, cte0, epsi0 = state
    f0 = polyeval(coeffs, x0)
    psides0 = np.arctan(polyeval(polyderiv(coeffs), x0))

    return np.array([
        x0 + v0 * np.cos(psi0) * dt,
        y0 + v0 * np.sin(psi0) * dt,
        psi0 - v0 * delta / lf * dt,
        v0 + a * dt,
        (f0 - y0) - v0 * np.sin(epsi0) * dt,
        (psi0 - psides0) - v0 * delta / lf * dt,
    ])


def rollout(state: np.ndarray, deltas: np.ndarray, accels: np.ndarray,
            coeffs: np.ndarray, dt: float, lf: float) -> np.ndarray:
    """Return the (len(deltas) + 1, NX) state sequence starting at state."""
    states = np.zeros((len(deltas) + 1, NX))
    states[0] = state
    for t in range(len(deltas)):
        states[t + 1] = step(states[t], deltas[t], accels[t], coeffs, dt, lf)
    return states


def tracking_residuals(states: np.ndarray, deltas: np.ndarray, accels: np.ndarray,
                       weights: CostWeights, ref_v: float) -> np.ndarray:
    """
    Weighted residuals whose squared norm is the tracking cost.

    State terms cover every horizon step, control terms every control step
    and smoothness terms every consecutive control pair.
    """
    parts = [
        np.sqrt(weights.cte) * states[:, 4],
        np.sqrt(weights.epsi) * states[:, 5],
        np.sqrt(weights.speed) * (states[:, 3] - ref_v),
        np.sqrt(weights.acc) * accels,
        np.sqrt(weights.steer) * deltas,
        np.sqrt(weights.consec_acc) * np.diff(accels),
        np.sqrt(weights.consec_steer) * np.diff(deltas),
    ]
    return np.concatenate(parts)


def tracking_cost(states: np.ndarray, deltas: np.ndarray, accels: np.ndarray,
                  weights: CostWeights, ref_v: float) -> float:
    r = tracking_residuals(states, deltas, accels, weights, ref_v)
    return float(r @ r)


def zero_response(status: str = 'no_controls',
                  solve_time_ms: Optional[float] = 0.0) -> OptimizerResponse:
    """Response for a horizon without control variables."""
    return OptimizerResponse(steering=0.0, acceleration=0.0, converged=True,
                             status=status, solve_time_ms=solve_time_ms)
