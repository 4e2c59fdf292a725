#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Sequential QP Backend for Kinematic MPC Controller

Solves the tracking NLP by Levenberg-Marquardt steps over the control
sequence. Each step linearizes the weighted residuals with a
forward-difference Jacobian and solves a box-constrained QP either
directly with OSQP or through CVXPY.
"""

import logging
import time
from typing import Optional, Tuple

import cvxpy as cp
import numpy as np
import osqp
import scipy.sparse as sparse

from .kinematic_model import (NU, OptimizerRequest, OptimizerResponse,
                              TrajectoryOptimizer, rollout, tracking_residuals,
                              zero_response)
from .params import MpcParams, TrackerConfig

logger = logging.getLogger(__name__)

OSQP_OK = ('solved', 'solved inaccurate')
CVXPY_OK = (cp.OPTIMAL, cp.OPTIMAL_INACCURATE)


class KinematicSqpSolver(TrajectoryOptimizer):
    """Gauss-Newton / Levenberg-Marquardt solver with QP subproblems."""

    def __init__(self, params: MpcParams, config: TrackerConfig,
                 qp_solver: str = 'osqp', fd_eps: float = 1e-6,
                 mu_init: float = 1e-2):
        """
        Initialize sequential QP solver.

        Args:
            params: Horizon, step and cost weights
            config: Vehicle limits and iteration options
            qp_solver: 'osqp' or 'cvxpy'
            fd_eps: Finite-difference step for the Jacobian
            mu_init: Initial damping of the Levenberg-Marquardt step
        """
        if qp_solver not in ('osqp', 'cvxpy'):
            raise ValueError(f"Unknown QP solver: {qp_solver}")
        self.params = params
        self.config = config
        self.qp_solver = qp_solver
        self.fd_eps = fd_eps
        self.mu_init = mu_init

        self.N = params.steps_ahead
        self.M = max(self.N - 1, 0)   # control steps
        self.n_vars = NU * self.M     # [delta_0..delta_M-1, a_0..a_M-1]

        # Box constraints on the control sequence
        self.lb = np.concatenate((np.full(self.M, -config.steer_limit),
                                  np.full(self.M, -config.accel_limit)))
        self.ub = -self.lb

        # Warm start storage
        self.last_solution: Optional[np.ndarray] = None

    def reset(self):
        self.last_solution = None

    def _split(self, u: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        return u[:self.M], u[self.M:]

    def _residuals(self, u: np.ndarray, state: np.ndarray, coeffs: np.ndarray) -> np.ndarray:
        deltas, accels = self._split(u)
        states = rollout(state, deltas, accels, coeffs, self.params.dt, self.config.lf)
        return tracking_residuals(states, deltas, accels, self.params.weights, self.config.ref_v)

    def _jacobian(self, u: np.ndarray, r: np.ndarray, state: np.ndarray,
                  coeffs: np.ndarray) -> np.ndarray:
        """Forward-difference Jacobian of the residuals."""
        J = np.zeros((r.size, self.n_vars))
        for j in range(self.n_vars):
            u_pert = u.copy()
            u_pert[j] += self.fd_eps
            J[:, j] = (self._residuals(u_pert, state, coeffs) - r) / self.fd_eps
        return J

    def _solve_qp_osqp(self, P: np.ndarray, q: np.ndarray,
                       lower: np.ndarray, upper: np.ndarray) -> Optional[np.ndarray]:
        solver = osqp.OSQP()
        solver.setup(
            P=sparse.triu(sparse.csc_matrix(P), format='csc'),
            q=q,
            A=sparse.identity(self.n_vars, format='csc'),
            l=lower,
            u=upper,
            verbose=False,
            eps_abs=1e-6,
            eps_rel=1e-6,
            max_iter=4000,
        )
        results = solver.solve()
        if results.info.status not in OSQP_OK:
            logger.debug("OSQP subproblem status: %s", results.info.status)
            return None
        return np.asarray(results.x, dtype=float)

    def _solve_qp_cvxpy(self, r: np.ndarray, J: np.ndarray, mu: float,
                        lower: np.ndarray, upper: np.ndarray) -> Optional[np.ndarray]:
        du = cp.Variable(self.n_vars)
        objective = cp.Minimize(cp.sum_squares(r + J @ du) + mu * cp.sum_squares(du))
        problem = cp.Problem(objective, [du >= lower, du <= upper])
        problem.solve(solver=cp.OSQP, verbose=False)
        if problem.status not in CVXPY_OK or du.value is None:
            logger.debug("CVXPY subproblem status: %s", problem.status)
            return None
        return np.asarray(du.value, dtype=float)

    def _initial_guess(self) -> np.ndarray:
        """Previous solution shifted one step, or zeros."""
        if self.last_solution is None or self.last_solution.size != self.n_vars:
            return np.zeros(self.n_vars)
        deltas, accels = self._split(self.last_solution)
        shifted = np.concatenate((deltas[1:], deltas[-1:], accels[1:], accels[-1:]))
        return np.clip(shifted, self.lb, self.ub)

    def solve(self, request: OptimizerRequest) -> OptimizerResponse:
        start_time = time.time()
        if self.M == 0:
            return zero_response()

        state = np.asarray(request.state, dtype=float)
        coeffs = np.asarray(request.coeffs, dtype=float)

        u = self._initial_guess()
        r = self._residuals(u, state, coeffs)
        cost = float(r @ r)
        mu = self.mu_init
        converged = False
        status = 'max_iter_reached'
        iterations = 0

        for iterations in range(1, self.config.max_iter + 1):
            J = self._jacobian(u, r, state, coeffs)
            P = J.T @ J + mu * np.eye(self.n_vars)
            q = J.T @ r
            lower = self.lb - u
            upper = self.ub - u

            if self.qp_solver == 'osqp':
                du = self._solve_qp_osqp(P, q, lower, upper)
            else:
                du = self._solve_qp_cvxpy(r, J, mu, lower, upper)

            if du is None:
                status = f'{self.qp_solver}_subproblem_failed'
                break

            # Accept the step only if it lowers the cost
            u_new = np.clip(u + du, self.lb, self.ub)
            r_new = self._residuals(u_new, state, coeffs)
            cost_new = float(r_new @ r_new)
            if cost_new <= cost:
                u, r, cost = u_new, r_new, cost_new
                mu = max(mu / 3.0, 1e-9)
            else:
                mu *= 4.0

            if np.max(np.abs(du)) < self.config.tolerance ** 0.5:
                converged = True
                status = 'optimal'
                break

        if not converged:
            logger.warning("Sequential QP stopped without convergence: %s after %d iterations",
                           status, iterations)

        self.last_solution = u
        deltas, accels = self._split(u)
        states = rollout(state, deltas, accels, coeffs, self.params.dt, self.config.lf)

        return OptimizerResponse(
            steering=float(deltas[0]),
            acceleration=float(accels[0]),
            trajectory=states[1:, 0:2].copy(),
            converged=converged,
            status=status,
            iterations=iterations,
            cost=cost,
            solve_time_ms=(time.time() - start_time) * 1000.0,
        )
