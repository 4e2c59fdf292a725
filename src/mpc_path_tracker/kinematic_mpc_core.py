#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Kinematic Bicycle Model MPC Core Implementation

Nonlinear MPC for path tracking with a kinematic bicycle model. The default
backend formulates a multiple-shooting NLP with CasADi and solves it with
Ipopt; a sequential QP backend (OSQP or CVXPY subproblems) is available
through the same interface.
"""

import logging
import time
from typing import Dict, Optional

import casadi as ca
import numpy as np

from .kinematic_model import (NU, NX, OptimizerRequest, OptimizerResponse,
                              TrajectoryOptimizer, rollout, zero_response)
from .osqp_backend_kinematic import KinematicSqpSolver
from .params import MpcParams, TrackerConfig

logger = logging.getLogger(__name__)


def _casadi_polyeval(coeffs, x):
    result = 0
    for i in range(coeffs.shape[0]):
        result += coeffs[i] * x ** i
    return result


def _casadi_polyslope(coeffs, x):
    result = 0
    for i in range(1, coeffs.shape[0]):
        result += i * coeffs[i] * x ** (i - 1)
    return result


class IpoptKinematicSolver(TrajectoryOptimizer):
    """Multiple-shooting NLP solved by Ipopt through CasADi Opti."""

    def __init__(self, params: MpcParams, config: TrackerConfig):
        """
        Initialize Ipopt backend.

        Args:
            params: Horizon, step and cost weights
            config: Vehicle limits and solver options
        """
        self.params = params
        self.config = config
        self.N = params.steps_ahead
        self.n_coeffs = config.poly_degree + 1

        self._last_controls: Optional[np.ndarray] = None
        if self.N > 1:
            self._setup_optimization_problem()

    def _setup_optimization_problem(self):
        """Build the Opti problem once; the state and polynomial are parameters."""
        N = self.N
        dt = self.params.dt
        lf = self.config.lf
        ref_v = self.config.ref_v
        w = self.params.weights

        opti = ca.Opti()
        self.X = opti.variable(NX, N)        # states t = 0..N-1
        self.U = opti.variable(NU, N - 1)    # [delta, a] t = 0..N-2
        self.X0 = opti.parameter(NX)
        self.C = opti.parameter(self.n_coeffs)

        # Tracking cost
        J = 0
        for t in range(N):
            J += w.cte * self.X[4, t] ** 2
            J += w.epsi * self.X[5, t] ** 2
            J += w.speed * (self.X[3, t] - ref_v) ** 2
        for t in range(N - 1):
            J += w.steer * self.U[0, t] ** 2
            J += w.acc * self.U[1, t] ** 2
        for t in range(N - 2):
            J += w.consec_steer * (self.U[0, t + 1] - self.U[0, t]) ** 2
            J += w.consec_acc * (self.U[1, t + 1] - self.U[1, t]) ** 2
        self.J = J
        opti.minimize(J)

        # Dynamics
        opti.subject_to(self.X[:, 0] == self.X0)
        for t in range(N - 1):
            x0 = self.X[0, t]
            y0 = self.X[1, t]
            psi0 = self.X[2, t]
            v0 = self.X[3, t]
            epsi0 = self.X[5, t]
            delta0 = self.U[0, t]
            a0 = self.U[1, t]

            f0 = _casadi_polyeval(self.C, x0)
            psides0 = ca.atan(_casadi_polyslope(self.C, x0))

            opti.subject_to(self.X[0, t + 1] == x0 + v0 * ca.cos(psi0) * dt)
            opti.subject_to(self.X[1, t + 1] == y0 + v0 * ca.sin(psi0) * dt)
            opti.subject_to(self.X[2, t + 1] == psi0 - v0 * delta0 / lf * dt)
            opti.subject_to(self.X[3, t + 1] == v0 + a0 * dt)
            opti.subject_to(self.X[4, t + 1] == (f0 - y0) - v0 * ca.sin(epsi0) * dt)
            opti.subject_to(self.X[5, t + 1] == (psi0 - psides0) - v0 * delta0 / lf * dt)

        # Actuator limits
        opti.subject_to(opti.bounded(-self.config.steer_limit, self.U[0, :], self.config.steer_limit))
        opti.subject_to(opti.bounded(-self.config.accel_limit, self.U[1, :], self.config.accel_limit))

        opts = {
            'ipopt.print_level': 0,
            'ipopt.sb': 'yes',
            'print_time': 0,
            'ipopt.max_iter': self.config.max_iter,
            'ipopt.max_cpu_time': self.config.max_cpu_time,
            'ipopt.tol': self.config.tolerance,
        }
        opti.solver('ipopt', opts)
        self.opti = opti

    def reset(self):
        self._last_controls = None

    def _initial_controls(self) -> np.ndarray:
        """Previous solution shifted one step, or zeros."""
        M = self.N - 1
        if self._last_controls is None or self._last_controls.shape != (NU, M):
            return np.zeros((NU, M))
        shifted = np.empty_like(self._last_controls)
        shifted[:, :-1] = self._last_controls[:, 1:]
        shifted[:, -1] = self._last_controls[:, -1]
        return shifted

    def solve(self, request: OptimizerRequest) -> OptimizerResponse:
        start_time = time.time()
        if self.N < 2:
            return zero_response()

        state = np.asarray(request.state, dtype=float)
        coeffs = np.asarray(request.coeffs, dtype=float)
        if coeffs.size != self.n_coeffs:
            raise ValueError(f"Expected {self.n_coeffs} coefficients, got {coeffs.size}")

        self.opti.set_value(self.X0, state)
        self.opti.set_value(self.C, coeffs)

        U_init = self._initial_controls()
        X_init = rollout(state, U_init[0], U_init[1], coeffs, self.params.dt, self.config.lf)
        self.opti.set_initial(self.U, U_init)
        self.opti.set_initial(self.X, X_init.T)

        try:
            sol = self.opti.solve()
            U_opt = np.asarray(sol.value(self.U)).reshape(NU, -1)
            X_opt = np.asarray(sol.value(self.X)).reshape(NX, -1)
            cost = float(sol.value(self.J))
        except RuntimeError as e:
            # Best iterate so far
            logger.warning("Ipopt did not converge: %s", e)
            U_opt = np.asarray(self.opti.debug.value(self.U)).reshape(NU, -1)
            X_opt = np.asarray(self.opti.debug.value(self.X)).reshape(NX, -1)
            cost = float(self.opti.debug.value(self.J))

        stats = self.opti.stats()
        converged = bool(stats.get('success', False))
        self._last_controls = U_opt

        return OptimizerResponse(
            steering=float(U_opt[0, 0]),
            acceleration=float(U_opt[1, 0]),
            trajectory=X_opt[0:2, 1:].T.copy(),
            converged=converged,
            status=str(stats.get('return_status', 'unknown')),
            iterations=int(stats.get('iter_count', 0)),
            cost=cost,
            solve_time_ms=(time.time() - start_time) * 1000.0,
        )


class KinematicMpcCore(TrajectoryOptimizer):
    """Kinematic bicycle model MPC controller for path tracking."""

    def __init__(self, params: MpcParams, config: Optional[TrackerConfig] = None):
        """
        Initialize Kinematic MPC controller.

        Args:
            params: Startup parameters (horizon, dt, weights)
            config: Vehicle and solver constants
        """
        self.params = params
        self.config = config or TrackerConfig()

        # Choose solver backend
        self.solver_backend = self.config.solver_backend
        if self.solver_backend == 'ipopt':
            self.backend = IpoptKinematicSolver(params, self.config)
        elif self.solver_backend in ('osqp', 'cvxpy'):
            self.backend = KinematicSqpSolver(params, self.config, qp_solver=self.solver_backend)
        else:
            raise ValueError(f"Unknown solver backend: {self.solver_backend}")
        logger.info("Using %s backend for Kinematic MPC (N=%d, dt=%.3f)",
                    self.solver_backend, params.steps_ahead, params.dt)

        # Solver statistics
        self.last_solve_time = 0.0
        self.last_cost = 0.0
        self.last_status = "not_solved"
        self.last_u = np.zeros(NU)

    def reset(self):
        self.backend.reset()
        self.last_u = np.zeros(NU)
        self.last_status = "not_solved"

    def solve(self, request: OptimizerRequest) -> OptimizerResponse:
        """
        Solve MPC optimization problem.

        Args:
            request: Local initial state and reference polynomial

        Returns:
            OptimizerResponse. Backend failures return the last command with
            converged=False.
        """
        start_time = time.time()
        try:
            response = self.backend.solve(request)
        except Exception as e:
            logger.error("%s backend failed: %s", self.solver_backend, e)
            response = OptimizerResponse(
                steering=float(self.last_u[0]),
                acceleration=float(self.last_u[1]),
                converged=False,
                status=f'error_{type(e).__name__}',
                solve_time_ms=(time.time() - start_time) * 1000.0,
            )

        self.last_u = np.array([response.steering, response.acceleration])
        self.last_status = response.status
        self.last_cost = response.cost
        self.last_solve_time = response.solve_time_ms
        return response

    def get_debug_info(self) -> Dict:
        """Latest solver statistics."""
        return {
            'backend': self.solver_backend,
            'solver_status': self.last_status,
            'cost': self.last_cost,
            'solve_time_ms': self.last_solve_time,
            'steering': float(self.last_u[0]),
            'acceleration': float(self.last_u[1]),
        }
