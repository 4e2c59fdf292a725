#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
MPC Path Tracking Controller Node

Runs the control pipeline at a fixed rate:
telemetry snapshot -> latency compensation -> local path fit ->
tracking errors -> trajectory optimization -> actuation.

The node is transport agnostic. Telemetry arrives through a TelemetryStore
and commands leave through a CommandPublisher.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

import numpy as np

from .actuation import ActuationMapper, CommandPublisher, build_overlays
from .kinematic_model import OptimizerRequest, OptimizerResponse, TrajectoryOptimizer
from .kinematic_mpc_core import KinematicMpcCore
from .latency import ControlCommand, PredictedState, predict_state
from .params import MpcParams, TrackerConfig
from .path_processor import FittedCurve, LocalPathFitter, calculate_errors
from .telemetry import TelemetryStore

logger = logging.getLogger(__name__)


class CycleStatus(Enum):
    MISSING_INPUT = 'missing_input'
    FIT_FAILED = 'fit_failed'
    SOLVED = 'solved'
    NOT_CONVERGED = 'not_converged'


@dataclass
class CycleResult:
    """Outcome of one control cycle."""
    status: CycleStatus
    missing: List[str] = field(default_factory=list)
    prediction: Optional[PredictedState] = None
    curve: Optional[FittedCurve] = None
    cte: float = 0.0
    epsi: float = 0.0
    response: Optional[OptimizerResponse] = None
    steering_output: Optional[float] = None
    cycle_time_ms: float = 0.0
    period_ms: float = 0.0


class TrackingMetrics:
    """Rolling tracking statistics, summarized every `window` samples."""

    def __init__(self, window: int = 100):
        self.window = max(1, int(window))
        self.buffer = {
            'cross_track_errors': [],
            'heading_errors': [],
            'steering_commands': [],
            'solver_times': [],
        }
        self.last_summary: Dict[str, float] = {}

    def update(self, cte: float, epsi: float, steering: float,
               solve_time_ms: float) -> Optional[Dict[str, float]]:
        """Add one sample; returns the summary when the window is full."""
        self.buffer['cross_track_errors'].append(cte)
        self.buffer['heading_errors'].append(epsi)
        self.buffer['steering_commands'].append(steering)
        self.buffer['solver_times'].append(solve_time_ms)

        if len(self.buffer['cross_track_errors']) < self.window:
            return None

        summary = self.summary()
        logger.info("Tracking: cte_rmse=%.3f m, cte_max=%.3f m, epsi_rmse=%.3f rad, "
                    "steer_smoothness=%.4f, avg_solve=%.1f ms",
                    summary['cte_rmse'], summary['cte_max'], summary['epsi_rmse'],
                    summary['steering_smoothness'], summary['avg_solve_time_ms'])
        self.last_summary = summary
        self.buffer = {k: [] for k in self.buffer}
        return summary

    def summary(self) -> Dict[str, float]:
        cte = np.asarray(self.buffer['cross_track_errors'], dtype=float)
        epsi = np.asarray(self.buffer['heading_errors'], dtype=float)
        steering = np.asarray(self.buffer['steering_commands'], dtype=float)
        solve = np.asarray(self.buffer['solver_times'], dtype=float)
        if cte.size == 0:
            return {}
        return {
            'samples': float(cte.size),
            'cte_rmse': float(np.sqrt(np.mean(np.square(cte)))),
            'cte_max': float(np.max(np.abs(cte))),
            'epsi_rmse': float(np.sqrt(np.mean(np.square(epsi)))),
            'steering_smoothness': float(np.std(np.diff(steering))) if steering.size > 1 else 0.0,
            'avg_solve_time_ms': float(np.mean(solve)),
        }


class MpcControllerNode:
    """Fixed-rate MPC path tracking loop."""

    def __init__(self, params: MpcParams, publisher: CommandPublisher,
                 config: Optional[TrackerConfig] = None,
                 store: Optional[TelemetryStore] = None,
                 optimizer: Optional[TrajectoryOptimizer] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize controller node.

        Args:
            params: Startup parameters
            publisher: Output channel for commands and overlays
            config: Vehicle, window and solver constants
            store: Telemetry source; a new store is created when None
            optimizer: Trajectory optimizer; KinematicMpcCore when None
            clock: Monotonic time source in seconds
            sleep: Sleep function used by spin()
        """
        self.params = params
        self.config = config or TrackerConfig()
        self.publisher = publisher
        self.store = store or TelemetryStore(
            min_path_points=self.config.min_path_points,
            max_age=self.config.max_telemetry_age,
        )
        self.optimizer = optimizer or KinematicMpcCore(params, self.config)
        self.fitter = LocalPathFitter(
            num_steps_back=self.config.num_steps_back,
            num_steps_poly=self.config.num_steps_poly,
            step_poly=self.config.step_poly,
            poly_degree=self.config.poly_degree,
            x_delta_min=self.config.x_delta_min,
        )
        self.mapper = ActuationMapper(self.config.steering_center_offset)
        self.metrics = TrackingMetrics(self.config.metrics_window)

        self._clock = clock
        self._sleep = sleep

        # Last applied actuators in optimizer units
        self.command = ControlCommand()
        self.cycle_count = 0
        self._last_cycle_start: Optional[float] = None

    def run_cycle(self) -> CycleResult:
        """Execute the control pipeline once."""
        loop_t0 = self._clock()
        period_ms = 0.0
        if self._last_cycle_start is not None:
            period_ms = (loop_t0 - self._last_cycle_start) * 1000.0
        self._last_cycle_start = loop_t0
        self.cycle_count += 1

        snapshot = self.store.snapshot()
        if not snapshot.is_ready:
            logger.warning("No optimization, path_ok: %s, pose_ok: %s, speed_ok: %s, psi_ok: %s",
                           snapshot.path_ok, snapshot.pose_ok, snapshot.speed_ok, snapshot.psi_ok)
            return CycleResult(status=CycleStatus.MISSING_INPUT, missing=snapshot.missing(),
                               period_ms=period_ms)

        prediction = predict_state(snapshot.x, snapshot.y, snapshot.psi, snapshot.speed,
                                   self.command, self.params.latency, self.config.lf)

        try:
            curve = self.fitter.fit(snapshot.path, prediction)
        except (ValueError, np.linalg.LinAlgError) as e:
            logger.error("Path fit failed: %s", e)
            return CycleResult(status=CycleStatus.FIT_FAILED, prediction=prediction,
                               period_ms=period_ms,
                               cycle_time_ms=(self._clock() - loop_t0) * 1000.0)

        cte, epsi = calculate_errors(curve.coeffs)
        logger.debug("Coeffs: %s", np.array2string(curve.coeffs, precision=4))
        logger.debug("CTE: %.4f, ePsi: %.4f", cte, epsi)

        request = OptimizerRequest.from_errors(prediction.v, cte, epsi, curve.coeffs)
        response = self.optimizer.solve(request)
        if response.converged:
            status = CycleStatus.SOLVED
        else:
            status = CycleStatus.NOT_CONVERGED
            logger.warning("Optimizer did not converge (%s), publishing best iterate",
                           response.status)

        steering_output = self.mapper.steering_command(response.steering)
        self.publisher.publish_steering(steering_output)
        if self.config.publish_acceleration:
            self.publisher.publish_acceleration(response.acceleration)

        # Latency compensation uses the radian steering
        self.command = ControlCommand(steering=response.steering, throttle=response.acceleration)

        if self.params.debug:
            for overlay in build_overlays(curve.local_points, response.trajectory, curve.coeffs,
                                          prediction.x, prediction.y, prediction.psi,
                                          self.config.poly_sample_step,
                                          self.config.poly_sample_max):
                self.publisher.publish_overlay(overlay)

        self.metrics.update(cte, epsi, response.steering, response.solve_time_ms)

        cycle_time_ms = (self._clock() - loop_t0) * 1000.0
        logger.debug("Steer: %.4f rad (cmd %.4f), throttle: %.4f", response.steering,
                     steering_output, response.acceleration)
        logger.debug("dt_bet_cb: %.2f ms, dt_in_cb: %.2f ms", period_ms, cycle_time_ms)

        return CycleResult(
            status=status,
            prediction=prediction,
            curve=curve,
            cte=cte,
            epsi=epsi,
            response=response,
            steering_output=steering_output,
            cycle_time_ms=cycle_time_ms,
            period_ms=period_ms,
        )

    def spin(self, should_continue: Optional[Callable[[], bool]] = None,
             max_cycles: Optional[int] = None) -> int:
        """
        Run cycles at loop_rate_hz.

        Args:
            should_continue: Checked before each cycle; runs forever when None
            max_cycles: Stop after this many cycles

        Returns:
            Number of cycles executed
        """
        period = 1.0 / self.config.loop_rate_hz
        cycles = 0
        logger.info("Control loop started at %.1f Hz", self.config.loop_rate_hz)

        while should_continue is None or should_continue():
            t0 = self._clock()
            self.run_cycle()
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            remaining = period - (self._clock() - t0)
            if remaining > 0:
                self._sleep(remaining)

        logger.info("Control loop stopped after %d cycles", cycles)
        return cycles
