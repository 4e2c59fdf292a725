#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""MPC path tracking package."""

from .actuation import ActuationMapper, CommandPublisher, Overlay
from .controller_node import CycleResult, CycleStatus, MpcControllerNode
from .kinematic_model import OptimizerRequest, OptimizerResponse, TrajectoryOptimizer
from .kinematic_mpc_core import KinematicMpcCore
from .latency import ControlCommand, PredictedState, predict_state
from .params import ConfigError, CostWeights, MpcParams, TrackerConfig
from .path_processor import FittedCurve, LocalPathFitter
from .telemetry import TelemetrySnapshot, TelemetryStore

__all__ = [
    'ActuationMapper',
    'CommandPublisher',
    'ConfigError',
    'ControlCommand',
    'CostWeights',
    'CycleResult',
    'CycleStatus',
    'FittedCurve',
    'KinematicMpcCore',
    'LocalPathFitter',
    'MpcControllerNode',
    'MpcParams',
    'OptimizerRequest',
    'OptimizerResponse',
    'Overlay',
    'PredictedState',
    'TelemetrySnapshot',
    'TelemetryStore',
    'TrackerConfig',
    'TrajectoryOptimizer',
    'predict_state',
]
