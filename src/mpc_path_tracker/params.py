#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Controller Parameters

Startup parameters (horizon, timing, cost weights, debug flag) come from the
positional command line. Vehicle, window and solver constants come from a
YAML file merged over the dataclass defaults.
"""

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Dict, Optional, Sequence, Union

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / 'config' / 'mpc_tracker.yaml'

POSITIONAL_FIELDS = (
    'steps_ahead',
    'dt',
    'latency',
    'cte_coeff',
    'epsi_coeff',
    'speed_coeff',
    'acc_coeff',
    'steer_coeff',
    'consec_acc_coeff',
    'consec_steer_coeff',
    'debug',
)

SOLVER_BACKENDS = ('ipopt', 'osqp', 'cvxpy')


class ConfigError(ValueError):
    """Invalid startup or YAML configuration value."""


@dataclass(frozen=True)
class CostWeights:
    """Penalty weights of the tracking cost."""
    cte: float = 1.0
    epsi: float = 1.0
    speed: float = 1.0
    acc: float = 1.0
    steer: float = 1.0
    consec_acc: float = 1.0
    consec_steer: float = 1.0


@dataclass(frozen=True)
class MpcParams:
    """Startup parameters of the controller."""
    steps_ahead: int
    dt: float
    latency: float
    weights: CostWeights
    debug: bool = False


@dataclass(frozen=True)
class TrackerConfig:
    """Vehicle, path window and solver constants."""
    # Vehicle
    lf: float = 0.325                      # center of mass to front axle [m]
    steering_center_offset: float = 0.5    # actuator value for straight wheels
    ref_v: float = 1.0                     # reference speed [m/s]
    steer_limit: float = 0.436332          # 25 deg [rad]
    accel_limit: float = 1.0               # [m/s^2]

    # Path window
    num_steps_back: int = 2
    num_steps_poly: int = 10
    step_poly: int = 2
    poly_degree: int = 3
    x_delta_min: float = 0.05
    min_path_points: int = 4

    # Loop
    loop_rate_hz: float = 100.0
    max_telemetry_age: Optional[float] = None
    metrics_window: int = 100

    # Solver
    solver_backend: str = 'ipopt'
    max_iter: int = 100
    max_cpu_time: float = 0.5
    tolerance: float = 1e-6

    # Outputs
    publish_acceleration: bool = False
    poly_sample_step: float = 0.2
    poly_sample_max: float = 2.0

    def validate(self):
        """Raise ConfigError on out-of-range constants."""
        if self.lf <= 0:
            raise ConfigError(f"lf must be > 0, got {self.lf}")
        if self.steer_limit <= 0 or self.accel_limit <= 0:
            raise ConfigError("steer_limit and accel_limit must be > 0")
        if self.poly_degree < 1:
            raise ConfigError(f"poly_degree must be >= 1, got {self.poly_degree}")
        if self.num_steps_poly < self.poly_degree + 1:
            raise ConfigError(
                f"num_steps_poly ({self.num_steps_poly}) must exceed poly_degree ({self.poly_degree})")
        if self.step_poly < 1:
            raise ConfigError(f"step_poly must be >= 1, got {self.step_poly}")
        if self.min_path_points < 1:
            raise ConfigError(f"min_path_points must be >= 1, got {self.min_path_points}")
        if self.loop_rate_hz <= 0:
            raise ConfigError(f"loop_rate_hz must be > 0, got {self.loop_rate_hz}")
        if self.max_telemetry_age is not None and self.max_telemetry_age <= 0:
            raise ConfigError("max_telemetry_age must be > 0 or null")
        if self.solver_backend not in SOLVER_BACKENDS:
            raise ConfigError(
                f"solver_backend must be one of {', '.join(SOLVER_BACKENDS)}, got '{self.solver_backend}'")
        if self.max_iter < 1:
            raise ConfigError(f"max_iter must be >= 1, got {self.max_iter}")
        return self


def load_config(path: Optional[Union[str, Path]] = None,
                overrides: Optional[Dict] = None) -> TrackerConfig:
    """
    Load tracker constants from YAML.

    Args:
        path: YAML file; config/mpc_tracker.yaml of the source tree is used
            when None, or the dataclass defaults when that file is absent
        overrides: Extra values applied after the file

    Returns:
        Validated TrackerConfig
    """
    values: Dict = {}
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH

    if config_path.exists():
        with open(config_path, 'r', encoding='utf-8') as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Config file must hold a mapping: {config_path}")
        values.update(loaded)
        logger.debug("Loaded tracker config from %s", config_path)
    elif path is not None:
        raise ConfigError(f"Config file not found: {config_path}")
    else:
        logger.info("No tracker config at %s, using built-in defaults", config_path)

    if overrides:
        values.update(overrides)

    types = {f.name: f.type for f in fields(TrackerConfig)}
    unknown = sorted(set(values) - set(types))
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")

    checked = {name: _check_type(name, types[name], value) for name, value in values.items()}
    return TrackerConfig(**checked).validate()


def _check_type(name: str, field_type, value):
    """Return value as field_type or raise ConfigError."""
    if field_type == Optional[float]:
        if value is None:
            return None
        field_type = float

    # bool is an int subclass; accept it only for bool fields
    if field_type is bool:
        if isinstance(value, bool):
            return value
    elif field_type is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    elif field_type is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif field_type is str:
        if isinstance(value, str):
            return value

    type_name = getattr(field_type, '__name__', str(field_type))
    raise ConfigError(f"{name} must be of type {type_name}, got {value!r}")


def _parse_int(name: str, text: str, minimum: int) -> int:
    try:
        value = int(text)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got '{text}'") from None
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _parse_float(name: str, text: str, strictly_positive: bool = False) -> float:
    try:
        value = float(text)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got '{text}'") from None
    if value != value or value in (float('inf'), float('-inf')):
        raise ConfigError(f"{name} must be finite, got '{text}'")
    if strictly_positive and value <= 0:
        raise ConfigError(f"{name} must be > 0, got {value}")
    if not strictly_positive and value < 0:
        raise ConfigError(f"{name} must be >= 0, got {value}")
    return value


def _parse_bool(name: str, text: str) -> bool:
    if text == 'true':
        return True
    if text == 'false':
        return False
    raise ConfigError(f"{name} must be 'true' or 'false', got '{text}'")


def parse_params(values: Sequence[str]) -> MpcParams:
    """
    Build MpcParams from the positional startup strings.

    Args:
        values: Strings in POSITIONAL_FIELDS order

    Returns:
        Validated MpcParams
    """
    if len(values) != len(POSITIONAL_FIELDS):
        raise ConfigError(
            f"Expected {len(POSITIONAL_FIELDS)} values ({' '.join(POSITIONAL_FIELDS)}), "
            f"got {len(values)}")

    raw = dict(zip(POSITIONAL_FIELDS, values))

    weights = CostWeights(
        cte=_parse_float('cte_coeff', raw['cte_coeff']),
        epsi=_parse_float('epsi_coeff', raw['epsi_coeff']),
        speed=_parse_float('speed_coeff', raw['speed_coeff']),
        acc=_parse_float('acc_coeff', raw['acc_coeff']),
        steer=_parse_float('steer_coeff', raw['steer_coeff']),
        consec_acc=_parse_float('consec_acc_coeff', raw['consec_acc_coeff']),
        consec_steer=_parse_float('consec_steer_coeff', raw['consec_steer_coeff']),
    )
    params = MpcParams(
        steps_ahead=_parse_int('steps_ahead', raw['steps_ahead'], 1),
        dt=_parse_float('dt', raw['dt'], strictly_positive=True),
        latency=_parse_float('latency', raw['latency']),
        weights=weights,
        debug=_parse_bool('debug', raw['debug']),
    )

    if params.latency > 1.0:
        logger.warning("Latency is %.3f s, which is longer than one second", params.latency)

    return params
