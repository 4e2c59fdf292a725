"""Command-line interface for the closed-loop path tracking simulation."""

import argparse
import logging
from pathlib import Path
from typing import List, Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .controller_node import MpcControllerNode
from .params import (POSITIONAL_FIELDS, ConfigError, MpcParams, TrackerConfig,
                     load_config, parse_params)
from .simulation import KinematicVehicleSim, SimulationPublisher, circle_path, run_closed_loop

logger = logging.getLogger(__name__)

POSITIONAL_HELP = {
    'steps_ahead': 'Horizon length N (integer >= 1)',
    'dt': 'Horizon step [s] (> 0)',
    'latency': 'Actuation latency [s] (>= 0)',
    'cte_coeff': 'Cross-track error weight (>= 0)',
    'epsi_coeff': 'Heading error weight (>= 0)',
    'speed_coeff': 'Speed error weight (>= 0)',
    'acc_coeff': 'Acceleration weight (>= 0)',
    'steer_coeff': 'Steering weight (>= 0)',
    'consec_acc_coeff': 'Acceleration change weight (>= 0)',
    'consec_steer_coeff': 'Steering change weight (>= 0)',
    'debug': "Publish debug overlays ('true' or 'false')",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='MPC path tracking - closed-loop simulation on a circle')
    for name in POSITIONAL_FIELDS:
        parser.add_argument(name, help=POSITIONAL_HELP[name])

    parser.add_argument('--config', type=str, default=None, help='Tracker constants YAML file')
    parser.add_argument('--log-level', type=str, default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], help='Logging level')

    # Scenario
    parser.add_argument('--steps', type=int, default=500, help='Number of control cycles')
    parser.add_argument('--radius', type=float, default=3.0, help='Circle radius [m]')
    parser.add_argument('--points', type=int, default=120, help='Path points on the circle')
    parser.add_argument('--speed', type=float, default=1.0, help='Initial speed [m/s]')

    # Outputs
    parser.add_argument('--csv', type=str, help='Save per-cycle records to CSV')
    parser.add_argument('--plot', type=str, help='Save the driven path plot to an image file')
    return parser


def parse_args(argv: Optional[Sequence[str]] = None):
    """Parse and validate; exits with usage on any invalid value."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        params = parse_params([getattr(args, name) for name in POSITIONAL_FIELDS])
        config = load_config(args.config)
    except ConfigError as e:
        parser.error(str(e))

    if args.steps < 1:
        parser.error("--steps must be >= 1")
    if args.points < config.min_path_points:
        parser.error(f"--points must be >= {config.min_path_points}")
    return args, params, config


def save_plot(path: np.ndarray, df: pd.DataFrame, filename: str):
    plt.figure(figsize=(6, 6))
    closed = np.vstack((path, path[:1]))
    plt.plot(closed[:, 0], closed[:, 1], 'k--', linewidth=1.0, label='Reference')
    plt.plot(df['x'], df['y'], linewidth=1.2, label='Vehicle')
    plt.axis('equal')
    plt.xlabel('x [m]')
    plt.ylabel('y [m]')
    plt.legend()
    plt.grid(True, alpha=0.3)
    plt.tight_layout()
    plt.savefig(filename, dpi=150)
    plt.close()
    logger.info("Plot saved to %s", filename)


def run_simulation(params: MpcParams, config: TrackerConfig, steps: int, radius: float,
                   num_points: int, speed: float) -> pd.DataFrame:
    """Track a circle starting on it with tangent heading."""
    path = circle_path(radius, num_points)
    sim = KinematicVehicleSim(x=radius, y=0.0, psi=np.pi / 2.0, v=speed, lf=config.lf,
                              delay=params.latency, steer_limit=config.steer_limit,
                              accel_limit=config.accel_limit)
    publisher = SimulationPublisher(sim, config.steering_center_offset)
    node = MpcControllerNode(params, publisher, config=config)
    node.store.update_path(path)
    return run_closed_loop(node, sim, steps, dt=params.dt)


def main(argv: Optional[List[str]] = None):
    args, params, config = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level),
                        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s')

    df = run_simulation(params, config, args.steps, args.radius, args.points, args.speed)

    solved = df[df['status'] == 'solved']
    logger.info("Cycles: %d (solved %d), |cte| max %.3f m, path distance max %.3f m",
                len(df), len(solved), df['cte'].abs().max(), df['path_distance'].max())

    if args.csv:
        Path(args.csv).parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(args.csv, index=False)
        logger.info("Records saved to %s", args.csv)
    if args.plot:
        save_plot(circle_path(args.radius, args.points), df, args.plot)
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
