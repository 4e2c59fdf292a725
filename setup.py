#!/usr/bin/env python
from setuptools import setup, find_packages

setup(
    name='mpc_path_tracker',
    version='0.1.0',
    description='Latency-compensated MPC path tracking controller with a kinematic bicycle model',
    packages=find_packages('src'),
    package_dir={'': 'src'},
    install_requires=[
        'numpy>=1.20',
        'scipy>=1.7',
        'casadi>=3.5',
        'osqp>=0.6',
        'cvxpy>=1.2',
        'PyYAML>=5.4',
        'pandas>=1.3',
        'matplotlib>=3.5',
    ],
    extras_require={
        'test': ['pytest>=7'],
    },
    entry_points={
        'console_scripts': [
            'mpc-path-tracker-sim=mpc_path_tracker.cli:main',
        ]
    },
    python_requires='>=3.8',
)
