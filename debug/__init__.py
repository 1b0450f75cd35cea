"""Debug module for constraint verification and visualization.

Provides tools for debugging mechanism models:
- check_constraint_jacobians: Finite-difference check of constraint derivatives
- plot_coordinate_trajectories: Generalized coordinates over time
- plot_energy: Kinetic/potential energy and drift
- plot_mechanism_snapshot: Draw the bodies at the current configuration
"""

from debug.jacobian_check import (
    JacobianCheckReport,
    check_constraint_jacobians,
    numeric_phi_q,
    numeric_dot_phi_q,
    numeric_dphiqdq_dq,
)
from debug.plotting import (
    plot_coordinate_trajectories,
    plot_energy,
    plot_mechanism_snapshot,
)

__all__ = [
    'JacobianCheckReport',
    'check_constraint_jacobians',
    'numeric_phi_q',
    'numeric_dot_phi_q',
    'numeric_dphiqdq_dq',
    'plot_coordinate_trajectories',
    'plot_energy',
    'plot_mechanism_snapshot',
]
