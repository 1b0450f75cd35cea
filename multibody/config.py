"""Solver and simulation configuration parameters.

Single source of truth for kinematic solver and forward-dynamics settings.
See config/solver_params.yaml for parameter values.
"""

from dataclasses import dataclass
from typing import Tuple

import numpy as np
import yaml

from multibody._internal.validation import (
    validate_positive,
    validate_positive_integer,
    validate_non_negative,
    validate_choice,
)


INTEGRATOR_NAMES = ('euler', 'rk4', 'trapezoidal')
DYNAMICS_SOLVER_NAMES = ('lagrange_dense', 'lagrange_sparse', 'r_matrix_dense')


@dataclass(frozen=True)
class ComputeDependentParams:
    """Parameters for the position/velocity/acceleration problems.

    Attributes:
        nr_tolerance: Newton-Raphson stops once ||Phi(q)|| falls below this
        nr_max_iterations: Iteration cap of the Newton-Raphson loop
        nr_damping: Step scaling factor in (0, 1]
        singular_tolerance: Relative singular value below which the
            dependent-coordinate Jacobian is considered rank deficient
    """
    nr_tolerance: float = 1e-10
    nr_max_iterations: int = 30
    nr_damping: float = 1.0
    singular_tolerance: float = 1e-12

    def __post_init__(self) -> None:
        """Validate parameters."""
        validate_positive(self.nr_tolerance, 'nr_tolerance')
        validate_positive_integer(self.nr_max_iterations, 'nr_max_iterations')
        validate_positive(self.nr_damping, 'nr_damping')
        if self.nr_damping > 1.0:
            raise ValueError(
                f"nr_damping must be in (0, 1], got {self.nr_damping}"
            )
        validate_positive(self.singular_tolerance, 'singular_tolerance')

    @classmethod
    def from_yaml(cls, yaml_path: str) -> 'ComputeDependentParams':
        """Load parameters from the `compute_dependent` section of a YAML file.

        Args:
            yaml_path: Path to YAML file containing solver parameters

        Returns:
            ComputeDependentParams instance

        Raises:
            FileNotFoundError: If YAML file does not exist
            ValueError: If parameters are invalid
        """
        with open(yaml_path, 'r') as file:
            config = yaml.safe_load(file)

        return cls(**config.get('compute_dependent', {}))


@dataclass(frozen=True)
class SimulationParams:
    """Forward-dynamics integration settings.

    Attributes:
        time_step_s: Fixed integration step
        integrator: One of INTEGRATOR_NAMES
        dynamics_solver: One of DYNAMICS_SOLVER_NAMES
        gravity_mps2: Gravity vector (gx, gy)
        baumgarte_alpha: Velocity-level stabilization gain (0 = off)
        baumgarte_beta: Position-level stabilization gain (0 = off)
        trapezoidal_iterations: Corrector passes of the trapezoidal rule
    """
    time_step_s: float = 1e-3
    integrator: str = 'rk4'
    dynamics_solver: str = 'lagrange_dense'
    gravity_mps2: Tuple[float, float] = (0.0, -9.81)
    baumgarte_alpha: float = 0.0
    baumgarte_beta: float = 0.0
    trapezoidal_iterations: int = 2

    def __post_init__(self) -> None:
        """Validate parameters."""
        validate_positive(self.time_step_s, 'time_step_s')
        validate_choice(self.integrator, INTEGRATOR_NAMES, 'integrator')
        validate_choice(
            self.dynamics_solver, DYNAMICS_SOLVER_NAMES, 'dynamics_solver'
        )
        if len(self.gravity_mps2) != 2:
            raise ValueError(
                f"gravity_mps2 must have 2 components, got {self.gravity_mps2}"
            )
        validate_non_negative(self.baumgarte_alpha, 'baumgarte_alpha')
        validate_non_negative(self.baumgarte_beta, 'baumgarte_beta')
        validate_positive_integer(
            self.trapezoidal_iterations, 'trapezoidal_iterations'
        )

    @classmethod
    def from_yaml(cls, yaml_path: str) -> 'SimulationParams':
        """Load parameters from the `simulation` section of a YAML file.

        Raises:
            FileNotFoundError: If YAML file does not exist
            ValueError: If parameters are invalid
        """
        with open(yaml_path, 'r') as file:
            config = yaml.safe_load(file)

        section = dict(config.get('simulation', {}))
        # Convert lists to tuples for immutability
        if 'gravity_mps2' in section:
            section['gravity_mps2'] = tuple(section['gravity_mps2'])
        return cls(**section)

    @property
    def gravity_vector(self) -> np.ndarray:
        """Gravity as a (2,) array."""
        return np.array(self.gravity_mps2, dtype=float)
