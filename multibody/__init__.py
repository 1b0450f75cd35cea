"""Planar multibody dynamics in natural (fully Cartesian) coordinates.

This module provides the assembled constraint/dynamics evaluation engine
used to drive a trajectory optimizer towards physically consistent motion.

Public API:
    - ModelDefinition: Mechanism description (points, bodies, constraints)
    - AssembledModel: Numeric model with q, dq, ddq, Phi and Jacobians
    - Body, RenderParams: Rigid body parameters
    - ConstantDistance, FixedSlider, MobileSlider, RelativeAngle,
      RelativeAngleAbsolute: Constraint variants
    - ComputeDependentParams, SimulationParams: Configuration dataclasses
    - LagrangeDenseSimulator, LagrangeSparseSimulator,
      RMatrixDenseSimulator, build_simulator: Forward dynamics
    - ConstraintsFactor, ConstraintsVelFactor, DynamicsFactor,
      TrapezoidalIntegrationFactor: Residual factors for optimizers
    - TrajectoryRecorder, save_trajectory_txt, load_trajectory_txt
"""

from multibody.points import Point, PointRef
from multibody.body import Body, RenderParams
from multibody.constraints import (
    Constraint,
    ConstantDistance,
    FixedSlider,
    MobileSlider,
    RelativeAngle,
    RelativeAngleAbsolute,
    constraint_from_dict,
)
from multibody.config import ComputeDependentParams, SimulationParams
from multibody.assembled_model import (
    AssembledModel,
    BodySegment,
    ComputeDependentResults,
    KinematicState,
    SolverStatus,
)
from multibody.model_definition import ModelDefinition
from multibody.dynamics import (
    DynamicSimulator,
    DynamicsSolution,
    DynamicsStatus,
    LagrangeDenseSimulator,
    LagrangeSparseSimulator,
    RMatrixDenseSimulator,
    SimulationResult,
    build_simulator,
)
from multibody.factors import (
    FactorResult,
    ConstraintsFactor,
    ConstraintsVelFactor,
    DynamicsFactor,
    TrapezoidalIntegrationFactor,
)
from multibody.trajectory_io import (
    TrajectoryRecorder,
    save_trajectory_txt,
    load_trajectory_txt,
)

__all__ = [
    'Point',
    'PointRef',
    'Body',
    'RenderParams',
    'Constraint',
    'ConstantDistance',
    'FixedSlider',
    'MobileSlider',
    'RelativeAngle',
    'RelativeAngleAbsolute',
    'constraint_from_dict',
    'ComputeDependentParams',
    'SimulationParams',
    'AssembledModel',
    'BodySegment',
    'ComputeDependentResults',
    'KinematicState',
    'SolverStatus',
    'ModelDefinition',
    'DynamicSimulator',
    'DynamicsSolution',
    'DynamicsStatus',
    'LagrangeDenseSimulator',
    'LagrangeSparseSimulator',
    'RMatrixDenseSimulator',
    'SimulationResult',
    'build_simulator',
    'FactorResult',
    'ConstraintsFactor',
    'ConstraintsVelFactor',
    'DynamicsFactor',
    'TrapezoidalIntegrationFactor',
    'TrajectoryRecorder',
    'save_trajectory_txt',
    'load_trajectory_txt',
]
