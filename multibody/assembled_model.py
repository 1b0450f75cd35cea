"""Assembled rigid multibody model in natural coordinates.

Owns the generalized coordinate vectors q, dq, ddq, the constraint residuals
and the fixed-pattern sparse Jacobians. Constraints read the state and
write into these buffers during update_numeric_phi_and_jacobians(), the
single synchronization point between state and derived quantities.

An AssembledModel is not reentrant: every evaluation mutates its shared
buffers. Use one instance per thread (see clone()).
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple

import numpy as np
import scipy.linalg
import scipy.sparse

from multibody.body import Body, RenderParams
from multibody.config import ComputeDependentParams
from multibody.constraints import ConstantDistance, Constraint
from multibody.points import Point, PointRef, assign_point_dofs
from multibody.sparse import SparseTripletArena
from multibody._internal.validation import (
    validate_point_index,
    validate_vector,
)

if TYPE_CHECKING:
    from multibody.model_definition import ModelDefinition


logger = logging.getLogger(__name__)

DEFAULT_GRAVITY_MPS2 = (0.0, -9.81)


class KinematicState(Enum):
    """How far the current (q, dq, ddq) has been made consistent."""

    UNINITIALIZED = 0
    POSITION_CONSISTENT = 1
    VELOCITY_CONSISTENT = 2
    ACCELERATION_CONSISTENT = 3


class SolverStatus(Enum):
    """Outcome of the position problem."""

    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    SINGULAR_JACOBIAN = "singular_jacobian"


@dataclass(frozen=True)
class ComputeDependentResults:
    """Diagnostics of compute_dependent_pos_vel_acc().

    Attributes:
        pos_final_phi: ||Phi(q)|| after the position problem
        pos_iterations: Newton-Raphson iterations performed
        status: Position problem outcome
        velocity_solved: Whether dependent velocities were recomputed
        velocity_singular: Rank deficiency detected in the velocity solve
        acceleration_singular: Rank deficiency detected in the acceleration solve
    """
    pos_final_phi: float
    pos_iterations: int
    status: SolverStatus
    velocity_solved: bool = False
    velocity_singular: bool = False
    acceleration_singular: bool = False

    @property
    def converged(self) -> bool:
        return self.status is SolverStatus.CONVERGED


@dataclass(frozen=True)
class BodySegment:
    """Read-only geometry of one body for rendering/reporting layers."""
    name: str
    point0: Tuple[float, float]
    point1: Tuple[float, float]
    point0_fixed: bool
    point1_fixed: bool
    render_params: RenderParams


def solve_dependent_system(
    matrix: np.ndarray,
    rhs: np.ndarray,
    singular_tolerance: float,
) -> Tuple[np.ndarray, bool]:
    """Least-squares/minimum-norm solve with rank-deficiency detection.

    Args:
        matrix: Dense system matrix (m, k)
        rhs: Right-hand side (m,)
        singular_tolerance: Relative singular value cut-off

    Returns:
        (solution, singular) where singular is True if the matrix rank is
        below min(m, k)
    """
    if matrix.size == 0:
        return np.zeros(matrix.shape[1]), False

    solution, _, rank, _ = scipy.linalg.lstsq(
        matrix, rhs, cond=singular_tolerance
    )
    singular = rank < min(matrix.shape)
    return solution, singular


class AssembledModel:
    """Numeric multibody model built from a ModelDefinition.

    Attributes:
        points: Point definitions (positions of fixed points are used)
        points_to_dofs: (dof_x, dof_y) of each point, None for fixed ones
        bodies: Rigid bodies
        constraints: All constraints (body rigidity first)
        q, dotq, ddotq: Generalized coordinates and derivatives (n,)
        phi, dot_phi: Constraint residuals and their time derivative (m,)
        gravity: Gravity vector (2,)
    """

    def __init__(self, definition: 'ModelDefinition') -> None:
        if not definition.points:
            raise ValueError("Cannot assemble a model without points")

        self.points: List[Point] = [
            Point(p.x, p.y, p.fixed) for p in definition.points
        ]
        self.points_to_dofs, point_dofs = assign_point_dofs(self.points)

        self.relative_coordinate_names: List[str] = [
            name for name, _ in definition.relative_coordinates
        ]
        self._first_relative_dof = point_dofs
        n = point_dofs + len(definition.relative_coordinates)
        if n == 0:
            raise ValueError(
                "Empty state vector: every point is fixed and there are no "
                "relative coordinates"
            )

        self.q = np.zeros(n)
        self.dotq = np.zeros(n)
        self.ddotq = np.zeros(n)
        for point, dofs in zip(self.points, self.points_to_dofs):
            if dofs is not None:
                self.q[dofs[0]] = point.x
                self.q[dofs[1]] = point.y
        for k, (_, initial_value) in enumerate(definition.relative_coordinates):
            self.q[point_dofs + k] = initial_value

        self.gravity = np.array(definition.gravity, dtype=float)
        self.bodies: List[Body] = [body.copy() for body in definition.bodies]
        for body in self.bodies:
            body.lock_length()
        self.external_forces: Dict[int, np.ndarray] = {}
        self.kinematic_state = KinematicState.UNINITIALIZED

        for body in self.bodies:
            for index in body.points:
                validate_point_index(index, len(self.points))

        self.phi_q_arena = SparseTripletArena('Phi_q')
        self.dot_phi_q_arena = SparseTripletArena('dotPhi_q')
        self.dphiqdq_dq_arena = SparseTripletArena('dPhiqdq_dq')
        self._num_rows = 0

        constraints: List[Constraint] = [
            ConstantDistance(body.points[0], body.points[1], body.length)
            for body in self.bodies
        ]
        constraints.extend(c.clone() for c in definition.constraints)

        self.constraints: List[Constraint] = []
        for constraint in constraints:
            for index in constraint.point_indices:
                validate_point_index(index, len(self.points))
            for coordinate in constraint.relative_coordinates():
                self.relative_coordinate_dof(coordinate)
            constraint.declare_sparsity(self)
            self.constraints.append(constraint)

        m = self._num_rows
        if m > n:
            raise ValueError(
                f"Over-constrained model: {m} constraint equations for "
                f"{n} coordinates"
            )

        self.phi = np.zeros(m)
        self.dot_phi = np.zeros(m)
        for arena in (self.phi_q_arena, self.dot_phi_q_arena,
                      self.dphiqdq_dq_arena):
            arena.freeze(m, n)

        self.update_numeric_phi_and_jacobians()
        logger.info(
            "Assembled model: %d points (%d fixed), %d bodies, "
            "n=%d coordinates, m=%d constraint equations",
            len(self.points),
            sum(1 for p in self.points if p.fixed),
            len(self.bodies),
            n,
            m,
        )

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    @property
    def num_coordinates(self) -> int:
        return self.q.shape[0]

    @property
    def num_constraints(self) -> int:
        return self.phi.shape[0]

    def allocate_constraint_rows(self, count: int) -> Tuple[int, ...]:
        """Reserve `count` consecutive rows of Phi (assembly only)."""
        rows = tuple(range(self._num_rows, self._num_rows + count))
        self._num_rows += count
        return rows

    def relative_coordinate_dof(self, coordinate: int) -> int:
        """Index in q of the given relative coordinate.

        Raises:
            ValueError: If the relative coordinate does not exist
        """
        if not 0 <= coordinate < len(self.relative_coordinate_names):
            raise ValueError(
                f"Relative coordinate {coordinate} does not exist; model has "
                f"{len(self.relative_coordinate_names)}"
            )
        return self._first_relative_dof + coordinate

    def point_ref(self, index: int) -> PointRef:
        """Position/velocity/acceleration view of a point."""
        validate_point_index(index, len(self.points))
        return PointRef(self, index)

    def point_position(self, index: int) -> np.ndarray:
        point = self.point_ref(index)
        return np.array([point.x, point.y])

    def coordinate_labels(self) -> List[str]:
        """Human-readable name of each generalized coordinate."""
        labels = [''] * self.num_coordinates
        for index, dofs in enumerate(self.points_to_dofs):
            if dofs is not None:
                labels[dofs[0]] = f'x{index}'
                labels[dofs[1]] = f'y{index}'
        for k, name in enumerate(self.relative_coordinate_names):
            labels[self._first_relative_dof + k] = name
        return labels

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def invalidate_kinematic_state(self) -> None:
        """Mark q as externally modified."""
        self.kinematic_state = KinematicState.UNINITIALIZED

    def set_q(self, q: np.ndarray) -> None:
        """Overwrite q in place; the model must be made consistent again."""
        q = np.asarray(q, dtype=float)
        validate_vector(q, self.num_coordinates, 'q')
        self.q[:] = q
        self.invalidate_kinematic_state()

    def set_dotq(self, dotq: np.ndarray) -> None:
        dotq = np.asarray(dotq, dtype=float)
        validate_vector(dotq, self.num_coordinates, 'dotq')
        self.dotq[:] = dotq
        if self.kinematic_state.value > KinematicState.POSITION_CONSISTENT.value:
            self.kinematic_state = KinematicState.POSITION_CONSISTENT

    def set_ddotq(self, ddotq: np.ndarray) -> None:
        ddotq = np.asarray(ddotq, dtype=float)
        validate_vector(ddotq, self.num_coordinates, 'ddotq')
        self.ddotq[:] = ddotq
        if self.kinematic_state is KinematicState.ACCELERATION_CONSISTENT:
            self.kinematic_state = KinematicState.VELOCITY_CONSISTENT

    def copy_state(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Snapshot (q, dotq, ddotq) as independent copies."""
        return self.q.copy(), self.dotq.copy(), self.ddotq.copy()

    def set_gravity(self, gx: float, gy: float) -> None:
        self.gravity = np.array([gx, gy], dtype=float)

    def add_external_force(self, point_index: int, force: Sequence[float]) -> None:
        """Apply a constant external force (Fx, Fy) at a point.

        Raises:
            ValueError: If the point is fixed
        """
        validate_point_index(point_index, len(self.points))
        if self.points_to_dofs[point_index] is None:
            raise ValueError(
                f"Cannot apply a force on fixed point {point_index}"
            )
        force = np.asarray(force, dtype=float)
        if force.shape != (2,):
            raise ValueError(f"Force must have 2 components, got {force}")
        self.external_forces[point_index] = (
            self.external_forces.get(point_index, np.zeros(2)) + force
        )

    def clear_external_forces(self) -> None:
        self.external_forces.clear()

    # ------------------------------------------------------------------
    # Constraint evaluation
    # ------------------------------------------------------------------

    def update_numeric_phi_and_jacobians(self) -> None:
        """Recompute Phi, dotPhi, Phi_q, dotPhi_q and dPhiqdq_dq from (q, dq).

        Must be called whenever q or dq change, before reading any of them.
        """
        for constraint in self.constraints:
            constraint.update(self)

    @property
    def phi_q(self) -> scipy.sparse.csr_matrix:
        """Constraint Jacobian Phi_q (m, n) as a sparse matrix."""
        return self.phi_q_arena.to_csr()

    @property
    def dot_phi_q(self) -> scipy.sparse.csr_matrix:
        return self.dot_phi_q_arena.to_csr()

    def get_phi_q_dense(self) -> np.ndarray:
        return self.phi_q_arena.to_dense()

    def get_dot_phi_q_dense(self) -> np.ndarray:
        return self.dot_phi_q_arena.to_dense()

    def get_dphiqdq_dq_dense(self) -> np.ndarray:
        return self.dphiqdq_dq_arena.to_dense()

    def acceleration_rhs(self) -> np.ndarray:
        """gamma such that Phi_q·ddq = gamma (uses current dq)."""
        return -(self.dot_phi_q_arena.to_csr() @ self.dotq)

    # ------------------------------------------------------------------
    # Kinematics
    # ------------------------------------------------------------------

    def _dependent_indices(self, independent_indices: Sequence[int]) -> np.ndarray:
        n = self.num_coordinates
        independent = set()
        for index in independent_indices:
            if not 0 <= index < n:
                raise ValueError(
                    f"Independent coordinate index {index} out of range [0, {n})"
                )
            independent.add(int(index))
        return np.array([i for i in range(n) if i not in independent], dtype=int)

    def compute_dependent_pos_vel_acc(
        self,
        independent_indices: Sequence[int],
        solve_position: bool = True,
        solve_velocity: bool = True,
        params: Optional[ComputeDependentParams] = None,
    ) -> ComputeDependentResults:
        """Make q, dq and ddq consistent with the constraints.

        Independent coordinates keep their current values in q, dq and ddq;
        dependent ones are solved for:

        1. Position: Newton-Raphson on Phi(q) = 0 over the dependent columns
           (skipped if solve_position is False).
        2. Velocity: Phi_q·dq = 0 (skipped if solve_velocity is False).
        3. Acceleration: Phi_q·ddq = -dotPhi_q·dq (always solved).

        Non-convergence and singular Jacobians are reported in the result,
        never raised.

        Args:
            independent_indices: Indices in q of the driving coordinates
            solve_position: Run the position problem
            solve_velocity: Run the velocity problem
            params: Solver parameters (defaults if None)

        Returns:
            ComputeDependentResults diagnostics
        """
        params = params or ComputeDependentParams()
        independent = np.array(sorted(set(int(i) for i in independent_indices)),
                               dtype=int)
        dependent = self._dependent_indices(independent)

        iterations = 0
        status = SolverStatus.CONVERGED
        if solve_position:
            iterations, status = self._solve_position(dependent, params)
        else:
            self.update_numeric_phi_and_jacobians()

        final_phi = float(np.linalg.norm(self.phi))
        if solve_position:
            if status is SolverStatus.CONVERGED:
                self.kinematic_state = KinematicState.POSITION_CONSISTENT
            else:
                self.kinematic_state = KinematicState.UNINITIALIZED

        velocity_singular = False
        if solve_velocity:
            velocity_singular = self._solve_velocity(
                independent, dependent, params
            )
            # dotPhi_q depends on dq
            self.update_numeric_phi_and_jacobians()
            if (self.kinematic_state is KinematicState.POSITION_CONSISTENT
                    and not velocity_singular):
                self.kinematic_state = KinematicState.VELOCITY_CONSISTENT

        acceleration_singular = self._solve_acceleration(
            independent, dependent, params
        )
        if (self.kinematic_state is KinematicState.VELOCITY_CONSISTENT
                and not acceleration_singular):
            self.kinematic_state = KinematicState.ACCELERATION_CONSISTENT

        return ComputeDependentResults(
            pos_final_phi=final_phi,
            pos_iterations=iterations,
            status=status,
            velocity_solved=solve_velocity,
            velocity_singular=velocity_singular,
            acceleration_singular=acceleration_singular,
        )

    def _solve_position(
        self,
        dependent: np.ndarray,
        params: ComputeDependentParams,
    ) -> Tuple[int, SolverStatus]:
        """Newton-Raphson iterations on the dependent coordinates."""
        iterations = 0
        while True:
            self.update_numeric_phi_and_jacobians()
            phi_norm = float(np.linalg.norm(self.phi))
            logger.debug("NR iteration %d: |Phi|=%.3e", iterations, phi_norm)

            if phi_norm < params.nr_tolerance:
                return iterations, SolverStatus.CONVERGED

            if iterations >= params.nr_max_iterations:
                logger.warning(
                    "Position problem did not converge after %d iterations "
                    "(|Phi|=%.3e)", iterations, phi_norm,
                )
                return iterations, SolverStatus.MAX_ITERATIONS

            jacobian = self.get_phi_q_dense()[:, dependent]
            delta, singular = solve_dependent_system(
                jacobian, -self.phi, params.singular_tolerance
            )
            if singular:
                logger.warning(
                    "Singular constraint Jacobian in position problem at "
                    "iteration %d (|Phi|=%.3e)", iterations, phi_norm,
                )
                return iterations, SolverStatus.SINGULAR_JACOBIAN

            self.q[dependent] += params.nr_damping * delta
            iterations += 1

    def _solve_velocity(
        self,
        independent: np.ndarray,
        dependent: np.ndarray,
        params: ComputeDependentParams,
    ) -> bool:
        jacobian = self.get_phi_q_dense()
        rhs = -(jacobian[:, independent] @ self.dotq[independent])
        solution, singular = solve_dependent_system(
            jacobian[:, dependent], rhs, params.singular_tolerance
        )
        if singular:
            logger.warning("Singular constraint Jacobian in velocity problem")
        self.dotq[dependent] = solution
        return singular

    def _solve_acceleration(
        self,
        independent: np.ndarray,
        dependent: np.ndarray,
        params: ComputeDependentParams,
    ) -> bool:
        jacobian = self.get_phi_q_dense()
        rhs = (self.acceleration_rhs()
               - jacobian[:, independent] @ self.ddotq[independent])
        solution, singular = solve_dependent_system(
            jacobian[:, dependent], rhs, params.singular_tolerance
        )
        if singular:
            logger.warning("Singular constraint Jacobian in acceleration problem")
        self.ddotq[dependent] = solution
        return singular

    # ------------------------------------------------------------------
    # Mass matrix and forces
    # ------------------------------------------------------------------

    def _mass_triplets(self) -> Tuple[List[int], List[int], List[float]]:
        rows: List[int] = []
        cols: List[int] = []
        values: List[float] = []
        for body in self.bodies:
            element = body.mass_matrix
            dofs: List[Optional[int]] = []
            for index in body.points:
                point_dofs = self.points_to_dofs[index]
                dofs.extend(point_dofs if point_dofs is not None else (None, None))
            for i, row in enumerate(dofs):
                if row is None:
                    continue
                for j, col in enumerate(dofs):
                    if col is None or element[i, j] == 0.0:
                        continue
                    rows.append(row)
                    cols.append(col)
                    values.append(element[i, j])
        return rows, cols, values

    def build_mass_matrix_sparse(self) -> scipy.sparse.csr_matrix:
        """Global mass matrix (n, n); fixed-point rows/columns are dropped."""
        rows, cols, values = self._mass_triplets()
        n = self.num_coordinates
        return scipy.sparse.csr_matrix((values, (rows, cols)), shape=(n, n))

    def build_mass_matrix_dense(self) -> np.ndarray:
        return self.build_mass_matrix_sparse().toarray()

    def build_generalized_forces(self) -> np.ndarray:
        """Applied forces Q(q, dq): body gravity plus external point forces."""
        forces = np.zeros(self.num_coordinates)
        for body in self.bodies:
            point_forces = body.gravity_forces(self.gravity)
            for index, force in zip(body.points, point_forces):
                dofs = self.points_to_dofs[index]
                if dofs is not None:
                    forces[list(dofs)] += force
        for index, force in self.external_forces.items():
            forces[list(self.points_to_dofs[index])] += force
        return forces

    # ------------------------------------------------------------------
    # Energy and snapshots
    # ------------------------------------------------------------------

    def kinetic_energy(self) -> float:
        return 0.5 * float(self.dotq @ (self.build_mass_matrix_sparse() @ self.dotq))

    def potential_energy(self) -> float:
        """Gravitational potential energy of all bodies (plus external forces)."""
        energy = 0.0
        for body in self.bodies:
            cog = body.cog_position(
                self.point_position(body.points[0]),
                self.point_position(body.points[1]),
            )
            energy -= body.mass * float(self.gravity @ cog)
        for index, force in self.external_forces.items():
            energy -= float(force @ self.point_position(index))
        return energy

    def total_energy(self) -> float:
        return self.kinetic_energy() + self.potential_energy()

    def get_body_segments(self) -> List[BodySegment]:
        """Endpoint positions and render settings of every body."""
        segments = []
        for body in self.bodies:
            index0, index1 = body.points
            p0 = self.point_ref(index0)
            p1 = self.point_ref(index1)
            segments.append(BodySegment(
                name=body.name,
                point0=p0.position,
                point1=p1.position,
                point0_fixed=p0.fixed,
                point1_fixed=p1.fixed,
                render_params=body.render_params,
            ))
        return segments

    def clone(self) -> 'AssembledModel':
        """Independent copy, e.g. for a worker thread."""
        other = object.__new__(AssembledModel)
        other.points = [Point(p.x, p.y, p.fixed) for p in self.points]
        other.points_to_dofs = list(self.points_to_dofs)
        other.relative_coordinate_names = list(self.relative_coordinate_names)
        other._first_relative_dof = self._first_relative_dof
        other.q, other.dotq, other.ddotq = self.copy_state()
        other.phi = self.phi.copy()
        other.dot_phi = self.dot_phi.copy()
        other.gravity = self.gravity.copy()
        other.bodies = [body.copy() for body in self.bodies]
        for body in other.bodies:
            body.lock_length()
        other.external_forces = {
            index: force.copy() for index, force in self.external_forces.items()
        }
        other.kinematic_state = self.kinematic_state
        other.phi_q_arena = self.phi_q_arena.copy()
        other.dot_phi_q_arena = self.dot_phi_q_arena.copy()
        other.dphiqdq_dq_arena = self.dphiqdq_dq_arena.copy()
        other._num_rows = self._num_rows
        # Slots are plain integers into arenas with identical layout
        other.constraints = [c.copy_assembled() for c in self.constraints]
        return other
