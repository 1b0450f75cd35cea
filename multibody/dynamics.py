"""Forward dynamics of an assembled model.

Equations of motion in natural coordinates with Lagrange multipliers:

    [ M    Phi_q^T ] [ ddq ]   [ Q     ]
    [ Phi_q   0    ] [ lam ] = [ gamma ]

with gamma = -dotPhi_q·dq (optionally Baumgarte-stabilized). The mass
matrix M is constant in natural coordinates, so there are no velocity
dependent inertial terms.

Simulators must be prepared once (prepare()) before solve_ddotq().
dynamics_residual() evaluates M·ddq - Q + Phi_q^T·lam at a trial state
without solving, for use inside an outer optimization loop.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

import numpy as np
import scipy.linalg
import scipy.sparse
import scipy.sparse.linalg

from multibody.assembled_model import AssembledModel, solve_dependent_system
from multibody.config import SimulationParams
from multibody._internal.validation import validate_vector


logger = logging.getLogger(__name__)

# Relative pivot magnitude below which a factorization is deemed singular
PIVOT_TOLERANCE = 1e-12


class DynamicsStatus(Enum):
    """Outcome of a dynamics solve."""

    OK = "ok"
    SINGULAR = "singular"


@dataclass(frozen=True)
class DynamicsSolution:
    """Result of solve_ddotq().

    Attributes:
        ddotq: Accelerations (n,)
        lagrange: Lagrange multipliers (m,), None unless requested
        status: OK, or SINGULAR when the system matrix is (near) singular;
            ddotq is then a least-squares best effort
    """
    ddotq: np.ndarray
    lagrange: Optional[np.ndarray]
    status: DynamicsStatus

    @property
    def ok(self) -> bool:
        return self.status is DynamicsStatus.OK


@dataclass
class SimulationResult:
    """Trajectory produced by DynamicSimulator.run().

    Attributes:
        time_s: Timestamps (N,)
        q_history: Positions (N, n)
        dotq_history: Velocities (N, n)
        ddotq_history: Accelerations (N, n)
        singular_steps: Number of steps whose dynamics solve was singular
    """
    time_s: np.ndarray
    q_history: np.ndarray
    dotq_history: np.ndarray
    ddotq_history: np.ndarray
    singular_steps: int = 0


def _pivots_are_singular(pivots: np.ndarray) -> bool:
    magnitudes = np.abs(pivots)
    if magnitudes.size == 0:
        return False
    largest = magnitudes.max()
    return largest == 0.0 or magnitudes.min() <= PIVOT_TOLERANCE * largest


class DynamicSimulator(ABC):
    """Base class of forward-dynamics solvers bound to one model.

    Attributes:
        model: The assembled model whose state is read and written
        baumgarte_alpha, baumgarte_beta: Constraint stabilization gains
    """

    def __init__(self, model: AssembledModel,
                 baumgarte_alpha: float = 0.0,
                 baumgarte_beta: float = 0.0) -> None:
        self.model = model
        self.baumgarte_alpha = baumgarte_alpha
        self.baumgarte_beta = baumgarte_beta
        self._prepared = False

    @property
    def is_prepared(self) -> bool:
        return self._prepared

    def prepare(self) -> None:
        """One-time structural setup; call again after changing bodies."""
        self._mass_sparse = self.model.build_mass_matrix_sparse()
        self._mass_dense = self._mass_sparse.toarray()
        self._internal_prepare()
        self._prepared = True

    def _internal_prepare(self) -> None:
        """Hook for solver specific structures."""

    def _require_prepared(self) -> None:
        if not self._prepared:
            raise RuntimeError(
                f"{type(self).__name__}.prepare() must be called before solving"
            )

    def constraint_rhs(self) -> np.ndarray:
        """gamma = -dotPhi_q·dq - 2·alpha·dotPhi - beta²·Phi."""
        model = self.model
        gamma = model.acceleration_rhs()
        if self.baumgarte_alpha:
            gamma -= 2.0 * self.baumgarte_alpha * model.dot_phi
        if self.baumgarte_beta:
            gamma -= self.baumgarte_beta ** 2 * model.phi
        return gamma

    def solve_ddotq(self, t: float = 0.0,
                    compute_lagrange: bool = False) -> DynamicsSolution:
        """Solve accelerations for the model's current (q, dq).

        The result is also written into model.ddotq.

        Args:
            t: Current time (kept for time-dependent forces)
            compute_lagrange: Also return the Lagrange multipliers

        Raises:
            RuntimeError: If prepare() has not been called
        """
        self._require_prepared()
        self.model.update_numeric_phi_and_jacobians()
        forces = self.model.build_generalized_forces()
        gamma = self.constraint_rhs()

        solution = self._internal_solve(forces, gamma, compute_lagrange)
        if solution.status is DynamicsStatus.SINGULAR:
            logger.warning(
                "%s: singular system at t=%.6g, using least-squares accelerations",
                type(self).__name__, t,
            )
        self.model.ddotq[:] = solution.ddotq
        return solution

    @abstractmethod
    def _internal_solve(self, forces: np.ndarray, gamma: np.ndarray,
                        compute_lagrange: bool) -> DynamicsSolution:
        """Solve the equations of motion with up-to-date Jacobians."""

    def _least_squares_solution(self, forces: np.ndarray, gamma: np.ndarray,
                                compute_lagrange: bool) -> DynamicsSolution:
        """Best-effort solution of the augmented system for singular cases."""
        n = self.model.num_coordinates
        augmented = self._dense_augmented_matrix()
        rhs = np.concatenate([forces, gamma])
        solution, _, _, _ = scipy.linalg.lstsq(augmented, rhs)
        return DynamicsSolution(
            ddotq=solution[:n],
            lagrange=solution[n:] if compute_lagrange else None,
            status=DynamicsStatus.SINGULAR,
        )

    def _dense_augmented_matrix(self) -> np.ndarray:
        n = self.model.num_coordinates
        m = self.model.num_constraints
        jacobian = self.model.get_phi_q_dense()
        augmented = np.zeros((n + m, n + m))
        augmented[:n, :n] = self._mass_dense
        augmented[:n, n:] = jacobian.T
        augmented[n:, :n] = jacobian
        return augmented

    def _set_state(self, q: np.ndarray, dotq: np.ndarray) -> None:
        n = self.model.num_coordinates
        validate_vector(np.asarray(q, dtype=float), n, 'q')
        validate_vector(np.asarray(dotq, dtype=float), n, 'dotq')
        self.model.q[:] = q
        self.model.dotq[:] = dotq
        self.model.invalidate_kinematic_state()

    def dynamics_residual(
        self,
        q: np.ndarray,
        dotq: np.ndarray,
        ddotq: np.ndarray,
        lagrange: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """Evaluate M·ddq - Q + Phi_q^T·lam at a trial state.

        If `lagrange` is None the multipliers minimizing the residual are
        used, so the residual vanishes exactly when ddq is dynamically
        consistent with the constraint reactions.

        Raises:
            RuntimeError: If prepare() has not been called
            ValueError: If vector sizes do not match the model
        """
        self._require_prepared()
        ddotq = np.asarray(ddotq, dtype=float)
        validate_vector(ddotq, self.model.num_coordinates, 'ddotq')
        self._set_state(q, dotq)
        self.model.ddotq[:] = ddotq
        self.model.update_numeric_phi_and_jacobians()

        forces = self.model.build_generalized_forces()
        jacobian_t = self.model.get_phi_q_dense().T
        unbalanced = self._mass_dense @ ddotq - forces
        if lagrange is None:
            if jacobian_t.shape[1] == 0:
                return unbalanced
            lagrange, _, _, _ = scipy.linalg.lstsq(jacobian_t, -unbalanced)
        return unbalanced + jacobian_t @ np.asarray(lagrange, dtype=float)

    def evaluate_ddotq(self, q: np.ndarray, dotq: np.ndarray,
                       t: float = 0.0) -> DynamicsSolution:
        """Set (q, dq) into the model and solve the accelerations."""
        self._set_state(q, dotq)
        return self.solve_ddotq(t)

    def run(self, t_start: float, t_end: float,
            params: Optional[SimulationParams] = None) -> SimulationResult:
        """Integrate the equations of motion from the model's current state.

        Args:
            t_start: Initial time
            t_end: Final time
            params: Integration settings (defaults if None)

        Returns:
            SimulationResult with one row per time step (both ends included)
        """
        params = params or SimulationParams()
        self._require_prepared()
        dt = params.time_step_s
        num_steps = int(round((t_end - t_start) / dt))
        if num_steps < 1:
            raise ValueError(
                f"Integration interval [{t_start}, {t_end}] shorter than one step"
            )

        q = self.model.q.copy()
        dotq = self.model.dotq.copy()
        n = q.shape[0]
        times = t_start + dt * np.arange(num_steps + 1)
        q_history = np.zeros((num_steps + 1, n))
        dotq_history = np.zeros((num_steps + 1, n))
        ddotq_history = np.zeros((num_steps + 1, n))
        singular_steps = 0

        step = {
            'euler': self._step_euler,
            'rk4': self._step_rk4,
            'trapezoidal': self._step_trapezoidal,
        }[params.integrator]

        for k in range(num_steps + 1):
            solution = self.evaluate_ddotq(q, dotq, times[k])
            if not solution.ok:
                singular_steps += 1
            q_history[k] = q
            dotq_history[k] = dotq
            ddotq_history[k] = solution.ddotq
            if k < num_steps:
                q, dotq = step(q, dotq, solution.ddotq, times[k], dt, params)

        self._set_state(q_history[-1], dotq_history[-1])
        self.model.ddotq[:] = ddotq_history[-1]
        if singular_steps:
            logger.warning(
                "%d of %d steps hit a singular dynamics system",
                singular_steps, num_steps + 1,
            )
        return SimulationResult(
            time_s=times,
            q_history=q_history,
            dotq_history=dotq_history,
            ddotq_history=ddotq_history,
            singular_steps=singular_steps,
        )

    def _step_euler(self, q, dotq, ddotq, t, dt, params):
        return q + dt * dotq, dotq + dt * ddotq

    def _step_rk4(self, q, dotq, ddotq, t, dt, params):
        k1_q, k1_v = dotq, ddotq
        k2_q = dotq + 0.5 * dt * k1_v
        k2_v = self.evaluate_ddotq(q + 0.5 * dt * k1_q, k2_q, t + 0.5 * dt).ddotq
        k3_q = dotq + 0.5 * dt * k2_v
        k3_v = self.evaluate_ddotq(q + 0.5 * dt * k2_q, k3_q, t + 0.5 * dt).ddotq
        k4_q = dotq + dt * k3_v
        k4_v = self.evaluate_ddotq(q + dt * k3_q, k4_q, t + dt).ddotq
        q_next = q + dt / 6.0 * (k1_q + 2.0 * k2_q + 2.0 * k3_q + k4_q)
        dotq_next = dotq + dt / 6.0 * (k1_v + 2.0 * k2_v + 2.0 * k3_v + k4_v)
        return q_next, dotq_next

    def _step_trapezoidal(self, q, dotq, ddotq, t, dt, params):
        # Euler predictor followed by fixed-point trapezoidal correctors
        q_next = q + dt * dotq
        dotq_next = dotq + dt * ddotq
        for _ in range(params.trapezoidal_iterations):
            ddotq_next = self.evaluate_ddotq(q_next, dotq_next, t + dt).ddotq
            dotq_next = dotq + 0.5 * dt * (ddotq + ddotq_next)
            q_next = q + 0.5 * dt * (dotq + dotq_next)
        return q_next, dotq_next


class LagrangeDenseSimulator(DynamicSimulator):
    """Augmented Lagrange system solved with a dense LU factorization."""

    def _internal_solve(self, forces, gamma, compute_lagrange):
        n = self.model.num_coordinates
        augmented = self._dense_augmented_matrix()
        lu, piv = scipy.linalg.lu_factor(augmented, check_finite=True)
        if _pivots_are_singular(np.diag(lu)):
            return self._least_squares_solution(forces, gamma, compute_lagrange)

        solution = scipy.linalg.lu_solve((lu, piv), np.concatenate([forces, gamma]))
        return DynamicsSolution(
            ddotq=solution[:n],
            lagrange=solution[n:] if compute_lagrange else None,
            status=DynamicsStatus.OK,
        )


class LagrangeSparseSimulator(DynamicSimulator):
    """Augmented Lagrange system solved with a sparse LU (SuperLU).

    prepare() builds the augmented sparsity pattern once: constant mass
    entries plus the Jacobian entries (and their transposes) whose values
    are refreshed from the model's Phi_q arena on each solve.
    """

    def _internal_prepare(self) -> None:
        n = self.model.num_coordinates
        m = self.model.num_constraints
        mass = self._mass_sparse.tocoo()
        arena = self.model.phi_q_arena

        self._augmented_rows = np.concatenate([
            mass.row, n + arena.rows, arena.cols,
        ])
        self._augmented_cols = np.concatenate([
            mass.col, arena.cols, n + arena.rows,
        ])
        self._mass_values = mass.data.copy()
        self._augmented_shape = (n + m, n + m)

    def _augmented_matrix(self) -> scipy.sparse.csc_matrix:
        jacobian_values = self.model.phi_q_arena.values
        data = np.concatenate([self._mass_values, jacobian_values, jacobian_values])
        return scipy.sparse.csc_matrix(
            (data, (self._augmented_rows, self._augmented_cols)),
            shape=self._augmented_shape,
        )

    def _internal_solve(self, forces, gamma, compute_lagrange):
        n = self.model.num_coordinates
        try:
            factor = scipy.sparse.linalg.splu(self._augmented_matrix())
        except RuntimeError as error:
            # SuperLU reports exactly singular matrices this way
            logger.debug("splu failed: %s", error)
            return self._least_squares_solution(forces, gamma, compute_lagrange)

        if _pivots_are_singular(factor.U.diagonal()):
            return self._least_squares_solution(forces, gamma, compute_lagrange)

        solution = factor.solve(np.concatenate([forces, gamma]))
        return DynamicsSolution(
            ddotq=solution[:n],
            lagrange=solution[n:] if compute_lagrange else None,
            status=DynamicsStatus.OK,
        )


class RMatrixDenseSimulator(DynamicSimulator):
    """Independent-coordinate (R matrix) formulation, dense.

    With z the independent coordinates, dq = R·dz where R[indep] = I and
    R[dep] = -Phi_q,d^-1·Phi_q,i. Accelerations are ddq = R·ddz + S·c, with
    S·c the particular solution of Phi_q·ddq = gamma for ddz = 0, and

        (R^T·M·R)·ddz = R^T·(Q - M·S·c)
    """

    def __init__(self, model: AssembledModel,
                 independent_indices: Sequence[int],
                 baumgarte_alpha: float = 0.0,
                 baumgarte_beta: float = 0.0) -> None:
        super().__init__(model, baumgarte_alpha, baumgarte_beta)
        if len(independent_indices) == 0:
            raise ValueError("RMatrixDenseSimulator needs independent coordinates")
        n = model.num_coordinates
        independent = sorted(set(int(i) for i in independent_indices))
        for index in independent:
            if not 0 <= index < n:
                raise ValueError(
                    f"Independent coordinate index {index} out of range [0, {n})"
                )
        self.independent_indices = np.array(independent, dtype=int)
        self.dependent_indices = np.array(
            [i for i in range(n) if i not in independent], dtype=int
        )

    def _internal_solve(self, forces, gamma, compute_lagrange):
        model = self.model
        n = model.num_coordinates
        independent = self.independent_indices
        dependent = self.dependent_indices
        jacobian = model.get_phi_q_dense()
        jacobian_dep = jacobian[:, dependent]

        r_matrix = np.zeros((n, independent.size))
        r_matrix[independent, np.arange(independent.size)] = 1.0
        r_dep, singular_r = solve_dependent_system(
            jacobian_dep, -jacobian[:, independent], PIVOT_TOLERANCE
        )
        r_matrix[dependent] = r_dep

        particular = np.zeros(n)
        particular_dep, singular_s = solve_dependent_system(
            jacobian_dep, gamma, PIVOT_TOLERANCE
        )
        particular[dependent] = particular_dep

        reduced_mass = r_matrix.T @ self._mass_dense @ r_matrix
        reduced_forces = r_matrix.T @ (forces - self._mass_dense @ particular)
        lu, piv = scipy.linalg.lu_factor(reduced_mass)
        if singular_r or singular_s or _pivots_are_singular(np.diag(lu)):
            return self._least_squares_solution(forces, gamma, compute_lagrange)

        ddz = scipy.linalg.lu_solve((lu, piv), reduced_forces)
        ddotq = r_matrix @ ddz + particular

        lagrange = None
        if compute_lagrange:
            lagrange, _, _, _ = scipy.linalg.lstsq(
                jacobian.T, forces - self._mass_dense @ ddotq
            )
        return DynamicsSolution(
            ddotq=ddotq, lagrange=lagrange, status=DynamicsStatus.OK
        )


def build_simulator(
    model: AssembledModel,
    params: Optional[SimulationParams] = None,
    independent_indices: Optional[Sequence[int]] = None,
) -> DynamicSimulator:
    """Create (and prepare) the simulator named in params.dynamics_solver.

    Also applies the configured gravity to the model.

    Raises:
        ValueError: If r_matrix_dense is requested without independent indices
    """
    params = params or SimulationParams()
    model.gravity = params.gravity_vector
    gains = dict(
        baumgarte_alpha=params.baumgarte_alpha,
        baumgarte_beta=params.baumgarte_beta,
    )

    if params.dynamics_solver == 'lagrange_dense':
        simulator = LagrangeDenseSimulator(model, **gains)
    elif params.dynamics_solver == 'lagrange_sparse':
        simulator = LagrangeSparseSimulator(model, **gains)
    else:
        if independent_indices is None:
            raise ValueError(
                "r_matrix_dense solver requires independent_indices"
            )
        simulator = RMatrixDenseSimulator(model, independent_indices, **gains)

    simulator.prepare()
    return simulator
