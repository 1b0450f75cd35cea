"""Residual factors exposed to an external trajectory optimizer.

Each factor maps the state of one or two time steps to an error vector and,
on request, the Jacobian blocks of that error with respect to each of its
inputs. The optimizer owns the variables and the keys identifying them;
factors evaluate against a shared AssembledModel and are therefore not
reentrant (one model per worker).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Hashable, Optional, Tuple

import numpy as np

from multibody.assembled_model import AssembledModel
from multibody.dynamics import DynamicSimulator
from multibody._internal.validation import (
    validate_matching_sizes,
    validate_positive,
    validate_vector,
)


# Finite-difference step for Jacobians without a closed form
NUMERIC_JACOBIAN_STEP = 1e-6


@dataclass(frozen=True)
class FactorResult:
    """Error vector plus optional Jacobian blocks (one per input, in order)."""
    error: np.ndarray
    jacobians: Optional[Tuple[np.ndarray, ...]] = None


class Factor(ABC):
    """Common interface of all residual factors.

    Attributes:
        keys: Optimizer variable keys, one per input (informational)
    """

    def __init__(self, keys: Tuple[Hashable, ...] = ()) -> None:
        self.keys = tuple(keys)

    def evaluate_error(self, *values: np.ndarray) -> np.ndarray:
        return self.evaluate(*values, compute_jacobians=False).error

    def evaluate_error_and_jacobians(self, *values: np.ndarray) -> FactorResult:
        return self.evaluate(*values, compute_jacobians=True)

    @abstractmethod
    def evaluate(self, *values: np.ndarray,
                 compute_jacobians: bool = False) -> FactorResult:
        """Error and, when requested, the Jacobian blocks for the given inputs."""


def _as_state(model: AssembledModel, vector: np.ndarray, name: str) -> np.ndarray:
    vector = np.asarray(vector, dtype=float)
    validate_vector(vector, model.num_coordinates, name)
    return vector


class ConstraintsFactor(Factor):
    """Position constraints: error = Phi(q), d error/d q = Phi_q."""

    def __init__(self, model: AssembledModel, keys: Tuple[Hashable, ...] = ()) -> None:
        super().__init__(keys)
        self.model = model

    def evaluate(self, q, compute_jacobians=False):
        q = _as_state(self.model, q, 'q')
        self.model.set_q(q)
        self.model.update_numeric_phi_and_jacobians()

        error = self.model.phi.copy()
        if not compute_jacobians:
            return FactorResult(error)
        return FactorResult(error, (self.model.get_phi_q_dense(),))


class ConstraintsVelFactor(Factor):
    """Velocity constraints: error = Phi_q(q)·dq.

    Jacobians: d error/d q = d(Phi_q·dq)/dq and d error/d dq = Phi_q.
    """

    def __init__(self, model: AssembledModel, keys: Tuple[Hashable, ...] = ()) -> None:
        super().__init__(keys)
        self.model = model

    def evaluate(self, q, dotq, compute_jacobians=False):
        q = np.asarray(q, dtype=float)
        dotq = np.asarray(dotq, dtype=float)
        validate_matching_sizes(q, dotq, 'q', 'dotq')
        q = _as_state(self.model, q, 'q')

        self.model.set_q(q)
        self.model.set_dotq(dotq)
        self.model.update_numeric_phi_and_jacobians()

        phi_q = self.model.get_phi_q_dense()
        error = phi_q @ dotq
        if not compute_jacobians:
            return FactorResult(error)
        return FactorResult(error, (self.model.get_dphiqdq_dq_dense(), phi_q))


class DynamicsFactor(Factor):
    """Dynamics consistency of a (q, dq, ddq) triple.

    In 'residual' mode the error is the equations-of-motion residual
    M·ddq - Q + Phi_q^T·lam (lam by least squares), letting the optimizer
    treat ddq as an independent variable. In 'solve' mode the error is
    ddq - ddq_solved(q, dq).

    Jacobians with respect to q and dq are estimated with central
    differences; the ddq block is exact.
    """

    MODES = ('residual', 'solve')

    def __init__(self, simulator: DynamicSimulator, mode: str = 'residual',
                 keys: Tuple[Hashable, ...] = ()) -> None:
        super().__init__(keys)
        if mode not in self.MODES:
            raise ValueError(f"mode must be one of {self.MODES}, got '{mode}'")
        self.simulator = simulator
        self.mode = mode

    def _error(self, q, dotq, ddotq) -> np.ndarray:
        if self.mode == 'residual':
            return self.simulator.dynamics_residual(q, dotq, ddotq)
        return ddotq - self.simulator.evaluate_ddotq(q, dotq).ddotq

    def _numeric_jacobian(self, function, x: np.ndarray) -> np.ndarray:
        columns = []
        for i in range(x.size):
            step = np.zeros_like(x)
            step[i] = NUMERIC_JACOBIAN_STEP
            columns.append(
                (function(x + step) - function(x - step))
                / (2.0 * NUMERIC_JACOBIAN_STEP)
            )
        return np.column_stack(columns)

    def evaluate(self, q, dotq, ddotq, compute_jacobians=False):
        model = self.simulator.model
        q = _as_state(model, q, 'q')
        dotq = _as_state(model, dotq, 'dotq')
        ddotq = _as_state(model, ddotq, 'ddotq')

        error = self._error(q, dotq, ddotq)
        if not compute_jacobians:
            return FactorResult(error)

        jacobian_q = self._numeric_jacobian(
            lambda x: self._error(x, dotq, ddotq), q
        )
        jacobian_dotq = self._numeric_jacobian(
            lambda x: self._error(q, x, ddotq), dotq
        )
        if self.mode == 'residual':
            jacobian_ddotq = self._numeric_jacobian(
                lambda x: self._error(q, dotq, x), ddotq
            )
        else:
            jacobian_ddotq = np.eye(q.size)

        # Leave the model at the evaluated point
        self._error(q, dotq, ddotq)
        return FactorResult(error, (jacobian_q, jacobian_dotq, jacobian_ddotq))


class TrapezoidalIntegrationFactor(Factor):
    """Trapezoidal rule between two steps.

    error = x[k+1] - x[k] - dt/2·(v[k] + v[k+1]), applied to positions and
    velocities (x=q, v=dq) or velocities and accelerations (x=dq, v=ddq).
    Inputs are ordered (x_k, x_k1, v_k, v_k1).
    """

    def __init__(self, time_step_s: float, keys: Tuple[Hashable, ...] = ()) -> None:
        super().__init__(keys)
        validate_positive(time_step_s, 'time_step_s')
        self.time_step_s = time_step_s

    def evaluate(self, x_k, x_k1, v_k, v_k1, compute_jacobians=False):
        vectors = [np.asarray(v, dtype=float) for v in (x_k, x_k1, v_k, v_k1)]
        for name, vector in zip(('x_k1', 'v_k', 'v_k1'), vectors[1:]):
            validate_matching_sizes(vectors[0], vector, 'x_k', name)
        x_k, x_k1, v_k, v_k1 = vectors

        half_dt = 0.5 * self.time_step_s
        error = x_k1 - x_k - half_dt * (v_k + v_k1)
        if not compute_jacobians:
            return FactorResult(error)

        identity = np.eye(x_k.size)
        return FactorResult(
            error,
            (-identity, identity, -half_dt * identity, -half_dt * identity),
        )
