"""Finite-difference verification of constraint Jacobians.

Compares the analytic Phi_q, dotPhi, dotPhi_q and dPhiqdq_dq written by the
constraints against central differences of Phi and Phi_q. Used to validate
new constraint variants; every check restores the model's (q, dq).
"""

from dataclasses import dataclass
from typing import Callable

import numpy as np

from multibody.assembled_model import AssembledModel


DEFAULT_STEP = 1e-6


@dataclass(frozen=True)
class JacobianCheckReport:
    """Largest absolute difference between analytic and numeric values.

    Attributes:
        phi_q_error: max |Phi_q - dPhi/dq|
        dot_phi_error: max |dotPhi - Phi_q·dq|
        dot_phi_q_error: max |dotPhi_q - dPhi_q/dt|
        dphiqdq_dq_error: max |dPhiqdq_dq - d(Phi_q·dq)/dq|
    """
    phi_q_error: float
    dot_phi_error: float
    dot_phi_q_error: float
    dphiqdq_dq_error: float

    @property
    def max_error(self) -> float:
        return max(self.phi_q_error, self.dot_phi_error,
                   self.dot_phi_q_error, self.dphiqdq_dq_error)


def _evaluate_at(model: AssembledModel, q: np.ndarray,
                 function: Callable[[AssembledModel], np.ndarray]) -> np.ndarray:
    model.q[:] = q
    model.update_numeric_phi_and_jacobians()
    return function(model)


def _central_difference(model, q, direction, function, step):
    plus = _evaluate_at(model, q + step * direction, function)
    minus = _evaluate_at(model, q - step * direction, function)
    return (plus - minus) / (2.0 * step)


class _PreservedState:
    """Restores q, dq and the derived buffers on exit."""

    def __init__(self, model: AssembledModel) -> None:
        self.model = model

    def __enter__(self):
        self.q, self.dotq, self.ddotq = self.model.copy_state()
        self.kinematic_state = self.model.kinematic_state
        return self

    def __exit__(self, *exc_info):
        self.model.q[:] = self.q
        self.model.dotq[:] = self.dotq
        self.model.ddotq[:] = self.ddotq
        self.model.update_numeric_phi_and_jacobians()
        self.model.kinematic_state = self.kinematic_state
        return False


def numeric_phi_q(model: AssembledModel, step: float = DEFAULT_STEP) -> np.ndarray:
    """Central-difference Phi_q (m, n) at the model's current q."""
    with _PreservedState(model) as state:
        n = model.num_coordinates
        columns = [
            _central_difference(model, state.q, np.eye(n)[i],
                                lambda m: m.phi.copy(), step)
            for i in range(n)
        ]
    return np.column_stack(columns)


def numeric_dot_phi_q(model: AssembledModel,
                      step: float = DEFAULT_STEP) -> np.ndarray:
    """d(Phi_q)/dt estimated along the current velocity: dPhi_q/dq·dq."""
    with _PreservedState(model) as state:
        return _central_difference(
            model, state.q, state.dotq,
            lambda m: m.get_phi_q_dense(), step,
        )


def numeric_dphiqdq_dq(model: AssembledModel,
                       step: float = DEFAULT_STEP) -> np.ndarray:
    """Central-difference d(Phi_q·dq)/dq with dq held constant."""
    with _PreservedState(model) as state:
        n = model.num_coordinates
        columns = [
            _central_difference(model, state.q, np.eye(n)[i],
                                lambda m: m.get_phi_q_dense() @ state.dotq, step)
            for i in range(n)
        ]
    return np.column_stack(columns)


def check_constraint_jacobians(model: AssembledModel,
                               step: float = DEFAULT_STEP) -> JacobianCheckReport:
    """Compare all analytic constraint derivatives against finite differences.

    Args:
        model: Assembled model at the (q, dq) to check
        step: Finite-difference step

    Returns:
        JacobianCheckReport with the largest absolute deviation per quantity
    """
    model.update_numeric_phi_and_jacobians()
    phi_q = model.get_phi_q_dense()
    dot_phi = model.dot_phi.copy()
    dot_phi_q = model.get_dot_phi_q_dense()
    dphiqdq_dq = model.get_dphiqdq_dq_dense()

    numeric_jacobian = numeric_phi_q(model, step)

    def max_abs(difference: np.ndarray) -> float:
        return float(np.max(np.abs(difference))) if difference.size else 0.0

    return JacobianCheckReport(
        phi_q_error=max_abs(phi_q - numeric_jacobian),
        dot_phi_error=max_abs(dot_phi - numeric_jacobian @ model.dotq),
        dot_phi_q_error=max_abs(dot_phi_q - numeric_dot_phi_q(model, step)),
        dphiqdq_dq_error=max_abs(dphiqdq_dq - numeric_dphiqdq_dq(model, step)),
    )
