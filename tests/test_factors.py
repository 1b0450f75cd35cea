"""Tests for the residual factors used by trajectory optimizers."""

import pytest
import numpy as np
from multibody import (
    ConstraintsFactor,
    ConstraintsVelFactor,
    DynamicsFactor,
    FactorResult,
    TrapezoidalIntegrationFactor,
    build_simulator,
)
from multibody.factors import Factor


STEP = 1e-6


def finite_difference(function, x):
    columns = []
    for i in range(x.size):
        delta = np.zeros_like(x)
        delta[i] = STEP
        columns.append((function(x + delta) - function(x - delta)) / (2.0 * STEP))
    return np.column_stack(columns)


def test_constraints_factor_zero_at_consistent_q(four_bars):
    factor = ConstraintsFactor(four_bars, keys=('q0',))
    result = factor.evaluate_error_and_jacobians(np.array([1.0, 0.0, 1.0, 2.0]))

    np.testing.assert_allclose(result.error, np.zeros(3), atol=1e-12)
    assert len(result.jacobians) == 1
    np.testing.assert_allclose(result.jacobians[0], four_bars.get_phi_q_dense())
    assert factor.keys == ('q0',)


def test_constraints_factor_jacobian(four_bars):
    factor = ConstraintsFactor(four_bars)
    q = np.array([0.9, 0.2, 1.3, 1.8])

    result = factor.evaluate_error_and_jacobians(q)
    numeric = finite_difference(factor.evaluate_error, q)

    np.testing.assert_allclose(result.jacobians[0], numeric, atol=1e-6)
    assert factor.evaluate(q).jacobians is None


def test_constraints_vel_factor_jacobians(four_bars_with_angle):
    factor = ConstraintsVelFactor(four_bars_with_angle)
    rng = np.random.default_rng(4)
    q = np.array([0.9, 0.3, 1.2, 1.9, 0.35])
    dotq = rng.standard_normal(5)

    result = factor.evaluate_error_and_jacobians(q, dotq)
    jacobian_q, jacobian_dotq = result.jacobians

    np.testing.assert_allclose(
        jacobian_q,
        finite_difference(lambda x: factor.evaluate_error(x, dotq), q),
        atol=1e-6,
    )
    np.testing.assert_allclose(
        jacobian_dotq,
        finite_difference(lambda x: factor.evaluate_error(q, x), dotq),
        atol=1e-6,
    )


def test_constraints_vel_factor_zero_for_consistent_velocity(four_bars):
    four_bars.set_dotq([0.0, 1.0, 0.0, 0.0])
    four_bars.compute_dependent_pos_vel_acc([1], solve_position=False)
    factor = ConstraintsVelFactor(four_bars)

    error = factor.evaluate_error(four_bars.q.copy(), four_bars.dotq.copy())

    np.testing.assert_allclose(error, np.zeros(3), atol=1e-12)


def test_constraints_vel_factor_size_mismatch(four_bars):
    factor = ConstraintsVelFactor(four_bars)
    with pytest.raises(ValueError, match="sizes differ"):
        factor.evaluate_error(np.zeros(4), np.zeros(3))


def test_constraints_vel_factor_empty_input(four_bars):
    factor = ConstraintsVelFactor(four_bars)
    with pytest.raises(ValueError, match="Empty state vector"):
        factor.evaluate_error(np.zeros(0), np.zeros(0))


def test_constraints_factor_wrong_size(four_bars):
    with pytest.raises(ValueError, match="shape"):
        ConstraintsFactor(four_bars).evaluate_error(np.zeros(5))


def test_trapezoidal_factor():
    factor = TrapezoidalIntegrationFactor(time_step_s=0.1)
    x_k = np.array([0.0, 1.0])
    v_k = np.array([1.0, -1.0])
    v_k1 = np.array([3.0, -1.0])
    x_k1 = x_k + 0.05 * (v_k + v_k1)

    result = factor.evaluate_error_and_jacobians(x_k, x_k1, v_k, v_k1)

    np.testing.assert_allclose(result.error, np.zeros(2), atol=1e-12)
    identity = np.eye(2)
    expected = (-identity, identity, -0.05 * identity, -0.05 * identity)
    for jacobian, reference in zip(result.jacobians, expected):
        np.testing.assert_allclose(jacobian, reference)

    error = factor.evaluate_error(x_k, x_k1 + 1.0, v_k, v_k1)
    np.testing.assert_allclose(error, [1.0, 1.0])


def test_trapezoidal_factor_validation():
    with pytest.raises(ValueError, match="time_step_s"):
        TrapezoidalIntegrationFactor(time_step_s=0.0)
    factor = TrapezoidalIntegrationFactor(time_step_s=0.1)
    with pytest.raises(ValueError, match="sizes differ"):
        factor.evaluate_error(np.zeros(2), np.zeros(2), np.zeros(3), np.zeros(2))


@pytest.mark.parametrize("mode", ['residual', 'solve'])
def test_dynamics_factor_zero_at_solution(four_bars, mode):
    four_bars.set_dotq([0.0, 1.0, 0.0, 0.0])
    four_bars.compute_dependent_pos_vel_acc([1], solve_position=False)
    simulator = build_simulator(four_bars)
    q, dotq, _ = four_bars.copy_state()
    ddotq = simulator.evaluate_ddotq(q, dotq).ddotq.copy()
    factor = DynamicsFactor(simulator, mode=mode)

    result = factor.evaluate_error_and_jacobians(q, dotq, ddotq)

    np.testing.assert_allclose(result.error, np.zeros(4), atol=1e-8)
    assert [j.shape for j in result.jacobians] == [(4, 4)] * 3
    np.testing.assert_allclose(four_bars.q, q)
    np.testing.assert_allclose(four_bars.dotq, dotq)


def test_dynamics_factor_solve_mode_ddq_block(pendulum):
    simulator = build_simulator(pendulum)
    factor = DynamicsFactor(simulator, mode='solve')
    q, dotq, ddotq = pendulum.copy_state()

    result = factor.evaluate_error_and_jacobians(q, dotq, ddotq)

    np.testing.assert_allclose(result.error, [0.0, 1.5 * 9.81], atol=1e-9)
    np.testing.assert_allclose(result.jacobians[2], np.eye(2))


def test_dynamics_factor_invalid_mode(pendulum):
    simulator = build_simulator(pendulum)
    with pytest.raises(ValueError, match="mode"):
        DynamicsFactor(simulator, mode='implicit')


def test_factor_requires_evaluate():
    with pytest.raises(TypeError):
        Factor()

    class Incomplete(Factor):
        pass

    with pytest.raises(TypeError):
        Incomplete(keys=('x0',))


def test_factor_helpers_dispatch_to_evaluate():
    class Offset(Factor):
        def evaluate(self, *values, compute_jacobians=False):
            error = values[0] - 1.0
            jacobians = (np.eye(error.size),) if compute_jacobians else None
            return FactorResult(error, jacobians)

    factor = Offset(keys=('x0',))
    np.testing.assert_allclose(factor.evaluate_error(np.array([3.0])), [2.0])
    result = factor.evaluate_error_and_jacobians(np.array([3.0, 1.0]))
    np.testing.assert_allclose(result.jacobians[0], np.eye(2))
    assert factor.keys == ('x0',)
