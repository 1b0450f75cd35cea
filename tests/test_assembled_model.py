"""Tests for the assembled model: kinematic problems, state and mass assembly."""

import math

import pytest
import numpy as np
from multibody import (
    ComputeDependentParams,
    ConstantDistance,
    KinematicState,
    ModelDefinition,
    SolverStatus,
)
from multibody.model_examples import (
    build_four_bars_model,
    build_long_chain_model,
)


def test_four_bars_dimensions(four_bars):
    assert four_bars.num_coordinates == 4
    assert four_bars.num_constraints == 3
    assert four_bars.coordinate_labels() == ['x1', 'y1', 'x2', 'y2']
    assert four_bars.kinematic_state is KinematicState.UNINITIALIZED


def test_position_solve_from_perturbed_guess(four_bars):
    """Newton-Raphson restores consistency and keeps independent coordinates."""
    four_bars.set_q([1.0, 0.0, 1.3, 1.7])

    result = four_bars.compute_dependent_pos_vel_acc([1])

    assert result.converged
    assert result.status is SolverStatus.CONVERGED
    assert result.pos_final_phi < 1e-10
    assert four_bars.q[1] == 0.0
    np.testing.assert_allclose(four_bars.q, [1.0, 0.0, 1.0, 2.0], atol=1e-8)


def test_position_solve_from_far_guess():
    """A far initial guess with x1 held fixed still lands on the mechanism."""
    model = build_four_bars_model().assemble()
    model.set_q([1.0, 0.1, 0.0, 5.0])

    result = model.compute_dependent_pos_vel_acc([0])

    assert result.pos_final_phi < 1e-4
    assert model.q[0] == 1.0


def test_position_solve_is_idempotent(four_bars):
    four_bars.set_q([1.0, 0.0, 1.3, 1.7])
    four_bars.compute_dependent_pos_vel_acc([1])
    q_first = four_bars.q.copy()

    result = four_bars.compute_dependent_pos_vel_acc([1])

    assert result.pos_iterations == 0
    np.testing.assert_allclose(four_bars.q, q_first, atol=1e-12)


def test_velocity_solution_satisfies_constraints(four_bars):
    four_bars.compute_dependent_pos_vel_acc([1])
    four_bars.set_dotq([0.0, 1.0, 0.0, 0.0])

    result = four_bars.compute_dependent_pos_vel_acc([1], solve_position=False)

    assert not result.velocity_singular
    assert four_bars.dotq[1] == 1.0
    np.testing.assert_allclose(
        four_bars.get_phi_q_dense() @ four_bars.dotq, np.zeros(3), atol=1e-12
    )


def test_velocity_solution_is_linear_in_input(four_bars):
    """Dependent velocities scale linearly with the independent velocity."""
    four_bars.compute_dependent_pos_vel_acc([1])

    four_bars.set_dotq([0.0, 1.0, 0.0, 0.0])
    four_bars.compute_dependent_pos_vel_acc([1], solve_position=False)
    unit_response = four_bars.dotq.copy()

    four_bars.set_dotq([0.0, -2.5, 0.0, 0.0])
    four_bars.compute_dependent_pos_vel_acc([1], solve_position=False)

    np.testing.assert_allclose(four_bars.dotq, -2.5 * unit_response, atol=1e-12)


def test_acceleration_solution_satisfies_constraints(four_bars_with_angle):
    """Phi_q·ddq + dotPhi_q·dq = 0 after the acceleration problem."""
    model = four_bars_with_angle
    model.q[4] = 0.4
    model.dotq[4] = 2.0
    model.ddotq[4] = -1.5

    result = model.compute_dependent_pos_vel_acc([4])

    assert result.converged
    assert not result.acceleration_singular
    residual = (model.get_phi_q_dense() @ model.ddotq
                + model.get_dot_phi_q_dense() @ model.dotq)
    np.testing.assert_allclose(residual, np.zeros(4), atol=1e-9)
    assert model.ddotq[4] == -1.5
    assert model.kinematic_state is KinematicState.ACCELERATION_CONSISTENT


def test_dot_phi_is_phi_q_times_dq(four_bars_with_angle):
    model = four_bars_with_angle
    model.dotq[4] = 1.3
    model.compute_dependent_pos_vel_acc([4])
    np.testing.assert_allclose(
        model.dot_phi, model.get_phi_q_dense() @ model.dotq, atol=1e-12
    )


def test_crank_revolution_is_periodic(four_bars_with_angle):
    """Driving the crank through a full turn returns the initial configuration."""
    model = four_bars_with_angle
    model.compute_dependent_pos_vel_acc([4])
    q_start = model.q.copy()

    for theta in np.linspace(0.0, 2.0 * math.pi, 73)[1:]:
        model.q[4] = theta
        result = model.compute_dependent_pos_vel_acc([4])
        assert result.converged, f"Position problem failed at theta={theta}"
        # Crank tip follows the driving angle
        np.testing.assert_allclose(
            model.q[:2], [math.cos(theta), math.sin(theta)], atol=1e-8
        )

    np.testing.assert_allclose(model.q[:4], q_start[:4], atol=1e-8)


def test_state_machine_transitions(four_bars):
    assert four_bars.kinematic_state is KinematicState.UNINITIALIZED
    four_bars.compute_dependent_pos_vel_acc([1])
    assert four_bars.kinematic_state is KinematicState.ACCELERATION_CONSISTENT

    four_bars.set_ddotq(np.zeros(4))
    assert four_bars.kinematic_state is KinematicState.VELOCITY_CONSISTENT
    four_bars.set_dotq(np.zeros(4))
    assert four_bars.kinematic_state is KinematicState.POSITION_CONSISTENT
    four_bars.set_q(four_bars.q)
    assert four_bars.kinematic_state is KinematicState.UNINITIALIZED


def test_max_iterations_reported(four_bars):
    four_bars.set_q([1.0, 0.0, 1.5, 1.5])
    params = ComputeDependentParams(nr_tolerance=1e-14, nr_max_iterations=1)

    result = four_bars.compute_dependent_pos_vel_acc([1], params=params)

    assert result.status is SolverStatus.MAX_ITERATIONS
    assert not result.converged
    assert result.pos_iterations == 1
    assert four_bars.kinematic_state is KinematicState.UNINITIALIZED


def test_singular_jacobian_reported(four_bars):
    """Holding x1 fixed where dx1/dtheta = 0 leaves a rank-deficient problem."""
    four_bars.set_q([1.0, 0.0, 1.1, 1.9])

    result = four_bars.compute_dependent_pos_vel_acc([0])

    assert result.status is SolverStatus.SINGULAR_JACOBIAN
    assert not result.converged


def test_invalid_independent_index(four_bars):
    with pytest.raises(ValueError, match="out of range"):
        four_bars.compute_dependent_pos_vel_acc([7])


def test_state_setters_validate_size(four_bars):
    with pytest.raises(ValueError, match="shape"):
        four_bars.set_q(np.zeros(3))
    with pytest.raises(ValueError, match="non-finite"):
        four_bars.set_dotq([0.0, np.nan, 0.0, 0.0])


def test_over_constrained_model_rejected():
    definition = build_four_bars_model()
    definition.add_constraint(ConstantDistance(1, 3))
    definition.add_constraint(ConstantDistance(0, 2))
    with pytest.raises(ValueError, match="Over-constrained"):
        definition.assemble()


def test_all_fixed_model_rejected():
    definition = ModelDefinition()
    definition.add_point(0.0, 0.0, fixed=True)
    with pytest.raises(ValueError, match="Empty state vector"):
        definition.assemble()


def test_mass_matrix_assembly_drops_fixed_points(pendulum):
    """Only the free end of the pendulum contributes: M = I0/L²·I."""
    mass = pendulum.build_mass_matrix_dense()
    np.testing.assert_allclose(mass, np.eye(2) / 3.0, atol=1e-12)


def test_mass_matrix_assembly_shares_point_blocks():
    model = build_long_chain_model(2).assemble()
    mass = model.build_mass_matrix_dense()
    # Middle point belongs to both links: M11 of link 1 plus M00 of link 2
    np.testing.assert_allclose(mass[:2, :2], 2.0 / 3.0 * np.eye(2), atol=1e-12)
    np.testing.assert_allclose(mass[:2, 2:], np.eye(2) / 6.0, atol=1e-12)
    np.testing.assert_allclose(mass, mass.T, atol=1e-12)


def test_generalized_forces(pendulum):
    forces = pendulum.build_generalized_forces()
    np.testing.assert_allclose(forces, [0.0, -9.81 / 2.0], atol=1e-12)

    pendulum.add_external_force(1, [3.0, 1.0])
    forces = pendulum.build_generalized_forces()
    np.testing.assert_allclose(forces, [3.0, 1.0 - 9.81 / 2.0], atol=1e-12)

    pendulum.clear_external_forces()
    np.testing.assert_allclose(
        pendulum.build_generalized_forces(), [0.0, -9.81 / 2.0], atol=1e-12
    )


def test_external_force_on_fixed_point_rejected(pendulum):
    with pytest.raises(ValueError, match="fixed"):
        pendulum.add_external_force(0, [1.0, 0.0])


def test_energy(pendulum):
    """Horizontal bar at rest: no kinetic energy, cog at y=0."""
    assert pendulum.kinetic_energy() == 0.0
    assert pendulum.potential_energy() == pytest.approx(0.0, abs=1e-12)

    pendulum.set_q([0.0, -1.0])
    pendulum.set_dotq([2.0, 0.0])
    # Rotation about the hinge: T = I0·omega²/2 = (1/3)·4/2
    assert pendulum.kinetic_energy() == pytest.approx(2.0 / 3.0)
    assert pendulum.potential_energy() == pytest.approx(-9.81 * 0.5)


def test_body_segments(four_bars):
    segments = four_bars.get_body_segments()
    assert [s.name for s in segments] == ['crank', 'coupler', 'rocker']
    assert segments[0].point0 == (0.0, 0.0)
    assert segments[0].point0_fixed
    assert segments[2].point0 == (1.0, 2.0)
    assert segments[2].point1_fixed


def test_clone_is_independent(four_bars):
    clone = four_bars.clone()
    clone.set_q([1.0, 0.0, 1.3, 1.7])
    clone.compute_dependent_pos_vel_acc([1])

    np.testing.assert_allclose(four_bars.q, [1.0, 0.0, 1.0, 2.0])
    clone.set_q([0.0, 1.0, 1.5, 2.5])
    clone.update_numeric_phi_and_jacobians()
    four_bars.update_numeric_phi_and_jacobians()
    np.testing.assert_allclose(four_bars.phi, np.zeros(3), atol=1e-12)
    assert np.linalg.norm(clone.phi) > 0.1


def test_assembled_body_length_is_read_only(four_bars):
    """The rigidity constraint keeps the length captured at assembly."""
    crank = four_bars.bodies[0]
    with pytest.raises(ValueError, match="fixed"):
        crank.length = 2.0
    assert crank.length == pytest.approx(1.0)

    with pytest.raises(ValueError, match="fixed"):
        four_bars.clone().bodies[0].length = 2.0

    crank.inertia = 1.0
    crank.mass = 1.5
    assert crank.mass == pytest.approx(1.5)
    np.testing.assert_allclose(crank.m11, np.eye(2), atol=1e-12)
