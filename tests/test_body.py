"""Tests for body mass properties.

Checks the natural-coordinate mass matrix against the closed form of a
uniform bar, its symmetry/positive semi-definiteness, cache coherence and
the gravity force split between the two points.
"""

import pytest
import numpy as np
from multibody import Body, RenderParams


def make_uniform_rod(mass=2.0, length=1.5):
    """Uniform slender bar: cog at mid-length, I0 = m·L²/3."""
    return Body(
        points=(0, 1),
        mass=mass,
        length=length,
        inertia=mass * length ** 2 / 3.0,
        cog=(0.5 * length, 0.0),
    )


def test_uniform_rod_mass_blocks():
    """Uniform rod: M00 = M11 = m/3·I and M01 = m/6·I."""
    mass = 2.0
    body = make_uniform_rod(mass=mass)

    np.testing.assert_allclose(body.m00, mass / 3.0 * np.eye(2), atol=1e-12)
    np.testing.assert_allclose(body.m11, mass / 3.0 * np.eye(2), atol=1e-12)
    np.testing.assert_allclose(body.m01, mass / 6.0 * np.eye(2), atol=1e-12)


def test_total_mass_is_preserved():
    """Summing all entries of one axis of M gives the body mass."""
    body = Body((0, 1), mass=3.0, length=2.0, inertia=5.0, cog=(0.7, 0.2))
    matrix = body.mass_matrix
    x_dofs = [0, 2]
    assert np.sum(matrix[np.ix_(x_dofs, x_dofs)]) == pytest.approx(3.0)


@pytest.mark.parametrize("mass", [0.1, 1.0, 7.5])
@pytest.mark.parametrize("cog", [(0.0, 0.0), (0.3, 0.0), (0.5, -0.2), (1.2, 0.4)])
@pytest.mark.parametrize("extra_inertia", [0.0, 0.05, 1.0])
def test_mass_matrix_symmetric_positive_semidefinite(mass, cog, extra_inertia):
    """Physically consistent inertias give symmetric PSD matrices."""
    # Parallel-axis theorem: I0 = I_cog + m·|cog|²
    inertia = extra_inertia + mass * (cog[0] ** 2 + cog[1] ** 2)
    body = Body((0, 1), mass=mass, length=1.0, inertia=inertia, cog=cog)
    matrix = body.mass_matrix

    np.testing.assert_allclose(matrix, matrix.T, atol=1e-12)
    eigenvalues = np.linalg.eigvalsh(matrix)
    assert eigenvalues.min() >= -1e-10


def test_cache_invalidated_by_setters():
    """Changing any mass property recomputes the blocks on next read."""
    body = make_uniform_rod(mass=2.0, length=1.0)
    _ = body.m00
    assert body.is_mass_cached

    body.inertia = 4.0 / 3.0
    assert not body.is_mass_cached
    _ = body.m00
    body.mass = 4.0
    assert not body.is_mass_cached
    np.testing.assert_allclose(body.m00, 4.0 / 3.0 * np.eye(2), atol=1e-12)

    body.set_cog(0.0, 0.0)
    assert not body.is_mass_cached
    np.testing.assert_allclose(body.m00, body.evaluate_mass_matrix()[0])


def test_cache_invalidated_by_length_change():
    """The blocks scale with 1/L and 1/L², so a new length must recompute them."""
    body = make_uniform_rod()
    old_m00, old_m11 = body.m00, body.m11
    assert body.is_mass_cached

    body.length = 3.0
    assert not body.is_mass_cached
    m00, m11, m01 = body.evaluate_mass_matrix()
    np.testing.assert_allclose(body.m00, m00, atol=1e-12)
    np.testing.assert_allclose(body.m11, m11, atol=1e-12)
    np.testing.assert_allclose(body.m01, m01, atol=1e-12)
    # I0 = 1.5 over L² = 9 with cog still at x = 0.75
    np.testing.assert_allclose(
        body.m00, (2.0 - 1.0 + 1.5 / 9.0) * np.eye(2), atol=1e-12
    )
    assert not np.allclose(body.m00, old_m00)
    assert not np.allclose(body.m11, old_m11)


@pytest.mark.parametrize("change", [
    lambda body: setattr(body, "inertia", 0.5),
    lambda body: setattr(body, "mass", 10.0),
    lambda body: body.set_cog(1.5, 0.5),
])
def test_setters_enforce_parallel_axis(change):
    """A rejected change leaves the body and its cached blocks untouched."""
    body = make_uniform_rod()
    m00 = body.m00.copy()
    with pytest.raises(ValueError, match="parallel-axis"):
        change(body)

    assert body.mass == pytest.approx(2.0)
    assert body.inertia == pytest.approx(1.5)
    np.testing.assert_allclose(body.cog, [0.75, 0.0])
    assert body.is_mass_cached
    np.testing.assert_allclose(body.m00, m00)


def test_locked_length_is_read_only():
    body = make_uniform_rod()
    body.lock_length()
    with pytest.raises(ValueError, match="fixed"):
        body.length = 2.0
    assert body.length == pytest.approx(1.5)
    assert body.copy().length == pytest.approx(1.5)


def test_cog_getter_returns_copy():
    body = make_uniform_rod()
    cog = body.cog
    cog[0] = 100.0
    assert body.cog[0] == pytest.approx(0.75)


def test_gravity_split_uniform_rod():
    """A uniform rod carries half its weight on each point."""
    body = make_uniform_rod(mass=2.0)
    force0, force1 = body.gravity_forces(np.array([0.0, -9.81]))

    np.testing.assert_allclose(force0, [0.0, -9.81], atol=1e-12)
    np.testing.assert_allclose(force1, [0.0, -9.81], atol=1e-12)


def test_gravity_forces_sum_to_weight():
    body = Body((0, 1), mass=3.0, length=2.0, inertia=5.0, cog=(0.5, 0.3))
    gravity = np.array([1.0, -9.81])
    force0, force1 = body.gravity_forces(gravity)
    np.testing.assert_allclose(force0 + force1, 3.0 * gravity, atol=1e-12)


def test_cog_position_with_lateral_offset():
    """Local y of the cog is perpendicular (CCW) to the bar."""
    body = Body((0, 1), mass=1.0, length=2.0, inertia=2.0, cog=(1.0, 0.5))
    position = body.cog_position([0.0, 0.0], [0.0, 2.0])
    np.testing.assert_allclose(position, [-0.5, 1.0], atol=1e-12)


def test_copy_is_independent():
    body = make_uniform_rod()
    other = body.copy()
    other.inertia = 10.0
    other.mass = 10.0
    assert body.mass == pytest.approx(2.0)
    assert body.inertia == pytest.approx(1.5)
    assert other.render_params is not body.render_params


@pytest.mark.parametrize("kwargs, match", [
    (dict(mass=0.0), "mass"),
    (dict(length=-1.0), "length"),
    (dict(inertia=-0.1), "inertia"),
    (dict(cog=(1.0, 2.0, 3.0)), "cog"),
    (dict(inertia=0.1, cog=(0.5, 0.0)), "parallel-axis"),
])
def test_invalid_parameters_rejected(kwargs, match):
    arguments = dict(points=(0, 1), mass=1.0, length=1.0, inertia=0.5)
    arguments.update(kwargs)
    with pytest.raises(ValueError, match=match):
        Body(**arguments)


def test_body_needs_two_distinct_points():
    with pytest.raises(ValueError):
        Body((0, 0), mass=1.0, length=1.0, inertia=1.0)
    with pytest.raises(ValueError):
        Body((0, 1, 2), mass=1.0, length=1.0, inertia=1.0)


def test_render_style_validated():
    with pytest.raises(ValueError, match="render_style"):
        RenderParams(render_style='wireframe')
