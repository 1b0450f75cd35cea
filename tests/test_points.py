"""Tests for point views into the model state."""

import pytest
import numpy as np
from multibody import KinematicState


def test_free_point_reads_state(four_bars):
    point = four_bars.point_ref(2)
    assert point.position == (1.0, 2.0)
    assert not point.fixed
    assert point.dofs == (2, 3)


def test_free_point_writes_through(four_bars):
    """Writes go to the shared q vector and reset the kinematic state."""
    four_bars.compute_dependent_pos_vel_acc([1])
    assert four_bars.kinematic_state is not KinematicState.UNINITIALIZED

    point = four_bars.point_ref(1)
    point.x = 0.5
    point.doty = 3.0

    assert four_bars.q[0] == 0.5
    assert four_bars.dotq[1] == 3.0
    assert four_bars.kinematic_state is KinematicState.UNINITIALIZED


def test_fixed_point_is_read_only(four_bars):
    point = four_bars.point_ref(3)
    assert point.fixed
    assert point.dofs is None
    assert point.position == (4.0, 0.0)
    assert point.dotx == 0.0
    assert point.ddoty == 0.0

    with pytest.raises(ValueError, match="fixed"):
        point.x = 1.0
    with pytest.raises(ValueError, match="fixed"):
        point.dotx = 1.0


def test_fixed_points_have_no_coordinates(four_bars):
    assert four_bars.points_to_dofs == [None, (0, 1), (2, 3), None]
    assert four_bars.num_coordinates == 4
    np.testing.assert_allclose(four_bars.q, [1.0, 0.0, 1.0, 2.0])


def test_point_index_validated(four_bars):
    with pytest.raises(ValueError, match="out of range"):
        four_bars.point_ref(4)
