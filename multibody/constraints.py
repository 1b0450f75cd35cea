"""Kinematic constraints between points of a planar mechanism.

Every constraint owns one or more rows of the global residual Phi and
writes, from one closed-form geometric relation:

    - Phi_i            constraint violation (zero when satisfied)
    - dotPhi_i         total time derivative, Phi_q·dq for these joints
    - Phi_q(i, :)      Jacobian row
    - dotPhi_q(i, :)   time derivative of the Jacobian row
    - dPhiqdq_dq(i, :) d(Phi_q·dq)/dq, needed by acceleration-level equations

Columns are declared once in declare_sparsity(); columns of fixed points
are skipped and their values are simply not written.
"""

import copy
import math
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple, Type

import numpy as np

from multibody.points import PointRef

if TYPE_CHECKING:
    from multibody.assembled_model import AssembledModel


class Constraint(ABC):
    """Base class of all constraint variants.

    Subclasses define `num_rows`, optionally `relative_coordinates()` and
    implement `update()`.

    Local column order is [x, y] of each referenced point (in order),
    followed by the relative coordinates the constraint uses.
    """

    num_rows = 1
    type_name = ''

    def __init__(self, point_indices: Sequence[int]) -> None:
        self.point_indices: Tuple[int, ...] = tuple(int(i) for i in point_indices)
        if len(set(self.point_indices)) != len(self.point_indices):
            raise ValueError(
                f"{type(self).__name__} points must be distinct, "
                f"got {self.point_indices}"
            )
        self._rows: Tuple[int, ...] = ()
        # Per local row: list of slots (or None for fixed columns) in
        # the Phi_q, dotPhi_q and dPhiqdq_dq arenas respectively.
        self._jacobian_slots: List[List[Optional[int]]] = []
        self._dot_jacobian_slots: List[List[Optional[int]]] = []
        self._dphiqdq_slots: List[List[Optional[int]]] = []

    @property
    def rows(self) -> Tuple[int, ...]:
        """Rows of Phi owned by this constraint (empty before assembly)."""
        return self._rows

    def relative_coordinates(self) -> Tuple[int, ...]:
        """Indices (into the model's relative coordinate list) used here."""
        return ()

    def _local_columns(self, model: 'AssembledModel') -> List[Optional[int]]:
        columns: List[Optional[int]] = []
        for index in self.point_indices:
            dofs = model.points_to_dofs[index]
            if dofs is None:
                columns.extend([None, None])
            else:
                columns.extend(dofs)
        for coordinate in self.relative_coordinates():
            columns.append(model.relative_coordinate_dof(coordinate))
        return columns

    def declare_sparsity(self, model: 'AssembledModel') -> None:
        """Reserve rows and register every Jacobian entry this constraint writes.

        Raises:
            ValueError: If every referenced point is fixed
        """
        if all(model.points_to_dofs[i] is None for i in self.point_indices):
            raise ValueError(
                f"Useless {type(self).__name__} constraint: all its points "
                f"{self.point_indices} are fixed"
            )

        columns = self._local_columns(model)
        self._rows = model.allocate_constraint_rows(self.num_rows)
        self._jacobian_slots = []
        self._dot_jacobian_slots = []
        self._dphiqdq_slots = []
        for row in self._rows:
            self._jacobian_slots.append(
                [None if c is None else model.phi_q_arena.add_entry(row, c)
                 for c in columns]
            )
            self._dot_jacobian_slots.append(
                [None if c is None else model.dot_phi_q_arena.add_entry(row, c)
                 for c in columns]
            )
            self._dphiqdq_slots.append(
                [None if c is None else model.dphiqdq_dq_arena.add_entry(row, c)
                 for c in columns]
            )
        self._on_declared(model)

    def _on_declared(self, model: 'AssembledModel') -> None:
        """Hook for variants that capture reference geometry at assembly."""

    def point(self, model: 'AssembledModel', local_index: int) -> PointRef:
        return model.point_ref(self.point_indices[local_index])

    def _write_row(
        self,
        model: 'AssembledModel',
        local_row: int,
        phi: float,
        dot_phi: float,
        jacobian: Sequence[float],
        dot_jacobian: Sequence[float],
        dphiqdq: Optional[Sequence[float]] = None,
    ) -> None:
        """Store one row's values; entries of fixed columns are dropped."""
        row = self._rows[local_row]
        model.phi[row] = phi
        model.dot_phi[row] = dot_phi
        if dphiqdq is None:
            dphiqdq = dot_jacobian

        targets = (
            (model.phi_q_arena.values, self._jacobian_slots[local_row], jacobian),
            (model.dot_phi_q_arena.values, self._dot_jacobian_slots[local_row],
             dot_jacobian),
            (model.dphiqdq_dq_arena.values, self._dphiqdq_slots[local_row],
             dphiqdq),
        )
        for values, slots, local_values in targets:
            for slot, value in zip(slots, local_values):
                if slot is not None:
                    values[slot] = value

    @abstractmethod
    def update(self, model: 'AssembledModel') -> None:
        """Recompute all quantities of this constraint from the model state."""

    def clone(self) -> 'Constraint':
        """Unassembled copy of this constraint."""
        other = copy.copy(self)
        other._rows = ()
        other._jacobian_slots = []
        other._dot_jacobian_slots = []
        other._dphiqdq_slots = []
        return other

    def copy_assembled(self) -> 'Constraint':
        """Copy that keeps the rows and slots of this assembled constraint."""
        other = self.clone()
        other._rows = self._rows
        other._jacobian_slots = [list(s) for s in self._jacobian_slots]
        other._dot_jacobian_slots = [list(s) for s in self._dot_jacobian_slots]
        other._dphiqdq_slots = [list(s) for s in self._dphiqdq_slots]
        return other

    def to_dict(self) -> dict:
        """Description usable by constraint_from_dict()."""
        return {'type': self.type_name, 'points': list(self.point_indices)}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(points={self.point_indices}, rows={self._rows})"


class ConstantDistance(Constraint):
    """Constant distance between two points.

    Phi = (x1 - x0)² + (y1 - y0)² - L²

    If `length` is not given, it is taken from the point positions at
    assembly time.
    """

    type_name = 'constant_distance'

    def __init__(self, point0: int, point1: int,
                 length: Optional[float] = None) -> None:
        super().__init__((point0, point1))
        self.length = length

    def _on_declared(self, model: 'AssembledModel') -> None:
        if self.length is None:
            p0 = self.point(model, 0)
            p1 = self.point(model, 1)
            self.length = math.hypot(p1.x - p0.x, p1.y - p0.y)
        if self.length <= 0:
            raise ValueError(
                f"ConstantDistance between points {self.point_indices} "
                f"must have positive length, got {self.length}"
            )

    def update(self, model: 'AssembledModel') -> None:
        p0 = self.point(model, 0)
        p1 = self.point(model, 1)

        dx = p1.x - p0.x
        dy = p1.y - p0.y
        dvx = p1.dotx - p0.dotx
        dvy = p1.doty - p0.doty

        phi = dx * dx + dy * dy - self.length ** 2
        dot_phi = 2.0 * (dx * dvx + dy * dvy)
        jacobian = (-2.0 * dx, -2.0 * dy, 2.0 * dx, 2.0 * dy)
        dot_jacobian = (-2.0 * dvx, -2.0 * dvy, 2.0 * dvx, 2.0 * dvy)

        self._write_row(model, 0, phi, dot_phi, jacobian, dot_jacobian)

    def to_dict(self) -> dict:
        description = super().to_dict()
        description['length'] = self.length
        return description


class FixedSlider(Constraint):
    """Point constrained to slide along a fixed line.

    The line passes through the constant positions `line_point0` and
    `line_point1` (a, b):

    Phi = (bx - ax)·(py - ay) - (by - ay)·(px - ax)
    """

    type_name = 'fixed_slider'

    def __init__(self, point: int, line_point0: Sequence[float],
                 line_point1: Sequence[float]) -> None:
        super().__init__((point,))
        self.line_point0 = (float(line_point0[0]), float(line_point0[1]))
        self.line_point1 = (float(line_point1[0]), float(line_point1[1]))
        if self.line_point0 == self.line_point1:
            raise ValueError("FixedSlider line points must be distinct")

    def update(self, model: 'AssembledModel') -> None:
        p = self.point(model, 0)
        ax, ay = self.line_point0
        bx, by = self.line_point1

        phi = (bx - ax) * (p.y - ay) - (by - ay) * (p.x - ax)
        dot_phi = (bx - ax) * p.doty - (by - ay) * p.dotx
        jacobian = (ay - by, bx - ax)

        self._write_row(model, 0, phi, dot_phi, jacobian, (0.0, 0.0))

    def to_dict(self) -> dict:
        return {
            'type': self.type_name,
            'point': self.point_indices[0],
            'line': [list(self.line_point0), list(self.line_point1)],
        }


class MobileSlider(Constraint):
    """Point constrained to the line through two other (moving) points.

    With p the sliding point and r0, r1 the line points:

    Phi = (r1x - r0x)·(py - r0y) - (r1y - r0y)·(px - r0x)
    """

    type_name = 'mobile_slider'

    def __init__(self, point: int, reference0: int, reference1: int) -> None:
        super().__init__((point, reference0, reference1))

    def declare_sparsity(self, model: 'AssembledModel') -> None:
        if model.points_to_dofs[self.point_indices[0]] is None:
            raise ValueError(
                f"Useless MobileSlider constraint: sliding point "
                f"{self.point_indices[0]} is fixed"
            )
        super().declare_sparsity(model)

    def update(self, model: 'AssembledModel') -> None:
        p = self.point(model, 0)
        r0 = self.point(model, 1)
        r1 = self.point(model, 2)

        phi = ((r1.x - r0.x) * (p.y - r0.y)
               - (r1.y - r0.y) * (p.x - r0.x))

        dot_phi = ((r1.dotx - r0.dotx) * (p.y - r0.y)
                   + (r1.x - r0.x) * (p.doty - r0.doty)
                   - (r1.doty - r0.doty) * (p.x - r0.x)
                   - (r1.y - r0.y) * (p.dotx - r0.dotx))

        jacobian = (
            r0.y - r1.y, r1.x - r0.x,
            r1.y - p.y, p.x - r1.x,
            p.y - r0.y, r0.x - p.x,
        )
        dot_jacobian = (
            r0.doty - r1.doty, r1.dotx - r0.dotx,
            r1.doty - p.doty, p.dotx - r1.dotx,
            p.doty - r0.doty, r0.dotx - p.dotx,
        )

        self._write_row(model, 0, phi, dot_phi, jacobian, dot_jacobian)

    def to_dict(self) -> dict:
        return {
            'type': self.type_name,
            'point': self.point_indices[0],
            'references': list(self.point_indices[1:]),
        }


def _use_cosine_equation(theta: float) -> bool:
    """Pick the better-conditioned of the two angle equations."""
    return abs(math.sin(theta)) > abs(math.cos(theta))


class RelativeAngleAbsolute(Constraint):
    """Absolute angle of the rod pt0->pt1 w.r.t. +X (CCW positive).

    The angle is a relative coordinate appended to q. With L the rod length
    captured at assembly, the constraint is the x equation

        Phi = (x1 - x0) - L·cos(theta)      when |sin(theta)| > |cos(theta)|

    and the y equation otherwise

        Phi = (y1 - y0) - L·sin(theta)
    """

    type_name = 'relative_angle_absolute'

    def __init__(self, point0: int, point1: int, coordinate: int) -> None:
        super().__init__((point0, point1))
        self.coordinate = int(coordinate)
        self.length: Optional[float] = None

    def relative_coordinates(self) -> Tuple[int, ...]:
        return (self.coordinate,)

    def _on_declared(self, model: 'AssembledModel') -> None:
        p0 = self.point(model, 0)
        p1 = self.point(model, 1)
        self.length = math.hypot(p1.x - p0.x, p1.y - p0.y)
        if self.length <= 0:
            raise ValueError(
                f"RelativeAngleAbsolute rod {self.point_indices} has zero length"
            )

    def update(self, model: 'AssembledModel') -> None:
        p0 = self.point(model, 0)
        p1 = self.point(model, 1)
        dof = model.relative_coordinate_dof(self.coordinate)
        theta = float(model.q[dof])
        dot_theta = float(model.dotq[dof])
        L = self.length
        sin_theta = math.sin(theta)
        cos_theta = math.cos(theta)

        if _use_cosine_equation(theta):
            phi = (p1.x - p0.x) - L * cos_theta
            dot_phi = (p1.dotx - p0.dotx) + L * sin_theta * dot_theta
            jacobian = (-1.0, 0.0, 1.0, 0.0, L * sin_theta)
            dot_jacobian = (0.0, 0.0, 0.0, 0.0, L * cos_theta * dot_theta)
        else:
            phi = (p1.y - p0.y) - L * sin_theta
            dot_phi = (p1.doty - p0.doty) - L * cos_theta * dot_theta
            jacobian = (0.0, -1.0, 0.0, 1.0, -L * cos_theta)
            dot_jacobian = (0.0, 0.0, 0.0, 0.0, L * sin_theta * dot_theta)

        self._write_row(model, 0, phi, dot_phi, jacobian, dot_jacobian)

    def to_dict(self) -> dict:
        description = super().to_dict()
        description['coordinate'] = self.coordinate
        return description


class RelativeAngle(Constraint):
    """Angle at pt0 from rod pt0->pt1 to rod pt0->pt2 (CCW positive).

    With u = p1 - p0, v = p2 - p0 and their lengths L1, L2 captured at
    assembly, the dot-product form

        Phi = u·v - L1·L2·cos(theta)        when |sin(theta)| > |cos(theta)|

    is used, and the cross-product form otherwise

        Phi = u×v - L1·L2·sin(theta)
    """

    type_name = 'relative_angle'

    def __init__(self, point0: int, point1: int, point2: int,
                 coordinate: int) -> None:
        super().__init__((point0, point1, point2))
        self.coordinate = int(coordinate)
        self.lengths_product: Optional[float] = None

    def relative_coordinates(self) -> Tuple[int, ...]:
        return (self.coordinate,)

    def _on_declared(self, model: 'AssembledModel') -> None:
        p0 = self.point(model, 0)
        p1 = self.point(model, 1)
        p2 = self.point(model, 2)
        length_u = math.hypot(p1.x - p0.x, p1.y - p0.y)
        length_v = math.hypot(p2.x - p0.x, p2.y - p0.y)
        if length_u <= 0 or length_v <= 0:
            raise ValueError(
                f"RelativeAngle rods {self.point_indices} must have non-zero length"
            )
        self.lengths_product = length_u * length_v

    def update(self, model: 'AssembledModel') -> None:
        p0 = self.point(model, 0)
        p1 = self.point(model, 1)
        p2 = self.point(model, 2)
        dof = model.relative_coordinate_dof(self.coordinate)
        theta = float(model.q[dof])
        dot_theta = float(model.dotq[dof])
        k = self.lengths_product
        sin_theta = math.sin(theta)
        cos_theta = math.cos(theta)

        ux, uy = p1.x - p0.x, p1.y - p0.y
        vx, vy = p2.x - p0.x, p2.y - p0.y
        dux, duy = p1.dotx - p0.dotx, p1.doty - p0.doty
        dvx, dvy = p2.dotx - p0.dotx, p2.doty - p0.doty

        if _use_cosine_equation(theta):
            phi = ux * vx + uy * vy - k * cos_theta
            dot_phi = (dux * vx + duy * vy + ux * dvx + uy * dvy
                       + k * sin_theta * dot_theta)
            jacobian = (
                -(vx + ux), -(vy + uy),
                vx, vy,
                ux, uy,
                k * sin_theta,
            )
            dot_jacobian = (
                -(dvx + dux), -(dvy + duy),
                dvx, dvy,
                dux, duy,
                k * cos_theta * dot_theta,
            )
        else:
            phi = ux * vy - uy * vx - k * sin_theta
            dot_phi = (dux * vy + ux * dvy - duy * vx - uy * dvx
                       - k * cos_theta * dot_theta)
            jacobian = (
                uy - vy, vx - ux,
                vy, -vx,
                -uy, ux,
                -k * cos_theta,
            )
            dot_jacobian = (
                duy - dvy, dvx - dux,
                dvy, -dvx,
                -duy, dux,
                k * sin_theta * dot_theta,
            )

        self._write_row(model, 0, phi, dot_phi, jacobian, dot_jacobian)

    def to_dict(self) -> dict:
        description = super().to_dict()
        description['coordinate'] = self.coordinate
        return description


CONSTRAINT_TYPES: Dict[str, Type[Constraint]] = {
    cls.type_name: cls
    for cls in (
        ConstantDistance,
        FixedSlider,
        MobileSlider,
        RelativeAngleAbsolute,
        RelativeAngle,
    )
}


def constraint_from_dict(description: dict) -> Constraint:
    """Build a constraint from a YAML/dict description.

    Examples:
        {'type': 'constant_distance', 'points': [1, 2]}
        {'type': 'fixed_slider', 'point': 2, 'line': [[0, 0], [1, 0]]}
        {'type': 'mobile_slider', 'point': 3, 'references': [1, 2]}
        {'type': 'relative_angle_absolute', 'points': [0, 1], 'coordinate': 0}
        {'type': 'relative_angle', 'points': [0, 1, 2], 'coordinate': 0}

    Raises:
        ValueError: If the type is unknown or arguments are missing
    """
    type_name = description.get('type')
    if type_name not in CONSTRAINT_TYPES:
        raise ValueError(
            f"Unknown constraint type '{type_name}', expected one of "
            f"{sorted(CONSTRAINT_TYPES)}"
        )

    try:
        if type_name == 'constant_distance':
            point0, point1 = description['points']
            return ConstantDistance(point0, point1, description.get('length'))
        if type_name == 'fixed_slider':
            line0, line1 = description['line']
            return FixedSlider(description['point'], line0, line1)
        if type_name == 'mobile_slider':
            reference0, reference1 = description['references']
            return MobileSlider(description['point'], reference0, reference1)
        if type_name == 'relative_angle_absolute':
            point0, point1 = description['points']
            return RelativeAngleAbsolute(point0, point1, description['coordinate'])
        point0, point1, point2 = description['points']
        return RelativeAngle(point0, point1, point2, description['coordinate'])
    except KeyError as error:
        raise ValueError(
            f"Constraint '{type_name}' is missing field {error}"
        ) from error
