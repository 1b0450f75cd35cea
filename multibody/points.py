"""Points of a planar mechanism and their views into the state vectors.

In natural coordinates each free point contributes two generalized
coordinates (x, y) to q. Fixed (ground) points keep a constant position
and never appear in q, dq or ddq.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Tuple

if TYPE_CHECKING:
    from multibody.assembled_model import AssembledModel


@dataclass
class Point:
    """A 2D point of the mechanism.

    Attributes:
        x: Position x coordinate (initial guess for free points)
        y: Position y coordinate
        fixed: True for ground points, which are not variables
    """
    x: float = 0.0
    y: float = 0.0
    fixed: bool = False


class PointRef:
    """Read/write view of one point's position, velocity and acceleration.

    Reads and writes of a free point go straight to the model's shared
    q / dotq / ddotq arrays, so every constraint referencing the point sees
    the change on its next update. Fixed points expose their constant
    position and zero velocity/acceleration, and reject writes.
    """

    __slots__ = ('_model', '_index', '_dofs')

    def __init__(self, model: 'AssembledModel', index: int) -> None:
        self._model = model
        self._index = index
        self._dofs: Optional[Tuple[int, int]] = model.points_to_dofs[index]

    @property
    def index(self) -> int:
        return self._index

    @property
    def fixed(self) -> bool:
        return self._dofs is None

    @property
    def dofs(self) -> Optional[Tuple[int, int]]:
        """(dof_x, dof_y) in q, or None for a fixed point."""
        return self._dofs

    def _read(self, vector_name: str, axis: int) -> float:
        if self._dofs is None:
            return 0.0
        return float(getattr(self._model, vector_name)[self._dofs[axis]])

    def _write(self, vector_name: str, axis: int, value: float) -> None:
        if self._dofs is None:
            raise ValueError(
                f"Point {self._index} is fixed and cannot be modified"
            )
        getattr(self._model, vector_name)[self._dofs[axis]] = value

    @property
    def x(self) -> float:
        if self._dofs is None:
            return self._model.points[self._index].x
        return float(self._model.q[self._dofs[0]])

    @x.setter
    def x(self, value: float) -> None:
        self._write('q', 0, value)
        self._model.invalidate_kinematic_state()

    @property
    def y(self) -> float:
        if self._dofs is None:
            return self._model.points[self._index].y
        return float(self._model.q[self._dofs[1]])

    @y.setter
    def y(self, value: float) -> None:
        self._write('q', 1, value)
        self._model.invalidate_kinematic_state()

    @property
    def dotx(self) -> float:
        return self._read('dotq', 0)

    @dotx.setter
    def dotx(self, value: float) -> None:
        self._write('dotq', 0, value)

    @property
    def doty(self) -> float:
        return self._read('dotq', 1)

    @doty.setter
    def doty(self, value: float) -> None:
        self._write('dotq', 1, value)

    @property
    def ddotx(self) -> float:
        return self._read('ddotq', 0)

    @ddotx.setter
    def ddotx(self, value: float) -> None:
        self._write('ddotq', 0, value)

    @property
    def ddoty(self) -> float:
        return self._read('ddotq', 1)

    @ddoty.setter
    def ddoty(self, value: float) -> None:
        self._write('ddotq', 1, value)

    @property
    def position(self) -> Tuple[float, float]:
        return (self.x, self.y)

    def __repr__(self) -> str:
        kind = 'fixed' if self.fixed else f'dofs={self._dofs}'
        return f"PointRef({self._index}, x={self.x:.6g}, y={self.y:.6g}, {kind})"


def assign_point_dofs(points) -> Tuple[list, int]:
    """Map each point to its (dof_x, dof_y) pair, skipping fixed points.

    Returns:
        (points_to_dofs, number_of_point_dofs)
    """
    points_to_dofs = []
    next_dof = 0
    for point in points:
        if point.fixed:
            points_to_dofs.append(None)
        else:
            points_to_dofs.append((next_dof, next_dof + 1))
            next_dof += 2
    return points_to_dofs, next_dof
