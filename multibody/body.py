"""Planar rigid body in natural coordinates.

A body is spanned by two points of the mechanism. Its kinetic energy is
discretized exactly onto those two points, giving a constant 4x4 mass
matrix made of three distinct 2x2 blocks:

    M = [[M00,   M01],
         [M01^T, M11]]

With L the body length, (xg, yg) the center of gravity in the local frame
(origin at point 0, +x towards point 1) and I0 the moment of inertia about
point 0:

    M00 = (m - 2·m·xg/L + I0/L²)·I
    M11 = (I0/L²)·I
    M01 = (m·xg/L - I0/L²)·I + (m·yg/L)·[[0, -1], [1, 0]]
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from multibody._internal.validation import (
    validate_positive,
    validate_non_negative,
    validate_choice,
)


RENDER_STYLES = ('line', 'cylinder')

# Rotation by +90 degrees
_ROT90 = np.array([[0.0, -1.0], [1.0, 0.0]])


@dataclass
class RenderParams:
    """How a body should be drawn by a rendering layer.

    Attributes:
        render_style: 'line' or 'cylinder'
        show_grounds: Draw fixed points as ground symbols
        z_layer: Offset added to the z coordinate, emulating link layers
        line_alpha: Line transparency (0-255)
        line_width: Line width in pixels
        cylinder_diameter: Diameter used for the cylinder style
    """
    render_style: str = 'cylinder'
    show_grounds: bool = True
    z_layer: float = 0.0
    line_alpha: int = 0x8f
    line_width: float = 1.0
    cylinder_diameter: float = 0.05

    def __post_init__(self) -> None:
        validate_choice(self.render_style, RENDER_STYLES, 'render_style')


class Body:
    """Rigid bar between two points with lumped mass properties.

    Mass sub-blocks are cached; every property setter invalidates the cache
    and the blocks are recomputed lazily on the next read.
    """

    def __init__(
        self,
        points: Sequence[int],
        mass: float,
        length: float,
        inertia: float,
        cog: Sequence[float] = (0.0, 0.0),
        name: str = '',
        render_params: Optional[RenderParams] = None,
    ) -> None:
        if len(points) != 2:
            raise ValueError(
                f"A body needs exactly 2 points, got {len(points)}"
            )
        if points[0] == points[1]:
            raise ValueError(
                f"Body points must be distinct, got {tuple(points)}"
            )
        self.name = name
        self.points: Tuple[int, int] = (int(points[0]), int(points[1]))
        self.render_params = render_params or RenderParams()

        self._mass_blocks: Optional[Tuple[np.ndarray, ...]] = None
        self._constructed = False
        self._length_locked = False
        self.mass = mass
        self.length = length
        self.inertia = inertia
        self.cog = cog
        self._constructed = True
        self._validate_parallel_axis()

    def _validate_parallel_axis(self, mass=None, inertia=None, cog=None) -> None:
        """I0 about point 0 can not be below m·|cog|² (parallel-axis theorem).

        Candidate values override the current ones, so setters can check
        before assigning.

        Raises:
            ValueError: If the inertia is physically inconsistent
        """
        if not self._constructed:
            return
        mass = self._mass if mass is None else mass
        inertia = self._inertia if inertia is None else inertia
        cog = self._cog if cog is None else cog
        minimum = mass * float(cog @ cog)
        if inertia < minimum - 1e-12 * max(1.0, minimum):
            raise ValueError(
                f"inertia {inertia} about point 0 is below "
                f"mass·|cog|² = {minimum} (parallel-axis theorem)"
            )

    def lock_length(self) -> None:
        """Make `length` read-only; the rigidity constraint has captured it."""
        self._length_locked = True

    @property
    def mass(self) -> float:
        """Mass in kg."""
        return self._mass

    @mass.setter
    def mass(self, value: float) -> None:
        validate_positive(value, 'mass')
        self._validate_parallel_axis(mass=float(value))
        self._mass = float(value)
        self._mass_blocks = None

    @property
    def length(self) -> float:
        """Constant distance between the two points."""
        return self._length

    @length.setter
    def length(self, value: float) -> None:
        if self._length_locked:
            raise ValueError(
                "length of an assembled body is fixed by its rigidity constraint"
            )
        validate_positive(value, 'length')
        self._length = float(value)
        self._mass_blocks = None

    @property
    def inertia(self) -> float:
        """Moment of inertia about point 0 (kg·m²)."""
        return self._inertia

    @inertia.setter
    def inertia(self, value: float) -> None:
        validate_non_negative(value, 'inertia')
        self._validate_parallel_axis(inertia=float(value))
        self._inertia = float(value)
        self._mass_blocks = None

    @property
    def cog(self) -> np.ndarray:
        """Center of gravity in local coordinates (read-only copy).

        Assign a new value (or use set_cog) to change it.
        """
        return self._cog.copy()

    @cog.setter
    def cog(self, value: Sequence[float]) -> None:
        cog = np.asarray(value, dtype=float)
        if cog.shape != (2,):
            raise ValueError(f"cog must have 2 components, got {value}")
        self._validate_parallel_axis(cog=cog)
        self._cog = cog
        self._mass_blocks = None

    def set_cog(self, x: float, y: float) -> None:
        self.cog = (x, y)

    @property
    def is_mass_cached(self) -> bool:
        return self._mass_blocks is not None

    def evaluate_mass_matrix(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Compute the three distinct 2x2 blocks of the body mass matrix.

        Returns:
            (M00, M11, M01)
        """
        m = self._mass
        L = self._length
        xg, yg = self._cog
        inertia_term = self._inertia / (L * L)

        m00 = (m - 2.0 * m * xg / L + inertia_term) * np.eye(2)
        m11 = inertia_term * np.eye(2)
        m01 = (m * xg / L - inertia_term) * np.eye(2) + (m * yg / L) * _ROT90
        return m00, m11, m01

    def _cached_blocks(self) -> Tuple[np.ndarray, ...]:
        if self._mass_blocks is None:
            self._mass_blocks = self.evaluate_mass_matrix()
        return self._mass_blocks

    @property
    def m00(self) -> np.ndarray:
        return self._cached_blocks()[0]

    @property
    def m11(self) -> np.ndarray:
        return self._cached_blocks()[1]

    @property
    def m01(self) -> np.ndarray:
        return self._cached_blocks()[2]

    @property
    def mass_matrix(self) -> np.ndarray:
        """Full 4x4 mass matrix ordered [x0, y0, x1, y1]."""
        m00, m11, m01 = self._cached_blocks()
        return np.block([[m00, m01], [m01.T, m11]])

    def _interpolation_matrix(self) -> np.ndarray:
        """C such that r_cog = r0 + C·(r1 - r0)."""
        xg, yg = self._cog
        return (xg * np.eye(2) + yg * _ROT90) / self._length

    def cog_position(self, r0: np.ndarray, r1: np.ndarray) -> np.ndarray:
        """Global center of gravity given the two point positions."""
        r0 = np.asarray(r0, dtype=float)
        return r0 + self._interpolation_matrix() @ (np.asarray(r1, dtype=float) - r0)

    def gravity_forces(self, gravity: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Generalized gravity forces acting on point 0 and point 1.

        Obtained from the virtual work of m·g at the center of gravity.
        """
        gravity = np.asarray(gravity, dtype=float)
        c = self._interpolation_matrix()
        force_point1 = self._mass * (c.T @ gravity)
        force_point0 = self._mass * gravity - force_point1
        return force_point0, force_point1

    def copy(self) -> 'Body':
        """Independent copy with the same parameters."""
        return Body(
            points=self.points,
            mass=self._mass,
            length=self._length,
            inertia=self._inertia,
            cog=self._cog.copy(),
            name=self.name,
            render_params=RenderParams(**vars(self.render_params)),
        )

    def __repr__(self) -> str:
        return (
            f"Body(name={self.name!r}, points={self.points}, mass={self._mass}, "
            f"length={self._length}, inertia={self._inertia}, "
            f"cog={tuple(self._cog)})"
        )
