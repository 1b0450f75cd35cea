"""Description of a mechanism prior to assembly.

A ModelDefinition lists points, bodies, explicit constraints and relative
coordinates. assemble() turns it into an AssembledModel; each body adds a
constant-distance constraint for its rigidity.
"""

import math
from typing import List, Optional, Sequence, Tuple

import yaml

from multibody.assembled_model import AssembledModel, DEFAULT_GRAVITY_MPS2
from multibody.body import Body, RenderParams
from multibody.constraints import Constraint, constraint_from_dict
from multibody.points import Point
from multibody._internal.validation import validate_point_index


class ModelDefinition:
    """Builder for planar multibody models.

    Attributes:
        points: Point definitions (initial positions, fixed flags)
        bodies: Rigid bodies
        constraints: Constraints in addition to body rigidity
        relative_coordinates: (name, initial value) of extra coordinates
        gravity: Gravity vector (gx, gy)
    """

    def __init__(self) -> None:
        self.points: List[Point] = []
        self.bodies: List[Body] = []
        self.constraints: List[Constraint] = []
        self.relative_coordinates: List[Tuple[str, float]] = []
        self.gravity: Tuple[float, float] = DEFAULT_GRAVITY_MPS2

    def set_point_count(self, count: int) -> None:
        """Resize the point list, adding free points at the origin."""
        if count < 0:
            raise ValueError(f"Point count must be non-negative, got {count}")
        del self.points[count:]
        while len(self.points) < count:
            self.points.append(Point())

    def set_point_coords(self, index: int, coords: Sequence[float],
                         fixed: bool = False) -> None:
        validate_point_index(index, len(self.points))
        self.points[index] = Point(float(coords[0]), float(coords[1]), fixed)

    def add_point(self, x: float, y: float, fixed: bool = False) -> int:
        """Append a point and return its index."""
        self.points.append(Point(float(x), float(y), fixed))
        return len(self.points) - 1

    def add_body(
        self,
        point0: int,
        point1: int,
        mass: float,
        inertia: Optional[float] = None,
        cog: Optional[Sequence[float]] = None,
        length: Optional[float] = None,
        name: str = '',
        render_params: Optional[RenderParams] = None,
    ) -> Body:
        """Add a rigid body between two points.

        Defaults describe a uniform slender bar: length from the initial
        point positions, cog at mid-length and I0 = m·L²/3.

        Returns:
            The new Body, which may still be modified before assembly
        """
        validate_point_index(point0, len(self.points))
        validate_point_index(point1, len(self.points))
        if length is None:
            p0, p1 = self.points[point0], self.points[point1]
            length = math.hypot(p1.x - p0.x, p1.y - p0.y)
        if cog is None:
            cog = (0.5 * length, 0.0)
        if inertia is None:
            inertia = mass * length ** 2 / 3.0

        body = Body(
            points=(point0, point1),
            mass=mass,
            length=length,
            inertia=inertia,
            cog=cog,
            name=name or f'body{len(self.bodies)}',
            render_params=render_params,
        )
        self.bodies.append(body)
        return body

    def add_constraint(self, constraint: Constraint) -> None:
        self.constraints.append(constraint)

    def add_relative_coordinate(self, name: str, initial_value: float = 0.0) -> int:
        """Add an extra coordinate (e.g. a crank angle) appended to q.

        Returns:
            Index of the relative coordinate, as used by angle constraints
        """
        self.relative_coordinates.append((name, float(initial_value)))
        return len(self.relative_coordinates) - 1

    def set_gravity(self, gx: float, gy: float) -> None:
        self.gravity = (float(gx), float(gy))

    def assemble(self) -> AssembledModel:
        """Build the numeric model.

        Raises:
            ValueError: On configuration errors (degenerate constraints,
                bad indices, over-constrained models, empty state)
        """
        return AssembledModel(self)

    @classmethod
    def from_dict(cls, config: dict) -> 'ModelDefinition':
        """Build a definition from a parsed YAML mapping.

        Expected keys: `points` (x, y, fixed), `bodies` (points, mass and
        optional inertia, cog, length, name, render), optional
        `relative_coordinates` (name, initial), `constraints` (see
        constraint_from_dict) and `gravity`.
        """
        definition = cls()
        for point in config.get('points', []):
            definition.add_point(point['x'], point['y'], bool(point.get('fixed', False)))

        for coordinate in config.get('relative_coordinates', []):
            definition.add_relative_coordinate(
                coordinate['name'], coordinate.get('initial', 0.0)
            )

        for body in config.get('bodies', []):
            point0, point1 = body['points']
            render = body.get('render')
            definition.add_body(
                point0,
                point1,
                mass=body['mass'],
                inertia=body.get('inertia'),
                cog=body.get('cog'),
                length=body.get('length'),
                name=body.get('name', ''),
                render_params=RenderParams(**render) if render else None,
            )

        for constraint in config.get('constraints', []):
            definition.add_constraint(constraint_from_dict(constraint))

        if 'gravity' in config:
            definition.set_gravity(*config['gravity'])
        return definition

    @classmethod
    def from_yaml(cls, yaml_path: str) -> 'ModelDefinition':
        """Load a mechanism description from a YAML file.

        Raises:
            FileNotFoundError: If YAML file does not exist
            ValueError: If the description is invalid
        """
        with open(yaml_path, 'r') as file:
            config = yaml.safe_load(file)

        return cls.from_dict(config)
