"""Ready-made mechanism definitions used by tests and examples."""

import math

from multibody.constraints import FixedSlider, RelativeAngleAbsolute
from multibody.model_definition import ModelDefinition


def build_four_bars_model(with_crank_angle: bool = False) -> ModelDefinition:
    """Crank-rocker four-bar linkage.

    Points 0 and 3 are ground pivots at (0, 0) and (4, 0); the crank 0-1
    (length 1) drives the coupler 1-2 (length 2) and rocker 2-3
    (length sqrt(13)). q = [x1, y1, x2, y2] (+ crank angle).

    Args:
        with_crank_angle: Append the crank angle as a relative coordinate
            (index 4 in q), constrained with RelativeAngleAbsolute
    """
    model = ModelDefinition()
    model.set_point_count(4)
    model.set_point_coords(0, (0.0, 0.0), fixed=True)
    model.set_point_coords(1, (1.0, 0.0))
    model.set_point_coords(2, (1.0, 2.0))
    model.set_point_coords(3, (4.0, 0.0), fixed=True)

    model.add_body(0, 1, mass=1.0, name='crank')
    model.add_body(1, 2, mass=2.0, name='coupler')
    model.add_body(2, 3, mass=4.0, name='rocker')

    if with_crank_angle:
        angle = model.add_relative_coordinate('crank_angle', 0.0)
        model.add_constraint(RelativeAngleAbsolute(0, 1, angle))
    return model


def build_slider_crank_model(with_crank_angle: bool = False) -> ModelDefinition:
    """Slider-crank: crank 0-1 (length 1), rod 1-2 (length 3), point 2
    sliding on the ground x axis. q = [x1, y1, x2, y2] (+ crank angle)."""
    model = ModelDefinition()
    model.add_point(0.0, 0.0, fixed=True)
    model.add_point(1.0, 0.0)
    model.add_point(4.0, 0.0)

    model.add_body(0, 1, mass=1.0, name='crank')
    model.add_body(1, 2, mass=3.0, name='rod')
    model.add_constraint(FixedSlider(2, (0.0, 0.0), (1.0, 0.0)))

    if with_crank_angle:
        angle = model.add_relative_coordinate('crank_angle', 0.0)
        model.add_constraint(RelativeAngleAbsolute(0, 1, angle))
    return model


def build_pendulum_model(length: float = 1.0, mass: float = 1.0,
                         initial_angle: float = 0.0) -> ModelDefinition:
    """Uniform bar pendulum hinged at the fixed origin.

    Args:
        length: Bar length
        mass: Bar mass
        initial_angle: Angle of the bar w.r.t. +X (rad)
    """
    model = ModelDefinition()
    model.add_point(0.0, 0.0, fixed=True)
    model.add_point(length * math.cos(initial_angle),
                    length * math.sin(initial_angle))
    model.add_body(0, 1, mass=mass, name='pendulum')
    return model


def build_long_chain_model(num_links: int, link_length: float = 1.0,
                           link_mass: float = 1.0) -> ModelDefinition:
    """Horizontal chain of `num_links` bars hanging from the origin."""
    if num_links < 1:
        raise ValueError(f"num_links must be at least 1, got {num_links}")

    model = ModelDefinition()
    model.add_point(0.0, 0.0, fixed=True)
    for i in range(1, num_links + 1):
        model.add_point(i * link_length, 0.0)
        model.add_body(i - 1, i, mass=link_mass, name=f'link{i}')
    return model
