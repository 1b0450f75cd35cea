from __future__ import annotations

from pathlib import Path

import matplotlib
import pytest

from multibody.model_examples import (
    build_four_bars_model,
    build_pendulum_model,
    build_slider_crank_model,
)

# Plots in tests are written to files only
matplotlib.use('Agg')

CONFIG_DIR = Path(__file__).resolve().parent.parent / 'config'


@pytest.fixture
def config_dir():
    """Directory holding the YAML configuration files."""
    return CONFIG_DIR


@pytest.fixture
def four_bars():
    """Assembled crank-rocker four-bar at a consistent configuration."""
    return build_four_bars_model().assemble()


@pytest.fixture
def four_bars_with_angle():
    """Four-bar with the crank angle as q[4]."""
    return build_four_bars_model(with_crank_angle=True).assemble()


@pytest.fixture
def slider_crank():
    return build_slider_crank_model().assemble()


@pytest.fixture
def pendulum():
    """Horizontal unit pendulum (m=1 kg, L=1 m) at rest."""
    return build_pendulum_model().assemble()
