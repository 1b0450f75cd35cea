"""Matplotlib plotting utilities for mechanism debugging.

Provides reusable plotting functions for coordinate trajectories, energy
drift and mechanism snapshots.
"""

from typing import Optional, Sequence
import numpy as np
import matplotlib.pyplot as plt
from matplotlib.axes import Axes
from matplotlib.figure import Figure

from multibody.assembled_model import AssembledModel


def plot_coordinate_trajectories(
    time_s: np.ndarray,
    q_history: np.ndarray,
    labels: Optional[Sequence[str]] = None,
    title: str = "Generalized Coordinates",
    save_path: Optional[str] = None,
) -> Figure:
    """Plot every generalized coordinate over time.

    Args:
        time_s: Time array (N,)
        q_history: Coordinate history (N, n)
        labels: Optional name of each coordinate (n,)
        title: Figure title
        save_path: Optional path to save figure

    Returns:
        Matplotlib Figure object
    """
    q_history = np.asarray(q_history)
    num_coordinates = q_history.shape[1]
    if labels is None:
        labels = [f'q[{i}]' for i in range(num_coordinates)]

    fig, ax = plt.subplots(figsize=(10, 6))
    fig.suptitle(title, fontsize=14)

    for idx in range(num_coordinates):
        ax.plot(time_s, q_history[:, idx], linewidth=1.5, label=labels[idx])

    ax.set_xlabel('Time (s)')
    ax.set_ylabel('q')
    ax.legend(loc='best')
    ax.grid(True, alpha=0.3)

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')

    return fig


def plot_energy(
    time_s: np.ndarray,
    kinetic: np.ndarray,
    potential: np.ndarray,
    title: str = "Mechanical Energy",
    save_path: Optional[str] = None,
) -> Figure:
    """Plot kinetic, potential and total energy with the total drift.

    Args:
        time_s: Time array (N,)
        kinetic: Kinetic energy history (N,)
        potential: Potential energy history (N,)
        title: Figure title
        save_path: Optional path to save figure

    Returns:
        Matplotlib Figure object
    """
    kinetic = np.asarray(kinetic)
    potential = np.asarray(potential)
    total = kinetic + potential

    fig, axes = plt.subplots(2, 1, figsize=(10, 8), sharex=True)
    fig.suptitle(title, fontsize=14)

    ax = axes[0]
    ax.plot(time_s, kinetic, 'b-', label='Kinetic', linewidth=1.5)
    ax.plot(time_s, potential, 'g-', label='Potential', linewidth=1.5)
    ax.plot(time_s, total, 'k--', label='Total', linewidth=1.5)
    ax.set_ylabel('Energy (J)')
    ax.legend(loc='best')
    ax.grid(True, alpha=0.3)

    ax = axes[1]
    ax.plot(time_s, total - total[0], 'r-', linewidth=1.5)
    ax.set_xlabel('Time (s)')
    ax.set_ylabel('ΔE (J)')
    ax.set_title(f'Energy drift (max |ΔE| = {np.max(np.abs(total - total[0])):.2e} J)')
    ax.grid(True, alpha=0.3)

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')

    return fig


def plot_mechanism_snapshot(
    model: AssembledModel,
    ax: Optional[Axes] = None,
    title: str = "Mechanism",
    save_path: Optional[str] = None,
) -> Figure:
    """Draw the bodies of a model at its current q.

    Fixed points are drawn as ground triangles when the body's render
    settings ask for it.

    Args:
        model: Assembled model
        ax: Optional axes to draw into (a new figure is created otherwise)
        title: Axes title
        save_path: Optional path to save figure

    Returns:
        Matplotlib Figure object
    """
    if ax is None:
        fig, ax = plt.subplots(figsize=(8, 8))
    else:
        fig = ax.figure

    for segment in model.get_body_segments():
        xs = [segment.point0[0], segment.point1[0]]
        ys = [segment.point0[1], segment.point1[1]]
        style = segment.render_params
        width = style.line_width if style.render_style == 'line' else 4.0
        ax.plot(xs, ys, '-o', linewidth=width, alpha=style.line_alpha / 255.0,
                label=segment.name)

        if style.show_grounds:
            for position, fixed in ((segment.point0, segment.point0_fixed),
                                    (segment.point1, segment.point1_fixed)):
                if fixed:
                    ax.plot(position[0], position[1], 'k^', markersize=12)

    ax.set_aspect('equal', adjustable='datalim')
    ax.set_xlabel('x (m)')
    ax.set_ylabel('y (m)')
    ax.set_title(title)
    ax.legend(loc='best')
    ax.grid(True, alpha=0.3)

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')

    return fig
