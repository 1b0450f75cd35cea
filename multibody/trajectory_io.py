"""Plain-text persistence of q, dq and ddq trajectories.

Each trajectory is a matrix with one row per time step and one column per
generalized coordinate, stored as a whitespace-delimited text table.
"""

import logging
from pathlib import Path
from typing import List, Union

import numpy as np

from multibody.assembled_model import AssembledModel


logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

TRAJECTORY_FILE_NAMES = ('q.txt', 'dq.txt', 'ddq.txt')


def save_trajectory_txt(path: PathLike, rows: np.ndarray) -> None:
    """Write a (steps, coordinates) matrix as a whitespace-delimited table.

    Raises:
        ValueError: If rows is not a 2-D array
    """
    rows = np.asarray(rows, dtype=float)
    if rows.ndim != 2:
        raise ValueError(f"Trajectory must be 2-D, got shape {rows.shape}")
    np.savetxt(path, rows, fmt='%.12e', delimiter=' ')


def load_trajectory_txt(path: PathLike) -> np.ndarray:
    """Read a table written by save_trajectory_txt() as a 2-D array."""
    return np.loadtxt(path, ndmin=2)


class TrajectoryRecorder:
    """Collects per-step snapshots of (q, dq, ddq) from a model."""

    def __init__(self) -> None:
        self._q: List[np.ndarray] = []
        self._dotq: List[np.ndarray] = []
        self._ddotq: List[np.ndarray] = []

    def __len__(self) -> int:
        return len(self._q)

    def record(self, model: AssembledModel) -> None:
        q, dotq, ddotq = model.copy_state()
        if self._q and q.shape != self._q[0].shape:
            raise ValueError(
                f"State size changed from {self._q[0].shape} to {q.shape}"
            )
        self._q.append(q)
        self._dotq.append(dotq)
        self._ddotq.append(ddotq)

    @property
    def q(self) -> np.ndarray:
        return np.array(self._q)

    @property
    def dotq(self) -> np.ndarray:
        return np.array(self._dotq)

    @property
    def ddotq(self) -> np.ndarray:
        return np.array(self._ddotq)

    def save(self, directory: PathLike) -> List[Path]:
        """Write q.txt, dq.txt and ddq.txt into `directory`.

        Returns:
            Paths of the written files
        """
        if not self._q:
            raise ValueError("No recorded steps to save")
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)

        paths = []
        for name, rows in zip(TRAJECTORY_FILE_NAMES,
                              (self.q, self.dotq, self.ddotq)):
            path = directory / name
            save_trajectory_txt(path, rows)
            paths.append(path)
        logger.info("Saved %d steps to %s", len(self), directory)
        return paths
