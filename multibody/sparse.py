"""Index-based storage for the sparse constraint matrices.

Constraints never hold references into the matrix storage. At assembly
time each constraint asks the arena for a slot per (row, column) entry it
will write and keeps the returned integer; during `update()` it writes
values by slot. The sparsity pattern is frozen after assembly, only the
values array changes afterwards.
"""

from typing import Dict, List, Tuple

import numpy as np
import scipy.sparse


class SparseTripletArena:
    """Fixed-pattern sparse matrix stored as (row, col, value) triplets.

    Attributes:
        shape: (rows, cols) once frozen
        values: Numeric values, one per declared slot
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._rows: List[int] = []
        self._cols: List[int] = []
        self._slot_of: Dict[Tuple[int, int], int] = {}
        self._frozen = False
        self.shape: Tuple[int, int] = (0, 0)
        self.values = np.zeros(0)

    def add_entry(self, row: int, col: int) -> int:
        """Register entry (row, col) and return its storage slot.

        Declaring the same entry twice returns the same slot.

        Raises:
            RuntimeError: If the pattern has already been frozen
        """
        if self._frozen:
            raise RuntimeError(
                f"Sparsity pattern of '{self.name}' is frozen; "
                "entries must be declared during assembly"
            )
        key = (row, col)
        slot = self._slot_of.get(key)
        if slot is None:
            slot = len(self._rows)
            self._rows.append(row)
            self._cols.append(col)
            self._slot_of[key] = slot
        return slot

    def freeze(self, num_rows: int, num_cols: int) -> None:
        """Fix the matrix shape and allocate the values array."""
        if self._rows and (max(self._rows) >= num_rows
                           or max(self._cols) >= num_cols):
            raise ValueError(
                f"Entries of '{self.name}' exceed shape ({num_rows}, {num_cols})"
            )
        self.shape = (num_rows, num_cols)
        self.values = np.zeros(len(self._rows))
        self._row_array = np.array(self._rows, dtype=int)
        self._col_array = np.array(self._cols, dtype=int)
        self._frozen = True

    @property
    def nnz(self) -> int:
        """Number of declared entries."""
        return len(self._rows)

    @property
    def rows(self) -> np.ndarray:
        return self._row_array

    @property
    def cols(self) -> np.ndarray:
        return self._col_array

    def to_csr(self) -> scipy.sparse.csr_matrix:
        """Current values as a scipy CSR matrix."""
        return scipy.sparse.csr_matrix(
            (self.values.copy(), (self._row_array, self._col_array)),
            shape=self.shape,
        )

    def to_dense(self) -> np.ndarray:
        """Current values as a dense array."""
        dense = np.zeros(self.shape)
        dense[self._row_array, self._col_array] = self.values
        return dense

    def copy(self) -> 'SparseTripletArena':
        """Independent copy sharing no storage with this arena."""
        other = SparseTripletArena(self.name)
        other._rows = list(self._rows)
        other._cols = list(self._cols)
        other._slot_of = dict(self._slot_of)
        if self._frozen:
            other.freeze(*self.shape)
            other.values[:] = self.values
        return other
