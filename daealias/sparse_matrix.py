# Copyright (C) 2024 Collimator, Inc.
# SPDX-License-Identifier: AGPL-3.0-only
#
# This program is free software: you can redistribute it and/or modify it under
# the terms of the GNU Affero General Public License as published by the Free
# Software Foundation, version 3. This program is distributed in the hope that it
# will be useful, but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the GNU Affero General
# Public License for more details.  You should have received a copy of the GNU
# Affero General Public License along with this program. If not, see
# <https://www.gnu.org/licenses/>.

"""Sparse coefficient matrix of the linear subsystem.

Rows are stored as compressed lists (CLIL): for each row, a sorted list of
column (variable) ids and a parallel list of exact integer coefficients.
Only equations that are linear in all of their variables have a row; row `i`
belongs to equation `nzrows[i]`. A zero coefficient is never stored.
"""

import bisect
from typing import Iterator, Mapping

import numpy as np
import sympy as sp

__all__ = ["SparseMatrixCLIL", "SparseRowView"]


class SparseRowView:
    """Mapping-like view `variable -> coefficient` of one matrix row.

    The view reads through to the matrix, so it stays valid when the row's
    storage is replaced by a row operation.
    """

    def __init__(self, M: "SparseMatrixCLIL", i: int):
        self.M = M
        self.i = i

    @property
    def cols(self) -> list[int]:
        return self.M.row_cols[self.i]

    @property
    def vals(self) -> list[int]:
        return self.M.row_vals[self.i]

    def __getitem__(self, j: int) -> int:
        cols = self.cols
        k = bisect.bisect_left(cols, j)
        if k < len(cols) and cols[k] == j:
            return self.vals[k]
        return 0

    def __setitem__(self, j: int, val: int):
        if not 0 <= j < self.M.ncols:
            raise IndexError(f"Column {j} out of range [0, {self.M.ncols})")
        cols = self.cols
        vals = self.vals
        k = bisect.bisect_left(cols, j)
        present = k < len(cols) and cols[k] == j
        if val == 0:
            if present:
                del cols[k]
                del vals[k]
        elif present:
            vals[k] = val
        else:
            cols.insert(k, j)
            vals.insert(k, val)

    def __contains__(self, j: int) -> bool:
        return self[j] != 0

    def __len__(self) -> int:
        return len(self.cols)

    def __iter__(self) -> Iterator[int]:
        return iter(list(self.cols))

    def items(self) -> list[tuple[int, int]]:
        """Snapshot of the nonzero entries in column order."""
        return list(zip(self.cols, self.vals))

    def to_dict(self) -> dict[int, int]:
        return dict(self.items())

    def zero(self):
        self.M.zero_row(self.i)

    def assign(self, other: "SparseRowView"):
        """Overwrite this row with a copy of `other`."""
        self.M.row_cols[self.i] = list(other.cols)
        self.M.row_vals[self.i] = list(other.vals)

    def __repr__(self):
        return f"SparseRowView(row={self.i}, {self.to_dict()})"


class SparseMatrixCLIL:
    """
    Parameters:
        nparentrows : int
            Number of equations in the full system.
        ncols : int
            Number of variables in the full system.
        nzrows : list[int]
            Equation id of each stored row.
        row_cols : list[list[int]]
            Sorted column ids of the nonzeros of each row.
        row_vals : list[list[int]]
            Coefficients matching `row_cols`.
    """

    def __init__(self, nparentrows, ncols, nzrows, row_cols, row_vals):
        if not len(nzrows) == len(row_cols) == len(row_vals):
            raise ValueError("nzrows, row_cols and row_vals must have equal lengths")
        self.nparentrows = nparentrows
        self.ncols = ncols
        self.nzrows = list(nzrows)
        self.row_cols = [list(c) for c in row_cols]
        self.row_vals = [list(v) for v in row_vals]

    @classmethod
    def from_rows(
        cls, nparentrows: int, ncols: int, rows: Mapping[int, Mapping[int, object]]
    ) -> "SparseMatrixCLIL":
        """Build a matrix from `{equation: {variable: coefficient}}`.

        Coefficients may be integers or exact rationals. A row with rational
        entries is scaled by the lcm of its denominators, so every stored
        coefficient is an integer and the row still describes the same
        homogeneous equation.
        """
        nzrows, row_cols, row_vals = [], [], []
        for e in sorted(rows):
            entries = {
                j: sp.Rational(c) for j, c in rows[e].items() if sp.Rational(c) != 0
            }
            scale = 1
            for c in entries.values():
                scale = sp.ilcm(scale, c.q)
            cols = sorted(entries)
            nzrows.append(e)
            row_cols.append(cols)
            row_vals.append([int(entries[j] * scale) for j in cols])
        return cls(nparentrows, ncols, nzrows, row_cols, row_vals)

    @property
    def nrows(self) -> int:
        return len(self.nzrows)

    @property
    def shape(self) -> tuple[int, int]:
        return (self.nrows, self.ncols)

    def copy(self) -> "SparseMatrixCLIL":
        return SparseMatrixCLIL(
            self.nparentrows, self.ncols, self.nzrows, self.row_cols, self.row_vals
        )

    def row(self, i: int) -> SparseRowView:
        if not 0 <= i < self.nrows:
            raise IndexError(f"Row {i} out of range [0, {self.nrows})")
        return SparseRowView(self, i)

    def __getitem__(self, ij):
        i, j = ij
        return self.row(i)[j]

    def __setitem__(self, ij, val):
        i, j = ij
        self.row(i)[j] = val

    def swaprows(self, i: int, j: int):
        self.row_cols[i], self.row_cols[j] = self.row_cols[j], self.row_cols[i]
        self.row_vals[i], self.row_vals[j] = self.row_vals[j], self.row_vals[i]

    def zero_row(self, i: int):
        self.row_cols[i] = []
        self.row_vals[i] = []

    def count_nonzeros(self, i: int) -> int:
        return len(self.row_cols[i])

    def nnz(self) -> int:
        return sum(len(c) for c in self.row_cols)

    def to_dense(self) -> np.ndarray:
        """Dense `nrows x ncols` copy with exact (object dtype) entries."""
        dense = np.zeros(self.shape, dtype=object)
        for i, (cols, vals) in enumerate(zip(self.row_cols, self.row_vals)):
            for j, v in zip(cols, vals):
                dense[i, j] = v
        return dense

    def __eq__(self, other):
        if not isinstance(other, SparseMatrixCLIL):
            return NotImplemented
        return (
            self.ncols == other.ncols
            and self.nzrows == other.nzrows
            and self.row_cols == other.row_cols
            and self.row_vals == other.row_vals
        )

    def __repr__(self):
        rows = ", ".join(
            f"e{e}: {dict(zip(c, v))}"
            for e, c, v in zip(self.nzrows, self.row_cols, self.row_vals)
        )
        return f"SparseMatrixCLIL({self.nrows}x{self.ncols}; {rows})"
