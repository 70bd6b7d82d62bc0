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

"""Fraction-free Gaussian elimination of the linear subsystem.

Bareiss, E.H., 1968. Sylvester's identity and multistep integer-preserving
Gaussian elimination. Mathematics of computation, 22(103), pp.565-578.

The elimination never permutes columns. Instead the pivot of step `k` is
recorded, and a `ColumnPermutation` maps the logical column `k` to the
physical column (variable id) that was chosen, so the factorized matrix is
upper triangular under that permutation.
"""

from enum import Enum
from typing import Callable, NamedTuple, Optional

import numpy as np

from .error import BareissError
from .graph_utils import BipartiteGraph, DiffGraph
from .logging import logger
from .sparse_matrix import SparseMatrixCLIL

__all__ = [
    "BareissResult",
    "ColumnPermutation",
    "PivotSearch",
    "aag_bareiss",
    "bareiss",
    "bareiss_update_virtual_colswap",
    "exactdiv",
    "find_first_linear_variable",
    "find_masked_pivot",
    "linear_variable_mask",
]


class PivotSearch(Enum):
    """Phase of the pivot search."""

    MASKED = "masked"  # only purely linear variables, rank1 not known yet
    UNMASKED = "unmasked"  # any variable, rank1 has been fixed


class ColumnPermutation:
    """Two-vector map between logical column positions and physical columns,
    inverting in constant time."""

    def __init__(self, size: int):
        self.pos_to_col = list(range(size))
        self.col_to_pos = list(range(size))

    def swap(self, x: int, y: int):
        """Swap logical positions x and y"""
        self.pos_to_col[x], self.pos_to_col[y] = self.pos_to_col[y], self.pos_to_col[x]
        self.col_to_pos[self.pos_to_col[x]] = x
        self.col_to_pos[self.pos_to_col[y]] = y

    def column_at(self, pos: int) -> int:
        return self.pos_to_col[pos]

    def position_of(self, col: int) -> int:
        return self.col_to_pos[col]


class BareissResult(NamedTuple):
    rank1: int  # rows reduced with purely linear pivots only
    rank2: int  # full rank
    pivots: list  # pivot variable of each reduced row, in elimination order
    column_permutation: ColumnPermutation


def find_first_linear_variable(
    M: SparseMatrixCLIL, rows, mask, constraint: Callable[[int], bool]
):
    """
    Find the first variable `v` of the first row `i` in `rows` whose number of
    nonzeros satisfies `constraint`, such that `mask[v]` holds (any variable if
    `mask` is None).

    Returns `((i, v), M[i, v])` or None.
    """
    for i in rows:
        cols = M.row_cols[i]
        if constraint(len(cols)):
            for j, v in enumerate(cols):
                if mask is None or mask[v]:
                    return (i, v), M.row_vals[i][j]
    return None


def find_masked_pivot(mask, M: SparseMatrixCLIL, k: int):
    rows = range(k, M.nrows)
    r = find_first_linear_variable(M, rows, mask, lambda n: n == 1)
    if r is not None:
        return r
    r = find_first_linear_variable(M, rows, mask, lambda n: n == 2)
    if r is not None:
        return r
    return find_first_linear_variable(M, rows, mask, lambda n: True)


def exactdiv(a: int, b: int) -> int:
    d, r = divmod(a, b)
    if r != 0:
        raise BareissError(f"Inexact division {a} / {b} in fraction-free update")
    return d


def bareiss_update_virtual_colswap(
    M: SparseMatrixCLIL, k: int, vpivot: int, pivot: int, last_pivot: int
):
    """Eliminate column `vpivot` from every row below `k`.

    Each row `i > k` becomes `(pivot * row_i - c * row_k) / last_pivot`, where
    `c` is its coefficient in the pivot column. The division is exact.

    Rows without an entry in the pivot column are only scaled by
    `pivot / last_pivot`, so they are left alone when the two are equal.
    """
    kcols = M.row_cols[k]
    kvals = M.row_vals[k]
    krow = dict(zip(kcols, kvals))
    pivot_equal = pivot == last_pivot

    for ei in range(k + 1, M.nrows):
        icols = M.row_cols[ei]
        irow = dict(zip(icols, M.row_vals[ei]))
        coeff = irow.pop(vpivot, 0)
        if coeff == 0 and pivot_equal:
            continue

        new_cols = []
        new_vals = []
        for v in sorted(set(irow) | set(krow)):
            if v == vpivot:
                continue
            ci = exactdiv(pivot * irow.get(v, 0) - coeff * krow.get(v, 0), last_pivot)
            if ci != 0:
                new_cols.append(v)
                new_vals.append(ci)

        M.row_cols[ei] = new_cols
        M.row_vals[ei] = new_vals


def bareiss(M: SparseMatrixCLIL, find_pivot, swaprows, update) -> int:
    """
    Run fraction-free elimination over the rows of `M` and return its rank.

    Parameters:
        find_pivot : callable(M, k) -> ((row, col), value) or None
        swaprows : callable(M, i, j)
        update : callable(M, k, col, pivot, last_pivot)
    """
    prev = 1
    for k in range(M.nrows):
        r = find_pivot(M, k)
        if r is None:
            return k
        (row, col), pivot = r
        if row != k:
            swaprows(M, k, row)
        update(M, k, col, pivot, prev)
        prev = pivot
    return M.nrows


def linear_variable_mask(
    graph: BipartiteGraph, var_to_diff: DiffGraph, is_linear_equations
) -> np.ndarray:
    """Purely linear variables: not part of a derivative chain and not incident
    to any nonlinear equation."""
    diff_to_var = var_to_diff.invview()
    is_linear_variables = np.array(
        [
            var_to_diff[v] is None and diff_to_var[v] is None
            for v in graph.var_vertices()
        ],
        dtype=bool,
    )
    for i in graph.eq_vertices():
        if is_linear_equations[i]:
            continue
        for j in graph.eq_neighbors(i):
            is_linear_variables[j] = False
    return is_linear_variables


def aag_bareiss(
    graph: BipartiteGraph, var_to_diff: DiffGraph, mm_orig: SparseMatrixCLIL
) -> tuple[SparseMatrixCLIL, list, BareissResult]:
    """
    Factorize a copy of `mm_orig`, first pivoting on purely linear variables
    only, then on any variable. Row swaps are mirrored into `mm_orig` so the
    two matrices stay row aligned.

    Returns:
        mm : SparseMatrixCLIL
            The factorized matrix.
        solvable_variables : list[int]
            The purely linear variables.
        result : BareissResult
    """
    mm = mm_orig.copy()
    is_linear_equations = np.zeros(graph.n_eqs, dtype=bool)
    for e in mm_orig.nzrows:
        is_linear_equations[e] = True

    # For now, only variables that are not differentiated count as linear.
    is_linear_variables = linear_variable_mask(graph, var_to_diff, is_linear_equations)
    solvable_variables = np.flatnonzero(is_linear_variables).tolist()

    search = PivotSearch.MASKED
    rank1: Optional[int] = None
    pivots = []
    perm = ColumnPermutation(mm.ncols)

    def find_pivot(M, k):
        nonlocal search, rank1
        if search is PivotSearch.MASKED:
            r = find_masked_pivot(is_linear_variables, M, k)
            if r is not None:
                return r
            rank1 = k
            search = PivotSearch.UNMASKED
        return find_masked_pivot(None, M, k)

    def find_and_record_pivot(M, k):
        r = find_pivot(M, k)
        if r is None:
            return None
        (_, col), _ = r
        perm.swap(k, perm.position_of(col))
        pivots.append(col)
        return r

    def swaprows(M, i, j):
        mm_orig.swaprows(i, j)
        M.swaprows(i, j)

    rank2 = bareiss(mm, find_and_record_pivot, swaprows, bareiss_update_virtual_colswap)
    if rank1 is None:
        rank1 = rank2

    logger.debug(
        "Bareiss on %d linear equations in %d variables: rank1=%d rank2=%d pivots=%s",
        mm.nrows,
        mm.ncols,
        rank1,
        rank2,
        pivots,
    )
    return mm, solvable_variables, BareissResult(rank1, rank2, pivots, perm)
