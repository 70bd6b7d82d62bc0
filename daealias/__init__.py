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


"""Alias elimination for differential-algebraic equation systems.

Finds variables that are, after exact elimination of the linear subsystem,
equal to plus or minus another variable or to zero, and removes them from the
system, keeping them as observed equations.
"""

from . import _init  # noqa: F401
from .alias_elimination import (
    AliasEliminatedSystem,
    AliasElimination,
    alias_eliminate_graph,
    alias_elimination,
    locally_structure_simplify,
)
from .alias_graph import AliasGraph, AliasState
from .bareiss import BareissResult, aag_bareiss, bareiss
from .error import (
    AliasEliminationError,
    AliasGraphConsistencyError,
    BareissError,
    DerivativeChainError,
    ObservedEquationCycleError,
    ObservedEquationError,
)
from .graph_utils import BipartiteGraph, DiffGraph, observed2graph, topsort_equations
from .sparse_matrix import SparseMatrixCLIL, SparseRowView
from .structure import SystemStructure, linear_subsys_adjmat
from .version import __version__

__all__ = [
    "__version__",
    "AliasEliminatedSystem",
    "AliasElimination",
    "AliasEliminationError",
    "AliasGraph",
    "AliasGraphConsistencyError",
    "AliasState",
    "BareissError",
    "BareissResult",
    "BipartiteGraph",
    "DerivativeChainError",
    "DiffGraph",
    "ObservedEquationCycleError",
    "ObservedEquationError",
    "SparseMatrixCLIL",
    "SparseRowView",
    "SystemStructure",
    "aag_bareiss",
    "alias_eliminate_graph",
    "alias_elimination",
    "bareiss",
    "linear_subsys_adjmat",
    "locally_structure_simplify",
    "observed2graph",
    "topsort_equations",
]
