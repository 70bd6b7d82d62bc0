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

"""Graph structures shared by the structural simplification passes.

Equations and variables are referred to by dense 0-based integer ids, so the
graphs never hold references to symbolic objects. The incidence graph is a
`networkx.Graph` with equation nodes in partition 0 and variable nodes in
partition 1, like the graphs built during index reduction.
"""

from collections import deque
from typing import Iterable, Optional

import networkx as nx
import sympy as sp

from .equation_utils import to_equation
from .error import DerivativeChainError, ObservedEquationCycleError, ObservedEquationError
from .logging import logger

__all__ = [
    "BipartiteGraph",
    "DiffGraph",
    "observed2graph",
    "topsort_equations",
]

_EQ = "e"
_VAR = "v"


class BipartiteGraph:
    """Equation/variable incidence graph.

    Parameters:
        n_eqs : int
            Number of equation vertices, ids `0..n_eqs-1`.
        n_vars : int
            Number of variable vertices, ids `0..n_vars-1`.
    """

    def __init__(self, n_eqs: int, n_vars: int):
        self.n_eqs = n_eqs
        self.n_vars = n_vars
        self.G = nx.Graph()
        self.G.add_nodes_from([(_EQ, i) for i in range(n_eqs)], bipartite=0)
        self.G.add_nodes_from([(_VAR, j) for j in range(n_vars)], bipartite=1)

    def _check_eq(self, e: int):
        if not 0 <= e < self.n_eqs:
            raise IndexError(f"Equation {e} out of range [0, {self.n_eqs})")

    def _check_var(self, v: int):
        if not 0 <= v < self.n_vars:
            raise IndexError(f"Variable {v} out of range [0, {self.n_vars})")

    def eq_vertices(self) -> range:
        return range(self.n_eqs)

    def var_vertices(self) -> range:
        return range(self.n_vars)

    def add_edge(self, e: int, v: int):
        self._check_eq(e)
        self._check_var(v)
        self.G.add_edge((_EQ, e), (_VAR, v))

    def has_edge(self, e: int, v: int) -> bool:
        self._check_eq(e)
        self._check_var(v)
        return self.G.has_edge((_EQ, e), (_VAR, v))

    def eq_neighbors(self, e: int) -> list[int]:
        """Sorted ids of the variables incident to equation `e`."""
        self._check_eq(e)
        return sorted(j for _, j in self.G.neighbors((_EQ, e)))

    def var_neighbors(self, v: int) -> list[int]:
        """Sorted ids of the equations incident to variable `v`."""
        self._check_var(v)
        return sorted(i for _, i in self.G.neighbors((_VAR, v)))

    def set_neighbors(self, e: int, variables: Iterable[int]):
        """Overwrite the incidence of equation `e` with `variables`."""
        self._check_eq(e)
        variables = list(variables)
        for v in variables:
            self._check_var(v)
        eq_node = (_EQ, e)
        self.G.remove_edges_from(list(self.G.edges(eq_node)))
        self.G.add_edges_from((eq_node, (_VAR, v)) for v in variables)

    def num_edges(self) -> int:
        return self.G.number_of_edges()

    def copy(self) -> "BipartiteGraph":
        new = BipartiteGraph.__new__(BipartiteGraph)
        new.n_eqs = self.n_eqs
        new.n_vars = self.n_vars
        new.G = self.G.copy()
        return new

    def __repr__(self):
        return (
            f"BipartiteGraph({self.n_eqs} equations, {self.n_vars} variables, "
            f"{self.num_edges()} edges)"
        )


class DiffGraph:
    """Derivative chain: a partial, injective map from a variable to the
    variable representing its time derivative.

    Both directions are stored, so `invview()` is free and shares storage.
    """

    def __init__(self, n_vars: int):
        self.primal_to_diff: list[Optional[int]] = [None] * n_vars
        self.diff_to_primal: list[Optional[int]] = [None] * n_vars

    def __len__(self):
        return len(self.primal_to_diff)

    def __getitem__(self, v: int) -> Optional[int]:
        return self.primal_to_diff[v]

    def derivative_of(self, v: int) -> Optional[int]:
        return self.primal_to_diff[v]

    def antiderivative_of(self, v: int) -> Optional[int]:
        return self.diff_to_primal[v]

    def has_derivative(self, v: int) -> bool:
        return self.primal_to_diff[v] is not None

    def is_derivative(self, v: int) -> bool:
        return self.diff_to_primal[v] is not None

    def derivative_order(self, v: int) -> int:
        order = 0
        while (v := self.diff_to_primal[v]) is not None:
            order += 1
        return order

    def set_derivative(self, v: int, dv: int):
        if v == dv:
            raise DerivativeChainError(
                "A variable cannot be its own derivative.", variables=[v]
            )
        if self.primal_to_diff[v] is not None:
            raise DerivativeChainError(
                f"Variable {v} already has derivative {self.primal_to_diff[v]}.",
                variables=[v, dv],
            )
        if self.diff_to_primal[dv] is not None:
            raise DerivativeChainError(
                f"Variable {dv} is already the derivative of {self.diff_to_primal[dv]}.",
                variables=[v, dv],
            )
        # dv must not be an ancestor of v
        u = v
        while (u := self.diff_to_primal[u]) is not None:
            if u == dv:
                raise DerivativeChainError(
                    "Derivative chain would contain a cycle.", variables=[v, dv]
                )
        self.primal_to_diff[v] = dv
        self.diff_to_primal[dv] = v

    def invview(self) -> "DiffGraph":
        inv = DiffGraph.__new__(DiffGraph)
        inv.primal_to_diff = self.diff_to_primal
        inv.diff_to_primal = self.primal_to_diff
        return inv

    def chain(self, v: int) -> list[int]:
        """`v` followed by its successive derivatives."""
        out = [v]
        while (v := self.primal_to_diff[v]) is not None:
            out.append(v)
        return out

    def __repr__(self):
        links = [(v, dv) for v, dv in enumerate(self.primal_to_diff) if dv is not None]
        return f"DiffGraph({len(self)} variables, links={links})"


def _rhs_dependencies(expr, v2j) -> list[int]:
    """Sorted ids of the states read by `expr`. The arguments of a derivative
    that is not itself a state are not read."""
    deps = set()
    walker = sp.preorder_traversal(sp.sympify(expr))
    for node in walker:
        j = v2j.get(node, None)
        if j is not None:
            deps.add(j)
            walker.skip()
        elif isinstance(node, sp.Derivative):
            walker.skip()
    return sorted(deps)


def observed2graph(eqs, states):
    """Build the graph linking every observed equation to the states in its
    right-hand side.

    Returns:
        graph : BipartiteGraph
            Edge `(i, j)` when equation `i` reads state `j`.
        assigns : list[int]
            `assigns[i]` is the state defined by equation `i`.
    """
    graph = BipartiteGraph(len(eqs), len(states))
    v2j = {v: j for j, v in enumerate(states)}

    assigns = []
    for i, eq in enumerate(eqs):
        eq = to_equation(eq)
        lhs_j = v2j.get(eq.lhs, None)
        if lhs_j is None:
            raise ObservedEquationError(
                f"The lhs {eq.lhs} of {eq}, doesn't appear in states.",
                equations=[eq],
            )
        assigns.append(lhs_j)
        for j in _rhs_dependencies(eq.rhs, v2j):
            graph.add_edge(i, j)

    return graph, assigns


def topsort_equations(eqs, states, check: bool = True) -> list:
    """
    Use Kahn's algorithm to topologically sort observed equations, so that every
    equation comes after the equations defining the states it reads.

    ```
    x = y + z
    z = 2
    y = 2z + k
    ```
    sorts to `[z = 2, y = 2z + k, x = y + z]`.

    Parameters:
        eqs : list of sympy.Eq
            Observed equations, each defining its lhs.
        states : list
            All variables that may appear as a lhs.
        check : bool
            Raise `ObservedEquationCycleError` if the equations contain a cycle.
            When False, the partial order found so far is returned instead.
    """
    graph, assigns = observed2graph(eqs, states)
    neqs = len(eqs)
    degrees = [0] * neqs

    for s_eq in range(neqs):
        var = assigns[s_eq]
        for d_eq in graph.var_neighbors(var):
            degrees[d_eq] += 1

    q = deque(i for i, d in enumerate(degrees) if d == 0)

    ordered_eqs = []
    while q:
        s_eq = q.popleft()
        ordered_eqs.append(eqs[s_eq])
        var = assigns[s_eq]
        for d_eq in graph.var_neighbors(var):
            degrees[d_eq] -= 1
            if degrees[d_eq] == 0:
                q.append(d_eq)

    if len(ordered_eqs) != neqs:
        remaining = [eqs[i] for i, d in enumerate(degrees) if d > 0]
        if check:
            raise ObservedEquationCycleError(equations=remaining)
        logger.warning(
            "Observed equations contain a cycle, %d of %d equations left unordered.",
            len(remaining),
            neqs,
        )

    return ordered_eqs
