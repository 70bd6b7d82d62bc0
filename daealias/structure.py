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

from dataclasses import dataclass, field

import sympy as sp

from .equation_utils import (
    base_variable,
    derivative_order,
    equation_residual,
    extract_vars,
    is_diff_equation,
    linear_coefficients,
    to_equation,
)
from .graph_utils import BipartiteGraph, DiffGraph
from .logging import logger
from .sparse_matrix import SparseMatrixCLIL

__all__ = ["SystemStructure", "linear_subsys_adjmat"]


def _var_sort_key(var):
    return (derivative_order(var), sp.default_sort_key(base_variable(var)))


@dataclass
class SystemStructure:
    """
    Integer-indexed view of a symbolic DAE system.

    Variables are the unknown functions of time in the equations and their
    derivatives. Every derivative chain is completed, i.e. if
    `Derivative(x(t), (t, 2))` appears then `x(t)` and `Derivative(x(t), t)`
    are variables too.

    Attributes:
        t: The independent variable.
        eqs: The equations, as `sympy.Eq`.
        fullvars: All variables, ordered by derivative order, then by sympy's
            default sort key.
        var_index: Map from variable to its id in `fullvars`.
        var_to_diff: The derivative chain over variable ids.
        graph: Equation/variable incidence graph.
        knowns: Symbols treated as parameters or inputs, never as variables.
    """

    t: sp.Symbol
    eqs: list
    fullvars: list
    var_index: dict
    var_to_diff: DiffGraph
    graph: BipartiteGraph
    knowns: set = field(default_factory=set)

    @classmethod
    def from_equations(cls, eqs, t, knowns=None) -> "SystemStructure":
        known_vars = set(knowns) if knowns is not None else set()
        eqs = [to_equation(eq) for eq in eqs]

        vars_in_eqs = []
        all_vars = set()
        for eq in eqs:
            d_vars, a_vars = extract_vars(eq, known_vars)
            vars_in_eq = d_vars | a_vars
            vars_in_eqs.append(vars_in_eq)
            all_vars.update(vars_in_eq)

        # complete the derivative chains
        for var in list(all_vars):
            base = base_variable(var)
            for order in range(derivative_order(var)):
                all_vars.add(base if order == 0 else sp.Derivative(base, (t, order)))

        fullvars = sorted(all_vars, key=_var_sort_key)
        var_index = {v: j for j, v in enumerate(fullvars)}

        var_to_diff = DiffGraph(len(fullvars))
        for j, var in enumerate(fullvars):
            dvar = sp.diff(var, t)
            dj = var_index.get(dvar, None)
            if dj is not None:
                var_to_diff.set_derivative(j, dj)

        graph = BipartiteGraph(len(eqs), len(fullvars))
        for i, vars_in_eq in enumerate(vars_in_eqs):
            for var in sorted(vars_in_eq, key=var_index.get):
                graph.add_edge(i, var_index[var])

        logger.debug(
            "System structure: %d equations, %d variables", len(eqs), len(fullvars)
        )
        return cls(t, eqs, fullvars, var_index, var_to_diff, graph, known_vars)

    def is_dervar(self, j: int) -> bool:
        return self.var_to_diff.is_derivative(j)


def linear_subsys_adjmat(structure: SystemStructure) -> SparseMatrixCLIL:
    """
    Coefficient matrix of the equations that are linear and homogeneous in all
    of their variables, i.e. of the form

        sum(c_i * v_i) = 0

    with rational constants `c_i`. Differential equations (`Derivative(x) = ...`)
    are never included. Rational rows are scaled to integer rows.
    """
    graph = structure.graph
    fullvars = structure.fullvars
    rows = {}
    for i, eq in enumerate(structure.eqs):
        if is_diff_equation(eq):
            continue
        variables = [fullvars[j] for j in graph.eq_neighbors(i)]
        coeffs = linear_coefficients(equation_residual(eq), variables)
        if coeffs is None:
            continue
        rows[i] = {structure.var_index[v]: c for v, c in coeffs.items()}

    return SparseMatrixCLIL.from_rows(graph.n_eqs, graph.n_vars, rows)
