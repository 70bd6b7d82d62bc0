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

from dataclasses import dataclass
from typing import Optional

import sympy as sp

from .alias_graph import AliasGraph
from .bareiss import aag_bareiss
from .equation_utils import fixpoint_sub, substitute_aliases
from .graph_utils import BipartiteGraph, DiffGraph, topsort_equations
from .logging import logdata, logger, scope_logging
from .sparse_matrix import SparseMatrixCLIL, SparseRowView
from .structure import SystemStructure, linear_subsys_adjmat

__all__ = [
    "AliasElimination",
    "AliasEliminatedSystem",
    "alias_eliminate_graph",
    "alias_elimination",
    "locally_structure_simplify",
]


def _resolve(ag: AliasGraph, alias):
    """Express a proposed alias `(coeff, var)` in terms of a variable that has
    not been eliminated."""
    coeff, var = alias
    if coeff == 0 or var not in ag:
        return alias
    ac, av = ag[var]
    if ac == 0:
        return (0, None)
    return (coeff * ac, av)


def locally_structure_simplify(
    adj_row: SparseRowView, pivot_col: int, ag: AliasGraph, var_to_diff: DiffGraph
) -> bool:
    """
    Try to eliminate `pivot_col` using the single row `adj_row`.

    All aliases accumulated so far in `ag` are first substituted into the row.
    If at most one other variable is left, the pivot is an alias of it (or of
    zero, if none is left), provided that

    - its coefficient is exactly +/- the pivot coefficient, and
    - the pivot is not differentiated more often than the alias.

    The alias is recorded for the pivot and, in lockstep, for all of its
    derivatives. On success the row is zeroed.

    Returns:
        True if the pivot was eliminated.
    """
    if pivot_col in ag:
        return False

    # Apply the aliases that we have so far, in column order.
    for var in adj_row:
        if var == pivot_col or var not in ag:
            continue
        val = adj_row[var]
        if val == 0:
            continue
        coeff, alias_var = ag[var]
        # `var = coeff * alias_var`, so we eliminate this var.
        adj_row[var] = 0
        if alias_var is not None:
            # val * var + c * alias_var = (val * coeff + c) * alias_var
            adj_row[alias_var] = adj_row[alias_var] + val * coeff

    pivot_val = adj_row[pivot_col]
    if pivot_val == 0:
        return False

    others = [(var, val) for var, val in adj_row.items() if var != pivot_col]
    if len(others) > 1:
        return False

    if others:
        alias_var, val = others[0]

        # The derivative depth of the pivot must not exceed that of the alias.
        pivot_var = pivot_col
        target_var = alias_var
        while (pivot_var := var_to_diff[pivot_var]) is not None:
            target_var = var_to_diff[target_var]
            if target_var is None:
                logger.debug(
                    "Refused v%d => v%d: derivative depth", pivot_col, alias_var
                )
                return False

        # pivot_val * pivot + val * alias_var = 0
        d, r = divmod(val, pivot_val)
        if r != 0 or d not in (-1, 1):
            logger.debug(
                "Refused v%d => v%d: coefficient %d/%d",
                pivot_col,
                alias_var,
                -val,
                pivot_val,
            )
            return False
        alias_candidate = (-d, alias_var)
    else:
        alias_candidate = (0, None)

    # Propagate along the derivative chain: if v = c * w then D(v) = c * D(w).
    chain = []
    pivot_var = pivot_col
    candidate = alias_candidate
    while pivot_var is not None:
        resolved = _resolve(ag, candidate)
        if resolved[1] == pivot_var:
            return False
        if pivot_var in ag:
            if ag[pivot_var] != resolved:
                logger.debug(
                    "Refused v%d: v%d is already eliminated differently",
                    pivot_col,
                    pivot_var,
                )
                return False
            # The rest of the chain was written with this entry.
            break
        chain.append((pivot_var, resolved))
        pivot_var = var_to_diff[pivot_var]
        if candidate[0] != 0:
            dvar = var_to_diff[candidate[1]]
            if dvar is None:
                break
            candidate = (candidate[0], dvar)

    for var, (coeff, alias_var) in chain:
        ag[var] = 0 if coeff == 0 else (coeff, alias_var)
        logger.debug(
            "Eliminated v%d", var, **logdata(coeff=coeff, alias=alias_var)
        )

    adj_row.zero()
    return True


@scope_logging
def alias_eliminate_graph(
    graph: BipartiteGraph, var_to_diff: DiffGraph, mm_orig: SparseMatrixCLIL
) -> tuple[AliasGraph, SparseMatrixCLIL]:
    """
    Find the variables of the linear subsystem `mm_orig` that are aliases
    (+/- another variable, or zero) and write the simplified rows back into
    `graph`.

    Step 1: Perform Bareiss factorization on the coefficient matrix of the
    linear subsystem. Conceptually this gives

    ```
    rank1 | [ M₁₁  M₁₂ | M₁₃ ]   [v₁] = [0]
    rank2 | [ 0    M₂₂ | M₂₃ ] P [v₂] = [0]
    -------------------|------------------------
            [ 0    0   | 0   ]   [v₃] = [0]
    ```

    where `v₁` are the purely linear variables (those that only appear in
    linear equations), `v₂` are the variables that may potentially be solved
    by the linear system and `v₃` are the variables that contribute to the
    equations but are not solved by the linear system.

    Step 2: Simplify the system using the factorization, eliminating a pivot
    whenever at most one other variable is left in its row.

    Step 3: Reflect the simplified rows back into the graph.

    Note: `mm_orig` has its rows permuted to match the factorization.

    Returns:
        ag : AliasGraph
        mm : SparseMatrixCLIL
            The simplified matrix, row `i` holds the new equation `mm.nzrows[i]`.
    """
    mm, solvable_variables, (rank1, rank2, pivots, _) = aag_bareiss(
        graph, var_to_diff, mm_orig
    )

    ag = AliasGraph(mm.ncols)

    # Variables that only appear in linear equations and were removed completely
    # from the coefficient matrix are singularities of the matrix, but assigning
    # them to 0 is a feasible assignment.
    linear_pivots = set(pivots[:rank1])
    for v in solvable_variables:
        if v not in linear_pivots:
            ag[v] = 0

    def lss(ei):
        return locally_structure_simplify(mm.row(ei), pivots[ei], ag, var_to_diff)

    # Go backwards, so that the aliases of later pivots are known when their
    # rows are substituted into earlier ones.
    for ei in reversed(range(rank2)):
        lss(ei)

    # Bareiss can make an equation more complicated than the one it came from.
    # If so, use the unreduced equation and simplify it again.
    reduced = False
    for ei in range(rank2):
        if mm_orig.count_nonzeros(ei) < mm.count_nonzeros(ei):
            mm.row(ei).assign(mm_orig.row(ei))
            reduced |= lss(ei)

    # Iterate to convergence. `lss` modifies the rows in place.
    sweeps = 0
    if reduced:
        while any(lss(ei) for ei in range(rank2)):
            sweeps += 1

    for ei, e in enumerate(mm.nzrows):
        graph.set_neighbors(e, mm.row_cols[ei])

    logger.debug(
        "Alias elimination: rank1=%d rank2=%d, %d variables eliminated, %d extra sweeps",
        rank1,
        rank2,
        len(ag),
        sweeps,
    )
    return ag, mm


@dataclass
class AliasEliminatedSystem:
    """
    Result of the alias elimination pass.

    Attributes:
        eqs: Remaining equations, aliases substituted.
        states: Surviving non-derivative variables.
        observed: Equations `v = coeff * alias` (or `v = 0`) for every
            eliminated variable, topologically sorted.
        subs: Substitution map from eliminated variable to its expression.
        alias_graph: The alias table, None if the system had no linear equations.
        fullvars: All variables of the input system.
    """

    eqs: list
    states: list
    observed: list
    subs: dict
    alias_graph: Optional[AliasGraph]
    fullvars: list

    @property
    def n_eliminated(self) -> int:
        return 0 if self.alias_graph is None else len(self.alias_graph)


class AliasElimination:
    """
    Remove alias variables from a DAE system.

    Variables related by `a = b`, `a = -b` or `a = 0` (after exact linear
    elimination of the equations that are linear in all their variables) are
    replaced everywhere by their representative, and kept as observed
    equations.

    Parameters:
        t : sympy.Symbol
            The independent variable representing time.
        eqs : list of sympy.Eq or sympy.Expr
            The equations of the system. A bare expression `expr` stands for
            `0 = expr`.
        knowns : iterable or dict, optional
            Parameters and inputs. These are never treated as variables.
        verbose : bool
            Log a summary of the pass at INFO level.
    """

    def __init__(self, t, eqs, knowns=None, verbose: bool = False):
        self.t = t
        self.eqs = list(eqs)
        self.knowns = knowns
        self.verbose = verbose
        self.structure = None
        self.alias_graph = None

    def __call__(self) -> AliasEliminatedSystem:
        self.structure = state = SystemStructure.from_equations(
            self.eqs, self.t, self.knowns
        )
        fullvars = state.fullvars
        graph = state.graph

        mm = linear_subsys_adjmat(state)
        if mm.nrows == 0:
            logger.debug("No linear equations, nothing to eliminate.")
            states = [v for j, v in enumerate(fullvars) if not state.is_dervar(j)]
            return AliasEliminatedSystem(list(state.eqs), states, [], {}, None, fullvars)

        ag, mm = alias_eliminate_graph(graph, state.var_to_diff, mm)
        self.alias_graph = ag

        subs = {}
        for v, (coeff, alias) in ag.resolved_items():
            subs[fullvars[v]] = sp.S.Zero if coeff == 0 else coeff * fullvars[alias]

        dels = set()
        eqs = list(state.eqs)
        for ei, e in enumerate(mm.nzrows):
            if not graph.eq_neighbors(e):
                # remove empty equations
                dels.add(e)
            else:
                rhs = sp.Add(*[coeff * fullvars[var] for var, coeff in mm.row(ei).items()])
                eqs[e] = sp.Eq(sp.S.Zero, rhs, evaluate=False)
        eqs = [eq for e, eq in enumerate(eqs) if e not in dels]

        eqs = [
            sp.Eq(fixpoint_sub(eq.lhs, subs), fixpoint_sub(eq.rhs, subs), evaluate=False)
            for eq in eqs
        ]

        newstates = []
        diff_to_var = state.var_to_diff.invview()
        for j, var in enumerate(fullvars):
            if j in ag:
                # Put back equations for eliminated derivatives whose
                # antiderivative survived.
                if state.is_dervar(j) and diff_to_var[j] not in ag:
                    eqs.append(sp.Eq(var, subs[var], evaluate=False))
            elif not state.is_dervar(j):
                newstates.append(var)

        observed = substitute_aliases(
            [sp.Eq(lhs, rhs, evaluate=False) for lhs, rhs in subs.items()], subs
        )
        observed = topsort_equations(observed, fullvars)

        if self.verbose:
            logger.info(
                "Alias elimination removed %d of %d variables and %d of %d equations.",
                len(ag),
                len(fullvars),
                len(dels),
                len(state.eqs),
            )
            for eq in observed:
                logger.info("Observed: %s", eq)

        return AliasEliminatedSystem(eqs, newstates, observed, subs, ag, fullvars)


def alias_elimination(eqs, t, knowns=None, verbose: bool = False) -> AliasEliminatedSystem:
    """Functional form of `AliasElimination`."""
    return AliasElimination(t, eqs, knowns=knowns, verbose=verbose)()
