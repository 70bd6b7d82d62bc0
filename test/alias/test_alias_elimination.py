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


import pytest

from daealias import (
    AliasGraph,
    BipartiteGraph,
    DiffGraph,
    SparseMatrixCLIL,
    alias_eliminate_graph,
    locally_structure_simplify,
)


def make_system(n_vars, linear_rows, nonlinear_rows=(), diffs=()):
    """Linear rows are `{var: coeff}` dicts placed first, nonlinear rows are
    lists of vars, `diffs` are `(var, derivative)` pairs."""
    n_eqs = len(linear_rows) + len(nonlinear_rows)
    graph = BipartiteGraph(n_eqs, n_vars)
    for e, row in enumerate(linear_rows):
        for v in row:
            graph.add_edge(e, v)
    for k, vars_ in enumerate(nonlinear_rows):
        for v in vars_:
            graph.add_edge(len(linear_rows) + k, v)
    var_to_diff = DiffGraph(n_vars)
    for v, dv in diffs:
        var_to_diff.set_derivative(v, dv)
    mm = SparseMatrixCLIL.from_rows(n_eqs, n_vars, dict(enumerate(linear_rows)))
    return graph, var_to_diff, mm


def assert_chain_consistent(ag, var_to_diff):
    """If v = c * w and both are differentiated, then D(v) = c * D(w)."""
    for v, (coeff, w) in ag.resolved_items():
        dv = var_to_diff[v]
        if dv is None:
            continue
        assert dv in ag
        if coeff == 0:
            assert ag[dv] == (0, None)
        elif var_to_diff[w] is not None:
            assert ag[dv] == (coeff, var_to_diff[w])


def assert_acyclic(ag):
    for v, (coeff, w) in ag.resolved_items():
        assert v != w
        assert w is None or w not in ag


class TestLocallyStructureSimplify:
    def test_alias(self):
        mm = SparseMatrixCLIL.from_rows(1, 2, {0: {0: 1, 1: -1}})
        ag = AliasGraph(2)
        assert locally_structure_simplify(mm.row(0), 0, ag, DiffGraph(2))
        assert ag[0] == (1, 1)
        assert mm.count_nonzeros(0) == 0

    def test_negative_alias(self):
        mm = SparseMatrixCLIL.from_rows(1, 2, {0: {0: -3, 1: -3}})
        ag = AliasGraph(2)
        assert locally_structure_simplify(mm.row(0), 0, ag, DiffGraph(2))
        assert ag[0] == (-1, 1)

    def test_zero_alias(self):
        mm = SparseMatrixCLIL.from_rows(1, 2, {0: {1: 5}})
        ag = AliasGraph(2)
        assert locally_structure_simplify(mm.row(0), 1, ag, DiffGraph(2))
        assert ag[1] == (0, None)

    @pytest.mark.parametrize("row", [{0: 2, 1: -1}, {0: 1, 1: 2}, {0: 2, 1: 3}])
    def test_refuse_coefficient(self, row):
        mm = SparseMatrixCLIL.from_rows(1, 2, {0: row})
        ag = AliasGraph(2)
        assert not locally_structure_simplify(mm.row(0), 0, ag, DiffGraph(2))
        assert len(ag) == 0
        assert mm.row(0).to_dict() == row

    def test_refuse_too_many_variables(self):
        mm = SparseMatrixCLIL.from_rows(1, 3, {0: {0: 1, 1: 1, 2: 1}})
        ag = AliasGraph(3)
        assert not locally_structure_simplify(mm.row(0), 0, ag, DiffGraph(3))
        assert len(ag) == 0

    def test_refuse_eliminated_pivot(self):
        mm = SparseMatrixCLIL.from_rows(1, 2, {0: {0: 1, 1: -1}})
        ag = AliasGraph(2)
        ag[0] = 0
        assert not locally_structure_simplify(mm.row(0), 0, ag, DiffGraph(2))
        assert mm.count_nonzeros(0) == 2

    def test_substitutes_known_aliases(self):
        # v0 - v1 = 0 with v1 = -v0 leaves 2 * v0 = 0
        mm = SparseMatrixCLIL.from_rows(1, 2, {0: {0: 1, 1: -1}})
        ag = AliasGraph(2)
        ag[1] = (-1, 0)
        assert locally_structure_simplify(mm.row(0), 0, ag, DiffGraph(2))
        assert ag[0] == (0, None)
        assert ag[1] == (0, None)

    def test_substitution_cancels_pivot(self):
        # v0 - v1 = 0 with v1 = v0 is trivially satisfied
        mm = SparseMatrixCLIL.from_rows(1, 2, {0: {0: 1, 1: -1}})
        ag = AliasGraph(2)
        ag[1] = (1, 0)
        assert not locally_structure_simplify(mm.row(0), 0, ag, DiffGraph(2))
        assert 0 not in ag
        assert mm.count_nonzeros(0) == 0

    def test_derivative_depth(self):
        # x = 0, y = 1, Dx = 2: x cannot be an alias of y
        mm = SparseMatrixCLIL.from_rows(1, 3, {0: {0: 1, 1: -1}})
        var_to_diff = DiffGraph(3)
        var_to_diff.set_derivative(0, 2)
        ag = AliasGraph(3)
        assert not locally_structure_simplify(mm.row(0), 0, ag, var_to_diff)
        assert len(ag) == 0

    def test_derivative_propagation(self):
        # x = 0, y = 1, Dx = 2, Dy = 3, DDx = 4, DDy = 5
        var_to_diff = DiffGraph(6)
        for v, dv in [(0, 2), (1, 3), (2, 4), (3, 5)]:
            var_to_diff.set_derivative(v, dv)
        mm = SparseMatrixCLIL.from_rows(1, 6, {0: {0: 1, 1: 1}})
        ag = AliasGraph(6)
        assert locally_structure_simplify(mm.row(0), 0, ag, var_to_diff)
        assert ag[0] == (-1, 1)
        assert ag[2] == (-1, 3)
        assert ag[4] == (-1, 5)
        assert ag.keys() == [0, 2, 4]

    def test_derivative_propagation_zero(self):
        var_to_diff = DiffGraph(3)
        var_to_diff.set_derivative(0, 1)
        var_to_diff.set_derivative(1, 2)
        mm = SparseMatrixCLIL.from_rows(1, 3, {0: {0: 4}})
        ag = AliasGraph(3)
        assert locally_structure_simplify(mm.row(0), 0, ag, var_to_diff)
        assert list(ag.resolved_items()) == [(0, (0, None)), (1, (0, None)), (2, (0, None))]

    def test_chain_existing_equal_entry(self):
        var_to_diff = DiffGraph(4)
        var_to_diff.set_derivative(0, 2)
        var_to_diff.set_derivative(1, 3)
        ag = AliasGraph(4)
        ag[2] = (1, 3)
        mm = SparseMatrixCLIL.from_rows(1, 4, {0: {0: 1, 1: -1}})
        assert locally_structure_simplify(mm.row(0), 0, ag, var_to_diff)
        assert ag[0] == (1, 1)
        assert ag.keys() == [2, 0]

    def test_chain_existing_different_entry(self):
        var_to_diff = DiffGraph(4)
        var_to_diff.set_derivative(0, 2)
        var_to_diff.set_derivative(1, 3)
        ag = AliasGraph(4)
        ag[2] = (-1, 3)
        mm = SparseMatrixCLIL.from_rows(1, 4, {0: {0: 1, 1: -1}})
        assert not locally_structure_simplify(mm.row(0), 0, ag, var_to_diff)
        assert 0 not in ag
        assert mm.row(0).to_dict() == {0: 1, 1: -1}


class TestAliasEliminateGraph:
    def test_simple_alias(self):
        # e0: x - y = 0, e1: y = 2
        graph, var_to_diff, mm = make_system(2, [{0: 1, 1: -1}], [[1]])
        ag, mm = alias_eliminate_graph(graph, var_to_diff, mm)
        assert list(ag.resolved_items()) == [(0, (1, 1))]
        assert graph.eq_neighbors(0) == []
        assert graph.eq_neighbors(1) == [1]
        assert mm.count_nonzeros(0) == 0

    def test_derivative_chain(self):
        # x = 0, y = 1, Dx = 2, Dy = 3; x - y = 0 plus a nonlinear equation in Dx, Dy
        graph, var_to_diff, mm = make_system(
            4, [{0: 1, 1: -1}], [[2, 3]], diffs=[(0, 2), (1, 3)]
        )
        ag, _ = alias_eliminate_graph(graph, var_to_diff, mm)
        assert dict(ag.resolved_items()) == {0: (1, 1), 2: (1, 3)}
        assert_chain_consistent(ag, var_to_diff)
        assert graph.eq_neighbors(0) == []
        assert graph.eq_neighbors(1) == [2, 3]

    def test_derivative_depth_refused(self):
        # x = 0, y = 1, Dx = 2; x - y = 0 and y appears nonlinearly
        graph, var_to_diff, mm = make_system(
            3, [{0: 1, 1: -1}], [[1, 2]], diffs=[(0, 2)]
        )
        ag, _ = alias_eliminate_graph(graph, var_to_diff, mm)
        assert len(ag) == 0
        assert graph.eq_neighbors(0) == [0, 1]

    @pytest.mark.parametrize("row", [{0: 2, 1: -1}, {0: 1, 1: 2}])
    def test_coefficient_refused(self, row):
        graph, var_to_diff, mm = make_system(2, [row], [[0, 1]])
        ag, mm = alias_eliminate_graph(graph, var_to_diff, mm)
        assert len(ag) == 0
        assert graph.eq_neighbors(0) == [0, 1]
        assert mm.row(0).to_dict() == row

    def test_purely_linear_chain_is_zero(self):
        # v0 = v1, v1 = v2 and nothing else: every variable may be zero
        graph, var_to_diff, mm = make_system(3, [{0: 1, 1: -1}, {1: 1, 2: -1}])
        ag, _ = alias_eliminate_graph(graph, var_to_diff, mm)
        assert dict(ag.resolved_items()) == {0: (0, None), 1: (0, None), 2: (0, None)}
        assert graph.eq_neighbors(0) == []
        assert graph.eq_neighbors(1) == []

    def test_singular_linear_variables_are_zero(self):
        graph, var_to_diff, mm = make_system(3, [{0: 1, 1: 1, 2: 1}])
        ag, _ = alias_eliminate_graph(graph, var_to_diff, mm)
        assert ag.keys() == [1, 2, 0]
        assert all(alias == (0, None) for _, alias in ag.resolved_items())

    def test_redundant_equation_is_emptied(self):
        graph, var_to_diff, mm = make_system(
            2, [{0: 1, 1: -1}, {0: 2, 1: -2}], [[0, 1]]
        )
        ag, _ = alias_eliminate_graph(graph, var_to_diff, mm)
        assert dict(ag.resolved_items()) == {0: (1, 1)}
        assert graph.eq_neighbors(0) == []
        assert graph.eq_neighbors(1) == []
        assert graph.eq_neighbors(2) == [0, 1]

    def test_keeps_simpler_unreduced_row(self):
        # Elimination fills row 1 in with v1 and v2, so the unreduced row is kept.
        graph, var_to_diff, mm = make_system(
            5, [{0: 1, 1: 1, 2: 1}, {0: 1, 3: 1, 4: -1}], [[0, 1, 2, 3, 4]]
        )
        ag, mm = alias_eliminate_graph(graph, var_to_diff, mm)
        assert len(ag) == 0
        assert mm.row(1).to_dict() == {0: 1, 3: 1, 4: -1}
        assert graph.eq_neighbors(0) == [0, 1, 2]
        assert graph.eq_neighbors(1) == [0, 3, 4]

    def test_transitive_aliases(self):
        # v0 = v1, v1 = -v2, v2 appears nonlinearly
        graph, var_to_diff, mm = make_system(
            3, [{0: 1, 1: -1}, {1: 1, 2: 1}], [[0, 1, 2]]
        )
        ag, _ = alias_eliminate_graph(graph, var_to_diff, mm)
        assert dict(ag.resolved_items()) == {0: (-1, 2), 1: (-1, 2)}
        assert_acyclic(ag)
        assert graph.eq_neighbors(0) == []
        assert graph.eq_neighbors(1) == []

    def test_idempotent(self):
        graph, var_to_diff, mm = make_system(
            4, [{0: 1, 1: -1}], [[2, 3]], diffs=[(0, 2), (1, 3)]
        )
        alias_eliminate_graph(graph, var_to_diff, mm)
        # rebuild the linear rows from what is left in the graph
        rows = {}
        for e in mm.nzrows:
            if graph.eq_neighbors(e):
                rows[e] = {v: 1 for v in graph.eq_neighbors(e)}
        mm2 = SparseMatrixCLIL.from_rows(graph.n_eqs, graph.n_vars, rows)
        ag2, _ = alias_eliminate_graph(graph, var_to_diff, mm2)
        assert len(ag2) == 0
