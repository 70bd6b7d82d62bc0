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

import re
from typing import Iterable, Optional

import sympy as sp

# dx(t)/dt
_DERIVATIVE_PATTERN = re.compile(r"d([a-zA-Z_]\w*)\(t\)/dt")


def preprocess_derivatives(expr_str: str) -> str:
    """Rewrite `dx(t)/dt` as `Derivative(x(t), t)`."""

    def replace_derivative(match):
        func_name = match.group(1)
        return f"Derivative({func_name}(t), t)"

    return _DERIVATIVE_PATTERN.sub(replace_derivative, expr_str)


def parse_expression(expr_str: str):
    return sp.sympify(preprocess_derivatives(expr_str))


def parse_equation(eq_str: str):
    """`"lhs = rhs"` becomes `Eq(lhs, rhs)`, anything else is an expression
    meaning `0 = expr`."""
    sides = eq_str.split("=")
    if len(sides) == 1:
        return parse_expression(eq_str)
    if len(sides) != 2:
        raise ValueError(f"Equation must contain at most one '=': {eq_str!r}")
    lhs, rhs = (parse_expression(s.strip()) for s in sides)
    return sp.Eq(lhs, rhs, evaluate=False)


def parse_string_inputs(eqs: list[str], knowns: Optional[Iterable[str]] = None):
    """
    Parse equations given as strings.

    Returns:
        t : sympy.Symbol
            Reserved symbol for time.
        sym_eqs : list
            Parsed equations.
        sym_knowns : set
            Parsed known symbols.
    """
    t = sp.symbols("t")
    sym_eqs = [parse_equation(eq) for eq in eqs]
    sym_knowns = {parse_expression(k) for k in knowns} if knowns else set()
    return t, sym_eqs, sym_knowns
