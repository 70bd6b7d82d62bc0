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

from typing import Optional

import sympy as sp
import sympy.core.function as scf


def to_equation(eq) -> sp.Eq:
    """`sympy.Eq` passes through; a bare expression `expr` means `0 = expr`."""
    if isinstance(eq, sp.Eq):
        return eq
    return sp.Eq(sp.S.Zero, sp.sympify(eq), evaluate=False)


def equation_residual(eq) -> sp.Expr:
    """Residual `rhs - lhs` of an equation or a bare `expr = 0` expression."""
    if isinstance(eq, sp.Eq):
        return eq.rhs - eq.lhs
    return sp.sympify(eq)


def is_diff_equation(eq) -> bool:
    """Equations written as `Derivative(x(t), t) = f(...)` define a derivative
    and are never part of the linear subsystem."""
    return isinstance(eq, sp.Eq) and isinstance(eq.lhs, sp.Derivative)


def extract_vars(eq, known_vars):
    """
    Extract variables from equations in their precise form, differentiating between
    non-derivatives and derivatives, and excluding known_vars.

    x(t) + y(t) = 0 -> {}, {x, y}
    x(t).diff(t) + y(t) = 0 -> {dx/dt}, {y}
    x(t) + x(t).diff(t) + y(t) = 0 -> {dx/t}, {x,y}
    x(t) + x(t).diff(t,t) + y(t).diff(t) = 0 -> {d2x/dt2, dy/dt}, {x}

    Parameters
    ----------
    eq : sympy equation or expression
    known_vars : set
        Set of known variables (parameters and inputs)

    Returns
    -------
    d_vars : set
        Set of derivative variables
    a_vars : set
        Set of variables appearing outside of derivatives
    """
    if isinstance(eq, sp.Eq):
        d_lhs, a_lhs = extract_vars(eq.lhs, known_vars)
        d_rhs, a_rhs = extract_vars(eq.rhs, known_vars)
        return d_lhs | d_rhs, a_lhs | a_rhs

    eq = sp.sympify(eq)

    def is_known(var):
        if var in known_vars:
            return True
        if isinstance(var, sp.Derivative):
            return var.expr in known_vars
        return False

    # Hide derivatives so that x(t) inside Derivative(x(t), t) is not counted
    true_to_dummy = {}
    for der in eq.atoms(sp.Derivative):
        true_to_dummy[der] = sp.Dummy("d_" + str(der))
    dummy_eq = eq.xreplace(true_to_dummy)

    a_vars = {var for var in dummy_eq.atoms(scf.AppliedUndef) if not is_known(var)}
    d_vars = {var for var in true_to_dummy if not is_known(var)}

    return d_vars, a_vars


def base_variable(var):
    """x(t) for x(t), x(t) for Derivative(x(t), (t, n))."""
    if isinstance(var, sp.Derivative):
        return var.expr
    return var


def derivative_order(var) -> int:
    if isinstance(var, sp.Derivative):
        return sum(count for _, count in var.variable_count)
    return 0


def linear_coefficients(residual, variables) -> Optional[dict]:
    """Coefficients of a homogeneous linear residual `sum(c_i * v_i)`.

    Returns a dict `{var: sympy.Rational}` (zero coefficients omitted), or None when
    the residual is nonlinear in any of `variables`, a coefficient is not a
    rational constant, or the residual has a term not proportional to one of
    `variables`.
    """
    dummies = {v: sp.Dummy(f"lin_{i}") for i, v in enumerate(variables)}
    expr = sp.expand(residual.xreplace(dummies))

    coeffs = {}
    linear_term = sp.S.Zero
    for var, dummy in dummies.items():
        a = sp.diff(expr, dummy)
        if not a.is_Rational:
            return None
        if a != 0:
            coeffs[var] = a
        linear_term += a * dummy

    if sp.expand(expr - linear_term) != 0:
        return None
    return coeffs


def fixpoint_sub(x, subs: dict):
    """Apply `subs` to `x` until the expression stops changing."""
    x = sp.sympify(x)
    y = x.subs(subs)
    while y != x:
        x = y
        y = x.subs(subs)
    return y


def substitute_aliases(eqs, subs: dict):
    """Rewrite the rhs of every observed equation through `subs`."""
    return [sp.Eq(eq.lhs, fixpoint_sub(eq.rhs, subs), evaluate=False) for eq in eqs]
