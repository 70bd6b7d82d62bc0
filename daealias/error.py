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

from typing import Optional, Sequence

__all__ = [
    "AliasEliminationError",
    "AliasGraphConsistencyError",
    "BareissError",
    "DerivativeChainError",
    "ObservedEquationError",
    "ObservedEquationCycleError",
]


class AliasEliminationError(Exception):
    """Base class for errors raised by the structural simplification passes.

    Args:
        message: A custom error message, defaults to the error class name.
        variables: Variable ids (or symbols) related to the error, if available.
        equations: Equations related to the error, if available.
    """

    def __init__(
        self,
        message: Optional[str] = None,
        variables: Optional[Sequence] = None,
        equations: Optional[Sequence] = None,
    ):
        super().__init__(message)
        self.message = message
        self.variables = list(variables) if variables is not None else None
        self.equations = list(equations) if equations is not None else None

    def __str__(self):
        message = self.message or self.default_message
        return f"{message}{self._context_info()}"

    def _context_info(self) -> str:
        strbuf = []
        if self.variables:
            vars_str = ", ".join(str(v) for v in self.variables)
            strbuf.append(f"\nRelated variables:\n\t{vars_str}")
        if self.equations:
            eqs_str = "\n\t".join(str(eq) for eq in self.equations)
            strbuf.append(f"\nRelated equations:\n\t{eqs_str}")
        return "".join(strbuf)

    @property
    def default_message(self):
        return type(self).__name__


class AliasGraphConsistencyError(AliasEliminationError, AssertionError):
    """An eliminated variable was assigned a second alias. This breaks the
    write-once contract of the alias table and aborts the pass."""


class BareissError(AliasEliminationError, ArithmeticError):
    """A fraction-free update step produced a non-exact division."""


class DerivativeChainError(AliasEliminationError, ValueError):
    """The derivative chain is not a partial, injective, acyclic map."""


class ObservedEquationError(AliasEliminationError, ValueError):
    """An observed equation does not define one of the provided states."""


class ObservedEquationCycleError(AliasEliminationError, ValueError):
    """The observed equations contain at least one dependency cycle."""

    @property
    def default_message(self):
        return "The equations have at least one cycle."
