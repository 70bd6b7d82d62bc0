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

from enum import Enum
from typing import Iterator, Optional, Union

from .error import AliasGraphConsistencyError

__all__ = ["AliasGraph", "AliasState"]


class AliasState(Enum):
    """Tagged entry states of the alias table."""

    ZERO = "zero"  # the variable is identically zero


Entry = Union[AliasState, tuple[int, int]]


class AliasGraph:
    """
    When eliminating variables, keeps track of which variables were eliminated
    in favor of which others.

    Only direct aliases are supported: an eliminated variable `i` is either
    `coeff * j` with `coeff` in (-1, 1), or identically zero. Entries are
    write-once. Reads resolve chains of aliases and compress them, so that a
    later read of the same key is a single lookup.

    Zero aliases read back as `(0, None)`.

    Parameters:
        nvars : int
            Number of variables, ids `0..nvars-1`.
    """

    def __init__(self, nvars: int):
        self.aliasto: list[Optional[Entry]] = [None] * nvars
        self.eliminated: list[int] = []

    def __len__(self):
        return len(self.eliminated)

    def __contains__(self, i) -> bool:
        if i is None:
            return False
        return 0 <= i < len(self.aliasto) and self.aliasto[i] is not None

    def is_eliminated(self, i: int) -> bool:
        return i in self

    def __getitem__(self, i: int) -> tuple[int, Optional[int]]:
        r = self.aliasto[i] if 0 <= i < len(self.aliasto) else None
        if r is None:
            raise KeyError(i)
        if r is AliasState.ZERO:
            return (0, None)

        coeff, var = r
        if var in self:
            # Amortized lookup. Our alias was itself eliminated since we last
            # looked, so point straight at its representative.
            ac, av = self[var]
            if ac == 0:
                self.aliasto[i] = AliasState.ZERO
                return (0, None)
            coeff *= ac
            var = av
            self.aliasto[i] = (coeff, var)
        return (coeff, var)

    def __setitem__(self, i: int, value):
        if self.aliasto[i] is not None:
            raise AliasGraphConsistencyError(
                f"Variable {i} was already eliminated as {self._describe(self.aliasto[i])}.",
                variables=[i],
            )

        if isinstance(value, int) and not isinstance(value, bool):
            if value != 0:
                raise ValueError(f"Only 0 may be assigned as a constant alias, got {value}")
            entry = AliasState.ZERO
        else:
            coeff, var = value
            if coeff not in (-1, 1):
                raise ValueError(f"Alias coefficient must be 1 or -1, got {coeff}")
            if var is None or var == i:
                raise ValueError(f"Variable {i} cannot be aliased to {var}")
            if not 0 <= var < len(self.aliasto):
                raise IndexError(f"Alias target {var} out of range")
            if var in self and self[var][1] == i:
                raise AliasGraphConsistencyError(
                    f"Aliasing v{i} to v{var} would create a cycle.",
                    variables=[i, var],
                )
            entry = (coeff, var)

        self.aliasto[i] = entry
        self.eliminated.append(i)

    def get(self, i: int, default=None):
        if i not in self:
            return default
        return self[i]

    def keys(self) -> list[int]:
        return list(self.eliminated)

    def items(self) -> Iterator[tuple[int, tuple[int, Optional[int]]]]:
        """Stored entries in elimination order, without resolving chains."""
        for i in self.eliminated:
            yield i, self._stored(i)

    def __iter__(self):
        return self.items()

    def resolved_items(self) -> Iterator[tuple[int, tuple[int, Optional[int]]]]:
        """Entries in elimination order with every target fully resolved."""
        for i in self.eliminated:
            yield i, self[i]

    def _stored(self, i: int) -> tuple[int, Optional[int]]:
        r = self.aliasto[i]
        if r is AliasState.ZERO:
            return (0, None)
        return r

    @staticmethod
    def _describe(entry: Entry) -> str:
        if entry is AliasState.ZERO:
            return "0"
        coeff, var = entry
        return f"{'-' if coeff < 0 else ''}v{var}"

    def __repr__(self):
        aliases = ", ".join(f"v{i} => {self._describe(self.aliasto[i])}" for i in self.eliminated)
        return f"AliasGraph({aliases})"
