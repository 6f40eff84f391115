# Copyright (C) 2025 Gil Benezer
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Symbolic Models - Raw Model Definitions from SymPy Expressions

Builds the right-hand-side functions of a raw model from SymPy
expressions with ``sympy.lambdify``. The result is an ordinary raw model
mapping that goes through ``normalize`` like any hand-written one.

Each state symbol becomes a scalar variable and each parameter symbol a
scalar parameter, in the order given.

Examples
--------
>>> import sympy as sp
>>> x, v, k = sp.symbols("x v k")
>>> model = SymbolicModel(
...     state_vars=[x, v],
...     parameters={k: 4.0},
...     drift=sp.Matrix([v, -k * x]),
...     initial={x: 1.0},
... )
>>> schema = normalize(model.to_raw())
"""

from typing import Any, Callable, Dict, List, Optional

import numpy as np
import sympy as sp

from dynctl.exceptions import SchemaError


def _as_matrix(expr) -> sp.Matrix:
    if isinstance(expr, sp.MatrixBase):
        return sp.Matrix(expr)
    if isinstance(expr, (list, tuple)):
        return sp.Matrix(expr)
    return sp.Matrix([expr])


class SymbolicModel:
    """
    Model defined by SymPy expressions.

    With only ``drift`` the model is ordinary (dy/dt = drift). Adding
    ``diffusion`` (an n x m matrix) makes it stochastic with m noise
    sources.

    Parameters
    ----------
    state_vars : List[sp.Symbol]
        State symbols, in state vector order
    parameters : Dict[sp.Symbol, float]
        Parameter symbols and their values, in argument order
    drift : sp.Matrix
        Right-hand side (ordinary) or drift (stochastic), n x 1
    diffusion : Optional[sp.Matrix]
        Diffusion matrix, n x m
    time : Optional[sp.Symbol]
        Time symbol, if the expressions depend on time explicitly
    initial : Optional[Dict[sp.Symbol, float]]
        Initial values (default 0)

    Raises
    ------
    SchemaError
        If dimensions disagree or an expression uses an undeclared symbol
    """

    def __init__(
        self,
        state_vars: List[sp.Symbol],
        parameters: Dict[sp.Symbol, float],
        drift,
        diffusion=None,
        time: Optional[sp.Symbol] = None,
        initial: Optional[Dict[sp.Symbol, float]] = None,
    ):
        self.state_vars = list(state_vars)
        self.parameters = dict(parameters)
        self.drift = _as_matrix(drift)
        self.diffusion = None if diffusion is None else _as_matrix(diffusion)
        self.time = time if time is not None else sp.Symbol("t")
        self.initial = dict(initial or {})
        self._validate()

    def _validate(self):
        n = len(self.state_vars)
        errors = []
        if n == 0:
            errors.append("state_vars is empty")
        if self.drift.shape != (n, 1):
            errors.append(f"drift must be {n} x 1, got {self.drift.shape[0]} x {self.drift.shape[1]}")
        if self.diffusion is not None and self.diffusion.shape[0] != n:
            errors.append(f"diffusion must have {n} rows, got {self.diffusion.shape[0]}")

        known = set(self.state_vars) | set(self.parameters) | {self.time}
        exprs = [self.drift] + ([self.diffusion] if self.diffusion is not None else [])
        unknown = set().union(*(e.free_symbols for e in exprs)) - known
        if unknown:
            names = ", ".join(sorted(str(s) for s in unknown))
            errors.append(f"Undeclared symbols in expressions: {names}")

        if errors:
            raise SchemaError("Invalid symbolic model:\n" + "\n".join(f"  • {e}" for e in errors))

    @property
    def nx(self) -> int:
        return len(self.state_vars)

    @property
    def noise_sources(self) -> int:
        return 0 if self.diffusion is None else self.diffusion.shape[1]

    def _compile(self, expr: sp.Matrix, shape) -> Callable:
        symbols = [self.time] + self.state_vars + list(self.parameters)
        func = sp.lambdify(symbols, expr, modules="numpy")
        n = self.nx

        def rhs(t, y, *params):
            y = np.asarray(y, dtype=float).reshape(-1)
            args = [t] + [y[i] for i in range(n)] + [np.asarray(p).item() for p in params]
            return np.asarray(func(*args), dtype=float).reshape(shape)

        return rhs

    def to_raw(self) -> Dict[str, Any]:
        """
        Raw model mapping with compiled right-hand-side functions.

        Examples
        --------
        >>> raw = model.to_raw()
        >>> sorted(raw)
        ['ode', 'parameters', 'variables']
        """
        raw: Dict[str, Any] = {
            "parameters": [
                {"name": str(sym), "value": float(value)} for sym, value in self.parameters.items()
            ],
            "variables": [
                {"name": str(sym), "value": float(self.initial.get(sym, 0.0))}
                for sym in self.state_vars
            ],
        }
        if self.diffusion is None:
            raw["ode"] = self._compile(self.drift, (self.nx,))
        else:
            raw["sde_drift"] = self._compile(self.drift, (self.nx,))
            raw["sde_diffusion"] = self._compile(self.diffusion, (self.nx, self.noise_sources))
            raw["solver_options"] = {"noise_sources": self.noise_sources}
        return raw

    def __repr__(self) -> str:
        kind = "ordinary" if self.diffusion is None else "stochastic"
        return f"SymbolicModel(nx={self.nx}, {kind})"
