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
Core Types - Fundamental Building Blocks

Defines the most basic types used throughout the engine:
- Array and scalar aliases
- Semantic vector types (state, parameter value, noise)
- Right-hand-side function signatures for each model family
- Solver output hook and history function signatures

Usage
-----
>>> from dynctl.types.core import StateVector, OdeFunction
>>>
>>> def decay(t: float, y: StateVector, a) -> StateVector:
...     return -a * y
>>> rhs: OdeFunction = decay
"""

from typing import Any, Callable, Union

import numpy as np

# ============================================================================
# Basic Array Types
# ============================================================================

ArrayLike = np.ndarray
"""
NumPy array.

The control engine works on NumPy arrays only. Solver primitives may use
other array libraries internally but must hand NumPy arrays back.
"""

ScalarLike = Union[float, int, np.number]
"""
Scalar value (Python float/int or NumPy scalar).

Examples
--------
>>> t0: ScalarLike = 0.0
>>> noise_sources: ScalarLike = 2
"""

# ============================================================================
# Vector Types - Semantic Naming by Role
# ============================================================================

StateVector = ArrayLike
"""
Flat state vector y of shape (n,).

Built by concatenating every variable's value (flattened row-major) in
declaration order. ``VariableDef.solution_index`` gives each variable's
slice of it.
"""

ParameterValue = ArrayLike
"""
Value of a single parameter, variable or lag: a numeric array of any
fixed shape (scalars are stored as 0-d arrays).
"""

DelayedStates = ArrayLike
"""
Delayed state matrix Z of shape (n, nlags).

Column k holds y(t - lag_k).
"""

DiffusionMatrix = ArrayLike
"""
Diffusion matrix G of shape (n, m) where m is the number of noise sources.
"""

NoiseSamples = ArrayLike
"""
Standard normal noise samples of shape (m, T).

Multiplied by sqrt(dt) they become the Wiener increments dW of a
stochastic run.
"""

# ============================================================================
# Function Signatures
# ============================================================================

OdeFunction = Callable[..., StateVector]
"""
Ordinary right-hand side: ``f(t, y, *parameter_values) -> dy/dt``.
"""

DdeFunction = Callable[..., StateVector]
"""
Delay right-hand side: ``f(t, y, Z, *parameter_values) -> dy/dt``.
"""

DriftFunction = Callable[..., StateVector]
"""
Stochastic drift: ``F(t, y, *parameter_values) -> (n,)``.
"""

DiffusionFunction = Callable[..., DiffusionMatrix]
"""
Stochastic diffusion: ``G(t, y, *parameter_values) -> (n, m)``.
"""

HistoryFunction = Callable[[float], StateVector]
"""
History of a delay model: ``h(t) -> y(t)`` for ``t <= t0``.
"""

AuxiliaryFunction = Callable[..., ArrayLike]
"""
Auxiliary output: ``aux(times, states, *parameter_values) -> (k, T)``.
"""

OutputFunction = Callable[[Any, Any, str], bool]
"""
Solver progress/cancellation hook: ``hook(t, y, flag) -> stop``.

Flags
-----
- ``"init"``: called once before the first step with the time span
- ``""``: called periodically during the run with the current time/state
- ``"done"``: called once after the last step (t and y are None)

A truthy return value asks the primitive to stop early. Primitives that
never call the hook cannot be interrupted.
"""

SolverFunction = Callable[..., Any]
"""
Solver primitive. The calling convention depends on the model family,
see ``dynctl.solvers.dispatch``.
"""
