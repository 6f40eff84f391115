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
Value Map - Solution Index Mapping

Maps between named variables and the flat state vector used by solvers.

The flat state vector is built by flattening every variable value
(row-major) and concatenating them in declaration order. Each VariableDef
records its slice as ``solution_index``; this ordering is the single source
of truth wherever a state vector is built from, or decomposed into, named
variables.

Examples
--------
>>> variables = [VariableDef("x", np.zeros(2), (0, 1)),
...              VariableDef("y", np.zeros((2, 2)), (0, 1))]
>>> assign_solution_indices(variables)
>>> [v.solution_index for v in variables]
[range(0, 2), range(2, 6)]
>>> [e.name for e in sol_map(variables)]
['x[0]', 'x[1]', 'y[0]', 'y[1]', 'y[2]', 'y[3]']
"""

from dataclasses import dataclass
from typing import Dict, List, Sequence

import numpy as np

from dynctl.exceptions import SchemaError
from dynctl.types.core import ArrayLike, StateVector
from dynctl.types.model import ParameterDef, VariableDef
from dynctl.types.trajectories import Solution


@dataclass(frozen=True)
class VarMapEntry:
    """Variable name and its rows in the flat state vector."""

    name: str
    solution_index: range


@dataclass(frozen=True)
class SolMapEntry:
    """Display name of one state component and the variable it belongs to."""

    name: str
    variable_index: int


def assign_solution_indices(variables: Sequence[VariableDef]) -> int:
    """
    Assign contiguous ``solution_index`` ranges in declaration order.

    Returns
    -------
    int
        Total state size
    """
    row = 0
    for var in variables:
        var.solution_index = range(row, row + var.size)
        row += var.size
    return row


def var_map(variables: Sequence[VariableDef]) -> List[VarMapEntry]:
    """One entry per variable: its name and rows in the state vector."""
    return [VarMapEntry(v.name, v.solution_index) for v in variables]


def sol_map(variables: Sequence[VariableDef]) -> List[SolMapEntry]:
    """
    One entry per state component.

    Scalar variables keep their name, array variables get an element
    suffix (``name[k]``, zero-based, row-major).
    """
    entries = []
    for var_index, var in enumerate(variables):
        if var.size == 1:
            entries.append(SolMapEntry(var.name, var_index))
            continue
        for element in range(var.size):
            entries.append(SolMapEntry(f"{var.name}[{element}]", var_index))
    return entries


def get_values(defs: Sequence[ParameterDef]) -> np.ndarray:
    """Concatenate the flattened values of ``defs`` into one vector."""
    if not defs:
        return np.zeros(0)
    return np.concatenate([np.asarray(d.value, dtype=float).reshape(-1) for d in defs])


def set_values(defs: Sequence[ParameterDef], vec: ArrayLike) -> None:
    """
    Scatter a flat vector back into ``defs`` in place, preserving shapes.

    Raises
    ------
    SchemaError
        If the number of values does not match
    """
    vec = np.asarray(vec, dtype=float).reshape(-1)
    expected = sum(d.size for d in defs)
    if vec.size != expected:
        raise SchemaError(
            f"Number of new values ({vec.size}) must match the number of "
            f"values in the definitions ({expected})"
        )
    offset = 0
    for d in defs:
        d.value = vec[offset : offset + d.size].reshape(d.shape).copy()
        offset += d.size


def split_state(variables: Sequence[VariableDef], y: StateVector) -> Dict[str, np.ndarray]:
    """Decompose a flat state vector into named, reshaped variable values."""
    y = np.asarray(y).reshape(-1)
    return {
        v.name: y[v.solution_index.start : v.solution_index.stop].reshape(v.shape)
        for v in variables
    }


def variable_trajectory(solution: Solution, variable: VariableDef) -> np.ndarray:
    """
    Trajectory of one variable, shape ``variable.shape + (T,)``.

    Examples
    --------
    >>> x_t = variable_trajectory(controller.solution, schema.variables[0])
    """
    rows = solution.states[variable.solution_index.start : variable.solution_index.stop, :]
    return rows.reshape(variable.shape + (solution.n_samples,))
