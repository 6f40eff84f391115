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
Types Module - Type Definitions for DynControl

Central import point for the engine's type definitions.

Usage
-----
>>> from dynctl.types import ModelSchema, ModelFamily, Solution

Module Organization
-------------------
- core: array aliases and function signatures
- trajectories: time spans, statistics, Solution
- model: ModelFamily and the normalized ModelSchema
"""

from .core import (
    ArrayLike,
    AuxiliaryFunction,
    DdeFunction,
    DelayedStates,
    DiffusionFunction,
    DiffusionMatrix,
    DriftFunction,
    HistoryFunction,
    NoiseSamples,
    OdeFunction,
    OutputFunction,
    ParameterValue,
    ScalarLike,
    SolverFunction,
    StateVector,
)
from .model import (
    LagDef,
    ModelFamily,
    ModelSchema,
    ParameterDef,
    SolverEntry,
    VariableDef,
)
from .trajectories import (
    RunStatistics,
    Solution,
    SolverStats,
    TimePoints,
    TimeSpan,
    empty_stats,
)

__all__ = [
    # core
    "ArrayLike",
    "AuxiliaryFunction",
    "DdeFunction",
    "DelayedStates",
    "DiffusionFunction",
    "DiffusionMatrix",
    "DriftFunction",
    "HistoryFunction",
    "NoiseSamples",
    "OdeFunction",
    "OutputFunction",
    "ParameterValue",
    "ScalarLike",
    "SolverFunction",
    "StateVector",
    # model
    "LagDef",
    "ModelFamily",
    "ModelSchema",
    "ParameterDef",
    "SolverEntry",
    "VariableDef",
    # trajectories
    "RunStatistics",
    "Solution",
    "SolverStats",
    "TimePoints",
    "TimeSpan",
    "empty_stats",
]
