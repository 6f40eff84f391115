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
DynControl - Simulation Control Engine for Dynamical Models

Define a model (parameters, state variables, optional lags and a
right-hand side), then solve it interactively: the controller re-solves
after each change, coalescing bursts of changes into a single run.

Examples
--------
>>> import dynctl
>>> controller = dynctl.SimulationController({
...     "parameters": [{"name": "a", "value": -1.0}],
...     "variables": [{"name": "y", "value": 1.0}],
...     "ode": lambda t, y, a: a * y,
...     "time_span": (0, 5),
... })
>>> controller.tick()
True
>>> controller.solution.final_state
"""

from .exceptions import (
    HistoryTruncation,
    OutOfLimitsWarning,
    OverflowCondition,
    SchemaError,
    SimulationWarning,
    SolverWarning,
)
from .types import ModelFamily, ModelSchema, RunStatistics, Solution, SolverEntry
from .model import SchemaValidator, SymbolicModel, normalize, verify_model
from .solvers import SolverDispatch, evolve, solve
from .control import (
    ControllerConfig,
    RecomputeScheduler,
    RunControlState,
    RunState,
    SimulationController,
)

__version__ = "0.1.0"

__all__ = [
    "HistoryTruncation",
    "OutOfLimitsWarning",
    "OverflowCondition",
    "SchemaError",
    "SimulationWarning",
    "SolverWarning",
    "ModelFamily",
    "ModelSchema",
    "RunStatistics",
    "Solution",
    "SolverEntry",
    "SchemaValidator",
    "SymbolicModel",
    "normalize",
    "verify_model",
    "SolverDispatch",
    "evolve",
    "solve",
    "ControllerConfig",
    "RecomputeScheduler",
    "RunControlState",
    "RunState",
    "SimulationController",
]
