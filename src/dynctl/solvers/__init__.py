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
Solvers Module - Reference Primitives and Family Dispatch

Reference primitives
--------------------
- Ordinary: ode45, ode23, ode113, ode15s (scipy solve_ivp), ode_euler
- Delay: dde_euler
- Stochastic: sde_ito (Euler-Maruyama), sde_stratonovich (Heun)

Dispatch
--------
- SolverDispatch: classify and invoke primitives by family convention
- solve, evolve: one-shot helpers
"""

from .solver_base import OUTPUT_DONE, OUTPUT_INIT, OUTPUT_STEP, SolverPrimitive
from .ode_solvers import (
    DEFAULT_ODE_SOLVERS,
    EulerOdeSolver,
    ScipyOdeSolver,
    ode113,
    ode15s,
    ode23,
    ode45,
    ode_euler,
)
from .dde_solvers import DEFAULT_DDE_SOLVERS, EulerDdeSolver, dde_euler
from .sde_solvers import (
    DEFAULT_SDE_SOLVERS,
    FixedStepSdeSolver,
    ItoSdeSolver,
    StratonovichSdeSolver,
    sde_ito,
    sde_stratonovich,
)
from .dispatch import SolverDispatch, auxiliary_output, evolve, solve

__all__ = [
    "OUTPUT_DONE",
    "OUTPUT_INIT",
    "OUTPUT_STEP",
    "SolverPrimitive",
    # ordinary
    "DEFAULT_ODE_SOLVERS",
    "EulerOdeSolver",
    "ScipyOdeSolver",
    "ode113",
    "ode15s",
    "ode23",
    "ode45",
    "ode_euler",
    # delay
    "DEFAULT_DDE_SOLVERS",
    "EulerDdeSolver",
    "dde_euler",
    # stochastic
    "DEFAULT_SDE_SOLVERS",
    "FixedStepSdeSolver",
    "ItoSdeSolver",
    "StratonovichSdeSolver",
    "sde_ito",
    "sde_stratonovich",
    # dispatch
    "SolverDispatch",
    "auxiliary_output",
    "evolve",
    "solve",
]
