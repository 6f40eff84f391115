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
Control Module - Recompute Orchestration

- controller: SimulationController, RunState, RunControlState, ControllerConfig
- scheduler: RecomputeScheduler
- continuation: helpers carrying one run into the next
"""

from .continuation import (
    InterpolatedHistory,
    anchor_history,
    continue_initial_values,
    history_from_solution,
    hold_noise_samples,
    perturb_initial_values,
)
from .controller import ControllerConfig, RunControlState, RunState, SimulationController
from .scheduler import RecomputeScheduler

__all__ = [
    "InterpolatedHistory",
    "anchor_history",
    "continue_initial_values",
    "history_from_solution",
    "hold_noise_samples",
    "perturb_initial_values",
    "ControllerConfig",
    "RunControlState",
    "RunState",
    "SimulationController",
    "RecomputeScheduler",
]
