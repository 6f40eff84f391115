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
Trajectory and Solution Types

Defines the time series produced by a solver run:
- Time spans
- Solver statistics
- Run statistics reported by the controller
- The immutable Solution record

Shape Conventions
-----------------
Unlike most of the numerical code in the ecosystem, solutions are stored
state-major: ``states[i, k]`` is component ``i`` of the flat state vector
at sample ``k``. A variable's trajectory is therefore
``states[variable.solution_index, :]``.

Usage
-----
>>> sol = Solution(times=t, states=y, stats=SolverStats(...))
>>> y_final = sol.final_state
>>> sol.states[0, :]   # first state component over time
"""

from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

import numpy as np
from typing_extensions import TypedDict

from .core import ArrayLike, StateVector

# ============================================================================
# Time Types
# ============================================================================

TimeSpan = Tuple[float, float]
"""
Integration interval (t0, t1) with t0 <= t1.
"""

TimePoints = ArrayLike
"""
Sample instants of a run, shape (T,), non-decreasing.
"""


# ============================================================================
# Statistics
# ============================================================================


class SolverStats(TypedDict):
    """
    Counters reported by a solver primitive.

    Attributes
    ----------
    steps_taken : int
        Number of successful steps
    steps_failed : int
        Number of rejected or failed steps
    evaluation_count : int
        Number of right-hand-side evaluations
    """

    steps_taken: int
    steps_failed: int
    evaluation_count: int


class RunStatistics(TypedDict):
    """
    Statistics of the most recent run, as reported by the controller.

    Attributes
    ----------
    steps_taken, steps_failed, evaluation_count : int
        Solver counters (see SolverStats)
    cpu_time : float
        Process time spent inside the solver (seconds)
    progress : float
        Fraction of the time span covered when the run ended (0 to 1)
    warning : str
        Last warning message of the run, or "none"
    solve_count : int
        Number of solves performed by the controller so far
    """

    steps_taken: int
    steps_failed: int
    evaluation_count: int
    cpu_time: float
    progress: float
    warning: str
    solve_count: int


def empty_stats() -> SolverStats:
    """Zeroed solver statistics."""
    return SolverStats(steps_taken=0, steps_failed=0, evaluation_count=0)


def _frozen(a: Optional[ArrayLike], ndim: int) -> Optional[np.ndarray]:
    if a is None:
        return None
    out = np.array(a, dtype=float, copy=True)
    if ndim == 2 and out.ndim == 1:
        # a single component over time
        out = out.reshape(1, -1) if out.size else out.reshape(0, 0)
    out.setflags(write=False)
    return out


# ============================================================================
# Solution
# ============================================================================


@dataclass(frozen=True, eq=False)
class Solution:
    """
    Immutable result of one solver run.

    A Solution is never mutated once built: arrays are copied on
    construction and flagged read-only. The controller replaces its
    Solution wholesale after each run.

    Attributes
    ----------
    times : ArrayLike
        Sample instants, shape (T,)
    states : ArrayLike
        State values, shape (n, T), indexed [solution_index, sample]
    stats : SolverStats
        Solver counters
    derivatives : Optional[ArrayLike]
        Derivative samples, shape (n, T)
    increments : Optional[ArrayLike]
        Wiener increments dW of a stochastic run, shape (m, T)
    solver : str
        Name of the primitive that produced the run
    warnings : Tuple[str, ...]
        Warning messages recorded during the run
    overflow : bool
        True if the final state contains non-finite values
    halted : bool
        True if the run was stopped early through the output hook
    auxiliary : Optional[ArrayLike]
        Output of the model's auxiliary function, shape (k, T)

    Examples
    --------
    >>> sol = Solution.empty()
    >>> sol.is_empty
    True
    """

    times: ArrayLike
    states: ArrayLike
    stats: SolverStats = field(default_factory=empty_stats)
    derivatives: Optional[ArrayLike] = None
    increments: Optional[ArrayLike] = None
    solver: str = ""
    warnings: Tuple[str, ...] = ()
    overflow: bool = False
    halted: bool = False
    auxiliary: Optional[ArrayLike] = None

    def __post_init__(self):
        times = _frozen(self.times, 1).reshape(-1)
        times.setflags(write=False)
        object.__setattr__(self, "times", times)
        object.__setattr__(self, "states", _frozen(self.states, 2))
        object.__setattr__(self, "derivatives", _frozen(self.derivatives, 2))
        object.__setattr__(self, "increments", _frozen(self.increments, 2))
        object.__setattr__(self, "auxiliary", _frozen(self.auxiliary, 2))
        object.__setattr__(self, "stats", SolverStats(**self.stats))
        object.__setattr__(self, "warnings", tuple(self.warnings))

        if self.states.size and self.states.shape[1] != times.shape[0]:
            raise ValueError(
                f"states has {self.states.shape[1]} samples but times has "
                f"{times.shape[0]}"
            )

    @classmethod
    def empty(cls) -> "Solution":
        """Solution held by a controller before its first run."""
        return cls(times=np.zeros(0), states=np.zeros((0, 0)))

    @property
    def is_empty(self) -> bool:
        return self.times.size == 0

    @property
    def n_samples(self) -> int:
        return int(self.times.size)

    @property
    def final_state(self) -> Optional[StateVector]:
        """Last state column, or None for an empty solution."""
        if self.is_empty:
            return None
        return self.states[:, -1]

    @property
    def step_size(self) -> Optional[float]:
        """Spacing of the first two samples (fixed-step runs)."""
        if self.times.size < 2:
            return None
        return float(self.times[1] - self.times[0])

    def final_state_is_finite(self) -> bool:
        final = self.final_state
        return final is not None and bool(np.all(np.isfinite(final)))

    def finite_columns(self) -> np.ndarray:
        """Boolean mask of samples whose whole state column is finite."""
        if self.is_empty:
            return np.zeros(0, dtype=bool)
        return np.all(np.isfinite(self.states), axis=0)

    def with_diagnostics(self, **changes) -> "Solution":
        """Copy with diagnostic fields (warnings, overflow, ...) replaced."""
        return replace(self, **changes)
