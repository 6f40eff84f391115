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
Continuation Helpers - Carrying a Run into the Next One

Pure functions used by the controller between runs:

- continue_initial_values: final state of a run -> variable values
- history_from_solution: previous trajectory -> delay history function
- anchor_history: pins a history to a (perturbed) initial state
- perturb_initial_values: uniform jitter of the initial state
- hold_noise_samples: Wiener increments -> reusable standard normal samples

Time Convention for Delay History
---------------------------------
A continued run starts where the previous one ended, so history time
``t <= t0`` of the new run maps to ``t - t0 + t_end`` of the previous run.
Times before the previous run's start are clamped to its first sample.
"""

import warnings
from typing import Callable, Optional

import numpy as np
from scipy.interpolate import interp1d

from dynctl.exceptions import HistoryTruncation, OutOfLimitsWarning
from dynctl.types.core import StateVector
from dynctl.types.model import ModelSchema
from dynctl.types.trajectories import Solution

# jitter amplitude as a fraction of each variable's limit width
PERTURBATION_SCALE = 0.05

WarnFunction = Callable[[str, type], None]
"""
Run-scoped warning channel: ``warn(message, category)``.
"""


def _warn(warn: Optional[WarnFunction], message: str, category: type) -> None:
    if warn is not None:
        warn(message, category)
    else:
        warnings.warn(message, category, stacklevel=3)


def can_continue(solution: Optional[Solution]) -> bool:
    """True if a run may seed the next one (complete, finite, not halted)."""
    return (
        solution is not None
        and not solution.is_empty
        and not solution.halted
        and not solution.overflow
        and solution.final_state_is_finite()
    )


def continue_initial_values(
    schema: ModelSchema,
    solution: Optional[Solution],
    warn: Optional[WarnFunction] = None,
) -> bool:
    """
    Replace every variable value with its slice of the final state.

    Values are copied exactly (reshape only). Nothing changes when the run
    cannot seed the next one, or when every current initial value lies
    outside its variable's limits (an OutOfLimitsWarning is issued then).

    Parameters
    ----------
    schema : ModelSchema
        Model whose variables are updated in place
    solution : Optional[Solution]
        Previous run
    warn : Optional[WarnFunction]
        Receives the warning instead of ``warnings.warn``

    Returns
    -------
    bool
        True if the values were advanced

    Examples
    --------
    >>> continue_initial_values(schema, previous)
    True
    >>> np.array_equal(schema.initial_state(), previous.final_state)
    True
    """
    if not can_continue(solution) or solution.states.shape[0] != schema.state_size:
        return False

    in_limits = any(
        np.any((var.limit[0] <= var.value) & (var.value <= var.limit[1]))
        for var in schema.variables
    )
    if not in_limits:
        _warn(
            warn,
            "Initial conditions were not advanced because they are beyond their limits",
            OutOfLimitsWarning,
        )
        return False

    final = solution.final_state
    for var in schema.variables:
        index = var.solution_index
        var.value = final[index.start : index.stop].reshape(var.shape).copy()
    return True


class InterpolatedHistory:
    """
    Delay history built from a previous solution.

    Linear interpolation per state component over the finite samples of
    the previous run, shifted so that its last sample lines up with the
    new start time. Issues HistoryTruncation once if asked for a time
    before the previous run's start.

    Parameters
    ----------
    solution : Solution
        Previous run (finite final state)
    start_time : float
        Start of the new run
    warn : Optional[WarnFunction]
        Receives the truncation warning instead of ``warnings.warn``
    """

    def __init__(self, solution: Solution, start_time: float, warn: Optional[WarnFunction] = None):
        mask = solution.finite_columns()
        times = solution.times[mask]
        states = solution.states[:, mask]
        self.offset = float(start_time) - float(times[-1])
        self.earliest = float(times[0]) + self.offset
        self.truncated = False
        self._warn = warn

        if times.size == 1:
            self._interp = None
            self._constant = states[:, 0].copy()
        else:
            self._interp = interp1d(
                times + self.offset,
                states,
                axis=1,
                assume_sorted=True,
                bounds_error=False,
                fill_value=(states[:, 0], states[:, -1]),
            )
            self._constant = None

    def __call__(self, t: float) -> StateVector:
        if t < self.earliest and not self.truncated:
            self.truncated = True
            _warn(
                self._warn,
                f"Delay history requested at t={t:g}, before the previous run's start "
                f"({self.earliest:g}); the earliest sample is used",
                HistoryTruncation,
            )
        if self._interp is None:
            return self._constant.copy()
        return np.asarray(self._interp(max(t, self.earliest)), dtype=float)


def history_from_solution(
    solution: Optional[Solution],
    start_time: float,
    fallback: StateVector,
    warn: Optional[WarnFunction] = None,
):
    """
    History function for a continued delay run.

    Parameters
    ----------
    solution : Optional[Solution]
        Previous run; without a usable one the history is constant
    start_time : float
        Start of the new run
    fallback : StateVector
        Constant history used when there is no usable previous run
    warn : Optional[WarnFunction]
        Receives the truncation warning instead of ``warnings.warn``

    Returns
    -------
    HistoryFunction
        ``h(t) -> y(t)`` for ``t <= start_time``
    """
    if not can_continue(solution):
        constant = np.asarray(fallback, dtype=float).reshape(-1).copy()
        return lambda t: constant.copy()
    return InterpolatedHistory(solution, start_time, warn)


def anchor_history(history, start_time: float, y0: StateVector):
    """
    History that returns ``y0`` at ``start_time`` and ``history(t)`` before it.

    Used when a continued delay run also has a perturbed initial state: the
    delay solvers take the initial state from ``h(t0)``.
    """
    start_time = float(start_time)
    y0 = np.asarray(y0, dtype=float).reshape(-1).copy()

    def anchored(t: float) -> StateVector:
        if t >= start_time:
            return y0.copy()
        return history(t)

    return anchored


def perturb_initial_values(
    schema: ModelSchema,
    rng: np.random.Generator,
    scale: float = PERTURBATION_SCALE,
) -> StateVector:
    """
    Flat initial state with uniform jitter added.

    Each element of a variable moves by ``scale * (high - low) * (u - 0.5)``
    with ``u ~ U(0, 1)``, so never by more than half of ``scale`` times its
    limit width. The schema itself is not modified.

    Examples
    --------
    >>> y0 = perturb_initial_values(schema, np.random.default_rng(0))
    """
    parts = []
    for var in schema.variables:
        low, high = var.limit
        jitter = scale * (high - low) * (rng.random(var.shape) - 0.5)
        parts.append((var.value + jitter).reshape(-1))
    if not parts:
        return np.zeros(0)
    return np.concatenate(parts)


def hold_noise_samples(solution: Optional[Solution]) -> Optional[np.ndarray]:
    """
    Standard normal samples that reproduce a stochastic run.

    Returns ``increments / sqrt(dt)``, or None when the run has no
    increments or did not complete.
    """
    if solution is None or solution.increments is None or not can_continue(solution):
        return None
    dt = solution.step_size
    if dt is None or dt <= 0:
        return None
    return np.array(solution.increments) / np.sqrt(dt)
