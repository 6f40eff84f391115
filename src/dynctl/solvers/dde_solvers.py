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
Delay Solvers - Reference Primitive for DDE Models

Calling convention::

    sol = solver(dde, lags, history, time_span, options, *parameter_values)

where ``dde(t, y, Z, *parameter_values)`` returns dy/dt and ``Z[:, j]`` is
the delayed state ``y(t - lags[j])``. ``history`` is either a constant
initial state (array) or a function ``h(t)`` giving the state for
``t <= t0``.

Provided primitives:
- EulerDdeSolver ('ddeEul'): explicit Euler with the method of steps
"""

import time
from typing import Any, Callable, Dict, Optional, Union

import numpy as np

from dynctl.solvers.solver_base import (
    OUTPUT_DONE,
    OUTPUT_INIT,
    OUTPUT_STEP,
    SolverPrimitive,
    as_state,
    call_output,
    default_step,
    fixed_time_grid,
    get_output_fn,
    report_warning,
)
from dynctl.types.core import ArrayLike, HistoryFunction
from dynctl.types.model import ModelFamily
from dynctl.types.trajectories import Solution, SolverStats, TimeSpan


class EulerDdeSolver(SolverPrimitive):
    """
    Explicit Euler method for delay differential equations.

    Delayed states inside the computed range are linearly interpolated from
    the samples computed so far; delayed states before t0 come from the
    history. Lags shorter than one step use the current sample.

    Examples
    --------
    >>> def dde(t, y, Z, a):
    ...     return -a * Z[:, 0]
    >>> sol = dde_euler(dde, np.array([1.0]), np.ones(1), (0.0, 10.0),
    ...                 {"initial_step": 0.01}, 1.0)
    """

    family = ModelFamily.DELAY

    def __call__(
        self,
        dde: Callable,
        lags: ArrayLike,
        history: Union[ArrayLike, HistoryFunction],
        time_span: TimeSpan,
        options: Optional[Dict[str, Any]] = None,
        *params,
    ) -> Solution:
        with np.errstate(over="ignore", invalid="ignore"):
            return self._integrate(dde, lags, history, time_span, options or {}, params)

    def _integrate(self, dde, lags, history, time_span, options, params) -> Solution:
        started = time.time()
        hook = get_output_fn(options)

        lags = np.asarray(lags, dtype=float).reshape(-1)
        if np.any(lags < 0):
            raise ValueError(f"Lags must be non-negative, got {lags}")

        if callable(history):
            history_fn = history
            y0 = as_state(history(float(time_span[0])))
        else:
            y0 = as_state(history)
            history_fn = None
        n = y0.size

        dt = default_step(time_span, options)
        times = fixed_time_grid(time_span, dt)
        tcount = times.size
        t0 = times[0]

        y = np.full((n, tcount), np.nan)
        yp = np.full((n, tcount), np.nan)
        y[:, 0] = y0

        def delayed(k: int) -> np.ndarray:
            """Z matrix at sample k."""
            Z = np.empty((n, lags.size))
            for j, lag in enumerate(lags):
                td = times[k] - lag
                if td <= t0:
                    Z[:, j] = y0 if history_fn is None else as_state(history_fn(td), n)
                elif k == 0:
                    Z[:, j] = y[:, 0]
                else:
                    Z[:, j] = [np.interp(td, times[: k + 1], y[i, : k + 1]) for i in range(n)]
            return Z

        if call_output(hook, time_span, y0, OUTPUT_INIT):
            return self._partial(times, y, yp, 1, 0, started)

        for k in range(tcount - 1):
            if call_output(hook, times[k], y[:, k], OUTPUT_STEP):
                return self._partial(times, y, yp, k + 1, k, started)

            yp[:, k] = as_state(dde(times[k], y[:, k], delayed(k), *params), n)
            y[:, k + 1] = y[:, k] + yp[:, k] * dt

            if not np.all(np.isfinite(y[:, k + 1])):
                report_warning(
                    options,
                    f"Failure at t={times[k]:g}. The numerical values are no longer finite.",
                )
                self._record(k + 1, k + 1, started)
                return Solution(
                    times=times[: k + 2],
                    states=y[:, : k + 2],
                    derivatives=yp[:, : k + 2],
                    stats=SolverStats(steps_taken=k + 1, steps_failed=1, evaluation_count=k + 1),
                    solver=self.name,
                )

        yp[:, -1] = as_state(dde(times[-1], y[:, -1], delayed(tcount - 1), *params), n)
        call_output(hook, times[-1], y[:, -1], OUTPUT_STEP)
        call_output(hook, None, None, OUTPUT_DONE)

        self._record(tcount - 1, tcount, started)
        return Solution(
            times=times,
            states=y,
            derivatives=yp,
            stats=SolverStats(steps_taken=tcount - 1, steps_failed=0, evaluation_count=tcount),
            solver=self.name,
        )

    def _partial(self, times, y, yp, count, fevals, started) -> Solution:
        self._record(count - 1, fevals, started)
        return Solution(
            times=times[:count],
            states=y[:, :count],
            derivatives=yp[:, :count],
            stats=SolverStats(steps_taken=count - 1, steps_failed=0, evaluation_count=fevals),
            solver=self.name,
            halted=True,
        )

    @property
    def name(self) -> str:
        return "ddeEul"


dde_euler = EulerDdeSolver()

DEFAULT_DDE_SOLVERS = (dde_euler,)
"""Default solver list for delay models."""
