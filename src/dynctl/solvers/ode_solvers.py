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
Ordinary Solvers - Reference Primitives for ODE Models

Calling convention::

    sol = solver(ode, time_span, y0, options, *parameter_values)

where ``ode(t, y, *parameter_values)`` returns dy/dt with the shape of y.

Provided primitives:
- EulerOdeSolver ('odeEul'): explicit Euler, fixed step
- ScipyOdeSolver ('ode45', 'ode23', 'ode113', 'ode15s'): adaptive
  solvers from scipy.integrate.solve_ivp

Options
-------
- initial_step : float
    Fixed step (Euler) or first step guess (scipy)
- rtol, atol : float
    Tolerances (scipy only, default 1e-6 / 1e-8)
- max_step : float
    Maximum step size (scipy only, default inf)
- output_fn : OutputFunction
    Progress/cancellation hook (see solver_base)
"""

import time
from typing import Any, Callable, Dict, Optional

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
from dynctl.types.core import StateVector
from dynctl.types.model import ModelFamily
from dynctl.types.trajectories import Solution, SolverStats, TimeSpan


class EulerOdeSolver(SolverPrimitive):
    """
    Explicit Euler method with a fixed step.

    y[k+1] = y[k] + f(t[k], y[k]) * dt

    The run stops with a SolverWarning as soon as the state is no longer
    finite; the non-finite sample is kept so callers can detect overflow.

    Examples
    --------
    >>> sol = ode_euler(lambda t, y, a: a * y, (0.0, 1.0), np.ones(1),
    ...                 {"initial_step": 0.01}, 2.0)
    >>> sol.times.shape
    (101,)
    """

    family = ModelFamily.ORDINARY

    def __call__(
        self,
        ode: Callable,
        time_span: TimeSpan,
        y0: StateVector,
        options: Optional[Dict[str, Any]] = None,
        *params,
    ) -> Solution:
        # overflow is reported through SolverWarning, not numpy warnings
        with np.errstate(over="ignore", invalid="ignore"):
            return self._integrate(ode, time_span, y0, options or {}, params)

    def _integrate(self, ode, time_span, y0, options, params) -> Solution:
        started = time.time()
        hook = get_output_fn(options)

        y0 = as_state(y0)
        n = y0.size
        dt = default_step(time_span, options)
        times = fixed_time_grid(time_span, dt)
        tcount = times.size

        y = np.full((n, tcount), np.nan)
        yp = np.full((n, tcount), np.nan)
        y[:, 0] = y0

        if call_output(hook, time_span, y0, OUTPUT_INIT):
            return self._partial(times, y, yp, 1, 0, started)

        for k in range(tcount - 1):
            if call_output(hook, times[k], y[:, k], OUTPUT_STEP):
                return self._partial(times, y, yp, k + 1, k, started)

            yp[:, k] = as_state(ode(times[k], y[:, k], *params), n)
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

        yp[:, -1] = as_state(ode(times[-1], y[:, -1], *params), n)
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
        return "odeEul"


class ScipyOdeSolver(SolverPrimitive):
    """
    Adaptive solver using scipy.integrate.solve_ivp.

    The output hook is polled through a terminal event, so a stop request
    ends the run after the current accepted step.

    If the run fails after the model returned non-finite values, the
    offending sample is appended so that the final state shows the
    divergence.

    Available Methods
    -----------------
    - 'RK45': Dormand-Prince 5(4), general purpose
    - 'RK23': Bogacki-Shampine 3(2), low accuracy
    - 'DOP853': Dormand-Prince 8(5,3), high accuracy
    - 'Radau': implicit Runge-Kutta, stiff
    - 'BDF': backward differentiation, very stiff
    - 'LSODA': automatic stiffness switching

    Examples
    --------
    >>> solver = ScipyOdeSolver("RK45", name="ode45")
    >>> sol = solver(lambda t, y, a: a * y, (0.0, 5.0), np.ones(1), {}, 2.0)
    >>> sol.final_state   # ~ e**10
    """

    family = ModelFamily.ORDINARY

    VALID_METHODS = ["RK45", "RK23", "DOP853", "Radau", "BDF", "LSODA"]

    def __init__(self, method: str = "RK45", name: Optional[str] = None):
        super().__init__()

        if method not in self.VALID_METHODS:
            raise ValueError(f"Invalid method '{method}'. Choose from: {self.VALID_METHODS}")

        self.method = method
        self._name = name or f"scipy.{method}"

        try:
            import scipy.integrate

            self._solve_ivp = scipy.integrate.solve_ivp
        except ImportError:
            raise ImportError(
                "scipy is required for ScipyOdeSolver. " "Install with: pip install scipy"
            )

    def __call__(
        self,
        ode: Callable,
        time_span: TimeSpan,
        y0: StateVector,
        options: Optional[Dict[str, Any]] = None,
        *params,
    ) -> Solution:
        options = options or {}
        # divergence is reported through SolverWarning, not numpy warnings
        with np.errstate(over="ignore", invalid="ignore"):
            return self._integrate(ode, time_span, y0, options, params)

    def _integrate(self, ode, time_span, y0, options, params) -> Solution:
        started = time.time()
        hook = get_output_fn(options)

        y0 = as_state(y0)
        n = y0.size
        t0, t1 = float(time_span[0]), float(time_span[1])

        if call_output(hook, time_span, y0, OUTPUT_INIT) or t0 == t1:
            return Solution(
                times=np.array([t0]),
                states=y0.reshape(n, 1),
                solver=self.name,
                halted=t0 != t1,
            )

        diverged = [None]

        def ode_func(t: float, y: np.ndarray) -> np.ndarray:
            """Model rhs in scipy's signature: f(t, y) -> dy/dt"""
            dy = as_state(ode(t, y, *params), n)
            if not (np.all(np.isfinite(y)) and np.all(np.isfinite(dy))):
                # non-finite sample kept if the run fails
                diverged[0] = (t, np.where(np.isfinite(dy), y, dy))
            return dy

        events = None
        if hook is not None:
            stopped = [False]
            calls = [0]

            def poll(t: float, y: np.ndarray) -> float:
                """Terminal event: changes sign once the hook asks to stop."""
                calls[0] += 1
                # the first call only sets the reference sign at t0
                if calls[0] > 1 and not stopped[0] and call_output(hook, t, y, OUTPUT_STEP):
                    stopped[0] = True
                return -1.0 if stopped[0] else 1.0

            poll.terminal = True
            events = [poll]

        sol = self._solve_ivp(
            fun=ode_func,
            t_span=(t0, t1),
            y0=y0,
            method=self.method,
            events=events,
            rtol=options.get("rtol", 1e-6),
            atol=options.get("atol", 1e-8),
            max_step=options.get("max_step", np.inf),
            first_step=options.get("initial_step", options.get("first_step")),
        )

        times, states = sol.t, sol.y
        if sol.status == -1:
            report_warning(options, f"{self.name}: {sol.message}")
            if diverged[0] is not None:
                t_bad, y_bad = diverged[0]
                times = np.append(times, max(float(t_bad), float(times[-1])))
                states = np.column_stack([states, y_bad])

        halted = sol.status == 1
        if not halted:
            call_output(hook, None, None, OUTPUT_DONE)

        steps = max(0, sol.t.size - 1)
        self._record(steps, sol.nfev, started)
        return Solution(
            times=times,
            states=states,
            stats=SolverStats(
                steps_taken=steps,
                steps_failed=0 if sol.status != -1 else 1,
                evaluation_count=int(sol.nfev),
            ),
            solver=self.name,
            halted=halted,
        )

    @property
    def name(self) -> str:
        return self._name

    def __repr__(self) -> str:
        return f"ScipyOdeSolver(method='{self.method}', name='{self.name}')"


ode_euler = EulerOdeSolver()
ode45 = ScipyOdeSolver("RK45", name="ode45")
ode23 = ScipyOdeSolver("RK23", name="ode23")
ode113 = ScipyOdeSolver("LSODA", name="ode113")
ode15s = ScipyOdeSolver("BDF", name="ode15s")

DEFAULT_ODE_SOLVERS = (ode45, ode23, ode113, ode15s, ode_euler)
"""Default solver list for ordinary models; the first is the default."""
