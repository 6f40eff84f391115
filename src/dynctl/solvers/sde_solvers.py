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
Stochastic Solvers - Reference Primitives for SDE Models

Calling convention::

    sol = solver(drift, diffusion, time_span, y0, options, *parameter_values)

for the SDE

    dy = F(t, y) dt + G(t, y) dW

where ``drift`` returns F with shape (n,) and ``diffusion`` returns G with
shape (n, m), m = ``options["noise_sources"]``.

Provided primitives:
- ItoSdeSolver ('sdeEM'): Euler-Maruyama (Ito)
- StratonovichSdeSolver ('sdeSH'): stochastic Heun (Stratonovich)

Options
-------
- noise_sources : int
    Number of independent Wiener processes m (required)
- initial_step : float
    Fixed step (default: a hundredth of the time span)
- noise_samples : array (m, T)
    Standard normal samples to use instead of fresh draws. When given, the
    number of columns fixes the number of samples T and the step is
    ``(t1 - t0) / (T - 1)``; this is how held noise reproduces a run.
- rng : numpy.random.Generator
    Generator for fresh draws (default: numpy.random.default_rng())

The Wiener increments ``dW = sqrt(dt) * samples`` are returned as
``Solution.increments``.
"""

import time
from abc import abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

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


class FixedStepSdeSolver(SolverPrimitive):
    """
    Base class for fixed-step SDE primitives.

    Handles the noise bookkeeping (fresh or held samples), the output hook
    and overflow detection. Subclasses implement ``_increment``, the state
    change over one step.
    """

    family = ModelFamily.STOCHASTIC

    # rhs evaluations (drift + diffusion) per step
    evaluations_per_step = 2

    def __call__(
        self,
        drift: Callable,
        diffusion: Callable,
        time_span: TimeSpan,
        y0: StateVector,
        options: Optional[Dict[str, Any]] = None,
        *params,
    ) -> Solution:
        with np.errstate(over="ignore", invalid="ignore"):
            return self._integrate(drift, diffusion, time_span, y0, options or {}, params)

    def _noise(self, time_span: TimeSpan, options: Dict[str, Any]) -> Tuple[np.ndarray, float, np.ndarray]:
        """Sample instants, step size and standard normal samples (m, T)."""
        if options.get("noise_sources") is None:
            raise ValueError("options['noise_sources'] is undefined")
        m = int(options["noise_sources"])
        t0, t1 = float(time_span[0]), float(time_span[1])

        samples = options.get("noise_samples")
        if samples is not None and np.size(samples) > 0:
            samples = np.asarray(samples, dtype=float)
            if samples.ndim == 1:
                samples = samples.reshape(1, -1)
            if samples.shape[0] != m:
                raise ValueError(
                    f"The number of rows in noise_samples ({samples.shape[0]}) must "
                    f"equal noise_sources ({m})"
                )
            tcount = samples.shape[1]
            if tcount < 2 or t1 == t0:
                return np.array([t0]), 0.0, samples[:, :1]
            dt = (t1 - t0) / (tcount - 1)
            return np.linspace(t0, t1, tcount), dt, samples

        dt = default_step(time_span, options)
        times = fixed_time_grid(time_span, dt)
        rng = options.get("rng") or np.random.default_rng()
        return times, dt, rng.standard_normal((m, times.size))

    def _integrate(self, drift, diffusion, time_span, y0, options, params) -> Solution:
        started = time.time()
        hook = get_output_fn(options)

        y0 = as_state(y0)
        n = y0.size
        times, dt, samples = self._noise(time_span, options)
        tcount = times.size
        dW = np.sqrt(dt) * samples

        y = np.full((n, tcount), np.nan)
        y[:, 0] = y0

        def build(count: int, failed: int = 0, halted: bool = False) -> Solution:
            fevals = self.evaluations_per_step * max(0, count - 1)
            self._record(count - 1, fevals, started)
            return Solution(
                times=times[:count],
                states=y[:, :count],
                increments=dW[:, :count],
                stats=SolverStats(
                    steps_taken=count - 1, steps_failed=failed, evaluation_count=fevals
                ),
                solver=self.name,
                halted=halted,
            )

        if call_output(hook, time_span, y0, OUTPUT_INIT):
            return build(1, halted=True)

        for k in range(tcount - 1):
            if call_output(hook, times[k], y[:, k], OUTPUT_STEP):
                return build(k + 1, halted=True)

            y[:, k + 1] = y[:, k] + self._increment(
                drift, diffusion, times[k], y[:, k], dt, dW[:, k], n, params
            )

            if not np.all(np.isfinite(y[:, k + 1])):
                report_warning(
                    options,
                    f"Failure at t={times[k]:g}. The numerical values are no longer finite.",
                )
                return build(k + 2, failed=1)

        call_output(hook, times[-1], y[:, -1], OUTPUT_STEP)
        call_output(hook, None, None, OUTPUT_DONE)
        return build(tcount)

    @abstractmethod
    def _increment(self, drift, diffusion, t, y, dt, dW, n, params) -> np.ndarray:
        """State change over one step."""
        pass

    @staticmethod
    def _diffusion(diffusion, t, y, n, m, params) -> np.ndarray:
        G = np.asarray(diffusion(t, y, *params), dtype=float)
        return G.reshape(n, m)


class ItoSdeSolver(FixedStepSdeSolver):
    """
    Euler-Maruyama method (Ito interpretation).

    dy[k] = F(t[k], y[k]) dt + G(t[k], y[k]) dW[k]

    Examples
    --------
    >>> sol = sde_ito(lambda t, y: -y, lambda t, y: np.eye(1), (0.0, 1.0),
    ...               np.ones(1), {"noise_sources": 1})
    >>> sol.increments.shape
    (1, 101)
    """

    def _increment(self, drift, diffusion, t, y, dt, dW, n, params) -> np.ndarray:
        F = as_state(drift(t, y, *params), n)
        G = self._diffusion(diffusion, t, y, n, dW.size, params)
        return F * dt + G @ dW

    @property
    def name(self) -> str:
        return "sdeEM"


class StratonovichSdeSolver(FixedStepSdeSolver):
    """
    Stochastic Heun method (Stratonovich interpretation).

    Predictor:  ybar = y + F(t, y) dt + G(t, y) dW
    Corrector:  dy = (F(t, y) + F(t+dt, ybar)) dt / 2 + (G(t, y) + G(t+dt, ybar)) dW / 2
    """

    evaluations_per_step = 4

    def _increment(self, drift, diffusion, t, y, dt, dW, n, params) -> np.ndarray:
        m = dW.size
        F = as_state(drift(t, y, *params), n)
        G = self._diffusion(diffusion, t, y, n, m, params)
        ybar = y + F * dt + G @ dW
        Fbar = as_state(drift(t + dt, ybar, *params), n)
        Gbar = self._diffusion(diffusion, t + dt, ybar, n, m, params)
        return 0.5 * (F + Fbar) * dt + 0.5 * (G + Gbar) @ dW

    @property
    def name(self) -> str:
        return "sdeSH"


sde_ito = ItoSdeSolver()
sde_stratonovich = StratonovichSdeSolver()

DEFAULT_SDE_SOLVERS = (sde_ito, sde_stratonovich)
"""Default solver list for stochastic models; the first is the default."""
