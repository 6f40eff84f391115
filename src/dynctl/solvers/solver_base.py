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
Solver Base - Common Interface for Solver Primitives

Solver primitives are opaque callables supplied by the host. Each family
has a fixed calling convention (see ``dynctl.solvers.dispatch``):

- Ordinary:   solve(ode, time_span, y0, options, *parameter_values)
- Delay:      solve(dde, lags, history_or_y0, time_span, options, *parameter_values)
- Stochastic: solve(drift, diffusion, time_span, y0, options, *parameter_values)

This module defines the abstract base class for the reference primitives
shipped with the package, together with the output hook contract that
every primitive is expected to honor for progress reporting and
cooperative cancellation.

Output Hook Contract
--------------------
``options["output_fn"]`` (if present) is called as ``hook(t, y, flag)``:

- ``flag == "init"``: once, with the time span and the initial state
- ``flag == ""``: during the run, with the current time and state
- ``flag == "done"``: once after the final step, with ``t = y = None``

A truthy return value from ``"init"`` or ``""`` asks the primitive to stop
and return the samples computed so far, with ``Solution.halted`` set.
Cancellation is cooperative: a primitive that never calls the hook cannot
be stopped.

Warning Channel
---------------
``options["warning_fn"]`` (if present) is called as ``warning_fn(message,
category)`` instead of ``warnings.warn``, so a caller can collect the
warnings of one run without touching the process-wide warning state.
"""

import time
import warnings
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import numpy as np

from dynctl.exceptions import SolverWarning
from dynctl.types.core import OutputFunction, StateVector
from dynctl.types.model import ModelFamily
from dynctl.types.trajectories import TimeSpan

OUTPUT_INIT = "init"
OUTPUT_STEP = ""
OUTPUT_DONE = "done"


def get_output_fn(options: Optional[Dict[str, Any]]) -> Optional[OutputFunction]:
    """Output hook stored in an option bag, or None."""
    if not options:
        return None
    return options.get("output_fn")


def call_output(hook: Optional[OutputFunction], t: Any, y: Any, flag: str) -> bool:
    """
    Call the output hook if there is one.

    Returns
    -------
    bool
        True if the hook asked the primitive to stop
    """
    if hook is None:
        return False
    return bool(hook(t, y, flag))


def report_warning(options: Optional[Dict[str, Any]], message: str, category=SolverWarning) -> None:
    """Send a warning through ``options["warning_fn"]``, or issue it."""
    warning_fn = (options or {}).get("warning_fn")
    if warning_fn is not None:
        warning_fn(message, category)
    else:
        warnings.warn(message, category, stacklevel=3)


def default_step(time_span: TimeSpan, options: Optional[Dict[str, Any]]) -> float:
    """
    Fixed step size: ``options["initial_step"]`` or a hundredth of the span.

    Raises
    ------
    ValueError
        If the requested step is not a positive number
    """
    t0, t1 = time_span
    dt = (options or {}).get("initial_step")
    if dt is None:
        return (t1 - t0) / 100.0
    dt = float(dt)
    if not dt > 0:
        raise ValueError(f"initial_step must be a positive scalar, got {dt}")
    return dt


def fixed_time_grid(time_span: TimeSpan, dt: float) -> np.ndarray:
    """
    Sample instants ``t0, t0 + dt, ...`` up to and including ``t1``.

    The last instant is ``t1`` when the span is a whole number of steps
    (within round-off). A zero-length span gives the single instant t0.
    """
    t0, t1 = float(time_span[0]), float(time_span[1])
    if t1 == t0 or dt <= 0:
        return np.array([t0])
    count = int(np.floor((t1 - t0) / dt + 1e-9)) + 1
    return t0 + dt * np.arange(count)


def as_state(y: Any, n: Optional[int] = None) -> StateVector:
    """Flatten a value returned by a model function into a float vector."""
    out = np.asarray(y, dtype=float).reshape(-1)
    if n is not None and out.size != n:
        raise ValueError(f"Model function returned {out.size} values, expected {n}")
    return out


class SolverPrimitive(ABC):
    """
    Abstract base class for the reference solver primitives.

    Subclasses implement ``__call__`` with the calling convention of their
    family and build a ``Solution``. Instances are stateless apart from
    cumulative statistics, so one instance can be shared between models.

    Attributes
    ----------
    family : ModelFamily
        Calling convention implemented by the primitive
    """

    family: ModelFamily

    def __init__(self):
        self._stats = {
            "total_runs": 0,
            "total_steps": 0,
            "total_fev": 0,
            "total_time": 0.0,
        }

    @abstractmethod
    def __call__(self, *args, **kwargs):
        """Run the primitive (signature depends on the family)."""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Primitive name used in solver menus and on solutions.

        Examples
        --------
        >>> ode_euler.name
        'odeEul'
        """
        pass

    def _record(self, steps: int, fevals: int, started: float) -> None:
        self._stats["total_runs"] += 1
        self._stats["total_steps"] += steps
        self._stats["total_fev"] += fevals
        self._stats["total_time"] += time.time() - started

    def get_stats(self) -> Dict[str, Any]:
        """
        Cumulative statistics over every run of this primitive.

        Returns
        -------
        dict
            total_runs, total_steps, total_fev, total_time, avg_fev_per_step
        """
        avg_fev = self._stats["total_fev"] / max(1, self._stats["total_steps"])
        return {**self._stats, "avg_fev_per_step": avg_fev}

    def reset_stats(self):
        self._stats["total_runs"] = 0
        self._stats["total_steps"] = 0
        self._stats["total_fev"] = 0
        self._stats["total_time"] = 0.0

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}', family={self.family.value})"
