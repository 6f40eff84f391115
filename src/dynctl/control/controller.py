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
Simulation Controller - Recompute Orchestrator

Owns the live model schema, the current solution and the run-control
flags, and turns bursts of model changes into single solves.

State Machine
-------------
    IDLE --tick (pending)--> SOLVING --> IDLE
    any  --set_halted(True) or overflow--> HALTED
    HALTED --set_halted(False)--> IDLE (pending)

Mutations go through the named ``set_*`` operations. Each one validates
its input, changes the live schema and marks a recompute as pending; none
of them solves. ``tick()`` performs at most one solve per call, using the
model state at the time of the tick, so any number of changes between two
ticks cost a single solve.

Cancellation is cooperative: the output hook handed to the solver
primitive returns "stop" once the controller is halted (or the optional
solve timeout has elapsed). A primitive that never calls the hook runs to
completion.

Warnings of a run travel through ``options["warning_fn"]``: they are
recorded on the Solution and then re-issued from the ticking thread. The
process-wide warning filters are never swapped, so warnings issued by
other threads stay out of the run. A primitive that calls
``warnings.warn`` directly still warns, but its messages are not recorded.

Examples
--------
>>> controller = SimulationController(raw_model)
>>> controller.tick()                      # first solve
True
>>> controller.set_parameter_value("a", 3.0)
>>> controller.set_parameter_value("a", 4.0)
>>> controller.tick()                      # one solve with a = 4
True
>>> controller.tick()                      # nothing pending
False
"""

import copy
import threading
import time
import warnings
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from dynctl.control.continuation import (
    PERTURBATION_SCALE,
    anchor_history,
    can_continue,
    continue_initial_values,
    history_from_solution,
    hold_noise_samples,
    perturb_initial_values,
)
from dynctl.exceptions import OverflowCondition, SchemaError, SolverWarning
from dynctl.model.validator import normalize
from dynctl.solvers.dispatch import SolverDispatch, auxiliary_output
from dynctl.solvers.solver_base import OUTPUT_DONE, OUTPUT_INIT
from dynctl.types.model import ModelFamily, ModelSchema, ParameterDef, SolverEntry
from dynctl.types.trajectories import RunStatistics, Solution

# ============================================================================
# State and Configuration
# ============================================================================


class RunState(Enum):
    """Controller state."""

    IDLE = "idle"
    SOLVING = "solving"
    HALTED = "halted"


@dataclass
class ControllerConfig:
    """
    Controller configuration.

    Attributes
    ----------
    tick_interval : float
        Period of the recompute scheduler (seconds)
    perturbation_scale : float
        Jitter amplitude as a fraction of each variable's limit width
    seed : Optional[int]
        Seed of the random generator used for jitter and noise draws
    solve_timeout : Optional[float]
        Wall-clock budget of one solve (seconds); enforced through the
        output hook, so only primitives that call it can be stopped
    """

    tick_interval: float = 0.05
    perturbation_scale: float = PERTURBATION_SCALE
    seed: Optional[int] = None
    solve_timeout: Optional[float] = None


@dataclass
class RunControlState:
    """
    Run-control flags owned by the controller.

    Attributes
    ----------
    halted : bool
        No solve is started while set
    continuation : bool
        Each run starts from the previous final state (or trajectory)
    perturbation : bool
        Jitter is added to the initial state of each run
    noise_hold : bool
        Stochastic runs reuse the same noise samples
    held_noise : Optional[np.ndarray]
        Held standard normal samples, shape (m, T)
    """

    halted: bool = False
    continuation: bool = False
    perturbation: bool = False
    noise_hold: bool = False
    held_noise: Optional[np.ndarray] = None


def _zero_statistics() -> RunStatistics:
    return RunStatistics(
        steps_taken=0,
        steps_failed=0,
        evaluation_count=0,
        cpu_time=0.0,
        progress=0.0,
        warning="none",
        solve_count=0,
    )


def _copy_schema(schema: ModelSchema) -> ModelSchema:
    """Deep copy of the values of a schema; functions and solvers are shared."""
    memo: Dict[int, Any] = {}
    shared = list(schema.rhs) + list(schema.solvers)
    shared += [schema.auxiliary, schema.self_ref]
    for obj in shared:
        if obj is not None:
            memo[id(obj)] = obj
    return copy.deepcopy(schema, memo)


# ============================================================================
# Controller
# ============================================================================


class SimulationController:
    """
    Recompute orchestrator for one model.

    Parameters
    ----------
    model : Mapping or ModelSchema
        Raw model definition, normalized on construction
    config : Optional[ControllerConfig]
        Controller configuration

    Raises
    ------
    SchemaError
        If the model is invalid (no controller is created)

    Notes
    -----
    A new controller has a recompute pending, so the first ``tick()``
    solves the model as defined.
    """

    def __init__(self, model: Any, config: Optional[ControllerConfig] = None):
        self.config = config or ControllerConfig()
        self._schema = normalize(model)
        self._solver: SolverEntry = self._schema.solvers[0]
        self._solution = Solution.empty()
        self._statistics = _zero_statistics()
        self._eval_indices = np.zeros(0, dtype=bool)
        self._control = RunControlState()
        self._rng = np.random.default_rng(self.config.seed)
        # samples declared by the model, restored when held noise is released
        self._declared_noise = self._schema.solver_options.get("noise_samples")

        self._lock = threading.RLock()
        self._pending = True
        self._solving = False
        self._solve_count = 0
        self._timed_out = False

        self._observers: Dict[int, Callable[["SimulationController"], None]] = {}
        self._next_handle = 0

    # ========================================================================
    # Accessors
    # ========================================================================

    @property
    def schema(self) -> ModelSchema:
        """Live schema. Change it only through the ``set_*`` operations."""
        return self._schema

    @property
    def solution(self) -> Solution:
        return self._solution

    @property
    def statistics(self) -> RunStatistics:
        return RunStatistics(**self._statistics)

    @property
    def state(self) -> RunState:
        if self._control.halted:
            return RunState.HALTED
        if self._solving:
            return RunState.SOLVING
        return RunState.IDLE

    @property
    def pending(self) -> bool:
        return self._pending

    @property
    def control(self) -> RunControlState:
        """Copy of the run-control flags."""
        with self._lock:
            return replace(self._control)

    @property
    def solver(self) -> SolverEntry:
        return self._solver

    @property
    def eval_indices(self) -> np.ndarray:
        """
        Boolean mask of the samples at or after ``eval_time`` whose state
        is entirely finite.
        """
        return self._eval_indices

    def parameter_values(self) -> Dict[str, np.ndarray]:
        with self._lock:
            return {p.name: p.value.copy() for p in self._schema.parameters}

    def variable_values(self) -> Dict[str, np.ndarray]:
        with self._lock:
            return {v.name: v.value.copy() for v in self._schema.variables}

    def lag_values(self) -> Dict[str, np.ndarray]:
        with self._lock:
            return {lag.name: lag.value.copy() for lag in self._schema.lags}

    def snapshot(self) -> Tuple[ModelSchema, Solution]:
        """
        Copy of the schema and the current solution, for export.

        The schema copy shares functions and solvers with the live schema
        but none of its values. Solutions are immutable and returned as is.
        """
        with self._lock:
            return _copy_schema(self._schema), self._solution

    # ========================================================================
    # Observers
    # ========================================================================

    def subscribe(self, callback: Callable[["SimulationController"], None]) -> int:
        """
        Register a callback run after every completed solve.

        Callbacks are called with the controller, in registration order.

        Returns
        -------
        int
            Handle for ``unsubscribe``
        """
        with self._lock:
            handle = self._next_handle
            self._next_handle += 1
            self._observers[handle] = callback
            return handle

    def unsubscribe(self, handle: int) -> None:
        with self._lock:
            self._observers.pop(handle, None)

    def _notify_observers(self):
        with self._lock:
            callbacks = list(self._observers.values())
        for callback in callbacks:
            callback(self)

    # ========================================================================
    # Mutation
    # ========================================================================

    def notify_model_changed(self) -> None:
        """Mark a recompute as pending."""
        self._pending = True

    def set_parameter_value(self, name: str, value: Any) -> None:
        self._set_value(self._schema.parameters, "parameter", name, value)

    def set_variable_value(self, name: str, value: Any) -> None:
        self._set_value(self._schema.variables, "variable", name, value)

    def set_lag_value(self, name: str, value: Any) -> None:
        self._set_value(self._schema.lags, "lag", name, value, non_negative=True)

    def set_parameter_limit(self, name: str, low: float, high: float) -> None:
        self._set_limit(self._schema.parameters, "parameter", name, low, high)

    def set_variable_limit(self, name: str, low: float, high: float) -> None:
        self._set_limit(self._schema.variables, "variable", name, low, high)

    def set_lag_limit(self, name: str, low: float, high: float) -> None:
        self._set_limit(self._schema.lags, "lag", name, low, high)

    def set_time_span(self, t0: float, t1: float) -> None:
        """Change the time span; eval_time is clamped into it."""
        t0, t1 = _finite(t0, "t0"), _finite(t1, "t1")
        if t0 > t1:
            raise SchemaError(f"time_span must satisfy t0 <= t1, got ({t0}, {t1})")
        with self._lock:
            self._schema.time_span = (t0, t1)
            self._schema.eval_time = min(max(self._schema.eval_time, t0), t1)
            self._pending = True

    def set_eval_time(self, eval_time: float) -> None:
        """Change the start of the evaluation window (clamped into the span)."""
        eval_time = _finite(eval_time, "eval_time")
        with self._lock:
            t0, t1 = self._schema.time_span
            self._schema.eval_time = min(max(eval_time, t0), t1)
            self._pending = True

    def select_solver(self, solver: Any) -> None:
        """
        Select one of the model's declared solvers (entry, name or function).

        Raises
        ------
        SchemaError
            If the model does not declare the solver
        """
        with self._lock:
            entry = SolverDispatch.resolve(solver, self._schema)
            if entry is None:
                raise SchemaError(f"Unknown solver {solver!r}")
            self._solver = entry
            self._pending = True

    def set_continuation(self, enabled: bool) -> None:
        with self._lock:
            self._control.continuation = bool(enabled)
            self._pending = True

    def set_perturbation(self, enabled: bool) -> None:
        with self._lock:
            self._control.perturbation = bool(enabled)
            self._pending = True

    def set_noise_hold(self, enabled: bool) -> None:
        """
        Hold (or release) the noise samples of stochastic runs.

        Enabling captures the samples of the current solution right away,
        if there is one; disabling discards the held samples.
        """
        with self._lock:
            self._control.noise_hold = bool(enabled)
            if enabled:
                if self._control.held_noise is None:
                    self._hold_noise(self._solution)
            else:
                held, self._control.held_noise = self._control.held_noise, None
                options = self._schema.solver_options
                if held is not None and options.get("noise_samples") is held:
                    if self._declared_noise is None:
                        del options["noise_samples"]
                    else:
                        options["noise_samples"] = self._declared_noise
            self._pending = True

    def set_halted(self, halted: bool) -> None:
        """
        Halt or resume.

        Halting stops a running solve at its next hook poll and blocks
        further solves. Resuming marks a recompute as pending.
        """
        self._control.halted = bool(halted)
        if not halted:
            self._pending = True

    def _find(self, defs: List[ParameterDef], kind: str, name: str) -> ParameterDef:
        for d in defs:
            if d.name == name:
                return d
        raise SchemaError(f"Unknown {kind} '{name}'")

    def _set_value(self, defs, kind: str, name: str, value: Any, non_negative: bool = False) -> None:
        with self._lock:
            target = self._find(defs, kind, name)
            arr = np.array(value)
            if arr.dtype.kind not in "iuf":
                raise SchemaError(f"Value of {kind} '{name}' must be numeric")
            arr = arr.astype(float)
            if arr.shape != target.shape and not (arr.size == target.size == 1):
                raise SchemaError(
                    f"Value of {kind} '{name}' must have shape {target.shape}, got {arr.shape}"
                )
            if not np.all(np.isfinite(arr)):
                raise SchemaError(f"Value of {kind} '{name}' must be finite")
            if non_negative and np.any(arr < 0):
                raise SchemaError(f"Value of {kind} '{name}' must be non-negative")
            target.value = arr.reshape(target.shape)
            self._pending = True

    def _set_limit(self, defs, kind: str, name: str, low: float, high: float) -> None:
        low, high = float(low), float(high)
        if not low < high:
            raise SchemaError(f"Limit of {kind} '{name}' must satisfy low < high, got [{low}, {high}]")
        with self._lock:
            target = self._find(defs, kind, name)
            target.limit = (low, high)
            self._pending = True

    # ========================================================================
    # Solving
    # ========================================================================

    def tick(self) -> bool:
        """
        Solve once if a recompute is pending and the controller is not halted.

        Returns
        -------
        bool
            True if a solve ran
        """
        with self._lock:
            if not self._pending or self._control.halted or self._solving:
                return False
            self._pending = False
            self._solving = True

        records: List[Tuple[str, type]] = []
        try:
            with self._lock:
                run = self._prepare_run(records)
            solution, cpu_time = self._run(*run)
        finally:
            with self._lock:
                self._solving = False

        with self._lock:
            self._finish_run(run[0], solution, cpu_time, records)
        self._notify_observers()
        return True

    def _prepare_run(self, records: List[Tuple[str, type]]):
        """Apply continuation and noise hold, then build the working copy."""
        schema = self._schema
        control = self._control
        previous = self._solution

        def warn(message: str, category: type) -> None:
            records.append((str(message), category))

        history = None
        if control.continuation:
            continue_initial_values(schema, previous, warn)
            if schema.family is ModelFamily.DELAY and can_continue(previous):
                history = history_from_solution(
                    previous, schema.time_span[0], schema.initial_state(), warn
                )

        if schema.family is ModelFamily.STOCHASTIC and control.noise_hold:
            if control.held_noise is not None:
                schema.solver_options["noise_samples"] = control.held_noise

        work = _copy_schema(schema)
        y0 = work.initial_state()
        if control.perturbation:
            y0 = perturb_initial_values(work, self._rng, self.config.perturbation_scale)
            if history is not None:
                history = anchor_history(history, work.time_span[0], y0)

        options: Dict[str, Any] = {"output_fn": self._make_output_fn(), "warning_fn": warn}
        if work.family is ModelFamily.STOCHASTIC and "rng" not in work.solver_options:
            options["rng"] = self._rng

        return work, self._solver, history, y0, options

    def _make_output_fn(self):
        started = time.monotonic()
        timeout = self.config.solve_timeout
        self._timed_out = False

        def output_fn(t, y, flag) -> bool:
            if flag == OUTPUT_DONE:
                return False
            if self._control.halted:
                return True
            if flag != OUTPUT_INIT and timeout is not None and time.monotonic() - started > timeout:
                self._timed_out = True
                return True
            return False

        return output_fn

    def _run(self, work, entry, history, y0, options) -> Tuple[Solution, float]:
        started = time.process_time()
        solution = SolverDispatch.invoke(
            work,
            work.time_span,
            entry,
            work.family,
            history=history,
            initial_values=y0,
            options=options,
        )
        aux = auxiliary_output(work, solution)
        if aux is not None:
            solution = solution.with_diagnostics(auxiliary=aux)
        return solution, time.process_time() - started

    def _finish_run(
        self,
        work: ModelSchema,
        solution: Solution,
        cpu_time: float,
        records: List[Tuple[str, type]],
    ) -> None:
        """Record diagnostics, apply overflow and noise hold, swap the solution."""
        messages = list(solution.warnings) + [message for message, _ in records]
        solver_warned = any(issubclass(category, SolverWarning) for _, category in records)

        for message, category in records:
            warnings.warn(message, category, stacklevel=3)

        if self._timed_out:
            messages.append(f"Solve stopped after the {self.config.solve_timeout:g} s timeout")

        overflow = not solution.is_empty and not solution.final_state_is_finite()
        if overflow:
            self._control.halted = True
            message = "The final state contains non-finite values, the controller is halted"
            messages.append(message)
            warnings.warn(message, OverflowCondition, stacklevel=3)

        if solver_warned and self._control.continuation:
            self._control.continuation = False

        solution = solution.with_diagnostics(warnings=tuple(messages), overflow=overflow)

        if self._schema.family is ModelFamily.STOCHASTIC and self._control.noise_hold:
            if self._control.held_noise is None:
                self._hold_noise(solution)

        # the span and eval time the run was computed on
        t0, t1 = work.time_span
        span = t1 - t0
        progress = 1.0
        if span > 0 and not solution.is_empty:
            progress = float(min(max((solution.times[-1] - t0) / span, 0.0), 1.0))

        self._solve_count += 1
        self._statistics = RunStatistics(
            steps_taken=solution.stats["steps_taken"],
            steps_failed=solution.stats["steps_failed"],
            evaluation_count=solution.stats["evaluation_count"],
            cpu_time=cpu_time,
            progress=progress,
            warning=messages[-1] if messages else "none",
            solve_count=self._solve_count,
        )
        self._eval_indices = (solution.times >= work.eval_time) & solution.finite_columns()
        self._solution = solution

    def _hold_noise(self, solution: Solution) -> None:
        held = hold_noise_samples(solution)
        if held is not None and self._schema.family is ModelFamily.STOCHASTIC:
            self._control.held_noise = held
            self._schema.solver_options["noise_samples"] = held

    def __repr__(self) -> str:
        return (
            f"SimulationController(family={self._schema.family.value}, "
            f"solver='{self._solver.name}', state={self.state.value})"
        )


def _finite(x: Any, label: str) -> float:
    try:
        value = float(x)
    except (TypeError, ValueError) as e:
        raise SchemaError(f"{label} must be a number, got {x!r}") from e
    if not np.isfinite(value):
        raise SchemaError(f"{label} must be finite, got {value}")
    return value
