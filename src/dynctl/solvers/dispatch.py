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
Solver Dispatch - Family Calling Conventions

Invokes a solver primitive with the fixed calling convention of its model
family and converts whatever it returns into a ``Solution``:

- Ordinary:   solve(ode, time_span, y0, options, *parameter_values)
- Delay:      solve(dde, lag_values, history_or_y0, time_span, options, *parameter_values)
- Stochastic: solve(drift, diffusion, time_span, y0, options, *parameter_values)

A solver is only accepted if it is one of the model's declared solver
entries. Anything else is rejected instead of guessed.

Also provides the one-shot helpers ``solve`` and ``evolve`` for scripted
use without a controller.

Examples
--------
>>> sol = solve(raw_model)
>>> schema, sol = evolve(raw_model, repeats=10)
"""

import warnings
from collections.abc import Mapping
from typing import Any, Dict, Optional, Tuple, Union

import numpy as np

from dynctl.exceptions import OverflowCondition, SchemaError
from dynctl.model.value_map import set_values
from dynctl.types.core import HistoryFunction, StateVector
from dynctl.types.model import ModelFamily, ModelSchema, SolverEntry
from dynctl.types.trajectories import Solution, SolverStats, TimeSpan, empty_stats

SolverRef = Union[SolverEntry, str, Any]
"""A solver entry, its name, or the primitive itself."""


class SolverDispatch:
    """
    Classification and invocation of solver primitives.

    All methods are class methods; the class only groups the family
    conventions.

    Examples
    --------
    >>> family = SolverDispatch.classify("ode45", schema)
    >>> sol = SolverDispatch.invoke(schema, (0.0, 5.0), "ode45", family)
    """

    # ========================================================================
    # Classification
    # ========================================================================

    @classmethod
    def resolve(cls, solver: SolverRef, schema: ModelSchema) -> Optional[SolverEntry]:
        """Declared solver entry matching ``solver`` (by identity or name)."""
        for entry in schema.solvers:
            if solver is entry or solver is entry.function:
                return entry
        name = solver.name if isinstance(solver, SolverEntry) else solver
        if isinstance(name, str):
            return schema.find_solver(name)
        return None

    @classmethod
    def classify(cls, solver: SolverRef, schema: ModelSchema) -> Optional[ModelFamily]:
        """
        Family of a solver, or None if the model does not declare it.

        Examples
        --------
        >>> SolverDispatch.classify(ode45, ode_schema)
        <ModelFamily.ORDINARY: 'ordinary'>
        >>> SolverDispatch.classify(print, ode_schema) is None
        True
        """
        entry = cls.resolve(solver, schema)
        return None if entry is None else entry.family

    # ========================================================================
    # Invocation
    # ========================================================================

    @classmethod
    def invoke(
        cls,
        schema: ModelSchema,
        time_span: TimeSpan,
        solver: SolverRef,
        family: ModelFamily,
        history: Optional[HistoryFunction] = None,
        initial_values: Optional[StateVector] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> Solution:
        """
        Run one solver primitive on a model.

        Parameters
        ----------
        schema : ModelSchema
            Normalized model
        time_span : TimeSpan
            Integration interval
        solver : SolverRef
            Declared solver entry, its name or its function
        family : ModelFamily
            Convention the caller expects the solver to follow
        history : Optional[HistoryFunction]
            History function for delay models (default: constant initial state)
        initial_values : Optional[StateVector]
            Flat initial state (default: the schema's variable values)
        options : Optional[Dict]
            Entries added to a copy of ``schema.solver_options``
            (e.g. ``output_fn``)

        Returns
        -------
        Solution
            Result converted from whatever the primitive returned

        Raises
        ------
        SchemaError
            If the solver is not declared, the families disagree, or the
            primitive returns something that is not a solution
        """
        entry = cls.resolve(solver, schema)
        if entry is None:
            raise SchemaError(f"Solver {_describe(solver)} is not declared by this model")
        if entry.family is not family or family is not schema.family:
            raise SchemaError(
                f"Solver '{entry.name}' follows the {entry.family.value} convention, "
                f"requested {family.value} for a {schema.family.value} model"
            )

        y0 = schema.initial_state() if initial_values is None else initial_values
        y0 = np.asarray(y0, dtype=float).reshape(-1)
        if y0.size != schema.state_size:
            raise SchemaError(
                f"Initial state has {y0.size} values, the model has {schema.state_size}"
            )

        opts = dict(schema.solver_options)
        opts.update(options or {})
        params = schema.parameter_values()
        span = (float(time_span[0]), float(time_span[1]))

        if family is ModelFamily.ORDINARY:
            result = entry.function(schema.ode, span, y0, opts, *params)
        elif family is ModelFamily.DELAY:
            start = history if history is not None else y0
            result = entry.function(schema.dde, schema.lag_values(), start, span, opts, *params)
        else:
            if opts.get("noise_samples") is None:
                opts.pop("noise_samples", None)
            result = entry.function(schema.drift, schema.diffusion, span, y0, opts, *params)

        return cls.to_solution(result, entry.name)

    @staticmethod
    def to_solution(result: Any, name: str) -> Solution:
        """
        Convert a primitive's return value into a Solution.

        Accepts a Solution (returned as is, tagged with the solver name if
        it has none) or a mapping with keys ``t``, ``y`` and optionally
        ``yp``, ``stats``, ``dW``.
        """
        if isinstance(result, Solution):
            if not result.solver:
                return result.with_diagnostics(solver=name)
            return result

        if not isinstance(result, Mapping) or "t" not in result or "y" not in result:
            raise SchemaError(
                f"Solver '{name}' must return a Solution or a mapping with 't' and 'y', "
                f"got {type(result).__name__}"
            )

        stats = dict(empty_stats())
        stats.update(result.get("stats") or {})
        try:
            return Solution(
                times=result["t"],
                states=result["y"],
                derivatives=result.get("yp"),
                increments=result.get("dW"),
                stats=SolverStats(
                    steps_taken=int(stats["steps_taken"]),
                    steps_failed=int(stats["steps_failed"]),
                    evaluation_count=int(stats["evaluation_count"]),
                ),
                solver=name,
                halted=bool(result.get("halted", False)),
            )
        except (TypeError, ValueError) as e:
            raise SchemaError(f"Solver '{name}' returned a malformed solution: {e}") from e


def _describe(solver: Any) -> str:
    if isinstance(solver, str):
        return f"'{solver}'"
    return f"'{getattr(solver, 'name', None) or getattr(solver, '__name__', repr(solver))}'"


# ============================================================================
# One-shot helpers
# ============================================================================


def auxiliary_output(schema: ModelSchema, solution: Solution) -> Optional[np.ndarray]:
    """Evaluate the model's auxiliary function over a solution, if it has one."""
    if schema.auxiliary is None or solution.is_empty:
        return None
    aux = np.asarray(
        schema.auxiliary(solution.times, solution.states, *schema.parameter_values()),
        dtype=float,
    )
    if aux.ndim == 1:
        aux = aux.reshape(1, -1)
    return aux


def solve(
    model: Any,
    time_span: Optional[TimeSpan] = None,
    solver: Optional[SolverRef] = None,
) -> Solution:
    """
    Normalize a model and solve it once.

    Parameters
    ----------
    model : Mapping or ModelSchema
        Raw or normalized model
    time_span : Optional[TimeSpan]
        Integration interval (default: the model's)
    solver : Optional[SolverRef]
        Declared solver (default: the model's first solver)

    Returns
    -------
    Solution
        Including the auxiliary output when the model defines one

    Examples
    --------
    >>> sol = solve(model, (0.0, 5.0), "ode45")
    >>> sol.final_state
    """
    # imported here, validator imports the solver modules
    from dynctl.model.validator import normalize

    schema = normalize(model)
    return _solve_schema(schema, time_span, solver)


def _solve_schema(schema: ModelSchema, time_span, solver) -> Solution:
    entry = schema.solvers[0] if solver is None else solver
    span = schema.time_span if time_span is None else time_span
    sol = SolverDispatch.invoke(schema, span, entry, schema.family)
    aux = auxiliary_output(schema, sol)
    if aux is not None:
        sol = sol.with_diagnostics(auxiliary=aux)
    return sol


def evolve(
    model: Any,
    repeats: int = 1,
    time_span: Optional[TimeSpan] = None,
    solver: Optional[SolverRef] = None,
) -> Tuple[ModelSchema, Solution]:
    """
    Solve repeatedly, each run starting from the previous final state.

    After every run the final state is copied back into the variable
    values of a normalized copy of the model. A run that ends with
    non-finite values issues OverflowCondition and stops the sequence
    without updating the variables.

    Parameters
    ----------
    model : Mapping or ModelSchema
        Raw or normalized model (not modified)
    repeats : int
        Number of runs, at least 1

    Returns
    -------
    Tuple[ModelSchema, Solution]
        Updated schema and the solution of the last run

    Examples
    --------
    >>> schema, sol = evolve(model, repeats=10)
    >>> schema.variables[0].value   # state after 10 time spans
    """
    from dynctl.model.validator import normalize

    if repeats < 1:
        raise ValueError(f"repeats must be >= 1, got {repeats}")

    schema = normalize(model)
    sol = Solution.empty()
    for _ in range(repeats):
        sol = _solve_schema(schema, time_span, solver)
        if not sol.final_state_is_finite():
            warnings.warn(
                "The final state is not finite, evolution stopped",
                OverflowCondition,
            )
            return schema, sol.with_diagnostics(overflow=True)
        set_values(schema.variables, sol.final_state)
    return schema, sol
