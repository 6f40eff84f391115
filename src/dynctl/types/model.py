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
Model Types - Normalized Model Schema

Defines the normalized representation of a dynamical model:
- ModelFamily: closed set of differential equation families
- ParameterDef / VariableDef / LagDef: named numeric values with limits
- SolverEntry: a solver primitive tagged with its family
- ModelSchema: the complete normalized model

A ModelSchema is produced by ``dynctl.model.validator.normalize`` and is
afterwards mutated in place only by the controller, which changes values
and limits but never list lengths, names or shapes.

Mathematical Context
--------------------
Ordinary:    dy/dt = f(t, y, p1, ..., pk)
Delay:       dy/dt = f(t, y, Z, p1, ..., pk),  Z[:, j] = y(t - lag_j)
Stochastic:  dy = F(t, y, p1, ..., pk) dt + G(t, y, p1, ..., pk) dW
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from .core import AuxiliaryFunction, ParameterValue, SolverFunction, StateVector
from .trajectories import TimeSpan


class ModelFamily(Enum):
    """
    Differential equation family of a model.

    Attributes
    ----------
    ORDINARY : str
        Ordinary differential equations, one rhs function
    DELAY : str
        Delay differential equations, one rhs function plus lags
    STOCHASTIC : str
        Stochastic differential equations, drift and diffusion functions
    """

    ORDINARY = "ordinary"
    DELAY = "delay"
    STOCHASTIC = "stochastic"


def _values_equal(a: Any, b: Any) -> bool:
    if isinstance(a, np.ndarray) or isinstance(b, np.ndarray):
        return np.array_equal(np.asarray(a), np.asarray(b))
    return a == b


@dataclass(eq=False)
class ParameterDef:
    """
    Named numeric value with display limits.

    Attributes
    ----------
    name : str
        Unique within its list
    value : ParameterValue
        Numeric array of fixed shape
    limit : Tuple[float, float]
        (low, high) with low < high
    """

    name: str
    value: ParameterValue
    limit: Tuple[float, float]

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.value.shape

    @property
    def size(self) -> int:
        return int(self.value.size)

    def to_raw(self) -> Dict[str, Any]:
        return {"name": self.name, "value": self.value.copy(), "limit": tuple(self.limit)}

    def __eq__(self, other) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return (
            self.name == other.name
            and self.value.shape == other.value.shape
            and np.array_equal(self.value, other.value)
            and tuple(self.limit) == tuple(other.limit)
        )


@dataclass(eq=False)
class VariableDef(ParameterDef):
    """
    State variable definition.

    Attributes
    ----------
    solution_index : range
        Rows of the flat state vector (and of ``Solution.states``) that hold
        this variable, assigned at normalization
    """

    solution_index: range = field(default_factory=lambda: range(0))

    def __eq__(self, other) -> bool:
        result = super().__eq__(other)
        if result is NotImplemented or not result:
            return result
        return self.solution_index == other.solution_index


@dataclass(eq=False)
class LagDef(ParameterDef):
    """Delay (lag) parameter of a delay model."""


@dataclass(frozen=True)
class SolverEntry:
    """
    Solver primitive tagged with the family whose convention it follows.

    Attributes
    ----------
    name : str
        Display name, unique within a model
    function : SolverFunction
        The primitive itself
    family : ModelFamily
        Calling convention used to invoke it
    """

    name: str
    function: SolverFunction
    family: ModelFamily


@dataclass(eq=False)
class ModelSchema:
    """
    Normalized dynamical model.

    Attributes
    ----------
    parameters : List[ParameterDef]
        Parameters, passed positionally to the rhs in declaration order
    variables : List[VariableDef]
        State variables with their initial values
    family : ModelFamily
        Differential equation family
    rhs : Tuple[Callable, ...]
        (f,) for ORDINARY/DELAY, (drift, diffusion) for STOCHASTIC
    solvers : List[SolverEntry]
        Available solver primitives, the first one is the default
    solver_options : Dict[str, Any]
        Family-specific option bag
    time_span : TimeSpan
        (t0, t1) with t0 <= t1
    eval_time : float
        Start of the evaluation window, t0 <= eval_time <= t1
    lags : List[LagDef]
        Lag parameters (DELAY only)
    auxiliary : Optional[AuxiliaryFunction]
        Optional auxiliary output function
    self_ref : Optional[Callable]
        Optional factory that rebuilds the raw model
    panels : Dict[str, Any]
        Opaque display configuration carried for the host
    """

    parameters: List[ParameterDef]
    variables: List[VariableDef]
    family: ModelFamily
    rhs: Tuple[Callable, ...]
    solvers: List[SolverEntry]
    solver_options: Dict[str, Any]
    time_span: TimeSpan
    eval_time: float
    lags: List[LagDef] = field(default_factory=list)
    auxiliary: Optional[AuxiliaryFunction] = None
    self_ref: Optional[Callable] = None
    panels: Dict[str, Any] = field(default_factory=dict)

    # ========================================================================
    # Family-specific accessors
    # ========================================================================

    @property
    def ode(self) -> Optional[Callable]:
        return self.rhs[0] if self.family is ModelFamily.ORDINARY else None

    @property
    def dde(self) -> Optional[Callable]:
        return self.rhs[0] if self.family is ModelFamily.DELAY else None

    @property
    def drift(self) -> Optional[Callable]:
        return self.rhs[0] if self.family is ModelFamily.STOCHASTIC else None

    @property
    def diffusion(self) -> Optional[Callable]:
        return self.rhs[1] if self.family is ModelFamily.STOCHASTIC else None

    # ========================================================================
    # Values
    # ========================================================================

    @property
    def state_size(self) -> int:
        return sum(v.size for v in self.variables)

    def parameter_values(self) -> List[ParameterValue]:
        """Parameter values in declaration order (the rhs trailing args)."""
        return [p.value for p in self.parameters]

    def initial_state(self) -> StateVector:
        """Flat initial state built from the variable values."""
        if not self.variables:
            return np.zeros(0)
        return np.concatenate([v.value.reshape(-1) for v in self.variables])

    def lag_values(self) -> np.ndarray:
        """Flat vector of lag values (empty for non-delay models)."""
        if not self.lags:
            return np.zeros(0)
        return np.concatenate([lag.value.reshape(-1) for lag in self.lags])

    def find_solver(self, name: str) -> Optional[SolverEntry]:
        for entry in self.solvers:
            if entry.name == name:
                return entry
        return None

    # ========================================================================
    # Conversion and comparison
    # ========================================================================

    def to_raw(self) -> Dict[str, Any]:
        """
        Raw mapping that normalizes back to an equal schema.

        Examples
        --------
        >>> normalize(schema.to_raw()) == schema
        True
        """
        raw: Dict[str, Any] = {
            "parameters": [p.to_raw() for p in self.parameters],
            "variables": [v.to_raw() for v in self.variables],
            "solvers": list(self.solvers),
            "solver_options": dict(self.solver_options),
            "time_span": tuple(self.time_span),
            "eval_time": self.eval_time,
            "panels": dict(self.panels),
        }
        if self.family is ModelFamily.ORDINARY:
            raw["ode"] = self.rhs[0]
        elif self.family is ModelFamily.DELAY:
            raw["dde"] = self.rhs[0]
            raw["lags"] = [lag.to_raw() for lag in self.lags]
        else:
            raw["sde_drift"], raw["sde_diffusion"] = self.rhs
        if self.auxiliary is not None:
            raw["auxiliary"] = self.auxiliary
        if self.self_ref is not None:
            raw["self_ref"] = self.self_ref
        return raw

    def __eq__(self, other) -> bool:
        if not isinstance(other, ModelSchema):
            return NotImplemented
        if set(self.solver_options) != set(other.solver_options):
            return False
        options_equal = all(
            _values_equal(self.solver_options[k], other.solver_options[k])
            for k in self.solver_options
        )
        return (
            options_equal
            and self.family is other.family
            and self.parameters == other.parameters
            and self.variables == other.variables
            and self.lags == other.lags
            and self.rhs == other.rhs
            and self.solvers == other.solvers
            and tuple(self.time_span) == tuple(other.time_span)
            and self.eval_time == other.eval_time
            and self.auxiliary is other.auxiliary
            and self.self_ref is other.self_ref
            and self.panels == other.panels
        )
