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
Schema Validator - Normalization of Raw Model Definitions

Turns a raw model definition (a plain mapping) into a normalized
``ModelSchema``, or raises ``SchemaError`` listing every problem found.

Raw Model Keys
--------------
parameters, variables, lags : list of {"name", "value", "limit"?}
ode | dde | (sde_drift, sde_diffusion) : right-hand-side functions
solvers : list of callables or SolverEntry (default per family)
solver_options : dict (stochastic models need noise_sources)
time_span : (t0, t1), default (0, 1)
eval_time : float, default t0, clamped into the time span
auxiliary, self_ref : optional callables
panels : optional display configuration, carried untouched

Examples
--------
>>> schema = normalize({
...     "parameters": [{"name": "a", "value": 2.0}],
...     "variables": [{"name": "y", "value": 1.0}],
...     "ode": lambda t, y, a: a * y,
...     "time_span": (0, 5),
... })
>>> schema.family
<ModelFamily.ORDINARY: 'ordinary'>
>>> normalize(schema) == schema
True
"""

import math
import warnings
from collections.abc import Mapping
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from typing_extensions import TypedDict

from dynctl.exceptions import SchemaError, SimulationWarning
from dynctl.model.value_map import assign_solution_indices
from dynctl.solvers.dde_solvers import DEFAULT_DDE_SOLVERS
from dynctl.solvers.ode_solvers import DEFAULT_ODE_SOLVERS
from dynctl.solvers.sde_solvers import DEFAULT_SDE_SOLVERS
from dynctl.types.model import (
    LagDef,
    ModelFamily,
    ModelSchema,
    ParameterDef,
    SolverEntry,
    VariableDef,
)

# ============================================================================
# Recognized Keys
# ============================================================================

MODEL_KEYS = (
    "parameters",
    "variables",
    "lags",
    "ode",
    "dde",
    "sde_drift",
    "sde_diffusion",
    "solvers",
    "solver_options",
    "time_span",
    "eval_time",
    "auxiliary",
    "self_ref",
    "panels",
)

ENTRY_KEYS = ("name", "value", "limit")

LEGACY_MODEL_KEYS = {
    "pardef": "rename 'pardef' to 'parameters'",
    "vardef": "rename 'vardef' to 'variables'",
    "lagdef": "rename 'lagdef' to 'lags'",
    "odefun": "rename 'odefun' to 'ode'",
    "ddefun": "rename 'ddefun' to 'dde'",
    "sdeF": "rename 'sdeF' to 'sde_drift'",
    "sdeG": "rename 'sdeG' to 'sde_diffusion'",
    "sdefun": "'sdefun' is obsolete, supply 'sde_drift' and 'sde_diffusion' instead",
    "odesolver": "rename 'odesolver' to 'solvers'",
    "ddesolver": "rename 'ddesolver' to 'solvers'",
    "sdesolver": "rename 'sdesolver' to 'solvers'",
    "odeoption": "rename 'odeoption' to 'solver_options'",
    "ddeoption": "rename 'ddeoption' to 'solver_options'",
    "sdeoption": "rename 'sdeoption' to 'solver_options'",
    "tspan": "rename 'tspan' to 'time_span'",
    "tval": "rename 'tval' to 'eval_time'",
    "auxfun": "rename 'auxfun' to 'auxiliary'",
    "gui": "rename 'gui' to 'panels'",
}

LEGACY_OPTION_KEYS = {
    "NoiseSources": "rename 'NoiseSources' to 'noise_sources'",
    "randn": "rename 'randn' to 'noise_samples'",
    "InitialStep": "rename 'InitialStep' to 'initial_step'",
}

FAMILY_DEFAULT_SOLVERS = {
    ModelFamily.ORDINARY: DEFAULT_ODE_SOLVERS,
    ModelFamily.DELAY: DEFAULT_DDE_SOLVERS,
    ModelFamily.STOCHASTIC: DEFAULT_SDE_SOLVERS,
}

# margin used when deriving limits from values
LIMIT_MARGIN = 1e-6


# ============================================================================
# Schema Validator
# ============================================================================


class SchemaValidator:
    """
    Validates and normalizes a raw model definition.

    Problems are accumulated and reported together in a single
    SchemaError. Structural checks (input type, legacy keys, family) run
    first; the per-field checks only run once those pass.

    Examples
    --------
    >>> validator = SchemaValidator(raw)
    >>> schema = validator.normalize()
    >>>
    >>> try:
    ...     SchemaValidator({"pardef": []}).normalize()
    ... except SchemaError as e:
    ...     print(e)
    """

    def __init__(self, raw: Any):
        if isinstance(raw, ModelSchema):
            raw = raw.to_raw()
        self.raw = raw
        self._errors: List[str] = []
        self._warnings: List[str] = []

    @property
    def errors(self) -> List[str]:
        return list(self._errors)

    @property
    def warnings(self) -> List[str]:
        return list(self._warnings)

    # ========================================================================
    # Public API
    # ========================================================================

    def normalize(self) -> ModelSchema:
        """
        Build the normalized schema.

        Returns
        -------
        ModelSchema
            Normalized model with solution indices assigned

        Raises
        ------
        SchemaError
            If the definition is malformed or ambiguous
        """
        self._errors = []
        self._warnings = []

        if not isinstance(self.raw, Mapping):
            raise SchemaError(
                f"A model definition must be a mapping, got {type(self.raw).__name__}"
            )

        self._check_keys()
        family = self._detect_family()
        self._raise_if_invalid()

        raw = self.raw
        parameters = self._parse_entries(raw.get("parameters", []), "parameters", ParameterDef)
        variables = self._parse_entries(raw.get("variables"), "variables", VariableDef)
        if "variables" in raw and not variables and not self._errors:
            self._errors.append("'variables' must define at least one state variable")
        lags = self._parse_lags(family)
        rhs = self._parse_rhs(family)
        solvers = self._parse_solvers(family)
        options = self._parse_options(family)
        time_span, eval_time = self._parse_time()
        auxiliary = self._parse_callable("auxiliary")
        self_ref = self._parse_callable("self_ref")
        panels = self._parse_panels()

        self._raise_if_invalid()
        self._issue_warnings()

        assign_solution_indices(variables)
        return ModelSchema(
            parameters=parameters,
            variables=variables,
            family=family,
            rhs=rhs,
            solvers=solvers,
            solver_options=options,
            time_span=time_span,
            eval_time=eval_time,
            lags=lags,
            auxiliary=auxiliary,
            self_ref=self_ref,
            panels=panels,
        )

    # ========================================================================
    # Structural Checks
    # ========================================================================

    def _check_keys(self):
        """Reject legacy and unknown top-level keys."""
        for key in self.raw:
            if key in LEGACY_MODEL_KEYS:
                self._errors.append(f"Obsolete field '{key}': {LEGACY_MODEL_KEYS[key]}")
            elif key not in MODEL_KEYS:
                self._errors.append(f"Unknown field '{key}'")

    def _detect_family(self) -> Optional[ModelFamily]:
        raw = self.raw
        has_ode = "ode" in raw
        has_dde = "dde" in raw
        has_drift = "sde_drift" in raw
        has_diffusion = "sde_diffusion" in raw

        if has_drift != has_diffusion:
            missing = "sde_diffusion" if has_drift else "sde_drift"
            self._errors.append(f"Stochastic models need both sde_drift and sde_diffusion, '{missing}' is missing")
            return None

        present = [
            name
            for name, flag in (("ode", has_ode), ("dde", has_dde), ("sde", has_drift))
            if flag
        ]
        if not present:
            self._errors.append("No right-hand side: supply one of 'ode', 'dde' or 'sde_drift'/'sde_diffusion'")
            return None
        if len(present) > 1:
            self._errors.append(f"Ambiguous model family, found {' and '.join(present)} functions")
            return None

        return {
            "ode": ModelFamily.ORDINARY,
            "dde": ModelFamily.DELAY,
            "sde": ModelFamily.STOCHASTIC,
        }[present[0]]

    # ========================================================================
    # Field Parsers
    # ========================================================================

    def _parse_entries(self, entries: Any, field_name: str, cls) -> List:
        if entries is None:
            self._errors.append(f"'{field_name}' is undefined")
            return []
        if isinstance(entries, (str, bytes, Mapping)) or not hasattr(entries, "__iter__"):
            self._errors.append(f"'{field_name}' must be a list of entries")
            return []

        defs = []
        seen = set()
        for index, entry in enumerate(entries):
            where = f"{field_name}[{index}]"
            if not isinstance(entry, Mapping):
                self._errors.append(f"{where} must be a mapping with 'name' and 'value'")
                continue

            if "lim" in entry:
                self._errors.append(f"Obsolete field '{where}.lim': rename 'lim' to 'limit'")
            for key in entry:
                if key not in ENTRY_KEYS and key != "lim":
                    self._errors.append(f"Unknown field '{where}.{key}'")

            name = entry.get("name")
            if not isinstance(name, str) or not name:
                self._errors.append(f"{where}.name must be a non-empty string")
                continue
            where = f"{field_name} '{name}'"
            if name in seen:
                self._errors.append(f"Duplicate name in {field_name}: '{name}'")
                continue
            seen.add(name)

            value = self._parse_value(entry.get("value"), where)
            if value is None:
                continue
            limit = self._parse_limit(entry.get("limit"), value, where)
            if limit is None:
                continue
            defs.append(cls(name=name, value=value, limit=limit))
        return defs

    def _parse_value(self, value: Any, where: str) -> Optional[np.ndarray]:
        if value is None:
            self._errors.append(f"{where}.value is undefined")
            return None
        try:
            arr = np.array(value)
        except (TypeError, ValueError) as e:
            self._errors.append(f"{where}.value is not numeric ({e})")
            return None
        if arr.dtype.kind not in "iuf":
            self._errors.append(f"{where}.value must be numeric, got dtype {arr.dtype}")
            return None
        if arr.size == 0:
            self._errors.append(f"{where}.value is empty")
            return None
        arr = arr.astype(float)
        if not np.all(np.isfinite(arr)):
            self._errors.append(f"{where}.value contains NaN or infinite entries")
            return None
        return arr

    def _parse_limit(self, limit: Any, value: np.ndarray, where: str) -> Optional[Tuple[float, float]]:
        if limit is None:
            low = math.floor(float(value.min()) - LIMIT_MARGIN)
            high = math.ceil(float(value.max()) + LIMIT_MARGIN)
            return (float(low), float(high))

        arr = np.asarray(limit)
        if arr.dtype.kind not in "iuf" or arr.size != 2:
            self._errors.append(f"{where}.limit must be two numbers [low, high]")
            return None
        low, high = (float(x) for x in arr.reshape(-1))
        if math.isnan(low) or math.isnan(high) or not low < high:
            self._errors.append(f"{where}.limit must satisfy low < high, got [{low}, {high}]")
            return None
        return (low, high)

    def _parse_lags(self, family: ModelFamily) -> List[LagDef]:
        if family is not ModelFamily.DELAY:
            if "lags" in self.raw:
                self._errors.append("'lags' is only allowed for delay models (dde)")
            return []
        if "lags" not in self.raw:
            self._errors.append("Delay models need 'lags'")
            return []
        lags = self._parse_entries(self.raw["lags"], "lags", LagDef)
        for lag in lags:
            if np.any(lag.value < 0):
                self._errors.append(f"lags '{lag.name}'.value must be non-negative")
        return lags

    def _parse_rhs(self, family: ModelFamily) -> Tuple:
        keys = {
            ModelFamily.ORDINARY: ("ode",),
            ModelFamily.DELAY: ("dde",),
            ModelFamily.STOCHASTIC: ("sde_drift", "sde_diffusion"),
        }[family]
        for key in keys:
            if not callable(self.raw[key]):
                self._errors.append(f"'{key}' must be callable")
        return tuple(self.raw[key] for key in keys)

    def _parse_solvers(self, family: ModelFamily) -> List[SolverEntry]:
        raw_solvers = self.raw.get("solvers")
        if raw_solvers is None:
            raw_solvers = FAMILY_DEFAULT_SOLVERS[family]
        if isinstance(raw_solvers, (str, bytes, Mapping)) or not hasattr(raw_solvers, "__iter__"):
            self._errors.append("'solvers' must be a list")
            return []

        entries = []
        for index, item in enumerate(raw_solvers):
            if isinstance(item, SolverEntry):
                entry = item
            elif callable(item):
                name = getattr(item, "name", None) or getattr(item, "__name__", None)
                item_family = getattr(item, "family", None)
                entry = SolverEntry(
                    name=name if isinstance(name, str) else f"solver{index}",
                    function=item,
                    family=item_family if isinstance(item_family, ModelFamily) else family,
                )
            else:
                self._errors.append(f"solvers[{index}] is not a solver (got {type(item).__name__})")
                continue

            if not callable(entry.function):
                self._errors.append(f"Solver '{entry.name}' is not callable")
            elif entry.family is not family:
                self._errors.append(
                    f"Solver '{entry.name}' is a {entry.family.value} solver but the "
                    f"model is {family.value}"
                )
            elif any(e.name == entry.name for e in entries):
                self._errors.append(f"Duplicate solver name '{entry.name}'")
            else:
                entries.append(entry)

        if not entries and not self._errors:
            self._errors.append("'solvers' must list at least one solver")
        return entries

    def _parse_options(self, family: ModelFamily) -> Dict[str, Any]:
        raw_options = self.raw.get("solver_options", {})
        if not isinstance(raw_options, Mapping):
            self._errors.append("'solver_options' must be a mapping")
            return {}
        options = dict(raw_options)

        for key in options:
            if key in LEGACY_OPTION_KEYS:
                self._errors.append(f"Obsolete solver option '{key}': {LEGACY_OPTION_KEYS[key]}")

        for key in ("initial_step", "rtol", "atol", "max_step"):
            if key in options and not _is_positive_number(options[key]):
                self._errors.append(f"solver_options['{key}'] must be a positive number")

        if family is ModelFamily.STOCHASTIC:
            self._check_noise_options(options)
        elif "noise_sources" in options or "noise_samples" in options:
            self._warnings.append("Noise options are ignored for non-stochastic models")
        return options

    def _check_noise_options(self, options: Dict[str, Any]):
        m = options.get("noise_sources")
        if m is None:
            self._errors.append("Stochastic models need solver_options['noise_sources']")
            return
        if isinstance(m, (bool, np.bool_)) or not isinstance(m, (int, np.integer)) or m < 1:
            self._errors.append(
                f"solver_options['noise_sources'] must be an integer >= 1, got {m!r}"
            )
            return

        samples = options.get("noise_samples")
        if samples is None:
            return
        arr = np.array(samples)
        if arr.size == 0:
            options["noise_samples"] = None
            return
        if arr.dtype.kind not in "iuf" or arr.ndim != 2:
            self._errors.append("solver_options['noise_samples'] must be a numeric matrix")
        elif arr.shape[0] != m:
            self._errors.append(
                f"The number of rows in solver_options['noise_samples'] ({arr.shape[0]}) "
                f"must equal noise_sources ({m})"
            )
        else:
            options["noise_samples"] = arr.astype(float)

    def _parse_time(self) -> Tuple[Tuple[float, float], float]:
        span = self.raw.get("time_span", (0.0, 1.0))
        arr = np.asarray(span)
        if arr.dtype.kind not in "iuf" or arr.size != 2 or not np.all(np.isfinite(arr)):
            self._errors.append("'time_span' must be two finite numbers (t0, t1)")
            return (0.0, 1.0), 0.0
        t0, t1 = (float(x) for x in arr.reshape(-1))
        if t0 > t1:
            self._errors.append(f"'time_span' must satisfy t0 <= t1, got ({t0}, {t1})")
            return (0.0, 1.0), 0.0

        eval_time = self.raw.get("eval_time", t0)
        if not _is_number(eval_time):
            self._errors.append("'eval_time' must be a number")
            return (t0, t1), t0
        return (t0, t1), min(max(float(eval_time), t0), t1)

    def _parse_callable(self, key: str):
        fn = self.raw.get(key)
        if fn is not None and not callable(fn):
            self._errors.append(f"'{key}' must be callable")
            return None
        return fn

    def _parse_panels(self) -> Dict[str, Any]:
        panels = self.raw.get("panels", {})
        if panels is None:
            return {}
        if not isinstance(panels, Mapping):
            self._errors.append("'panels' must be a mapping")
            return {}
        return dict(panels)

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def _raise_if_invalid(self):
        if self._errors:
            raise SchemaError(self._format_error_message())

    def _issue_warnings(self):
        for message in self._warnings:
            warnings.warn(f"Model definition: {message}", SimulationWarning, stacklevel=3)

    def _format_error_message(self) -> str:
        msg = "Invalid model definition:\n"
        msg += "\n".join(f"  • {error}" for error in self._errors)
        return msg

    def __repr__(self) -> str:
        return f"SchemaValidator(errors={len(self._errors)}, warnings={len(self._warnings)})"


def _is_number(x: Any) -> bool:
    return (
        isinstance(x, (int, float, np.integer, np.floating))
        and not isinstance(x, (bool, np.bool_))
        and not math.isnan(float(x))
    )


def _is_positive_number(x: Any) -> bool:
    return _is_number(x) and float(x) > 0


def normalize(raw: Any) -> ModelSchema:
    """
    Normalize a raw model definition (or re-normalize a ModelSchema).

    Raises
    ------
    SchemaError
        If the definition is malformed or ambiguous
    """
    return SchemaValidator(raw).normalize()


# ============================================================================
# Model Verification
# ============================================================================


class ModelReport(TypedDict):
    """
    Shapes observed by ``verify_model``.

    Attributes
    ----------
    family : str
        Model family
    state_size : int
        Length of the flat state vector
    rhs_shape : Tuple[int, ...]
        Shape returned by the ode/dde/drift function
    delayed_shape : Optional[Tuple[int, ...]]
        Shape of Z passed to a delay rhs
    diffusion_shape : Optional[Tuple[int, ...]]
        Shape returned by the diffusion function
    auxiliary_shape : Optional[Tuple[int, ...]]
        Shape returned by the auxiliary function for a single sample
    """

    family: str
    state_size: int
    rhs_shape: Tuple[int, ...]
    delayed_shape: Optional[Tuple[int, ...]]
    diffusion_shape: Optional[Tuple[int, ...]]
    auxiliary_shape: Optional[Tuple[int, ...]]


def _evaluate(label: str, fn, *args) -> np.ndarray:
    try:
        return np.asarray(fn(*args))
    except Exception as e:
        raise SchemaError(f"Calling the {label} function failed: {e}") from e


def verify_model(schema: ModelSchema) -> ModelReport:
    """
    Call the model functions once at t0 and check the shapes they return.

    Parameters
    ----------
    schema : ModelSchema
        Normalized model

    Returns
    -------
    ModelReport
        Observed shapes

    Raises
    ------
    SchemaError
        If a function fails or returns a wrongly shaped result

    Examples
    --------
    >>> report = verify_model(normalize(raw))
    >>> report["rhs_shape"]
    (2,)
    """
    t0 = schema.time_span[0]
    y0 = schema.initial_state()
    n = y0.size
    params = schema.parameter_values()
    delayed_shape = None
    diffusion_shape = None
    auxiliary_shape = None

    if schema.family is ModelFamily.ORDINARY:
        dy = _evaluate("ode", schema.ode, t0, y0, *params)
    elif schema.family is ModelFamily.DELAY:
        Z = np.tile(y0.reshape(n, 1), (1, schema.lag_values().size))
        delayed_shape = Z.shape
        dy = _evaluate("dde", schema.dde, t0, y0, Z, *params)
    else:
        dy = _evaluate("sde_drift", schema.drift, t0, y0, *params)
        G = _evaluate("sde_diffusion", schema.diffusion, t0, y0, *params)
        m = int(schema.solver_options["noise_sources"])
        if G.size != n * m or (G.ndim == 2 and G.shape != (n, m)):
            raise SchemaError(
                f"sde_diffusion must return an ({n}, {m}) matrix, got shape {G.shape}"
            )
        diffusion_shape = G.shape

    if dy.size != n:
        raise SchemaError(
            f"The {schema.family.value} right-hand side must return {n} values "
            f"(one per state component), got shape {dy.shape}"
        )

    if schema.auxiliary is not None:
        aux = _evaluate("auxiliary", schema.auxiliary, np.array([t0]), y0.reshape(n, 1), *params)
        if aux.ndim == 0 or aux.shape[-1] != 1:
            raise SchemaError(
                f"The auxiliary function must return one column per sample, got shape {aux.shape}"
            )
        auxiliary_shape = aux.shape

    return ModelReport(
        family=schema.family.value,
        state_size=n,
        rhs_shape=dy.shape,
        delayed_shape=delayed_shape,
        diffusion_shape=diffusion_shape,
        auxiliary_shape=auxiliary_shape,
    )
