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
Unit Tests for Solver Dispatch

Tests cover:
1. classify (identity, name, unsupported solvers)
2. invoke calling conventions for each family
3. Conversion of mapping results into Solutions
4. One-shot solve / evolve helpers
"""

import numpy as np
import pytest

from dynctl.exceptions import OverflowCondition, SchemaError
from dynctl.model.validator import normalize
from dynctl.solvers.dispatch import SolverDispatch, evolve, solve
from dynctl.solvers.ode_solvers import ode45, ode_euler
from dynctl.types.model import ModelFamily, SolverEntry
from dynctl.types.trajectories import Solution

# ============================================================================
# Mock Models and Solvers
# ============================================================================


def growth(t, y, a):
    return a * y


class RecordingSolver:
    """Solver primitive returning a mapping and recording its arguments"""

    def __init__(self, family, name="recorder"):
        self.family = family
        self.name = name
        self.args = None

    def __call__(self, *args):
        self.args = args
        n = 2
        return {
            "t": np.array([0.0, 1.0]),
            "y": np.zeros((n, 2)),
            "stats": {"steps_taken": 1, "evaluation_count": 3},
        }


def ode_model(**overrides):
    raw = {
        "parameters": [{"name": "a", "value": 2.0}],
        "variables": [{"name": "y", "value": 1.0}],
        "ode": growth,
        "time_span": (0, 5),
    }
    raw.update(overrides)
    return raw


# ============================================================================
# Test Class 1: Classification
# ============================================================================


class TestClassify:
    """Test SolverDispatch.classify"""

    def test_by_function(self):
        schema = normalize(ode_model())

        assert SolverDispatch.classify(ode45, schema) is ModelFamily.ORDINARY

    def test_by_name(self):
        schema = normalize(ode_model())

        assert SolverDispatch.classify("odeEul", schema) is ModelFamily.ORDINARY

    def test_by_entry(self):
        schema = normalize(ode_model())

        assert SolverDispatch.classify(schema.solvers[2], schema) is ModelFamily.ORDINARY

    @pytest.mark.parametrize("solver", [print, "ode99", None, 42])
    def test_unsupported(self, solver):
        schema = normalize(ode_model())

        assert SolverDispatch.classify(solver, schema) is None

    def test_undeclared_primitive(self):
        schema = normalize(ode_model(solvers=[ode45]))

        assert SolverDispatch.classify(ode_euler, schema) is None


# ============================================================================
# Test Class 2: Calling Conventions
# ============================================================================


class TestInvoke:
    """Test SolverDispatch.invoke"""

    def test_ordinary_convention(self):
        recorder = RecordingSolver(ModelFamily.ORDINARY)
        raw = ode_model(variables=[{"name": "y", "value": [1.0, 2.0]}], solvers=[recorder])
        schema = normalize(raw)

        SolverDispatch.invoke(schema, (0.0, 5.0), "recorder", ModelFamily.ORDINARY)

        ode, span, y0, options, a = recorder.args
        assert ode is growth
        assert span == (0.0, 5.0)
        np.testing.assert_array_equal(y0, [1.0, 2.0])
        assert options == {}
        assert a == 2.0

    def test_delay_convention(self):
        recorder = RecordingSolver(ModelFamily.DELAY)
        dde = lambda t, y, Z, a: -a * Z[:, 0]
        raw = ode_model(variables=[{"name": "y", "value": [1.0, 2.0]}], solvers=[recorder])
        del raw["ode"]
        raw.update(dde=dde, lags=[{"name": "tau", "value": [0.5, 1.5]}])
        schema = normalize(raw)
        history = lambda t: np.ones(2)

        SolverDispatch.invoke(schema, (0.0, 1.0), recorder, ModelFamily.DELAY, history=history)

        fn, lags, start, span, options, a = recorder.args
        assert fn is dde
        np.testing.assert_array_equal(lags, [0.5, 1.5])
        assert start is history
        assert span == (0.0, 1.0)

    def test_stochastic_convention(self):
        recorder = RecordingSolver(ModelFamily.STOCHASTIC)
        drift = lambda t, y, a: -a * y
        diffusion = lambda t, y, a: np.eye(2)
        raw = ode_model(
            variables=[{"name": "y", "value": [1.0, 2.0]}],
            solvers=[recorder],
            solver_options={"noise_sources": 2},
        )
        del raw["ode"]
        raw.update(sde_drift=drift, sde_diffusion=diffusion)
        schema = normalize(raw)

        SolverDispatch.invoke(schema, (0.0, 1.0), recorder, ModelFamily.STOCHASTIC)

        f, g, span, y0, options, a = recorder.args
        assert f is drift
        assert g is diffusion
        assert options["noise_sources"] == 2
        assert "noise_samples" not in options

    def test_mapping_converted(self):
        recorder = RecordingSolver(ModelFamily.ORDINARY)
        schema = normalize(ode_model(variables=[{"name": "y", "value": [1.0, 2.0]}], solvers=[recorder]))

        sol = SolverDispatch.invoke(schema, (0.0, 1.0), recorder, ModelFamily.ORDINARY)

        assert isinstance(sol, Solution)
        assert sol.solver == "recorder"
        assert sol.stats == {"steps_taken": 1, "steps_failed": 0, "evaluation_count": 3}

    def test_malformed_result(self):
        schema = normalize(ode_model(solvers=[lambda *args: [1, 2, 3]]))

        with pytest.raises(SchemaError, match="must return a Solution"):
            SolverDispatch.invoke(schema, (0.0, 1.0), schema.solvers[0], ModelFamily.ORDINARY)

    def test_family_mismatch(self):
        schema = normalize(ode_model())

        with pytest.raises(SchemaError, match="convention"):
            SolverDispatch.invoke(schema, (0.0, 1.0), "ode45", ModelFamily.DELAY)

    def test_undeclared_solver(self):
        schema = normalize(ode_model(solvers=[ode45]))

        with pytest.raises(SchemaError, match="not declared"):
            SolverDispatch.invoke(schema, (0.0, 1.0), ode_euler, ModelFamily.ORDINARY)

    def test_initial_values_override(self):
        schema = normalize(ode_model())

        sol = SolverDispatch.invoke(schema, (0.0, 1.0), "odeEul", ModelFamily.ORDINARY, initial_values=[3.0])

        assert sol.states[0, 0] == 3.0
        assert schema.variables[0].value == 1.0

    def test_initial_values_size_checked(self):
        schema = normalize(ode_model())

        with pytest.raises(SchemaError, match="Initial state"):
            SolverDispatch.invoke(schema, (0.0, 1.0), "odeEul", ModelFamily.ORDINARY, initial_values=[1.0, 2.0])

    def test_extra_options_do_not_leak(self):
        schema = normalize(ode_model())
        hook = lambda t, y, flag: False

        SolverDispatch.invoke(schema, (0.0, 1.0), "odeEul", ModelFamily.ORDINARY, options={"output_fn": hook})

        assert "output_fn" not in schema.solver_options


# ============================================================================
# Test Class 3: One-shot Helpers
# ============================================================================


class TestSolveAndEvolve:
    """Test solve() and evolve()"""

    def test_exponential_growth(self):
        sol = solve(ode_model())

        assert sol.solver == "ode45"
        np.testing.assert_allclose(sol.final_state, [np.exp(10.0)], rtol=1e-4)

    def test_time_span_and_solver(self):
        sol = solve(ode_model(), (0.0, 1.0), "odeEul")

        assert sol.solver == "odeEul"
        assert sol.times[-1] == pytest.approx(1.0)

    def test_auxiliary_output(self):
        aux = lambda t, y, a: a * y
        sol = solve(ode_model(auxiliary=aux), (0.0, 1.0), "odeEul")

        assert sol.auxiliary.shape == (1, sol.n_samples)
        np.testing.assert_allclose(sol.auxiliary, 2.0 * sol.states)

    def test_evolve_advances_state(self):
        raw = ode_model(parameters=[{"name": "a", "value": -1.0}], time_span=(0, 1))

        schema, sol = evolve(raw, repeats=3)

        np.testing.assert_array_equal(schema.variables[0].value, sol.final_state)
        np.testing.assert_allclose(schema.variables[0].value, np.exp(-3.0), rtol=1e-4)
        assert raw["variables"][0]["value"] == 1.0

    def test_evolve_rejects_zero_repeats(self):
        with pytest.raises(ValueError, match="repeats"):
            evolve(ode_model(), repeats=0)

    def test_evolve_stops_on_overflow(self):
        raw = ode_model(ode=lambda t, y, a: y**2, variables=[{"name": "y", "value": 10.0}], time_span=(0, 10))

        with pytest.warns(OverflowCondition):
            schema, sol = evolve(raw, repeats=5, solver="odeEul")

        assert sol.overflow
        assert schema.variables[0].value == 10.0

    def test_solver_entry_accepted(self):
        schema = normalize(ode_model())
        entry = SolverEntry("odeEul", ode_euler, ModelFamily.ORDINARY)

        sol = solve(schema, (0.0, 1.0), entry)

        assert sol.solver == "odeEul"
