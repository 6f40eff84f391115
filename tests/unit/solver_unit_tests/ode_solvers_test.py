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
Unit Tests for the Ordinary Solver Primitives

Tests cover:
1. Explicit Euler (fixed step, accuracy, statistics)
2. scipy solve_ivp wrapper (methods, tolerances, accuracy)
3. Output hook protocol (flags, cooperative stop)
4. Overflow and failure reporting
5. Run-scoped warning channel
"""

import warnings

import numpy as np
import pytest

from dynctl.exceptions import SolverWarning
from dynctl.solvers.ode_solvers import (
    DEFAULT_ODE_SOLVERS,
    EulerOdeSolver,
    ScipyOdeSolver,
    ode45,
    ode_euler,
)
from dynctl.solvers.solver_base import OUTPUT_DONE, OUTPUT_INIT, OUTPUT_STEP, fixed_time_grid
from dynctl.types.model import ModelFamily

# ============================================================================
# Mock Models
# ============================================================================


def growth(t, y, a):
    """dy/dt = a*y"""
    return a * y


def blow_up(t, y):
    """dy/dt = y^2, finite-time singularity"""
    return y**2


class HookRecorder:
    """Output hook recording flags, optionally asking to stop"""

    def __init__(self, stop_after=None):
        self.flags = []
        self.stop_after = stop_after

    def __call__(self, t, y, flag):
        self.flags.append(flag)
        steps = sum(1 for f in self.flags if f == OUTPUT_STEP)
        return self.stop_after is not None and steps >= self.stop_after


# ============================================================================
# Test Class 1: Time Grid
# ============================================================================


class TestFixedTimeGrid:
    """Test fixed_time_grid"""

    def test_includes_end_point(self):
        t = fixed_time_grid((0.0, 1.0), 0.01)

        assert t.size == 101
        assert t[-1] == pytest.approx(1.0)

    def test_zero_span(self):
        np.testing.assert_array_equal(fixed_time_grid((2.0, 2.0), 0.1), [2.0])

    def test_partial_last_step_dropped(self):
        t = fixed_time_grid((0.0, 1.0), 0.3)

        np.testing.assert_allclose(t, [0.0, 0.3, 0.6, 0.9])


# ============================================================================
# Test Class 2: Explicit Euler
# ============================================================================


class TestEulerOdeSolver:
    """Test the fixed-step Euler primitive"""

    def test_name_and_family(self):
        assert ode_euler.name == "odeEul"
        assert ode_euler.family is ModelFamily.ORDINARY

    def test_matches_closed_form_recurrence(self):
        sol = ode_euler(growth, (0.0, 1.0), np.ones(1), {"initial_step": 0.01}, 2.0)

        assert sol.times.shape == (101,)
        assert sol.states.shape == (1, 101)
        np.testing.assert_allclose(sol.final_state, [1.02**100], rtol=1e-12)

    def test_default_step_is_hundredth_of_span(self):
        sol = ode_euler(growth, (0.0, 2.0), np.ones(1), {}, 1.0)

        assert sol.n_samples == 101
        assert sol.step_size == pytest.approx(0.02)

    def test_derivatives_recorded(self):
        sol = ode_euler(growth, (0.0, 1.0), np.array([1.0, 2.0]), {}, -1.0)

        np.testing.assert_allclose(sol.derivatives, -sol.states)

    def test_statistics(self):
        solver = EulerOdeSolver()
        sol = solver(growth, (0.0, 1.0), np.ones(1), {}, 1.0)

        assert sol.stats["steps_taken"] == 100
        assert sol.stats["steps_failed"] == 0
        assert sol.stats["evaluation_count"] == 101
        assert solver.get_stats()["total_runs"] == 1

        solver.reset_stats()
        assert solver.get_stats()["total_runs"] == 0

    def test_non_positive_step_rejected(self):
        with pytest.raises(ValueError, match="initial_step"):
            ode_euler(growth, (0.0, 1.0), np.ones(1), {"initial_step": -0.1}, 1.0)

    def test_solution_is_read_only(self):
        sol = ode_euler(growth, (0.0, 1.0), np.ones(1), {}, 1.0)

        with pytest.raises(ValueError):
            sol.states[0, 0] = 5.0

    def test_overflow_reported(self):
        with pytest.warns(SolverWarning, match="no longer finite"):
            sol = ode_euler(blow_up, (0.0, 10.0), np.array([10.0]), {"initial_step": 0.1})

        assert not sol.final_state_is_finite()
        assert sol.stats["steps_failed"] == 1
        assert not sol.halted


# ============================================================================
# Test Class 3: scipy Wrapper
# ============================================================================


class TestScipyOdeSolver:
    """Test the solve_ivp wrapper"""

    def test_default_list(self):
        names = [solver.name for solver in DEFAULT_ODE_SOLVERS]

        assert names == ["ode45", "ode23", "ode113", "ode15s", "odeEul"]

    def test_invalid_method(self):
        with pytest.raises(ValueError, match="Invalid method"):
            ScipyOdeSolver("INVALID")

    def test_default_name(self):
        assert ScipyOdeSolver("DOP853").name == "scipy.DOP853"

    def test_exponential_growth(self):
        sol = ode45(growth, (0.0, 5.0), np.ones(1), {}, 2.0)

        np.testing.assert_allclose(sol.final_state, [np.exp(10.0)], rtol=1e-4)
        assert sol.times[0] == 0.0
        assert sol.times[-1] == pytest.approx(5.0)

    @pytest.mark.parametrize("method", ["RK45", "RK23", "DOP853", "Radau", "BDF", "LSODA"])
    def test_all_methods_decay(self, method):
        solver = ScipyOdeSolver(method)
        sol = solver(growth, (0.0, 1.0), np.ones(1), {}, -1.0)

        np.testing.assert_allclose(sol.final_state, [np.exp(-1.0)], rtol=1e-3)

    def test_tighter_tolerance_is_more_accurate(self):
        loose = ode45(growth, (0.0, 5.0), np.ones(1), {"rtol": 1e-3, "atol": 1e-6}, 1.0)
        tight = ode45(growth, (0.0, 5.0), np.ones(1), {"rtol": 1e-10, "atol": 1e-12}, 1.0)

        exact = np.exp(5.0)
        assert abs(tight.final_state[0] - exact) < abs(loose.final_state[0] - exact)
        assert tight.stats["steps_taken"] > loose.stats["steps_taken"]

    def test_first_sample_is_initial_state(self):
        y0 = np.array([0.1, 0.2, 0.3])
        sol = ode45(growth, (0.0, 1.0), y0, {}, 1.0)

        np.testing.assert_array_equal(sol.states[:, 0], y0)

    def test_zero_span(self):
        sol = ode45(growth, (1.0, 1.0), np.ones(2), {}, 1.0)

        assert sol.n_samples == 1
        assert not sol.halted

    def test_failure_becomes_warning(self):
        with pytest.warns(SolverWarning):
            sol = ode45(blow_up, (0.0, 2.0), np.ones(1), {})

        assert sol.stats["steps_failed"] == 1
        assert sol.times[-1] < 2.0

    def test_divergence_keeps_non_finite_sample(self):
        with pytest.warns(SolverWarning):
            sol = ode45(growth, (0.0, 100.0), np.ones(1), {}, 1000.0)

        assert not sol.final_state_is_finite()
        assert np.all(np.diff(sol.times) >= 0)
        assert sol.times[-1] < 100.0
        assert np.all(np.isfinite(sol.states[:, :-1]))

    def test_divergence_without_numpy_warnings(self):
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            ode45(growth, (0.0, 100.0), np.ones(1), {}, 1000.0)

        assert caught
        assert all(issubclass(w.category, SolverWarning) for w in caught)


# ============================================================================
# Test Class 4: Output Hook
# ============================================================================


class TestOutputHook:
    """Test the output hook protocol"""

    @pytest.mark.parametrize("solver", [ode_euler, ode45])
    def test_flag_sequence(self, solver):
        hook = HookRecorder()
        solver(growth, (0.0, 1.0), np.ones(1), {"output_fn": hook}, 1.0)

        assert hook.flags[0] == OUTPUT_INIT
        assert hook.flags[-1] == OUTPUT_DONE
        assert OUTPUT_STEP in hook.flags

    @pytest.mark.parametrize("solver", [ode_euler, ode45])
    def test_stop_request_halts(self, solver):
        hook = HookRecorder(stop_after=3)
        sol = solver(growth, (0.0, 10.0), np.ones(1), {"output_fn": hook}, 1.0)

        assert sol.halted
        assert sol.times[-1] < 10.0
        assert OUTPUT_DONE not in hook.flags

    def test_stop_at_init(self):
        sol = ode_euler(growth, (0.0, 1.0), np.ones(1), {"output_fn": lambda t, y, f: True}, 1.0)

        assert sol.halted
        assert sol.n_samples == 1


# ============================================================================
# Test Class 5: Warning Channel
# ============================================================================


class TestWarningChannel:
    """Test options["warning_fn"]"""

    @pytest.mark.parametrize(
        "solver, model, y0, span",
        [
            (ode_euler, blow_up, [10.0], (0.0, 10.0)),
            (ode45, blow_up, [1.0], (0.0, 2.0)),
        ],
    )
    def test_warnings_sent_to_channel(self, solver, model, y0, span):
        received = []
        options = {"warning_fn": lambda message, category: received.append((message, category))}

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            sol = solver(model, span, np.array(y0), options)

        assert caught == []
        assert received
        assert all(category is SolverWarning for _, category in received)
        assert sol.stats["steps_failed"] == 1
