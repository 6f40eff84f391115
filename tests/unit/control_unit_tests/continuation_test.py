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
Unit Tests for the Continuation Helpers

Tests cover:
1. continue_initial_values (exact copy, refusal cases, limits check)
2. history_from_solution and anchor_history (interpolation, time shift,
   truncation, perturbed start)
3. perturb_initial_values (bounds, schema untouched)
4. hold_noise_samples
"""

import warnings

import numpy as np
import pytest

from dynctl.control.continuation import (
    InterpolatedHistory,
    anchor_history,
    can_continue,
    continue_initial_values,
    history_from_solution,
    hold_noise_samples,
    perturb_initial_values,
)
from dynctl.exceptions import HistoryTruncation, OutOfLimitsWarning
from dynctl.model.validator import normalize
from dynctl.types.trajectories import Solution


def rhs(t, y):
    return -y


@pytest.fixture
def schema():
    """Vector and matrix variables, six state components"""
    return normalize(
        {
            "variables": [
                {"name": "x", "value": [0.0, 0.0], "limit": [-10, 10]},
                {"name": "M", "value": np.zeros((2, 2)), "limit": [-10, 10]},
            ],
            "ode": rhs,
        }
    )


def make_solution(final, **kwargs):
    final = np.asarray(final, dtype=float)
    states = np.column_stack([np.zeros_like(final), final])
    return Solution(times=np.array([0.0, 1.0]), states=states, **kwargs)


# ============================================================================
# Test Class 1: Initial Value Continuation
# ============================================================================


class TestContinueInitialValues:
    """Test continue_initial_values"""

    def test_values_copied_exactly(self, schema):
        final = np.array([0.1, 1.0 / 3.0, np.pi, np.e, -2.5, 7.0])
        advanced = continue_initial_values(schema, make_solution(final))

        assert advanced
        np.testing.assert_array_equal(schema.initial_state(), final)
        np.testing.assert_array_equal(schema.variables[1].value, [[np.pi, np.e], [-2.5, 7.0]])

    def test_shapes_preserved(self, schema):
        continue_initial_values(schema, make_solution(np.arange(6.0)))

        assert schema.variables[0].value.shape == (2,)
        assert schema.variables[1].value.shape == (2, 2)

    def test_empty_solution(self, schema):
        assert not continue_initial_values(schema, Solution.empty())
        assert not continue_initial_values(schema, None)

    def test_non_finite_final_state(self, schema):
        final = np.array([1.0, np.inf, 0.0, 0.0, 0.0, 0.0])

        assert not continue_initial_values(schema, make_solution(final))
        np.testing.assert_array_equal(schema.initial_state(), np.zeros(6))

    def test_halted_run(self, schema):
        assert not continue_initial_values(schema, make_solution(np.ones(6), halted=True))

    def test_out_of_limits(self):
        schema = normalize({"variables": [{"name": "y", "value": 5.0, "limit": [0, 1]}], "ode": rhs})

        with pytest.warns(OutOfLimitsWarning):
            advanced = continue_initial_values(schema, make_solution([0.5]))

        assert not advanced
        assert schema.variables[0].value == 5.0

    def test_out_of_limits_sent_to_warn_channel(self):
        schema = normalize({"variables": [{"name": "y", "value": 5.0, "limit": [0, 1]}], "ode": rhs})
        received = []

        continue_initial_values(schema, make_solution([0.5]), warn=lambda m, c: received.append(c))

        assert received == [OutOfLimitsWarning]

    def test_size_mismatch(self, schema):
        assert not continue_initial_values(schema, make_solution(np.ones(3)))


# ============================================================================
# Test Class 2: Delay History
# ============================================================================


class TestHistory:
    """Test history_from_solution"""

    @pytest.fixture
    def previous(self):
        t = np.array([0.0, 1.0, 2.0])
        return Solution(times=t, states=np.vstack([t, 10 * t]))

    def test_constant_fallback(self):
        h = history_from_solution(None, 0.0, np.array([1.0, 2.0]))

        np.testing.assert_array_equal(h(-3.0), [1.0, 2.0])

    def test_fallback_when_previous_overflowed(self, previous):
        broken = Solution(times=[0.0, 1.0], states=[[1.0, np.nan]])
        h = history_from_solution(broken, 0.0, np.array([4.0]))

        np.testing.assert_array_equal(h(-1.0), [4.0])

    def test_interpolates_previous_run(self, previous):
        h = history_from_solution(previous, 2.0, np.zeros(2))

        assert isinstance(h, InterpolatedHistory)
        np.testing.assert_allclose(h(1.5), [1.5, 15.0])
        np.testing.assert_allclose(h(2.0), [2.0, 20.0])

    def test_time_shift(self, previous):
        # the new run starts at 5, where the previous one ended
        h = history_from_solution(previous, 5.0, np.zeros(2))

        np.testing.assert_allclose(h(4.5), [1.5, 15.0])
        np.testing.assert_allclose(h(3.0), [0.0, 0.0])

    def test_truncation_warns_once(self, previous):
        h = history_from_solution(previous, 2.0, np.zeros(2))

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            first = h(-1.0)
            h(-2.0)

        truncations = [w for w in caught if issubclass(w.category, HistoryTruncation)]
        assert len(truncations) == 1
        assert h.truncated
        np.testing.assert_allclose(first, [0.0, 0.0])

    def test_truncation_sent_to_warn_channel(self, previous):
        received = []
        h = history_from_solution(
            previous, 2.0, np.zeros(2), warn=lambda message, category: received.append(category)
        )

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            h(-1.0)

        assert caught == []
        assert received == [HistoryTruncation]

    def test_anchor_at_start_time(self, previous):
        h = anchor_history(history_from_solution(previous, 2.0, np.zeros(2)), 2.0, [7.0, 8.0])

        np.testing.assert_array_equal(h(2.0), [7.0, 8.0])
        np.testing.assert_allclose(h(1.5), [1.5, 15.0])

    def test_single_sample_previous_run(self):
        previous = Solution(times=[0.0], states=[[3.0]])
        h = history_from_solution(previous, 0.0, np.zeros(1))

        np.testing.assert_array_equal(h(0.0), [3.0])


# ============================================================================
# Test Class 3: Perturbation
# ============================================================================


class TestPerturbation:
    """Test perturb_initial_values"""

    def test_bounded_by_limit_width(self, schema):
        rng = np.random.default_rng(0)
        for _ in range(200):
            y0 = perturb_initial_values(schema, rng)
            # limit width 20, jitter at most 2.5% of it
            assert np.all(np.abs(y0) <= 0.5)

    def test_schema_not_modified(self, schema):
        perturb_initial_values(schema, np.random.default_rng(1))

        np.testing.assert_array_equal(schema.initial_state(), np.zeros(6))

    def test_values_change(self, schema):
        y0 = perturb_initial_values(schema, np.random.default_rng(2))

        assert y0.shape == (6,)
        assert np.any(y0 != 0.0)

    def test_zero_scale(self, schema):
        y0 = perturb_initial_values(schema, np.random.default_rng(3), scale=0.0)

        np.testing.assert_array_equal(y0, np.zeros(6))


# ============================================================================
# Test Class 4: Noise Hold
# ============================================================================


class TestHoldNoise:
    """Test hold_noise_samples"""

    def test_recovers_samples(self):
        samples = np.random.default_rng(0).standard_normal((2, 11))
        t = np.linspace(0.0, 1.0, 11)
        sol = Solution(times=t, states=np.zeros((1, 11)), increments=np.sqrt(0.1) * samples)

        np.testing.assert_allclose(hold_noise_samples(sol), samples)

    def test_no_increments(self):
        sol = Solution(times=[0.0, 1.0], states=[[0.0, 1.0]])

        assert hold_noise_samples(sol) is None

    def test_halted_run_not_held(self):
        sol = Solution(times=[0.0, 1.0], states=[[0.0, 1.0]], increments=[[0.1, 0.2]], halted=True)

        assert hold_noise_samples(sol) is None
        assert not can_continue(sol)
