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
Unit Tests for RecomputeScheduler

Tests cover:
1. Construction and interval validation
2. Start/stop and the context manager
3. Coalescing of changes into ticks
4. Error propagation from the tick thread
"""

import time

import pytest

from dynctl.control.controller import ControllerConfig, SimulationController
from dynctl.control.scheduler import RecomputeScheduler


def growth(t, y, a):
    return a * y


def failing(t, y):
    raise RuntimeError("model exploded")


def make_controller(**config):
    return SimulationController(
        {
            "parameters": [{"name": "a", "value": -1.0}],
            "variables": [{"name": "y", "value": 1.0}],
            "ode": growth,
        },
        ControllerConfig(**config),
    )


def wait_for(condition, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.005)
    return False


# ============================================================================
# Test Class 1: Construction
# ============================================================================


class TestConstruction:
    """Test scheduler construction"""

    def test_default_interval_from_config(self):
        scheduler = RecomputeScheduler(make_controller(tick_interval=0.2))

        assert scheduler.interval == 0.2
        assert not scheduler.running

    @pytest.mark.parametrize("interval", [0.0, -1.0])
    def test_invalid_interval(self, interval):
        with pytest.raises(ValueError, match="positive"):
            RecomputeScheduler(make_controller(), interval=interval)

    def test_repr(self):
        assert "running=False" in repr(RecomputeScheduler(make_controller(), interval=0.01))


# ============================================================================
# Test Class 2: Lifecycle
# ============================================================================


class TestLifecycle:
    """Test start/stop"""

    def test_first_solve(self):
        controller = make_controller()
        scheduler = RecomputeScheduler(controller, interval=0.01).start()
        try:
            assert wait_for(lambda: not controller.solution.is_empty)
            assert scheduler.running
        finally:
            scheduler.stop(timeout=5.0)

        assert not scheduler.running
        assert scheduler.solve_count == 1

    def test_start_twice(self):
        scheduler = RecomputeScheduler(make_controller(), interval=0.01)
        scheduler.start()
        thread = scheduler._thread
        scheduler.start()

        assert scheduler._thread is thread
        scheduler.stop(timeout=5.0)

    def test_context_manager(self):
        controller = make_controller()
        with RecomputeScheduler(controller, interval=0.01) as scheduler:
            assert scheduler.running
            wait_for(lambda: not controller.solution.is_empty)

        assert not scheduler.running

    def test_stop_without_start(self):
        RecomputeScheduler(make_controller(), interval=0.01).stop()


# ============================================================================
# Test Class 3: Coalescing
# ============================================================================


class TestCoalescing:
    """Test that changes between ticks become one solve"""

    def test_burst_is_one_solve(self):
        controller = make_controller()
        scheduler = RecomputeScheduler(controller, interval=0.2).start()
        try:
            assert wait_for(lambda: scheduler.solve_count == 1)
            for a in (-0.5, -0.4, -0.3, -0.2):
                controller.set_parameter_value("a", a)
            assert wait_for(lambda: scheduler.solve_count == 2)
            time.sleep(0.5)
        finally:
            scheduler.stop(timeout=5.0)

        assert scheduler.solve_count == 2
        assert controller.statistics["solve_count"] == 2


# ============================================================================
# Test Class 4: Errors
# ============================================================================


class TestErrors:
    """Test propagation of tick errors"""

    def test_error_reraised_on_stop(self):
        controller = SimulationController(
            {"variables": [{"name": "y", "value": 1.0}], "ode": failing}
        )
        scheduler = RecomputeScheduler(controller, interval=0.01).start()

        assert wait_for(lambda: not scheduler.running)
        assert isinstance(scheduler.error, RuntimeError)
        with pytest.raises(RuntimeError, match="model exploded"):
            scheduler.stop()
        assert scheduler.error is None
