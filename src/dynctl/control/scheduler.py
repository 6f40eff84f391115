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
Recompute Scheduler - Periodic Tick Thread

Calls ``controller.tick()`` at a fixed interval on a daemon thread, so
that model changes made between two ticks are coalesced into one solve.

Examples
--------
>>> scheduler = RecomputeScheduler(controller, interval=0.05)
>>> scheduler.start()
>>> controller.set_parameter_value("a", 3.0)   # solved on the next tick
>>> scheduler.stop()
"""

import threading
from typing import Optional

from dynctl.control.controller import SimulationController


class RecomputeScheduler:
    """
    Daemon thread ticking a controller.

    If a tick raises, the thread stops and the exception is kept in
    ``error``; ``stop()`` re-raises it in the calling thread.

    Parameters
    ----------
    controller : SimulationController
        Controller to tick
    interval : Optional[float]
        Tick period in seconds (default: ``controller.config.tick_interval``)
    """

    def __init__(self, controller: SimulationController, interval: Optional[float] = None):
        if interval is None:
            interval = controller.config.tick_interval
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.controller = controller
        self.interval = float(interval)
        self.error: Optional[BaseException] = None
        self.solve_count = 0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> "RecomputeScheduler":
        if self.running:
            return self
        self._stop_event.clear()
        self.error = None
        self._thread = threading.Thread(
            target=self._loop, name="dynctl-recompute", daemon=True
        )
        self._thread.start()
        return self

    def _loop(self):
        while not self._stop_event.wait(self.interval):
            try:
                if self.controller.tick():
                    self.solve_count += 1
            except Exception as e:
                self.error = e
                return

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop the thread and wait for it (a running solve finishes first).

        Raises
        ------
        Exception
            The exception that stopped the thread, if any
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        if self.error is not None:
            error, self.error = self.error, None
            raise error

    def __enter__(self) -> "RecomputeScheduler":
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False

    def __repr__(self) -> str:
        return f"RecomputeScheduler(interval={self.interval}, running={self.running})"
