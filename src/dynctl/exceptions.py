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
Exceptions and Warning Categories

Fatal problems raise exceptions; non-fatal run conditions are reported
through the standard ``warnings`` machinery with dedicated categories so
callers can filter or escalate them.

Taxonomy
--------
- SchemaError: malformed or ambiguous model (fatal, synchronous)
- SolverWarning: non-fatal problem reported by a solver primitive
- OverflowCondition: a run ended with non-finite values (halts the engine)
- HistoryTruncation: delay continuation needed history before the
  previous run's start (lag clamped)
- OutOfLimitsWarning: continuation declined to advance initial values
"""


class SchemaError(ValueError):
    """Raised when a model definition is malformed or ambiguous."""

    pass


class SimulationWarning(UserWarning):
    """Base category for all warnings issued by the engine."""

    pass


class SolverWarning(SimulationWarning):
    """Non-fatal problem reported by a solver primitive during a run."""

    pass


class OverflowCondition(SimulationWarning):
    """
    A run produced non-finite state values.

    The controller halts when this is issued; the caller must clear the
    halt explicitly before any further solve is attempted.
    """

    pass


class HistoryTruncation(SimulationWarning):
    """Delay history was requested before the previous run's start."""

    pass


class OutOfLimitsWarning(SimulationWarning):
    """Initial values were not advanced because they lie beyond their limits."""

    pass
