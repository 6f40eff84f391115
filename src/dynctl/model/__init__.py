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
Model Module - Schema Normalization and Value Mapping

- validator: SchemaValidator, normalize, verify_model
- value_map: solution index mapping between variables and state vectors
- symbolic: SymbolicModel, raw models from SymPy expressions
"""

from .value_map import (
    SolMapEntry,
    VarMapEntry,
    assign_solution_indices,
    get_values,
    set_values,
    sol_map,
    split_state,
    var_map,
    variable_trajectory,
)
from .validator import ModelReport, SchemaValidator, normalize, verify_model
from .symbolic import SymbolicModel

__all__ = [
    # value_map
    "SolMapEntry",
    "VarMapEntry",
    "assign_solution_indices",
    "get_values",
    "set_values",
    "sol_map",
    "split_state",
    "var_map",
    "variable_trajectory",
    # validator
    "ModelReport",
    "SchemaValidator",
    "normalize",
    "verify_model",
    # symbolic
    "SymbolicModel",
]
