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
Types Module - Type Definitions for odevolve

Central import point for all type definitions. Organized into small
domain-specific modules and re-exported here for convenience.

Module Organization
------------------
- core: Arrays, vectors, Jacobians, callback signatures, buffer checks
- status: Status codes and controller decisions
- methods: Method names, controller flavors, driver options
- trajectories: Time spans, integration results, statistics
"""

from .core import (
    ArrayLike,
    DerivativeFunction,
    DerivativeVector,
    ErrorVector,
    IntegerLike,
    JacobianFunction,
    JacobianMatrix,
    NumpyArray,
    ScalarLike,
    ScaleVector,
    StateVector,
    TimeStep,
    as_optional_buffer,
    as_state_buffer,
    check_dimension,
)
from .methods import ControlFlavor, DriverOptions, StepMethod
from .status import HAdjust, Status
from .trajectories import (
    DriverStats,
    IntegrationResult,
    StateTrajectory,
    StepperStats,
    TimePoints,
    TimeSpan,
)

__all__ = [
    # core
    "ArrayLike",
    "DerivativeFunction",
    "DerivativeVector",
    "ErrorVector",
    "IntegerLike",
    "JacobianFunction",
    "JacobianMatrix",
    "NumpyArray",
    "ScalarLike",
    "ScaleVector",
    "StateVector",
    "TimeStep",
    "as_optional_buffer",
    "as_state_buffer",
    "check_dimension",
    # methods
    "ControlFlavor",
    "DriverOptions",
    "StepMethod",
    # status
    "HAdjust",
    "Status",
    # trajectories
    "DriverStats",
    "IntegrationResult",
    "StateTrajectory",
    "StepperStats",
    "TimePoints",
    "TimeSpan",
]
