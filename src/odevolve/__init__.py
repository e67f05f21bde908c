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
odevolve - Adaptive Initial-Value ODE Integration
==================================================

>>> import numpy as np
>>> from odevolve import ODESystem, Driver, Status
>>>
>>> system = ODESystem(lambda t, y: -y, 1)
>>> driver = Driver.y_new(system, "rkf45", 1e-6, 1e-10, 1e-10)
>>> y = np.array([1.0])
>>> status, t = driver.apply(0.0, 5.0, y)
>>> status is Status.SUCCESS
True
"""

from .numerical_integration import (
    Driver,
    DriverFactory,
    Evolver,
    ScaledControl,
    StandardControl,
    Stepper,
    StepType,
    create_driver,
    create_stepper,
)
from .systems import BadFunctionError, FunctionEvaluationError, ODESystem
from .types import HAdjust, Status

__version__ = "0.1.0"

__all__ = [
    "ODESystem",
    "FunctionEvaluationError",
    "BadFunctionError",
    "Status",
    "HAdjust",
    "StepType",
    "Stepper",
    "StandardControl",
    "ScaledControl",
    "Evolver",
    "Driver",
    "DriverFactory",
    "create_driver",
    "create_stepper",
]
