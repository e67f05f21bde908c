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
Numerical Integration
=====================

Adaptive step-size integration of initial-value problems
dy/dt = f(t, y), built from four layers:

- Stepper: one step of a fixed size with a local error estimate
- Controller: accept/reject decision and next step size
- Evolver: retry loop advancing by one accepted step
- Driver: repeated evolution to a target time with hmin/hmax/nmax limits

>>> from odevolve.numerical_integration import Driver, create_driver
>>>
>>> driver = Driver.y_new(system, "rkf45", 1e-6, 1e-10, 1e-10)
>>> status, t = driver.apply(0.0, 5.0, y)
>>>
>>> # Or from an options dict
>>> driver = create_driver(system, method="bdf", rtol=1e-6, atol=1e-9)

Available Steppers
------------------
**Explicit:** rk2, rk4, rkf45, rkck, rk8pd

**Implicit (Jacobian required):** rk1imp, rk2imp, rk4imp, bsimp, msbdf

**Implicit (no Jacobian):** msadams

Authors
-------
Gil Benezer

License
-------
GNU Affero General Public License v3.0
"""

from .bulirsch_stoer import BulirschStoerImplicitStepper
from .driver import Driver, DriverFactory, create_driver
from .evolve import Evolver
from .explicit_runge_kutta import (
    ButcherTableau,
    EmbeddedRungeKuttaStepper,
    RK2Stepper,
    RK4Stepper,
    RK8PDStepper,
    RKCKStepper,
    RKF45Stepper,
)
from .implicit_runge_kutta import (
    ImplicitGaussStepper,
    RK1ImpStepper,
    RK2ImpStepper,
    RK4ImpStepper,
)
from .method_registry import (
    StepType,
    create_stepper,
    get_method_info,
    get_step_type,
    is_implicit,
    is_multistep,
    list_all_methods,
    normalize_method_name,
    requires_driver,
    requires_jacobian,
    validate_method,
)
from .multistep import MSAdamsStepper, MSBDFStepper, NordsieckStepper
from .step_control import (
    ScaledControl,
    StandardControl,
    scaled_new,
    standard_new,
    y_new,
    yp_new,
)
from .stepper_base import Stepper

__all__ = [
    # Driver
    "Driver",
    "DriverFactory",
    "create_driver",
    # Evolver
    "Evolver",
    # Controllers
    "StandardControl",
    "ScaledControl",
    "standard_new",
    "y_new",
    "yp_new",
    "scaled_new",
    # Steppers
    "Stepper",
    "ButcherTableau",
    "EmbeddedRungeKuttaStepper",
    "RK2Stepper",
    "RK4Stepper",
    "RKF45Stepper",
    "RKCKStepper",
    "RK8PDStepper",
    "ImplicitGaussStepper",
    "RK1ImpStepper",
    "RK2ImpStepper",
    "RK4ImpStepper",
    "BulirschStoerImplicitStepper",
    "NordsieckStepper",
    "MSAdamsStepper",
    "MSBDFStepper",
    # Registry
    "StepType",
    "create_stepper",
    "get_step_type",
    "normalize_method_name",
    "is_implicit",
    "is_multistep",
    "requires_jacobian",
    "requires_driver",
    "validate_method",
    "get_method_info",
    "list_all_methods",
]
