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
Method and Configuration Types

Defines the identifiers used to select a stepping algorithm and a
controller flavor, and the option dictionary accepted by the driver
factory.

Usage
-----
>>> from odevolve.types.methods import StepMethod, ControlFlavor
>>>
>>> def build(system, method: StepMethod = "rkf45", control: ControlFlavor = "standard"):
...     ...
"""

from typing import Literal

from typing_extensions import TypedDict

from .core import ArrayLike

StepMethod = Literal[
    "rk2",
    "rk4",
    "rkf45",
    "rkck",
    "rk8pd",
    "rk1imp",
    "rk2imp",
    "rk4imp",
    "bsimp",
    "msadams",
    "msbdf",
]
"""
Canonical stepping algorithm names.

- 'rk2': embedded Runge-Kutta (2, 3)
- 'rk4': classical Runge-Kutta, error by step doubling
- 'rkf45': Runge-Kutta-Fehlberg (4, 5)
- 'rkck': Runge-Kutta Cash-Karp (4, 5)
- 'rk8pd': Runge-Kutta Prince-Dormand (8, 9)
- 'rk1imp': implicit Euler, error by step doubling
- 'rk2imp': implicit midpoint, error by step doubling
- 'rk4imp': 2-stage Gauss-Legendre, error by step doubling
- 'bsimp': implicit Bulirsch-Stoer (Bader-Deuflhard)
- 'msadams': variable-order Adams in Nordsieck form (1-12)
- 'msbdf': variable-order BDF in Nordsieck form (1-5)

Aliases such as 'rk45' or 'bdf' are resolved by
`method_registry.normalize_method_name`.
"""

ControlFlavor = Literal["standard", "y", "yp", "scaled"]
"""
Controller flavor built by the driver constructors.

- 'standard': D_i = eps_abs + eps_rel (a_y |y_i| + a_dydt h |y'_i|)
- 'y': standard with a_y = 1, a_dydt = 0
- 'yp': standard with a_y = 0, a_dydt = 1
- 'scaled': standard with eps_abs scaled per component by scale_abs
"""


class DriverOptions(TypedDict, total=False):
    """
    Options accepted by `create_driver` / `DriverFactory.create`.

    Attributes
    ----------
    hstart : float
        Initial signed step size (default 1e-6 in the direction of use)
    atol : float
        Absolute tolerance eps_abs (alias: eps_abs, default 1e-8)
    rtol : float
        Relative tolerance eps_rel (alias: eps_rel, default 1e-6)
    a_y : float
        State scaling factor (standard and scaled flavors, default 1.0)
    a_dydt : float
        Derivative scaling factor (standard and scaled flavors, default 0.0)
    scale_abs : ArrayLike
        Per-component absolute scale (scaled flavor only)
    hmin : float
        Minimum step magnitude (default 0)
    hmax : float
        Maximum step magnitude (default sys.float_info.max)
    nmax : int
        Maximum number of steps per `apply` (default 0, unlimited)
    """

    hstart: float
    atol: float
    rtol: float
    eps_abs: float
    eps_rel: float
    a_y: float
    a_dydt: float
    scale_abs: ArrayLike
    hmin: float
    hmax: float
    nmax: int
