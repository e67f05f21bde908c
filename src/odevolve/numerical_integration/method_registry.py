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
Stepping Method Registry and Normalization
==========================================

Single source of truth for the eleven stepping algorithms:
- Canonical names and the `StepType` enumeration
- Aliases (e.g., 'rk45' → 'rkf45', 'bdf' → 'msbdf')
- Classification (explicit/implicit, Jacobian and driver requirements,
  single-step/multistep)
- Construction of steppers by name
- Method discovery and validation

Usage Examples
--------------
>>> from odevolve.numerical_integration.method_registry import (
...     normalize_method_name, requires_jacobian, create_stepper
... )
>>>
>>> normalize_method_name('RK45')
'rkf45'
>>> requires_jacobian('bdf')
True
>>> step = create_stepper('rk8pd', 3)
>>> step.name
'rk8pd'

**Validation:**

>>> is_valid, error = validate_method('dopri5')
>>> is_valid
False
>>> error.startswith("Unknown method 'dopri5'")
True

Notes
-----
- Normalization is idempotent: normalize(normalize(x)) = normalize(x)
- Names are case-insensitive
"""

from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Type, Union

from odevolve.numerical_integration.bulirsch_stoer import BulirschStoerImplicitStepper
from odevolve.numerical_integration.explicit_runge_kutta import (
    RK2Stepper,
    RK4Stepper,
    RK8PDStepper,
    RKCKStepper,
    RKF45Stepper,
)
from odevolve.numerical_integration.implicit_runge_kutta import (
    RK1ImpStepper,
    RK2ImpStepper,
    RK4ImpStepper,
)
from odevolve.numerical_integration.multistep import MSAdamsStepper, MSBDFStepper
from odevolve.numerical_integration.stepper_base import Stepper


class StepType(Enum):
    """
    The closed set of stepping algorithms.

    Each member carries the stepper class implementing it.

    Examples
    --------
    >>> StepType.RKF45.value
    'rkf45'
    >>> StepType.RKF45.stepper_class.__name__
    'RKF45Stepper'
    """

    RK2 = "rk2"
    RK4 = "rk4"
    RKF45 = "rkf45"
    RKCK = "rkck"
    RK8PD = "rk8pd"
    RK1IMP = "rk1imp"
    RK2IMP = "rk2imp"
    RK4IMP = "rk4imp"
    BSIMP = "bsimp"
    MSADAMS = "msadams"
    MSBDF = "msbdf"

    @property
    def stepper_class(self) -> Type[Stepper]:
        return _STEPPER_CLASSES[self]


_STEPPER_CLASSES: Dict[StepType, Type[Stepper]] = {
    StepType.RK2: RK2Stepper,
    StepType.RK4: RK4Stepper,
    StepType.RKF45: RKF45Stepper,
    StepType.RKCK: RKCKStepper,
    StepType.RK8PD: RK8PDStepper,
    StepType.RK1IMP: RK1ImpStepper,
    StepType.RK2IMP: RK2ImpStepper,
    StepType.RK4IMP: RK4ImpStepper,
    StepType.BSIMP: BulirschStoerImplicitStepper,
    StepType.MSADAMS: MSAdamsStepper,
    StepType.MSBDF: MSBDFStepper,
}


# ============================================================================
# Classification
# ============================================================================

EXPLICIT_METHODS: FrozenSet[str] = frozenset(
    [
        "rk2",  # embedded (2, 3)
        "rk4",  # classical, step doubling
        "rkf45",  # Fehlberg (4, 5)
        "rkck",  # Cash-Karp (4, 5)
        "rk8pd",  # Prince-Dormand (8, 9)
    ]
)

IMPLICIT_METHODS: FrozenSet[str] = frozenset(
    [
        "rk1imp",  # implicit Euler
        "rk2imp",  # implicit midpoint
        "rk4imp",  # Gauss-Legendre, 2 stages
        "bsimp",  # Bader-Deuflhard extrapolation
        "msadams",  # Adams-Moulton, orders 1-12
        "msbdf",  # BDF, orders 1-5
    ]
)

MULTISTEP_METHODS: FrozenSet[str] = frozenset(["msadams", "msbdf"])

ALL_METHODS: FrozenSet[str] = EXPLICIT_METHODS | IMPLICIT_METHODS

# ============================================================================
# Aliases
# ============================================================================

NORMALIZATION_MAP: Dict[str, str] = {
    "rk23": "rk2",
    "rk45": "rkf45",
    "fehlberg": "rkf45",
    "rkf": "rkf45",
    "cash_karp": "rkck",
    "cashkarp": "rkck",
    "rk8": "rk8pd",
    "dop853": "rk8pd",
    "prince_dormand": "rk8pd",
    "backward_euler": "rk1imp",
    "implicit_euler": "rk1imp",
    "implicit_midpoint": "rk2imp",
    "gauss4": "rk4imp",
    "gauss_legendre": "rk4imp",
    "bulirsch_stoer": "bsimp",
    "bader_deuflhard": "bsimp",
    "adams": "msadams",
    "adams_moulton": "msadams",
    "bdf": "msbdf",
}


def normalize_method_name(method: Union[str, StepType]) -> str:
    """
    Normalize a method name or alias to its canonical name.

    Parameters
    ----------
    method : Union[str, StepType]
        Canonical name, alias, or StepType member (case-insensitive)

    Returns
    -------
    str
        Canonical name; unknown names are returned lowercased so that the
        caller can report them

    Examples
    --------
    >>> normalize_method_name('RK45')
    'rkf45'
    >>> normalize_method_name('msbdf')
    'msbdf'
    >>> normalize_method_name(StepType.BSIMP)
    'bsimp'
    """
    if isinstance(method, StepType):
        return method.value
    key = str(method).strip().lower()
    return NORMALIZATION_MAP.get(key, key)


def get_step_type(method: Union[str, StepType]) -> StepType:
    """
    Resolve a method name or alias to its StepType.

    Raises
    ------
    ValueError
        If the method is unknown
    """
    is_valid, error = validate_method(method)
    if not is_valid:
        raise ValueError(error)
    return StepType(normalize_method_name(method))


def create_stepper(method: Union[str, StepType], dimension: int) -> Stepper:
    """
    Allocate a stepper of the given algorithm.

    Parameters
    ----------
    method : Union[str, StepType]
        Method name, alias or StepType
    dimension : int
        System dimension

    Returns
    -------
    Stepper

    Raises
    ------
    ValueError
        If the method is unknown or the dimension is not positive

    Examples
    --------
    >>> step = create_stepper('bdf', 2)
    >>> type(step).__name__
    'MSBDFStepper'
    """
    return get_step_type(method).stepper_class(dimension)


def is_implicit(method: Union[str, StepType]) -> bool:
    return normalize_method_name(method) in IMPLICIT_METHODS


def is_multistep(method: Union[str, StepType]) -> bool:
    return normalize_method_name(method) in MULTISTEP_METHODS


def requires_jacobian(method: Union[str, StepType]) -> bool:
    """Whether the system must provide a Jacobian for this method."""
    return get_step_type(method).stepper_class.requires_jacobian


def requires_driver(method: Union[str, StepType]) -> bool:
    """Whether the stepper only works when attached to a driver."""
    return get_step_type(method).stepper_class.requires_driver


def validate_method(method: Union[str, StepType]) -> Tuple[bool, Optional[str]]:
    """
    Check whether a method name is known.

    Returns
    -------
    is_valid : bool
        True if the name (or alias) resolves to a method
    error_message : str or None
        Description of the problem if invalid, None if valid

    Examples
    --------
    >>> validate_method('rkck')
    (True, None)
    """
    normalized = normalize_method_name(method)
    if normalized in ALL_METHODS:
        return True, None
    return False, (
        f"Unknown method '{method}'. "
        f"Available methods: {', '.join(sorted(ALL_METHODS))}"
    )


def get_method_info(method: Union[str, StepType]) -> Dict[str, Any]:
    """
    Get comprehensive information about a method.

    Returns
    -------
    dict
        - original_name : str - Method name as provided
        - normalized_name : str - Canonical name
        - is_implicit : bool
        - is_multistep : bool
        - requires_jacobian : bool
        - requires_driver : bool
        - can_use_dydt_in : bool
        - category : str - 'explicit' or 'implicit'

    Examples
    --------
    >>> info = get_method_info('bdf')
    >>> info['normalized_name'], info['requires_jacobian']
    ('msbdf', True)
    """
    step_type = get_step_type(method)
    cls = step_type.stepper_class
    implicit = step_type.value in IMPLICIT_METHODS
    return {
        "original_name": method.value if isinstance(method, StepType) else method,
        "normalized_name": step_type.value,
        "is_implicit": implicit,
        "is_multistep": step_type.value in MULTISTEP_METHODS,
        "requires_jacobian": cls.requires_jacobian,
        "requires_driver": cls.requires_driver,
        "can_use_dydt_in": cls.can_use_dydt_in,
        "category": "implicit" if implicit else "explicit",
    }


def list_all_methods() -> Dict[str, List[str]]:
    """
    List all methods by category.

    Returns
    -------
    dict
        - explicit : list
        - implicit : list
        - multistep : list
        - aliases : list
    """
    return {
        "explicit": sorted(EXPLICIT_METHODS),
        "implicit": sorted(IMPLICIT_METHODS),
        "multistep": sorted(MULTISTEP_METHODS),
        "aliases": sorted(NORMALIZATION_MAP),
    }
