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
Core Types - Fundamental Building Blocks

Defines the most basic types used throughout the integration engine:
- Array and scalar types
- Semantic vector types (state, derivative, error estimate)
- Matrix types (Jacobian)
- Function signatures for the right-hand side and its Jacobian
- Buffer validation helpers shared by every component

All state lives in one-dimensional float64 NumPy arrays of the system
dimension n. Jacobians are (n, n) arrays in row-major order.

Usage
-----
>>> from odevolve.types.core import StateVector, DerivativeFunction
>>>
>>> def decay(t: float, y: StateVector) -> StateVector:
...     return -y
"""

from typing import Callable, Optional, Tuple, Union

import numpy as np

# ============================================================================
# Basic Array Types
# ============================================================================

ArrayLike = Union[np.ndarray, list, tuple]
"""
Anything NumPy can turn into an array.

Accepted where the engine copies the data (initial conditions, scale
vectors). In-place buffers must be real float64 ndarrays, see
`as_state_buffer`.
"""

NumpyArray = np.ndarray

ScalarLike = Union[float, int, np.floating, np.integer]
"""
Scalar value (time, step size, tolerance).

Examples
--------
>>> h: ScalarLike = 1e-3
>>> eps_abs: ScalarLike = 1e-8
"""

IntegerLike = Union[int, np.integer]

# ============================================================================
# Vector Types - Semantic Naming by Role
# ============================================================================

StateVector = np.ndarray
"""
State vector y(t) with shape (n,).

Steppers, evolvers and drivers update it in place.
"""

DerivativeVector = np.ndarray
"""
Derivative vector dy/dt = f(t, y) with shape (n,).
"""

ErrorVector = np.ndarray
"""
Per-component local error estimate of one step, shape (n,).

Same units as the state.
"""

ScaleVector = np.ndarray
"""
Per-component absolute error scale s_i used by the scaled controller.
"""

# ============================================================================
# Matrix Types
# ============================================================================

JacobianMatrix = np.ndarray
"""
Jacobian df/dy with shape (n, n), row-major: J[i, j] = df_i/dy_j.
"""

# ============================================================================
# Function Signatures
# ============================================================================

DerivativeFunction = Callable[[float, StateVector], ArrayLike]
"""
Right-hand side f(t, y) -> dy/dt.

The function must be pure in (t, y). To abort a step it raises
`FunctionEvaluationError`; to abort the integration it raises
`BadFunctionError`.

Examples
--------
>>> def oscillator(t, y):
...     return np.array([y[1], -y[0]])
"""

JacobianFunction = Callable[[float, StateVector], Tuple[ArrayLike, ArrayLike]]
"""
Jacobian callback (t, y) -> (dfdy, dfdt).

dfdy may be returned as an (n, n) array or as a flat row-major array
of length n*n. dfdt is the explicit time derivative of f, length n.

Examples
--------
>>> def oscillator_jac(t, y):
...     dfdy = np.array([[0.0, 1.0], [-1.0, 0.0]])
...     return dfdy, np.zeros(2)
"""

TimeStep = float
"""Signed step size h. Its sign gives the integration direction."""


# ============================================================================
# Buffer Validation
# ============================================================================


def as_state_buffer(array: np.ndarray, dimension: int, name: str = "y") -> np.ndarray:
    """
    Validate an in-place buffer.

    The engine writes results into caller-owned arrays, so the buffer has
    to be a writeable one-dimensional float64 ndarray of exactly the
    system dimension. Nothing is converted: a silent copy would make the
    in-place update invisible to the caller.

    Parameters
    ----------
    array : np.ndarray
        Buffer to check
    dimension : int
        Required length
    name : str
        Argument name used in error messages

    Returns
    -------
    np.ndarray
        The same array object

    Raises
    ------
    TypeError
        If the buffer is not a float64 ndarray
    ValueError
        If the shape does not match the dimension or the array is read-only

    Examples
    --------
    >>> y = np.array([1.0, 0.0])
    >>> as_state_buffer(y, 2) is y
    True
    >>> as_state_buffer(np.zeros(3), 2)
    Traceback (most recent call last):
        ...
    ValueError: y must have shape (2,), got (3,)
    """
    if not isinstance(array, np.ndarray):
        raise TypeError(f"{name} must be a numpy.ndarray, got {type(array).__name__}")
    if array.dtype != np.float64:
        raise TypeError(f"{name} must have dtype float64, got {array.dtype}")
    if array.shape != (dimension,):
        raise ValueError(f"{name} must have shape ({dimension},), got {array.shape}")
    if not array.flags.writeable:
        raise ValueError(f"{name} must be writeable")
    return array


def as_optional_buffer(
    array: Optional[np.ndarray], dimension: int, name: str
) -> Optional[np.ndarray]:
    """Same as `as_state_buffer` but lets None through."""
    if array is None:
        return None
    return as_state_buffer(array, dimension, name)


def check_dimension(dimension: IntegerLike, name: str = "dimension") -> int:
    """
    Validate a system dimension.

    Raises
    ------
    ValueError
        If the dimension is not a positive integer
    """
    if isinstance(dimension, bool) or not isinstance(dimension, (int, np.integer)):
        raise ValueError(f"{name} must be a positive integer, got {dimension!r}")
    if dimension <= 0:
        raise ValueError(f"{name} must be a positive integer, got {dimension}")
    return int(dimension)
