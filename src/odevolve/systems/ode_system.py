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
ODE System - Description of dy/dt = f(t, y)

Wraps the user-supplied right-hand side (and optional Jacobian) into a
fixed-dimension, immutable evaluation adapter. Every stepper talks to the
user's code exclusively through `ODESystem.evaluate` and
`ODESystem.evaluate_jacobian`, which:

- validate the shape of everything the callbacks return,
- write the result into preallocated buffers,
- turn `FunctionEvaluationError` / `BadFunctionError` raised by the
  callbacks into `Status` values.

Any other exception raised by a callback propagates unchanged.

Examples
--------
>>> def van_der_pol(t, y, mu=10.0):
...     return np.array([y[1], -y[0] - mu * y[1] * (y[0] ** 2 - 1.0)])
>>>
>>> def van_der_pol_jac(t, y, mu=10.0):
...     dfdy = np.array([
...         [0.0, 1.0],
...         [-2.0 * mu * y[0] * y[1] - 1.0, -mu * (y[0] ** 2 - 1.0)],
...     ])
...     return dfdy, np.zeros(2)
>>>
>>> system = ODESystem(van_der_pol, 2, jacobian=van_der_pol_jac)
>>> system(0.0, np.array([1.0, 0.0]))
array([ 0., -1.])
"""

from typing import Optional

import numpy as np

from odevolve.systems.exceptions import FunctionEvaluationError
from odevolve.types.core import (
    DerivativeFunction,
    JacobianFunction,
    StateVector,
    check_dimension,
)
from odevolve.types.status import Status


class ODESystem:
    """
    Immutable description of a system of first-order ODEs.

    Parameters
    ----------
    function : DerivativeFunction
        Right-hand side f(t, y) returning an array of length `dimension`
    dimension : int
        Number of equations n
    jacobian : Optional[JacobianFunction]
        Callback (t, y) -> (dfdy, dfdt). Required by the implicit steppers
        (rk1imp, rk2imp, rk4imp, bsimp, msbdf).

    Raises
    ------
    TypeError
        If function (or jacobian) is not callable
    ValueError
        If dimension is not a positive integer

    Examples
    --------
    >>> system = ODESystem(lambda t, y: -y, 1)
    >>> system.dimension
    1
    >>> system.has_jacobian
    False
    """

    __slots__ = ("_function", "_jacobian", "_dimension")

    def __init__(
        self,
        function: DerivativeFunction,
        dimension: int,
        jacobian: Optional[JacobianFunction] = None,
    ):
        if not callable(function):
            raise TypeError("function must be callable")
        if jacobian is not None and not callable(jacobian):
            raise TypeError("jacobian must be callable or None")

        self._function = function
        self._jacobian = jacobian
        self._dimension = check_dimension(dimension)

    # ========================================================================
    # Read-only properties
    # ========================================================================

    @property
    def dimension(self) -> int:
        """Number of equations."""
        return self._dimension

    @property
    def function(self) -> DerivativeFunction:
        return self._function

    @property
    def jacobian(self) -> Optional[JacobianFunction]:
        return self._jacobian

    @property
    def has_jacobian(self) -> bool:
        return self._jacobian is not None

    # ========================================================================
    # Evaluation adapters
    # ========================================================================

    def evaluate(self, t: float, y: StateVector, out: np.ndarray) -> Status:
        """
        Evaluate f(t, y) into `out`.

        Parameters
        ----------
        t : float
            Time
        y : StateVector
            State (n,). Passed to the callback as a read-only view so a
            misbehaving callback cannot corrupt the stepper state.
        out : np.ndarray
            Destination buffer (n,)

        Returns
        -------
        Status
            SUCCESS, or the status carried by a `FunctionEvaluationError`
            raised by the callback. On failure `out` is left untouched.

        Raises
        ------
        ValueError
            If the callback returns an array of the wrong shape
        """
        try:
            dydt = self._function(t, _readonly(y))
        except FunctionEvaluationError as error:
            return error.status

        dydt = np.asarray(dydt, dtype=np.float64)
        if dydt.shape != (self._dimension,):
            raise ValueError(
                f"Derivative function returned shape {dydt.shape}, "
                f"expected ({self._dimension},)"
            )
        out[:] = dydt
        return Status.SUCCESS

    def evaluate_jacobian(
        self, t: float, y: StateVector, dfdy: np.ndarray, dfdt: np.ndarray
    ) -> Status:
        """
        Evaluate the Jacobian into `dfdy` (n, n) and `dfdt` (n,).

        Returns
        -------
        Status
            SUCCESS; BAD_FUNCTION if the system has no Jacobian; otherwise
            the status carried by a `FunctionEvaluationError`.

        Raises
        ------
        ValueError
            If the callback returns arrays of the wrong shape
        """
        if self._jacobian is None:
            return Status.BAD_FUNCTION

        try:
            jac, dt_part = self._jacobian(t, _readonly(y))
        except FunctionEvaluationError as error:
            return error.status

        n = self._dimension
        jac = np.asarray(jac, dtype=np.float64)
        if jac.shape == (n * n,):
            jac = jac.reshape(n, n)
        if jac.shape != (n, n):
            raise ValueError(f"Jacobian returned dfdy of shape {jac.shape}, expected ({n}, {n})")

        dt_part = np.asarray(dt_part, dtype=np.float64)
        if dt_part.shape != (n,):
            raise ValueError(f"Jacobian returned dfdt of shape {dt_part.shape}, expected ({n},)")

        dfdy[:, :] = jac
        dfdt[:] = dt_part
        return Status.SUCCESS

    def __call__(self, t: float, y: StateVector) -> np.ndarray:
        """
        Convenience evaluation returning a new array.

        Raises
        ------
        FunctionEvaluationError
            Re-raised from the callback
        """
        y = np.asarray(y, dtype=np.float64)
        dydt = np.asarray(self._function(t, y), dtype=np.float64)
        if dydt.shape != (self._dimension,):
            raise ValueError(
                f"Derivative function returned shape {dydt.shape}, "
                f"expected ({self._dimension},)"
            )
        return dydt

    def __setattr__(self, name, value):
        if hasattr(self, "_dimension"):
            raise AttributeError("ODESystem is immutable")
        object.__setattr__(self, name, value)

    def __repr__(self) -> str:
        return (
            f"ODESystem(dimension={self._dimension}, "
            f"jacobian={'yes' if self.has_jacobian else 'no'})"
        )


def _readonly(y: np.ndarray) -> np.ndarray:
    view = y.view()
    view.flags.writeable = False
    return view
