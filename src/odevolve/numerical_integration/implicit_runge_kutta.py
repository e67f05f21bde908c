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
Implicit Gaussian Runge-Kutta Steppers

Implements the implicit single-step methods:
- RK1IMP: implicit Euler (order 1)
- RK2IMP: implicit midpoint rule (order 2)
- RK4IMP: 2-stage Gauss-Legendre (order 4)

The stage equations

    Z_i = h Σ_j a_ij f(t + c_j h, y + Z_j),    i = 1..s

are solved with a modified Newton iteration whose matrix
I - h (A ⊗ J) is factorized once per step size, with J = df/dy at (t, y).
The iteration stops when the increment is small relative to the desired
error level of the driver's controller, which is why these steppers need a
driver. The error is estimated by step doubling.

All three methods are A-stable and suitable for stiff problems.
"""

from typing import Optional

import numpy as np

from odevolve.numerical_integration.explicit_runge_kutta import step_doubling_error
from odevolve.numerical_integration.linear_solver import (
    factor_iteration_matrix,
    solve_factored,
)
from odevolve.numerical_integration.stepper_base import Stepper
from odevolve.systems.ode_system import ODESystem
from odevolve.types.core import DerivativeVector, ErrorVector, StateVector
from odevolve.types.status import Status

_SQRT3 = np.sqrt(3.0)


class ImplicitGaussStepper(Stepper):
    """
    Implicit Runge-Kutta stepper with modified Newton iteration.

    Subclasses provide the tableau (a, b, c) and the order.

    Class Attributes
    ----------------
    max_iterations : int
        Newton iterations per sub-step before the step is declared failed
    newton_tolerance : float
        Convergence threshold on the increment, measured in units of the
        desired error level
    """

    a: np.ndarray
    b: np.ndarray
    c: np.ndarray
    method_order: int

    can_use_dydt_in = True
    requires_jacobian = True
    requires_driver = True

    max_iterations = 7
    newton_tolerance = 1e-2

    def __init__(self, dimension: int):
        super().__init__(dimension)
        n = self._dimension
        self._stages = len(self.b)
        # y_new = y + d @ Z with d = b A^{-1}, so no extra evaluation is needed
        self._d = np.linalg.solve(self.a.T, self.b)
        self._dfdy = np.zeros((n, n))
        self._dfdt = np.zeros(n)
        self._f0 = np.zeros(n)
        self._fstage = np.zeros((self._stages, n))
        self._y_onestep = np.zeros(n)

    def order(self) -> int:
        return self.method_order

    def _iteration_matrix(self, h: float):
        s, n = self._stages, self._dimension
        matrix = np.eye(s * n) - h * np.kron(self.a, self._dfdy)
        self._count_lu()
        return factor_iteration_matrix(matrix)

    def _solve_stages(
        self,
        system: ODESystem,
        t: float,
        h: float,
        y: np.ndarray,
        factor,
        levels: np.ndarray,
    ) -> Status:
        """Advance y in place by one implicit step of size h."""
        s, n = self._stages, self._dimension
        z = np.zeros((s, n))
        f = self._fstage
        previous_norm = None

        for _ in range(self.max_iterations):
            for i in range(s):
                status = self._evaluate(system, t + self.c[i] * h, y + z[i], f[i])
                if status is not Status.SUCCESS:
                    return status

            residual = z - h * (self.a @ f)
            dz = solve_factored(factor, -residual.ravel())
            if dz is None:
                return Status.FAILURE
            dz = dz.reshape(s, n)
            z += dz

            norm = float(np.max(np.abs(dz) / levels))
            if not np.isfinite(norm):
                return Status.FAILURE
            if norm <= self.newton_tolerance:
                y += self._d @ z
                return Status.SUCCESS
            if previous_norm is not None and norm >= previous_norm:
                # diverging
                return Status.FAILURE
            previous_norm = norm

        return Status.FAILURE

    def _step(
        self,
        t: float,
        h: float,
        y: StateVector,
        yerr: ErrorVector,
        dydt_in: Optional[DerivativeVector],
        dydt_out: Optional[DerivativeVector],
        system: ODESystem,
    ) -> Status:
        f0 = self._f0
        if dydt_in is not None:
            f0[:] = dydt_in
        else:
            status = self._evaluate(system, t, y, f0)
            if status is not Status.SUCCESS:
                return status

        status = self._evaluate_jacobian(system, t, y, self._dfdy, self._dfdt)
        if status is not Status.SUCCESS:
            return status

        levels = self._desired_error_levels(y, f0, h)
        if levels is None:
            return Status.SANITY

        # One full step
        factor = self._iteration_matrix(h)
        if factor is None:
            return Status.FAILURE
        y_onestep = self._y_onestep
        y_onestep[:] = y
        status = self._solve_stages(system, t, h, y_onestep, factor, levels)
        if status is not Status.SUCCESS:
            return status

        # Two half steps
        factor = self._iteration_matrix(0.5 * h)
        if factor is None:
            return Status.FAILURE
        status = self._solve_stages(system, t, 0.5 * h, y, factor, levels)
        if status is not Status.SUCCESS:
            return status
        status = self._solve_stages(system, t + 0.5 * h, 0.5 * h, y, factor, levels)
        if status is not Status.SUCCESS:
            return status

        if dydt_out is not None:
            status = self._evaluate(system, t + h, y, dydt_out)
            if status is not Status.SUCCESS:
                return status

        yerr[:] = step_doubling_error(y, y_onestep, self.method_order)
        return Status.SUCCESS


class RK1ImpStepper(ImplicitGaussStepper):
    """
    Implicit Gaussian first order Runge-Kutta (implicit Euler).

    y_{n+1} = y_n + h f(t_{n+1}, y_{n+1})
    """

    name = "rk1imp"
    a = np.array([[1.0]])
    b = np.array([1.0])
    c = np.array([1.0])
    method_order = 1


class RK2ImpStepper(ImplicitGaussStepper):
    """
    Implicit Gaussian second order Runge-Kutta (implicit midpoint rule).

    y_{n+1} = y_n + h f(t_n + h/2, (y_n + y_{n+1}) / 2)
    """

    name = "rk2imp"
    a = np.array([[0.5]])
    b = np.array([1.0])
    c = np.array([0.5])
    method_order = 2


class RK4ImpStepper(ImplicitGaussStepper):
    """Implicit Gaussian 4th order Runge-Kutta (2-stage Gauss-Legendre)."""

    name = "rk4imp"
    a = np.array(
        [
            [0.25, 0.25 - _SQRT3 / 6.0],
            [0.25 + _SQRT3 / 6.0, 0.25],
        ]
    )
    b = np.array([0.5, 0.5])
    c = np.array([0.5 - _SQRT3 / 6.0, 0.5 + _SQRT3 / 6.0])
    method_order = 4
