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
Implicit Bulirsch-Stoer Stepper (Bader-Deuflhard)

The step of size H is computed several times with the linearly implicit
(semi-implicit) midpoint rule using an increasing number of sub-steps
taken from the Bader-Deuflhard sequence 2, 6, 10, 14, 22, 34, 50, 70.
The results are extrapolated to zero sub-step size with polynomial
extrapolation in (H/n)^2. The difference between the last two diagonal
entries of the extrapolation table is the error estimate.

The number of extrapolation columns is chosen once, at construction, from
the work-per-accuracy model of Deuflhard for a target accuracy of
sqrt(machine epsilon). The stepper needs the Jacobian but no driver.

References
----------
G. Bader and P. Deuflhard, "A semi-implicit mid-point rule for stiff
systems of ordinary differential equations", Numer. Math. 41, 373-398
(1983).
"""

from typing import List, Optional, Tuple

import numpy as np

from odevolve.numerical_integration.linear_solver import (
    factor_iteration_matrix,
    solve_factored,
)
from odevolve.numerical_integration.stepper_base import Stepper
from odevolve.systems.ode_system import ODESystem
from odevolve.types.core import DerivativeVector, ErrorVector, StateVector
from odevolve.types.status import Status

BADER_DEUFLHARD_SEQUENCE = (2, 6, 10, 14, 22, 34, 50, 70)


def deuflhard_column_choice(eps: float, dimension: int) -> int:
    """
    Index of the last extrapolation row worth computing.

    Compares the estimated work A_{k+1} of reaching row k+1 with the work
    of row k weighted by the expected convergence factor alpha(k, k+1),
    and stops at the first row where going further does not pay off.

    Parameters
    ----------
    eps : float
        Target relative accuracy
    dimension : int
        System dimension (the Jacobian costs `dimension` evaluations)

    Returns
    -------
    int
        k_choice in [0, len(sequence) - 2]
    """
    sequence = BADER_DEUFLHARD_SEQUENCE
    length = len(sequence)
    small_eps = 0.25 * eps

    work = np.zeros(length)
    work[0] = sequence[0] + 1.0
    for k in range(length - 1):
        work[k + 1] = work[k] + sequence[k + 1]

    alpha = np.ones((length, length))
    for i in range(length - 1):
        for k in range(i):
            exponent = (work[k + 1] - work[i + 1]) / ((work[i + 1] - work[0] + 1.0) * (2 * k + 1))
            alpha[k, i] = small_eps**exponent

    work[0] += dimension
    for k in range(length - 1):
        work[k + 1] = work[k] + sequence[k + 1]

    for k in range(length - 2):
        if work[k + 2] > work[k + 1] * alpha[k, k + 1]:
            return k
    return length - 2


class BulirschStoerImplicitStepper(Stepper):
    """
    Implicit Bulirsch-Stoer method of Bader and Deuflhard.

    Generally suitable for stiff problems. Requires the Jacobian.

    Algorithm (semi-implicit midpoint with m sub-steps, s = H/m):
        W = I - s J
        Δ_0 = W^{-1} s (f(t, y) + s ∂f/∂t)
        y_1 = y + Δ_0
        Δ_k = Δ_{k-1} + 2 W^{-1} (s f(t_k, y_k) - Δ_{k-1}),  y_{k+1} = y_k + Δ_k
        y_m = y_{m-1}... + W^{-1} (s f(t_m, y_m) - Δ_{m-1})  (smoothing last step)
    """

    name = "bsimp"
    can_use_dydt_in = True
    requires_jacobian = True

    def __init__(self, dimension: int):
        super().__init__(dimension)
        n = self._dimension
        self._k_choice = deuflhard_column_choice(np.sqrt(np.finfo(float).eps), n)
        self._order = 2 * self._k_choice
        self._dfdy = np.zeros((n, n))
        self._dfdt = np.zeros(n)
        self._yp = np.zeros(n)
        self._fwork = np.zeros(n)

    @property
    def k_choice(self) -> int:
        return self._k_choice

    def order(self) -> int:
        return self._order

    def _semi_implicit_midpoint(
        self,
        system: ODESystem,
        t0: float,
        h_total: float,
        y0: np.ndarray,
        substeps: int,
    ) -> Tuple[Status, Optional[np.ndarray]]:
        """
        Semi-implicit midpoint solution with `substeps` sub-steps.

        FAILURE when the iteration matrix is singular or the solution runs
        away (summed relative change above 100 * dimension).
        """
        n = self._dimension
        s = h_total / substeps
        max_relative_change = 100.0 * n

        factor = factor_iteration_matrix(np.eye(n) - s * self._dfdy)
        self._count_lu()
        if factor is None:
            return Status.FAILURE, None

        delta = solve_factored(factor, s * (self._yp + s * self._dfdt))
        if delta is None:
            return Status.FAILURE, None

        scale = np.maximum(np.abs(y0), 1.0)
        if np.sum(np.abs(delta) / scale) > max_relative_change:
            return Status.FAILURE, None

        y_tmp = y0 + delta
        t = t0 + s
        f = self._fwork
        status = self._evaluate(system, t, y_tmp, f)
        if status is not Status.SUCCESS:
            return status, None

        for _ in range(1, substeps):
            correction = solve_factored(factor, s * f - delta)
            if correction is None:
                return Status.FAILURE, None
            delta = delta + 2.0 * correction
            y_tmp = y_tmp + delta
            t += s
            status = self._evaluate(system, t, y_tmp, f)
            if status is not Status.SUCCESS:
                return status, None

        correction = solve_factored(factor, s * f - delta)
        if correction is None:
            return Status.FAILURE, None
        return Status.SUCCESS, y_tmp + correction

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
        if dydt_in is not None:
            self._yp[:] = dydt_in
        else:
            status = self._evaluate(system, t, y, self._yp)
            if status is not Status.SUCCESS:
                return status

        status = self._evaluate_jacobian(system, t, y, self._dfdy, self._dfdt)
        if status is not Status.SUCCESS:
            return status

        y0 = y.copy()
        sequence = BADER_DEUFLHARD_SEQUENCE
        table: List[np.ndarray] = []
        estimate = np.zeros_like(y0)
        error = np.zeros_like(y0)

        for k in range(self._k_choice + 1):
            status, approximation = self._semi_implicit_midpoint(system, t, h, y0, sequence[k])
            if status is not Status.SUCCESS:
                return status

            # Aitken-Neville extrapolation in (h / n_k)^2 towards zero
            row = [approximation]
            for j in range(1, k + 1):
                ratio = (sequence[k] / sequence[k - j]) ** 2 - 1.0
                row.append(row[j - 1] + (row[j - 1] - table[j - 1]) / ratio)
            table = row
            estimate = row[-1]
            error = row[-1] - row[-2] if k > 0 else np.zeros_like(y0)

        y[:] = estimate
        yerr[:] = error

        if dydt_out is not None:
            status = self._evaluate(system, t + h, y, dydt_out)
            if status is not Status.SUCCESS:
                return status

        return Status.SUCCESS
