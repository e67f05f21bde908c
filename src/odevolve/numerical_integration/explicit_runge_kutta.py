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
Explicit Runge-Kutta Steppers

Implements the explicit single-step methods:
- RK2 (embedded 2(3) pair)
- RK4 (classical, error by step doubling)
- RKF45 (Runge-Kutta-Fehlberg 4(5))
- RKCK (Cash-Karp 4(5))
- RK8PD (Prince-Dormand 8(7), 13 stages)

The embedded pairs share one implementation driven by a Butcher tableau:
the propagated solution uses weights `b`, the error estimate uses the
difference `e = b - b_hat` of the two embedded solutions.

All explicit methods accept a precomputed f(t, y) via dydt_in and need
neither a Jacobian nor a driver.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from odevolve.numerical_integration.stepper_base import Stepper
from odevolve.systems.ode_system import ODESystem
from odevolve.types.core import DerivativeVector, ErrorVector, StateVector
from odevolve.types.status import Status


@dataclass(frozen=True)
class ButcherTableau:
    """
    Coefficients of an embedded explicit Runge-Kutta pair.

    Attributes
    ----------
    a : np.ndarray
        Stage matrix (s, s), strictly lower triangular
    b : np.ndarray
        Weights of the propagated solution (s,)
    e : np.ndarray
        Error weights (s,): propagated minus embedded weights
    c : np.ndarray
        Nodes (s,)
    order : int
        Order reported to the controller
    """

    a: np.ndarray
    b: np.ndarray
    e: np.ndarray
    c: np.ndarray
    order: int

    @property
    def stages(self) -> int:
        return len(self.b)


def _lower(rows, stages):
    a = np.zeros((stages, stages))
    for i, row in enumerate(rows, start=1):
        a[i, : len(row)] = row
    return a


# ============================================================================
# Tableaus
# ============================================================================

# Second order solution is y + h*k2; the third order one is propagated.
RK2_TABLEAU = ButcherTableau(
    a=_lower([[1.0 / 2.0], [-1.0, 2.0]], 3),
    b=np.array([1.0 / 6.0, 4.0 / 6.0, 1.0 / 6.0]),
    e=np.array([1.0 / 6.0, -1.0 / 3.0, 1.0 / 6.0]),
    c=np.array([0.0, 0.5, 1.0]),
    order=2,
)

_RKF45_B5 = np.array([16.0 / 135.0, 0.0, 6656.0 / 12825.0, 28561.0 / 56430.0, -9.0 / 50.0, 2.0 / 55.0])
_RKF45_B4 = np.array([25.0 / 216.0, 0.0, 1408.0 / 2565.0, 2197.0 / 4104.0, -1.0 / 5.0, 0.0])

RKF45_TABLEAU = ButcherTableau(
    a=_lower(
        [
            [1.0 / 4.0],
            [3.0 / 32.0, 9.0 / 32.0],
            [1932.0 / 2197.0, -7200.0 / 2197.0, 7296.0 / 2197.0],
            [439.0 / 216.0, -8.0, 3680.0 / 513.0, -845.0 / 4104.0],
            [-8.0 / 27.0, 2.0, -3544.0 / 2565.0, 1859.0 / 4104.0, -11.0 / 40.0],
        ],
        6,
    ),
    b=_RKF45_B5,
    e=_RKF45_B5 - _RKF45_B4,
    c=np.array([0.0, 1.0 / 4.0, 3.0 / 8.0, 12.0 / 13.0, 1.0, 1.0 / 2.0]),
    order=5,
)

_RKCK_B5 = np.array([37.0 / 378.0, 0.0, 250.0 / 621.0, 125.0 / 594.0, 0.0, 512.0 / 1771.0])
_RKCK_B4 = np.array(
    [2825.0 / 27648.0, 0.0, 18575.0 / 48384.0, 13525.0 / 55296.0, 277.0 / 14336.0, 1.0 / 4.0]
)

RKCK_TABLEAU = ButcherTableau(
    a=_lower(
        [
            [1.0 / 5.0],
            [3.0 / 40.0, 9.0 / 40.0],
            [3.0 / 10.0, -9.0 / 10.0, 6.0 / 5.0],
            [-11.0 / 54.0, 5.0 / 2.0, -70.0 / 27.0, 35.0 / 27.0],
            [
                1631.0 / 55296.0,
                175.0 / 512.0,
                575.0 / 13824.0,
                44275.0 / 110592.0,
                253.0 / 4096.0,
            ],
        ],
        6,
    ),
    b=_RKCK_B5,
    e=_RKCK_B5 - _RKCK_B4,
    c=np.array([0.0, 1.0 / 5.0, 3.0 / 10.0, 3.0 / 5.0, 1.0, 7.0 / 8.0]),
    order=5,
)

_RK8PD_B8 = np.array(
    [
        14005451.0 / 335480064.0,
        0.0,
        0.0,
        0.0,
        0.0,
        -59238493.0 / 1068277825.0,
        181606767.0 / 758867731.0,
        561292985.0 / 797845732.0,
        -1041891430.0 / 1371343529.0,
        760417239.0 / 1151165299.0,
        118820643.0 / 751138087.0,
        -528747749.0 / 2220607170.0,
        1.0 / 4.0,
    ]
)
_RK8PD_B7 = np.array(
    [
        13451932.0 / 455176623.0,
        0.0,
        0.0,
        0.0,
        0.0,
        -808719846.0 / 976000145.0,
        1757004468.0 / 5645159321.0,
        656045339.0 / 265891186.0,
        -3867574721.0 / 1518517206.0,
        465885868.0 / 322736535.0,
        53011238.0 / 667516719.0,
        2.0 / 45.0,
        0.0,
    ]
)

RK8PD_TABLEAU = ButcherTableau(
    a=_lower(
        [
            [1.0 / 18.0],
            [1.0 / 48.0, 1.0 / 16.0],
            [1.0 / 32.0, 0.0, 3.0 / 32.0],
            [5.0 / 16.0, 0.0, -75.0 / 64.0, 75.0 / 64.0],
            [3.0 / 80.0, 0.0, 0.0, 3.0 / 16.0, 3.0 / 20.0],
            [
                29443841.0 / 614563906.0,
                0.0,
                0.0,
                77736538.0 / 692538347.0,
                -28693883.0 / 1125000000.0,
                23124283.0 / 1800000000.0,
            ],
            [
                16016141.0 / 946692911.0,
                0.0,
                0.0,
                61564180.0 / 158732637.0,
                22789713.0 / 633445777.0,
                545815736.0 / 2771057229.0,
                -180193667.0 / 1043307555.0,
            ],
            [
                39632708.0 / 573591083.0,
                0.0,
                0.0,
                -433636366.0 / 683701615.0,
                -421739975.0 / 2616292301.0,
                100302831.0 / 723423059.0,
                790204164.0 / 839813087.0,
                800635310.0 / 3783071287.0,
            ],
            [
                246121993.0 / 1340847787.0,
                0.0,
                0.0,
                -37695042795.0 / 15268766246.0,
                -309121744.0 / 1061227803.0,
                -12992083.0 / 490766935.0,
                6005943493.0 / 2108947869.0,
                393006217.0 / 1396673457.0,
                123872331.0 / 1001029789.0,
            ],
            [
                -1028468189.0 / 846180014.0,
                0.0,
                0.0,
                8478235783.0 / 508512852.0,
                1311729495.0 / 1432422823.0,
                -10304129995.0 / 1701304382.0,
                -48777925059.0 / 3047939560.0,
                15336726248.0 / 1032824649.0,
                -45442868181.0 / 3398467696.0,
                3065993473.0 / 597172653.0,
            ],
            [
                185892177.0 / 718116043.0,
                0.0,
                0.0,
                -3185094517.0 / 667107341.0,
                -477755414.0 / 1098053517.0,
                -703635378.0 / 230739211.0,
                5731566787.0 / 1027545527.0,
                5232866602.0 / 850066563.0,
                -4093664535.0 / 808688257.0,
                3962137247.0 / 1805957418.0,
                65686358.0 / 487910083.0,
            ],
            [
                403863854.0 / 491063109.0,
                0.0,
                0.0,
                -5068492393.0 / 434740067.0,
                -411421997.0 / 543043805.0,
                652783627.0 / 914296604.0,
                11173962825.0 / 925320556.0,
                -13158990841.0 / 6184727034.0,
                3936647629.0 / 1978049680.0,
                -160528059.0 / 685178525.0,
                248638103.0 / 1413531060.0,
                0.0,
            ],
        ],
        13,
    ),
    b=_RK8PD_B8,
    e=_RK8PD_B8 - _RK8PD_B7,
    c=np.array(
        [
            0.0,
            1.0 / 18.0,
            1.0 / 12.0,
            1.0 / 8.0,
            5.0 / 16.0,
            3.0 / 8.0,
            59.0 / 400.0,
            93.0 / 200.0,
            5490023248.0 / 9719169821.0,
            13.0 / 20.0,
            1201146811.0 / 1299019798.0,
            1.0,
            1.0,
        ]
    ),
    order=8,
)


# ============================================================================
# Embedded pairs
# ============================================================================


class EmbeddedRungeKuttaStepper(Stepper):
    """
    Explicit embedded Runge-Kutta stepper driven by a `ButcherTableau`.

    Subclasses only select the tableau and the name.

    Algorithm:
        k_1 = f(t, y)
        k_i = f(t + c_i h, y + h Σ_j a_ij k_j)
        y_new = y + h Σ b_i k_i
        yerr = h Σ e_i k_i
    """

    tableau: ButcherTableau
    can_use_dydt_in = True

    def __init__(self, dimension: int):
        super().__init__(dimension)
        self._k = np.zeros((self.tableau.stages, self._dimension))
        self._ytmp = np.zeros(self._dimension)

    def order(self) -> int:
        return self.tableau.order

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
        tab = self.tableau
        k = self._k

        if dydt_in is not None:
            k[0] = dydt_in
        else:
            status = self._evaluate(system, t, y, k[0])
            if status is not Status.SUCCESS:
                return status

        for i in range(1, tab.stages):
            np.add(y, h * (tab.a[i, :i] @ k[:i]), out=self._ytmp)
            status = self._evaluate(system, t + tab.c[i] * h, self._ytmp, k[i])
            if status is not Status.SUCCESS:
                return status

        yerr[:] = h * (tab.e @ k)
        y += h * (tab.b @ k)

        if dydt_out is not None:
            status = self._evaluate(system, t + h, y, dydt_out)
            if status is not Status.SUCCESS:
                return status

        return Status.SUCCESS


class RK2Stepper(EmbeddedRungeKuttaStepper):
    """Explicit embedded Runge-Kutta (2, 3) method."""

    name = "rk2"
    tableau = RK2_TABLEAU


class RKF45Stepper(EmbeddedRungeKuttaStepper):
    """
    Explicit embedded Runge-Kutta-Fehlberg (4, 5) method.

    A good general-purpose integrator. The fifth order solution is
    propagated.
    """

    name = "rkf45"
    tableau = RKF45_TABLEAU


class RKCKStepper(EmbeddedRungeKuttaStepper):
    """Explicit embedded Runge-Kutta Cash-Karp (4, 5) method."""

    name = "rkck"
    tableau = RKCK_TABLEAU


class RK8PDStepper(EmbeddedRungeKuttaStepper):
    """
    Explicit embedded Runge-Kutta Prince-Dormand (8, 9) method.

    Thirteen stages; the eighth order solution is propagated and the
    seventh order embedded solution provides the error estimate.
    Best for smooth problems at tight tolerances.
    """

    name = "rk8pd"
    tableau = RK8PD_TABLEAU


# ============================================================================
# Classical RK4 with step doubling
# ============================================================================


RK4_ERROR_SCALE = 4.0


def step_doubling_error(y_two_half: np.ndarray, y_one_full: np.ndarray, order: int) -> np.ndarray:
    """
    Richardson estimate of the error of the two-half-step solution.

    For a method of order p the two solutions differ by (2^p - 1) times
    the error of the more accurate one.
    """
    return (y_two_half - y_one_full) / (2.0**order - 1.0)


class RK4Stepper(Stepper):
    """
    Explicit classical 4th order Runge-Kutta.

    The error is estimated by step doubling: one step of size h is
    compared with two steps of size h/2, and the more accurate two-step
    result is propagated. The reported error is 4 (y_2 - y_1) / 15, four
    times the Richardson estimate. Costs 11 function evaluations per step
    (including dydt_out); the embedded methods are cheaper.

    Algorithm (one sub-step of size s):
        k1 = f(t, y)
        k2 = f(t + s/2, y + s/2 k1)
        k3 = f(t + s/2, y + s/2 k2)
        k4 = f(t + s, y + s k3)
        y_new = y + s/6 (k1 + 2 k2 + 2 k3 + k4)
    """

    name = "rk4"
    can_use_dydt_in = True

    def __init__(self, dimension: int):
        super().__init__(dimension)
        n = self._dimension
        self._k1 = np.zeros(n)
        self._k = np.zeros(n)
        self._ytmp = np.zeros(n)
        self._y_onestep = np.zeros(n)

    def order(self) -> int:
        return 4

    def _rk4_substep(
        self, system: ODESystem, t: float, s: float, y: np.ndarray, k1: np.ndarray
    ) -> Status:
        """One classical RK4 step of size s, y updated in place."""
        k, ytmp = self._k, self._ytmp
        increment = k1.copy()

        np.add(y, 0.5 * s * k1, out=ytmp)
        status = self._evaluate(system, t + 0.5 * s, ytmp, k)
        if status is not Status.SUCCESS:
            return status
        increment += 2.0 * k

        np.add(y, 0.5 * s * k, out=ytmp)
        status = self._evaluate(system, t + 0.5 * s, ytmp, k)
        if status is not Status.SUCCESS:
            return status
        increment += 2.0 * k

        np.add(y, s * k, out=ytmp)
        status = self._evaluate(system, t + s, ytmp, k)
        if status is not Status.SUCCESS:
            return status
        increment += k

        y += (s / 6.0) * increment
        return Status.SUCCESS

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
        k1 = self._k1
        if dydt_in is not None:
            k1[:] = dydt_in
        else:
            status = self._evaluate(system, t, y, k1)
            if status is not Status.SUCCESS:
                return status

        # One full step
        y_onestep = self._y_onestep
        y_onestep[:] = y
        status = self._rk4_substep(system, t, h, y_onestep, k1)
        if status is not Status.SUCCESS:
            return status

        # Two half steps
        status = self._rk4_substep(system, t, 0.5 * h, y, k1)
        if status is not Status.SUCCESS:
            return status

        k_mid = np.empty_like(k1)
        status = self._evaluate(system, t + 0.5 * h, y, k_mid)
        if status is not Status.SUCCESS:
            return status

        status = self._rk4_substep(system, t + 0.5 * h, 0.5 * h, y, k_mid)
        if status is not Status.SUCCESS:
            return status

        if dydt_out is not None:
            status = self._evaluate(system, t + h, y, dydt_out)
            if status is not Status.SUCCESS:
                return status

        yerr[:] = RK4_ERROR_SCALE * step_doubling_error(y, y_onestep, 4)
        return Status.SUCCESS
