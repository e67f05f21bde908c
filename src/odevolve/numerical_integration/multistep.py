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
Variable-Order Multistep Steppers (Nordsieck Form)

Implements the two linear multistep families:
- MSADAMS: Adams-Moulton, orders 1-12, functional (P(EC)^m) iteration
- MSBDF: backward differentiation formulas, orders 1-5, modified Newton

History is kept as a Nordsieck array

    z_j = h^j y^(j)(t_n) / j!,    j = 0..q

which makes a change of step size a simple rescaling z_j *= (h'/h)^j. A
step consists of

1. Prediction with the Pascal triangle (Taylor expansion of z)
2. Correction: find e with h f(t+h, z_0 + l_0 e) = z_1 + e
3. Update z += l ⊗ e and error estimate yerr = e / tq2

The coefficient vectors l and the test constants (tq1, tq2, tq3) are
generated for every order with the classical LSODE construction.

After q+1 steps at the same order, the step compares the error that
orders q-1, q and q+1 would have produced and switches to the order that
promises the largest step. The step size itself is always left to the
controller.

The corrector iteration is stopped relative to the desired error levels
of the driver's controller, so both steppers need a driver. The steppers
detect from (t, y) whether a call continues the previous step, repeats it
after a rejection by the controller, or starts something new, in which
case the history is rebuilt at order 1.

References
----------
A. C. Hindmarsh, "ODEPACK, a systematized collection of ODE solvers",
Scientific Computing, North-Holland, 1983, 55-64.
"""

from abc import abstractmethod
from typing import Dict, List, Optional, Tuple

import numpy as np

from odevolve.numerical_integration.linear_solver import (
    factor_iteration_matrix,
    solve_factored,
)
from odevolve.numerical_integration.stepper_base import Stepper
from odevolve.systems.ode_system import ODESystem
from odevolve.types.core import DerivativeVector, ErrorVector, StateVector
from odevolve.types.status import Status

# (l, (tq1, tq2, tq3)) per order, index 0 unused
CoefficientTable = List[Tuple[np.ndarray, Tuple[float, float, float]]]


# ============================================================================
# Coefficient generation
# ============================================================================


def adams_coefficients(max_order: int = 12) -> CoefficientTable:
    """
    Nordsieck coefficients of the Adams-Moulton methods of order 1..max_order.

    l comes from the polynomial p(x) = (x+1)(x+2)...(x+q-1) integrated
    over [-1, 0]; tq2 converts the correction into the local error at
    order q, tq1 and tq3 do the same at orders q-1 and q+1.

    Returns
    -------
    CoefficientTable
        table[q] = (l of length q+1, (tq1, tq2, tq3))

    Examples
    --------
    >>> table = adams_coefficients()
    >>> table[2][0]
    array([0.5, 1. , 0.5])
    """
    l_vectors: Dict[int, np.ndarray] = {1: np.array([1.0, 1.0])}
    tesco = np.zeros((max_order + 2, 3))
    tesco[1] = [0.0, 2.0, 0.0]
    tesco[2, 0] = 1.0

    pc = np.zeros(max_order + 1)
    pc[0] = 1.0
    rqfac = 1.0
    for q in range(2, max_order + 1):
        rq1fac = rqfac
        rqfac /= q
        qm1 = q - 1

        # p(x) <- p(x) * (x + q - 1)
        pc[q - 1] = 0.0
        for i in range(q - 1, 0, -1):
            pc[i] = pc[i - 1] + qm1 * pc[i]
        pc[0] = qm1 * pc[0]

        # integrals of p(x) and x p(x) over [-1, 0]
        pint = pc[0]
        xpin = pc[0] / 2.0
        sign = 1.0
        for i in range(1, q):
            sign = -sign
            pint += sign * pc[i] / (i + 1)
            xpin += sign * pc[i] / (i + 2)

        el = np.zeros(q + 1)
        el[0] = pint * rq1fac
        el[1] = 1.0
        for i in range(1, q):
            el[i + 1] = rq1fac * pc[i] / (i + 1)
        l_vectors[q] = el

        ragq = 1.0 / (rqfac * xpin)
        tesco[q, 1] = ragq
        if q < max_order:
            tesco[q + 1, 0] = ragq * rqfac / (q + 1)
        tesco[q - 1, 2] = ragq

    table: CoefficientTable = [(np.zeros(0), (0.0, 0.0, 0.0))]
    for q in range(1, max_order + 1):
        table.append((l_vectors[q], tuple(float(v) for v in tesco[q])))
    return table


def bdf_coefficients(max_order: int = 5) -> CoefficientTable:
    """
    Nordsieck coefficients of the BDF methods of order 1..max_order.

    l comes from the polynomial (x+1)(x+2)...(x+q), normalized so that
    l_1 = 1.

    Examples
    --------
    >>> table = bdf_coefficients()
    >>> table[2][0]
    array([0.66666667, 1.        , 0.33333333])
    """
    table: CoefficientTable = [(np.zeros(0), (0.0, 0.0, 0.0))]
    pc = np.zeros(max_order + 2)
    pc[0] = 1.0
    rq1fac = 1.0
    for q in range(1, max_order + 1):
        # p(x) <- p(x) * (x + q)
        pc[q] = 0.0
        for i in range(q, 0, -1):
            pc[i] = pc[i - 1] + q * pc[i]
        pc[0] = q * pc[0]

        el = pc[: q + 1] / pc[1]
        el[1] = 1.0
        tq = (rq1fac, (q + 1) / el[0], (q + 2) / el[0])
        table.append((el, tuple(float(v) for v in tq)))
        rq1fac /= q
    return table


def nordsieck_predict(z: np.ndarray, q: int) -> None:
    """Taylor-predict the first q+1 rows of a Nordsieck array in place."""
    for k in range(q):
        for j in range(q - 1, k - 1, -1):
            z[j] += z[j + 1]


# ============================================================================
# Common Nordsieck machinery
# ============================================================================


class NordsieckStepper(Stepper):
    """
    Base class of the variable-order multistep steppers.

    Subclasses set `max_order`, provide the coefficient table and the
    corrector iteration.

    Class Attributes
    ----------------
    max_order : int
        Highest order the method may select
    max_corrector_iterations : int
        Corrector iterations before the step is declared failed
    order_bias : Tuple[float, float, float]
        Safety factors for the error estimates at orders q-1, q, q+1
    """

    max_order: int
    max_corrector_iterations = 3
    order_bias = (1.3, 1.2, 1.4)

    requires_driver = True

    def __init__(self, dimension: int):
        super().__init__(dimension)
        n = self._dimension
        self._table = self._coefficient_table()
        self._z = np.zeros((self.max_order + 2, n))
        self._fwork = np.zeros(n)
        self.reset()

    @abstractmethod
    def _coefficient_table(self) -> CoefficientTable:
        """Nordsieck coefficient vectors and error constants per order."""

    def reset(self) -> None:
        """Discard the Nordsieck history; the next step starts at order 1."""
        self._initialized = False
        self._z[:] = 0.0
        self._q = 1
        self._last_order = 1
        self._h_last = 0.0
        self._t_start = np.nan
        self._t_end = np.nan
        self._steps_at_order = 0
        self._crate = 0.7
        self._acor_prev: Optional[np.ndarray] = None
        self._backup: Optional[dict] = None

    def order(self) -> int:
        return self._last_order

    # ------------------------------------------------------------------------
    # History bookkeeping
    # ------------------------------------------------------------------------

    def _snapshot(self) -> dict:
        return {
            "initialized": self._initialized,
            "z": self._z.copy(),
            "q": self._q,
            "last_order": self._last_order,
            "h_last": self._h_last,
            "t_start": self._t_start,
            "t_end": self._t_end,
            "steps_at_order": self._steps_at_order,
            "crate": self._crate,
            "acor_prev": None if self._acor_prev is None else self._acor_prev.copy(),
        }

    def _restore(self, state: dict) -> None:
        self._initialized = state["initialized"]
        self._z[:] = state["z"]
        self._q = state["q"]
        self._last_order = state["last_order"]
        self._h_last = state["h_last"]
        self._t_start = state["t_start"]
        self._t_end = state["t_end"]
        self._steps_at_order = state["steps_at_order"]
        self._crate = state["crate"]
        self._acor_prev = state["acor_prev"]

    def _continues(self, t: float, h: float, y: np.ndarray) -> bool:
        """Whether (t, y) is where the previous step ended."""
        if not self._initialized:
            return False
        if np.sign(h) != np.sign(self._h_last):
            return False
        tolerance = 4.0 * np.finfo(float).eps * max(abs(t), abs(self._t_end))
        if abs(t - self._t_end) > tolerance:
            return False
        return bool(np.array_equal(y, self._z[0]))

    def _prepare_history(self, system: ODESystem, t: float, h: float, y: np.ndarray) -> Status:
        """Bring the Nordsieck array to (t, y) with step size h."""
        if self._continues(t, h, y):
            q = self._q
            ratio = h / self._h_last
            self._z[1 : q + 1] *= (ratio ** np.arange(1, q + 1))[:, None]
            if self._acor_prev is not None:
                self._acor_prev = self._acor_prev * ratio ** (q + 1)
            return Status.SUCCESS

        self._z[:] = 0.0
        self._z[0] = y
        status = self._evaluate(system, t, y, self._fwork)
        if status is not Status.SUCCESS:
            return status
        self._z[1] = h * self._fwork
        self._initialized = True
        self._q = 1
        self._steps_at_order = 0
        self._crate = 0.7
        self._acor_prev = None
        return Status.SUCCESS

    # ------------------------------------------------------------------------
    # Step
    # ------------------------------------------------------------------------

    def _correct(
        self,
        system: ODESystem,
        t_new: float,
        h: float,
        z_pred: np.ndarray,
        el: np.ndarray,
        tq2: float,
        levels: np.ndarray,
    ) -> Tuple[Status, Optional[np.ndarray]]:
        """
        Corrector iteration.

        Returns
        -------
        Tuple[Status, Optional[np.ndarray]]
            (SUCCESS, e) on convergence; the callback status or FAILURE
            otherwise
        """
        n = self._dimension
        conit = 0.5 / (self._q + 2)
        acor = np.zeros(n)
        y_iter = z_pred[0].copy()
        f = self._fwork
        crate = self._crate
        delp = 0.0

        iteration = self._start_iteration(system, t_new, h, y_iter, el[0])
        if iteration is None:
            return Status.FAILURE, None
        if isinstance(iteration, Status):
            return iteration, None

        for m in range(self.max_corrector_iterations):
            status = self._evaluate(system, t_new, y_iter, f)
            if status is not Status.SUCCESS:
                return status, None

            increment = self._corrector_increment(iteration, h * f - z_pred[1] - acor)
            if increment is None:
                return Status.FAILURE, None
            acor += increment
            np.add(z_pred[0], el[0] * acor, out=y_iter)

            delta = float(np.max(np.abs(increment) / levels))
            if not np.isfinite(delta):
                return Status.FAILURE, None
            if m > 0:
                crate = max(0.2 * crate, delta / delp) if delp > 0.0 else crate
            dcon = delta * min(1.0, 1.5 * crate) / (tq2 * conit)
            if dcon <= 1.0:
                self._crate = crate
                return Status.SUCCESS, acor
            if m >= 1 and delta > 2.0 * delp:
                break
            delp = delta

        return Status.FAILURE, None

    def _start_iteration(self, system, t_new, h, y_pred, l0):
        """Per-step setup of the corrector (e.g. the Newton matrix)."""
        return ()

    def _corrector_increment(self, iteration, residual: np.ndarray) -> Optional[np.ndarray]:
        """Increment of the correction from the residual h f - z_1 - e."""
        return residual

    def _select_order(self, acor: np.ndarray, yerr: np.ndarray, levels: np.ndarray) -> None:
        """Possibly change the order for the next step."""
        q = self._q
        tq1, _, tq3 = self._table[q][1]
        self._steps_at_order += 1

        if self._steps_at_order <= q:
            self._acor_prev = acor.copy()
            return

        tiny = np.finfo(float).tiny
        bias_down, bias_same, bias_up = self.order_bias

        error_same = float(np.max(np.abs(yerr) / levels))
        factor_same = 1.0 / (bias_same * max(error_same, tiny) ** (1.0 / (q + 1)) + 1e-6)

        factor_down = 0.0
        if q > 1:
            error_down = float(np.max(np.abs(self._z[q]) / levels)) / tq1
            factor_down = 1.0 / (bias_down * max(error_down, tiny) ** (1.0 / q) + 1e-6)

        factor_up = 0.0
        if q < self.max_order and self._acor_prev is not None:
            error_up = float(np.max(np.abs(acor - self._acor_prev) / levels)) / tq3
            factor_up = 1.0 / (bias_up * max(error_up, tiny) ** (1.0 / (q + 2)) + 1e-6)

        if factor_up > factor_same and factor_up >= factor_down:
            el = self._table[q][0]
            self._z[q + 1] = acor * el[q] / (q + 1)
            self._q = q + 1
            self._steps_at_order = 0
            self._acor_prev = None
        elif factor_down > factor_same:
            self._z[q] = 0.0
            self._q = q - 1
            self._steps_at_order = 0
            self._acor_prev = None
        else:
            self._acor_prev = acor.copy()

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
        if h == 0.0:
            return Status.FAILURE

        snapshot = self._snapshot()
        if self._backup is not None and t == self._t_start:
            # the previous step was rejected after the fact: take it again
            self._restore(self._backup)
        start_state = self._snapshot()

        status = self._prepare_history(system, t, h, y)
        if status is not Status.SUCCESS:
            self._restore(snapshot)
            return status

        q = self._q
        el, (_, tq2, _) = self._table[q]
        levels = self._desired_error_levels(self._z[0], self._z[1] / h, h)
        if levels is None:
            self._restore(snapshot)
            return Status.SANITY

        z_pred = self._z[: q + 1].copy()
        nordsieck_predict(z_pred, q)

        status, acor = self._correct(system, t + h, h, z_pred, el, tq2, levels)
        if status is not Status.SUCCESS:
            self._restore(snapshot)
            return status

        error = acor / tq2
        if dydt_out is not None:
            status = self._evaluate(system, t + h, z_pred[0] + el[0] * acor, dydt_out)
            if status is not Status.SUCCESS:
                self._restore(snapshot)
                return status

        self._backup = start_state
        self._z[: q + 1] = z_pred + np.outer(el, acor)
        self._last_order = q
        self._h_last = h
        self._t_start = t
        self._t_end = t + h
        self._select_order(acor, error, levels)

        y[:] = self._z[0]
        yerr[:] = error
        return Status.SUCCESS


# ============================================================================
# Adams
# ============================================================================


class MSAdamsStepper(NordsieckStepper):
    """
    Variable-order Adams-Moulton method in Nordsieck form (orders 1-12).

    The corrector is a functional iteration: no Jacobian is needed, which
    makes it the method of choice for non-stiff problems with expensive
    right-hand sides.

    Requires a driver.
    """

    name = "msadams"
    max_order = 12

    def _coefficient_table(self) -> CoefficientTable:
        return adams_coefficients(self.max_order)


# ============================================================================
# BDF
# ============================================================================


class MSBDFStepper(NordsieckStepper):
    """
    Variable-order backward differentiation formulas in Nordsieck form
    (orders 1-5).

    The corrector is a modified Newton iteration with the matrix
    I - h l_0 J, J evaluated at the predicted point and factorized once per
    step. Suitable for stiff problems.

    Requires the Jacobian and a driver.
    """

    name = "msbdf"
    max_order = 5
    requires_jacobian = True

    def __init__(self, dimension: int):
        super().__init__(dimension)
        n = self._dimension
        self._dfdy = np.zeros((n, n))
        self._dfdt = np.zeros(n)

    def _coefficient_table(self) -> CoefficientTable:
        return bdf_coefficients(self.max_order)

    def _start_iteration(self, system, t_new, h, y_pred, l0):
        status = self._evaluate_jacobian(system, t_new, y_pred, self._dfdy, self._dfdt)
        if status is not Status.SUCCESS:
            return status
        self._count_lu()
        return factor_iteration_matrix(np.eye(self._dimension) - (h * l0) * self._dfdy)

    def _corrector_increment(self, iteration, residual: np.ndarray) -> Optional[np.ndarray]:
        return solve_factored(iteration, residual)
