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
Evolver - One Controlled Step Towards a Target Time

The evolver couples a stepper and a controller. Each call to `apply`
advances the solution by at most one accepted step without passing t1:

1. The trial step is clamped so that it does not overshoot t1.
2. If the stepper fails with BAD_FUNCTION (or FAULT), return at once.
3. Any other stepper failure halves h and retries, until h no longer
   changes t; then (t, y) are restored and the failure is returned.
4. A computed step is judged by the controller. DECREASE restores y and
   retries with the smaller h unless that h would no longer change t, in
   which case the step is accepted as it is.
5. The step that reaches t1 sets t to t1 exactly.

When the evolver belongs to a driver, no retry is attempted with a step
smaller than the driver's hmin: (t, y) are restored and NO_PROGRESS is
returned instead.

Usage
-----
>>> evolver = Evolver(2)
>>> status, t, h = evolver.apply(control, step, system, t, t1, h, y)
>>> while status is Status.SUCCESS and t != t1:
...     status, t, h = evolver.apply(control, step, system, t, t1, h, y)
"""

import weakref
from typing import TYPE_CHECKING, Optional, Tuple

import numpy as np

from odevolve.numerical_integration.step_control import StandardControl
from odevolve.numerical_integration.stepper_base import Stepper
from odevolve.systems.ode_system import ODESystem
from odevolve.types.core import StateVector, as_state_buffer, check_dimension
from odevolve.types.status import HAdjust, Status

if TYPE_CHECKING:
    from odevolve.numerical_integration.driver import Driver


class Evolver:
    """
    Retry loop of a stepper and a controller.

    Parameters
    ----------
    dimension : int
        Number of equations

    Attributes
    ----------
    yerr : np.ndarray
        Error estimate of the last trial step
    count : int
        Accepted steps since construction or `reset`
    failed_steps : int
        Steps rejected by the controller since construction or `reset`
    last_step : float
        Size of the last accepted step
    nfev : int
        Function evaluations done by the evolver itself (the derivative at
        the start of a step, for steppers that can use it)
    """

    def __init__(self, dimension: int):
        n = check_dimension(dimension)
        self._dimension = n
        self.y0 = np.zeros(n)
        self.yerr = np.zeros(n)
        self.dydt_in = np.zeros(n)
        self.dydt_out = np.zeros(n)
        self.count = 0
        self.failed_steps = 0
        self.last_step = 0.0
        self.nfev = 0
        self._driver_ref: Optional[weakref.ReferenceType] = None

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def driver(self) -> Optional["Driver"]:
        if self._driver_ref is None:
            return None
        return self._driver_ref()

    def set_driver(self, driver: Optional["Driver"]) -> None:
        self._driver_ref = weakref.ref(driver) if driver is not None else None

    def _hmin(self) -> float:
        driver = self.driver
        return 0.0 if driver is None else driver.hmin

    def reset(self) -> None:
        """Forget the step counters; the next call starts a new evolution."""
        self.count = 0
        self.failed_steps = 0
        self.last_step = 0.0

    # ========================================================================
    # Argument checks
    # ========================================================================

    def _check(self, step: Stepper, system: ODESystem, y: StateVector) -> None:
        if step.dimension != self._dimension:
            raise ValueError(
                f"Stepper dimension {step.dimension} does not match "
                f"evolver dimension {self._dimension}"
            )
        if system.dimension != self._dimension:
            raise ValueError(
                f"System dimension {system.dimension} does not match "
                f"evolver dimension {self._dimension}"
            )
        as_state_buffer(y, self._dimension, "y")

    def _initial_derivative(self, step: Stepper, system: ODESystem, t: float, y: StateVector):
        """f(t, y) for steppers that accept it, else None."""
        if not step.can_use_dydt_in:
            return Status.SUCCESS, None
        self.nfev += 1
        status = system.evaluate(t, y, self.dydt_in)
        return status, self.dydt_in

    # ========================================================================
    # Evolution
    # ========================================================================

    def apply(
        self,
        control: Optional[StandardControl],
        step: Stepper,
        system: ODESystem,
        t: float,
        t1: float,
        h: float,
        y: StateVector,
    ) -> Tuple[Status, float, float]:
        """
        Advance (t, y) by one accepted step towards t1.

        Parameters
        ----------
        control : Optional[StandardControl]
            Controller judging the trial steps; None accepts every step
        step : Stepper
            Stepping algorithm
        system : ODESystem
            System to integrate
        t : float
            Current time
        t1 : float
            Target time, never passed
        h : float
            Proposed step size, pointing from t towards t1
        y : StateVector
            State, updated in place

        Returns
        -------
        Tuple[Status, float, float]
            (status, t, h): the new time and the step size proposed for
            the next call. On failure t and y are those from before the
            call and h is the last step size attempted. NO_PROGRESS means
            a retry would have needed a step below the driver's hmin.

        Raises
        ------
        ValueError
            If dimensions do not match, h is zero, or h points away from t1
        """
        self._check(step, system, y)
        t0 = float(t)
        t1 = float(t1)
        h0 = float(h)
        dt = t1 - t0

        if (dt < 0.0 and h0 > 0.0) or (dt > 0.0 and h0 < 0.0):
            raise ValueError("step direction must match interval direction")
        if h0 == 0.0 and dt != 0.0:
            raise ValueError("step size must be non-zero")

        self.y0[:] = y
        hmin = self._hmin()

        status, dydt_in = self._initial_derivative(step, system, t0, y)
        if status is not Status.SUCCESS:
            return status, t0, h0

        while True:
            if (dt >= 0.0 and h0 > dt) or (dt < 0.0 and h0 < dt):
                h0 = dt
                final_step = True
            else:
                final_step = False

            status = step.apply(t0, h0, y, self.yerr, dydt_in, self.dydt_out, system)

            if status is not Status.SUCCESS:
                if status in (Status.BAD_FUNCTION, Status.FAULT):
                    return status, t0, h0

                h_half = 0.5 * h0
                if abs(h_half) < hmin:
                    y[:] = self.y0
                    return Status.NO_PROGRESS, t0, h0
                if abs(h_half) < abs(h0) and t0 + h_half != t0:
                    h0 = h_half
                    continue
                y[:] = self.y0
                return status, t0, h0

            t_new = t1 if final_step else t0 + h0
            h_taken = h0

            if control is not None:
                decision, h_adjusted = control.hadjust(step, y, self.yerr, self.dydt_out, h_taken)
                if decision is HAdjust.DECREASE:
                    if abs(h_adjusted) < hmin:
                        y[:] = self.y0
                        self.failed_steps += 1
                        return Status.NO_PROGRESS, t0, h_taken
                    if abs(h_adjusted) < abs(h_taken) and t_new + h_adjusted != t_new:
                        y[:] = self.y0
                        self.failed_steps += 1
                        h0 = h_adjusted
                        continue
                    # the tolerance cannot be met any more: accept as is
                    h_adjusted = h_taken
                h0 = h_adjusted

            self.count += 1
            self.last_step = h_taken
            return Status.SUCCESS, t_new, h0

    def apply_fixed_step(
        self,
        control: Optional[StandardControl],
        step: Stepper,
        system: ODESystem,
        t: float,
        h: float,
        y: StateVector,
    ) -> Tuple[Status, float]:
        """
        Take exactly one step of size h.

        If the controller would shrink the step, y is restored and FAILURE
        is returned instead of retrying.

        Returns
        -------
        Tuple[Status, float]
            (status, t + h) on success, (status, t) otherwise
        """
        self._check(step, system, y)
        t0 = float(t)
        h = float(h)
        self.y0[:] = y

        status, dydt_in = self._initial_derivative(step, system, t0, y)
        if status is not Status.SUCCESS:
            return status, t0

        status = step.apply(t0, h, y, self.yerr, dydt_in, self.dydt_out, system)
        if status is not Status.SUCCESS:
            return status, t0

        if control is not None:
            decision, _ = control.hadjust(step, y, self.yerr, self.dydt_out, h)
            if decision is HAdjust.DECREASE:
                y[:] = self.y0
                self.failed_steps += 1
                return Status.FAILURE, t0

        self.count += 1
        self.last_step = h
        return Status.SUCCESS, t0 + h

    def __repr__(self) -> str:
        return (
            f"Evolver(dimension={self._dimension}, count={self.count}, "
            f"failed_steps={self.failed_steps})"
        )
