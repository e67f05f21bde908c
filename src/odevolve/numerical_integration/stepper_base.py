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
Stepper Base - Abstract Interface for Single-Step Advancement

A stepper advances the state of an `ODESystem` from t to t+h with one step
of a fixed size and reports a per-component local error estimate. It never
chooses the step size itself; that is the job of the controller and the
evolver.

This module defines the abstract base class all stepping algorithms
implement. The base class owns everything that is common to the eleven
algorithms:

- buffer validation against the stepper dimension
- restoring y when a step fails
- the MissingDriverAttachment check for algorithms that need a driver
- counting function/Jacobian evaluations and LU factorizations
- the weak back-reference to the owning driver

Design Note
-----------
The back-reference is a `weakref.ref`: the driver owns its stepper, so a
strong reference back would only create a cycle. Once the driver is
garbage collected, `driver` returns None again and a driver-requiring
stepper reports `Status.FAULT`.
"""

import weakref
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

import numpy as np

from odevolve.systems.ode_system import ODESystem
from odevolve.types.core import (
    DerivativeVector,
    ErrorVector,
    StateVector,
    as_optional_buffer,
    as_state_buffer,
    check_dimension,
)
from odevolve.types.status import Status
from odevolve.types.trajectories import StepperStats

if TYPE_CHECKING:
    from odevolve.numerical_integration.driver import Driver


class Stepper(ABC):
    """
    Abstract base class for stepping algorithms.

    Subclasses implement:
    - _step(): the algorithm itself
    - order(): consistency order of the last step

    and set the class attributes describing their capabilities.

    Class Attributes
    ----------------
    name : str
        Canonical method name, e.g. 'rkf45'
    can_use_dydt_in : bool
        Whether a precomputed derivative at (t, y) is used when supplied
    requires_jacobian : bool
        Whether the system must provide a Jacobian
    requires_driver : bool
        Whether a driver back-reference is needed to read the desired
        error level during internal iterations

    Examples
    --------
    >>> step = RKF45Stepper(2)
    >>> y = np.array([1.0, 0.0])
    >>> yerr = np.empty(2)
    >>> status = step.apply(0.0, 0.1, y, yerr, system=oscillator)
    >>> status is Status.SUCCESS
    True
    """

    name: str = ""
    can_use_dydt_in: bool = False
    requires_jacobian: bool = False
    requires_driver: bool = False

    def __init__(self, dimension: int):
        """
        Allocate a stepper for systems of the given dimension.

        Parameters
        ----------
        dimension : int
            Number of equations; fixed for the lifetime of the stepper

        Raises
        ------
        ValueError
            If dimension is not a positive integer
        """
        self._dimension = check_dimension(dimension)
        self._driver_ref: Optional[weakref.ReferenceType] = None
        self._stats = {"nfev": 0, "njev": 0, "nlu": 0}

    # ========================================================================
    # Public interface
    # ========================================================================

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def driver(self) -> Optional["Driver"]:
        """The attached driver, or None."""
        if self._driver_ref is None:
            return None
        return self._driver_ref()

    def set_driver(self, driver: Optional["Driver"]) -> None:
        """
        Attach (or detach with None) the driver whose controller provides
        the desired error level for internal iterations.
        """
        self._driver_ref = weakref.ref(driver) if driver is not None else None

    def reset(self) -> None:
        """
        Forget all algorithm history.

        Must be called whenever the next step does not continue the
        previous one. Stateless algorithms have nothing to forget.
        """

    @abstractmethod
    def order(self) -> int:
        """
        Consistency order of the most recent step.

        Constant for single-step methods, variable for the multistep ones.
        """

    def apply(
        self,
        t: float,
        h: float,
        y: StateVector,
        yerr: ErrorVector,
        dydt_in: Optional[DerivativeVector] = None,
        dydt_out: Optional[DerivativeVector] = None,
        system: Optional[ODESystem] = None,
    ) -> Status:
        """
        Advance y from t to t+h in place.

        Parameters
        ----------
        t : float
            Current time
        h : float
            Step size (may be negative)
        y : StateVector
            State (n,), overwritten with y(t+h) on success
        yerr : ErrorVector
            Receives the local error estimate (n,)
        dydt_in : Optional[DerivativeVector]
            f(t, y) if already known; used by algorithms with
            `can_use_dydt_in`, ignored by the others
        dydt_out : Optional[DerivativeVector]
            Receives f(t+h, y(t+h)) on success
        system : ODESystem
            System to integrate

        Returns
        -------
        Status
            SUCCESS; the callback status (BAD_FUNCTION or other) if a user
            function failed; FAILURE if the step could not be computed or
            gave a non-finite state or error estimate, and should be
            retried with a smaller h; FAULT if the algorithm
            needs a driver and none is attached. On any failure y holds
            its value from before the call.

        Raises
        ------
        ValueError, TypeError
            If the system or a buffer does not match the stepper dimension
        """
        if system is None:
            raise ValueError("system is required")
        if system.dimension != self._dimension:
            raise ValueError(
                f"System dimension {system.dimension} does not match "
                f"stepper dimension {self._dimension}"
            )
        n = self._dimension
        as_state_buffer(y, n, "y")
        as_state_buffer(yerr, n, "yerr")
        as_optional_buffer(dydt_in, n, "dydt_in")
        as_optional_buffer(dydt_out, n, "dydt_out")

        if self.requires_driver and self.driver is None:
            return Status.FAULT

        y0 = y.copy()
        status = self._step(float(t), float(h), y, yerr, dydt_in, dydt_out, system)
        if status is Status.SUCCESS and not (
            np.all(np.isfinite(y)) and np.all(np.isfinite(yerr))
        ):
            status = Status.FAILURE
        if status is not Status.SUCCESS:
            y[:] = y0
        return status

    # ========================================================================
    # Statistics
    # ========================================================================

    def get_stats(self) -> StepperStats:
        """
        Evaluation counters since construction or the last `reset_stats`.

        Returns
        -------
        StepperStats
            {'nfev': ..., 'njev': ..., 'nlu': ...}
        """
        return StepperStats(**self._stats)

    def reset_stats(self) -> None:
        for key in self._stats:
            self._stats[key] = 0

    # ========================================================================
    # Helpers for subclasses
    # ========================================================================

    @abstractmethod
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
        """Algorithm body. y may be left modified on failure."""

    def _evaluate(self, system: ODESystem, t: float, y: StateVector, out: np.ndarray) -> Status:
        self._stats["nfev"] += 1
        return system.evaluate(t, y, out)

    def _evaluate_jacobian(
        self, system: ODESystem, t: float, y: StateVector, dfdy: np.ndarray, dfdt: np.ndarray
    ) -> Status:
        self._stats["njev"] += 1
        return system.evaluate_jacobian(t, y, dfdy, dfdt)

    def _count_lu(self) -> None:
        self._stats["nlu"] += 1

    def _desired_error_levels(
        self, y: StateVector, dydt: DerivativeVector, h: float
    ) -> Optional[np.ndarray]:
        """
        Desired error level D_i of every component from the driver's
        controller, or None if some level is not positive.
        """
        levels = self.driver.control.errlevels(y, dydt, h)
        if not np.all(levels > 0.0):
            return None
        return levels

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(dimension={self._dimension})"

    def __str__(self) -> str:
        return f"{self.name} (order {self.order()}, n={self._dimension})"
