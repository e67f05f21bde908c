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
Driver - High-Level Interface to the Stepping Engine

The driver owns a stepper, a controller and an evolver for one system and
repeats evolver steps until the target time is reached. It adds the hard
limits of an integration:

- hmax: every attempted step is at most hmax in magnitude
- hmin: no step smaller than hmin is attempted; `apply` stops with
  NO_PROGRESS at the last accepted point instead (the final step onto t1
  may be shorter)
- nmax: `apply` stops with MAX_ITERATION after nmax steps (0 = unlimited)

On any failure, t and y hold the last successfully reached point.

Construction
------------
The class methods pick the controller flavor:

>>> driver = Driver.y_new(system, "rkf45", 1e-3, 1e-8, 1e-8)
>>> driver = Driver.yp_new(system, "rk8pd", 1e-3, 1e-8, 1e-8)
>>> driver = Driver.standard_new(system, "msbdf", 1e-3, 1e-8, 1e-8, 1.0, 0.0)
>>> driver = Driver.scaled_new(system, "rkck", 1e-3, 1e-8, 1e-8, 1.0, 0.0, [1.0, 10.0])

or, from an options dict:

>>> driver = create_driver(system, method="bdf", rtol=1e-6, atol=1e-9)

Usage
-----
>>> y = np.array([1.0, 0.0])
>>> status, t = driver.apply(0.0, 10.0, y)
>>> result = driver.integrate(np.array([1.0, 0.0]), (0.0, 10.0), t_eval=np.linspace(0, 10, 11))
"""

import sys
import time
import warnings
from typing import Callable, List, Optional, Tuple, Union

import numpy as np
from typing_extensions import Unpack

from odevolve.numerical_integration.evolve import Evolver
from odevolve.numerical_integration.method_registry import (
    StepType,
    create_stepper,
    list_all_methods,
)
from odevolve.numerical_integration.step_control import (
    StandardControl,
    scaled_new,
    standard_new,
    y_new,
    yp_new,
)
from odevolve.systems.ode_system import ODESystem
from odevolve.types.core import ArrayLike, ScaleVector, StateVector, as_state_buffer
from odevolve.types.methods import ControlFlavor, DriverOptions, StepMethod
from odevolve.types.status import Status
from odevolve.types.trajectories import DriverStats, IntegrationResult, TimePoints, TimeSpan

StepHook = Callable[[float, np.ndarray], None]


class Driver:
    """
    Stepper, controller and evolver bundled with step limits.

    Use the class methods `y_new`, `yp_new`, `standard_new` and
    `scaled_new` (or `create_driver`) rather than the constructor.

    Parameters
    ----------
    system : ODESystem
        System to integrate
    step_type : Union[str, StepType]
        Stepping algorithm (name, alias or StepType)
    hstart : float
        Initial step size; its sign sets the integration direction
    control : StandardControl
        Controller built for this driver

    Attributes
    ----------
    system : ODESystem
    step : Stepper
    control : StandardControl
    evolver : Evolver
    h : float
        Step size proposed for the next step
    hmin, hmax : float
        Step-size limits (defaults 0 and sys.float_info.max)
    nmax : int
        Step limit per `apply` call (default 0, unlimited)
    n : int
        Steps taken in the current `apply` / `apply_fixed_step` call

    Raises
    ------
    TypeError
        If system is not an ODESystem
    ValueError
        If the method is unknown or hstart is zero or not finite
    """

    def __init__(
        self,
        system: ODESystem,
        step_type: Union[str, StepType],
        hstart: float,
        control: StandardControl,
    ):
        if not isinstance(system, ODESystem):
            raise TypeError(f"system must be an ODESystem, got {type(system).__name__}")
        _check_step_size(hstart, "hstart")

        self.system = system
        self.step = create_stepper(step_type, system.dimension)
        self.control = control
        self.evolver = Evolver(system.dimension)

        self.h = float(hstart)
        self.hmin = 0.0
        self.hmax = sys.float_info.max
        self.nmax = 0
        self.n = 0

        self.step.set_driver(self)
        self.control.set_driver(self)
        self.evolver.set_driver(self)

        self._stats = {
            "total_steps": 0,
            "failed_steps": 0,
            "total_time": 0.0,
        }

    # ========================================================================
    # Construction variants
    # ========================================================================

    @classmethod
    def y_new(
        cls,
        system: ODESystem,
        step_type: Union[str, StepType],
        hstart: float,
        eps_abs: float,
        eps_rel: float,
    ) -> "Driver":
        """Driver whose controller keeps the error relative to y."""
        return cls(system, step_type, hstart, y_new(eps_abs, eps_rel))

    @classmethod
    def yp_new(
        cls,
        system: ODESystem,
        step_type: Union[str, StepType],
        hstart: float,
        eps_abs: float,
        eps_rel: float,
    ) -> "Driver":
        """Driver whose controller keeps the error relative to h y'."""
        return cls(system, step_type, hstart, yp_new(eps_abs, eps_rel))

    @classmethod
    def standard_new(
        cls,
        system: ODESystem,
        step_type: Union[str, StepType],
        hstart: float,
        eps_abs: float,
        eps_rel: float,
        a_y: float,
        a_dydt: float,
    ) -> "Driver":
        """Driver with the standard controller."""
        return cls(system, step_type, hstart, standard_new(eps_abs, eps_rel, a_y, a_dydt))

    @classmethod
    def scaled_new(
        cls,
        system: ODESystem,
        step_type: Union[str, StepType],
        hstart: float,
        eps_abs: float,
        eps_rel: float,
        a_y: float,
        a_dydt: float,
        scale_abs: ScaleVector,
    ) -> "Driver":
        """
        Driver with a per-component absolute scale.

        Raises
        ------
        ValueError
            If scale_abs does not have one entry per equation
        """
        scale_abs = np.asarray(scale_abs, dtype=np.float64)
        if scale_abs.shape != (system.dimension,):
            raise ValueError(
                f"scale_abs must have shape ({system.dimension},), got {scale_abs.shape}"
            )
        control = scaled_new(eps_abs, eps_rel, a_y, a_dydt, scale_abs)
        return cls(system, step_type, hstart, control)

    # ========================================================================
    # Limits
    # ========================================================================

    def set_hmin(self, hmin: float) -> None:
        """
        Set the minimum step magnitude.

        Raises
        ------
        ValueError
            If hmin is negative or larger than hmax
        """
        hmin = float(hmin)
        if not hmin >= 0.0:
            raise ValueError(f"hmin must be non-negative, got {hmin}")
        if hmin > self.hmax:
            raise ValueError(f"hmin ({hmin}) must not exceed hmax ({self.hmax})")
        self.hmin = hmin

    def set_hmax(self, hmax: float) -> None:
        """
        Set the maximum step magnitude.

        A current step size above the new limit is clamped with a
        UserWarning.

        Raises
        ------
        ValueError
            If hmax is not positive or smaller than hmin
        """
        hmax = float(hmax)
        if not hmax > 0.0:
            raise ValueError(f"hmax must be positive, got {hmax}")
        if hmax < self.hmin:
            raise ValueError(f"hmax ({hmax}) must not be smaller than hmin ({self.hmin})")
        self.hmax = hmax
        if abs(self.h) > hmax:
            warnings.warn(
                f"Step size {self.h} exceeds hmax={hmax}; clamping it",
                UserWarning,
            )
            self.h = float(np.copysign(hmax, self.h))

    def set_nmax(self, nmax: int) -> None:
        """
        Set the maximum number of steps per `apply` call (0 = unlimited).

        Raises
        ------
        ValueError
            If nmax is negative or not an integer
        """
        if isinstance(nmax, bool) or not isinstance(nmax, (int, np.integer)):
            raise ValueError(f"nmax must be a non-negative integer, got {nmax!r}")
        if nmax < 0:
            raise ValueError(f"nmax must be a non-negative integer, got {nmax}")
        self.nmax = int(nmax)

    # ========================================================================
    # Evolution
    # ========================================================================

    def apply(self, t: float, t1: float, y: StateVector) -> Tuple[Status, float]:
        """
        Integrate from t to t1, updating y in place.

        Parameters
        ----------
        t : float
            Current time
        t1 : float
            Target time
        y : StateVector
            State at t (n,), overwritten with the state at the returned time

        Returns
        -------
        Tuple[Status, float]
            (SUCCESS, t1), or the failure status and the time of the last
            successful step: MAX_ITERATION, NO_PROGRESS, BAD_FUNCTION,
            FAULT or the evolver's failure status.

        Raises
        ------
        ValueError
            If the current step size points away from t1, or y does not
            match the system dimension

        Examples
        --------
        >>> y = np.array([1.0])
        >>> status, t = driver.apply(0.0, 5.0, y)
        >>> status is Status.SUCCESS and t == 5.0
        True
        """
        return self._evolve(float(t), float(t1), y)

    def _evolve(
        self, t: float, t1: float, y: StateVector, on_step: Optional[StepHook] = None
    ) -> Tuple[Status, float]:
        as_state_buffer(y, self.system.dimension, "y")
        if (self.h > 0.0 and t1 < t) or (self.h < 0.0 and t1 > t):
            raise ValueError("integration limits and the sign of h are inconsistent")

        self.n = 0
        while t != t1:
            if abs(self.h) > self.hmax:
                self.h = float(np.copysign(self.hmax, self.h))
            if abs(self.h) < self.hmin and abs(t1 - t) >= self.hmin:
                return Status.NO_PROGRESS, t

            failed_before = self.evolver.failed_steps
            status, t_new, h_new = self.evolver.apply(
                self.control, self.step, self.system, t, t1, self.h, y
            )
            self._stats["failed_steps"] += self.evolver.failed_steps - failed_before
            if status is not Status.SUCCESS:
                self.h = h_new
                return status, t

            t = t_new
            self.h = h_new
            self.n += 1
            self._stats["total_steps"] += 1
            if on_step is not None:
                on_step(t, y)

            if t == t1:
                break
            if self.nmax > 0 and self.n >= self.nmax:
                return Status.MAX_ITERATION, t

        return Status.SUCCESS, t

    def apply_fixed_step(self, t: float, h: float, n: int, y: StateVector) -> Tuple[Status, float]:
        """
        Take exactly n steps of size h, updating y in place.

        Steps whose error the controller judges too large are not retried;
        the call stops with FAILURE at the last accepted point.

        Parameters
        ----------
        t : float
            Current time
        h : float
            Step size (non-zero)
        n : int
            Number of steps
        y : StateVector
            State at t (n,)

        Returns
        -------
        Tuple[Status, float]
            (status, time reached)

        Raises
        ------
        ValueError
            If h is zero or n is negative
        """
        _check_step_size(h, "h")
        if isinstance(n, bool) or not isinstance(n, (int, np.integer)) or n < 0:
            raise ValueError(f"n must be a non-negative integer, got {n!r}")
        as_state_buffer(y, self.system.dimension, "y")

        t = float(t)
        self.n = 0
        for i in range(n):
            status, t = self.evolver.apply_fixed_step(
                self.control, self.step, self.system, t, h, y
            )
            if status is not Status.SUCCESS:
                if status is Status.FAILURE:
                    self._stats["failed_steps"] += 1
                return status, t

            self.n += 1
            self._stats["total_steps"] += 1
            if self.nmax > 0 and self.n >= self.nmax and i < n - 1:
                return Status.MAX_ITERATION, t

        return Status.SUCCESS, t

    def reset(self) -> None:
        """Clear evolver and stepper history; configuration is kept."""
        self.evolver.reset()
        self.step.reset()
        self.n = 0

    def reset_hstart(self, hstart: float) -> None:
        """
        Reset and set a new starting step size.

        The sign of hstart sets the direction of the next integration.

        Raises
        ------
        ValueError
            If hstart is zero or not finite
        """
        _check_step_size(hstart, "hstart")
        self.reset()
        self.h = float(hstart)
        if abs(self.h) > self.hmax:
            warnings.warn(
                f"Step size {self.h} exceeds hmax={self.hmax}; clamping it",
                UserWarning,
            )
            self.h = float(np.copysign(self.hmax, self.h))

    # ========================================================================
    # Convenience integration
    # ========================================================================

    def integrate(
        self,
        y0: ArrayLike,
        t_span: TimeSpan,
        t_eval: Optional[TimePoints] = None,
    ) -> IntegrationResult:
        """
        Integrate over an interval and collect the solution.

        The driver is reset first, and the step direction is aligned with
        the interval. Output points are reached exactly by the stepping
        itself; there is no interpolation.

        Parameters
        ----------
        y0 : ArrayLike
            Initial state (n,); not modified
        t_span : TimeSpan
            (t_start, t_end); t_end < t_start integrates backwards
        t_eval : Optional[TimePoints]
            Output times inside t_span, monotonic in the direction of
            integration. If None, every accepted step is recorded.

        Returns
        -------
        IntegrationResult
            TypedDict containing:
            - t: Output times reached (T,)
            - y: States at those times (T, n)
            - success: Whether t_end was reached
            - status: Status of the last driver call
            - message: Status message
            - t_final: Last time reached
            - nfev, njev, nlu: Evaluation counters of this call
            - nsteps, nfailed: Accepted and rejected steps of this call
            - integration_time: Computation time (seconds)
            - solver: Stepper name

        Raises
        ------
        ValueError
            If y0 has the wrong shape or t_eval is outside t_span or not
            monotonic

        Examples
        --------
        >>> result = driver.integrate(np.array([1.0]), (0.0, 5.0), t_eval=[1.0, 2.0, 5.0])
        >>> result["t"]
        array([1., 2., 5.])
        >>> result["success"]
        True
        """
        start_time = time.time()

        n = self.system.dimension
        y = np.array(y0, dtype=np.float64)
        if y.shape != (n,):
            raise ValueError(f"y0 must have shape ({n},), got {y.shape}")
        t0, tf = float(t_span[0]), float(t_span[1])
        direction = 1.0 if tf >= t0 else -1.0
        t_points = _check_output_times(t_eval, t0, tf, direction)

        if self.h * direction < 0.0:
            self.reset_hstart(-self.h)
        else:
            self.reset()

        counters_before = self._counters()
        times: List[float] = []
        states: List[np.ndarray] = []

        def record(t_now: float, y_now: np.ndarray) -> None:
            times.append(t_now)
            states.append(y_now.copy())

        status = Status.SUCCESS
        t = t0
        if t_points is None:
            record(t, y)
            status, t = self._evolve(t, tf, y, on_step=record)
        else:
            for t_out in t_points:
                if t_out != t:
                    status, t = self._evolve(t, float(t_out), y)
                    if status is not Status.SUCCESS:
                        break
                record(t, y)

        elapsed = time.time() - start_time
        self._stats["total_time"] += elapsed
        counters_after = self._counters()

        success = status is Status.SUCCESS
        if not success:
            warnings.warn(
                f"Integration stopped at t={t}: {status.describe()}",
                RuntimeWarning,
            )

        result: IntegrationResult = {
            "t": np.array(times),
            "y": np.array(states).reshape(len(states), n),
            "success": success,
            "status": status,
            "message": (
                f"{self.step.name} integration completed"
                if success
                else f"{self.step.name} integration failed: {status.describe()}"
            ),
            "t_final": t,
            "nfev": counters_after["nfev"] - counters_before["nfev"],
            "njev": counters_after["njev"] - counters_before["njev"],
            "nlu": counters_after["nlu"] - counters_before["nlu"],
            "nsteps": counters_after["total_steps"] - counters_before["total_steps"],
            "nfailed": counters_after["failed_steps"] - counters_before["failed_steps"],
            "integration_time": elapsed,
            "solver": self.step.name,
        }
        return result

    # ========================================================================
    # Statistics
    # ========================================================================

    def _counters(self) -> dict:
        stepper_stats = self.step.get_stats()
        return {
            "total_steps": self._stats["total_steps"],
            "failed_steps": self._stats["failed_steps"],
            "nfev": stepper_stats["nfev"] + self.evolver.nfev,
            "njev": stepper_stats["njev"],
            "nlu": stepper_stats["nlu"],
        }

    def get_stats(self) -> DriverStats:
        """
        Get integration statistics.

        Returns
        -------
        DriverStats
            - 'total_steps': Accepted steps
            - 'failed_steps': Steps rejected by the controller
            - 'nfev', 'njev', 'nlu': Evaluation counters
            - 'total_time': Time spent in `integrate`
            - 'avg_fev_per_step': Function evaluations per accepted step

        Examples
        --------
        >>> driver.integrate(y0, (0.0, 10.0))
        >>> stats = driver.get_stats()
        >>> print(f"Evals/step: {stats['avg_fev_per_step']:.1f}")
        """
        counters = self._counters()
        return DriverStats(
            total_steps=counters["total_steps"],
            failed_steps=counters["failed_steps"],
            nfev=counters["nfev"],
            njev=counters["njev"],
            nlu=counters["nlu"],
            total_time=self._stats["total_time"],
            avg_fev_per_step=counters["nfev"] / max(1, counters["total_steps"]),
        )

    def reset_stats(self) -> None:
        """Reset all statistics to zero."""
        self._stats["total_steps"] = 0
        self._stats["failed_steps"] = 0
        self._stats["total_time"] = 0.0
        self.step.reset_stats()
        self.evolver.nfev = 0

    def __repr__(self) -> str:
        return (
            f"Driver(step={self.step.name}, control={self.control.name}, "
            f"dimension={self.system.dimension}, h={self.h})"
        )

    def __str__(self) -> str:
        return f"{self.step.name} driver (h={self.h:.3g}, n={self.system.dimension})"


def _check_step_size(h: float, name: str) -> None:
    h = float(h)
    if h == 0.0 or not np.isfinite(h):
        raise ValueError(f"{name} must be non-zero and finite, got {h}")


def _check_output_times(
    t_eval: Optional[TimePoints], t0: float, tf: float, direction: float
) -> Optional[np.ndarray]:
    if t_eval is None:
        return None
    t_points = np.asarray(t_eval, dtype=np.float64)
    if t_points.ndim != 1 or t_points.size == 0:
        raise ValueError("t_eval must be a non-empty 1-D array")
    lo, hi = min(t0, tf), max(t0, tf)
    if np.any(t_points < lo) or np.any(t_points > hi):
        raise ValueError(f"t_eval must lie within t_span ({t0}, {tf})")
    if np.any(direction * np.diff(t_points) < 0.0):
        raise ValueError("t_eval must be monotonic in the direction of integration")
    return t_points


# ============================================================================
# Factory
# ============================================================================


class DriverFactory:
    """
    Factory for drivers configured from an options dictionary.

    Options (all optional):
    - hstart : float - initial step size (default 1e-6)
    - atol / eps_abs : float - absolute tolerance (default 1e-8)
    - rtol / eps_rel : float - relative tolerance (default 1e-6)
    - a_y, a_dydt : float - scaling factors (default 1.0, 0.0)
    - scale_abs : ArrayLike - per-component scale ('scaled' control only)
    - hmin, hmax : float - step-size limits
    - nmax : int - step limit per `apply`

    Examples
    --------
    >>> driver = DriverFactory.create(system, method="rk8pd", rtol=1e-10, atol=1e-12)
    >>> driver = DriverFactory.for_stiff(system)
    """

    _DEFAULT_METHOD = "rkf45"
    _CONTROL_FLAVORS = ("standard", "y", "yp", "scaled")

    @classmethod
    def create(
        cls,
        system: ODESystem,
        method: Union[StepMethod, str, StepType] = "rkf45",
        control: ControlFlavor = "standard",
        **options: Unpack[DriverOptions],
    ) -> Driver:
        """
        Create a driver.

        Raises
        ------
        ValueError
            If the method, the control flavor or an option name is unknown,
            or an option value is invalid
        """
        if control not in cls._CONTROL_FLAVORS:
            raise ValueError(
                f"Invalid control '{control}'. Choose from: {list(cls._CONTROL_FLAVORS)}"
            )
        unknown = sorted(set(options) - set(DriverOptions.__annotations__))
        if unknown:
            raise ValueError(
                f"Unknown driver options {unknown}. "
                f"Choose from: {sorted(DriverOptions.__annotations__)}"
            )

        hstart = options.get("hstart", 1e-6)
        eps_abs = options.get("atol", options.get("eps_abs", 1e-8))
        eps_rel = options.get("rtol", options.get("eps_rel", 1e-6))
        a_y = options.get("a_y", 1.0)
        a_dydt = options.get("a_dydt", 0.0)

        if control == "y":
            driver = Driver.y_new(system, method, hstart, eps_abs, eps_rel)
        elif control == "yp":
            driver = Driver.yp_new(system, method, hstart, eps_abs, eps_rel)
        elif control == "scaled":
            if "scale_abs" not in options:
                raise ValueError("control='scaled' requires the scale_abs option")
            driver = Driver.scaled_new(
                system, method, hstart, eps_abs, eps_rel, a_y, a_dydt, options["scale_abs"]
            )
        else:
            driver = Driver.standard_new(system, method, hstart, eps_abs, eps_rel, a_y, a_dydt)

        if "hmax" in options:
            driver.set_hmax(options["hmax"])
        if "hmin" in options:
            driver.set_hmin(options["hmin"])
        if "nmax" in options:
            driver.set_nmax(options["nmax"])
        return driver

    @classmethod
    def for_stiff(cls, system: ODESystem, **options: Unpack[DriverOptions]) -> Driver:
        """
        Driver for stiff problems: variable-order BDF.

        Requires the system to provide a Jacobian.
        """
        if not system.has_jacobian:
            raise ValueError("Stiff methods require a system with a Jacobian")
        return cls.create(system, method="msbdf", **options)

    @classmethod
    def for_high_accuracy(cls, system: ODESystem, **options: Unpack[DriverOptions]) -> Driver:
        """Driver for smooth problems at tight tolerances: Prince-Dormand 8(9)."""
        default_options: DriverOptions = {"rtol": 1e-10, "atol": 1e-12}
        default_options.update(options)
        return cls.create(system, method="rk8pd", **default_options)

    @staticmethod
    def list_methods():
        return list_all_methods()


def create_driver(
    system: ODESystem,
    method: Union[StepMethod, str, StepType] = "rkf45",
    control: ControlFlavor = "standard",
    **options: Unpack[DriverOptions],
) -> Driver:
    """
    Convenience function for creating drivers.

    Alias for DriverFactory.create().

    Examples
    --------
    >>> driver = create_driver(system)
    >>> driver = create_driver(system, method="bsimp", rtol=1e-8)
    """
    return DriverFactory.create(system, method, control, **options)
