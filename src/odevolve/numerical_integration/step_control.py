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
Step-Size Control

A controller compares the local error estimate of a trial step with the
desired error level of every component

    D_i = eps_abs * s_i + eps_rel * (a_y |y_i| + a_dydt |h y'_i|)

and decides whether the step size has to shrink (the step is rejected),
may grow, or stays the same. With R = max_i |yerr_i| / D_i and q the
order of the stepper:

    R > 1.1:  h <- h * max(0.2, 0.9 R^(-1/q))        DECREASE
    R < 0.5:  h <- h * min(5.0, 0.9 R^(-1/(q+1)))    INCREASE
    else:     h unchanged                            UNCHANGED

The multiplier is always kept within [0.2, 5].

Flavors
-------
- standard_new(eps_abs, eps_rel, a_y, a_dydt)
- y_new(eps_abs, eps_rel): a_y = 1, a_dydt = 0
- yp_new(eps_abs, eps_rel): a_y = 0, a_dydt = 1
- scaled_new(eps_abs, eps_rel, a_y, a_dydt, scale_abs): eps_abs weighted
  per component by scale_abs

Usage
-----
>>> control = y_new(1e-8, 1e-6)
>>> decision, h = control.hadjust(step, y, yerr, dydt, h)
>>> if decision is HAdjust.DECREASE:
...     # retry the step with the smaller h
"""

import weakref
from typing import TYPE_CHECKING, Optional, Tuple

import numpy as np

from odevolve.types.core import ArrayLike, ScaleVector
from odevolve.types.status import HAdjust

if TYPE_CHECKING:
    from odevolve.numerical_integration.driver import Driver
    from odevolve.numerical_integration.stepper_base import Stepper

SAFETY = 0.9
DECREASE_THRESHOLD = 1.1
INCREASE_THRESHOLD = 0.5
MIN_FACTOR = 0.2
MAX_FACTOR = 5.0


class StandardControl:
    """
    Standard step-size controller.

    Parameters
    ----------
    eps_abs : float
        Absolute tolerance
    eps_rel : float
        Relative tolerance
    a_y : float
        Weight of |y_i| in the desired error level
    a_dydt : float
        Weight of |h y'_i| in the desired error level

    Raises
    ------
    ValueError
        If a parameter is negative or both tolerances are zero

    Examples
    --------
    >>> control = StandardControl(1e-6, 0.0, 1.0, 0.0)
    >>> control.errlevel(2.0, 0.0, 0.1, 0)
    1e-06
    """

    name = "standard"

    def __init__(self, eps_abs: float, eps_rel: float, a_y: float, a_dydt: float):
        self._driver_ref: Optional[weakref.ReferenceType] = None
        self.init(eps_abs, eps_rel, a_y, a_dydt)

    def init(self, eps_abs: float, eps_rel: float, a_y: float, a_dydt: float) -> None:
        """(Re)configure the tolerances."""
        if eps_abs < 0.0:
            raise ValueError(f"eps_abs must be non-negative, got {eps_abs}")
        if eps_rel < 0.0:
            raise ValueError(f"eps_rel must be non-negative, got {eps_rel}")
        if a_y < 0.0:
            raise ValueError(f"a_y must be non-negative, got {a_y}")
        if a_dydt < 0.0:
            raise ValueError(f"a_dydt must be non-negative, got {a_dydt}")
        if eps_abs == 0.0 and eps_rel == 0.0:
            raise ValueError("eps_abs and eps_rel cannot both be zero")

        self.eps_abs = float(eps_abs)
        self.eps_rel = float(eps_rel)
        self.a_y = float(a_y)
        self.a_dydt = float(a_dydt)

    # ========================================================================
    # Driver back-reference
    # ========================================================================

    @property
    def driver(self) -> Optional["Driver"]:
        if self._driver_ref is None:
            return None
        return self._driver_ref()

    def set_driver(self, driver: Optional["Driver"]) -> None:
        self._driver_ref = weakref.ref(driver) if driver is not None else None

    # ========================================================================
    # Desired error level
    # ========================================================================

    def _scale(self, dimension: int) -> np.ndarray:
        return np.ones(dimension)

    def errlevel(self, y_i: float, dydt_i: float, h: float, i: int) -> float:
        """
        Desired error level of component i.

        Raises
        ------
        ValueError
            If the level is not positive (e.g. eps_rel only and y_i = 0)
        """
        scale = self._component_scale(i)
        level = self.eps_abs * scale + self.eps_rel * (
            self.a_y * abs(y_i) + self.a_dydt * abs(h * dydt_i)
        )
        if level <= 0.0:
            raise ValueError(f"Desired error level of component {i} is not positive")
        return level

    def _component_scale(self, i: int) -> float:
        return 1.0

    def errlevels(self, y: ArrayLike, dydt: ArrayLike, h: float) -> np.ndarray:
        """
        Desired error levels of all components at once.

        Unlike `errlevel`, non-positive levels are returned as they are;
        callers decide how to treat them.
        """
        y = np.asarray(y, dtype=np.float64)
        dydt = np.asarray(dydt, dtype=np.float64)
        return self.eps_abs * self._scale(y.shape[0]) + self.eps_rel * (
            self.a_y * np.abs(y) + self.a_dydt * np.abs(h * dydt)
        )

    # ========================================================================
    # Step-size decision
    # ========================================================================

    def error_ratio(self, y: ArrayLike, yerr: ArrayLike, dydt: ArrayLike, h: float) -> float:
        """
        R = max_i |yerr_i| / D_i, with 0/0 counted as 0.

        Never smaller than the smallest positive float, so R^(-1/q) stays
        finite. A non-finite error gives R = inf.
        """
        levels = self.errlevels(y, dydt, h)
        abs_err = np.abs(np.asarray(yerr, dtype=np.float64))
        with np.errstate(divide="ignore", invalid="ignore"):
            ratios = np.where(abs_err == 0.0, 0.0, abs_err / levels)
        ratio = float(np.max(ratios))
        if not np.isfinite(ratio):
            return np.inf
        return max(ratio, np.finfo(float).tiny)

    def hadjust(
        self,
        step: "Stepper",
        y: ArrayLike,
        yerr: ArrayLike,
        dydt: ArrayLike,
        h: float,
    ) -> Tuple[HAdjust, float]:
        """
        Decide on the next step size.

        Parameters
        ----------
        step : Stepper
            Stepper that produced yerr; its order sets the exponents
        y : ArrayLike
            State after the trial step
        yerr : ArrayLike
            Error estimate of the trial step
        dydt : ArrayLike
            Derivative after the trial step
        h : float
            Step size of the trial step

        Returns
        -------
        Tuple[HAdjust, float]
            Decision and the (possibly) adjusted step size

        Examples
        --------
        >>> decision, h_new = control.hadjust(step, y, yerr, dydt, 0.1)
        >>> decision
        <HAdjust.UNCHANGED: 0>
        """
        q = max(1, step.order())
        ratio = self.error_ratio(y, yerr, dydt, h)

        if ratio > DECREASE_THRESHOLD:
            factor = max(MIN_FACTOR, SAFETY * ratio ** (-1.0 / q))
            decision = HAdjust.DECREASE
        elif ratio < INCREASE_THRESHOLD:
            factor = min(MAX_FACTOR, SAFETY * ratio ** (-1.0 / (q + 1)))
            decision = HAdjust.INCREASE
        else:
            return HAdjust.UNCHANGED, h

        factor = min(MAX_FACTOR, max(MIN_FACTOR, factor))
        return decision, h * factor

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(eps_abs={self.eps_abs}, eps_rel={self.eps_rel}, "
            f"a_y={self.a_y}, a_dydt={self.a_dydt})"
        )


class ScaledControl(StandardControl):
    """
    Standard controller with a per-component absolute scale:

        D_i = eps_abs * scale_abs_i + eps_rel * (a_y |y_i| + a_dydt |h y'_i|)

    Raises
    ------
    ValueError
        If scale_abs is not one-dimensional or has negative entries
    """

    name = "scaled"

    def __init__(
        self,
        eps_abs: float,
        eps_rel: float,
        a_y: float,
        a_dydt: float,
        scale_abs: ScaleVector,
    ):
        scale_abs = np.array(scale_abs, dtype=np.float64)
        if scale_abs.ndim != 1 or scale_abs.size == 0:
            raise ValueError(f"scale_abs must be a non-empty 1-D array, got shape {scale_abs.shape}")
        if np.any(scale_abs < 0.0):
            raise ValueError("scale_abs entries must be non-negative")
        self._scale_abs = scale_abs
        super().__init__(eps_abs, eps_rel, a_y, a_dydt)

    @property
    def scale_abs(self) -> np.ndarray:
        return self._scale_abs.copy()

    def _component_scale(self, i: int) -> float:
        return float(self._scale_abs[i])

    def _scale(self, dimension: int) -> np.ndarray:
        if dimension != self._scale_abs.shape[0]:
            raise ValueError(
                f"scale_abs has {self._scale_abs.shape[0]} entries, system has {dimension}"
            )
        return self._scale_abs


# ============================================================================
# Constructors
# ============================================================================


def standard_new(eps_abs: float, eps_rel: float, a_y: float, a_dydt: float) -> StandardControl:
    """Controller with D_i = eps_abs + eps_rel (a_y |y_i| + a_dydt |h y'_i|)."""
    return StandardControl(eps_abs, eps_rel, a_y, a_dydt)


def y_new(eps_abs: float, eps_rel: float) -> StandardControl:
    """Controller keeping the local error relative to the state."""
    return StandardControl(eps_abs, eps_rel, 1.0, 0.0)


def yp_new(eps_abs: float, eps_rel: float) -> StandardControl:
    """Controller keeping the local error relative to the derivative."""
    return StandardControl(eps_abs, eps_rel, 0.0, 1.0)


def scaled_new(
    eps_abs: float,
    eps_rel: float,
    a_y: float,
    a_dydt: float,
    scale_abs: ScaleVector,
) -> ScaledControl:
    """Controller with the absolute tolerance scaled per component."""
    return ScaledControl(eps_abs, eps_rel, a_y, a_dydt, scale_abs)
