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
Trajectory, Result and Statistics Types

Defines the data structures returned by the convenience layer on top of
the stepping engine:
- Time arrays and spans
- Integration results (states at requested grid points)
- Evaluation statistics of steppers and drivers

Shape Conventions
-----------------
Time-major ordering:
- t: (T,)
- y: (T, n)

Usage
-----
>>> from odevolve.types.trajectories import IntegrationResult
>>>
>>> result: IntegrationResult = driver.integrate(y0, (0.0, 10.0))
>>> t, y = result["t"], result["y"]
"""

from typing import Tuple

from typing_extensions import TypedDict

from .core import ArrayLike

# ============================================================================
# Time Types
# ============================================================================

TimePoints = ArrayLike
"""
Monotonic array of output times (T,).

The driver reaches each of them exactly; there is no interpolation
between internal steps.
"""

TimeSpan = Tuple[float, float]
"""
Integration interval (t_start, t_end). t_end < t_start integrates backwards.
"""

StateTrajectory = ArrayLike
"""
States at the output times, shape (T, n).
"""


# ============================================================================
# Result Types
# ============================================================================


class IntegrationResult(TypedDict, total=False):
    """
    Result of `Driver.integrate`.

    Attributes
    ----------
    t : np.ndarray
        Output times reached (T,). On failure only the times that were
        reached are included.
    y : np.ndarray
        States at those times (T, n)
    success : bool
        Whether the whole span was integrated
    status : Status
        Status of the last driver call
    message : str
        Status message
    t_final : float
        Time of the last successful step
    nfev : int
        Right-hand side evaluations
    njev : int
        Jacobian evaluations
    nlu : int
        LU factorizations
    nsteps : int
        Accepted steps
    nfailed : int
        Rejected step attempts
    integration_time : float
        Computation time in seconds
    solver : str
        Stepper name

    Examples
    --------
    >>> result = driver.integrate(np.array([1.0]), (0.0, 5.0))
    >>> if result["success"]:
    ...     print(result["y"][-1])
    """

    t: ArrayLike
    y: ArrayLike
    success: bool
    status: int
    message: str
    t_final: float
    nfev: int
    njev: int
    nlu: int
    nsteps: int
    nfailed: int
    integration_time: float
    solver: str


class StepperStats(TypedDict):
    """
    Evaluation counters of one stepper.

    Attributes
    ----------
    nfev : int
        Right-hand side evaluations
    njev : int
        Jacobian evaluations
    nlu : int
        LU factorizations of an iteration matrix
    """

    nfev: int
    njev: int
    nlu: int


class DriverStats(TypedDict):
    """
    Aggregated counters of a driver.

    Attributes
    ----------
    total_steps : int
        Accepted steps since the last `reset_stats`
    failed_steps : int
        Rejected attempts since the last `reset_stats`
    nfev : int
        Right-hand side evaluations
    njev : int
        Jacobian evaluations
    nlu : int
        LU factorizations
    total_time : float
        Wall-clock time spent in `integrate`
    avg_fev_per_step : float
        nfev / max(1, total_steps)
    """

    total_steps: int
    failed_steps: int
    nfev: int
    njev: int
    nlu: int
    total_time: float
    avg_fev_per_step: float
