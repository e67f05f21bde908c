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
Status Codes

Defines the values returned by every stepping, evolution and driver
operation, and the decision returned by step-size controllers.

Numerical failures are never raised: they are returned as a `Status` so
that the caller can decide whether to retry, shrink the step or give up.
Only contract violations (wrong buffer shapes, negative tolerances,
inconsistent step direction) raise `ValueError` / `TypeError`.

Usage
-----
>>> from odevolve.types.status import Status, HAdjust
>>>
>>> status, t = driver.apply(0.0, 1.0, y)
>>> if status is not Status.SUCCESS:
...     print(f"stopped at t={t}: {status.describe()}")
"""

from enum import Enum, IntEnum


class Status(IntEnum):
    """
    Outcome of a stepper, evolver or driver call.

    Attributes
    ----------
    SUCCESS : int
        Operation completed
    FAILURE : int
        Generic failure. From a stepper: the step could not be computed
        (singular iteration matrix, diverging corrector, too large h) and
        should be retried with a smaller step. From an evolver: the step
        size was driven below the resolution of t.
    FAULT : int
        A stepper that needs a driver back-reference was used without one
    SANITY : int
        Sanity check failed (e.g. non-positive desired error level)
    BAD_FUNCTION : int
        A user callback signalled an unrecoverable condition. The caller
        has to reset the stepper and evolver (or the driver) before
        continuing.
    MAX_ITERATION : int
        The driver reached its maximum number of steps
    NO_PROGRESS : int
        The driver step size fell below its minimum

    Examples
    --------
    >>> Status.SUCCESS == 0
    True
    >>> bool(Status.SUCCESS)
    False
    """

    SUCCESS = 0
    FAILURE = -1
    FAULT = 3
    SANITY = 7
    BAD_FUNCTION = 9
    MAX_ITERATION = 11
    NO_PROGRESS = 27

    @property
    def is_success(self) -> bool:
        """True only for SUCCESS."""
        return self is Status.SUCCESS

    def describe(self) -> str:
        """Human-readable description for result messages."""
        return _DESCRIPTIONS[self]


_DESCRIPTIONS = {
    Status.SUCCESS: "success",
    Status.FAILURE: "step size could not be reduced further",
    Status.FAULT: "stepper requires a driver but none is attached",
    Status.SANITY: "sanity check failed",
    Status.BAD_FUNCTION: "user function signalled an unrecoverable error",
    Status.MAX_ITERATION: "maximum number of steps reached",
    Status.NO_PROGRESS: "step size dropped below the minimum",
}


class HAdjust(Enum):
    """
    Step-size controller decision.

    Attributes
    ----------
    DECREASE : int
        Error too large; h was reduced and the step must be retried
    UNCHANGED : int
        Error acceptable; h left as is
    INCREASE : int
        Error well below tolerance; h was enlarged for the next step
    """

    DECREASE = -1
    UNCHANGED = 0
    INCREASE = 1
