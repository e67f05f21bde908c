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
Exceptions raised by user callbacks to abort a step.

The engine itself never raises these; it catches them at the system
boundary and turns them into `Status` values.
"""

from odevolve.types.status import Status


class FunctionEvaluationError(Exception):
    """
    Raised by a derivative or Jacobian callback to reject the current step.

    The step is aborted, the state restored, and the evolver retries with
    a smaller step size.

    Attributes
    ----------
    status : Status
        Status reported to the stepper (default FAILURE)

    Examples
    --------
    >>> def f(t, y):
    ...     if y[0] < 0:
    ...         raise FunctionEvaluationError("y left the domain of sqrt")
    ...     return np.sqrt(y)
    """

    def __init__(self, message: str = "", status: Status = Status.FAILURE):
        super().__init__(message)
        self.status = Status(status)


class BadFunctionError(FunctionEvaluationError):
    """
    Raised by a callback to abort the integration.

    Propagated as `Status.BAD_FUNCTION` without retry. The stepper and
    evolver (or the driver) must be reset before further use.
    """

    def __init__(self, message: str = ""):
        super().__init__(message, Status.BAD_FUNCTION)
