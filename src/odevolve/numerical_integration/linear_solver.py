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
Dense LU helpers for the implicit steppers.

Thin wrappers around `scipy.linalg.lu_factor` / `lu_solve` that report a
singular or non-finite iteration matrix by returning None instead of
warning or raising, so the stepper can turn it into `Status.FAILURE` and
let the evolver retry with a smaller step.
"""

import warnings
from typing import Optional, Tuple

import numpy as np
from scipy.linalg import LinAlgWarning, lu_factor, lu_solve

LUFactor = Tuple[np.ndarray, np.ndarray]


def factor_iteration_matrix(matrix: np.ndarray) -> Optional[LUFactor]:
    """
    LU-factorize an iteration matrix such as I - h*gamma*J.

    Returns
    -------
    Optional[LUFactor]
        (lu, piv) as produced by scipy, or None when the matrix contains
        non-finite entries or is exactly singular.
    """
    if not np.all(np.isfinite(matrix)):
        return None

    with warnings.catch_warnings():
        warnings.simplefilter("ignore", LinAlgWarning)
        lu, piv = lu_factor(matrix, check_finite=False)

    if np.any(np.diag(lu) == 0.0):
        return None
    return lu, piv


def solve_factored(factor: LUFactor, rhs: np.ndarray) -> Optional[np.ndarray]:
    """Solve with a factorization; None if the solution is not finite."""
    solution = lu_solve(factor, rhs, check_finite=False)
    if not np.all(np.isfinite(solution)):
        return None
    return solution
