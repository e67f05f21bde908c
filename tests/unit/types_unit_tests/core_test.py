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
Unit Tests for Core Types Module

Tests cover:
- Type alias definitions
- In-place buffer validation (dtype, shape, writeability)
- Optional buffers
- Dimension validation
"""

import numpy as np
import pytest

from odevolve.types.core import (
    ArrayLike,
    DerivativeFunction,
    JacobianFunction,
    StateVector,
    as_optional_buffer,
    as_state_buffer,
    check_dimension,
)

# ============================================================================
# Type Aliases
# ============================================================================


class TestTypeAliases:
    """Test that the aliases resolve to usable types"""

    def test_state_vector_is_ndarray(self):
        assert StateVector is np.ndarray

    def test_array_like_accepts_list(self):
        value: ArrayLike = [1.0, 2.0]
        assert np.asarray(value).shape == (2,)

    def test_callback_signatures_usable(self):
        """Callables matching the signatures can be called as documented"""

        def f(t, y):
            return -y

        def jac(t, y):
            return -np.eye(1), np.zeros(1)

        func: DerivativeFunction = f
        jacobian: JacobianFunction = jac
        y = np.array([2.0])

        np.testing.assert_array_equal(func(0.0, y), [-2.0])
        dfdy, dfdt = jacobian(0.0, y)
        assert dfdy.shape == (1, 1)
        assert dfdt.shape == (1,)


# ============================================================================
# Buffer Validation
# ============================================================================


class TestStateBuffer:
    """Test as_state_buffer"""

    def test_returns_same_object(self):
        y = np.array([1.0, 2.0])
        assert as_state_buffer(y, 2) is y

    def test_rejects_list(self):
        with pytest.raises(TypeError, match="numpy.ndarray"):
            as_state_buffer([1.0, 2.0], 2)

    def test_rejects_integer_dtype(self):
        with pytest.raises(TypeError, match="float64"):
            as_state_buffer(np.array([1, 2]), 2)

    def test_rejects_float32(self):
        with pytest.raises(TypeError, match="float64"):
            as_state_buffer(np.zeros(2, dtype=np.float32), 2)

    def test_rejects_wrong_length(self):
        with pytest.raises(ValueError, match=r"shape \(2,\)"):
            as_state_buffer(np.zeros(3), 2)

    def test_rejects_two_dimensional(self):
        with pytest.raises(ValueError):
            as_state_buffer(np.zeros((2, 1)), 2)

    def test_rejects_read_only(self):
        y = np.zeros(2)
        y.flags.writeable = False
        with pytest.raises(ValueError, match="writeable"):
            as_state_buffer(y, 2)

    def test_name_in_message(self):
        with pytest.raises(ValueError, match="yerr"):
            as_state_buffer(np.zeros(3), 2, "yerr")


class TestOptionalBuffer:
    """Test as_optional_buffer"""

    def test_none_passes(self):
        assert as_optional_buffer(None, 3, "dydt_in") is None

    def test_array_checked(self):
        with pytest.raises(ValueError, match="dydt_out"):
            as_optional_buffer(np.zeros(2), 3, "dydt_out")


class TestCheckDimension:
    """Test check_dimension"""

    def test_positive_int(self):
        assert check_dimension(3) == 3

    def test_numpy_integer(self):
        value = check_dimension(np.int64(4))
        assert value == 4
        assert type(value) is int

    @pytest.mark.parametrize("dimension", [0, -1])
    def test_non_positive(self, dimension):
        with pytest.raises(ValueError, match="positive integer"):
            check_dimension(dimension)

    @pytest.mark.parametrize("dimension", [2.0, "2", True, None])
    def test_non_integer(self, dimension):
        with pytest.raises(ValueError, match="positive integer"):
            check_dimension(dimension)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
