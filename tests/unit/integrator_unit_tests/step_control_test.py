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
Unit tests for step-size control

Tests cover:
1. Tolerance validation
2. Desired error levels (standard, y, yp and scaled flavors)
3. Error ratio
4. Step-size decisions and multipliers
5. Driver back-reference
"""

import numpy as np
import pytest

from odevolve.numerical_integration.step_control import (
    MAX_FACTOR,
    MIN_FACTOR,
    ScaledControl,
    StandardControl,
    scaled_new,
    standard_new,
    y_new,
    yp_new,
)
from odevolve.types.status import HAdjust

# ============================================================================
# Mock Stepper
# ============================================================================


class FixedOrderStepper:
    """Only what the controller reads from a stepper"""

    def __init__(self, order):
        self._order = order

    def order(self):
        return self._order


def adjust(ratio, order=2, h=1.0):
    """Run hadjust with D = 1 so that R = |yerr|"""
    control = StandardControl(1.0, 0.0, 0.0, 0.0)
    return control.hadjust(
        FixedOrderStepper(order), np.zeros(1), np.array([ratio]), np.zeros(1), h
    )


# ============================================================================
# Test Class 1: Construction
# ============================================================================


class TestConstruction:
    """Tolerance validation and flavors"""

    def test_standard(self):
        control = standard_new(1e-6, 1e-3, 0.5, 0.25)
        assert control.eps_abs == 1e-6
        assert control.eps_rel == 1e-3
        assert control.a_y == 0.5
        assert control.a_dydt == 0.25
        assert control.name == "standard"

    def test_y_flavor(self):
        control = y_new(1e-6, 1e-3)
        assert (control.a_y, control.a_dydt) == (1.0, 0.0)

    def test_yp_flavor(self):
        control = yp_new(1e-6, 1e-3)
        assert (control.a_y, control.a_dydt) == (0.0, 1.0)

    def test_scaled_flavor(self):
        control = scaled_new(1e-6, 0.0, 1.0, 0.0, [1.0, 10.0])
        assert isinstance(control, ScaledControl)
        assert control.name == "scaled"
        np.testing.assert_array_equal(control.scale_abs, [1.0, 10.0])

    @pytest.mark.parametrize(
        "args",
        [(-1e-6, 0.0, 1.0, 0.0), (0.0, -1e-6, 1.0, 0.0), (1e-6, 0.0, -1.0, 0.0), (1e-6, 0.0, 1.0, -1.0)],
    )
    def test_negative_values_rejected(self, args):
        with pytest.raises(ValueError, match="non-negative"):
            standard_new(*args)

    def test_both_tolerances_zero(self):
        with pytest.raises(ValueError, match="both be zero"):
            y_new(0.0, 0.0)

    def test_scale_negative_entry(self):
        with pytest.raises(ValueError, match="non-negative"):
            scaled_new(1e-6, 0.0, 1.0, 0.0, [1.0, -1.0])

    def test_scale_wrong_shape(self):
        with pytest.raises(ValueError, match="1-D"):
            scaled_new(1e-6, 0.0, 1.0, 0.0, [[1.0]])

    def test_scale_is_copied(self):
        scale = np.array([1.0, 2.0])
        control = scaled_new(1e-6, 0.0, 1.0, 0.0, scale)
        scale[0] = 100.0
        assert control.scale_abs[0] == 1.0

    def test_init_reconfigures(self):
        control = y_new(1e-6, 1e-3)
        control.init(1e-9, 1e-9, 0.0, 1.0)
        assert control.eps_abs == 1e-9
        assert control.a_dydt == 1.0

    def test_repr(self):
        assert "eps_abs=1e-06" in repr(y_new(1e-6, 0.0))


# ============================================================================
# Test Class 2: Desired Error Levels
# ============================================================================


class TestErrorLevels:
    """D_i = eps_abs s_i + eps_rel (a_y |y_i| + a_dydt |h y'_i|)"""

    def test_standard_level(self):
        control = standard_new(1e-3, 1e-2, 1.0, 0.5)
        level = control.errlevel(2.0, 4.0, 0.1, 0)
        assert level == pytest.approx(1e-3 + 1e-2 * (2.0 + 0.5 * 0.4))

    def test_sign_of_values_ignored(self):
        control = standard_new(1e-3, 1e-2, 1.0, 0.5)
        assert control.errlevel(-2.0, 4.0, -0.1, 0) == pytest.approx(
            control.errlevel(2.0, -4.0, 0.1, 0)
        )

    def test_scaled_level(self):
        control = scaled_new(1e-3, 0.0, 1.0, 0.0, [2.0, 3.0])
        assert control.errlevel(0.0, 0.0, 0.1, 1) == pytest.approx(3e-3)

    def test_zero_level_rejected(self):
        control = y_new(0.0, 1e-6)
        with pytest.raises(ValueError, match="not positive"):
            control.errlevel(0.0, 1.0, 0.1, 0)

    def test_vectorized_matches_scalar(self):
        control = standard_new(1e-4, 1e-3, 1.0, 1.0)
        y = np.array([1.0, -2.0, 0.5])
        dydt = np.array([0.1, 3.0, -1.0])
        levels = control.errlevels(y, dydt, 0.2)
        expected = [control.errlevel(y[i], dydt[i], 0.2, i) for i in range(3)]
        np.testing.assert_allclose(levels, expected)

    def test_scaled_dimension_mismatch(self):
        control = scaled_new(1e-3, 0.0, 1.0, 0.0, [2.0, 3.0])
        with pytest.raises(ValueError, match="entries"):
            control.errlevels(np.zeros(3), np.zeros(3), 0.1)


# ============================================================================
# Test Class 3: Error Ratio
# ============================================================================


class TestErrorRatio:
    """R = max |yerr_i| / D_i"""

    def test_maximum_over_components(self):
        control = y_new(1.0, 0.0)
        ratio = control.error_ratio(np.zeros(3), np.array([0.1, -0.7, 0.3]), np.zeros(3), 0.1)
        assert ratio == pytest.approx(0.7)

    def test_zero_over_zero_is_zero(self):
        control = y_new(0.0, 1.0)
        ratio = control.error_ratio(np.array([0.0, 1.0]), np.array([0.0, 0.5]), np.zeros(2), 0.1)
        assert ratio == pytest.approx(0.5)

    def test_floor(self):
        control = y_new(1.0, 0.0)
        ratio = control.error_ratio(np.zeros(1), np.zeros(1), np.zeros(1), 0.1)
        assert ratio == np.finfo(float).tiny

    def test_error_with_zero_level_is_infinite(self):
        control = y_new(0.0, 1.0)
        ratio = control.error_ratio(np.zeros(1), np.array([1e-3]), np.zeros(1), 0.1)
        assert ratio == np.inf

    @pytest.mark.parametrize("bad", [np.nan, np.inf, -np.inf])
    def test_non_finite_error_is_infinite(self, bad):
        control = y_new(1e-6, 1e-6)
        ratio = control.error_ratio(np.ones(2), np.array([1e-9, bad]), np.zeros(2), 0.1)
        assert ratio == np.inf


# ============================================================================
# Test Class 4: Decisions
# ============================================================================


class TestStepAdjustment:
    """Multipliers at representative error ratios"""

    def test_large_error_decreases(self):
        decision, h = adjust(10.0, order=2)
        assert decision is HAdjust.DECREASE
        assert h == pytest.approx(0.9 * 10.0 ** (-1.0 / 2.0))

    def test_huge_error_hits_lower_limit(self):
        decision, h = adjust(1e6, order=2)
        assert decision is HAdjust.DECREASE
        assert h == pytest.approx(MIN_FACTOR)

    def test_infinite_error_hits_lower_limit(self):
        control = y_new(0.0, 1.0)
        decision, h = control.hadjust(
            FixedOrderStepper(4), np.zeros(1), np.array([1.0]), np.zeros(1), 0.5
        )
        assert decision is HAdjust.DECREASE
        assert h == pytest.approx(0.1)

    def test_nan_error_hits_lower_limit(self):
        decision, h = adjust(np.nan, order=5, h=0.5)
        assert decision is HAdjust.DECREASE
        assert h == pytest.approx(0.5 * MIN_FACTOR)

    @pytest.mark.parametrize("ratio", [0.5, 0.8, 1.0, 1.1])
    def test_acceptable_error_unchanged(self, ratio):
        decision, h = adjust(ratio)
        assert decision is HAdjust.UNCHANGED
        assert h == 1.0

    def test_small_error_increases(self):
        decision, h = adjust(0.1, order=2)
        assert decision is HAdjust.INCREASE
        assert h == pytest.approx(0.9 * 0.1 ** (-1.0 / 3.0))

    def test_tiny_error_hits_upper_limit(self):
        decision, h = adjust(1e-20, order=2)
        assert decision is HAdjust.INCREASE
        assert h == pytest.approx(MAX_FACTOR)

    def test_zero_error_hits_upper_limit(self):
        decision, h = adjust(0.0, order=5)
        assert decision is HAdjust.INCREASE
        assert h == pytest.approx(5.0)

    def test_increase_may_be_below_one(self):
        """No floor of 1 on the growth branch: 0.9 R^(-1/(q+1)) < 1 near R = 0.5"""
        decision, h = adjust(0.45, order=8)
        assert decision is HAdjust.INCREASE
        assert h == pytest.approx(0.9 * 0.45 ** (-1.0 / 9.0))
        assert h < 1.0

    def test_order_zero_treated_as_one(self):
        decision, h = adjust(10.0, order=0)
        assert h == pytest.approx(max(0.2, 0.9 / 10.0))

    def test_sign_of_h_preserved(self):
        decision, h = adjust(10.0, order=2, h=-0.4)
        assert decision is HAdjust.DECREASE
        assert h < 0.0
        assert h == pytest.approx(-0.4 * 0.9 * 10.0 ** (-0.5))

    @pytest.mark.parametrize("ratio", [1e-30, 1e-3, 0.3, 0.7, 2.0, 50.0, 1e30])
    @pytest.mark.parametrize("order", [1, 2, 5, 8, 12])
    def test_multiplier_within_limits(self, ratio, order):
        _, h = adjust(ratio, order=order)
        assert MIN_FACTOR <= h <= MAX_FACTOR


# ============================================================================
# Test Class 5: Driver Back-Reference
# ============================================================================


class TestDriverReference:
    """Weak reference to the owning driver"""

    def test_default_none(self):
        assert y_new(1e-6, 0.0).driver is None

    def test_set_and_clear(self):
        class Owner:
            pass

        owner = Owner()
        control = y_new(1e-6, 0.0)
        control.set_driver(owner)
        assert control.driver is owner
        control.set_driver(None)
        assert control.driver is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
