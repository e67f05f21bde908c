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
Unit tests for the Driver and DriverFactory

Tests cover:
1. Construction variants and back-references
2. Reaching the target time exactly
3. Step-size and step-count limits (hmax, hmin, nmax)
4. Failure statuses and state at failure
5. Fixed-step integration
6. Reset and change of direction
7. Convenience integration with output times
8. Statistics
9. Factory and convenience function
"""

import numpy as np
import pytest

from odevolve.numerical_integration.driver import Driver, DriverFactory, create_driver
from odevolve.numerical_integration.step_control import ScaledControl
from odevolve.systems import BadFunctionError, FunctionEvaluationError, ODESystem
from odevolve.types.status import Status

# ============================================================================
# Mock Systems
# ============================================================================


def decay_system():
    return ODESystem(
        lambda t, y: -y,
        1,
        jacobian=lambda t, y: (-np.eye(1), np.zeros(1)),
    )


def oscillator_system():
    return ODESystem(lambda t, y: np.array([y[1], -y[0]]), 2)


def bad_after_one():
    def f(t, y):
        if t > 1.0:
            raise BadFunctionError("outside the model's range")
        return -y

    return ODESystem(f, 1)


def failing_after_one():
    def f(t, y):
        if t > 1.0:
            raise FunctionEvaluationError("step reaches past t = 1")
        return -y

    return ODESystem(f, 1)


def record_step_sizes(driver, monkeypatch):
    """Record the h of every step attempted by the driver's stepper"""
    sizes = []
    original = driver.step.apply

    def spy(t, h, *args, **kwargs):
        sizes.append(h)
        return original(t, h, *args, **kwargs)

    monkeypatch.setattr(driver.step, "apply", spy)
    return sizes


@pytest.fixture
def driver():
    return Driver.y_new(decay_system(), "rkf45", 1e-3, 1e-10, 1e-10)


# ============================================================================
# Test Class 1: Construction
# ============================================================================


class TestConstruction:
    """Class-method constructors and validation"""

    def test_y_new(self, driver):
        assert driver.step.name == "rkf45"
        assert driver.control.a_y == 1.0
        assert driver.control.a_dydt == 0.0
        assert driver.h == 1e-3
        assert driver.hmin == 0.0
        assert driver.nmax == 0

    def test_yp_new(self):
        driver = Driver.yp_new(decay_system(), "rk8pd", 1e-3, 1e-8, 1e-8)
        assert driver.control.a_y == 0.0
        assert driver.control.a_dydt == 1.0

    def test_standard_new(self):
        driver = Driver.standard_new(decay_system(), "msbdf", 1e-3, 1e-8, 1e-6, 0.5, 0.5)
        assert driver.step.name == "msbdf"
        assert driver.control.a_y == 0.5

    def test_scaled_new(self):
        driver = Driver.scaled_new(
            oscillator_system(), "rkck", 1e-3, 1e-8, 0.0, 1.0, 0.0, [1.0, 10.0]
        )
        assert isinstance(driver.control, ScaledControl)

    def test_scaled_new_wrong_shape(self):
        with pytest.raises(ValueError, match="scale_abs"):
            Driver.scaled_new(oscillator_system(), "rkck", 1e-3, 1e-8, 0.0, 1.0, 0.0, [1.0])

    def test_back_references(self, driver):
        assert driver.step.driver is driver
        assert driver.control.driver is driver
        assert driver.evolver.driver is driver

    @pytest.mark.parametrize("hstart", [0.0, np.inf, np.nan])
    def test_invalid_hstart(self, hstart):
        with pytest.raises(ValueError, match="hstart"):
            Driver.y_new(decay_system(), "rkf45", hstart, 1e-6, 1e-6)

    def test_unknown_method(self):
        with pytest.raises(ValueError, match="Unknown method"):
            Driver.y_new(decay_system(), "euler", 1e-3, 1e-6, 1e-6)

    def test_system_type_checked(self):
        with pytest.raises(TypeError, match="ODESystem"):
            Driver.y_new(lambda t, y: -y, "rkf45", 1e-3, 1e-6, 1e-6)

    def test_repr(self, driver):
        assert "rkf45" in repr(driver)
        assert "rkf45" in str(driver)


# ============================================================================
# Test Class 2: Apply
# ============================================================================


class TestApply:
    """Integration to a target time"""

    def test_reaches_target_exactly(self, driver):
        y = np.array([1.0])

        status, t = driver.apply(0.0, 1.0, y)

        assert status is Status.SUCCESS
        assert t == 1.0
        assert y[0] == pytest.approx(np.exp(-1.0), abs=1e-8)

    def test_consecutive_calls(self, driver):
        y = np.array([1.0])
        t = 0.0
        for t_out in (0.3, 0.7, 1.0):
            status, t = driver.apply(t, t_out, y)
            assert status is Status.SUCCESS
            assert t == t_out

        assert y[0] == pytest.approx(np.exp(-1.0), abs=1e-8)

    def test_oscillator(self):
        driver = Driver.y_new(oscillator_system(), "rk8pd", 1e-3, 1e-10, 1e-10)
        y = np.array([1.0, 0.0])

        status, _ = driver.apply(0.0, 2.0 * np.pi, y)

        assert status is Status.SUCCESS
        np.testing.assert_allclose(y, [1.0, 0.0], atol=1e-7)

    def test_sign_mismatch(self, driver):
        with pytest.raises(ValueError, match="inconsistent"):
            driver.apply(1.0, 0.0, np.array([1.0]))

    def test_state_shape_checked(self, driver):
        with pytest.raises(ValueError):
            driver.apply(0.0, 1.0, np.ones(2))


# ============================================================================
# Test Class 3: Limits
# ============================================================================


class TestLimits:
    """hmax, hmin and nmax"""

    def test_hmax_bounds_every_attempt(self, driver, monkeypatch):
        sizes = record_step_sizes(driver, monkeypatch)
        driver.set_hmax(0.05)
        y = np.array([1.0])

        status, t = driver.apply(0.0, 1.0, y)

        assert status is Status.SUCCESS
        assert t == 1.0
        assert len(sizes) >= 20
        assert max(abs(h) for h in sizes) <= 0.05

    def test_hmin_before_first_step(self, driver):
        driver.set_hmin(0.1)
        y = np.array([1.0])

        status, t = driver.apply(0.0, 1.0, y)

        assert status is Status.NO_PROGRESS
        assert t == 0.0
        assert y[0] == 1.0

    def test_hmin_bounds_rejected_steps(self, monkeypatch):
        """A rejection asking for a step below hmin stops before trying it"""
        driver = Driver.y_new(decay_system(), "rkf45", 1.0, 1e-12, 1e-12)
        driver.set_hmin(0.5)
        sizes = record_step_sizes(driver, monkeypatch)
        y = np.array([1.0])

        status, t = driver.apply(0.0, 5.0, y)

        assert status is Status.NO_PROGRESS
        assert t == 0.0
        assert y[0] == 1.0
        assert sizes == [1.0]
        assert driver.get_stats()["failed_steps"] == 1

    def test_hmin_bounds_halved_steps(self, monkeypatch):
        """Failures past t = 1 halve h; progress stops before h < hmin"""
        driver = Driver.y_new(failing_after_one(), "rkf45", 1e-3, 1e-8, 1e-8)
        driver.set_hmin(1e-3)
        sizes = record_step_sizes(driver, monkeypatch)
        y = np.array([1.0])

        status, t = driver.apply(0.0, 2.0, y)

        assert status is Status.NO_PROGRESS
        assert 0.5 < t <= 1.0
        assert y[0] == pytest.approx(np.exp(-t), abs=1e-7)
        assert min(abs(h) for h in sizes) >= 1e-3

    def test_hmin_allows_short_final_step(self):
        driver = Driver.y_new(decay_system(), "rkf45", 0.2, 1e-6, 1e-6)
        driver.set_hmin(0.1)
        y = np.array([1.0])

        status, t = driver.apply(0.0, 0.05, y)

        assert status is Status.SUCCESS
        assert t == 0.05

    def test_nmax(self, driver):
        driver.set_nmax(5)
        y = np.array([1.0])

        status, t = driver.apply(0.0, 100.0, y)

        assert status is Status.MAX_ITERATION
        assert driver.n == 5
        assert 0.0 < t < 100.0
        assert y[0] == pytest.approx(np.exp(-t), rel=1e-8)

    def test_nmax_counts_per_call(self, driver):
        driver.set_nmax(5)
        y = np.array([1.0])
        status, t = driver.apply(0.0, 100.0, y)
        status, t_next = driver.apply(t, 100.0, y)

        assert status is Status.MAX_ITERATION
        assert t_next > t

    def test_hmax_clamps_current_step(self):
        driver = Driver.y_new(decay_system(), "rkf45", 1.0, 1e-6, 1e-6)
        with pytest.warns(UserWarning, match="clamping"):
            driver.set_hmax(0.1)
        assert driver.h == 0.1

    def test_hmax_clamp_keeps_direction(self):
        driver = Driver.y_new(decay_system(), "rkf45", -1.0, 1e-6, 1e-6)
        with pytest.warns(UserWarning):
            driver.set_hmax(0.1)
        assert driver.h == -0.1

    def test_setter_validation(self, driver):
        with pytest.raises(ValueError):
            driver.set_hmin(-1.0)
        with pytest.raises(ValueError):
            driver.set_hmax(0.0)

        driver.set_hmax(0.5)
        with pytest.raises(ValueError, match="must not exceed"):
            driver.set_hmin(1.0)

        driver.set_hmin(0.2)
        with pytest.raises(ValueError, match="must not be smaller"):
            driver.set_hmax(0.1)

    @pytest.mark.parametrize("nmax", [-1, 1.5, True, "10"])
    def test_nmax_validation(self, driver, nmax):
        with pytest.raises(ValueError, match="nmax"):
            driver.set_nmax(nmax)


# ============================================================================
# Test Class 4: Failures
# ============================================================================


class TestFailures:
    """State at failure is the last successful point"""

    def test_bad_function(self):
        driver = Driver.y_new(bad_after_one(), "rkf45", 1e-3, 1e-10, 1e-10)
        y = np.array([1.0])

        status, t = driver.apply(0.0, 2.0, y)

        assert status is Status.BAD_FUNCTION
        assert 0.0 < t <= 1.0
        assert y[0] == pytest.approx(np.exp(-t), abs=1e-8)

    def test_blow_up_stops_at_finite_state(self):
        """y' = y^2, y(0) = 1 has a pole at t = 1"""
        driver = Driver.y_new(ODESystem(lambda t, y: y * y, 1), "rkf45", 1e-3, 1e-6, 1e-6)
        driver.set_nmax(100000)
        y = np.array([1.0])

        with np.errstate(all="ignore"):
            status, t = driver.apply(0.0, 2.0, y)

        assert status is not Status.SUCCESS
        assert np.all(np.isfinite(y))
        assert 0.99 < t < 1.0 + 1e-9
        assert y[0] > 50.0

    def test_fault_is_impossible_through_driver(self):
        """Steppers that need a driver get it at construction"""
        driver = Driver.y_new(decay_system(), "rk1imp", 1e-3, 1e-6, 1e-6)
        y = np.array([1.0])

        status, _ = driver.apply(0.0, 0.1, y)

        assert status is Status.SUCCESS


# ============================================================================
# Test Class 5: Fixed Steps
# ============================================================================


class TestFixedStep:
    """apply_fixed_step"""

    @pytest.mark.parametrize("method", ["rk4", "msadams"])
    def test_deterministic(self, method):
        results = []
        for _ in range(2):
            driver = Driver.y_new(decay_system(), method, 0.01, 1e-3, 1e-3)
            y = np.array([1.0])
            status, t = driver.apply_fixed_step(0.0, 0.01, 100, y)
            assert status is Status.SUCCESS
            assert driver.n == 100
            results.append((t, y[0]))

        assert results[0] == results[1]
        assert results[0][0] == pytest.approx(1.0)
        assert results[0][1] == pytest.approx(np.exp(-1.0), abs=1e-3)

    def test_rk4_accuracy(self):
        driver = Driver.y_new(decay_system(), "rk4", 0.01, 1e-3, 1e-3)
        y = np.array([1.0])

        driver.apply_fixed_step(0.0, 0.01, 100, y)

        assert y[0] == pytest.approx(np.exp(-1.0), abs=1e-8)

    def test_error_too_large(self):
        driver = Driver.y_new(decay_system(), "rkf45", 0.5, 1e-14, 1e-14)
        y = np.array([1.0])

        status, t = driver.apply_fixed_step(0.0, 0.5, 3, y)

        assert status is Status.FAILURE
        assert t == 0.0
        assert y[0] == 1.0
        assert driver.get_stats()["failed_steps"] == 1

    def test_fixed_step_validation(self, driver):
        with pytest.raises(ValueError):
            driver.apply_fixed_step(0.0, 0.0, 3, np.ones(1))
        with pytest.raises(ValueError, match="n must be"):
            driver.apply_fixed_step(0.0, 0.1, -1, np.ones(1))

    def test_zero_steps(self, driver):
        y = np.array([1.0])
        status, t = driver.apply_fixed_step(0.5, 0.1, 0, y)
        assert status is Status.SUCCESS
        assert t == 0.5
        assert y[0] == 1.0


# ============================================================================
# Test Class 6: Reset
# ============================================================================


class TestReset:
    """reset and reset_hstart"""

    @pytest.mark.parametrize("method", ["rkf45", "msadams"])
    def test_repeat_after_reset(self, method):
        driver = Driver.y_new(decay_system(), method, 1e-3, 1e-8, 1e-8)

        y1 = np.array([1.0])
        driver.apply(0.0, 1.0, y1)

        driver.reset_hstart(1e-3)
        y2 = np.array([1.0])
        driver.apply(0.0, 1.0, y2)

        assert y1[0] == y2[0]

    def test_reset_keeps_configuration(self, driver):
        driver.set_hmax(0.5)
        driver.set_nmax(10)
        driver.reset()
        assert driver.hmax == 0.5
        assert driver.nmax == 10
        assert driver.evolver.count == 0

    def test_reverse_direction(self, driver):
        y = np.array([1.0])
        driver.apply(0.0, 1.0, y)

        driver.reset_hstart(-1e-3)
        status, t = driver.apply(1.0, 0.0, y)

        assert status is Status.SUCCESS
        assert t == 0.0
        assert y[0] == pytest.approx(1.0, abs=1e-7)

    def test_reset_hstart_validation(self, driver):
        with pytest.raises(ValueError):
            driver.reset_hstart(0.0)

    def test_reset_hstart_clamped(self, driver):
        driver.set_hmax(0.1)
        with pytest.warns(UserWarning):
            driver.reset_hstart(1.0)
        assert driver.h == 0.1


# ============================================================================
# Test Class 7: Integrate
# ============================================================================


class TestIntegrate:
    """Convenience integration collecting output"""

    def test_output_times(self, driver):
        t_eval = np.linspace(0.0, 2.0, 11)

        result = driver.integrate(np.array([1.0]), (0.0, 2.0), t_eval=t_eval)

        assert result["success"]
        assert result["status"] is Status.SUCCESS
        np.testing.assert_array_equal(result["t"], t_eval)
        assert result["y"].shape == (11, 1)
        np.testing.assert_allclose(result["y"][:, 0], np.exp(-t_eval), atol=1e-8)
        assert result["t_final"] == 2.0
        assert result["solver"] == "rkf45"
        assert result["nsteps"] > 0
        assert result["nfev"] > 0

    def test_every_step(self, driver):
        result = driver.integrate(np.array([1.0]), (0.0, 2.0))

        assert result["success"]
        assert result["t"][0] == 0.0
        assert result["t"][-1] == 2.0
        assert len(result["t"]) == result["nsteps"] + 1
        assert np.all(np.diff(result["t"]) > 0.0)
        np.testing.assert_allclose(result["y"][:, 0], np.exp(-result["t"]), atol=1e-8)

    def test_backwards(self, driver):
        result = driver.integrate(np.array([np.exp(-1.0)]), (1.0, 0.0))

        assert result["success"]
        assert result["t_final"] == 0.0
        assert np.all(np.diff(result["t"]) < 0.0)
        assert result["y"][-1, 0] == pytest.approx(1.0, abs=1e-7)

    def test_initial_state_not_modified(self, driver):
        y0 = np.array([1.0])
        driver.integrate(y0, (0.0, 1.0))
        assert y0[0] == 1.0

    def test_repeatable(self, driver):
        first = driver.integrate(np.array([1.0]), (0.0, 1.0))
        driver.reset_hstart(1e-3)
        second = driver.integrate(np.array([1.0]), (0.0, 1.0))
        np.testing.assert_array_equal(first["y"], second["y"])

    def test_failure_reported(self):
        driver = Driver.y_new(bad_after_one(), "rkf45", 1e-3, 1e-8, 1e-8)

        with pytest.warns(RuntimeWarning, match="stopped"):
            result = driver.integrate(np.array([1.0]), (0.0, 2.0), t_eval=[0.5, 1.0, 1.5, 2.0])

        assert not result["success"]
        assert result["status"] is Status.BAD_FUNCTION
        assert result["t_final"] <= 1.5
        np.testing.assert_array_equal(result["t"], [0.5, 1.0])
        assert "failed" in result["message"]

    def test_output_times_outside_span(self, driver):
        with pytest.raises(ValueError, match="within t_span"):
            driver.integrate(np.array([1.0]), (0.0, 1.0), t_eval=[0.5, 2.0])

    def test_output_times_not_monotonic(self, driver):
        with pytest.raises(ValueError, match="monotonic"):
            driver.integrate(np.array([1.0]), (0.0, 1.0), t_eval=[0.5, 0.2])

    def test_initial_state_shape(self, driver):
        with pytest.raises(ValueError, match="y0"):
            driver.integrate(np.array([1.0, 2.0]), (0.0, 1.0))


# ============================================================================
# Test Class 8: Statistics
# ============================================================================


class TestStatistics:
    """get_stats and reset_stats"""

    def test_stats_after_apply(self, driver):
        driver.apply(0.0, 1.0, np.array([1.0]))

        stats = driver.get_stats()
        assert stats["total_steps"] == driver.evolver.count
        assert stats["nfev"] > stats["total_steps"]
        assert stats["njev"] == 0
        assert stats["avg_fev_per_step"] == pytest.approx(stats["nfev"] / stats["total_steps"])

    def test_rejections_counted(self):
        driver = Driver.y_new(decay_system(), "rkf45", 1.0, 1e-10, 1e-10)
        driver.apply(0.0, 1.0, np.array([1.0]))
        assert driver.get_stats()["failed_steps"] >= 1

    def test_implicit_counters(self):
        driver = Driver.y_new(decay_system(), "rk2imp", 1e-3, 1e-6, 1e-6)
        driver.apply(0.0, 1.0, np.array([1.0]))

        stats = driver.get_stats()
        assert stats["njev"] >= stats["total_steps"] + stats["failed_steps"]
        assert stats["njev"] <= stats["nlu"] <= 2 * stats["njev"]

    def test_reset_stats(self, driver):
        driver.integrate(np.array([1.0]), (0.0, 1.0))
        driver.reset_stats()

        stats = driver.get_stats()
        assert stats["total_steps"] == 0
        assert stats["failed_steps"] == 0
        assert stats["nfev"] == 0
        assert stats["total_time"] == 0.0
        assert stats["avg_fev_per_step"] == 0.0


# ============================================================================
# Test Class 9: Factory
# ============================================================================


class TestFactory:
    """DriverFactory and create_driver"""

    def test_defaults(self):
        driver = create_driver(decay_system())
        assert driver.step.name == "rkf45"
        assert driver.control.name == "standard"
        assert driver.control.eps_abs == 1e-8
        assert driver.control.eps_rel == 1e-6
        assert driver.h == 1e-6

    @pytest.mark.parametrize(
        "alias, name",
        [("rk45", "rkf45"), ("bdf", "msbdf"), ("adams", "msadams"), ("dop853", "rk8pd")],
    )
    def test_aliases(self, alias, name):
        assert create_driver(decay_system(), method=alias).step.name == name

    def test_options(self):
        driver = create_driver(
            decay_system(), method="rkck", rtol=1e-9, atol=1e-11, hmax=0.5, hmin=1e-8, nmax=100
        )
        assert driver.control.eps_rel == 1e-9
        assert driver.control.eps_abs == 1e-11
        assert driver.hmax == 0.5
        assert driver.hmin == 1e-8
        assert driver.nmax == 100

    def test_control_flavors(self):
        assert create_driver(decay_system(), control="y").control.a_y == 1.0
        assert create_driver(decay_system(), control="yp").control.a_dydt == 1.0
        scaled = create_driver(decay_system(), control="scaled", scale_abs=[2.0])
        assert isinstance(scaled.control, ScaledControl)

    def test_scaled_requires_scale(self):
        with pytest.raises(ValueError, match="scale_abs"):
            create_driver(decay_system(), control="scaled")

    def test_invalid_control(self):
        with pytest.raises(ValueError, match="Invalid control"):
            create_driver(decay_system(), control="pid")

    def test_unknown_option(self):
        with pytest.raises(ValueError, match=r"Unknown driver options \['tol'\]"):
            create_driver(decay_system(), tol=1e-6)

    def test_option_aliases(self):
        driver = create_driver(decay_system(), eps_abs=1e-7, eps_rel=1e-5)
        assert driver.control.eps_abs == 1e-7
        assert driver.control.eps_rel == 1e-5

    def test_for_stiff(self):
        driver = DriverFactory.for_stiff(decay_system())
        assert driver.step.name == "msbdf"

    def test_for_stiff_requires_jacobian(self):
        with pytest.raises(ValueError, match="Jacobian"):
            DriverFactory.for_stiff(oscillator_system())

    def test_for_high_accuracy(self):
        driver = DriverFactory.for_high_accuracy(decay_system())
        assert driver.step.name == "rk8pd"
        assert driver.control.eps_rel == 1e-10

        driver = DriverFactory.for_high_accuracy(decay_system(), rtol=1e-12)
        assert driver.control.eps_rel == 1e-12

    def test_list_methods(self):
        methods = DriverFactory.list_methods()
        assert len(methods["explicit"]) + len(methods["implicit"]) == 11


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
