"""Tests for integration methods in transient analysis.

This module tests the integration coefficients and formulas for:
- Backward Euler (BE)
- Trapezoidal (Trap)

Also includes tests to verify the integration method is actually being
applied correctly in the simulation engine.
"""

import numpy as np
import pytest

from nodal import Circuit, SimulationOptions, StepConfig, solve_transient
from nodal.analysis.integration import (
    DeviceHistory,
    IntegrationMethod,
    compute_coefficients,
    history_term,
)


class TestIntegrationCoefficients:
    """Tests for compute_coefficients() function."""

    def test_backward_euler_coefficients(self):
        """Test Backward Euler: dQ/dt = (Q - Q_prev) / dt."""
        dt = 1e-12
        coeffs = compute_coefficients(IntegrationMethod.BACKWARD_EULER, dt)

        inv_dt = 1.0 / dt
        assert coeffs.c0 == pytest.approx(inv_dt)
        assert coeffs.c1 == pytest.approx(-inv_dt)
        assert coeffs.d1 == 0.0
        assert coeffs.order == 1

    def test_trapezoidal_coefficients(self):
        """Test Trapezoidal: dQ/dt = 2/dt * (Q - Q_prev) - dQdt_prev."""
        dt = 1e-12
        coeffs = compute_coefficients(IntegrationMethod.TRAPEZOIDAL, dt)

        inv_dt = 1.0 / dt
        assert coeffs.c0 == pytest.approx(2.0 * inv_dt)
        assert coeffs.c1 == pytest.approx(-2.0 * inv_dt)
        assert coeffs.d1 == -1.0
        assert coeffs.order == 2

    def test_invalid_timestep(self):
        with pytest.raises(ValueError):
            compute_coefficients(IntegrationMethod.TRAPEZOIDAL, 0.0)


class TestMethodParsing:
    @pytest.mark.parametrize("name,method", [
        ("be", IntegrationMethod.BACKWARD_EULER),
        ("Euler", IntegrationMethod.BACKWARD_EULER),
        ("trap", IntegrationMethod.TRAPEZOIDAL),
        ("'trapezoidal'", IntegrationMethod.TRAPEZOIDAL),
        ("am2", IntegrationMethod.TRAPEZOIDAL),
    ])
    def test_from_string(self, name, method):
        assert IntegrationMethod.from_string(name) is method

    def test_unknown(self):
        with pytest.raises(ValueError):
            IntegrationMethod.from_string("gear7")

    def test_order(self):
        assert IntegrationMethod.BACKWARD_EULER.order == 1
        assert IntegrationMethod.TRAPEZOIDAL.order == 2


class TestHistory:
    def test_trapezoidal_reproduces_linear_charge(self):
        """Trap is exact for Q(t) linear in t"""
        dt = 1e-9
        coeffs = compute_coefficients(IntegrationMethod.TRAPEZOIDAL, dt)
        slope = 3.0
        q_prev, q_new = 1.0, 1.0 + slope * dt
        dqdt = coeffs.c0 * q_new + history_term(coeffs, q_prev, slope)
        assert dqdt == pytest.approx(slope)

    def test_device_history_rows(self):
        coeffs = compute_coefficients(IntegrationMethod.TRAPEZOIDAL, 1.0)
        hist = DeviceHistory(q=(1.0, -1.0), dqdt=(0.5, -0.5))
        assert hist.history(coeffs) == pytest.approx((-2.0 - 0.5, 2.0 + 0.5))


class TestMethodInSimulation:
    """Accuracy of each method on an RC discharge"""

    def _rc(self):
        ckt = Circuit()
        ckt.add_resistor("R1", "out", "0", 1e3)
        ckt.add_capacitor("C1", "out", "0", 1e-6, ic=1.0)
        return ckt

    def _max_error(self, method):
        options = SimulationOptions(icmode="ic", tran_method=method)
        result = solve_transient(self._rc(), 0.0, 3e-3, StepConfig(max_step=2e-5), options)
        exact = np.exp(-result.times / 1e-3)
        return np.max(np.abs(result.voltage("out") - exact)), result

    def test_backward_euler(self):
        error, result = self._max_error("be")
        assert error < 0.02
        assert {s.method for s in result.states[1:]} == {"be"}

    def test_trapezoidal(self):
        error, result = self._max_error("trap")
        assert error < 0.01
        methods = [s.method for s in result.states]
        assert methods[0] == "ic"
        assert methods[1] == "be"
        assert "trap" in methods[2:]
