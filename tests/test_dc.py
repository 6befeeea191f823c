"""DC operating point tests"""

import math

import numpy as np
import pytest

from nodal import Circuit, SimulationOptions, solve_dc
from nodal.analysis.assembler import Assembler
from nodal.analysis.limiting import thermal_voltage
from nodal.errors import ConvergenceFailure, SingularMatrixError


class TestLinearCircuits:
    def test_divider(self, divider):
        result = solve_dc(divider)
        assert result.method == "newton"
        assert result.iterations == 1
        assert result.voltage("in") == pytest.approx(10.0)
        assert result.voltage("out") == pytest.approx(20.0 / 3.0, rel=1e-12)
        assert result.voltage("0") == 0.0

    def test_source_current_sign(self, divider):
        result = solve_dc(divider)
        # Branch current flows from p through the source to n
        assert result.current("V1") == pytest.approx(-10.0 / 3e3)
        assert result.current("R1") == pytest.approx(10.0 / 3e3)

    def test_current_source_into_resistor(self):
        ckt = Circuit()
        ckt.add_isource("I1", "0", "a", 2e-3)
        ckt.add_resistor("R1", "a", "0", 1e3)
        result = solve_dc(ckt)
        assert result.voltage("a") == pytest.approx(2.0)

    def test_inductor_is_short(self):
        ckt = Circuit()
        ckt.add_vsource("V1", "a", "0", 1.0)
        ckt.add_inductor("L1", "a", "b", 1e-3)
        ckt.add_resistor("R1", "b", "0", 100.0)
        result = solve_dc(ckt)
        assert result.voltage("b") == pytest.approx(1.0)
        assert result.current("L1") == pytest.approx(0.01)

    def test_capacitor_is_open(self):
        ckt = Circuit()
        ckt.add_vsource("V1", "a", "0", 1.0)
        ckt.add_resistor("R1", "a", "b", 1e3)
        ckt.add_capacitor("C1", "b", "0", 1e-6)
        ckt.add_resistor("R2", "b", "0", 1e3)
        result = solve_dc(ckt)
        assert result.voltage("b") == pytest.approx(0.5)

    def test_vcvs_amplifier(self):
        ckt = Circuit()
        ckt.add_vsource("V1", "in", "0", 0.1)
        ckt.add_vcvs("E1", "out", "0", "in", "0", 10.0)
        ckt.add_resistor("RL", "out", "0", 1e3)
        assert solve_dc(ckt).voltage("out") == pytest.approx(1.0)

    def test_vccs(self):
        ckt = Circuit()
        ckt.add_vsource("V1", "in", "0", 1.0)
        ckt.add_vccs("G1", "out", "0", "in", "0", 1e-3)
        ckt.add_resistor("RL", "out", "0", 1e3)
        # 1mA drawn out of "out" through RL to ground
        assert solve_dc(ckt).voltage("out") == pytest.approx(-1.0)

    def test_base_gshunt(self, divider):
        plain = solve_dc(divider)
        shunted = solve_dc(divider, SimulationOptions(gshunt=1e-3))
        assert shunted.voltage("out") < plain.voltage("out")


class TestNonlinearCircuits:
    def test_diode_kcl(self, diode_circuit):
        result = solve_dc(diode_circuit)
        va = result.voltage("a")
        i_r = (5.0 - va) / 1e3
        i_d = 1e-14 * (math.exp(va / thermal_voltage(300.15)) - 1.0) + 1e-12 * va
        assert i_d == pytest.approx(i_r, rel=1e-3)
        kcl = Assembler(diode_circuit).kcl_residual(result.solution)
        assert np.max(np.abs(kcl)) < 1e-5

    def test_diode_current_accessor(self, diode_circuit):
        result = solve_dc(diode_circuit)
        assert result.current("D1") == pytest.approx(-result.current("V1"), rel=1e-3)

    def test_diode_with_series_resistance(self):
        ckt = Circuit()
        ckt.add_vsource("V1", "in", "0", 5.0)
        ckt.add_resistor("R1", "in", "a", 1e3)
        ckt.add_diode("D1", "a", "0", rs=50.0)
        result = solve_dc(ckt)
        i = result.current("R1")
        assert result.voltage("D1:int") == pytest.approx(result.voltage("a") - 50.0 * i, rel=1e-6)

    def test_nmos_inverter(self):
        ckt = Circuit()
        ckt.add_vsource("VDD", "vdd", "0", 5.0)
        ckt.add_vsource("VIN", "in", "0", 5.0)
        ckt.add_resistor("RD", "vdd", "out", 10e3)
        ckt.add_mosfet("M1", "out", "in", "0", "0", vto=0.7, kp=1e-4, w=10e-6, l=1e-6)
        result = solve_dc(ckt)
        vout = result.voltage("out")
        assert 0.0 < vout < 0.5
        # Triode: (5 - vout)/RD = beta*(vov - vout/2)*vout
        beta, vov = 1e-3, 4.3
        assert (5.0 - vout) / 10e3 == pytest.approx(beta * (vov - vout / 2) * vout, rel=1e-3)

    def test_deterministic(self, diode_circuit):
        a = solve_dc(diode_circuit)
        b = solve_dc(diode_circuit)
        assert np.array_equal(a.solution, b.solution)
        assert a.iterations == b.iterations

    def test_initial_guess(self, diode_circuit):
        first = solve_dc(diode_circuit)
        again = solve_dc(diode_circuit, initial_guess=first.solution)
        assert again.iterations <= first.iterations
        assert again.voltage("a") == pytest.approx(first.voltage("a"), rel=1e-6)

    def test_initial_guess_shape(self, diode_circuit):
        with pytest.raises(ValueError):
            solve_dc(diode_circuit, initial_guess=np.zeros(2))


class TestConvergenceAids:
    def _driven_diode(self):
        ckt = Circuit()
        ckt.add_isource("I1", "0", "a", 1e-3)
        ckt.add_diode("D1", "a", "0", isat=1e-14)
        return ckt

    def test_fails_without_aids(self):
        options = SimulationOptions(limiting=False, homotopy_chain=())
        with pytest.raises(ConvergenceFailure) as err:
            solve_dc(self._driven_diode(), options)
        assert err.value.iterations > 0

    def test_gmin_stepping_recovers(self):
        options = SimulationOptions(limiting=False, homotopy_chain=("gmin",))
        result = solve_dc(self._driven_diode(), options)
        assert result.method == "gmin_stepping"
        assert result.homotopy_steps > 0
        expected = thermal_voltage(300.15) * math.log(1e-3 / 1e-14 + 1.0)
        assert result.voltage("a") == pytest.approx(expected, abs=1e-4)

    def test_gmin_stepping_matches_newton(self):
        stepped = solve_dc(self._driven_diode(),
                           SimulationOptions(limiting=False, homotopy_chain=("gmin",)))
        direct = solve_dc(self._driven_diode())
        assert stepped.method == "gmin_stepping"
        assert direct.method == "newton"
        # The shunt is removed by a final solve, so both reach the same point
        np.testing.assert_allclose(stepped.solution, direct.solution, rtol=1e-6, atol=1e-9)

    def test_source_stepping_recovers(self, diode_circuit):
        options = SimulationOptions(limiting=False, homotopy_chain=("source",))
        result = solve_dc(diode_circuit, options)
        assert result.method == "source_stepping"
        assert 0.6 < result.voltage("a") < 0.8

    def test_limiting_converges_directly(self):
        result = solve_dc(self._driven_diode())
        assert result.method == "newton"


class TestErrors:
    def test_singular_propagates(self):
        ckt = Circuit()
        ckt.add_vsource("V1", "a", "0", 1.0)
        ckt.add_vsource("V2", "a", "0", 2.0)
        with pytest.raises(SingularMatrixError):
            solve_dc(ckt)

    def test_current_source_loop_without_path(self):
        ckt = Circuit()
        ckt.add_isource("I1", "0", "a", 1e-3)
        ckt.add_capacitor("C1", "a", "0", 1e-6)
        # Only a capacitor to ground: the DC Jacobian has an empty row
        with pytest.raises(SingularMatrixError):
            solve_dc(ckt)
