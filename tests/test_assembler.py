"""Tests for MNA residual and Jacobian assembly"""

import numpy as np
import pytest

from nodal import Circuit
from nodal.analysis.assembler import Assembler
from nodal.analysis.context import AnalysisContext
from nodal.analysis.integration import DeviceHistory, IntegrationMethod, compute_coefficients
from nodal.analysis.limiting import thermal_voltage
from nodal.debug import jax_jacobian
from nodal.expression import ops

DC = AnalysisContext.dc()


class TestLinearStamps:
    def test_divider_residual_vanishes_at_solution(self, divider):
        asm = Assembler(divider)
        x = np.array([10.0, 20.0 / 3.0, -10.0 / 3e3])
        assert np.allclose(asm.residual(x, DC), 0.0, atol=1e-15)

    def test_divider_jacobian(self, divider):
        asm = Assembler(divider)
        dense = asm.dense_jacobian(asm.assemble(np.zeros(3), DC))
        expected = np.array([
            [1e-3, -1e-3, 1.0],
            [-1e-3, 1e-3 + 0.5e-3, 0.0],
            [1.0, 0.0, 0.0],
        ])
        assert dense == pytest.approx(expected)

    def test_pattern_includes_node_diagonals(self, divider):
        asm = Assembler(divider)
        pattern = set(zip(asm.rows.tolist(), asm.cols.tolist()))
        assert (0, 0) in pattern
        assert (1, 1) in pattern

    def test_gshunt_on_node_diagonals_only(self, divider):
        asm = Assembler(divider)
        x = np.array([1.0, 2.0, 0.0])
        plain = asm.assemble(x, DC)
        shunted = asm.assemble(x, DC.with_homotopy(gshunt=1e-3))
        diff = asm.dense_jacobian(shunted) - asm.dense_jacobian(plain)
        assert np.diag(diff) == pytest.approx([1e-3, 1e-3, 0.0])
        assert shunted.residual - plain.residual == pytest.approx([1e-3, 2e-3, 0.0])

    def test_kcl_residual_ignores_shunt(self, divider):
        asm = Assembler(divider)
        x = np.array([10.0, 20.0 / 3.0, -10.0 / 3e3])
        kcl = asm.kcl_residual(x, DC.with_homotopy(gshunt=1.0))
        assert np.allclose(kcl, 0.0, atol=1e-15)


class TestOrderIndependence:
    def test_permuted_device_order(self, diode_circuit):
        x = np.array([5.0, 0.62, -4.4e-3])
        forward = Assembler(diode_circuit)
        reverse = Assembler(diode_circuit, order=[2, 1, 0])
        a = forward.assemble(x, DC)
        b = reverse.assemble(x, DC)
        assert b.residual == pytest.approx(a.residual, rel=1e-14, abs=1e-18)
        assert reverse.dense_jacobian(b) == pytest.approx(forward.dense_jacobian(a), rel=1e-14)

    def test_invalid_order(self, divider):
        with pytest.raises(ValueError):
            Assembler(divider, order=[0, 0, 1])


class TestNonlinear:
    def test_jacobian_matches_jax(self, diode_circuit):
        asm = Assembler(diode_circuit)
        x = np.array([5.0, 0.65, -4.35e-3])
        dense = asm.dense_jacobian(asm.assemble(x, DC))

        # Whole-circuit residual traced through jax
        v_src, r, isat = 5.0, 1e3, 1e-14
        vt = thermal_voltage(DC.temperature)

        def residual(v_in, v_a, i_v):
            i_r = (v_in - v_a) / r
            i_d = isat * (ops.exp(v_a / vt) - 1.0) + DC.gmin * v_a
            return (i_r + i_v, -i_r + i_d, v_in - v_src)

        ref = jax_jacobian(residual, x)
        assert dense == pytest.approx(ref, rel=1e-10, abs=1e-18)

    def test_eval_point_linearization(self, diode_circuit):
        """A device evaluated at x_e contributes f(x_e) + J(x_e)(x - x_e)"""
        asm = Assembler(diode_circuit)
        x = np.array([5.0, 0.9, 0.0])
        x_e = np.array([0.7, 0.0])
        at_x = asm.assemble(x, DC)
        limited = asm.assemble(x, DC, eval_points={"D1": x_e})

        exact = asm.assemble(np.array([5.0, 0.7, 0.0]), DC)
        g = asm.dense_jacobian(exact)[1, 1] - 1e-3
        i_e = exact.residual[1] + (5.0 - 0.7) / 1e3
        expected = i_e + g * (0.9 - 0.7) - (5.0 - 0.9) / 1e3
        assert limited.residual[1] == pytest.approx(expected, rel=1e-10)
        assert limited.residual[1] < at_x.residual[1]


class TestReactive:
    def _rc(self):
        ckt = Circuit()
        ckt.add_vsource("V1", "in", "0", 1.0)
        ckt.add_resistor("R1", "in", "out", 1e3)
        ckt.add_capacitor("C1", "out", "0", 1e-6)
        return ckt

    def test_capacitor_absent_in_dc(self):
        asm = Assembler(self._rc())
        dense = asm.dense_jacobian(asm.assemble(np.zeros(3), DC))
        assert dense[1, 1] == pytest.approx(1e-3)

    def test_backward_euler_companion(self):
        asm = Assembler(self._rc())
        dt = 1e-6
        coeffs = compute_coefficients(IntegrationMethod.BACKWARD_EULER, dt)
        ctx = AnalysisContext.transient(time=dt, time_step=dt, coeffs=coeffs)
        q_prev = 1e-6 * 0.5
        history = {"C1": DeviceHistory(q=(q_prev, -q_prev), dqdt=(0.0, 0.0))}
        x = np.array([1.0, 0.6, 0.0])
        system = asm.assemble(x, ctx, history)

        i_c = 1e-6 * (0.6 - 0.5) / dt
        i_r = (0.6 - 1.0) / 1e3
        assert system.residual[1] == pytest.approx(i_r + i_c)
        assert asm.dense_jacobian(system)[1, 1] == pytest.approx(1e-3 + 1e-6 / dt)

    def test_charges(self):
        asm = Assembler(self._rc())
        q = asm.charges(np.array([1.0, 0.25, 0.0]), DC)
        assert set(q) == {"C1"}
        assert q["C1"] == pytest.approx([0.25e-6, -0.25e-6])


class TestContext:
    def test_kinds(self):
        coeffs = compute_coefficients(IntegrationMethod.BACKWARD_EULER, 1e-9)
        tran = AnalysisContext.transient(1e-9, 1e-9, coeffs)
        assert DC.is_dc and not DC.is_transient
        assert tran.is_transient and not tran.is_dc

    def test_with_homotopy_keeps_other_fields(self):
        ctx = AnalysisContext.dc(time=2.0).with_homotopy(source_scale=0.5, gshunt=1e-3)
        assert ctx.time == 2.0
        assert ctx.source_scale == 0.5
        assert ctx.gshunt == 1e-3
