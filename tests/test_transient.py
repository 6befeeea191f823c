"""Transient analysis tests

Step responses of first-order circuits are compared against their
closed-form solutions. Step control is checked through the per-point
records of the result.
"""

import numpy as np
import pytest

from nodal import Circuit, Pulse, SimulationOptions, StepConfig, solve_transient
from nodal.errors import ConvergenceFailure


def _rc_step(v=5.0):
    ckt = Circuit()
    ckt.add_vsource("V1", "in", "0", Pulse(0.0, v, rise=1e-9, width=1.0))
    ckt.add_resistor("R1", "in", "out", 1e3)
    ckt.add_capacitor("C1", "out", "0", 1e-6)
    return ckt


class TestStepResponse:
    def test_rc_charging(self):
        result = solve_transient(_rc_step(), 0.0, 5e-3)
        assert not result.aborted
        t = result.times
        expected = 5.0 * (1.0 - np.exp(-t / 1e-3))
        np.testing.assert_allclose(result.voltage("out"), expected, atol=0.05)
        assert t[-1] == 5e-3
        assert np.all(np.diff(t) > 0)

    def test_rl_current(self):
        ckt = Circuit()
        ckt.add_vsource("V1", "in", "0", Pulse(0.0, 1.0, rise=1e-9, width=1.0))
        ckt.add_resistor("R1", "in", "a", 100.0)
        ckt.add_inductor("L1", "a", "0", 10e-3)
        result = solve_transient(ckt, 0.0, 5e-4)
        expected = 0.01 * (1.0 - np.exp(-result.times / 1e-4))
        np.testing.assert_allclose(result.current("L1"), expected, atol=2e-4)

    def test_initial_condition_discharge(self):
        ckt = Circuit()
        ckt.add_vsource("V1", "in", "0", 0.0)
        ckt.add_resistor("R1", "in", "out", 1e3)
        ckt.add_capacitor("C1", "out", "0", 1e-6, ic=2.0)
        result = solve_transient(ckt, 0.0, 3e-3, options=SimulationOptions(icmode="ic"))
        v = result.voltage("out")
        assert v[0] == 2.0
        np.testing.assert_allclose(v, 2.0 * np.exp(-result.times / 1e-3), atol=0.02)

    def test_operating_point_start(self):
        ckt = Circuit()
        ckt.add_vsource("V1", "in", "0", 3.0)
        ckt.add_resistor("R1", "in", "out", 1e3)
        ckt.add_capacitor("C1", "out", "0", 1e-6)
        result = solve_transient(ckt, 0.0, 1e-3)
        # Already at rest: the output stays put
        np.testing.assert_allclose(result.voltage("out"), 3.0, atol=1e-9)


class TestStepControl:
    def test_first_step_lands_on_breakpoint(self):
        result = solve_transient(_rc_step(), 0.0, 5e-3)
        first = result.states[1]
        assert first.time == 1e-9
        assert first.method == "be"

    def test_methods(self):
        result = solve_transient(_rc_step(), 0.0, 5e-3)
        methods = [s.method for s in result.states]
        assert methods[0] == "op"
        assert "trap" in methods
        assert set(methods[1:]) <= {"be", "trap"}

    def test_backward_euler_only(self):
        options = SimulationOptions(tran_method="be")
        result = solve_transient(_rc_step(), 0.0, 5e-3, options=options)
        assert {s.method for s in result.states[1:]} == {"be"}

    def test_every_breakpoint_is_a_time_point(self):
        ckt = Circuit()
        ckt.add_vsource("V1", "in", "0", Pulse(0.0, 1.0, delay=1e-6, rise=1e-7,
                                              fall=1e-7, width=1e-6))
        ckt.add_resistor("R1", "in", "out", 1e3)
        ckt.add_capacitor("C1", "out", "0", 1e-10)
        result = solve_transient(ckt, 0.0, 5e-6)
        times = list(result.times)
        for bp in ckt.breakpoints(0.0, 5e-6):
            if 0.0 < bp < 5e-6:
                assert bp in times
                # Integration restarts with backward Euler after a breakpoint
                after = result.states[times.index(bp) + 1]
                assert after.method == "be"

    def test_steps_respect_bounds(self):
        config = StepConfig(max_step=1e-5, min_step=1e-12)
        result = solve_transient(_rc_step(), 0.0, 1e-3, config)
        steps = np.array([s.step for s in result.states[1:]])
        assert np.all(steps <= 1e-5 + 1e-12)
        assert np.all(steps > 0)

    def test_lte_recorded_once_predictor_available(self):
        result = solve_transient(_rc_step(), 0.0, 5e-3)
        ratios = [s.lte_ratio for s in result.states[1:]]
        assert np.isnan(ratios[0])
        assert any(np.isfinite(r) and r <= 1.0 for r in ratios)

    def test_deterministic(self):
        a = solve_transient(_rc_step(), 0.0, 1e-3)
        b = solve_transient(_rc_step(), 0.0, 1e-3)
        assert np.array_equal(a.times, b.times)
        assert np.array_equal(a.solutions, b.solutions)
        assert a.rejected_steps == b.rejected_steps

    def test_states_carry_charge_history(self):
        result = solve_transient(_rc_step(), 0.0, 1e-3)
        v = result.voltage("out")
        first = result.states[0].history
        assert set(first) == {"C1"}
        assert first["C1"].dqdt == (0.0, 0.0)
        for k, state in enumerate(result.states):
            q = state.history["C1"].q
            assert q[0] == pytest.approx(1e-6 * v[k], abs=1e-15)
            assert q[1] == pytest.approx(-q[0])
        for k in range(1, len(result.states)):
            state = result.states[k]
            if state.method == "be":
                prev = result.states[k - 1].history["C1"].q[0]
                expected = (state.history["C1"].q[0] - prev) / state.step
                assert state.history["C1"].dqdt[0] == pytest.approx(expected, rel=1e-9, abs=1e-12)


class TestBudgets:
    def test_time_point_budget(self):
        options = SimulationOptions(max_time_points=5)
        result = solve_transient(_rc_step(), 0.0, 5e-3, options=options)
        assert result.aborted
        assert len(result.states) == 5
        assert result.accepted_steps == 4

    def test_iteration_budget(self):
        options = SimulationOptions(max_total_iterations=3)
        result = solve_transient(_rc_step(), 0.0, 5e-3, options=options)
        assert result.aborted
        assert result.total_iterations >= 3
        assert result.times[-1] < 5e-3

    def test_rejection_at_min_step(self, diode_circuit):
        options = SimulationOptions(icmode="ic", max_newton_iterations=1)
        with pytest.raises(ConvergenceFailure) as err:
            solve_transient(diode_circuit, 0.0, 1e-6, StepConfig(min_step=1e-9), options)
        partial = err.value.partial_result
        assert partial.aborted
        assert len(partial.states) == 1
        assert partial.rejected_steps == 1
        # Residual and iteration count of the Newton solve that gave up
        assert np.isfinite(err.value.residual_norm)
        assert err.value.residual_norm > 0
        assert err.value.iterations == 1


class TestStepConfig:
    def test_defaults(self):
        initial, min_step, max_step = StepConfig().resolve(1.0, SimulationOptions())
        assert initial == pytest.approx(1e-3)
        assert min_step == 1e-15
        assert max_step == pytest.approx(0.02)

    def test_initial_clamped(self):
        initial, _, _ = StepConfig(initial_step=1.0, max_step=1e-3).resolve(1.0, SimulationOptions())
        assert initial == 1e-3

    def test_invalid(self):
        with pytest.raises(ValueError):
            StepConfig(initial_step=0.0)
        with pytest.raises(ValueError):
            StepConfig(min_step=1e-3, max_step=1e-6).resolve(1.0, SimulationOptions())

    def test_stop_before_start(self):
        with pytest.raises(ValueError):
            solve_transient(_rc_step(), 1e-3, 1e-3)

    def test_initial_state_shape(self):
        with pytest.raises(ValueError):
            solve_transient(_rc_step(), 0.0, 1e-3, initial_state=np.zeros(1))
