"""Tests for gmin and source stepping

The inner Newton solve is replaced by small callables so the stepping
schedules can be checked without assembling a circuit.
"""

import numpy as np
import pytest

from nodal.analysis.homotopy import (
    HomotopyConfig,
    gmin_stepping,
    run_homotopy_chain,
    source_stepping,
)
from nodal.analysis.options import SimulationOptions
from nodal.analysis.solver import NRResult, NRStatus


class RecordingSolve:
    """nr_solve stand-in that records its calls"""

    def __init__(self, accept, iterations=3):
        self.accept = accept
        self.iterations = iterations
        self.calls = []

    def __call__(self, x, source_scale, gshunt):
        self.calls.append((source_scale, gshunt))
        if self.accept(x, source_scale, gshunt):
            return NRResult(np.ones_like(x), self.iterations, NRStatus.CONVERGED, 0.0)
        return NRResult(x, self.iterations, NRStatus.MAX_ITERATIONS, 1.0)

    @property
    def gshunts(self):
        return [g for _, g in self.calls]

    @property
    def scales(self):
        return [s for s, _ in self.calls]


X0 = np.zeros(2)


class TestGminStepping:
    def test_steps_down_then_removes_shunt(self):
        solve = RecordingSolve(lambda x, s, g: True)
        result = gmin_stepping(solve, X0, HomotopyConfig())
        assert result.converged
        assert result.method == "gmin_stepping"
        assert result.final_gshunt == 0.0
        shunts = solve.gshunts
        assert shunts[0] == pytest.approx(1e-3)
        assert shunts[-1] == 0.0
        assert shunts[-2] == pytest.approx(1e-12, rel=1e-6)
        assert all(a > b for a, b in zip(shunts, shunts[1:]))
        assert result.homotopy_steps == len(shunts)

    def test_hard_step_softens_factor(self):
        solve = RecordingSolve(lambda x, s, g: True, iterations=80)
        gmin_stepping(solve, X0, HomotopyConfig(max_iterations=100))
        assert solve.gshunts[1] == pytest.approx(1e-3 / np.sqrt(10.0))

    def test_failure_raises_shunt_until_limit(self):
        solve = RecordingSolve(lambda x, s, g: False)
        result = gmin_stepping(solve, X0, HomotopyConfig())
        assert not result.converged
        shunts = solve.gshunts
        assert shunts[0] == pytest.approx(1e-3)
        assert all(b > a for a, b in zip(shunts, shunts[1:]))
        assert max(shunts) <= 1.0 + 1e-12

    def test_failed_step_backtracks_with_smaller_factor(self):
        failed = []

        def accept(x, s, g):
            # The first shunt below 5e-5 fails once
            if 0.0 < g < 5e-5 and not failed:
                failed.append(g)
                return False
            return True

        solve = RecordingSolve(accept)
        result = gmin_stepping(solve, X0, HomotopyConfig(gmin=1e-8))
        assert result.converged
        assert solve.gshunts[-1] == 0.0
        retry = solve.gshunts[solve.gshunts.index(failed[0]) + 1]
        assert retry == pytest.approx(1e-4 / 10.0 ** 0.25)

    def test_fixed_source_scale(self):
        solve = RecordingSolve(lambda x, s, g: True)
        gmin_stepping(solve, X0, HomotopyConfig(), source_scale=0.0)
        assert set(solve.scales) == {0.0}


class TestSourceStepping:
    def test_step_grows_when_easy(self):
        solve = RecordingSolve(lambda x, s, g: True)
        result = source_stepping(solve, X0, HomotopyConfig())
        assert result.converged
        assert result.final_source_scale == 1.0
        assert solve.scales == pytest.approx([0.0, 0.1, 0.3, 0.7, 1.0])
        assert set(solve.gshunts) == {0.0}

    def test_gives_up_when_step_too_small(self):
        solve = RecordingSolve(lambda x, s, g: s <= 0.5)
        result = source_stepping(solve, X0, HomotopyConfig())
        assert not result.converged
        assert result.final_source_scale <= 0.5

    def test_gmin_fallback_at_zero_sources(self):
        # Fails from the zero guess without a shunt; succeeds once warm-started
        solve = RecordingSolve(lambda x, s, g: g > 0 or x[0] == 1.0)
        result = source_stepping(solve, X0, HomotopyConfig())
        assert result.converged
        assert result.method == "source_stepping"
        assert any(g > 0 for g in solve.gshunts)


class TestChain:
    def test_falls_through_to_source(self):
        solve = RecordingSolve(lambda x, s, g: g == 0.0 and (s < 1.0 or x[0] == 1.0))
        config = HomotopyConfig(chain=("gmin", "source"))
        result = run_homotopy_chain(solve, X0, config)
        assert result.converged
        assert result.method == "source_stepping"

    def test_all_fail(self):
        solve = RecordingSolve(lambda x, s, g: False)
        result = run_homotopy_chain(solve, X0, HomotopyConfig(chain=("gmin", "source")))
        assert not result.converged
        assert result.method == "chain_failed"
        assert result.iterations == 3 * len(solve.calls)

    def test_unknown_method(self):
        with pytest.raises(ValueError):
            run_homotopy_chain(RecordingSolve(lambda x, s, g: True), X0,
                               HomotopyConfig(chain=("arclength",)))

    def test_config_from_options(self):
        options = SimulationOptions(gmin_start=1e-2, homotopy_chain=["source"])
        config = HomotopyConfig.from_options(options)
        assert config.gmin_start == 1e-2
        assert config.chain == ("source",)
