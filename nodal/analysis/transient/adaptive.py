"""Adaptive time stepping for transient analysis

Each step discretizes the reactive part of every device with the integration
coefficients of the step (trapezoidal by default), solves the resulting
nonlinear system with Newton-Raphson starting from the predictor, and checks
the local truncation error estimated from the predictor/corrector difference.

Step control:
    - Backward Euler is used for the first step, the first step after each
      source breakpoint, and for the retry of a step whose Newton solve failed
    - the LTE is only checked once enough points since the last breakpoint
      exist for a predictor of the integrator's order
    - accepted: h_next = h * tran_fs * ratio^(-1/(order+1)), at most
      tran_max_growth * h, clamped to [min_step, max_step]
    - rejected: h is divided by tran_redofactor and the step retried; a
      rejection at min_step raises ConvergenceFailure with the partial result
    - steps are shortened to land exactly on breakpoints, where the predictor
      history restarts
"""

from typing import Dict, List, Optional

import numpy as np

from nodal.analysis.assembler import Assembler
from nodal.analysis.context import AnalysisContext
from nodal.analysis.dc import solve_operating_point
from nodal.analysis.integration import (
    DeviceHistory,
    IntegrationMethod,
    compute_coefficients,
)
from nodal.analysis.options import SimulationOptions
from nodal.analysis.solver import NewtonSolver, NRConfig
from nodal.analysis.transient.base import StepConfig, TimeStepState, TransientResult
from nodal.analysis.transient.predictor import (
    compute_new_timestep,
    compute_predictor_coeffs,
    estimate_lte,
    lte_ratio,
    predict,
)
from nodal.circuit import GROUND, Circuit
from nodal.errors import ConvergenceFailure, StepRejected
from nodal.logging import logger


def _initial_history(assembler: Assembler, x: np.ndarray, ctx: AnalysisContext) -> Dict[str, DeviceHistory]:
    """History at a point where every charge is at rest (dq/dt = 0)"""
    return {
        name: DeviceHistory(q=tuple(q), dqdt=(0.0,) * len(q))
        for name, q in assembler.charges(x, ctx).items()
    }


def _apply_initial_conditions(circuit: Circuit, x: np.ndarray) -> np.ndarray:
    """Impose every device's initial condition (icmode='ic')"""
    x = x.copy()
    for device in circuit.devices:
        local = circuit.local_indices(device)
        grounded = local == GROUND
        v = np.where(grounded, 0.0, x[np.maximum(local, 0)])
        v = device.initial_condition(v)
        x[local[~grounded]] = v[~grounded]
    return x


class _TransientRun:
    """State of one transient run: accepted points and step control"""

    def __init__(self, circuit: Circuit, start: float, stop: float,
                 step_config: StepConfig, options: SimulationOptions):
        self.circuit = circuit
        self.start = start
        self.stop = stop
        self.options = options
        self.assembler = Assembler(circuit)
        self.newton = NewtonSolver(self.assembler)
        self.config = NRConfig.from_options(options)
        self.h0, self.min_step, self.max_step = step_config.resolve(stop - start, options)

        self.breakpoints = [t for t in circuit.breakpoints(start, stop) if start < t < stop]
        self.breakpoints.append(stop)
        self.next_bp = 0

        # Per-unknown absolute tolerance: node voltages first, then currents
        self.abstol = np.full(circuit.n, options.abstol_i)
        self.abstol[:circuit.num_nodes] = options.abstol_v

        self.result = TransientResult(circuit=circuit)
        self.points: List[np.ndarray] = []
        self.past_dt: List[float] = []
        self.history: Dict[str, DeviceHistory] = {}
        self.use_be = True

    # -- initial state ---------------------------------------------------------

    def initialize(self, initial_state: Optional[np.ndarray]):
        n = self.circuit.n
        if initial_state is None:
            x0 = np.zeros(n)
        else:
            x0 = np.asarray(initial_state, dtype=np.float64)
            if x0.shape != (n,):
                raise ValueError(f"initial_state must have shape ({n},), got {x0.shape}")

        options = self.options
        ctx = AnalysisContext.dc(time=self.start, temperature=options.temperature, gmin=options.gmin)
        ctx = ctx.with_homotopy(gshunt=options.gshunt)

        if options.icmode == "op":
            x, iterations, _, method, _ = solve_operating_point(self.newton, x0, ctx, options)
            logger.info(f"Transient: operating point at t={self.start:g} ({method}, {iterations} iterations)")
            self.result.total_iterations += iterations
        else:
            x = _apply_initial_conditions(self.circuit, x0)
            iterations = 0
            logger.info("Transient: starting from initial conditions")

        self.history = _initial_history(self.assembler, x, ctx)
        self._restart(x)
        self.result.states.append(
            TimeStepState(time=self.start, step=0.0, solution=x, iterations=iterations,
                          method=options.icmode, history=self.history)
        )

    def _restart(self, x: np.ndarray):
        """Forget predictor history; the next step is backward Euler"""
        self.points = [x]
        self.past_dt = []
        self.use_be = True

    # -- stepping ---------------------------------------------------------------

    def _clip_to_breakpoint(self, t: float, h: float) -> float:
        gap = self.breakpoints[self.next_bp] - t
        if gap - h < self.min_step:
            return gap
        return h

    def attempt(self, t: float, h: float) -> TimeStepState:
        """Solve one step of size h from t

        Raises:
            StepRejected: If Newton fails or the LTE exceeds its tolerance
        """
        options = self.options
        landing = h == self.breakpoints[self.next_bp] - t
        t_new = self.breakpoints[self.next_bp] if landing else t + h

        method = IntegrationMethod.BACKWARD_EULER if self.use_be else options.tran_method
        coeffs = compute_coefficients(method, h)
        ctx = AnalysisContext.transient(t_new, h, coeffs, temperature=options.temperature,
                                        gmin=options.gmin).with_homotopy(gshunt=options.gshunt)

        order = coeffs.order
        can_predict = len(self.points) >= order + 1
        x_prev = self.points[0]
        if can_predict:
            pc = compute_predictor_coeffs(self.past_dt, h, order)
            x0 = predict(pc, self.points)
        else:
            x0 = x_prev

        nr = self.newton.solve(x0, ctx, self.config, self.history)
        self.result.total_iterations += nr.iterations
        if not nr.converged:
            raise StepRejected(
                f"Newton {nr.status.value} at t={t_new:.6e}",
                time=t_new, step=h, reason="newton",
                residual_norm=nr.residual_norm, iterations=nr.iterations,
            )

        ratio = float("nan")
        if can_predict:
            lte = estimate_lte(x0, nr.x, pc.error_coeff, coeffs.error_coeff)
            ratio = lte_ratio(lte, nr.x, x_prev, options.lte_tolerance, self.abstol)
            if ratio > 1.0:
                raise StepRejected(
                    f"LTE ratio {ratio:.3g} at t={t_new:.6e}",
                    time=t_new, step=h, reason="lte",
                    residual_norm=nr.residual_norm, iterations=nr.iterations,
                )

        self._accept(nr.x, ctx, coeffs)
        return TimeStepState(time=t_new, step=h, solution=nr.x, iterations=nr.iterations,
                             method=method.value, lte_ratio=ratio, history=self.history)

    def _accept(self, x: np.ndarray, ctx: AnalysisContext, coeffs):
        history = {}
        for name, q in self.assembler.charges(x, ctx).items():
            prev = self.history.get(name)
            if prev is None:
                hist = np.zeros_like(q)
                version = 0
            else:
                hist = np.asarray(prev.history(coeffs))
                version = prev.version + 1
            dqdt = coeffs.c0 * q + hist
            history[name] = DeviceHistory(q=tuple(q), dqdt=tuple(dqdt), version=version)
        self.history = history

        self.points.insert(0, x)
        self.past_dt.insert(0, ctx.time_step)
        max_order = max(self.options.tran_method.order, 1)
        del self.points[max_order + 1:]
        del self.past_dt[max_order:]

    def _budget_exhausted(self) -> bool:
        options = self.options
        if options.max_time_points is not None and len(self.result.states) >= options.max_time_points:
            logger.warning(f"Transient: time point budget {options.max_time_points} reached")
            return True
        if (options.max_total_iterations is not None
                and self.result.total_iterations >= options.max_total_iterations):
            logger.warning(f"Transient: iteration budget {options.max_total_iterations} reached")
            return True
        return False

    def run(self) -> TransientResult:
        options = self.options
        result = self.result
        t = self.start
        h = self.h0

        while self.next_bp < len(self.breakpoints):
            if self._budget_exhausted():
                result.aborted = True
                break

            wanted = min(h, self.max_step)
            h = self._clip_to_breakpoint(t, wanted)
            try:
                state = self.attempt(t, h)
            except StepRejected as e:
                result.rejected_steps += 1
                if e.reason == "newton":
                    logger.warning(f"Transient: step rejected, {e}; retrying with backward Euler")
                    self.use_be = True
                else:
                    logger.info(f"Transient: step rejected, {e}")
                if h <= self.min_step:
                    result.aborted = True
                    raise ConvergenceFailure(
                        f"Transient step rejected at minimum step {self.min_step:g} "
                        f"(t={t:.6e}, {e.reason})",
                        residual_norm=e.residual_norm,
                        iterations=e.iterations,
                        partial_result=result,
                    ) from e
                h = max(h / options.tran_redofactor, self.min_step)
                continue

            result.states.append(state)
            logger.debug(
                f"Transient: t={state.time:.6e} h={h:.3e} {state.method} "
                f"NR={state.iterations} lte={state.lte_ratio:.3g}"
            )
            t = state.time

            if t == self.breakpoints[self.next_bp]:
                self.next_bp += 1
                self._restart(state.solution)
                h = min(wanted, self.h0)
            else:
                self.use_be = False
                if np.isnan(state.lte_ratio):
                    h_next = h
                else:
                    h_next = compute_new_timestep(
                        state.lte_ratio, h, options.tran_method.order,
                        safety=options.tran_fs, max_growth=options.tran_max_growth,
                        min_dt=self.min_step, max_dt=self.max_step,
                    )
                h = h_next

        logger.info(
            f"Transient: {result.accepted_steps} steps accepted, {result.rejected_steps} rejected, "
            f"{result.total_iterations} iterations"
            + (" (aborted)" if result.aborted else "")
        )
        return result


def solve_transient(
    circuit: Circuit,
    start: float,
    stop: float,
    step_config: Optional[StepConfig] = None,
    options: Optional[SimulationOptions] = None,
    initial_state: Optional[np.ndarray] = None,
) -> TransientResult:
    """Transient analysis over [start, stop]

    Args:
        circuit: Circuit to simulate (finalized if needed)
        start: Start time
        stop: Stop time (must exceed start)
        step_config: Step size bounds (defaults derived from the span and options)
        options: Simulation options (defaults if None)
        initial_state: Starting vector; the initial guess of the operating
            point for icmode='op', the state itself for icmode='ic'

    Returns:
        TransientResult with every accepted time point. ``aborted`` is set
        when a time point or iteration budget ended the run early.

    Raises:
        ConvergenceFailure: If the operating point fails, or a step is rejected
            at the minimum step size (``partial_result`` holds the accepted points)
        SingularMatrixError: If the MNA matrix is singular
    """
    if not stop > start:
        raise ValueError(f"stop ({stop}) must be greater than start ({start})")
    if options is None:
        options = SimulationOptions()
    if step_config is None:
        step_config = StepConfig()
    circuit.finalize()

    logger.info(f"Transient analysis: {circuit!r}, t=[{start:g}, {stop:g}]")
    run = _TransientRun(circuit, start, stop, step_config, options)
    run.initialize(initial_state)
    return run.run()
