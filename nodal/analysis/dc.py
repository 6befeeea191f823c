"""DC operating point analysis for nodal

Finds the solution vector where every capacitor current is zero and every
inductor is a short, i.e. F(x) = 0 with the DC context.

Plain Newton-Raphson is tried first. Only when it fails are the convergence
aids of the homotopy chain run (gmin stepping, source stepping). When every
aid fails a ConvergenceFailure is raised: a guess is never returned as a
solution.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
from jaxtyping import Float

from nodal.analysis.assembler import Assembler
from nodal.analysis.context import AnalysisContext
from nodal.analysis.homotopy import HomotopyConfig, run_homotopy_chain
from nodal.analysis.options import SimulationOptions
from nodal.analysis.solver import NewtonSolver, NRConfig
from nodal.circuit import GROUND, Circuit
from nodal.errors import ConvergenceFailure
from nodal.logging import logger


@dataclass
class DCResult:
    """Converged DC operating point

    Attributes:
        solution: Unknown vector (node voltages, then branch currents)
        iterations: Total Newton iterations, including convergence aids
        residual_norm: Max-norm of the residual at the solution
        method: "newton", or the convergence aid that succeeded
        homotopy_steps: Number of continuation steps taken by the aids
        circuit: The solved circuit, for named access
    """
    solution: Float[np.ndarray, "n"]
    iterations: int
    residual_norm: float
    method: str
    homotopy_steps: int
    circuit: Circuit

    def voltage(self, node: str) -> float:
        """Voltage of a node (0 for ground)"""
        return node_voltage(self.circuit, self.solution, node)

    def current(self, device: str, k: int = 0) -> float:
        """Current through a device, from its first terminal to its second

        Devices with branch unknowns report their k-th branch current; other
        devices report the current they draw from their first terminal.
        """
        return device_current(self.circuit, self.solution, device, k)


def node_voltage(circuit: Circuit, x: np.ndarray, node: str) -> float:
    index = circuit.node_index(node)
    return 0.0 if index == GROUND else float(x[index])


def device_current(circuit: Circuit, x: np.ndarray, name: str, k: int = 0,
                   ctx: Optional[AnalysisContext] = None) -> float:
    device = circuit.device(name)
    if device.num_branches:
        return float(x[circuit.branch_index(name, k)])
    local = circuit.local_indices(device)
    v = np.where(local == GROUND, 0.0, x[np.maximum(local, 0)])
    eqs = device.equations(v, ctx or AnalysisContext.dc(), None)
    return float(eqs.currents[0])


def solve_operating_point(
    newton: NewtonSolver,
    x0: Float[np.ndarray, "n"],
    ctx: AnalysisContext,
    options: SimulationOptions,
):
    """Newton first, then the homotopy chain

    Args:
        newton: Newton solver of the circuit
        x0: Initial guess
        ctx: DC context (time, temperature, gmin, base gshunt)
        options: Simulation options

    Returns:
        Tuple of (x, iterations, residual_norm, method, homotopy_steps)

    Raises:
        ConvergenceFailure: If plain Newton and every convergence aid fail
        SingularMatrixError: If the Jacobian cannot be factorized
    """
    config = NRConfig.from_options(options)
    result = newton.solve(x0, ctx, config)
    if result.converged:
        logger.info(f"DC: Newton converged in {result.iterations} iterations")
        return result.x, result.iterations, result.residual_norm, "newton", 0

    logger.warning(
        f"DC: Newton {result.status.value} after {result.iterations} iterations "
        f"(|F|={result.residual_norm:.3e})"
    )
    if not options.homotopy_chain:
        raise ConvergenceFailure(
            f"DC operating point did not converge ({result.status.value})",
            residual_norm=result.residual_norm,
            iterations=result.iterations,
        )

    base_gshunt = ctx.gshunt

    def nr_solve(x, source_scale, gshunt):
        step_ctx = ctx.with_homotopy(source_scale=source_scale, gshunt=base_gshunt + gshunt)
        return newton.solve(x, step_ctx, config)

    logger.warning(f"DC: trying convergence aids {tuple(options.homotopy_chain)}")
    homotopy = run_homotopy_chain(nr_solve, x0, HomotopyConfig.from_options(options))
    iterations = result.iterations + homotopy.iterations

    if not homotopy.converged:
        raise ConvergenceFailure(
            f"DC operating point did not converge after {tuple(options.homotopy_chain)}",
            residual_norm=homotopy.residual_norm,
            iterations=iterations,
        )

    logger.info(
        f"DC: converged with {homotopy.method} in {homotopy.homotopy_steps} steps, "
        f"{iterations} iterations"
    )
    return homotopy.x, iterations, homotopy.residual_norm, homotopy.method, homotopy.homotopy_steps


def solve_dc(
    circuit: Circuit,
    options: Optional[SimulationOptions] = None,
    initial_guess: Optional[np.ndarray] = None,
) -> DCResult:
    """Find the DC operating point of a circuit

    Args:
        circuit: Circuit to solve (finalized if needed)
        options: Simulation options (defaults if None)
        initial_guess: Starting vector of length circuit.n (zeros if None)

    Returns:
        DCResult with the solution and convergence statistics

    Raises:
        ConstructionError: If the circuit is invalid
        ConvergenceFailure: If no convergence aid reaches a solution
        SingularMatrixError: If the MNA matrix is singular
    """
    if options is None:
        options = SimulationOptions()
    circuit.finalize()
    newton = NewtonSolver(Assembler(circuit))

    if initial_guess is None:
        x0 = np.zeros(circuit.n)
    else:
        x0 = np.asarray(initial_guess, dtype=np.float64)
        if x0.shape != (circuit.n,):
            raise ValueError(f"initial_guess must have shape ({circuit.n},), got {x0.shape}")

    ctx = AnalysisContext.dc(temperature=options.temperature, gmin=options.gmin)
    ctx = ctx.with_homotopy(gshunt=options.gshunt)

    logger.info(f"DC analysis: {circuit!r}, {circuit.n} unknowns")
    x, iterations, residual_norm, method, steps = solve_operating_point(newton, x0, ctx, options)
    return DCResult(
        solution=x,
        iterations=iterations,
        residual_norm=residual_norm,
        method=method,
        homotopy_steps=steps,
        circuit=circuit,
    )
