"""Newton-Raphson solver for nodal.

This module provides the core NR iteration loop used by DC operating point,
homotopy continuation and every transient step.

The system to solve is F(x) = 0, where F is the MNA residual (KCL mismatch
per node, branch-equation mismatch per branch). Each iteration:

    1. solve J(x_k) * dx = -F(x_k) with the sparse LU solver
    2. x_{k+1} = x_k + damping * dx (halved while the new point is not finite)
    3. junction limiting moves nonlinear devices' evaluation points
    4. reassemble at x_{k+1} and test convergence

Convergence per unknown i (after an update dx_i):

    voltages:  |dx_i| <= abstol_v + reltol * max(|x_i|, |x_i_prev|)
    currents:  |dx_i| <= abstol_i + reltol * max(|x_i|, |x_i_prev|)

and per residual row: |F_i| <= abstol_i + reltol * row_scale_i for node rows
and abstol_v + reltol * row_scale_i for branch rows. An iteration in which
any device limited its voltages does not pass. The solve is converged when
two consecutive iterations pass. A circuit made only of linear devices is
converged after its first solve, since the Newton step is exact.
"""

from enum import Enum
from typing import Dict, NamedTuple, Optional

import numpy as np
from jaxtyping import Float

from nodal.analysis.assembler import Assembler, AssembledSystem
from nodal.analysis.context import AnalysisContext
from nodal.analysis.integration import DeviceHistory
from nodal.analysis.options import SimulationOptions
from nodal.analysis.sparse import SparseLUSolver
from nodal.logging import logger


class NRStatus(Enum):
    """Terminal state of a Newton-Raphson run"""
    CONVERGED = "converged"
    DIVERGED = "diverged"
    MAX_ITERATIONS = "max_iterations"


class NRConfig(NamedTuple):
    """Configuration for Newton-Raphson solver.

    Attributes:
        max_iterations: Maximum number of NR iterations
        abstol_v: Absolute tolerance for voltage updates and branch residuals
        abstol_i: Absolute tolerance for current updates and KCL residuals
        reltol: Relative tolerance
        damping: Damping factor for updates (1.0 = no damping)
        max_backtracks: Halvings of a step whose result is not finite
        limiting: Whether nonlinear devices limit their evaluation points
    """
    max_iterations: int = 100
    abstol_v: float = 1e-6
    abstol_i: float = 1e-12
    reltol: float = 1e-3
    damping: float = 1.0
    max_backtracks: int = 20
    limiting: bool = True

    @classmethod
    def from_options(cls, options: SimulationOptions) -> "NRConfig":
        return cls(
            max_iterations=options.max_newton_iterations,
            abstol_v=options.abstol_v,
            abstol_i=options.abstol_i,
            reltol=options.reltol,
            damping=options.nr_damping,
            max_backtracks=options.max_backtracks,
            limiting=options.limiting,
        )


class NRResult(NamedTuple):
    """Result from Newton-Raphson solver.

    Attributes:
        x: Final iterate (the solution when converged)
        iterations: Number of iterations performed
        status: Terminal state
        residual_norm: Max-norm of the residual at x
        backtracks: Total step halvings caused by non-finite values
    """
    x: Float[np.ndarray, "n"]
    iterations: int
    status: NRStatus
    residual_norm: float
    backtracks: int = 0

    @property
    def converged(self) -> bool:
        return self.status == NRStatus.CONVERGED


def _finite(system: AssembledSystem) -> bool:
    return bool(np.all(np.isfinite(system.residual)) and np.all(np.isfinite(system.jacobian)))


class NewtonSolver:
    """Newton-Raphson iteration over one circuit

    Holds the assembler and a sparse solver whose symbolic analysis is
    reused by every solve (DC, homotopy steps, transient steps).

    Args:
        assembler: Assembler of the circuit
        lu: Optional sparse solver to share; one is created otherwise
    """

    def __init__(self, assembler: Assembler, lu: Optional[SparseLUSolver] = None):
        self.assembler = assembler
        self.n = assembler.n
        self.num_nodes = assembler.num_nodes
        self.is_linear = assembler.circuit.is_linear
        if lu is None:
            lu = SparseLUSolver(assembler.rows, assembler.cols, assembler.n,
                                names=assembler.circuit.unknown_names())
        self.lu = lu

        # Voltage unknowns first, then branch currents
        self._is_voltage = np.zeros(self.n, dtype=bool)
        self._is_voltage[:self.num_nodes] = True

    def _update_tolerance(self, x_new, x_old, config: NRConfig):
        abstol = np.where(self._is_voltage, config.abstol_v, config.abstol_i)
        return abstol + config.reltol * np.maximum(np.abs(x_new), np.abs(x_old))

    def _residual_tolerance(self, system: AssembledSystem, config: NRConfig):
        abstol = np.where(self._is_voltage, config.abstol_i, config.abstol_v)
        return abstol + config.reltol * system.row_scale

    def solve(
        self,
        x0: Float[np.ndarray, "n"],
        ctx: AnalysisContext,
        config: Optional[NRConfig] = None,
        history: Optional[Dict[str, DeviceHistory]] = None,
    ) -> NRResult:
        """Solve F(x) = 0 starting from x0

        Args:
            x0: Initial guess (zero vector, or a previous solution for continuation)
            ctx: Analysis context
            config: Solver configuration (uses defaults if None)
            history: Per-device charge history (transient)

        Returns:
            NRResult with final iterate, iteration count, status and residual

        Raises:
            SingularMatrixError: If the Jacobian cannot be factorized
        """
        if config is None:
            config = NRConfig()

        assembler = self.assembler
        x = np.array(x0, dtype=np.float64)
        if x.shape != (self.n,):
            raise ValueError(f"Initial guess must have shape ({self.n},), got {x.shape}")

        eval_points = assembler.initial_eval_points(x) if config.limiting else None
        system = assembler.assemble(x, ctx, history, eval_points)
        if not _finite(system):
            logger.debug("NR: initial point is not finite")
            return NRResult(x, 0, NRStatus.DIVERGED, float("inf"))

        passes = 0
        backtracks = 0
        for iteration in range(1, config.max_iterations + 1):
            dx = self.lu.solve(system.jacobian, -system.residual)
            if not np.all(np.isfinite(dx)):
                logger.debug(f"NR iter {iteration}: update is not finite")
                return NRResult(x, iteration, NRStatus.DIVERGED, float("inf"), backtracks)
            dx = config.damping * dx

            # Backtrack while the new point evaluates to NaN/Inf
            alpha = 1.0
            for _ in range(config.max_backtracks + 1):
                x_new = x + alpha * dx
                new_points, n_limited = None, 0
                if config.limiting:
                    new_points, n_limited = assembler.limit(x_new, eval_points, ctx)
                new_system = assembler.assemble(x_new, ctx, history, new_points)
                if _finite(new_system):
                    break
                alpha *= 0.5
                backtracks += 1
            else:
                logger.debug(
                    f"NR iter {iteration}: still not finite after {config.max_backtracks} halvings"
                )
                return NRResult(x, iteration, NRStatus.DIVERGED,
                                float(np.max(np.abs(system.residual))), backtracks)

            step = x_new - x
            x_old = x
            x, system, eval_points = x_new, new_system, new_points
            residual_norm = float(np.max(np.abs(system.residual))) if self.n else 0.0

            if self.is_linear and config.damping == 1.0 and alpha == 1.0:
                logger.debug(f"NR iter {iteration}: linear circuit, |F|={residual_norm:.3e}")
                return NRResult(x, iteration, NRStatus.CONVERGED, residual_norm, backtracks)

            update_ok = bool(np.all(np.abs(step) <= self._update_tolerance(x, x_old, config)))
            residual_ok = bool(np.all(np.abs(system.residual) <= self._residual_tolerance(system, config)))
            passed = update_ok and residual_ok and n_limited == 0
            passes = passes + 1 if passed else 0

            logger.debug(
                f"NR iter {iteration}: |F|={residual_norm:.3e} "
                f"|dx|={float(np.max(np.abs(step))):.3e} alpha={alpha:g} "
                f"limited={n_limited} pass={passes}"
            )

            if passes >= 2:
                return NRResult(x, iteration, NRStatus.CONVERGED, residual_norm, backtracks)

        return NRResult(x, config.max_iterations, NRStatus.MAX_ITERATIONS,
                        float(np.max(np.abs(system.residual))), backtracks)
