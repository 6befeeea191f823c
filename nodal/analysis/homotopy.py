"""Homotopy algorithms for DC operating point convergence.

This module implements continuation methods that help Newton-Raphson
converge when a plain solve from the initial guess fails (e.g. exponential
junctions far from their operating point, circuits with feedback).

The default homotopy chain is: gmin -> source
- gmin: Shunt conductance from every node to ground, stepped down
  geometrically until it reaches the base gmin, then removed by a final solve
- source: Source stepping from 0->100% (with gmin fallback at factor=0)

Each algorithm is an outer loop around the inner Newton solve. The inner
solve is passed in as ``nr_solve(x0, source_scale, gshunt) -> NRResult`` so
this module knows nothing about assembly or linear algebra.

Reference: VACASK lib/hmtpgmin.cpp and lib/hmtpsrc.cpp
"""

from dataclasses import dataclass
from typing import Callable, Tuple

import numpy as np

from nodal.analysis.options import SimulationOptions
from nodal.analysis.solver import NRResult
from nodal.logging import logger

NRSolve = Callable[[np.ndarray, float, float], NRResult]


@dataclass
class HomotopyConfig:
    """Configuration for homotopy algorithms."""

    # Base GMIN: gmin stepping ends once the shunt reaches it
    gmin: float = 1e-12

    # GMIN stepping parameters
    gmin_start: float = 1e-3
    gmin_factor: float = 10.0
    gmin_factor_min: float = 1.1
    gmin_max: float = 1.0
    gmin_max_steps: int = 100

    # Source stepping parameters
    source_step: float = 0.1
    source_step_min: float = 1e-3
    source_scale: float = 2.0
    source_max_steps: int = 100

    chain: Tuple[str, ...] = ("gmin", "source")

    # Inner NR budget, used to judge how hard a step was
    max_iterations: int = 100

    @classmethod
    def from_options(cls, options: SimulationOptions) -> "HomotopyConfig":
        return cls(
            gmin=options.gmin,
            gmin_start=options.gmin_start,
            gmin_factor=options.gmin_factor,
            gmin_max_steps=options.max_gmin_steps,
            source_step=options.source_step,
            source_step_min=options.source_step_min,
            source_max_steps=options.max_source_steps,
            chain=tuple(options.homotopy_chain),
            max_iterations=options.max_newton_iterations,
        )


@dataclass
class HomotopyResult:
    """Result from a homotopy algorithm."""

    converged: bool
    x: np.ndarray
    method: str = ""
    iterations: int = 0
    homotopy_steps: int = 0
    final_gshunt: float = 0.0
    final_source_scale: float = 1.0
    residual_norm: float = float("inf")


def gmin_stepping(
    nr_solve: NRSolve,
    x_init: np.ndarray,
    config: HomotopyConfig,
    source_scale: float = 1.0,
) -> HomotopyResult:
    """Adaptive GMIN stepping.

    Gradually reduces a node-to-ground shunt from ``gmin_start`` down to the
    base gmin. After a hard step (many iterations) the reduction factor is
    softened; after a failed step the last good solution is restored and the
    factor is cut to its fourth root. Once the target is reached a final
    solve without the shunt produces the answer.

    Args:
        nr_solve: Inner Newton solve (x0, source_scale, gshunt) -> NRResult
        x_init: Initial guess
        config: Homotopy configuration
        source_scale: Fixed source scaling factor for this stepping

    Returns:
        HomotopyResult with final solution and convergence info
    """
    at_gmin = config.gmin_start
    target_gmin = config.gmin
    factor = config.gmin_factor

    x = x_init
    x_good = x_init
    good_gmin = at_gmin
    continuation = False
    total_iterations = 0
    homotopy_steps = 0
    last = None

    logger.info(f"Homotopy: starting gmin stepping from {at_gmin:.2e}")

    for step in range(config.gmin_max_steps):
        homotopy_steps += 1
        last = nr_solve(x, source_scale, at_gmin)
        total_iterations += last.iterations

        if last.converged:
            continuation = True
            x_good = last.x
            good_gmin = at_gmin

            logger.debug(
                f"Homotopy: gshunt={at_gmin:.2e}, step {homotopy_steps} "
                f"converged in {last.iterations} iterations"
            )

            if at_gmin <= target_gmin:
                break

            # Adaptive factor adjustment
            if last.iterations > config.max_iterations * 3 // 4:
                factor = max(np.sqrt(factor), config.gmin_factor_min)

            if at_gmin / factor < target_gmin:
                factor = at_gmin / target_gmin
                at_gmin = target_gmin
            else:
                at_gmin = at_gmin / factor

            x = last.x
        else:
            logger.debug(
                f"Homotopy: gshunt={at_gmin:.2e}, step {homotopy_steps} "
                f"failed ({last.status.value}) after {last.iterations} iterations"
            )

            if not continuation:
                # No good solution yet, increase gmin
                at_gmin = at_gmin * factor
                if at_gmin > config.gmin_max:
                    logger.info("Homotopy: gmin stepping failed (gmin too large)")
                    return HomotopyResult(
                        converged=False,
                        x=x_init,
                        method="gmin_stepping",
                        iterations=total_iterations,
                        homotopy_steps=homotopy_steps,
                        final_gshunt=at_gmin,
                        final_source_scale=source_scale,
                        residual_norm=last.residual_norm,
                    )
            else:
                # Have a good solution, decrease factor and backtrack
                factor = factor ** 0.25
                if factor < config.gmin_factor_min:
                    logger.info("Homotopy: gmin stepping failed (factor exhausted)")
                    break
                x = x_good
                at_gmin = good_gmin / factor

    if continuation:
        # Final solve without the homotopy shunt
        final = nr_solve(x_good, source_scale, 0.0)
        total_iterations += final.iterations
        homotopy_steps += 1

        logger.info(
            f"Homotopy: gmin final step "
            f"{'converged' if final.converged else 'failed'} in {final.iterations} iterations"
        )

        return HomotopyResult(
            converged=final.converged,
            x=final.x if final.converged else x_good,
            method="gmin_stepping",
            iterations=total_iterations,
            homotopy_steps=homotopy_steps,
            final_gshunt=0.0 if final.converged else good_gmin,
            final_source_scale=source_scale,
            residual_norm=final.residual_norm,
        )

    return HomotopyResult(
        converged=False,
        x=x_good,
        method="gmin_stepping",
        iterations=total_iterations,
        homotopy_steps=homotopy_steps,
        final_gshunt=at_gmin,
        final_source_scale=source_scale,
        residual_norm=last.residual_norm if last is not None else float("inf"),
    )


def source_stepping(
    nr_solve: NRSolve,
    x_init: np.ndarray,
    config: HomotopyConfig,
) -> HomotopyResult:
    """Adaptive source stepping with GMIN fallback.

    This algorithm gradually ramps voltage/current sources from 0 to 100%.
    If the initial solve at source factor 0 fails, it falls back to
    GMIN stepping first.

    Args:
        nr_solve: Inner Newton solve (x0, source_scale, gshunt) -> NRResult
        x_init: Initial guess
        config: Homotopy configuration

    Returns:
        HomotopyResult with final solution and convergence info
    """
    raise_step = config.source_step
    good_factor = 0.0
    total_iterations = 0
    homotopy_steps = 0

    logger.info("Homotopy: starting source stepping")

    # Initial solve at source_factor=0
    result = nr_solve(x_init, 0.0, 0.0)
    total_iterations += result.iterations
    homotopy_steps += 1
    residual_norm = result.residual_norm

    logger.debug(
        f"Homotopy: srcfact=0.00, initial solve "
        f"{'converged' if result.converged else 'failed'} in {result.iterations} iterations"
    )

    if not result.converged:
        logger.info("Homotopy: trying gmin stepping at source factor 0")
        gmin_result = gmin_stepping(nr_solve, x_init, config, source_scale=0.0)
        total_iterations += gmin_result.iterations
        homotopy_steps += gmin_result.homotopy_steps

        if not gmin_result.converged:
            logger.info("Homotopy: source stepping failed (could not solve at source=0)")
            return HomotopyResult(
                converged=False,
                x=x_init,
                method="source_stepping",
                iterations=total_iterations,
                homotopy_steps=homotopy_steps,
                final_source_scale=0.0,
                residual_norm=gmin_result.residual_norm,
            )
        x_good = gmin_result.x
    else:
        x_good = result.x

    for step in range(config.source_max_steps):
        new_factor = min(good_factor + raise_step, 1.0)

        result = nr_solve(x_good, new_factor, 0.0)
        total_iterations += result.iterations
        homotopy_steps += 1
        residual_norm = result.residual_norm

        if result.converged:
            x_good = result.x
            good_factor = new_factor

            logger.debug(
                f"Homotopy: srcfact={new_factor:.3f}, step {homotopy_steps} "
                f"converged in {result.iterations} iterations"
            )

            if good_factor >= 1.0:
                logger.info("Homotopy: source stepping succeeded")
                return HomotopyResult(
                    converged=True,
                    x=x_good,
                    method="source_stepping",
                    iterations=total_iterations,
                    homotopy_steps=homotopy_steps,
                    final_source_scale=1.0,
                    residual_norm=residual_norm,
                )

            # Adaptive step adjustment
            if result.iterations <= config.max_iterations // 4:
                raise_step *= config.source_scale
            elif result.iterations > config.max_iterations * 3 // 4:
                raise_step = max(raise_step / config.source_scale, config.source_step_min)
        else:
            logger.debug(
                f"Homotopy: srcfact={new_factor:.3f}, step {homotopy_steps} "
                f"failed ({result.status.value}) after {result.iterations} iterations"
            )

            # Not converged, reduce step and retry
            raise_step *= 0.5
            if raise_step < config.source_step_min:
                logger.info("Homotopy: source stepping failed (step too small)")
                break

    return HomotopyResult(
        converged=False,
        x=x_good,
        method="source_stepping",
        iterations=total_iterations,
        homotopy_steps=homotopy_steps,
        final_source_scale=good_factor,
        residual_norm=residual_norm,
    )


def run_homotopy_chain(
    nr_solve: NRSolve,
    x_init: np.ndarray,
    config: HomotopyConfig,
) -> HomotopyResult:
    """Run the homotopy chain, trying each algorithm until one succeeds.

    Args:
        nr_solve: Inner Newton solve (x0, source_scale, gshunt) -> NRResult
        x_init: Initial guess
        config: Homotopy configuration

    Returns:
        HomotopyResult with final solution and convergence info
    """
    x = x_init
    total_iterations = 0
    total_steps = 0
    residual_norm = float("inf")

    logger.info(f"Homotopy: running chain {config.chain}")

    for algorithm in config.chain:
        if algorithm == "gmin":
            result = gmin_stepping(nr_solve, x, config, source_scale=1.0)
        elif algorithm == "source":
            result = source_stepping(nr_solve, x, config)
        else:
            raise ValueError(f"Unknown homotopy algorithm {algorithm!r}")

        total_iterations += result.iterations
        total_steps += result.homotopy_steps
        residual_norm = result.residual_norm

        if result.converged:
            logger.info(f"Homotopy: chain succeeded with {algorithm}")
            return HomotopyResult(
                converged=True,
                x=result.x,
                method=result.method,
                iterations=total_iterations,
                homotopy_steps=total_steps,
                final_gshunt=result.final_gshunt,
                final_source_scale=result.final_source_scale,
                residual_norm=result.residual_norm,
            )

        # Use best x from failed attempt as next starting point
        x = result.x

    logger.warning("Homotopy: chain exhausted, all algorithms failed")
    return HomotopyResult(
        converged=False,
        x=x,
        method="chain_failed",
        iterations=total_iterations,
        homotopy_steps=total_steps,
        residual_norm=residual_norm,
    )
