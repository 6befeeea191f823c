"""Jacobian cross-checking utilities.

Device equations are differentiated with forward-mode dual numbers during a
solve. The same equations can be traced by JAX (every primitive in
``nodal.expression.ops`` dispatches to jax.numpy for JAX arrays), so
``jax.jacfwd`` gives an independent reference Jacobian.

Only equations without value-dependent Python control flow can be traced;
a device whose equations branch on a voltage (``if vd < ...``) has to be
checked on the dual path alone, e.g. against finite differences.
"""

from typing import Callable, NamedTuple, Optional, Sequence

import jax
import jax.numpy as jnp
import numpy as np

from nodal.analysis.assembler import Assembler
from nodal.analysis.context import AnalysisContext
from nodal.devices.base import Device
from nodal.expression import jacobian


class JacobianComparison(NamedTuple):
    """Result of comparing two Jacobians."""

    passed: bool
    max_abs_diff: float
    max_rel_diff: float
    mismatched_positions: list  # (row, col) pairs
    report: str


def dual_jacobian(fn: Callable, values: Sequence[float]) -> np.ndarray:
    """Jacobian of fn at values from dual-number evaluation"""
    return jacobian(fn, values)[1]


def jax_jacobian(fn: Callable, values: Sequence[float]) -> np.ndarray:
    """Jacobian of fn at values from jax.jacfwd

    fn takes k scalar arguments and returns a sequence of m outputs.
    """
    k = len(values)

    def stacked(x):
        outputs = fn(*(x[i] for i in range(k)))
        return jnp.stack([jnp.asarray(o, dtype=x.dtype) for o in outputs])

    x = jnp.asarray(np.asarray(values, dtype=np.float64))
    return np.asarray(jax.jacfwd(stacked)(x))


def compare_jacobians(
    reference: np.ndarray,
    candidate: np.ndarray,
    rtol: float = 1e-6,
    atol: float = 1e-12,
    label: str = "Jacobian",
) -> JacobianComparison:
    """Compare two dense Jacobians element by element.

    Args:
        reference: Reference Jacobian (e.g. from jax.jacfwd)
        candidate: Jacobian under test (e.g. from dual numbers)
        rtol: Relative tolerance
        atol: Absolute tolerance
        label: Name used in the report

    Returns:
        JacobianComparison with detailed results
    """
    reference = np.atleast_2d(np.asarray(reference, dtype=np.float64))
    candidate = np.atleast_2d(np.asarray(candidate, dtype=np.float64))
    if reference.shape != candidate.shape:
        raise ValueError(f"Shape mismatch: {reference.shape} vs {candidate.shape}")

    abs_diff = np.abs(reference - candidate)
    max_abs_diff = float(np.max(abs_diff)) if abs_diff.size else 0.0
    with np.errstate(divide="ignore", invalid="ignore"):
        rel_diff = abs_diff / np.maximum(np.abs(reference), atol)
        rel_diff = np.where(np.isfinite(rel_diff), rel_diff, 0.0)
    max_rel_diff = float(np.max(rel_diff)) if rel_diff.size else 0.0

    close = np.isclose(candidate, reference, rtol=rtol, atol=atol)
    mismatched = [(int(i), int(j)) for i, j in zip(*np.nonzero(~close))]
    passed = not mismatched

    rows, cols = reference.shape
    report_lines = [
        f"{label} comparison ({rows}×{cols}):",
        f"  Max abs diff:   {max_abs_diff:.6e}",
        f"  Max rel diff:   {max_rel_diff:.6e}",
        f"  Passed:         {passed}",
    ]
    if mismatched:
        report_lines.append(f"  Mismatches: {len(mismatched)}")
        for i, j in mismatched[:10]:
            report_lines.append(
                f"    [{i},{j}]: reference={reference[i, j]:.6e}, candidate={candidate[i, j]:.6e}"
            )
        if len(mismatched) > 10:
            report_lines.append(f"    ... and {len(mismatched) - 10} more")

    return JacobianComparison(
        passed=passed,
        max_abs_diff=max_abs_diff,
        max_rel_diff=max_rel_diff,
        mismatched_positions=mismatched,
        report="\n".join(report_lines),
    )


def check_device_jacobian(
    device: Device,
    v: Sequence[float],
    ctx: Optional[AnalysisContext] = None,
    reactive: bool = False,
    rtol: float = 1e-6,
    atol: float = 1e-12,
) -> JacobianComparison:
    """Compare a device's dual-number Jacobian with jax.jacfwd.

    Args:
        device: Device whose equations are traceable by JAX
        v: Local inputs (terminals, internal nodes, branch currents)
        ctx: Analysis context (DC if None)
        reactive: Compare dQ/dv instead of the resistive di/dv
        rtol: Relative tolerance
        atol: Absolute tolerance

    Returns:
        JacobianComparison of jax.jacfwd (reference) against dual numbers
    """
    if ctx is None:
        ctx = AnalysisContext.dc()
    if len(v) != device.num_inputs:
        raise ValueError(f"{device.name} has {device.num_inputs} inputs, got {len(v)}")

    def fn(*inputs):
        eqs = device.equations(inputs, ctx, None)
        if reactive:
            if eqs.charges is None:
                return tuple(0.0 for _ in eqs.currents)
            return eqs.charges
        return eqs.currents

    kind = "Reactive (dQ/dv)" if reactive else "Resistive (di/dv)"
    return compare_jacobians(
        jax_jacobian(fn, v), dual_jacobian(fn, v), rtol=rtol, atol=atol,
        label=f"{device.name} {kind}",
    )


def print_jacobian_structure(assembler: Assembler, x: np.ndarray,
                             ctx: Optional[AnalysisContext] = None) -> None:
    """Print the sparsity pattern of the assembled Jacobian at x.

    Args:
        assembler: Assembler of the circuit
        x: Point at which to assemble
        ctx: Analysis context (DC if None)
    """
    if ctx is None:
        ctx = AnalysisContext.dc()
    dense = assembler.dense_jacobian(assembler.assemble(x, ctx))
    names = assembler.circuit.unknown_names()
    n = assembler.n

    print(f"\nJacobian structure ({n}×{n}), {assembler.nnz} pattern entries:")
    width = max(len(name) for name in names)
    for i in range(n):
        row_str = "  " + names[i].ljust(width) + " "
        for j in range(n):
            row_str += "X " if dense[i, j] != 0.0 else ". "
        print(row_str)
