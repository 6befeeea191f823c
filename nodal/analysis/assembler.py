"""Sparse MNA system assembly

The assembler walks every device, evaluates its equations on dual numbers
and scatters the result into

    F(x)  residual vector of length n (KCL mismatch per node row,
          branch-equation mismatch per branch row)
    J(x)  Jacobian dF/dx as COO values over a fixed pattern

The COO pattern is the union of every device's local block (ground rows and
columns dropped) plus the diagonal of every node row for Gmin shunts. It is
computed once per circuit, so the sparse solver can reuse its symbolic
analysis across Newton iterations and time steps. Duplicate (row, col)
entries are kept in the COO arrays and summed by the solver.

In transient analysis the reactive part of each row is discretized by the
integration coefficients of the step:

    F_row = i(x) + c0 * q(x) + hist

where hist = c1 * q_prev + d1 * dqdt_prev comes from the device's history.

Nonlinear devices may be evaluated away from x (junction limiting moves their
evaluation point x_e). Their stamp is then linearized consistently:

    F_dev(x) ≈ f(x_e) + J(x_e) (x - x_e)
"""

from typing import Dict, NamedTuple, Optional, Sequence

import numpy as np
from jaxtyping import Float

from nodal.analysis.context import AnalysisContext
from nodal.analysis.integration import DeviceHistory
from nodal.circuit import GROUND, Circuit
from nodal.devices.base import Device
from nodal.expression import split, variables


class AssembledSystem(NamedTuple):
    """Residual and Jacobian at one iterate

    Attributes:
        residual: F(x), shape (n,)
        jacobian: Jacobian values in the assembler's COO pattern order, shape (nnz,)
        row_scale: Sum of absolute contributions per row, the reference
            magnitude for relative residual tolerances
    """
    residual: Float[np.ndarray, "n"]
    jacobian: Float[np.ndarray, "nnz"]
    row_scale: Float[np.ndarray, "n"]


class _DeviceSlot(NamedTuple):
    device: Device
    local: np.ndarray       # global index per local input (GROUND where grounded)
    rows: np.ndarray        # local rows that are not grounded
    flat: np.ndarray        # flattened local (row, col) positions kept in the pattern
    start: int              # offset of this device's block in the COO arrays


class Assembler:
    """Builds F(x) and J(x) for a circuit

    Args:
        circuit: The circuit (finalized on construction)
        order: Optional device order (indices into circuit.devices). The
            assembled system is the same for any order up to the rounding
            of the summation.
    """

    def __init__(self, circuit: Circuit, order: Optional[Sequence[int]] = None):
        circuit.finalize()
        self.circuit = circuit
        self.n = circuit.n
        self.num_nodes = circuit.num_nodes

        devices = circuit.devices
        if order is not None:
            if sorted(order) != list(range(len(devices))):
                raise ValueError(f"order must be a permutation of range({len(devices)})")
            devices = tuple(devices[i] for i in order)

        rows, cols = [], []
        slots = []
        offset = 0
        for device in devices:
            local = circuit.local_indices(device)
            k = len(local)
            valid = local != GROUND
            rr, cc = np.meshgrid(np.arange(k), np.arange(k), indexing="ij")
            keep = valid[rr] & valid[cc]
            flat = (rr * k + cc)[keep]
            rows.append(local[rr[keep]])
            cols.append(local[cc[keep]])
            slots.append(_DeviceSlot(device, local, np.flatnonzero(valid), flat, offset))
            offset += len(flat)

        # Node diagonals for the Gmin shunt
        diag = np.arange(self.num_nodes, dtype=np.int64)
        rows.append(diag)
        cols.append(diag)
        self._diag_start = offset

        self._slots = tuple(slots)
        self.rows = np.concatenate(rows).astype(np.int64)
        self.cols = np.concatenate(cols).astype(np.int64)
        self.nnz = len(self.rows)

    @property
    def devices(self):
        return tuple(slot.device for slot in self._slots)

    @property
    def nonlinear_devices(self):
        return tuple(slot.device for slot in self._slots if not slot.device.is_linear)

    def gather(self, x: np.ndarray, device: Device) -> np.ndarray:
        """Local inputs of a device from the global vector (0 for ground)"""
        local = self.circuit.local_indices(device)
        return np.where(local == GROUND, 0.0, x[np.maximum(local, 0)])

    def assemble(
        self,
        x: Float[np.ndarray, "n"],
        ctx: AnalysisContext,
        history: Optional[Dict[str, DeviceHistory]] = None,
        eval_points: Optional[Dict[str, np.ndarray]] = None,
    ) -> AssembledSystem:
        """Evaluate every device and accumulate the MNA system

        Args:
            x: Current iterate
            ctx: Analysis context (DC or transient with coefficients)
            history: Per-device charges at the previous accepted time point
                (transient only; a missing entry means zero history)
            eval_points: Per-device evaluation points set by limiting

        Returns:
            AssembledSystem with residual, Jacobian values and row scales
        """
        x = np.asarray(x, dtype=np.float64)
        residual = np.zeros(self.n)
        row_scale = np.zeros(self.n)
        values = np.zeros(self.nnz)
        coeffs = ctx.coeffs if ctx.is_transient else None

        # Overflow and invalid domains surface as NaN/Inf in the result; the
        # Newton driver treats those as a failed step
        with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
            for slot in self._slots:
                device = slot.device
                x_local = np.where(slot.local == GROUND, 0.0, x[np.maximum(slot.local, 0)])
                x_eval = x_local
                if eval_points is not None and device.name in eval_points:
                    x_eval = eval_points[device.name]

                dev_history = history.get(device.name) if history is not None else None
                k = len(slot.local)
                eqs = device.equations(variables(x_eval), ctx, dev_history)
                f, jac = split(eqs.currents, k)
                scale = np.abs(f)

                if coeffs is not None and eqs.charges is not None:
                    q, jac_q = split(eqs.charges, k)
                    reactive = coeffs.c0 * q
                    if dev_history is not None:
                        reactive = reactive + np.asarray(dev_history.history(coeffs))
                    f = f + reactive
                    jac = jac + coeffs.c0 * jac_q
                    scale = scale + np.abs(reactive)

                if x_eval is not x_local:
                    f = f + jac @ (x_local - x_eval)

                rows = slot.local[slot.rows]
                np.add.at(residual, rows, f[slot.rows])
                np.add.at(row_scale, rows, scale[slot.rows])
                values[slot.start:slot.start + len(slot.flat)] = jac.ravel()[slot.flat]

        if ctx.gshunt > 0:
            nodes = slice(0, self.num_nodes)
            residual[nodes] += ctx.gshunt * x[nodes]
            row_scale[nodes] += np.abs(ctx.gshunt * x[nodes])
            values[self._diag_start:] = ctx.gshunt

        return AssembledSystem(residual=residual, jacobian=values, row_scale=row_scale)

    def residual(self, x: Float[np.ndarray, "n"], ctx: AnalysisContext,
                 history: Optional[Dict[str, DeviceHistory]] = None) -> Float[np.ndarray, "n"]:
        """F(x) alone, evaluated exactly at x (no limiting)"""
        return self.assemble(x, ctx, history).residual

    def kcl_residual(self, x: Float[np.ndarray, "n"],
                     ctx: Optional[AnalysisContext] = None) -> Float[np.ndarray, "num_nodes"]:
        """Net current leaving each node at x, without any Gmin shunt

        For a converged DC solution every entry is the KCL mismatch of that node.
        """
        if ctx is None:
            ctx = AnalysisContext.dc()
        ctx = ctx.with_homotopy(gshunt=0.0)
        return self.assemble(x, ctx).residual[:self.num_nodes]

    def dense_jacobian(self, system: AssembledSystem) -> Float[np.ndarray, "n n"]:
        """Dense J with duplicates summed, for diagnostics and tests"""
        dense = np.zeros((self.n, self.n))
        np.add.at(dense, (self.rows, self.cols), system.jacobian)
        return dense

    def limit(
        self,
        x: Float[np.ndarray, "n"],
        eval_points: Dict[str, np.ndarray],
        ctx: AnalysisContext,
    ):
        """Apply junction limiting to every nonlinear device

        Args:
            x: Newton-updated iterate
            eval_points: Evaluation points of the previous iteration
            ctx: Analysis context

        Returns:
            Tuple of (new evaluation points, number of devices that limited)
        """
        new_points = {}
        limited = 0
        for slot in self._slots:
            device = slot.device
            if device.is_linear:
                continue
            x_local = np.where(slot.local == GROUND, 0.0, x[np.maximum(slot.local, 0)])
            old = eval_points.get(device.name)
            if old is None:
                new_points[device.name] = x_local
                continue
            point, was_limited = device.limit(x_local, old, ctx)
            new_points[device.name] = point
            limited += int(was_limited)
        return new_points, limited

    def initial_eval_points(self, x: Float[np.ndarray, "n"]) -> Dict[str, np.ndarray]:
        """Evaluation points at x for every nonlinear device"""
        x = np.asarray(x, dtype=np.float64)
        return {d.name: self.gather(x, d) for d in self.nonlinear_devices}

    def charges(
        self,
        x: Float[np.ndarray, "n"],
        ctx: AnalysisContext,
    ) -> Dict[str, np.ndarray]:
        """Charge of every local row of every reactive device at x"""
        x = np.asarray(x, dtype=np.float64)
        result = {}
        for slot in self._slots:
            device = slot.device
            if not device.is_reactive:
                continue
            x_local = np.where(slot.local == GROUND, 0.0, x[np.maximum(slot.local, 0)])
            eqs = device.equations(x_local, ctx, None)
            if eqs.charges is None:
                continue
            result[device.name] = np.array([float(q) for q in eqs.charges])
        return result
