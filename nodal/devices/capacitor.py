"""Capacitor device model for nodal

Two-terminal capacitor with optional initial condition support.
"""

from typing import Optional, Sequence, Tuple

import numpy as np

from nodal.devices.base import Device, DeviceEquations, check_finite, check_positive


class Capacitor(Device):
    """Two-terminal capacitor device

    For DC analysis: open circuit (no current)
    For transient: I = dQ/dt with Q = C * V, turned into a companion model
    by the integrator:

        I(n+1) = c0 * Q(n+1) + hist

    which for backward Euler is the familiar Norton equivalent
    G_eq = C/dt, I_eq = C * V(n) / dt.

    A voltage dependence C(V) = C * (1 + vc1*V + vc2*V^2) is supported;
    the charge is its integral Q = C * (V + vc1*V^2/2 + vc2*V^3/3).

    Parameters:
        c: Capacitance in Farads
        ic: Initial condition voltage (default: None, use DC OP)
        vc1: First-order voltage coefficient (default: 0)
        vc2: Second-order voltage coefficient (default: 0)

    Terminals:
        p: Positive terminal
        n: Negative terminal
    """

    terminals: Tuple[str, str] = ('p', 'n')
    is_reactive = True

    def __init__(self, name: str, nodes: Sequence[str], c: float,
                 ic: Optional[float] = None, vc1: float = 0.0, vc2: float = 0.0):
        super().__init__(name, nodes)
        self.c = check_positive(self, "c", c)
        self.ic = None if ic is None else check_finite(self, "ic", ic)
        self.vc1 = check_finite(self, "vc1", vc1)
        self.vc2 = check_finite(self, "vc2", vc2)
        self.is_linear = self.vc1 == 0.0 and self.vc2 == 0.0

    def charge(self, vd):
        if self.is_linear:
            return self.c * vd
        return self.c * vd * (1.0 + vd * (self.vc1 / 2.0 + vd * self.vc2 / 3.0))

    def equations(self, v, ctx, history=None):
        vp, vn = v
        q = self.charge(vp - vn)
        return DeviceEquations(currents=(0.0, 0.0), charges=(q, -q))

    def initial_condition(self, v: np.ndarray) -> np.ndarray:
        if self.ic is None:
            return v
        v = v.copy()
        v[0] = v[1] + self.ic
        return v
