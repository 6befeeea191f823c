"""Inductor device model for nodal

The inductor current is an MNA branch unknown. Its branch equation is

    V(p) - V(n) - d(L*I)/dt = 0

so in DC it degenerates to a short circuit (V(p) = V(n)) and in transient
the flux L*I is integrated like a capacitor's charge.
"""

from typing import Optional, Sequence, Tuple

import numpy as np

from nodal.devices.base import Device, DeviceEquations, check_finite, check_positive


class Inductor(Device):
    """Two-terminal inductor device

    Parameters:
        l: Inductance in Henries
        ic: Initial branch current (default: None, use DC OP)

    Terminals:
        p: Positive terminal (current flows p -> n through the inductor)
        n: Negative terminal
    """

    terminals: Tuple[str, str] = ('p', 'n')
    num_branches = 1
    is_reactive = True

    def __init__(self, name: str, nodes: Sequence[str], l: float,
                 ic: Optional[float] = None):
        super().__init__(name, nodes)
        self.l = check_positive(self, "l", l)
        self.ic = None if ic is None else check_finite(self, "ic", ic)

    def equations(self, v, ctx, history=None):
        vp, vn, i = v
        return DeviceEquations(
            currents=(i, -i, vp - vn),
            charges=(0.0, 0.0, -self.l * i),
        )

    def initial_condition(self, v: np.ndarray) -> np.ndarray:
        if self.ic is None:
            return v
        v = v.copy()
        v[2] = self.ic
        return v
