"""Linear controlled sources for nodal

Both sources are controlled by the voltage across (cp, cn).
"""

from typing import Sequence, Tuple

from nodal.devices.base import Device, DeviceEquations, check_finite


class VCVS(Device):
    """Voltage-controlled voltage source

    V(p) - V(n) = gain * (V(cp) - V(cn)), with an MNA branch current flowing
    from p through the source to n.

    Terminals:
        p, n: Output terminals
        cp, cn: Controlling terminals
    """

    terminals: Tuple[str, ...] = ('p', 'n', 'cp', 'cn')
    num_branches = 1
    conduction_groups = ((0, 1),)

    def __init__(self, name: str, nodes: Sequence[str], gain: float):
        super().__init__(name, nodes)
        self.gain = check_finite(self, "gain", gain)

    def equations(self, v, ctx, history=None):
        vp, vn, vcp, vcn, i = v
        return DeviceEquations(
            currents=(i, -i, 0.0, 0.0, vp - vn - self.gain * (vcp - vcn)),
        )


class VCCS(Device):
    """Voltage-controlled current source

    I = gm * (V(cp) - V(cn)) flows from p through the source to n.

    Terminals:
        p, n: Output terminals
        cp, cn: Controlling terminals
    """

    terminals: Tuple[str, ...] = ('p', 'n', 'cp', 'cn')
    conduction_groups = ((0, 1),)

    def __init__(self, name: str, nodes: Sequence[str], gm: float):
        super().__init__(name, nodes)
        self.gm = check_finite(self, "gm", gm)

    def equations(self, v, ctx, history=None):
        vp, vn, vcp, vcn = v
        i = self.gm * (vcp - vcn)
        return DeviceEquations(currents=(i, -i, 0.0, 0.0))
