"""Junction diode model for nodal

Shockley diode with emission coefficient, optional series resistance,
depletion and diffusion charge, and reverse breakdown:

    Id = Is * (exp(Vd / (n*Vt)) - 1) - Is * exp(-(BV + Vd) / (n*Vt)) + gmin * Vd

The breakdown term is only present when ``bv`` is given. ``gmin`` comes from
the analysis context and keeps the junction conductance bounded away from
zero in reverse bias.

With ``rs > 0`` the junction sits behind an internal node:

    anode --[rs]-- (internal) --|>|-- cathode
"""

import math
from typing import Optional, Sequence, Tuple

from nodal.analysis.limiting import junction_vcrit, pnjlim, thermal_voltage
from nodal.devices.base import (
    Device,
    DeviceEquations,
    check_non_negative,
    check_positive,
    check_range,
)
from nodal.expression import ops


class Diode(Device):
    """PN junction diode

    Parameters:
        isat: Saturation current in Amperes (default: 1e-14)
        n: Emission coefficient (default: 1)
        rs: Series resistance in Ohms (default: 0, none)
        cj0: Zero-bias junction capacitance in Farads (default: 0)
        vj: Junction potential in Volts (default: 1)
        m: Grading coefficient (default: 0.5)
        fc: Forward-bias depletion capacitance coefficient (default: 0.5)
        tt: Transit time in seconds (default: 0)
        bv: Reverse breakdown voltage, positive (default: None, no breakdown)

    Terminals:
        a: Anode
        k: Cathode
    """

    terminals: Tuple[str, str] = ('a', 'k')
    is_linear = False

    def __init__(self, name: str, nodes: Sequence[str], isat: float = 1e-14,
                 n: float = 1.0, rs: float = 0.0, cj0: float = 0.0, vj: float = 1.0,
                 m: float = 0.5, fc: float = 0.5, tt: float = 0.0,
                 bv: Optional[float] = None):
        super().__init__(name, nodes)
        self.isat = check_positive(self, "isat", isat)
        self.n = check_positive(self, "n", n)
        self.rs = check_non_negative(self, "rs", rs)
        self.cj0 = check_non_negative(self, "cj0", cj0)
        self.vj = check_positive(self, "vj", vj)
        self.m = check_range(self, "m", m, 0.0, 1.0)
        self.fc = check_range(self, "fc", fc, 0.0, 1.0)
        self.tt = check_non_negative(self, "tt", tt)
        self.bv = None if bv is None else check_positive(self, "bv", bv)
        self.is_reactive = self.cj0 > 0 or self.tt > 0

    @property
    def internal_nodes(self) -> Tuple[str, ...]:
        return ("int",) if self.rs > 0 else ()

    @property
    def _junction(self) -> int:
        """Local index of the junction's anode side"""
        return 2 if self.rs > 0 else 0

    def junction_current(self, vd, nvt: float, gmin: float):
        i = self.isat * (ops.exp(vd / nvt) - 1.0)
        if self.bv is not None:
            i = i - self.isat * ops.exp(-(self.bv + vd) / nvt)
        return i + gmin * vd

    def depletion_charge(self, vd):
        """Junction charge; linearly extended capacitance above fc*vj"""
        cj0, vj, m, fc = self.cj0, self.vj, self.m, self.fc
        if vd < fc * vj:
            return cj0 * vj / (1.0 - m) * (1.0 - ops.powf(1.0 - vd / vj, 1.0 - m))
        f1 = vj / (1.0 - m) * (1.0 - (1.0 - fc) ** (1.0 - m))
        f2 = (1.0 - fc) ** (1.0 + m)
        f3 = 1.0 - fc * (1.0 + m)
        vfc = fc * vj
        return cj0 * (f1 + (f3 * (vd - vfc) + m / (2.0 * vj) * (vd * vd - vfc * vfc)) / f2)

    def equations(self, v, ctx, history=None):
        nvt = self.n * thermal_voltage(ctx.temperature)
        va, vk = v[0], v[1]
        vj_node = v[self._junction]
        vd = vj_node - vk

        i_d = self.junction_current(vd, nvt, ctx.gmin)

        charges = None
        if self.is_reactive:
            q = self.tt * i_d
            if self.cj0 > 0:
                q = q + self.depletion_charge(vd)

        if self.rs > 0:
            i_rs = (va - vj_node) / self.rs
            currents = (i_rs, -i_d, i_d - i_rs)
            if self.is_reactive:
                charges = (0.0, -q, q)
        else:
            currents = (i_d, -i_d)
            if self.is_reactive:
                charges = (q, -q)
        return DeviceEquations(currents=currents, charges=charges)

    def limit(self, v_new, v_old, ctx):
        nvt = self.n * thermal_voltage(ctx.temperature)
        j = self._junction
        vd_new = float(v_new[j] - v_new[1])
        vd_old = float(v_old[j] - v_old[1])
        vd_lim, limited = pnjlim(vd_new, vd_old, nvt, junction_vcrit(self.isat, nvt))
        if not limited:
            return v_new, False
        v_eval = v_new.copy()
        v_eval[j] = v_new[1] + vd_lim
        return v_eval, True


def diode_current(vd: float, isat: float = 1e-14, n: float = 1.0,
                  temperature: float = 300.15) -> float:
    """Ideal Shockley current, for reference values in analysis and tests"""
    return isat * (math.exp(vd / (n * thermal_voltage(temperature))) - 1.0)
