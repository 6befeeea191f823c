"""Level-1 (Shichman-Hodges) MOSFET model

Square-law MOSFET with the essential physics for hand-analysis-grade
circuit simulation:
- Threshold voltage with body effect
- Linear and saturation regions
- Channel length modulation
- NMOS and PMOS polarity
- Source/drain interchange when Vds < 0 (the device is symmetric)
- Constant gate overlap capacitances

All derivatives (gm, gds, gmb) fall out of the dual-number evaluation.
"""

from typing import NamedTuple, Sequence, Tuple

import numpy as np

from nodal.analysis.limiting import fetlim, limvds
from nodal.devices.base import Device, DeviceEquations, check_non_negative, check_positive
from nodal.errors import ConstructionError
from nodal.expression import ops


# =============================================================================
# MOSFET Parameters
# =============================================================================


class MosfetParams(NamedTuple):
    """MOSFET model parameters"""
    # Geometry
    w: float = 1e-6  # Width (m)
    l: float = 1e-6  # Length (m)

    # Threshold voltage (negative for enhancement PMOS, as in SPICE)
    vto: float = 0.7  # Zero-bias threshold voltage (V)
    gamma: float = 0.0  # Body effect coefficient (V^0.5)
    phi: float = 0.6  # Surface potential (V)

    # Transconductance
    kp: float = 2e-5  # Process transconductance u0*Cox (A/V^2)

    # Channel length modulation
    lambda_: float = 0.0  # (1/V)

    # Overlap capacitances (F)
    cgs: float = 0.0
    cgd: float = 0.0
    cgb: float = 0.0

    # Type
    pmos: bool = False  # True for PMOS, False for NMOS

    @property
    def beta(self):
        """Transconductance parameter kp * W / L"""
        return self.kp * self.w / self.l

    @property
    def polarity(self) -> float:
        return -1.0 if self.pmos else 1.0


def mosfet_ids(vgs, vds, vbs, params: MosfetParams):
    """Drain current of an NMOS-oriented device with vds >= 0

    Args:
        vgs: Gate-source voltage (V), polarity-corrected
        vds: Drain-source voltage (V), polarity-corrected, non-negative
        vbs: Bulk-source voltage (V), polarity-corrected
        params: MOSFET parameters

    Returns:
        Drain current Ids (A), flowing drain to source
    """
    vt0 = params.polarity * params.vto
    sqrt_phi = np.sqrt(params.phi)

    # Threshold voltage with body effect; forward body bias uses the
    # SPICE linear continuation to keep the square root real
    if vbs <= 0:
        sarg = ops.sqrt(params.phi - vbs)
    else:
        sarg = ops.maximum(sqrt_phi - vbs / (2.0 * sqrt_phi), 0.0)
    vth = vt0 + params.gamma * (sarg - sqrt_phi)

    # Gate overdrive
    vov = vgs - vth
    clm = 1.0 + params.lambda_ * vds

    if vov <= 0:
        # Cutoff
        return 0.0 * vov
    if vds < vov:
        # Linear (triode)
        return params.beta * (vov - 0.5 * vds) * vds * clm
    # Saturation
    return 0.5 * params.beta * vov * vov * clm


class Mosfet(Device):
    """Level-1 MOSFET device

    Usage:
        ```python
        m1 = Mosfet("m1", ("out", "in", "0", "0"), vto=0.7, kp=1e-4, w=10e-6, l=1e-6)
        ```

    A gmin conductance is placed between drain and source so that a device
    in cutoff does not leave its drain floating.

    Terminals:
        d: Drain
        g: Gate
        s: Source
        b: Bulk
    """

    terminals: Tuple[str, ...] = ('d', 'g', 's', 'b')
    is_linear = False
    # Drain-source channel only; gate and bulk carry no DC current
    conduction_groups = ((0, 2),)

    def __init__(self, name: str, nodes: Sequence[str], **kwargs):
        super().__init__(name, nodes)
        try:
            self.params = MosfetParams(**kwargs)
        except TypeError as e:
            raise ConstructionError(f"{name}: {e}") from e
        p = self.params
        check_positive(self, "w", p.w)
        check_positive(self, "l", p.l)
        check_positive(self, "kp", p.kp)
        check_positive(self, "phi", p.phi)
        check_non_negative(self, "gamma", p.gamma)
        check_non_negative(self, "lambda_", p.lambda_)
        for cap in ("cgs", "cgd", "cgb"):
            check_non_negative(self, cap, getattr(p, cap))
        self.is_reactive = p.cgs > 0 or p.cgd > 0 or p.cgb > 0

    def equations(self, v, ctx, history=None):
        vd, vg, vs, vb = v
        p = self.params
        pol = p.polarity

        vds = pol * (vd - vs)
        if vds >= 0:
            ids = mosfet_ids(pol * (vg - vs), vds, pol * (vb - vs), p)
        else:
            # Source and drain swap roles; current reverses
            ids = -mosfet_ids(pol * (vg - vd), -vds, pol * (vb - vd), p)

        i = pol * ids + ctx.gmin * (vd - vs)
        currents = (i, 0.0, -i, 0.0)

        charges = None
        if self.is_reactive:
            qgs = p.cgs * (vg - vs)
            qgd = p.cgd * (vg - vd)
            qgb = p.cgb * (vg - vb)
            charges = (-qgd, qgs + qgd + qgb, -qgs, -qgb)
        return DeviceEquations(currents=currents, charges=charges)

    def limit(self, v_new, v_old, ctx):
        p = self.params
        pol = p.polarity
        vt0 = pol * p.vto
        vd_n, vg_n, vs_n, _ = v_new
        vd_o, vg_o, vs_o, _ = v_old

        vds_new, vds_old = pol * (vd_n - vs_n), pol * (vd_o - vs_o)
        if vds_old >= 0:
            vgs, lim_g = fetlim(pol * (vg_n - vs_n), pol * (vg_o - vs_o), vt0)
            vds, lim_d = limvds(vds_new, vds_old)
        else:
            vgd, lim_g = fetlim(pol * (vg_n - vd_n), pol * (vg_o - vd_o), vt0)
            vsd, lim_d = limvds(-vds_new, -vds_old)
            vds = -vsd
            vgs = vgd + vds
        if not (lim_g or lim_d):
            return v_new, False

        v_eval = np.array(v_new, dtype=np.float64)
        v_eval[1] = vs_n + pol * vgs
        v_eval[0] = vs_n + pol * vds
        return v_eval, True
