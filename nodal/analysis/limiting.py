"""SPICE-compatible voltage limiting functions for NR convergence.

These functions implement the classic SPICE limiting algorithms (pnjlim, fetlim)
that compress large voltage changes during Newton-Raphson iteration to improve
convergence. Without limiting, large voltage steps can cause device models to
evaluate at unrealistic operating points, leading to poor convergence.

The key insight is that PN junction currents are exponential in voltage:
    I = Is * (exp(V/Vt) - 1)

A 1V change in junction voltage can cause current to change by a factor of
e^(1/0.026) ≈ 2e16. By using logarithmic compression, we limit the step size
while still making progress toward the solution.

Limiting only moves the point at which a device is *evaluated*. The Newton
driver linearizes the device around that point, so a converged solution is
never altered by limiting: at convergence the limited and proposed voltages
coincide.

Each function returns ``(limited_value, was_limited)``; an iteration in which
any device limited its voltage cannot count as converged.

Reference: VACASK limitfunctions.cpp DEVpnjlim (improved Buermen algorithm)
"""

import math
from typing import Tuple

BOLTZMANN = 1.380649e-23
CHARGE = 1.602176634e-19


def thermal_voltage(temperature: float) -> float:
    """kT/q in volts"""
    return BOLTZMANN * temperature / CHARGE


def junction_vcrit(isat: float, vt: float) -> float:
    """Critical voltage of a junction: the point of maximum I-V curvature

    Args:
        isat: Saturation current (A)
        vt: Effective thermal voltage n*kT/q (V)
    """
    return vt * math.log(vt / (math.sqrt(2.0) * isat))


def pnjlim(vnew: float, vold: float, vt: float = 0.026,
           vcrit: float = 0.6) -> Tuple[float, bool]:
    """PN junction voltage limiting (logarithmic damping).

    Matches VACASK's DEVpnjlim, which is the Buermen-improved version of
    SPICE3's algorithm. Three cases:

    1. vnew > vcrit AND |delta| > 2*vt (forward, large change):
       - vold > 0, delta > 0: vold + vt * log(1 + delta/vt)
       - vold > 0, delta < 0: vold - vt * log(1 - delta/vt)
       - vold <= 0: vt * log(vnew/vt)
    2. vnew < 0 (negative voltage clamping):
       - vold > 0: clamp to max(vnew, -vold - 1)
       - vold <= 0: clamp to max(vnew, 2*vold - 1)
    3. Otherwise: no limiting

    Args:
        vnew: Proposed new voltage (from NR step)
        vold: Voltage at which the device was last evaluated
        vt: Thermal voltage (n*kT/q, ≈ 0.026V at 300K)
        vcrit: Critical voltage above which limiting is applied

    Returns:
        Tuple of (limited voltage, whether limiting changed vnew)
    """
    if not (math.isfinite(vnew) and math.isfinite(vold)):
        return vnew, False

    delta_v = vnew - vold
    if vnew > vcrit and abs(delta_v) > 2.0 * vt:
        if vold > 0:
            arg = delta_v / vt
            if arg >= 0:
                limited = vold + vt * math.log(1.0 + arg)
            else:
                limited = vold - vt * math.log(1.0 - arg)
        else:
            limited = vt * math.log(vnew / vt) if vnew > vt else vcrit
        return limited, True

    if vnew < 0:
        neg_clamp = -vold - 1.0 if vold > 0 else 2.0 * vold - 1.0
        if vnew < neg_clamp:
            return neg_clamp, True

    return vnew, False


def fetlim(vnew: float, vold: float, vto: float = 0.5) -> Tuple[float, bool]:
    """FET gate-source voltage limiting (region-based).

    Limits gate-source voltage changes based on operating region.
    In the on-region (Vgs > Vto), larger steps are allowed.
    In the off-region, steps are limited to 0.5V.

    Args:
        vnew: Proposed new Vgs voltage
        vold: Vgs at which the device was last evaluated
        vto: Threshold voltage

    Returns:
        Tuple of (limited voltage, whether limiting changed vnew)
    """
    if not (math.isfinite(vnew) and math.isfinite(vold)):
        return vnew, False

    # Step limit = 2 * |vold - vto| + 2 when on, 0.5 when off
    if vold >= vto:
        max_step = 2.0 * abs(vold - vto) + 2.0
    else:
        max_step = 0.5

    delta = vnew - vold
    if delta > max_step:
        return vold + max_step, True
    if delta < -max_step:
        return vold - max_step, True
    return vnew, False


def limvds(vnew: float, vold: float) -> Tuple[float, bool]:
    """Drain-source voltage limiting

    While Vds stays above 3.5V it may move by at most a factor of three per
    iteration (plus 2V); below that, growth beyond 4V is cut back to 4V.

    Args:
        vnew: Proposed new Vds voltage
        vold: Vds at which the device was last evaluated

    Returns:
        Tuple of (limited voltage, whether limiting changed vnew)
    """
    if not (math.isfinite(vnew) and math.isfinite(vold)):
        return vnew, False

    if vold >= 3.5:
        if vnew > vold:
            limited = min(vnew, 3.0 * vold + 2.0)
        else:
            limited = max(vnew, 2.0) if vnew < 3.5 else vnew
    else:
        limited = min(vnew, 4.0) if vnew > vold else max(vnew, -0.5)
    return limited, limited != vnew
