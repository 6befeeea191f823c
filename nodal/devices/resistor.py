"""Resistor device model for nodal

Simple two-terminal linear resistor with optional temperature dependence.
"""

from typing import Sequence, Tuple

from nodal.devices.base import Device, DeviceEquations, check_finite, check_positive
from nodal.errors import ConstructionError


class Resistor(Device):
    """Two-terminal resistor device

    I = V/R where V = V(+) - V(-)
    G = 1/R (conductance)

    Parameters:
        r: Resistance in Ohms
        tc1: First-order temperature coefficient (default: 0)
        tc2: Second-order temperature coefficient (default: 0)
        tnom: Nominal temperature in Kelvin (default: 300.15)

    Terminals:
        p: Positive terminal
        n: Negative terminal
    """

    terminals: Tuple[str, str] = ('p', 'n')

    def __init__(self, name: str, nodes: Sequence[str], r: float,
                 tc1: float = 0.0, tc2: float = 0.0, tnom: float = 300.15):
        super().__init__(name, nodes)
        self.r = check_positive(self, "r", r)
        self.tc1 = check_finite(self, "tc1", tc1)
        self.tc2 = check_finite(self, "tc2", tc2)
        self.tnom = check_positive(self, "tnom", tnom)

    def resistance(self, temperature: float) -> float:
        """R(T) = R * (1 + tc1*dT + tc2*dT^2)

        Raises:
            ConstructionError: If the coefficients drive R(T) to zero or below
        """
        dt = temperature - self.tnom
        r = self.r * (1.0 + self.tc1 * dt + self.tc2 * dt * dt)
        if not r > 0:
            raise ConstructionError(f"{self.name}: resistance {r:g} at T={temperature:g} K is not positive")
        return r

    def equations(self, v, ctx, history=None):
        vp, vn = v
        i = (vp - vn) / self.resistance(ctx.temperature)
        return DeviceEquations(currents=(i, -i))
