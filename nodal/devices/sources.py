"""Independent voltage and current sources for nodal

Sources are the stimulus of a circuit. Their value comes from a Waveform
(DC, pulse, sine, PWL, exponential) evaluated at the analysis time and
multiplied by ``ctx.source_scale``, which source stepping ramps from 0 to 1.
"""

from typing import List, Sequence, Tuple, Union

from nodal.devices.base import Device, DeviceEquations
from nodal.devices.waveforms import DC, Waveform
from nodal.errors import ConstructionError


def _as_waveform(device: Device, value: Union[float, Waveform]) -> Waveform:
    if isinstance(value, Waveform):
        return value
    try:
        return DC(value)
    except (TypeError, ValueError) as e:
        raise ConstructionError(f"{device.name}: invalid source value {value!r}") from e


class _IndependentSource(Device):
    terminals: Tuple[str, str] = ('p', 'n')

    def __init__(self, name: str, nodes: Sequence[str],
                 value: Union[float, Waveform] = 0.0):
        super().__init__(name, nodes)
        self.waveform = _as_waveform(self, value)

    def source_value(self, ctx) -> float:
        """Waveform value at ctx.time, scaled for source stepping"""
        return ctx.source_scale * self.waveform.value(ctx.time)

    def breakpoints(self, start: float, stop: float) -> List[float]:
        return self.waveform.breakpoints(start, stop)


class VoltageSource(_IndependentSource):
    """Independent voltage source

    Voltage sources are ideal (zero internal resistance). In MNA
    formulation they add a branch current as an unknown, flowing from the
    positive terminal through the source to the negative terminal, and the
    branch row enforces V(p) - V(n) = V(t).

    Parameters:
        value: DC value in Volts or a Waveform

    Terminals:
        p: Positive terminal
        n: Negative terminal
    """

    num_branches = 1

    def equations(self, v, ctx, history=None):
        vp, vn, i = v
        return DeviceEquations(currents=(i, -i, vp - vn - self.source_value(ctx)))


class CurrentSource(_IndependentSource):
    """Independent current source

    Current flows from p through the source to n, i.e. it is drawn out of
    node p and injected into node n.

    Parameters:
        value: DC value in Amperes or a Waveform

    Terminals:
        p: Positive terminal
        n: Negative terminal
    """

    def equations(self, v, ctx, history=None):
        i = self.source_value(ctx)
        return DeviceEquations(currents=(i, -i))
