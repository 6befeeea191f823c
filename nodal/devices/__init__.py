"""Device models for nodal"""

from nodal.devices.base import Device, DeviceEquations
from nodal.devices.capacitor import Capacitor
from nodal.devices.controlled import VCCS, VCVS
from nodal.devices.diode import Diode, diode_current
from nodal.devices.inductor import Inductor
from nodal.devices.mosfet import Mosfet, MosfetParams, mosfet_ids
from nodal.devices.resistor import Resistor
from nodal.devices.sources import CurrentSource, VoltageSource
from nodal.devices.waveforms import DC, PWL, Exp, Pulse, Sine, Waveform

__all__ = [
    "Device", "DeviceEquations",
    "Resistor", "Capacitor", "Inductor",
    "VoltageSource", "CurrentSource",
    "Waveform", "DC", "Pulse", "Sine", "PWL", "Exp",
    "Diode", "diode_current",
    "Mosfet", "MosfetParams", "mosfet_ids",
    "VCVS", "VCCS",
]
