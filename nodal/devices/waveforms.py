"""Time-dependent stimulus for independent sources

Each waveform evaluates its value at a time and reports its *breakpoints*:
the times where the waveform (or its slope) changes abruptly. The transient
integrator lands a time point exactly on every breakpoint and restarts its
integration history there.

SPICE syntax of each waveform is given in its docstring for reference.
"""

import math
from typing import List, Sequence, Tuple

from nodal.errors import ConstructionError


def _check(cond: bool, message: str) -> None:
    if not cond:
        raise ConstructionError(message)


class Waveform:
    """Base class: a scalar function of time with known corners"""

    def value(self, t: float) -> float:
        raise NotImplementedError

    def breakpoints(self, start: float, stop: float) -> List[float]:
        return []


class DC(Waveform):
    """Constant value"""

    def __init__(self, value: float):
        self.dc = float(value)
        _check(math.isfinite(self.dc), f"DC value must be finite, got {value}")

    def value(self, t: float) -> float:
        return self.dc

    def __repr__(self):
        return f"DC({self.dc})"


class Pulse(Waveform):
    """Trapezoidal pulse train

    SPICE PULSE syntax: PULSE(v1 v2 td tr tf pw per)

    Attributes:
        v1: Initial/low value
        v2: Pulsed/high value
        delay: Time delay before the first rising edge
        rise: Rise time (v1 to v2)
        fall: Fall time (v2 to v1)
        width: Pulse width at the high level
        period: Period for repetition (0 = single pulse)
    """

    # Zero rise/fall times are replaced by this to keep the waveform continuous
    MIN_EDGE = 1e-15

    def __init__(self, v1: float, v2: float, delay: float = 0.0,
                 rise: float = 1e-12, fall: float = 1e-12,
                 width: float = 1e-9, period: float = 0.0):
        values = (v1, v2, delay, rise, fall, width, period)
        _check(all(math.isfinite(x) for x in values), f"Pulse parameters must be finite: {values}")
        _check(delay >= 0, f"Pulse delay must be non-negative, got {delay}")
        _check(rise >= 0 and fall >= 0, f"Pulse rise/fall must be non-negative, got {rise}/{fall}")
        _check(width >= 0, f"Pulse width must be non-negative, got {width}")
        _check(period >= 0, f"Pulse period must be non-negative, got {period}")
        self.v1 = float(v1)
        self.v2 = float(v2)
        self.delay = float(delay)
        self.rise = max(float(rise), self.MIN_EDGE)
        self.fall = max(float(fall), self.MIN_EDGE)
        self.width = float(width)
        self.period = float(period)
        _check(
            self.period == 0.0 or self.period >= self.rise + self.width + self.fall,
            f"Pulse period {period} is shorter than rise + width + fall",
        )

    def value(self, t: float) -> float:
        # Before delay: return v1
        if t < self.delay:
            return self.v1

        # Calculate time within period
        t_rel = t - self.delay
        if self.period > 0:
            t_rel = t_rel % self.period

        # Piecewise linear waveform
        if t_rel < self.rise:
            return self.v1 + (self.v2 - self.v1) * (t_rel / self.rise)
        elif t_rel < self.rise + self.width:
            return self.v2
        elif t_rel < self.rise + self.width + self.fall:
            t_fall = t_rel - self.rise - self.width
            return self.v2 - (self.v2 - self.v1) * (t_fall / self.fall)
        else:
            return self.v1

    def breakpoints(self, start: float, stop: float) -> List[float]:
        corners = (0.0, self.rise, self.rise + self.width,
                   self.rise + self.width + self.fall)
        points = []
        base = self.delay
        while base <= stop:
            points.extend(base + c for c in corners if start < base + c <= stop)
            if self.period <= 0:
                break
            base += self.period
        return points

    def __repr__(self):
        return (f"Pulse({self.v1}, {self.v2}, delay={self.delay}, rise={self.rise}, "
                f"fall={self.fall}, width={self.width}, period={self.period})")


class Sine(Waveform):
    """Damped sinusoid

    SPICE SIN syntax: SIN(vo va freq td theta phase)

        v(t) = vo + va * exp(-theta*(t - td)) * sin(2*pi*freq*(t - td) + phase)

    for t >= td, and vo + va*sin(phase) before. Phase is in degrees.
    """

    def __init__(self, offset: float, amplitude: float, freq: float,
                 delay: float = 0.0, damping: float = 0.0, phase: float = 0.0):
        values = (offset, amplitude, freq, delay, damping, phase)
        _check(all(math.isfinite(x) for x in values), f"Sine parameters must be finite: {values}")
        _check(freq > 0, f"Sine frequency must be positive, got {freq}")
        _check(delay >= 0, f"Sine delay must be non-negative, got {delay}")
        self.offset = float(offset)
        self.amplitude = float(amplitude)
        self.freq = float(freq)
        self.delay = float(delay)
        self.damping = float(damping)
        self.phase = math.radians(phase)

    def value(self, t: float) -> float:
        if t < self.delay:
            return self.offset + self.amplitude * math.sin(self.phase)
        tr = t - self.delay
        return self.offset + self.amplitude * math.exp(-self.damping * tr) * math.sin(
            2.0 * math.pi * self.freq * tr + self.phase
        )

    def breakpoints(self, start: float, stop: float) -> List[float]:
        return [self.delay] if start < self.delay <= stop else []


class PWL(Waveform):
    """Piecewise-linear waveform

    SPICE PWL syntax: PWL(t1 v1 t2 v2 ...)

    Holds the first value before t1 and the last value after the final point.
    """

    def __init__(self, points: Sequence[Tuple[float, float]]):
        points = [(float(t), float(v)) for t, v in points]
        _check(len(points) >= 1, "PWL needs at least one point")
        _check(all(math.isfinite(t) and math.isfinite(v) for t, v in points),
               f"PWL points must be finite: {points}")
        for (t0, _), (t1, _) in zip(points, points[1:]):
            _check(t1 > t0, f"PWL times must be strictly increasing, got {t0} then {t1}")
        self.points = points

    def value(self, t: float) -> float:
        pts = self.points
        if t <= pts[0][0]:
            return pts[0][1]
        for (t0, v0), (t1, v1) in zip(pts, pts[1:]):
            if t <= t1:
                return v0 + (v1 - v0) * (t - t0) / (t1 - t0)
        return pts[-1][1]

    def breakpoints(self, start: float, stop: float) -> List[float]:
        return [t for t, _ in self.points if start < t <= stop]


class Exp(Waveform):
    """Exponential rise and fall

    SPICE EXP syntax: EXP(v1 v2 td1 tau1 td2 tau2)
    """

    def __init__(self, v1: float, v2: float, rise_delay: float = 0.0,
                 rise_tau: float = 1e-9, fall_delay: float = None,
                 fall_tau: float = 1e-9):
        if fall_delay is None:
            fall_delay = rise_delay + rise_tau
        values = (v1, v2, rise_delay, rise_tau, fall_delay, fall_tau)
        _check(all(math.isfinite(x) for x in values), f"Exp parameters must be finite: {values}")
        _check(rise_tau > 0 and fall_tau > 0, f"Exp time constants must be positive, got {rise_tau}/{fall_tau}")
        _check(0 <= rise_delay <= fall_delay,
               f"Exp delays must satisfy 0 <= rise_delay <= fall_delay, got {rise_delay}/{fall_delay}")
        self.v1 = float(v1)
        self.v2 = float(v2)
        self.td1 = float(rise_delay)
        self.tau1 = float(rise_tau)
        self.td2 = float(fall_delay)
        self.tau2 = float(fall_tau)

    def value(self, t: float) -> float:
        v = self.v1
        if t > self.td1:
            v += (self.v2 - self.v1) * (1.0 - math.exp(-(t - self.td1) / self.tau1))
        if t > self.td2:
            v += (self.v1 - self.v2) * (1.0 - math.exp(-(t - self.td2) / self.tau2))
        return v

    def breakpoints(self, start: float, stop: float) -> List[float]:
        return [t for t in (self.td1, self.td2) if start < t <= stop]
