"""Data types shared by the transient loop and its callers."""

from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Tuple

import numpy as np
from jaxtyping import Float

from nodal.analysis.dc import node_voltage
from nodal.analysis.integration import DeviceHistory
from nodal.analysis.options import SimulationOptions
from nodal.circuit import Circuit


@dataclass(frozen=True)
class StepConfig:
    """Time step bounds for a transient run

    Attributes:
        initial_step: First step size (span/1000 when None)
        min_step: Smallest step before a rejection becomes fatal
            (options.min_step when None)
        max_step: Largest step (options.max_step when None; an infinite
            value means span/50)
    """
    initial_step: Optional[float] = None
    min_step: Optional[float] = None
    max_step: Optional[float] = None

    def __post_init__(self):
        for name in ("initial_step", "min_step", "max_step"):
            value = getattr(self, name)
            if value is not None and not value > 0:
                raise ValueError(f"{name} must be positive, got {value}")

    def resolve(self, span: float, options: SimulationOptions) -> Tuple[float, float, float]:
        """Concrete (initial, min, max) step for a run of the given span"""
        min_step = self.min_step if self.min_step is not None else options.min_step
        max_step = self.max_step if self.max_step is not None else options.max_step
        if np.isinf(max_step):
            max_step = span / 50.0
        if min_step > max_step:
            raise ValueError(f"min_step {min_step} exceeds max_step {max_step}")
        initial = self.initial_step if self.initial_step is not None else span / 1000.0
        initial = min(max(initial, min_step), max_step)
        return initial, min_step, max_step


@dataclass(frozen=True)
class TimeStepState:
    """One accepted time point

    Attributes:
        time: Time of the point
        step: Step from the previous accepted point (0 for the initial state)
        solution: Unknown vector at this time
        iterations: Newton iterations spent on the accepted attempt
        method: Integration method of the step ("op"/"ic" for the initial state)
        lte_ratio: Worst LTE-to-tolerance ratio (nan when not estimated)
        history: Charge and dq/dt of every reactive device at this point,
            keyed by device name
    """
    time: float
    step: float
    solution: Float[np.ndarray, "n"]
    iterations: int = 0
    method: str = "op"
    lte_ratio: float = float("nan")
    history: Mapping[str, DeviceHistory] = field(default_factory=dict)


@dataclass
class TransientResult:
    """Accepted time points of a transient run and its statistics"""
    circuit: Circuit
    states: List[TimeStepState] = field(default_factory=list)
    rejected_steps: int = 0
    total_iterations: int = 0
    aborted: bool = False

    @property
    def accepted_steps(self) -> int:
        return max(len(self.states) - 1, 0)

    @property
    def times(self) -> Float[np.ndarray, "t"]:
        return np.array([s.time for s in self.states])

    @property
    def solutions(self) -> Float[np.ndarray, "t n"]:
        return np.array([s.solution for s in self.states])

    def voltage(self, node: str) -> Float[np.ndarray, "t"]:
        """Waveform of a node voltage"""
        return np.array([node_voltage(self.circuit, s.solution, node) for s in self.states])

    def current(self, device: str, k: int = 0) -> Float[np.ndarray, "t"]:
        """Waveform of the k-th branch current of a device"""
        index = self.circuit.branch_index(device, k)
        return np.array([s.solution[index] for s in self.states])
