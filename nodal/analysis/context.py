"""Analysis context for nodal

Provides context information to device models during evaluation, allowing
them to modify behavior based on the type of analysis being performed.

For example, independent sources read the simulation time and the source
stepping factor from here, and energy-storage devices only contribute their
charges when a transient step supplies integration coefficients.
"""

from enum import Enum, auto
from dataclasses import dataclass, replace
from typing import Optional

from nodal.analysis.integration import IntegrationCoeffs


class AnalysisType(Enum):
    """Type of circuit analysis being performed"""
    DC = auto()           # DC operating point
    TRANSIENT = auto()    # Time-domain transient analysis


@dataclass(frozen=True)
class AnalysisContext:
    """Context information passed to devices during evaluation

    Attributes:
        analysis_type: The type of analysis being performed
        time: Current simulation time (transient, or the time at which a
            DC operating point is computed; sources use it)
        time_step: Current time step dt (transient only)
        coeffs: Integration coefficients (transient only)
        temperature: Circuit temperature in Kelvin
        source_scale: Factor applied to every independent source (source stepping)
        gshunt: Conductance from every node to ground (Gmin stepping)
        gmin: Minimum conductance placed across nonlinear junctions
    """
    analysis_type: AnalysisType
    time: float = 0.0
    time_step: Optional[float] = None
    coeffs: Optional[IntegrationCoeffs] = None
    temperature: float = 300.15
    source_scale: float = 1.0
    gshunt: float = 0.0
    gmin: float = 1e-12

    @property
    def is_dc(self) -> bool:
        """True if this is a DC analysis (skip dynamic terms)"""
        return self.analysis_type == AnalysisType.DC

    @property
    def is_transient(self) -> bool:
        """True if this is transient analysis (include charge terms)"""
        return self.analysis_type == AnalysisType.TRANSIENT

    def with_homotopy(self, source_scale: Optional[float] = None,
                      gshunt: Optional[float] = None) -> "AnalysisContext":
        """Copy with a different source factor and/or shunt conductance"""
        changes = {}
        if source_scale is not None:
            changes["source_scale"] = source_scale
        if gshunt is not None:
            changes["gshunt"] = gshunt
        return replace(self, **changes)

    @classmethod
    def dc(cls, time: float = 0.0, temperature: float = 300.15,
           gmin: float = 1e-12) -> "AnalysisContext":
        """Create a DC analysis context

        Args:
            time: Time at which sources are evaluated (0 for a plain OP)
            temperature: Circuit temperature in Kelvin
            gmin: Junction minimum conductance

        Returns:
            AnalysisContext configured for DC analysis
        """
        return cls(analysis_type=AnalysisType.DC, time=time,
                   temperature=temperature, gmin=gmin)

    @classmethod
    def transient(
        cls,
        time: float,
        time_step: float,
        coeffs: IntegrationCoeffs,
        temperature: float = 300.15,
        gmin: float = 1e-12,
    ) -> "AnalysisContext":
        """Create a transient analysis context

        Args:
            time: Time of the point being solved
            time_step: Step from the previous accepted point
            coeffs: Integration coefficients for this step
            temperature: Circuit temperature in Kelvin
            gmin: Junction minimum conductance

        Returns:
            AnalysisContext configured for transient analysis
        """
        return cls(
            analysis_type=AnalysisType.TRANSIENT,
            time=time,
            time_step=time_step,
            coeffs=coeffs,
            temperature=temperature,
            gmin=gmin,
        )
