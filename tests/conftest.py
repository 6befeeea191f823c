"""Pytest configuration for nodal tests

Handles platform-specific JAX configuration:
- macOS: Forces CPU backend since Metal doesn't support float64

Also provides small circuit builders shared by several test modules.
"""

import os
import sys

import pytest


def pytest_configure(config):
    """Configure the JAX platform before any test module imports JAX."""
    if sys.platform == 'darwin':
        os.environ['JAX_PLATFORMS'] = 'cpu'

    # Import nodal to auto-configure precision based on backend
    import nodal  # noqa: F401


@pytest.fixture
def divider():
    """10V source driving a 1k/2k resistive divider"""
    from nodal import Circuit

    ckt = Circuit()
    ckt.add_vsource("V1", "in", "0", 10.0)
    ckt.add_resistor("R1", "in", "out", 1e3)
    ckt.add_resistor("R2", "out", "0", 2e3)
    return ckt


@pytest.fixture
def diode_circuit():
    """5V source, 1k resistor and a diode to ground"""
    from nodal import Circuit

    ckt = Circuit()
    ckt.add_vsource("V1", "in", "0", 5.0)
    ckt.add_resistor("R1", "in", "a", 1e3)
    ckt.add_diode("D1", "a", "0", isat=1e-14)
    return ckt
