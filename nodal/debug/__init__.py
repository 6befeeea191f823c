"""Debug utilities for nodal."""

from nodal.debug.jacobian import (
    JacobianComparison,
    check_device_jacobian,
    compare_jacobians,
    dual_jacobian,
    jax_jacobian,
    print_jacobian_structure,
)

__all__ = [
    "JacobianComparison",
    "check_device_jacobian",
    "compare_jacobians",
    "dual_jacobian",
    "jax_jacobian",
    "print_jacobian_structure",
]
