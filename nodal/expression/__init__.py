"""Differentiable expression evaluation for device equations"""

from nodal.expression import ops
from nodal.expression.dual import (
    Dual,
    evaluate,
    grad_of,
    jacobian,
    split,
    value_of,
    variables,
)
from nodal.expression.ops import CompareMethod, DISCRETE

__all__ = [
    "Dual",
    "ops",
    "evaluate",
    "jacobian",
    "split",
    "variables",
    "value_of",
    "grad_of",
    "CompareMethod",
    "DISCRETE",
]
