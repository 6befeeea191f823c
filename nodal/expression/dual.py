"""Forward-mode dual numbers for device equations

A Dual carries a value together with the vector of its partial derivatives
with respect to a fixed set of seeded inputs. Device models are written as
ordinary arithmetic over Duals and the stamp's Jacobian entries fall out of
the same evaluation pass - no hand-written derivatives, no finite differences.

Values are numpy float64 scalars so overflow and invalid domains follow IEEE
semantics: exp overflow gives inf, 0/0 gives nan, and nothing raises. Callers
that care about the warnings evaluate under ``np.errstate``.

Example:
    ```python
    from nodal.expression import evaluate, ops

    value, grad = evaluate(lambda v, i: v * ops.exp(i), [2.0, 0.0])
    # value == 2.0, grad == [1.0, 2.0]
    ```
"""

from typing import Callable, Sequence, Tuple

import numpy as np
from jaxtyping import Float


class Dual:
    """Scalar value with exact partial derivatives

    Attributes:
        value: The numeric value (numpy float64)
        grad: Partial derivatives w.r.t. the seeded inputs, shape (k,)
    """

    __slots__ = ("value", "grad")

    # Keep numpy scalars from swallowing Duals in mixed expressions:
    # np.float64(2.0) * Dual(...) must dispatch to Dual.__rmul__.
    __array_ufunc__ = None

    def __init__(self, value, grad: np.ndarray):
        self.value = np.float64(value)
        self.grad = grad

    @classmethod
    def constant(cls, value, size: int) -> "Dual":
        """Dual with zero derivatives"""
        return cls(value, np.zeros(size))

    # -- arithmetic ---------------------------------------------------------

    def __add__(self, other):
        if isinstance(other, Dual):
            return Dual(self.value + other.value, self.grad + other.grad)
        return Dual(self.value + other, self.grad)

    __radd__ = __add__

    def __sub__(self, other):
        if isinstance(other, Dual):
            return Dual(self.value - other.value, self.grad - other.grad)
        return Dual(self.value - other, self.grad)

    def __rsub__(self, other):
        return Dual(other - self.value, -self.grad)

    def __mul__(self, other):
        if isinstance(other, Dual):
            return Dual(
                self.value * other.value,
                self.grad * other.value + other.grad * self.value,
            )
        return Dual(self.value * other, self.grad * other)

    __rmul__ = __mul__

    def __truediv__(self, other):
        if isinstance(other, Dual):
            res = self.value / other.value
            return Dual(res, (self.grad - res * other.grad) / other.value)
        other = np.float64(other)
        return Dual(self.value / other, self.grad / other)

    def __rtruediv__(self, other):
        # c / x  ->  d = -c / x^2
        res = np.float64(other) / self.value
        return Dual(res, -res / self.value * self.grad)

    def __pow__(self, other):
        if isinstance(other, Dual):
            # c = a^b: dc/da = b * c / a, dc/db = c * ln(a)
            res = self.value ** other.value
            return Dual(
                res,
                other.value * res / self.value * self.grad
                + res * np.log(self.value) * other.grad,
            )
        n = np.float64(other)
        return Dual(self.value ** n, n * self.value ** (n - 1.0) * self.grad)

    def __rpow__(self, other):
        base = np.float64(other)
        res = base ** self.value
        return Dual(res, res * np.log(base) * self.grad)

    def __neg__(self):
        return Dual(-self.value, -self.grad)

    def __pos__(self):
        return self

    def __abs__(self):
        # Derivative at zero follows the non-negative branch
        if self.value >= 0:
            return Dual(self.value, self.grad)
        return Dual(-self.value, -self.grad)

    # -- comparisons act on values, for control flow inside device models --

    def __lt__(self, other):
        return self.value < _value(other)

    def __le__(self, other):
        return self.value <= _value(other)

    def __gt__(self, other):
        return self.value > _value(other)

    def __ge__(self, other):
        return self.value >= _value(other)

    def __eq__(self, other):
        return self.value == _value(other)

    def __ne__(self, other):
        return self.value != _value(other)

    __hash__ = None

    def __float__(self):
        return float(self.value)

    def __repr__(self):
        return f"Dual({float(self.value)!r}, {self.grad.tolist()!r})"


def _value(x):
    return x.value if isinstance(x, Dual) else x


def value_of(x) -> float:
    """Numeric value of a Dual or plain number"""
    return float(_value(x))


def grad_of(x, size: int) -> np.ndarray:
    """Gradient of a Dual, or zeros for a constant"""
    if isinstance(x, Dual):
        return x.grad
    return np.zeros(size)


def variables(values: Sequence[float]) -> Tuple[Dual, ...]:
    """Seed independent Duals, one per input, with identity gradients"""
    k = len(values)
    seeds = np.eye(k)
    return tuple(Dual(v, seeds[i]) for i, v in enumerate(values))


def evaluate(
    fn: Callable[..., "Dual | float"],
    values: Sequence[float],
) -> Tuple[float, Float[np.ndarray, "k"]]:
    """Evaluate a scalar function and its gradient in one pass

    Args:
        fn: Function of k scalar arguments built from Dual arithmetic
            and ``nodal.expression.ops`` primitives
        values: The k input values

    Returns:
        Tuple of (f(x), [df/dx_1, ..., df/dx_k])
    """
    out = fn(*variables(values))
    return value_of(out), grad_of(out, len(values)).copy()


def jacobian(
    fn: Callable[..., Sequence["Dual | float"]],
    values: Sequence[float],
) -> Tuple[Float[np.ndarray, "m"], Float[np.ndarray, "m k"]]:
    """Evaluate a vector function and its Jacobian in one pass

    Args:
        fn: Function of k scalar arguments returning m outputs
        values: The k input values

    Returns:
        Tuple of (f(x) with shape (m,), J with shape (m, k))
    """
    return split(fn(*variables(values)), len(values))


def split(
    outputs: Sequence["Dual | float"],
    size: int,
) -> Tuple[Float[np.ndarray, "m"], Float[np.ndarray, "m k"]]:
    """Separate a sequence of Duals/constants into values and a Jacobian"""
    vals = np.array([value_of(o) for o in outputs], dtype=np.float64)
    jac = np.zeros((len(outputs), size))
    for i, o in enumerate(outputs):
        jac[i] = grad_of(o, size)
    return vals, jac
