"""Differentiable primitives for device equations

Every primitive accepts a Dual, a plain number, a numpy array or a JAX array:

- Dual: value and exact derivative via the chain rule
- JAX array (including tracers): dispatches to jax.numpy, so the same device
  equation can be traced by jax.jacfwd when cross-checking derivatives
- anything else: numpy

Breakpoint policy:
    At a point where a piecewise function is not differentiable, the
    derivative is that of the active branch. ``where`` and ``clip`` take the
    selected branch, ``abs`` and ``sign``-like switches use the non-negative
    side at zero. ``minimum``/``maximum`` split the gradient evenly between
    both arguments at an exact tie. ``floor``, ``ceil``, ``round`` and
    ``sign`` are piecewise constant and contribute zero derivative.

Comparisons come in two flavours. Python's ``<``/``>`` on Duals compare
values and are meant for control flow. The ``lt``/``gt``/... functions below
return *logic values* in [0, 1] built with a CompareMethod; with the default
DISCRETE method they are exactly 0 or 1, while LINEAR and SIGMOID produce a
smooth transition that carries a derivative. ``cond(c, a, b)`` blends two
branches with a logic value: ``c*a + (1-c)*b``.
"""

from dataclasses import dataclass

import jax
import jax.numpy as jnp
import jax.scipy.special as jsp
import numpy as np
from scipy import special

from nodal.expression.dual import Dual


def _is_jax(x) -> bool:
    return isinstance(x, jax.Array)


def _unary(x, f, df, jf):
    """Apply f with derivative df(x, f(x)); jf is the jax.numpy version"""
    if isinstance(x, Dual):
        res = f(x.value)
        return Dual(res, df(x.value, res) * x.grad)
    if _is_jax(x):
        return jf(x)
    return f(x)


# =============================================================================
# Transcendental and power functions
# =============================================================================


def exp(x):
    """e^x (overflows to inf)"""
    return _unary(x, np.exp, lambda v, r: r, jnp.exp)


def log(x):
    """Natural logarithm (nan for negative, -inf at zero)"""
    return _unary(x, np.log, lambda v, r: 1.0 / v, jnp.log)


def sqrt(x):
    return _unary(x, np.sqrt, lambda v, r: 0.5 / r, jnp.sqrt)


def sqr(x):
    return _unary(x, np.square, lambda v, r: 2.0 * v, jnp.square)


def cubic(x):
    return _unary(x, lambda v: v * v * v, lambda v, r: 3.0 * v * v, lambda v: v * v * v)


def sin(x):
    return _unary(x, np.sin, lambda v, r: np.cos(v), jnp.sin)


def cos(x):
    return _unary(x, np.cos, lambda v, r: -np.sin(v), jnp.cos)


def tan(x):
    return _unary(x, np.tan, lambda v, r: 1.0 + r * r, jnp.tan)


def tanh(x):
    return _unary(x, np.tanh, lambda v, r: 1.0 - r * r, jnp.tanh)


def erf(x):
    return _unary(
        x,
        special.erf,
        lambda v, r: 2.0 / np.sqrt(np.pi) * np.exp(-v * v),
        jsp.erf,
    )


def powf(x, n: float):
    """x^n for a constant exponent n"""
    return _unary(
        x,
        lambda v: np.power(v, n),
        lambda v, r: n * np.power(v, n - 1.0),
        lambda v: jnp.power(v, n),
    )


def pow(x, y):
    """x^y where both base and exponent may carry derivatives"""
    if isinstance(x, Dual) or isinstance(y, Dual):
        if not isinstance(x, Dual):
            return np.float64(x) ** y
        return x ** y
    if _is_jax(x) or _is_jax(y):
        return jnp.power(x, y)
    return np.power(x, y)


# =============================================================================
# Piecewise functions
# =============================================================================


def abs(x):
    if isinstance(x, Dual):
        return x.__abs__()
    if _is_jax(x):
        return jnp.abs(x)
    return np.abs(x)


def _zero_slope(f, jf):
    def op(x):
        return _unary(x, f, lambda v, r: 0.0, jf)
    return op


floor = _zero_slope(np.floor, jnp.floor)
ceil = _zero_slope(np.ceil, jnp.ceil)
round = _zero_slope(np.round, jnp.round)
sign = _zero_slope(np.sign, jnp.sign)


def _as_dual(x, like: Dual) -> Dual:
    if isinstance(x, Dual):
        return x
    return Dual(x, np.zeros_like(like.grad))


def where(cond, on_true, on_false):
    """Select a branch; the derivative is the selected branch's derivative"""
    if _is_jax(cond) or _is_jax(on_true) or _is_jax(on_false):
        return jnp.where(cond, on_true, on_false)
    if isinstance(cond, (bool, np.bool_)):
        return on_true if cond else on_false
    if isinstance(on_true, Dual) or isinstance(on_false, Dual):
        return on_true if bool(cond) else on_false
    return np.where(cond, on_true, on_false)


def minimum(a, b):
    """Elementwise minimum; gradient split evenly at an exact tie"""
    if isinstance(a, Dual) or isinstance(b, Dual):
        ref = a if isinstance(a, Dual) else b
        a, b = _as_dual(a, ref), _as_dual(b, ref)
        if a.value < b.value:
            return a
        if b.value < a.value:
            return b
        return Dual(a.value, 0.5 * (a.grad + b.grad))
    if _is_jax(a) or _is_jax(b):
        return jnp.minimum(a, b)
    return np.minimum(a, b)


def maximum(a, b):
    """Elementwise maximum; gradient split evenly at an exact tie"""
    if isinstance(a, Dual) or isinstance(b, Dual):
        ref = a if isinstance(a, Dual) else b
        a, b = _as_dual(a, ref), _as_dual(b, ref)
        if a.value > b.value:
            return a
        if b.value > a.value:
            return b
        return Dual(a.value, 0.5 * (a.grad + b.grad))
    if _is_jax(a) or _is_jax(b):
        return jnp.maximum(a, b)
    return np.maximum(a, b)


def clip(x, lo, hi):
    """Clamp x into [lo, hi]; at a bound the inner branch stays active"""
    return where(x < lo, lo, where(x > hi, hi, x))


def smooth_step(x, x0: float, width: float):
    """0 below x0, 1 above x0 + width, cubic Hermite blend in between"""
    t = clip((x - x0) / width, 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


# =============================================================================
# Logic values and comparisons
# =============================================================================


@dataclass(frozen=True)
class CompareMethod:
    """How comparisons turn into logic values

    Attributes:
        kind: "discrete", "linear" or "sigmoid"
        epsilon: Width of the linear ramp (linear only)
        k: Slope of the logistic curve (sigmoid only)
    """
    kind: str = "discrete"
    epsilon: float = 0.0
    k: float = 0.0

    def __post_init__(self):
        if self.kind not in ("discrete", "linear", "sigmoid"):
            raise ValueError(f"Unknown comparison method: {self.kind}")
        if self.kind == "linear" and not self.epsilon > 0:
            raise ValueError(f"linear comparison needs epsilon > 0, got {self.epsilon}")
        if self.kind == "sigmoid" and not self.k > 0:
            raise ValueError(f"sigmoid comparison needs k > 0, got {self.k}")

    @classmethod
    def linear(cls, epsilon: float) -> "CompareMethod":
        return cls(kind="linear", epsilon=epsilon)

    @classmethod
    def sigmoid(cls, k: float) -> "CompareMethod":
        return cls(kind="sigmoid", k=k)

    @property
    def differentiable(self) -> bool:
        return self.kind != "discrete"


DISCRETE = CompareMethod()


def _positive(d, method: CompareMethod, strict: bool):
    """Logic value of d > 0 (strict) or d >= 0"""
    if method.kind == "linear":
        return clip(0.5 + d / (2.0 * method.epsilon), 0.0, 1.0)
    if method.kind == "sigmoid":
        return 1.0 / (1.0 + exp(-method.k * d))
    if _is_jax(d):
        return jnp.where(d > 0 if strict else d >= 0, 1.0, 0.0)
    v = d.value if isinstance(d, Dual) else d
    if isinstance(v, np.ndarray):
        return np.where(v > 0 if strict else v >= 0, 1.0, 0.0)
    return 1.0 if (v > 0 if strict else v >= 0) else 0.0


def gt(a, b, method: CompareMethod = DISCRETE):
    return _positive(a - b, method, strict=True)


def ge(a, b, method: CompareMethod = DISCRETE):
    return _positive(a - b, method, strict=False)


def lt(a, b, method: CompareMethod = DISCRETE):
    return _positive(b - a, method, strict=True)


def le(a, b, method: CompareMethod = DISCRETE):
    return _positive(b - a, method, strict=False)


def eq(a, b, method: CompareMethod = DISCRETE):
    """1 at a == b; a triangle of half-width epsilon (linear) or a
    Gaussian exp(-k*(a-b)^2) (sigmoid) around it"""
    if method.kind == "linear":
        return clip(1.0 - abs(a - b) / method.epsilon, 0.0, 1.0)
    if method.kind == "sigmoid":
        return exp(-method.k * sqr(a - b))
    return logic_and(ge(a, b, method), le(a, b, method))


def ne(a, b, method: CompareMethod = DISCRETE):
    return logic_not(eq(a, b, method))


def logic_not(x):
    return 1.0 - x


def logic_and(a, b):
    return a * b


def logic_or(a, b):
    return a + b - a * b


def cond(c, on_true, on_false):
    """Blend two branches with a logic value c in [0, 1]"""
    return c * on_true + (1.0 - c) * on_false
