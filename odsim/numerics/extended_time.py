"""
Compensated (dual-double) time representation.

Long propagations accumulate thousands of step additions. Summing them in
a single float64 loses low-order bits at every addition; Time keeps an
exact running remainder instead, so that the represented epoch is the
sum of the steps to roughly 32 significant digits.

Time and plain floats are interchangeable for the integrator: both support
``t + h`` (returning the same kind), ``t - t`` (returning float seconds)
and ``float(t)``.
"""

from __future__ import annotations

from typing import Union


def two_sum(a: float, b: float) -> tuple[float, float]:
    """Error-free addition: a + b == s + e exactly.

    Args:
        a, b: Summands.

    Returns:
        s: Rounded sum.
        e: Rounding error of the sum.
    """
    s = a + b
    bb = s - a
    e = (a - (s - bb)) + (b - bb)
    return s, e


def _fast_two_sum(a: float, b: float) -> tuple[float, float]:
    """Error-free addition for |a| >= |b|."""
    s = a + b
    e = b - (s - a)
    return s, e


class Time:
    """Epoch in seconds held as an unevaluated sum hi + lo.

    Attributes:
        hi: Leading part [s].
        lo: Trailing correction [s], |lo| <= ulp(hi)/2.
    """

    __slots__ = ("hi", "lo")

    def __init__(self, seconds: Union[float, "Time"] = 0.0, lo: float = 0.0):
        if isinstance(seconds, Time):
            seconds, lo = seconds.hi, seconds.lo
        self.hi, self.lo = _fast_two_sum(*_ordered(float(seconds), float(lo)))

    # -- arithmetic ---------------------------------------------------------

    def __add__(self, other) -> Time:
        if isinstance(other, Time):
            s, e = two_sum(self.hi, other.hi)
            e += self.lo + other.lo
        else:
            s, e = two_sum(self.hi, float(other))
            e += self.lo
        result = Time.__new__(Time)
        result.hi, result.lo = _fast_two_sum(s, e)
        return result

    __radd__ = __add__

    def __neg__(self) -> Time:
        result = Time.__new__(Time)
        result.hi, result.lo = -self.hi, -self.lo
        return result

    def __sub__(self, other):
        """Difference in seconds (float), or a shifted Time for float operands."""
        if isinstance(other, Time):
            s, e = two_sum(self.hi, -other.hi)
            return s + (e + (self.lo - other.lo))
        return self + (-float(other))

    def __rsub__(self, other) -> float:
        s, e = two_sum(float(other), -self.hi)
        return s + (e - self.lo)

    def __float__(self) -> float:
        return self.hi + self.lo

    # -- comparison ---------------------------------------------------------

    def _cmp(self, other) -> float:
        if not isinstance(other, Time):
            other = Time(float(other))
        return self - other

    def __eq__(self, other):
        if not isinstance(other, (Time, int, float)):
            return NotImplemented
        return self._cmp(other) == 0.0

    def __lt__(self, other):
        return self._cmp(other) < 0.0

    def __le__(self, other):
        return self._cmp(other) <= 0.0

    def __gt__(self, other):
        return self._cmp(other) > 0.0

    def __ge__(self, other):
        return self._cmp(other) >= 0.0

    def __hash__(self):
        return hash((self.hi, self.lo))

    def __repr__(self):
        return f"Time({self.hi!r}, {self.lo!r})"


def _ordered(a: float, b: float) -> tuple[float, float]:
    return (a, b) if abs(a) >= abs(b) else (b, a)


TimeLike = Union[float, Time]


def time_difference(t1: TimeLike, t0: TimeLike) -> float:
    """Seconds from t0 to t1 for any mix of float and Time."""
    if isinstance(t1, Time) or isinstance(t0, Time):
        return Time(t1) - Time(t0)
    return t1 - t0
