"""
Embedded Runge-Kutta coefficient tables.

Each table carries the stage-coupling matrix ``a`` (strictly lower
triangular, stages x stages-1), the two weight rows ``b`` (row 0 for the
lower-order solution, row 1 for the higher-order solution), the stage
nodes ``c`` and a selector naming which of the two solutions is propagated.

Tables are built on first request and cached for the lifetime of the
process. Construction is guarded by a lock so that concurrent first
access from worker threads never sees a partially built table; once
built, a table is immutable and shared without locking.

References:
    Fehlberg, "Classical fifth-, sixth-, seventh- and eighth-order
        Runge-Kutta formulas with stepsize control", NASA TR R-287, 1968
    Montenbruck & Gill, "Satellite Orbits", Sec. 4.1, 2005
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum, auto
from typing import Union

import numpy as np

from ..core.errors import UnsupportedMethodError


class CoefficientSet(Enum):
    """Supported embedded Runge-Kutta pairs."""
    RKF45 = auto()      # Runge-Kutta-Fehlberg 4(5)
    RKF56 = auto()      # Runge-Kutta-Fehlberg 5(6)
    RKF78 = auto()      # Runge-Kutta-Fehlberg 7(8)
    RKDP87 = auto()     # Dormand-Prince 8(7)


class OrderToIntegrate(Enum):
    """Which embedded solution is taken as the propagated state."""
    LOWER = auto()
    HIGHER = auto()


@dataclass(frozen=True)
class RungeKuttaCoefficients:
    """Immutable Butcher tableau of an embedded pair.

    Attributes:
        lower_order: Order of the lower-order solution.
        higher_order: Order of the higher-order solution.
        order_to_integrate: Solution used as the accepted next state.
        a: Stage coupling coefficients, shape (stages, stages-1).
        b: Weights, shape (2, stages); row 0 lower order, row 1 higher order.
        c: Stage nodes, shape (stages,).
    """
    lower_order: int
    higher_order: int
    order_to_integrate: OrderToIntegrate
    a: np.ndarray
    b: np.ndarray
    c: np.ndarray

    @property
    def stages(self) -> int:
        return self.c.shape[0]

    @property
    def integrated_order(self) -> int:
        """Formal order of the propagated solution."""
        if self.order_to_integrate is OrderToIntegrate.LOWER:
            return self.lower_order
        return self.higher_order

    @property
    def error_order(self) -> int:
        """Order used in the step-size control exponent 1/(q+1)."""
        return min(self.lower_order, self.higher_order)

    @property
    def b_integrated(self) -> np.ndarray:
        """Weights of the propagated solution, shape (stages,)."""
        row = 0 if self.order_to_integrate is OrderToIntegrate.LOWER else 1
        return self.b[row]


def _build(lower_order, higher_order, order_to_integrate, a_rows, b_lower, b_higher, c):
    """Assemble a read-only table from ragged lower-triangular rows."""
    stages = len(c)
    a = np.zeros((stages, stages - 1))
    for i, row in enumerate(a_rows):
        a[i, :len(row)] = row
    b = np.array([b_lower, b_higher], dtype=float)
    c = np.array(c, dtype=float)

    if b.shape != (2, stages) or len(a_rows) != stages:
        raise ValueError(f"Inconsistent tableau dimensions for {stages} stages")

    for arr in (a, b, c):
        arr.flags.writeable = False

    return RungeKuttaCoefficients(
        lower_order=lower_order,
        higher_order=higher_order,
        order_to_integrate=order_to_integrate,
        a=a, b=b, c=c,
    )


# ===================================================================
# Runge-Kutta-Fehlberg 4(5), 6 stages
# ===================================================================

def _rkf45() -> RungeKuttaCoefficients:
    a_rows = (
        (),
        (1.0 / 4.0,),
        (3.0 / 32.0, 9.0 / 32.0),
        (1932.0 / 2197.0, -7200.0 / 2197.0, 7296.0 / 2197.0),
        (439.0 / 216.0, -8.0, 3680.0 / 513.0, -845.0 / 4104.0),
        (-8.0 / 27.0, 2.0, -3544.0 / 2565.0, 1859.0 / 4104.0, -11.0 / 40.0),
    )
    c = (0.0, 1.0 / 4.0, 3.0 / 8.0, 12.0 / 13.0, 1.0, 1.0 / 2.0)
    b_lower = (25.0 / 216.0, 0.0, 1408.0 / 2565.0, 2197.0 / 4104.0, -1.0 / 5.0, 0.0)
    b_higher = (16.0 / 135.0, 0.0, 6656.0 / 12825.0, 28561.0 / 56430.0,
                -9.0 / 50.0, 2.0 / 55.0)
    return _build(4, 5, OrderToIntegrate.LOWER, a_rows, b_lower, b_higher, c)


# ===================================================================
# Runge-Kutta-Fehlberg 5(6), 8 stages
# ===================================================================

def _rkf56() -> RungeKuttaCoefficients:
    a_rows = (
        (),
        (1.0 / 6.0,),
        (4.0 / 75.0, 16.0 / 75.0),
        (5.0 / 6.0, -8.0 / 3.0, 5.0 / 2.0),
        (-8.0 / 5.0, 144.0 / 25.0, -4.0, 16.0 / 25.0),
        (361.0 / 320.0, -18.0 / 5.0, 407.0 / 128.0, -11.0 / 80.0, 55.0 / 128.0),
        (-11.0 / 640.0, 0.0, 11.0 / 256.0, -11.0 / 160.0, 11.0 / 256.0, 0.0),
        (93.0 / 640.0, -18.0 / 5.0, 803.0 / 256.0, -11.0 / 160.0, 99.0 / 256.0,
         0.0, 1.0),
    )
    c = (0.0, 1.0 / 6.0, 4.0 / 15.0, 2.0 / 3.0, 4.0 / 5.0, 1.0, 0.0, 1.0)
    b_lower = (31.0 / 384.0, 0.0, 1125.0 / 2816.0, 9.0 / 32.0, 125.0 / 768.0,
               5.0 / 66.0, 0.0, 0.0)
    b_higher = (7.0 / 1408.0, 0.0, 1125.0 / 2816.0, 9.0 / 32.0, 125.0 / 768.0,
                0.0, 5.0 / 66.0, 5.0 / 66.0)
    return _build(5, 6, OrderToIntegrate.LOWER, a_rows, b_lower, b_higher, c)


# ===================================================================
# Runge-Kutta-Fehlberg 7(8), 13 stages
# ===================================================================

def _rkf78() -> RungeKuttaCoefficients:
    a_rows = (
        (),
        (2.0 / 27.0,),
        (1.0 / 36.0, 1.0 / 12.0),
        (1.0 / 24.0, 0.0, 1.0 / 8.0),
        (5.0 / 12.0, 0.0, -25.0 / 16.0, 25.0 / 16.0),
        (1.0 / 20.0, 0.0, 0.0, 1.0 / 4.0, 1.0 / 5.0),
        (-25.0 / 108.0, 0.0, 0.0, 125.0 / 108.0, -65.0 / 27.0, 125.0 / 54.0),
        (31.0 / 300.0, 0.0, 0.0, 0.0, 61.0 / 225.0, -2.0 / 9.0, 13.0 / 900.0),
        (2.0, 0.0, 0.0, -53.0 / 6.0, 704.0 / 45.0, -107.0 / 9.0, 67.0 / 90.0, 3.0),
        (-91.0 / 108.0, 0.0, 0.0, 23.0 / 108.0, -976.0 / 135.0, 311.0 / 54.0,
         -19.0 / 60.0, 17.0 / 6.0, -1.0 / 12.0),
        (2383.0 / 4100.0, 0.0, 0.0, -341.0 / 164.0, 4496.0 / 1025.0, -301.0 / 82.0,
         2133.0 / 4100.0, 45.0 / 82.0, 45.0 / 164.0, 18.0 / 41.0),
        (3.0 / 205.0, 0.0, 0.0, 0.0, 0.0, -6.0 / 41.0, -3.0 / 205.0, -3.0 / 41.0,
         3.0 / 41.0, 6.0 / 41.0, 0.0),
        (-1777.0 / 4100.0, 0.0, 0.0, -341.0 / 164.0, 4496.0 / 1025.0, -289.0 / 82.0,
         2193.0 / 4100.0, 51.0 / 82.0, 33.0 / 164.0, 12.0 / 41.0, 0.0, 1.0),
    )
    c = (0.0, 2.0 / 27.0, 1.0 / 9.0, 1.0 / 6.0, 5.0 / 12.0, 1.0 / 2.0, 5.0 / 6.0,
         1.0 / 6.0, 2.0 / 3.0, 1.0 / 3.0, 1.0, 0.0, 1.0)
    b_lower = (41.0 / 840.0, 0.0, 0.0, 0.0, 0.0, 34.0 / 105.0, 9.0 / 35.0,
               9.0 / 35.0, 9.0 / 280.0, 9.0 / 280.0, 41.0 / 840.0, 0.0, 0.0)
    b_higher = (0.0, 0.0, 0.0, 0.0, 0.0, 34.0 / 105.0, 9.0 / 35.0,
                9.0 / 35.0, 9.0 / 280.0, 9.0 / 280.0, 0.0, 41.0 / 840.0, 41.0 / 840.0)
    return _build(7, 8, OrderToIntegrate.LOWER, a_rows, b_lower, b_higher, c)


# ===================================================================
# Dormand-Prince 8(7), 13 stages
# ===================================================================

def _rkdp87() -> RungeKuttaCoefficients:
    a_rows = (
        (),
        (1.0 / 18.0,),
        (1.0 / 48.0, 1.0 / 16.0),
        (1.0 / 32.0, 0.0, 3.0 / 32.0),
        (5.0 / 16.0, 0.0, -75.0 / 64.0, 75.0 / 64.0),
        (3.0 / 80.0, 0.0, 0.0, 3.0 / 16.0, 3.0 / 20.0),
        (29443841.0 / 614563906.0, 0.0, 0.0, 77736538.0 / 692538347.0,
         -28693883.0 / 1125000000.0, 23124283.0 / 1800000000.0),
        (16016141.0 / 946692911.0, 0.0, 0.0, 61564180.0 / 158732637.0,
         22789713.0 / 633445777.0, 545815736.0 / 2771057229.0,
         -180193667.0 / 1043307555.0),
        (39632708.0 / 573591083.0, 0.0, 0.0, -433636366.0 / 683701615.0,
         -421739975.0 / 2616292301.0, 100302831.0 / 723423059.0,
         790204164.0 / 839813087.0, 800635310.0 / 3783071287.0),
        (246121993.0 / 1340847787.0, 0.0, 0.0, -37695042795.0 / 15268766246.0,
         -309121744.0 / 1061227803.0, -12992083.0 / 490766935.0,
         6005943493.0 / 2108947869.0, 393006217.0 / 1396673457.0,
         123872331.0 / 1001029789.0),
        (-1028468189.0 / 846180014.0, 0.0, 0.0, 8478235783.0 / 508512852.0,
         1311729495.0 / 1432422823.0, -10304129995.0 / 1701304382.0,
         -48777925059.0 / 3047939560.0, 15336726248.0 / 1032824649.0,
         -45442868181.0 / 3398467696.0, 3065993473.0 / 597172653.0),
        (185892177.0 / 718116043.0, 0.0, 0.0, -3185094517.0 / 667107341.0,
         -477755414.0 / 1098053517.0, -703635378.0 / 230739211.0,
         5731566787.0 / 1027545527.0, 5232866602.0 / 850066563.0,
         -4093664535.0 / 808688257.0, 3962137247.0 / 1805957418.0,
         65686358.0 / 487910083.0),
        (403863854.0 / 491063109.0, 0.0, 0.0, -5068492393.0 / 434740067.0,
         -411421997.0 / 543043805.0, 652783627.0 / 914296604.0,
         11173962825.0 / 925320556.0, -13158990841.0 / 6184727034.0,
         3936647629.0 / 1978049680.0, -160528059.0 / 685178525.0,
         248638103.0 / 1413531060.0, 0.0),
    )
    c = (0.0, 1.0 / 18.0, 1.0 / 12.0, 1.0 / 8.0, 5.0 / 16.0, 3.0 / 8.0,
         59.0 / 400.0, 93.0 / 200.0, 5490023248.0 / 9719169821.0, 13.0 / 20.0,
         1201146811.0 / 1299019798.0, 1.0, 1.0)
    # 7th-order weights in row 0, 8th-order weights in row 1
    b_lower = (13451932.0 / 455176623.0, 0.0, 0.0, 0.0, 0.0,
               -808719846.0 / 976000145.0, 1757004468.0 / 5645159321.0,
               656045339.0 / 265891186.0, -3867574721.0 / 1518517206.0,
               465885868.0 / 322736535.0, 53011238.0 / 667516719.0, 2.0 / 45.0, 0.0)
    b_higher = (14005451.0 / 335480064.0, 0.0, 0.0, 0.0, 0.0,
                -59238493.0 / 1068277825.0, 181606767.0 / 758867731.0,
                561292985.0 / 797845732.0, -1041891430.0 / 1371343529.0,
                760417239.0 / 1151165299.0, 118820643.0 / 751138087.0,
                -528747749.0 / 2220607170.0, 1.0 / 4.0)
    return _build(7, 8, OrderToIntegrate.HIGHER, a_rows, b_lower, b_higher, c)


# ---------------------------------------------------------------------------
# Process-wide cache
# ---------------------------------------------------------------------------

_BUILDERS = {
    CoefficientSet.RKF45: _rkf45,
    CoefficientSet.RKF56: _rkf56,
    CoefficientSet.RKF78: _rkf78,
    CoefficientSet.RKDP87: _rkdp87,
}

_cache: dict[CoefficientSet, RungeKuttaCoefficients] = {}
_cache_lock = threading.Lock()


def _resolve(method: Union[CoefficientSet, str]) -> CoefficientSet:
    if isinstance(method, CoefficientSet):
        return method
    if isinstance(method, str):
        try:
            return CoefficientSet[method.strip().upper()]
        except KeyError:
            raise UnsupportedMethodError(method) from None
    raise UnsupportedMethodError(method)


def get_coefficients(method: Union[CoefficientSet, str]) -> RungeKuttaCoefficients:
    """Return the cached coefficient table of an embedded pair.

    Args:
        method: CoefficientSet member or its name (case-insensitive).

    Returns:
        The shared, read-only RungeKuttaCoefficients instance.

    Raises:
        UnsupportedMethodError: If the identifier names no supported pair.
    """
    key = _resolve(method)

    table = _cache.get(key)
    if table is not None:
        return table

    with _cache_lock:
        table = _cache.get(key)
        if table is None:
            table = _BUILDERS[key]()
            _cache[key] = table
    return table
