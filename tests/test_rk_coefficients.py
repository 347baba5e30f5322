"""Tests for embedded Runge-Kutta coefficient tables."""

from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from odsim.core.errors import UnsupportedMethodError
from odsim.numerics import rk_coefficients
from odsim.numerics.rk_coefficients import (
    CoefficientSet, OrderToIntegrate, get_coefficients,
)

ALL_SETS = list(CoefficientSet)


class TestTableConsistency:
    """Butcher tableau conditions of every pair."""

    @pytest.mark.parametrize("method", ALL_SETS)
    def test_row_sums_match_nodes(self, method):
        """sum_j a_ij = c_i for every stage."""
        coeff = get_coefficients(method)
        for i in range(coeff.stages):
            row = coeff.a[i]
            tol = 1e-14 * max(1.0, np.max(np.abs(row)))
            assert abs(row.sum() - coeff.c[i]) <= tol

    @pytest.mark.parametrize("method", ALL_SETS)
    def test_weights_sum_to_one(self, method):
        coeff = get_coefficients(method)
        np.testing.assert_allclose(coeff.b.sum(axis=1), [1.0, 1.0], atol=1e-13)

    @pytest.mark.parametrize("method", ALL_SETS)
    def test_explicit_structure(self, method):
        """First node is zero and a is strictly lower triangular."""
        coeff = get_coefficients(method)
        assert coeff.c[0] == 0.0
        assert coeff.a.shape == (coeff.stages, coeff.stages - 1)
        for i in range(coeff.stages):
            assert np.all(coeff.a[i, i:] == 0.0)

    @pytest.mark.parametrize("method", ALL_SETS)
    def test_tables_are_read_only(self, method):
        coeff = get_coefficients(method)
        with pytest.raises(ValueError):
            coeff.a[1, 0] = 1.0
        with pytest.raises(ValueError):
            coeff.b[0, 0] = 1.0


class TestOrders:

    @pytest.mark.parametrize("method, lower, higher, integrated", [
        (CoefficientSet.RKF45, 4, 5, 4),
        (CoefficientSet.RKF56, 5, 6, 5),
        (CoefficientSet.RKF78, 7, 8, 7),
        (CoefficientSet.RKDP87, 7, 8, 8),
    ])
    def test_orders(self, method, lower, higher, integrated):
        coeff = get_coefficients(method)
        assert coeff.lower_order == lower
        assert coeff.higher_order == higher
        assert coeff.integrated_order == integrated
        assert coeff.error_order == lower

    def test_dormand_prince_integrates_higher_order(self):
        coeff = get_coefficients(CoefficientSet.RKDP87)
        assert coeff.order_to_integrate is OrderToIntegrate.HIGHER
        np.testing.assert_array_equal(coeff.b_integrated, coeff.b[1])

    def test_fehlberg_integrates_lower_order(self):
        coeff = get_coefficients(CoefficientSet.RKF78)
        assert coeff.order_to_integrate is OrderToIntegrate.LOWER
        np.testing.assert_array_equal(coeff.b_integrated, coeff.b[0])


class TestLookup:

    def test_cached_instance_is_shared(self):
        assert get_coefficients(CoefficientSet.RKF56) is get_coefficients(CoefficientSet.RKF56)

    def test_lookup_by_name(self):
        assert get_coefficients("rkf78") is get_coefficients(CoefficientSet.RKF78)

    @pytest.mark.parametrize("bad", ["rk4", "", 42, None])
    def test_unknown_method_raises(self, bad):
        with pytest.raises(UnsupportedMethodError):
            get_coefficients(bad)

    def test_unknown_method_is_value_error(self):
        with pytest.raises(ValueError):
            get_coefficients("euler")

    def test_concurrent_first_use_builds_one_table(self):
        """Threads racing on an empty cache all receive the same object."""
        rk_coefficients._cache.clear()
        with ThreadPoolExecutor(max_workers=16) as pool:
            tables = list(pool.map(lambda _: get_coefficients(CoefficientSet.RKDP87),
                                   range(64)))
        assert all(t is tables[0] for t in tables)
