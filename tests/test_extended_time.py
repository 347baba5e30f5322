"""Tests for extended-precision time."""

import pytest

from odsim.numerics.extended_time import Time, time_difference, two_sum


class TestTwoSum:

    def test_error_term_is_exact(self):
        s, e = two_sum(1.0, 1e-20)
        assert s == 1.0
        assert e == 1e-20


class TestTime:

    def test_accumulates_small_increments_at_large_epochs(self):
        """10^4 steps of 0.1 ms at 1e9 s stay exact to well below a microsecond."""
        t0 = Time(1.0e9)
        t = Time(t0)
        t_float = 1.0e9
        for _ in range(10_000):
            t = t + 1e-4
            t_float = t_float + 1e-4
        assert abs((t - t0) - 1.0) < 1e-12
        assert abs((t_float - 1.0e9) - 1.0) > 1e-9

    def test_difference_of_times_is_float(self):
        d = Time(100.0) - Time(40.0)
        assert isinstance(d, float)
        assert d == 60.0

    def test_shift_by_float_is_time(self):
        t = Time(10.0) + 2.5
        assert isinstance(t, Time)
        assert float(t) == 12.5
        assert isinstance(2.5 + Time(10.0), Time)
        assert isinstance(Time(10.0) - 2.5, Time)

    def test_float_minus_time(self):
        assert 12.0 - Time(2.0) == 10.0

    def test_comparisons(self):
        a = Time(1.0e9) + 1e-10
        b = Time(1.0e9)
        assert a > b
        assert b < a
        assert a >= b and b <= a
        assert a != b
        assert Time(5.0) == 5.0

    def test_negation(self):
        assert float(-Time(3.0)) == -3.0

    def test_hash_matches_equal_times(self):
        assert hash(Time(7.0)) == hash(Time(7.0))

    @pytest.mark.parametrize("t1, t0, expected", [
        (5.0, 2.0, 3.0),
        (Time(5.0), 2.0, 3.0),
        (5.0, Time(2.0), 3.0),
        (Time(5.0), Time(2.0), 3.0),
    ])
    def test_time_difference_mixes_types(self, t1, t0, expected):
        assert time_difference(t1, t0) == expected
