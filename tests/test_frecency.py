"""Tests for the frecency model."""

import pytest

from lorekeeper.frecency import (
    BOOST_RETENTION,
    asymptote,
    boosted,
    decayed,
    validate_decay_factor,
)


class TestBoost:
    def test_formula(self):
        assert boosted(1.0) == pytest.approx(1.0 * 0.95 + 0.1)
        assert boosted(0.5, boost=0.3) == pytest.approx(0.5 * 0.95 + 0.3)

    def test_converges_to_asymptote(self):
        f = 0.0
        for _ in range(2000):
            f = boosted(f)
            assert f <= 2.0 + 1e-12
        assert f == pytest.approx(2.0, abs=1e-9)

    def test_asymptote_value(self):
        assert asymptote() == pytest.approx(2.0)
        assert asymptote(0.2) == pytest.approx(0.2 / (1 - BOOST_RETENTION))

    def test_from_above_decreases_to_asymptote(self):
        f = 10.0
        for _ in range(500):
            f = boosted(f)
        assert f == pytest.approx(2.0, abs=1e-6)

    def test_negative_boost_rejected(self):
        with pytest.raises(ValueError):
            boosted(1.0, boost=-0.1)


class TestDecay:
    def test_formula(self):
        assert decayed(1.0) == pytest.approx(0.99)
        assert decayed(2.0, 0.5) == pytest.approx(1.0)

    def test_repeated_decay_reaches_cleanup_range(self):
        f = 1.0
        for _ in range(500):
            f = decayed(f)
        assert f < 0.01

    @pytest.mark.parametrize("factor", [0.0, -0.5, 1.01])
    def test_invalid_factor(self, factor):
        with pytest.raises(ValueError):
            validate_decay_factor(factor)

    def test_factor_one_is_identity(self):
        assert decayed(0.7, 1.0) == 0.7
