"""Tests for the per-beacon EMA distance smoother."""

from __future__ import annotations

import math

import pytest

from ibeacon_locator.errors import InvalidConfiguration
from ibeacon_locator.filters import DistanceSmoother


class TestDistanceSmoother:
    def test_first_sample_is_returned_verbatim(self, identity):
        smoother = DistanceSmoother()
        assert smoother.smooth(identity(1), 2.5) == 2.5
        assert smoother.current(identity(1)) == 2.5

    def test_ema_update(self, identity):
        smoother = DistanceSmoother(alpha=0.35)
        smoother.smooth(identity(1), 2.0)
        assert smoother.smooth(identity(1), 4.0) == pytest.approx(0.35 * 4.0 + 0.65 * 2.0)

    def test_repetition_converges(self, identity):
        smoother = DistanceSmoother()
        smoother.smooth(identity(1), 10.0)
        for _ in range(100):
            value = smoother.smooth(identity(1), 2.0)
        assert value == pytest.approx(2.0)

    @pytest.mark.parametrize("bad", [0.0, -1.5, float("inf"), None])
    def test_invalid_samples_pass_through(self, identity, bad):
        smoother = DistanceSmoother()
        assert smoother.smooth(identity(1), bad) == bad
        assert identity(1) not in smoother

        smoother.smooth(identity(1), 3.0)
        smoother.smooth(identity(1), bad)
        assert smoother.current(identity(1)) == 3.0

    def test_nan_passes_through(self, identity):
        smoother = DistanceSmoother()
        assert math.isnan(smoother.smooth(identity(1), float("nan")))
        assert len(smoother) == 0

    def test_key_and_identity_are_interchangeable(self, identity):
        smoother = DistanceSmoother()
        smoother.smooth(identity(1), 2.0)
        assert smoother.current(identity(1).key) == 2.0
        assert identity(1).key in smoother

    def test_identities_are_independent(self, identity):
        smoother = DistanceSmoother()
        smoother.smooth(identity(1), 1.0)
        smoother.smooth(identity(2), 5.0)
        assert smoother.current(identity(1)) == 1.0
        assert smoother.current(identity(2)) == 5.0

    def test_alpha_one_disables_smoothing(self, identity):
        smoother = DistanceSmoother(alpha=1.0)
        smoother.smooth(identity(1), 1.0)
        assert smoother.smooth(identity(1), 7.0) == 7.0

    def test_reset(self, identity):
        smoother = DistanceSmoother()
        smoother.smooth(identity(1), 1.0)
        smoother.smooth(identity(2), 2.0)

        smoother.reset(identity(1))
        assert smoother.current(identity(1)) is None
        assert len(smoother) == 1

        smoother.reset()
        assert len(smoother) == 0

    @pytest.mark.parametrize("alpha", [0, -0.1, 1.5, float("nan")])
    def test_invalid_alpha(self, alpha):
        with pytest.raises(InvalidConfiguration):
            DistanceSmoother(alpha=alpha)
