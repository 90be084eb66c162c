"""Property-based tests for parameter links and scale factors.

Links are applied to every estimated parameter on every optimizer step, so
they must invert each other exactly and preserve ordering.
"""

import numpy as np
import pytest
from hypothesis import given
from hypothesis import strategies as st

from acoustic_secr.parameters import Link, compute_scale_factors

positive = st.floats(min_value=1e-8, max_value=1e8, allow_nan=False)
probability = st.floats(min_value=1e-6, max_value=1 - 1e-6, allow_nan=False)


@pytest.mark.property
class TestLinkProperties:
    @given(positive)
    def test_log_round_trip(self, value):
        assert float(Link.LOG.from_link(Link.LOG.to_link(value))) == pytest.approx(
            value, rel=1e-10
        )

    @given(probability)
    def test_logit_round_trip(self, value):
        assert float(
            Link.LOGIT.from_link(Link.LOGIT.to_link(value))
        ) == pytest.approx(value, rel=1e-8)

    @given(probability, probability)
    def test_logit_preserves_order(self, a, b):
        if a < b:
            assert Link.LOGIT.to_link(a) <= Link.LOGIT.to_link(b)

    @given(st.floats(min_value=-30.0, max_value=30.0))
    def test_logit_inverse_in_unit_interval(self, value):
        natural = float(Link.LOGIT.from_link(value))
        assert 0.0 <= natural <= 1.0


@pytest.mark.property
class TestScaleFactorProperties:
    @given(
        st.dictionaries(
            st.sampled_from(["D", "g0", "sigma", "z", "kappa"]),
            st.floats(min_value=-50.0, max_value=50.0).filter(lambda x: abs(x) > 1e-6),
            min_size=1,
        )
    )
    def test_scaled_starts_share_magnitude(self, link_starts):
        factors = compute_scale_factors(link_starts)
        largest = max(abs(value) for value in link_starts.values())
        for name, value in link_starts.items():
            assert factors[name] >= 1.0
            assert abs(value) * factors[name] == pytest.approx(largest)
