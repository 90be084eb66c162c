"""Tests for capture and auxiliary measurement densities."""

import jax.numpy as jnp
import numpy as np
import pytest
from scipy.stats import gamma, norm, vonmises

from acoustic_secr.densities import (
    bearing_density,
    bearing_log_density,
    capture_log_density,
    distance_log_density,
    gamma_log_pdf,
    normal_log_pdf,
    signal_strength_log_density,
    toa_density,
    toa_log_density,
    von_mises_log_pdf,
)

FIRED = jnp.array([[1.0, 0.0], [1.0, 1.0]])


@pytest.mark.unit
class TestElementwise:
    def test_von_mises(self):
        assert float(von_mises_log_pdf(0.3, 1.0, 4.0)) == pytest.approx(
            vonmises.logpdf(0.3, 4.0, loc=1.0)
        )

    def test_von_mises_large_concentration(self):
        value = float(von_mises_log_pdf(0.0, 0.0, 500.0))
        assert np.isfinite(value)
        assert value == pytest.approx(vonmises.logpdf(0.0, 500.0), rel=1e-6)

    def test_gamma(self):
        assert float(gamma_log_pdf(3.0, 5.0, 4.0)) == pytest.approx(
            gamma.logpdf(3.0, a=5.0, scale=4.0 / 5.0)
        )

    def test_normal(self):
        assert float(normal_log_pdf(1.0, 0.5, 2.0)) == pytest.approx(
            norm.logpdf(1.0, loc=0.5, scale=2.0)
        )


@pytest.mark.unit
class TestCaptureLogDensity:
    def test_product_over_detectors(self):
        p = np.array([[0.2, 0.6], [0.5, 0.9]])
        log_density = capture_log_density(
            FIRED, jnp.log(jnp.asarray(p)), jnp.log(1.0 - jnp.asarray(p))
        )
        expected = np.array(
            [
                [0.2 * 0.5, 0.6 * 0.1],
                [0.2 * 0.5, 0.6 * 0.9],
            ]
        )
        np.testing.assert_allclose(np.exp(log_density), expected)

    def test_leading_node_axis(self):
        log_p = jnp.log(jnp.full((4, 2, 3), 0.5))
        log_density = capture_log_density(FIRED, log_p, log_p)
        assert log_density.shape == (4, 2, 3)


@pytest.mark.unit
class TestAuxiliaryLogDensities:
    expected_bearings = jnp.array([[0.1, 1.0, 2.0], [3.0, 1.5, 0.5]])
    expected_distances = jnp.array([[2.0, 5.0, 9.0], [4.0, 1.0, 3.0]])

    def test_bearing_only_firing_detectors(self):
        observed = jnp.array([[0.5, 9.0], [0.5, 2.5]])
        log_density = np.asarray(
            bearing_log_density(observed, FIRED, self.expected_bearings, 3.0)
        )
        np.testing.assert_allclose(
            log_density[0], vonmises.logpdf(0.5, 3.0, loc=self.expected_bearings[0])
        )
        np.testing.assert_allclose(
            log_density[1],
            vonmises.logpdf(0.5, 3.0, loc=self.expected_bearings[0])
            + vonmises.logpdf(2.5, 3.0, loc=self.expected_bearings[1]),
        )

    def test_bearing_density_is_exponentiated(self):
        observed = jnp.array([[0.5, 0.0], [0.5, 2.5]])
        np.testing.assert_allclose(
            bearing_density(observed, FIRED, self.expected_bearings, 3.0),
            np.exp(bearing_log_density(observed, FIRED, self.expected_bearings, 3.0)),
        )

    def test_distance(self):
        observed = jnp.array([[3.0, 0.0], [3.0, 2.0]])
        log_density = np.asarray(
            distance_log_density(observed, FIRED, self.expected_distances, 4.0)
        )
        first = gamma.logpdf(
            3.0, a=4.0, scale=np.asarray(self.expected_distances[0]) / 4.0
        )
        second = gamma.logpdf(
            2.0, a=4.0, scale=np.asarray(self.expected_distances[1]) / 4.0
        )
        np.testing.assert_allclose(log_density[0], first)
        np.testing.assert_allclose(log_density[1], first + second)

    def test_distance_unfired_zero_is_ignored(self):
        observed = jnp.array([[3.0, 0.0]])
        log_density = distance_log_density(
            observed, FIRED[:1], self.expected_distances, 4.0
        )
        assert np.all(np.isfinite(log_density))

    def test_signal_strength(self):
        observed = jnp.array([[140.0, 0.0], [140.0, 135.0]])
        expected = jnp.array([[145.0, 138.0], [131.0, 150.0]])
        log_q = jnp.log(jnp.array([[0.1, 0.2], [0.3, 0.4]]))
        log_density = np.asarray(
            signal_strength_log_density(observed, FIRED, expected, log_q, 4.0)
        )
        first = norm.logpdf(140.0, loc=np.asarray(expected[0]), scale=4.0)
        second = norm.logpdf(135.0, loc=np.asarray(expected[1]), scale=4.0)
        np.testing.assert_allclose(log_density[0], first + np.log([0.3, 0.4]))
        np.testing.assert_allclose(log_density[1], first + second)


@pytest.mark.unit
class TestTimeOfArrival:
    def test_peak_for_two_detectors(self):
        sigma_toa = 0.002
        density = toa_density(jnp.zeros((1, 1)), jnp.array([2.0]), sigma_toa)
        assert float(density[0, 0]) == pytest.approx(
            1.0 / np.sqrt(2.0 * np.pi * sigma_toa**2)
        )

    def test_single_detector_contributes_nothing(self):
        log_density = toa_log_density(
            jnp.array([[0.0, 5.0]]), jnp.array([1.0]), 0.002
        )
        np.testing.assert_array_equal(log_density, [[0.0, 0.0]])

    def test_decreases_with_residuals(self):
        log_density = np.asarray(
            toa_log_density(jnp.array([[0.0, 1e-6, 4e-6]]), jnp.array([3.0]), 0.002)
        )
        assert np.all(np.diff(log_density[0]) < 0)
