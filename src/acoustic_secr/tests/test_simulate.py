"""Tests for survey simulation."""

import numpy as np
import pytest

from acoustic_secr.capture import InfoType, validate_capture_history
from acoustic_secr.exceptions import ConfigurationError, ValidationError
from acoustic_secr.simulate import simulate_capture_history, simulate_locations

HN = {"g0": 0.9, "sigma": 10.0}


@pytest.mark.unit
class TestSimulateLocations:
    def test_within_mask_cells(self, square_mask):
        locations = simulate_locations(square_mask, 0.01, np.random.default_rng(0))
        side = np.sqrt(square_mask.area)
        lower = square_mask.points.min(axis=0) - side / 2
        upper = square_mask.points.max(axis=0) + side / 2
        assert np.all(locations >= lower) and np.all(locations <= upper)

    def test_expected_count(self, square_mask):
        rng = np.random.default_rng(1)
        counts = [
            simulate_locations(square_mask, 0.01, rng).shape[0] for _ in range(50)
        ]
        expected = 0.01 * square_mask.total_area
        assert np.mean(counts) == pytest.approx(expected, rel=0.1)


@pytest.mark.unit
class TestSimulateCaptureHistory:
    def test_only_detected_calls(self, square_detectors, square_mask):
        capture = simulate_capture_history(
            square_detectors, square_mask, 0.01, "hn", HN, seed=3
        )
        assert capture.n_detections > 0
        assert np.all(capture.binary.sum(axis=1) > 0)
        validate_capture_history(capture, square_detectors.shape[0])

    def test_reproducible(self, square_detectors, square_mask):
        first = simulate_capture_history(
            square_detectors, square_mask, 0.01, "hn", HN, seed=5
        )
        second = simulate_capture_history(
            square_detectors, square_mask, 0.01, "hn", HN, seed=5
        )
        np.testing.assert_array_equal(first.binary, second.binary)

    def test_auxiliary_information(self, square_detectors, square_mask):
        capture = simulate_capture_history(
            square_detectors,
            square_mask,
            0.01,
            "hn",
            {**HN, "kappa": 20.0, "alpha": 5.0, "sigma_toa": 0.001},
            info_types=["bearing", "distance", "time-of-arrival"],
            seed=11,
        )
        assert capture.info_types == (
            InfoType.BEARING,
            InfoType.DISTANCE,
            InfoType.TIME_OF_ARRIVAL,
        )
        fired = capture.binary == 1
        for info_type in capture.info_types:
            assert np.all(capture[info_type][~fired] == 0.0)
        bearings = capture[InfoType.BEARING][fired]
        assert np.all((bearings >= 0) & (bearings < 2 * np.pi))
        assert np.all(capture[InfoType.DISTANCE][fired] > 0)
        validate_capture_history(capture, square_detectors.shape[0])

    def test_known_distances_fill_rows(self, square_detectors, square_mask):
        capture = simulate_capture_history(
            square_detectors,
            square_mask,
            0.01,
            "hn",
            HN,
            info_types=["known-distance"],
            seed=2,
        )
        assert np.all(capture[InfoType.KNOWN_DISTANCE] > 0)

    def test_signal_strength(self, square_detectors, square_mask):
        params = {"b0_ss": 150.0, "b1_ss": 1.0, "sigma_ss": 5.0}
        capture = simulate_capture_history(
            square_detectors, square_mask, 0.01, "ss", params, cutoff=130.0, seed=4
        )
        strengths = capture[InfoType.SIGNAL_STRENGTH]
        fired = capture.binary == 1
        assert np.all(strengths[fired] >= 130.0)
        assert np.all(strengths[~fired] == 0.0)

    def test_signal_strength_requires_cutoff(self, square_detectors, square_mask):
        params = {"b0_ss": 150.0, "b1_ss": 1.0, "sigma_ss": 5.0}
        with pytest.raises(ConfigurationError, match="cutoff"):
            simulate_capture_history(square_detectors, square_mask, 0.01, "ss", params)

    def test_rejects_non_positive_density(self, square_detectors, square_mask):
        with pytest.raises(ValidationError):
            simulate_capture_history(square_detectors, square_mask, 0.0, "hn", HN)
