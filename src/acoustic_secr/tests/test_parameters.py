"""Tests for links, start values and parameter resolution."""

import numpy as np
import pytest
from scipy.special import erf

from acoustic_secr.capture import CaptureHistory
from acoustic_secr.exceptions import ConfigurationError, DomainError
from acoustic_secr.parameters import (
    DEFAULT_LINKS,
    FIXED_PHASE,
    PARAMETER_NAMES,
    Link,
    auto_sigma,
    auto_start_values,
    compute_scale_factors,
    default_bounds,
    resolve_parameters,
)


@pytest.mark.unit
class TestLink:
    @pytest.mark.parametrize(
        "link, value",
        [(Link.IDENTITY, -3.5), (Link.LOG, 0.02), (Link.LOGIT, 0.95)],
    )
    def test_round_trip(self, link, value):
        assert float(link.from_link(link.to_link(value))) == pytest.approx(value)

    def test_logit_of_half_is_zero(self):
        assert float(Link.LOGIT.to_link(0.5)) == pytest.approx(0.0)
        assert float(Link.LOGIT.from_link(0.0)) == pytest.approx(0.5)

    @pytest.mark.parametrize(
        "link, value",
        [(Link.LOG, 0.0), (Link.LOG, -1.0), (Link.LOGIT, 0.0), (Link.LOGIT, 1.0)],
    )
    def test_domain_errors(self, link, value):
        with pytest.raises(DomainError):
            link.to_link(value)

    def test_bounds_at_domain_edges(self):
        assert Link.LOG.bound_to_link(0.0) == -np.inf
        assert Link.LOGIT.bound_to_link(0.0) == -np.inf
        assert Link.LOGIT.bound_to_link(1.0) == np.inf
        assert Link.LOG.bound_to_link(1e8) == pytest.approx(np.log(1e8))
        assert Link.IDENTITY.bound_to_link(-100.0) == -100.0

    def test_every_parameter_has_a_link(self):
        assert set(DEFAULT_LINKS) == set(PARAMETER_NAMES)


@pytest.mark.unit
class TestScaleFactors:
    def test_largest_over_each(self):
        factors = compute_scale_factors({"a": 2.0, "b": -4.0, "c": 0.0})
        assert factors == {"a": 2.0, "b": 1.0, "c": 1.0}

    def test_empty(self):
        assert compute_scale_factors({}) == {}


@pytest.mark.unit
class TestAutoStartValues:
    def test_sigma_from_joint_detections(self, triangle_detectors):
        capture = CaptureHistory({"binary": [[1, 1, 0], [1, 0, 1]]})
        assert auto_sigma(capture, triangle_detectors) == pytest.approx(1.0)

    def test_sigma_from_distances_when_detectors_coincide(self):
        detectors = np.zeros((2, 2))
        capture = CaptureHistory({"binary": [[1, 1]], "distance": [[5.0, 3.0]]})
        assert auto_sigma(capture, detectors) == pytest.approx(4.0)

    def test_sigma_falls_back_to_half_spacing(self):
        detectors = np.array([[0.0, 0.0], [2.0, 0.0], [5.0, 0.0]])
        capture = CaptureHistory({"binary": [[1, 0, 0], [0, 1, 0]]})
        assert auto_sigma(capture, detectors) == pytest.approx(1.0)

    def test_sigma_cannot_be_derived(self):
        capture = CaptureHistory({"binary": [[1]]})
        with pytest.raises(ConfigurationError, match="sigma"):
            auto_sigma(capture, np.zeros((1, 2)))

    def test_fixed_defaults(self, triangle_detectors, triangle_capture):
        start = auto_start_values(
            ["D", "g0", "sigma", "z"], triangle_capture, triangle_detectors
        )
        assert "D" not in start
        assert start["g0"] == 0.95
        assert start["z"] == 1.0

    def test_threshold_half_detection_at_two_sigma(
        self, triangle_detectors, triangle_capture
    ):
        sigma = auto_sigma(triangle_capture, triangle_detectors)
        start = auto_start_values(["shape", "scale"], triangle_capture, triangle_detectors)
        g = 0.5 - 0.5 * erf(2 * sigma / start["scale"] - start["shape"])
        assert g == pytest.approx(0.5)

    def test_log_threshold_half_detection_at_two_sigma(
        self, triangle_detectors, triangle_capture
    ):
        sigma = auto_sigma(triangle_capture, triangle_detectors)
        start = auto_start_values(
            ["shape1", "shape2", "scale"], triangle_capture, triangle_detectors
        )
        g = 0.5 - 0.5 * erf(
            start["shape1"] - np.exp(start["shape2"] - start["scale"] * 2 * sigma)
        )
        assert g == pytest.approx(0.5)

    def test_signal_strength(self, triangle_detectors):
        capture = CaptureHistory(
            {
                "binary": [[1, 1, 0], [1, 0, 0]],
                "signal-strength": [[150.0, 140.0, 0.0], [145.0, 0.0, 0.0]],
            }
        )
        start = auto_start_values(
            ["b0_ss", "b1_ss", "b2_ss", "sigma_b0_ss", "sigma_ss"],
            capture,
            triangle_detectors,
            cutoff=130.0,
        )
        assert start["b0_ss"] == 150.0
        # joint detections are 1 m apart
        assert start["b1_ss"] == pytest.approx(10.0)
        assert start["sigma_ss"] == pytest.approx(5.0)
        assert start["sigma_b0_ss"] == pytest.approx(2.5)

    def test_threshold_scale_from_given_shape(
        self, triangle_detectors, triangle_capture
    ):
        sigma = auto_sigma(triangle_capture, triangle_detectors)
        start = auto_start_values(
            ["scale"], triangle_capture, triangle_detectors, given={"shape": 1.5}
        )
        assert set(start) == {"scale"}
        g = 0.5 - 0.5 * erf(2 * sigma / start["scale"] - 1.5)
        assert g == pytest.approx(0.5)

    def test_threshold_shape_from_given_scale(
        self, triangle_detectors, triangle_capture
    ):
        sigma = auto_sigma(triangle_capture, triangle_detectors)
        start = auto_start_values(
            ["shape"], triangle_capture, triangle_detectors, given={"scale": 4.0}
        )
        assert start["shape"] == pytest.approx(2 * sigma / 4.0)

    @pytest.mark.parametrize(
        "given",
        [{"shape1": 1.5}, {"shape2": 4.0}, {"scale": 0.5}, {"shape1": 3.0, "scale": 1.0}],
    )
    def test_log_threshold_with_given_values(
        self, triangle_detectors, triangle_capture, given
    ):
        sigma = auto_sigma(triangle_capture, triangle_detectors)
        names = [name for name in ("shape1", "shape2", "scale") if name not in given]
        start = auto_start_values(
            names, triangle_capture, triangle_detectors, given=given
        )
        assert set(start) == set(names)
        values = {**given, **start}
        g = 0.5 - 0.5 * erf(
            values["shape1"] - np.exp(values["shape2"] - values["scale"] * 2 * sigma)
        )
        assert g == pytest.approx(0.5)

    def test_signal_strength_with_given_source_strength(self, triangle_detectors):
        capture = CaptureHistory(
            {
                "binary": [[1, 1, 0], [1, 0, 0]],
                "signal-strength": [[150.0, 140.0, 0.0], [145.0, 0.0, 0.0]],
            }
        )
        start = auto_start_values(
            ["b1_ss", "b2_ss", "sigma_b0_ss", "sigma_ss"],
            capture,
            triangle_detectors,
            cutoff=130.0,
            given={"b0_ss": 160.0},
        )
        assert "b0_ss" not in start
        # (160 - 130) / (2 * 1 m)
        assert start["b1_ss"] == pytest.approx(15.0)
        assert start["sigma_ss"] == pytest.approx(5.0)

    def test_sigma_b0_follows_given_sigma_ss(self, triangle_detectors):
        capture = CaptureHistory(
            {
                "binary": [[1, 1, 0]],
                "signal-strength": [[150.0, 140.0, 0.0]],
            }
        )
        start = auto_start_values(
            ["sigma_b0_ss"],
            capture,
            triangle_detectors,
            cutoff=130.0,
            given={"sigma_ss": 8.0},
        )
        assert start == {"sigma_b0_ss": 4.0}


@pytest.mark.unit
class TestResolveParameters:
    names = ("D", "g0", "sigma")

    def resolve(self, capture, detectors, **kwargs):
        return resolve_parameters(
            self.names,
            capture,
            detectors,
            total_area=100.0,
            esa=lambda params: 10.0,
            **kwargs,
        )

    def test_automatic(self, triangle_capture, triangle_detectors):
        parameters = self.resolve(triangle_capture, triangle_detectors)
        assert [p.name for p in parameters] == list(self.names)
        by_name = {p.name: p for p in parameters}
        assert by_name["D"].start == pytest.approx(0.4)
        assert by_name["D"].lower == pytest.approx(0.04)
        assert by_name["g0"].link is Link.LOGIT
        assert all(p.phase == 1 for p in parameters)

    def test_scale_factors(self, triangle_capture, triangle_detectors):
        parameters = self.resolve(triangle_capture, triangle_detectors)
        link_starts = {p.name: p.link_start for p in parameters}
        largest = max(abs(value) for value in link_starts.values())
        for parameter in parameters:
            assert parameter.scale_factor == pytest.approx(
                largest / abs(link_starts[parameter.name])
            )

    def test_precedence(self, triangle_capture, triangle_detectors):
        parameters = self.resolve(
            triangle_capture,
            triangle_detectors,
            start_values={"g0": 0.5, "sigma": 3.0},
            fix={"g0": 0.8},
            phases={"sigma": 2},
            scale_factors={"sigma": 7.0},
        )
        by_name = {p.name: p for p in parameters}
        assert by_name["g0"].start == 0.8
        assert by_name["g0"].phase == FIXED_PHASE
        assert by_name["g0"].is_fixed
        assert by_name["sigma"].start == 3.0
        assert by_name["sigma"].phase == 2
        assert by_name["sigma"].scale_factor == 7.0

    @pytest.mark.parametrize(
        "names, start_values",
        [
            (("D", "shape", "scale"), {"shape": 1.5}),
            (("D", "shape1", "shape2", "scale"), {"shape1": 2.0}),
        ],
    )
    def test_partial_start_values(
        self, triangle_capture, triangle_detectors, names, start_values
    ):
        parameters = resolve_parameters(
            names,
            triangle_capture,
            triangle_detectors,
            total_area=100.0,
            esa=lambda params: 10.0,
            start_values=start_values,
        )
        by_name = {p.name: p for p in parameters}
        assert [p.name for p in parameters] == list(names)
        for name, value in start_values.items():
            assert by_name[name].start == value
        assert np.isfinite(by_name["scale"].start) and by_name["scale"].start > 0

    def test_unknown_names_dropped_with_warning(
        self, triangle_capture, triangle_detectors
    ):
        with pytest.warns(UserWarning, match="kappa"):
            parameters = self.resolve(
                triangle_capture, triangle_detectors, start_values={"kappa": 10.0}
            )
        assert "kappa" not in [p.name for p in parameters]

    def test_start_outside_bounds(self, triangle_capture, triangle_detectors):
        with pytest.raises(ConfigurationError, match="sigma"):
            self.resolve(
                triangle_capture,
                triangle_detectors,
                start_values={"sigma": 50.0},
                bounds={"sigma": (1.0, 10.0)},
            )

    def test_malformed_bounds(self, triangle_capture, triangle_detectors):
        with pytest.raises(ConfigurationError, match="lower < upper"):
            self.resolve(
                triangle_capture, triangle_detectors, bounds={"sigma": (10.0, 1.0)}
            )

    def test_start_on_link_boundary(self, triangle_capture, triangle_detectors):
        with pytest.raises(ConfigurationError, match="g0"):
            self.resolve(
                triangle_capture, triangle_detectors, start_values={"g0": 1.0}
            )

    def test_density_bounds(self):
        assert default_bounds("D", 10, 1000.0) == (0.01, 1e8)
        assert default_bounds("kappa", 10, 1000.0) == (0.0, 700.0)
