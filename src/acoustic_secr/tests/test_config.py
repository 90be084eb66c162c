"""Tests for model configuration and resolution."""

import numpy as np
import pytest

from acoustic_secr.capture import CaptureHistory, InfoType
from acoustic_secr.config import ModelConfig, SignalStrengthOptions, resolve_model
from acoustic_secr.detection_functions import DetectionFunction
from acoustic_secr.exceptions import ConfigurationError


@pytest.fixture
def ss_capture():
    return CaptureHistory(
        {
            "binary": np.array([[1.0, 1.0], [1.0, 0.0]]),
            "signal-strength": np.array([[150.0, 140.0], [145.0, 0.0]]),
        }
    )


@pytest.mark.unit
class TestSignalStrengthOptions:
    def test_defaults(self):
        options = SignalStrengthOptions(cutoff=130.0)
        assert options.link == "identity"
        assert options.het_source_method == "GH"
        assert options.n_dir_quadpoints == 8
        assert options.n_het_source_quadpoints == 15

    def test_lower_cutoff_must_be_below_cutoff(self):
        with pytest.raises(ConfigurationError, match="less than"):
            SignalStrengthOptions(cutoff=130.0, lower_cutoff=140.0)

    def test_first_call_models_not_supported(self):
        with pytest.raises(ConfigurationError, match="First-call"):
            SignalStrengthOptions(cutoff=130.0, lower_cutoff=120.0)

    def test_directional_and_het_source(self):
        with pytest.raises(ConfigurationError, match="both directional"):
            SignalStrengthOptions(cutoff=130.0, directional=True, het_source=True)

    def test_het_source_needs_identity_link(self):
        with pytest.raises(ConfigurationError, match="identity"):
            SignalStrengthOptions(cutoff=130.0, link="log", het_source=True)

    def test_unknown_link(self):
        with pytest.raises(ConfigurationError, match="link"):
            SignalStrengthOptions(cutoff=130.0, link="cubic")

    def test_quadrature_points(self):
        with pytest.raises(ConfigurationError, match="n_dir_quadpoints"):
            SignalStrengthOptions(cutoff=130.0, n_dir_quadpoints=0)


@pytest.mark.unit
class TestModelConfig:
    def test_string_detection_function(self):
        assert ModelConfig("hr").detection_function is DetectionFunction.HAZARD_RATE

    def test_unknown_detection_function(self):
        with pytest.raises(ConfigurationError, match="Unknown detection function"):
            ModelConfig("exponential")

    def test_sound_speed(self):
        with pytest.raises(ConfigurationError, match="sound_speed"):
            ModelConfig(sound_speed=0.0)


@pytest.mark.unit
class TestResolveModel:
    def test_default_half_normal(self, triangle_capture):
        model = resolve_model(ModelConfig(), triangle_capture)
        assert model.detection_function is DetectionFunction.HALF_NORMAL
        assert model.is_binary_only
        assert model.parameter_names == ("D", "g0", "sigma")

    def test_auxiliary_parameter_names(self):
        capture = CaptureHistory(
            {
                "binary": np.ones((1, 2)),
                "distance": np.ones((1, 2)),
                "bearing": np.ones((1, 2)),
            }
        )
        model = resolve_model(ModelConfig("hr"), capture)
        assert model.parameter_names == ("D", "g0", "sigma", "z", "kappa", "alpha")
        assert model.needs_bearings
        assert not model.is_binary_only

    def test_signal_strength_requires_options(self, ss_capture):
        with pytest.raises(ConfigurationError, match="cutoff"):
            resolve_model(ModelConfig(), ss_capture)

    def test_signal_strength_detection_requires_data(self, triangle_capture):
        with pytest.raises(ConfigurationError, match="requires signal strength data"):
            resolve_model(ModelConfig("ss"), triangle_capture)

    def test_detection_function_overridden_by_signal_strength(self, ss_capture):
        config = ModelConfig("hn", signal_strength=SignalStrengthOptions(cutoff=130.0))
        with pytest.warns(UserWarning, match="being ignored"):
            model = resolve_model(config, ss_capture)
        assert model.detection_function is DetectionFunction.SIGNAL_STRENGTH
        assert model.has_signal_strength
        assert not model.is_binary_only
        assert InfoType.SIGNAL_STRENGTH not in model.info_types

    def test_options_ignored_without_data(self, triangle_capture):
        config = ModelConfig(signal_strength=SignalStrengthOptions(cutoff=130.0))
        with pytest.warns(UserWarning, match="ignored"):
            model = resolve_model(config, triangle_capture)
        assert model.ss_model is None

    def test_homogeneous_non_directional_by_default(self, ss_capture):
        config = ModelConfig(signal_strength=SignalStrengthOptions(cutoff=130.0))
        model = resolve_model(config, ss_capture)
        assert not model.ss_model.directional
        assert not model.ss_model.het_source
        assert model.fix == {"b2_ss": 0.0, "sigma_b0_ss": 0.0}

    def test_directional_inferred_from_start_value(self, ss_capture):
        config = ModelConfig(signal_strength=SignalStrengthOptions(cutoff=130.0))
        model = resolve_model(config, ss_capture, start_values={"b2_ss": 1.0})
        assert model.ss_model.directional
        assert model.needs_bearings
        assert "b2_ss" not in model.fix
        assert model.start_values == {"b2_ss": 1.0}

    def test_het_source_inferred_from_fix(self, ss_capture):
        config = ModelConfig(signal_strength=SignalStrengthOptions(cutoff=130.0))
        model = resolve_model(config, ss_capture, fix={"sigma_b0_ss": 2.0})
        assert model.ss_model.het_source
        assert model.ss_model.n_nodes == 15

    def test_ignored_directional_value_warns(self, ss_capture):
        config = ModelConfig(
            signal_strength=SignalStrengthOptions(cutoff=130.0, directional=False)
        )
        with pytest.warns(UserWarning, match="b2_ss"):
            model = resolve_model(config, ss_capture, start_values={"b2_ss": 1.0})
        assert model.fix["b2_ss"] == 0.0
        assert "b2_ss" not in model.start_values

    def test_fixing_b2_at_zero_turns_off_directional(self, ss_capture):
        config = ModelConfig(
            signal_strength=SignalStrengthOptions(cutoff=130.0, directional=True)
        )
        model = resolve_model(config, ss_capture, fix={"b2_ss": 0.0})
        assert not model.ss_model.directional

    def test_inferred_directional_and_het_source(self, ss_capture):
        config = ModelConfig(signal_strength=SignalStrengthOptions(cutoff=130.0))
        with pytest.raises(ConfigurationError, match="both directional"):
            resolve_model(
                config, ss_capture, start_values={"b2_ss": 1.0, "sigma_b0_ss": 1.0}
            )

    def test_known_distance_alone_only(self):
        capture = CaptureHistory(
            {
                "binary": np.ones((1, 2)),
                "known-distance": np.ones((1, 2)),
                "bearing": np.ones((1, 2)),
            }
        )
        with pytest.raises(ConfigurationError, match="Known distances"):
            resolve_model(ModelConfig(), capture)

    def test_known_distance(self):
        capture = CaptureHistory(
            {"binary": np.ones((1, 2)), "known-distance": np.ones((1, 2))}
        )
        model = resolve_model(ModelConfig(), capture)
        assert model.is_known_distance
        assert model.parameter_names == ("D", "g0", "sigma")
