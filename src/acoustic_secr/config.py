"""Model configuration and its resolution against the data.

`ModelConfig` and `SignalStrengthOptions` describe what the user asked for;
`resolve_model` reconciles that with the capture history and parameter
overrides, producing a `ResolvedModel` in which every variant is decided.
"""

from __future__ import annotations

import warnings
from collections.abc import Mapping
from dataclasses import dataclass, field
from logging import getLogger

from acoustic_secr.capture import CaptureHistory, InfoType
from acoustic_secr.detection_functions import DetectionFunction, SignalStrengthModel
from acoustic_secr.exceptions import ConfigurationError
from acoustic_secr.parameters import AUXILIARY_PARAMETERS

logger = getLogger(__name__)

SIGNAL_STRENGTH_LINKS = ("identity", "log", "spherical")
HET_SOURCE_METHODS = ("GH", "rect")


@dataclass(frozen=True)
class SignalStrengthOptions:
    """Options for signal-strength detection models.

    Attributes
    ----------
    cutoff : float
        Signal strengths below the cutoff are not recorded.
    link : {"identity", "log", "spherical"}, default="identity"
    lower_cutoff : float, optional
        Lower cutoff for first-call models, where only the first call of a
        sequence above `cutoff` is recorded and later calls need only
        exceed `lower_cutoff`. Known gap: these models are not implemented,
        so setting it raises a ConfigurationError once it has been checked
        against `cutoff`.
    directional : bool, optional
        Directional calling. If None, used only when ``b2_ss`` is given a
        start value or fixed.
    het_source : bool, optional
        Heterogeneous source strength. If None, used only when
        ``sigma_b0_ss`` is given a start value or fixed.
    het_source_method : {"GH", "rect"}, default="GH"
    n_dir_quadpoints : int, default=8
    n_het_source_quadpoints : int, default=15

    Examples
    --------
    >>> SignalStrengthOptions(cutoff=130.0).link
    'identity'
    """

    cutoff: float
    link: str = "identity"
    lower_cutoff: float | None = None
    directional: bool | None = None
    het_source: bool | None = None
    het_source_method: str = "GH"
    n_dir_quadpoints: int = 8
    n_het_source_quadpoints: int = 15

    def __post_init__(self) -> None:
        if self.link not in SIGNAL_STRENGTH_LINKS:
            raise ConfigurationError(
                f"Signal strength link must be one of {SIGNAL_STRENGTH_LINKS}, "
                f"got {self.link!r}"
            )
        if self.het_source_method not in HET_SOURCE_METHODS:
            raise ConfigurationError(
                f"het_source_method must be one of {HET_SOURCE_METHODS}, "
                f"got {self.het_source_method!r}"
            )
        for name in ("n_dir_quadpoints", "n_het_source_quadpoints"):
            if getattr(self, name) < 1:
                raise ConfigurationError(
                    f"{name} must be at least 1, got {getattr(self, name)}"
                )
        if self.lower_cutoff is not None:
            if self.lower_cutoff >= self.cutoff:
                raise ConfigurationError(
                    f"lower_cutoff ({self.lower_cutoff}) must be less than "
                    f"cutoff ({self.cutoff})"
                )
            raise ConfigurationError(
                "First-call models (lower_cutoff) are not supported",
                hint="Remove lower_cutoff to fit a standard signal strength model",
            )
        if self.directional and self.het_source:
            raise ConfigurationError(
                "Models with both directional calling and heterogeneous source "
                "strengths are not supported"
            )
        if self.het_source and self.link != "identity":
            raise ConfigurationError(
                "Heterogeneous source strength models are only implemented for "
                'link = "identity"'
            )


@dataclass(frozen=True)
class ModelConfig:
    """User-facing model configuration.

    Attributes
    ----------
    detection_function : DetectionFunction or str, optional
        One of "hn", "hr", "th", "lth", "ss". Defaults to "hn", or to "ss"
        when signal strengths are recorded.
    signal_strength : SignalStrengthOptions, optional
        Required when the capture history contains signal strengths.
    sound_speed : float, default=330.0
        Speed of sound, used with times of arrival.
    local : bool, default=False
        Integrate each detection only over grid points near the detectors
        that fired.
    """

    detection_function: DetectionFunction | str | None = None
    signal_strength: SignalStrengthOptions | None = None
    sound_speed: float = 330.0
    local: bool = False

    def __post_init__(self) -> None:
        if self.detection_function is not None:
            try:
                detection_function = DetectionFunction(self.detection_function)
            except ValueError:
                raise ConfigurationError(
                    f"Unknown detection function {self.detection_function!r}",
                    hint=f"Use one of {[d.value for d in DetectionFunction]}",
                ) from None
            object.__setattr__(self, "detection_function", detection_function)
        if not self.sound_speed > 0:
            raise ConfigurationError(
                f"sound_speed must be positive, got {self.sound_speed}"
            )


@dataclass(frozen=True)
class ResolvedModel:
    """A fully determined model.

    Attributes
    ----------
    detection_function : DetectionFunction
    info_types : tuple[InfoType, ...]
        Auxiliary information used in the likelihood, other than signal
        strength, which is carried by `ss_model`.
    ss_model : SignalStrengthModel or None
    sound_speed : float
    local : bool
    start_values, fix : dict[str, float]
        Parameter overrides after directional and heterogeneous-source
        parameters have been reconciled with the model.
    """

    detection_function: DetectionFunction
    info_types: tuple[InfoType, ...]
    ss_model: SignalStrengthModel | None
    sound_speed: float
    local: bool
    start_values: dict = field(default_factory=dict)
    fix: dict = field(default_factory=dict)

    @property
    def parameter_names(self) -> tuple[str, ...]:
        auxiliary = tuple(
            name for info_type, name in AUXILIARY_PARAMETERS.items()
            if info_type in self.info_types
        )
        return ("D", *self.detection_function.parameter_names, *auxiliary)

    @property
    def is_known_distance(self) -> bool:
        return InfoType.KNOWN_DISTANCE in self.info_types

    @property
    def has_signal_strength(self) -> bool:
        return self.ss_model is not None

    @property
    def is_binary_only(self) -> bool:
        """True if detections can be handled per unique binary pattern."""
        return not self.info_types and self.ss_model is None

    @property
    def needs_bearings(self) -> bool:
        return InfoType.BEARING in self.info_types or (
            self.ss_model is not None and self.ss_model.needs_bearings
        )

    @property
    def uses_time_of_arrival(self) -> bool:
        return InfoType.TIME_OF_ARRIVAL in self.info_types


def _resolve_nuisance_toggle(
    requested: bool | None,
    name: str,
    label: str,
    start_values: dict,
    fix: dict,
) -> bool:
    """Decide whether `name` is estimated and fix it at zero if it is not."""
    enabled = requested
    if enabled is None:
        enabled = name in start_values or name in fix
    if enabled and fix.get(name) == 0:
        enabled = False

    if not enabled:
        ignored = [
            overrides.pop(name)
            for overrides in (start_values, fix)
            if name in overrides
        ]
        if any(value != 0 for value in ignored):
            warnings.warn(
                f"As {label} is not being used, the values of parameter {name} in "
                "'start_values' and 'fix' are being ignored",
                UserWarning,
                stacklevel=3,
            )
        fix[name] = 0.0
    return enabled


def resolve_model(
    config: ModelConfig,
    capture: CaptureHistory,
    start_values: Mapping[str, float] | None = None,
    fix: Mapping[str, float] | None = None,
) -> ResolvedModel:
    """Decide every model variant from the configuration and the data.

    Parameters
    ----------
    config : ModelConfig
    capture : CaptureHistory
    start_values, fix : mapping, optional
        Parameter overrides. ``b2_ss`` and ``sigma_b0_ss`` switch on
        directional and heterogeneous-source models when the corresponding
        options are left as None.

    Returns
    -------
    model : ResolvedModel

    Raises
    ------
    ConfigurationError
        If the configuration contradicts itself or the data.
    """
    start_values = dict(start_values or {})
    fix = dict(fix or {})
    info_types = capture.info_types
    has_signal_strength = InfoType.SIGNAL_STRENGTH in info_types

    if InfoType.KNOWN_DISTANCE in info_types and len(info_types) > 1:
        raise ConfigurationError(
            "Known distances cannot be combined with other auxiliary information",
            hint="Remove the other components or the known-distance component",
        )

    detection_function = config.detection_function
    ss_model = None
    if has_signal_strength:
        options = config.signal_strength
        if options is None:
            raise ConfigurationError(
                "Signal strength data require a signal strength cutoff",
                hint="Pass signal_strength=SignalStrengthOptions(cutoff=...)",
            )
        if detection_function not in (None, DetectionFunction.SIGNAL_STRENGTH):
            warnings.warn(
                f"Detection function {detection_function.value!r} is being ignored as "
                "signal strength information is provided. A signal strength "
                "detection function is fitted instead.",
                UserWarning,
                stacklevel=2,
            )
        detection_function = DetectionFunction.SIGNAL_STRENGTH

        directional = _resolve_nuisance_toggle(
            options.directional, "b2_ss", "directional calling", start_values, fix
        )
        het_source = _resolve_nuisance_toggle(
            options.het_source,
            "sigma_b0_ss",
            "heterogeneous source strength",
            start_values,
            fix,
        )
        if directional and het_source:
            raise ConfigurationError(
                "Models with both directional calling and heterogeneous source "
                "strengths are not supported"
            )
        if het_source and options.link != "identity":
            raise ConfigurationError(
                "Heterogeneous source strength models are only implemented for "
                'link = "identity"'
            )
        ss_model = SignalStrengthModel(
            cutoff=float(options.cutoff),
            link=options.link,
            directional=directional,
            het_source=het_source,
            het_source_method=options.het_source_method,
            n_dir_quadpoints=options.n_dir_quadpoints,
            n_het_source_quadpoints=options.n_het_source_quadpoints,
        )
        info_types = tuple(t for t in info_types if t is not InfoType.SIGNAL_STRENGTH)
    else:
        if detection_function is DetectionFunction.SIGNAL_STRENGTH:
            raise ConfigurationError(
                "A signal strength detection function requires signal strength data",
                hint='Add a "signal-strength" component to the capture history',
            )
        if config.signal_strength is not None:
            warnings.warn(
                "Signal strength options are being ignored as no signal strength "
                "information is provided.",
                UserWarning,
                stacklevel=2,
            )
        if detection_function is None:
            detection_function = DetectionFunction.HALF_NORMAL

    model = ResolvedModel(
        detection_function=detection_function,
        info_types=info_types,
        ss_model=ss_model,
        sound_speed=float(config.sound_speed),
        local=config.local,
        start_values=start_values,
        fix=fix,
    )
    logger.info(
        f"Model: detection function {model.detection_function.value}, "
        f"information types {[t.value for t in model.info_types]}"
    )
    return model
