import jax

# likelihood surfaces span hundreds of orders of magnitude
jax.config.update("jax_enable_x64", True)

from acoustic_secr.capture import (  # noqa: E402
    CaptureHistory,
    InfoType,
    compress_capture_history,
)
from acoustic_secr.config import ModelConfig, SignalStrengthOptions  # noqa: E402
from acoustic_secr.detection_functions import DetectionFunction  # noqa: E402
from acoustic_secr.fit import FitResult, fit  # noqa: E402
from acoustic_secr.likelihood import (  # noqa: E402
    FitContext,
    build_context,
    detection_log_densities,
    evaluate,
)
from acoustic_secr.locations import (  # noqa: E402
    contained_probability_levels,
    estimated_location,
    posterior_surface,
    posterior_surfaces,
)
from acoustic_secr.mask import Mask, create_mask  # noqa: E402
from acoustic_secr.simulate import simulate_capture_history  # noqa: E402

try:
    from ._version import __version__
except ImportError:
    pass
