"""Shared test fixtures and utilities for acoustic_secr tests.

This module provides:
1. Detector arrays and masks for common survey layouts
2. Small capture histories with hand-checkable likelihoods
3. Assertion helpers for validating location surfaces

Usage:
    pytest automatically discovers fixtures in conftest.py. Import assertion
    helpers explicitly if needed:

    from acoustic_secr.tests.conftest import assert_normalized_surface
"""

import numpy as np
import pytest

from acoustic_secr.capture import CaptureHistory
from acoustic_secr.mask import Mask, create_mask

# ==============================================================================
# DETECTOR AND MASK FIXTURES
# ==============================================================================


@pytest.fixture
def triangle_detectors():
    """Three detectors at (0, 0), (1, 0) and (0, 1)."""
    return np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]])


@pytest.fixture
def unit_grid_mask():
    """5x5 grid with x, y in {-1, ..., 3}, unit cell area, no buffer limit."""
    x, y = np.meshgrid(np.arange(-1.0, 4.0), np.arange(-1.0, 4.0), indexing="ij")
    return Mask(points=np.column_stack([x.ravel(), y.ravel()]), area=1.0)


@pytest.fixture
def square_detectors():
    """4x4 grid of detectors with 20 m spacing."""
    x, y = np.meshgrid(np.arange(4) * 20.0, np.arange(4) * 20.0, indexing="ij")
    return np.column_stack([x.ravel(), y.ravel()])


@pytest.fixture
def square_mask(square_detectors):
    """Mask extending 60 m beyond the square detector array."""
    return create_mask(square_detectors, buffer=60.0, spacing=5.0)


# ==============================================================================
# CAPTURE HISTORY FIXTURES
# ==============================================================================


@pytest.fixture
def triangle_capture():
    """Four detections at the triangle detectors, three unique patterns."""
    return CaptureHistory(
        {
            "binary": np.array(
                [[1, 1, 0], [1, 0, 1], [1, 1, 0], [1, 1, 1]], dtype=float
            )
        }
    )


@pytest.fixture
def triangulation_capture():
    """One call heard at all three triangle detectors, with bearings that
    point exactly at (1, 1)."""
    return CaptureHistory(
        {
            "binary": np.array([[1.0, 1.0, 1.0]]),
            "bearing": np.array([[np.pi / 4, 0.0, np.pi / 2]]),
        }
    )


# ==============================================================================
# ASSERTION HELPERS
# ==============================================================================


def assert_normalized_surface(surface, area, rtol=1e-10):
    """Every row of a location surface integrates to one over the grid."""
    values = np.asarray(surface)
    assert np.all(values >= 0), "Surface contains negative densities"
    assert np.all(np.isfinite(values)), "Surface contains non-finite densities"
    np.testing.assert_allclose(values.sum(axis=1) * area, 1.0, rtol=rtol)
