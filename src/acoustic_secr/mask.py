"""Finite grids (masks) approximating the region animals can occupy."""

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray
from scipy.spatial import KDTree

from acoustic_secr._validation import ensure_coordinates, ensure_positive_scalar


def get_centers(bin_edges: NDArray[np.float64]) -> NDArray[np.float64]:
    """Calculate the center of each bin given its edges.

    Parameters
    ----------
    bin_edges : NDArray[np.float64], shape (n_edges,)

    Returns
    -------
    NDArray[np.float64], shape (n_edges - 1,)
    """
    return bin_edges[:-1] + np.diff(bin_edges) / 2


@dataclass(frozen=True)
class Mask:
    """Grid points used to integrate over unobserved animal locations.

    Attributes
    ----------
    points : np.ndarray, shape (n_points, 2)
        Grid point coordinates. Order is preserved.
    area : float
        Area of the cell each grid point represents.
    buffer : float
        Distance beyond which detection is assumed negligible. Used by the
        local integration selector.
    """

    points: np.ndarray
    area: float
    buffer: float = np.inf

    def __post_init__(self) -> None:
        points = ensure_coordinates(self.points, "mask points")
        points.setflags(write=False)
        object.__setattr__(self, "points", points)
        ensure_positive_scalar(self.area, "mask area")
        ensure_positive_scalar(self.buffer, "mask buffer", strict=False)
        object.__setattr__(self, "area", float(self.area))
        object.__setattr__(self, "buffer", float(self.buffer))

    @property
    def n_points(self) -> int:
        return self.points.shape[0]

    @property
    def total_area(self) -> float:
        return self.area * self.n_points

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"Mask(n_points={self.n_points}, area={self.area}, buffer={self.buffer})"
        )


def create_mask(detectors: np.ndarray, buffer: float, spacing: float) -> Mask:
    """Regular grid of points within `buffer` of at least one detector.

    The grid covers the bounding box of the detectors extended by `buffer`
    in every direction, with points at the centres of square cells of side
    `spacing`.

    Parameters
    ----------
    detectors : np.ndarray, shape (n_detectors, 2)
    buffer : float
        Maximum distance from the nearest detector.
    spacing : float
        Distance between neighbouring grid points.

    Returns
    -------
    mask : Mask
        Cell area is ``spacing ** 2``.
    """
    detectors = ensure_coordinates(detectors, "detectors")
    ensure_positive_scalar(buffer, "buffer")
    ensure_positive_scalar(spacing, "spacing")

    lower = detectors.min(axis=0) - buffer
    upper = detectors.max(axis=0) + buffer
    n_bins = np.maximum(np.ceil((upper - lower) / spacing).astype(int), 1)
    centers = [
        get_centers(low + spacing * np.arange(n + 1))
        for low, n in zip(lower, n_bins)
    ]
    grid_x, grid_y = np.meshgrid(*centers, indexing="ij")
    points = np.column_stack([grid_x.ravel(), grid_y.ravel()])

    nearest_distance, _ = KDTree(detectors).query(points)
    return Mask(points=points[nearest_distance <= buffer], area=spacing**2, buffer=buffer)
