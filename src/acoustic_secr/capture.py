"""Capture histories and their compression into unique detection patterns.

A capture history maps each information type to an array of shape
(n_detections, n_detectors). Only the binary component is compressed:
detections with identical binary patterns share one row of the
`UniquePatternTable`, while auxiliary measurements stay per detection.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from logging import getLogger

import numpy as np

from acoustic_secr._validation import (
    ensure_all_finite,
    ensure_all_non_negative,
    ensure_binary,
)
from acoustic_secr.exceptions import DataError

logger = getLogger(__name__)


class InfoType(str, Enum):
    """Types of information recorded for each detection."""

    BINARY = "binary"
    BEARING = "bearing"
    DISTANCE = "distance"
    SIGNAL_STRENGTH = "signal-strength"
    TIME_OF_ARRIVAL = "time-of-arrival"
    KNOWN_DISTANCE = "known-distance"


AUXILIARY_TYPES = (
    InfoType.BEARING,
    InfoType.DISTANCE,
    InfoType.SIGNAL_STRENGTH,
    InfoType.TIME_OF_ARRIVAL,
    InfoType.KNOWN_DISTANCE,
)


def _as_info_type(key: InfoType | str) -> InfoType:
    try:
        return InfoType(key)
    except ValueError:
        raise DataError(
            f"Unknown capture history component {key!r}",
            data_name=str(key),
            hint=f"Use one of {[t.value for t in InfoType]}",
        ) from None


class CaptureHistory(Mapping[InfoType, np.ndarray]):
    """Read-only collection of capture-history components.

    Parameters
    ----------
    components : Mapping[InfoType | str, array_like]
        Each value has shape (n_detections, n_detectors). A ``"binary"``
        component is required.

    Examples
    --------
    >>> capture = CaptureHistory({"binary": [[1, 0, 1]], "bearing": [[0.3, 0, 2.1]]})
    >>> capture.n_detections, capture.n_detectors
    (1, 3)
    """

    def __init__(self, components: Mapping[InfoType | str, np.ndarray]) -> None:
        data = {}
        for key, value in components.items():
            info_type = _as_info_type(key)
            arr = np.array(value, dtype=float)
            arr.setflags(write=False)
            data[info_type] = arr
        if InfoType.BINARY not in data:
            raise DataError(
                "The binary capture history must be provided",
                data_name="binary",
                hint='Include a "binary" component of 0s and 1s',
            )
        self._data = data

    def __getitem__(self, key: InfoType | str) -> np.ndarray:
        return self._data[_as_info_type(key)]

    def __iter__(self) -> Iterator[InfoType]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:  # pragma: no cover
        types = ", ".join(t.value for t in self._data)
        return (
            f"CaptureHistory(n_detections={self.n_detections}, "
            f"n_detectors={self.n_detectors}, types=[{types}])"
        )

    @property
    def binary(self) -> np.ndarray:
        return self._data[InfoType.BINARY]

    @property
    def n_detections(self) -> int:
        return self.binary.shape[0]

    @property
    def n_detectors(self) -> int:
        return self.binary.shape[1]

    @property
    def info_types(self) -> tuple[InfoType, ...]:
        """Auxiliary information types present, in canonical order."""
        return tuple(t for t in AUXILIARY_TYPES if t in self._data)

    def subset(self, rows: np.ndarray) -> "CaptureHistory":
        """New capture history restricted to `rows` (boolean or integer index)."""
        return CaptureHistory({key: value[rows] for key, value in self._data.items()})


def validate_capture_history(capture: CaptureHistory, n_detectors: int) -> None:
    """Check a capture history against the detector array.

    Parameters
    ----------
    capture : CaptureHistory
    n_detectors : int
        Number of detector locations.

    Raises
    ------
    DataError
        Naming the offending component, if any component is not
        two-dimensional, shapes differ between components, the column count
        does not match `n_detectors`, the binary component is not 0/1, a
        detection has no firing detector, or measurements are invalid.
    """
    binary = capture.binary
    for info_type, values in capture.items():
        if values.ndim != 2:
            raise DataError(
                f"Capture history component must be a 2-D array, got {values.ndim}-D",
                data_name=info_type.value,
            )
        if values.shape != binary.shape:
            raise DataError(
                f"Components of the capture history have different dimensions: "
                f"{values.shape} != binary {binary.shape}",
                data_name=info_type.value,
            )
        ensure_all_finite(values, info_type.value)

    if binary.shape[1] != n_detectors:
        raise DataError(
            f"There must be a detector location for each column of the capture "
            f"history: {binary.shape[1]} columns, {n_detectors} detectors",
            data_name="binary",
        )
    if binary.shape[0] == 0:
        raise DataError("Capture history contains no detections", data_name="binary")
    ensure_binary(binary, "binary")

    empty_rows = np.flatnonzero(binary.sum(axis=1) == 0)
    if empty_rows.size > 0:
        raise DataError(
            f"Detections {empty_rows[:10].tolist()} were not detected by any detector",
            data_name="binary",
            hint="Remove rows with no detections",
        )

    for info_type in (InfoType.DISTANCE, InfoType.KNOWN_DISTANCE):
        if info_type in capture:
            ensure_all_non_negative(capture[info_type], info_type.value)
    if InfoType.DISTANCE in capture and np.any(
        capture[InfoType.DISTANCE][binary == 1] <= 0
    ):
        raise DataError(
            "Recorded distances must be positive where a detection was made",
            data_name=InfoType.DISTANCE.value,
        )


def apply_signal_strength_cutoff(
    capture: CaptureHistory, cutoff: float
) -> CaptureHistory:
    """Remove detections whose received signal strength is below `cutoff`.

    Entries below the cutoff are zeroed in every component, and detections
    left without any firing detector are dropped.

    Parameters
    ----------
    capture : CaptureHistory
        Must contain a signal-strength component.
    cutoff : float

    Returns
    -------
    capture : CaptureHistory
    """
    signal_strength = capture[InfoType.SIGNAL_STRENGTH]
    below = (signal_strength < cutoff) & (capture.binary == 1)
    components = {}
    for info_type, values in capture.items():
        values = values.copy()
        values[below] = 0.0
        components[info_type] = values
    censored = CaptureHistory(components)

    keep = censored.binary.sum(axis=1) > 0
    n_removed = int(np.sum(~keep))
    if n_removed > 0:
        logger.info(
            f"{n_removed} capture history entries have no received signal "
            "strengths above the cutoff and have been removed."
        )
    return censored.subset(keep)


@dataclass(frozen=True)
class UniquePatternTable:
    """Compressed binary capture history.

    Attributes
    ----------
    patterns : np.ndarray, shape (n_unique, n_detectors)
        Distinct binary rows, in lexicographic order.
    frequencies : np.ndarray, shape (n_unique,)
        Number of detections sharing each pattern. Sums to n_detections.
    detection_index : np.ndarray, shape (n_detections,)
        Row of `patterns` for each original detection.
    """

    patterns: np.ndarray
    frequencies: np.ndarray
    detection_index: np.ndarray

    @property
    def n_unique(self) -> int:
        return self.patterns.shape[0]

    @property
    def n_detections(self) -> int:
        return int(self.frequencies.sum())

    def expand(self) -> np.ndarray:
        """Re-expand the table into one row per detection, grouped by pattern."""
        return np.repeat(self.patterns, self.frequencies, axis=0)


def compress_capture_history(binary: np.ndarray) -> UniquePatternTable:
    """Deduplicate rows of a binary capture history.

    Parameters
    ----------
    binary : np.ndarray, shape (n_detections, n_detectors)

    Returns
    -------
    table : UniquePatternTable
    """
    binary = np.asarray(binary)
    if binary.ndim != 2 or binary.shape[0] == 0:
        raise DataError(
            f"Cannot compress a capture history of shape {binary.shape}",
            data_name="binary",
        )
    patterns, detection_index, frequencies = np.unique(
        binary, axis=0, return_inverse=True, return_counts=True
    )
    for arr in (patterns, frequencies):
        arr.setflags(write=False)
    detection_index = detection_index.reshape(-1)
    detection_index.setflags(write=False)
    return UniquePatternTable(
        patterns=patterns,
        frequencies=frequencies,
        detection_index=detection_index,
    )
