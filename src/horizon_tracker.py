"""
Horizon Tracking and Temporal Smoothing
========================================
This module provides temporal tracking and smoothing for horizon detection.

Key features:
1. Cold start - fill the history with the best supported line of each frame
2. Steady tracking - follow the candidate nearest to the tracked horizon
3. Temporal Smoothing - the tracked horizon is the mean of the history window
4. Missing detections keep the previous estimate
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LineCandidate:
    """A near-horizontal line in polar form plus the number of raw detections behind it."""
    offset: float   # rho, distance from the image origin in pixels
    angle: float    # theta in radians, pi/2 for a horizontal line
    support: int = 1


@dataclass(frozen=True)
class TrackedState:
    """Current smoothed horizon estimate."""
    offset: float
    angle: float


class HorizonTracker:
    """
    Track the horizon line across frames using a fixed-size history.

    While the history is filling up (cold start) the most supported candidate
    of each frame is accepted. Once full, the candidate closest to the tracked
    offset is accepted and the oldest entry drops out.

    Args:
        history_size: Number of accepted candidates to average (default: 20)
    """

    def __init__(self, history_size=20):
        if int(history_size) < 1:
            raise ValueError("history_size must be at least 1")

        self.history_size = int(history_size)
        self._history = deque(maxlen=self.history_size)
        self._state: Optional[TrackedState] = None

    @property
    def state(self) -> Optional[TrackedState]:
        """Smoothed horizon, None until the first candidate is accepted."""
        return self._state

    @property
    def history(self):
        """Accepted candidates, oldest first."""
        return tuple(self._history)

    @property
    def is_cold_start(self):
        return len(self._history) < self.history_size

    def select_candidate(self, candidates: Sequence[LineCandidate]) -> Optional[LineCandidate]:
        """
        Pick this frame's representative.

        Ties keep the first candidate in iteration order.

        Args:
            candidates: Clustered candidates of the current frame

        Returns:
            The selected candidate, or None if there are none
        """
        if not candidates:
            return None

        if self.is_cold_start or self._state is None:
            best = candidates[0]
            for cand in candidates[1:]:
                if cand.support > best.support:
                    best = cand
            return best

        best = candidates[0]
        best_dist = abs(best.offset - self._state.offset)
        for cand in candidates[1:]:
            dist = abs(cand.offset - self._state.offset)
            if dist < best_dist:
                best, best_dist = cand, dist
        return best

    def update(self, candidates: Sequence[LineCandidate]) -> Optional[TrackedState]:
        """
        Update the tracker with one frame's candidates.

        Args:
            candidates: Clustered candidates (may be empty)

        Returns:
            The tracked state after the update (unchanged when no candidates)
        """
        chosen = self.select_candidate(candidates)
        if chosen is None:
            logger.debug("No horizon candidates, keeping previous state %s", self._state)
            return self._state

        self._history.append(chosen)
        self._state = self._smooth()
        return self._state

    def _smooth(self) -> TrackedState:
        """Average offset and angle over the history."""
        params = np.array([[c.offset, c.angle] for c in self._history], dtype=np.float64)
        offset, angle = params.mean(axis=0)
        return TrackedState(offset=float(offset), angle=float(angle))

    def reset(self):
        """Clear all history (useful when starting a new stream)."""
        self._history.clear()
        self._state = None


class ContourTracker:
    """
    Hold the last accepted skyline region.

    The region strategy emits its flattened contour directly; frames without
    a contour keep the previous one on screen.
    """

    def __init__(self):
        self._state = None

    @property
    def state(self):
        return self._state

    def update(self, candidates):
        if len(candidates) == 0:
            logger.debug("No skyline contour, keeping previous region")
            return self._state

        self._state = candidates[0]
        return self._state

    def reset(self):
        self._state = None
