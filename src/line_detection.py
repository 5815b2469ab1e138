"""
Line Clustering, Horizon Tracking Pipeline, Drawing and Stream Processing
==========================================================================
This module handles everything after Hough line detection:
1. Cluster near-duplicate lines
2. Line extraction strategy
3. Project and draw the tracked horizon
4. Per-frame pipeline (preprocess -> extract -> track -> render)
5. Stream processing loop
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional

import cv2
import numpy as np

from pipeline import (
    FeatureExtractor,
    HorizonDefaults,
    get_horizon_defaults,
    preprocess_frame,
    to_bgr,
    detect_horizon_lines,
)
from horizon_tracker import LineCandidate, TrackedState, HorizonTracker, ContourTracker
from enhancements.skyline_contour import RegionExtractor, draw_skyline_region

logger = logging.getLogger(__name__)


# ============================================================
#              CLUSTER LINES
# ============================================================

def cluster_lines(lines, distance=30.0) -> List[LineCandidate]:
    """
    Merge near-duplicate Hough lines into weighted clusters.

    Two lines share a cluster if their offsets differ by less than `distance`,
    directly or through a chain of such lines (angle is not compared). On one
    axis that is the same as cutting the offset-sorted list wherever the gap
    reaches `distance`.

    Args:
        lines: (N, 2) array-like of (rho, theta)
        distance: Offset distance threshold in pixels

    Returns:
        clusters: One LineCandidate per cluster (mean offset, mean angle,
                  support = size), in ascending offset order
    """
    lines = np.asarray(lines, dtype=np.float64).reshape(-1, 2)
    if len(lines) == 0:
        return []

    order = np.argsort(lines[:, 0], kind="stable")
    lines = lines[order]

    # Start a new cluster wherever the gap to the previous offset is too big
    gaps = np.diff(lines[:, 0])
    labels = np.concatenate([[0], np.cumsum(gaps >= float(distance))])

    clusters = []
    for label in range(int(labels[-1]) + 1):
        members = lines[labels == label]
        clusters.append(LineCandidate(
            offset=float(members[:, 0].mean()),
            angle=float(members[:, 1].mean()),
            support=int(len(members)),
        ))
    return clusters


# ============================================================
#              LINE EXTRACTION STRATEGY
# ============================================================

class LineExtractor(FeatureExtractor):
    """Canny + Hough + horizon filter + clustering."""

    def extract(self, gray, threshold, frame_height: Optional[int] = None) -> List[LineCandidate]:
        height = gray.shape[0] if frame_height is None else int(frame_height)
        lines = detect_horizon_lines(gray, threshold, height, self.params)
        if len(lines) == 0:
            logger.debug("No horizon lines passed the filter (threshold=%.1f)", threshold)
            return []
        return cluster_lines(lines, self.params.cluster_distance_px)


# ============================================================
#              DRAWING & VISUALIZATION
# ============================================================

def line_endpoints(state: TrackedState, width, min_angle=1e-3):
    """
    Intersect the tracked (offset, angle) line with the left and right frame edges.

    The angle is clamped into [min_angle, pi - min_angle] so sin(angle) never
    reaches zero.

    Args:
        state: Tracked horizon
        width: Frame width in pixels
        min_angle: Minimum distance of the angle from 0 and pi

    Returns:
        p1, p2: (x, y) integer points at x = 0 and x = width
    """
    theta = min(max(float(state.angle), min_angle), math.pi - min_angle)
    r = float(state.offset)
    s = math.sin(theta)
    c = math.cos(theta)

    y1 = int(round(r / s))
    y2 = int(round((r - width * c) / s))
    return (0, y1), (int(width), y2)


def draw_horizon_line(frame, state: TrackedState, params: Optional[HorizonDefaults] = None):
    """
    Draw the tracked horizon across the full frame width.

    Args:
        frame: BGR or grayscale image (not modified)
        state: Tracked horizon
        params: Horizon parameters (color, thickness, angle guard)

    Returns:
        result: New image with the line drawn
    """
    params = params or get_horizon_defaults()
    result = to_bgr(frame)
    p1, p2 = line_endpoints(state, frame.shape[1], params.min_angle)
    cv2.line(result, p1, p2, tuple(int(c) for c in params.line_color), int(params.line_thickness))
    return result


def draw_horizon(frame, state, params: Optional[HorizonDefaults] = None):
    """Draw whatever the tracker emits: a line state or a skyline region."""
    if state is None:
        return to_bgr(frame)
    if isinstance(state, TrackedState):
        return draw_horizon_line(frame, state, params)
    return draw_skyline_region(frame, state, params)


# ============================================================
#              PER-FRAME PIPELINE
# ============================================================

@dataclass
class FrameResult:
    """Output of one pipeline step."""
    frame: np.ndarray          # Rendered frame (original + overlay)
    state: Any                 # Tracked horizon after this frame (None before the first detection)
    candidates: List[Any]      # Candidates extracted from this frame
    threshold: float           # Brightness threshold used
    updated: bool              # Whether the tracker accepted a candidate


class HorizonPipeline:
    """
    Preprocess -> extract -> track -> render, one frame at a time.

    One instance per stream; all cross-frame state lives in the tracker.

    Args:
        extractor: FeatureExtractor strategy
        tracker: HorizonTracker or ContourTracker
        params: Horizon parameters
    """

    def __init__(self, extractor: FeatureExtractor, tracker, params: Optional[HorizonDefaults] = None):
        self.params = params or get_horizon_defaults()
        self.extractor = extractor
        self.tracker = tracker
        self.frame_count = 0
        self.update_count = 0

    def process_frame(self, frame) -> FrameResult:
        """
        Run the full pipeline on one frame.

        Args:
            frame: BGR (or grayscale) frame

        Returns:
            FrameResult with the rendered frame and tracking info
        """
        gray, threshold = preprocess_frame(frame, self.params, damp_bright=self.extractor.damp_bright)
        candidates = self.extractor.extract(gray, threshold, frame_height=frame.shape[0])
        state = self.tracker.update(candidates)

        self.frame_count += 1
        updated = len(candidates) > 0
        if updated:
            self.update_count += 1

        rendered = draw_horizon(frame, state, self.params)
        return FrameResult(
            frame=rendered,
            state=state,
            candidates=list(candidates),
            threshold=threshold,
            updated=updated,
        )

    def reset(self):
        """Forget the tracked horizon (new stream)."""
        self.tracker.reset()
        self.frame_count = 0
        self.update_count = 0


def make_pipeline(mode="line", params: Optional[HorizonDefaults] = None) -> HorizonPipeline:
    """
    Build a pipeline for the given extraction strategy.

    Args:
        mode: "line" (Hough lines) or "region" (skyline contour)
        params: Horizon parameters (defaults if None)

    Returns:
        HorizonPipeline
    """
    params = params or get_horizon_defaults()
    if mode == "line":
        return HorizonPipeline(LineExtractor(params), HorizonTracker(params.history_size), params)
    if mode == "region":
        return HorizonPipeline(RegionExtractor(params), ContourTracker(), params)
    raise ValueError(f"Unknown mode: {mode!r} (expected 'line' or 'region')")


# ============================================================
#              STREAM PROCESSING
# ============================================================

@dataclass
class LoopControl:
    """Control flags checked by the stream loop between frames."""
    skip_delay: bool = False
    stop: bool = False

    def toggle_delay(self):
        self.skip_delay = not self.skip_delay
        return self.skip_delay

    def request_stop(self):
        self.stop = True


def process_stream(frames: Iterable,
                   pipeline: HorizonPipeline,
                   sink: Callable[[np.ndarray], None],
                   control: Optional[LoopControl] = None,
                   wait: Optional[Callable[[LoopControl], None]] = None) -> int:
    """
    Run the pipeline over a sequence of frames.

    The stop flag is checked once per frame boundary; a frame that has
    started is always finished and handed to the sink.

    Args:
        frames: Iterable of decoded frames (ends at end of stream)
        pipeline: HorizonPipeline for this stream
        sink: Called with each rendered frame
        control: Shared LoopControl (a fresh one if None)
        wait: Optional pacing/input hook called after each frame

    Returns:
        Number of frames processed
    """
    control = control or LoopControl()
    processed = 0

    for frame in frames:
        if control.stop:
            break

        result = pipeline.process_frame(frame)
        sink(result.frame)
        processed += 1

        if wait is not None:
            wait(control)
            if control.stop:
                break

    logger.info(
        "Stream finished: %d frames, %d with detections",
        processed, pipeline.update_count,
    )
    return processed
