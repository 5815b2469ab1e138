"""
Horizon Detection Pipeline - Pre-processing and Line Detection
===============================================================
This module contains the first part of the pipeline:
1. Parameters (single source of truth) and YAML config loading
2. Intensity conversion and smoothing
3. Adaptive brightness threshold
4. Edge Detection (Canny)
5. Line Detection (Hough Transform) and horizon line filtering

Everything after Hough is in line_detection.py
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import cv2
import numpy as np
import yaml

logger = logging.getLogger(__name__)


# ============================================================
#              HORIZON DEFAULTS (SINGLE SOURCE OF TRUTH)
# ============================================================

@dataclass(frozen=True)
class HorizonDefaults:
    """Default parameters for horizon detection and tracking.

    Notes:
    - Ratios are in [0, 1] of the frame height/width.
    - Pixel distances are in pixels, angles in radians.
    - Colors are BGR.
    """

    # Smoothing
    dilate_iterations: int = 1
    blur_kernel: int = 9
    erode_iterations: int = 1
    use_morphology: bool = True

    # Region of interest (fraction of rows kept from the top)
    roi_height_ratio: float = 1.0

    # Brightness band (top strip is reserved for the on-screen timeline)
    mean_band_top_px: int = 40
    mean_band_height_ratio: float = 0.2
    threshold_ratio: float = 0.9

    # Bright sky / glare damping (region strategy)
    bright_mean_levels: Tuple[float, float] = (170.0, 210.0)
    bright_multipliers: Tuple[float, float] = (0.9, 0.8)

    # Canny
    canny_low: int = 100
    canny_high: int = 200
    canny_aperture: int = 3
    canny_l2gradient: bool = True

    # Hough
    hough_rho: float = 1.0
    hough_theta: float = np.pi / 180.0
    hough_threshold: int = 150

    # Horizon line filter
    max_angle_deviation: float = np.pi / 32.0
    min_offset_ratio: float = 0.2
    max_offset_ratio: float = 0.5

    # Clustering / tracking
    cluster_distance_px: float = 30.0
    history_size: int = 20

    # Projection guard: keep the angle this far from 0 and pi
    min_angle: float = 1e-3

    # Region strategy
    left_margin_ratio: float = 0.2

    # Overlay
    line_color: Tuple[int, int, int] = (0, 0, 255)
    line_thickness: int = 1
    region_color: Tuple[int, int, int] = (255, 160, 0)
    region_alpha: float = 0.35


def get_horizon_defaults() -> HorizonDefaults:
    """Return default horizon parameters."""
    return HorizonDefaults()


def resolve_horizon_params(overrides: Optional[Dict[str, Any]] = None) -> HorizonDefaults:
    """
    Return defaults with optional overrides applied.

    Unknown keys are reported and skipped, None values keep the default.

    Args:
        overrides: Optional dictionary of parameter overrides

    Returns:
        HorizonDefaults: Parameter dataclass with overrides applied

    Example:
        params = resolve_horizon_params({"cluster_distance_px": 20.0})
    """
    base = get_horizon_defaults()
    if not overrides:
        return base

    data = base.__dict__.copy()
    for k, v in overrides.items():
        if k not in data:
            logger.warning("Ignoring unknown horizon parameter: %s", k)
            continue
        if v is None:
            continue
        if isinstance(data[k], tuple) and isinstance(v, list):
            v = tuple(v)
        data[k] = v
    return HorizonDefaults(**data)


def load_horizon_params(path: str, overrides: Optional[Dict[str, Any]] = None) -> HorizonDefaults:
    """
    Load parameters from a YAML file, then apply explicit overrides on top.

    Args:
        path: YAML file holding a flat mapping of HorizonDefaults fields
        overrides: Optional overrides that win over the file (e.g. CLI flags)

    Returns:
        HorizonDefaults: Resolved parameters
    """
    with open(path, "r") as f:
        user_config = yaml.safe_load(f) or {}

    if not isinstance(user_config, dict):
        raise ValueError(f"Config file {path} must contain a mapping, got {type(user_config).__name__}")

    merged = dict(user_config)
    for k, v in (overrides or {}).items():
        if v is not None:
            merged[k] = v

    logger.info("Loaded horizon config from %s (%d keys)", path, len(user_config))
    return resolve_horizon_params(merged)


# ============================================================
#                1. INTENSITY & SMOOTHING
# ============================================================

def to_intensity(frame):
    """
    Convert a frame to a single-channel intensity image.

    Args:
        frame: BGR image (H x W x 3) or grayscale image (H x W)

    Returns:
        gray: uint8 grayscale image (a new array)
    """
    if frame is None or frame.size == 0:
        raise ValueError("Cannot process an empty frame")

    if frame.ndim == 2:
        return frame.copy()
    return cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)


def to_bgr(frame):
    """Copy of the frame as 3-channel BGR (grayscale input is expanded) for drawing."""
    if frame.ndim == 2:
        return cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
    return frame.copy()


def smooth_intensity(gray, params: HorizonDefaults):
    """
    Suppress small-scale texture (waves, foam) while keeping the dominant edge.

    dilate -> box blur -> erode, or box blur alone when use_morphology is off.

    Args:
        gray: Grayscale image
        params: Horizon parameters

    Returns:
        smoothed: Filtered grayscale image
    """
    k = max(1, int(params.blur_kernel))
    if not params.use_morphology:
        return cv2.blur(gray, (k, k))

    out = cv2.dilate(gray, None, iterations=int(params.dilate_iterations))
    out = cv2.blur(out, (k, k))
    out = cv2.erode(out, None, iterations=int(params.erode_iterations))
    return out


def apply_upper_roi(gray, roi_height_ratio=1.0):
    """
    Keep only the upper part of the frame, where the horizon is assumed to be.

    Row coordinates are unchanged, so offsets measured on the ROI are valid
    on the full frame.

    Args:
        gray: Grayscale image
        roi_height_ratio: Fraction of rows kept from the top (0-1]

    Returns:
        roi: View of the top rows
    """
    h = gray.shape[0]
    rows = int(round(h * float(roi_height_ratio)))
    rows = max(1, min(h, rows))
    return gray[:rows]


# ============================================================
#                2. ADAPTIVE BRIGHTNESS THRESHOLD
# ============================================================

def mean_band_intensity(gray, params: HorizonDefaults) -> float:
    """
    Mean intensity over the horizontal band used to calibrate the threshold.

    The band starts below the reserved top strip and spans
    mean_band_height_ratio of the frame height. It is clipped to the frame;
    when nothing is left the whole frame is used.

    Args:
        gray: Grayscale image
        params: Horizon parameters

    Returns:
        mean: Mean intensity of the band
    """
    h = gray.shape[0]
    top = max(0, int(params.mean_band_top_px))
    bottom = min(h, top + int(h * float(params.mean_band_height_ratio)))

    band = gray[top:bottom]
    if band.size == 0:
        band = gray
    return float(np.mean(band))


def compute_brightness_threshold(gray, params: HorizonDefaults, damp_bright=False) -> float:
    """
    Derive the binary threshold from the band mean.

    With damp_bright the threshold is lowered further on bright sky/glare:
    the upper level applies the stronger multiplier, the lower level the
    weaker one.

    Args:
        gray: Grayscale image (already smoothed)
        params: Horizon parameters
        damp_bright: Apply the tiered bright-sky multipliers

    Returns:
        threshold: Intensity threshold
    """
    mean = mean_band_intensity(gray, params)
    threshold = mean * float(params.threshold_ratio)

    if damp_bright:
        low_level, high_level = params.bright_mean_levels
        weak, strong = params.bright_multipliers
        if mean > high_level:
            threshold *= strong
        elif mean > low_level:
            threshold *= weak

    return threshold


def preprocess_frame(frame, params: HorizonDefaults, damp_bright=False):
    """
    Normalize a raw frame for edge/contour analysis.

    Args:
        frame: BGR or grayscale frame
        params: Horizon parameters
        damp_bright: Threshold policy (see compute_brightness_threshold)

    Returns:
        gray: Filtered single-channel image (ROI applied)
        threshold: Brightness threshold
    """
    gray = to_intensity(frame)
    gray = smooth_intensity(gray, params)
    # band is a fraction of the full frame height, so measure it before cropping
    threshold = compute_brightness_threshold(gray, params, damp_bright=damp_bright)
    gray = apply_upper_roi(gray, params.roi_height_ratio)
    return gray, threshold


# ============================================================
#                3. EDGE DETECTION (CANNY)
# ============================================================

def apply_canny(gray, threshold, params: HorizonDefaults):
    """
    Binarize at the brightness threshold, then extract edges.

    Args:
        gray: Filtered grayscale image
        threshold: Brightness threshold
        params: Horizon parameters

    Returns:
        edges: Binary edge map (255 = edge, 0 = no edge)
    """
    _, binary = cv2.threshold(gray, float(threshold), 255, cv2.THRESH_BINARY)
    edges = cv2.Canny(
        binary,
        int(params.canny_low),
        int(params.canny_high),
        apertureSize=int(params.canny_aperture),
        L2gradient=bool(params.canny_l2gradient),
    )
    return edges


# ============================================================
#                4. LINE DETECTION (HOUGH TRANSFORM)
# ============================================================

def detect_lines_hough(edges, params: HorizonDefaults):
    """
    Detect infinite lines using the Standard Hough Transform.

    Args:
        edges: Binary edge map from Canny detection
        params: Horizon parameters

    Returns:
        lines: float array of shape (N, 2) with (rho, theta) rows, (0, 2) if none
    """
    lines = cv2.HoughLines(
        edges,
        float(params.hough_rho),
        float(params.hough_theta),
        int(params.hough_threshold),
    )
    if lines is None:
        return np.empty((0, 2), dtype=np.float64)
    return lines.reshape(-1, 2).astype(np.float64)


def filter_horizon_lines(lines, frame_height, params: HorizonDefaults):
    """
    Keep near-horizontal lines inside the plausible vertical band.

    Args:
        lines: (N, 2) array of (rho, theta)
        frame_height: Full frame height in pixels
        params: Horizon parameters

    Returns:
        kept: (M, 2) array of the lines that pass
    """
    lines = np.asarray(lines, dtype=np.float64).reshape(-1, 2)
    if len(lines) == 0:
        return lines

    rho = lines[:, 0]
    theta = lines[:, 1]
    keep = (
        (np.abs(np.pi / 2.0 - theta) <= float(params.max_angle_deviation))
        & (rho >= frame_height * float(params.min_offset_ratio))
        & (rho <= frame_height * float(params.max_offset_ratio))
    )
    return lines[keep]


def detect_horizon_lines(gray, threshold, frame_height, params: HorizonDefaults):
    """Canny -> Hough -> horizon filter in one call."""
    edges = apply_canny(gray, threshold, params)
    lines = detect_lines_hough(edges, params)
    return filter_horizon_lines(lines, frame_height, params)


# ============================================================
#                5. FEATURE EXTRACTION STRATEGY
# ============================================================

class FeatureExtractor(ABC):
    """Base class for per-frame candidate extraction strategies."""

    # Threshold policy the preprocessor should use for this strategy
    damp_bright = False

    def __init__(self, params: Optional[HorizonDefaults] = None):
        self.params = params or get_horizon_defaults()

    @abstractmethod
    def extract(self, gray, threshold, frame_height: Optional[int] = None) -> List[Any]:
        """Turn a preprocessed frame into horizon candidates.

        Args:
            gray: Filtered grayscale image from preprocess_frame
            threshold: Brightness threshold from preprocess_frame
            frame_height: Full frame height (defaults to gray's height)

        Returns:
            List of candidates, possibly empty
        """
        pass
