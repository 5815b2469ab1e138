"""
Skyline Contour Detection - Region Strategy
============================================
Region-based alternative to the Hough line strategy.

Instead of a single line, the sky is segmented with the brightness threshold
and the skyline is the flattened upper region of the dominant contour. The
result is drawn as a translucent filled region with a thin boundary.

Notes:
- Uses the tiered bright-sky threshold damping from pipeline.py.
- Building blocks live in skyline_contour_pipeline.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import cv2
import numpy as np

from pipeline import FeatureExtractor, HorizonDefaults, get_horizon_defaults, to_bgr
from enhancements.skyline_contour_pipeline import threshold_mask, skyline_from_mask

logger = logging.getLogger(__name__)


class RegionExtractor(FeatureExtractor):
    """Extract the flattened skyline contour of a frame."""

    damp_bright = True

    def extract(self, gray, threshold, frame_height: Optional[int] = None) -> List[np.ndarray]:
        mask = threshold_mask(gray, threshold)
        path = skyline_from_mask(mask, self.params.left_margin_ratio)
        if path is None:
            logger.debug("No contour within the left margin (threshold=%.1f)", threshold)
            return []
        return [path]


def draw_skyline_region(frame: np.ndarray, path: np.ndarray,
                        params: Optional[HorizonDefaults] = None) -> np.ndarray:
    """
    Draw the skyline region as a filled overlay with an inverse-colored outline.

    The blend only touches pixels inside the filled path; everything else is
    the original frame.

    Args:
        frame: BGR or grayscale image (not modified)
        path: Flattened contour from flatten_contour
        params: Horizon parameters (color, alpha)

    Returns:
        result: New BGR image with the overlay
    """
    params = params or get_horizon_defaults()
    frame = to_bgr(frame)
    result = frame.copy()
    if path is None or len(path) < 3:
        return result

    pts = np.asarray(path, dtype=np.int32).reshape(-1, 1, 2)
    color = tuple(int(c) for c in params.region_color)
    inverse = tuple(255 - c for c in color)

    mask = np.zeros(frame.shape[:2], dtype=np.uint8)
    cv2.fillPoly(mask, [pts], 255)

    overlay = frame.copy()
    cv2.fillPoly(overlay, [pts], color)
    cv2.polylines(overlay, [pts], True, inverse, 1)

    alpha = float(params.region_alpha)
    blended = cv2.addWeighted(overlay, alpha, frame, 1.0 - alpha, 0)

    inside = mask > 0
    result[inside] = blended[inside]
    return result
