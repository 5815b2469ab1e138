"""
Skyline Contour Pipeline - Helper Library
==========================================
This module provides building blocks for region-based skyline detection.

The module includes:
1. Binary sky mask from the brightness threshold
2. External contour tracing sorted by area
3. Skyline contour selection (left margin rule)
4. Contour flattening into a fillable region capped at the top edge

Notes:
- Contours are handled as (N, 2) int32 arrays of (x, y) points; OpenCV's
  (N, 1, 2) layout is accepted everywhere and reshaped on entry.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

import cv2
import numpy as np


def _as_points(contour) -> np.ndarray:
    """Reshape a contour to (N, 2) int32."""
    return np.asarray(contour, dtype=np.int32).reshape(-1, 2)


# ============================================================
#                1. SKY MASK
# ============================================================

def threshold_mask(gray: np.ndarray, threshold: float) -> np.ndarray:
    """
    Binary sky mask: pixels brighter than the threshold become 255.

    Args:
        gray: Filtered grayscale image
        threshold: Brightness threshold

    Returns:
        mask: uint8 mask (255 = sky, 0 = land/sea)
    """
    _, mask = cv2.threshold(gray, float(threshold), 255, cv2.THRESH_BINARY)
    return mask


# ============================================================
#                2. CONTOURS
# ============================================================

def find_skyline_contours(mask: np.ndarray) -> List[np.ndarray]:
    """
    Trace external contours and sort them by descending area.

    Args:
        mask: Binary mask from threshold_mask

    Returns:
        contours: List of (N, 2) int32 point arrays, largest first
    """
    found = cv2.findContours(mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    # OpenCV 3 returns (image, contours, hierarchy), OpenCV 4 (contours, hierarchy)
    contours = found[0] if len(found) == 2 else found[1]

    contours = sorted(contours, key=cv2.contourArea, reverse=True)
    return [_as_points(c) for c in contours]


def select_skyline_contour(
    contours: Sequence[np.ndarray],
    frame_width: int,
    left_margin_ratio: float = 0.2,
) -> Optional[np.ndarray]:
    """
    Pick the sky/land separation contour.

    Walks the contours in the given (area) order and returns the first whose
    bounding box starts within the left margin of the frame.

    Args:
        contours: Contours sorted by descending area
        frame_width: Frame width in pixels
        left_margin_ratio: Left margin as a fraction of the width

    Returns:
        The selected contour, or None if no contour starts near the left edge
    """
    max_x = float(frame_width) * float(left_margin_ratio)
    for contour in contours:
        pts = _as_points(contour)
        if len(pts) == 0:
            continue
        x, _, _, _ = cv2.boundingRect(pts)
        if x <= max_x:
            return pts
    return None


# ============================================================
#                3. FLATTENING
# ============================================================

def _extreme_index(pts: np.ndarray, leftmost: bool) -> int:
    """Index of the extreme-left/right point; ties prefer the lower point (larger y)."""
    xs = pts[:, 0]
    target = xs.min() if leftmost else xs.max()
    idx = np.flatnonzero(xs == target)
    return int(idx[np.argmax(pts[idx, 1])])


def flatten_contour(contour) -> np.ndarray:
    """
    Reduce a closed contour to its boundary between the horizontal extrema.

    The boundary is walked forward in contour order from the extreme-left
    point to the extreme-right point (wrapping past the end of the sequence),
    and both ends are projected up to row 0. For OpenCV's external contours
    the forward walk from left to right follows the lower boundary.

    Args:
        contour: Closed polygon, (N, 2) or (N, 1, 2)

    Returns:
        path: (M, 2) int32 array starting at (x_left, 0) and ending at (x_right, 0)
    """
    pts = _as_points(contour)
    if len(pts) == 0:
        return pts

    left = _extreme_index(pts, leftmost=True)
    right = _extreme_index(pts, leftmost=False)

    if left <= right:
        boundary = pts[left:right + 1]
    else:
        boundary = np.vstack([pts[left:], pts[:right + 1]])

    x_left = pts[left, 0]
    x_right = pts[right, 0]
    return np.vstack([
        [[x_left, 0]],
        boundary,
        [[x_right, 0]],
    ]).astype(np.int32)


def skyline_from_mask(mask: np.ndarray, left_margin_ratio: float = 0.2) -> Optional[np.ndarray]:
    """Mask -> contours -> selection -> flattened path (None if nothing qualifies)."""
    contours = find_skyline_contours(mask)
    contour = select_skyline_contour(contours, mask.shape[1], left_margin_ratio)
    if contour is None:
        return None
    return flatten_contour(contour)
