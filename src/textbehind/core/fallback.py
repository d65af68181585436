"""Heuristic subject segmentation used when the external segmenter fails.

A degraded-mode substitute, not a quality match for a matting model. It
assumes the subject sits near the centre of the frame and is neither
near-black nor blown out:

* **Pass 1** marks a pixel when its centre weight
  ``1 - dist(pixel, centre) / dist(corner, centre)`` exceeds 0.2, its mean
  brightness lies strictly between 30 and 220, and ``R + G + B > 90``.
* **Pass 2** is a 3×3 majority vote over interior pixels: a mark survives
  only if at least 5 of the 9 cells around it (itself included) are marked.
  Unmarked pixels never become marked, border pixels are cleared.

The output is a binary ``SubjectMask``: ``(255, 255, 255, 255)`` for subject
pixels and ``(0, 0, 0, 0)`` elsewhere.
"""

from __future__ import annotations

import logging

import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)

_CENTER_WEIGHT_MIN = 0.2
_BRIGHTNESS_MIN = 30.0
_BRIGHTNESS_MAX = 220.0
_CHANNEL_SUM_MIN = 90
_MAJORITY = 5


def _first_pass(rgb: np.ndarray) -> np.ndarray:
    """Centre-weight and brightness heuristic. Returns a boolean mask."""
    height, width = rgb.shape[:2]
    center_x = width / 2
    center_y = height / 2
    max_distance = np.hypot(center_x, center_y)

    ys, xs = np.mgrid[0:height, 0:width]
    distance = np.hypot(xs - center_x, ys - center_y)
    center_weight = 1.0 - distance / max_distance

    channel_sum = rgb.astype(np.int32).sum(axis=2)
    brightness = channel_sum / 3.0

    return (
        (center_weight > _CENTER_WEIGHT_MIN)
        & (brightness > _BRIGHTNESS_MIN)
        & (brightness < _BRIGHTNESS_MAX)
        & (channel_sum > _CHANNEL_SUM_MIN)
    )


def _majority_vote(marked: np.ndarray) -> np.ndarray:
    """Keep interior marks with at least five marked cells in their 3×3 window."""
    height, width = marked.shape
    smoothed = np.zeros_like(marked)
    if height < 3 or width < 3:
        return smoothed

    as_int = marked.astype(np.uint8)
    counts = np.zeros((height - 2, width - 2), dtype=np.uint8)
    for dy in range(3):
        for dx in range(3):
            counts += as_int[dy : dy + height - 2, dx : dx + width - 2]

    interior = marked[1:-1, 1:-1]
    smoothed[1:-1, 1:-1] = interior & (counts >= _MAJORITY)
    return smoothed


def fallback_passes(image: Image.Image) -> tuple[np.ndarray, np.ndarray]:
    """Run both passes and return their boolean masks ``(pass1, pass2)``.

    Args:
        image: Source image (any mode; converted to RGB).

    Returns:
        Two ``(H, W)`` boolean arrays.
    """
    rgb = np.asarray(image.convert("RGB"))
    first = _first_pass(rgb)
    return first, _majority_vote(first)


def fallback_segment(image: Image.Image) -> Image.Image:
    """Compute a binary subject mask from pixel statistics alone.

    Deterministic: the same input always yields a byte-identical mask.

    Args:
        image: Optimized source image.

    Returns:
        An RGBA ``SubjectMask`` the size of *image*.
    """
    first, smoothed = fallback_passes(image)
    height, width = smoothed.shape

    mask = np.zeros((height, width, 4), dtype=np.uint8)
    mask[smoothed] = 255

    logger.info(
        "Fallback mask created: %d subject pixels (%d before smoothing) of %d",
        int(smoothed.sum()),
        int(first.sum()),
        height * width,
    )
    return Image.fromarray(mask)
