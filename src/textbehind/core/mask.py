"""Subject raster ↔ subject mask conversion.

A subject mask keeps the subject raster's alpha *verbatim*: antialiased
edges (hair, fur, motion blur) keep their fractional alpha so that the
destination-out step in the compositor erases with a soft edge. Only the
RGB channels are normalised, to white for any pixel with ``alpha > 0`` and
to black otherwise.
"""

from __future__ import annotations

import numpy as np
from PIL import Image

from textbehind.errors import ImageProcessingError


def to_mask(subject: Image.Image) -> Image.Image:
    """Convert a subject-only raster into a ``SubjectMask``.

    Args:
        subject: RGBA raster whose alpha marks the subject.

    Returns:
        A new RGBA image: ``(255, 255, 255, a)`` where ``a > 0``,
        ``(0, 0, 0, 0)`` elsewhere.
    """
    alpha = np.asarray(subject.convert("RGBA"))[:, :, 3]

    mask = np.zeros(alpha.shape + (4,), dtype=np.uint8)
    mask[alpha > 0, :3] = 255
    mask[:, :, 3] = alpha
    return Image.fromarray(mask)


def apply_mask(image: Image.Image, mask: Image.Image) -> Image.Image:
    """Cut the subject out of *image* using the alpha channel of *mask*.

    Used when the subject raster has to be rebuilt from a mask, e.g. after
    the heuristic fallback.

    Args:
        image: Source image.
        mask: ``SubjectMask`` of the same size.

    Returns:
        A new RGBA image with the RGB of *image* and the alpha of *mask*.

    Raises:
        ImageProcessingError: If the sizes differ.
    """
    if image.size != mask.size:
        raise ImageProcessingError(
            f"Mask size {mask.size} does not match image size {image.size}",
            context="Mask application",
        )
    subject = image.convert("RGBA")
    subject.putalpha(mask.convert("RGBA").getchannel("A"))
    return subject
