"""Decoding uploads and encoding results.

This is the only module that touches encoded bytes. Everything past
``load_image`` works on decoded RGBA rasters.

Typical usage::

    from textbehind.core.image_io import export_png, load_image

    image = load_image(uploaded.getvalue(), uploaded.type)
    ...
    png = export_png(output)
"""

from __future__ import annotations

import io
import logging

from PIL import Image, ImageOps, UnidentifiedImageError

from textbehind.core.validation import validate_image_size
from textbehind.errors import CanvasError, InvalidImageError, MemoryLimitError
from textbehind.schemas import (
    DEFAULT_OPTIMIZATION_CONFIG,
    ImageDimensions,
    OptimizationConfig,
)

logger = logging.getLogger(__name__)

_MB = 1024 * 1024


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def load_image(
    data: bytes,
    mime_type: str,
    config: OptimizationConfig = DEFAULT_OPTIMIZATION_CONFIG,
) -> Image.Image:
    """Decode uploaded bytes into an RGBA raster.

    EXIF orientation is applied so the raster matches what the user sees.
    Size advisories from ``validate_image_size`` are logged, not raised;
    only an upload above ``config.max_file_size`` is rejected outright.

    Args:
        data: Encoded image bytes.
        mime_type: Declared content type, e.g. ``"image/png"``.
        config: Thresholds for the current device tier.

    Returns:
        A new RGBA image.

    Raises:
        InvalidImageError: If the MIME type is not an image type, the bytes
            cannot be decoded or the image has no pixels.
        MemoryLimitError: If the upload exceeds the file size limit.
    """
    if not mime_type or not mime_type.lower().startswith("image/"):
        raise InvalidImageError(
            f"Invalid file type: {mime_type or 'unknown'}. Please select an image file.",
            context="Image loading",
        )
    if not data:
        raise InvalidImageError("Uploaded file is empty", context="Image loading")

    byte_size = len(data)
    if byte_size > config.max_file_size:
        raise MemoryLimitError(
            f"File too large: {byte_size / _MB:.1f}MB. "
            f"Maximum size is {config.max_file_size / _MB:.0f}MB.",
            context="Image loading",
        )

    try:
        with Image.open(io.BytesIO(data)) as decoded:
            decoded.load()
            oriented = ImageOps.exif_transpose(decoded)
            rgba = oriented.convert("RGBA")
    except UnidentifiedImageError as exc:
        raise InvalidImageError(
            f"Cannot identify image file ({mime_type})", context="Image loading"
        ) from exc
    except Image.DecompressionBombError as exc:
        raise MemoryLimitError(str(exc), context="Image loading") from exc
    except MemoryError as exc:
        raise MemoryLimitError(
            "Out of memory while decoding image", context="Image loading"
        ) from exc
    except (OSError, ValueError, SyntaxError) as exc:
        raise InvalidImageError(
            f"Failed to decode image: {exc}", context="Image loading"
        ) from exc

    width, height = rgba.size
    if width == 0 or height == 0:
        raise InvalidImageError(
            "Invalid image: image has no dimensions", context="Image loading"
        )

    report = validate_image_size(
        byte_size, ImageDimensions(width=width, height=height), config
    )
    for issue in report.issues:
        logger.warning("Image validation: %s", issue)

    logger.info("Loaded %s image %dx%d (%d bytes)", mime_type, width, height, byte_size)
    return rgba


# ---------------------------------------------------------------------------
# Export helpers
# ---------------------------------------------------------------------------


def export_png(image: Image.Image, quality: float = 1.0) -> bytes:
    """Serialize a raster to PNG bytes.

    Useful for Streamlit download buttons and API responses. PNG is
    lossless, so *quality* only has to be valid; it does not change the
    output.

    Args:
        image: Any PIL image (RGBA, RGB, L, …).
        quality: Encoder quality hint in ``[0, 1]``.

    Returns:
        Raw PNG file contents as ``bytes``.

    Raises:
        ValueError: If *quality* is outside ``[0, 1]``.
        CanvasError: If encoding fails.
    """
    if not 0.0 <= quality <= 1.0:
        raise ValueError(f"quality must be within [0, 1], got {quality}")

    buffer = io.BytesIO()
    try:
        image.save(buffer, format="PNG")
    except (OSError, ValueError) as exc:
        raise CanvasError(f"Failed to encode PNG: {exc}", context="Export") from exc
    return buffer.getvalue()
