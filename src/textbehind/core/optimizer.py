"""Bounded resize and lossless re-encode ahead of segmentation.

Typical usage::

    from textbehind.core.optimizer import optimize_image

    result = optimize_image(image, settings.desktop_config)
    if result.was_optimized:
        print(result.original_dims, "→", result.optimized_dims)
"""

from __future__ import annotations

import io
import logging

from PIL import Image

from textbehind.core.validation import calculate_optimal_dimensions
from textbehind.errors import CanvasError, MemoryLimitError
from textbehind.schemas import (
    DEFAULT_OPTIMIZATION_CONFIG,
    ImageDimensions,
    OptimizationConfig,
    OptimizationResult,
)

logger = logging.getLogger(__name__)


def optimize_image(
    image: Image.Image,
    config: OptimizationConfig = DEFAULT_OPTIMIZATION_CONFIG,
) -> OptimizationResult:
    """Downscale *image* so its longest side fits ``config.max_dimension``.

    Images already within bounds are returned as an RGBA copy with
    ``was_optimized=False``. Larger images are resampled bicubically into a
    new buffer and round-tripped through PNG so the result is exactly what
    a lossless export would contain.

    Args:
        image: Decoded source image (any mode).
        config: Thresholds for the current device tier.

    Returns:
        An ``OptimizationResult`` owning a freshly allocated RGBA image.

    Raises:
        MemoryLimitError: If the resized buffer cannot be allocated.
        CanvasError: If PNG encoding or decoding fails.
    """
    original_dims = ImageDimensions.from_image(image)
    target_dims = calculate_optimal_dimensions(original_dims, config.max_dimension)

    try:
        rgba = image.convert("RGBA")
    except MemoryError as exc:
        raise MemoryLimitError(
            f"Could not allocate {original_dims.width}x{original_dims.height} "
            "RGBA buffer",
            context="Image optimization",
        ) from exc

    if target_dims == original_dims:
        return OptimizationResult(
            optimized_image=rgba,
            original_dims=original_dims,
            optimized_dims=original_dims,
            was_optimized=False,
        )

    try:
        resized = rgba.resize(target_dims.size, Image.BICUBIC)
    except MemoryError as exc:
        raise MemoryLimitError(
            f"Could not allocate {target_dims.width}x{target_dims.height} buffer",
            context="Image optimization",
        ) from exc
    finally:
        rgba.close()

    try:
        buffer = io.BytesIO()
        resized.save(buffer, format="PNG")
        png_bytes = buffer.getvalue()
        with Image.open(io.BytesIO(png_bytes)) as decoded:
            optimized = decoded.convert("RGBA")
    except (OSError, ValueError) as exc:
        raise CanvasError(
            f"Failed to encode optimized image: {exc}",
            context="Image optimization",
        ) from exc
    finally:
        resized.close()

    logger.info(
        "Image optimized from %dx%d to %dx%d",
        original_dims.width,
        original_dims.height,
        target_dims.width,
        target_dims.height,
    )
    return OptimizationResult(
        optimized_image=optimized,
        original_dims=original_dims,
        optimized_dims=target_dims,
        was_optimized=True,
        png_bytes=png_bytes,
    )
