"""Advisory size checks run before any raster work.

The checks never raise: callers receive every issue at once and decide
whether to proceed. Only an oversized upload is a hard failure, and that
decision is made by the I/O boundary, not here.
"""

from __future__ import annotations

from textbehind.schemas import (
    DEFAULT_OPTIMIZATION_CONFIG,
    ImageDimensions,
    OptimizationConfig,
    ValidationReport,
)

_MB = 1024 * 1024


def validate_image_size(
    byte_size: int,
    dimensions: ImageDimensions,
    config: OptimizationConfig = DEFAULT_OPTIMIZATION_CONFIG,
) -> ValidationReport:
    """Check file size, longest side and estimated memory against *config*.

    All three checks run independently so the report lists every issue.

    Args:
        byte_size: Encoded file size in bytes.
        dimensions: Decoded pixel dimensions.
        config: Thresholds for the current device tier.

    Returns:
        A ``ValidationReport``; ``is_valid`` is ``True`` only when no check
        failed.
    """
    issues: list[str] = []
    recommendations: list[str] = []

    if byte_size > config.max_file_size:
        issues.append(
            f"File size ({byte_size / _MB:.1f}MB) exceeds maximum "
            f"({config.max_file_size / _MB:.1f}MB)"
        )
        recommendations.append(
            "Consider compressing the image or using a smaller resolution"
        )

    if dimensions.max_side > config.max_dimension:
        issues.append(
            f"Image dimension ({dimensions.max_side}px) exceeds maximum "
            f"({config.max_dimension}px)"
        )
        recommendations.append(
            f"Image will be automatically resized to {config.max_dimension}px "
            "maximum dimension"
        )

    estimated_mb = dimensions.estimated_memory_mb
    if estimated_mb > config.memory_threshold_mb:
        issues.append(
            f"Estimated memory usage ({estimated_mb:.1f}MB) may exceed "
            f"threshold ({config.memory_threshold_mb}MB)"
        )
        recommendations.append(
            "Consider using a smaller image or the system may resize it "
            "automatically"
        )

    return ValidationReport(
        is_valid=not issues,
        issues=issues,
        recommendations=recommendations,
    )


def calculate_optimal_dimensions(
    original: ImageDimensions,
    max_dimension: int = DEFAULT_OPTIMIZATION_CONFIG.max_dimension,
) -> ImageDimensions:
    """Fit *original* inside a ``max_dimension`` square, keeping its aspect.

    Args:
        original: Source dimensions.
        max_dimension: Longest allowed side.

    Returns:
        *original* itself when already within bounds, otherwise the scaled
        dimensions (each side rounded, never below 1).
    """
    if original.max_side <= max_dimension:
        return original

    scale = max_dimension / original.max_side
    return ImageDimensions(
        width=max(1, round(original.width * scale)),
        height=max(1, round(original.height * scale)),
    )
