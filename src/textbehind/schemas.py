"""Pydantic data contracts shared across modules.

Every cross-module boundary is typed through one of these schemas.
The pipeline flow is::

    bytes (upload)
        → load_image()                → PIL.Image (RGBA)
        → validate_image_size()       → ValidationReport
        → optimize_image()            → OptimizationResult
        → SegmentationOrchestrator    → SegmentationResult
        → compose() / compose_simple(TextRenderOptions) → PIL.Image (RGBA)
        → export_png()                → bytes
"""

from __future__ import annotations

from enum import Enum

from PIL import Image
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Geometry and thresholds
# ---------------------------------------------------------------------------


class ImageDimensions(BaseModel):
    """Pixel dimensions of a raster. Both sides are strictly positive."""

    model_config = {"frozen": True}

    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)

    @classmethod
    def from_image(cls, image: Image.Image) -> ImageDimensions:
        """Build dimensions from a PIL image's ``size``."""
        width, height = image.size
        return cls(width=width, height=height)

    @property
    def size(self) -> tuple[int, int]:
        """``(width, height)`` tuple, as PIL expects."""
        return (self.width, self.height)

    @property
    def max_side(self) -> int:
        return max(self.width, self.height)

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height

    @property
    def estimated_memory_mb(self) -> float:
        """Size of one RGBA buffer at these dimensions, in megabytes."""
        return self.width * self.height * 4 / (1024 * 1024)


class OptimizationConfig(BaseModel):
    """Resource thresholds for one device tier.

    Attributes:
        max_dimension: Longest allowed side before resizing, in pixels.
        max_file_size: Hard upload limit in bytes.
        quality_threshold: Encoder quality hint in ``[0, 1]``.
        memory_threshold_mb: Budget for a single RGBA working buffer.
    """

    model_config = {"frozen": True}

    max_dimension: int = Field(..., gt=0)
    max_file_size: int = Field(..., gt=0)
    quality_threshold: float = Field(..., ge=0.0, le=1.0)
    memory_threshold_mb: int = Field(..., gt=0)


DEFAULT_OPTIMIZATION_CONFIG = OptimizationConfig(
    max_dimension=1024,
    max_file_size=10 * 1024 * 1024,
    quality_threshold=0.85,
    memory_threshold_mb=100,
)


class ValidationReport(BaseModel):
    """Outcome of the advisory size checks.

    Attributes:
        is_valid: ``True`` when no issue was found.
        issues: One entry per failed check.
        recommendations: Corrective hint matching each issue.
    """

    is_valid: bool
    issues: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class OptimizationResult(BaseModel):
    """Output of ``optimize_image``.

    Attributes:
        optimized_image: Freshly allocated RGBA image owned by the caller.
        original_dims: Dimensions before optimization.
        optimized_dims: Dimensions after optimization.
        was_optimized: ``True`` if the image was resized.
        png_bytes: Lossless re-encoding of the resized image, ``None`` when
            no resize happened.
    """

    optimized_image: Image.Image
    original_dims: ImageDimensions
    optimized_dims: ImageDimensions
    was_optimized: bool
    png_bytes: bytes | None = None

    model_config = {"arbitrary_types_allowed": True}


# ---------------------------------------------------------------------------
# Tiers
# ---------------------------------------------------------------------------


class DeviceTier(str, Enum):
    """Coarse device classification driving budgets and compositor choice."""

    MOBILE = "mobile"
    DESKTOP = "desktop"


class QualityTier(str, Enum):
    """Segmentation quality levels, highest first."""

    HIGH = "high"
    REDUCED = "reduced"


class DeviceProfile(BaseModel):
    """Device characteristics resolved once per pipeline invocation.

    Attributes:
        tier: Mobile or desktop.
        is_low_end: Few cores, low DPI or small screen.
        estimated_ram_mb: Best guess of device memory.
        battery_level: Battery percentage, ``None`` if unknown.
        is_charging: Charging state, ``None`` if unknown.
    """

    model_config = {"frozen": True}

    tier: DeviceTier = DeviceTier.DESKTOP
    is_low_end: bool = False
    estimated_ram_mb: int = Field(default=2048, gt=0)
    battery_level: float | None = Field(default=None, ge=0.0, le=100.0)
    is_charging: bool | None = None


# ---------------------------------------------------------------------------
# Text
# ---------------------------------------------------------------------------


class TextRenderOptions(BaseModel):
    """Text appearance for one render call.

    Attributes:
        content: Text to draw.
        font_size: Font size in pixels.
        font_family: Font family name or path to a font file.
        color: Any CSS-style color accepted by ``PIL.ImageColor``.
        opacity_percent: Layer opacity in ``[0, 100]``.
        x: Horizontal centre of the text, in pixels.
        y: Vertical centre of the text, in pixels.
        rotation_degrees: Clockwise rotation about ``(x, y)``.
        blur_radius: Gaussian blur applied to the glyphs, in pixels.
        bold: Use a bold face (synthesised if unavailable).
        italic: Use an italic face (synthesised if unavailable).
        underline: Draw an underline below the text.
    """

    model_config = {"frozen": True}

    content: str
    font_size: int = Field(default=96, gt=0, le=2000)
    font_family: str = "DejaVu Sans"
    color: str = "#ffffff"
    opacity_percent: float = Field(default=100.0, ge=0.0, le=100.0)
    x: float = 0.0
    y: float = 0.0
    rotation_degrees: float = 0.0
    blur_radius: float = Field(default=0.0, ge=0.0, le=50.0)
    bold: bool = False
    italic: bool = False
    underline: bool = False

    def has_text(self) -> bool:
        """Return ``True`` if there is anything visible to draw."""
        return bool(self.content.strip())


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


class MemoryUsage(BaseModel):
    """Process memory samples in megabytes."""

    model_config = {"frozen": True}

    initial_mb: float
    peak_mb: float
    final_mb: float


class ImageSizeInfo(BaseModel):
    """Original and processed dimensions of one pipeline run."""

    model_config = {"frozen": True}

    original: ImageDimensions
    processed: ImageDimensions


class ProcessingMetrics(BaseModel):
    """Frozen diagnostics record produced by ``PerformanceTracker.finish``.

    Attributes:
        start_time: Wall-clock start, seconds since the epoch.
        end_time: Wall-clock end, seconds since the epoch.
        duration_ms: Monotonic duration of the run.
        memory_usage: Memory samples, ``None`` if the platform offers no
            memory introspection.
        image_size: Original and processed dimensions.
    """

    model_config = {"frozen": True}

    start_time: float
    end_time: float
    duration_ms: float = Field(..., ge=0.0)
    memory_usage: MemoryUsage | None = None
    image_size: ImageSizeInfo


# ---------------------------------------------------------------------------
# Segmentation
# ---------------------------------------------------------------------------


class MattingInput(BaseModel):
    """Input contract for a matting engine.

    Attributes:
        image: PIL image of arbitrary size and mode.
        quality: Requested quality tier.
    """

    image: Image.Image
    quality: QualityTier = QualityTier.HIGH

    model_config = {"arbitrary_types_allowed": True}


class MattingOutput(BaseModel):
    """Alpha matte produced by a matting engine.

    Attributes:
        alpha: ``L`` image, 255 on the subject, already resized to
            ``original_size``.
        original_size: ``(width, height)`` of the engine input.
    """

    alpha: Image.Image
    original_size: tuple[int, int]

    model_config = {"arbitrary_types_allowed": True}


class SegmentationResult(BaseModel):
    """Everything the compositors need from one segmentation run.

    Attributes:
        background: Optimized source image (RGBA), the compositor's base.
        subject: Subject-only RGBA raster with transparent background.
        mask: Subject mask (white RGB, alpha = membership).
        metrics: Frozen processing metrics.
        used_fallback: ``True`` if the heuristic segmenter produced the mask.
        quality: Quality tier of the successful external attempt, ``None``
            when the fallback was used.
    """

    background: Image.Image
    subject: Image.Image
    mask: Image.Image
    metrics: ProcessingMetrics
    used_fallback: bool = False
    quality: QualityTier | None = None

    model_config = {"arbitrary_types_allowed": True}

    @property
    def size(self) -> tuple[int, int]:
        return self.subject.size
