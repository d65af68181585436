"""Segmentation orchestration: optimize, race, retry, fall back, convert.

One ``segment`` call runs::

    validate decode → optimize → external segmenter (HIGH quality)
        │ resource pressure (memory / timeout signature)
        ├──→ one retry at REDUCED quality, own budget
        │ any other failure, budget exhausted or retry failed
        └──→ heuristic fallback
    → mask conversion → metrics

The external call races a device-tier budget (mobile 45 s, desktop 60 s).
Whichever settles first wins; the losing call is cancelled, but a call
running in a worker thread keeps going until it returns on its own.

Progress is reported on a single non-decreasing 0–100 scale that the
fallback continues rather than restarts.

Typical usage::

    orchestrator = SegmentationOrchestrator(segmenter, settings, profile)
    result = await orchestrator.segment(image, on_progress=print)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from PIL import Image

from textbehind.config import Settings
from textbehind.core.device import resolve_optimization_config, segmentation_timeout_s
from textbehind.core.fallback import fallback_segment
from textbehind.core.mask import apply_mask, to_mask
from textbehind.core.optimizer import optimize_image
from textbehind.core.segmenters import SubjectSegmenter
from textbehind.core.tracker import PerformanceTracker, check_memory_availability
from textbehind.errors import (
    ImageProcessingError,
    InvalidImageError,
    SegmentationTimeoutError,
    TextBehindError,
    is_resource_pressure,
    wrap_error,
)
from textbehind.schemas import (
    DeviceProfile,
    ImageDimensions,
    OptimizationConfig,
    ProcessingMetrics,
    QualityTier,
    SegmentationResult,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, float], None]

_HEARTBEAT_START = 45.0
_HEARTBEAT_CEILING = 70.0
_HEARTBEAT_STEP = 2.5


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


class ProgressReporter:
    """Forward progress to a caller's sink, never letting it go backwards.

    Args:
        sink: Callback receiving ``(step, percent)``, or ``None``.
    """

    def __init__(self, sink: ProgressCallback | None = None) -> None:
        self._sink = sink
        self._last = 0.0

    @property
    def last(self) -> float:
        """Highest percentage reported so far, ``0.0`` before the first update."""
        return self._last

    def __call__(self, step: str, percent: float) -> None:
        """Report *step* at *percent*, clamped to ``[last, 100]``.

        Args:
            step: Human-readable stage description.
            percent: Requested completion percentage.
        """
        percent = min(100.0, max(self._last, float(percent)))
        self._last = percent
        logger.debug("Progress %.0f%%: %s", percent, step)
        if self._sink is not None:
            self._sink(step, percent)


# ---------------------------------------------------------------------------
# Racing
# ---------------------------------------------------------------------------


def _consume_abandoned(task: asyncio.Future) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Abandoned segmentation call finished with: %r", exc)


async def race_with_timeout(
    awaitable: Awaitable[Image.Image],
    timeout_s: float,
    label: str = "Background removal",
) -> Image.Image:
    """Await *awaitable* or give up after *timeout_s*, whichever comes first.

    The call's own exceptions, including its own ``TimeoutError``, pass
    through unchanged, so they can be told apart from losing the race.

    Raises:
        SegmentationTimeoutError: If the budget ran out first. The call is
            cancelled best-effort.
    """
    task = asyncio.ensure_future(awaitable)
    task.add_done_callback(_consume_abandoned)
    try:
        done, _ = await asyncio.wait({task}, timeout=max(0.0, timeout_s))
    except asyncio.CancelledError:
        task.cancel()
        raise

    if not done:
        task.cancel()
        raise SegmentationTimeoutError(
            f"{label} timed out after {timeout_s:.1f}s",
            context="Segmentation race",
        )
    return task.result()


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class SegmentationOrchestrator:
    """Drive one external segmenter with timeout, retry and fallback.

    Args:
        segmenter: The external capability.
        settings: Budgets and sampling intervals.
        profile: Device characteristics, resolved once by the caller.
        config: Overrides the optimization config derived from *profile*.
    """

    def __init__(
        self,
        segmenter: SubjectSegmenter,
        settings: Settings | None = None,
        profile: DeviceProfile | None = None,
        config: OptimizationConfig | None = None,
    ) -> None:
        self._segmenter = segmenter
        self._settings = settings or Settings()
        self.profile = profile or DeviceProfile()
        self.config = config or resolve_optimization_config(self.profile, self._settings)
        self.timeout_s = segmentation_timeout_s(self.profile.tier, self._settings)

    async def segment(
        self,
        image: Image.Image,
        on_progress: ProgressCallback | None = None,
    ) -> SegmentationResult:
        """Separate the subject of *image* from its background.

        Args:
            image: Decoded source image.
            on_progress: Optional ``(step, percent)`` sink.

        Returns:
            A ``SegmentationResult`` whose background, subject and mask
            share the optimized size.

        Raises:
            InvalidImageError: If *image* is missing, undecodable or empty.
            ImageProcessingError: If even the heuristic fallback failed.
            TextBehindError: Any other stage failure, classified.
        """
        progress = ProgressReporter(on_progress)
        progress("Validating and optimizing image", 5)

        original_dims = self._check_decoded(image)

        tracker = PerformanceTracker.start(
            original_dims, self._settings.memory_sample_interval_s
        )
        try:
            return await self._run(image, original_dims, tracker, progress)
        except TextBehindError:
            raise
        except Exception as exc:
            raise wrap_error(exc, "Subject segmentation") from exc
        finally:
            tracker.finish()

    @staticmethod
    def _check_decoded(image: Image.Image | None) -> ImageDimensions:
        if image is None:
            raise InvalidImageError("No image provided for segmentation")
        try:
            image.load()
        except (OSError, ValueError) as exc:
            raise InvalidImageError(f"Image is not fully decoded: {exc}") from exc
        width, height = image.size
        if width <= 0 or height <= 0:
            raise InvalidImageError("Invalid image: image has no dimensions")
        return ImageDimensions(width=width, height=height)

    async def _run(
        self,
        image: Image.Image,
        original_dims: ImageDimensions,
        tracker: PerformanceTracker,
        progress: ProgressReporter,
    ) -> SegmentationResult:
        logger.info(
            "Segmenting %dx%d image (%s tier, budget %.1fs)",
            original_dims.width,
            original_dims.height,
            self.profile.tier.value,
            self.timeout_s,
        )
        estimated_mb = original_dims.estimated_memory_mb
        if not check_memory_availability(estimated_mb * 2):
            logger.warning(
                "Estimated memory usage %.1fMB may be high for current system",
                estimated_mb,
            )

        progress("Preparing optimized image for processing", 15)
        optimization = optimize_image(image, self.config)
        tracker.update_processed_dimensions(optimization.optimized_dims)
        if optimization.was_optimized:
            progress("Image optimized for better performance", 20)
        background = optimization.optimized_image
        progress("Image prepared, starting segmentation", 30)

        subject, quality = await self._segment_externally(background, progress)

        if subject is None:
            progress("Trying alternative processing method", 75)
            subject = self._fallback(background)
        else:
            progress("Segmentation complete, generating mask", 75)
            if subject.size != background.size:
                logger.debug(
                    "Subject size %s differs from %s, resizing",
                    subject.size,
                    background.size,
                )
                subject = subject.convert("RGBA").resize(background.size, Image.BILINEAR)

        progress("Generating subject mask", 85)
        mask = to_mask(subject)

        progress("Finalizing results", 95)
        metrics = tracker.finish()
        self._log_metrics(metrics, fallback=quality is None)
        progress("Complete", 100)

        return SegmentationResult(
            background=background,
            subject=subject.convert("RGBA"),
            mask=mask,
            metrics=metrics,
            used_fallback=quality is None,
            quality=quality,
        )

    async def _segment_externally(
        self,
        background: Image.Image,
        progress: ProgressReporter,
    ) -> tuple[Image.Image | None, QualityTier | None]:
        """Run the quality-first attempt and its retry.

        Returns ``(None, None)`` when the fallback should take over.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_s

        progress("Running background removal", _HEARTBEAT_START)
        heartbeat = asyncio.create_task(self._heartbeat(progress))
        try:
            try:
                subject = await race_with_timeout(
                    self._segmenter.segment(background.copy(), QualityTier.HIGH),
                    self.timeout_s,
                )
                return subject, QualityTier.HIGH
            except SegmentationTimeoutError:
                logger.warning(
                    "Background removal timed out after %.1fs, using fallback",
                    self.timeout_s,
                )
                return None, None
            except Exception as exc:
                if not is_resource_pressure(exc):
                    logger.warning("Background removal failed (%s), using fallback", exc)
                    return None, None
                logger.warning(
                    "High-quality processing failed under resource pressure (%s), "
                    "retrying at reduced quality",
                    exc,
                )

            budget = min(self._settings.retry_timeout_s, deadline - loop.time())
            if budget <= 0:
                logger.warning("No time left for a reduced-quality retry, using fallback")
                return None, None

            progress("Retrying at reduced quality", 60)
            try:
                subject = await race_with_timeout(
                    self._segmenter.segment(background.copy(), QualityTier.REDUCED),
                    budget,
                    label="Reduced-quality background removal",
                )
                return subject, QualityTier.REDUCED
            except Exception as exc:
                logger.warning("Reduced-quality processing failed (%s), using fallback", exc)
                return None, None
        finally:
            heartbeat.cancel()
            await asyncio.gather(heartbeat, return_exceptions=True)

    async def _heartbeat(self, progress: ProgressReporter) -> None:
        value = _HEARTBEAT_START
        while value < _HEARTBEAT_CEILING:
            await asyncio.sleep(self._settings.heartbeat_interval_s)
            value = min(_HEARTBEAT_CEILING, value + _HEARTBEAT_STEP)
            progress("Processing background removal", value)

    @staticmethod
    def _fallback(background: Image.Image) -> Image.Image:
        logger.warning("Creating fallback mask from pixel heuristics")
        try:
            mask = fallback_segment(background)
            return apply_mask(background, mask)
        except Exception as exc:
            logger.error("Fallback processing also failed: %s", exc)
            raise ImageProcessingError(
                f"Fallback segmentation failed: {exc}",
                context="Fallback segmentation",
            ) from exc

    @staticmethod
    def _log_metrics(metrics: ProcessingMetrics, fallback: bool) -> None:
        size = metrics.image_size
        logger.info(
            "Subject segmentation completed%s in %.1fms "
            "(original %dx%d, processed %dx%d)",
            " via fallback" if fallback else "",
            metrics.duration_ms,
            size.original.width,
            size.original.height,
            size.processed.width,
            size.processed.height,
        )
        if metrics.memory_usage is not None:
            usage = metrics.memory_usage
            logger.info(
                "Memory usage - Initial: %.1fMB, Peak: %.1fMB, Final: %.1fMB",
                usage.initial_mb,
                usage.peak_mb,
                usage.final_mb,
            )


async def segment_subject(
    image: Image.Image,
    segmenter: SubjectSegmenter,
    on_progress: ProgressCallback | None = None,
    settings: Settings | None = None,
    profile: DeviceProfile | None = None,
) -> SegmentationResult:
    """Convenience wrapper around ``SegmentationOrchestrator.segment``."""
    orchestrator = SegmentationOrchestrator(segmenter, settings, profile)
    return await orchestrator.segment(image, on_progress)
