"""End-to-end facade: upload bytes → segmentation → composite → PNG.

The device profile is fixed at construction and drives every tier-specific
choice: optimization thresholds, the segmentation budget and which
compositor renders the text.

Typical usage::

    pipeline = TextBehindPipeline(segmenter, settings, profile)
    result = await pipeline.prepare(data, "image/jpeg", on_progress)
    output = pipeline.render(result, TextRenderOptions(content="HELLO"))
    png = pipeline.export(output)
"""

from __future__ import annotations

import logging

from PIL import Image

from textbehind.config import Settings
from textbehind.core.compositor import compose, compose_simple
from textbehind.core.image_io import export_png, load_image
from textbehind.core.orchestrator import ProgressCallback, SegmentationOrchestrator
from textbehind.core.segmenters import SubjectSegmenter
from textbehind.schemas import (
    DeviceProfile,
    DeviceTier,
    SegmentationResult,
    TextRenderOptions,
)

logger = logging.getLogger(__name__)


class TextBehindPipeline:
    """Glue the I/O boundary, the orchestrator and the compositors.

    Args:
        segmenter: External segmentation capability.
        settings: Application settings.
        profile: Device characteristics for this session.
    """

    def __init__(
        self,
        segmenter: SubjectSegmenter,
        settings: Settings | None = None,
        profile: DeviceProfile | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.profile = profile or DeviceProfile()
        self._orchestrator = SegmentationOrchestrator(
            segmenter, self.settings, self.profile
        )

    @property
    def is_mobile(self) -> bool:
        return self.profile.tier is DeviceTier.MOBILE

    async def prepare(
        self,
        data: bytes,
        mime_type: str,
        on_progress: ProgressCallback | None = None,
    ) -> SegmentationResult:
        """Decode *data* and separate its subject.

        Raises:
            TextBehindError: From decoding or segmentation.
        """
        image = load_image(data, mime_type, self._orchestrator.config)
        try:
            return await self._orchestrator.segment(image, on_progress)
        finally:
            image.close()

    def render(self, result: SegmentationResult, options: TextRenderOptions) -> Image.Image:
        """Draw *options* with the compositor for this device tier."""
        if self.is_mobile:
            return compose_simple(result.subject, options, self.settings.fonts_dir)
        return compose(
            result.background,
            result.subject,
            result.mask,
            options,
            self.settings.fonts_dir,
        )

    def export(self, image: Image.Image) -> bytes:
        """Encode a rendered image as PNG."""
        return export_png(image, self._orchestrator.config.quality_threshold)
