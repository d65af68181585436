"""MODNet portrait matting engine.

Small enough (~25 MB) to be the practical choice on mobile tiers. The
network accepts any size whose sides are multiples of 32, so the input
keeps the photo's aspect ratio.
"""

from __future__ import annotations

import numpy as np

from textbehind.core.segmenters._base import ModelCard, OnnxMattingEngine, snap_to_multiple
from textbehind.schemas import QualityTier

_STRIDE = 32

MODEL_CARDS: list[ModelCard] = [
    ModelCard(
        id="modnet",
        name="MODNet",
        filename="modnet.onnx",
        description="Fast portrait matting (~25 MB), best for people.",
    ),
]


class MODNetEngine(OnnxMattingEngine):
    """Shortest edge scaled to the tier's reference size, values in ``[-1, 1]``."""

    label = "MODNet"

    def input_size(self, size: tuple[int, int], quality: QualityTier) -> tuple[int, int]:
        reference = (
            self.settings.modnet_reduced_ref_size
            if quality is QualityTier.REDUCED
            else self.settings.modnet_ref_size
        )
        width, height = size
        scale = reference / min(width, height)
        return (
            snap_to_multiple(round(width * scale), _STRIDE),
            snap_to_multiple(round(height * scale), _STRIDE),
        )

    def normalise(self, pixels: np.ndarray) -> np.ndarray:
        return pixels / 127.5 - 1.0


ENGINE = MODNetEngine
