"""BRIA RMBG-2.0 (BiRefNet) engines.

The FP32, FP16 and INT8 exports take the same square input and emit
logits, so one engine class serves all three. Reduced quality feeds the
network a quarter of the pixels.
"""

from __future__ import annotations

import numpy as np

from textbehind.core.segmenters._base import ModelCard, OnnxMattingEngine
from textbehind.schemas import QualityTier

_IMAGENET_MEAN = np.array([0.485, 0.456, 0.406], dtype=np.float32)
_IMAGENET_STD = np.array([0.229, 0.224, 0.225], dtype=np.float32)

MODEL_CARDS: list[ModelCard] = [
    ModelCard(
        id="rmbg2",
        name="RMBG-2.0",
        filename="RMBG-2.0.onnx",
        description="Most accurate subject edges, FP32 (~1 GB).",
    ),
    ModelCard(
        id="rmbg2_int8",
        name="RMBG-2.0 (INT8)",
        filename="RMBG-2.0_int8.onnx",
        description="Quantized for CPU inference (~366 MB).",
    ),
    ModelCard(
        id="rmbg2_fp16",
        name="RMBG-2.0 (FP16)",
        filename="RMBG-2.0_fp16.onnx",
        description="Half precision, suited to GPU providers (~514 MB).",
    ),
]


class RMBGEngine(OnnxMattingEngine):
    """Fixed-size RMBG-2.0 input with ImageNet normalisation."""

    label = "RMBG-2.0"
    emits_logits = True

    def input_size(self, size: tuple[int, int], quality: QualityTier) -> tuple[int, int]:
        if quality is QualityTier.REDUCED:
            return self.settings.rmbg_reduced_input_size
        return self.settings.rmbg_input_size

    def normalise(self, pixels: np.ndarray) -> np.ndarray:
        return (pixels / 255.0 - _IMAGENET_MEAN) / _IMAGENET_STD


ENGINE = RMBGEngine
