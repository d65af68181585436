"""Segmenter building blocks.

Two layers live here. ``MattingModel`` engines are synchronous: they take
a raster and return an alpha matte. ``SubjectSegmenter`` is the
asynchronous capability the orchestrator races against its time budget;
``OnnxSubjectSegmenter`` bridges the two by running an engine in a worker
thread.

``OnnxMattingEngine`` holds everything the ONNX engines share. A concrete
engine only says how large its input tensor is for a quality tier and
how pixel values are normalised.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Awaitable, Callable, Protocol, runtime_checkable

import numpy as np
import onnxruntime as ort
from PIL import Image
from pydantic import BaseModel

from textbehind.config import Settings
from textbehind.errors import ModelInferenceError, ModelLoadError
from textbehind.schemas import MattingInput, MattingOutput, QualityTier

logger = logging.getLogger(__name__)

# Shared across event loops. ``asyncio.run`` does not join it on exit.
_INFERENCE_POOL = ThreadPoolExecutor(max_workers=2, thread_name_prefix="textbehind-inference")


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class ModelCard(BaseModel):
    """A selectable model: which weights file it needs and how to show it.

    Attributes:
        id: Registry key, also used by ``Settings.default_model_id``.
        name: Label shown in the model dropdown.
        filename: Weights file looked up in ``Settings.models_dir``.
        description: One-line summary for the UI.
    """

    model_config = {"frozen": True}

    id: str
    name: str
    filename: str
    description: str = ""


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class MattingModel(Protocol):
    """Synchronous engine producing an alpha matte the size of its input."""

    def predict(self, input_data: MattingInput) -> MattingOutput: ...


@runtime_checkable
class SubjectSegmenter(Protocol):
    """The external capability driven by the orchestrator.

    Given a raster, asynchronously produce a same-size RGBA raster holding
    only the subject on a transparent background, or raise.
    """

    async def segment(self, image: Image.Image, quality: QualityTier) -> Image.Image: ...


SegmentFunc = Callable[[Image.Image, QualityTier], Awaitable[Image.Image]]


class CallableSegmenter:
    """Adapt a plain ``async def f(image, quality)`` to ``SubjectSegmenter``."""

    def __init__(self, func: SegmentFunc) -> None:
        self._func = func

    async def segment(self, image: Image.Image, quality: QualityTier) -> Image.Image:
        return await self._func(image, quality)


class OnnxSubjectSegmenter:
    """Cut the subject out of an image with a ``MattingModel``.

    Prediction happens on a shared worker pool so the event loop stays
    free for the timeout race and the progress heartbeat. A prediction
    whose race was lost keeps its worker until the engine returns, but
    nobody waits for it.

    Args:
        engine: A loaded matting engine.
        label: Model name used in log messages.
    """

    def __init__(self, engine: MattingModel, label: str = "model") -> None:
        self._engine = engine
        self._label = label

    async def segment(self, image: Image.Image, quality: QualityTier) -> Image.Image:
        logger.info("Running %s at %s quality", self._label, quality.value)
        loop = asyncio.get_running_loop()
        matting = await loop.run_in_executor(
            _INFERENCE_POOL,
            functools.partial(self._engine.predict, MattingInput(image=image, quality=quality)),
        )
        subject = image.convert("RGBA")
        subject.putalpha(matting.alpha)
        return subject


# ---------------------------------------------------------------------------
# ONNX engines
# ---------------------------------------------------------------------------


def open_session(
    model_path: Path,
    providers: list[str],
    label: str = "model",
) -> ort.InferenceSession:
    """Create an ONNX Runtime session for *model_path*.

    Raises:
        ModelLoadError: If the file is missing or ONNX Runtime rejects it.
    """
    if not model_path.is_file():
        raise ModelLoadError(f"{label} weights not found: {model_path}")
    try:
        session = ort.InferenceSession(str(model_path), providers=providers)
    except Exception as exc:
        raise ModelLoadError(f"Failed to load {label} from {model_path}: {exc}") from exc

    logger.info("%s session ready (providers: %s)", label, ", ".join(providers))
    return session


class OnnxMattingEngine:
    """Shared predict loop for single-input, single-matte ONNX models.

    Subclasses set ``label`` and ``emits_logits`` and implement
    ``input_size`` and ``normalise``.

    Args:
        model_path: Path to the ONNX weights file.
        settings: Application settings.
    """

    label = "model"
    emits_logits = False

    def __init__(self, model_path: Path, settings: Settings) -> None:
        self.settings = settings
        self._session = open_session(model_path, settings.onnx_providers, self.label)
        self._input_name: str = self._session.get_inputs()[0].name

    def input_size(self, size: tuple[int, int], quality: QualityTier) -> tuple[int, int]:
        """Return the ``(width, height)`` fed to the network."""
        raise NotImplementedError

    def normalise(self, pixels: np.ndarray) -> np.ndarray:
        """Map ``HxWx3`` float32 pixels in ``[0, 255]`` to network range."""
        raise NotImplementedError

    def prepare_tensor(
        self,
        image: Image.Image,
        quality: QualityTier = QualityTier.HIGH,
    ) -> np.ndarray:
        """Build the ``(1, 3, H, W)`` float32 input tensor for *image*."""
        resized = image.convert("RGB").resize(
            self.input_size(image.size, quality), Image.BILINEAR
        )
        pixels = self.normalise(np.asarray(resized, dtype=np.float32))
        return np.ascontiguousarray(pixels.transpose(2, 0, 1)[np.newaxis], dtype=np.float32)

    def predict(self, input_data: MattingInput) -> MattingOutput:
        """Predict the alpha matte for one image.

        Args:
            input_data: Image plus the quality tier that picks the input size.

        Returns:
            A ``MattingOutput`` whose matte matches the input dimensions.

        Raises:
            ModelInferenceError: If ONNX Runtime fails.
        """
        size = input_data.image.size
        tensor = self.prepare_tensor(input_data.image, input_data.quality)
        logger.debug("%s input %s at %s quality", self.label, tensor.shape, input_data.quality.value)
        matte = decode_matte(self._infer(tensor), size, logits=self.emits_logits)
        return MattingOutput(alpha=matte, original_size=size)

    def _infer(self, tensor: np.ndarray) -> np.ndarray:
        """Run the session and return its first output.

        Raises:
            ModelInferenceError: On any runtime failure. Out-of-memory
                failures say "memory" so the orchestrator treats them as
                resource pressure.
        """
        try:
            return self._session.run(None, {self._input_name: tensor})[0]
        except MemoryError as exc:
            raise ModelInferenceError(f"{self.label} ran out of memory during inference") from exc
        except Exception as exc:
            raise ModelInferenceError(f"{self.label} inference failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def decode_matte(
    output: np.ndarray,
    size: tuple[int, int],
    logits: bool = False,
) -> Image.Image:
    """Turn a network output into an ``L`` matte of *size*.

    Leading batch and channel axes are dropped. The result is stretched to
    the full ``0..255`` range since some models never reach 0 or 1.
    """
    plane = np.squeeze(output)
    while plane.ndim > 2:
        plane = plane[0]
    plane = plane.astype(np.float32)

    if logits:
        plane = 1.0 / (1.0 + np.exp(-np.clip(plane, -50.0, 50.0)))

    low, high = float(plane.min()), float(plane.max())
    if high - low > 1e-6:
        plane = (plane - low) / (high - low)

    levels = np.rint(np.clip(plane, 0.0, 1.0) * 255.0).astype(np.uint8)
    return Image.fromarray(levels).resize(size, Image.BILINEAR)


def snap_to_multiple(value: int, multiple: int) -> int:
    """Nearest multiple of *multiple* to *value*, never below *multiple*."""
    steps = (value + multiple // 2) // multiple
    return multiple * max(1, steps)
