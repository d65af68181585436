"""Tests for textbehind.core.segmenters.

The ONNX models are not available in the test environment, so inference
is tested through a mocked ``ort.InferenceSession``. Preprocessing,
postprocessing and the async wrapper are exercised directly.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
from PIL import Image

from textbehind.config import Settings
from textbehind.core.segmenters import (
    CallableSegmenter,
    ModelCard,
    OnnxMattingEngine,
    OnnxSubjectSegmenter,
    create_engine,
    create_segmenter,
    discover_available,
    get_all_cards,
)
from textbehind.core.segmenters._base import decode_matte, snap_to_multiple
from textbehind.core.segmenters.modnet import MODNetEngine
from textbehind.core.segmenters.rmbg import RMBGEngine
from textbehind.errors import ModelInferenceError, ModelLoadError
from textbehind.schemas import MattingInput, MattingOutput, QualityTier


# ---------------------------------------------------------------------------
# snap_to_multiple helper
# ---------------------------------------------------------------------------


class TestSnapToMultiple:
    """Validate the rounding helper used in preprocessing."""

    def test_exact_multiple(self) -> None:
        assert snap_to_multiple(64, 32) == 64

    def test_rounds_up(self) -> None:
        assert snap_to_multiple(50, 32) == 64

    def test_rounds_down(self) -> None:
        assert snap_to_multiple(33, 32) == 32

    def test_minimum_is_one_multiple(self) -> None:
        assert snap_to_multiple(1, 32) == 32

    def test_large_value(self) -> None:
        assert snap_to_multiple(1000, 32) == 992


# ---------------------------------------------------------------------------
# Mocked sessions
# ---------------------------------------------------------------------------


def _make_mock_session() -> MagicMock:
    """Stand-in ``InferenceSession`` whose output is a left-to-right ramp."""
    session = MagicMock()

    mock_input = MagicMock()
    mock_input.name = "input"
    session.get_inputs.return_value = [mock_input]

    def fake_run(_output_names, input_dict):
        tensor = list(input_dict.values())[0]
        _, _, h, w = tensor.shape
        # Return a gradient alpha: left=0 → right=1.
        alpha = np.linspace(0, 1, w, dtype=np.float32)
        alpha = np.tile(alpha, (1, 1, h, 1))  # (1, 1, H, W)
        return [alpha]

    session.run.side_effect = fake_run
    return session


def _build(engine_cls, mock_session: MagicMock):
    """Construct an engine with a mocked ONNX session."""
    with patch(
        "textbehind.core.segmenters._base.ort.InferenceSession",
        return_value=mock_session,
    ):
        # Patch is_file so the path check passes.
        with patch.object(Path, "is_file", return_value=True):
            return engine_cls(model_path=Path("/fake/model.onnx"), settings=Settings())


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class TestEngineInit:
    """Validate engine construction and error handling."""

    def test_missing_model_raises_load_error(self) -> None:
        with pytest.raises(ModelLoadError, match="not found"):
            RMBGEngine(model_path=Path("/nonexistent/model.onnx"), settings=Settings())

    def test_corrupt_model_raises_load_error(self, tmp_path: Path) -> None:
        fake_model = tmp_path / "bad.onnx"
        fake_model.write_bytes(b"not a valid onnx model")
        with pytest.raises(ModelLoadError, match="Failed to load"):
            MODNetEngine(model_path=fake_model, settings=Settings())


# ---------------------------------------------------------------------------
# Preprocessing per quality tier
# ---------------------------------------------------------------------------


class TestRMBGPreprocessing:
    """Fixed-size input, one resolution per quality tier."""

    def test_high_quality_shape(self, rgb_image: Image.Image) -> None:
        engine = _build(RMBGEngine, _make_mock_session())
        tensor = engine.prepare_tensor(rgb_image, QualityTier.HIGH)
        assert tensor.shape == (1, 3, 1024, 1024)
        assert tensor.dtype == np.float32

    def test_reduced_quality_shape(self, rgb_image: Image.Image) -> None:
        engine = _build(RMBGEngine, _make_mock_session())
        tensor = engine.prepare_tensor(rgb_image, QualityTier.REDUCED)
        assert tensor.shape == (1, 3, 512, 512)

    def test_converts_rgba_to_rgb(self, rgba_image: Image.Image) -> None:
        engine = _build(RMBGEngine, _make_mock_session())
        assert engine.prepare_tensor(rgba_image).shape[1] == 3


class TestMODNetPreprocessing:
    """Shortest edge scaled to the tier's reference size."""

    def test_values_in_minus1_plus1(self, rgb_image: Image.Image) -> None:
        engine = _build(MODNetEngine, _make_mock_session())
        tensor = engine.prepare_tensor(rgb_image)
        assert tensor.min() >= -1.0
        assert tensor.max() <= 1.0

    def test_dimensions_are_multiples_of_32(self, rgb_image: Image.Image) -> None:
        engine = _build(MODNetEngine, _make_mock_session())
        _, _, h, w = engine.prepare_tensor(rgb_image).shape
        assert h % 32 == 0
        assert w % 32 == 0

    @pytest.mark.parametrize(
        "quality, expected", [(QualityTier.HIGH, 512), (QualityTier.REDUCED, 320)]
    )
    def test_shortest_edge_per_tier(self, quality: QualityTier, expected: int) -> None:
        engine = _build(MODNetEngine, _make_mock_session())
        for size in ((200, 100), (100, 200)):
            _, _, h, w = engine.prepare_tensor(Image.new("RGB", size), quality).shape
            assert min(h, w) == expected


# ---------------------------------------------------------------------------
# Postprocessing and predict
# ---------------------------------------------------------------------------


class TestPostprocessing:
    """Validate raw model output → PIL alpha conversion."""

    def test_output_is_pil_mode_l(self) -> None:
        raw = np.random.rand(1, 1, 64, 64).astype(np.float32)
        result = decode_matte(raw, (100, 80))
        assert result.mode == "L"
        assert result.size == (100, 80)

    def test_sigmoid_on_logits(self) -> None:
        raw = np.array([[[[-10.0, 10.0], [-10.0, 10.0]]]], dtype=np.float32)
        arr = np.array(decode_matte(raw, (2, 2), logits=True))
        assert arr[0, 0] < arr[0, 1]

    def test_extra_channels_use_the_first(self) -> None:
        raw = np.stack([np.zeros((4, 4)), np.ones((4, 4))])[np.newaxis]
        arr = np.array(decode_matte(raw, (4, 4)))
        assert arr.max() == 0

    def test_stretches_compressed_range(self) -> None:
        raw = np.array([[[[0.4, 0.6], [0.4, 0.6]]]], dtype=np.float32)
        arr = np.array(decode_matte(raw, (2, 2)))
        assert arr.tolist() == [[0, 255], [0, 255]]


class TestBaseEngine:
    """Hooks a concrete engine must provide."""

    def test_hooks_are_abstract(self) -> None:
        engine = _build(OnnxMattingEngine, _make_mock_session())
        with pytest.raises(NotImplementedError):
            engine.input_size((10, 10), QualityTier.HIGH)
        with pytest.raises(NotImplementedError):
            engine.normalise(np.zeros((1, 1, 3), dtype=np.float32))

    def test_modnet_keeps_aspect_ratio(self) -> None:
        engine = _build(MODNetEngine, _make_mock_session())
        assert engine.input_size((1024, 512), QualityTier.HIGH) == (1024, 512)


class TestPredict:
    """End-to-end predict with mocked inference."""

    @pytest.mark.parametrize("engine_cls", [RMBGEngine, MODNetEngine])
    def test_predict_returns_matting_output(
        self, engine_cls, rgb_image: Image.Image
    ) -> None:
        engine = _build(engine_cls, _make_mock_session())
        result = engine.predict(MattingInput(image=rgb_image))
        assert result.alpha.mode == "L"
        assert result.alpha.size == rgb_image.size
        assert result.original_size == rgb_image.size

    def test_inference_error_is_wrapped(self, rgb_image: Image.Image) -> None:
        session = _make_mock_session()
        session.run.side_effect = RuntimeError("ONNX Runtime boom")
        engine = _build(RMBGEngine, session)
        with pytest.raises(ModelInferenceError, match="boom"):
            engine.predict(MattingInput(image=rgb_image))

    def test_out_of_memory_mentions_memory(self, rgb_image: Image.Image) -> None:
        session = _make_mock_session()
        session.run.side_effect = MemoryError
        engine = _build(RMBGEngine, session)
        with pytest.raises(ModelInferenceError, match="memory"):
            engine.predict(MattingInput(image=rgb_image, quality=QualityTier.REDUCED))


# ---------------------------------------------------------------------------
# Async segmenters
# ---------------------------------------------------------------------------


class _FakeEngine:
    def __init__(self, alpha: Image.Image) -> None:
        self.alpha = alpha
        self.calls: list[QualityTier] = []

    def predict(self, input_data: MattingInput) -> MattingOutput:
        self.calls.append(input_data.quality)
        return MattingOutput(alpha=self.alpha, original_size=input_data.image.size)


class TestOnnxSubjectSegmenter:
    """Matting engine wrapped as an asynchronous segmenter."""

    def test_applies_alpha(self, rgb_image: Image.Image, alpha_image: Image.Image) -> None:
        engine = _FakeEngine(alpha_image)
        segmenter = OnnxSubjectSegmenter(engine, label="fake")

        subject = asyncio.run(segmenter.segment(rgb_image, QualityTier.REDUCED))

        assert subject.mode == "RGBA"
        assert subject.size == rgb_image.size
        assert np.array_equal(np.asarray(subject)[:, :, 3], np.asarray(alpha_image))
        assert engine.calls == [QualityTier.REDUCED]

    def test_input_untouched(self, rgba_image: Image.Image, alpha_image: Image.Image) -> None:
        before = np.asarray(rgba_image).copy()
        asyncio.run(OnnxSubjectSegmenter(_FakeEngine(alpha_image)).segment(rgba_image, QualityTier.HIGH))
        assert np.array_equal(np.asarray(rgba_image), before)


class TestCallableSegmenter:
    """Plain coroutine functions as segmenters."""

    def test_delegates(self, rgba_image: Image.Image) -> None:
        seen: list[QualityTier] = []

        async def func(image: Image.Image, quality: QualityTier) -> Image.Image:
            seen.append(quality)
            return image

        result = asyncio.run(CallableSegmenter(func).segment(rgba_image, QualityTier.HIGH))
        assert result is rgba_image
        assert seen == [QualityTier.HIGH]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestRegistry:
    """Model discovery and factory dispatch."""

    def test_all_cards_registered(self) -> None:
        ids = {card.id for card in get_all_cards()}
        assert {"rmbg2", "rmbg2_int8", "rmbg2_fp16", "modnet"} <= ids

    def test_discover_only_present_files(self, tmp_path: Path) -> None:
        (tmp_path / "modnet.onnx").write_bytes(b"")
        cards = discover_available(Settings(models_dir=tmp_path))
        assert [card.id for card in cards] == ["modnet"]

    def test_default_model_first(self, tmp_path: Path) -> None:
        (tmp_path / "modnet.onnx").write_bytes(b"")
        (tmp_path / "RMBG-2.0_int8.onnx").write_bytes(b"")
        cards = discover_available(Settings(models_dir=tmp_path, default_model_id="rmbg2_int8"))
        assert cards[0].id == "rmbg2_int8"

    def test_empty_directory(self, tmp_path: Path) -> None:
        assert discover_available(Settings(models_dir=tmp_path)) == []

    def test_unknown_card(self) -> None:
        card = ModelCard(id="nope", name="Nope", filename="nope.onnx")
        with pytest.raises(ValueError, match="Unknown model id"):
            create_engine(card, Settings())

    def test_create_segmenter_wraps_engine(self, tmp_path: Path) -> None:
        card = next(c for c in get_all_cards() if c.id == "modnet")
        with patch(
            "textbehind.core.segmenters._base.ort.InferenceSession",
            return_value=_make_mock_session(),
        ):
            with patch.object(Path, "is_file", return_value=True):
                segmenter = create_segmenter(card, Settings(models_dir=tmp_path))
        assert isinstance(segmenter, OnnxSubjectSegmenter)
