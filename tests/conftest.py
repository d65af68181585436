"""Shared fixtures for the text-behind test suite."""

from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from textbehind.config import Settings
from textbehind.schemas import TextRenderOptions


def circle_alpha(size: tuple[int, int], radius_ratio: float = 0.3) -> Image.Image:
    """Grayscale matte with an opaque centred disc and a 2 px soft rim."""
    width, height = size
    ys, xs = np.mgrid[0:height, 0:width]
    distance = np.hypot(xs - width / 2, ys - height / 2)
    radius = min(width, height) * radius_ratio
    alpha = np.clip((radius - distance) / 2.0, 0.0, 1.0)
    return Image.fromarray((alpha * 255).astype(np.uint8))


@pytest.fixture
def rgb_image() -> Image.Image:
    """100x80 photo stand-in: red ramps left to right over flat green and blue."""
    pixels = np.empty((80, 100, 3), dtype=np.uint8)
    pixels[..., 0] = np.linspace(0, 255, 100, dtype=np.uint8)
    pixels[..., 1:] = (128, 64)
    return Image.fromarray(pixels)


@pytest.fixture
def rgba_image(rgb_image: Image.Image) -> Image.Image:
    """``rgb_image`` with an opaque alpha channel."""
    return rgb_image.convert("RGBA")


@pytest.fixture
def alpha_image() -> Image.Image:
    """A 100x80 alpha matte with a centred disc and antialiased rim."""
    return circle_alpha((100, 80))


@pytest.fixture
def subject_image(rgb_image: Image.Image, alpha_image: Image.Image) -> Image.Image:
    """Subject-only raster: the gradient cut out by the disc matte."""
    subject = rgb_image.convert("RGBA")
    subject.putalpha(alpha_image)
    return subject


@pytest.fixture
def text_options() -> TextRenderOptions:
    """Short white text centred on the 100x80 fixtures."""
    return TextRenderOptions(content="HELLO", font_size=24, x=50, y=40)


@pytest.fixture
def fast_settings(tmp_path: Path) -> Settings:
    """Settings with short intervals so async tests finish quickly."""
    return Settings(
        models_dir=tmp_path / "models",
        fonts_dir=tmp_path / "fonts",
        heartbeat_interval_s=0.01,
        memory_sample_interval_s=0.01,
        desktop_timeout_s=5.0,
        mobile_timeout_s=5.0,
        retry_timeout_s=2.0,
    )
