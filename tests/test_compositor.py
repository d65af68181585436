"""Tests for textbehind.core.compositor."""

import numpy as np
import pytest
from PIL import Image

from textbehind.core.compositor import compose, compose_simple, erase_with_mask
from textbehind.core.mask import to_mask
from textbehind.errors import ImageProcessingError
from textbehind.schemas import TextRenderOptions


# ---------------------------------------------------------------------------
# Destination-out
# ---------------------------------------------------------------------------


class TestEraseWithMask:
    """Alpha arithmetic of the erase step."""

    def test_partial_erase(self) -> None:
        image = Image.new("RGBA", (4, 4), (10, 20, 30, 200))
        mask = Image.new("RGBA", (4, 4), (255, 255, 255, 128))
        out = np.asarray(erase_with_mask(image, mask))
        # 200 * (1 - 128/255) = 99.6
        assert np.all(out[:, :, 3] == 100)
        assert np.all(out[:, :, :3] == (10, 20, 30))

    def test_full_erase(self) -> None:
        image = Image.new("RGBA", (4, 4), (10, 20, 30, 255))
        mask = Image.new("RGBA", (4, 4), (255, 255, 255, 255))
        assert np.asarray(erase_with_mask(image, mask))[:, :, 3].max() == 0

    def test_transparent_mask_keeps_alpha(self) -> None:
        image = Image.new("RGBA", (4, 4), (10, 20, 30, 77))
        mask = Image.new("RGBA", (4, 4), (0, 0, 0, 0))
        assert np.all(np.asarray(erase_with_mask(image, mask))[:, :, 3] == 77)


# ---------------------------------------------------------------------------
# Desktop compositor
# ---------------------------------------------------------------------------


class TestCompose:
    """Text behind the subject."""

    def test_output_shape(
        self,
        rgba_image: Image.Image,
        subject_image: Image.Image,
        text_options: TextRenderOptions,
    ) -> None:
        output = compose(rgba_image, subject_image, to_mask(subject_image), text_options)
        assert output.size == rgba_image.size
        assert output.mode == "RGBA"

    def test_full_mask_yields_subject(
        self, rgba_image: Image.Image, text_options: TextRenderOptions
    ) -> None:
        """A fully opaque mask hides everything but the subject."""
        subject = rgba_image.copy()
        mask = Image.new("RGBA", rgba_image.size, (255, 255, 255, 255))
        output = compose(rgba_image, subject, mask, text_options)
        assert np.array_equal(np.asarray(output), np.asarray(subject))

    def test_subject_covers_text(
        self,
        rgba_image: Image.Image,
        subject_image: Image.Image,
        text_options: TextRenderOptions,
    ) -> None:
        mask = to_mask(subject_image)
        output = np.asarray(compose(rgba_image, subject_image, mask, text_options))
        subject = np.asarray(subject_image)

        opaque = subject[:, :, 3] == 255
        assert opaque[40, 50]
        assert np.array_equal(output[opaque], subject[opaque])

    def test_text_visible_around_subject(self, rgba_image: Image.Image) -> None:
        subject = Image.new("RGBA", rgba_image.size, (0, 0, 0, 0))
        mask = to_mask(subject)
        options = TextRenderOptions(content="HELLO", font_size=24, x=50, y=40, color="#00ff00")

        output = np.asarray(compose(rgba_image, subject, mask, options))
        original = np.asarray(rgba_image)

        assert not np.array_equal(output, original)
        # Far from the text the background is untouched.
        assert np.array_equal(output[0, 0], original[0, 0])

    def test_inputs_not_modified(
        self,
        rgba_image: Image.Image,
        subject_image: Image.Image,
        text_options: TextRenderOptions,
    ) -> None:
        mask = to_mask(subject_image)
        snapshots = [np.asarray(im).copy() for im in (rgba_image, subject_image, mask)]
        compose(rgba_image, subject_image, mask, text_options)
        for image, before in zip((rgba_image, subject_image, mask), snapshots):
            assert np.array_equal(np.asarray(image), before)

    def test_size_mismatch(self, rgba_image: Image.Image, text_options: TextRenderOptions) -> None:
        small = Image.new("RGBA", (10, 10))
        with pytest.raises(ImageProcessingError, match="sizes differ"):
            compose(rgba_image, rgba_image, small, text_options)

    @pytest.mark.parametrize("odd_one", ["original", "subject"])
    def test_raster_size_mismatch(
        self,
        odd_one: str,
        rgba_image: Image.Image,
        subject_image: Image.Image,
        text_options: TextRenderOptions,
    ) -> None:
        mask = to_mask(subject_image)
        inputs = {"original": rgba_image, "subject": subject_image}
        inputs[odd_one] = inputs[odd_one].resize((50, 40))
        with pytest.raises(ImageProcessingError, match="sizes differ"):
            compose(inputs["original"], inputs["subject"], mask, text_options)

    def test_missing_input(self, rgba_image: Image.Image, text_options: TextRenderOptions) -> None:
        with pytest.raises(ImageProcessingError, match="No mask"):
            compose(rgba_image, rgba_image, None, text_options)

    def test_blank_text(self, rgba_image: Image.Image, subject_image: Image.Image) -> None:
        with pytest.raises(ImageProcessingError, match="No text"):
            compose(
                rgba_image,
                subject_image,
                to_mask(subject_image),
                TextRenderOptions(content="  "),
            )


# ---------------------------------------------------------------------------
# Mobile compositor
# ---------------------------------------------------------------------------


class TestComposeSimple:
    """Text drawn over the subject."""

    def test_draws_over_subject(
        self, subject_image: Image.Image, text_options: TextRenderOptions
    ) -> None:
        output = compose_simple(subject_image, text_options)
        assert output.size == subject_image.size
        assert output.mode == "RGBA"
        assert not np.array_equal(np.asarray(output), np.asarray(subject_image))

    def test_text_in_front_of_subject(self, rgba_image: Image.Image) -> None:
        options = TextRenderOptions(content="HELLO", font_size=24, x=50, y=40, color="#00ff00")
        output = np.asarray(compose_simple(rgba_image, options))
        assert np.any(np.all(output[:, :, :3] == (0, 255, 0), axis=2))

    def test_blank_text_returns_copy(self, subject_image: Image.Image) -> None:
        output = compose_simple(subject_image, TextRenderOptions(content=""))
        assert output is not subject_image
        assert np.array_equal(np.asarray(output), np.asarray(subject_image))

    def test_missing_subject(self, text_options: TextRenderOptions) -> None:
        with pytest.raises(ImageProcessingError):
            compose_simple(None, text_options)
