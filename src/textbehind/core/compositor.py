"""Layered compositing: text behind the subject, or over it on mobile.

Desktop path (``compose``), four steps whose order *is* the effect::

    1. base      original image                 (source-over)
    2. text      rendered text layer            (source-over)
    3. erase     out.a *= 1 - mask.a / 255      (destination-out)
    4. subject   subject-only raster            (source-over)

Step 3 punches a subject-shaped, soft-edged hole through the text and the
background; step 4 fills it with the subject, so the text reads as being
behind it.

Mobile path (``compose_simple``) draws the text straight over the subject
raster with a stronger shadow. The text then sits *in front of* the
subject: depth is traded for speed and reliability on constrained devices.

Typical usage::

    from textbehind.core.compositor import compose
    from textbehind.schemas import TextRenderOptions

    options = TextRenderOptions(content="HELLO", x=512, y=300, font_size=180)
    output = compose(result.background, result.subject, result.mask, options)
"""

from __future__ import annotations

import logging
from contextlib import ExitStack
from pathlib import Path

import numpy as np
from PIL import Image

from textbehind.core.text import DESKTOP_SHADOW, MOBILE_SHADOW, render_text_layer
from textbehind.errors import ImageProcessingError, TextBehindError, wrap_error
from textbehind.schemas import TextRenderOptions

logger = logging.getLogger(__name__)


def _check_inputs(
    original: Image.Image | None,
    subject: Image.Image | None,
    mask: Image.Image | None,
    options: TextRenderOptions | None,
) -> None:
    named = {"original image": original, "subject raster": subject, "mask": mask}
    for name, image in named.items():
        if image is None:
            raise ImageProcessingError(f"No {name} provided", context="Compositing")
    if options is None:
        raise ImageProcessingError("No text options provided", context="Compositing")

    sizes = {name: image.size for name, image in named.items()}
    if len(set(sizes.values())) != 1:
        raise ImageProcessingError(
            f"Input sizes differ: {sizes}", context="Compositing"
        )
    width, height = original.size
    if width <= 0 or height <= 0:
        raise ImageProcessingError(
            f"Invalid canvas dimensions {width}x{height}", context="Compositing"
        )
    if not options.has_text():
        raise ImageProcessingError("No text provided for rendering", context="Compositing")


def erase_with_mask(image: Image.Image, mask: Image.Image) -> Image.Image:
    """Apply destination-out: scale *image* alpha by ``1 - mask alpha``.

    Args:
        image: RGBA destination.
        mask: ``SubjectMask`` of the same size; only its alpha is used.

    Returns:
        A new RGBA image with the erased alpha channel.
    """
    pixels = np.array(image.convert("RGBA"))
    mask_alpha = np.asarray(mask.convert("RGBA"))[:, :, 3].astype(np.float32)

    keep = 1.0 - mask_alpha / 255.0
    alpha = pixels[:, :, 3].astype(np.float32) * keep
    pixels[:, :, 3] = np.rint(alpha).astype(np.uint8)
    return Image.fromarray(pixels)


def compose(
    original: Image.Image,
    subject: Image.Image,
    mask: Image.Image,
    options: TextRenderOptions,
    fonts_dir: Path | None = None,
) -> Image.Image:
    """Render *options* behind the subject.

    Args:
        original: Background image (the optimized source).
        subject: Subject-only RGBA raster with transparent background.
        mask: ``SubjectMask`` produced by ``to_mask``.
        options: Text appearance.
        fonts_dir: Directory searched first for font files.

    Returns:
        A new RGBA image.

    Raises:
        ImageProcessingError: If an input is missing, the sizes differ, or
            the text is blank.
        CanvasError: If drawing fails.
    """
    _check_inputs(original, subject, mask, options)
    size = original.size

    try:
        with ExitStack() as temporaries:
            # Step 1: base.
            base = temporaries.enter_context(original.convert("RGBA"))
            # Step 2: text over the base.
            text_layer = temporaries.enter_context(
                render_text_layer(size, options, DESKTOP_SHADOW, fonts_dir)
            )
            with_text = temporaries.enter_context(Image.alpha_composite(base, text_layer))
            # Step 3: destination-out through the subject silhouette.
            punched = temporaries.enter_context(erase_with_mask(with_text, mask))
            # Step 4: subject on top.
            subject_rgba = temporaries.enter_context(subject.convert("RGBA"))
            output = Image.alpha_composite(punched, subject_rgba)
    except TextBehindError:
        raise
    except Exception as exc:
        raise wrap_error(exc, "Text rendering behind subject") from exc

    logger.info("Composited text behind subject at %dx%d", *size)
    return output


def compose_simple(
    subject: Image.Image,
    options: TextRenderOptions,
    fonts_dir: Path | None = None,
) -> Image.Image:
    """Draw text directly over the subject raster, without a mask.

    Blank text yields a plain copy of the subject, so the subject can still
    be exported on its own.

    Args:
        subject: Subject-only RGBA raster.
        options: Text appearance.
        fonts_dir: Directory searched first for font files.

    Returns:
        A new RGBA image.

    Raises:
        ImageProcessingError: If *subject* is missing.
        CanvasError: If drawing fails.
    """
    if subject is None:
        raise ImageProcessingError("No subject raster provided", context="Mobile compositing")

    base = subject.convert("RGBA")
    if options is None or not options.has_text():
        return base

    try:
        with render_text_layer(base.size, options, MOBILE_SHADOW, fonts_dir) as text_layer:
            output = Image.alpha_composite(base, text_layer)
    except TextBehindError:
        raise
    except Exception as exc:
        raise wrap_error(exc, "Mobile text overlay") from exc
    finally:
        base.close()

    logger.info("Composited text over subject at %dx%d (mobile path)", *output.size)
    return output
