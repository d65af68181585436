"""Text layer rendering shared by both compositors.

A text layer is a transparent RGBA image the size of the output, holding
the glyphs, the optional underline and a soft drop shadow. Building it in
isolation keeps the compositors' blend steps independent of font handling.

Layer construction order: glyphs (+ underline) → synthetic italic →
blur → drop shadow underneath → rotation about ``(x, y)`` → opacity.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, ImageColor, ImageDraw, ImageFilter, ImageFont

from textbehind.errors import CanvasError
from textbehind.schemas import TextRenderOptions

logger = logging.getLogger(__name__)

FontType = ImageFont.FreeTypeFont | ImageFont.ImageFont

_ITALIC_SHEAR = 0.2
_STYLE_SUFFIXES: dict[tuple[bool, bool], tuple[str, ...]] = {
    (False, False): ("", "Regular"),
    (True, False): ("Bold",),
    (False, True): ("Italic", "Oblique"),
    (True, True): ("BoldItalic", "BoldOblique"),
}


@dataclass(frozen=True)
class ShadowStyle:
    """Drop shadow drawn beneath the glyphs.

    Attributes:
        color: Shadow RGBA; the alpha scales the glyph coverage.
        blur: Shadow softness in pixels.
        offset: ``(dx, dy)`` displacement in pixels.
    """

    color: tuple[int, int, int, int]
    blur: float
    offset: tuple[int, int]


# Subtle shadow for the depth effect; stronger one for the mobile overlay.
DESKTOP_SHADOW = ShadowStyle(color=(0, 0, 0, 128), blur=2.0, offset=(1, 1))
MOBILE_SHADOW = ShadowStyle(color=(0, 0, 0, 178), blur=4.0, offset=(2, 2))


# ---------------------------------------------------------------------------
# Fonts and colours
# ---------------------------------------------------------------------------


def parse_color(color: str) -> tuple[int, int, int, int]:
    """Parse a CSS-style colour string into an RGBA tuple.

    Raises:
        ValueError: If PIL does not recognise the colour.
    """
    parsed = ImageColor.getrgb(color)
    if len(parsed) == 3:
        return (*parsed, 255)
    return parsed


def _font_candidates(family: str, bold: bool, italic: bool) -> list[str]:
    names = [family]
    compact = family.replace(" ", "")
    if compact != family:
        names.append(compact)

    candidates: list[str] = []
    for name in names:
        for suffix in _STYLE_SUFFIXES[(bold, italic)]:
            stems = [name] if not suffix else [f"{name}-{suffix}", f"{name} {suffix}", f"{name}{suffix}"]
            for stem in stems:
                candidates.extend((f"{stem}.ttf", f"{stem}.otf"))
    return candidates


@functools.lru_cache(maxsize=64)
def load_font(
    family: str,
    size: int,
    bold: bool = False,
    italic: bool = False,
    fonts_dir: Path | None = None,
) -> tuple[FontType, bool, bool]:
    """Resolve a font face, falling back to Pillow's bundled font.

    Lookup order: an explicit font file path, ``fonts_dir``, the system
    font directories searched by ``ImageFont.truetype``, and finally
    ``ImageFont.load_default``. When the requested style has no face of
    its own the regular face is used and the style is synthesised.

    Args:
        family: Family name (``"DejaVu Sans"``) or a path to a font file.
        size: Font size in pixels.
        bold: Request a bold face.
        italic: Request an italic face.
        fonts_dir: Directory searched before the system directories.

    Returns:
        ``(font, synthetic_bold, synthetic_italic)``.
    """
    if Path(family).suffix.lower() in {".ttf", ".otf", ".ttc"}:
        try:
            return ImageFont.truetype(family, size), bold, italic
        except OSError:
            logger.warning("Font file %s could not be loaded", family)

    styles = [(bold, italic)]
    if bold or italic:
        styles.append((False, False))

    for want_bold, want_italic in styles:
        for candidate in _font_candidates(family, want_bold, want_italic):
            paths = [candidate]
            if fonts_dir is not None:
                paths.insert(0, str(fonts_dir / candidate))
            for path in paths:
                try:
                    font = ImageFont.truetype(path, size)
                except OSError:
                    continue
                return font, bold and not want_bold, italic and not want_italic

    logger.warning("Font family '%s' not found, using Pillow default", family)
    return ImageFont.load_default(size=size), bold, italic


def text_position_from_percent(
    size: tuple[int, int],
    x_percent: float,
    y_percent: float,
) -> tuple[float, float]:
    """Convert a relative position (0–100 % of each side) into pixels."""
    width, height = size
    return (x_percent / 100.0 * width, y_percent / 100.0 * height)


# ---------------------------------------------------------------------------
# Layer construction
# ---------------------------------------------------------------------------


def _draw_glyphs(
    size: tuple[int, int],
    options: TextRenderOptions,
    fonts_dir: Path | None,
) -> Image.Image:
    font, fake_bold, fake_italic = load_font(
        options.font_family,
        options.font_size,
        options.bold,
        options.italic,
        fonts_dir,
    )
    fill = parse_color(options.color)[:3] + (255,)
    stroke = max(1, round(options.font_size / 30)) if fake_bold else 0

    glyphs = Image.new("RGBA", size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(glyphs)
    anchor = (options.x, options.y)
    draw.text(
        anchor,
        options.content,
        font=font,
        fill=fill,
        anchor="mm",
        stroke_width=stroke,
        stroke_fill=fill,
    )

    if options.underline:
        left, _, right, _ = draw.textbbox(
            anchor, options.content, font=font, anchor="mm", stroke_width=stroke
        )
        line_width = max(1, round(options.font_size * 0.05))
        # Measured from the anchor, not the glyph box.
        line_y = options.y + options.font_size * 0.1
        draw.line([(left, line_y), (right, line_y)], fill=fill, width=line_width)

    if fake_italic:
        # Shear about the text's vertical centre so the anchor stays put.
        sheared = glyphs.transform(
            size,
            Image.AFFINE,
            (1, _ITALIC_SHEAR, -_ITALIC_SHEAR * options.y, 0, 1, 0),
            resample=Image.BICUBIC,
        )
        glyphs.close()
        glyphs = sheared

    return glyphs


def _drop_shadow(glyphs: Image.Image, shadow: ShadowStyle) -> Image.Image:
    opacity = shadow.color[3] / 255.0
    with glyphs.getchannel("A") as coverage:
        shifted = Image.new("L", glyphs.size, 0)
        shifted.paste(coverage.point(lambda v: round(v * opacity)), shadow.offset)

    if shadow.blur > 0:
        blurred = shifted.filter(ImageFilter.GaussianBlur(radius=shadow.blur / 2))
        shifted.close()
        shifted = blurred

    layer = Image.new("RGBA", glyphs.size, shadow.color[:3] + (0,))
    layer.putalpha(shifted)
    shifted.close()
    return layer


def render_text_layer(
    size: tuple[int, int],
    options: TextRenderOptions,
    shadow: ShadowStyle | None = DESKTOP_SHADOW,
    fonts_dir: Path | None = None,
) -> Image.Image:
    """Render *options* onto a transparent RGBA layer of *size*.

    Args:
        size: ``(width, height)`` of the output layer.
        options: Text appearance.
        shadow: Drop shadow style, ``None`` to disable.
        fonts_dir: Directory searched first for font files.

    Returns:
        A new RGBA image owned by the caller.

    Raises:
        CanvasError: If the colour is invalid or drawing fails.
    """
    try:
        glyphs = _draw_glyphs(size, options, fonts_dir)
    except (ValueError, OSError) as exc:
        raise CanvasError(
            f"Text drawing failed: {exc}", context="Text rendering"
        ) from exc

    if options.blur_radius > 0:
        blurred = glyphs.filter(ImageFilter.GaussianBlur(radius=options.blur_radius))
        glyphs.close()
        glyphs = blurred

    if shadow is not None:
        with _drop_shadow(glyphs, shadow) as shadow_layer:
            layer = Image.alpha_composite(shadow_layer, glyphs)
        glyphs.close()
    else:
        layer = glyphs

    if options.rotation_degrees:
        # PIL rotates counter-clockwise; the option is clockwise.
        rotated = layer.rotate(
            -options.rotation_degrees,
            resample=Image.BICUBIC,
            center=(options.x, options.y),
        )
        layer.close()
        layer = rotated

    if options.opacity_percent < 100:
        factor = options.opacity_percent / 100.0
        with layer.getchannel("A") as alpha:
            layer.putalpha(alpha.point(lambda v: round(v * factor)))

    logger.debug(
        "Text layer rendered: %r at (%.0f, %.0f), %dpx, rotation %.1f°",
        options.content,
        options.x,
        options.y,
        options.font_size,
        options.rotation_degrees,
    )
    return layer
