"""Reusable Streamlit UI components.

Each function renders a self-contained section of the interface.
Business logic is kept out: widgets call back into ``core`` via the
schemas only.
"""

from __future__ import annotations

from dataclasses import dataclass

import streamlit as st
from PIL import Image
from streamlit_image_comparison import image_comparison

from textbehind.config import Settings
from textbehind.core.device import detect_device_tier
from textbehind.core.segmenters import ModelCard
from textbehind.core.text import text_position_from_percent
from textbehind.errors import TextBehindError
from textbehind.schemas import DeviceTier, ProcessingMetrics, TextRenderOptions
from textbehind.ui.state import TEXT_DEFAULTS


@dataclass(frozen=True)
class Upload:
    """Raw upload handed to the pipeline."""

    file_id: str
    data: bytes
    mime_type: str


# ---------------------------------------------------------------------------
# Sidebar: model and device
# ---------------------------------------------------------------------------


def render_model_selector(cards: list[ModelCard]) -> ModelCard | None:
    """Pick one of the installed models, or ``None`` when none is installed.

    Without a model the app still runs; segmentation falls through to the
    brightness heuristic.
    """
    if not cards:
        st.sidebar.warning("No models found. Heuristic segmentation only.")
        return None

    return st.sidebar.selectbox(
        "Model",
        options=cards,
        format_func=lambda card: card.name,
        help="Models are listed once their weights are in the models directory.",
    )


def render_device_selector() -> DeviceTier:
    """Let the user confirm or override the detected device tier."""
    user_agent = st.context.headers.get("User-Agent")
    detected = detect_device_tier(user_agent)

    tiers = [DeviceTier.DESKTOP, DeviceTier.MOBILE]
    choice = st.sidebar.radio(
        "Device mode",
        options=tiers,
        index=tiers.index(detected),
        format_func=lambda tier: tier.value.capitalize(),
        help=(
            "Desktop places the text behind the subject. Mobile draws it "
            "over the subject with smaller images and a shorter time budget."
        ),
    )
    return choice


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------


def render_uploader(settings: Settings) -> Upload | None:
    """The current upload, or ``None``.

    Size and decode checks happen later in ``load_image`` so that the
    pipeline reports them with its own error messages.
    """
    photo = st.file_uploader(
        "Upload a photo",
        type=settings.supported_formats,
        help=f"JPG, PNG or WebP, up to {settings.max_upload_mb:.0f} MB.",
    )
    if photo is None:
        return None
    return Upload(
        file_id=photo.file_id,
        data=photo.getvalue(),
        mime_type=photo.type or "",
    )


# ---------------------------------------------------------------------------
# Text controls
# ---------------------------------------------------------------------------


def render_text_controls(settings: Settings, size: tuple[int, int]) -> TextRenderOptions:
    """Render the text controls in the sidebar.

    Position sliders are relative (0–100 % of each side) and converted to
    pixels for *size*.

    Args:
        settings: Application settings (font defaults).
        size: ``(width, height)`` of the image being rendered.

    Returns:
        A ``TextRenderOptions`` populated from the current widget values.
    """
    st.sidebar.header("Text")

    content = st.sidebar.text_input("Text", value=TEXT_DEFAULTS.content)
    font_family = st.sidebar.text_input(
        "Font family",
        value=settings.default_font_family,
        help="Family name or path to a .ttf/.otf file.",
    )
    font_size = st.sidebar.slider(
        "Font size",
        min_value=8,
        max_value=max(64, max(size)),
        value=min(settings.default_font_size, max(size)),
        step=2,
    )
    color = st.sidebar.color_picker("Color", value=TEXT_DEFAULTS.color)
    opacity = st.sidebar.slider(
        "Opacity (%)", min_value=0, max_value=100, value=TEXT_DEFAULTS.opacity_percent
    )

    col_bold, col_italic, col_underline = st.sidebar.columns(3)
    bold = col_bold.checkbox("Bold")
    italic = col_italic.checkbox("Italic")
    underline = col_underline.checkbox("Underline")

    st.sidebar.subheader("Placement")
    x_percent = st.sidebar.slider(
        "Horizontal (%)", min_value=0, max_value=100, value=TEXT_DEFAULTS.x_percent
    )
    y_percent = st.sidebar.slider(
        "Vertical (%)", min_value=0, max_value=100, value=TEXT_DEFAULTS.y_percent
    )
    rotation = st.sidebar.slider(
        "Rotation (°)",
        min_value=-180,
        max_value=180,
        value=TEXT_DEFAULTS.rotation_degrees,
        help="Clockwise rotation about the text centre.",
    )
    blur_radius = st.sidebar.slider(
        "Blur",
        min_value=0.0,
        max_value=20.0,
        value=TEXT_DEFAULTS.blur_radius,
        step=0.5,
    )

    x, y = text_position_from_percent(size, x_percent, y_percent)
    return TextRenderOptions(
        content=content,
        font_size=font_size,
        font_family=font_family or settings.default_font_family,
        color=color,
        opacity_percent=opacity,
        x=x,
        y=y,
        rotation_degrees=rotation,
        blur_radius=blur_radius,
        bold=bold,
        italic=italic,
        underline=underline,
    )


# ---------------------------------------------------------------------------
# Progress and errors
# ---------------------------------------------------------------------------


def make_progress_callback():
    """Create a progress bar and return a ``(step, percent)`` sink for it."""
    bar = st.progress(0, text="Starting…")

    def on_progress(step: str, percent: float) -> None:
        bar.progress(int(percent), text=step)

    return on_progress


def render_error(error: TextBehindError) -> None:
    """Show the user-facing message, suggestions and a retry hint."""
    st.error(error.user_message)
    for suggestion in error.suggestions:
        st.markdown(f"- {suggestion}")
    if error.retryable:
        st.info("This error may be temporary. Press **Retry** to try again.", icon="🔁")
    with st.expander("Technical details"):
        st.code(error.technical_details or error.kind.value)


def render_metrics(metrics: ProcessingMetrics, used_fallback: bool) -> None:
    """Display a one-line processing summary under the result."""
    size = metrics.image_size
    parts = [
        f"{metrics.duration_ms / 1000:.1f}s",
        f"{size.original.width}×{size.original.height} → "
        f"{size.processed.width}×{size.processed.height}",
    ]
    if metrics.memory_usage is not None:
        parts.append(f"peak {metrics.memory_usage.peak_mb:.0f} MB")
    if used_fallback:
        parts.append("heuristic segmentation")
    st.caption(" · ".join(parts))


# ---------------------------------------------------------------------------
# Main result area
# ---------------------------------------------------------------------------


def render_comparison(original: Image.Image, output: Image.Image) -> None:
    """Before/after slider between the photo and the rendered result."""
    # The slider component expects opaque RGB.
    white_bg = Image.new("RGB", output.size, (255, 255, 255))
    white_bg.paste(output, mask=output.getchannel("A"))

    _, center, _ = st.columns([1, 3, 1])
    with center:
        image_comparison(
            img1=original.convert("RGB"),
            img2=white_bg,
            label1="Original",
            label2="Text behind",
            width=1024,
            starting_position=50,
            show_labels=True,
            make_responsive=True,
            in_memory=True,
        )


def render_download(png_bytes: bytes) -> None:
    """Render the PNG download button."""
    _, center, _ = st.columns([1, 3, 1])
    with center:
        st.download_button(
            label="⬇ Download PNG",
            data=png_bytes,
            file_name="text_behind.png",
            mime="image/png",
            use_container_width=True,
        )
