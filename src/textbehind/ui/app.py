"""Streamlit entry point for Text Behind.

Launch with::

    streamlit run src/textbehind/ui/app.py
"""

from __future__ import annotations

import asyncio

import streamlit as st
from PIL import Image

from textbehind.config import Settings
from textbehind.core.pipeline import TextBehindPipeline
from textbehind.core.segmenters import (
    CallableSegmenter,
    OnnxSubjectSegmenter,
    SubjectSegmenter,
    create_engine,
    discover_available,
    get_all_cards,
)
from textbehind.errors import ModelLoadError, TextBehindError
from textbehind.schemas import DeviceProfile, MattingInput, QualityTier
from textbehind.ui.state import (
    forget_result,
    recall_result,
    remember_result,
    sync_selection,
)
from textbehind.ui.widgets import (
    make_progress_callback,
    render_comparison,
    render_device_selector,
    render_download,
    render_error,
    render_metrics,
    render_model_selector,
    render_text_controls,
    render_uploader,
)

# ---------------------------------------------------------------------------
# Page configuration (must be called first)
# ---------------------------------------------------------------------------

st.set_page_config(
    page_title="Text Behind",
    page_icon="🅣",
    layout="wide",
    initial_sidebar_state="expanded",
)


# ---------------------------------------------------------------------------
# Cached resources
# ---------------------------------------------------------------------------


@st.cache_resource(show_spinner="Loading model…")
def _load_segmenter(model_id: str, _settings: Settings) -> SubjectSegmenter:
    """Load *model_id* once per process and warm it up.

    A reduced-quality pass on a blank image pays ONNX Runtime's provider
    start-up before the first upload. ``_settings`` is excluded from
    Streamlit's cache hash by its leading underscore.
    """
    card = next(c for c in get_all_cards() if c.id == model_id)
    engine = create_engine(card, _settings)

    dummy = Image.new("RGB", (64, 64), (128, 128, 128))
    engine.predict(MattingInput(image=dummy, quality=QualityTier.REDUCED))

    return OnnxSubjectSegmenter(engine, label=card.name)


async def _no_model(image: Image.Image, quality: QualityTier) -> Image.Image:
    raise ModelLoadError("No segmentation model is installed")


@st.cache_data(show_spinner=False)
def _get_settings() -> Settings:
    """Load and cache application settings."""
    return Settings()


# ---------------------------------------------------------------------------
# Main application
# ---------------------------------------------------------------------------


def main() -> None:
    """Run the Text-behind Streamlit application."""
    settings = _get_settings()

    # ---- Header ----
    st.title("🅣 Text Behind")
    st.caption("Place text behind the subject of your photo.")

    # ---- Sidebar: model and device ----
    selected_card = render_model_selector(discover_available(settings))
    model_id = selected_card.id if selected_card else None
    tier = render_device_selector()

    sync_selection(model_id, tier)

    # ---- Upload ----
    upload = render_uploader(settings)
    if upload is None:
        st.info("Upload a photo to get started.", icon="📷")
        forget_result()
        return

    # ---- Segmentation ----
    try:
        segmenter = (
            _load_segmenter(model_id, settings)
            if model_id
            else CallableSegmenter(_no_model)
        )
    except TextBehindError as exc:
        st.warning(f"Model could not be loaded, using heuristic segmentation: {exc}")
        segmenter = CallableSegmenter(_no_model)

    pipeline = TextBehindPipeline(segmenter, settings, DeviceProfile(tier=tier))
    result_key = (upload.file_id, model_id, tier)

    result = recall_result(result_key)
    if result is None:
        forget_result()
        on_progress = make_progress_callback()
        try:
            result = asyncio.run(
                pipeline.prepare(upload.data, upload.mime_type, on_progress)
            )
        except TextBehindError as exc:
            render_error(exc)
            if exc.retryable:
                # Clicking reruns the script, which retries the segmentation.
                st.button("Retry")
            return
        remember_result(result_key, result)

    # ---- Sidebar: text ----
    options = render_text_controls(settings, result.size)

    # ---- Compositing ----
    try:
        if options.has_text() or pipeline.is_mobile:
            output = pipeline.render(result, options)
        else:
            st.info("Enter some text to place behind the subject.")
            output = result.background
        png_bytes = pipeline.export(output)
    except TextBehindError as exc:
        render_error(exc)
        return

    # ---- Display ----
    st.divider()
    render_comparison(result.background, output)
    render_metrics(result.metrics, result.used_fallback)

    # ---- Download ----
    st.divider()
    render_download(png_bytes)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
