"""What the Streamlit app keeps between reruns.

Segmentation is the expensive step, so its result is stored together with
the ``(file_id, model_id, tier)`` key that produced it. Moving a text
slider reruns the script but finds the stored result; a new upload, model
or device tier does not.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import streamlit as st

from textbehind.schemas import DeviceTier, SegmentationResult

ResultKey = tuple[str, Optional[str], DeviceTier]


class StateKey(str, Enum):
    """Session state slots."""

    SELECTION = "selection"
    RESULT = "segmentation"


@dataclass(frozen=True)
class TextDefaults:
    """Initial values of the text controls."""

    content: str = "TEXT"
    color: str = "#ffffff"
    opacity_percent: int = 100
    x_percent: int = 50
    y_percent: int = 40
    rotation_degrees: int = 0
    blur_radius: float = 0.0


TEXT_DEFAULTS = TextDefaults()


def sync_selection(model_id: str | None, tier: DeviceTier) -> None:
    """Record the sidebar selection, dropping the stored result if it changed."""
    selection = (model_id, tier)
    if st.session_state.get(StateKey.SELECTION.value) != selection:
        forget_result()
        st.session_state[StateKey.SELECTION.value] = selection


def remember_result(key: ResultKey, result: SegmentationResult) -> None:
    """Store *result* as the segmentation for *key*.

    Args:
        key: ``(file_id, model_id, tier)`` of the run that produced it.
        result: Output of ``TextBehindPipeline.prepare``.
    """
    st.session_state[StateKey.RESULT.value] = (key, result)


def recall_result(key: ResultKey) -> SegmentationResult | None:
    """Look up the stored segmentation.

    Args:
        key: ``(file_id, model_id, tier)`` of the current run.

    Returns:
        The stored result if it was produced for *key*, else ``None``.
    """
    stored = st.session_state.get(StateKey.RESULT.value)
    if stored is None or stored[0] != key:
        return None
    return stored[1]


def forget_result() -> None:
    """Drop the stored segmentation so the next run segments again."""
    st.session_state.pop(StateKey.RESULT.value, None)
