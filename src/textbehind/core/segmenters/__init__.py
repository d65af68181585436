"""Model registry for the ONNX segmenters.

Every engine module in this package exports ``MODEL_CARDS`` and an
``ENGINE`` class whose constructor takes ``(model_path, settings)``.
Listing the module in ``_ENGINE_MODULES`` makes its models selectable;
a model only shows up in the UI once its weights are in ``models_dir``.

Typical usage::

    from textbehind.core.segmenters import create_segmenter, discover_available

    cards = discover_available(settings)
    segmenter = create_segmenter(cards[0], settings)
    subject = await segmenter.segment(image, QualityTier.HIGH)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from textbehind.config import Settings
from textbehind.core.segmenters import modnet, rmbg
from textbehind.core.segmenters._base import (
    CallableSegmenter,
    MattingModel,
    ModelCard,
    OnnxMattingEngine,
    OnnxSubjectSegmenter,
    SubjectSegmenter,
)

logger = logging.getLogger(__name__)

EngineFactory = Callable[[Path, Settings], MattingModel]

_ENGINE_MODULES = (rmbg, modnet)


def _build_registry() -> dict[str, tuple[ModelCard, EngineFactory]]:
    registry: dict[str, tuple[ModelCard, EngineFactory]] = {}
    for module in _ENGINE_MODULES:
        for card in module.MODEL_CARDS:
            if card.id in registry:
                logger.warning("Model id %r registered twice, keeping the first", card.id)
                continue
            registry[card.id] = (card, module.ENGINE)
    return registry


_REGISTRY = _build_registry()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def get_all_cards() -> list[ModelCard]:
    """Every registered card, installed or not."""
    return [card for card, _ in _REGISTRY.values()]


def discover_available(settings: Settings) -> list[ModelCard]:
    """Cards whose weights file exists, default model first, then by name."""
    installed = [
        card for card in get_all_cards() if (settings.models_dir / card.filename).is_file()
    ]
    logger.debug("%d of %d models installed in %s", len(installed), len(_REGISTRY), settings.models_dir)
    return sorted(installed, key=lambda card: (card.id != settings.default_model_id, card.name))


def create_engine(card: ModelCard, settings: Settings) -> MattingModel:
    """Load the synchronous engine behind *card*.

    Raises:
        ValueError: If *card* is not registered.
        ModelLoadError: If the weights cannot be loaded.
    """
    try:
        _, factory = _REGISTRY[card.id]
    except KeyError:
        raise ValueError(
            f"Unknown model id {card.id!r}; registered: {', '.join(sorted(_REGISTRY))}"
        ) from None
    return factory(settings.models_dir / card.filename, settings)


def create_segmenter(card: ModelCard, settings: Settings) -> SubjectSegmenter:
    """Load *card*'s engine and wrap it as an asynchronous segmenter."""
    return OnnxSubjectSegmenter(create_engine(card, settings), label=card.name)


__all__ = [
    "CallableSegmenter",
    "MattingModel",
    "ModelCard",
    "OnnxMattingEngine",
    "OnnxSubjectSegmenter",
    "SubjectSegmenter",
    "create_engine",
    "create_segmenter",
    "discover_available",
    "get_all_cards",
]
