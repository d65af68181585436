"""Custom exceptions and error classification for the text-behind pipeline.

Every failure that leaves a pipeline stage is a ``TextBehindError`` carrying
an ``ErrorKind``. Foreign exceptions (PIL, ONNX Runtime, ``MemoryError``…)
are classified by matching their message, type names and traceback text
against ordered pattern groups, most specific first.

Typical usage::

    from textbehind.errors import wrap_error

    try:
        run_stage()
    except Exception as exc:
        raise wrap_error(exc, "Mask conversion") from exc
"""

from __future__ import annotations

import logging
import re
import traceback
from enum import Enum

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Coarse failure categories surfaced to callers."""

    LIBRARY_INITIALIZATION = "LIBRARY_INITIALIZATION"
    IMAGE_PROCESSING = "IMAGE_PROCESSING"
    MEMORY_ERROR = "MEMORY_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    INVALID_FORMAT = "INVALID_FORMAT"
    ENGINE_ERROR = "ENGINE_ERROR"
    CANVAS_ERROR = "CANVAS_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.MEMORY_ERROR: "Image is too large for processing. Please try a smaller image.",
    ErrorKind.NETWORK_ERROR: "Network error occurred. Please check your connection and try again.",
    ErrorKind.INVALID_FORMAT: "Unsupported image format. Please use PNG, JPG, or WebP.",
    ErrorKind.ENGINE_ERROR: "The segmentation engine failed. Please try a different model or runtime.",
    ErrorKind.CANVAS_ERROR: "Image processing error. Please try again with a different image.",
    ErrorKind.LIBRARY_INITIALIZATION: "Processing engine failed to start. Please reload and try again.",
    ErrorKind.IMAGE_PROCESSING: "Could not process image. Please try another one.",
    ErrorKind.UNKNOWN_ERROR: "An unexpected error occurred. Please try again.",
}

RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset(
    {
        ErrorKind.NETWORK_ERROR,
        ErrorKind.LIBRARY_INITIALIZATION,
        ErrorKind.IMAGE_PROCESSING,
        ErrorKind.UNKNOWN_ERROR,
    }
)

RECOVERY_SUGGESTIONS: dict[ErrorKind, tuple[str, ...]] = {
    ErrorKind.MEMORY_ERROR: (
        "Try a smaller image (recommended: under 2MB)",
        "Close other applications to free up memory",
        "Use an image with lower resolution",
    ),
    ErrorKind.NETWORK_ERROR: (
        "Check your internet connection",
        "Try again in a few moments",
    ),
    ErrorKind.INVALID_FORMAT: (
        "Use PNG, JPG, or WebP format",
        "Ensure the image file is not corrupted",
        "Try converting the image to a supported format",
    ),
    ErrorKind.ENGINE_ERROR: (
        "Select a different segmentation model",
        "Update onnxruntime or switch execution provider",
    ),
    ErrorKind.CANVAS_ERROR: ("Try again with a different image",),
}


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------


class TextBehindError(Exception):
    """Base exception for all text-behind errors.

    Args:
        message: Technical description of the failure.
        kind: Overrides the class default ``ErrorKind``.
        context: Pipeline stage in which the failure happened. Prefixed to
            ``technical_details``.
    """

    kind: ErrorKind = ErrorKind.UNKNOWN_ERROR

    def __init__(
        self,
        message: str = "",
        *,
        kind: ErrorKind | None = None,
        context: str | None = None,
    ) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind
        self.context = context
        self.technical_details = f"{context}: {message}" if context else message

    @property
    def user_message(self) -> str:
        """Human-readable message suitable for display."""
        return USER_MESSAGES[self.kind]

    @property
    def retryable(self) -> bool:
        """``True`` if retrying the same input may succeed."""
        return self.kind in RETRYABLE_KINDS

    @property
    def suggestions(self) -> tuple[str, ...]:
        """Corrective actions for the caller, possibly empty."""
        return RECOVERY_SUGGESTIONS.get(self.kind, ())


class ModelLoadError(TextBehindError):
    """Raised when the ONNX model cannot be loaded.

    Typical causes: missing file, corrupted weights, unsupported opset.
    """

    kind = ErrorKind.LIBRARY_INITIALIZATION


class ModelInferenceError(TextBehindError):
    """Raised when ONNX inference fails at runtime.

    Typical causes: unexpected input shape, provider error, OOM.
    """

    kind = ErrorKind.ENGINE_ERROR


class InvalidImageError(TextBehindError):
    """Raised when the input image is invalid or unsupported.

    Typical causes: corrupted file, unsupported format, zero-size image.
    """

    kind = ErrorKind.INVALID_FORMAT


class ImageProcessingError(TextBehindError):
    """Raised when a raster stage cannot produce its output."""

    kind = ErrorKind.IMAGE_PROCESSING


class MemoryLimitError(TextBehindError):
    """Raised when an input is too large to hold or process in memory."""

    kind = ErrorKind.MEMORY_ERROR


class CanvasError(TextBehindError):
    """Raised when a raster surface cannot be allocated, drawn or encoded."""

    kind = ErrorKind.CANVAS_ERROR


class SegmentationTimeoutError(ImageProcessingError):
    """Raised when the external segmenter loses the race against its budget."""


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

# Order matters: more specific groups first.
_ERROR_PATTERNS: tuple[tuple[ErrorKind, tuple[re.Pattern[str], ...]], ...] = tuple(
    (kind, tuple(re.compile(p, re.IGNORECASE) for p in patterns))
    for kind, patterns in (
        (
            ErrorKind.MEMORY_ERROR,
            (
                r"out of memory",
                r"memoryerror",
                r"memory allocation",
                r"allocation failed",
                r"cannot allocate",
                r"heap",
                r"maximum recursion depth",
                r"memory.*limit",
                r"decompression ?bomb",
            ),
        ),
        (
            ErrorKind.ENGINE_ERROR,
            (
                r"onnx",
                r"execution ?provider",
                r"webassembly",
                r"wasm",
                r"instantiate.*failed",
                r"compile.*failed",
                r"module.*failed",
            ),
        ),
        (
            ErrorKind.CANVAS_ERROR,
            (
                r"canvas",
                r"could not get.*context",
                r"image ?draw",
                r"encoder error",
                r"cannot write mode",
            ),
        ),
        (
            ErrorKind.INVALID_FORMAT,
            (
                r"invalid.*format",
                r"unsupported.*format",
                r"invalid image",
                r"cannot identify image",
                r"unidentifiedimageerror",
                r"decode.*failed",
                r"corrupt.*image",
                r"truncated",
                r"format.*detected",
            ),
        ),
        (
            ErrorKind.NETWORK_ERROR,
            (
                r"network.*request.*failed",
                r"failed to fetch",
                r"connection.*(failed|refused|reset)",
                r"network.*timeout",
                r"fetch.*error",
            ),
        ),
        (
            ErrorKind.LIBRARY_INITIALIZATION,
            (
                r"initiali[sz]ation.*failed",
                r"init.*failed",
                r"setup.*failed",
                r"configuration.*failed",
            ),
        ),
    )
)

_RESOURCE_PRESSURE = re.compile(r"memory|time(d)?\s?out", re.IGNORECASE)


def _describe(exc: BaseException) -> str:
    """Flatten an exception into the text used for pattern matching."""
    type_names = " ".join(cls.__name__ for cls in type(exc).__mro__)
    trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return f"{exc} {type_names} {trace}"


def classify_error(exc: BaseException) -> ErrorKind:
    """Map an arbitrary exception onto an ``ErrorKind``.

    ``TextBehindError`` instances keep their own kind. Everything else is
    matched against the ordered pattern groups.

    Args:
        exc: The exception to classify.

    Returns:
        The first matching kind, or ``ErrorKind.UNKNOWN_ERROR``.
    """
    if isinstance(exc, TextBehindError):
        return exc.kind
    if isinstance(exc, MemoryError):
        return ErrorKind.MEMORY_ERROR

    text = _describe(exc)
    for kind, patterns in _ERROR_PATTERNS:
        if any(pattern.search(text) for pattern in patterns):
            return kind
    return ErrorKind.UNKNOWN_ERROR


def is_resource_pressure(exc: BaseException) -> bool:
    """Return ``True`` if *exc* looks like a memory or timeout failure."""
    if isinstance(exc, (MemoryError, TimeoutError, MemoryLimitError, SegmentationTimeoutError)):
        return True
    return bool(_RESOURCE_PRESSURE.search(str(exc)))


_KIND_TO_CLASS: dict[ErrorKind, type[TextBehindError]] = {
    ErrorKind.LIBRARY_INITIALIZATION: ModelLoadError,
    ErrorKind.ENGINE_ERROR: ModelInferenceError,
    ErrorKind.INVALID_FORMAT: InvalidImageError,
    ErrorKind.IMAGE_PROCESSING: ImageProcessingError,
    ErrorKind.MEMORY_ERROR: MemoryLimitError,
    ErrorKind.CANVAS_ERROR: CanvasError,
}


def wrap_error(exc: BaseException, context: str | None = None) -> TextBehindError:
    """Convert *exc* into a classified ``TextBehindError`` and log it.

    Existing ``TextBehindError`` instances are returned unchanged (their
    context is filled in if missing).

    Args:
        exc: The exception to wrap.
        context: Pipeline stage name used in logs and technical details.

    Returns:
        A ``TextBehindError`` subclass matching the classified kind.
    """
    if isinstance(exc, TextBehindError):
        if context and exc.context is None:
            exc.context = context
            exc.technical_details = f"{context}: {exc.technical_details}"
        return exc

    kind = classify_error(exc)
    error_cls = _KIND_TO_CLASS.get(kind, TextBehindError)
    wrapped = error_cls(str(exc) or type(exc).__name__, kind=kind, context=context)
    logger.error(
        "%s failed (%s, retryable=%s): %s",
        context or "Pipeline stage",
        kind.value,
        wrapped.retryable,
        wrapped.technical_details,
    )
    return wrapped
