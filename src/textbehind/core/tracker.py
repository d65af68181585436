"""Wall-clock and memory tracking for one pipeline run.

The sampler runs on a daemon thread so that CPU-bound raster work on the
event loop neither delays sampling nor is delayed by it.
"""

from __future__ import annotations

import logging
import os
import sys
import threading
import time

from textbehind.schemas import (
    ImageDimensions,
    ImageSizeInfo,
    MemoryUsage,
    ProcessingMetrics,
)

try:
    import resource
except ImportError:  # Windows
    resource = None

logger = logging.getLogger(__name__)

_MB = 1024 * 1024


# ---------------------------------------------------------------------------
# Memory probes
# ---------------------------------------------------------------------------


def current_memory_mb() -> float | None:
    """Resident set size of this process in MB, ``None`` if unknown.

    Reads ``/proc/self/statm`` where available; otherwise falls back to the
    peak RSS reported by ``getrusage`` (macOS returns bytes, Linux KB).
    """
    try:
        with open("/proc/self/statm", encoding="ascii") as fh:
            resident_pages = int(fh.read().split()[1])
        return resident_pages * os.sysconf("SC_PAGE_SIZE") / _MB
    except (OSError, ValueError, IndexError, AttributeError):
        pass

    if resource is None:
        return None
    usage = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    if sys.platform == "darwin":
        return usage / _MB
    return usage / 1024


def available_memory_mb() -> float | None:
    """Physical memory currently available to the system, in MB."""
    try:
        pages = os.sysconf("SC_AVPHYS_PAGES")
        page_size = os.sysconf("SC_PAGE_SIZE")
    except (ValueError, OSError, AttributeError):
        return None
    if pages < 0 or page_size < 0:
        return None
    return pages * page_size / _MB


def check_memory_availability(required_mb: float) -> bool:
    """Return ``False`` only when the system is known to lack *required_mb*."""
    available = available_memory_mb()
    if available is None:
        return True
    return available >= required_mb


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


class PerformanceTracker:
    """Stopwatch plus background memory sampler.

    Use ``PerformanceTracker.start()`` rather than the constructor; it
    begins sampling immediately.

    Args:
        original_dims: Dimensions of the input image.
        sample_interval_s: Sampling period of the memory thread.
    """

    def __init__(
        self,
        original_dims: ImageDimensions,
        sample_interval_s: float = 0.1,
    ) -> None:
        self._original = original_dims
        self._processed = original_dims
        self._interval = sample_interval_s
        self._start_wall = time.time()
        self._start_mono = time.perf_counter()
        self._initial_mb = current_memory_mb()
        self._peak_mb = self._initial_mb
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._metrics: ProcessingMetrics | None = None

    @classmethod
    def start(
        cls,
        original_dims: ImageDimensions,
        sample_interval_s: float = 0.1,
    ) -> PerformanceTracker:
        """Create a tracker and start its sampler thread."""
        tracker = cls(original_dims, sample_interval_s)
        if tracker._initial_mb is not None:
            tracker._thread = threading.Thread(
                target=tracker._sample_loop,
                name="textbehind-memory-sampler",
                daemon=True,
            )
            tracker._thread.start()
        return tracker

    @property
    def finished(self) -> bool:
        return self._metrics is not None

    def _sample_loop(self) -> None:
        while not self._stop.wait(self._interval):
            self._sample()

    def _sample(self) -> float | None:
        current = current_memory_mb()
        if current is not None:
            with self._lock:
                if self._peak_mb is None or current > self._peak_mb:
                    self._peak_mb = current
        return current

    def update_processed_dimensions(self, dims: ImageDimensions) -> None:
        """Record the dimensions the pipeline actually worked on."""
        if self._metrics is not None:
            logger.warning("Ignoring dimension update on a finished tracker")
            return
        self._processed = dims

    def finish(self) -> ProcessingMetrics:
        """Stop sampling and freeze the metrics.

        Calling ``finish`` again returns the same record.
        """
        if self._metrics is not None:
            return self._metrics

        end_mono = time.perf_counter()
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=max(1.0, self._interval * 2))

        final_mb = self._sample()
        memory_usage = None
        if self._initial_mb is not None and final_mb is not None:
            with self._lock:
                peak = max(self._peak_mb or final_mb, final_mb)
            memory_usage = MemoryUsage(
                initial_mb=self._initial_mb,
                peak_mb=peak,
                final_mb=final_mb,
            )

        self._metrics = ProcessingMetrics(
            start_time=self._start_wall,
            end_time=time.time(),
            duration_ms=(end_mono - self._start_mono) * 1000.0,
            memory_usage=memory_usage,
            image_size=ImageSizeInfo(
                original=self._original,
                processed=self._processed,
            ),
        )
        return self._metrics

    def __enter__(self) -> PerformanceTracker:
        return self

    def __exit__(self, *exc_info) -> None:
        self.finish()
