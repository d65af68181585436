"""Device tier detection and per-tier resource budgets.

The tier is resolved once per pipeline invocation and passed explicitly;
nothing downstream probes the environment on its own.
"""

from __future__ import annotations

import logging
import re

from textbehind.config import Settings
from textbehind.schemas import DeviceProfile, DeviceTier, OptimizationConfig

logger = logging.getLogger(__name__)

_MOBILE_UA = re.compile(
    r"Android|iPhone|iPad|iPod|BlackBerry|IEMobile|Opera Mini", re.IGNORECASE
)
_MOBILE_MAX_VIEWPORT = 768
_MB = 1024 * 1024


def detect_device_tier(
    user_agent: str | None = None,
    viewport_width: int | None = None,
    touch_points: int = 0,
) -> DeviceTier:
    """Classify the client as mobile or desktop.

    Any one signal is enough for ``MOBILE``: a mobile user agent, a
    viewport no wider than 768 px, or a touch screen.
    """
    if user_agent and _MOBILE_UA.search(user_agent):
        return DeviceTier.MOBILE
    if viewport_width is not None and viewport_width <= _MOBILE_MAX_VIEWPORT:
        return DeviceTier.MOBILE
    if touch_points > 0:
        return DeviceTier.MOBILE
    return DeviceTier.DESKTOP


def performance_mode(profile: DeviceProfile) -> str:
    """Return ``"high"``, ``"balanced"`` or ``"battery-saver"``.

    Unknown battery state and charging devices are treated as ``"high"``.
    """
    if profile.battery_level is None or profile.is_charging or profile.battery_level > 50:
        return "high"
    if profile.battery_level > 20:
        return "balanced"
    return "battery-saver"


def resolve_optimization_config(
    profile: DeviceProfile,
    settings: Settings | None = None,
) -> OptimizationConfig:
    """Pick the optimization thresholds for *profile*.

    Desktop devices use the default configuration. Mobile devices start
    from the mobile configuration, which is tightened for low-end devices,
    relaxed for devices with at least 4 GB of RAM, and capped further when
    the battery is low and not charging.

    Args:
        profile: Device characteristics.
        settings: Source of the base configurations.

    Returns:
        An immutable ``OptimizationConfig``.
    """
    settings = settings or Settings()
    if profile.tier is DeviceTier.DESKTOP:
        return settings.desktop_config

    config = settings.mobile_config
    if profile.is_low_end:
        config = OptimizationConfig(
            max_dimension=384,
            max_file_size=2 * _MB,
            quality_threshold=0.7,
            memory_threshold_mb=25,
        )
    elif profile.estimated_ram_mb >= 4096:
        config = OptimizationConfig(
            max_dimension=768,
            max_file_size=5 * _MB,
            quality_threshold=0.8,
            memory_threshold_mb=60,
        )

    if performance_mode(profile) == "battery-saver":
        config = config.model_copy(
            update={
                "max_dimension": min(config.max_dimension, 512),
                "quality_threshold": min(config.quality_threshold, 0.7),
            }
        )

    logger.debug("Resolved %s config: %s", profile.tier.value, config)
    return config


def segmentation_timeout_s(tier: DeviceTier, settings: Settings | None = None) -> float:
    """Budget for the external segmenter on *tier*."""
    settings = settings or Settings()
    if tier is DeviceTier.MOBILE:
        return settings.mobile_timeout_s
    return settings.desktop_timeout_s
