"""Application settings loaded from environment and .env files."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from textbehind.schemas import DEFAULT_OPTIMIZATION_CONFIG, OptimizationConfig


_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

_MB = 1024 * 1024


class Settings(BaseSettings):
    """Global configuration for the text-behind application.

    Values are loaded in order: field defaults → .env file → environment
    variables. Environment variables are prefixed with ``TBH_``.

    Attributes:
        models_dir: Directory containing ONNX model files. The segmenter
            registry scans this directory to discover available models.
        onnx_providers: ONNX Runtime execution providers, tried in order.
        default_model_id: Model card preferred when several are available.
        modnet_ref_size: MODNet shortest-edge size at high quality.
        modnet_reduced_ref_size: MODNet shortest-edge size at reduced
            quality.
        rmbg_input_size: RMBG-2.0 input resolution at high quality.
        rmbg_reduced_input_size: RMBG-2.0 input resolution at reduced
            quality.
        desktop_timeout_s: Budget for the external segmenter on desktop.
        mobile_timeout_s: Budget for the external segmenter on mobile.
        retry_timeout_s: Fixed budget for the one-shot reduced-quality
            retry, clipped to whatever remains of the tier budget.
        memory_sample_interval_s: Period of the memory sampler thread.
        heartbeat_interval_s: Period of interim progress updates while the
            external segmenter is running.
        supported_formats: Allowed upload image extensions (lowercase,
            without dot).
        fonts_dir: Directory searched first for ``.ttf``/``.otf`` fonts.
        default_font_family: Font family preselected in the UI.
        default_font_size: Font size preselected in the UI.
        desktop_config: Optimization thresholds for desktop devices.
        mobile_config: Base optimization thresholds for mobile devices.
    """

    model_config = SettingsConfigDict(
        env_prefix="TBH_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    # --- Models ---
    models_dir: Path = _PROJECT_ROOT / "assets" / "models"
    onnx_providers: list[str] = ["CPUExecutionProvider"]
    default_model_id: str = "rmbg2_int8"

    # --- Provider-specific (per quality tier) ---
    modnet_ref_size: int = 512
    modnet_reduced_ref_size: int = 320
    rmbg_input_size: tuple[int, int] = (1024, 1024)
    rmbg_reduced_input_size: tuple[int, int] = (512, 512)

    # --- Segmentation budgets ---
    desktop_timeout_s: float = 60.0
    mobile_timeout_s: float = 45.0
    retry_timeout_s: float = 20.0

    # --- Observability ---
    memory_sample_interval_s: float = 0.1
    heartbeat_interval_s: float = 1.0

    # --- Upload ---
    supported_formats: list[str] = ["jpg", "jpeg", "png", "webp"]

    # --- Text ---
    fonts_dir: Path = _PROJECT_ROOT / "assets" / "fonts"
    default_font_family: str = "DejaVu Sans"
    default_font_size: int = 96

    # --- Optimization tiers ---
    desktop_config: OptimizationConfig = DEFAULT_OPTIMIZATION_CONFIG
    mobile_config: OptimizationConfig = OptimizationConfig(
        max_dimension=512,
        max_file_size=3 * _MB,
        quality_threshold=0.75,
        memory_threshold_mb=40,
    )

    @property
    def max_upload_mb(self) -> float:
        """Hard upload limit in megabytes (the desktop file-size ceiling)."""
        return self.desktop_config.max_file_size / _MB
