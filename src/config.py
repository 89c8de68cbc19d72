from __future__ import annotations

"""Render settings loader from environment variables."""

from dataclasses import dataclass
from pathlib import Path
import os

PROJECT_ROOT = Path(__file__).resolve().parents[1]
# UTAU resamplers write 44.1 kHz files; the wavtool phase windows are sized for it.
SAMPLE_RATE = 44100


def _env_int(name: str, default: int) -> int:
    """Read an int env var with a default."""
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    """Read a float env var with a default."""
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _env_bool(name: str, default: bool) -> bool:
    """Read a boolean env var with a default."""
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.lower() in {"1", "true", "yes"}


def _app_env() -> str:
    """Return the application environment name."""
    return os.getenv("APP_ENV") or os.getenv("ENV") or "dev"


def _env_path(name: str, default: Path) -> Path:
    """Read a path env var, resolving relative values against the project root."""
    value = os.getenv(name)
    if value is None or value == "":
        return default
    path = Path(value)
    if not path.is_absolute():
        path = PROJECT_ROOT / path
    return path


@dataclass(frozen=True)
class Settings:
    """Configuration values parsed from the environment."""
    project_root: Path
    render_workers: int
    cache_dir: Path
    dictionaries_dir: Path
    voicebanks_dir: Path
    resampler_path: Path | None
    resampler_timeout_seconds: float
    sample_rate: int
    keep_render_cache: bool
    app_env: str

    def __post_init__(self) -> None:
        if self.sample_rate != SAMPLE_RATE:
            raise ValueError(
                f"sample_rate must be {SAMPLE_RATE}; resamplers render at 44.1 kHz, got {self.sample_rate}."
            )

    @classmethod
    def from_env(cls) -> "Settings":
        """Construct settings from environment variables."""
        render_workers = _env_int("RENDER_WORKERS", 2)
        if render_workers < 1:
            raise ValueError("RENDER_WORKERS must be at least 1.")
        resampler_value = os.getenv("RESAMPLER_PATH", "").strip()
        resampler_path = Path(resampler_value) if resampler_value else None
        return cls(
            project_root=PROJECT_ROOT,
            render_workers=render_workers,
            cache_dir=_env_path("RENDER_CACHE_DIR", Path("/tmp/svs-render-cache")),
            dictionaries_dir=_env_path("PHONEMIZER_DICTIONARIES_DIR", PROJECT_ROOT / "dictionaries"),
            voicebanks_dir=_env_path("VOICEBANKS_DIR", PROJECT_ROOT / "assets" / "voicebanks"),
            resampler_path=resampler_path,
            resampler_timeout_seconds=_env_float("RESAMPLER_TIMEOUT_SECONDS", 30.0),
            sample_rate=SAMPLE_RATE,
            keep_render_cache=_env_bool("RENDER_KEEP_CACHE", True),
            app_env=_app_env(),
        )
