from __future__ import annotations

"""
Audio output API.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Union

import numpy as np
import soundfile as sf

from src.logging_utils import get_logger, summarize_payload
from src.render.wavtool import SAMPLE_RATE

logger = get_logger(__name__)

SUPPORTED_FORMATS = {"wav": "PCM_16", "flac": "PCM_16"}


def save_audio(
    waveform: Union[List[float], np.ndarray],
    output_path: Union[str, Path],
    *,
    sample_rate: int = SAMPLE_RATE,
    format: str = "wav",
    normalize: bool = True,
) -> Dict[str, Any]:
    """
    Write a mono render to a file.

    Args:
        waveform: Audio samples (list or numpy array)
        output_path: File path; the suffix is replaced to match ``format``
        sample_rate: Sample rate (default: 44100)
        format: "wav" or "flac"
        normalize: Scale down when the peak exceeds full scale

    Returns:
        Dict with path, duration_seconds, sample_rate and peak.
    """
    if format not in SUPPORTED_FORMATS:
        raise ValueError(f"Unsupported audio format '{format}'. Use one of: {', '.join(SUPPORTED_FORMATS)}.")
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "save_audio input=%s",
            summarize_payload(
                {
                    "waveform": waveform,
                    "output_path": str(output_path),
                    "sample_rate": sample_rate,
                    "format": format,
                }
            ),
        )
    output_path = Path(output_path).with_suffix(f".{format}")
    output_path.parent.mkdir(parents=True, exist_ok=True)

    samples = np.asarray(waveform, dtype=np.float32).flatten()
    peak = float(np.abs(samples).max()) if len(samples) else 0.0
    if normalize and peak > 1.0:
        samples = samples / peak

    sf.write(str(output_path), samples, sample_rate, subtype=SUPPORTED_FORMATS[format])

    result = {
        "path": str(output_path.resolve()),
        "duration_seconds": len(samples) / sample_rate,
        "sample_rate": sample_rate,
        "peak": peak,
    }
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("save_audio output=%s", summarize_payload(result))
    return result
