from __future__ import annotations

"""
Convenience synthesize API - runs the full render pipeline.
"""

import logging
from pathlib import Path
import threading
from typing import Any, Dict, Mapping, Optional, Sequence, Union
import uuid

from src.api.score import parse_score
from src.api.voicebank import load_voicebank
from src.config import Settings
from src.logging_utils import get_logger, summarize_payload
from src.phonemizer.registry import get_phonemizer
from src.phonemizer.types import Note
from src.render.engine import mix_phrases
from src.render.pool import RenderPool
from src.render.resampler import ExeResampler, Renderer

logger = get_logger(__name__)


def build_renderer(settings: Settings) -> Renderer:
    """Default renderer: the configured resampler executable."""
    if settings.resampler_path is None:
        raise ValueError("RESAMPLER_PATH is required to render audio.")
    return ExeResampler(
        settings.resampler_path,
        settings.cache_dir,
        timeout_seconds=settings.resampler_timeout_seconds,
    )


def synthesize(
    score: Union[str, Path, Mapping[str, Any], Sequence[Note]],
    voicebank: Union[str, Path],
    *,
    variant: str = "en-arpasing",
    renderer: Optional[Renderer] = None,
    settings: Optional[Settings] = None,
    cancel_event: Optional[threading.Event] = None,
    job_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Phonemize, resample and concatenate a score in one call.

    Args:
        score: Note payload, score file path, or already parsed notes
        voicebank: Voicebank path or ID
        variant: Phonemizer variant id
        renderer: Phone renderer (default: ``ExeResampler`` from settings)
        cancel_event: Set to abandon phrases that have not finished

    Returns:
        Dict with:
        - waveform: Mixed samples (numpy float32)
        - sample_rate: Sample rate
        - duration_seconds: Audio duration
        - phrases: Number of phrases rendered
        - cancelled: Whether cancellation was requested
    """
    settings = settings or Settings.from_env()
    job_id = job_id or uuid.uuid4().hex[:12]
    if isinstance(score, (str, Path, Mapping)):
        notes = parse_score(score)["notes"]
    else:
        notes = list(score)
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "synthesize input=%s",
            summarize_payload(
                {
                    "notes": len(notes),
                    "voicebank": str(voicebank),
                    "variant": variant,
                    "job_id": job_id,
                }
            ),
        )
    bank = load_voicebank(voicebank, settings=settings)
    renderer = renderer or build_renderer(settings)
    # Fail fast on an unknown variant before any worker starts.
    get_phonemizer(variant, voicebank=bank, settings=settings)

    def phonemizer_factory():
        return get_phonemizer(variant, voicebank=bank, settings=settings)

    with RenderPool(phonemizer_factory, bank, renderer, settings=settings) as pool:
        phrases = pool.render_notes(notes, job_id=job_id, cancel_event=cancel_event)

    waveform = mix_phrases(phrases, settings.sample_rate)
    result = {
        "waveform": waveform,
        "sample_rate": settings.sample_rate,
        "duration_seconds": len(waveform) / settings.sample_rate,
        "phrases": len(phrases),
        "cancelled": bool(cancel_event is not None and cancel_event.is_set()),
    }
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("synthesize output=%s", summarize_payload(result))
    return result
