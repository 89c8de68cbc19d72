from __future__ import annotations

"""Phrase rendering: phonemize -> render phones -> resample -> concatenate."""

from dataclasses import dataclass
import time
from typing import Callable, List, Optional, Sequence

import numpy as np

from src.logging_utils import get_logger, set_log_context
from src.render.phrase import (
    NoteGroup,
    OtoSource,
    Phonemizer,
    RenderPhrase,
    build_render_phrase,
    phonemize_groups,
)
from src.render.resampler import Renderer, ResamplerItem, build_resampler_items
from src.render.wavtool import SAMPLE_RATE, CancelToken, concatenate

logger = get_logger(__name__)

PhonemizerFactory = Callable[[], Phonemizer]


@dataclass
class PhraseAudio:
    phrase_id: str
    start_ms: float
    samples: np.ndarray
    sample_rate: int = SAMPLE_RATE


def prepare_phrase(
    phrase_id: str,
    groups: Sequence[NoteGroup],
    phonemizer: Phonemizer,
    voicebank: OtoSource,
) -> RenderPhrase:
    results = phonemize_groups(groups, phonemizer)
    return build_render_phrase(phrase_id, results, voicebank)


def render_items(items: Sequence[ResamplerItem], renderer: Renderer) -> int:
    """Render every item; failures are logged and leave that item's output absent."""
    rendered = 0
    for item in items:
        try:
            item.output_file = renderer.render(item)
            rendered += 1
        except RuntimeError as exc:
            item.output_file = None
            logger.error("resampler_failed alias=%s error=%s", item.alias, exc)
    return rendered


def render_phrase(
    phrase: RenderPhrase,
    renderer: Renderer,
    *,
    cancel_event: Optional[CancelToken] = None,
    sample_rate: int = SAMPLE_RATE,
    keep_cache: bool = True,
) -> Optional[PhraseAudio]:
    """Render and concatenate one phrase. Returns None when cancelled."""
    set_log_context(phrase_id=phrase.phrase_id)
    start = time.monotonic()
    if cancel_event is not None and cancel_event.is_set():
        logger.info("render_phrase_cancelled phrase_id=%s", phrase.phrase_id)
        return None
    items = build_resampler_items(phrase)
    rendered = render_items(items, renderer)
    samples = concatenate(
        items,
        phrase.pitch_curve(),
        phrase.tick_to_ms(1),
        cancel_event=cancel_event,
        sample_rate=sample_rate,
    )
    if not keep_cache:
        _remove_outputs(items)
    if samples is None:
        logger.info("render_phrase_cancelled phrase_id=%s", phrase.phrase_id)
        return None
    logger.info(
        "render_phrase_done phrase_id=%s phones=%s rendered=%s samples=%s elapsed_ms=%.2f",
        phrase.phrase_id,
        len(phrase.phones),
        rendered,
        len(samples),
        (time.monotonic() - start) * 1000.0,
    )
    return PhraseAudio(
        phrase_id=phrase.phrase_id,
        start_ms=phrase.origin_ms,
        samples=samples,
        sample_rate=sample_rate,
    )


def _remove_outputs(items: Sequence[ResamplerItem]) -> None:
    for item in items:
        if item.output_file is not None and item.output_file.exists():
            item.output_file.unlink()


def mix_phrases(phrases: Sequence[PhraseAudio], sample_rate: int = SAMPLE_RATE) -> np.ndarray:
    """Sum phrase buffers at their start times; phrases starting before 0 are clipped."""
    placed: List[tuple] = []
    length = 0
    for phrase in phrases:
        offset = int(round(phrase.start_ms * sample_rate / 1000.0))
        placed.append((offset, phrase.samples))
        length = max(length, offset + len(phrase.samples))
    out = np.zeros(max(length, 0), dtype=np.float32)
    for offset, samples in placed:
        lo = max(0, -offset)
        if lo >= len(samples):
            continue
        out[offset + lo : offset + len(samples)] += samples[lo:]
    return out
