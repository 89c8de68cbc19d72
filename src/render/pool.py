from __future__ import annotations

"""Bounded worker pool rendering one phrase per task."""

from concurrent.futures import Future, ThreadPoolExecutor
import threading
from typing import List, Optional, Sequence

from src.config import Settings
from src.logging_utils import clear_log_context, get_logger, set_log_context
from src.phonemizer.types import Note
from src.render.engine import PhonemizerFactory, PhraseAudio, prepare_phrase, render_phrase
from src.render.phrase import NoteGroup, OtoSource, group_notes, split_phrases
from src.render.resampler import Renderer

logger = get_logger(__name__)


class RenderPool:
    """Renders independent phrases in parallel.

    Each task builds its own phonemizer from ``phonemizer_factory``; concatenation
    inside a phrase stays sequential.
    """

    def __init__(
        self,
        phonemizer_factory: PhonemizerFactory,
        voicebank: OtoSource,
        renderer: Renderer,
        *,
        settings: Optional[Settings] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self.settings = settings or Settings.from_env()
        workers = max_workers if max_workers is not None else self.settings.render_workers
        if workers < 1:
            raise ValueError("max_workers must be at least 1.")
        self.max_workers = workers
        self.phonemizer_factory = phonemizer_factory
        self.voicebank = voicebank
        self.renderer = renderer
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="render")

    def __enter__(self) -> "RenderPool":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _render_task(
        self,
        job_id: str,
        phrase_id: str,
        groups: Sequence[NoteGroup],
        cancel_event: Optional[threading.Event],
    ) -> Optional[PhraseAudio]:
        set_log_context(job_id=job_id, phrase_id=phrase_id)
        try:
            phonemizer = self.phonemizer_factory()
            phrase = prepare_phrase(phrase_id, groups, phonemizer, self.voicebank)
            if not phrase.phones:
                logger.warning("render_phrase_empty phrase_id=%s", phrase_id)
                return None
            return render_phrase(
                phrase,
                self.renderer,
                cancel_event=cancel_event,
                sample_rate=self.settings.sample_rate,
                keep_cache=self.settings.keep_render_cache,
            )
        finally:
            clear_log_context()

    def submit_notes(
        self,
        notes: Sequence[Note],
        *,
        job_id: str = "-",
        cancel_event: Optional[threading.Event] = None,
    ) -> List[Future]:
        phrases = split_phrases(group_notes(sorted(notes, key=lambda n: n.position)))
        logger.info("render_job_submitted job_id=%s phrases=%s workers=%s", job_id, len(phrases), self.max_workers)
        return [
            self._executor.submit(self._render_task, job_id, f"{job_id}-p{i}", groups, cancel_event)
            for i, groups in enumerate(phrases)
        ]

    def render_notes(
        self,
        notes: Sequence[Note],
        *,
        job_id: str = "-",
        cancel_event: Optional[threading.Event] = None,
    ) -> List[PhraseAudio]:
        """Render all phrases and return the finished ones in phrase order."""
        futures = self.submit_notes(notes, job_id=job_id, cancel_event=cancel_event)
        results: List[PhraseAudio] = []
        for future in futures:
            audio = future.result()
            if audio is not None:
                results.append(audio)
        return results
