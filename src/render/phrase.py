from __future__ import annotations

"""Note grouping, phrase splitting and render-phone timing."""

from bisect import bisect_right
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence, Tuple

import numpy as np

from src.logging_utils import get_logger
from src.phonemizer.types import Note, Phoneme, PhonemizerResult
from src.render.pitch import build_phrase_pitch_curve
from src.render.time_axis import TICKS_PER_BEAT, tick_to_ms
from src.voicebank.oto import Oto

logger = get_logger(__name__)

PREUTTER_AUTOFIT_RATIO = 0.9
DEFAULT_FADE_IN_MS = 5.0
MIN_FADE_OUT_MS = 25.0
ENVELOPE_FULL = 100.0


class Phonemizer(Protocol):
    def process(
        self,
        notes: Sequence[Note],
        *,
        prev_neighbours: Optional[Sequence[Note]] = None,
        next_neighbour: Optional[Note] = None,
    ) -> PhonemizerResult:
        ...


class OtoSource(Protocol):
    def map_alias(self, alias: str, tone: int, color: Optional[str] = None) -> str:
        ...

    def get_mapped_oto(self, alias: str, tone: int, color: Optional[str] = None) -> Optional[Oto]:
        ...


@dataclass
class NoteGroup:
    """One word: a lyric note plus its ``+`` / ``...`` continuation notes."""
    notes: List[Note]
    note_indices: List[int]

    @property
    def main(self) -> Note:
        return self.notes[0]

    @property
    def position(self) -> int:
        return self.notes[0].position

    @property
    def end(self) -> int:
        return self.notes[-1].end


def group_notes(notes: Sequence[Note]) -> List[NoteGroup]:
    """Group notes into words; a continuation note with nothing before it starts its own group."""
    groups: List[NoteGroup] = []
    current: Optional[NoteGroup] = None
    for idx, note in enumerate(notes):
        if current is None or not note.is_continuation:
            current = NoteGroup(notes=[note], note_indices=[idx])
            groups.append(current)
        else:
            current.notes.append(note)
            current.note_indices.append(idx)
    return groups


def split_phrases(groups: Sequence[NoteGroup]) -> List[List[NoteGroup]]:
    """Contiguous groups form one phrase; any gap between groups starts a new one."""
    phrases: List[List[NoteGroup]] = []
    for group in groups:
        if phrases and phrases[-1][-1].end == group.position:
            phrases[-1].append(group)
        else:
            phrases.append([group])
    return phrases


def phonemize_groups(
    groups: Sequence[NoteGroup],
    phonemizer: Phonemizer,
) -> List[Tuple[NoteGroup, PhonemizerResult]]:
    """Run the phonemizer over each group with its touching neighbours."""
    results: List[Tuple[NoteGroup, PhonemizerResult]] = []
    for i, group in enumerate(groups):
        prev_group = groups[i - 1] if i > 0 and groups[i - 1].end == group.position else None
        next_group = groups[i + 1] if i + 1 < len(groups) and groups[i + 1].position == group.end else None
        result = phonemizer.process(
            group.notes,
            prev_neighbours=prev_group.notes if prev_group else None,
            next_neighbour=next_group.main if next_group else None,
        )
        results.append((group, result))
    return results


@dataclass
class RenderPhone:
    index: int
    alias: str
    position: int
    duration: int
    tone: int
    note_index: int
    oto: Oto
    velocity: int = 100
    volume: int = 100
    modulation: int = 0
    flags: str = ""
    preutter_ms: float = 0.0
    overlap_ms: float = 0.0
    overlapped: bool = False
    tail_intrude_ms: float = 0.0
    tail_overlap_ms: float = 0.0
    envelope: List[Tuple[float, float]] = field(default_factory=list)

    @property
    def end(self) -> int:
        return self.position + self.duration


@dataclass
class RenderPhrase:
    phrase_id: str
    notes: List[Note]
    phones: List[RenderPhone]
    bpm: float

    def tick_to_ms(self, ticks: float) -> float:
        return tick_to_ms(ticks, self.bpm)

    @property
    def origin_ms(self) -> float:
        """Absolute ms of output sample 0: the first phone's start minus its preutterance."""
        if not self.phones:
            return 0.0
        first = self.phones[0]
        return self.tick_to_ms(first.position) - first.preutter_ms

    @property
    def origin_tick(self) -> float:
        return self.origin_ms * self.bpm * TICKS_PER_BEAT / 60000.0

    @property
    def duration_ms(self) -> float:
        if not self.phones:
            return 0.0
        last = self.phones[-1]
        return self.tick_to_ms(last.end) + last.tail_overlap_ms - self.origin_ms

    def pitch_curve(self) -> np.ndarray:
        return build_phrase_pitch_curve(self.notes, self.origin_tick, self.duration_ms)


def _owner_note_index(group: NoteGroup, first_index: int, tick: int) -> int:
    """Phrase index of the group note sounding at ``tick`` (the lyric note for lead-ins)."""
    offset = bisect_right([n.position for n in group.notes], tick) - 1
    return first_index + max(offset, 0)


def _envelope(phone: RenderPhone, bpm: float) -> List[Tuple[float, float]]:
    duration_ms = tick_to_ms(phone.duration, bpm)
    x0 = -phone.preutter_ms
    x1 = x0 + (phone.overlap_ms if phone.overlapped else DEFAULT_FADE_IN_MS)
    x2 = max(0.0, x1)
    x3 = duration_ms - phone.tail_intrude_ms
    x4 = x3 + phone.tail_overlap_ms
    if x3 == x4:
        x3 = max(x2, x3 - MIN_FADE_OUT_MS)
    return [(x0, 0.0), (x1, ENVELOPE_FULL), (x2, ENVELOPE_FULL), (x3, ENVELOPE_FULL), (x4, 0.0)]


def build_render_phrase(
    phrase_id: str,
    results: Sequence[Tuple[NoteGroup, PhonemizerResult]],
    voicebank: OtoSource,
) -> RenderPhrase:
    """Resolve otos and timing for every phoneme of one phrase.

    The phrase's notes are the groups' notes in order. Phonemes without an oto are
    skipped.
    """
    notes: List[Note] = [note for group, _ in results for note in group.notes]
    bpm = notes[0].bpm if notes else 120.0
    phones: List[RenderPhone] = []
    first_index = 0
    for group, result in results:
        group_first_index = first_index
        first_index += len(group.notes)
        for index, phoneme in enumerate(result.phonemes):
            phone = _resolve_phone(index, phoneme, group, voicebank)
            if phone is None:
                continue
            phone.note_index = _owner_note_index(group, group_first_index, phone.position)
            owner = notes[phone.note_index]
            phone.velocity = owner.velocity
            phone.volume = owner.volume
            phone.modulation = owner.modulation
            phone.flags = owner.flags
            phones.append(phone)
    phones.sort(key=lambda p: p.position)

    # A phone ends where the next one starts, also across word groups.
    for phone, nxt in zip(phones, phones[1:]):
        if nxt.position < phone.end:
            phone.duration = max(0, nxt.position - phone.position)
    for i, phone in enumerate(phones):
        prev = phones[i - 1] if i > 0 else None
        if prev is not None and prev.end == phone.position:
            phone.overlapped = True
            max_preutter = tick_to_ms(prev.duration, bpm) * PREUTTER_AUTOFIT_RATIO
            if phone.preutter_ms > max_preutter:
                scale = max_preutter / phone.preutter_ms
                phone.preutter_ms = max_preutter
                phone.overlap_ms *= scale
    for i, phone in enumerate(phones):
        nxt = phones[i + 1] if i + 1 < len(phones) else None
        if nxt is not None and nxt.overlapped:
            phone.tail_intrude_ms = nxt.preutter_ms
            phone.tail_overlap_ms = nxt.overlap_ms
        phone.envelope = _envelope(phone, bpm)

    logger.debug(
        "render_phrase_built phrase_id=%s notes=%s phones=%s",
        phrase_id,
        len(notes),
        len(phones),
    )
    return RenderPhrase(phrase_id=phrase_id, notes=notes, phones=phones, bpm=bpm)


def _resolve_phone(
    index: int,
    phoneme: Phoneme,
    group: NoteGroup,
    voicebank: OtoSource,
) -> Optional[RenderPhone]:
    main = group.main
    tone = phoneme.tone if phoneme.tone is not None else main.tone
    oto = voicebank.get_mapped_oto(phoneme.alias, tone)
    if oto is None:
        logger.warning(
            "phone_skipped_no_oto alias=%s tone=%s lyric=%s",
            phoneme.alias,
            tone,
            main.lyric,
        )
        return None
    attr = main.attributes_for(index)
    preutter_scale = attr.preutter_scale if attr and attr.preutter_scale is not None else 1.0
    overlap_scale = attr.overlap_scale if attr and attr.overlap_scale is not None else 1.0
    return RenderPhone(
        index=index,
        alias=voicebank.map_alias(phoneme.alias, tone),
        position=group.position + phoneme.position,
        duration=phoneme.duration,
        tone=tone,
        note_index=0,
        oto=oto,
        preutter_ms=oto.preutter * preutter_scale,
        overlap_ms=oto.overlap * overlap_scale,
    )
