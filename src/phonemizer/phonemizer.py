from __future__ import annotations

"""Syllable-based phonemizer: note groups -> timed voicebank aliases."""

from typing import List, Optional, Sequence

from src.logging_utils import get_logger
from src.phonemizer.alias_mapper import AliasLookup, AliasMapper, AliasSource
from src.phonemizer.errors import PhonemizerLookupError
from src.phonemizer.g2p_dictionary import G2pDictionary
from src.phonemizer.syllables import SyllableSegmenter, WordNotFoundHook
from src.phonemizer.types import Note, Phoneme, PhonemeAttributes, PhonemizerResult
from src.render.time_axis import ms_to_tick

logger = get_logger(__name__)

POSITION_GRID_TICKS = 5


class SyllablePhonemizer:
    """Phonemizer for VCV / VCCV / CVC style voicebanks.

    The instance holds only immutable configuration (mapper, dictionary, voicebank);
    every ``process`` call builds its own scratch objects, so one instance may serve
    several phrases, but callers in the render pool still create one per task.
    """

    def __init__(
        self,
        mapper: AliasMapper,
        *,
        dictionary: Optional[G2pDictionary] = None,
        voicebank: Optional[AliasSource] = None,
        word_not_found: Optional[WordNotFoundHook] = None,
    ) -> None:
        self.mapper = mapper
        self.dictionary = dictionary
        self.voicebank = voicebank
        self.segmenter = SyllableSegmenter(
            mapper.vowels,
            dictionary=dictionary,
            word_not_found=word_not_found,
        )

    def process(
        self,
        notes: Sequence[Note],
        *,
        prev_neighbours: Optional[Sequence[Note]] = None,
        next_neighbour: Optional[Note] = None,
    ) -> PhonemizerResult:
        """Phonemize one word (``notes[0]`` plus its continuation notes).

        ``prev_neighbours`` is the previous word's note group when it touches this one;
        its trailing consonants are joined into the first syllable. The ending of this
        word is emitted only when ``next_neighbour`` is None.
        """
        if not notes:
            raise ValueError("notes must contain at least one note.")
        main_note = notes[0]
        group_end = sum(note.duration for note in notes)
        if main_note.is_forced_alias:
            return PhonemizerResult(
                phonemes=[Phoneme(main_note.lyric[1:], 0, group_end, main_note.tone)]
            )

        bpm = main_note.bpm
        lookup = AliasLookup(self.mapper, self.voicebank, bpm)
        try:
            prev_ending = self.segmenter.make_ending(prev_neighbours)
            syllables = self.segmenter.make_syllables(notes, prev_ending)
            phonemes: List[Phoneme] = []
            for syllable in syllables:
                aliases = self.mapper.process_syllable(syllable, lookup)
                phonemes.extend(
                    self._make_phonemes(
                        aliases,
                        lookup,
                        offset=len(phonemes),
                        container=syllable.duration,
                        position=syllable.position,
                        tone=syllable.tone,
                        last_tone=syllable.vowel_tone,
                        is_ending=False,
                    )
                )
            if next_neighbour is None:
                ending = self.segmenter.make_ending(notes)
                if ending is not None:
                    aliases = self.mapper.process_ending(ending, lookup)
                    phonemes.extend(
                        self._make_phonemes(
                            aliases,
                            lookup,
                            offset=len(phonemes),
                            container=ending.duration,
                            position=ending.position,
                            tone=ending.tone,
                            last_tone=ending.tone,
                            is_ending=True,
                        )
                    )
        except PhonemizerLookupError as exc:
            logger.warning(
                "phonemize_lookup_failed lyric=%s word=%s error=%s",
                main_note.lyric,
                exc.word,
                exc,
            )
            return PhonemizerResult(
                phonemes=[Phoneme(str(exc), 0, group_end, main_note.tone)],
                error=str(exc),
            )

        self._apply_overrides(phonemes, main_note.phoneme_attributes)
        self._assign_durations(phonemes, group_end)
        logger.debug(
            "phonemized lyric=%s syllables=%s phonemes=%s",
            main_note.lyric,
            len(syllables),
            [p.alias for p in phonemes],
        )
        return PhonemizerResult(phonemes=phonemes)

    def _make_phonemes(
        self,
        aliases: Sequence[str],
        lookup: AliasLookup,
        *,
        offset: int,
        container: int,
        position: int,
        tone: int,
        last_tone: int,
        is_ending: bool,
    ) -> List[Phoneme]:
        bpm = lookup.bpm
        count = len(aliases)
        phonemes: List[Phoneme] = [Phoneme("") for _ in range(count)]
        lengths = [0] * count
        for i in reversed(range(count)):
            current_tone = last_tone if i == count - 1 else tone
            alias = self.mapper.resolve_alias(aliases[i], current_tone, lookup)
            phonemes[i].alias = alias
            phonemes[i].tone = current_tone
            length = ms_to_tick(lookup.transition_ms(alias, current_tone), bpm)
            if i == count - 1:
                length = length * 2 if is_ending else 0
            lengths[i] = length

        margin = ms_to_tick(lookup.constant_transition_ms() * 2, bpm)
        modifier = scale_modifier(sum(lengths), margin, container)
        consumed = 0
        for i in reversed(range(count)):
            final = int(lengths[i] * modifier) // POSITION_GRID_TICKS * POSITION_GRID_TICKS
            phonemes[i].position = position - final - consumed
            consumed += final
        return phonemes

    @staticmethod
    def _apply_overrides(phonemes: List[Phoneme], attributes: Sequence[PhonemeAttributes]) -> None:
        if not attributes:
            return
        for index, phoneme in enumerate(phonemes):
            attr = next((a for a in attributes if a.index == index), None)
            if attr is not None and attr.offset:
                phoneme.position += attr.offset
        for prev, current in zip(phonemes, phonemes[1:]):
            if current.position < prev.position:
                current.position = prev.position

    @staticmethod
    def _assign_durations(phonemes: List[Phoneme], group_end: int) -> None:
        for i, phoneme in enumerate(phonemes):
            end = phonemes[i + 1].position if i + 1 < len(phonemes) else group_end
            phoneme.duration = max(0, end - phoneme.position)


def scale_modifier(total: int, margin: int, container: int) -> float:
    """Uniform shrink factor so that transitions plus the safety margin fit the container.

    A container of -1 (nothing before the first syllable) never shrinks. When the
    container cannot even hold the margin, lengths shrink by container / (total + margin).
    """
    if container <= 0 or total <= 0 or total + margin <= container:
        return 1.0
    if container > margin:
        return min(1.0, (container - margin) / total)
    return container / (total + margin)
