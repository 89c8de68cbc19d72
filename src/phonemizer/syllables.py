from __future__ import annotations

"""Split a word's notes and lyric symbols into syllables and a trailing ending."""

from dataclasses import replace
import re
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from src.logging_utils import get_logger
from src.phonemizer.errors import PhonemizerLookupError, SyllableInvariantError
from src.phonemizer.g2p_dictionary import G2pDictionary
from src.phonemizer.types import Ending, Note, Syllable

logger = get_logger(__name__)

SPLIT_GRID_TICKS = 15
WORD_NOT_FOUND = "word not found"

WordNotFoundHook = Callable[[str], Optional[Sequence[str]]]


class SyllableSegmenter:
    """Turns one note group into ``Syllable`` objects plus an optional ``Ending``.

    ``notes[0]`` carries the lyric; following notes are continuations of the same
    word. Vowel extension notes (``+~`` / ``+*``) repeat the current vowel, while
    the other continuation notes host the word's next vowel.
    """

    def __init__(
        self,
        vowels: Iterable[str],
        *,
        dictionary: Optional[G2pDictionary] = None,
        word_not_found: Optional[WordNotFoundHook] = None,
    ) -> None:
        self.vowels = frozenset(vowels)
        self.dictionary = dictionary
        self._word_not_found = word_not_found

    @property
    def has_dictionary(self) -> bool:
        return self.dictionary is not None

    def handle_word_not_found(self, word: str) -> List[str]:
        if self._word_not_found is not None:
            symbols = self._word_not_found(word)
            if symbols:
                return list(symbols)
        raise PhonemizerLookupError(WORD_NOT_FOUND, word=word)

    def get_symbols(self, note: Note) -> List[str]:
        if note.phonetic_hint:
            return note.phonetic_hint.split(" ")
        if self.dictionary is None:
            return note.lyric.split(" ")
        symbols: List[str] = []
        for subword in re.split(r"[ _]+", note.lyric.strip().lower()):
            if not subword:
                continue
            found = self.dictionary.query(subword)
            if found is None:
                found = self.handle_word_not_found(subword)
            symbols.extend(found)
        return symbols

    def extract_vowels(self, symbols: Sequence[str]) -> List[int]:
        return [i for i, symbol in enumerate(symbols) if symbol in self.vowels]

    def _vowel_ids(self, symbols: Sequence[str]) -> List[int]:
        vowel_ids = self.extract_vowels(symbols)
        if not vowel_ids:
            # All consonants: the last symbol is the nucleus.
            vowel_ids.append(len(symbols) - 1)
        return vowel_ids

    def apply_extensions(self, symbols: Sequence[str], notes: Sequence[Note]) -> List[str]:
        vowel_ids = self._vowel_ids(symbols)
        last_vowel_i = 0
        extended = list(symbols[: vowel_ids[0] + 1])
        i = 1
        while i < len(notes) and last_vowel_i + 1 < len(vowel_ids):
            if notes[i].is_vowel_extension:
                extended.append(symbols[vowel_ids[last_vowel_i]])
            else:
                prev_vowel = vowel_ids[last_vowel_i]
                last_vowel_i += 1
                extended.extend(symbols[prev_vowel + 1 : vowel_ids[last_vowel_i] + 1])
            i += 1
        extended.extend(symbols[vowel_ids[last_vowel_i] + 1 :])
        return extended

    def handle_not_enough_notes(self, notes: Sequence[Note], syllable_count: int) -> List[Note]:
        """Split the last note into equal 15-tick-aligned parts for the extra syllables."""
        if not notes:
            raise SyllableInvariantError(
                stage="handle_not_enough_notes",
                syllable_count=syllable_count,
                note_count=0,
                detail="empty_note_group",
            )
        new_notes = list(notes[:-1])
        last = notes[-1]
        to_split = syllable_count - len(new_notes)
        step = last.duration // to_split // SPLIT_GRID_TICKS * SPLIT_GRID_TICKS
        position = last.position
        for i in range(to_split):
            duration = step if i != to_split - 1 else last.duration - step * (to_split - 1)
            new_notes.append(
                replace(
                    last,
                    lyric="+",
                    position=position,
                    duration=duration,
                    pitch_points=[],
                )
            )
            position += duration
        logger.debug(
            "split_last_note lyric=%s parts=%s step=%s",
            notes[0].lyric,
            to_split,
            step,
        )
        return new_notes

    def symbols_and_vowels(self, notes: Sequence[Note]) -> Tuple[List[str], List[int], List[Note]]:
        symbols = self.get_symbols(notes[0])
        if not symbols:
            symbols = [""]
        symbols = self.apply_extensions(symbols, notes)
        vowel_ids = self._vowel_ids(symbols)
        notes = list(notes)
        if len(notes) < len(vowel_ids):
            notes = self.handle_not_enough_notes(notes, len(vowel_ids))
        return symbols, vowel_ids, notes

    def make_syllables(self, notes: Sequence[Note], prev_ending: Optional[Ending]) -> List[Syllable]:
        if not notes:
            raise SyllableInvariantError(
                stage="make_syllables", syllable_count=0, note_count=0, detail="empty_note_group"
            )
        symbols, vowel_ids, notes = self.symbols_and_vowels(notes)
        first_vowel = vowel_ids[0]
        syllables: List[Optional[Syllable]] = [None] * len(vowel_ids)

        if prev_ending is not None:
            syllables[0] = Syllable(
                prev_v=prev_ending.prev_v,
                cc=tuple(prev_ending.cc) + tuple(symbols[:first_vowel]),
                v=symbols[first_vowel],
                position=0,
                duration=prev_ending.duration,
                tone=prev_ending.tone,
                vowel_tone=notes[0].tone,
                prev_word_consonants_count=len(prev_ending.cc),
            )
        else:
            syllables[0] = Syllable(
                prev_v="",
                cc=tuple(symbols[:first_vowel]),
                v=symbols[first_vowel],
                position=0,
                duration=-1,
                tone=notes[0].tone,
                vowel_tone=notes[0].tone,
            )

        vowel_set = set(vowel_ids)
        syllable_i = 1
        position = 0
        ccs: List[str] = []
        symbol_i = first_vowel + 1
        while symbol_i < len(symbols) and syllable_i < len(notes):
            if symbol_i not in vowel_set:
                ccs.append(symbols[symbol_i])
            else:
                previous = syllables[syllable_i - 1]
                position += notes[syllable_i - 1].duration
                syllables[syllable_i] = Syllable(
                    prev_v=previous.v,
                    cc=tuple(ccs),
                    v=symbols[symbol_i],
                    position=position,
                    duration=notes[syllable_i - 1].duration,
                    tone=previous.vowel_tone,
                    vowel_tone=notes[syllable_i].tone,
                )
                ccs = []
                syllable_i += 1
            symbol_i += 1

        if any(syllable is None for syllable in syllables):
            raise SyllableInvariantError(
                stage="make_syllables",
                syllable_count=sum(1 for s in syllables if s is not None),
                note_count=len(notes),
                lyric=notes[0].lyric,
                detail="unfilled_syllable",
            )
        return [s for s in syllables if s is not None]

    def make_ending(self, notes: Optional[Sequence[Note]]) -> Optional[Ending]:
        """Trailing consonants of a word, or None for forced aliases and unknown words."""
        if not notes or notes[0].is_forced_alias:
            return None
        try:
            symbols, vowel_ids, notes = self.symbols_and_vowels(notes)
        except PhonemizerLookupError as exc:
            logger.debug("ending_lookup_failed lyric=%s error=%s", notes[0].lyric, exc)
            return None
        last_vowel = vowel_ids[-1]
        return Ending(
            prev_v=symbols[last_vowel],
            cc=tuple(symbols[last_vowel + 1 :]),
            position=sum(note.duration for note in notes),
            duration=sum(note.duration for note in notes[len(vowel_ids) - 1 :]),
            tone=notes[-1].tone,
        )
