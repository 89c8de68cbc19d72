from __future__ import annotations

"""Per-note ARPAsing phonemizer with manual ``...N`` alignment hints."""

from typing import Dict, List, Optional, Sequence, Tuple

from src.logging_utils import get_logger
from src.phonemizer.alias_mapper import AliasLookup, ArpasingAliasMapper, AliasSource
from src.phonemizer.g2p_dictionary import G2pDictionary, split_word_phonemes, strip_stress
from src.phonemizer.types import ALIGNMENT_HINT_PREFIX, Note, Phoneme, PhonemizerResult

logger = get_logger(__name__)

MAX_CONSONANT_TICKS = 60

# cmudict-0.7b phone classes
PHONE_TYPES: Dict[str, str] = {
    "aa": "vowel", "ae": "vowel", "ah": "vowel", "ao": "vowel", "aw": "vowel",
    "ay": "vowel", "b": "stop", "ch": "affricate", "d": "stop", "dh": "fricative",
    "eh": "vowel", "er": "vowel", "ey": "vowel", "f": "fricative", "g": "stop",
    "hh": "aspirate", "ih": "vowel", "iy": "vowel", "jh": "affricate", "k": "stop",
    "l": "liquid", "m": "nasal", "n": "nasal", "ng": "nasal", "ow": "vowel",
    "oy": "vowel", "p": "stop", "r": "liquid", "s": "fricative", "sh": "fricative",
    "t": "stop", "th": "fricative", "uh": "vowel", "uw": "vowel", "v": "fricative",
    "w": "semivowel", "y": "semivowel", "z": "fricative", "zh": "fricative",
}


def arpabet_word_phonemes(phonemes: str) -> List[str]:
    return [strip_stress(symbol).lower() for symbol in split_word_phonemes(phonemes)]


def is_sustained(symbol: str) -> bool:
    return PHONE_TYPES.get(symbol) in {"vowel", "semivowel"}


def parse_alignments(notes: Sequence[Note], phoneme_count: int) -> List[Tuple[int, int]]:
    """Collect (phoneme index, tick) split points from ``...N`` hint notes.

    Indices are 1-based in the lyric. A hint is kept only when it is past the first
    phoneme, after the previous hint and inside the phoneme list. The group end is
    always the final split point.
    """
    alignments: List[Tuple[int, int]] = []
    position = 0
    for note in notes:
        hint = note.lyric
        if hint.startswith(ALIGNMENT_HINT_PREFIX):
            try:
                index = int(hint[len(ALIGNMENT_HINT_PREFIX):]) - 1
            except ValueError:
                index = -1
            if 0 < index < phoneme_count and (not alignments or alignments[-1][0] < index):
                alignments.append((index, position))
        position += note.duration
    alignments.append((phoneme_count, position))
    return alignments


def distribute_duration(symbols: Sequence[str], start_index: int, end_index: int, duration: int) -> List[int]:
    """Durations for ``symbols[start_index:end_index]`` sharing ``duration`` ticks."""
    segment = symbols[start_index:end_index]
    vowels = sum(1 for s in segment if is_sustained(s))
    consonants = len(segment) - vowels
    if not segment:
        return []
    if vowels > 0:
        consonant_ticks = min(MAX_CONSONANT_TICKS, duration // 2 // consonants) if consonants else 0
        vowel_ticks = (duration - consonant_ticks * consonants) // vowels
    else:
        consonant_ticks = duration // consonants
        vowel_ticks = 0
    return [vowel_ticks if is_sustained(s) else consonant_ticks for s in segment]


class ArpasingPhonemizer:
    """English phonemizer working note by note on a cmudict trie."""

    def __init__(
        self,
        dictionary: G2pDictionary,
        *,
        voicebank: Optional[AliasSource] = None,
    ) -> None:
        self.dictionary = dictionary
        self.voicebank = voicebank
        self.mapper = ArpasingAliasMapper()

    def process(
        self,
        notes: Sequence[Note],
        *,
        prev_neighbours: Optional[Sequence[Note]] = None,
        next_neighbour: Optional[Note] = None,
    ) -> PhonemizerResult:
        if not notes:
            raise ValueError("notes must contain at least one note.")
        note = notes[0]
        group_end = sum(n.duration for n in notes)
        lookup = AliasLookup(self.mapper, self.voicebank, note.bpm)
        prev_symbols = self.dictionary.query(prev_neighbours[0].lyric) if prev_neighbours else None
        symbols = self.dictionary.query(note.lyric)

        if not symbols:
            if note.lyric == "-" and prev_symbols:
                alias = f"{prev_symbols[-1]} -"
            else:
                alias = note.lyric
            return PhonemizerResult(phonemes=[Phoneme(alias, 0, group_end, note.tone)])

        aliases: List[str] = []
        prev_symbol = prev_symbols[-1] if prev_symbols else "-"
        for symbol in symbols:
            diphone = f"{prev_symbol} {symbol}"
            aliases.append(diphone if lookup.has_alias(diphone, note.tone) else f"- {symbol}")
            prev_symbol = symbol

        durations: List[int] = []
        start_index = 0
        start_tick = 0
        for index, tick in parse_alignments(notes, len(symbols)):
            durations.extend(distribute_duration(symbols, start_index, index, tick - start_tick))
            start_index, start_tick = index, tick

        phonemes: List[Phoneme] = []
        position = 0
        for alias, duration in zip(aliases, durations):
            phonemes.append(Phoneme(alias, position, duration, note.tone))
            position += duration
        logger.debug("arpasing_phonemized lyric=%s aliases=%s", note.lyric, aliases)
        return PhonemizerResult(phonemes=phonemes)
