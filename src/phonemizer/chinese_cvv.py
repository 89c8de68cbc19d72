from __future__ import annotations

"""Per-note Chinese CVV phonemizer: whole-syllable alias plus a split vowel tail."""

from typing import Dict, FrozenSet, Optional, Sequence

from src.logging_utils import get_logger
from src.phonemizer.alias_mapper import AliasSource
from src.phonemizer.types import Note, Phoneme, PhonemizerResult

logger = get_logger(__name__)

MAX_TAIL_TICKS = 120

CONSONANTS: FrozenSet[str] = frozenset(
    "b p m f d t n l g k h j q x z c s zh ch sh r y w".split()
)

# Final (after the onset) -> tail alias sung at the end of the note.
VOWEL_TAILS: Dict[str, str] = {
    "ai": "_ai", "uai": "_uai", "an": "_an", "ian": "_en2", "uan": "_an",
    "van": "_en2", "ang": "_ang", "iang": "_ang", "uang": "_ang", "ao": "_ao",
    "iao": "_ao", "ou": "_ou", "iu": "_ou", "ong": "_ong", "iong": "_ong",
    "ei": "_ei", "ui": "_ei", "uei": "_ei", "en": "_en", "un": "_un",
    "uen": "_un", "eng": "_eng", "in": "_in", "ing": "_ing", "vn": "_vn",
}


def split_final(lyric: str) -> str:
    """The final of a pinyin syllable, or "" when it has no listed onset.

    Two-letter onsets (zh, ch, sh) are tried before single letters.
    """
    if len(lyric) > 2 and lyric[:2] in CONSONANTS:
        return lyric[2:]
    if len(lyric) > 1 and lyric[:1] in CONSONANTS:
        return lyric[1:]
    return ""


def tail_length(total: int) -> int:
    return min(MAX_TAIL_TICKS, total // 2)


class ChineseCvvPhonemizer:
    """Splits ``duang`` into ``duang`` + ``_ang`` so the tail has its own sample."""

    def __init__(self, *, voicebank: Optional[AliasSource] = None) -> None:
        self.voicebank = voicebank

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
        lyric = note.lyric.strip()
        total = sum(n.duration for n in notes)
        tail = VOWEL_TAILS.get(split_final(lyric))
        if tail is not None and self.voicebank is not None and self.voicebank.get_mapped_oto(tail, note.tone) is None:
            logger.debug("cvv_tail_missing lyric=%s tail=%s", lyric, tail)
            tail = None
        if tail is None:
            return PhonemizerResult(phonemes=[Phoneme(lyric, 0, total, note.tone)])
        tail_position = total - tail_length(total)
        return PhonemizerResult(
            phonemes=[
                Phoneme(lyric, 0, tail_position, note.tone),
                Phoneme(tail, tail_position, total - tail_position, note.tone),
            ]
        )
