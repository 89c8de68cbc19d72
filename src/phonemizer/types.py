"""Note, syllable and phoneme data shapes shared by phonemizers and renderers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

FORCED_ALIAS_SYMBOL = "?"
EXTENSION_SYMBOL = "+"
VOWEL_EXTENSION_PREFIXES = ("+~", "+*")
ALIGNMENT_HINT_PREFIX = "..."


class PitchShape(str, Enum):
    STEP = "step"
    LINEAR = "linear"
    EASE_IN = "ease-in"
    EASE_OUT = "ease-out"
    EASE_IN_OUT = "ease-in-out"

    @classmethod
    def parse(cls, value: object) -> "PitchShape":
        """Accept enum values, full names and the short ustx codes (s/l/i/o/io)."""
        if isinstance(value, PitchShape):
            return value
        text = str(value or "").strip().lower()
        short = {"s": cls.STEP, "l": cls.LINEAR, "i": cls.EASE_IN, "o": cls.EASE_OUT, "io": cls.EASE_IN_OUT}
        if text in short:
            return short[text]
        if not text:
            return cls.EASE_IN_OUT
        return cls(text)


@dataclass(frozen=True)
class PitchPoint:
    """Authored pitch-bend point. ``x`` is ms from the note start, ``y`` is cents."""
    x: float
    y: float
    shape: PitchShape = PitchShape.EASE_IN_OUT


@dataclass(frozen=True)
class Vibrato:
    length: float = 0.0
    period: float = 175.0
    depth: float = 0.0
    fade_in: float = 10.0
    fade_out: float = 10.0
    shift: float = 0.0
    drift: float = 0.0

    @property
    def is_active(self) -> bool:
        return self.depth != 0 and self.length > 0 and self.period > 0


@dataclass(frozen=True)
class PhonemeAttributes:
    """Per-phoneme override authored on a note, addressed by phoneme index."""
    index: int
    offset: int = 0
    preutter_scale: Optional[float] = None
    overlap_scale: Optional[float] = None


@dataclass
class Note:
    lyric: str
    position: int
    duration: int
    tone: int
    phonetic_hint: Optional[str] = None
    phoneme_attributes: List[PhonemeAttributes] = field(default_factory=list)
    pitch_points: List[PitchPoint] = field(default_factory=list)
    vibrato: Vibrato = field(default_factory=Vibrato)
    bpm: float = 120.0
    velocity: int = 100
    volume: int = 100
    modulation: int = 0
    flags: str = ""

    @property
    def end(self) -> int:
        return self.position + self.duration

    def attributes_for(self, index: int) -> Optional[PhonemeAttributes]:
        for attr in self.phoneme_attributes:
            if attr.index == index:
                return attr
        return None

    @property
    def is_forced_alias(self) -> bool:
        return self.lyric.startswith(FORCED_ALIAS_SYMBOL)

    @property
    def is_vowel_extension(self) -> bool:
        return self.lyric.startswith(VOWEL_EXTENSION_PREFIXES)

    @property
    def is_continuation(self) -> bool:
        return self.lyric.startswith(EXTENSION_SYMBOL) or self.lyric.startswith(ALIGNMENT_HINT_PREFIX)


@dataclass(frozen=True)
class Syllable:
    """[prev V] [C..] V, the unit that alias mappers turn into aliases."""
    prev_v: str
    cc: Tuple[str, ...]
    v: str
    position: int
    duration: int
    tone: int
    vowel_tone: int
    prev_word_consonants_count: int = 0

    @property
    def is_rv(self) -> bool:
        return self.prev_v == "" and not self.cc

    @property
    def is_vv(self) -> bool:
        return self.prev_v != "" and not self.cc

    @property
    def is_rcv(self) -> bool:
        return self.prev_v == "" and len(self.cc) > 0

    @property
    def is_vcv(self) -> bool:
        return self.prev_v != "" and len(self.cc) > 0

    @property
    def is_rc1v(self) -> bool:
        return self.prev_v == "" and len(self.cc) == 1

    @property
    def is_vc1v(self) -> bool:
        return self.prev_v != "" and len(self.cc) == 1

    @property
    def is_rcmv(self) -> bool:
        return self.prev_v == "" and len(self.cc) > 1

    @property
    def is_vcmv(self) -> bool:
        return self.prev_v != "" and len(self.cc) > 1

    @property
    def previous_word_cc(self) -> Tuple[str, ...]:
        return self.cc[: self.prev_word_consonants_count]

    @property
    def current_word_cc(self) -> Tuple[str, ...]:
        return self.cc[self.prev_word_consonants_count :]

    def __str__(self) -> str:
        return f"({self.prev_v}) {' '.join(self.cc)} {self.v}"


@dataclass(frozen=True)
class Ending:
    """Trailing consonants after the last vowel of a word."""
    prev_v: str
    cc: Tuple[str, ...]
    position: int
    duration: int
    tone: int

    @property
    def is_vr(self) -> bool:
        return not self.cc

    @property
    def is_vcr(self) -> bool:
        return len(self.cc) > 0

    @property
    def is_vc1r(self) -> bool:
        return len(self.cc) == 1

    @property
    def is_vcmr(self) -> bool:
        return len(self.cc) > 1

    def __str__(self) -> str:
        return f"({self.prev_v}) {' '.join(self.cc)}"


@dataclass
class Phoneme:
    alias: str
    position: int = 0
    duration: int = 0
    tone: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "alias": self.alias,
            "position": int(self.position),
            "duration": int(self.duration),
        }


@dataclass(frozen=True)
class PhonemizerResult:
    phonemes: Sequence[Phoneme]
    error: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None
