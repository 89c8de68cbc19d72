from __future__ import annotations

"""Voicebank alias strategies: syllables and endings -> ordered alias strings."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple, Union

from src.phonemizer.types import Ending, Syllable
from src.render.time_axis import tick_to_ms

TRANSITION_BASIC_LENGTH_MS = 100.0
MIN_TEMPO_BPM = 90.0
MAX_TEMPO_BPM = 300.0
MIN_TEMPO_FACTOR = 0.33


class AliasSource(Protocol):
    """Anything that can resolve an alias to an oto entry for a given tone."""

    def get_mapped_oto(self, alias: str, tone: int) -> Optional[Any]:
        ...


def tempo_factor(bpm: float) -> float:
    """Transition multiplier: 1.0 at 90 BPM and below, 0.33 at 300 BPM and above."""
    clamped = min(max(float(bpm), MIN_TEMPO_BPM), MAX_TEMPO_BPM)
    span = MAX_TEMPO_BPM - MIN_TEMPO_BPM
    return MIN_TEMPO_FACTOR + (MAX_TEMPO_BPM - clamped) / span * (1.0 - MIN_TEMPO_FACTOR)


class AliasLookup:
    """Per-call view of the voicebank used by alias mappers.

    Without a source every alias is treated as present, so mappers emit their
    preferred (richest) form.
    """

    def __init__(self, mapper: "AliasMapper", source: Optional[AliasSource], bpm: float) -> None:
        self.mapper = mapper
        self.source = source
        self.bpm = bpm

    def get_oto(self, alias: str, tone: int) -> Optional[Any]:
        if self.source is None:
            return None
        return self.source.get_mapped_oto(self.mapper.validate_alias(alias), tone)

    def has_alias(self, alias: str, tone: int) -> bool:
        if self.source is None:
            return True
        return self.get_oto(alias, tone) is not None

    def try_add(self, phonemes: List[str], tone: int, *candidates: str) -> bool:
        """Append the first candidate the voicebank has. Returns True if one was added."""
        for candidate in candidates:
            if self.has_alias(candidate, tone):
                phonemes.append(candidate)
                return True
        return False

    def constant_transition_ms(self) -> float:
        return TRANSITION_BASIC_LENGTH_MS * tempo_factor(self.bpm)

    def transition_ms(self, alias: str, tone: int) -> float:
        return self.mapper.transition_length_ms(alias, tone, self)

    def is_short(self, unit: Union[Syllable, Ending]) -> bool:
        if isinstance(unit, Syllable) and unit.duration == -1:
            return False
        return tick_to_ms(unit.duration, self.bpm) < self.constant_transition_ms() * 2


class AliasMapper(ABC):
    """Strategy that knows one voicebank recording convention."""

    variant_id = "base"
    vowels: Tuple[str, ...] = ()
    consonants: Tuple[str, ...] = ()
    oto_timing = False

    @abstractmethod
    def process_syllable(self, syllable: Syllable, lookup: AliasLookup) -> List[str]:
        raise NotImplementedError

    @abstractmethod
    def process_ending(self, ending: Ending, lookup: AliasLookup) -> List[str]:
        raise NotImplementedError

    def validate_alias(self, alias: str) -> str:
        return alias

    def aliases_fallback(self) -> Mapping[str, str]:
        return {}

    def resolve_alias(self, alias: str, tone: int, lookup: AliasLookup) -> str:
        """Validate an alias and swap in its fallback when the voicebank lacks it."""
        validated = self.validate_alias(alias)
        if lookup.source is None or lookup.has_alias(validated, tone):
            return validated
        fallback = self.aliases_fallback().get(validated)
        if fallback is not None and lookup.has_alias(fallback, tone):
            return self.validate_alias(fallback)
        return validated

    def transition_length_ms(self, alias: str, tone: int, lookup: AliasLookup) -> float:
        if self.oto_timing and alias:
            oto = lookup.get_oto(alias, tone)
            if oto is not None:
                return float(oto.preutter) * tempo_factor(lookup.bpm)
        return lookup.constant_transition_ms()


class PhoneticAliasMapper(AliasMapper):
    """Symbols are aliases: emits the consonants and vowel exactly as written."""

    variant_id = "phonetic"

    def __init__(self, vowels: Sequence[str] = ("a", "i", "u", "e", "o", "n")) -> None:
        self.vowels = tuple(vowels)

    def process_syllable(self, syllable: Syllable, lookup: AliasLookup) -> List[str]:
        return list(syllable.cc) + [syllable.v]

    def process_ending(self, ending: Ending, lookup: AliasLookup) -> List[str]:
        return list(ending.cc)


class CvAliasMapper(AliasMapper):
    """CV banks: ``- ka`` at phrase start, ``ka`` inside, ``a R`` or ``a -`` at the end."""

    variant_id = "cv"

    def __init__(self, vowels: Sequence[str] = ("a", "i", "u", "e", "o", "n")) -> None:
        self.vowels = tuple(vowels)

    def process_syllable(self, syllable: Syllable, lookup: AliasLookup) -> List[str]:
        phonemes: List[str] = []
        cc = syllable.cc
        for consonant in cc[:-1]:
            lookup.try_add(phonemes, syllable.tone, consonant)
        base = f"{cc[-1]}{syllable.v}" if cc else syllable.v
        if syllable.prev_v == "":
            if not lookup.try_add(phonemes, syllable.vowel_tone, f"- {base}"):
                phonemes.append(base)
        else:
            phonemes.append(base)
        return phonemes

    def process_ending(self, ending: Ending, lookup: AliasLookup) -> List[str]:
        phonemes: List[str] = []
        if ending.is_vr:
            lookup.try_add(phonemes, ending.tone, f"{ending.prev_v} R", f"{ending.prev_v} -")
            return phonemes
        for consonant in ending.cc:
            lookup.try_add(phonemes, ending.tone, consonant)
        return phonemes


class VccvAliasMapper(AliasMapper):
    """Russian VCCV banks with a cmudict-style dictionary."""

    variant_id = "ru-vccv"
    vowels = ("a", "e", "o", "u", "y", "i", "M", "N", "ex", "ax", "x")
    consonants = (
        "sh'", "sh", "zh", "j", "ts", "ch", "b'", "b", "v'", "v", "g'", "g", "d'", "d",
        "z'", "z", "k'", "k", "l'", "l", "m'", "m", "n'", "n", "p'", "p", "r'", "r",
        "s'", "s", "t'", "t", "f'", "f", "h'", "h",
    )
    burst_consonants = frozenset(
        ("t", "t'", "k", "k'", "p", "p'", "ch", "ts", "b", "b'", "g", "g'", "d", "d'")
    )
    dictionary_replacements: Dict[str, str] = {
        "a": "ax", "aa": "a", "ay": "ax", "bb": "b'", "c": "ts", "dd": "d'", "ee": "e",
        "ff": "f'", "gg": "g'", "hh": "h'", "i": "x", "ii": "i", "ja": "a", "je": "e",
        "jo": "o", "ju": "u", "kk": "k'", "ll": "l'", "mm": "m'", "nn": "n'", "oo": "o",
        "ae": "e", "pp": "p'", "rr": "r'", "sch": "sh'", "ss": "s'", "tt": "t'", "uj": "u",
        "uu": "u", "vv": "v'", "y": "ex", "yy": "y", "zz": "z'",
    }

    def _cc_chain(self, phonemes: List[str], cc: Sequence[str], tone: int, lookup: AliasLookup) -> None:
        for first, second in zip(cc, cc[1:]):
            lookup.try_add(phonemes, tone, f"{first} {second}")

    def process_syllable(self, syllable: Syllable, lookup: AliasLookup) -> List[str]:
        prev_v, cc, v = syllable.prev_v, syllable.cc, syllable.v
        phonemes: List[str] = []
        if prev_v == "":
            if not cc:
                base = f"- {v}"
            elif len(cc) == 1:
                rcv = f"- {cc[0]}{v}"
                if lookup.has_alias(rcv, syllable.tone):
                    base = rcv
                else:
                    base = f"{cc[0]}{v}"
                    phonemes.append(f"- {cc[0]}")
            else:
                base = f"{cc[-1]}{v}"
                phonemes.append(f"- {cc[0]}")
        elif not cc:
            base = f"{prev_v} {v}"
        else:
            base = f"{cc[-1]}{v}"
            phonemes.append(f"{prev_v} {cc[0]}")
        self._cc_chain(phonemes, cc, syllable.tone, lookup)
        phonemes.append(base)
        return phonemes

    def process_ending(self, ending: Ending, lookup: AliasLookup) -> List[str]:
        cc, v = ending.cc, ending.prev_v
        phonemes: List[str] = []
        if not cc:
            phonemes.append(f"{v} -")
        elif len(cc) == 1:
            vcr = f"{v}{cc[0]} -"
            if lookup.has_alias(vcr, ending.tone):
                phonemes.append(vcr)
            else:
                phonemes.append(f"{v} {cc[0]}")
                phonemes.append(f"{cc[0]} -")
        else:
            phonemes.append(f"{v} {cc[0]}")
            self._cc_chain(phonemes, cc, ending.tone, lookup)
            if cc[-1] in self.burst_consonants:
                phonemes.append(f"{cc[-1]} -")
        return phonemes


class ArpasingAliasMapper(AliasMapper):
    """English ARPAsing banks: ``prev sym`` diphones with a ``- sym`` fallback."""

    variant_id = "en-arpasing"
    vowels = (
        "aa", "ae", "ah", "ao", "aw", "ax", "ay", "eh", "er", "ey", "ih", "iy", "ow",
        "oy", "uh", "uw",
    )
    consonants = (
        "b", "ch", "d", "dh", "dx", "f", "g", "hh", "jh", "k", "l", "m", "n", "ng", "p",
        "r", "s", "sh", "t", "th", "v", "w", "y", "z", "zh",
    )
    oto_timing = True

    def _diphone(self, phonemes: List[str], prev: str, symbol: str, tone: int, lookup: AliasLookup) -> None:
        if not lookup.try_add(phonemes, tone, f"{prev} {symbol}"):
            phonemes.append(f"- {symbol}")

    def process_syllable(self, syllable: Syllable, lookup: AliasLookup) -> List[str]:
        phonemes: List[str] = []
        prev = syllable.prev_v or "-"
        for symbol in list(syllable.cc) + [syllable.v]:
            self._diphone(phonemes, prev, symbol, syllable.tone, lookup)
            prev = symbol
        return phonemes

    def process_ending(self, ending: Ending, lookup: AliasLookup) -> List[str]:
        phonemes: List[str] = []
        prev = ending.prev_v
        for symbol in ending.cc:
            self._diphone(phonemes, prev, symbol, ending.tone, lookup)
            prev = symbol
        lookup.try_add(phonemes, ending.tone, f"{prev} -")
        return phonemes
