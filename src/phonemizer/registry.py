from __future__ import annotations

"""Phonemizer variants and the factory that wires mapper, dictionary and voicebank."""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Union

import yaml

from src.config import Settings
from src.logging_utils import get_logger
from src.phonemizer.alias_mapper import (
    AliasMapper,
    AliasSource,
    ArpasingAliasMapper,
    CvAliasMapper,
    PhoneticAliasMapper,
    VccvAliasMapper,
)
from src.phonemizer.arpasing import ArpasingPhonemizer, PHONE_TYPES, arpabet_word_phonemes
from src.phonemizer.chinese_cvv import ChineseCvvPhonemizer
from src.phonemizer.dictionary_cache import DEFAULT_DICTIONARY_CACHE, DictionaryCache
from src.phonemizer.english_g2p import english_word_not_found
from src.phonemizer.g2p_dictionary import G2pDictionary, load_dictionary, split_word_phonemes
from src.phonemizer.phonemizer import SyllablePhonemizer
from src.phonemizer.syllables import WordNotFoundHook

logger = get_logger(__name__)

AnyPhonemizer = Union[SyllablePhonemizer, ArpasingPhonemizer, ChineseCvvPhonemizer]
PerNoteFactory = Callable[[Optional[G2pDictionary], AliasMapper, Optional[AliasSource]], AnyPhonemizer]


@dataclass(frozen=True)
class PhonemizerVariant:
    variant_id: str
    name: str
    mapper_factory: Callable[[], AliasMapper]
    dictionary_file: Optional[str] = None
    dictionary_key: Optional[str] = None
    replacements: Optional[Mapping[str, str]] = None
    arpabet: bool = False
    word_not_found: Optional[WordNotFoundHook] = None
    per_note: Optional[PerNoteFactory] = None

    @property
    def cache_key(self) -> str:
        return self.dictionary_key or self.variant_id


def _arpasing_per_note(
    dictionary: Optional[G2pDictionary],
    mapper: AliasMapper,
    voicebank: Optional[AliasSource],
) -> ArpasingPhonemizer:
    return ArpasingPhonemizer(
        dictionary if dictionary is not None else _empty_dictionary(mapper),
        voicebank=voicebank,
    )


def _chinese_cvv_per_note(
    dictionary: Optional[G2pDictionary],
    mapper: AliasMapper,
    voicebank: Optional[AliasSource],
) -> ChineseCvvPhonemizer:
    return ChineseCvvPhonemizer(voicebank=voicebank)


VARIANTS: Dict[str, PhonemizerVariant] = {
    variant.variant_id: variant
    for variant in (
        PhonemizerVariant("phonetic", "Phonetic input", PhoneticAliasMapper),
        PhonemizerVariant("cv", "CV", CvAliasMapper),
        PhonemizerVariant(
            "ru-vccv",
            "Russian VCCV",
            VccvAliasMapper,
            dictionary_file="cmudict_ru.txt",
            replacements=VccvAliasMapper.dictionary_replacements,
        ),
        PhonemizerVariant(
            "en-arpasing",
            "English ARPAsing (syllable based)",
            ArpasingAliasMapper,
            dictionary_file="cmudict-0.7b.txt",
            dictionary_key="cmudict-0.7b",
            arpabet=True,
            word_not_found=english_word_not_found,
        ),
        PhonemizerVariant(
            "en-arpa",
            "English ARPAsing (per note)",
            ArpasingAliasMapper,
            dictionary_file="cmudict-0.7b.txt",
            dictionary_key="cmudict-0.7b",
            arpabet=True,
            per_note=_arpasing_per_note,
        ),
        PhonemizerVariant(
            "zh-cvv",
            "Chinese CVV",
            PhoneticAliasMapper,
            per_note=_chinese_cvv_per_note,
        ),
    )
}


def list_variants() -> List[Dict[str, str]]:
    return [{"id": v.variant_id, "name": v.name} for v in VARIANTS.values()]


def _empty_dictionary(mapper: AliasMapper) -> G2pDictionary:
    builder = G2pDictionary.builder()
    for vowel in mapper.vowels:
        builder.add_symbol(vowel, True)
    for consonant in mapper.consonants:
        builder.add_symbol(consonant, False)
    return builder.build()


def _build_dictionary(
    variant: PhonemizerVariant,
    mapper: AliasMapper,
    dictionaries_dir: Path,
) -> Optional[G2pDictionary]:
    path = dictionaries_dir / str(variant.dictionary_file)
    # ARPAbet variants fall back to g2p_en / pass-through, so they still get a trie.
    if not path.exists():
        logger.warning("dictionary_missing variant=%s path=%s", variant.variant_id, path)
        return _empty_dictionary(mapper) if variant.arpabet else None
    consonants = mapper.consonants
    if variant.arpabet:
        consonants = tuple(sorted(set(consonants) | {k for k, v in PHONE_TYPES.items() if v != "vowel"}))
    try:
        return load_dictionary(
            path,
            vowels=mapper.vowels,
            consonants=consonants,
            replacements=variant.replacements,
            word_phonemes=arpabet_word_phonemes if variant.arpabet else split_word_phonemes,
            encoding="latin-1" if variant.arpabet else "utf8",
        )
    except (OSError, ValueError, yaml.YAMLError):
        logger.exception("dictionary_read_failed variant=%s path=%s", variant.variant_id, path)
        return _empty_dictionary(mapper) if variant.arpabet else None


def get_phonemizer(
    variant_id: str,
    *,
    voicebank: Optional[AliasSource] = None,
    settings: Optional[Settings] = None,
    cache: DictionaryCache = DEFAULT_DICTIONARY_CACHE,
) -> AnyPhonemizer:
    """Build a fresh phonemizer instance for a variant, reusing the cached dictionary."""
    variant = VARIANTS.get(variant_id)
    if variant is None:
        raise ValueError(
            f"Unknown phonemizer variant '{variant_id}'. "
            f"Available: {', '.join(sorted(VARIANTS))}."
        )
    mapper = variant.mapper_factory()
    dictionary: Optional[G2pDictionary] = None
    if variant.dictionary_file:
        dictionaries_dir = (settings or Settings.from_env()).dictionaries_dir
        dictionary = cache.get_or_build(
            variant.cache_key,
            lambda: _build_dictionary(variant, mapper, dictionaries_dir),
        )
    if variant.per_note is not None:
        return variant.per_note(dictionary, mapper, voicebank)
    return SyllablePhonemizer(
        mapper,
        dictionary=dictionary,
        voicebank=voicebank,
        word_not_found=variant.word_not_found,
    )
