"""
Tests for the per-note ARPAsing phonemizer, variant registry and g2p fallback.
"""

from __future__ import annotations

import unittest
from dataclasses import replace
from pathlib import Path
from unittest import mock

import pytest

from src.config import Settings
from src.phonemizer import english_g2p
from src.phonemizer.alias_mapper import ArpasingAliasMapper, PhoneticAliasMapper, VccvAliasMapper
from src.phonemizer.arpasing import ArpasingPhonemizer, distribute_duration, parse_alignments
from src.phonemizer.dictionary_cache import DictionaryCache
from src.phonemizer.errors import PhonemizerLookupError
from src.phonemizer.g2p_dictionary import G2pDictionary
from src.phonemizer.phonemizer import SyllablePhonemizer
from src.phonemizer.registry import get_phonemizer, list_variants
from src.phonemizer.types import Note


def _note(lyric: str, position: int = 0, duration: int = 480, tone: int = 60) -> Note:
    return Note(lyric=lyric, position=position, duration=duration, tone=tone)


def _dictionary() -> G2pDictionary:
    return (
        G2pDictionary.builder()
        .add_entry("test", ["t", "eh", "s", "t"])
        .add_entry("go", ["g", "ow"])
        .build()
    )


class ArpasingPhonemizerTests(unittest.TestCase):
    def test_word_without_neighbours_uses_dash_onset(self) -> None:
        result = ArpasingPhonemizer(_dictionary()).process([_note("go")])
        self.assertEqual([p.alias for p in result.phonemes], ["- g", "g ow"])
        self.assertEqual(sum(p.duration for p in result.phonemes), 480)

    def test_previous_word_last_symbol_links(self) -> None:
        result = ArpasingPhonemizer(_dictionary()).process(
            [_note("go", position=480)],
            prev_neighbours=[_note("test")],
        )
        self.assertEqual(result.phonemes[0].alias, "t g")

    def test_dash_lyric_closes_previous_word(self) -> None:
        result = ArpasingPhonemizer(_dictionary()).process(
            [_note("-", position=480)],
            prev_neighbours=[_note("go")],
        )
        self.assertEqual([p.alias for p in result.phonemes], ["ow -"])

    def test_unknown_word_passes_through(self) -> None:
        result = ArpasingPhonemizer(_dictionary()).process([_note("xyzzy")])
        self.assertEqual([p.alias for p in result.phonemes], ["xyzzy"])

    def test_alignment_hint_splits_phonemes_at_note(self) -> None:
        notes = [_note("test", duration=240), _note("...3", position=240, duration=240)]
        result = ArpasingPhonemizer(_dictionary()).process(notes)
        positions = [p.position for p in result.phonemes]
        self.assertEqual(positions[2], 240)
        self.assertEqual(sum(p.duration for p in result.phonemes), 480)

    def test_missing_diphone_falls_back_to_dash_form(self) -> None:
        class Bank:
            def get_mapped_oto(self, alias, tone, color=None):
                return object() if alias == "- g" else None

        result = ArpasingPhonemizer(_dictionary(), voicebank=Bank()).process([_note("go")])
        self.assertEqual([p.alias for p in result.phonemes], ["- g", "- ow"])


def test_parse_alignments_ignores_out_of_range_hints():
    notes = [_note("test", duration=100), _note("...1", position=100, duration=100), _note("...9", position=200)]
    assert parse_alignments(notes, 4) == [(4, 680)]


def test_distribute_duration_caps_consonants():
    durations = distribute_duration(["t", "eh", "s", "t"], 0, 4, 480)
    assert durations[0] == 60
    assert durations[1] == 480 - 60 * 3
    assert sum(durations) == 480


def test_distribute_duration_consonants_only():
    assert distribute_duration(["s", "t"], 0, 2, 100) == [50, 50]


class RegistryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.cache = DictionaryCache()

    def _settings(self, dictionaries_dir: Path) -> Settings:
        return replace(Settings.from_env(), dictionaries_dir=dictionaries_dir)

    def test_unknown_variant_raises(self) -> None:
        with self.assertRaises(ValueError) as ctx:
            get_phonemizer("klingon", cache=self.cache)
        self.assertIn("phonetic", str(ctx.exception))

    def test_phonetic_variant_has_no_dictionary(self) -> None:
        phonemizer = get_phonemizer("phonetic", cache=self.cache)
        self.assertIsInstance(phonemizer, SyllablePhonemizer)
        self.assertIsInstance(phonemizer.mapper, PhoneticAliasMapper)
        self.assertIsNone(phonemizer.dictionary)

    def test_missing_arpabet_dictionary_builds_empty_trie_once(self) -> None:
        with mock.patch("src.phonemizer.registry.load_dictionary") as loader:
            settings = self._settings(Path("/nonexistent/dictionaries"))
            first = get_phonemizer("en-arpasing", settings=settings, cache=self.cache)
            second = get_phonemizer("en-arpa", settings=settings, cache=self.cache)
        loader.assert_not_called()
        self.assertIsInstance(first.mapper, ArpasingAliasMapper)
        self.assertIsInstance(second, ArpasingPhonemizer)
        self.assertIs(first.dictionary, second.dictionary)
        self.assertEqual(len(first.dictionary), 0)
        self.assertTrue(first.dictionary.is_vowel("aa"))

    def test_vccv_dictionary_applies_replacements(self) -> None:
        import tempfile

        with tempfile.TemporaryDirectory() as tmp:
            Path(tmp, "cmudict_ru.txt").write_text("moloko  m a l a k oo\n", encoding="utf8")
            phonemizer = get_phonemizer("ru-vccv", settings=self._settings(Path(tmp)), cache=self.cache)
        self.assertIsInstance(phonemizer.mapper, VccvAliasMapper)
        self.assertEqual(phonemizer.dictionary.query("moloko"), ["m", "ax", "l", "ax", "k", "o"])

    def test_instances_are_fresh_per_call(self) -> None:
        first = get_phonemizer("phonetic", cache=self.cache)
        second = get_phonemizer("phonetic", cache=self.cache)
        self.assertIsNot(first, second)


def test_list_variants_exposes_ids():
    ids = {v["id"] for v in list_variants()}
    assert {"phonetic", "cv", "ru-vccv", "en-arpasing", "en-arpa"} <= ids


def test_english_fallback_maps_arpabet(monkeypatch):
    fake = mock.Mock(return_value=["HH", "EH1", "L", "OW0", " "])
    monkeypatch.setattr(english_g2p, "_get_g2p", lambda: fake)
    assert english_g2p.english_word_not_found("Hello!") == ["hh", "eh", "l", "ow"]
    fake.assert_called_once_with("hello")


def test_english_fallback_unavailable_raises_lookup_error(monkeypatch):
    def broken():
        raise RuntimeError("g2p_en requires the NLTK cmudict corpus.")

    monkeypatch.setattr(english_g2p, "_get_g2p", broken)
    with pytest.raises(PhonemizerLookupError) as exc:
        english_g2p.english_word_not_found("hello")
    assert "cmudict" in str(exc.value)


def test_english_fallback_ignores_empty_words():
    assert english_g2p.english_word_not_found("123") is None


if __name__ == "__main__":
    unittest.main(verbosity=2)
