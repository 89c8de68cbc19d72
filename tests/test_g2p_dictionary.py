"""
Tests for the G2P trie, its text/YAML parsers and the build-once cache.
"""

from __future__ import annotations

import threading
import time
import unittest

import pytest

from src.phonemizer.dictionary_cache import DictionaryCache
from src.phonemizer.g2p_dictionary import (
    G2pDictionary,
    load_dictionary,
    parse_dictionary_text,
    strip_stress,
)


CMU_SAMPLE = """;;; sample dictionary
HELLO  HH AH0 L OW1
WORLD  W ER1 L D
BROKEN LINE WITH ONE SPACE
TOO  MANY  PARTS
"""


class G2pDictionaryTests(unittest.TestCase):
    def test_query_is_exact_and_case_folded(self) -> None:
        builder = G2pDictionary.builder()
        builder.add_entry("Hello", ["hh", "ah", "l", "ow"])
        dictionary = builder.build()
        self.assertEqual(dictionary.query("HELLO"), ["hh", "ah", "l", "ow"])
        self.assertIsNone(dictionary.query("hell"))
        self.assertIsNone(dictionary.query("helloo"))

    def test_builder_rejects_entries_after_build(self) -> None:
        builder = G2pDictionary.builder()
        builder.build()
        with self.assertRaises(RuntimeError):
            builder.add_entry("late", ["l"])

    def test_symbol_table_marks_vowels(self) -> None:
        dictionary = G2pDictionary.builder().add_symbol("a", True).add_symbol("k", False).build()
        self.assertTrue(dictionary.is_vowel("a"))
        self.assertFalse(dictionary.is_vowel("k"))
        self.assertTrue(dictionary.is_valid_symbol("k"))
        self.assertFalse(dictionary.is_valid_symbol("x"))

    def test_parse_text_skips_comments_and_malformed_lines(self) -> None:
        builder = G2pDictionary.builder()
        added = parse_dictionary_text(
            CMU_SAMPLE,
            builder,
            word_phonemes=lambda p: [strip_stress(s) for s in p.split(" ") if s],
            lowercase_symbols=True,
        )
        dictionary = builder.build()
        self.assertEqual(added, 2)
        self.assertEqual(len(dictionary), 2)
        self.assertEqual(dictionary.query("hello"), ["hh", "ah", "l", "ow"])
        self.assertEqual(dictionary.query("world"), ["w", "er", "l", "d"])
        self.assertIsNone(dictionary.query("broken line with one space"))

    def test_replacements_rewrite_symbols(self) -> None:
        builder = G2pDictionary.builder()
        parse_dictionary_text("moloko  m a l a k o\n", builder, replacements={"o": "oo"})
        self.assertEqual(builder.build().query("moloko"), ["m", "a", "l", "a", "k", "oo"])


def test_strip_stress_keeps_symbols_without_digits():
    assert strip_stress("AH0") == "AH"
    assert strip_stress("ER12") == "ER"
    assert strip_stress("K") == "K"


def test_load_dictionary_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError) as exc:
        load_dictionary(tmp_path / "missing.txt")
    assert "missing.txt" in str(exc.value)


def test_load_dictionary_reads_yaml_symbols_and_entries(tmp_path):
    path = tmp_path / "dsdict.yaml"
    path.write_text(
        "symbols:\n"
        "  - {symbol: a, type: vowel}\n"
        "  - {symbol: k, type: stop}\n"
        "entries:\n"
        "  - {grapheme: Ka, phonemes: [k, a]}\n"
        "  - {grapheme: empty, phonemes: []}\n",
        encoding="utf8",
    )
    dictionary = load_dictionary(path)
    assert dictionary.query("ka") == ["k", "a"]
    assert dictionary.query("empty") is None
    assert dictionary.is_vowel("a")
    assert not dictionary.is_vowel("k")


def test_load_dictionary_registers_symbols_and_default_entry(tmp_path):
    path = tmp_path / "dict.txt"
    path.write_text("ka  k a\n", encoding="utf8")
    dictionary = load_dictionary(path, vowels=["a"], consonants=["k"])
    assert dictionary.query("a") == ["a"]
    assert dictionary.query("ka") == ["k", "a"]
    assert dictionary.is_vowel("a")


class DictionaryCacheTests(unittest.TestCase):
    def test_concurrent_first_use_builds_once(self) -> None:
        cache = DictionaryCache()
        calls = []
        barrier = threading.Barrier(8)

        def factory() -> G2pDictionary:
            calls.append(1)
            time.sleep(0.05)
            return G2pDictionary.builder().add_entry("a", ["a"]).build()

        results = []

        def worker() -> None:
            barrier.wait()
            results.append(cache.get_or_build("variant", factory))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(len(calls), 1)
        self.assertEqual(len(results), 8)
        self.assertTrue(all(r is results[0] for r in results))

    def test_none_result_is_cached(self) -> None:
        cache = DictionaryCache()
        calls = []

        def factory():
            calls.append(1)
            return None

        self.assertIsNone(cache.get_or_build("missing", factory))
        self.assertIsNone(cache.get_or_build("missing", factory))
        self.assertEqual(len(calls), 1)
        self.assertTrue(cache.contains("missing"))

    def test_keys_are_independent(self) -> None:
        cache = DictionaryCache()
        first = cache.get_or_build("one", lambda: G2pDictionary.builder().build())
        second = cache.get_or_build("two", lambda: G2pDictionary.builder().build())
        self.assertIsNot(first, second)
        cache.clear()
        self.assertFalse(cache.contains("one"))


if __name__ == "__main__":
    unittest.main(verbosity=2)
