from __future__ import annotations

"""Prefix-tree grapheme-to-phoneme dictionary and its file parsers."""

from pathlib import Path
import re
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import yaml

COMMENT_PREFIX = ";;;"
WORD_SEPARATOR = "  "


class _TrieNode:
    __slots__ = ("children", "symbols")

    def __init__(self) -> None:
        self.children: Dict[str, "_TrieNode"] = {}
        self.symbols: Optional[Tuple[str, ...]] = None


class G2pDictionary:
    """Immutable word -> phoneme symbols trie.

    Only the builder mutates nodes; once ``Builder.build`` returns, the instance is
    shared between threads and read without locking.
    """

    def __init__(self, root: _TrieNode, symbols: Mapping[str, bool], entry_count: int) -> None:
        self._root = root
        self._symbols = dict(symbols)
        self._entry_count = entry_count

    def __len__(self) -> int:
        return self._entry_count

    def query(self, word: str) -> Optional[List[str]]:
        """Exact lookup of a case-folded word. Returns None on a miss."""
        if word is None:
            return None
        node = self._root
        for char in word.lower():
            node = node.children.get(char)
            if node is None:
                return None
        if node.symbols is None:
            return None
        return list(node.symbols)

    def is_vowel(self, symbol: str) -> bool:
        return self._symbols.get(symbol, False)

    def is_valid_symbol(self, symbol: str) -> bool:
        return symbol in self._symbols

    def symbols(self) -> Dict[str, bool]:
        return dict(self._symbols)

    @staticmethod
    def builder() -> "G2pDictionary.Builder":
        return G2pDictionary.Builder()

    class Builder:
        def __init__(self) -> None:
            self._root = _TrieNode()
            self._symbols: Dict[str, bool] = {}
            self._entry_count = 0
            self._built = False

        def add_symbol(self, symbol: str, is_vowel: bool) -> "G2pDictionary.Builder":
            self._symbols[symbol] = is_vowel
            return self

        def add_entry(self, word: str, symbols: Iterable[str]) -> "G2pDictionary.Builder":
            if self._built:
                raise RuntimeError("G2pDictionary.Builder cannot be reused after build().")
            node = self._root
            for char in word.lower():
                child = node.children.get(char)
                if child is None:
                    child = _TrieNode()
                    node.children[char] = child
                node = child
            if node.symbols is None:
                self._entry_count += 1
            node.symbols = tuple(symbols)
            return self

        def build(self) -> G2pDictionary:
            self._built = True
            return G2pDictionary(self._root, self._symbols, self._entry_count)


def strip_stress(symbol: str) -> str:
    """Remove trailing ARPAbet stress digits (``AH0`` -> ``AH``)."""
    return re.sub(r"[0-9]+$", "", symbol) or symbol


def split_word_phonemes(phonemes: str) -> List[str]:
    return [p for p in phonemes.split(" ") if p]


def parse_dictionary_text(
    text: str,
    builder: G2pDictionary.Builder,
    *,
    replacements: Optional[Mapping[str, str]] = None,
    word_phonemes: Callable[[str], Sequence[str]] = split_word_phonemes,
    lowercase_symbols: bool = False,
) -> int:
    """Parse ``word<two spaces>ph1 ph2`` lines into the builder.

    Returns the number of entries added. Comment lines and lines that do not
    split into exactly two parts are ignored.
    """
    added = 0
    for raw_line in text.split("\n"):
        if raw_line.startswith(COMMENT_PREFIX):
            continue
        parts = raw_line.strip().split(WORD_SEPARATOR)
        if len(parts) != 2:
            continue
        word, phonemes = parts
        symbols = []
        for symbol in word_phonemes(phonemes):
            if lowercase_symbols:
                symbol = symbol.lower()
            if replacements and symbol in replacements:
                symbol = replacements[symbol]
            symbols.append(symbol)
        builder.add_entry(word.lower(), symbols)
        added += 1
    return added


def parse_yaml_dictionary(
    path: Path,
    builder: G2pDictionary.Builder,
    *,
    replacements: Optional[Mapping[str, str]] = None,
) -> int:
    """Parse a DiffSinger/OpenUtau style ``dsdict.yaml`` into the builder."""
    data = yaml.safe_load(path.read_text(encoding="utf8"))
    if not isinstance(data, dict):
        raise ValueError(f"Invalid dictionary format at {path}.")
    for entry in data.get("symbols", []) or []:
        if not isinstance(entry, dict):
            continue
        symbol = str(entry.get("symbol", "")).strip()
        symbol_type = str(entry.get("type", "")).strip().lower()
        if symbol:
            builder.add_symbol(symbol, symbol_type == "vowel")
    added = 0
    for entry in data.get("entries", []) or []:
        if not isinstance(entry, dict):
            continue
        grapheme = entry.get("grapheme")
        phonemes = entry.get("phonemes")
        if not grapheme or not phonemes:
            continue
        symbols = [str(p) for p in phonemes]
        if replacements:
            symbols = [replacements.get(p, p) for p in symbols]
        builder.add_entry(str(grapheme).lower(), symbols)
        added += 1
    return added


def load_dictionary(
    path: Path,
    *,
    vowels: Iterable[str] = (),
    consonants: Iterable[str] = (),
    replacements: Optional[Mapping[str, str]] = None,
    word_phonemes: Callable[[str], Sequence[str]] = split_word_phonemes,
    lowercase_symbols: bool = False,
    encoding: str = "utf8",
) -> G2pDictionary:
    """Build a dictionary from a text or YAML file, registering the symbol set first."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(
            f"Phoneme dictionary not found at {path}. "
            "Expected a CMU-style text dictionary or a dsdict.yaml."
        )
    builder = G2pDictionary.builder()
    for vowel in vowels:
        builder.add_symbol(vowel, True)
    for consonant in consonants:
        builder.add_symbol(consonant, False)
    builder.add_entry("a", ["a"])
    if path.suffix.lower() in {".yaml", ".yml"}:
        parse_yaml_dictionary(path, builder, replacements=replacements)
    else:
        parse_dictionary_text(
            path.read_text(encoding=encoding, errors="replace"),
            builder,
            replacements=replacements,
            word_phonemes=word_phonemes,
            lowercase_symbols=lowercase_symbols,
        )
    return builder.build()
