from __future__ import annotations

"""Process-wide cache of built G2P dictionaries, keyed by phonemizer variant id."""

import threading
import time
from typing import Callable, Dict, Optional

from src.logging_utils import get_logger
from src.phonemizer.g2p_dictionary import G2pDictionary

logger = get_logger(__name__)

DictionaryFactory = Callable[[], Optional[G2pDictionary]]


class DictionaryCache:
    """Build-once dictionary store.

    Reads of an already built key take no lock. The first caller for a key builds
    the dictionary while holding that key's lock; concurrent callers wait on the
    same lock and reuse the result. A factory returning None is cached too, so a
    missing dictionary file is only checked once.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, Optional[G2pDictionary]] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def get_or_build(self, key: str, factory: DictionaryFactory) -> Optional[G2pDictionary]:
        if key in self._entries:
            return self._entries[key]
        lock = self._get_key_lock(key)
        with lock:
            if key in self._entries:
                return self._entries[key]
            start = time.monotonic()
            dictionary = factory()
            self._entries[key] = dictionary
            logger.info(
                "dictionary_built variant=%s entries=%s elapsed_ms=%.2f",
                key,
                len(dictionary) if dictionary is not None else "none",
                (time.monotonic() - start) * 1000.0,
            )
            return dictionary

    def contains(self, key: str) -> bool:
        return key in self._entries

    def clear(self) -> None:
        with self._locks_guard:
            self._entries.clear()
            self._locks.clear()

    def _get_key_lock(self, key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock


DEFAULT_DICTIONARY_CACHE = DictionaryCache()
