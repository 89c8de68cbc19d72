from __future__ import annotations

"""g2p_en fallback for English words missing from the dictionary."""

import re
import threading
from typing import List, Optional

from g2p_en import G2p

from src.logging_utils import get_logger
from src.phonemizer.errors import PhonemizerLookupError

logger = get_logger(__name__)

ARPABET_TO_VOICEBANK = {
    "AA": "aa",
    "AE": "ae",
    "AH": "ah",
    "AO": "ao",
    "AW": "aw",
    "AX": "ax",
    "AXR": "er",
    "AY": "ay",
    "B": "b",
    "CH": "ch",
    "D": "d",
    "DH": "dh",
    "DX": "dx",
    "EH": "eh",
    "ER": "er",
    "EY": "ey",
    "F": "f",
    "G": "g",
    "HH": "hh",
    "IH": "ih",
    "IX": "ih",
    "IY": "iy",
    "JH": "jh",
    "K": "k",
    "L": "l",
    "M": "m",
    "N": "n",
    "NG": "ng",
    "OW": "ow",
    "OY": "oy",
    "P": "p",
    "R": "r",
    "S": "s",
    "SH": "sh",
    "T": "t",
    "TH": "th",
    "UH": "uh",
    "UW": "uw",
    "UX": "uw",
    "V": "v",
    "W": "w",
    "Y": "y",
    "Z": "z",
    "ZH": "zh",
}

_g2p: Optional[G2p] = None
_g2p_lock = threading.Lock()


def _get_g2p() -> G2p:
    global _g2p
    with _g2p_lock:
        if _g2p is None:
            try:
                _g2p = G2p()
            except LookupError as exc:
                raise RuntimeError(
                    "g2p_en requires the NLTK cmudict corpus. "
                    "Install it with: python -m nltk.downloader cmudict"
                ) from exc
        return _g2p


def normalize_word_for_g2p(value: str) -> str:
    return re.sub(r"[^A-Za-z']+", "", value).lower()


def map_arpabet(phone: str) -> Optional[str]:
    base = re.sub(r"[0-9]", "", phone).upper()
    return ARPABET_TO_VOICEBANK.get(base)


def english_word_not_found(word: str) -> Optional[List[str]]:
    """Predict lowercase ARPAbet symbols for an unknown word, or None when g2p yields nothing."""
    cleaned = normalize_word_for_g2p(word)
    if not cleaned:
        return None
    try:
        predictor = _get_g2p()
    except RuntimeError as exc:
        raise PhonemizerLookupError(str(exc), word=word) from exc
    # G2p keeps per-call state in its tokenizer; serialize predictions.
    with _g2p_lock:
        raw = predictor(cleaned)
    symbols = [mapped for mapped in (map_arpabet(p) for p in raw if re.search(r"[A-Za-z]", p)) if mapped]
    logger.debug("g2p_fallback word=%s symbols=%s", word, symbols)
    return symbols or None
