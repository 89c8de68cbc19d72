from __future__ import annotations

"""
Phonemization API.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from src.config import Settings
from src.logging_utils import get_logger, summarize_payload
from src.phonemizer.registry import get_phonemizer
from src.phonemizer.types import Note
from src.render.phrase import group_notes, phonemize_groups, split_phrases
from src.voicebank.voicebank import Voicebank

logger = get_logger(__name__)


def phonemize(
    notes: Sequence[Note],
    *,
    variant: str = "en-arpasing",
    voicebank: Optional[Voicebank] = None,
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    """
    Convert notes to timed phonemes, one entry per word group.

    Args:
        notes: Notes sorted by position
        variant: Phonemizer variant id (see ``list_variants``)
        voicebank: Optional voicebank used to validate aliases

    Returns:
        Dict with:
        - variant: The variant used
        - groups: [{"lyric", "position", "note_count", "phonemes": [...], "error"}]

    Example:
        phonemize(notes, variant="phonetic")
        -> {"variant": "phonetic",
            "groups": [{"lyric": "k a", "position": 0, "note_count": 1,
                        "phonemes": [{"alias": "k", ...}, {"alias": "a", ...}],
                        "error": None}]}
    """
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "phonemize input=%s",
            summarize_payload({"variant": variant, "notes": [n.lyric for n in notes]}),
        )
    phonemizer = get_phonemizer(variant, voicebank=voicebank, settings=settings)
    groups_out: List[Dict[str, Any]] = []
    for phrase in split_phrases(group_notes(list(notes))):
        for group, result in phonemize_groups(phrase, phonemizer):
            groups_out.append(
                {
                    "lyric": group.main.lyric,
                    "position": group.position,
                    "note_count": len(group.notes),
                    "phonemes": [p.to_dict() for p in result.phonemes],
                    "error": result.error,
                }
            )
    output = {"variant": variant, "groups": groups_out}
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("phonemize output=%s", summarize_payload(output))
    return output
