"""Shared error types for phonemization flows."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


class PhonemizerLookupError(LookupError):
    """Raised inside a phonemizer when a word or alias cannot be resolved.

    Phonemizers catch it and emit a single sentinel phoneme carrying the message,
    so a phrase with an unknown word still renders.
    """

    def __init__(self, message: str, *, word: Optional[str] = None) -> None:
        super().__init__(message)
        self.word = word

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "lookup failed"


@dataclass
class SyllableInvariantError(ValueError):
    """Raised when segmentation produces syllables that do not match the notes."""

    stage: str
    syllable_count: int
    note_count: int
    lyric: Optional[str] = None
    detail: str = "syllable_note_mismatch"

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error_type": "SyllableInvariantError",
            "stage": self.stage,
            "syllable_count": int(self.syllable_count),
            "note_count": int(self.note_count),
            "detail": self.detail,
        }
        if self.lyric is not None:
            payload["lyric"] = self.lyric
        return payload

    def __str__(self) -> str:
        return (
            f"{self.detail}: stage={self.stage} syllables={self.syllable_count} "
            f"notes={self.note_count} lyric={self.lyric!r}"
        )
