"""
Singing Voice Render API Module

This module exposes the public APIs for concatenative singing synthesis.
"""

from src.api.score import parse_score, note_from_dict
from src.api.phonemize import phonemize
from src.api.audio import save_audio
from src.api.synthesize import synthesize
from src.api.voicebank import list_voicebanks, get_voicebank_info, load_voicebank
from src.phonemizer.registry import list_variants

__all__ = [
    # Step 1: Score
    "parse_score",
    "note_from_dict",
    # Step 2: Phonemes
    "phonemize",
    "list_variants",
    # Steps 3-4: Resample + concatenate
    "synthesize",
    # Output
    "save_audio",
    # Metadata
    "list_voicebanks",
    "get_voicebank_info",
    "load_voicebank",
]
