from __future__ import annotations

"""Score parsing APIs: JSON/YAML note payloads to ``Note`` objects."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from src.logging_utils import get_logger, summarize_payload
from src.phonemizer.types import Note, PhonemeAttributes, PitchPoint, PitchShape, Vibrato
from src.voicebank.voicebank import tone_from_name

logger = get_logger(__name__)

DEFAULT_BPM = 120.0


def _parse_tone(value: Any) -> int:
    if isinstance(value, str) and not value.lstrip("-").isdigit():
        return tone_from_name(value)
    return int(value)


def _parse_pitch_points(data: Any) -> List[PitchPoint]:
    if isinstance(data, Mapping):
        data = data.get("points") or data.get("data") or []
    points: List[PitchPoint] = []
    for entry in data or []:
        if isinstance(entry, Mapping):
            points.append(
                PitchPoint(
                    x=float(entry.get("x", 0.0)),
                    y=float(entry.get("y", 0.0)),
                    shape=PitchShape.parse(entry.get("shape")),
                )
            )
        else:
            x, y, *rest = entry
            points.append(PitchPoint(float(x), float(y), PitchShape.parse(rest[0] if rest else None)))
    return points


def _parse_vibrato(data: Optional[Mapping[str, Any]]) -> Vibrato:
    if not data:
        return Vibrato()
    aliases = {"in": "fade_in", "out": "fade_out"}
    values = {}
    for key, value in data.items():
        name = aliases.get(key, key)
        if name in Vibrato.__dataclass_fields__:
            values[name] = float(value)
    return Vibrato(**values)


def _parse_overrides(data: Any) -> List[PhonemeAttributes]:
    overrides: List[PhonemeAttributes] = []
    for entry in data or []:
        if "index" not in entry:
            raise ValueError(f"Phoneme override is missing 'index': {entry}")
        preutter = entry.get("preutter_scale", entry.get("preutterScale"))
        overlap = entry.get("overlap_scale", entry.get("overlapScale"))
        overrides.append(
            PhonemeAttributes(
                index=int(entry["index"]),
                offset=int(entry.get("offset", 0)),
                preutter_scale=float(preutter) if preutter is not None else None,
                overlap_scale=float(overlap) if overlap is not None else None,
            )
        )
    return overrides


def note_from_dict(data: Mapping[str, Any], *, bpm: float = DEFAULT_BPM) -> Note:
    """Build a ``Note`` from one note payload entry."""
    for key in ("lyric", "position", "duration", "tone"):
        if key not in data:
            raise ValueError(f"Note is missing required field '{key}': {dict(data)}")
    duration = int(data["duration"])
    if duration <= 0:
        raise ValueError(f"Note duration must be positive, got {duration}.")
    return Note(
        lyric=str(data["lyric"]),
        position=int(data["position"]),
        duration=duration,
        tone=_parse_tone(data["tone"]),
        phonetic_hint=data.get("phonetic_hint") or None,
        phoneme_attributes=_parse_overrides(data.get("phoneme_overrides")),
        pitch_points=_parse_pitch_points(data.get("pitch")),
        vibrato=_parse_vibrato(data.get("vibrato")),
        bpm=float(data.get("bpm", bpm)),
        velocity=int(data.get("velocity", 100)),
        volume=int(data.get("volume", 100)),
        modulation=int(data.get("modulation", 0)),
        flags=str(data.get("flags", "")),
    )


def _load_payload(source: Union[str, Path, Mapping[str, Any]]) -> Mapping[str, Any]:
    if isinstance(source, Mapping):
        return source
    path = Path(source)
    if not path.exists():
        raise FileNotFoundError(f"Score file not found: {path}")
    text = path.read_text(encoding="utf8")
    if path.suffix.lower() == ".json":
        payload = json.loads(text)
    else:
        payload = yaml.safe_load(text)
    if not isinstance(payload, Mapping):
        raise ValueError(f"Score file must contain a mapping at top level: {path}")
    return payload


def parse_score(source: Union[str, Path, Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Parse a note payload (dict, .json or .yaml file) into notes.

    Returns:
        Dict with ``bpm`` and ``notes`` (``Note`` objects sorted by position).
    """
    payload = _load_payload(source)
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("parse_score input=%s", summarize_payload(payload))
    bpm = float(payload.get("bpm", DEFAULT_BPM))
    if bpm <= 0:
        raise ValueError(f"bpm must be positive, got {bpm}.")
    notes = [note_from_dict(entry, bpm=bpm) for entry in payload.get("notes") or []]
    notes.sort(key=lambda n: n.position)
    logger.info("score_parsed notes=%s bpm=%s", len(notes), bpm)
    return {"bpm": bpm, "notes": notes}
